"""State extractors for the Antigravity IDE via Chrome DevTools Protocol.

All DOM knowledge about the IDE's agent panel lives here: the page scripts
collect raw signals (texts, labels, URIs) and tag elements, the decisions are
made in ui_rules. Every extractor is best-effort and fails closed to an
"unavailable" payload instead of raising.

Exports:
    IdeScraper(base_url, product, ...) -- read_model_and_mode, set_model,
        set_mode, available_models, available_modes, infer_workspace_path,
        get_pending_approvals, respond_to_approval
    InvalidRequest -- malformed input rejected before any remote call
"""
import json

import ui_rules
from cdp_runtime import context_session, evaluate_across_contexts
from cdp_targets import INSPECTOR_MARKER, PRODUCT_NAME, SECONDARY_MARKER, resolve_editor_target
from cdp_transport import CdpError, READ_TIMEOUT, WRITE_TIMEOUT, ts_print

print = ts_print

PICKER_OPEN_DELAY_MS = 600


class InvalidRequest(ValueError):
    """Input rejected before touching the IDE (empty name, unknown action...)."""


# ── Page scripts ─────────────────────────────────────────────────────────────

_SHALLOW_TEXTS_JS = r"""
(function() {
    const texts = [];
    const seen = new Set();
    for (const el of document.querySelectorAll('p, span, div, button')) {
        if (el.children.length > 3) continue;
        const text = (el.innerText || el.textContent || '').trim();
        if (text.length < 4 || text.length > 50 || seen.has(text)) continue;
        seen.add(text);
        texts.push(text);
        if (texts.length >= 1500) break;
    }
    return { found: texts.length > 0, texts: texts };
})()
"""

_TAB_SIGNALS_JS = r"""
(function() {
    const labels = [];
    for (const tab of document.querySelectorAll('[role="tab"], [class*="tab-label"], .tab')) {
        for (const attr of ['aria-label', 'title']) {
            const v = tab.getAttribute(attr);
            if (v && v.length >= 5) labels.push(v);
        }
        if (labels.length >= 200) break;
    }
    const uris = [];
    for (const el of document.querySelectorAll('[data-uri]')) {
        const uri = el.getAttribute('data-uri');
        if (uri && uri.indexOf('file:///') === 0) uris.push(uri);
        if (uris.length >= 20) break;
    }
    return { found: labels.length > 0 || uris.length > 0, labels: labels, uris: uris };
})()
"""

_APPROVAL_SCAN_JS = r"""
(function() {
    const text = (document.body && document.body.innerText) || '';
    const labels = [];
    for (const el of document.querySelectorAll('button, [role="button"], [class*="cursor-pointer"]')) {
        const t = (el.innerText || el.textContent || '').trim();
        if (t && t.length < 20) labels.push(t);
    }
    return { found: true, text: text.substring(0, 50000), labels: labels };
})()
"""

# Tags every short-label affordance with data-mb-affordance=<index>.
_TAG_AFFORDANCES_JS = r"""
(function() {
    document.querySelectorAll('[data-mb-affordance]').forEach(el => el.removeAttribute('data-mb-affordance'));
    const labels = [];
    for (const el of document.querySelectorAll('button, [role="button"], [class*="cursor-pointer"]')) {
        const t = (el.innerText || el.textContent || '').trim();
        if (!t || t.length >= 20) continue;
        el.setAttribute('data-mb-affordance', String(labels.length));
        labels.push(t);
    }
    return { found: labels.length > 0, labels: labels };
})()
"""

# Opens a picker (model or mode) and tags the options that appeared with
# data-mb-option=<index>. Placeholders are filled by _open_picker_js().
_OPEN_PICKER_JS = r"""
(async function() {
    const triggerKeywords = __TRIGGERS__;
    const optionKeywords = __OPTION_KEYWORDS__;
    const prefixOnly = __PREFIX_ONLY__;
    const maxTrigger = __MAX_TRIGGER__;
    const shortOption = __SHORT_OPTION__;
    const norm = el => (el.innerText || el.textContent || '').trim().toLowerCase();
    const OPTIONS = '[class*="cursor-pointer"], [role="option"], [role="menuitem"], .monaco-list-row, .action-item';

    let trigger = null;
    for (const el of document.querySelectorAll('button, div[role="button"], p, span')) {
        const text = norm(el);
        if (text.length < 2 || text.length > maxTrigger) continue;
        const hit = prefixOnly
            ? triggerKeywords.some(k => text === k || text.startsWith(k))
            : triggerKeywords.some(k => text.includes(k));
        if (hit) {
            trigger = el.closest('button') || el.closest('[role="button"]') || el;
            break;
        }
    }
    if (!trigger) return { found: false };

    document.querySelectorAll('[data-mb-option]').forEach(el => el.removeAttribute('data-mb-option'));
    const before = new Set(document.querySelectorAll(OPTIONS));
    trigger.click();
    await new Promise(r => setTimeout(r, __OPEN_DELAY_MS__));

    const visible = el => !!(el.offsetParent || el.getClientRects().length);
    const all = [...document.querySelectorAll(OPTIONS)].filter(visible);
    let pool = all.filter(el => !before.has(el));
    if (!pool.length) pool = all;
    pool = pool.filter(el => !pool.some(other => other !== el && el.contains(other)));

    const candidates = [];
    for (const el of pool) {
        const text = norm(el);
        if (text.length < 2 || text.length > 100) continue;
        if (!(optionKeywords.some(k => text.includes(k)) || text.length < shortOption)) continue;
        el.setAttribute('data-mb-option', String(candidates.length));
        candidates.push(text);
    }
    return { found: true, candidates: candidates };
})()
"""

_CLICK_TAGGED_JS = r"""
(async function() {
    const el = document.querySelector(__SELECTOR__);
    if (!el) return { clicked: false, error: 'element no longer in the page' };
    const label = (el.innerText || el.textContent || '').trim();
    if (el.disabled || el.getAttribute('aria-disabled') === 'true') {
        return { clicked: false, text: label, error: 'element is disabled' };
    }
    try {
        el.scrollIntoView({ block: 'center', inline: 'center' });
        await new Promise(r => setTimeout(r, 100));
        el.click();
    } catch (err) {
        return { clicked: false, text: label, error: String(err) };
    }
    return { clicked: true, text: label };
})()
"""

_PRESS_ESCAPE_JS = r"""
(function() {
    document.querySelectorAll('[data-mb-option]').forEach(el => el.removeAttribute('data-mb-option'));
    document.body.dispatchEvent(new KeyboardEvent('keydown', { key: 'Escape', code: 'Escape', keyCode: 27, bubbles: true }));
    return true;
})()
"""


def _open_picker_js(triggers, option_keywords, prefix_only, max_trigger, short_option):
    return (_OPEN_PICKER_JS
            .replace('__TRIGGERS__', json.dumps(list(triggers)))
            .replace('__OPTION_KEYWORDS__', json.dumps(list(option_keywords)))
            .replace('__PREFIX_ONLY__', 'true' if prefix_only else 'false')
            .replace('__MAX_TRIGGER__', str(int(max_trigger)))
            .replace('__SHORT_OPTION__', str(int(short_option)))
            .replace('__OPEN_DELAY_MS__', str(int(PICKER_OPEN_DELAY_MS))))


def _click_tagged_js(attr, index):
    return _CLICK_TAGGED_JS.replace('__SELECTOR__', json.dumps(f'[{attr}="{index}"]'))


# ── Scraper ──────────────────────────────────────────────────────────────────

class IdeScraper:
    """Heuristic readers and actuators for the IDE's rendered UI."""

    def __init__(self, base_url, product=PRODUCT_NAME, secondary=SECONDARY_MARKER,
                 inspector=INSPECTOR_MARKER):
        self.base_url = base_url
        self.product = product
        self.secondary = secondary
        self.inspector = inspector

    def resolve_target(self):
        return resolve_editor_target(self.base_url, self.product, self.secondary, self.inspector)

    # Model / mode

    def read_model_and_mode(self):
        """{'model', 'mode'} as shown in the agent input area; 'Unknown' when not found."""
        unknown = {'model': ui_rules.UNKNOWN, 'mode': ui_rules.UNKNOWN}
        target = self.resolve_target()
        if target is None:
            return dict(unknown, error='No editor target')

        def has_model(value):
            return bool(value) and ui_rules.pick_model_and_mode(value.get('texts') or [])[0] is not None

        try:
            value = evaluate_across_contexts(target, _SHALLOW_TEXTS_JS, has_model, READ_TIMEOUT)
        except CdpError as e:
            print(f"[scraper] read_model_and_mode failed: {e}")
            return dict(unknown, error=str(e))
        if not value:
            return unknown
        model, mode = ui_rules.pick_model_and_mode(value.get('texts') or [])
        return {'model': model or ui_rules.UNKNOWN, 'mode': mode or ui_rules.UNKNOWN}

    def available_models(self):
        current = self.read_model_and_mode()['model']
        return {'models': list(ui_rules.KNOWN_MODELS), 'current': current}

    def available_modes(self):
        current = self.read_model_and_mode()['mode']
        return {'modes': [dict(m) for m in ui_rules.KNOWN_MODES], 'current': current}

    def set_model(self, name):
        r = ui_rules.rules()
        script = _open_picker_js(r['model_triggers'], r['model_triggers'],
                                 prefix_only=False, max_trigger=60, short_option=0)
        return self._pick_option('model', name, script)

    def set_mode(self, name):
        r = ui_rules.rules()
        script = _open_picker_js(r['modes'], r['modes'],
                                 prefix_only=True, max_trigger=30, short_option=30)
        return self._pick_option('mode', name, script)

    def _pick_option(self, kind, requested, open_script):
        if not requested or not requested.strip():
            raise InvalidRequest(f"{kind.title()} name required")
        target = self.resolve_target()
        if target is None:
            return {'success': False, 'error': 'No editor target'}
        try:
            with context_session(target, WRITE_TIMEOUT) as session:
                ctx_id, opened = session.first(open_script, await_promise=True)
                if ctx_id is None:
                    print(f"[scraper] {kind} selector not found in {len(session.contexts)} contexts")
                    return {'success': False, 'error': f'{kind.title()} selector not found'}
                candidates = opened.get('candidates') or []
                index, tier = ui_rules.match_candidate(requested, candidates)
                if index is None:
                    print(f"[scraper] No {kind} option for {requested!r}, rejected: {candidates[:10]}")
                    try:
                        session.evaluate(_PRESS_ESCAPE_JS, ctx_id)
                    except CdpError as e:
                        print(f"[scraper] Escape failed: {e}")
                    return {'success': False, 'error': f'{kind.title()} option not found',
                            'candidates': candidates}
                clicked = session.evaluate(_click_tagged_js('data-mb-option', index), ctx_id,
                                           await_promise=True) or {}
                if not clicked.get('clicked'):
                    return {'success': False, 'error': clicked.get('error') or f'{kind.title()} option not clickable',
                            'selected': candidates[index]}
                selected = clicked.get('text') or candidates[index]
                print(f"[scraper] Selected {kind}: {selected}  ({tier} match)")
                return {'success': True, 'selected': selected, 'match': tier}
        except CdpError as e:
            print(f"[scraper] set {kind} failed: {e}")
            return {'success': False, 'error': str(e)}

    # Workspace

    def infer_workspace_path(self):
        """Absolute workspace root inferred from the window title and open tabs, or None."""
        target = self.resolve_target()
        if target is None:
            return None
        project = ui_rules.project_from_title(target.get('title'), self.product)

        def has_path(value):
            return bool(value) and ui_rules.infer_workspace(value, project) is not None

        try:
            value = evaluate_across_contexts(target, _TAB_SIGNALS_JS, has_path, READ_TIMEOUT)
        except CdpError as e:
            print(f"[scraper] infer_workspace_path failed: {e}")
            return None
        if not value:
            return None
        return ui_rules.infer_workspace(value, project)

    # Approvals

    def get_pending_approvals(self):
        target = self.resolve_target()
        if target is None:
            return {'pending': False, 'count': 0, 'error': 'No editor target'}

        def is_pending(value):
            return bool(value) and ui_rules.parse_approval(value.get('text'), value.get('labels') or [])['pending']

        try:
            value = evaluate_across_contexts(target, _APPROVAL_SCAN_JS, is_pending, WRITE_TIMEOUT)
        except CdpError as e:
            print(f"[scraper] get_pending_approvals failed: {e}")
            return {'pending': False, 'count': 0, 'error': str(e)}
        if not value:
            return {'pending': False, 'count': 0}
        return ui_rules.parse_approval(value.get('text'), value.get('labels') or [])

    def respond_to_approval(self, action):
        """Click the approve or reject affordance. action: 'approve' | 'reject'."""
        if action not in ('approve', 'reject'):
            raise InvalidRequest('Action must be "approve" or "reject"')
        r = ui_rules.rules()
        keywords = r['approve'] if action == 'approve' else r['reject']
        target = self.resolve_target()
        if target is None:
            return {'success': False, 'error': 'No editor target'}
        unclickable = None
        try:
            with context_session(target, WRITE_TIMEOUT) as session:
                for ctx_id, value in session.each(_TAG_AFFORDANCES_JS):
                    index, _ = ui_rules.find_labelled((value or {}).get('labels') or [], keywords)
                    if index is None:
                        continue
                    try:
                        clicked = session.evaluate(_click_tagged_js('data-mb-affordance', index), ctx_id,
                                                   await_promise=True) or {}
                    except CdpError as e:
                        print(f"[scraper] Approval click failed in context {ctx_id}: {e}")
                        continue
                    if clicked.get('clicked'):
                        return {'success': True, 'found': True,
                                'action': 'approved' if action == 'approve' else 'rejected',
                                'buttonText': clicked.get('text')}
                    unclickable = clicked
        except CdpError as e:
            print(f"[scraper] respond_to_approval failed: {e}")
            return {'success': False, 'error': str(e)}
        if unclickable is not None:
            return {'success': False, 'found': True, 'error': 'Approval button found but not clickable',
                    'buttonText': unclickable.get('text'), 'detail': unclickable.get('error')}
        return {'success': False, 'found': False, 'error': 'Could not find approval button'}
