# -*- coding: utf-8 -*-
"""
Matching rules for the IDE's rendered UI.

Everything here is plain text matching over values the page scripts return,
so the heuristics can be tuned without touching the scripts or their callers.
Keyword lists can be overridden in ui_rules.json next to this file, which is
hot-reloaded on change.
"""
import json
import re
from pathlib import Path
from urllib.parse import unquote

from cdp_transport import ts_print

print = ts_print

_RULES_FILE = Path(__file__).parent / 'ui_rules.json'
_rules_mtime = 0.0

DEFAULT_RULES = {
    'model_vendors': ['claude', 'gemini', 'gpt'],
    'model_variants': ['opus', 'sonnet', 'flash', 'pro', 'thinking', 'high', 'low', 'medium'],
    'model_triggers': ['gemini', 'claude', 'gpt', 'opus', 'sonnet', 'flash', 'model'],
    'modes': ['planning', 'fast'],
    'approve': ['run', 'accept', 'approve', 'yes', 'confirm', 'allow'],
    'reject': ['cancel', 'reject', 'no', 'deny', 'skip'],
}
_rules = {k: list(v) for k, v in DEFAULT_RULES.items()}

KNOWN_MODELS = [
    'Gemini 3 Pro (High)',
    'Gemini 3 Pro (Low)',
    'Gemini 3 Flash',
    'Claude Sonnet 4.5',
    'Claude Sonnet 4.5 (Thinking)',
    'Claude Opus 4.5 (Thinking)',
    'GPT-OSS 120B (Medium)',
]

KNOWN_MODES = [
    {'name': 'Planning', 'description': 'Agent can plan before executing. Use for deep research, complex tasks.'},
    {'name': 'Fast', 'description': 'Agent will execute tasks directly. Use for simple tasks.'},
]

APPROVAL_PATTERNS = (
    re.compile(r'\d+\s*step.*requires.*input', re.IGNORECASE),
    re.compile(r'suggested.*sending.*input.*command', re.IGNORECASE),
    re.compile(r'send.*command.*input', re.IGNORECASE),
)
_STEP_COUNT_RE = re.compile(r'(\d+)\s*step.*requires.*input', re.IGNORECASE)

SHORT_LABEL_MAX = 20   # affordance labels are at most this long (exclusive)
UNKNOWN = 'Unknown'


def _reload_if_changed():
    global _rules, _rules_mtime
    if not _RULES_FILE.exists():
        return
    try:
        mt = _RULES_FILE.stat().st_mtime
        if mt == _rules_mtime:
            return
        data = json.loads(_RULES_FILE.read_text(encoding='utf-8'))
        if not isinstance(data, dict):
            print(f"[ui-rules] Ignoring {_RULES_FILE.name}: top level must be an object")
            _rules_mtime = mt
            return
        merged = {k: list(v) for k, v in DEFAULT_RULES.items()}
        for key, values in data.items():
            if key in merged and isinstance(values, list):
                merged[key] = [str(v).lower() for v in values]
        _rules = merged
        _rules_mtime = mt
        print(f"[ui-rules] Loaded overrides for {sorted(k for k in data if k in merged)}")
    except (OSError, ValueError) as e:
        print(f"[ui-rules] Failed to load rules: {e}")


def rules():
    """Current keyword lists (defaults merged with ui_rules.json)."""
    _reload_if_changed()
    return _rules


# ── Model / mode ─────────────────────────────────────────────────────────────

def pick_model_and_mode(texts):
    """First model label and first mode name among shallow UI texts, in DOM order.

    Returns (model, mode); either may be None.
    """
    r = rules()
    vendor_re = re.compile(r'^(%s)' % '|'.join(map(re.escape, r['model_vendors'])), re.IGNORECASE)
    variant_re = re.compile(r'(%s)' % '|'.join(map(re.escape, r['model_variants'])), re.IGNORECASE)
    modes = set(r['modes'])
    model = mode = None
    for text in texts:
        text = (text or '').strip()
        if len(text) < 4 or len(text) > 50:
            continue
        if model is None and vendor_re.search(text) and variant_re.search(text):
            model = text
        if mode is None and text.lower() in modes:
            mode = text
        if model and mode:
            break
    return model, mode


def tokenize(name):
    """Lowercase tokens of a model or mode name, split on non-alphanumerics."""
    return [t for t in re.split(r'[^a-z0-9]+', name.lower()) if t]


def match_candidate(requested, candidates):
    """Choose which dropdown option to click for `requested`.

    Tiers, highest first:
      exact   -- normalized text equality
      all     -- option contains every token of the requested name
      relaxed -- option contains the first (family) token and at least
                 half of the remaining tokens
    The first option satisfying the highest tier wins (DOM order).
    Returns (index, tier) or (None, None).
    """
    target = requested.strip().lower()
    texts = [(c or '').strip().lower() for c in candidates]
    parts = tokenize(target)
    if not target:
        return None, None

    for i, text in enumerate(texts):
        if text == target:
            return i, 'exact'
    if parts:
        for i, text in enumerate(texts):
            if all(p in text for p in parts):
                return i, 'all'
    if len(parts) >= 2:
        rest = parts[1:]
        for i, text in enumerate(texts):
            if parts[0] not in text:
                continue
            hits = sum(1 for p in rest if p in text)
            if hits >= len(rest) / 2:
                return i, 'relaxed'
    return None, None


# ── Approvals ────────────────────────────────────────────────────────────────

def find_labelled(labels, keywords):
    """Index and text of the first short label containing any keyword."""
    for i, label in enumerate(labels):
        text = (label or '').strip().lower()
        if len(text) >= SHORT_LABEL_MAX:
            continue
        if any(k in text for k in keywords):
            return i, text
    return None, None


def parse_approval(text, labels):
    """Derive ApprovalState from the page's rendered text and short labels."""
    text = text or ''
    if not any(p.search(text) for p in APPROVAL_PATTERNS):
        return {'pending': False, 'count': 0}
    m = _STEP_COUNT_RE.search(text)
    count = int(m.group(1)) if m else 1
    r = rules()
    state = {'pending': True, 'count': count, 'approveButton': None, 'rejectButton': None}
    _, approve = find_labelled(labels, r['approve'])
    if approve is not None:
        state['approveButton'] = {'text': approve, 'found': True}
    _, reject = find_labelled(labels, r['reject'])
    if reject is not None:
        state['rejectButton'] = {'text': reject, 'found': True}
    return state


# ── Workspace path ───────────────────────────────────────────────────────────

_DRIVE_RE = re.compile(r'(?<![A-Za-z])[A-Za-z]:[\\/]')
POSIX_ROOTS = ('/home/', '/Users/', '/var/', '/opt/', '/root/', '/mnt/', '/srv/', '/tmp/')
_WIN_DELIMS = (',', ';', ' - ')
_POSIX_DELIMS = (',', ';', ' - ', "'", '"')


def _trim(part, delims):
    end = len(part)
    for d in delims:
        idx = part.find(d)
        if 0 < idx < end:
            end = idx
    return part[:end].strip()


def project_from_title(title, product):
    """'Demo - Antigravity - index.ts' -> 'Demo'."""
    m = re.match(r'^([^-]+)\s*-\s*%s' % re.escape(product), title or '')
    return m.group(1).strip() if m else None


def extract_path(source):
    """Embedded absolute path in a tab label. Returns (path, is_windows) or None."""
    if not source or len(source) < 5:
        return None
    m = _DRIVE_RE.search(source)
    if m:
        return _trim(source[m.start():], _WIN_DELIMS), True
    for root in POSIX_ROOTS:
        idx = source.find(root)
        if idx >= 0:
            return _trim(source[idx:], _POSIX_DELIMS), False
    return None


def decode_file_uri(uri):
    """'file:///c%3A/Users/x' -> ('c:\\Users\\x', True). None if not a decodable file URI."""
    if not uri or not uri.startswith('file:///'):
        return None
    try:
        decoded = unquote(uri[len('file:///'):], errors='strict')
    except UnicodeDecodeError:
        return None
    is_windows = len(decoded) > 1 and decoded[1] == ':'
    if is_windows:
        return decoded.replace('/', '\\'), True
    return '/' + decoded, False


def workspace_root(path, is_windows, project_name=None):
    """Truncate `path` at the segment equal to the project name, else take its parent."""
    parts = [p for p in re.split(r'[\\/]+' if is_windows else r'/+', path) if p]
    if not parts:
        return None
    cut = None
    if project_name:
        wanted = project_name.lower()
        for i, part in enumerate(parts):
            if part.lower() == wanted:
                cut = i + 1
                break
    keep = parts[:cut] if cut is not None else parts[:-1]
    if is_windows:
        if not keep:
            return None
        return keep[0] + '\\' + '\\'.join(keep[1:])
    return '/' + '/'.join(keep)


def infer_workspace(signals, project_name=None):
    """Workspace root from page signals {'uris': [...], 'labels': [...]}, or None.

    A decodable file URI wins over paths embedded in tab labels.
    """
    found = None
    for uri in signals.get('uris') or ():
        found = decode_file_uri(uri)
        if found:
            break
    if not found:
        for label in signals.get('labels') or ():
            found = extract_path(label)
            if found:
                break
    if not found:
        return None
    path, is_windows = found
    return workspace_root(path, is_windows, project_name)
