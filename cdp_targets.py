"""Target discovery for the IDE's CDP endpoint.

The endpoint lists every debuggable page at /json/list. The IDE exposes its
main editor window, a Launchpad window and, when open, DevTools itself; only
the editor window is useful for automation.
"""
import re
import subprocess
import sys

import requests

from cdp_transport import DiscoveryFailure, ts_print

print = ts_print

DEFAULT_PORT = 9222
DISCOVERY_TIMEOUT = 3

PRODUCT_NAME = 'Antigravity'
SECONDARY_MARKER = 'Launchpad'
INSPECTOR_MARKER = 'devtools'


def base_url_for(host, port):
    return f"http://{host}:{port}"


def _get_json(base_url, path):
    try:
        resp = requests.get(f"{base_url}{path}", timeout=DISCOVERY_TIMEOUT)
        resp.raise_for_status()
        return resp.json()
    except (requests.RequestException, ValueError) as e:
        raise DiscoveryFailure(f"{base_url}{path}: {e}") from e


def _as_target(raw):
    return {
        'id': raw.get('id', ''),
        'title': raw.get('title', ''),
        'url': raw.get('url', ''),
        'type': raw.get('type', ''),
        'ws_url': raw.get('webSocketDebuggerUrl'),
    }


def list_targets(base_url):
    """GET /json/list. Returns [{id, title, url, type, ws_url}]."""
    raw = _get_json(base_url, '/json/list')
    if not isinstance(raw, list):
        raise DiscoveryFailure(f"unexpected /json/list payload: {type(raw).__name__}")
    return [_as_target(t) for t in raw if isinstance(t, dict)]


def get_version(base_url):
    """GET /json/version (Browser, Protocol-Version, webSocketDebuggerUrl...)."""
    return _get_json(base_url, '/json/version')


def is_available(base_url):
    try:
        version = get_version(base_url)
        return {'available': True, 'browser': version.get('Browser')}
    except DiscoveryFailure as e:
        return {'available': False, 'error': str(e)}


def select_editor_target(targets, product=PRODUCT_NAME, secondary=SECONDARY_MARKER,
                         inspector=INSPECTOR_MARKER):
    """Pick the main editor window out of a target list.

    Preference: a page whose title names the product, is not the secondary
    window and is not an inspector URL; otherwise the first page; otherwise
    None.
    """
    pages = [t for t in targets if t.get('type') == 'page']
    for t in pages:
        title = t.get('title') or ''
        url = t.get('url') or ''
        if product in title and secondary not in title and inspector not in url:
            return t
    return pages[0] if pages else None


def resolve_editor_target(base_url, product=PRODUCT_NAME, secondary=SECONDARY_MARKER,
                          inspector=INSPECTOR_MARKER):
    """Discover targets fresh and select the editor. None = automation unavailable."""
    try:
        targets = list_targets(base_url)
    except DiscoveryFailure as e:
        print(f"[targets] Discovery failed: {e}")
        return None
    target = select_editor_target(targets, product, secondary, inspector)
    if target is None:
        print(f"[targets] No page target among {len(targets)} targets")
    return target


# ── Port detection ───────────────────────────────────────────────────────────

def get_used_ports(process_name):
    """Find --remote-debugging-port values on running IDE process command lines."""
    used = set()
    if sys.platform == 'win32':
        try:
            result = subprocess.run(
                ['wmic', 'process', 'where', f"name='{process_name}.exe'",
                 'get', 'commandline'],
                capture_output=True, text=True, encoding='utf-8',
                errors='replace', timeout=15
            )
            for match in re.findall(r'--remote-debugging-port=(\d+)', result.stdout):
                used.add(int(match))
        except (OSError, subprocess.SubprocessError):
            pass
    else:
        try:
            result = subprocess.run(
                ['ps', 'aux'], capture_output=True, text=True, timeout=10
            )
            needle = process_name.lower()
            for line in result.stdout.splitlines():
                if needle in line.lower():
                    for match in re.findall(r'--remote-debugging-port=(\d+)', line):
                        used.add(int(match))
        except (OSError, subprocess.SubprocessError):
            pass
    return sorted(used)


def detect_cdp_port(host, process_name, fallback=DEFAULT_PORT):
    """Return the first advertised debugging port that actually answers.

    Merged windows can leave stale --remote-debugging-port flags on the
    launcher's command line, so every candidate is probed.
    """
    ports = get_used_ports(process_name)
    for port in ports:
        try:
            get_version(base_url_for(host, port))
            return port
        except DiscoveryFailure:
            continue
    if ports:
        print(f"[targets] Ports on command line not responding: {ports}, using {fallback}")
    else:
        print(f"[targets] No {process_name} process with CDP detected, using {fallback}")
    return fallback
