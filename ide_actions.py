"""Direct page actions on the editor target: screenshots, typing, focus.

Each function opens its own connection to the target and closes it again.
"""
import base64
import io
import time

from PIL import Image, UnidentifiedImageError

from cdp_transport import CdpError, READ_TIMEOUT, WRITE_TIMEOUT, open_connection, ts_print
from ide_scraper import InvalidRequest

print = ts_print

_FOCUS_INPUT_JS = r"""
(function() {
    const selectors = [
        'textarea.inputarea',
        'textarea[aria-label*="input"]',
        'div[contenteditable="true"]',
        '.monaco-inputbox textarea',
        'textarea'
    ];
    for (const sel of selectors) {
        const el = document.querySelector(sel);
        if (el) {
            el.focus();
            el.click();
            return { found: true, method: sel };
        }
    }
    const inputArea = document.querySelector('.input-area, .chat-input, [class*="input"]');
    if (inputArea) {
        inputArea.click();
        return { found: true, method: 'click', clicked: true };
    }
    document.body.dispatchEvent(new KeyboardEvent('keydown', {
        key: 'l', code: 'KeyL', ctrlKey: true, bubbles: true
    }));
    return { found: false, method: 'keyboard_shortcut' };
})()
"""

_ENTER = {'key': 'Enter', 'code': 'Enter', 'windowsVirtualKeyCode': 13, 'nativeVirtualKeyCode': 13}


def _connect(target):
    return open_connection(target.get('ws_url'), label=(target.get('id') or '')[:8])


def _require_text(text):
    if not isinstance(text, str):
        raise InvalidRequest('Text must be a string')
    if not text.strip():
        raise InvalidRequest('Text required')


def _focus(conn):
    result = conn.call('Runtime.evaluate', {'expression': _FOCUS_INPUT_JS, 'returnByValue': True},
                       timeout=READ_TIMEOUT)
    return (result.get('result') or {}).get('value') or {'found': False}


def image_size(raw):
    """(width, height) from the image header, or (None, None) if unreadable."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            return img.size
    except (UnidentifiedImageError, OSError):
        return None, None


def capture_screenshot(target, fmt='png', quality=80):
    """Page.captureScreenshot. Returns {format, data (base64), width, height}."""
    params = {'format': fmt, 'captureBeyondViewport': False}
    if fmt == 'jpeg':
        params['quality'] = int(quality)
    with _connect(target) as conn:
        result = conn.call('Page.captureScreenshot', params, timeout=WRITE_TIMEOUT)
    data = result.get('data')
    if not data:
        raise CdpError('screenshot returned no data')
    width, height = image_size(base64.b64decode(data))
    return {'format': fmt, 'data': data, 'width': width, 'height': height}


def get_page_metrics(target):
    with _connect(target) as conn:
        return conn.call('Page.getLayoutMetrics', timeout=READ_TIMEOUT)


def focus_input(target):
    with _connect(target) as conn:
        return _focus(conn)


def inject_command(target, text):
    """Focus the agent input and type `text` key by key (no submit)."""
    _require_text(text)
    with _connect(target) as conn:
        _focus(conn)
        time.sleep(0.1)
        for ch in text:
            code = f"Key{ch.upper()}" if ch.isalpha() else ''
            conn.call('Input.dispatchKeyEvent', {'type': 'keyDown', 'text': ch, 'key': ch, 'code': code},
                      timeout=WRITE_TIMEOUT)
            conn.call('Input.dispatchKeyEvent', {'type': 'keyUp', 'key': ch, 'code': code},
                      timeout=WRITE_TIMEOUT)
    return {'success': True, 'injected': text}


def inject_and_submit(target, text):
    """Focus the agent input, insert `text` in one go and press Enter."""
    _require_text(text)
    t0 = time.time()
    with _connect(target) as conn:
        _focus(conn)
        conn.call('Input.insertText', {'text': text}, timeout=WRITE_TIMEOUT)
        time.sleep(0.05)
        conn.call('Input.dispatchKeyEvent', dict(_ENTER, type='keyDown'), timeout=WRITE_TIMEOUT)
        conn.call('Input.dispatchKeyEvent', dict(_ENTER, type='keyUp'), timeout=WRITE_TIMEOUT)
    print(f"[actions] Submitted {len(text)} chars in {int((time.time() - t0) * 1000)}ms")
    return {'success': True, 'submitted': text}
