"""Correlated request/response transport over a CDP WebSocket.

One connection per logical operation. Every call gets a fresh id (starting at
1 per connection) and waits for the frame carrying that id. A daemon reader
thread resolves pending calls; unsolicited notifications go to listeners.

Exports:
    open_connection(ws_url) -- CdpConnection (context manager)
    CdpConnection.call(method, params, timeout) -- result dict or raises
    ts_print -- timestamped print used by every module
"""
import builtins
import json
import threading
from datetime import datetime

import websocket


def ts_print(*args, **kwargs):
    ts = datetime.now().strftime('%H:%M:%S.%f')[:-3]
    kwargs.setdefault('flush', True)
    builtins.print(f"[{ts}]", *args, **kwargs)

print = ts_print

READ_TIMEOUT = 3.0    # seconds, queries that only read the page
WRITE_TIMEOUT = 5.0   # seconds, queries that click, type or wait in-page
CONNECT_TIMEOUT = 3.0


# ── Errors ───────────────────────────────────────────────────────────────────

class CdpError(RuntimeError):
    """Base for everything the automation layer can fail with."""


class TransportError(CdpError):
    """The WebSocket could not be opened, or dropped while calls were pending."""


class CallTimeout(CdpError):
    """No response frame arrived before the call's deadline."""


class RemoteCallError(CdpError):
    """The endpoint answered with an in-band {error: {message}}."""


class RemoteScriptError(CdpError):
    """Runtime.evaluate succeeded but the script itself threw."""


class DiscoveryFailure(CdpError):
    """No reachable endpoint or no usable target."""


# ── Connection ───────────────────────────────────────────────────────────────

class _PendingCall:
    __slots__ = ('method', 'done', 'result', 'error')

    def __init__(self, method):
        self.method = method
        self.done = threading.Event()
        self.result = None
        self.error = None


class CdpConnection:
    """A single CDP WebSocket with its own id space and pending-call map."""

    def __init__(self, ws_conn, label='cdp'):
        self._ws = ws_conn
        self.label = label
        self._lock = threading.Lock()
        self._next_id = 1
        self._pending = {}      # id -> _PendingCall
        self._listeners = {}    # method -> [callable(params)]
        self._failure = None
        self._closing = False
        self._reader = threading.Thread(target=self._read_loop, name=f'cdp-reader-{label}', daemon=True)
        self._reader.start()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    @property
    def closed(self):
        return self._failure is not None

    def pending_count(self):
        with self._lock:
            return len(self._pending)

    def on(self, method, handler):
        """Register handler(params) for an unsolicited notification."""
        self._listeners.setdefault(method, []).append(handler)

    def call(self, method, params=None, timeout=READ_TIMEOUT):
        """Send one command and block for its outcome.

        Returns the `result` object. Raises RemoteCallError for an in-band
        error, CallTimeout when the deadline passes (the connection stays
        usable) and TransportError when the socket fails.
        """
        with self._lock:
            if self._failure is not None:
                raise self._failure
            mid = self._next_id
            self._next_id += 1
            pending = _PendingCall(method)
            self._pending[mid] = pending
        try:
            self._ws.send(json.dumps({'id': mid, 'method': method, 'params': params or {}}))
        except Exception as e:
            with self._lock:
                self._pending.pop(mid, None)
            raise TransportError(f"send failed for {method}: {e}") from e

        if not pending.done.wait(timeout):
            with self._lock:
                if self._pending.pop(mid, None) is not None:
                    raise CallTimeout(f"{method} timed out after {timeout}s (id={mid})")
            # Resolved between the wait expiring and the pop: use that outcome.
            pending.done.wait()
        if pending.error is not None:
            raise pending.error
        return pending.result

    def close(self):
        if self._closing:
            return
        self._closing = True
        try:
            self._ws.close()
        except Exception:
            pass
        self._fail(TransportError('connection closed'))

    # ── Reader side ──

    def _read_loop(self):
        while True:
            try:
                raw = self._ws.recv()
            except Exception as e:
                if not self._closing:
                    print(f"[cdp] Connection lost: {self.label} ({e})")
                self._fail(TransportError(f"connection lost: {e}"))
                return
            if not raw:
                if not self._closing:
                    print(f"[cdp] Connection closed by peer: {self.label}")
                self._fail(TransportError('connection closed by peer'))
                return
            try:
                msg = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                continue
            if not isinstance(msg, dict):
                continue
            if msg.get('id') is not None:
                self._resolve(msg)
            elif msg.get('method'):
                self._dispatch(msg['method'], msg.get('params') or {})

    def _resolve(self, msg):
        with self._lock:
            pending = self._pending.pop(msg['id'], None)
            if pending is None:
                return  # late reply to a timed-out call, or not ours
            err = msg.get('error')
            if err:
                text = err.get('message', str(err)) if isinstance(err, dict) else str(err)
                pending.error = RemoteCallError(f"{pending.method}: {text}")
            else:
                pending.result = msg.get('result') or {}
            pending.done.set()

    def _dispatch(self, method, params):
        for handler in list(self._listeners.get(method, ())):
            try:
                handler(params)
            except Exception as e:
                print(f"[cdp] Listener for {method} failed: {e}")

    def _fail(self, exc):
        with self._lock:
            if self._failure is None:
                self._failure = exc
            calls = list(self._pending.values())
            self._pending.clear()
            for pending in calls:
                pending.error = exc
                pending.done.set()


def open_connection(ws_url, label='cdp', timeout=CONNECT_TIMEOUT):
    """Open a fresh CDP connection. Raises TransportError on failure."""
    if not ws_url:
        raise TransportError('target has no WebSocket debugger URL')
    try:
        ws_conn = websocket.create_connection(ws_url, timeout=timeout)
    except (OSError, websocket.WebSocketException) as e:
        raise TransportError(f"cannot connect to {ws_url}: {e}") from e
    # Reader blocks until a frame arrives; deadlines are enforced per call.
    ws_conn.settimeout(None)
    return CdpConnection(ws_conn, label=label)
