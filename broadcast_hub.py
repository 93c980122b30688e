"""Fan-out of change events to connected mobile clients.

Producers (workspace monitor, file watcher, bridge operations) emit onto an
EventChannel; the hub's pump thread is its only consumer. A subscriber is any
object with send(text) and a `connected` flag, e.g. a websocket-client or
simple-websocket connection.
"""
import json
import queue
import threading
from datetime import datetime, timezone

from cdp_transport import ts_print

print = ts_print

HISTORY_EVENT = 'history'


def make_event(kind, payload):
    return {
        'event': kind,
        'data': payload,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }


class EventChannel:
    """Outbound queue of change events."""

    _CLOSED = object()

    def __init__(self):
        self._queue = queue.Queue()

    def emit(self, kind, payload):
        self._queue.put(make_event(kind, payload))

    def get(self, timeout=None):
        """Next event, or None on timeout or after close()."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return None if item is self._CLOSED else item

    def drain(self):
        """All currently queued events, without blocking."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is self._CLOSED:
                # Keep the close marker for the pump.
                self._queue.put(item)
                return events
            events.append(item)

    def close(self):
        self._queue.put(self._CLOSED)


def _is_open(sub):
    return bool(getattr(sub, 'connected', False))


class BroadcastHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = set()
        self._pump = None
        self._channel = None

    def __len__(self):
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, sub, history=None):
        """Add a subscriber; if `history` is given, send it the initial snapshot."""
        with self._lock:
            self._subscribers.add(sub)
            total = len(self._subscribers)
        print(f"[hub] Client connected. Total: {total}")
        if history is not None:
            self._send(sub, json.dumps(make_event(HISTORY_EVENT, history)))

    def unsubscribe(self, sub):
        with self._lock:
            self._subscribers.discard(sub)
            total = len(self._subscribers)
        print(f"[hub] Client disconnected. Total: {total}")

    def publish(self, kind, payload):
        """Wrap and send to every open subscriber. Returns the number reached."""
        return self.send_event(make_event(kind, payload))

    def send_event(self, event):
        message = json.dumps(event)
        with self._lock:
            targets = list(self._subscribers)
        sent = 0
        for sub in targets:
            if self._send(sub, message):
                sent += 1
        return sent

    def send_to(self, sub, kind, payload):
        """Reply to a single subscriber (not broadcast)."""
        return self._send(sub, json.dumps(make_event(kind, payload)))

    def _send(self, sub, message):
        if not _is_open(sub):
            return False
        try:
            sub.send(message)
            return True
        except Exception as e:
            print(f"[hub] Send failed, skipping client: {e}")
            return False

    # ── Channel pump ──

    def start(self, channel):
        """Drain `channel` on a daemon thread until stop()."""
        if self._pump and self._pump.is_alive():
            return
        self._channel = channel
        self._pump = threading.Thread(target=self._run, args=(channel,), name='hub-pump', daemon=True)
        self._pump.start()

    def stop(self, timeout=1.0):
        if self._channel is not None:
            self._channel.close()
        if self._pump is not None:
            self._pump.join(timeout)
        self._pump = None
        self._channel = None

    def _run(self, channel):
        while True:
            event = channel.get()
            if event is None:
                return
            self.send_event(event)
