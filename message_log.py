"""Message history and the mobile inbox.

Messages (agent broadcasts, commands sent from the phone) are kept on disk
so a reconnecting client gets its history back. The inbox holds messages
typed on the phone until the agent side reads them.
"""
import json
import threading
from datetime import datetime, timezone
from pathlib import Path

from cdp_transport import ts_print

print = ts_print

MESSAGES_MAX = 500
HISTORY_SIZE = 50


def _now():
    return datetime.now(timezone.utc).isoformat()


class MessageLog:
    def __init__(self, path, emit):
        self.path = Path(path)
        self._emit = emit
        self._lock = threading.Lock()
        self.messages = self._load()
        self.inbox = []

    def _load(self):
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            print(f"[messages] Could not read {self.path.name}, starting empty: {e}")
            return []
        return data if isinstance(data, list) else []

    def _save(self):
        """Persist, pruning to the most recent entries. Caller holds the lock."""
        if len(self.messages) > MESSAGES_MAX:
            self.messages = self.messages[-MESSAGES_MAX:]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self.messages, indent=2), encoding='utf-8')
        except OSError as e:
            print(f"[messages] Save failed: {e}")

    def add(self, type=None, content=None, context_summary=None, timestamp=None):
        msg = {
            'type': str(type or 'agent'),
            'content': '' if content is None else str(content),
            'context_summary': context_summary,
            'timestamp': timestamp or _now(),
        }
        with self._lock:
            self.messages.append(msg)
            self._save()
        print(f"[messages] [{msg['type']}] {msg['content'][:60]}")
        self._emit('message', msg)
        return msg

    def log_command(self, text, submitted=False):
        """Record a command sent from the phone (no broadcast; the caller emits mobile_command)."""
        entry = {'type': 'mobile_command', 'content': text, 'submitted': bool(submitted), 'timestamp': _now()}
        with self._lock:
            self.messages.append(entry)
            self._save()
        return entry

    def recent(self, limit=100):
        if not isinstance(limit, int) or limit <= 0:
            limit = 100
        with self._lock:
            return {'messages': self.messages[-limit:], 'count': len(self.messages)}

    def history(self):
        with self._lock:
            return {'messages': self.messages[-HISTORY_SIZE:]}

    def clear(self):
        with self._lock:
            self.messages = []
            self._save()
        self._emit('messages_cleared', {})

    def add_to_inbox(self, text):
        text = str(text)
        with self._lock:
            self.inbox.append({'content': text, 'from': 'mobile', 'timestamp': _now()})
            count = len(self.inbox)
        print(f"[messages] Inbox: {text[:50]}")
        self._emit('inbox_updated', {'count': count})
        return count

    def read_inbox(self):
        """Return and clear the inbox."""
        with self._lock:
            items, self.inbox = self.inbox, []
        return {'messages': items, 'count': len(items)}
