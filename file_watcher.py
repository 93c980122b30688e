"""Debounced change notifications for the folder the client is browsing.

One folder at a time. Bursts of raw filesystem events (an editor saving
writes, renames and touches several files) collapse into a single
file_changed once things have been quiet for the debounce window.
"""
import os
import threading
from datetime import datetime, timezone

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from cdp_transport import ts_print

print = ts_print

DEBOUNCE = 0.3  # seconds

# Access-only notifications (inotify reports these); nothing changed on disk.
_IGNORED_EVENTS = {'opened', 'closed_no_write'}


class _RawEventHandler(FileSystemEventHandler):
    def __init__(self, on_raw_event):
        super().__init__()
        self._on_raw_event = on_raw_event

    def on_any_event(self, event):
        if event.event_type in _IGNORED_EVENTS:
            return
        path = event.src_path
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        self._on_raw_event(event.event_type, os.path.basename(path))


class FileWatcher:
    def __init__(self, emit, debounce=DEBOUNCE, observer_factory=Observer):
        self._emit = emit
        self.debounce = debounce
        self._observer_factory = observer_factory
        self._lock = threading.Lock()
        self._observer = None
        self._timer = None
        self._generation = 0
        self.watched_path = None

    def watch(self, path):
        """Watch `path` (non-recursive), replacing any previous watch. Returns True on success."""
        self.unwatch()
        if not path or not os.path.isdir(path):
            print(f"[watch] Not a directory, not watching: {path}")
            return False
        observer = self._observer_factory()
        try:
            observer.schedule(_RawEventHandler(self._on_raw_event), path, recursive=False)
            observer.start()
        except OSError as e:
            print(f"[watch] Watch error: {e}")
            return False
        with self._lock:
            self._observer = observer
            self.watched_path = path
        print(f"[watch] Watching: {path}")
        return True

    def unwatch(self):
        with self._lock:
            observer, self._observer = self._observer, None
            timer, self._timer = self._timer, None
            path, self.watched_path = self.watched_path, None
            self._generation += 1
        if timer is not None:
            timer.cancel()
        if observer is not None:
            observer.stop()
            observer.join(timeout=1.0)
            print(f"[watch] Stopped watching: {path}")

    def _on_raw_event(self, event_type, filename):
        with self._lock:
            if self.watched_path is None:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = threading.Timer(self.debounce, self._fire,
                                    args=(self._generation, self.watched_path, event_type, filename))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _fire(self, generation, folder, event_type, filename):
        with self._lock:
            # A newer event or an unwatch() superseded this timer.
            if generation != self._generation:
                return
            self._timer = None
        self._emit('file_changed', {
            'type': event_type,
            'filename': filename,
            'folder': folder,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })
