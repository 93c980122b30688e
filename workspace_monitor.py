"""Workspace reconciliation: follow the folder the IDE has open.

Polls the path inferencer every few seconds. A failed poll never reverts the
current path; only a distinct detection changes it and emits
workspace_changed.
"""
import ntpath
import sys
import threading

from cdp_transport import ts_print

print = ts_print

POLL_INTERVAL = 5.0  # seconds


def _case_insensitive_fs():
    return sys.platform in ('win32', 'darwin')


def normalize_path(path):
    return path.replace('\\\\', '\\')


def paths_equal(a, b, case_insensitive=None):
    if a is None or b is None:
        return a is b
    if case_insensitive is None:
        case_insensitive = _case_insensitive_fs()
    if case_insensitive:
        return a.lower() == b.lower()
    return a == b


def project_name(path):
    # ntpath splits on both separators, so Windows and POSIX paths work.
    return ntpath.basename(path.rstrip('\\/')) or path


class WorkspaceMonitor:
    """Owns WorkspaceState: current_path, last_known_good, failures."""

    def __init__(self, detect, emit, initial_path=None, interval=POLL_INTERVAL, case_insensitive=None):
        self._detect = detect
        self._emit = emit
        self.interval = interval
        self.case_insensitive = case_insensitive
        self.current_path = initial_path
        self.last_known_good = None
        self.failures = 0
        self._poll_lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._stop = threading.Event()
        self._ticker = None

    @property
    def active(self):
        return self._ticker is not None and self._ticker.is_alive()

    def set_path(self, path):
        """Manual override (e.g. from the client); the next differing detection wins again."""
        self.current_path = path

    def poll_once(self):
        """Run one reconciliation cycle. Returns True if the workspace changed.

        Skipped (returns False) while another cycle is still running.
        """
        if not self._poll_lock.acquire(blocking=False):
            print("[workspace] Previous poll still running, skipping")
            return False
        try:
            return self._reconcile()
        finally:
            self._poll_lock.release()

    def _reconcile(self):
        try:
            detected = self._detect()
        except Exception as e:
            self._record_failure(f"error: {e}")
            return False
        if not detected:
            self._record_failure("no path detected")
            return False

        self.failures = 0
        detected = normalize_path(detected)
        self.last_known_good = detected
        if paths_equal(detected, self.current_path, self.case_insensitive):
            return False
        old = self.current_path
        self.current_path = detected
        print(f"[workspace] Changed: {old} -> {detected}")
        self._emit('workspace_changed', {'path': detected, 'projectName': project_name(detected)})
        return True

    def _record_failure(self, reason):
        self.failures += 1
        if self.failures <= 3 or self.failures % 10 == 0:
            print(f"[workspace] Poll failed: {reason} ({self.failures} consecutive)")

    # ── Ticker ──

    def start(self):
        """Poll immediately, then every `interval` seconds. No-op when already active."""
        with self._start_lock:
            if self.active:
                return False
            self._stop.clear()
            self.poll_once()
            self._ticker = threading.Thread(target=self._run, name='workspace-ticker', daemon=True)
            self._ticker.start()
        print(f"[workspace] Polling every {self.interval}s")
        return True

    def stop(self):
        self._stop.set()
        ticker, self._ticker = self._ticker, None
        if ticker is not None and ticker is not threading.current_thread():
            ticker.join(timeout=1.0)

    def _run(self):
        while not self._stop.wait(self.interval):
            if self._poll_lock.locked():
                print("[workspace] Previous poll still running, skipping")
                continue
            threading.Thread(target=self.poll_once, name='workspace-poll', daemon=True).start()
