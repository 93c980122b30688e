from unittest.mock import MagicMock

from conftest import wait_for
from workspace_monitor import WorkspaceMonitor, normalize_path, paths_equal, project_name


def make_monitor(results, **kw):
    detect = MagicMock(side_effect=list(results))
    emit = MagicMock()
    return WorkspaceMonitor(detect, emit, **kw), detect, emit


def test_failures_keep_path_then_one_change_is_emitted():
    monitor, _, emit = make_monitor([None, None, None, '/home/a/other'], initial_path='/home/a/demo')

    for _ in range(3):
        assert monitor.poll_once() is False
    assert monitor.current_path == '/home/a/demo'
    assert monitor.failures == 3
    emit.assert_not_called()

    assert monitor.poll_once() is True
    assert monitor.failures == 0
    assert monitor.current_path == '/home/a/other'
    assert monitor.last_known_good == '/home/a/other'
    emit.assert_called_once_with('workspace_changed', {'path': '/home/a/other', 'projectName': 'other'})


def test_last_known_good_survives_failures():
    monitor, _, _ = make_monitor(['/srv/app', None, None], initial_path='/srv/app')
    for _ in range(3):
        monitor.poll_once()
    assert monitor.last_known_good == '/srv/app'
    assert monitor.current_path == '/srv/app'
    assert monitor.failures == 2


def test_detector_exception_counts_as_failure():
    detect = MagicMock(side_effect=RuntimeError('boom'))
    monitor = WorkspaceMonitor(detect, MagicMock(), initial_path='/a')
    assert monitor.poll_once() is False
    assert monitor.failures == 1
    assert monitor.current_path == '/a'


def test_case_insensitive_comparison_and_backslash_collapse():
    monitor, _, emit = make_monitor(['C:\\\\Users\\\\A\\\\Demo'], initial_path='c:\\users\\a\\demo',
                                    case_insensitive=True)
    assert monitor.poll_once() is False
    emit.assert_not_called()
    assert monitor.last_known_good == 'C:\\Users\\A\\Demo'


def test_case_sensitive_comparison_emits():
    monitor, _, emit = make_monitor(['/home/a/Demo'], initial_path='/home/a/demo', case_insensitive=False)
    assert monitor.poll_once() is True
    emit.assert_called_once()


def test_busy_poll_is_skipped():
    monitor, detect, _ = make_monitor(['/x'])
    monitor._poll_lock.acquire()
    try:
        assert monitor.poll_once() is False
    finally:
        monitor._poll_lock.release()
    detect.assert_not_called()


def test_start_twice_runs_one_ticker():
    detect = MagicMock(return_value=None)
    monitor = WorkspaceMonitor(detect, MagicMock(), interval=60)
    try:
        assert monitor.start() is True
        ticker = monitor._ticker
        assert monitor.start() is False
        assert monitor._ticker is ticker
        assert monitor.active
        assert detect.call_count == 1
    finally:
        monitor.stop()
    assert wait_for(lambda: not ticker.is_alive())
    assert not monitor.active


def test_ticker_polls_on_interval():
    detect = MagicMock(return_value='/tmp/proj')
    emit = MagicMock()
    monitor = WorkspaceMonitor(detect, emit, interval=0.02)
    monitor.start()
    try:
        assert wait_for(lambda: detect.call_count >= 3)
    finally:
        monitor.stop()
    emit.assert_called_once_with('workspace_changed', {'path': '/tmp/proj', 'projectName': 'proj'})


def test_helpers():
    assert normalize_path('C:\\\\a\\\\b') == 'C:\\a\\b'
    assert paths_equal('/A', '/a', case_insensitive=True)
    assert not paths_equal('/A', '/a', case_insensitive=False)
    assert not paths_equal(None, '/a')
    assert project_name('C:\\Users\\a\\Demo\\') == 'Demo'
    assert project_name('/home/a/demo') == 'demo'
