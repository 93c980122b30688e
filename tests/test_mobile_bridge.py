import json
from unittest.mock import MagicMock, patch

import pytest

from cdp_transport import TransportError
from conftest import FakeSubscriber
from ide_scraper import InvalidRequest
from mobile_bridge import ConfigError, MobileBridge, load_config

TARGET = {'id': 'A1B2C3D4', 'title': 'Demo - Antigravity', 'ws_url': 'ws://x'}


@pytest.fixture
def bridge(tmp_path):
    config = load_config({'BRIDGE_DATA_DIR': str(tmp_path / 'data'), 'WORKSPACE_PATH': str(tmp_path)})
    scraper = MagicMock()
    scraper.resolve_target.return_value = TARGET
    return MobileBridge(config, scraper=scraper, observer_factory=MagicMock)


def events(bridge):
    return [(e['event'], e['data']) for e in bridge.channel.drain()]


# ── Config ──

def test_load_config_defaults():
    config = load_config({})
    assert config['host'] == 'localhost'
    assert config['port'] == 9222
    assert config['product'] == 'Antigravity'
    assert config['secondary'] == 'Launchpad'
    assert config['poll_interval'] == 5.0
    assert config['debounce'] == 0.3


def test_load_config_auto_port():
    assert load_config({'CDP_PORT': 'auto'})['port'] == 'auto'


@pytest.mark.parametrize('env', [
    {'CDP_PORT': 'ninety'},
    {'CDP_PORT': '70000'},
    {'WORKSPACE_POLL_INTERVAL': 'soon'},
    {'WATCH_DEBOUNCE_MS': '0'},
    {'WATCH_DEBOUNCE_MS': '-5'},
])
def test_load_config_rejects_malformed_values(env):
    with pytest.raises(ConfigError):
        load_config(env)


# ── Input validation ──

@pytest.mark.parametrize('text', ['', '   ', None])
def test_inject_rejects_empty_text_before_remote_call(bridge, text):
    with pytest.raises(InvalidRequest):
        bridge.inject(text)
    bridge.scraper.resolve_target.assert_not_called()


def test_respond_approval_rejects_unknown_action(bridge):
    with pytest.raises(InvalidRequest):
        bridge.respond_approval('later')
    bridge.scraper.respond_to_approval.assert_not_called()


def test_set_model_rejects_empty_name(bridge):
    with pytest.raises(InvalidRequest):
        bridge.set_model('')
    bridge.scraper.set_model.assert_not_called()


def test_set_workspace_rejects_missing_path(bridge, tmp_path):
    with pytest.raises(InvalidRequest):
        bridge.set_workspace(str(tmp_path / 'nope'))


# ── Operations ──

def test_inject_logs_and_emits(bridge):
    with patch('mobile_bridge.ide_actions.inject_and_submit',
               return_value={'success': True, 'submitted': 'run tests'}) as submit:
        result = bridge.inject('run tests')
    submit.assert_called_once_with(TARGET, 'run tests')
    assert result['success'] is True
    assert ('mobile_command', {'text': 'run tests', 'submitted': True}) in events(bridge)
    assert bridge.log.recent()['messages'][-1]['content'] == 'run tests'


def test_inject_without_target(bridge):
    bridge.scraper.resolve_target.return_value = None
    assert bridge.inject('hello') == {'success': False, 'error': 'No editor target'}


def test_inject_absorbs_transport_failure(bridge):
    with patch('mobile_bridge.ide_actions.inject_command', side_effect=TransportError('connection lost')):
        result = bridge.inject('hello', submit=False)
    assert result == {'success': False, 'error': 'connection lost'}
    assert events(bridge) == []


def test_set_model_emits_on_success(bridge):
    bridge.scraper.set_model.return_value = {'success': True, 'selected': 'Gemini 3 Flash', 'match': 'exact'}
    bridge.set_model('Gemini 3 Flash')
    assert events(bridge) == [('model_changed', {'model': 'Gemini 3 Flash'})]


def test_set_mode_failure_does_not_emit(bridge):
    bridge.scraper.set_mode.return_value = {'success': False, 'error': 'Mode option not found'}
    assert bridge.set_mode('Turbo')['success'] is False
    assert events(bridge) == []


def test_respond_approval_emits(bridge):
    bridge.scraper.respond_to_approval.return_value = {'success': True, 'action': 'approved'}
    bridge.respond_approval('approve')
    assert events(bridge) == [('approval_responded', {'action': 'approved'})]


def test_set_workspace_emits(bridge, tmp_path):
    project = tmp_path / 'demo'
    project.mkdir()
    assert bridge.set_workspace(str(project)) == {'success': True, 'workspace': str(project)}
    assert bridge.workspace()['projectName'] == 'demo'
    assert events(bridge) == [('workspace_changed', {'path': str(project), 'projectName': 'demo'})]


def test_watch_and_unwatch(bridge, tmp_path):
    assert bridge.watch(str(tmp_path))['success'] is True
    assert bridge.watcher.watched_path == str(tmp_path)
    assert bridge.unwatch() == {'success': True}
    assert bridge.watcher.watched_path is None


def test_collaborators_absent(bridge):
    assert bridge.chat_snapshot()['success'] is False
    assert bridge.start_chat_stream()['success'] is False
    assert bridge.chat_status() == {'streaming': False}
    assert bridge.quota() == {'available': False, 'models': []}
    assert bridge.quota_status() == {'available': False}


def test_chat_stream_updates_are_forwarded(bridge):
    chat = MagicMock()

    def start(on_update, interval_ms):
        on_update({'messages': ['hi'], 'interval': interval_ms})
        return {'success': True}

    chat.start_chat_stream.side_effect = start
    bridge.chat_stream = chat
    assert bridge.start_chat_stream(500) == {'success': True}
    assert events(bridge) == [('chat_update', {'messages': ['hi'], 'interval': 500})]


def test_quota_failure_is_absorbed(bridge):
    bridge.quota_service = MagicMock()
    bridge.quota_service.get_quota.side_effect = RuntimeError('language server gone')
    assert bridge.quota()['available'] is False


# ── Clients ──

def test_connect_sends_history(bridge):
    bridge.log.add('agent', 'done')
    bridge.channel.drain()
    sub = FakeSubscriber()
    bridge.connect(sub)
    assert sub.sent[0]['event'] == 'history'
    assert sub.sent[0]['data']['messages'][0]['content'] == 'done'
    bridge.disconnect(sub)
    assert len(bridge.hub) == 0


def test_client_message_bad_json(bridge):
    sub = FakeSubscriber()
    bridge.handle_client_message(sub, '{oops')
    assert sub.sent[0]['event'] == 'error'


def test_client_message_unknown_action(bridge):
    sub = FakeSubscriber()
    bridge.handle_client_message(sub, json.dumps({'action': 'dance'}))
    assert sub.sent[0]['event'] == 'error'
    assert 'dance' in sub.sent[0]['data']['message']


def test_client_message_empty_inject_is_an_error_reply(bridge):
    sub = FakeSubscriber()
    bridge.handle_client_message(sub, json.dumps({'action': 'inject', 'text': ''}))
    assert sub.sent[0]['event'] == 'error'
    bridge.scraper.resolve_target.assert_not_called()


def test_client_message_inject(bridge):
    sub = FakeSubscriber()
    with patch('mobile_bridge.ide_actions.inject_and_submit',
               return_value={'success': True, 'submitted': 'go'}):
        bridge.handle_client_message(sub, json.dumps({'action': 'inject', 'text': 'go'}))
    assert sub.sent == [dict(sub.sent[0], event='inject_result', data={'success': True, 'submitted': 'go'})]


def test_client_message_screenshot(bridge):
    sub = FakeSubscriber()
    shot = {'format': 'png', 'data': 'aGk=', 'width': 10, 'height': 5}
    with patch('mobile_bridge.ide_actions.capture_screenshot', return_value=shot):
        bridge.handle_client_message(sub, json.dumps({'action': 'screenshot'}))
    assert sub.sent[0]['event'] == 'screenshot'
    assert sub.sent[0]['data'] == {'image': 'aGk=', 'format': 'png', 'width': 10, 'height': 5}


def test_status(bridge):
    with patch('mobile_bridge.is_available', return_value={'available': True}):
        status = bridge.status()
    assert status['available'] is True
    assert status['target'] == {'id': 'A1B2C3D4', 'title': 'Demo - Antigravity'}
    assert status['clients'] == 0


@pytest.mark.parametrize('text', [123, ['x'], {'a': 1}, True])
def test_client_message_non_string_inject_is_an_error_reply(bridge, text):
    sub = FakeSubscriber()
    with patch('mobile_bridge.ide_actions.open_connection') as open_conn:
        bridge.handle_client_message(sub, json.dumps({'action': 'inject', 'text': text, 'submit': False}))
    assert [m['event'] for m in sub.sent] == ['error']
    assert 'string' in sub.sent[0]['data']['message']
    open_conn.assert_not_called()
    bridge.scraper.resolve_target.assert_not_called()


def test_non_string_inputs_rejected(bridge):
    with pytest.raises(InvalidRequest):
        bridge.send_to_inbox(42)
    with pytest.raises(InvalidRequest):
        bridge.set_model(3)
    with pytest.raises(InvalidRequest):
        bridge.add_message('agent', {'text': 'hi'})
    assert bridge.log.recent()['count'] == 0
    assert bridge.read_inbox()['count'] == 0
