"""
Antigravity Mobile Bridge: your Antigravity IDE, on your phone.

Connects to the IDE via Chrome DevTools Protocol (CDP) and exposes the
operations a mobile client needs: read and switch model/mode, follow the
open workspace, approve pending steps, inject commands and take screenshots.
Change events are pushed to every connected client.

Usage: python mobile_bridge.py [--status]
"""

import sys, io
if sys.platform == 'win32' and hasattr(sys.stdout, 'buffer'):
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

# Standard library
import json
import os
import time
from pathlib import Path

# Third-party
from dotenv import load_dotenv
from watchdog.observers import Observer

# Sibling modules
import ide_actions
from broadcast_hub import BroadcastHub, EventChannel
from cdp_targets import DEFAULT_PORT, base_url_for, detect_cdp_port, is_available
from cdp_transport import CdpError, ts_print
from file_watcher import FileWatcher
from ide_scraper import IdeScraper, InvalidRequest
from message_log import MessageLog
from workspace_monitor import WorkspaceMonitor, project_name

print = ts_print

BASE_DIR = Path(__file__).parent


# ── Config ───────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Malformed configuration; the process cannot start."""


def _positive_number(env, key, default):
    raw = (env.get(key) or '').strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value


def load_config(env=None):
    """Read settings from `env` (default: .env next to this file, then os.environ)."""
    if env is None:
        load_dotenv(BASE_DIR / '.env')
        env = os.environ

    port = (env.get('CDP_PORT') or str(DEFAULT_PORT)).strip()
    if port.lower() != 'auto':
        try:
            port = int(port)
        except ValueError:
            raise ConfigError(f"CDP_PORT must be a port number or 'auto', got {port!r}")
        if not 0 < port < 65536:
            raise ConfigError(f"CDP_PORT out of range: {port}")
    else:
        port = 'auto'

    data_dir = (env.get('BRIDGE_DATA_DIR') or '').strip()
    return {
        'host': (env.get('CDP_HOST') or 'localhost').strip(),
        'port': port,
        'product': (env.get('IDE_PRODUCT_NAME') or 'Antigravity').strip(),
        'secondary': (env.get('IDE_SECONDARY_MARKER') or 'Launchpad').strip(),
        'process_name': (env.get('IDE_PROCESS_NAME') or 'antigravity').strip(),
        'data_dir': Path(data_dir) if data_dir else BASE_DIR / 'data',
        'workspace': (env.get('WORKSPACE_PATH') or '').strip() or str(BASE_DIR.resolve().parent),
        'poll_interval': _positive_number(env, 'WORKSPACE_POLL_INTERVAL', 5.0),
        'debounce': _positive_number(env, 'WATCH_DEBOUNCE_MS', 300.0) / 1000.0,
    }


def _require(value, what):
    if not isinstance(value, str):
        raise InvalidRequest(f"{what} must be a string")
    if not value.strip():
        raise InvalidRequest(f"{what} required")
    return value


# ── Bridge ───────────────────────────────────────────────────────────────────

class MobileBridge:
    """Wires the CDP extractors, monitors and the broadcast hub together.

    Every operation returns a plain dict. IDE failures come back as
    {'success': False, 'error': ...}; malformed input raises InvalidRequest
    before anything is sent to the IDE.
    """

    def __init__(self, config, chat_stream=None, quota=None, scraper=None,
                 observer_factory=Observer):
        self.config = config
        port = config['port']
        if port == 'auto':
            port = detect_cdp_port(config['host'], config['process_name'])
        self.base_url = base_url_for(config['host'], port)

        self.channel = EventChannel()
        self.hub = BroadcastHub()
        self.scraper = scraper or IdeScraper(self.base_url, config['product'], config['secondary'])
        self.monitor = WorkspaceMonitor(self.scraper.infer_workspace_path, self.channel.emit,
                                        initial_path=config.get('workspace'),
                                        interval=config['poll_interval'])
        self.watcher = FileWatcher(self.channel.emit, debounce=config['debounce'],
                                   observer_factory=observer_factory)
        self.log = MessageLog(Path(config['data_dir']) / 'messages.json', self.channel.emit)
        self.chat_stream = chat_stream
        self.quota_service = quota

    # ── Lifecycle ──

    def start(self):
        print(f"[bridge] CDP endpoint: {self.base_url}")
        self.hub.start(self.channel)
        self.monitor.start()

    def stop(self):
        self.monitor.stop()
        self.watcher.unwatch()
        if self._streaming():
            self.stop_chat_stream()
        self.hub.stop()
        print("[bridge] Stopped")

    # ── IDE ──

    def _target(self):
        target = self.scraper.resolve_target()
        if target is None:
            print("[bridge] No editor target")
        return target

    def status(self):
        reachable = is_available(self.base_url).get('available')
        target = self.scraper.resolve_target() if reachable else None
        return {
            'available': target is not None,
            'endpoint': self.base_url,
            'target': {'id': target['id'], 'title': target['title']} if target else None,
            'workspace': self.monitor.current_path,
            'watching': self.watcher.watched_path,
            'clients': len(self.hub),
            'streaming': self._streaming(),
        }

    def inject(self, text, submit=True):
        _require(text, 'Text')
        target = self._target()
        if target is None:
            return {'success': False, 'error': 'No editor target'}
        try:
            if submit:
                result = ide_actions.inject_and_submit(target, text)
            else:
                result = ide_actions.inject_command(target, text)
        except CdpError as e:
            print(f"[bridge] Inject failed: {e}")
            return {'success': False, 'error': str(e)}
        self.log.log_command(text, submitted=submit)
        self.channel.emit('mobile_command', {'text': text, 'submitted': bool(submit)})
        return result

    def screenshot(self, fmt='png', quality=80):
        target = self._target()
        if target is None:
            return {'success': False, 'error': 'No editor target'}
        try:
            shot = ide_actions.capture_screenshot(target, fmt, quality)
        except CdpError as e:
            print(f"[bridge] Screenshot failed: {e}")
            return {'success': False, 'error': str(e)}
        return dict(shot, success=True)

    def focus(self):
        target = self._target()
        if target is None:
            return {'success': False, 'error': 'No editor target'}
        try:
            return dict(ide_actions.focus_input(target), success=True)
        except CdpError as e:
            return {'success': False, 'error': str(e)}

    def models(self):
        return self.scraper.available_models()

    def modes(self):
        return self.scraper.available_modes()

    def set_model(self, name):
        _require(name, 'Model name')
        result = self.scraper.set_model(name)
        if result.get('success'):
            self.channel.emit('model_changed', {'model': result.get('selected')})
        return result

    def set_mode(self, name):
        _require(name, 'Mode name')
        result = self.scraper.set_mode(name)
        if result.get('success'):
            self.channel.emit('mode_changed', {'mode': result.get('selected')})
        return result

    def approvals(self):
        return self.scraper.get_pending_approvals()

    def respond_approval(self, action):
        if action not in ('approve', 'reject'):
            raise InvalidRequest('Action must be "approve" or "reject"')
        result = self.scraper.respond_to_approval(action)
        if result.get('success'):
            self.channel.emit('approval_responded', {'action': result.get('action')})
        return result

    # ── Workspace & files ──

    def workspace(self):
        path = self.monitor.current_path
        return {
            'workspace': path,
            'projectName': project_name(path) if path else None,
            'lastKnownGood': self.monitor.last_known_good,
            'failures': self.monitor.failures,
            'polling': self.monitor.active,
        }

    def set_workspace(self, path):
        _require(path, 'Path')
        if not os.path.exists(path):
            raise InvalidRequest(f"Invalid path: {path}")
        self.monitor.set_path(path)
        self.channel.emit('workspace_changed', {'path': path, 'projectName': project_name(path)})
        return {'success': True, 'workspace': path}

    def watch(self, path):
        _require(path, 'Path')
        ok = self.watcher.watch(path)
        return {'success': ok, 'path': path} if ok else {'success': False, 'error': f'Cannot watch {path}'}

    def unwatch(self):
        self.watcher.unwatch()
        return {'success': True}

    # ── Chat stream & quota (external collaborators) ──

    def _streaming(self):
        if self.chat_stream is None:
            return False
        try:
            return bool(self.chat_stream.is_streaming())
        except Exception as e:
            print(f"[bridge] Chat stream status failed: {e}")
            return False

    def chat_snapshot(self):
        if self.chat_stream is None:
            return {'success': False, 'error': 'Chat stream not available'}
        try:
            snapshot = self.chat_stream.get_chat_snapshot()
        except Exception as e:
            print(f"[bridge] Chat snapshot failed: {e}")
            return {'success': False, 'error': str(e)}
        if snapshot is None:
            return {'success': False, 'error': 'No chat found'}
        return dict(snapshot, success=True)

    def start_chat_stream(self, interval_ms=2000):
        if self.chat_stream is None:
            return {'success': False, 'error': 'Chat stream not available'}

        def on_update(chat):
            self.channel.emit('chat_update', chat)

        try:
            return self.chat_stream.start_chat_stream(on_update, interval_ms)
        except Exception as e:
            print(f"[bridge] Chat stream start failed: {e}")
            return {'success': False, 'error': str(e)}

    def stop_chat_stream(self):
        if self.chat_stream is None:
            return {'success': False, 'error': 'Chat stream not available'}
        try:
            self.chat_stream.stop_chat_stream()
        except Exception as e:
            print(f"[bridge] Chat stream stop failed: {e}")
            return {'success': False, 'error': str(e)}
        return {'success': True}

    def chat_status(self):
        return {'streaming': self._streaming()}

    def quota(self):
        if self.quota_service is None:
            return {'available': False, 'models': []}
        try:
            return self.quota_service.get_quota()
        except Exception as e:
            print(f"[bridge] Quota failed: {e}")
            return {'available': False, 'models': [], 'error': str(e)}

    def quota_status(self):
        if self.quota_service is None:
            return {'available': False}
        try:
            return self.quota_service.is_available()
        except Exception as e:
            return {'available': False, 'error': str(e)}

    # ── Messages ──

    def add_message(self, type=None, content=None, context_summary=None):
        for value, what in ((type, 'Type'), (content, 'Content'), (context_summary, 'Context summary')):
            if value is not None and not isinstance(value, str):
                raise InvalidRequest(f"{what} must be a string")
        return {'success': True, 'message': self.log.add(type, content, context_summary)}

    def messages(self, limit=100):
        return self.log.recent(limit)

    def clear_messages(self):
        self.log.clear()
        return {'success': True}

    def send_to_inbox(self, text):
        _require(text, 'Message')
        return {'success': True, 'count': self.log.add_to_inbox(text)}

    def read_inbox(self):
        return self.log.read_inbox()

    # ── Clients ──

    def connect(self, sub):
        self.hub.subscribe(sub, history=self.log.history())

    def disconnect(self, sub):
        self.hub.unsubscribe(sub)

    def handle_client_message(self, sub, raw):
        """Handle {'action': 'inject' | 'screenshot', ...} from one client; reply to it only."""
        try:
            msg = json.loads(raw)
            if not isinstance(msg, dict):
                raise InvalidRequest('Message must be a JSON object')
            action = msg.get('action')
            if action == 'inject':
                result = self.inject(msg.get('text'), submit=msg.get('submit', True))
                return self.hub.send_to(sub, 'inject_result', result)
            if action == 'screenshot':
                shot = self.screenshot()
                if not shot.get('success'):
                    return self.hub.send_to(sub, 'error', {'message': shot.get('error')})
                return self.hub.send_to(sub, 'screenshot', {'image': shot['data'], 'format': shot['format'],
                                                            'width': shot['width'], 'height': shot['height']})
            raise InvalidRequest(f"Unknown action: {action}")
        except (ValueError, CdpError) as e:
            # InvalidRequest and json.JSONDecodeError are both ValueErrors
            return self.hub.send_to(sub, 'error', {'message': str(e)})


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    try:
        config = load_config()
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    bridge = MobileBridge(config)
    if '--status' in argv:
        print(json.dumps(bridge.status(), indent=2))
        return

    bridge.start()
    print("[bridge] Running. Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n[bridge] Shutting down...")
    finally:
        bridge.stop()


if __name__ == '__main__':
    main()
