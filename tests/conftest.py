import json
import queue
import sys
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


class FakeWs:
    """Stands in for a websocket-client connection.

    Frames pushed with push() are returned by recv() in order; responder(msg)
    may return reply frames for each sent command.
    """

    def __init__(self, responder=None):
        self.sent = []
        self.responder = responder
        self.closed = False
        self._inbox = queue.Queue()

    def send(self, text):
        msg = json.loads(text)
        self.sent.append(msg)
        if self.responder is not None:
            for reply in self.responder(msg) or ():
                self.push(reply)

    def recv(self):
        item = self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    def push(self, frame):
        self._inbox.put(json.dumps(frame))

    def drop(self):
        self._inbox.put(ConnectionResetError('connection reset'))

    def close(self):
        self.closed = True
        self._inbox.put('')


class FakeSubscriber:
    def __init__(self, connected=True, fail=False):
        self.connected = connected
        self.fail = fail
        self.sent = []

    def send(self, text):
        if self.fail:
            raise OSError('broken pipe')
        self.sent.append(json.loads(text))


def wait_for(condition, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


@pytest.fixture
def fake_ws():
    return FakeWs()
