"""Script evaluation across every execution context of a target.

The IDE renders its agent panel inside webviews, each with its own execution
context. Runtime.enable replays Runtime.executionContextCreated for all live
contexts, so after a short settle delay we know where to look.
"""
import time
from contextlib import contextmanager

from cdp_transport import (
    CdpError, RemoteScriptError, READ_TIMEOUT, open_connection, ts_print,
)

print = ts_print

SETTLE_DELAY = 0.5  # seconds to collect context-created notifications


def default_predicate(value):
    """Non-null, and `found` truthy when the result reports it."""
    if value is None:
        return False
    if isinstance(value, dict) and 'found' in value:
        return bool(value['found'])
    return True


class EvalSession:
    """One connection plus the contexts it discovered."""

    def __init__(self, conn, timeout=READ_TIMEOUT):
        self.conn = conn
        self.timeout = timeout
        self.contexts = []
        conn.on('Runtime.executionContextCreated', self._on_context)

    def _on_context(self, params):
        ctx = params.get('context') or {}
        if 'id' in ctx:
            self.contexts.append(ctx)

    def enable(self, settle=None):
        self.conn.call('Runtime.enable', timeout=self.timeout)
        time.sleep(SETTLE_DELAY if settle is None else settle)

    def evaluate(self, script, context_id=None, await_promise=False, timeout=None):
        """Evaluate and return the by-value result. Raises RemoteScriptError if the script threw."""
        params = {'expression': script, 'returnByValue': True}
        if context_id is not None:
            params['contextId'] = context_id
        if await_promise:
            params['awaitPromise'] = True
        result = self.conn.call('Runtime.evaluate', params, timeout=timeout or self.timeout)
        details = result.get('exceptionDetails')
        if details:
            exc = details.get('exception') or {}
            text = exc.get('description') or details.get('text') or 'script threw'
            raise RemoteScriptError(text.splitlines()[0])
        return (result.get('result') or {}).get('value')

    def each(self, script, await_promise=False, timeout=None):
        """Yield (context_id, value) per context in discovery order, skipping failures."""
        for ctx in list(self.contexts):
            try:
                value = self.evaluate(script, ctx['id'], await_promise, timeout)
            except CdpError as e:
                print(f"[runtime] Context {ctx['id']} skipped: {e}")
                continue
            yield ctx['id'], value

    def first(self, script, predicate=None, await_promise=False, timeout=None):
        """Return (context_id, value) for the first qualifying context, or (None, None)."""
        accept = predicate or default_predicate
        for ctx_id, value in self.each(script, await_promise, timeout):
            if accept(value):
                return ctx_id, value
        return None, None


@contextmanager
def context_session(target, timeout=READ_TIMEOUT, settle=None):
    """Open a connection to `target`, enable Runtime and yield an EvalSession."""
    conn = open_connection(target.get('ws_url'), label=(target.get('id') or '')[:8])
    try:
        session = EvalSession(conn, timeout)
        session.enable(settle)
        yield session
    finally:
        conn.close()


def evaluate_across_contexts(target, script, predicate=None, timeout=READ_TIMEOUT,
                             await_promise=False):
    """Evaluate `script` in each context of `target`; first qualifying value or None."""
    with context_session(target, timeout) as session:
        _, value = session.first(script, predicate, await_promise)
        return value
