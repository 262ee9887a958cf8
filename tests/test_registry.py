"""Tests for forward.registry — session lifecycle driven by listen events."""

import asyncio

import pytest

from conftest import FakeTransport, ScriptedQuery, make_stream_pair, read_all, wait_until
from devcontainer_portforward.exceptions import ListenQueryError, TransportError
from devcontainer_portforward.forward.registry import ForwardRegistry, run_agent
from devcontainer_portforward.forward.session import ForwardSession
from devcontainer_portforward.models.enums import SessionState
from devcontainer_portforward.models.listen import Endpoint, ListenEvent

WEB = Endpoint("0.0.0.0", 8080)
WEB_V6 = Endpoint("::", 8080)
DB = Endpoint("127.0.0.1", 5432)


class RecordingSession:
    """Session stand-in that runs until cancelled, or fails on request."""

    def __init__(self, recorder, transport, port):
        self.recorder = recorder
        self.port = port

    async def run(self):
        self.recorder.started.append(self.port)
        if self.port in self.recorder.fail_ports:
            raise TransportError(f"cannot listen on {self.port}")
        try:
            await asyncio.Event().wait()
        finally:
            self.recorder.stopped.append(self.port)


class Recorder:
    def __init__(self, fail_ports=()):
        self.started: list[int] = []
        self.stopped: list[int] = []
        self.fail_ports = set(fail_ports)

    def factory(self, transport, port):
        return RecordingSession(self, transport, port)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def registry(transport, recorder):
    return ForwardRegistry(transport, session_factory=recorder.factory)


class TestHandleEvent:
    """Test add/remove handling."""

    @pytest.mark.asyncio
    async def test_added_starts_session(self, registry, recorder):
        registry.handle_event(ListenEvent.added(WEB))
        assert 8080 in registry
        await wait_until(lambda: recorder.started == [8080])
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_duplicate_add_is_noop(self, registry, recorder):
        registry.handle_event(ListenEvent.added(WEB))
        handle = registry.get(8080)
        registry.handle_event(ListenEvent.added(WEB))
        registry.handle_event(ListenEvent.added(WEB_V6))

        await asyncio.sleep(0.05)
        assert recorder.started == [8080]
        assert registry.get(8080) is handle
        assert len(registry) == 1
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_remove_unknown_is_noop(self, registry, recorder):
        registry.handle_event(ListenEvent.removed(DB))
        assert len(registry) == 0
        assert recorder.started == []

    @pytest.mark.asyncio
    async def test_remove_cancels_session_without_waiting(self, registry, recorder):
        registry.handle_event(ListenEvent.added(WEB))
        handle = registry.get(8080)
        await wait_until(lambda: recorder.started == [8080])

        registry.handle_event(ListenEvent.removed(WEB))
        assert 8080 not in registry
        assert not handle.done()

        await wait_until(handle.done)
        assert recorder.stopped == [8080]

    @pytest.mark.asyncio
    async def test_remove_does_not_affect_siblings(self, registry, recorder):
        registry.handle_event(ListenEvent.added(WEB))
        registry.handle_event(ListenEvent.added(DB))
        await wait_until(lambda: len(recorder.started) == 2)

        registry.handle_event(ListenEvent.removed(WEB))
        await wait_until(lambda: recorder.stopped == [8080])

        assert registry.ports == [5432]
        assert not registry.get(5432).done()
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_remove_then_add_starts_new_session(self, registry, recorder):
        registry.handle_event(ListenEvent.added(WEB))
        first = registry.get(8080)
        await wait_until(lambda: recorder.started == [8080])
        registry.handle_event(ListenEvent.removed(WEB))
        registry.handle_event(ListenEvent.added(WEB))
        second = registry.get(8080)

        assert second is not first
        await wait_until(lambda: recorder.started == [8080, 8080])
        await wait_until(first.done)
        # The old session finishing must not drop the new entry
        assert registry.get(8080) is second
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_failed_session_removed_siblings_unaffected(self, transport):
        recorder = Recorder(fail_ports={8080})
        registry = ForwardRegistry(transport, session_factory=recorder.factory)

        registry.handle_event(ListenEvent.added(WEB))
        registry.handle_event(ListenEvent.added(DB))
        await wait_until(lambda: 8080 not in registry)

        assert sorted(recorder.started) == [5432, 8080]
        assert registry.ports == [5432]
        await registry.shutdown()


class TestShutdown:
    """Test that no session outlives the registry."""

    @pytest.mark.asyncio
    async def test_shutdown_stops_every_session(self, registry, recorder):
        for port in (1000, 2000, 3000):
            registry.handle_event(ListenEvent.added(Endpoint("0.0.0.0", port)))
        handles = [registry.get(p) for p in (1000, 2000, 3000)]
        await wait_until(lambda: len(recorder.started) == 3)

        await registry.shutdown()

        assert len(registry) == 0
        assert all(h.done() for h in handles)
        assert sorted(recorder.stopped) == [1000, 2000, 3000]

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_removed_sessions(self, registry, recorder):
        registry.handle_event(ListenEvent.added(WEB))
        handle = registry.get(8080)
        await wait_until(lambda: recorder.started == [8080])
        registry.handle_event(ListenEvent.removed(WEB))

        await registry.shutdown()
        assert handle.done()


class TestRun:
    """Test the registry driven by the listen watcher."""

    @pytest.mark.asyncio
    async def test_stop_event_returns_after_drain(self, registry, recorder):
        stop = asyncio.Event()
        query = ScriptedQuery({WEB, DB})
        task = asyncio.create_task(
            registry.run(poll_interval=0.01, query=query, stop_event=stop)
        )
        await wait_until(lambda: len(recorder.started) == 2)

        stop.set()
        await asyncio.wait_for(task, 2.0)
        assert sorted(recorder.stopped) == [5432, 8080]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_cancellation_stops_every_session(self, registry, recorder):
        query = ScriptedQuery({WEB, DB})
        task = asyncio.create_task(registry.run(poll_interval=0.01, query=query))
        await wait_until(lambda: len(recorder.started) == 2)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, 2.0)
        assert sorted(recorder.stopped) == [5432, 8080]

    @pytest.mark.asyncio
    async def test_query_failure_is_fatal(self, registry, recorder):
        query = ScriptedQuery({WEB}, error_at=2, error=ListenQueryError("netlink"))
        with pytest.raises(ListenQueryError):
            await asyncio.wait_for(registry.run(poll_interval=0.01, query=query), 2.0)
        assert recorder.stopped == [8080]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_transport_loss_is_fatal(self, registry, recorder, transport):
        query = ScriptedQuery({WEB, DB})
        task = asyncio.create_task(registry.run(poll_interval=0.01, query=query))
        await wait_until(lambda: len(recorder.started) == 2)

        transport.lost.set()
        with pytest.raises(TransportError, match="connection lost"):
            await asyncio.wait_for(task, 2.0)
        assert sorted(recorder.stopped) == [5432, 8080]
        assert len(registry) == 0


class TestEndToEnd:
    """Listen changes through real forward sessions on a fake transport."""

    @pytest.mark.asyncio
    async def test_port_appears_then_disappears(self):
        transport = FakeTransport()
        registry = ForwardRegistry(transport)
        stop = asyncio.Event()
        query = ScriptedQuery({WEB}, {WEB}, {WEB}, set())

        task = asyncio.create_task(
            registry.run(poll_interval=0.05, query=query, stop_event=stop)
        )
        try:
            # Cycle 1: added, a remote listener is opened on 8080
            await wait_until(lambda: 8080 in transport.listeners)
            listener = transport.listeners[8080]

            # A connection arriving before the session is torn down
            remote, inbound = await make_stream_pair()
            await wait_until(
                lambda: registry.get(8080).session.state == SessionState.LISTENING
            )
            session = registry.get(8080).session

            # Last cycle: removed, the session is cancelled and drained
            await wait_until(lambda: 8080 not in registry)
            listener.push(inbound)
            await wait_until(lambda: session.state == SessionState.STOPPED)
            assert listener.closed
            assert await read_all(remote) == b""
        finally:
            stop.set()
            await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_shutdown_right_after_remove_completes_drain(self, echo_server):
        transport = FakeTransport()
        registry = ForwardRegistry(transport)
        endpoint = Endpoint("127.0.0.1", echo_server)

        registry.handle_event(ListenEvent.added(endpoint))
        session = registry.get(echo_server).session
        await wait_until(lambda: session.state == SessionState.LISTENING)

        remote, inbound = await make_stream_pair()
        transport.listeners[echo_server].push(inbound)
        remote.writer.write(b"q")
        await remote.writer.drain()
        assert await asyncio.wait_for(remote.reader.readexactly(1), 2.0) == b"q"

        registry.handle_event(ListenEvent.removed(endpoint))
        await asyncio.wait_for(registry.shutdown(), 2.0)

        assert session.state == SessionState.STOPPED
        assert transport.listeners[echo_server].closed
        assert await read_all(remote) == b""

    @pytest.mark.asyncio
    async def test_open_failure_does_not_block_other_port(self):
        transport = FakeTransport(fail_ports={8080})
        stop = asyncio.Event()
        query = ScriptedQuery({WEB, DB})

        task = asyncio.create_task(
            run_agent(transport, poll_interval=0.01, query=query, stop_event=stop)
        )
        try:
            await wait_until(lambda: 5432 in transport.listeners)
            assert sorted(transport.opened) == [5432, 8080]
            assert not transport.listeners[5432].closed
        finally:
            stop.set()
            await asyncio.wait_for(task, 2.0)
        assert transport.listeners[5432].closed

    def test_default_factory_is_forward_session(self, transport):
        assert ForwardRegistry(transport).session_factory is ForwardSession
