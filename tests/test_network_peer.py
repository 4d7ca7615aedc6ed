"""Tests for the Peer request/response engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import MagicMock

import pytest

from conftest import settle
from protopeer.network import (
    LocalTransport,
    Peer,
    PeerClosed,
    PeerState,
    RemoteError,
    RequestTimeout,
    ResponseAlreadySent,
    TransportError,
)
from protopeer.network._abc import AbstractTransport


class RecordingTransport(AbstractTransport):
    """Transport that records outgoing frames and lets tests inject incoming ones."""

    def __init__(self, fail: Exception | None = None) -> None:
        super().__init__()
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.close_calls = 0

    async def send(self, frame: dict[str, Any]) -> None:
        if self.fail is not None:
            raise self.fail
        self.sent.append(frame)

    def close(self) -> None:
        self.close_calls += 1
        self._emit_close()

    def receive(self, frame: dict[str, Any]) -> None:
        self._emit_message(frame)


async def start_request(peer: Peer, transport: RecordingTransport, method="ping", data=None, **kwargs):
    """Start ``peer.send`` in a task and return (task, request id)."""
    task = asyncio.create_task(peer.send(method, data, **kwargs))
    await settle()
    return task, transport.sent[-1]["id"]


class TestPeerBasic:
    def test_peer_creation(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        assert peer.id == "remote"
        assert peer.closed is False
        assert peer.state is PeerState.OPEN
        assert peer.transport is transport
        assert peer.request_timeout == 10.0
        assert peer.pending_count == 0

    def test_peer_over_closed_transport_starts_closed(self):
        transport = RecordingTransport()
        transport.close()

        peer = Peer("remote", transport)

        assert peer.closed is True

    @pytest.mark.asyncio
    async def test_request_frame_written_to_transport(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        task, request_id = await start_request(peer, transport, "sum", [1, 2])

        assert transport.sent == [{"id": request_id, "request": True, "method": "sum", "data": [1, 2]}]
        assert peer.pending_count == 1
        peer.close()
        with pytest.raises(PeerClosed):
            await task


class TestRequestResponse:
    @pytest.mark.asyncio
    async def test_ping_pong(self, peers):
        """A ping accepted with "pong" resolves the sender's request to "pong"."""
        alice, bob = peers

        @bob.on_request
        async def handle(request, accept, reject):
            assert request.method == "ping"
            assert request.data is None
            await accept("pong")

        result = await asyncio.wait_for(alice.send("ping", None), timeout=0.1)

        assert result == "pong"
        assert alice.pending_count == 0

    @pytest.mark.asyncio
    async def test_remote_rejection(self, peers):
        alice, bob = peers

        @bob.on_request
        async def handle(request, accept, reject):
            await reject("not allowed", 403)

        with pytest.raises(RemoteError) as excinfo:
            await alice.send("delete", {"path": "/"})

        assert excinfo.value.reason == "not allowed"
        assert excinfo.value.code == 403
        assert excinfo.value == RemoteError("not allowed", 403)
        assert alice.pending_count == 0

    @pytest.mark.asyncio
    async def test_bare_error_response_defaults(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        task, request_id = await start_request(peer, transport)
        transport.receive({"id": request_id, "response": True, "ok": False})

        with pytest.raises(RemoteError) as excinfo:
            await task
        assert excinfo.value == RemoteError("", 500)

    @pytest.mark.asyncio
    async def test_sync_request_handler(self, peers):
        alice, bob = peers
        seen = []

        def handle(request, accept, reject):
            seen.append(request.method)
            asyncio.ensure_future(accept(request.data))

        bob.on_request(handle)

        assert await alice.send("echo", {"x": 1}) == {"x": 1}
        assert seen == ["echo"]

    @pytest.mark.asyncio
    async def test_accept_later(self, peers):
        """Handlers may answer after doing other asynchronous work."""
        alice, bob = peers
        held = []

        @bob.on_request
        def handle(request, accept, reject):
            held.append(accept)

        task = asyncio.create_task(alice.send("lookup", "key"))
        await settle()
        assert not task.done()

        await asyncio.sleep(0.01)
        await held[0]("value")

        assert await task == "value"

    @pytest.mark.asyncio
    async def test_concurrent_requests_resolve_independently(self, peers):
        """Responses arriving out of order each settle their own request."""
        alice, bob = peers

        @bob.on_request
        async def handle(request, accept, reject):
            await asyncio.sleep(0.01 * (5 - request.data))
            await accept(request.data * 10)

        results = await asyncio.gather(*(alice.send("times10", n) for n in range(5)))

        assert results == [0, 10, 20, 30, 40]
        assert alice.pending_count == 0

    @pytest.mark.asyncio
    async def test_both_sides_can_request(self, peers):
        alice, bob = peers

        @alice.on_request
        async def alice_handler(request, accept, reject):
            await accept("from alice")

        @bob.on_request
        async def bob_handler(request, accept, reject):
            await accept("from bob")

        assert await alice.send("hi") == "from bob"
        assert await bob.send("hi") == "from alice"

    @pytest.mark.asyncio
    async def test_handler_can_send_before_answering(self, peers):
        """A request handler awaiting its own request does not block dispatch."""
        alice, bob = peers

        @alice.on_request
        async def whoami(request, accept, reject):
            await accept("alice")

        @bob.on_request
        async def greet(request, accept, reject):
            if request.method == "greet":
                name = await bob.send("whoami")
                await accept(f"hello {name}")

        assert await alice.send("greet") == "hello alice"

    @pytest.mark.asyncio
    async def test_every_handler_is_notified(self, peers):
        alice, bob = peers
        first = MagicMock()
        second = MagicMock()
        bob.on_request(first)
        bob.on_request(second)

        task = asyncio.create_task(alice.send("ping", timeout=0.05))
        await settle()

        first.assert_called_once()
        second.assert_called_once()
        assert first.call_args.args[0].method == "ping"
        with pytest.raises(RequestTimeout):
            await task


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_request_timeout(self, peers):
        """A request nobody answers fails with RequestTimeout."""
        alice, bob = peers
        loop = asyncio.get_running_loop()

        started = loop.time()
        with pytest.raises(RequestTimeout) as excinfo:
            await alice.send("ping", timeout=0.05)

        assert loop.time() - started >= 0.045
        assert excinfo.value.method == "ping"
        assert isinstance(excinfo.value, TimeoutError)
        assert alice.pending_count == 0

    @pytest.mark.asyncio
    async def test_peer_default_timeout(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport, request_timeout=0.05)

        with pytest.raises(RequestTimeout):
            await peer.send("ping")

    @pytest.mark.asyncio
    async def test_late_response_is_unmatched(self, caplog):
        """A response arriving after the timeout never double-settles."""
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        task, request_id = await start_request(peer, transport, timeout=0.02)
        with pytest.raises(RequestTimeout):
            await task

        with caplog.at_level(logging.WARNING, logger="protopeer.network.peer"):
            transport.receive({"id": request_id, "response": True, "ok": True, "data": "late"})

        assert "does not match any sent request" in caplog.text
        assert peer.pending_count == 0
        assert peer.closed is False

    @pytest.mark.asyncio
    async def test_response_cancels_timer(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        task, request_id = await start_request(peer, transport, timeout=0.02)
        transport.receive({"id": request_id, "response": True, "ok": True, "data": 1})
        assert await task == 1

        # The timer must not fire against the settled request
        await asyncio.sleep(0.05)
        assert peer.pending_count == 0


class TestInboundDispatch:
    @pytest.mark.asyncio
    async def test_unmatched_response_is_dropped(self, caplog):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        with caplog.at_level(logging.WARNING, logger="protopeer.network.peer"):
            transport.receive({"id": "nope", "response": True, "ok": True, "data": 1})

        assert "nope" in caplog.text
        assert peer.closed is False

    @pytest.mark.asyncio
    async def test_duplicate_response_is_dropped(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        task, request_id = await start_request(peer, transport)
        transport.receive({"id": request_id, "response": True, "ok": True, "data": "first"})
        transport.receive(
            {"id": request_id, "response": True, "ok": False, "errorReason": "x", "errorCode": 1}
        )

        assert await task == "first"

    @pytest.mark.asyncio
    async def test_unknown_frames_are_ignored(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)
        handler = MagicMock()
        peer.on_request(handler)

        transport.receive({"id": "1", "notification": True})
        transport.receive({"hello": "world"})
        await settle()

        handler.assert_not_called()
        assert peer.closed is False

    @pytest.mark.asyncio
    async def test_request_without_handler_is_left_unanswered(self, caplog):
        transport = RecordingTransport()
        Peer("remote", transport)

        with caplog.at_level(logging.WARNING, logger="protopeer.network.peer"):
            transport.receive({"id": "1", "request": True, "method": "ping", "data": None})
        await settle()

        assert transport.sent == []
        assert "unanswered" in caplog.text

    @pytest.mark.asyncio
    async def test_accept_writes_success_response(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        @peer.on_request
        async def handle(request, accept, reject):
            await accept({"ok": "yes"})

        transport.receive({"id": "r1", "request": True, "method": "ping", "data": None})
        await settle()

        assert transport.sent == [{"id": "r1", "response": True, "ok": True, "data": {"ok": "yes"}}]

    @pytest.mark.asyncio
    async def test_reject_writes_error_response(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        @peer.on_request
        async def handle(request, accept, reject):
            await reject("not allowed", 403)

        transport.receive({"id": "r1", "request": True, "method": "ping", "data": None})
        await settle()

        assert transport.sent == [
            {"id": "r1", "response": True, "ok": False, "errorReason": "not allowed", "errorCode": 403}
        ]

    @pytest.mark.asyncio
    async def test_second_answer_is_refused(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)
        errors = []

        @peer.on_request
        async def handle(request, accept, reject):
            await accept(1)
            for answer in (accept(2), reject("late", 500)):
                try:
                    await answer
                except ResponseAlreadySent as e:
                    errors.append(e)

        transport.receive({"id": "r1", "request": True, "method": "ping", "data": None})
        await settle()

        assert len(transport.sent) == 1
        assert [e.request_id for e in errors] == ["r1", "r1"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_peer(self, peers, caplog):
        alice, bob = peers

        @bob.on_request
        async def broken(request, accept, reject):
            if request.method == "boom":
                raise RuntimeError("handler exploded")
            await accept("fine")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(RequestTimeout):
                await alice.send("boom", timeout=0.05)

        assert "handler exploded" in caplog.text
        assert await alice.send("ping") == "fine"


class TestClose:
    @pytest.mark.asyncio
    async def test_close_rejects_pending_requests(self, peers):
        alice, bob = peers

        tasks = [asyncio.create_task(alice.send("ping", n)) for n in range(3)]
        await settle()
        assert alice.pending_count == 3

        alice.close()

        for task in tasks:
            with pytest.raises(PeerClosed):
                await task
        assert alice.pending_count == 0
        assert alice.state is PeerState.CLOSED

    @pytest.mark.asyncio
    async def test_send_after_close_fails_without_transport(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)
        peer.close()

        with pytest.raises(PeerClosed):
            await peer.send("ping")

        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)
        on_close = MagicMock()
        peer.on_close(on_close)

        peer.close()
        peer.close()

        on_close.assert_called_once_with()
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_explicit_then_transport_close(self, peers, transports):
        alice, bob = peers
        on_close = MagicMock()
        alice.on_close(on_close)

        alice.close()
        transports[0].close()

        on_close.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_transport_close_closes_peer(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)
        on_close = MagicMock()
        peer.on_close(on_close)

        task, _ = await start_request(peer, transport)
        transport.close()

        with pytest.raises(PeerClosed):
            await task
        assert peer.closed is True
        assert transport.close_calls == 1
        on_close.assert_called_once_with()

        peer.close()
        on_close.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_remote_close_propagates(self, peers):
        alice, bob = peers
        closed = asyncio.Event()
        alice.on_close(closed.set)

        task = asyncio.create_task(alice.send("ping"))
        await settle()
        bob.close()

        await asyncio.wait_for(closed.wait(), timeout=0.1)
        with pytest.raises(PeerClosed):
            await task

    @pytest.mark.asyncio
    async def test_async_close_handler(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)
        calls = []

        @peer.on_close
        async def handler():
            calls.append("closed")

        peer.close()
        await settle()

        assert calls == ["closed"]

    @pytest.mark.asyncio
    async def test_async_context_manager_closes(self):
        transport = RecordingTransport()

        async with Peer("remote", transport) as peer:
            assert peer.closed is False

        assert peer.closed is True

    @pytest.mark.asyncio
    async def test_answer_after_close_fails(self, peers):
        alice, bob = peers
        held = []
        bob.on_request(lambda request, accept, reject: held.append(accept))

        task = asyncio.create_task(alice.send("ping"))
        await settle()
        bob.close()

        with pytest.raises(TransportError):
            await held[0]("too late")
        with pytest.raises(PeerClosed):
            await task


class TestSendFailures:
    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self):
        transport = RecordingTransport(fail=TransportError("link down"))
        peer = Peer("remote", transport)

        with pytest.raises(TransportError, match="link down"):
            await peer.send("ping")

        assert peer.pending_count == 0
        assert peer.closed is False

    @pytest.mark.asyncio
    async def test_cancelled_send_is_discarded(self):
        transport = RecordingTransport()
        peer = Peer("remote", transport)

        task, request_id = await start_request(peer, transport)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert peer.pending_count == 0

        # The answer to a cancelled request is simply unmatched
        transport.receive({"id": request_id, "response": True, "ok": True, "data": 1})

    @pytest.mark.asyncio
    async def test_non_serializable_payload(self, peers):
        alice, bob = peers

        with pytest.raises(TypeError):
            await alice.send("ping", object())

        assert alice.pending_count == 0

    @pytest.mark.asyncio
    async def test_local_transport_closed(self):
        left, right = LocalTransport.pair()
        peer = Peer("remote", left)
        left._closed = True  # simulate a transport that died without notifying

        with pytest.raises(TransportError):
            await peer.send("ping")
        assert peer.pending_count == 0


class StallingTransport(RecordingTransport):
    """Transport whose writes never complete."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[asyncio.Task] = []
        self._release = asyncio.Event()

    async def send(self, frame: dict[str, Any]) -> None:
        self.writes.append(asyncio.current_task())
        await self._release.wait()
        self.sent.append(frame)


class TestStalledWrites:
    @pytest.mark.asyncio
    async def test_timeout_while_write_is_stalled(self):
        transport = StallingTransport()
        peer = Peer("remote", transport)

        with pytest.raises(RequestTimeout):
            await asyncio.wait_for(peer.send("ping", timeout=0.05), timeout=0.5)

        assert peer.pending_count == 0
        await settle()
        assert transport.writes[0].cancelled()
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_close_while_write_is_stalled(self):
        transport = StallingTransport()
        peer = Peer("remote", transport)

        task = asyncio.create_task(peer.send("ping"))
        await settle()
        assert len(transport.writes) == 1

        peer.close()

        with pytest.raises(PeerClosed):
            await asyncio.wait_for(task, timeout=0.5)
        await settle()
        assert transport.writes[0].cancelled()

    @pytest.mark.asyncio
    async def test_cancel_while_write_is_stalled(self):
        transport = StallingTransport()
        peer = Peer("remote", transport)

        task = asyncio.create_task(peer.send("ping"))
        await settle()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await settle()
        assert peer.pending_count == 0
        assert transport.writes[0].cancelled()
