"""
Tests for relay pairing, forwarding and disconnection handling.
"""

import asyncio
import json
from datetime import datetime, timedelta

import pytest

from conftest import CLOSE_MARKER, FakeSocket, candidate_message, offer_message, take_outbox
from duet.controllers.relay_controller import (
    ClientConnection,
    ConnectionState,
    SessionDirectory,
    SessionState,
)


def connect(name):
    return ClientConnection(FakeSocket(), connection_id=name)


async def pair(directory):
    first, second = connect("a"), connect("b")
    await directory.register(first)
    await directory.register(second)
    take_outbox(first)
    take_outbox(second)
    return first, second


# =============================================================================
# PAIRING
# =============================================================================

class TestPairing:

    @pytest.mark.asyncio
    async def test_first_client_waits_with_status(self):
        directory = SessionDirectory()
        first = connect("a")

        session = await directory.register(first)

        assert session.state is SessionState.FORMING
        assert session.members == ["a"]
        assert directory.waiting_session is session
        frames = take_outbox(first)
        assert [f["type"] for f in frames] == ["status"]

    @pytest.mark.asyncio
    async def test_second_client_activates_and_only_first_is_notified(self):
        directory = SessionDirectory()
        first, second = connect("a"), connect("b")

        await directory.register(first)
        session = await directory.register(second)

        assert session.state is SessionState.ACTIVE
        assert session.members == ["a", "b"]
        assert directory.waiting_session is None
        assert [f["type"] for f in take_outbox(first)] == ["status", "peer_joined"]
        assert take_outbox(second) == []

    @pytest.mark.asyncio
    async def test_third_client_starts_new_session(self):
        directory = SessionDirectory()
        first, second = await pair(directory)
        third = connect("c")

        session = await directory.register(third)

        assert session.state is SessionState.FORMING
        assert session.members == ["c"]
        assert first.session_id != third.session_id
        assert [f["type"] for f in take_outbox(third)] == ["status"]
        assert take_outbox(first) == []
        assert take_outbox(second) == []

    @pytest.mark.asyncio
    async def test_simultaneous_newcomers_are_paired_once(self):
        directory = SessionDirectory()
        connections = [connect(f"c{i}") for i in range(6)]

        await asyncio.gather(*(directory.register(c) for c in connections))

        sessions = directory.list_sessions()
        assert len(sessions) == 3
        assert all(s["state"] == "active" for s in sessions)
        peer_joined = [
            c for c in connections
            if any(f["type"] == "peer_joined" for f in take_outbox(c))
        ]
        assert len(peer_joined) == 3


# =============================================================================
# FORWARDING
# =============================================================================

class TestForwarding:

    @pytest.mark.asyncio
    async def test_offer_and_answer_reach_only_the_peer(self):
        directory = SessionDirectory()
        first, second = await pair(directory)
        offer = json.dumps(offer_message("X"))
        answer = json.dumps({"type": "answer", "sdp": {"type": "answer", "sdp": "Y"}})

        assert await directory.route(first, offer)
        assert await directory.route(second, answer)

        assert second.outbox.get_nowait() == offer
        assert first.outbox.get_nowait() == answer
        assert first.outbox.empty() and second.outbox.empty()

    @pytest.mark.asyncio
    async def test_candidates_are_forwarded_verbatim_without_echo(self):
        directory = SessionDirectory()
        first, second = await pair(directory)
        frames = [json.dumps(candidate_message(port)) for port in (9003, 9001, 9002)]

        for frame in frames:
            await directory.route(first, frame)

        assert [second.outbox.get_nowait() for _ in frames] == frames
        assert first.outbox.empty()

    @pytest.mark.asyncio
    async def test_messages_while_waiting_are_dropped(self):
        directory = SessionDirectory()
        first = connect("a")
        await directory.register(first)
        take_outbox(first)

        forwarded = await directory.route(first, json.dumps(offer_message()))

        assert not forwarded
        assert take_outbox(first) == []

    @pytest.mark.asyncio
    async def test_invalid_frames_are_dropped(self):
        directory = SessionDirectory()
        first, second = await pair(directory)

        assert not await directory.route(first, "{not json")
        assert not await directory.route(first, json.dumps({"type": "offer"}))
        assert not await directory.route(first, json.dumps({"type": "peer_joined", "message": "x"}))
        assert second.outbox.empty()

    @pytest.mark.asyncio
    async def test_hangup_is_forwarded_then_session_dissolved(self):
        directory = SessionDirectory()
        first, second = await pair(directory)
        session_id = first.session_id

        assert await directory.route(first, json.dumps({"type": "hangup"}))

        assert [f["type"] for f in take_outbox(second)] == ["hangup"]
        assert directory.get_session(session_id) is None
        assert first.session_id is None and second.session_id is None
        assert not await directory.route(second, json.dumps(candidate_message(1)))

        await directory.unregister(first)
        await directory.unregister(second)
        assert take_outbox(first) == [] and take_outbox(second) == []


# =============================================================================
# DISCONNECTION
# =============================================================================

class TestDisconnection:

    @pytest.mark.asyncio
    async def test_waiting_client_leaving_discards_session(self):
        directory = SessionDirectory()
        first = connect("a")
        await directory.register(first)

        await directory.unregister(first)

        assert directory.get_session_count() == 0
        assert directory.waiting_session is None
        assert first.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_peer_gets_exactly_one_disconnection(self):
        directory = SessionDirectory()
        first, second = await pair(directory)

        await directory.unregister(first)
        await directory.unregister(second)

        assert [f["type"] for f in take_outbox(second)] == ["disconnection"]
        assert take_outbox(first) == []
        assert directory.get_session_count() == 0
        assert directory.get_connection_count() == 0

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect_starts_new_session(self):
        directory = SessionDirectory()
        first, second = await pair(directory)
        old_session = first.session_id
        await directory.unregister(first)

        again = connect("a2")
        session = await directory.register(again)

        assert session.session_id != old_session
        assert session.state is SessionState.FORMING
        assert session.members == ["a2"]
        assert [f["type"] for f in take_outbox(again)] == ["status"]

    @pytest.mark.asyncio
    async def test_frames_for_closed_connection_are_dropped(self):
        directory = SessionDirectory()
        first, second = await pair(directory)
        await directory.unregister(second)

        second.send({"type": "status", "message": "late"})

        assert take_outbox(second) == []


# =============================================================================
# WAITING-ROOM TIMEOUT
# =============================================================================

class TestWaitingRoomTimeout:

    @pytest.mark.asyncio
    async def test_stale_waiting_session_is_closed(self):
        directory = SessionDirectory(forming_timeout=30)
        first = connect("a")
        await directory.register(first)
        take_outbox(first)

        expired = await directory.expire_waiting_session(datetime.now() + timedelta(seconds=31))

        assert expired
        assert directory.waiting_session is None
        assert directory.get_session_count() == 0
        frames = take_outbox(first)
        assert frames[0]["type"] == "status"
        assert frames[1] == CLOSE_MARKER

    @pytest.mark.asyncio
    async def test_fresh_waiting_session_is_kept(self):
        directory = SessionDirectory(forming_timeout=30)
        first = connect("a")
        await directory.register(first)

        assert not await directory.expire_waiting_session()
        assert directory.waiting_session is not None

    @pytest.mark.asyncio
    async def test_timeout_disabled(self):
        directory = SessionDirectory(forming_timeout=None)
        await directory.register(connect("a"))

        assert not await directory.expire_waiting_session(datetime.now() + timedelta(days=1))


class TestWriter:

    @pytest.mark.asyncio
    async def test_writer_sends_queued_frames_then_closes(self):
        socket = FakeSocket()
        connection = ClientConnection(socket)
        connection.send({"type": "status", "message": "hello"})
        connection.close()

        await asyncio.wait_for(connection.run_writer(), 1)

        assert [json.loads(f)["type"] for f in socket.sent] == ["status"]
        assert socket.close_code == 1000

    @pytest.mark.asyncio
    async def test_write_failure_stops_queueing(self):
        connection = ClientConnection(FakeSocket(broken=True))
        connection.send({"type": "status", "message": "hello"})

        await asyncio.wait_for(connection.run_writer(), 1)

        assert connection.state is ConnectionState.DISCONNECTED
        connection.send({"type": "status", "message": "late"})
        assert connection.outbox.empty()
