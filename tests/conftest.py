"""
Pytest Configuration and Fixtures
=================================

Fakes for the collaborators of the negotiation client (media transport,
relay channel, local media, remote sink) and of the relay (websockets).
"""

import asyncio
import json

import pytest_asyncio
from aiortc import RTCSessionDescription

from duet.controllers.call_controller import CallController
from duet.tools.config import ClientConfig
from duet.tools.errors import MediaAccessDenied, RelayClosed, RelayUnreachable
from duet.use_cases.media import LocalMedia

OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=offer\r\n"
ANSWER_SDP = "v=0\r\no=- 2 2 IN IP4 0.0.0.0\r\ns=answer\r\n"


def candidate_line(port: int) -> str:
    return f"candidate:842163049 1 udp 1677729535 203.0.113.7 {port} typ srflx raddr 10.0.0.2 rport {port} generation 0"


def candidate_message(port: int) -> dict:
    return {
        "type": "candidate",
        "candidate": {"candidate": candidate_line(port), "sdpMid": "0", "sdpMLineIndex": 0},
    }


def offer_message(sdp: str = OFFER_SDP) -> dict:
    return {"type": "offer", "sdp": {"type": "offer", "sdp": sdp}}


def answer_message(sdp: str = ANSWER_SDP) -> dict:
    return {"type": "answer", "sdp": {"type": "answer", "sdp": sdp}}


# =============================================================================
# CLIENT-SIDE FAKES
# =============================================================================

class FakeTrack:
    kind = "audio"

    def __init__(self):
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakePlayer:
    def __init__(self):
        self.audio = FakeTrack()
        self.video = None


class FakeTransport:
    """Stands in for RTCPeerConnection."""

    def __init__(self, ice_servers):
        self.ice_servers = ice_servers
        self.handlers = {}
        self.tracks = []
        self.localDescription = None
        self.remoteDescription = None
        self.candidates = []
        self.iceConnectionState = "new"
        self.closed = False
        self.fail_remote = False
        self.fail_answer = False
        # Events that createOffer/createAnswer wait on before returning
        self.offer_gate = None
        self.answer_gate = None

    def on(self, event):
        def wrapper(handler):
            self.handlers[event] = handler
            return handler

        return wrapper

    def emit(self, event, *args):
        self.handlers[event](*args)

    def addTrack(self, track):
        self.tracks.append(track)

    async def createOffer(self):
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        return RTCSessionDescription(sdp=OFFER_SDP, type="offer")

    async def createAnswer(self):
        if self.answer_gate is not None:
            await self.answer_gate.wait()
        if self.fail_answer:
            raise RuntimeError("Cannot create answer")
        return RTCSessionDescription(sdp=ANSWER_SDP, type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        if self.fail_remote:
            raise ValueError("Cannot handle remote description")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        if self.remoteDescription is None:
            raise RuntimeError("InvalidStateError: no remote description")
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True


class FakeChannel:
    """Stands in for RelayChannel."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._inbox = asyncio.Queue()

    @property
    def is_open(self):
        return not self.closed

    async def send(self, message):
        if self.closed:
            raise RelayClosed("closed")
        self.sent.append(message)

    async def frames(self):
        while True:
            frame = await self._inbox.get()
            if frame is None:
                return
            yield frame

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def drop(self):
        """Simulate the relay closing the connection."""
        self.closed = True
        self._inbox.put_nowait(None)

    def sent_types(self):
        return [message["type"] for message in self.sent]


class FakeSink:
    def __init__(self, record_to):
        self.record_to = record_to
        self.tracks = []
        self.stopped = False

    async def attach(self, track):
        self.tracks.append(track)

    async def stop(self):
        self.stopped = True


class Harness:
    """A CallController wired to fakes, with handles on everything it created."""

    def __init__(self, deny_media=False, relay_down=False, stall_offer=False, stall_answer=False, **config):
        config.setdefault("handshake_timeout", 0)
        self.deny_media = deny_media
        self.relay_down = relay_down
        self.fail_answer = False
        self.offer_gate = asyncio.Event() if stall_offer else None
        self.answer_gate = asyncio.Event() if stall_answer else None
        self.transports = []
        self.channels = []
        self.media = []
        self.sinks = []
        self.controller = CallController(
            ClientConfig(**config),
            media_factory=self.open_media,
            transport_factory=self.make_transport,
            channel_factory=self.open_channel,
            sink_factory=self.make_sink,
        )

    async def open_media(self, source, media_format):
        if self.deny_media:
            raise MediaAccessDenied("NotAllowedError")
        media = LocalMedia(FakePlayer())
        self.media.append(media)
        return media

    def make_transport(self, ice_servers):
        transport = FakeTransport(ice_servers)
        transport.offer_gate = self.offer_gate
        transport.answer_gate = self.answer_gate
        transport.fail_answer = self.fail_answer
        self.transports.append(transport)
        return transport

    async def open_channel(self, url):
        if self.relay_down:
            raise RelayUnreachable(f"Cannot connect to relay at {url}")
        channel = FakeChannel()
        self.channels.append(channel)
        return channel

    def make_sink(self, record_to):
        sink = FakeSink(record_to)
        self.sinks.append(sink)
        return sink

    @property
    def transport(self):
        return self.transports[-1]

    @property
    def channel(self):
        return self.channels[-1]

    async def deliver(self, *messages):
        for message in messages:
            self.controller.post_message(json.dumps(message))
        await self.controller.drain()

    async def join(self):
        """Start media and reach AwaitingPeer."""
        await self.controller.start_media()
        await self.controller.drain()

    async def become_initiator(self):
        await self.join()
        await self.deliver({"type": "peer_joined", "message": "Peer joined."})
        await self.controller.place_call()
        await self.controller.drain()


# =============================================================================
# FIXTURES
# =============================================================================

@pytest_asyncio.fixture
async def make_harness():
    """Factory for started harnesses; every one is stopped after the test."""
    harnesses = []

    async def factory(**kwargs):
        harness = Harness(**kwargs)
        await harness.controller.start()
        harnesses.append(harness)
        return harness

    yield factory

    for harness in harnesses:
        await harness.controller.stop()


@pytest_asyncio.fixture
async def harness(make_harness):
    return await make_harness()


# =============================================================================
# RELAY-SIDE FAKES
# =============================================================================

class FakeSocket:
    """Stands in for the Quart websocket held by a ClientConnection."""

    def __init__(self, broken=False):
        self.sent = []
        self.close_code = None
        self.broken = broken

    async def send(self, frame):
        if self.broken:
            raise ConnectionResetError("socket closed")
        self.sent.append(frame)

    async def close(self, code):
        self.close_code = code


CLOSE_MARKER = "<close>"


def take_outbox(connection):
    """Decode and remove every frame queued for a relay connection."""
    frames = []
    while not connection.outbox.empty():
        frame = connection.outbox.get_nowait()
        frames.append(json.loads(frame) if isinstance(frame, str) else CLOSE_MARKER)
    return frames
