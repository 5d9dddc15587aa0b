"""
Relay Channel

Client side of the websocket connection to the signaling relay.
"""

from duet.tools.errors import RelayClosed, RelayUnreachable
from duet.tools.logger import log_debug, log_error, log_info
from duet.tools import signaling_messages as messages
import aiohttp
import asyncio

# Seconds between websocket pings so idle waiting rooms stay open
HEARTBEAT_SECONDS = 30
CONNECT_TIMEOUT_SECONDS = 10


class RelayChannel:
    """Ordered, message-preserving duplex channel to the relay."""

    def __init__(self, session: aiohttp.ClientSession, ws, url: str):
        self._session = session
        self._ws = ws
        self.url = url

    @property
    def is_open(self) -> bool:
        return not self._ws.closed

    async def send(self, message: dict):
        """
        Send one signaling message.

        Raises:
            RelayClosed: if the channel is no longer open
        """
        if not self.is_open:
            raise RelayClosed(f"Relay channel closed, cannot send {message.get('type')}")
        try:
            await self._ws.send_str(messages.encode(message))
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise RelayClosed(f"Relay channel failed while sending: {e}") from e
        log_debug(f"Sent {message.get('type')} to relay")

    async def frames(self):
        """Yield raw text frames until the relay closes the channel."""
        async for msg in self._ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                log_error(f"Relay channel error: {self._ws.exception()}")
                break
        log_info("Relay channel closed by server")

    async def close(self):
        if not self._ws.closed:
            await self._ws.close()
        if not self._session.closed:
            await self._session.close()


async def open_relay_channel(url: str) -> RelayChannel:
    """
    Connect to the relay.

    Raises:
        RelayUnreachable: if the websocket handshake fails
    """
    session = aiohttp.ClientSession()
    try:
        ws = await asyncio.wait_for(
            session.ws_connect(url, heartbeat=HEARTBEAT_SECONDS),
            CONNECT_TIMEOUT_SECONDS,
        )
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
        await session.close()
        raise RelayUnreachable(f"Cannot connect to relay at {url}: {e}") from e

    log_info(f"Connected to relay at {url}")
    return RelayChannel(session, ws, url)
