"""
Relay Controller

Pairs incoming client connections two at a time into sessions and forwards
signaling messages between the two members of a session.
"""

from duet.tools.contract_validation import ContractValidationError
from duet.tools.logger import log_debug, log_error, log_info, log_warning
from duet.tools import signaling_messages as messages
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4
import asyncio


class SessionState(Enum):
    """Relay session states."""
    FORMING = "forming"      # One member waiting for a peer
    ACTIVE = "active"        # Two members, messages are forwarded
    DISSOLVED = "dissolved"  # A member left or hung up


class ConnectionState(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


WAITING_MESSAGE = "Connected to relay. Waiting for a peer to join..."
PEER_JOINED_MESSAGE = "Peer joined. You can start the call."
PEER_LEFT_MESSAGE = "Peer disconnected. Call ended."
WAIT_TIMEOUT_MESSAGE = "No peer joined in time. Please reconnect to try again."

# How often to check for sessions stuck in the waiting room
CLEANUP_INTERVAL_SECONDS = 10

# Normal closure
CLOSE_CODE = 1000

_CLOSE = object()


class ClientConnection:
    """
    Relay-side handle on one connected participant.

    Outbound frames are queued and written by run_writer(), so forwarding to
    a peer never waits on that peer's socket.
    """

    def __init__(self, websocket, connection_id: Optional[str] = None):
        self.connection_id = connection_id or uuid4().hex[:12]
        self.websocket = websocket
        self.session_id: Optional[str] = None
        self.state = ConnectionState.CONNECTED
        self.outbox: asyncio.Queue = asyncio.Queue()

    def __repr__(self):
        return f"<ClientConnection {self.connection_id} {self.state.value}>"

    def send(self, message: dict):
        self.send_raw(messages.encode(message))

    def send_raw(self, raw):
        if self.state is ConnectionState.DISCONNECTED:
            log_debug(f"Dropping frame for closed connection {self.connection_id}")
            return
        self.outbox.put_nowait(raw)

    def close(self):
        """Ask the writer to close the socket once queued frames are sent."""
        if self.state is ConnectionState.CONNECTED:
            self.outbox.put_nowait(_CLOSE)

    async def run_writer(self):
        """Drain the outbound queue onto the websocket."""
        while True:
            frame = await self.outbox.get()
            try:
                if frame is _CLOSE:
                    await self.websocket.close(CLOSE_CODE)
                    break
                await self.websocket.send(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_error(f"Error writing to connection {self.connection_id}: {e}")
                # Nothing drains the outbox any more
                self.state = ConnectionState.DISCONNECTED
                break


class Session:
    """A pairing of at most two client connections."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or uuid4().hex[:12]
        self.members: List[str] = []
        self.state = SessionState.FORMING
        self.created_at = datetime.now()

    def other_member(self, connection_id: str) -> Optional[str]:
        for member in self.members:
            if member != connection_id:
                return member
        return None

    def describe(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "members": list(self.members),
            "created_at": self.created_at.isoformat(),
        }


class SessionDirectory:
    """
    Owns every relay session and the single waiting-room slot.

    All pairing state is mutated under one asyncio.Lock, so two clients
    arriving together can never both become the first member of a session.
    """

    def __init__(self, forming_timeout: Optional[float] = None):
        self.forming_timeout = forming_timeout
        self._sessions: Dict[str, Session] = {}
        self._connections: Dict[str, ClientConnection] = {}
        self._waiting: Optional[Session] = None
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the waiting-room cleanup task when a timeout is configured."""
        if self.forming_timeout and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            log_info(f"Waiting-room cleanup started (timeout {self.forming_timeout}s)")

    async def stop(self):
        """Stop background tasks and close every connection."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        async with self._lock:
            for connection in list(self._connections.values()):
                connection.close()
        log_info("Session directory stopped")

    async def _cleanup_loop(self):
        """Background task to dissolve sessions stuck waiting for a peer."""
        interval = min(CLEANUP_INTERVAL_SECONDS, self.forming_timeout)
        while True:
            try:
                await asyncio.sleep(interval)
                await self.expire_waiting_session()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log_error(f"Error in waiting-room cleanup loop: {e}")

    async def expire_waiting_session(self, now: Optional[datetime] = None) -> bool:
        """Dissolve the waiting session if it has waited longer than the timeout."""
        if not self.forming_timeout:
            return False
        now = now or datetime.now()
        async with self._lock:
            session = self._waiting
            if session is None:
                return False
            if now - session.created_at <= timedelta(seconds=self.forming_timeout):
                return False

            log_warning(
                f"Closing waiting session {session.session_id} "
                f"(no peer after {self.forming_timeout}s)"
            )
            self._dissolve_unlocked(session)
            for member_id in session.members:
                connection = self._connections.get(member_id)
                if connection:
                    connection.send(messages.status(WAIT_TIMEOUT_MESSAGE))
                    connection.close()
            return True

    async def register(self, connection: ClientConnection) -> Session:
        """
        Place a new connection into the waiting session, or pair it with
        the client already waiting.
        """
        async with self._lock:
            self._connections[connection.connection_id] = connection
            session = self._waiting

            if session is None:
                session = Session()
                session.members.append(connection.connection_id)
                connection.session_id = session.session_id
                self._sessions[session.session_id] = session
                self._waiting = session
                log_info(
                    f"Connection {connection.connection_id} waiting in session {session.session_id}"
                )
                connection.send(messages.status(WAITING_MESSAGE))
                return session

            session.members.append(connection.connection_id)
            connection.session_id = session.session_id
            session.state = SessionState.ACTIVE
            self._waiting = None
            log_info(
                f"Session {session.session_id} active: {' <-> '.join(session.members)}"
            )

            first = self._connections.get(session.members[0])
            if first:
                first.send(messages.peer_joined(PEER_JOINED_MESSAGE))
            return session

    async def route(self, connection: ClientConnection, raw) -> bool:
        """
        Forward one frame from connection to the other member of its session.

        Returns:
            True if the frame was forwarded, False if it was dropped
        """
        try:
            message = messages.decode(raw)
        except ContractValidationError as e:
            log_warning(f"Dropping invalid frame from {connection.connection_id}: {e.message}")
            return False

        msg_type = messages.message_type_of(message)
        if msg_type not in messages.CLIENT_MESSAGE_TYPES:
            log_warning(
                f"Dropping relay-only message {msg_type.value!r} from {connection.connection_id}"
            )
            return False

        async with self._lock:
            session = self._sessions.get(connection.session_id) if connection.session_id else None
            if session is None or session.state is not SessionState.ACTIVE:
                log_debug(
                    f"Dropping {msg_type.value} from {connection.connection_id}: no active session"
                )
                return False

            peer = self._connections.get(session.other_member(connection.connection_id))
            if peer is None:
                log_debug(f"Dropping {msg_type.value} for session {session.session_id}: peer gone")
                return False

            peer.send_raw(raw)
            log_debug(
                f"Forwarded {msg_type.value} {connection.connection_id} -> {peer.connection_id}"
            )

            if msg_type is messages.MessageType.HANGUP:
                log_info(f"Session {session.session_id} hung up by {connection.connection_id}")
                self._dissolve_unlocked(session)
            return True

    async def unregister(self, connection: ClientConnection):
        """Forget a closed connection and notify the other member of its session."""
        async with self._lock:
            connection.state = ConnectionState.DISCONNECTED
            self._connections.pop(connection.connection_id, None)
            session = self._sessions.get(connection.session_id) if connection.session_id else None
            connection.session_id = None

            if session is None:
                log_info(f"Connection {connection.connection_id} closed")
                return

            if session.state is SessionState.FORMING:
                log_info(
                    f"Connection {connection.connection_id} left waiting session {session.session_id}"
                )
                self._dissolve_unlocked(session)
                return

            peer = self._connections.get(session.other_member(connection.connection_id))
            self._dissolve_unlocked(session)
            log_info(f"Connection {connection.connection_id} left session {session.session_id}")
            if peer:
                peer.send(messages.disconnection(PEER_LEFT_MESSAGE))

    def _dissolve_unlocked(self, session: Session):
        """Dissolve a session without acquiring the lock (internal use)."""
        session.state = SessionState.DISSOLVED
        self._sessions.pop(session.session_id, None)
        if self._waiting is session:
            self._waiting = None
        for member_id in session.members:
            member = self._connections.get(member_id)
            if member and member.session_id == session.session_id:
                member.session_id = None
        log_debug(f"Session {session.session_id} dissolved")

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    @property
    def waiting_session(self) -> Optional[Session]:
        return self._waiting

    def list_sessions(self) -> List[dict]:
        return [session.describe() for session in self._sessions.values()]

    def get_session_count(self) -> int:
        return len(self._sessions)

    def get_connection_count(self) -> int:
        return len(self._connections)


def init(app, directory: SessionDirectory, path: str):
    """
    Initialize the relay controller by registering its routes on a Quart app.
    """
    from .routes import register_routes

    log_info("Initializing Relay Controller...")
    register_routes(app, directory, path)

    @app.before_serving
    async def start_directory():
        await directory.start()

    @app.after_serving
    async def stop_directory():
        await directory.stop()

    log_info("Relay Controller initialized successfully.")
