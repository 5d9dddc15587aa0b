"""
Call Controller

Drives one participant's side of the two-party handshake. Relay messages,
transport callbacks, user actions and timeouts are all posted onto a single
event queue and processed one at a time, so negotiation steps for this
client never run concurrently.

Teardown events (local hang-up, handshake timeout, relay channel loss) jump
the queue and cancel the step in progress, so a negotiation step that never
completes cannot hold a hang-up back.
"""

from duet.tools.config import ClientConfig
from duet.tools.contract_validation import ContractValidationError
from duet.tools.errors import InvalidAction, MediaAccessDenied, RelayClosed, RelayUnreachable
from duet.tools.logger import log_debug, log_error, log_info, log_warning
from duet.tools import signaling_messages as messages
from duet.use_cases.media import RemoteAudioSink, acquire_local_media, release_local_media
from duet.use_cases.media.transport import candidate_to_payload, create_peer_connection, description_to_payload
from duet.use_cases.negotiation import CallAttempt, Phase, Role
from .relay_channel import open_relay_channel
from itertools import count
from typing import Callable, Dict, Optional
import asyncio

START_MEDIA = "start_media"
PLACE_CALL = "place_call"
HANG_UP = "hang_up"

# Event queue priorities, lower runs first
TEARDOWN_PRIORITY = 0
STEP_PRIORITY = 1


class CallController:
    """
    Negotiation client for one participant.

    Collaborators are injectable so the state machine can run against any
    transport/media/channel implementation:

        media_factory(source, media_format) -> awaitable LocalMedia
        transport_factory(ice_servers) -> RTCPeerConnection-like object
        channel_factory(relay_url) -> awaitable RelayChannel-like object
        sink_factory(record_to) -> RemoteAudioSink-like object
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        media_factory=acquire_local_media,
        transport_factory=create_peer_connection,
        channel_factory=open_relay_channel,
        sink_factory=RemoteAudioSink,
    ):
        self.config = config or ClientConfig()
        self._media_factory = media_factory
        self._transport_factory = transport_factory
        self._channel_factory = channel_factory
        self._sink_factory = sink_factory

        self.attempt: Optional[CallAttempt] = None
        self.channel = None
        self.status: Optional[str] = None

        self._events: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._sequence = count()
        self._handlers: Dict[str, Callable] = {}
        self._dispatch_task: Optional[asyncio.Task] = None
        self._current_step: Optional[asyncio.Task] = None
        self._tearing_down = False
        self._reader_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._ended = asyncio.Event()

        from .signaling import initialize_signaling

        initialize_signaling(self)

    # -- lifecycle -----------------------------------------------------------

    async def start(self):
        """Start the event dispatch task."""
        if self._dispatch_task is None:
            self._dispatch_task = asyncio.create_task(self._dispatch_loop())
            log_debug("Call controller dispatch started")

    async def stop(self):
        """Hang up any active attempt and stop background tasks."""
        if self._dispatch_task is not None:
            try:
                await self.hang_up()
            except Exception as e:
                log_error(f"Error hanging up during shutdown: {e}")
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        log_debug("Call controller stopped")

    async def drain(self):
        """Wait until every queued event has been processed."""
        await self._events.join()

    async def wait_for_end(self):
        """Wait until the current attempt has been torn down."""
        await self._ended.wait()

    # -- user actions ----------------------------------------------------------

    async def start_media(self):
        """Acquire the microphone and join the relay (Idle -> AwaitingPeer)."""
        return await self._submit(self._start_media)

    async def place_call(self):
        """Create and send the offer. Only valid for an Initiator awaiting its peer."""
        return await self._submit(self._place_call)

    async def hang_up(self):
        """
        End the current attempt and notify the peer. Safe to call repeatedly.

        A negotiation step still in progress is cancelled first; if it was
        started by place_call() or start_media(), that call returns None.
        """
        self._interrupt_step()
        return await self._submit(self._hang_up_action, TEARDOWN_PRIORITY)

    def available_actions(self) -> set:
        attempt = self.attempt
        if attempt is None or attempt.phase in (Phase.IDLE, Phase.ENDED):
            return {START_MEDIA}
        actions = {HANG_UP}
        if attempt.role is Role.INITIATOR and attempt.phase is Phase.AWAITING_PEER:
            actions.add(PLACE_CALL)
        return actions

    @property
    def role(self) -> Role:
        return self.attempt.role if self.attempt else Role.UNASSIGNED

    @property
    def phase(self) -> Phase:
        return self.attempt.phase if self.attempt else Phase.IDLE

    # -- handler registration ------------------------------------------------

    def on(self, msg_type: str):
        """Decorator registering the handler for one relay message type."""

        def wrapper(handler):
            self._handlers[msg_type] = handler
            return handler

        return wrapper

    def report(self, text: str):
        """Publish a human-readable status line."""
        self.status = text
        log_info(f"Status: {text}")

    # -- event queue -----------------------------------------------------------

    def post_message(self, raw):
        """Queue one raw frame received from the relay."""
        self._post("message", raw)

    def _post(self, kind: str, payload=None, future=None, priority: int = STEP_PRIORITY):
        self._events.put_nowait((priority, next(self._sequence), kind, payload, future))

    async def _submit(self, action, priority: int = STEP_PRIORITY):
        if self._dispatch_task is None:
            await self.start()
        future = asyncio.get_running_loop().create_future()
        self._post("action", action, future, priority)
        return await future

    def _interrupt_step(self):
        """Cancel the step in progress unless it is itself a teardown."""
        step = self._current_step
        if step is None or step.done() or self._tearing_down:
            return
        log_info("Cancelling negotiation step in progress")
        step.cancel()

    async def _dispatch_loop(self):
        while True:
            _, _, kind, payload, future = await self._events.get()
            step = asyncio.create_task(self._process(kind, payload))
            self._current_step = step
            try:
                await asyncio.wait({step})
            except asyncio.CancelledError:
                step.cancel()
                if future is not None and not future.done():
                    future.cancel()
                raise
            finally:
                self._current_step = None
                self._events.task_done()
            self._settle(kind, step, future)

    def _settle(self, kind: str, step: asyncio.Task, future):
        """Hand a finished step's outcome to whoever submitted it."""
        if step.cancelled():
            log_debug(f"{kind} step abandoned")
            if future is not None and not future.done():
                future.set_result(None)
            return
        error = step.exception()
        if future is not None and not future.done():
            if error is None:
                future.set_result(step.result())
            else:
                future.set_exception(error)
        elif error is not None:
            log_error(f"Error processing {kind} event: {error}")

    async def _process(self, kind: str, payload):
        if kind == "action":
            return await payload()
        if kind == "message":
            return await self._handle_frame(payload)
        if kind == "local_candidate":
            return await self._handle_local_candidate(*payload)
        if kind == "track":
            return await self._handle_track(*payload)
        if kind == "ice_state":
            return self._handle_ice_state(*payload)
        if kind == "channel_closed":
            return await self._handle_channel_closed(payload)
        if kind == "timeout":
            return await self._handle_timeout(payload)
        log_warning(f"Unknown event kind: {kind}")

    async def _handle_frame(self, raw):
        try:
            message = messages.decode(raw)
        except ContractValidationError as e:
            log_warning(f"Ignoring invalid relay message: {e.message}")
            return

        attempt = self.attempt
        msg_type = message["type"]
        if attempt is None or attempt.phase in (Phase.IDLE, Phase.ENDED):
            log_debug(f"Ignoring {msg_type}: no call attempt in progress")
            return

        handler = self._handlers.get(msg_type)
        if handler is None:
            log_warning(f"No handler for message type {msg_type}")
            return
        await handler(attempt, message)

    # -- actions -----------------------------------------------------------------

    async def _start_media(self):
        if self.attempt is not None and self.attempt.phase not in (Phase.IDLE, Phase.ENDED):
            raise InvalidAction(f"A call attempt is already {self.attempt.phase.value}")

        attempt = CallAttempt()
        self.attempt = attempt
        self._ended = asyncio.Event()
        self.report("Requesting microphone access...")

        try:
            attempt.local_media = await self._media_factory(
                self.config.audio_source, self.config.audio_format
            )
        except MediaAccessDenied as e:
            self.report(f"Error: {e}. Please ensure a microphone is available.")
            raise

        self.report("Microphone stream active. Connecting to relay...")
        try:
            channel = await self._channel_factory(self.config.relay_url)
        except RelayUnreachable as e:
            release_local_media(attempt.local_media)
            attempt.local_media = None
            self.report(f"Error: {e}")
            raise

        self.channel = channel
        self._reader_task = asyncio.create_task(self._read_channel(channel))
        attempt.transition(Phase.AWAITING_PEER)
        self._arm_watchdog(attempt)
        self.report("Connected to relay. Waiting for peer assignment.")
        return attempt

    async def _place_call(self):
        attempt = self.attempt
        if (
            attempt is None
            or attempt.role is not Role.INITIATOR
            or attempt.phase is not Phase.AWAITING_PEER
        ):
            raise InvalidAction("A call can only be placed by the initiator while awaiting its peer")
        await self.make_offer(attempt)

    async def _hang_up_action(self):
        await self.hang_up_attempt(self.attempt, "Call ended.", notify_peer=True)

    # -- negotiation steps used by the signaling handlers ------------------------

    def create_transport(self, attempt: CallAttempt):
        """Create the attempt's transport, attach local audio and route its events."""
        pc = self._transport_factory(self.config.ice_servers)
        attempt.transport = pc
        attempt.remote_sink = self._sink_factory(self.config.record_to)

        if attempt.local_media is not None and attempt.local_media.audio_track is not None:
            pc.addTrack(attempt.local_media.audio_track)

        # aiortc never fires this: it gathers during setLocalDescription and
        # the candidates travel inside the offer/answer SDP. Trickling
        # transports do fire it.
        @pc.on("icecandidate")
        def on_ice_candidate(candidate):
            self._post("local_candidate", (attempt, candidate))

        @pc.on("track")
        def on_track(track):
            self._post("track", (attempt, track))

        @pc.on("iceconnectionstatechange")
        def on_ice_connection_state_change():
            self._post("ice_state", (attempt, pc.iceConnectionState))

        return pc

    async def make_offer(self, attempt: CallAttempt):
        """CreatingOffer -> OfferSent -> AwaitingAnswer."""
        attempt.transition(Phase.CREATING_OFFER)
        self.report("Creating offer...")
        transport = self.create_transport(attempt)

        offer = await transport.createOffer()
        await transport.setLocalDescription(offer)
        attempt.transition(Phase.OFFER_SENT)

        await self.send(messages.offer(description_to_payload(transport.localDescription)))
        attempt.transition(Phase.AWAITING_ANSWER)
        self.report("Offer sent. Waiting for answer...")

    def mark_connected(self, attempt: CallAttempt):
        if attempt.transition(Phase.CONNECTED):
            self._cancel_watchdog()

    async def send(self, message: dict):
        """
        Send a message to the peer through the relay.

        Raises:
            RelayClosed: if there is no open relay channel
        """
        channel = self.channel
        if channel is None or not channel.is_open:
            raise RelayClosed(f"No open relay channel for {message.get('type')}")
        await channel.send(message)

    async def hang_up_attempt(self, attempt: Optional[CallAttempt], reason: str, notify_peer: bool):
        """
        Tear down an attempt. Every step runs even if its resource is already gone.

        Args:
            attempt: Attempt to end (None only closes the channel)
            reason: Status line to report
            notify_peer: Send "hangup" to the peer (local hang-ups only)
        """
        self._tearing_down = True
        try:
            await self._tear_down(attempt, reason, notify_peer)
        finally:
            self._tearing_down = False

    async def _tear_down(self, attempt: Optional[CallAttempt], reason: str, notify_peer: bool):
        self._cancel_watchdog()
        already_ended = attempt is None or attempt.is_ended
        if attempt is not None:
            attempt.transition(Phase.ENDED)

            # 1. Tell the peer, unless it told us
            if attempt.transport is not None and notify_peer:
                channel = self.channel
                if channel is not None and channel.is_open:
                    try:
                        await channel.send(messages.hangup())
                    except RelayClosed as e:
                        log_warning(f"Could not notify peer of hang-up: {e}")

            # 2. Close the transport
            await attempt.close_transport()
            attempt.pending_candidates.clear()

            # 3. Release local capture and remote output
            release_local_media(attempt.local_media)
            attempt.local_media = None
            sink, attempt.remote_sink = attempt.remote_sink, None
            if sink is not None:
                try:
                    await sink.stop()
                except Exception as e:
                    log_warning(f"Error stopping remote audio: {e}")

        # 4. Close the relay channel; a new call always starts a new session
        channel, self.channel = self.channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                log_warning(f"Error closing relay channel: {e}")

        self._ended.set()
        if not already_ended:
            self.report(f"{reason} Microphone stream stopped.")

    # -- transport and channel events --------------------------------------------

    async def _handle_local_candidate(self, attempt: CallAttempt, candidate):
        if attempt is not self.attempt or attempt.is_ended:
            return
        if candidate is None:
            log_debug("Local candidate gathering complete")
            return
        try:
            payload = candidate_to_payload(candidate)
            await self.send(
                messages.candidate(payload["candidate"], payload["sdpMid"], payload["sdpMLineIndex"])
            )
        except RelayClosed as e:
            log_warning(f"Could not send local candidate: {e}")

    async def _handle_track(self, attempt: CallAttempt, track):
        if attempt is not self.attempt or attempt.is_ended or attempt.remote_sink is None:
            return
        log_info(f"Remote {track.kind} track received")
        await attempt.remote_sink.attach(track)

    def _handle_ice_state(self, attempt: CallAttempt, state: str):
        if attempt is not self.attempt or attempt.is_ended:
            return
        log_info(f"ICE connection state: {state}")
        if state == "failed":
            log_warning("ICE connection failed; hang up and retry to reconnect")

    async def _read_channel(self, channel):
        try:
            async for raw in channel.frames():
                self.post_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_error(f"Error reading from relay channel: {e}")
        finally:
            self._channel_lost(channel)

    def _channel_lost(self, channel):
        if channel is self.channel:
            self._interrupt_step()
        self._post("channel_closed", channel, priority=TEARDOWN_PRIORITY)

    async def _handle_channel_closed(self, channel):
        if channel is not self.channel:
            return
        attempt = self.attempt
        log_warning("Relay channel closed")
        await self.hang_up_attempt(attempt, "Connection with relay lost.", notify_peer=False)

    # -- handshake watchdog ------------------------------------------------------

    def _arm_watchdog(self, attempt: CallAttempt):
        self._cancel_watchdog()
        timeout = self.config.handshake_timeout
        if timeout:
            loop = asyncio.get_running_loop()
            self._watchdog = loop.call_later(timeout, self._expire_handshake, attempt)

    def _expire_handshake(self, attempt: CallAttempt):
        self._watchdog = None
        if attempt is not self.attempt or attempt.is_ended:
            return
        self._interrupt_step()
        self._post("timeout", attempt, priority=TEARDOWN_PRIORITY)

    def _cancel_watchdog(self):
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    async def _handle_timeout(self, attempt: CallAttempt):
        if attempt is not self.attempt or attempt.is_ended or attempt.phase is Phase.CONNECTED:
            return
        log_warning(
            f"Attempt #{attempt.attempt_id} did not connect within "
            f"{self.config.handshake_timeout}s ({attempt.phase.value})"
        )
        await self.hang_up_attempt(attempt, "Call timed out.", notify_peer=True)

