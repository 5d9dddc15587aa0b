"""
Negotiation Use Case

Per-attempt negotiation state: the role this participant plays, the phase of
the handshake, the transport created for the attempt and the buffer of remote
candidates that arrived before a remote description could accept them.
"""

from duet.tools.errors import CandidateRejected, InvalidRemoteDescription
from duet.tools.logger import log_debug, log_info, log_warning
from duet.use_cases.media.transport import is_end_of_candidates, payload_to_candidate
from collections import deque
from datetime import datetime
from enum import Enum
from itertools import count
from typing import Deque, Optional


class Role(Enum):
    UNASSIGNED = "unassigned"
    INITIATOR = "initiator"
    RESPONDER = "responder"


class Phase(Enum):
    IDLE = "idle"
    AWAITING_PEER = "awaiting_peer"      # Joined the relay, no offer yet
    CREATING_OFFER = "creating_offer"    # Initiator generating its offer
    OFFER_SENT = "offer_sent"            # Offer set as local description
    AWAITING_ANSWER = "awaiting_answer"  # Offer written to the relay
    CONNECTED = "connected"              # Offer/answer exchange complete
    ENDED = "ended"


# Phases in which remote candidates are accepted (buffered or applied)
CANDIDATE_PHASES = frozenset(
    {
        Phase.AWAITING_PEER,
        Phase.CREATING_OFFER,
        Phase.OFFER_SENT,
        Phase.AWAITING_ANSWER,
        Phase.CONNECTED,
    }
)

_attempt_ids = count(1)


class CallAttempt:
    """
    State of one call attempt, from media acquisition to hang-up.

    An attempt is never reused: once it reaches Phase.ENDED a new attempt must
    be created for the next call.
    """

    def __init__(self):
        self.attempt_id = next(_attempt_ids)
        self.role = Role.UNASSIGNED
        self.phase = Phase.IDLE
        self.transport = None
        self.local_media = None
        self.remote_sink = None
        self.pending_candidates: Deque[dict] = deque()
        self.created_at = datetime.now()

    def __repr__(self):
        return f"<CallAttempt #{self.attempt_id} {self.role.value}/{self.phase.value}>"

    @property
    def is_ended(self) -> bool:
        return self.phase is Phase.ENDED

    @property
    def has_remote_description(self) -> bool:
        return (
            self.transport is not None
            and getattr(self.transport, "remoteDescription", None) is not None
        )

    def transition(self, phase: Phase):
        """Move to a new phase. Ended attempts stay ended."""
        if self.is_ended:
            log_debug(f"Attempt #{self.attempt_id} already ended, ignoring -> {phase.value}")
            return False
        old_phase = self.phase
        self.phase = phase
        log_debug(f"Attempt #{self.attempt_id} phase: {old_phase.value} -> {phase.value}")
        return True

    def assign_role(self, role: Role):
        if self.role is not Role.UNASSIGNED:
            log_warning(f"Attempt #{self.attempt_id} already has role {self.role.value}")
            return False
        self.role = role
        log_info(f"Attempt #{self.attempt_id} role: {role.value}")
        return True

    async def set_remote_description(self, description):
        """
        Set the remote description and drain buffered candidates in arrival order.

        Raises:
            InvalidRemoteDescription: if the transport refuses the description
        """
        if self.transport is None:
            raise InvalidRemoteDescription("No transport to receive the description")
        try:
            await self.transport.setRemoteDescription(description)
        except Exception as e:
            raise InvalidRemoteDescription(f"Cannot set remote {description.type}: {e}") from e

        if self.is_ended:
            return
        log_debug(f"Attempt #{self.attempt_id} remote {description.type} set")
        await self.drain_candidates()

    async def add_remote_candidate(self, payload: dict):
        """
        Apply a remote candidate, or buffer it until a remote description exists.

        Raises:
            CandidateRejected: if the candidate is malformed or refused
        """
        if is_end_of_candidates(payload):
            log_debug(f"Attempt #{self.attempt_id} end of remote candidates")
            return

        if not self.has_remote_description:
            self.pending_candidates.append(payload)
            log_debug(
                f"Attempt #{self.attempt_id} buffered candidate "
                f"({len(self.pending_candidates)} pending)"
            )
            return

        await self._apply_candidate(payload)

    async def drain_candidates(self):
        while self.pending_candidates and not self.is_ended:
            payload = self.pending_candidates.popleft()
            try:
                await self._apply_candidate(payload)
            except CandidateRejected as e:
                log_warning(f"Attempt #{self.attempt_id} dropped buffered candidate: {e}")

    async def _apply_candidate(self, payload: dict):
        candidate = payload_to_candidate(payload)
        if candidate is None:
            return
        try:
            await self.transport.addIceCandidate(candidate)
        except Exception as e:
            raise CandidateRejected(f"Transport refused candidate: {e}") from e
        log_debug(
            f"Attempt #{self.attempt_id} added candidate {candidate.type} "
            f"{candidate.ip}:{candidate.port}"
        )

    async def close_transport(self):
        transport, self.transport = self.transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            log_warning(f"Error closing transport for attempt #{self.attempt_id}: {e}")
