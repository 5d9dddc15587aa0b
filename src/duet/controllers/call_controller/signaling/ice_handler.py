"""
Call ICE Candidate Handler

Receives the peer's ICE candidates. Candidates that arrive before a remote
description exists are buffered by the attempt and applied in order later.
"""

from duet.tools.errors import CandidateRejected
from duet.tools.logger import log_debug, log_warning
from duet.tools.signaling_messages import MessageType
from duet.use_cases.negotiation import CANDIDATE_PHASES


NAME = MessageType.CANDIDATE.value


def init(controller):
    """
    Initialize the ICE candidate handler.

    Args:
        controller: CallController receiving relay messages
    """
    log_debug(f"Registering topic: {NAME}")

    @controller.on(NAME)
    async def handle_ice_candidate(attempt, message):
        if attempt.phase not in CANDIDATE_PHASES:
            log_debug(f"Ignoring candidate in phase {attempt.phase.value}")
            return

        try:
            await attempt.add_remote_candidate(message["candidate"])
        except CandidateRejected as e:
            # A single bad candidate never ends the call
            log_warning(f"Ignoring remote candidate: {e}")
