"""
Call Answer Handler

Applies the Responder's answer on the Initiator side.
"""

from duet.tools.errors import InvalidRemoteDescription
from duet.tools.logger import log_debug, log_error, log_warning
from duet.tools.signaling_messages import MessageType
from duet.use_cases.media.transport import payload_to_description
from duet.use_cases.negotiation import Phase, Role


NAME = MessageType.ANSWER.value

# Phases in which the initiator is waiting for an answer
ANSWER_PHASES = (Phase.OFFER_SENT, Phase.AWAITING_ANSWER)


def init(controller):
    """
    Initialize the answer handler.

    Args:
        controller: CallController receiving relay messages
    """
    log_debug(f"Registering topic: {NAME}")

    @controller.on(NAME)
    async def handle_answer(attempt, message):
        if attempt.role is not Role.INITIATOR or attempt.phase not in ANSWER_PHASES:
            log_warning(
                f"Ignoring out-of-sequence answer in {attempt.role.value}/{attempt.phase.value}"
            )
            return

        try:
            answer = payload_to_description(message["sdp"], "answer")
            await attempt.set_remote_description(answer)
        except InvalidRemoteDescription as e:
            log_error(f"Rejected answer: {e}")
            return

        controller.mark_connected(attempt)
        controller.report("Received answer. Call connected!")
