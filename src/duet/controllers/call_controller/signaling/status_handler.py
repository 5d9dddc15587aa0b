"""
Relay Status Handler

Reports relay status lines and assigns the Initiator role when the relay
announces that a peer joined this client's session.
"""

from duet.tools.logger import log_debug, log_warning
from duet.tools.signaling_messages import MessageType
from duet.use_cases.negotiation import Phase, Role


NAME = MessageType.STATUS.value
PEER_JOINED = MessageType.PEER_JOINED.value


def init(controller):
    """
    Initialize the status and peer_joined handlers.

    Args:
        controller: CallController receiving relay messages
    """
    log_debug(f"Registering topics: {NAME}, {PEER_JOINED}")

    @controller.on(NAME)
    async def handle_status(attempt, message):
        controller.report(message["message"])

    @controller.on(PEER_JOINED)
    async def handle_peer_joined(attempt, message):
        """
        The client that was already waiting becomes the Initiator.

        With auto_call configured the offer is created straight away,
        otherwise the user places the call.
        """
        if attempt.phase is not Phase.AWAITING_PEER or not attempt.assign_role(Role.INITIATOR):
            log_warning(
                f"Ignoring {PEER_JOINED} in {attempt.role.value}/{attempt.phase.value}"
            )
            return

        controller.report(message["message"])
        if controller.config.auto_call:
            await controller.make_offer(attempt)
