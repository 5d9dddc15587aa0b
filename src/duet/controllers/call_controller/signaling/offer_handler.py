"""
Call Offer Handler

Handles the offer forwarded by the relay. Receiving an offer before any
peer_joined makes this client the Responder: it answers and the handshake is
complete on its side.
"""

from duet.tools.errors import InvalidRemoteDescription, RelayClosed
from duet.tools.logger import log_debug, log_error, log_warning
from duet.tools import signaling_messages as messages
from duet.use_cases.media.transport import description_to_payload, payload_to_description
from duet.use_cases.negotiation import Phase, Role


NAME = messages.MessageType.OFFER.value


def init(controller):
    """
    Initialize the offer handler.

    Args:
        controller: CallController receiving relay messages
    """
    log_debug(f"Registering topic: {NAME}")

    @controller.on(NAME)
    async def handle_offer(attempt, message):
        """
        Flow:
        1. Check the attempt can still take the Responder role
        2. Create the transport and set the offer as remote description
           (buffered candidates are applied here)
        3. Create the answer and set it as local description
        4. Send the answer and mark the attempt connected
        """
        if attempt.role is Role.INITIATOR or attempt.phase is not Phase.AWAITING_PEER:
            log_warning(
                f"Ignoring out-of-sequence offer in {attempt.role.value}/{attempt.phase.value}"
            )
            return

        try:
            offer = payload_to_description(message["sdp"], "offer")
        except InvalidRemoteDescription as e:
            log_error(f"Rejected offer: {e}")
            return

        if attempt.role is Role.UNASSIGNED:
            attempt.assign_role(Role.RESPONDER)
        controller.report("Received offer. Creating answer...")

        if attempt.transport is not None:
            await attempt.close_transport()
        transport = controller.create_transport(attempt)
        buffered = list(attempt.pending_candidates)

        try:
            await attempt.set_remote_description(offer)
            answer = await transport.createAnswer()
            await transport.setLocalDescription(answer)
        except Exception as e:
            log_error(f"Error answering offer: {e}")
            await attempt.close_transport()
            # Candidates drained into the discarded transport wait for the next offer
            applied = len(buffered) - len(attempt.pending_candidates)
            attempt.pending_candidates.extendleft(reversed(buffered[:applied]))
            return

        try:
            await controller.send(
                messages.answer(description_to_payload(transport.localDescription))
            )
        except RelayClosed as e:
            log_error(f"Could not send answer: {e}")
            return

        controller.mark_connected(attempt)
        controller.report("Answer sent. Connection should be establishing...")
