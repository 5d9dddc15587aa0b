"""
Call Hang-up Handler

Ends the attempt when the peer hangs up or the relay reports that the peer
disconnected. Neither case echoes a hangup back.
"""

from duet.tools.logger import log_debug
from duet.tools.signaling_messages import MessageType


NAME = MessageType.HANGUP.value
DISCONNECTION = MessageType.DISCONNECTION.value


def init(controller):
    """
    Initialize the hangup and disconnection handlers.

    Args:
        controller: CallController receiving relay messages
    """
    log_debug(f"Registering topics: {NAME}, {DISCONNECTION}")

    @controller.on(NAME)
    async def handle_hangup(attempt, message):
        await controller.hang_up_attempt(attempt, "Call ended by remote peer.", notify_peer=False)

    @controller.on(DISCONNECTION)
    async def handle_disconnection(attempt, message):
        await controller.hang_up_attempt(attempt, message["message"], notify_peer=False)
