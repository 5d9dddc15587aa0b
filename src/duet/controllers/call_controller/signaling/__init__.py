"""
Call Signaling Module

Handles relay messages (role assignment, offer, answer, ICE candidates and
teardown notices) for the negotiation client.
"""

from .status_handler import init as init_status_handler
from .offer_handler import init as init_offer_handler
from .answer_handler import init as init_answer_handler
from .ice_handler import init as init_ice_handler
from .hangup_handler import init as init_hangup_handler


def initialize_signaling(controller):
    """
    Initialize all signaling handlers.

    Args:
        controller: CallController receiving relay messages
    """
    init_status_handler(controller)
    init_offer_handler(controller)
    init_answer_handler(controller)
    init_ice_handler(controller)
    init_hangup_handler(controller)
