"""
Signaling message codec

One JSON object per message, discriminated by its "type" field. Both the
relay and the negotiation client encode and decode through this module.

    {"type": "status", "message": "..."}
    {"type": "peer_joined", "message": "..."}
    {"type": "offer", "sdp": {"type": "offer", "sdp": "v=0..."}}
    {"type": "answer", "sdp": {"type": "answer", "sdp": "v=0..."}}
    {"type": "candidate", "candidate": {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}}
    {"type": "disconnection", "message": "..."}
    {"type": "hangup"}
"""

from duet.tools.contract_validation import (
    ContractValidationError,
    NumberType,
    OneOfType,
    OptionalType,
    StringType,
    validate_contract_or_raise,
)
from enum import Enum
from typing import Optional
import json


class MessageType(str, Enum):
    STATUS = "status"
    PEER_JOINED = "peer_joined"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    DISCONNECTION = "disconnection"
    HANGUP = "hangup"


# Notifications only the relay may originate
RELAY_MESSAGE_TYPES = frozenset(
    {MessageType.STATUS, MessageType.PEER_JOINED, MessageType.DISCONNECTION}
)

# Messages a client may send for forwarding to its peer
CLIENT_MESSAGE_TYPES = frozenset(
    {MessageType.OFFER, MessageType.ANSWER, MessageType.CANDIDATE, MessageType.HANGUP}
)

SESSION_DESCRIPTION = {
    "type": OneOfType("offer", "answer", "pranswer", "rollback"),
    "sdp": StringType,
}

CANDIDATE_DESCRIPTOR = {
    "candidate": StringType,
    "sdpMid": OptionalType(StringType),
    "sdpMLineIndex": OptionalType(NumberType),
    "usernameFragment": OptionalType(StringType),
}

MESSAGE_CONTRACTS = {
    MessageType.STATUS: {"message": StringType},
    MessageType.PEER_JOINED: {"message": StringType},
    MessageType.OFFER: {"sdp": SESSION_DESCRIPTION},
    MessageType.ANSWER: {"sdp": SESSION_DESCRIPTION},
    MessageType.CANDIDATE: {"candidate": CANDIDATE_DESCRIPTOR},
    MessageType.DISCONNECTION: {"message": StringType},
    MessageType.HANGUP: {},
}


def message_type_of(message: dict) -> MessageType:
    """Return the MessageType of a decoded record, or raise ContractValidationError."""
    raw_type = message.get("type") if isinstance(message, dict) else None
    try:
        return MessageType(raw_type)
    except ValueError:
        raise ContractValidationError(
            "unknown_type", f"Unknown message type: {raw_type!r}"
        ) from None


def validate_message(message: dict) -> dict:
    """Validate a record against the contract of its type and return it."""
    msg_type = message_type_of(message)
    validate_contract_or_raise(MESSAGE_CONTRACTS[msg_type], message)
    return message


def decode(raw) -> dict:
    """
    Decode one wire frame into a validated message record.

    Args:
        raw: Text (or UTF-8 bytes) frame received from the channel

    Returns:
        dict with at least a valid "type" key

    Raises:
        ContractValidationError: if the frame is not JSON or does not match
            the contract of its type
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ContractValidationError("invalid_json", f"Invalid UTF-8: {e}") from e
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ContractValidationError("invalid_json", f"Invalid JSON: {e}") from e
    if not isinstance(message, dict):
        raise ContractValidationError("invalid_json", "Message must be a JSON object")
    return validate_message(message)


def encode(message: dict) -> str:
    """Validate and serialise one message record."""
    return json.dumps(validate_message(message))


def status(text: str) -> dict:
    return {"type": MessageType.STATUS.value, "message": text}


def peer_joined(text: str) -> dict:
    return {"type": MessageType.PEER_JOINED.value, "message": text}


def disconnection(text: str) -> dict:
    return {"type": MessageType.DISCONNECTION.value, "message": text}


def offer(sdp: dict) -> dict:
    return {"type": MessageType.OFFER.value, "sdp": sdp}


def answer(sdp: dict) -> dict:
    return {"type": MessageType.ANSWER.value, "sdp": sdp}


def candidate(
    candidate_line: str,
    sdp_mid: Optional[str] = None,
    sdp_mline_index: Optional[int] = None,
) -> dict:
    return {
        "type": MessageType.CANDIDATE.value,
        "candidate": {
            "candidate": candidate_line,
            "sdpMid": sdp_mid,
            "sdpMLineIndex": sdp_mline_index,
        },
    }


def hangup() -> dict:
    return {"type": MessageType.HANGUP.value}
