"""
Error taxonomy shared by the relay and the negotiation client.

All of these are local conditions. The relay never forwards them to a peer.
"""


class DuetError(Exception):
    """Base class for all signaling errors."""


class ConfigurationError(DuetError):
    """Invalid relay address, ICE server URL or other startup setting."""


class MediaAccessDenied(DuetError):
    """Local audio capture could not be opened (declined or no device)."""


class RelayUnreachable(DuetError):
    """The relay channel could not be opened."""


class RelayClosed(DuetError):
    """The relay channel closed underneath an attempt."""


class InvalidRemoteDescription(DuetError):
    """A malformed or out-of-sequence offer/answer was received."""


class CandidateRejected(DuetError):
    """A remote candidate was malformed or refused by the transport."""


class InvalidAction(DuetError):
    """A client action was requested in a phase where it is not allowed."""
