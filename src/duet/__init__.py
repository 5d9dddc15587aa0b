"""Two-party audio call signaling: negotiation client and pairing relay."""

__version__ = "0.1.0"
