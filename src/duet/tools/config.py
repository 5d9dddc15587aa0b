"""
Runtime configuration for the relay and the negotiation client.

Values come from the command line (see duet.index) and are validated here
once, at startup.
"""

from duet.tools.errors import ConfigurationError
from typing import List, Optional
from urllib.parse import urlsplit

DEFAULT_RELAY_URL = "ws://localhost:8080/ws"

# Public STUN servers used by the media transport for NAT traversal
DEFAULT_ICE_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
]

DEFAULT_RELAY_HOST = "0.0.0.0"
DEFAULT_RELAY_PORT = 8080
DEFAULT_RELAY_PATH = "/ws"

# Seconds a lone client may wait for a peer before the relay gives up (0 disables)
DEFAULT_FORMING_TIMEOUT = 300
# Seconds a call attempt may spend between joining and connecting (0 disables)
DEFAULT_HANDSHAKE_TIMEOUT = 120

RELAY_SCHEMES = ("ws", "wss")
ICE_SCHEMES = ("stun", "turn", "turns")


def validate_relay_url(url: str) -> str:
    """
    Check that url is a usable ws:// or wss:// address.

    A scheme nested inside another one (e.g. "wss://https://host") is
    rejected rather than guessed at.
    """
    if not isinstance(url, str) or not url.strip():
        raise ConfigurationError("Relay URL must be a non-empty string")
    url = url.strip()

    parts = urlsplit(url)
    if parts.scheme not in RELAY_SCHEMES:
        raise ConfigurationError(
            f"Relay URL must start with ws:// or wss://, got {url!r}"
        )
    remainder = url[len(parts.scheme) + 3:]
    if "://" in remainder:
        raise ConfigurationError(f"Relay URL has a nested scheme: {url!r}")
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigurationError(f"Relay URL has an invalid port: {url!r}") from e
    if port == 0:
        raise ConfigurationError(f"Relay URL has an invalid port: {url!r}")
    if not parts.hostname:
        raise ConfigurationError(f"Relay URL has no host: {url!r}")
    return url


def validate_ice_servers(urls) -> List[str]:
    """Return the ICE server URLs as a list, rejecting unknown schemes."""
    validated = []
    for url in urls or []:
        if not isinstance(url, str) or ":" not in url:
            raise ConfigurationError(f"Invalid ICE server URL: {url!r}")
        scheme = url.split(":", 1)[0].lower()
        if scheme not in ICE_SCHEMES:
            raise ConfigurationError(
                f"ICE server URL must use stun:, turn: or turns:, got {url!r}"
            )
        validated.append(url)
    return validated


def validate_timeout(value, name: str) -> Optional[float]:
    """Normalise a timeout in seconds; 0 or None means disabled."""
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number of seconds") from e
    if value < 0:
        raise ConfigurationError(f"{name} cannot be negative")
    return value or None


class ClientConfig:
    """Settings for one negotiation client."""

    def __init__(
        self,
        relay_url: str = DEFAULT_RELAY_URL,
        ice_servers: Optional[List[str]] = None,
        auto_call: bool = False,
        handshake_timeout=DEFAULT_HANDSHAKE_TIMEOUT,
        audio_source: Optional[str] = None,
        audio_format: Optional[str] = None,
        record_to: Optional[str] = None,
    ):
        self.relay_url = validate_relay_url(relay_url)
        self.ice_servers = validate_ice_servers(
            DEFAULT_ICE_SERVERS if ice_servers is None else ice_servers
        )
        self.auto_call = bool(auto_call)
        self.handshake_timeout = validate_timeout(handshake_timeout, "handshake_timeout")
        self.audio_source = audio_source
        self.audio_format = audio_format
        self.record_to = record_to


class RelayConfig:
    """Settings for the signaling relay."""

    def __init__(
        self,
        host: str = DEFAULT_RELAY_HOST,
        port: int = DEFAULT_RELAY_PORT,
        path: str = DEFAULT_RELAY_PATH,
        forming_timeout=DEFAULT_FORMING_TIMEOUT,
        certfile: Optional[str] = None,
        keyfile: Optional[str] = None,
    ):
        if not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigurationError(f"Invalid relay port: {port!r}")
        if not path.startswith("/"):
            raise ConfigurationError(f"Relay path must start with '/': {path!r}")
        if bool(certfile) != bool(keyfile):
            raise ConfigurationError("certfile and keyfile must be given together")
        self.host = host
        self.port = port
        self.path = path
        self.forming_timeout = validate_timeout(forming_timeout, "forming_timeout")
        self.certfile = certfile
        self.keyfile = keyfile
