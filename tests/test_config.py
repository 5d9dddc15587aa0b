"""
Tests for relay and client configuration validation.
"""

import pytest

from duet.tools.config import (
    DEFAULT_ICE_SERVERS,
    ClientConfig,
    RelayConfig,
    validate_relay_url,
)
from duet.tools.errors import ConfigurationError


class TestRelayUrl:

    @pytest.mark.parametrize(
        "url",
        ["ws://localhost:8080/ws", "wss://relay.example.com/ws", "  ws://10.0.0.5/  "],
    )
    def test_accepts_websocket_urls(self, url):
        assert validate_relay_url(url) == url.strip()

    @pytest.mark.parametrize(
        "url",
        [
            "wss://https://backend-ntgs.onrender.com",
            "https://relay.example.com",
            "relay.example.com:8080",
            "ws://:8080/ws",
            "ws://host:0/ws",
            "ws://host:99999/ws",
            "",
            None,
        ],
    )
    def test_rejects_unusable_urls(self, url):
        with pytest.raises(ConfigurationError):
            validate_relay_url(url)


class TestClientConfig:

    def test_defaults(self):
        config = ClientConfig()

        assert config.ice_servers == DEFAULT_ICE_SERVERS
        assert config.ice_servers is not DEFAULT_ICE_SERVERS
        assert config.auto_call is False
        assert config.handshake_timeout == 120

    def test_custom_ice_servers_replace_defaults(self):
        config = ClientConfig(ice_servers=["turn:turn.example.com:3478", "TURNS:secure.example.com"])
        assert config.ice_servers == ["turn:turn.example.com:3478", "TURNS:secure.example.com"]

    def test_empty_ice_server_list_is_allowed(self):
        assert ClientConfig(ice_servers=[]).ice_servers == []

    @pytest.mark.parametrize("url", ["http://stun.example.com", "stun.example.com", 3478])
    def test_rejects_bad_ice_servers(self, url):
        with pytest.raises(ConfigurationError):
            ClientConfig(ice_servers=[url])

    def test_zero_timeout_disables_watchdog(self):
        assert ClientConfig(handshake_timeout=0).handshake_timeout is None

    @pytest.mark.parametrize("timeout", [-1, "soon"])
    def test_rejects_bad_timeout(self, timeout):
        with pytest.raises(ConfigurationError):
            ClientConfig(handshake_timeout=timeout)


class TestRelayConfig:

    def test_defaults(self):
        config = RelayConfig()

        assert config.port == 8080
        assert config.path == "/ws"
        assert config.forming_timeout == 300
        assert config.certfile is None

    def test_certificate_requires_key(self):
        with pytest.raises(ConfigurationError):
            RelayConfig(certfile="cert.pem")
        config = RelayConfig(certfile="cert.pem", keyfile="key.pem")
        assert config.keyfile == "key.pem"

    @pytest.mark.parametrize("kwargs", [{"port": 0}, {"port": 70000}, {"path": "ws"}])
    def test_rejects_bad_listen_settings(self, kwargs):
        with pytest.raises(ConfigurationError):
            RelayConfig(**kwargs)

    def test_zero_forming_timeout_disables_cleanup(self):
        assert RelayConfig(forming_timeout=0).forming_timeout is None
