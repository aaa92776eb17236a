"""
Engine Configuration Tests

Tests defaults, validation and ANIDB_* environment parsing.
"""

from __future__ import annotations

import pytest

from anidb_udp.config import EngineConfig
from anidb_udp.errors import ConfigError
from anidb_udp.transforms import AesEcbTransform


class TestDefaults:
    """Test documented defaults."""

    def test_defaults(self) -> None:
        config = EngineConfig()

        assert config.host == "api.anidb.net"
        assert config.port == 9000
        assert config.protocol_version == 3
        assert config.pre_auth_interval == 4.0
        assert config.post_auth_interval == 2.0
        assert config.request_timeout == 10.0
        assert config.max_retries == 2
        assert config.keepalive_interval is None
        assert not config.compression
        assert not config.encryption

    def test_default_transform_factory(self) -> None:
        """The default factory builds the AES transform."""
        transform = EngineConfig().transform_factory("apikey", "salt")

        assert isinstance(transform, AesEcbTransform)

    def test_api_key_not_in_repr(self) -> None:
        assert "hunter2" not in repr(EngineConfig(api_key="hunter2"))


class TestValidation:
    """Test __post_init__ validation."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"host": ""},
            {"port": 0},
            {"port": 70000},
            {"local_port": -1},
            {"client_name": "bad name"},
            {"client_version": -1},
            {"pre_auth_interval": -1.0},
            {"post_auth_interval": 5.0},
            {"request_timeout": 0},
            {"max_retries": -1},
            {"encryption": True},
            {"keepalive_interval": 0},
            {"keepalive_interval": 2100.0},
        ],
    )
    def test_invalid(self, overrides: dict) -> None:
        with pytest.raises(ConfigError):
            EngineConfig(**overrides)

    def test_config_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            EngineConfig(port=0)

    def test_encryption_with_key(self) -> None:
        assert EngineConfig(encryption=True, api_key="k").encryption


class TestFromEnv:
    """Test environment parsing."""

    def test_empty_environment(self) -> None:
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_all_variables(self) -> None:
        env = {
            "ANIDB_HOST": "127.0.0.1",
            "ANIDB_PORT": "9001",
            "ANIDB_LOCAL_PORT": "45000",
            "ANIDB_CLIENT": "myclient",
            "ANIDB_CLIENT_VERSION": "7",
            "ANIDB_PRE_AUTH_INTERVAL": "5",
            "ANIDB_POST_AUTH_INTERVAL": "2.5",
            "ANIDB_REQUEST_TIMEOUT": "15",
            "ANIDB_MAX_RETRIES": "4",
            "ANIDB_COMPRESSION": "yes",
            "ANIDB_ENCRYPTION": "1",
            "ANIDB_API_KEY": "apikey",
            "ANIDB_KEEPALIVE_INTERVAL": "300",
        }

        config = EngineConfig.from_env(env)

        assert config.host == "127.0.0.1"
        assert config.port == 9001
        assert config.local_port == 45000
        assert config.client_name == "myclient"
        assert config.client_version == 7
        assert config.pre_auth_interval == 5.0
        assert config.post_auth_interval == 2.5
        assert config.request_timeout == 15.0
        assert config.max_retries == 4
        assert config.compression
        assert config.encryption
        assert config.api_key == "apikey"
        assert config.keepalive_interval == 300.0

    def test_keepalive_off(self) -> None:
        assert EngineConfig.from_env({"ANIDB_KEEPALIVE_INTERVAL": "off"}).keepalive_interval is None

    def test_overrides_win(self) -> None:
        config = EngineConfig.from_env({"ANIDB_PORT": "9001"}, port=9002)

        assert config.port == 9002

    @pytest.mark.parametrize(
        "env",
        [
            {"ANIDB_PORT": "ninety"},
            {"ANIDB_COMPRESSION": "maybe"},
            {"ANIDB_REQUEST_TIMEOUT": "soon"},
        ],
    )
    def test_unparseable(self, env: dict) -> None:
        with pytest.raises(ConfigError, match="cannot parse"):
            EngineConfig.from_env(env)

    def test_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANIDB_MAX_RETRIES", "5")

        assert EngineConfig.from_env().max_retries == 5
