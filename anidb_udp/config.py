"""
Engine Configuration

All operator policy (endpoint, rate intervals, timeouts, retries, session
options) is carried by :class:`EngineConfig`. The engine never reads the
environment itself; :meth:`EngineConfig.from_env` is the one place that does.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .constants import (
    DEFAULT_HOST,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_POST_AUTH_INTERVAL,
    DEFAULT_PRE_AUTH_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    PROTOCOL_VERSION,
    SESSION_IDLE_LIFETIME,
)
from .errors import ConfigError
from .transforms import AesEcbTransform, PayloadTransform

# (api_key, salt) -> transform
TransformFactory = Callable[[str, str], PayloadTransform]

ENV_PREFIX = "ANIDB_"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class EngineConfig:
    """Engine configuration.

    Attributes:
        host: Server host
        port: Server UDP port
        local_port: Local UDP port to bind, 0 for any
        client_name: Registered client name sent with AUTH
        client_version: Registered client version sent with AUTH
        protocol_version: UDP API protocol version
        pre_auth_interval: Minimum seconds between sends without a session
        post_auth_interval: Minimum seconds between sends with a session
        request_timeout: Seconds to wait for each attempt's response
        max_retries: Resends after the first attempt
        compression: Ask the server to compress responses
        encryption: Negotiate encryption before AUTH
        api_key: Client API key, required for encryption
        keepalive_interval: Idle seconds before a PING, None to disable
        transform_factory: Builds the encryption transform from key and salt
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    local_port: int = 0
    client_name: str = "anidbudp"
    client_version: int = 1
    protocol_version: int = PROTOCOL_VERSION
    pre_auth_interval: float = DEFAULT_PRE_AUTH_INTERVAL
    post_auth_interval: float = DEFAULT_POST_AUTH_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    compression: bool = False
    encryption: bool = False
    api_key: str | None = field(default=None, repr=False)
    keepalive_interval: float | None = None
    transform_factory: TransformFactory = field(
        default=AesEcbTransform.from_secret, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigError("host must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port}")
        if not 0 <= self.local_port < 65536:
            raise ConfigError(f"local_port out of range: {self.local_port}")
        if not self.client_name or not self.client_name.isalnum():
            raise ConfigError(f"client_name must be alphanumeric: {self.client_name!r}")
        if self.client_version < 0:
            raise ConfigError("client_version must not be negative")
        if self.pre_auth_interval < 0 or self.post_auth_interval < 0:
            raise ConfigError("send intervals must not be negative")
        if self.post_auth_interval > self.pre_auth_interval:
            raise ConfigError("post_auth_interval must not exceed pre_auth_interval")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        if self.max_retries < 0:
            raise ConfigError("max_retries must not be negative")
        if self.encryption and not self.api_key:
            raise ConfigError("encryption requires api_key")
        if self.keepalive_interval is not None:
            if self.keepalive_interval <= 0:
                raise ConfigError("keepalive_interval must be positive")
            if self.keepalive_interval >= SESSION_IDLE_LIFETIME:
                raise ConfigError(
                    f"keepalive_interval must be below the {SESSION_IDLE_LIFETIME}s session lifetime"
                )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> EngineConfig:
        """Build a configuration from ``ANIDB_*`` environment variables.

        Unset variables keep their defaults; keyword overrides win over both.

        Args:
            environ: Mapping to read instead of ``os.environ``
            **overrides: Field values to set directly

        Raises:
            ConfigError: If a variable cannot be parsed or the result is invalid
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        def read(name: str, field_name: str, convert: Callable[[str], Any]) -> None:
            raw = env.get(ENV_PREFIX + name)
            if raw is None:
                return
            try:
                values[field_name] = convert(raw.strip())
            except ValueError as exc:
                raise ConfigError(f"{ENV_PREFIX}{name}: cannot parse {raw!r}") from exc

        read("HOST", "host", str)
        read("PORT", "port", int)
        read("LOCAL_PORT", "local_port", int)
        read("CLIENT", "client_name", str)
        read("CLIENT_VERSION", "client_version", int)
        read("PRE_AUTH_INTERVAL", "pre_auth_interval", float)
        read("POST_AUTH_INTERVAL", "post_auth_interval", float)
        read("REQUEST_TIMEOUT", "request_timeout", float)
        read("MAX_RETRIES", "max_retries", int)
        read("COMPRESSION", "compression", _parse_bool)
        read("ENCRYPTION", "encryption", _parse_bool)
        read("API_KEY", "api_key", str)
        read("KEEPALIVE_INTERVAL", "keepalive_interval", _parse_optional_float)

        values.update(overrides)
        return cls(**values)


def _parse_bool(raw: str) -> bool:
    value = raw.lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(raw)


def _parse_optional_float(raw: str) -> float | None:
    if raw.lower() in ("", "none", "off"):
        return None
    return float(raw)
