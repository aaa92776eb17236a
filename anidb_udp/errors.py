"""Engine error taxonomy.

Every error the engine raises derives from :class:`EngineError`, so callers
can catch the whole family in one place.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .codec import Response


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigError(EngineError, ValueError):
    """The engine configuration is invalid."""


# =============================================================================
# Decoding
# =============================================================================


class DecodeFailure(enum.Enum):
    TRUNCATED = "truncated"
    TRANSFORM_FAILED = "transform_failed"


class DecodeError(EngineError):
    """An inbound datagram could not be decoded.

    Attributes:
        reason: Which decoding stage failed.
        tag: Echoed tag, when it could be read before the failure.
    """

    reason: DecodeFailure

    def __init__(self, message: str, *, tag: str | None = None) -> None:
        super().__init__(message)
        self.tag = tag


class TruncatedPacket(DecodeError):
    """Too few bytes for the status header, or the header is malformed."""

    reason = DecodeFailure.TRUNCATED


class TransformFailed(DecodeError):
    """Decompression or decryption of the payload failed."""

    reason = DecodeFailure.TRANSFORM_FAILED


# =============================================================================
# Request lifecycle
# =============================================================================


class TimeoutExceeded(EngineError):
    """No correlated response arrived within the retry budget."""

    def __init__(self, command: str, tag: str, attempts: int) -> None:
        self.command = command
        self.tag = tag
        self.attempts = attempts
        super().__init__(f"{command} (tag {tag}): no response after {attempts} attempts")


class TagSpaceExhausted(EngineError):
    """Every tag is held by an in-flight request."""


class TransportError(EngineError):
    """The datagram transport failed; not retried by the engine."""


# =============================================================================
# Session
# =============================================================================


class NotAuthenticated(EngineError):
    """A command was attempted without a usable session."""


class SessionStateError(EngineError):
    """An illegal session state transition was attempted."""


class LoginFailed(EngineError):
    """The server rejected the login sub-protocol.

    Attributes:
        response: The rejecting response.
    """

    def __init__(self, response: Response) -> None:
        self.response = response
        super().__init__(f"Error {response.code} - {response.text}")

    @property
    def code(self) -> int:
        return self.response.code


class ReauthenticationFailed(EngineError):
    """Transparent re-login after session expiry did not succeed."""
