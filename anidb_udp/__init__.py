"""
anidb_udp: asyncio client engine for the AniDB UDP API.

Tags, rate-limits, retries and session-manages commands so callers see a
plain ``execute(command, params) -> Response`` call.
"""

from .codec import PacketCodec, Request, Response
from .config import EngineConfig
from .correlation import CorrelationTable
from .dispatcher import Dispatcher, connect
from .errors import (
    ConfigError,
    DecodeError,
    DecodeFailure,
    EngineError,
    LoginFailed,
    NotAuthenticated,
    ReauthenticationFailed,
    SessionStateError,
    TagSpaceExhausted,
    TimeoutExceeded,
    TransformFailed,
    TransportError,
    TruncatedPacket,
)
from .gate import FloodGate
from .log import configure_logging
from .session import Credentials, Session, SessionManager, SessionState
from .supervisor import RetrySupervisor
from .transforms import AesEcbTransform, PayloadTransform
from .transport import Transport, UdpTransport

__version__ = "0.1.0"

__all__ = [
    "AesEcbTransform",
    "ConfigError",
    "CorrelationTable",
    "Credentials",
    "DecodeError",
    "DecodeFailure",
    "Dispatcher",
    "EngineConfig",
    "EngineError",
    "FloodGate",
    "LoginFailed",
    "NotAuthenticated",
    "PacketCodec",
    "PayloadTransform",
    "ReauthenticationFailed",
    "Request",
    "Response",
    "RetrySupervisor",
    "Session",
    "SessionManager",
    "SessionState",
    "SessionStateError",
    "TagSpaceExhausted",
    "TimeoutExceeded",
    "TransformFailed",
    "Transport",
    "TransportError",
    "TruncatedPacket",
    "UdpTransport",
    "configure_logging",
    "connect",
]
