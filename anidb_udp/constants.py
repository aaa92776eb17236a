"""
AniDB UDP API Protocol Constants

Wire-level constants shared by the codec, session state machine and
dispatcher. Values that are operator policy (intervals, timeouts, retry
counts) live here only as defaults; the engine always reads them from
:class:`anidb_udp.config.EngineConfig`.
"""

from __future__ import annotations

# =============================================================================
# Endpoint
# =============================================================================

DEFAULT_HOST = "api.anidb.net"
DEFAULT_PORT = 9000

PROTOCOL_VERSION = 3

# =============================================================================
# Flood Control Defaults
# =============================================================================

# The server bans clients that send faster than this. Before a session
# exists the long-term limit applies; an authenticated client may use the
# short-term one.
DEFAULT_PRE_AUTH_INTERVAL = 4.0  # seconds
DEFAULT_POST_AUTH_INTERVAL = 2.0  # seconds

DEFAULT_REQUEST_TIMEOUT = 10.0  # seconds
DEFAULT_MAX_RETRIES = 2

# Sessions expire after 35 minutes without traffic.
SESSION_IDLE_LIFETIME = 35 * 60  # seconds

# =============================================================================
# Envelope
# =============================================================================

TAG_PARAM = "tag"
SESSION_PARAM = "s"
TAG_PREFIX = "T"
TAG_WIDTH = 4  # hex digits
TAG_SPACE = 16**TAG_WIDTH

PARAM_SEPARATOR = "&"
LINE_SEPARATOR = "\n"
FIELD_SEPARATOR = "|"

# Escapes applied to parameter values and reversed in response fields.
ESCAPED_AMPERSAND = "&amp;"
ESCAPED_NEWLINE = "<br />"

# Minimum status part: three digit code, a space, one character.
MIN_STATUS_LENGTH = 5
STATUS_CODE_LENGTH = 3

# Compressed datagrams start with two zero bytes, then a zlib stream.
COMPRESSION_MARKER = b"\x00\x00"

ENCODING = "utf-8"
ENCODING_PARAM_VALUE = "UTF8"

# =============================================================================
# Commands
# =============================================================================

CMD_AUTH = "AUTH"
CMD_LOGOUT = "LOGOUT"
CMD_ENCRYPT = "ENCRYPT"
CMD_PING = "PING"
CMD_VERSION = "VERSION"

# Commands that never carry the session key.
SESSIONLESS_COMMANDS = frozenset({CMD_AUTH, CMD_ENCRYPT, CMD_PING, CMD_VERSION})

# Commands only the session state machine may send.
RESERVED_COMMANDS = frozenset({CMD_AUTH, CMD_ENCRYPT, CMD_LOGOUT})

ENCRYPTION_TYPE_AES = 1

# =============================================================================
# Status Codes
# =============================================================================

LOGIN_ACCEPTED = 200
LOGIN_ACCEPTED_NEW_VERSION = 201
LOGGED_OUT = 203
ENCRYPTION_ENABLED = 209
NOT_LOGGED_IN = 403
LOGIN_FIRST = 501
INVALID_SESSION = 506

LOGIN_ACCEPTED_CODES = frozenset({LOGIN_ACCEPTED, LOGIN_ACCEPTED_NEW_VERSION})
LOGOUT_CODES = frozenset({LOGGED_OUT, NOT_LOGGED_IN})

# A response with one of these codes means the session key is no longer valid.
SESSION_EXPIRED_CODES = frozenset({LOGIN_FIRST, INVALID_SESSION})
