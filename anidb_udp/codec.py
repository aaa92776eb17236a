"""
AniDB UDP Packet Codec

Encodes outbound command envelopes and decodes inbound datagrams.

Outbound layout::

    COMMAND name=value&name=value&tag=T0001&s=SESSIONKEY

Inbound layout::

    [tag ]CODE status text\\n
    data line\\n
    data line

A datagram may be zlib-compressed (two leading zero bytes) and, once
encryption is negotiated, AES-encrypted. The codec never interprets
command-specific data; that belongs to the layer above.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from .constants import (
    ENCODING,
    ESCAPED_AMPERSAND,
    ESCAPED_NEWLINE,
    FIELD_SEPARATOR,
    LINE_SEPARATOR,
    MIN_STATUS_LENGTH,
    PARAM_SEPARATOR,
    SESSION_PARAM,
    SESSIONLESS_COMMANDS,
    STATUS_CODE_LENGTH,
    TAG_PARAM,
)
from .errors import TransformFailed, TruncatedPacket
from .transforms import inflate, is_compressed

if TYPE_CHECKING:
    from .session import Session

ParamValue = Union[str, int, float, bool]
Params = Union[Mapping[str, ParamValue], Iterable[tuple[str, ParamValue]], None]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Request:
    """An outbound logical request.

    The tag stays fixed across resends; ``retries`` counts resends only.
    ``login`` marks requests that may go out without an established
    session (ENCRYPT, AUTH). ``sent_key`` is the session key
    the most recent send carried.
    """

    command: str
    params: tuple[tuple[str, str], ...]
    tag: str
    created: float = field(default_factory=time.monotonic)
    retries: int = 0
    login: bool = False
    sent_key: str | None = field(default=None, repr=False)

    @property
    def attempts(self) -> int:
        return self.retries + 1


@dataclass(frozen=True)
class Response:
    """A decoded server response."""

    code: int
    text: str
    lines: tuple[str, ...] = ()
    tag: str | None = None

    @property
    def data(self) -> str:
        """Data block with lines joined by newlines."""
        return LINE_SEPARATOR.join(self.lines)

    @property
    def fields(self) -> list[list[str]]:
        """Data lines split on ``|`` with escapes reversed."""
        return [
            [unescape_value(value) for value in line.split(FIELD_SEPARATOR)]
            for line in self.lines
        ]


# =============================================================================
# Parameter Encoding
# =============================================================================


def escape_value(value: str) -> str:
    """Escape a parameter value for the wire."""
    return value.replace("&", ESCAPED_AMPERSAND).replace(LINE_SEPARATOR, ESCAPED_NEWLINE)


def unescape_value(value: str) -> str:
    """Reverse :func:`escape_value` for a response field."""
    return value.replace(ESCAPED_NEWLINE, LINE_SEPARATOR).replace(ESCAPED_AMPERSAND, "&")


def _format_value(value: ParamValue) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def normalize_params(params: Params) -> tuple[tuple[str, str], ...]:
    """Turn a mapping or sequence of pairs into ordered string pairs.

    Args:
        params: Mapping, iterable of (name, value) pairs, or None

    Returns:
        Tuple of (name, value) string pairs, order preserved

    Raises:
        ValueError: If a name is empty, reserved, or contains wire delimiters
    """
    if params is None:
        return ()

    items = params.items() if isinstance(params, Mapping) else params

    normalized: list[tuple[str, str]] = []
    for name, value in items:
        if not name or any(c in name for c in "=& \n"):
            raise ValueError(f"Invalid parameter name: {name!r}")
        if name in (TAG_PARAM, SESSION_PARAM):
            raise ValueError(f"Parameter {name!r} is managed by the engine")
        normalized.append((name, _format_value(value)))

    return tuple(normalized)


def encode_command(
    command: str,
    params: Iterable[tuple[str, str]],
    tag: str,
    session_key: str | None = None,
) -> str:
    """Build the plaintext command line.

    Args:
        command: Command name (upper case)
        params: Ordered (name, value) pairs, unescaped
        tag: Correlation tag to append
        session_key: Session key, appended unless the command is session-less

    Returns:
        Command line ready for encoding
    """
    pairs = [(name, escape_value(value)) for name, value in params]
    pairs.append((TAG_PARAM, tag))
    if session_key is not None and command not in SESSIONLESS_COMMANDS:
        pairs.append((SESSION_PARAM, session_key))

    body = PARAM_SEPARATOR.join(f"{name}={value}" for name, value in pairs)
    return f"{command} {body}"


# =============================================================================
# Response Parsing
# =============================================================================


def _is_status_code(token: str) -> bool:
    return len(token) == STATUS_CODE_LENGTH and token.isascii() and token.isdigit()


def parse_response(text: str) -> Response:
    """Parse a decoded, plaintext response.

    The first line is ``[tag ]CODE text``; a first token that is not a
    three digit code is taken as the echoed tag.

    Args:
        text: Plaintext datagram

    Returns:
        Parsed response

    Raises:
        TruncatedPacket: If the status part is too short or malformed
    """
    head, _, body = text.partition(LINE_SEPARATOR)
    head = head.rstrip("\r")

    tag: str | None = None
    status = head
    first, _, rest = head.partition(" ")
    if not _is_status_code(first):
        tag = first or None
        status = rest

    if len(status) < MIN_STATUS_LENGTH:
        raise TruncatedPacket(
            f"Reply less than {MIN_STATUS_LENGTH} chars: {status!r}", tag=tag
        )

    code_str = status[:STATUS_CODE_LENGTH]
    if not _is_status_code(code_str) or status[STATUS_CODE_LENGTH] != " ":
        raise TruncatedPacket(f"Malformed status line: {head!r}", tag=tag)

    lines = body.split(LINE_SEPARATOR) if body else []
    if lines and lines[-1] == "":
        lines.pop()

    return Response(
        code=int(code_str),
        text=status[STATUS_CODE_LENGTH + 1 :],
        lines=tuple(line.rstrip("\r") for line in lines),
        tag=tag,
    )


# =============================================================================
# Datagram Encoding/Decoding
# =============================================================================


def encode(request: Request, session: Session | None = None) -> bytes:
    """Encode a request into a datagram.

    Args:
        request: Request to encode
        session: Current session; supplies the key and encryption transform

    Returns:
        Datagram bytes
    """
    session_key = session.key if session is not None else None
    line = encode_command(request.command, request.params, request.tag, session_key)
    data = line.encode(ENCODING)

    transform = session.transform if session is not None else None
    if transform is not None:
        data = transform.encrypt(data)
    return data


def decode(data: bytes, session: Session | None = None) -> Response:
    """Decode a datagram into a response.

    Compression is detected first; then the session's encryption transform,
    if any, is reversed. The server compresses before encrypting, so a
    decrypted payload is checked for the compression marker again.

    Args:
        data: Raw datagram
        session: Current session; supplies the encryption transform

    Returns:
        Parsed response

    Raises:
        TruncatedPacket: If the header is missing or malformed
        TransformFailed: If decompression or decryption fails
    """
    if is_compressed(data):
        data = inflate(data)

    transform = session.transform if session is not None else None
    if transform is not None:
        try:
            data = transform.decrypt(data)
        except TransformFailed:
            raise
        except Exception as exc:
            raise TransformFailed(f"decrypt failed: {exc}") from exc
        if is_compressed(data):
            data = inflate(data)

    return parse_response(data.decode(ENCODING, errors="replace"))


class PacketCodec:
    """Codec bound to one session.

    The session object is shared with the state machine, so the codec
    always sees the current key and transform.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def encode(self, request: Request) -> bytes:
        """Encode with the session's current key and transform."""
        return encode(request, self.session)

    def decode(self, data: bytes) -> Response:
        """Decode with the session's current transform."""
        return decode(data, self.session)
