"""
Session State Machine

Owns the authentication state, the session key and the negotiated
transforms, and runs the login sub-protocol (optional ENCRYPT, then AUTH)
on first use, on explicit login, and after the server reports the session
key as no longer valid.

States::

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED -> EXPIRED
                             ^                                |
                             +--------------------------------+

    any state -> LOGGED_OUT (explicit logout only)
    LOGGED_OUT -> AUTHENTICATING (explicit login only)

A failed authentication attempt, or an expired session nobody recovers,
falls back to UNAUTHENTICATED.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from .constants import (
    CMD_AUTH,
    CMD_ENCRYPT,
    CMD_LOGOUT,
    ENCODING_PARAM_VALUE,
    ENCRYPTION_ENABLED,
    ENCRYPTION_TYPE_AES,
    LOGIN_ACCEPTED_CODES,
    LOGIN_ACCEPTED_NEW_VERSION,
    LOGOUT_CODES,
    SESSION_EXPIRED_CODES,
)
from .errors import (
    EngineError,
    LoginFailed,
    NotAuthenticated,
    ReauthenticationFailed,
    SessionStateError,
    TransportError,
)

if TYPE_CHECKING:
    from .codec import Response
    from .config import EngineConfig
    from .transforms import PayloadTransform

log = structlog.get_logger()

# (command, params, login) -> response; supplied by the dispatcher.
RoundTrip = Callable[[str, "tuple[tuple[str, str], ...]", bool], Awaitable["Response"]]


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNAUTHENTICATED: frozenset(
        {SessionState.AUTHENTICATING, SessionState.LOGGED_OUT}
    ),
    SessionState.AUTHENTICATING: frozenset(
        {SessionState.AUTHENTICATED, SessionState.UNAUTHENTICATED, SessionState.LOGGED_OUT}
    ),
    SessionState.AUTHENTICATED: frozenset(
        {SessionState.EXPIRED, SessionState.AUTHENTICATING, SessionState.LOGGED_OUT}
    ),
    SessionState.EXPIRED: frozenset(
        {SessionState.AUTHENTICATING, SessionState.UNAUTHENTICATED, SessionState.LOGGED_OUT}
    ),
    SessionState.LOGGED_OUT: frozenset({SessionState.AUTHENTICATING}),
}


@dataclass(frozen=True)
class Credentials:
    """AniDB account credentials."""

    username: str
    password: str = field(repr=False)


@dataclass
class Session:
    """Mutable session state shared by the codec, gate and dispatcher."""

    state: SessionState = SessionState.UNAUTHENTICATED
    key: str | None = field(default=None, repr=False)
    compression: bool = False
    transform: PayloadTransform | None = field(default=None, repr=False)
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise SessionStateError(
                f"Illegal session transition: {self.state.value} -> {target.value}"
            )
        log.info("session_state", old=self.state.value, new=target.value)
        self.state = target

    def _clear(self) -> None:
        self.key = None
        self.compression = False
        self.transform = None

    def begin_authentication(self) -> None:
        self._transition(SessionState.AUTHENTICATING)
        self._clear()

    def enable_encryption(self, transform: PayloadTransform) -> None:
        """Install the encryption transform negotiated during login."""
        if self.state is not SessionState.AUTHENTICATING:
            raise SessionStateError("Encryption can only be negotiated while authenticating")
        self.transform = transform

    def authenticate(self, key: str, *, compression: bool = False) -> None:
        self._transition(SessionState.AUTHENTICATED)
        self.key = key
        self.compression = compression

    def fail_authentication(self) -> None:
        self._transition(SessionState.UNAUTHENTICATED)
        self._clear()

    def expire(self) -> None:
        self._transition(SessionState.EXPIRED)

    def discard(self) -> None:
        """Drop an expired session without logging in again."""
        self._transition(SessionState.UNAUTHENTICATED)
        self._clear()

    def log_out(self) -> None:
        self._transition(SessionState.LOGGED_OUT)
        self._clear()

    def touch(self, now: float | None = None) -> None:
        self.last_activity = time.monotonic() if now is None else now

    def idle_for(self, now: float | None = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_activity


# =============================================================================
# Login Reply Parsing
# =============================================================================


def parse_login_reply(response: Response) -> str:
    """Extract the session key from an AUTH reply.

    ``200 {key} LOGIN ACCEPTED`` or ``201 {key} LOGIN ACCEPTED - NEW VERSION
    AVAILABLE``. With NAT detection the client address follows the key; only
    the first token is used.

    Raises:
        LoginFailed: For any other code, or an accepted reply without a key
    """
    if response.code not in LOGIN_ACCEPTED_CODES:
        raise LoginFailed(response)

    tokens = response.text.split(" ")
    if len(tokens) < 2 or not tokens[0]:
        raise LoginFailed(response)
    return tokens[0]


def parse_encrypt_reply(response: Response) -> str:
    """Extract the salt from ``209 {salt} ENCRYPTION ENABLED``."""
    if response.code != ENCRYPTION_ENABLED:
        raise LoginFailed(response)

    salt = response.text.split(" ", 1)[0]
    if not salt:
        raise LoginFailed(response)
    return salt


# =============================================================================
# Session Manager
# =============================================================================


class SessionManager:
    """Runs authentication against a shared :class:`Session`.

    One authentication attempt is in flight at a time; callers that need a
    session while one is running wait for it and reuse its outcome.
    """

    def __init__(
        self,
        session: Session,
        config: EngineConfig,
        round_trip: RoundTrip,
        credentials: Credentials | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self._round_trip = round_trip
        self._credentials = credentials
        self._lock = asyncio.Lock()
        # Set while the state is stable, cleared from expiry until login ends.
        self._settled = asyncio.Event()
        self._settled.set()
        self.logins = 0

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    @property
    def ready(self) -> bool:
        return self.session.authenticated

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def _auth_params(self, credentials: Credentials) -> tuple[tuple[str, str], ...]:
        config = self.config
        params = [
            ("user", credentials.username),
            ("pass", credentials.password),
            ("protover", str(config.protocol_version)),
            ("client", config.client_name),
            ("clientver", str(config.client_version)),
            ("enc", ENCODING_PARAM_VALUE),
        ]
        if config.compression:
            params.append(("comp", "1"))
        return tuple(params)

    async def _authenticate(self, credentials: Credentials) -> Response:
        """Run ENCRYPT (if configured) and AUTH. Caller holds the lock."""
        self.session.begin_authentication()
        self._settled.clear()
        self.logins += 1
        try:
            if self.config.encryption:
                reply = await self._round_trip(
                    CMD_ENCRYPT,
                    (("user", credentials.username), ("type", str(ENCRYPTION_TYPE_AES))),
                    True,
                )
                salt = parse_encrypt_reply(reply)
                self.session.enable_encryption(
                    self.config.transform_factory(self.config.api_key or "", salt)
                )
                log.debug("encryption_enabled")

            reply = await self._round_trip(CMD_AUTH, self._auth_params(credentials), True)
            key = parse_login_reply(reply)
        except BaseException:
            self.session.fail_authentication()
            raise
        finally:
            self._settled.set()

        if reply.code == LOGIN_ACCEPTED_NEW_VERSION:
            log.warning("client_version_outdated", client=self.config.client_name)

        self.session.authenticate(key, compression=self.config.compression)
        self.session.touch()
        log.info("logged_in", user=credentials.username, compression=self.config.compression)
        return reply

    async def login(self, credentials: Credentials) -> Response:
        """Store credentials and authenticate now.

        Raises:
            LoginFailed: If the server rejects the login
        """
        async with self._lock:
            self._credentials = credentials
            return await self._authenticate(credentials)

    async def ensure(self) -> None:
        """Make sure a session exists before a command is sent.

        Raises:
            NotAuthenticated: If logged out or no credentials are stored
            LoginFailed: If an implicit login is rejected
        """
        if self.session.authenticated:
            return
        if self.session.state is SessionState.LOGGED_OUT:
            raise NotAuthenticated("Session is logged out")

        async with self._lock:
            if self.session.authenticated:
                return
            if self.session.state is SessionState.LOGGED_OUT or self._credentials is None:
                raise NotAuthenticated(f"Session is {self.session.state.value}")
            await self._authenticate(self._credentials)

    async def wait_ready(self) -> None:
        """Wait out an expiry or login in progress.

        Raises:
            NotAuthenticated: If the session did not end up authenticated
        """
        while not self.session.authenticated:
            if self._settled.is_set():
                raise NotAuthenticated(f"Session is {self.session.state.value}")
            await self._settled.wait()

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    def observe(self, response: Response, key_used: str | None) -> bool:
        """Check a response for session expiry.

        Returns:
            True if the response reports the session key as invalid
        """
        if response.code not in SESSION_EXPIRED_CODES:
            return False

        if self.session.authenticated and self.session.key == key_used:
            log.info("session_expired", code=response.code)
            self.session.expire()
            self._settled.clear()
        return True

    async def recover(self, stale_key: str | None) -> None:
        """Re-authenticate after expiry, once for all waiting callers.

        Raises:
            ReauthenticationFailed: If there is nothing to log in with, or the
                login is rejected or lost
            TransportError: If the transport fails during the re-login
        """
        try:
            async with self._lock:
                session = self.session
                if session.authenticated and session.key != stale_key:
                    return
                if session.state is SessionState.LOGGED_OUT:
                    self._settled.set()
                    raise ReauthenticationFailed("Session was logged out during recovery")
                if self._credentials is None:
                    raise ReauthenticationFailed("No credentials to re-authenticate with")

                try:
                    await self._authenticate(self._credentials)
                except TransportError:
                    raise
                except EngineError as exc:
                    raise ReauthenticationFailed(f"Re-login failed: {exc}") from exc
        finally:
            # Cancelled before the lock, or nothing to log in with.
            self.abandon()

    def abandon(self) -> None:
        """Give up on an expired session that nobody is recovering.

        The session falls back to UNAUTHENTICATED and callers blocked in
        :meth:`wait_ready` are released; the next command logs in afresh.
        """
        if self.session.state is not SessionState.EXPIRED:
            return
        log.info("session_abandoned")
        self.session.discard()
        self._settled.set()

    # -------------------------------------------------------------------------
    # Logout
    # -------------------------------------------------------------------------

    async def logout(self) -> Response | None:
        """End the session.

        Sends LOGOUT when authenticated; local state is cleared even if the
        round trip fails.

        Returns:
            The LOGOUT response, or None when nothing was sent
        """
        async with self._lock:
            reply = None
            try:
                if self.session.authenticated:
                    reply = await self._round_trip(CMD_LOGOUT, (), False)
                    if reply.code not in LOGOUT_CODES:
                        log.warning("unexpected_logout_reply", code=reply.code, text=reply.text)
            finally:
                if self.session.state is not SessionState.LOGGED_OUT:
                    self.session.log_out()
                self._settled.set()
            log.info("logged_out")
            return reply
