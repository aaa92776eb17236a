"""
Command Dispatcher

The caller-facing engine. Turns ``execute(command, params)`` into a tagged,
rate-limited, retried, session-aware round trip and owns the background
tasks (receive loop, keep-alive) that make it work.

Example::

    async with await connect(config, Credentials("user", "secret")) as engine:
        reply = await engine.execute("ANIME", {"aid": 1})
        print(reply.code, reply.fields)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from .codec import PacketCodec, Request, Response, normalize_params
from .constants import CMD_PING, RESERVED_COMMANDS
from .correlation import CorrelationTable
from .errors import DecodeError, ReauthenticationFailed, TransportError
from .gate import FloodGate
from .session import Credentials, Session, SessionManager
from .supervisor import RetrySupervisor
from .transport import Transport, UdpTransport

if TYPE_CHECKING:
    from .codec import Params
    from .config import EngineConfig

log = structlog.get_logger()

# Receive wake-up period; bounds how long close() waits for the loop.
RECEIVE_POLL_INTERVAL = 1.0  # seconds


class Dispatcher:
    """AniDB UDP client engine.

    Args:
        transport: Datagram transport to the server
        config: Engine configuration
        credentials: Stored credentials for implicit login and re-login
    """

    def __init__(
        self,
        transport: Transport,
        config: EngineConfig,
        credentials: Credentials | None = None,
    ) -> None:
        self.transport = transport
        self.config = config
        self.session = Session()
        self.table = CorrelationTable()
        self.codec = PacketCodec(self.session)
        self.gate = FloodGate(self.session, config)
        self.sessions = SessionManager(self.session, config, self._round_trip, credentials)
        self.supervisor = RetrySupervisor(
            self.codec, self.gate, transport, self.table, config, self.sessions
        )
        self._receiver: asyncio.Task[None] | None = None
        self._keepalive: asyncio.Task[None] | None = None
        self._failure: TransportError | None = None
        self._closed = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._receiver is not None and not self._receiver.done()

    def start(self) -> None:
        """Spawn the receive loop and, when configured, the keep-alive loop."""
        if self._closed:
            raise TransportError("engine closed")
        if self.running:
            return

        self._receiver = asyncio.create_task(self._receive_loop(), name="anidb-receive")
        if self.config.keepalive_interval is not None:
            self._keepalive = asyncio.create_task(
                self._keepalive_loop(self.config.keepalive_interval), name="anidb-keepalive"
            )
        log.info("engine_started", server=f"{self.config.host}:{self.config.port}")

    async def close(self) -> None:
        """Stop background tasks, fail pending requests and close the transport."""
        if self._closed:
            return
        self._closed = True

        tasks = [task for task in (self._keepalive, self._receiver) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        failed = self.table.fail_all(TransportError("engine closed"))
        self.transport.close()
        log.info("engine_closed", failed_requests=failed)

    async def __aenter__(self) -> Dispatcher:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    async def _receive_loop(self) -> None:
        while True:
            try:
                data = await self.transport.receive(RECEIVE_POLL_INTERVAL)
            except TransportError as exc:
                log.error("transport_failed", error=str(exc))
                self._failure = exc
                self.table.fail_all(exc)
                return

            if data is None:
                continue
            self._deliver(data)

    def _deliver(self, data: bytes) -> None:
        try:
            response = self.codec.decode(data)
        except DecodeError as exc:
            if exc.tag is not None and self.table.reject(exc.tag, exc):
                return
            log.warning("undecodable_packet", reason=exc.reason.value, error=str(exc))
            return

        if response.tag is None:
            log.warning("untagged_response", code=response.code, text=response.text)
            return

        log.debug("response_received", tag=response.tag, code=response.code)
        self.table.resolve(response.tag, response)

    async def _keepalive_loop(self, interval: float) -> None:
        while True:
            idle = self.session.idle_for()
            if idle < interval:
                await asyncio.sleep(interval - idle)
                continue
            if self._failure is not None:
                return
            if not self.session.authenticated:
                await asyncio.sleep(interval)
                continue

            try:
                await self.ping()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("keepalive_failed", error=str(exc))
                # Restart the idle timer.
                self.session.touch()

    # -------------------------------------------------------------------------
    # Round trips
    # -------------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._failure is not None:
            raise self._failure
        if self._closed:
            raise TransportError("engine closed")

    async def _send(
        self, command: str, params: tuple[tuple[str, str], ...], login: bool
    ) -> tuple[Response, str | None]:
        self._check_open()
        tag = self.table.allocate()
        waiter = self.table.register(tag)
        request = Request(command=command, params=params, tag=tag, login=login)
        response = await self.supervisor.send_with_retry(request, waiter)
        return response, request.sent_key

    async def _round_trip(
        self, command: str, params: tuple[tuple[str, str], ...], login: bool = False
    ) -> Response:
        response, _key = await self._send(command, params, login)
        return response

    async def execute(self, command: str, params: Params = None) -> Response:
        """Run one command and return its response.

        Any status code is returned as-is except session expiry, which is
        handled by one transparent re-login and one retry.

        Args:
            command: Command name, e.g. ``"ANIME"``
            params: Mapping or sequence of (name, value) pairs

        Returns:
            The correlated response

        Raises:
            ValueError: For a reserved command or invalid parameter
            NotAuthenticated: If no session exists and none can be created
            TimeoutExceeded: If every attempt went unanswered
            ReauthenticationFailed: If the session expired and re-login failed
            TransportError: If the transport failed or the engine is closed
        """
        command = command.upper()
        if command in RESERVED_COMMANDS:
            raise ValueError(f"{command} is reserved for login()/logout()")
        pairs = normalize_params(params)

        self._check_open()
        await self.sessions.ensure()

        response, key_used = await self._send(command, pairs, False)
        if not self.sessions.observe(response, key_used):
            return response

        log.info("command_session_expired", command=command, code=response.code)
        await self.sessions.recover(key_used)

        response, key_used = await self._send(command, pairs, False)
        if self.sessions.observe(response, key_used):
            self.sessions.abandon()
            raise ReauthenticationFailed(
                f"{command} rejected with {response.code} after re-login"
            )
        return response

    async def login(self, credentials: Credentials) -> Response:
        """Log in now, storing the credentials for later re-login.

        Raises:
            LoginFailed: If the server rejects the login
        """
        self._check_open()
        return await self.sessions.login(credentials)

    async def logout(self) -> Response | None:
        """Log out; later commands fail until :meth:`login` is called."""
        self._check_open()
        return await self.sessions.logout()

    async def ping(self) -> Response:
        """Send PING inside the session, logging in first if needed.

        Raises:
            NotAuthenticated: If no session exists and none can be created
        """
        self._check_open()
        await self.sessions.ensure()
        return await self._round_trip(CMD_PING, ())


async def connect(
    config: EngineConfig,
    credentials: Credentials | None = None,
) -> Dispatcher:
    """Open a UDP transport to the configured server and start an engine."""
    transport = await UdpTransport.open(config.host, config.port, config.local_port)
    dispatcher = Dispatcher(transport, config, credentials)
    dispatcher.start()
    return dispatcher
