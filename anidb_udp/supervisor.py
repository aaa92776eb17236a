"""
Retry/Timeout Supervisor

Drives one request from first send to response or exhaustion: gated send,
bounded wait, resend under the same tag.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from .errors import TimeoutExceeded

if TYPE_CHECKING:
    from .codec import PacketCodec, Request, Response
    from .config import EngineConfig
    from .correlation import CorrelationTable
    from .gate import FloodGate
    from .session import SessionManager
    from .transport import Transport

log = structlog.get_logger()


class RetrySupervisor:
    """Sends requests and resends them until answered or out of retries.

    Args:
        codec: Encodes with the current session key and transform
        gate: Flood-control gate every send goes through
        transport: Datagram transport
        table: Correlation table owning the waiters
        config: Supplies ``request_timeout`` and ``max_retries``
        sessions: When given, non-login sends wait out a login in progress
    """

    def __init__(
        self,
        codec: PacketCodec,
        gate: FloodGate,
        transport: Transport,
        table: CorrelationTable,
        config: EngineConfig,
        sessions: SessionManager | None = None,
    ) -> None:
        self.codec = codec
        self.gate = gate
        self.transport = transport
        self.table = table
        self.config = config
        self.sessions = sessions
        self.sent = 0

    def _may_send(self, request: Request) -> bool:
        return request.login or self.sessions is None or self.sessions.ready

    async def _transmit(self, request: Request, waiter: asyncio.Future[Response]) -> None:
        while True:
            if not self._may_send(request):
                await self.sessions.wait_ready()
            await self.gate.await_turn()
            # A login may have started while this request was queued.
            if self._may_send(request):
                break
            log.debug("send_deferred", command=request.command, tag=request.tag)

        if waiter.done():
            # Answered while this resend waited for the gate.
            log.debug("resend_skipped", command=request.command, tag=request.tag)
            return

        data = self.codec.encode(request)
        request.sent_key = self.codec.session.key
        self.transport.send(data)
        self.codec.session.touch()
        self.sent += 1
        log.debug(
            "request_sent",
            command=request.command,
            tag=request.tag,
            attempt=request.attempts,
            size=len(data),
        )

    async def send_with_retry(
        self, request: Request, waiter: asyncio.Future[Response]
    ) -> Response:
        """Send a registered request and wait for its response.

        Args:
            request: Request whose tag is registered in the table
            waiter: The future returned by ``table.register``

        Returns:
            The correlated response

        Raises:
            TimeoutExceeded: If no response arrives after ``max_retries`` resends
            TransportError: If a send fails
            DecodeError: If the correlated response could not be decoded
        """
        timeout = self.config.request_timeout
        try:
            while True:
                await self._transmit(request, waiter)
                try:
                    return await asyncio.wait_for(asyncio.shield(waiter), timeout)
                except asyncio.TimeoutError:
                    if waiter.done():
                        return waiter.result()
                    if request.retries >= self.config.max_retries:
                        log.warning(
                            "request_timeout",
                            command=request.command,
                            tag=request.tag,
                            attempts=request.attempts,
                        )
                        raise TimeoutExceeded(
                            request.command, request.tag, request.attempts
                        ) from None

                    request.retries += 1
                    log.warning(
                        "request_resend",
                        command=request.command,
                        tag=request.tag,
                        attempt=request.attempts,
                    )
        finally:
            # No-op once the receive loop has delivered.
            self.table.cancel(request.tag)
