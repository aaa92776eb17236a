"""
Datagram Transport

The boundary between the engine and the network. The engine only needs
``send``, ``receive`` and ``close``; :class:`UdpTransport` provides them on
top of an asyncio datagram endpoint, and tests substitute in-memory
transports.
"""

from __future__ import annotations

import asyncio
import socket
from abc import ABC, abstractmethod
from typing import Union

import structlog

from .constants import DEFAULT_HOST, DEFAULT_PORT
from .errors import TransportError

log = structlog.get_logger()


class Transport(ABC):
    """Unreliable, unordered datagram channel to one server."""

    @abstractmethod
    def send(self, data: bytes) -> None:
        """Send one datagram.

        Raises:
            TransportError: If the datagram cannot be handed to the network
        """

    @abstractmethod
    async def receive(self, timeout: float | None = None) -> bytes | None:
        """Wait for the next inbound datagram.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            Datagram bytes, or None if the timeout elapsed

        Raises:
            TransportError: If the channel failed or was closed
        """

    @abstractmethod
    def close(self) -> None:
        """Release the channel. Pending and later receives fail."""


# =============================================================================
# UDP
# =============================================================================

_Inbound = Union[bytes, TransportError]


class _ClientProtocol(asyncio.DatagramProtocol):
    def __init__(self, inbound: asyncio.Queue[_Inbound]) -> None:
        self.inbound = inbound

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        log.debug("datagram_received", size=len(data), from_addr=f"{addr[0]}:{addr[1]}")
        self.inbound.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        log.error("udp_error", error=str(exc))
        self.inbound.put_nowait(TransportError(f"UDP error: {exc}"))

    def connection_lost(self, exc: Exception | None) -> None:
        reason = str(exc) if exc is not None else "closed"
        self.inbound.put_nowait(TransportError(f"UDP endpoint lost: {reason}"))


class UdpTransport(Transport):
    """Connected UDP socket feeding an inbound queue.

    Socket errors reported by the event loop (ICMP unreachable and the like)
    are queued in order with the datagrams and raised from :meth:`receive`.
    """

    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        inbound: asyncio.Queue[_Inbound],
    ) -> None:
        self._transport = transport
        self._inbound = inbound
        self._failure: TransportError | None = None

    @classmethod
    async def open(
        cls,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        local_port: int = 0,
    ) -> UdpTransport:
        """Open a UDP endpoint to ``host:port``.

        Args:
            host: Server host name or address
            port: Server port
            local_port: Local port to bind, 0 for any

        Raises:
            TransportError: If the endpoint cannot be created
        """
        loop = asyncio.get_running_loop()
        inbound: asyncio.Queue[_Inbound] = asyncio.Queue()
        try:
            transport, _protocol = await loop.create_datagram_endpoint(
                lambda: _ClientProtocol(inbound),
                local_addr=("0.0.0.0", local_port),
                remote_addr=(host, port),
                family=socket.AF_INET,
            )
        except OSError as exc:
            raise TransportError(f"Cannot open UDP endpoint to {host}:{port}: {exc}") from exc

        log.info("udp_open", server=f"{host}:{port}", local_port=local_port)
        return cls(transport, inbound)

    @property
    def local_address(self) -> tuple[str, int]:
        return self._transport.get_extra_info("sockname")

    def send(self, data: bytes) -> None:
        if self._failure is not None:
            raise self._failure
        if self._transport.is_closing():
            raise TransportError("UDP endpoint is closed")
        try:
            self._transport.sendto(data)
        except OSError as exc:
            raise TransportError(f"UDP send failed: {exc}") from exc

    async def receive(self, timeout: float | None = None) -> bytes | None:
        if self._failure is not None:
            raise self._failure

        try:
            item = await asyncio.wait_for(self._inbound.get(), timeout)
        except asyncio.TimeoutError:
            return None

        if isinstance(item, TransportError):
            self._failure = item
            raise item
        return item

    def close(self) -> None:
        if not self._transport.is_closing():
            self._transport.close()
            log.info("udp_closed")
