"""
UDP Transport Tests

Runs the engine over real localhost UDP sockets against the mock server
wrapped in an asyncio datagram endpoint.
"""

from __future__ import annotations

import asyncio
import socket

import pytest
import structlog

from anidb_udp import TransportError, UdpTransport, connect

from lib.loopback import ALICE, fast_config
from lib.mock_server import MockServer

log = structlog.get_logger()

pytestmark = pytest.mark.network


class MockServerProtocol(asyncio.DatagramProtocol):
    """Serves a MockServer over UDP."""

    def __init__(self, server: MockServer) -> None:
        self.server = server
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        log.debug("mock_packet_received", size=len(data), from_addr=f"{addr[0]}:{addr[1]}")
        reply = self.server.handle(data)
        if reply is not None and self.transport is not None:
            self.transport.sendto(reply, addr)

    def error_received(self, exc: Exception) -> None:
        log.error("mock_udp_error", error=str(exc))


async def serve(server: MockServer) -> tuple[asyncio.DatagramTransport, int]:
    loop = asyncio.get_running_loop()
    transport, _protocol = await loop.create_datagram_endpoint(
        lambda: MockServerProtocol(server),
        local_addr=("127.0.0.1", 0),
        family=socket.AF_INET,
    )
    return transport, transport.get_extra_info("sockname")[1]


class TestUdp:
    """Test the engine over real sockets."""

    def test_session_over_udp(self) -> None:
        """Login, commands and logout over localhost UDP."""

        async def scenario():
            server = MockServer()
            endpoint, port = await serve(server)
            try:
                config = fast_config(port=port, request_timeout=0.5, compression=True)
                engine = await connect(config, ALICE)
                async with engine:
                    anime = await engine.execute("ANIME", {"aid": 22})
                    pong = await engine.ping()
                    bye = await engine.logout()
            finally:
                endpoint.close()
            return server, anime, pong, bye

        server, anime, pong, bye = asyncio.run(scenario())

        assert anime.fields[0][0] == "22"
        assert pong.code == 300
        assert bye.code == 203
        assert [cmd.command for cmd in server.received] == ["AUTH", "ANIME", "PING", "LOGOUT"]

    def test_encrypted_session_over_udp(self) -> None:
        """Encrypted traffic decodes over real sockets."""

        async def scenario():
            server = MockServer()
            endpoint, port = await serve(server)
            try:
                config = fast_config(port=port, request_timeout=0.5, encryption=True)
                async with await connect(config, ALICE) as engine:
                    return await engine.execute("UPTIME")
            finally:
                endpoint.close()

        assert asyncio.run(scenario()).lines == ("1234567",)

    def test_receive_timeout(self) -> None:
        """receive returns None when nothing arrives."""

        async def scenario():
            server = MockServer()
            endpoint, port = await serve(server)
            transport = await UdpTransport.open("127.0.0.1", port)
            try:
                return await transport.receive(0.02), transport.local_address
            finally:
                transport.close()
                endpoint.close()

        data, local = asyncio.run(scenario())

        assert data is None
        assert local[1] > 0

    def test_closed_transport(self) -> None:
        """Sending on a closed transport fails."""

        async def scenario():
            server = MockServer()
            endpoint, port = await serve(server)
            transport = await UdpTransport.open("127.0.0.1", port)
            transport.close()
            try:
                with pytest.raises(TransportError):
                    transport.send(b"PING tag=T0000")
            finally:
                endpoint.close()

        asyncio.run(scenario())

    def test_unresolvable_host(self) -> None:
        """Endpoint creation errors surface as TransportError."""

        async def scenario():
            with pytest.raises(TransportError):
                await UdpTransport.open("host.invalid", 9000)

        asyncio.run(scenario())
