"""
Retry Supervisor Tests

Tests the send/wait/resend cycle on its own, with a recording transport
and answers injected straight into the correlation table.
"""

from __future__ import annotations

import asyncio

import pytest

from anidb_udp.codec import PacketCodec, Request, Response
from anidb_udp.correlation import CorrelationTable
from anidb_udp.errors import TimeoutExceeded
from anidb_udp.gate import FloodGate
from anidb_udp.session import Session
from anidb_udp.supervisor import RetrySupervisor
from anidb_udp.transport import Transport

from lib.loopback import fast_config

TAG = "T0001"
UPTIME = Response(code=208, text="UPTIME", lines=("1234567",), tag=TAG)


class RecordingTransport(Transport):
    """Keeps every datagram; never receives anything."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []

    def send(self, data: bytes) -> None:
        self.sent.append(data)

    async def receive(self, timeout: float | None = None) -> bytes | None:
        await asyncio.sleep(timeout or 0)
        return None

    def close(self) -> None:
        pass


def make_supervisor(**overrides) -> tuple[RetrySupervisor, CorrelationTable, RecordingTransport]:
    config = fast_config(**overrides)
    session = Session()
    table = CorrelationTable()
    transport = RecordingTransport()
    supervisor = RetrySupervisor(
        PacketCodec(session), FloodGate(session, config), transport, table, config
    )
    return supervisor, table, transport


class TestRetries:
    """Test resends and exhaustion."""

    def test_resends_identical_datagrams(self) -> None:
        """Every attempt carries the same bytes; exhaustion releases the tag."""

        async def scenario():
            supervisor, table, transport = make_supervisor(
                pre_auth_interval=0.005, post_auth_interval=0.005, request_timeout=0.01
            )
            request = Request(command="UPTIME", params=(), tag=TAG)
            with pytest.raises(TimeoutExceeded) as excinfo:
                await supervisor.send_with_retry(request, table.register(TAG))
            return table, transport, excinfo.value

        table, transport, error = asyncio.run(scenario())

        assert error.attempts == 3
        assert len(transport.sent) == 3
        assert len(set(transport.sent)) == 1
        assert TAG not in table

    def test_answer_during_gate_wait_skips_resend(self) -> None:
        """A reply arriving while a resend waits for the gate cancels the resend."""

        async def scenario():
            supervisor, table, transport = make_supervisor(
                pre_auth_interval=0.2, post_auth_interval=0.1, request_timeout=0.02
            )
            request = Request(command="UPTIME", params=(), tag=TAG)
            waiter = table.register(TAG)
            asyncio.get_running_loop().call_later(0.08, table.resolve, TAG, UPTIME)
            reply = await supervisor.send_with_retry(request, waiter)
            return supervisor, table, transport, request, reply

        supervisor, table, transport, request, reply = asyncio.run(scenario())

        assert reply is UPTIME
        assert request.retries == 1
        assert len(transport.sent) == 1
        assert supervisor.sent == 1
        assert TAG not in table
