"""
Flood-Control Gate

Spaces physical sends so the server's rate limit is never exceeded. Every
datagram the engine emits, first sends and resends alike, passes through
:meth:`FloodGate.await_turn` immediately before it goes on the wire.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from .config import EngineConfig
    from .session import Session

log = structlog.get_logger()


class FloodGate:
    """Admits one send at a time, no sooner than the current budget.

    The budget is the earliest instant the next send may happen. After each
    admission it moves forward by the interval for the session's current
    state: the short post-auth interval once authenticated, the long
    pre-auth interval otherwise.

    Args:
        session: Shared session; read for the current state only
        config: Supplies both intervals
        clock: Monotonic clock, seconds
    """

    def __init__(
        self,
        session: Session,
        config: EngineConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.config = config
        self._clock = clock
        self._budget = clock()
        self._lock = asyncio.Lock()
        self.admitted = 0

    @property
    def interval(self) -> float:
        if self.session.authenticated:
            return self.config.post_auth_interval
        return self.config.pre_auth_interval

    @property
    def budget(self) -> float:
        return self._budget

    async def await_turn(self) -> float:
        """Suspend until a send is allowed.

        Waiters are admitted in arrival order. The caller must send without
        awaiting anything else between admission and the send.

        Returns:
            Seconds spent waiting
        """
        async with self._lock:
            start = self._clock()
            # Early timer wake-ups must not shorten the spacing.
            while (delay := self._budget - self._clock()) > 0:
                await asyncio.sleep(delay)

            now = self._clock()
            self._budget = now + self.interval
            self.admitted += 1

            waited = now - start
            log.debug("gate_admit", wait=round(waited, 4), next_in=self.interval)
            return waited
