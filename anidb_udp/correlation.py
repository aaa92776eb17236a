"""
Tag Allocator & Correlation Table

Maps each in-flight request's tag to the future its caller awaits. The
receive loop resolves futures by the tag echoed in responses; at most one
response is ever delivered per tag.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from .constants import TAG_PREFIX, TAG_SPACE, TAG_WIDTH
from .errors import TagSpaceExhausted

if TYPE_CHECKING:
    from .codec import Response

log = structlog.get_logger()


def format_tag(counter: int) -> str:
    """Format a counter value as a wire tag (``T`` + 4 lowercase hex digits)."""
    return f"{TAG_PREFIX}{counter % TAG_SPACE:0{TAG_WIDTH}x}"


class CorrelationTable:
    """Live tags and their response futures."""

    def __init__(self) -> None:
        self._counter = 0
        self._pending: dict[str, asyncio.Future[Response]] = {}

    def __contains__(self, tag: object) -> bool:
        return tag in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def allocate(self) -> str:
        """Return the next tag not currently live.

        Raises:
            TagSpaceExhausted: If every tag is in flight
        """
        if len(self._pending) >= TAG_SPACE:
            raise TagSpaceExhausted(f"All {TAG_SPACE} tags are in flight")

        while True:
            tag = format_tag(self._counter)
            self._counter = (self._counter + 1) % TAG_SPACE
            if tag not in self._pending:
                return tag

    def register(self, tag: str) -> asyncio.Future[Response]:
        """Create the waiter for a freshly allocated tag."""
        if tag in self._pending:
            raise ValueError(f"Tag {tag} is already registered")

        waiter: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._pending[tag] = waiter
        return waiter

    def resolve(self, tag: str, response: Response) -> bool:
        """Deliver a response to its waiter.

        Unknown tags (late duplicates, abandoned requests) are dropped.

        Returns:
            True if a waiter received the response
        """
        waiter = self._pending.pop(tag, None)
        if waiter is None or waiter.done():
            log.debug("unmatched_response", tag=tag, code=response.code)
            return False

        waiter.set_result(response)
        return True

    def reject(self, tag: str, exc: BaseException) -> bool:
        """Fail one waiter with an error."""
        waiter = self._pending.pop(tag, None)
        if waiter is None or waiter.done():
            log.debug("unmatched_error", tag=tag, error=str(exc))
            return False

        waiter.set_exception(exc)
        return True

    def cancel(self, tag: str) -> bool:
        """Remove an entry without delivering anything."""
        waiter = self._pending.pop(tag, None)
        if waiter is None:
            return False

        waiter.cancel()
        return True

    def fail_all(self, exc: BaseException) -> int:
        """Fail every live waiter.

        Returns:
            Number of waiters failed
        """
        pending, self._pending = self._pending, {}
        failed = 0
        for waiter in pending.values():
            if not waiter.done():
                waiter.set_exception(exc)
                failed += 1
        return failed
