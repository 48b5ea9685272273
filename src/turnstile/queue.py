import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from .types import RequestDescriptor

logger = logging.getLogger("turnstile")


@dataclass
class QueuedRequest:
    descriptor: RequestDescriptor
    future: asyncio.Future
    index: int


def _retry_copy(descriptor: RequestDescriptor) -> RequestDescriptor:
    # the queued descriptor was already dispatched once and must stay as sent
    return replace(
        descriptor,
        headers=dict(descriptor.headers),
        params=dict(descriptor.params) if descriptor.params is not None else None,
        is_retry=True,
    )


class RequestQueue:
    """FIFO of requests waiting for an in-flight refresh.

    Each entry carries the future its caller awaits. ``drain`` replays a copy of
    each entry, one at a time, in enqueue order, and settles only the future of
    the entry it just replayed.
    """

    def __init__(self):
        self._entries: deque[QueuedRequest] = deque()
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def pending(self) -> list[RequestDescriptor]:
        return [e.descriptor for e in self._entries]

    def enqueue(self, descriptor: RequestDescriptor) -> asyncio.Future:
        # Must not suspend: the coordinator relies on enqueue being atomic
        future = asyncio.get_running_loop().create_future()
        entry = QueuedRequest(descriptor, future, next(self._counter))
        self._entries.append(entry)
        logger.debug(
            f"queued {descriptor.method} {descriptor.url}; queue length={len(self._entries)}"
        )
        return future

    async def drain(self, replay: Callable[[RequestDescriptor], Awaitable[Any]]) -> None:
        """Replay every entry sequentially, including entries added while draining."""
        logger.info(f"replaying {len(self._entries)} queued request(s)")
        while self._entries:
            entry = self._entries.popleft()
            if entry.future.done():
                # waiter gave up (cancelled); nothing to settle
                continue
            logger.debug(
                f"replaying #{entry.index} {entry.descriptor.method} {entry.descriptor.url}"
            )
            try:
                result = await replay(_retry_copy(entry.descriptor))
            except asyncio.CancelledError:
                entry.future.cancel()
                raise
            except Exception as e:  # noqa: BLE001, routed to the entry's own caller
                if not entry.future.done():
                    entry.future.set_exception(e)
            else:
                if not entry.future.done():
                    entry.future.set_result(result)
        self.clear()

    def reject_all(self, error: BaseException) -> None:
        while self._entries:
            entry = self._entries.popleft()
            if not entry.future.done():
                entry.future.set_exception(error)
        self.clear()

    def clear(self) -> None:
        self._entries.clear()
