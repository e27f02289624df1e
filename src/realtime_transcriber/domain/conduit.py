import asyncio
import collections
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import Generic, TypeVar

from realtime_transcriber.domain.errors import ConduitCompleted, ConduitOverflowError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OverflowPolicy(str, Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop-oldest"
    FAIL = "fail"


class Conduit(Generic[T]):
    """Ordered, completable channel feeding one consumption style.

    Unbounded unless ``maxsize`` is positive, in which case ``overflow`` decides
    what a publish does when the conduit is full. Completion is one-shot: items
    already queued are still handed out, after which readers stop.
    """

    def __init__(
        self,
        name: str = "conduit",
        maxsize: int = 0,
        overflow: OverflowPolicy = OverflowPolicy.BLOCK,
    ) -> None:
        self._name = name
        self._maxsize = maxsize
        self._overflow = overflow
        self._items: collections.deque[T] = collections.deque()
        self._completed = False
        self._not_empty = asyncio.Event()
        self._not_full = asyncio.Event()
        self._not_full.set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def __len__(self) -> int:
        return len(self._items)

    def _full(self) -> bool:
        return self._maxsize > 0 and len(self._items) >= self._maxsize

    async def publish(self, item: T) -> bool:
        if self._completed:
            logger.debug("Dropping item published to completed %s conduit", self._name)
            return False

        if self._full():
            if self._overflow is OverflowPolicy.FAIL:
                raise ConduitOverflowError(
                    f"{self._name} conduit is full ({self._maxsize} items)"
                )
            if self._overflow is OverflowPolicy.DROP_OLDEST:
                self._items.popleft()
                logger.debug("Dropped oldest item from full %s conduit", self._name)
            else:
                while self._full() and not self._completed:
                    self._not_full.clear()
                    await self._not_full.wait()
                if self._completed:
                    return False

        self._items.append(item)
        self._not_empty.set()
        return True

    def try_read(self) -> T | None:
        if not self._items:
            return None
        return self._take()

    async def get(self) -> T:
        while not self._items:
            if self._completed:
                raise ConduitCompleted(f"{self._name} conduit is completed")
            self._not_empty.clear()
            await self._not_empty.wait()
        return self._take()

    def complete(self) -> None:
        if self._completed:
            return
        self._completed = True
        self._not_empty.set()
        self._not_full.set()
        logger.debug("Completed %s conduit (%d items pending)", self._name, len(self._items))

    def _take(self) -> T:
        item = self._items.popleft()
        self._not_full.set()
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            try:
                yield await self.get()
            except ConduitCompleted:
                return
