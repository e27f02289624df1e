from collections.abc import AsyncIterator
from typing import Protocol


class AudioSourcePort(Protocol):
    @property
    def sample_rate(self) -> int: ...
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def read_chunks(self) -> AsyncIterator[bytes]: ...
