from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

NORMAL_CLOSURE = 1000
PROTOCOL_ERROR = 1002
ABNORMAL_CLOSURE = 1006


@dataclass(frozen=True)
class CloseFrame:
    code: int
    reason: str = ""


@dataclass(frozen=True)
class ConnectionTarget:
    url: str
    headers: dict[str, str] = field(default_factory=dict)


class TransportPort(Protocol):
    @property
    def is_open(self) -> bool: ...
    async def receive(self) -> str | bytes | CloseFrame: ...
    async def send(self, data: str | bytes) -> None: ...
    async def close(self, code: int = 1000, reason: str = "") -> None: ...


TransportFactory = Callable[[ConnectionTarget], Awaitable[TransportPort]]
