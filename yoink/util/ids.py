from itertools import count
from typing import Protocol

import uuid7

from yoink.util.clock import Clock, SystemClock


class IdGenerator(Protocol):
    def generate(self) -> str: ...


class Uuid7Generator:
    """Time-ordered uuid7 strings, so ids sort by creation time."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SystemClock()

    def generate(self) -> str:
        return str(uuid7.create(self.clock.now()))


class SequentialIdGenerator:
    """Predictable ids (``id-1``, ``id-2``, ...) for tests."""

    def __init__(self, prefix: str = "id"):
        self.prefix = prefix
        self._counter = count(1)

    def generate(self) -> str:
        return f"{self.prefix}-{next(self._counter)}"
