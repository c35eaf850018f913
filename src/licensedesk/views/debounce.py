from __future__ import annotations

import asyncio
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class Debouncer(Generic[T]):
    """Deliver only the last value pushed within ``delay_s`` of quiet."""

    def __init__(self, delay_s: float, callback: Callable[[T], None]) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    def push(self, value: T) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s, self._fire, value)

    def _fire(self, value: T) -> None:
        self._handle = None
        self.callback(value)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
