"""Contracts for raw chat event sources.

A source delivers opaque, loosely-typed chat events for one session and
signals failure by raising ChatSourceError from its iterator. Sources are
owned by a worker: prepared with start(), consumed by iterating and
stopped with close().
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional, Protocol


class ChatSourceError(RuntimeError):
    """Upstream chat session failed or ended; recoverable by reconnecting."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RawEventSource(Protocol):
    name: str

    async def start(self) -> Any:
        ...

    def iter_events(self) -> AsyncIterator[Any]:
        ...

    async def close(self) -> None:
        ...


__all__ = ["ChatSourceError", "RawEventSource"]
