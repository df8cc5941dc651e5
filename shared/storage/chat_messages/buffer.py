"""In-memory retention buffer for normalized chat messages."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from shared.chat.messages import ChatMessage, is_special
from shared.logging.logger import get_logger

log = get_logger("shared.chat_messages.buffer")

DEFAULT_MAX_REGULAR = 200


class RetentionBuffer:
    """
    Ordered (oldest first) message history with priority-aware eviction.

    Rules:
    - append() always grows the buffer by one, then runs evict()
    - evict() drops the oldest regular messages beyond `max_regular`
    - special messages (paid / membership related) are only removed by reset()
    - snapshot() hands out an immutable copy, never the live list

    A single lock guards the list. It is held for the copy-out only, so
    readers filter snapshots without blocking the ingestion writer.
    """

    def __init__(self, max_regular: int = DEFAULT_MAX_REGULAR) -> None:
        if max_regular < 1:
            raise ValueError("max_regular must be >= 1")
        self._max_regular = int(max_regular)
        self._messages: List[ChatMessage] = []
        self._regular_count = 0
        self._lock = threading.Lock()

    @property
    def max_regular(self) -> int:
        return self._max_regular

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(self, message: ChatMessage) -> None:
        with self._lock:
            self._messages.append(message)
            if not is_special(message):
                self._regular_count += 1
            self._evict_locked()

    def evict(self) -> int:
        """Apply the retention policy. Returns the number of messages removed."""
        with self._lock:
            return self._evict_locked()

    def _evict_locked(self) -> int:
        overflow = self._regular_count - self._max_regular
        if overflow <= 0:
            return 0

        retained: List[ChatMessage] = []
        remaining = overflow
        for message in self._messages:
            if remaining > 0 and not is_special(message):
                remaining -= 1
                continue
            retained.append(message)

        self._messages = retained
        self._regular_count -= overflow
        return overflow

    def reset(self) -> None:
        with self._lock:
            cleared = len(self._messages)
            self._messages = []
            self._regular_count = 0
        if cleared:
            log.debug(f"Retention buffer reset ({cleared} message(s) cleared)")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> Tuple[ChatMessage, ...]:
        with self._lock:
            return tuple(self._messages)

    def find(self, message_id: str) -> Optional[ChatMessage]:
        for message in self.snapshot():
            if message.id == message_id:
                return message
        return None

    def stats(self) -> Dict[str, int]:
        with self._lock:
            total = len(self._messages)
            regular = self._regular_count
        return {
            "total": total,
            "regular": regular,
            "special": total - regular,
            "max_regular": self._max_regular,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


__all__ = ["RetentionBuffer", "DEFAULT_MAX_REGULAR"]
