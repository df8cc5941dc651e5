"""Runtime overlay selection tracking.

Holds at most one selected chat message and pushes every change to the
subscribed overlay streams. New subscribers receive the current value
immediately so a late joiner never waits for the next change.
"""

from __future__ import annotations

from threading import RLock
from typing import Callable, List, Optional

from shared.chat.messages import ChatMessage
from shared.logging.logger import get_logger
from shared.storage.chat_messages.buffer import RetentionBuffer

log = get_logger("shared.runtime.selection")

SelectionCallback = Callable[[Optional[ChatMessage]], None]


class SelectionNotFound(KeyError):
    """Raised when the requested message id is not in the buffer."""


class SelectionChannel:
    """
    Single-slot selection state with broadcast-on-change.

    States: empty (current is None) or holding one message.
    - select()/select_id() move to holding and broadcast the message
    - clear()/reset() move to empty and broadcast None
    - subscribe() replays the current value to the new subscriber

    Delivery is synchronous and happens under the channel lock, so every
    subscriber observes changes in order. Callbacks must not block; a
    failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._current: Optional[ChatMessage] = None
        self._subscribers: List[SelectionCallback] = []

    @property
    def current(self) -> Optional[ChatMessage]:
        with self._lock:
            return self._current

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select(self, message: ChatMessage) -> ChatMessage:
        with self._lock:
            self._current = message
            self._broadcast(message)
        log.info(f"Overlay selection set to {message.id}")
        return message

    def select_id(self, message_id: str, buffer: RetentionBuffer) -> ChatMessage:
        message = buffer.find(message_id)
        if message is None:
            raise SelectionNotFound(message_id)
        return self.select(message.with_author_channel_url())

    def clear(self) -> None:
        with self._lock:
            self._current = None
            self._broadcast(None)

    def reset(self) -> None:
        self.clear()

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, callback: SelectionCallback) -> Callable[[], None]:
        """
        Attach a subscriber and deliver the current value to it.

        Returns an unsubscribe function; callers must invoke it on teardown.
        """
        with self._lock:
            self._subscribers.append(callback)
            self._deliver(callback, self._current)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: SelectionCallback) -> None:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

    def _broadcast(self, message: Optional[ChatMessage]) -> None:
        for callback in list(self._subscribers):
            self._deliver(callback, message)

    @staticmethod
    def _deliver(callback: SelectionCallback, message: Optional[ChatMessage]) -> None:
        try:
            callback(message)
        except Exception as e:
            log.warning(f"Overlay subscriber delivery failed: {e}")


__all__ = ["SelectionChannel", "SelectionNotFound", "SelectionCallback"]
