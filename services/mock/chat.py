import asyncio
import time
from typing import Any, AsyncGenerator, Dict, Sequence

from shared.logging.logger import get_logger

log = get_logger("mock.chat")

MOCK_AUTHORS = ("Ada", "Linus", "Grace", "Marge")
AVATAR_URL = "https://api.dicebear.com/7.x/thumbs/svg?seed={seed}"


def build_mock_event(sequence: int, author: str, *, now_ms: int) -> Dict[str, Any]:
    """Shape a demo message like an InnerTube text renderer payload."""
    return {
        "type": "liveChatTextMessageRenderer",
        "id": f"mock-{now_ms}-{sequence}",
        "authorName": {"simpleText": author},
        "authorExternalChannelId": f"mock-channel-{sequence}",
        "authorPhoto": {"thumbnails": [{"url": AVATAR_URL.format(seed=author)}]},
        "message": {"runs": [{"text": f"Mock message #{sequence} from {author}"}]},
        "timestampUsec": str(now_ms * 1000),
    }


class MockChatSource:
    """
    Synthetic chat feed used while no live session is connected.

    Responsibilities:
    - Emit one demo text message per interval, cycling through authors
    - Produce payloads the YouTube normalizer accepts unchanged
    - Stop promptly on close()
    """

    name = "mock"

    def __init__(
        self,
        *,
        interval: float = 2.0,
        authors: Sequence[str] = MOCK_AUTHORS,
    ):
        if interval <= 0:
            raise ValueError("mock interval must be positive")
        self.interval = interval
        self.authors = tuple(authors) or MOCK_AUTHORS
        self._sequence = 0
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        return None

    async def iter_events(self) -> AsyncGenerator[Dict[str, Any], None]:
        self._stop_event.clear()
        log.info(f"Mock chat feed started (interval={self.interval}s)")

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            self._sequence += 1
            author = self.authors[(self._sequence - 1) % len(self.authors)]
            yield build_mock_event(
                self._sequence,
                author,
                now_ms=int(time.time() * 1000),
            )

        log.info("Mock chat feed stopped")

    async def close(self) -> None:
        self._stop_event.set()


__all__ = ["MockChatSource", "build_mock_event", "MOCK_AUTHORS"]
