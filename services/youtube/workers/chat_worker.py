import asyncio
from typing import Callable, Optional

from services.youtube.normalizer import EventNormalizer
from shared.chat.messages import ChatMessage, Poll
from shared.chat.sources import ChatSourceError, RawEventSource
from shared.logging.logger import get_logger

log = get_logger("youtube.chat_worker")


class YouTubeChatWorker:
    """
    Session-owned chat ingestion worker.

    Responsibilities:
    - Own the raw source lifecycle (iteration, shutdown)
    - Run every raw event through the normalizer
    - Hand canonical messages and poll changes to the session callbacks
    - Report upstream failure exactly once through on_error
    - Remain cancellation-safe and side-effect free on import
    """

    def __init__(
        self,
        *,
        source: RawEventSource,
        normalizer: EventNormalizer,
        on_message: Callable[[ChatMessage], None],
        on_poll: Callable[[Optional[Poll]], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.source = source
        self.normalizer = normalizer
        self._on_message = on_message
        self._on_poll = on_poll
        self._on_error = on_error

        self.processed = 0
        self.dropped = 0

    # ------------------------------------------------------------------ #

    async def run(self) -> None:
        log.info(f"[{self.source.name}] chat worker starting")

        try:
            async for raw in self.source.iter_events():
                self._handle_event(raw)

        except asyncio.CancelledError:
            raise

        except ChatSourceError as e:
            log.warning(f"[{self.source.name}] chat source ended: {e}")
            self._report(e)

        except Exception as e:
            log.error(f"[{self.source.name}] chat worker error: {e}")
            self._report(e)

        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        await self.source.close()
        log.info(
            f"[{self.source.name}] chat worker stopped "
            f"(processed={self.processed}, dropped={self.dropped})"
        )

    # ------------------------------------------------------------------ #

    def _handle_event(self, raw) -> None:
        result = self.normalizer.normalize(raw)

        if result.drop:
            self.dropped += 1
            return

        self.processed += 1

        if result.poll_changed:
            self._on_poll(result.poll)
            return

        if result.message is not None:
            message = result.message
            log.debug(f"[{self.source.name}] {message.author}: {message.text}")
            self._on_message(message)

    def _report(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            log.warning(f"[{self.source.name}] error callback failed: {e}")
