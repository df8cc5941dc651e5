"""Chat session orchestration.

Owns the single active ingestion pipeline (raw source -> worker ->
normalizer -> retention buffer) plus the overlay selection and poll state,
and serializes connect/disconnect transitions. Reads (status, queries,
selection) are safe from any thread; transitions run on the runtime loop.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, Dict, Mapping, Optional

from services.mock.chat import MockChatSource
from services.youtube.api.chat import YouTubeLiveChatClient
from services.youtube.api.livestream import extract_live_id
from services.youtube.normalizer import EventNormalizer
from services.youtube.workers.chat_worker import YouTubeChatWorker
from shared.chat.messages import ChatMessage, Poll
from shared.chat.sources import ChatSourceError, RawEventSource
from shared.config.system import ChatDirectorConfig
from shared.logging.logger import get_logger
from shared.runtime.selection import SelectionChannel
from shared.storage.chat_messages.buffer import RetentionBuffer
from shared.storage.chat_messages.query import MessageQuery, QueryResult, run_query

log = get_logger("core.session")

MODE_LIVE = "live"
MODE_MOCK = "mock"
MODE_IDLE = "idle"

SourceFactory = Callable[[str], RawEventSource]
MockFactory = Callable[[], RawEventSource]


class ChatSession:
    """
    Process-wide chat session manager.

    Rules:
    - At most one worker runs at a time
    - Every connect/disconnect starts from an empty buffer, a fresh id
      counter, no selection and no poll
    - Events from a torn-down worker are discarded
    - A failed live bootstrap leaves the session disconnected with the mock
      feed running (when enabled)
    """

    def __init__(
        self,
        config: Optional[ChatDirectorConfig] = None,
        *,
        live_source_factory: Optional[SourceFactory] = None,
        mock_source_factory: Optional[MockFactory] = None,
    ) -> None:
        self.config = config or ChatDirectorConfig()

        self.buffer = RetentionBuffer(self.config.buffer.max_regular_messages)
        self.normalizer = EventNormalizer()
        self.selection = SelectionChannel()

        self._live_source_factory = live_source_factory or self._default_live_source
        self._mock_source_factory = mock_source_factory or self._default_mock_source

        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._worker: Optional[YouTubeChatWorker] = None
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

        self._mode = MODE_IDLE
        self._live_id: Optional[str] = None
        self._poll: Optional[Poll] = None

    # ------------------------------------------------------------------
    # Source factories
    # ------------------------------------------------------------------

    def _default_live_source(self, video_id: str) -> RawEventSource:
        return YouTubeLiveChatClient(
            video_id=video_id,
            poll_interval=self.config.ingestion.poll_interval,
        )

    def _default_mock_source(self) -> RawEventSource:
        return MockChatSource(interval=self.config.ingestion.mock_interval)

    # ------------------------------------------------------------------
    # Read side (any thread)
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def connected(self) -> bool:
        return self._mode == MODE_LIVE

    @property
    def live_id(self) -> Optional[str]:
        return self._live_id if self.connected else None

    @property
    def poll(self) -> Optional[Poll]:
        return self._poll

    def status(self) -> Dict[str, Any]:
        current = self.selection.current
        return {
            "status": "ok",
            "messages": len(self.buffer),
            "selection": current.id if current else None,
            "mode": self._mode,
            "connected": self.connected,
            "liveId": self.live_id,
            "poll": self._poll.to_dict() if self._poll else None,
        }

    def query(self, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        query_cfg = self.config.query
        query = MessageQuery.from_params(
            params,
            default_page_size=query_cfg.default_page_size,
            max_page_size=query_cfg.max_page_size,
        )
        return run_query(
            self.buffer.snapshot(),
            query,
            max_pattern_length=query_cfg.max_regex_length,
        )

    def select(self, message_id: str) -> ChatMessage:
        return self.selection.select_id(message_id, self.buffer)

    def clear_selection(self) -> None:
        self.selection.clear()

    # ------------------------------------------------------------------
    # Transitions (runtime loop)
    # ------------------------------------------------------------------

    async def start(self, live_id: Optional[str] = None) -> None:
        """Start live ingestion when an id is available, the mock feed otherwise."""
        self._loop = asyncio.get_running_loop()

        live_id = live_id or self.config.ingestion.live_id
        if live_id:
            try:
                await self.connect(live_id)
                return
            except ValueError as e:
                log.warning(f"Ignoring configured live id: {e}")
            except ChatSourceError as e:
                log.warning(f"Live chat unavailable, running in mock mode: {e}")
                return
        else:
            log.info("No live id configured, running in mock mode")

        async with self._lock:
            await self._start_mock_locked()

    async def connect(self, live_id: str) -> str:
        """
        Switch to live ingestion for `live_id` (bare id or URL).

        Returns the resolved video id. Raises ValueError for an unusable id
        and ChatSourceError when the live chat cannot be bootstrapped.
        """
        video_id = extract_live_id(live_id)
        if not video_id:
            raise ValueError("Invalid YouTube Live ID or URL")

        async with self._lock:
            await self._stop_worker_locked()
            self._reset_state()

            log.info(f"Connecting to YouTube live chat (video={video_id})")
            source = self._live_source_factory(video_id)
            try:
                await source.start()
            except Exception as e:
                log.error(f"Failed to connect to live chat {video_id}: {e}")
                await source.close()
                await self._start_mock_locked()
                if isinstance(e, ChatSourceError):
                    raise
                raise ChatSourceError(f"Live chat bootstrap failed for {video_id}: {e}") from e

            self._live_id = video_id
            self._launch_locked(source, MODE_LIVE)
            log.info(f"Live chat connected (video={video_id})")

        return video_id

    async def disconnect(self) -> None:
        async with self._lock:
            was_live = self.connected
            await self._stop_worker_locked()
            self._reset_state()
            await self._start_mock_locked()

        if was_live:
            log.info("Disconnected from YouTube live chat")

    async def shutdown(self) -> None:
        async with self._lock:
            await self._stop_worker_locked()
            self._mode = MODE_IDLE
            self._live_id = None
        log.info("Chat session stopped")

    def run_threadsafe(
        self,
        coro: Coroutine[Any, Any, Any],
        timeout: Optional[float] = 30.0,
    ) -> Any:
        """Run a transition on the runtime loop from a foreign thread and wait."""
        if self._loop is None or self._loop.is_closed():
            coro.close()
            raise RuntimeError("Chat session is not running")
        future: Future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reset_state(self) -> None:
        self.buffer.reset()
        self.normalizer.reset()
        self.selection.reset()
        self._poll = None
        self._live_id = None

    async def _start_mock_locked(self) -> None:
        if not self.config.ingestion.mock_enabled:
            self._mode = MODE_IDLE
            log.info("Mock chat feed disabled")
            return
        self._launch_locked(self._mock_source_factory(), MODE_MOCK)

    def _launch_locked(self, source: RawEventSource, mode: str) -> None:
        self._generation += 1
        generation = self._generation

        self._worker = YouTubeChatWorker(
            source=source,
            normalizer=self.normalizer,
            on_message=lambda message: self._ingest(generation, message),
            on_poll=lambda poll: self._record_poll(generation, poll),
            on_error=lambda error: self._source_failed(generation, error),
        )
        self._task = asyncio.create_task(self._worker.run())
        self._mode = mode

    async def _stop_worker_locked(self) -> None:
        # Bumping the generation first fences out late callbacks
        self._generation += 1

        task, worker = self._task, self._worker
        self._task = None
        self._worker = None

        if worker is not None:
            await worker.source.close()
        if task is not None and not task.done():
            task.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

        self._mode = MODE_IDLE

    def _ingest(self, generation: int, message: ChatMessage) -> None:
        if generation != self._generation:
            return
        self.buffer.append(message)

    def _record_poll(self, generation: int, poll: Optional[Poll]) -> None:
        if generation != self._generation:
            return
        self._poll = poll
        log.info(f"Active poll changed: {poll.id if poll else None}")

    def _source_failed(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        log.error(f"Chat source failed, session disconnected: {error}")
        self._mode = MODE_IDLE
        self._live_id = None


__all__ = ["ChatSession", "MODE_LIVE", "MODE_MOCK", "MODE_IDLE"]
