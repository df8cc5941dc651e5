import asyncio
from typing import Any, AsyncGenerator, Dict, Iterable, Iterator, Optional, Tuple

import httpx

from services.youtube.api.livestream import LiveChatBootstrap, YouTubeLivestreamAPI
from shared.chat.sources import ChatSourceError
from shared.logging.logger import get_logger

log = get_logger("youtube.chat")

CONTINUATION_KEYS = (
    "invalidationContinuationData",
    "timedContinuationData",
    "reloadContinuationData",
    "liveChatReplayContinuationData",
)

POLL_PANEL_ACTIONS = ("showLiveChatActionPanelAction", "updateLiveChatPollAction")
CLOSE_PANEL_ACTION = "closeLiveChatActionPanelAction"


# ----------------------------------------------------------------------
# Response parsing
# ----------------------------------------------------------------------

def _single_entry(value: Any) -> Optional[Tuple[str, Dict[str, Any]]]:
    if isinstance(value, dict) and len(value) == 1:
        key, inner = next(iter(value.items()))
        if isinstance(inner, dict):
            return key, inner
    return None


def _find_poll_renderer(value: Any) -> Optional[Dict[str, Any]]:
    """Locate the pollRenderer nested inside an action panel payload."""
    if isinstance(value, dict):
        poll = value.get("pollRenderer")
        if isinstance(poll, dict):
            return poll
        for inner in value.values():
            found = _find_poll_renderer(inner)
            if found is not None:
                return found
    elif isinstance(value, list):
        for inner in value:
            found = _find_poll_renderer(inner)
            if found is not None:
                return found
    return None


def iter_raw_actions(actions: Iterable[Any]) -> Iterator[Dict[str, Any]]:
    """
    Flatten InnerTube live chat actions into raw chat events.

    Each yielded event is the renderer payload tagged with its renderer
    key under "type". Ticker, banner and other non-chat actions are
    skipped; replay wrappers are unpacked.
    """
    for action in actions or ():
        entry = _single_entry(action)
        if entry is None:
            continue
        key, body = entry

        if key == "replayChatItemAction":
            yield from iter_raw_actions(body.get("actions") or ())
            continue

        if key == "addChatItemAction":
            item = _single_entry(body.get("item"))
            if item is None:
                continue
            renderer_key, renderer = item
            yield {"type": renderer_key, **renderer}
            continue

        if key in POLL_PANEL_ACTIONS:
            poll = _find_poll_renderer(body)
            if poll is None:
                continue
            if key == "showLiveChatActionPanelAction":
                yield {"type": "liveChatPollRenderer", **poll}
            else:
                yield {"type": "UpdateLiveChatPollAction", **poll}
            continue

        if key == CLOSE_PANEL_ACTION:
            yield {"type": CLOSE_PANEL_ACTION, **body}


def parse_continuation(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[int]]:
    """Return (next continuation token, server timeout in ms)."""
    continuation = (payload.get("continuationContents") or {}).get("liveChatContinuation") or {}
    for entry in continuation.get("continuations") or ():
        if not isinstance(entry, dict):
            continue
        for key in CONTINUATION_KEYS:
            data = entry.get(key)
            if isinstance(data, dict) and data.get("continuation"):
                timeout_ms = data.get("timeoutMs")
                return (
                    data["continuation"],
                    timeout_ms if isinstance(timeout_ms, int) else None,
                )
    return None, None


class YouTubeLiveChatClient:
    """
    Polling client for YouTube live chat via the InnerTube web endpoint.

    Responsibilities:
    - Bootstrap the live chat session from the popout chat page
    - Follow continuation tokens and respect server-provided timeouts
    - Yield raw chat events tagged with their renderer type
    - Back off on transient failures, give up after repeated ones
    - Remain cancellation-safe and stop promptly on close()
    """

    name = "youtube"

    GET_LIVE_CHAT_URL = "https://www.youtube.com/youtubei/v1/live_chat/get_live_chat"

    MAX_CONSECUTIVE_FAILURES = 5
    MAX_BACKOFF_SECONDS = 30.0

    def __init__(
        self,
        *,
        video_id: str,
        poll_interval: float = 1.5,
        client: Optional[httpx.AsyncClient] = None,
        livestream_api: Optional[YouTubeLivestreamAPI] = None,
        timeout: float = 15.0,
    ):
        if not video_id:
            raise ValueError("YouTube video_id is required")

        self.video_id = video_id
        self.poll_interval = poll_interval

        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._livestream_api = livestream_api

        self._bootstrap: Optional[LiveChatBootstrap] = None
        self._continuation: Optional[str] = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def start(self) -> LiveChatBootstrap:
        """
        Resolve the live chat session. Raises ChatSourceError when the
        video has no reachable live chat.
        """
        if self._bootstrap is None:
            api = self._livestream_api or YouTubeLivestreamAPI(client=self._http())
            self._bootstrap = await api.bootstrap(self.video_id)
            self._continuation = self._bootstrap.continuation
        return self._bootstrap

    async def iter_events(self) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Poll live chat and yield raw events until closed.

        Raises ChatSourceError when the chat ends or polling keeps failing.
        """
        self._stop_event.clear()
        bootstrap = await self.start()

        log.info(f"[YouTube] Starting live chat polling (video={self.video_id})")

        failures = 0
        while not self._stop_event.is_set():
            try:
                data = await self._fetch(bootstrap)
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, ValueError) as e:
                failures += 1
                if failures >= self.MAX_CONSECUTIVE_FAILURES:
                    raise ChatSourceError(
                        f"Live chat polling failed {failures} times in a row: {e}"
                    ) from e
                delay = min(self.poll_interval * (2 ** failures), self.MAX_BACKOFF_SECONDS)
                log.warning(
                    f"[YouTube] chat poll error ({failures}/{self.MAX_CONSECUTIVE_FAILURES}): "
                    f"{e}; retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                continue

            failures = 0

            contents = data.get("continuationContents") or {}
            actions = (contents.get("liveChatContinuation") or {}).get("actions") or []
            count = 0
            for event in iter_raw_actions(actions):
                count += 1
                yield event

            continuation, timeout_ms = parse_continuation(data)
            if not continuation:
                raise ChatSourceError(f"Live chat ended for {self.video_id}")
            self._continuation = continuation

            sleep_seconds = timeout_ms / 1000.0 if timeout_ms is not None else self.poll_interval

            log.debug(
                f"[YouTube] Poll complete (events={count}, sleep={sleep_seconds}s)"
            )

            await self._sleep(sleep_seconds)

        log.info(f"[YouTube] Live chat polling stopped (video={self.video_id})")

    async def close(self) -> None:
        """
        Signal polling loop to stop and release the HTTP client.
        """
        self._stop_event.set()
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _fetch(self, bootstrap: LiveChatBootstrap) -> Dict[str, Any]:
        client_context: Dict[str, Any] = {
            "clientName": "WEB",
            "clientVersion": bootstrap.client_version,
        }
        if bootstrap.visitor_data:
            client_context["visitorData"] = bootstrap.visitor_data

        response = await self._http().post(
            self.GET_LIVE_CHAT_URL,
            params={"key": bootstrap.api_key, "prettyPrint": "false"},
            json={
                "context": {"client": client_context},
                "continuation": self._continuation,
            },
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("Unexpected live chat response shape")
        return data

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


__all__ = [
    "YouTubeLiveChatClient",
    "iter_raw_actions",
    "parse_continuation",
]
