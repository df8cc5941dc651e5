import json
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

import httpx

from shared.chat.sources import ChatSourceError
from shared.logging.logger import get_logger

log = get_logger("youtube.livestream")

LIVE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{10,}$")

API_KEY_RE = re.compile(r'"INNERTUBE_API_KEY"\s*:\s*"([^"]+)"')
CLIENT_VERSION_RE = re.compile(r'"INNERTUBE_CLIENT_VERSION"\s*:\s*"([^"]+)"')
VISITOR_DATA_RE = re.compile(r'"VISITOR_DATA"\s*:\s*"([^"]+)"')
CONTINUATION_RE = re.compile(
    r'"(?:invalidationContinuationData|timedContinuationData|reloadContinuationData)"'
    r'\s*:\s*\{(?:[^{}]|\{[^{}]*\})*?"continuation"\s*:\s*"([^"]+)"'
)
ANY_CONTINUATION_RE = re.compile(r'"continuation"\s*:\s*"([^"]+)"')

DEFAULT_CLIENT_VERSION = "2.20240101.00.00"


def extract_live_id(value: Optional[str]) -> str:
    """
    Resolve a YouTube video id from a bare id or a watch/live URL.

    Accepts:
    - bare ids (10+ chars of [A-Za-z0-9_-])
    - https://www.youtube.com/watch?v=<id>
    - https://youtu.be/<id>, https://www.youtube.com/live/<id>

    Returns "" when nothing usable is found.
    """
    if not value:
        return ""

    trimmed = value.strip()
    if LIVE_ID_RE.match(trimmed):
        return trimmed

    parsed = urlparse(trimmed)
    if not parsed.scheme or not parsed.netloc:
        log.warning(f"Invalid YouTube live id provided: {value!r}")
        return ""

    candidates = parse_qs(parsed.query).get("v")
    if candidates and candidates[0]:
        return candidates[0].strip()

    segments = [segment for segment in parsed.path.split("/") if segment]
    return segments[-1] if segments else ""


@dataclass
class LiveChatBootstrap:
    """Values scraped from the live chat page needed to poll InnerTube."""

    video_id: str
    api_key: str
    client_version: str
    continuation: str
    visitor_data: Optional[str] = None


def parse_live_chat_page(video_id: str, html: str) -> LiveChatBootstrap:
    api_key = API_KEY_RE.search(html)
    if not api_key:
        raise ChatSourceError(f"InnerTube API key not found for {video_id}")

    continuation = CONTINUATION_RE.search(html) or ANY_CONTINUATION_RE.search(html)
    if not continuation:
        raise ChatSourceError(f"This video does not have an active live chat ({video_id})")

    try:
        # Tokens are embedded in JSON and may carry \u-style escapes
        token = json.loads(f'"{continuation.group(1)}"')
    except json.JSONDecodeError as e:
        raise ChatSourceError(f"Malformed live chat continuation for {video_id}") from e

    version = CLIENT_VERSION_RE.search(html)
    visitor = VISITOR_DATA_RE.search(html)

    return LiveChatBootstrap(
        video_id=video_id,
        api_key=api_key.group(1),
        client_version=version.group(1) if version else DEFAULT_CLIENT_VERSION,
        continuation=token,
        visitor_data=visitor.group(1) if visitor else None,
    )


class YouTubeLivestreamAPI:
    """
    Live chat bootstrap for a single YouTube video.

    Responsibilities:
    - Load the popout live chat page for a video id
    - Extract InnerTube API key, client version and the first continuation
    - Fail with ChatSourceError when the video has no live chat

    This module is read-only and safe to call repeatedly.
    """

    LIVE_CHAT_URL = "https://www.youtube.com/live_chat"

    HEADERS = {
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
        ),
        "Accept-Language": "en-US,en;q=0.9",
    }

    def __init__(self, *, client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self._client = client
        self._timeout = timeout

    async def bootstrap(self, video_id: str) -> LiveChatBootstrap:
        if not video_id:
            raise ValueError("video_id is required to bootstrap live chat")

        params = {"is_popout": "1", "v": video_id}
        log.info(f"[YouTube] Fetching live chat page (video={video_id})")

        try:
            if self._client is not None:
                r = await self._client.get(self.LIVE_CHAT_URL, params=params, headers=self.HEADERS)
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    r = await client.get(self.LIVE_CHAT_URL, params=params, headers=self.HEADERS)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ChatSourceError(
                f"Live chat page request failed ({e.response.status_code})",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ChatSourceError(f"Live chat page request failed: {e}") from e

        bootstrap = parse_live_chat_page(video_id, r.text)
        log.info(f"[YouTube] Live chat bootstrap complete (video={video_id})")
        return bootstrap


__all__ = [
    "extract_live_id",
    "parse_live_chat_page",
    "LiveChatBootstrap",
    "YouTubeLivestreamAPI",
]
