"""Filtering and cursor pagination over retention buffer snapshots.

Queries are read-only against an immutable snapshot, so a superseded query
can simply be discarded. Invalid or unsafe regex searches are reported as a
request-level error, never as an empty match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from shared.chat.messages import ChatMessage
from shared.logging.logger import get_logger
from shared.utils.regex_safety import is_safe_pattern

log = get_logger("shared.chat_messages.query")

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500
MAX_REGEX_PATTERN_LENGTH = 256

SEARCH_MODES = ("plain", "regex")
MESSAGE_TYPES = ("regular", "superchat", "membership")


class InvalidSearchError(ValueError):
    """Raised when a search pattern is too long, unsafe or does not compile."""


# ----------------------------------------------------------------------
# Query parameters
# ----------------------------------------------------------------------

def _param(params: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = params.get(name)
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if value is not None:
            return value
    return None


def _parse_badges(raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, (list, tuple, set, frozenset)):
        raw = ",".join(str(item) for item in raw)
    if not isinstance(raw, str):
        return ()

    badges: List[str] = []
    for badge in raw.split(","):
        badge = badge.strip().lower()
        if badge and badge not in badges:
            badges.append(badge)
    return tuple(badges)


def _parse_limit(raw: Any, default: int, maximum: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if value != value or value in (float("inf"), float("-inf")):
        return default
    return min(max(1, int(value)), maximum)


@dataclass(frozen=True)
class MessageQuery:
    search: str = ""
    mode: str = "plain"
    type: Optional[str] = None
    author: str = ""
    badges: Tuple[str, ...] = ()
    cursor: Optional[str] = None
    limit: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_params(
        cls,
        params: Optional[Mapping[str, Any]],
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> "MessageQuery":
        """
        Normalize raw request parameters.

        Unknown modes fall back to plain, unknown types to "all", and the
        limit is clamped to [1, max_page_size].
        """
        params = params or {}

        search = _param(params, "search")
        mode = _param(params, "searchMode", "mode")
        msg_type = _param(params, "type")
        author = _param(params, "author")
        cursor = _param(params, "cursor")

        badges_raw = params.get("badges")

        return cls(
            search=search.strip() if isinstance(search, str) else "",
            mode="regex" if mode == "regex" else "plain",
            type=msg_type if msg_type in MESSAGE_TYPES else None,
            author=author.strip() if isinstance(author, str) else "",
            badges=_parse_badges(badges_raw),
            cursor=(cursor.strip() or None) if isinstance(cursor, str) else None,
            limit=_parse_limit(_param(params, "limit"), default_page_size, max_page_size),
        )

    def applied_filters(self) -> Dict[str, Any]:
        return {
            "search": self.search or None,
            "mode": self.mode,
            "type": self.type or "all",
            "author": self.author or None,
            "badges": list(self.badges),
            "limit": self.limit,
        }


@dataclass(frozen=True)
class QueryResult:
    messages: Tuple[ChatMessage, ...]
    total: int
    total_matches: int
    next_cursor: Optional[str]
    query: MessageQuery
    error: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    @property
    def page_count(self) -> int:
        return len(self.messages)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "messages": [message.to_dict() for message in self.messages],
            "total": self.total,
            "totalMatches": self.total_matches,
            "pageCount": self.page_count,
            "nextCursor": self.next_cursor,
            "hasMore": self.has_more,
            "appliedFilters": self.query.applied_filters(),
        }
        if self.error:
            payload["error"] = self.error
        return payload


# ----------------------------------------------------------------------
# Predicates
# ----------------------------------------------------------------------

def build_search_pattern(
    query: MessageQuery,
    max_pattern_length: int = MAX_REGEX_PATTERN_LENGTH,
) -> Optional[Pattern[str]]:
    if not query.search:
        return None

    if query.mode == "plain":
        return re.compile(re.escape(query.search), re.IGNORECASE)

    if len(query.search) > max_pattern_length:
        raise InvalidSearchError(
            f"Regex pattern must be {max_pattern_length} characters or less"
        )
    if not is_safe_pattern(query.search):
        raise InvalidSearchError("Unsafe regex pattern")

    try:
        return re.compile(query.search, re.IGNORECASE)
    except re.error as e:
        raise InvalidSearchError(f"Invalid regex pattern: {e}") from e


def matches_type(message: ChatMessage, msg_type: str) -> bool:
    if msg_type == "superchat":
        return message.super_chat is not None
    if msg_type == "membership":
        return bool(
            message.membership_gift
            or message.membership_gift_purchase
            or message.membership_level
        )
    return (
        message.super_chat is None
        and not message.membership_gift
        and not message.membership_gift_purchase
    )


def matches_author(message: ChatMessage, author: str) -> bool:
    return author.lower() in (message.author or "").lower()


def badge_labels(message: ChatMessage) -> set[str]:
    labels = set()
    for badge in message.badges or ():
        if badge.label:
            labels.add(badge.label.lower())
        labels.add(badge.type.lower())
    if message.is_moderator:
        labels.add("moderator")
    if message.is_member:
        labels.add("member")
    if message.is_verified:
        labels.add("verified")
    return labels


def matches_badges(message: ChatMessage, badges: Sequence[str]) -> bool:
    if not badges:
        return True
    wanted = {badge.lower() for badge in badges}
    return not wanted.isdisjoint(badge_labels(message))


def collect_message_text(message: ChatMessage) -> str:
    parts: List[str] = []
    if message.text:
        parts.append(message.text)
    for run in message.runs or ():
        if run.text:
            parts.append(run.text)
        if run.emoji_alt:
            parts.append(run.emoji_alt)
    if message.membership_level:
        parts.append(message.membership_level)
    if message.super_chat:
        parts.append(message.super_chat.amount)
        parts.append(message.super_chat.currency)
    return " ".join(part for part in parts if part).strip()


def matches_search(message: ChatMessage, pattern: Pattern[str]) -> bool:
    content = collect_message_text(message)
    if not content:
        return False
    return pattern.search(content) is not None


def apply_filters(
    messages: Sequence[ChatMessage],
    query: MessageQuery,
    pattern: Optional[Pattern[str]] = None,
) -> List[ChatMessage]:
    filtered = list(messages)

    if query.type:
        filtered = [m for m in filtered if matches_type(m, query.type)]

    if query.author:
        filtered = [m for m in filtered if matches_author(m, query.author)]

    if query.badges:
        filtered = [m for m in filtered if matches_badges(m, query.badges)]

    if pattern is not None:
        filtered = [m for m in filtered if matches_search(m, pattern)]

    return filtered


# ----------------------------------------------------------------------
# Pagination
# ----------------------------------------------------------------------

def paginate(
    messages: Sequence[ChatMessage],
    limit: int,
    cursor: Optional[str] = None,
) -> Tuple[List[ChatMessage], Optional[str]]:
    """
    Backward cursor paging over an oldest-first list.

    The page is the `limit` messages immediately before `cursor` (or the
    newest `limit` when the cursor is absent or unknown). The cursor is an
    exclusive boundary, so the returned cursor is the id of the oldest
    message on the page, or None once the start of the list is reached.
    """
    end = len(messages)
    if cursor:
        for index, message in enumerate(messages):
            if message.id == cursor:
                end = index
                break

    start = max(0, end - limit)
    page = list(messages[start:end])
    next_cursor = page[0].id if start > 0 and page else None
    return page, next_cursor


def run_query(
    snapshot: Sequence[ChatMessage],
    query: MessageQuery,
    *,
    max_pattern_length: int = MAX_REGEX_PATTERN_LENGTH,
) -> QueryResult:
    try:
        pattern = build_search_pattern(query, max_pattern_length)
    except InvalidSearchError as e:
        log.info(f"Rejected search pattern {query.search!r}: {e}")
        return QueryResult(
            messages=(),
            total=len(snapshot),
            total_matches=0,
            next_cursor=None,
            query=query,
            error=str(e),
        )

    filtered = apply_filters(snapshot, query, pattern)
    page, next_cursor = paginate(filtered, query.limit, query.cursor)

    return QueryResult(
        messages=tuple(message.with_author_channel_url() for message in page),
        total=len(filtered),
        total_matches=len(filtered),
        next_cursor=next_cursor,
        query=query,
    )


__all__ = [
    "InvalidSearchError",
    "MessageQuery",
    "QueryResult",
    "build_search_pattern",
    "apply_filters",
    "paginate",
    "run_query",
    "collect_message_text",
    "matches_type",
    "matches_badges",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "MAX_REGEX_PATTERN_LENGTH",
]
