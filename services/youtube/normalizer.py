"""
YouTube live chat event normalizer.

Upstream chat items arrive as loosely-typed objects whose field names drift
between InnerTube renderer payloads (camelCase, `{simpleText}` / `{runs}`
text objects) and parsed client payloads (snake_case, plain strings). The
normalizer classifies each raw event against a fixed vocabulary of type tags
plus a couple of structural fallbacks and maps it to one canonical
ChatMessage, a Poll update, or nothing.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from shared.chat.messages import Badge, ChatMessage, MessageRun, Poll, SuperChatInfo
from shared.logging.logger import get_logger

log = get_logger("youtube.normalizer")


# ----------------------------------------------------------------------
# Type vocabulary
# ----------------------------------------------------------------------

ADD_CHAT_ITEM_ACTION = "AddChatItemAction"

TEXT_TYPES = frozenset({
    "LiveChatTextMessage",
    "liveChatTextMessageRenderer",
})

PAID_TYPES = frozenset({
    "LiveChatPaidMessage",
    "LiveChatPaidSticker",
    "liveChatPaidMessageRenderer",
    "liveChatPaidStickerRenderer",
})

MEMBERSHIP_TYPES = frozenset({
    "LiveChatMembershipItem",
    "liveChatMembershipItemRenderer",
})

GIFT_PURCHASE_TYPES = frozenset({
    "LiveChatSponsorshipsGiftPurchaseAnnouncement",
    "LiveChatGiftMembershipsPurchase",
    "liveChatSponsorshipsGiftPurchaseAnnouncementRenderer",
})

GIFT_REDEMPTION_TYPES = frozenset({
    "LiveChatSponsorshipsGiftRedemptionAnnouncement",
    "LiveChatGiftMembershipReceived",
    "liveChatSponsorshipsGiftRedemptionAnnouncementRenderer",
})

POLL_UPDATE_TYPES = frozenset({
    "LiveChatPollRenderer",
    "UpdateLiveChatPollAction",
    "liveChatPollRenderer",
})

POLL_CLOSE_TYPES = frozenset({
    "CloseLiveChatActionPanelAction",
    "closeLiveChatActionPanelAction",
})

KIND_TEXT = "text"
KIND_PAID = "paid"
KIND_MEMBERSHIP = "membership"
KIND_GIFT_PURCHASE = "gift_purchase"
KIND_GIFT_REDEMPTION = "gift_redemption"
KIND_POLL_UPDATE = "poll_update"
KIND_POLL_CLOSE = "poll_close"
KIND_UNKNOWN = "unknown"


# ----------------------------------------------------------------------
# Field aliases (tried in order)
# ----------------------------------------------------------------------

TYPE_FIELDS = ("type", "item_type", "renderer")

PURCHASE_AMOUNT_FIELDS = (
    "purchase_amount_text",
    "purchaseAmountText",
    "header.purchase_amount_text",
    "header.purchaseAmountText",
)
AMOUNT_FIELDS = PURCHASE_AMOUNT_FIELDS[:2] + ("amount",) + PURCHASE_AMOUNT_FIELDS[2:]

COLOR_FIELDS = (
    "body_background_color",
    "bodyBackgroundColor",
    "background_color",
    "backgroundColor",
    "header_background_color",
    "headerBackgroundColor",
)

AUTHOR_NAME_FIELDS = (
    "author.name",
    "authorName",
    "author_name",
    "header.author_name",
    "header.authorName",
)
AUTHOR_PHOTO_FIELDS = (
    "author.thumbnails",
    "authorPhoto",
    "author_photo",
    "header.authorPhoto",
    "header.author_photo",
)
AUTHOR_CHANNEL_FIELDS = (
    "author.id",
    "authorExternalChannelId",
    "author_channel_id",
    "channelId",
)
AUTHOR_BADGE_FIELDS = (
    "author.badges",
    "authorBadges",
    "author_badges",
    "header.authorBadges",
    "header.author_badges",
)

AUTHOR_ROLE_FLAGS = {
    "moderator": ("author.is_moderator", "isChatModerator", "is_moderator"),
    "member": ("author.is_member", "isChatSponsor", "is_member"),
    "verified": ("author.is_verified", "author.is_verified_artist", "isVerified", "is_verified"),
}

HEADER_PRIMARY_FIELDS = (
    "header_primary_text",
    "headerPrimaryText",
    "header.primary_text",
    "header.primaryText",
)
HEADER_SUBTEXT_FIELDS = (
    "header_subtext",
    "headerSubtext",
)

STICKER_FIELDS = ("sticker", "sticker_thumbnails", "stickerThumbnails")
STICKER_LABEL_FIELDS = (
    "sticker_accessibility_label",
    "stickerAccessibilityLabel",
    "sticker.accessibility.accessibilityData.label",
    "sticker.accessibility.accessibility_data.label",
)

LEADERBOARD_FIELDS = ("before_content_buttons", "beforeContentButtons")

POLL_ID_FIELDS = (
    "live_chat_poll_id",
    "liveChatPollId",
    "poll_id",
    "pollId",
    "id",
)

DEFAULT_COLOR = "#1e3a8a"
DEFAULT_AMOUNT = "Super Chat"
DEFAULT_MEMBERSHIP_LEVEL = "New member"
UNKNOWN_AUTHOR = "Unknown"


# ----------------------------------------------------------------------
# Patterns
# ----------------------------------------------------------------------

AMOUNT_RE = re.compile(r"^\s*([^\d\s.,]+)?\s*(\d[\d.,]*)\s*([^\d\s.,]+)?\s*$")

GIFT_REDEMPTION_PHRASES = (
    "received a gift membership",
    "received a membership gift",
    "received a gift",
)
GIFT_REDEMPTION_RE = re.compile(r"received a .*membership.* by", re.IGNORECASE)

MEMBERSHIP_LEVEL_PATTERNS = (
    re.compile(r"Welcome to (.+?)!", re.IGNORECASE),
    re.compile(r"Upgraded membership to (.+?)!", re.IGNORECASE),
)

GIFT_COUNT_RE = re.compile(r"\b(?:sent|gifted)\s+(\d+)\b.*?\bmemberships?\b", re.IGNORECASE)

LEADERBOARD_RANK_RE = re.compile(r"#\s*(\d+)")

# Epoch magnitude thresholds for numeric timestamps
MICROSECONDS_THRESHOLD = 1e15
MILLISECONDS_THRESHOLD = 1e12


# ----------------------------------------------------------------------
# Shape helpers
# ----------------------------------------------------------------------

def _get(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _unwrap_renderer(value: Any) -> Any:
    """`{"fooRenderer": {...}}` -> `{...}`; anything else unchanged."""
    if isinstance(value, Mapping) and len(value) == 1:
        key, inner = next(iter(value.items()))
        if isinstance(key, str) and key.endswith(("Renderer", "ViewModel")) and isinstance(inner, Mapping):
            return inner
    return value


def resolve_path(obj: Any, path: str) -> Any:
    """Resolve a dotted path, unwrapping single-renderer wrappers on the way."""
    current = obj
    for part in path.split("."):
        current = _get(_unwrap_renderer(current), part)
        if current is None:
            return None
    return current


def text_of(value: Any) -> str:
    """
    Coerce an upstream text-ish value to a plain string.

    Accepts plain strings, numbers, `{simpleText}`, `{runs: [...]}`,
    `{text}` objects and lists of any of those.
    """
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, (list, tuple)):
        return "".join(text_of(part) for part in value)

    simple = _get(value, "simpleText")
    if simple is None:
        simple = _get(value, "simple_text")
    if isinstance(simple, str):
        return simple

    runs = _get(value, "runs")
    if isinstance(runs, (list, tuple)):
        return "".join(_run_text(run) for run in runs)

    text = _get(value, "text")
    if isinstance(text, str):
        return text

    return ""


def first_present(
    obj: Any,
    paths: Iterable[str],
    coerce: Callable[[Any], Any] = text_of,
) -> Any:
    """
    Try each path in order and return the first non-empty coerced value.
    Returns None when no candidate yields anything.
    """
    for path in paths:
        raw = resolve_path(obj, path)
        if raw is None:
            continue
        value = coerce(raw)
        if value not in (None, "", [], ()):
            return value
    return None


def normalize_url(url: Optional[str]) -> Optional[str]:
    if not url or not isinstance(url, str):
        return None
    url = url.strip()
    if not url:
        return None
    if url.startswith("//"):
        return "https:" + url
    if url.startswith(("http://", "https://", "data:")):
        return url
    return "https://" + url.lstrip("/")


def _thumbnail_list(value: Any) -> List[Any]:
    value = _unwrap_renderer(value)
    if isinstance(value, (list, tuple)):
        return list(value)
    nested = _get(value, "thumbnails")
    if isinstance(nested, (list, tuple)):
        return list(nested)
    return []


def first_thumbnail_url(value: Any) -> Optional[str]:
    for thumb in _thumbnail_list(value):
        url = normalize_url(_get(thumb, "url"))
        if url:
            return url
    return None


def _emoji_alt(emoji: Any) -> Optional[str]:
    shortcuts = _get(emoji, "shortcuts")
    if isinstance(shortcuts, (list, tuple)) and shortcuts:
        return str(shortcuts[0])
    for path in (
        "image.accessibility.accessibilityData.label",
        "emojiId",
        "emoji_id",
    ):
        value = resolve_path(emoji, path)
        if isinstance(value, str) and value:
            return value
    return None


def _run_text(run: Any) -> str:
    text = _get(run, "text")
    if isinstance(text, str):
        return text
    emoji = _get(run, "emoji")
    if emoji is not None:
        return _emoji_alt(emoji) or ""
    return ""


# ----------------------------------------------------------------------
# Field extractors
# ----------------------------------------------------------------------

def extract_runs(message: Any) -> Optional[Tuple[MessageRun, ...]]:
    runs = _get(message, "runs")
    if not isinstance(runs, (list, tuple)) or not runs:
        return None

    extracted: List[MessageRun] = []
    for run in runs:
        emoji = _get(run, "emoji")
        if emoji is not None:
            image = _get(emoji, "image")
            extracted.append(
                MessageRun(
                    emoji_url=first_thumbnail_url(image),
                    emoji_alt=_emoji_alt(emoji),
                )
            )
            continue
        text = _get(run, "text")
        if isinstance(text, str) and text:
            extracted.append(MessageRun(text=text))

    return tuple(extracted) or None


def extract_badges(event: Any) -> Tuple[Badge, ...]:
    raw_badges = first_present(event, AUTHOR_BADGE_FIELDS, coerce=lambda v: v)
    if not isinstance(raw_badges, (list, tuple)):
        return ()

    badges: List[Badge] = []
    for raw in raw_badges:
        raw = _unwrap_renderer(raw)
        label = (
            text_of(_get(raw, "tooltip"))
            or text_of(_get(raw, "label"))
            or text_of(resolve_path(raw, "accessibility.accessibilityData.label"))
        )
        if not label:
            continue

        lowered = label.lower()
        if "moderator" in lowered:
            badge_type = "moderator"
        elif "member" in lowered:
            badge_type = "member"
        elif "verified" in lowered:
            badge_type = "verified"
        else:
            badge_type = "custom"

        image_url = first_thumbnail_url(
            _get(raw, "customThumbnail") or _get(raw, "custom_thumbnail")
        )
        badges.append(Badge(type=badge_type, label=label, image_url=image_url))

    return tuple(badges)


def extract_roles(event: Any) -> FrozenSet[str]:
    """Roles flagged directly on the author rather than through badges."""
    roles = set()
    for role, paths in AUTHOR_ROLE_FLAGS.items():
        if any(resolve_path(event, path) is True for path in paths):
            roles.add(role)
    return frozenset(roles)


def normalize_color(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return f"#{value & 0xFFFFFF:06x}"
    if isinstance(value, float) and value.is_integer():
        return f"#{int(value) & 0xFFFFFF:06x}"
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        return value if value.startswith("#") else f"#{value}"
    return None


def parse_amount(text: str) -> Tuple[str, str]:
    """Split "$5.00" / "5,00 €" into (amount, currency)."""
    match = AMOUNT_RE.match(text)
    if not match:
        return text.strip(), ""
    leading, amount, trailing = match.groups()
    return amount, (leading or trailing or "")


def extract_super_chat(event: Any) -> SuperChatInfo:
    amount_text = first_present(event, AMOUNT_FIELDS)
    if amount_text:
        amount, currency = parse_amount(amount_text)
        if not currency:
            currency = text_of(_get(event, "currency"))
    else:
        amount, currency = DEFAULT_AMOUNT, ""

    color = first_present(event, COLOR_FIELDS, coerce=normalize_color) or DEFAULT_COLOR

    sticker_url = first_present(event, STICKER_FIELDS, coerce=first_thumbnail_url)
    sticker_alt = first_present(event, STICKER_LABEL_FIELDS) if sticker_url else None

    return SuperChatInfo(
        amount=amount,
        currency=currency,
        color=color,
        sticker_url=sticker_url,
        sticker_alt=sticker_alt,
    )


def extract_membership_level(event: Any) -> str:
    subtext = first_present(event, HEADER_SUBTEXT_FIELDS) or ""
    for pattern in MEMBERSHIP_LEVEL_PATTERNS:
        match = pattern.search(subtext)
        if match:
            return match.group(1).strip()

    if subtext.strip():
        return subtext.strip()
    primary = first_present(event, HEADER_PRIMARY_FIELDS)
    if primary and primary.strip():
        return primary.strip()
    return DEFAULT_MEMBERSHIP_LEVEL


def extract_gift_count(*texts: str) -> Optional[int]:
    match = GIFT_COUNT_RE.search(" ".join(t for t in texts if t))
    return int(match.group(1)) if match else None


def extract_leaderboard_rank(event: Any) -> Optional[int]:
    buttons = first_present(event, LEADERBOARD_FIELDS, coerce=lambda v: v)
    if not isinstance(buttons, (list, tuple)):
        return None

    for button in buttons:
        button = _unwrap_renderer(button)
        for path in (
            "title",
            "label",
            "text",
            "accessibilityText",
            "accessibility_text",
            "accessibility.accessibilityData.label",
        ):
            match = LEADERBOARD_RANK_RE.search(text_of(resolve_path(button, path)))
            if match:
                return int(match.group(1))
    return None


def _utc_now_iso() -> str:
    return _format_iso(datetime.now(timezone.utc))


def _format_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def resolve_timestamp(value: Any) -> str:
    """
    Convert an upstream timestamp to ISO-8601 UTC.

    Numbers >= 1e15 are epoch microseconds, >= 1e12 epoch milliseconds,
    anything smaller epoch seconds. ISO strings pass through normalized.
    Unparseable or missing values fall back to the wall clock.
    """
    if value is None or value == "" or isinstance(value, bool):
        return _utc_now_iso()

    numeric: Optional[float] = None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value.strip())
        except ValueError:
            try:
                parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                return _utc_now_iso()
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return _format_iso(parsed)

    if numeric is None or numeric != numeric or numeric <= 0:
        return _utc_now_iso()

    if numeric >= MICROSECONDS_THRESHOLD:
        seconds = numeric / 1_000_000
    elif numeric >= MILLISECONDS_THRESHOLD:
        seconds = numeric / 1_000
    else:
        seconds = numeric

    try:
        return _format_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        return _utc_now_iso()


def _raw_timestamp(event: Any) -> Any:
    for name in ("timestamp_usec", "timestampUsec", "timestamp"):
        value = _get(event, name)
        if value not in (None, ""):
            return value
    return None


def is_gift_redemption_text(text: str) -> bool:
    lowered = text.lower()
    if any(phrase in lowered for phrase in GIFT_REDEMPTION_PHRASES):
        return True
    return bool(GIFT_REDEMPTION_RE.search(text))


def type_tag(event: Any) -> str:
    for name in TYPE_FIELDS:
        value = _get(event, name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def classify(event: Any) -> str:
    """Map a raw event to one of the KIND_* constants."""
    tag = type_tag(event)

    if tag in POLL_CLOSE_TYPES:
        return KIND_POLL_CLOSE
    if tag in POLL_UPDATE_TYPES:
        return KIND_POLL_UPDATE
    if tag in GIFT_REDEMPTION_TYPES:
        return KIND_GIFT_REDEMPTION
    if tag in PAID_TYPES or first_present(event, PURCHASE_AMOUNT_FIELDS):
        return KIND_PAID
    # Body text only marks unpaid events as redemptions
    if is_gift_redemption_text(text_of(_get(event, "message"))):
        return KIND_GIFT_REDEMPTION
    if tag in GIFT_PURCHASE_TYPES:
        return KIND_GIFT_PURCHASE
    if tag in MEMBERSHIP_TYPES:
        return KIND_MEMBERSHIP
    if tag in TEXT_TYPES:
        return KIND_TEXT
    return KIND_UNKNOWN


def unwrap_event(event: Any) -> Any:
    """
    Reduce action envelopes to the chat item they carry.

    - `{"type": "AddChatItemAction", "item": {...}}` -> item
    - `{"liveChatTextMessageRenderer": {...}}` -> `{"type": "liveChat...", ...}`
    """
    if type_tag(event) == ADD_CHAT_ITEM_ACTION:
        event = _get(event, "item")

    if isinstance(event, Mapping) and not type_tag(event) and len(event) == 1:
        key, inner = next(iter(event.items()))
        if isinstance(key, str) and isinstance(inner, Mapping):
            tagged = dict(inner)
            tagged["type"] = key
            return tagged

    return event


# ----------------------------------------------------------------------
# Normalizer
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class NormalizedEvent:
    """Outcome of normalizing one raw event: a message, a poll change, or a drop."""

    message: Optional[ChatMessage] = None
    poll: Optional[Poll] = None
    poll_changed: bool = False
    drop: bool = False

    @classmethod
    def dropped(cls) -> "NormalizedEvent":
        return cls(drop=True)

    @classmethod
    def of_message(cls, message: ChatMessage) -> "NormalizedEvent":
        return cls(message=message)

    @classmethod
    def of_poll(cls, poll: Optional[Poll]) -> "NormalizedEvent":
        return cls(poll=poll, poll_changed=True)


class EventNormalizer:
    """
    Converts raw live chat events into canonical ChatMessage records.

    Responsibilities:
    - Classify raw events by type tag with structural fallbacks
    - Extract author, body, badges, paid/membership details defensively
    - Assign session-unique ids (`<base>`, `<base>#1`, `<base>#2`, ...)
    - Never raise for unrecognized or malformed input

    The id counters belong to one ingestion session; call reset() when a new
    session starts.
    """

    def __init__(self) -> None:
        self._id_counts: Dict[str, int] = {}
        self._emitted: Set[str] = set()

    def reset(self) -> None:
        self._id_counts.clear()
        self._emitted.clear()

    # ------------------------------------------------------------------

    def normalize(self, raw: Any) -> NormalizedEvent:
        try:
            return self._normalize(raw)
        except Exception as e:
            log.debug(f"Dropping malformed chat event ({type(e).__name__}: {e})")
            return NormalizedEvent.dropped()

    def _normalize(self, raw: Any) -> NormalizedEvent:
        if raw is None:
            return NormalizedEvent.dropped()

        event = unwrap_event(raw)
        if event is None:
            return NormalizedEvent.dropped()

        kind = classify(event)

        if kind == KIND_POLL_CLOSE:
            return NormalizedEvent.of_poll(None)

        if kind == KIND_POLL_UPDATE:
            poll_id = first_present(event, POLL_ID_FIELDS)
            if not poll_id:
                return NormalizedEvent.dropped()
            return NormalizedEvent.of_poll(Poll(id=poll_id, active=True))

        if kind == KIND_GIFT_REDEMPTION:
            log.debug("Suppressed gift redemption notice")
            return NormalizedEvent.dropped()

        if kind == KIND_UNKNOWN:
            log.debug(f"Dropping unrecognized chat event type={type_tag(event)!r}")
            return NormalizedEvent.dropped()

        return NormalizedEvent.of_message(self._build_message(event, kind))

    def _build_message(self, event: Any, kind: str) -> ChatMessage:
        body = _get(event, "message")
        text = text_of(body)
        runs = extract_runs(body)
        header_primary = first_present(event, HEADER_PRIMARY_FIELDS) or ""

        badges = extract_badges(event)

        super_chat = extract_super_chat(event) if kind == KIND_PAID else None

        membership_level = None
        if kind == KIND_MEMBERSHIP:
            membership_level = extract_membership_level(event)

        gift_count = None
        if kind == KIND_GIFT_PURCHASE:
            gift_count = extract_gift_count(text, header_primary)
            if not text:
                text = header_primary

        return ChatMessage(
            id=self._assign_id(event),
            author=(first_present(event, AUTHOR_NAME_FIELDS) or UNKNOWN_AUTHOR).strip() or UNKNOWN_AUTHOR,
            text=text,
            published_at=resolve_timestamp(_raw_timestamp(event)),
            author_photo=first_present(event, AUTHOR_PHOTO_FIELDS, coerce=_photo_url),
            author_channel_id=first_present(event, AUTHOR_CHANNEL_FIELDS),
            author_channel_url=normalize_url(text_of(_get(event, "author_channel_url"))),
            runs=runs,
            badges=badges or None,
            super_chat=super_chat,
            membership_gift=kind == KIND_MEMBERSHIP,
            membership_gift_purchase=kind == KIND_GIFT_PURCHASE,
            membership_level=membership_level,
            gift_count=gift_count,
            leaderboard_rank=extract_leaderboard_rank(event),
            roles=extract_roles(event),
        )

    def _assign_id(self, event: Any) -> str:
        base = text_of(_get(event, "id")).strip()
        if not base:
            base = text_of(_raw_timestamp(event)).strip()
        if not base:
            base = str(int(time.time() * 1000))

        # Suffixes skip ids already emitted, including upstream ids shaped like a suffix
        candidate = base
        n = self._id_counts.get(base, 0)
        while candidate in self._emitted:
            n += 1
            candidate = f"{base}#{n}"
        self._id_counts[base] = n
        self._emitted.add(candidate)
        return candidate


def _photo_url(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return normalize_url(value)
    return first_thumbnail_url(value)


__all__ = [
    "EventNormalizer",
    "NormalizedEvent",
    "classify",
    "first_present",
    "resolve_timestamp",
    "text_of",
    "KIND_TEXT",
    "KIND_PAID",
    "KIND_MEMBERSHIP",
    "KIND_GIFT_PURCHASE",
    "KIND_GIFT_REDEMPTION",
    "KIND_POLL_UPDATE",
    "KIND_POLL_CLOSE",
    "KIND_UNKNOWN",
]
