"""Canonical chat message schema and helpers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, FrozenSet, Optional, Tuple

CHANNEL_URL_TEMPLATE = "https://www.youtube.com/channel/{channel_id}"

BADGE_TYPES = ("moderator", "member", "verified", "custom")

# Classification categories. A message belongs to exactly one.
CATEGORY_SUPERCHAT = "superchat"
CATEGORY_GIFT_PURCHASE = "gift_purchase"
CATEGORY_MEMBERSHIP = "membership"
CATEGORY_REGULAR = "regular"


@dataclass(frozen=True)
class Badge:
    type: str
    label: Optional[str] = None
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        if self.label:
            payload["label"] = self.label
        if self.image_url:
            payload["imageUrl"] = self.image_url
        return payload


@dataclass(frozen=True)
class MessageRun:
    """One segment of a message body: literal text or an emoji reference."""

    text: Optional[str] = None
    emoji_url: Optional[str] = None
    emoji_alt: Optional[str] = None

    @property
    def is_emoji(self) -> bool:
        return self.emoji_url is not None or self.emoji_alt is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.is_emoji:
            payload: Dict[str, Any] = {}
            if self.emoji_url:
                payload["emojiUrl"] = self.emoji_url
            if self.emoji_alt:
                payload["emojiAlt"] = self.emoji_alt
            return payload
        return {"text": self.text or ""}


@dataclass(frozen=True)
class SuperChatInfo:
    amount: str
    currency: str
    color: str
    sticker_url: Optional[str] = None
    sticker_alt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "amount": self.amount,
            "currency": self.currency,
            "color": self.color,
        }
        if self.sticker_url:
            payload["stickerUrl"] = self.sticker_url
        if self.sticker_alt:
            payload["stickerAlt"] = self.sticker_alt
        return payload


@dataclass(frozen=True)
class Poll:
    id: str
    active: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "active": self.active}


@dataclass(frozen=True)
class ChatMessage:
    """
    Normalized live chat message.

    Instances are immutable. The moderator/member/verified flags are derived
    from `badges`, plus `roles` for upstream author flags that arrive without
    a badge entry; they cannot be set independently.
    """

    id: str
    author: str
    text: str
    published_at: str

    author_photo: Optional[str] = None
    author_channel_id: Optional[str] = None
    author_channel_url: Optional[str] = None
    runs: Optional[Tuple[MessageRun, ...]] = None
    badges: Optional[Tuple[Badge, ...]] = None
    super_chat: Optional[SuperChatInfo] = None
    membership_gift: bool = False
    membership_gift_purchase: bool = False
    membership_level: Optional[str] = None
    gift_count: Optional[int] = None
    leaderboard_rank: Optional[int] = None
    roles: FrozenSet[str] = frozenset()

    def _has_badge(self, badge_type: str) -> bool:
        if badge_type in self.roles:
            return True
        return any(badge.type == badge_type for badge in self.badges or ())

    @property
    def is_moderator(self) -> bool:
        return self._has_badge("moderator")

    @property
    def is_member(self) -> bool:
        return self._has_badge("member")

    @property
    def is_verified(self) -> bool:
        return self._has_badge("verified")

    def with_author_channel_url(self) -> "ChatMessage":
        """Return a copy with author_channel_url filled in from the channel id."""
        if self.author_channel_url or not self.author_channel_id:
            return self
        return replace(
            self,
            author_channel_url=CHANNEL_URL_TEMPLATE.format(
                channel_id=self.author_channel_id
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "author": self.author,
            "text": self.text,
            "publishedAt": self.published_at,
            "isModerator": self.is_moderator,
            "isMember": self.is_member,
            "isVerified": self.is_verified,
        }

        optional = {
            "authorPhoto": self.author_photo,
            "authorChannelId": self.author_channel_id,
            "authorChannelUrl": self.author_channel_url,
            "membershipLevel": self.membership_level,
            "giftCount": self.gift_count,
            "leaderboardRank": self.leaderboard_rank,
        }
        for key, value in optional.items():
            if value is not None:
                payload[key] = value

        if self.runs:
            payload["runs"] = [run.to_dict() for run in self.runs]
        if self.badges:
            payload["badges"] = [badge.to_dict() for badge in self.badges]
        if self.super_chat:
            payload["superChat"] = self.super_chat.to_dict()
        if self.membership_gift:
            payload["membershipGift"] = True
        if self.membership_gift_purchase:
            payload["membershipGiftPurchase"] = True

        return payload


def message_category(message: ChatMessage) -> str:
    if message.super_chat is not None:
        return CATEGORY_SUPERCHAT
    if message.membership_gift_purchase:
        return CATEGORY_GIFT_PURCHASE
    if message.membership_gift:
        return CATEGORY_MEMBERSHIP
    return CATEGORY_REGULAR


def is_special(message: ChatMessage) -> bool:
    """Special messages are exempt from count-based eviction."""
    return (
        message.super_chat is not None
        or message.membership_gift
        or message.membership_gift_purchase
        or message.is_member
    )


__all__ = [
    "Badge",
    "MessageRun",
    "SuperChatInfo",
    "Poll",
    "ChatMessage",
    "BADGE_TYPES",
    "CATEGORY_SUPERCHAT",
    "CATEGORY_GIFT_PURCHASE",
    "CATEGORY_MEMBERSHIP",
    "CATEGORY_REGULAR",
    "CHANNEL_URL_TEMPLATE",
    "message_category",
    "is_special",
]
