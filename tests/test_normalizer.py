from __future__ import annotations

from shared.chat.messages import CATEGORY_GIFT_PURCHASE, CATEGORY_MEMBERSHIP, Poll, is_special, message_category
from services.youtube.normalizer import (
    EventNormalizer,
    KIND_GIFT_REDEMPTION,
    KIND_PAID,
    KIND_POLL_CLOSE,
    KIND_UNKNOWN,
    classify,
    resolve_timestamp,
)
from shared.storage.chat_messages.query import MessageQuery, run_query


def _text_event(event_id: str = "abc", text: str = "hello", **extra) -> dict:
    event = {
        "type": "liveChatTextMessageRenderer",
        "id": event_id,
        "authorName": {"simpleText": "Ada"},
        "message": {"runs": [{"text": text}]},
        "timestampUsec": "1700000000000000",
    }
    event.update(extra)
    return event


def test_paid_message_end_to_end() -> None:
    raw = {
        "type": "liveChatPaidMessageRenderer",
        "id": "paid-1",
        "authorName": {"simpleText": "Alice"},
        "authorExternalChannelId": "UC123",
        "purchaseAmountText": {"simpleText": "$5.00"},
        "bodyBackgroundColor": 0xFF1E3A8A,
        "message": {"runs": [{"text": "Thanks "}, {"text": "for the stream!"}]},
        "timestampUsec": "1700000000000000",
    }

    result = EventNormalizer().normalize(raw)

    assert not result.drop
    message = result.message
    assert message is not None
    assert message.id == "paid-1"
    assert message.author == "Alice"
    assert message.text == "Thanks for the stream!"
    assert message.published_at == "2023-11-14T22:13:20.000Z"
    assert message.to_dict()["superChat"] == {
        "amount": "5.00",
        "currency": "$",
        "color": "#1e3a8a",
    }
    assert is_special(message)


def test_snake_case_paid_event_is_found_by_superchat_query() -> None:
    raw = {
        "type": "LiveChatPaidMessage",
        "id": "paid-2",
        "author": {"name": "Alice"},
        "purchase_amount_text": "$5.00",
        "body_background_color": 0x1E3A8A,
        "message": {"runs": [{"text": "Great "}, {"text": "show"}]},
    }

    message = EventNormalizer().normalize(raw).message

    assert message is not None
    assert message.text == "Great show"
    assert message.to_dict()["superChat"] == {"amount": "5.00", "currency": "$", "color": "#1e3a8a"}

    regular = EventNormalizer().normalize(_text_event("plain")).message
    result = run_query((regular, message), MessageQuery(type="superchat"))

    assert [m.id for m in result.messages] == ["paid-2"]
    assert result.total_matches == 1
    assert run_query((regular, message), MessageQuery(type="regular")).messages[0].id == "plain"


def test_paid_sticker_keeps_sticker_details() -> None:
    raw = {
        "type": "liveChatPaidStickerRenderer",
        "id": "sticker-1",
        "authorName": "Sam",
        "purchaseAmountText": {"simpleText": "€2.00"},
        "backgroundColor": "ff0000",
        "sticker": {
            "thumbnails": [{"url": "//yt3.ggpht.com/sticker.png"}],
            "accessibility": {"accessibilityData": {"label": "Party parrot"}},
        },
    }

    message = EventNormalizer().normalize(raw).message

    assert message is not None
    assert message.super_chat.amount == "2.00"
    assert message.super_chat.currency == "€"
    assert message.super_chat.color == "#ff0000"
    assert message.super_chat.sticker_url == "https://yt3.ggpht.com/sticker.png"
    assert message.super_chat.sticker_alt == "Party parrot"


def test_purchase_amount_marks_untagged_event_as_paid() -> None:
    raw = {"type": "SomethingNew", "purchase_amount_text": "10 USD", "message": "hi"}
    assert classify(raw) == KIND_PAID


def test_paid_without_amount_uses_defaults() -> None:
    message = EventNormalizer().normalize(
        {"type": "LiveChatPaidMessage", "id": "p", "author": {"name": "Bo"}}
    ).message

    assert message is not None
    assert message.super_chat.amount == "Super Chat"
    assert message.super_chat.currency == ""
    assert message.super_chat.color == "#1e3a8a"


def test_repeated_ids_are_disambiguated_until_reset() -> None:
    normalizer = EventNormalizer()
    raw = _text_event("dup")

    ids = [normalizer.normalize(raw).message.id for _ in range(3)]
    assert ids == ["dup", "dup#1", "dup#2"]

    normalizer.reset()
    assert normalizer.normalize(raw).message.id == "dup"


def test_generated_ids_skip_upstream_ids_with_suffix_shape() -> None:
    normalizer = EventNormalizer()

    ids = [
        normalizer.normalize(_text_event(event_id)).message.id
        for event_id in ("a", "a", "a#1", "a#2", "a")
    ]

    assert len(set(ids)) == len(ids)
    assert ids[:2] == ["a", "a#1"]
    assert ids[3] == "a#2"

    normalizer.reset()
    assert normalizer.normalize(_text_event("a#1")).message.id == "a#1"


def test_id_falls_back_to_timestamp() -> None:
    raw = _text_event()
    del raw["id"]
    message = EventNormalizer().normalize(raw).message
    assert message.id == "1700000000000000"


def test_gift_redemption_is_dropped_by_tag_and_by_text() -> None:
    normalizer = EventNormalizer()

    by_tag = {
        "type": "liveChatSponsorshipsGiftRedemptionAnnouncementRenderer",
        "id": "r1",
        "authorName": "Bob",
        "message": {"runs": [{"text": "was gifted"}]},
    }
    by_text = _text_event("r2", text="received a gift membership by Carol")

    assert classify(by_tag) == KIND_GIFT_REDEMPTION
    assert normalizer.normalize(by_tag).drop
    assert normalizer.normalize(by_text).drop


def test_paid_message_mentioning_a_gift_is_kept() -> None:
    raw = {
        "type": "liveChatPaidMessageRenderer",
        "id": "paid-gift",
        "authorName": "Dana",
        "purchaseAmountText": {"simpleText": "$50.00"},
        "message": {"runs": [{"text": "I received a gift membership, thanks!"}]},
    }

    assert classify(raw) == KIND_PAID
    message = EventNormalizer().normalize(raw).message
    assert message is not None
    assert message.super_chat.amount == "50.00"


def test_membership_level_from_welcome_subtext() -> None:
    raw = {
        "type": "liveChatMembershipItemRenderer",
        "id": "m1",
        "authorName": {"simpleText": "Bob"},
        "headerSubtext": {"runs": [{"text": "Welcome to "}, {"text": "Gold Tier"}, {"text": "!"}]},
    }

    message = EventNormalizer().normalize(raw).message

    assert message.membership_gift
    assert message.membership_level == "Gold Tier"
    assert message_category(message) == CATEGORY_MEMBERSHIP
    assert is_special(message)


def test_membership_level_fallbacks() -> None:
    normalizer = EventNormalizer()

    milestone = normalizer.normalize(
        {
            "type": "LiveChatMembershipItem",
            "id": "m2",
            "header_subtext": "Member for 6 months",
        }
    ).message
    bare = normalizer.normalize({"type": "LiveChatMembershipItem", "id": "m3"}).message

    assert milestone.membership_level == "Member for 6 months"
    assert bare.membership_level == "New member"


def test_gift_purchase_uses_header_text_and_count() -> None:
    raw = {
        "type": "liveChatSponsorshipsGiftPurchaseAnnouncementRenderer",
        "id": "g1",
        "header": {
            "liveChatSponsorshipsHeaderRenderer": {
                "authorName": {"simpleText": "Carol"},
                "primaryText": {
                    "runs": [{"text": "Sent "}, {"text": "5"}, {"text": " Gold memberships"}]
                },
            }
        },
    }

    message = EventNormalizer().normalize(raw).message

    assert message.author == "Carol"
    assert message.text == "Sent 5 Gold memberships"
    assert message.gift_count == 5
    assert message.membership_gift_purchase
    assert message_category(message) == CATEGORY_GIFT_PURCHASE


def test_badges_and_author_flags() -> None:
    raw = _text_event(
        "b1",
        authorBadges=[
            {"liveChatAuthorBadgeRenderer": {"tooltip": "Moderator"}},
            {
                "liveChatAuthorBadgeRenderer": {
                    "tooltip": "Member (2 months)",
                    "customThumbnail": {"thumbnails": [{"url": "https://yt3.ggpht.com/b.png"}]},
                }
            },
        ],
    )

    message = EventNormalizer().normalize(raw).message

    assert [badge.type for badge in message.badges] == ["moderator", "member"]
    assert message.badges[1].image_url == "https://yt3.ggpht.com/b.png"
    assert message.is_moderator and message.is_member
    assert not message.is_verified


def test_author_flag_without_badge_marks_moderator() -> None:
    raw = {
        "type": "LiveChatTextMessage",
        "id": "x1",
        "author": {"name": "Mo", "id": "UC9", "is_moderator": True},
        "message": {"text": "hi"},
    }

    message = EventNormalizer().normalize(raw).message

    assert message.badges is None
    assert message.is_moderator
    assert message.to_dict()["isModerator"] is True


def test_emoji_runs_are_preserved() -> None:
    raw = _text_event(
        "e1",
        message={
            "runs": [
                {"text": "hi "},
                {
                    "emoji": {
                        "emojiId": "UCwave",
                        "shortcuts": [":wave:"],
                        "image": {"thumbnails": [{"url": "//yt3.ggpht.com/wave.png"}]},
                    }
                },
            ]
        },
    )

    message = EventNormalizer().normalize(raw).message

    assert message.text == "hi :wave:"
    assert message.runs[0].text == "hi "
    assert message.runs[1].emoji_url == "https://yt3.ggpht.com/wave.png"
    assert message.runs[1].emoji_alt == ":wave:"


def test_add_chat_item_envelope_and_renderer_wrapper() -> None:
    normalizer = EventNormalizer()

    enveloped = normalizer.normalize({"type": "AddChatItemAction", "item": _text_event("env")})
    wrapped = normalizer.normalize(
        {"liveChatTextMessageRenderer": {"id": "wrap", "message": {"simpleText": "yo"}}}
    )

    assert enveloped.message.id == "env"
    assert wrapped.message.id == "wrap"
    assert wrapped.message.text == "yo"
    assert wrapped.message.author == "Unknown"


def test_leaderboard_rank_from_content_buttons() -> None:
    raw = _text_event("l1", beforeContentButtons=[{"buttonViewModel": {"title": "#3"}}])
    assert EventNormalizer().normalize(raw).message.leaderboard_rank == 3


def test_poll_update_and_close() -> None:
    normalizer = EventNormalizer()

    update = normalizer.normalize({"type": "liveChatPollRenderer", "liveChatPollId": "poll-1"})
    close = normalizer.normalize({"type": "closeLiveChatActionPanelAction", "targetPanelId": "x"})

    assert update.poll_changed and update.poll == Poll(id="poll-1", active=True)
    assert update.message is None
    assert classify({"type": "CloseLiveChatActionPanelAction"}) == KIND_POLL_CLOSE
    assert close.poll_changed and close.poll is None


def test_malformed_input_never_raises() -> None:
    normalizer = EventNormalizer()

    for raw in (None, 42, "text", [], {}, {"type": "liveChatViewerEngagementMessageRenderer"}):
        assert normalizer.normalize(raw).drop

    assert classify({"type": "nope"}) == KIND_UNKNOWN

    broken = _text_event("broken", authorBadges=[{"liveChatAuthorBadgeRenderer": {"tooltip": object()}}])
    result = normalizer.normalize(broken)
    assert not result.drop
    assert result.message is not None
    assert result.message.text == "hello"
    assert result.message.badges is None


def test_resolve_timestamp_units() -> None:
    expected = "2023-11-14T22:13:20.000Z"

    assert resolve_timestamp(1_700_000_000_000_000) == expected
    assert resolve_timestamp(1_700_000_000_000) == expected
    assert resolve_timestamp(1_700_000_000) == expected
    assert resolve_timestamp("1700000000000") == expected
    assert resolve_timestamp("2023-11-14T22:13:20Z") == expected


def test_resolve_timestamp_falls_back_to_now() -> None:
    value = resolve_timestamp("not a time")
    assert value.endswith("Z")
    assert value[:2] == "20"
