from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from services.youtube.api.chat import YouTubeLiveChatClient, iter_raw_actions, parse_continuation
from services.youtube.api.livestream import (
    YouTubeLivestreamAPI,
    extract_live_id,
    parse_live_chat_page,
)
from shared.chat.sources import ChatSourceError

LIVE_CHAT_PAGE = """
<script>ytcfg.set({"INNERTUBE_API_KEY":"KEY123","INNERTUBE_CLIENT_VERSION":"2.20250101.01.00","VISITOR_DATA":"VIS"});</script>
<script>window["ytInitialData"] = {"contents":{"liveChatRenderer":{"continuations":[
{"invalidationContinuationData":{"invalidationId":{},"timeoutMs":10000,"continuation":"TOKEN\\u003d0"}}]}}};</script>
"""


def _text_action(event_id: str, text: str) -> dict:
    return {
        "addChatItemAction": {
            "item": {
                "liveChatTextMessageRenderer": {
                    "id": event_id,
                    "message": {"runs": [{"text": text}]},
                    "authorName": {"simpleText": "Ada"},
                }
            },
            "clientId": "c1",
        }
    }


def _chat_response(actions, continuation="TOKEN1", timeout_ms=1):
    body = {
        "continuationContents": {
            "liveChatContinuation": {
                "continuations": [
                    {"timedContinuationData": {"continuation": continuation, "timeoutMs": timeout_ms}}
                ],
                "actions": actions,
            }
        }
    }
    if continuation is None:
        body["continuationContents"]["liveChatContinuation"]["continuations"] = []
    return body


def test_extract_live_id_forms() -> None:
    assert extract_live_id("dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_live_id(" dQw4w9WgXcQ ") == "dQw4w9WgXcQ"
    assert extract_live_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10") == "dQw4w9WgXcQ"
    assert extract_live_id("https://youtu.be/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_live_id("https://www.youtube.com/live/dQw4w9WgXcQ?si=x") == "dQw4w9WgXcQ"
    assert extract_live_id("") == ""
    assert extract_live_id(None) == ""
    assert extract_live_id("short") == ""
    assert extract_live_id("not a url at all") == ""


def test_parse_live_chat_page() -> None:
    bootstrap = parse_live_chat_page("vid", LIVE_CHAT_PAGE)

    assert bootstrap.api_key == "KEY123"
    assert bootstrap.client_version == "2.20250101.01.00"
    assert bootstrap.visitor_data == "VIS"
    assert bootstrap.continuation == "TOKEN=0"


def test_parse_live_chat_page_without_chat() -> None:
    with pytest.raises(ChatSourceError):
        parse_live_chat_page("vid", '{"INNERTUBE_API_KEY":"KEY"}')
    with pytest.raises(ChatSourceError):
        parse_live_chat_page("vid", "<html></html>")


def test_parse_live_chat_page_with_malformed_token() -> None:
    page = '{"INNERTUBE_API_KEY":"KEY","timedContinuationData":{"continuation":"bad\\x"}}'

    with pytest.raises(ChatSourceError):
        parse_live_chat_page("vid", page)


def test_iter_raw_actions_flattens_supported_actions() -> None:
    actions = [
        _text_action("t1", "hello"),
        {"addLiveChatTickerItemAction": {"item": {}}},
        {
            "showLiveChatActionPanelAction": {
                "panelToShow": {
                    "liveChatActionPanelRenderer": {
                        "contents": {"pollRenderer": {"liveChatPollId": "poll-1"}}
                    }
                }
            }
        },
        {"updateLiveChatPollAction": {"pollToUpdate": {"pollRenderer": {"liveChatPollId": "poll-1"}}}},
        {"closeLiveChatActionPanelAction": {"targetPanelId": "panel"}},
        {"replayChatItemAction": {"actions": [_text_action("t2", "replayed")]}},
    ]

    events = list(iter_raw_actions(actions))

    assert [event["type"] for event in events] == [
        "liveChatTextMessageRenderer",
        "liveChatPollRenderer",
        "UpdateLiveChatPollAction",
        "closeLiveChatActionPanelAction",
        "liveChatTextMessageRenderer",
    ]
    assert events[0]["id"] == "t1"
    assert events[1]["liveChatPollId"] == "poll-1"
    assert events[4]["id"] == "t2"


def test_parse_continuation() -> None:
    assert parse_continuation(_chat_response([], "NEXT", 2500)) == ("NEXT", 2500)
    assert parse_continuation(_chat_response([], None)) == (None, None)
    assert parse_continuation({}) == (None, None)


def test_client_bootstraps_and_polls_until_chat_ends() -> None:
    posts = []
    responses = [
        _chat_response([_text_action("a", "one"), _text_action("b", "two")], "TOKEN1"),
        _chat_response([_text_action("c", "three")], None),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            assert request.url.params["v"] == "abcdefghijk"
            return httpx.Response(200, text=LIVE_CHAT_PAGE)
        posts.append(json.loads(request.content))
        assert request.url.params["key"] == "KEY123"
        return httpx.Response(200, json=responses[len(posts) - 1])

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = YouTubeLiveChatClient(video_id="abcdefghijk", client=http, poll_interval=0.01)
            seen = []
            with pytest.raises(ChatSourceError):
                async for event in client.iter_events():
                    seen.append(event["id"])
            await client.close()
            return seen

    seen = asyncio.run(scenario())

    assert seen == ["a", "b", "c"]
    assert posts[0]["continuation"] == "TOKEN=0"
    assert posts[1]["continuation"] == "TOKEN1"
    assert posts[0]["context"]["client"]["visitorData"] == "VIS"


def test_client_gives_up_after_repeated_failures() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, text=LIVE_CHAT_PAGE)
        attempts.append(request)
        return httpx.Response(503)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = YouTubeLiveChatClient(video_id="abcdefghijk", client=http, poll_interval=0.001)
            client.MAX_BACKOFF_SECONDS = 0.01
            with pytest.raises(ChatSourceError):
                async for _ in client.iter_events():
                    pass

    asyncio.run(scenario())

    assert len(attempts) == YouTubeLiveChatClient.MAX_CONSECUTIVE_FAILURES


def test_bootstrap_http_error_is_source_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            await YouTubeLivestreamAPI(client=http).bootstrap("abcdefghijk")

    with pytest.raises(ChatSourceError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.status_code == 404
