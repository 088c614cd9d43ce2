"""Tests for GeminiClient using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from playcurator.config import AIConfig, AiGenerationConfig
from playcurator.curation.gemini import GeminiClient, parse_suggestions
from playcurator.errors import AIProviderError, AIQuotaError


def _answer(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


async def _no_sleep(_seconds: float) -> None:
    return None


def _client(handler) -> GeminiClient:
    return GeminiClient(AIConfig(api_key="k-123"), _transport=httpx.MockTransport(handler), _sleep=_no_sleep)


# ---------------------------------------------------------------------------
# parse_suggestions
# ---------------------------------------------------------------------------


def test_parse_array_with_track_or_title_keys():
    text = json.dumps(
        [
            {"artist": "Muse", "track": "Hysteria"},
            {"artist": "Blur", "title": "Song 2", "uri": "spotify:track:b2"},
        ]
    )
    result = parse_suggestions(text)
    assert [(s.artist, s.title, s.uri) for s in result] == [
        ("Muse", "Hysteria", None),
        ("Blur", "Song 2", "spotify:track:b2"),
    ]


def test_parse_wrapped_object_and_code_fence():
    text = '```json\n{"tracks": [{"artist": "Muse", "track": "Uprising"}]}\n```'
    assert [s.title for s in parse_suggestions(text)] == ["Uprising"]


def test_parse_skips_incomplete_entries():
    text = json.dumps([{"artist": "Muse"}, "junk", {"artist": "Blur", "track": "Beetlebum"}])
    assert [s.artist for s in parse_suggestions(text)] == ["Blur"]


def test_parse_malformed_output_is_empty():
    assert parse_suggestions("I'm sorry, I can't do that") == []
    assert parse_suggestions('"just a string"') == []


# ---------------------------------------------------------------------------
# suggest_tracks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_suggest_tracks_request_shape():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return _answer(json.dumps([{"artist": "Muse", "track": "Hysteria"}]))

    ai = AiGenerationConfig(model="gemini-2.5-pro", temperature=0.3)
    async with _client(handler) as client:
        result = await client.suggest_tracks(ai, "Moody rock", 5, ["Radiohead - Creep"])

    assert [s.title for s in result] == ["Hysteria"]
    request = captured[0]
    assert request.url.path == "/v1beta/models/gemini-2.5-pro:generateContent"
    assert request.url.params["key"] == "k-123"
    body = json.loads(request.content)
    assert body["generationConfig"] == {"temperature": 0.3, "responseMimeType": "application/json"}
    prompt = body["contents"][0]["parts"][0]["text"]
    assert "Moody rock" in prompt
    assert "- Radiohead - Creep" in prompt
    assert "exactly 5 tracks" in prompt


@pytest.mark.asyncio
async def test_suggest_tracks_truncates_to_count():
    def handler(request: httpx.Request) -> httpx.Response:
        return _answer(json.dumps([{"artist": f"A{i}", "track": f"T{i}"} for i in range(8)]))

    async with _client(handler) as client:
        result = await client.suggest_tracks(AiGenerationConfig(), "p", 3)
    assert len(result) == 3


@pytest.mark.asyncio
async def test_quota_exhausted_raises_quota_error():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429)

    async with _client(handler) as client:
        with pytest.raises(AIQuotaError):
            await client.suggest_tracks(AiGenerationConfig(), "p", 3)
    assert calls == 3


@pytest.mark.asyncio
async def test_transient_429_then_success():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(429, headers={"Retry-After": "1"})
        return _answer("[]")

    async with _client(handler) as client:
        assert await client.suggest_tracks(AiGenerationConfig(), "p", 3) == []
    assert calls == 2


@pytest.mark.asyncio
async def test_client_error_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "bad model"}})

    async with _client(handler) as client:
        with pytest.raises(AIProviderError) as exc_info:
            await client.suggest_tracks(AiGenerationConfig(), "p", 3)
    assert not isinstance(exc_info.value, AIQuotaError)


@pytest.mark.asyncio
async def test_empty_candidates_yield_no_suggestions():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    async with _client(handler) as client:
        assert await client.suggest_tracks(AiGenerationConfig(), "p", 3) == []
