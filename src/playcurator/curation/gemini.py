"""Gemini-backed track suggestions via the Generative Language REST API."""

from __future__ import annotations

import asyncio
import json

import httpx
import structlog

from playcurator.config import AIConfig, AiGenerationConfig
from playcurator.curation.models import TrackSuggestion
from playcurator.errors import AIProviderError, AIQuotaError

log = structlog.get_logger(__name__)

_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
_MAX_RETRIES = 3

_INSTRUCTIONS = """\
You are a music curator. {prompt}

Return exactly {count} tracks as a JSON array of objects with the keys
"artist" and "track". Only suggest songs that exist on Spotify.
Do not include any of these tracks:
{exclude}
"""


def _extract_text(payload: dict) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts)


def parse_suggestions(text: str) -> list[TrackSuggestion]:
    """Parse a model answer into suggestions, skipping malformed entries.

    Accepts a bare JSON array or an object wrapping one under ``tracks``,
    optionally inside a fenced code block.
    """
    text = text.strip()
    if text.startswith("```"):
        text = text.strip("`")
        text = text.removeprefix("json").strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        log.warning("ai_response_unparseable", preview=text[:200])
        return []

    if isinstance(data, dict):
        data = data.get("tracks", [])
    if not isinstance(data, list):
        log.warning("ai_response_unexpected_shape", kind=type(data).__name__)
        return []

    result: list[TrackSuggestion] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        artist = str(entry.get("artist") or "").strip()
        title = str(entry.get("track") or entry.get("title") or "").strip()
        if not artist or not title:
            continue
        uri = entry.get("uri")
        result.append(TrackSuggestion(artist=artist, title=title, uri=uri if isinstance(uri, str) and uri else None))
    return result


class GeminiClient:
    """Async client for Gemini ``generateContent``."""

    def __init__(
        self,
        config: AIConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
        _sleep=asyncio.sleep,
    ) -> None:
        self._config = config
        self._transport = _transport
        self._sleep = _sleep
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GeminiClient:
        kw: dict = {"timeout": 60.0}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def suggest_tracks(
        self,
        ai_config: AiGenerationConfig,
        prompt: str,
        count: int,
        exclude: list[str] | None = None,
    ) -> list[TrackSuggestion]:
        if count <= 0:
            return []
        model = ai_config.model or self._config.default_model
        text = _INSTRUCTIONS.format(
            prompt=prompt,
            count=count,
            exclude="\n".join(f"- {e}" for e in exclude) if exclude else "(none)",
        )
        body = {
            "contents": [{"role": "user", "parts": [{"text": text}]}],
            "generationConfig": {
                "temperature": ai_config.temperature,
                "responseMimeType": "application/json",
            },
        }

        payload = await self._request(model, body)
        suggestions = parse_suggestions(_extract_text(payload))
        log.info("ai_generated", model=model, requested=count, parsed=len(suggestions))
        return suggestions[:count]

    async def _request(self, model: str, body: dict) -> dict:
        assert self._client is not None  # noqa: S101

        url = f"{_API_BASE}/models/{model}:generateContent"
        params = {"key": self._config.api_key.get_secret_value()}

        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.post(url, params=params, json=body)
            except httpx.TransportError as exc:
                if attempt >= _MAX_RETRIES - 1:
                    raise AIProviderError(f"Gemini unreachable: {exc}") from exc
                await self._sleep(2**attempt)
                continue

            if resp.status_code == 429:
                if attempt >= _MAX_RETRIES - 1:
                    raise AIQuotaError(f"Gemini quota exhausted for {model}")
                wait = int(resp.headers.get("Retry-After", str(2**attempt)))
                log.warning("ai_rate_limited", model=model, retry_after=wait, attempt=attempt)
                await self._sleep(wait)
                continue

            if resp.status_code >= 500:
                if attempt >= _MAX_RETRIES - 1:
                    raise AIProviderError(f"Gemini server error: {resp.status_code}")
                await self._sleep(2**attempt)
                continue

            if resp.status_code >= 400:
                raise AIProviderError(f"Gemini error: {resp.status_code} {resp.text}")

            return resp.json()

        raise AIProviderError(f"Max retries ({_MAX_RETRIES}) exceeded")
