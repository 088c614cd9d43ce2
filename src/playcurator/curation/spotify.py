"""Async Spotify Web API client using httpx.

Endpoints:
- GET /playlists/{id}/tracks (paginated playlist items)
- POST /playlists/{id}/tracks (add, body: {"uris": [...], "position": n})
- DELETE /playlists/{id}/tracks (remove, body: {"tracks": [{"uri", "positions"}]})
- PUT /playlists/{id}/tracks (reorder, body: {"range_start", "insert_before", "range_length"})
- GET /tracks/{id}
- GET /search (limit max 10)
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime

import httpx
import structlog
from pydantic import SecretStr

from playcurator.config import PLAYLIST_URI_PREFIX, TRACK_URI_PREFIX, SpotifyConfig
from playcurator.curation.models import TrackInfo
from playcurator.curation.ports import RemovalItem
from playcurator.errors import RateLimitError, RemoteAuthError, RemoteError, RemoteTransientError

log = structlog.get_logger(__name__)

_API_BASE = "https://api.spotify.com/v1"
_TOKEN_URL = "https://accounts.spotify.com/api/token"  # noqa: S105
_PAGE_SIZE = 100
_BATCH_SIZE = 100
_SEARCH_LIMIT = 10
_MAX_RETRIES = 4
_ITEM_FIELDS = "items(added_at,track(uri,name,popularity,explicit,album(name),artists(name))),next,total"


class SpotifyAuthError(RemoteAuthError):
    """Raised when Spotify authentication fails."""


class SpotifyAPIError(RemoteError):
    """Raised for non-retryable Spotify API errors."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _playlist_path(playlist_id: str) -> str:
    return f"{_API_BASE}/playlists/{playlist_id.removeprefix(PLAYLIST_URI_PREFIX)}/tracks"


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _to_track_info(track: dict, added_at: str | None = None, position: int | None = None) -> TrackInfo:
    artists = track.get("artists") or []
    return TrackInfo(
        uri=track["uri"],
        name=track.get("name", ""),
        artist=artists[0]["name"] if artists else "Unknown Artist",
        album=(track.get("album") or {}).get("name", ""),
        added_at=_parse_time(added_at),
        popularity=track.get("popularity"),
        explicit=bool(track.get("explicit", False)),
        position=position,
    )


class SpotifyClient:
    """Async Spotify Web API client with automatic token refresh."""

    def __init__(
        self,
        config: SpotifyConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
        _sleep=asyncio.sleep,
    ) -> None:
        self._config = config
        self._transport = _transport
        self._sleep = _sleep
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SpotifyClient:
        kw: dict = {"timeout": 30.0}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -- auth --

    async def _ensure_token(self, *, force: bool = False) -> str:
        if not force and self._access_token and time.time() < self._token_expires_at - 60:
            return self._access_token

        assert self._client is not None  # noqa: S101
        resp = await self._client.post(
            _TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self._config.refresh_token.get_secret_value(),
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret.get_secret_value(),
            },
        )
        if resp.status_code != 200:
            raise SpotifyAuthError(f"Token refresh failed: {resp.status_code} {resp.text}")

        data = resp.json()
        self._access_token = data["access_token"]
        self._token_expires_at = time.time() + data.get("expires_in", 3600)
        if data.get("refresh_token"):
            # Spotify may rotate the refresh token; keep using the newest one.
            self._config = self._config.model_copy(update={"refresh_token": SecretStr(data["refresh_token"])})
        return self._access_token

    # -- request helper --

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict | list | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        assert self._client is not None  # noqa: S101

        refreshed = False
        for attempt in range(_MAX_RETRIES):
            token = await self._ensure_token()
            headers = {"Authorization": f"Bearer {token}"}

            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    params=params,
                )
            except httpx.TransportError as exc:
                if attempt >= _MAX_RETRIES - 1:
                    raise RemoteTransientError(f"Network error after {_MAX_RETRIES} retries: {exc}") from exc
                wait = 2**attempt
                log.warning("spotify_network_error", error=str(exc), retry_in=wait, attempt=attempt)
                await self._sleep(wait)
                continue

            if resp.status_code == 401:
                if refreshed:
                    raise SpotifyAuthError(
                        "Spotify authentication failed after token refresh. "
                        "Your refresh_token may be invalid, run: "
                        "playcurator config set spotify.refresh_token <new_token>"
                    )
                # Token expired mid-request, force refresh once
                refreshed = True
                await self._ensure_token(force=True)
                continue

            if resp.status_code == 429:
                retry_after = int(resp.headers.get("Retry-After", "1"))
                if attempt >= _MAX_RETRIES - 1:
                    raise RateLimitError(
                        f"Spotify rate limit persisted after {_MAX_RETRIES} attempts",
                        retry_after=retry_after,
                    )
                log.warning("spotify_rate_limited", retry_after=retry_after, attempt=attempt)
                await self._sleep(retry_after)
                continue

            if resp.status_code >= 500:
                if attempt >= _MAX_RETRIES - 1:
                    raise RemoteTransientError(f"Spotify server error: {resp.status_code} {resp.text}")
                wait = 0.5 * 2**attempt
                log.warning("spotify_server_error", status=resp.status_code, retry_in=wait, attempt=attempt)
                await self._sleep(wait)
                continue

            if resp.status_code >= 400:
                raise SpotifyAPIError(
                    f"Spotify API error: {resp.status_code} {resp.text}",
                    status_code=resp.status_code,
                )

            return resp

        raise RemoteTransientError(f"Max retries ({_MAX_RETRIES}) exceeded")

    # -- public API --

    async def fetch_tracks(self, playlist_id: str) -> list[TrackInfo]:
        """Fetch every track of a playlist in order, following pagination.

        Local files, episodes and unavailable entries (``track`` is null or
        has no URI) are skipped, but still count towards the ``position``
        of every later track.
        """
        tracks: list[TrackInfo] = []
        url = _playlist_path(playlist_id)
        offset = 0

        while True:
            resp = await self._request(
                "GET",
                url,
                params={"limit": _PAGE_SIZE, "offset": offset, "fields": _ITEM_FIELDS},
            )
            data = resp.json()

            page_items = data.get("items", [])
            if not page_items:
                break

            for index, item in enumerate(page_items, start=offset):
                track = item.get("track")
                if not track or not track.get("uri"):
                    continue
                tracks.append(_to_track_info(track, item.get("added_at"), index))

            if data.get("next") is None:
                break
            offset += len(page_items)

        return tracks

    async def add_items(
        self,
        playlist_id: str,
        uris: list[str],
        position: int | None = None,
        batch_size: int = _BATCH_SIZE,
    ) -> int:
        """Add tracks in batches; with *position*, consecutive batches stay contiguous."""
        calls = 0
        for i in range(0, len(uris), batch_size):
            body: dict = {"uris": uris[i : i + batch_size]}
            if position is not None:
                body["position"] = position + i
            await self._request("POST", _playlist_path(playlist_id), json=body)
            calls += 1
        return calls

    async def remove_items(
        self,
        playlist_id: str,
        items: list[RemovalItem],
        batch_size: int = _BATCH_SIZE,
    ) -> int:
        """Remove specific instances of tracks by position, in batches."""
        calls = 0
        for i in range(0, len(items), batch_size):
            batch = items[i : i + batch_size]
            body = {"tracks": [{"uri": item["uri"], "positions": item["positions"]} for item in batch]}
            await self._request("DELETE", _playlist_path(playlist_id), json=body)
            calls += 1
        return calls

    async def move_item(self, playlist_id: str, from_index: int, to_index: int, count: int = 1) -> None:
        """Move *count* items starting at *from_index* so they start at *to_index*."""
        insert_before = to_index if to_index < from_index else to_index + count
        await self._request(
            "PUT",
            _playlist_path(playlist_id),
            json={"range_start": from_index, "insert_before": insert_before, "range_length": count},
        )

    async def get_track(self, uri: str) -> TrackInfo | None:
        """Look up a single track by URI; ``None`` when Spotify doesn't know it."""
        track_id = uri.removeprefix(TRACK_URI_PREFIX)
        try:
            resp = await self._request("GET", f"{_API_BASE}/tracks/{track_id}")
        except SpotifyAPIError as exc:
            if exc.status_code in (400, 404):
                return None
            raise
        return _to_track_info(resp.json())

    async def search_track(self, artist: str, title: str) -> TrackInfo | None:
        """Search for a track on Spotify by artist and title.

        Returns the best match as a :class:`TrackInfo`, or ``None`` if
        no results were found.
        """
        resp = await self._request(
            "GET",
            f"{_API_BASE}/search",
            params={"q": f"track:{title} artist:{artist}", "type": "track", "limit": _SEARCH_LIMIT},
        )
        items = resp.json().get("tracks", {}).get("items", [])
        if not items:
            return None
        return _to_track_info(items[0])
