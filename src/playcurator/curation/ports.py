"""Capabilities the curation core consumes from its collaborators.

Implementations own transport concerns (pagination, retries, token refresh)
and either eventually succeed or raise one of :mod:`playcurator.errors`.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol, TypedDict

if TYPE_CHECKING:
    from playcurator.config import AiGenerationConfig
    from playcurator.curation.models import CurationDiff, CurationSession, TrackInfo, TrackSuggestion
    from playcurator.storage.models import RunState


class RemovalItem(TypedDict):
    """One position-qualified removal: the instance of *uri* at each of *positions*."""

    uri: str
    positions: list[int]


class PlaylistService(Protocol):
    """Remote playlist read/write."""

    async def fetch_tracks(self, playlist_id: str) -> list[TrackInfo]:
        """Return the complete, ordered playlist contents."""

    async def add_items(
        self,
        playlist_id: str,
        uris: list[str],
        position: int | None = None,
        batch_size: int = 100,
    ) -> int:
        """Append (or insert at *position*) in batches; return the number of remote calls."""

    async def remove_items(self, playlist_id: str, items: list[RemovalItem], batch_size: int = 100) -> int:
        """Remove position-qualified items in batches; return the number of remote calls."""

    async def move_item(self, playlist_id: str, from_index: int, to_index: int, count: int = 1) -> None:
        """Move *count* items so the first lands at *to_index*."""

    async def get_track(self, uri: str) -> TrackInfo | None:
        """Resolve a track URI, or ``None`` when it doesn't exist."""

    async def search_track(self, artist: str, title: str) -> TrackInfo | None:
        """Best text-search hit for *artist* / *title*, or ``None``."""


class SuggestionProvider(Protocol):
    """AI candidate generator."""

    async def suggest_tracks(
        self,
        ai_config: AiGenerationConfig,
        prompt: str,
        count: int,
        exclude: list[str] | None = None,
    ) -> list[TrackSuggestion]:
        """Return up to *count* candidates (possibly fewer, possibly invalid)."""


class CurationLogStore(Protocol):
    async def persist_log(
        self,
        *,
        owner_id: str,
        playlist_id: str,
        state: RunState,
        dry_run: bool,
        triggered_by: str,
        started_at: datetime,
        diff: CurationDiff | None = None,
        error_kind: str | None = None,
        error_message: str | None = None,
        plan_id: str | None = None,
    ) -> object:
        """Write exactly one entry describing a finished run."""


class PlanStore(Protocol):
    async def save_plan(self, plan_id: str, session: CurationSession) -> None: ...

    async def load_plan(self, plan_id: str) -> CurationSession | None: ...

    async def delete_plan(self, plan_id: str) -> None: ...
