"""Track, diff and plan types that flow through a curation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, computed_field

from playcurator.config import PlaylistConfig

RemovalReason = Literal["duplicate", "expired", "artist_limit", "size_limit", "other"]
AddSource = Literal["mandatory", "ai"]

# Stand-in timestamp for tracks whose added_at is unknown: oldest possible.
VERY_OLD = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class TrackInfo:
    """A track as returned by the remote playlist service."""

    uri: str
    name: str
    artist: str
    album: str = ""
    added_at: datetime | None = None
    popularity: int | None = None
    explicit: bool = False
    # Index in the remote playlist, counting entries that are not tracks.
    position: int | None = None


@dataclass(frozen=True)
class TrackSuggestion:
    """A candidate proposed by the AI provider; not yet verified to exist."""

    artist: str
    title: str
    uri: str | None = None


@dataclass
class TrackWithMeta:
    """A playlist entry as tracked by the engine during one curation pass."""

    uri: str
    name: str
    artist: str
    added_at: datetime | None
    is_vip: bool = False
    original_index: int | None = None
    popularity: int | None = None

    @classmethod
    def from_track(cls, track: TrackInfo, index: int, *, is_vip: bool = False) -> TrackWithMeta:
        return cls(
            uri=track.uri,
            name=track.name,
            artist=track.artist,
            added_at=track.added_at,
            is_vip=is_vip,
            original_index=index,
            popularity=track.popularity,
        )

    @property
    def added_at_or_oldest(self) -> datetime:
        if self.added_at is None:
            return VERY_OLD
        if self.added_at.tzinfo is None:
            return self.added_at.replace(tzinfo=UTC)
        return self.added_at


@dataclass(frozen=True)
class Removal:
    track: TrackWithMeta
    reason: RemovalReason


@dataclass
class ProcessingResult:
    """Output of :class:`~playcurator.curation.cleaner.TrackCleaner`."""

    kept_tracks: list[TrackWithMeta]
    removals: list[Removal] = field(default_factory=list)
    slots_needed: int = 0

    @property
    def tracks_to_remove(self) -> list[str]:
        return [r.track.uri for r in self.removals]


@dataclass
class Arrangement:
    """Output of :class:`~playcurator.curation.slots.SlotManager`."""

    uris: list[str]
    pinned: dict[str, int] = field(default_factory=dict)  # uri → 0-based index
    unpinned: list[str] = field(default_factory=list)  # mandatory uris that lost their range


@dataclass
class ReconcileStats:
    removed: int = 0
    added: int = 0
    moved: int = 0
    remote_calls: int = 0

    @property
    def mutations(self) -> int:
        return self.removed + self.added + self.moved


# ---------------------------------------------------------------------------
# Diff / estimate / plan (persisted, hence pydantic)
# ---------------------------------------------------------------------------


class AddedTrack(BaseModel):
    uri: str
    name: str
    artist: str
    source: AddSource


class RemovedTrack(BaseModel):
    uri: str
    name: str
    artist: str
    reason: RemovalReason


class CurationDiff(BaseModel):
    """What a run changes relative to the playlist it started from."""

    current_tracks: int = 0
    final_uris: list[str] = Field(default_factory=list)
    added: list[AddedTrack] = Field(default_factory=list)
    removed: list[RemovedTrack] = Field(default_factory=list)

    def _removed_with(self, reason: RemovalReason) -> int:
        return sum(1 for r in self.removed if r.reason == reason)

    @computed_field
    @property
    def predicted_final(self) -> int:
        return len(self.final_uris)

    @computed_field
    @property
    def duplicates_to_remove(self) -> int:
        return self._removed_with("duplicate")

    @computed_field
    @property
    def aged_out_tracks(self) -> int:
        return self._removed_with("expired")

    @computed_field
    @property
    def artist_limit_removed(self) -> int:
        return self._removed_with("artist_limit")

    @computed_field
    @property
    def size_limit_removed(self) -> int:
        return self._removed_with("size_limit")

    @computed_field
    @property
    def mandatory_to_add(self) -> int:
        return sum(1 for a in self.added if a.source == "mandatory")

    @computed_field
    @property
    def ai_tracks_to_add(self) -> int:
        return sum(1 for a in self.added if a.source == "ai")

    def summary(self) -> dict[str, int]:
        return {
            "current": self.current_tracks,
            "final": self.predicted_final,
            "added": len(self.added),
            "removed": len(self.removed),
        }


class CurationEstimate(CurationDiff):
    """A diff computed without side effects, plus the plan that replays it."""

    plan_id: str | None = None


class CurationSession(BaseModel):
    """A persisted plan: the exact target list a user approved."""

    plan_id: str
    config: PlaylistConfig
    owner_id: str
    dry_run: bool = False
    target_uris: list[str]
    diff: CurationDiff
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
