"""Removal rules: dedup, age expiry, per-artist cap and size-budget trimming."""

from __future__ import annotations

import random
from collections import Counter
from datetime import UTC, datetime, timedelta

import structlog

from playcurator.config import CurationRules, SizeLimitStrategy
from playcurator.curation.models import ProcessingResult, Removal, RemovalReason, TrackWithMeta

log = structlog.get_logger(__name__)


class TrackCleaner:
    """Applies a playlist's curation rules to its current tracks.

    Stages run in a fixed order, each consuming the survivors of the previous
    one. VIP tracks are never removed by any stage.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def clean(
        self,
        tracks: list[TrackWithMeta],
        rules: CurationRules,
        target_total_tracks: int,
        *,
        mandatory_missing: int = 0,
        reserved_slots: int = 0,
        now: datetime | None = None,
    ) -> ProcessingResult:
        """Decide which tracks to keep.

        Args:
            tracks: Current playlist entries in playlist order.
            rules: The playlist's curation rules.
            target_total_tracks: Desired final playlist size.
            mandatory_missing: Mandatory tracks not yet in the playlist; each
                reserves a slot in the size budget.
            reserved_slots: Further slots kept free for fresh additions (AI).
            now: Reference time for age expiry (defaults to current UTC time).
        """
        now = now or datetime.now(UTC)
        removals: list[Removal] = []

        def drop(track: TrackWithMeta, reason: RemovalReason) -> None:
            removals.append(Removal(track=track, reason=reason))

        kept = list(tracks)

        if rules.remove_duplicates:
            kept = self._dedup(kept, drop)

        if rules.max_track_age_days is not None:
            kept = self._expire(kept, rules.max_track_age_days, now, drop)

        if rules.max_tracks_per_artist is not None:
            kept = self._cap_artists(kept, rules.max_tracks_per_artist, drop)

        budget = max(0, target_total_tracks - mandatory_missing - reserved_slots)
        if len(kept) > budget:
            kept = self._trim(kept, budget, rules.size_limit_strategy, drop)

        slots_needed = max(0, target_total_tracks - len(kept) - mandatory_missing)

        log.debug(
            "tracks_cleaned",
            kept=len(kept),
            removed=len(removals),
            slots_needed=slots_needed,
        )
        return ProcessingResult(kept_tracks=kept, removals=removals, slots_needed=slots_needed)

    # -- stages -------------------------------------------------------------

    @staticmethod
    def _dedup(tracks: list[TrackWithMeta], drop) -> list[TrackWithMeta]:
        # Winner per URI: VIP first, then earliest added, then earliest position.
        winners: dict[str, TrackWithMeta] = {}
        for track in tracks:
            best = winners.get(track.uri)
            if best is None or _dedup_key(track) < _dedup_key(best):
                winners[track.uri] = track

        kept = []
        for track in tracks:
            if winners[track.uri] is track:
                kept.append(track)
            else:
                drop(track, "duplicate")
        return kept

    @staticmethod
    def _expire(tracks: list[TrackWithMeta], max_age_days: int, now: datetime, drop) -> list[TrackWithMeta]:
        cutoff = now - timedelta(days=max_age_days)
        kept = []
        for track in tracks:
            if not track.is_vip and track.added_at_or_oldest < cutoff:
                drop(track, "expired")
            else:
                kept.append(track)
        return kept

    @staticmethod
    def _cap_artists(tracks: list[TrackWithMeta], cap: int, drop) -> list[TrackWithMeta]:
        # VIP tracks claim their artist's slots before any regular track.
        counts = Counter(t.artist.casefold() for t in tracks if t.is_vip)
        kept = []
        for track in tracks:
            if track.is_vip:
                kept.append(track)
                continue
            key = track.artist.casefold()
            if counts[key] < cap:
                counts[key] += 1
                kept.append(track)
            else:
                drop(track, "artist_limit")
        return kept

    def _trim(
        self,
        tracks: list[TrackWithMeta],
        budget: int,
        strategy: SizeLimitStrategy,
        drop,
    ) -> list[TrackWithMeta]:
        candidates = [t for t in tracks if not t.is_vip]
        excess = min(len(tracks) - budget, len(candidates))
        if excess <= 0:
            return tracks

        victims = self._pick_victims(candidates, excess, strategy)
        victim_ids = {id(t) for t in victims}
        kept = []
        for track in tracks:
            if id(track) in victim_ids:
                drop(track, "size_limit")
            else:
                kept.append(track)
        return kept

    def _pick_victims(
        self,
        candidates: list[TrackWithMeta],
        count: int,
        strategy: SizeLimitStrategy,
    ) -> list[TrackWithMeta]:
        if strategy == "drop_random":
            return self._rng.sample(candidates, count)

        if strategy == "drop_oldest":
            ordered = sorted(candidates, key=lambda t: t.added_at_or_oldest)
        elif strategy == "drop_newest":
            ordered = sorted(candidates, key=lambda t: t.added_at_or_oldest, reverse=True)
        elif strategy == "drop_most_popular":
            ordered = sorted(candidates, key=lambda t: t.popularity or 0, reverse=True)
        elif strategy == "drop_least_popular":
            ordered = sorted(candidates, key=lambda t: t.popularity or 0)
        else:
            msg = f"Unknown size limit strategy: {strategy}"
            raise ValueError(msg)
        return ordered[:count]


def _dedup_key(track: TrackWithMeta) -> tuple[bool, bool, datetime, int]:
    # An unknown added_at never wins against a known one.
    index = track.original_index if track.original_index is not None else 0
    return (not track.is_vip, track.added_at is None, track.added_at_or_oldest, index)
