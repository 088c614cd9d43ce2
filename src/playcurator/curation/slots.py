"""Mandatory-track placement and slot filling."""

from __future__ import annotations

import random
from collections import deque
from collections.abc import Sequence
from typing import Protocol

import structlog

from playcurator.config import MandatoryTrack
from playcurator.curation.models import Arrangement

log = structlog.get_logger(__name__)

_MIN_ARTIST_DISTANCE = 3


class _PoolTrack(Protocol):
    uri: str
    artist: str


class SlotManager:
    """Builds the final ordered URI list.

    Mandatory tracks are pinned greedily, tightest range first; a mandate whose
    range is already taken falls back to being included at the first free slot
    instead of failing the run.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def place_mandatory(
        self,
        kept_tracks: Sequence[_PoolTrack],
        mandatory_tracks: Sequence[MandatoryTrack],
        ai_suggestions: Sequence[_PoolTrack],
        target_total_tracks: int,
        *,
        shuffle: bool = False,
    ) -> Arrangement:
        mandatory_uris = {m.uri for m in mandatory_tracks}

        # Kept VIPs are placed through their mandate, not as fill.
        fill: list[_PoolTrack] = []
        fill_uris: set[str] = set(mandatory_uris)
        for track in [*kept_tracks, *ai_suggestions]:
            if track.uri not in fill_uris:
                fill_uris.add(track.uri)
                fill.append(track)

        if shuffle:
            fill = self.shuffle_with_spacing(fill)

        available = len(mandatory_uris) + len(fill)
        needed = max((m.position_range.min for m in mandatory_tracks), default=0)
        # Never longer than what can actually be filled, so pinned indices
        # survive unchanged.
        length = min(max(target_total_tracks, needed, len(mandatory_tracks)), available)

        grid: list[str | None] = [None] * length
        pinned: dict[str, int] = {}
        unpinned: list[str] = []

        for mandate in sorted(mandatory_tracks, key=lambda m: (m.position_range.width, m.position_range.min)):
            index = self._first_free(grid, mandate.position_range.min - 1, mandate.position_range.max - 1)
            if index is None:
                unpinned.append(mandate.uri)
                log.warning(
                    "mandatory_pin_dropped",
                    uri=mandate.uri,
                    min=mandate.position_range.min,
                    max=mandate.position_range.max,
                )
                continue
            grid[index] = mandate.uri
            pinned[mandate.uri] = index

        queue = deque([*unpinned, *(t.uri for t in fill)])
        for i, slot in enumerate(grid):
            if slot is None and queue:
                grid[i] = queue.popleft()

        uris = [uri for uri in grid if uri is not None]
        return Arrangement(uris=uris, pinned=pinned, unpinned=unpinned)

    @staticmethod
    def _first_free(grid: list[str | None], start: int, end: int) -> int | None:
        for i in range(max(0, start), min(end, len(grid) - 1) + 1):
            if grid[i] is None:
                return i
        return None

    def shuffle_with_spacing(
        self,
        tracks: Sequence[_PoolTrack],
        min_artist_distance: int = _MIN_ARTIST_DISTANCE,
    ) -> list[_PoolTrack]:
        """Shuffle while keeping tracks by the same artist apart where possible.

        At each step the artist with the most remaining tracks among those not
        heard in the last *min_artist_distance* picks wins (ties broken at
        random).
        """
        buckets: dict[str, list[_PoolTrack]] = {}
        for track in tracks:
            buckets.setdefault(track.artist.casefold(), []).append(track)
        for bucket in buckets.values():
            self._rng.shuffle(bucket)

        result: list[_PoolTrack] = []
        history: deque[str] = deque(maxlen=min_artist_distance)
        while len(result) < len(tracks):
            active = [a for a, b in buckets.items() if b]
            candidates = [a for a in active if a not in history] or active
            best = max(len(buckets[a]) for a in candidates)
            chosen = self._rng.choice([a for a in candidates if len(buckets[a]) == best])
            result.append(buckets[chosen].pop())
            history.append(chosen)
        return result
