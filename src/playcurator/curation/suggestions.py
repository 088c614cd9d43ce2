"""AI suggestion intake: prompt building, filtering and remote validation."""

from __future__ import annotations

import asyncio
import math
import re
from collections import Counter
from collections.abc import Iterable

import structlog

from playcurator.config import PlaylistConfig
from playcurator.curation.differ import is_good_match, make_match_key
from playcurator.curation.models import TrackInfo, TrackSuggestion, TrackWithMeta
from playcurator.curation.ports import PlaylistService, SuggestionProvider

log = structlog.get_logger(__name__)

_VALIDATION_BATCH = 5
_MAX_EXCLUSIONS = 50

_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "from", "up", "about", "into", "through", "during", "my",
        "your", "our", "their", "playlist", "music", "songs", "tracks",
    }
)


def build_prompt(config: PlaylistConfig) -> str:
    """Turn playlist metadata into a prompt for the AI provider."""
    name = config.name or "Untitled Playlist"
    words = re.sub(r"[^\w\s]", "", name.lower()).split()
    keywords = [w for w in words if len(w) > 2 and w not in _STOP_WORDS]

    parts = [f'Generate a curated playlist for "{name}".']
    if config.settings.description:
        parts.append(f"Playlist Description: {config.settings.description}")
    if keywords:
        parts.append(
            f"Style keywords from title: {', '.join(keywords)}.\n"
            "Use these keywords to guide the mood, genre, and vibe of your suggestions."
        )
    if config.settings.reference_artists:
        parts.append(
            "Reference Artists (base your suggestions on these or similar): "
            + ", ".join(config.settings.reference_artists)
        )
    if config.ai_generation.is_instrumental_only:
        parts.append("**IMPORTANT**: Only suggest instrumental tracks (no vocals).")
    parts.append("Suggest tracks that match this vibe perfectly.")
    return "\n\n".join(parts)


class SuggestionEngine:
    """Requests AI candidates and keeps the ones that resolve to real, new tracks."""

    def __init__(self, provider: SuggestionProvider, *, batch_size: int = _VALIDATION_BATCH) -> None:
        self._provider = provider
        self._batch_size = max(1, batch_size)

    async def find_tracks(
        self,
        config: PlaylistConfig,
        remote: PlaylistService,
        needed: int,
        *,
        exclude_uris: Iterable[str],
        existing: Iterable[TrackWithMeta],
    ) -> list[TrackInfo]:
        """Return up to *needed* validated tracks in the provider's order."""
        if needed <= 0:
            return []

        existing = list(existing)
        excluded = set(exclude_uris)
        existing_keys = {make_match_key(t.artist, t.name) for t in existing}
        artist_cap = config.curation_rules.max_tracks_per_artist
        artist_counts = Counter(t.artist.casefold() for t in existing)

        count = math.ceil(needed * config.ai_generation.overfetch_ratio)
        prompt = build_prompt(config)
        exclusions = [f"{t.artist} - {t.name}" for t in existing][:_MAX_EXCLUSIONS]

        suggestions = await self._provider.suggest_tracks(config.ai_generation, prompt, count, exclusions)
        log.info("ai_suggestions_received", requested=count, received=len(suggestions))

        candidates = [
            s
            for s in suggestions
            if not (s.uri and s.uri in excluded) and make_match_key(s.artist, s.title) not in existing_keys
        ]

        accepted: list[TrackInfo] = []
        for start in range(0, len(candidates), self._batch_size):
            if len(accepted) >= needed:
                break
            batch = candidates[start : start + self._batch_size]
            # Read-only lookups, gathered in candidate order.
            resolved = await asyncio.gather(*(self._resolve(remote, s) for s in batch))

            for track in resolved:
                if len(accepted) >= needed:
                    break
                if track is None or track.uri in excluded:
                    continue
                if track.explicit and not config.settings.allow_explicit:
                    log.debug("ai_candidate_explicit", uri=track.uri)
                    continue
                artist_key = track.artist.casefold()
                if artist_cap is not None and artist_counts[artist_key] >= artist_cap:
                    continue
                accepted.append(track)
                excluded.add(track.uri)
                artist_counts[artist_key] += 1

        log.info("ai_tracks_accepted", needed=needed, accepted=len(accepted))
        return accepted

    @staticmethod
    async def _resolve(remote: PlaylistService, suggestion: TrackSuggestion) -> TrackInfo | None:
        if suggestion.uri:
            return await remote.get_track(suggestion.uri)

        found = await remote.search_track(suggestion.artist, suggestion.title)
        if found is None:
            return None
        if not is_good_match(suggestion.artist, suggestion.title, found.artist, found.name):
            log.info(
                "search_mismatch",
                query=f"{suggestion.artist} — {suggestion.title}",
                found=f"{found.artist} — {found.name}",
            )
            return None
        return found
