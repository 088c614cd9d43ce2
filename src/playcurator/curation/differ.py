"""Track normalization, search-hit validation, and diff computation."""

from __future__ import annotations

import re
import unicodedata
from collections import Counter, defaultdict, deque
from collections.abc import Sequence
from difflib import SequenceMatcher

from playcurator.config import MandatoryTrack
from playcurator.curation.models import (
    AddedTrack,
    CurationDiff,
    Removal,
    RemovalReason,
    RemovedTrack,
    TrackInfo,
)

_FUZZY_THRESHOLD = 0.8


def normalize(text: str) -> str:
    """Normalize a track title or artist name for matching.

    Steps:
    1. Unicode NFKD normalization
    2. Lowercase
    3. Remove feat./ft./featuring clauses (both in parens and inline)
    4. Remove content in parentheses/brackets (remix indicators etc)
    5. Strip punctuation except spaces
    6. Collapse whitespace
    """
    text = unicodedata.normalize("NFKD", text)
    text = text.lower()
    text = re.sub(
        r"\s*[\(\[](feat\.?|ft\.?|featuring)\s+[^\)\]]*[\)\]]",
        "",
        text,
        flags=re.IGNORECASE,
    )
    text = re.sub(
        r"\s+(feat\.?|ft\.?|featuring)\s+.*$",
        "",
        text,
        flags=re.IGNORECASE,
    )
    text = re.sub(r"\s*[\(\[][^\)\]]*[\)\]]", "", text)
    # Strip a trailing " - Remastered 2011" style suffix
    text = re.sub(r"\s+-\s+.*$", "", text)
    text = re.sub(r"[^\w\s]", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def make_match_key(artist: str, title: str) -> str:
    """Create a normalized key from artist+title for dict-based matching."""
    return f"{normalize(artist)}|||{normalize(title)}"


def is_good_match(query_artist: str, query_title: str, found_artist: str, found_title: str) -> bool:
    """Validate that a search result actually matches the query.

    Normalized exact/contains matches are accepted outright; otherwise both
    artist and title must reach a SequenceMatcher ratio of 0.8.
    """
    q_artist, q_title = normalize(query_artist), normalize(query_title)
    f_artist, f_title = normalize(found_artist), normalize(found_title)

    def _contains(a: str, b: str) -> bool:
        return bool(a and b) and (a == b or a in b or b in a)

    if _contains(q_artist, f_artist) and _contains(q_title, f_title):
        return True

    artist_ratio = SequenceMatcher(None, q_artist, f_artist).ratio()
    title_ratio = SequenceMatcher(None, q_title, f_title).ratio()
    return artist_ratio >= _FUZZY_THRESHOLD and title_ratio >= _FUZZY_THRESHOLD


def compute_diff(
    current_tracks: Sequence[TrackInfo],
    final_uris: Sequence[str],
    removals: Sequence[Removal],
    mandatory_tracks: Sequence[MandatoryTrack],
    ai_tracks: Sequence[TrackInfo],
) -> CurationDiff:
    """Describe the change from *current_tracks* to *final_uris*.

    Removed instances are counted per URI (duplicates included) and tagged
    with the reason the cleaner recorded, in the order it recorded them.
    Surplus copies of a URI that stays in the playlist are ``duplicate``;
    kept tracks that did not fit are ``size_limit``.
    """
    current_counts = Counter(t.uri for t in current_tracks)
    final_counts = Counter(final_uris)

    mandatory_by_uri = {m.uri: m for m in mandatory_tracks}
    ai_by_uri = {t.uri: t for t in ai_tracks}

    added: list[AddedTrack] = []
    pending = dict(final_counts)
    for uri in final_uris:
        missing = pending[uri] - current_counts.get(uri, 0)
        if missing <= 0:
            continue
        pending[uri] -= 1
        if uri in mandatory_by_uri:
            m = mandatory_by_uri[uri]
            added.append(
                AddedTrack(
                    uri=uri,
                    name=m.name or "Unknown Track",
                    artist=m.artist or "Unknown Artist",
                    source="mandatory",
                )
            )
        else:
            t = ai_by_uri.get(uri)
            added.append(
                AddedTrack(
                    uri=uri,
                    name=t.name if t else "Unknown Track",
                    artist=t.artist if t else "Unknown Artist",
                    source="ai",
                )
            )

    reasons: dict[str, deque[RemovalReason]] = defaultdict(deque)
    for removal in removals:
        reasons[removal.track.uri].append(removal.reason)

    removed: list[RemovedTrack] = []
    surplus = {uri: count - final_counts.get(uri, 0) for uri, count in current_counts.items()}
    for track in current_tracks:
        if surplus[track.uri] <= 0:
            continue
        surplus[track.uri] -= 1
        if reasons[track.uri]:
            reason = reasons[track.uri].popleft()
        elif track.uri in final_counts:
            reason = "duplicate"
        else:
            reason = "size_limit"
        removed.append(RemovedTrack(uri=track.uri, name=track.name, artist=track.artist, reason=reason))

    return CurationDiff(
        current_tracks=len(current_tracks),
        final_uris=list(final_uris),
        added=added,
        removed=removed,
    )
