"""Minimal-edit reconciliation of a remote playlist towards a target order."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

import structlog

from playcurator.curation.models import ReconcileStats, TrackInfo
from playcurator.curation.ports import PlaylistService, RemovalItem

log = structlog.get_logger(__name__)

BATCH_SIZE = 100


async def perform_smart_update(
    remote: PlaylistService,
    playlist_id: str,
    target_uris: Sequence[str],
    *,
    batch_size: int = BATCH_SIZE,
) -> ReconcileStats:
    """Converge the remote playlist to *target_uris* with few write calls.

    1. Remove every instance the target doesn't account for, by position,
       highest positions first so earlier batches never shift later ones.
    2. Append what is still missing, in target order.
    3. Re-fetch once and move single items into place, tracking the remote
       order locally after each move.

    Positions are the remote ones, so entries the service reports no track
    for (local files, unavailable items) are never touched except that they
    drift behind the curated tracks.

    Any remote failure propagates immediately; whatever was already applied
    stays applied and a re-run converges from there.
    """
    stats = ReconcileStats()
    target_counts = Counter(target_uris)

    current = _remote_order(await remote.fetch_tracks(playlist_id))

    # -- 1. removals ----------------------------------------------------------
    kept_counts: Counter[str] = Counter()
    to_remove: list[RemovalItem] = []
    for index, uri in enumerate(current):
        if uri is None:
            continue
        if kept_counts[uri] < target_counts[uri]:
            kept_counts[uri] += 1
        else:
            to_remove.append({"uri": uri, "positions": [index]})

    if to_remove:
        to_remove.sort(key=lambda item: item["positions"][0], reverse=True)
        stats.remote_calls += await remote.remove_items(playlist_id, to_remove, batch_size)
        stats.removed = len(to_remove)

    # -- 2. additions ---------------------------------------------------------
    missing = {uri: count - kept_counts[uri] for uri, count in target_counts.items() if count > kept_counts[uri]}
    to_add: list[str] = []
    for uri in target_uris:
        if missing.get(uri, 0) > 0:
            to_add.append(uri)
            missing[uri] -= 1

    if to_add:
        stats.remote_calls += await remote.add_items(playlist_id, to_add, None, batch_size)
        stats.added = len(to_add)

    # -- 3. reorder -----------------------------------------------------------
    if stats.removed or stats.added:
        mirror = _remote_order(await remote.fetch_tracks(playlist_id))
    else:
        mirror = current

    log.info(
        "reconcile_reorder",
        playlist_id=playlist_id,
        actual=len(mirror),
        target=len(target_uris),
    )

    for i, uri in enumerate(target_uris):
        if i < len(mirror) and mirror[i] == uri:
            continue
        try:
            actual = mirror.index(uri, i)
        except ValueError:
            log.warning("reconcile_track_missing", playlist_id=playlist_id, uri=uri, index=i)
            continue
        await remote.move_item(playlist_id, actual, i, 1)
        mirror.insert(i, mirror.pop(actual))
        stats.moved += 1
        stats.remote_calls += 1

    log.info(
        "reconcile_done",
        playlist_id=playlist_id,
        removed=stats.removed,
        added=stats.added,
        moved=stats.moved,
        remote_calls=stats.remote_calls,
    )
    return stats


def _remote_order(tracks: Sequence[TrackInfo]) -> list[str | None]:
    """Lay *tracks* out by their remote position; ``None`` marks entries that aren't tracks."""
    order: list[str | None] = []
    for index, track in enumerate(tracks):
        position = index if track.position is None else track.position
        order.extend([None] * (position - len(order)))
        order.append(track.uri)
    return order
