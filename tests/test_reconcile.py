"""Tests for perform_smart_update convergence."""

from __future__ import annotations

import pytest
from fakes import FakePlaylistService, make_track

from playcurator.curation.reconcile import perform_smart_update
from playcurator.errors import RemoteTransientError

PID = "spotify:playlist:pl1"


def _remote(*ns) -> FakePlaylistService:
    return FakePlaylistService({PID: [make_track(n) for n in ns]})


def _uris(*ns) -> list[str]:
    return [f"spotify:track:t{n}" for n in ns]


@pytest.mark.asyncio
async def test_converges_with_removals_additions_and_moves():
    remote = _remote(1, 2, 3, 4, 2)
    target = _uris(5, 3, 1, 2, 6)

    stats = await perform_smart_update(remote, PID, target)

    assert remote.uris(PID) == target
    assert stats.removed == 2  # t4 and the second t2
    assert stats.added == 2


@pytest.mark.asyncio
async def test_removals_are_position_qualified_highest_first():
    remote = _remote(1, 2, 1, 3, 1)
    await perform_smart_update(remote, PID, _uris(1, 2, 3))

    removal_call = next(c for c in remote.calls if c[0] == "remove_items")
    assert removal_call[2] == [
        {"uri": "spotify:track:t1", "positions": [4]},
        {"uri": "spotify:track:t1", "positions": [2]},
    ]
    assert remote.uris(PID) == _uris(1, 2, 3)


@pytest.mark.asyncio
async def test_already_matching_playlist_makes_no_writes():
    remote = _remote(1, 2, 3)
    stats = await perform_smart_update(remote, PID, _uris(1, 2, 3))

    assert stats.mutations == 0
    assert stats.remote_calls == 0
    assert remote.count("fetch_tracks") == 1


@pytest.mark.asyncio
async def test_second_run_is_a_no_op():
    remote = _remote(4, 1, 1, 2)
    target = _uris(2, 3, 1)
    await perform_smart_update(remote, PID, target)
    calls_before = len(remote.calls)

    stats = await perform_smart_update(remote, PID, target)

    assert stats.mutations == 0
    assert len(remote.calls) == calls_before + 1  # a single fetch
    assert remote.uris(PID) == target


@pytest.mark.asyncio
async def test_reorder_only():
    remote = _remote(1, 2, 3, 4)
    stats = await perform_smart_update(remote, PID, _uris(4, 3, 2, 1))

    assert remote.uris(PID) == _uris(4, 3, 2, 1)
    assert stats.removed == stats.added == 0
    assert stats.moved == 3


@pytest.mark.asyncio
async def test_batches_removals_and_additions():
    remote = _remote(*range(250))
    target = _uris(*range(250, 480))

    stats = await perform_smart_update(remote, PID, target)

    assert remote.uris(PID) == target
    assert remote.count("remove_items") == 1  # one fake call, three batches
    assert stats.remote_calls == 3 + 3


@pytest.mark.asyncio
async def test_partial_failure_then_rerun_converges():
    remote = _remote(1, 2, 3, 3)
    target = _uris(4, 1, 3, 5)
    remote.fail_on["add_items"] = RemoteTransientError("server error")

    with pytest.raises(RemoteTransientError):
        await perform_smart_update(remote, PID, target)

    # Removals were applied, additions were not.
    assert remote.uris(PID) == _uris(1, 3)

    await perform_smart_update(remote, PID, target)

    assert remote.uris(PID) == target
    assert remote.uris(PID).count("spotify:track:t3") == 1
    assert remote.uris(PID).count("spotify:track:t4") == 1
