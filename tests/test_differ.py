"""Tests for the curation differ module."""

from __future__ import annotations

from fakes import make_track

from playcurator.config import MandatoryTrack, PositionRange
from playcurator.curation.differ import compute_diff, is_good_match, make_match_key, normalize
from playcurator.curation.models import Removal, TrackWithMeta

# -- normalize tests --


def test_normalize_lowercase():
    assert normalize("Hello World") == "hello world"


def test_normalize_strips_feat_in_parens():
    assert normalize("Song (feat. Artist)") == "song"


def test_normalize_strips_featuring_inline():
    assert normalize("Song featuring Another Artist") == "song"


def test_normalize_strips_parenthetical_content():
    assert normalize("Song (Remix)") == "song"
    assert normalize("Song [Deluxe Edition]") == "song"


def test_normalize_strips_dash_suffix():
    assert normalize("Heroes - 2017 Remaster") == "heroes"


def test_normalize_strips_punctuation():
    assert normalize("rock & roll!") == "rock roll"


def test_match_key_normalized():
    assert make_match_key("The Beatles", "Help! (Remastered)") == make_match_key("the beatles", "help")


# -- is_good_match tests --


def test_good_match_exact_after_normalization():
    assert is_good_match("Daft Punk", "One More Time", "Daft Punk", "One More Time - Radio Edit")


def test_good_match_contains():
    assert is_good_match("Beyonce", "Halo", "Beyonce, Jay-Z", "Halo")


def test_good_match_small_typo():
    assert is_good_match("Radiohead", "Karma Police", "Radiohed", "Karma Polize")


def test_bad_match_wrong_artist():
    assert not is_good_match("Radiohead", "Creep", "Stone Temple Pilots", "Creep")


def test_bad_match_wrong_title():
    assert not is_good_match("Muse", "Hysteria", "Muse", "Uprising")


# -- compute_diff tests --


def _removal(track, index, reason):
    return Removal(track=TrackWithMeta.from_track(track, index), reason=reason)


def test_diff_counts_additions_by_source():
    current = [make_track(1), make_track(2)]
    mandatory = [
        MandatoryTrack(
            uri="spotify:track:m1",
            name="Pinned",
            artist="VIP",
            position_range=PositionRange(min=1, max=1),
        )
    ]
    ai = [make_track(9)]
    final = ["spotify:track:m1", "spotify:track:t1", "spotify:track:t2", "spotify:track:t9"]

    diff = compute_diff(current, final, [], mandatory, ai)

    assert [(a.uri, a.source) for a in diff.added] == [
        ("spotify:track:m1", "mandatory"),
        ("spotify:track:t9", "ai"),
    ]
    assert diff.added[0].name == "Pinned"
    assert diff.mandatory_to_add == 1
    assert diff.ai_tracks_to_add == 1
    assert diff.predicted_final == 4
    assert diff.removed == []


def test_diff_reports_each_removed_instance_with_reason():
    dup = make_track(1, days_ago=0)
    old = make_track(2, days_ago=90)
    current = [make_track(1), old, dup, make_track(3)]
    removals = [_removal(dup, 2, "duplicate"), _removal(old, 1, "expired")]

    diff = compute_diff(current, ["spotify:track:t1", "spotify:track:t3"], removals, [], [])

    assert [(r.uri, r.reason) for r in diff.removed] == [
        ("spotify:track:t1", "duplicate"),
        ("spotify:track:t2", "expired"),
    ]
    assert diff.duplicates_to_remove == 1
    assert diff.aged_out_tracks == 1
    assert diff.current_tracks == 4


def test_diff_untracked_removal_defaults_to_size_limit():
    current = [make_track(1), make_track(2)]
    diff = compute_diff(current, ["spotify:track:t1"], [], [], [])
    assert [(r.uri, r.reason) for r in diff.removed] == [("spotify:track:t2", "size_limit")]
    assert diff.size_limit_removed == 1


def test_diff_unknown_mandatory_metadata_falls_back():
    mandatory = [MandatoryTrack(uri="spotify:track:m1", position_range=PositionRange(min=1, max=1))]
    diff = compute_diff([], ["spotify:track:m1"], [], mandatory, [])
    assert diff.added[0].name == "Unknown Track"
    assert diff.added[0].artist == "Unknown Artist"


def test_diff_summary():
    diff = compute_diff([make_track(1), make_track(2)], ["spotify:track:t1", "spotify:track:t5"], [], [], [])
    assert diff.summary() == {"current": 2, "final": 2, "added": 1, "removed": 1}
