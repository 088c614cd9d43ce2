"""Tests for playcurator.config module."""

from __future__ import annotations

import os
import stat
import tomllib
from pathlib import Path

import pytest
from pydantic import SecretStr

from playcurator.config import (
    AppConfig,
    SchedulerConfig,
    SpotifyConfig,
    _dump_toml,
    _format_toml_value,
    ensure_dirs,
    load_config,
    load_playlist_config,
    load_playlists,
    parse_playlist_config,
    save_config,
)
from playcurator.errors import ValidationError

PLAYLIST_TOML = """\
id = "spotify:playlist:abc"
name = "Morning Coffee"

[settings]
target_total_tracks = 30
allow_explicit = false

[[mandatory_tracks]]
uri = "spotify:track:intro"
name = "Intro"
position_range = { min = 1, max = 1 }

[ai_generation]
tracks_to_add = 5

[curation_rules]
max_track_age_days = 90
size_limit_strategy = "drop_oldest"
"""


def _raw(**overrides) -> dict:
    raw = {"id": "spotify:playlist:abc", "settings": {"target_total_tracks": 10}}
    raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# 1. App settings defaults and paths
# ---------------------------------------------------------------------------


def test_app_config_defaults():
    cfg = AppConfig()
    assert cfg.logging.log_level == "info"
    assert cfg.scheduler.interval_minutes == 360
    assert cfg.scheduler.run_timeout_minutes == 10
    assert cfg.plans.ttl_minutes == 60
    assert cfg.ai.default_model == "gemini-2.5-flash"
    assert not cfg.is_spotify_configured()
    assert not cfg.is_ai_configured()


def test_derived_paths(base_dir: Path):
    cfg = AppConfig()
    assert cfg.base_dir == base_dir
    assert cfg.db_path == base_dir / "playcurator.db"
    assert cfg.log_dir == base_dir / "logs"
    assert cfg.playlists_dir == base_dir / "playlists"


def test_is_spotify_configured():
    cfg = AppConfig(spotify=SpotifyConfig(client_id="id", client_secret="s", refresh_token="r"))
    assert cfg.is_spotify_configured()


def test_scheduler_interval_must_be_positive():
    with pytest.raises(ValueError):
        SchedulerConfig(interval_minutes=0)


# ---------------------------------------------------------------------------
# 2. Filesystem helpers and save/load
# ---------------------------------------------------------------------------


def test_ensure_dirs_creates_directories(base_dir: Path, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    fresh = tmp_path / "fresh"
    monkeypatch.setattr("playcurator.config.get_base_dir", lambda: fresh)
    ensure_dirs()
    assert (fresh / "logs").is_dir()
    assert (fresh / "playlists").is_dir()


def test_load_config_no_file_returns_defaults(base_dir: Path):
    assert load_config() == AppConfig()


def test_save_load_round_trip_custom(base_dir: Path):
    original = AppConfig()
    original.scheduler.interval_minutes = 15
    original.spotify.client_id = "cid"
    original.spotify.refresh_token = SecretStr("tok")
    original.ai.api_key = SecretStr('with "quotes"')
    save_config(original)

    loaded = load_config()
    assert loaded.scheduler.interval_minutes == 15
    assert loaded.spotify.client_id == "cid"
    assert loaded.spotify.refresh_token.get_secret_value() == "tok"
    assert loaded.ai.api_key.get_secret_value() == 'with "quotes"'


def test_save_config_sets_permissions(base_dir: Path):
    save_config(AppConfig())
    mode = stat.S_IMODE(os.stat(base_dir / "config.toml").st_mode)
    assert mode == 0o600


def test_load_config_invalid_values_raise(base_dir: Path):
    (base_dir / "config.toml").write_text("[scheduler]\ninterval_minutes = -5\n")
    with pytest.raises(ValidationError):
        load_config()


# ---------------------------------------------------------------------------
# 3. TOML helpers
# ---------------------------------------------------------------------------


def test_format_toml_value():
    assert _format_toml_value("hello") == '"hello"'
    assert _format_toml_value('say "hi"') == '"say \\"hi\\""'
    assert _format_toml_value(42) == "42"
    assert _format_toml_value(True) == "true"
    assert _format_toml_value(SecretStr("s")) == '"s"'


def test_format_toml_value_unsupported_type():
    with pytest.raises(TypeError):
        _format_toml_value([1, 2])


def test_dump_toml_has_every_section():
    parsed = tomllib.loads(_dump_toml(AppConfig()))
    assert set(parsed) == {"logging", "scheduler", "plans", "spotify", "ai"}


# ---------------------------------------------------------------------------
# 4. Playlist configs
# ---------------------------------------------------------------------------


def test_load_playlist_config_from_toml(tmp_path: Path):
    path = tmp_path / "coffee.toml"
    path.write_text(PLAYLIST_TOML)

    cfg = load_playlist_config(path)

    assert cfg.remote_id == "abc"
    assert cfg.display_name == "Morning Coffee"
    assert cfg.settings.allow_explicit is False
    assert cfg.mandatory_tracks[0].position_range.min == 1
    assert cfg.ai_generation.tracks_to_add == 5
    assert cfg.ai_generation.overfetch_ratio == 1.5
    assert cfg.curation_rules.size_limit_strategy == "drop_oldest"
    assert cfg.curation_rules.remove_duplicates is True


def test_load_playlists_sorted(tmp_path: Path):
    (tmp_path / "b.toml").write_text(PLAYLIST_TOML.replace("abc", "bbb"))
    (tmp_path / "a.toml").write_text(PLAYLIST_TOML)
    (tmp_path / "notes.txt").write_text("ignored")

    assert [p.remote_id for p in load_playlists(tmp_path)] == ["abc", "bbb"]
    assert load_playlists(tmp_path / "missing") == []


def test_broken_toml_raises_validation_error(tmp_path: Path):
    path = tmp_path / "bad.toml"
    path.write_text("id = ")
    with pytest.raises(ValidationError, match="bad.toml"):
        load_playlist_config(path)


@pytest.mark.parametrize(
    "overrides",
    [
        {"id": "abc"},
        {"settings": {"target_total_tracks": 0}},
        {"mandatory_tracks": [{"uri": "spotify:album:x", "position_range": {"min": 1, "max": 2}}]},
        {"mandatory_tracks": [{"uri": "spotify:track:x", "position_range": {"min": 3, "max": 2}}]},
        {"mandatory_tracks": [{"uri": "spotify:track:x", "position_range": {"min": 0, "max": 2}}]},
        {
            "mandatory_tracks": [
                {"uri": "spotify:track:x", "position_range": {"min": 1, "max": 1}},
                {"uri": "spotify:track:x", "position_range": {"min": 2, "max": 2}},
            ]
        },
        {"ai_generation": {"temperature": 1.5}},
        {"ai_generation": {"overfetch_ratio": 0.5}},
        {"curation_rules": {"max_tracks_per_artist": 0}},
        {"curation_rules": {"size_limit_strategy": "drop_everything"}},
    ],
)
def test_invalid_playlist_configs_rejected(overrides):
    with pytest.raises(ValidationError):
        parse_playlist_config(_raw(**overrides))


def test_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_playlist_config(_raw(id="nope"))
