"""Configuration management: application settings and per-playlist curation rules."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from playcurator.errors import ValidationError

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".playcurator"
_CONFIG_FILE = "config.toml"
_DB_FILE = "playcurator.db"
_LOG_DIR = "logs"
_PLAYLISTS_DIR = "playlists"

PLAYLIST_URI_PREFIX = "spotify:playlist:"
TRACK_URI_PREFIX = "spotify:track:"


def get_base_dir() -> Path:
    """Return the base directory for all runtime files (~/.playcurator/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Application settings
# ---------------------------------------------------------------------------


class LoggingConfig(BaseModel):
    """Settings for the structured log files."""

    log_level: str = Field(default="info", description="Logging level")


class SchedulerConfig(BaseModel):
    """Settings for periodic curation of enabled playlists."""

    interval_minutes: int = Field(default=360, ge=1, description="Minutes between scheduled runs")
    run_timeout_minutes: int = Field(default=10, ge=1, description="Per-playlist run timeout")


class PlansConfig(BaseModel):
    """Settings for persisted estimate plans."""

    ttl_minutes: int = Field(default=60, ge=1, description="Minutes before an unexecuted plan expires")


class SpotifyConfig(BaseModel):
    """Spotify API credentials and OAuth tokens."""

    client_id: str = Field(default="", description="Spotify Developer App client ID")
    client_secret: SecretStr = Field(default=SecretStr(""), description="Spotify Developer App client secret")
    refresh_token: SecretStr = Field(default=SecretStr(""), description="Spotify OAuth refresh token")


class AIConfig(BaseModel):
    """Credentials for the AI suggestion provider."""

    api_key: SecretStr = Field(default=SecretStr(""), description="Google AI (Gemini) API key")
    default_model: str = Field(default="gemini-2.5-flash", description="Model used when a playlist names none")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    plans: PlansConfig = Field(default_factory=PlansConfig)
    spotify: SpotifyConfig = Field(default_factory=SpotifyConfig)
    ai: AIConfig = Field(default_factory=AIConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def db_path(self) -> Path:
        return self.base_dir / _DB_FILE

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    @property
    def playlists_dir(self) -> Path:
        return self.base_dir / _PLAYLISTS_DIR

    def is_spotify_configured(self) -> bool:
        """Return True if Spotify credentials are fully set."""
        return bool(
            self.spotify.client_id
            and self.spotify.client_secret.get_secret_value()
            and self.spotify.refresh_token.get_secret_value()
        )

    def is_ai_configured(self) -> bool:
        return bool(self.ai.api_key.get_secret_value())


# ---------------------------------------------------------------------------
# Playlist curation config
# ---------------------------------------------------------------------------

SizeLimitStrategy = Literal[
    "drop_random",
    "drop_oldest",
    "drop_newest",
    "drop_most_popular",
    "drop_least_popular",
]


class PositionRange(BaseModel):
    """1-indexed, inclusive range of allowed final positions."""

    min: int = Field(ge=1)
    max: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> PositionRange:
        if self.min > self.max:
            msg = f"position range min ({self.min}) must not exceed max ({self.max})"
            raise ValueError(msg)
        return self

    @property
    def width(self) -> int:
        return self.max - self.min


class MandatoryTrack(BaseModel):
    """A VIP track pinned to a position range of the final playlist."""

    uri: str
    name: str = ""
    artist: str = ""
    position_range: PositionRange
    note: str = ""

    @field_validator("uri")
    @classmethod
    def _check_uri(cls, value: str) -> str:
        if not value.startswith(TRACK_URI_PREFIX):
            msg = f"must be a Spotify track URI ({TRACK_URI_PREFIX}...)"
            raise ValueError(msg)
        return value


class PlaylistSettings(BaseModel):
    target_total_tracks: int = Field(ge=1, le=10_000)
    allow_explicit: bool = True
    reference_artists: list[str] = Field(default_factory=list)
    description: str = ""


class AiGenerationConfig(BaseModel):
    """How AI suggestions fill open slots."""

    enabled: bool = True
    tracks_to_add: int = Field(default=10, ge=0, le=100)
    model: str = "gemini-2.5-flash"
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    is_instrumental_only: bool = False
    overfetch_ratio: float = Field(default=1.5, ge=1.0, le=5.0)


class CurationRules(BaseModel):
    """Removal rules applied to the current playlist contents.

    Unset (``None``) numeric rules are disabled.
    """

    max_track_age_days: int | None = Field(default=None, ge=1)
    remove_duplicates: bool = True
    max_tracks_per_artist: int | None = Field(default=None, ge=1)
    size_limit_strategy: SizeLimitStrategy = "drop_random"
    shuffle_at_end: bool = False


class PlaylistConfig(BaseModel):
    """Everything one curation run needs to know about a playlist."""

    id: str
    owner_id: str = "local"
    name: str = ""
    enabled: bool = True
    settings: PlaylistSettings
    mandatory_tracks: list[MandatoryTrack] = Field(default_factory=list)
    ai_generation: AiGenerationConfig = Field(default_factory=AiGenerationConfig)
    curation_rules: CurationRules = Field(default_factory=CurationRules)

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not value.startswith(PLAYLIST_URI_PREFIX) or value == PLAYLIST_URI_PREFIX:
            msg = f"must be a Spotify playlist URI ({PLAYLIST_URI_PREFIX}...)"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _check_mandatory_unique(self) -> PlaylistConfig:
        seen: set[str] = set()
        for track in self.mandatory_tracks:
            if track.uri in seen:
                msg = f"mandatory track {track.uri} is listed more than once"
                raise ValueError(msg)
            seen.add(track.uri)
        return self

    @property
    def remote_id(self) -> str:
        """Bare Spotify playlist id without the URI prefix."""
        return self.id.removeprefix(PLAYLIST_URI_PREFIX)

    @property
    def display_name(self) -> str:
        return self.name or self.remote_id


def parse_playlist_config(raw: dict) -> PlaylistConfig:
    """Validate a raw mapping into a :class:`PlaylistConfig`.

    Raises :class:`playcurator.errors.ValidationError` with pydantic's
    description of every offending field.
    """
    try:
        return PlaylistConfig.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid playlist configuration: {exc}") from exc


def load_playlist_config(path: Path) -> PlaylistConfig:
    """Load and validate a single playlist TOML file."""
    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ValidationError(f"{path}: {exc}") from exc
    return parse_playlist_config(raw)


def load_playlists(directory: Path) -> list[PlaylistConfig]:
    """Load every ``*.toml`` playlist config in *directory*, sorted by file name."""
    if not directory.is_dir():
        return []
    return [load_playlist_config(p) for p in sorted(directory.glob("*.toml"))]


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base, log and playlists directories if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _PLAYLISTS_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    try:
        return AppConfig.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid configuration in {path}: {exc}") from exc


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure of the app settings. Playlist
    configs are edited by hand and never written back.
    """
    lines: list[str] = []
    for section_name in AppConfig.model_fields:
        section_model = getattr(config, section_name)
        lines.append(f"[{section_name}]")
        for key in type(section_model).model_fields:
            lines.append(f"{key} = {_format_toml_value(getattr(section_model, key))}")
        lines.append("")
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
