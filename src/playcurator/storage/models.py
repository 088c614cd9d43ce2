"""Pydantic models for the playcurator storage layer."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

RunState = Literal["success", "failed", "cancelled"]


class CurationLog(BaseModel):
    """Record of a single curation run, one row per run."""

    id: int | None = None
    owner_id: str
    playlist_id: str
    state: RunState
    dry_run: bool = False
    triggered_by: str = "manual"
    started_at: datetime
    finished_at: datetime | None = None
    plan_id: str | None = None
    added: int = 0
    removed: int = 0
    predicted_final: int | None = None
    diff_json: str | None = None
    error_kind: str | None = None
    error_message: str | None = None
