"""Curation orchestrator: clean → AI fill → slot placement → diff → reconcile."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from playcurator.config import PlaylistConfig
from playcurator.curation.cleaner import TrackCleaner
from playcurator.curation.differ import compute_diff
from playcurator.curation.models import (
    Arrangement,
    CurationDiff,
    CurationSession,
    ProcessingResult,
    TrackInfo,
    TrackWithMeta,
)
from playcurator.curation.ports import CurationLogStore, PlaylistService
from playcurator.curation.reconcile import perform_smart_update
from playcurator.curation.slots import SlotManager
from playcurator.curation.suggestions import SuggestionEngine
from playcurator.errors import classify_failure, describe_failure

log = structlog.get_logger(__name__)


@dataclass
class CurationComputation:
    """Everything steps 1–5 of a run produce; no remote state has changed yet."""

    current_tracks: list[TrackInfo]
    processing: ProcessingResult
    ai_tracks: list[TrackInfo]
    arrangement: Arrangement
    diff: CurationDiff

    @property
    def target_uris(self) -> list[str]:
        return self.arrangement.uris


class PlaylistOrchestrator:
    """Coordinates a full curation pass for one playlist.

    The orchestrator holds no per-playlist state. Callers must ensure only one
    run per playlist is active at a time.
    """

    def __init__(
        self,
        suggestions: SuggestionEngine | None,
        log_store: CurationLogStore,
        *,
        cleaner: TrackCleaner | None = None,
        slot_manager: SlotManager | None = None,
    ) -> None:
        self._suggestions = suggestions
        self._log_store = log_store
        self._cleaner = cleaner or TrackCleaner()
        self._slot_manager = slot_manager or SlotManager()

    # -- computation (read-only) -------------------------------------------

    async def compute(self, config: PlaylistConfig, remote: PlaylistService) -> CurationComputation:
        """Fetch, clean, fill and arrange without touching the remote playlist."""
        rules = config.curation_rules
        target = config.settings.target_total_tracks

        current = await remote.fetch_tracks(config.id)
        log.info("tracks_fetched", playlist_id=config.id, count=len(current))

        mandatory_uris = {m.uri for m in config.mandatory_tracks}
        current_uris = {t.uri for t in current}
        tracks = [TrackWithMeta.from_track(t, i, is_vip=t.uri in mandatory_uris) for i, t in enumerate(current)]
        mandatory_missing = len(mandatory_uris - current_uris)
        ai_active = config.ai_generation.enabled and self._suggestions is not None
        reserved = config.ai_generation.tracks_to_add if ai_active else 0

        processing = self._cleaner.clean(
            tracks,
            rules,
            target,
            mandatory_missing=mandatory_missing,
            reserved_slots=reserved,
        )
        log.info(
            "tracks_filtered",
            playlist_id=config.id,
            kept=len(processing.kept_tracks),
            removed=len(processing.removals),
            slots_needed=processing.slots_needed,
        )

        ai_tracks: list[TrackInfo] = []
        if ai_active and processing.slots_needed > 0:
            exclude = (
                {t.uri for t in processing.kept_tracks}
                | mandatory_uris
                | set(processing.tracks_to_remove)
            )
            ai_tracks = await self._suggestions.find_tracks(
                config,
                remote,
                processing.slots_needed,
                exclude_uris=exclude,
                existing=processing.kept_tracks,
            )

        arrangement = self._slot_manager.place_mandatory(
            processing.kept_tracks,
            config.mandatory_tracks,
            ai_tracks,
            target,
            shuffle=rules.shuffle_at_end,
        )

        diff = compute_diff(current, arrangement.uris, processing.removals, config.mandatory_tracks, ai_tracks)
        return CurationComputation(
            current_tracks=current,
            processing=processing,
            ai_tracks=ai_tracks,
            arrangement=arrangement,
            diff=diff,
        )

    # -- runs ---------------------------------------------------------------

    async def curate_playlist(
        self,
        config: PlaylistConfig,
        remote: PlaylistService,
        *,
        dry_run: bool = False,
        triggered_by: str = "manual",
    ) -> CurationDiff:
        """Curate *config*'s playlist; with *dry_run* only the diff is produced.

        Exactly one log entry is persisted per call, whether the run succeeds,
        fails or is cancelled. Failures are re-raised.
        """
        started_at = datetime.now(UTC)
        log.info("curation_start", playlist_id=config.id, name=config.display_name, dry_run=dry_run)

        diff: CurationDiff | None = None
        try:
            computation = await self.compute(config, remote)
            diff = computation.diff
            if not dry_run:
                await perform_smart_update(remote, config.id, computation.target_uris)
        except (Exception, asyncio.CancelledError) as exc:
            await self._record_failure(config.owner_id, config.id, exc, dry_run, triggered_by, started_at, diff)
            raise

        await self._log_store.persist_log(
            owner_id=config.owner_id,
            playlist_id=config.id,
            state="success",
            dry_run=dry_run,
            triggered_by=triggered_by,
            started_at=started_at,
            diff=diff,
        )
        log.info("curation_completed", playlist_id=config.id, dry_run=dry_run, **diff.summary())
        return diff

    async def execute_plan(
        self,
        session: CurationSession,
        remote: PlaylistService,
        *,
        triggered_by: str = "manual",
    ) -> CurationDiff:
        """Apply a previously estimated plan exactly as it was approved."""
        started_at = datetime.now(UTC)
        playlist_id = session.config.id
        log.info("plan_execute_start", playlist_id=playlist_id, plan_id=session.plan_id, dry_run=session.dry_run)

        try:
            if not session.dry_run:
                await perform_smart_update(remote, playlist_id, session.target_uris)
        except (Exception, asyncio.CancelledError) as exc:
            await self._record_failure(
                session.owner_id,
                playlist_id,
                exc,
                session.dry_run,
                triggered_by,
                started_at,
                session.diff,
                plan_id=session.plan_id,
            )
            raise

        await self._log_store.persist_log(
            owner_id=session.owner_id,
            playlist_id=playlist_id,
            state="success",
            dry_run=session.dry_run,
            triggered_by=triggered_by,
            started_at=started_at,
            diff=session.diff,
            plan_id=session.plan_id,
        )
        log.info("plan_execute_completed", playlist_id=playlist_id, plan_id=session.plan_id, **session.diff.summary())
        return session.diff

    async def _record_failure(
        self,
        owner_id: str,
        playlist_id: str,
        exc: BaseException,
        dry_run: bool,
        triggered_by: str,
        started_at: datetime,
        diff: CurationDiff | None,
        *,
        plan_id: str | None = None,
    ) -> None:
        cancelled = isinstance(exc, asyncio.CancelledError)
        kind = classify_failure(exc)
        log.error(
            "curation_failed",
            playlist_id=playlist_id,
            error=str(exc) or type(exc).__name__,
            kind=kind,
            cancelled=cancelled,
        )
        try:
            await self._log_store.persist_log(
                owner_id=owner_id,
                playlist_id=playlist_id,
                state="cancelled" if cancelled else "failed",
                dry_run=dry_run,
                triggered_by=triggered_by,
                started_at=started_at,
                diff=diff,
                error_kind=kind,
                error_message="Run cancelled or timed out" if cancelled else describe_failure(exc),
                plan_id=plan_id,
            )
        except Exception as persist_exc:
            # The run failure is what the caller re-raises.
            log.error("curation_log_persist_failed", playlist_id=playlist_id, error=str(persist_exc))
