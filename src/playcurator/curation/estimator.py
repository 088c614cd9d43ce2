"""Side-effect-free curation estimates with replayable plans."""

from __future__ import annotations

import uuid

import structlog

from playcurator.config import PlaylistConfig
from playcurator.curation.models import CurationDiff, CurationEstimate, CurationSession
from playcurator.curation.orchestrator import PlaylistOrchestrator
from playcurator.curation.ports import PlanStore, PlaylistService
from playcurator.errors import PlanNotFoundError

log = structlog.get_logger(__name__)


class CurationEstimator:
    """Predicts a run and snapshots its target list.

    Executing the returned plan reconciles to the snapshot, never to a fresh
    computation, so what was approved is what gets applied.
    """

    def __init__(self, orchestrator: PlaylistOrchestrator, plan_store: PlanStore) -> None:
        self._orchestrator = orchestrator
        self._plans = plan_store

    async def estimate(
        self,
        config: PlaylistConfig,
        remote: PlaylistService,
        uid: str,
        *,
        dry_run: bool = False,
    ) -> CurationEstimate:
        computation = await self._orchestrator.compute(config, remote)

        plan_id = uuid.uuid4().hex
        session = CurationSession(
            plan_id=plan_id,
            config=config,
            owner_id=uid,
            dry_run=dry_run,
            target_uris=computation.target_uris,
            diff=computation.diff,
        )
        await self._plans.save_plan(plan_id, session)
        log.info("estimate_saved", playlist_id=config.id, plan_id=plan_id, **computation.diff.summary())

        return CurationEstimate.model_validate({**computation.diff.model_dump(), "plan_id": plan_id})

    async def execute(
        self,
        plan_id: str,
        remote: PlaylistService,
        *,
        triggered_by: str = "manual",
    ) -> CurationDiff:
        """Replay a saved plan; the plan is consumed only when the replay succeeds."""
        session = await self._plans.load_plan(plan_id)
        if session is None:
            raise PlanNotFoundError(plan_id)

        diff = await self._orchestrator.execute_plan(session, remote, triggered_by=triggered_by)
        await self._plans.delete_plan(plan_id)
        return diff
