"""Curation scheduler: curates every enabled playlist on a configurable interval."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from playcurator.errors import RemoteAuthError

if TYPE_CHECKING:
    from playcurator.config import PlaylistConfig
    from playcurator.curation.models import CurationDiff
    from playcurator.curation.orchestrator import PlaylistOrchestrator
    from playcurator.curation.ports import PlaylistService

log = structlog.get_logger(__name__)


class CurationScheduler:
    """Schedules periodic curation runs with a manual trigger.

    Also the only place that starts runs in the background, so it enforces
    one active run per playlist.
    """

    def __init__(
        self,
        orchestrator: PlaylistOrchestrator,
        remote: PlaylistService,
        load_playlists: Callable[[], list[PlaylistConfig]],
        interval_minutes: int = 360,
        run_timeout_minutes: int = 10,
    ) -> None:
        self._orchestrator = orchestrator
        self._remote = remote
        self._load_playlists = load_playlists
        self._interval = interval_minutes * 60  # seconds
        self._run_timeout = run_timeout_minutes * 60
        self._credentials_invalid = False
        self._stop_event = asyncio.Event()
        self._trigger_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._in_flight: set[str] = set()
        self._last_run_at: datetime | None = None
        self._next_run_at: datetime | None = None
        self._last_results: dict[str, str] = {}

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        log.info("scheduler_started", interval_minutes=self._interval // 60)

    async def stop(self) -> None:
        """Stop the scheduler, waiting for any in-progress run to complete."""
        if not self.is_running:
            return
        self._stop_event.set()
        self._trigger_event.set()  # wake up if sleeping
        if self._task:
            await self._task
            self._task = None
        log.info("scheduler_stopped")

    async def wait(self) -> None:
        """Block until the loop ends, either through :meth:`stop` or invalid credentials."""
        if self._task is not None:
            await self._task

    def trigger_now(self) -> None:
        """Start the next pass immediately instead of waiting out the interval."""
        self._trigger_event.set()

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "credentials_invalid": self._credentials_invalid,
            "interval_minutes": self._interval // 60,
            "in_flight": sorted(self._in_flight),
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "next_run_at": self._next_run_at.isoformat() if self._next_run_at else None,
            "last_results": dict(self._last_results),
        }

    # -- runs -----------------------------------------------------------------

    async def curate(self, config: PlaylistConfig) -> CurationDiff | None:
        """Run one curation under the single-flight guard and the run timeout.

        Returns ``None`` without doing anything when *config*'s playlist
        already has a run in progress.
        """
        if config.id in self._in_flight:
            log.warning("curation_skipped_in_flight", playlist_id=config.id)
            return None

        self._in_flight.add(config.id)
        try:
            async with asyncio.timeout(self._run_timeout):
                return await self._orchestrator.curate_playlist(
                    config,
                    self._remote,
                    triggered_by="scheduler",
                )
        finally:
            self._in_flight.discard(config.id)

    async def run_once(self) -> dict[str, str]:
        """Curate enabled playlists one after another; return an outcome per playlist.

        An auth failure skips the remaining playlists and ends the loop, since
        every later run would fail the same way until the credentials change.
        """
        results: dict[str, str] = {}
        for config in self._load_playlists():
            if not config.enabled:
                continue
            try:
                diff = await self.curate(config)
            except RemoteAuthError as exc:
                results[config.id] = "failed"
                log.error("credentials_invalid", playlist_id=config.id, error=str(exc))
                self._credentials_invalid = True
                self._stop_event.set()
                break
            except TimeoutError:
                results[config.id] = "timeout"
                log.error("scheduled_curation_timeout", playlist_id=config.id, timeout=self._run_timeout)
            except Exception as exc:
                results[config.id] = "failed"
                log.error("scheduled_curation_failed", playlist_id=config.id, error=str(exc))
            else:
                results[config.id] = "skipped" if diff is None else "success"

        self._last_results = results
        self._last_run_at = datetime.now(UTC)
        return results

    async def _loop(self) -> None:
        first_run = True
        while not self._stop_event.is_set():
            if first_run:
                first_run = False
                self._next_run_at = datetime.now(UTC).replace(microsecond=0)
            else:
                self._next_run_at = datetime.now(UTC).replace(microsecond=0) + timedelta(seconds=self._interval)

                # Interruptible sleep
                self._trigger_event.clear()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        self._wait_for_trigger_or_stop(),
                        timeout=self._interval,
                    )

            if self._stop_event.is_set():
                break

            self._trigger_event.clear()
            await self.run_once()

    async def _wait_for_trigger_or_stop(self) -> None:
        """Wait until either trigger or stop event is set."""
        trigger_task = asyncio.create_task(self._trigger_event.wait())
        stop_task = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait(
                {trigger_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for t in (trigger_task, stop_task):
                if not t.done():
                    t.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await t
