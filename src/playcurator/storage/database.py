"""Async SQLite database for curation logs and saved plans."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
import structlog

from playcurator.curation.models import CurationDiff, CurationSession
from playcurator.storage.models import CurationLog, RunState

log = structlog.get_logger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS curation_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    playlist_id TEXT NOT NULL,
    state TEXT NOT NULL CHECK(state IN ('success', 'failed', 'cancelled')),
    dry_run INTEGER NOT NULL DEFAULT 0,
    triggered_by TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT NOT NULL,
    plan_id TEXT,
    added INTEGER NOT NULL DEFAULT 0,
    removed INTEGER NOT NULL DEFAULT 0,
    predicted_final INTEGER,
    diff_json TEXT,
    error_kind TEXT,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS ix_curation_logs_playlist
    ON curation_logs(owner_id, playlist_id);

CREATE TABLE IF NOT EXISTS plans (
    plan_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    playlist_id TEXT NOT NULL,
    session_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""


def _now() -> datetime:
    return datetime.now(UTC)


class Database:
    """Async SQLite database wrapper for playcurator.

    Implements both the run-log store and the plan store the curation core
    writes to.
    """

    def __init__(self, path: Path, *, plan_ttl_minutes: int = 60) -> None:
        self.path = path
        self.plan_ttl = timedelta(minutes=plan_ttl_minutes)
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._conn

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self.path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- curation_logs --------------------------------------------------------

    async def persist_log(
        self,
        *,
        owner_id: str,
        playlist_id: str,
        state: RunState,
        dry_run: bool,
        triggered_by: str,
        started_at: datetime,
        diff: CurationDiff | None = None,
        error_kind: str | None = None,
        error_message: str | None = None,
        plan_id: str | None = None,
    ) -> CurationLog:
        cur = await self.conn.execute(
            """
            INSERT INTO curation_logs (
                owner_id, playlist_id, state, dry_run, triggered_by, started_at, finished_at,
                plan_id, added, removed, predicted_final, diff_json, error_kind, error_message
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                owner_id,
                playlist_id,
                state,
                int(dry_run),
                triggered_by,
                started_at.isoformat(),
                _now().isoformat(),
                plan_id,
                len(diff.added) if diff else 0,
                len(diff.removed) if diff else 0,
                diff.predicted_final if diff else None,
                diff.model_dump_json() if diff else None,
                error_kind,
                error_message,
            ),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_curation_log(row)

    async def list_logs(
        self,
        *,
        owner_id: str | None = None,
        playlist_id: str | None = None,
        limit: int = 20,
    ) -> list[CurationLog]:
        clauses: list[str] = []
        params: list[object] = []
        if owner_id:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if playlist_id:
            clauses.append("playlist_id = ?")
            params.append(playlist_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cur = await self.conn.execute(
            f"SELECT * FROM curation_logs {where} ORDER BY id DESC LIMIT ?",  # noqa: S608
            (*params, limit),
        )
        rows = await cur.fetchall()
        return [self._row_to_curation_log(r) for r in rows]

    async def get_log_diff(self, log_id: int) -> CurationDiff | None:
        cur = await self.conn.execute("SELECT diff_json FROM curation_logs WHERE id = ?", (log_id,))
        row = await cur.fetchone()
        if row is None or row["diff_json"] is None:
            return None
        return CurationDiff.model_validate_json(row["diff_json"])

    # -- plans ----------------------------------------------------------------

    async def save_plan(self, plan_id: str, session: CurationSession) -> None:
        created = session.created_at
        await self.conn.execute(
            """
            INSERT INTO plans (plan_id, owner_id, playlist_id, session_json, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (plan_id) DO UPDATE SET
                session_json = excluded.session_json,
                created_at = excluded.created_at,
                expires_at = excluded.expires_at
            """,
            (
                plan_id,
                session.owner_id,
                session.config.id,
                session.model_dump_json(),
                created.isoformat(),
                (created + self.plan_ttl).isoformat(),
            ),
        )
        await self.conn.commit()

    async def load_plan(self, plan_id: str) -> CurationSession | None:
        """Return the saved plan, or ``None`` when unknown or expired.

        Expired plans are deleted on access.
        """
        cur = await self.conn.execute("SELECT * FROM plans WHERE plan_id = ?", (plan_id,))
        row = await cur.fetchone()
        if row is None:
            return None
        if datetime.fromisoformat(row["expires_at"]) <= _now():
            log.info("plan_expired", plan_id=plan_id)
            await self.delete_plan(plan_id)
            return None
        return CurationSession.model_validate_json(row["session_json"])

    async def delete_plan(self, plan_id: str) -> None:
        await self.conn.execute("DELETE FROM plans WHERE plan_id = ?", (plan_id,))
        await self.conn.commit()

    async def purge_expired_plans(self) -> int:
        """Delete every plan past its TTL; return how many were removed."""
        cur = await self.conn.execute("DELETE FROM plans WHERE expires_at <= ?", (_now().isoformat(),))
        await self.conn.commit()
        if cur.rowcount:
            log.info("plans_purged", count=cur.rowcount)
        return cur.rowcount

    # -- row → model helpers --------------------------------------------------

    @staticmethod
    def _row_to_curation_log(row: aiosqlite.Row) -> CurationLog:
        return CurationLog(
            id=row["id"],
            owner_id=row["owner_id"],
            playlist_id=row["playlist_id"],
            state=row["state"],
            dry_run=bool(row["dry_run"]),
            triggered_by=row["triggered_by"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            plan_id=row["plan_id"],
            added=row["added"],
            removed=row["removed"],
            predicted_final=row["predicted_final"],
            diff_json=row["diff_json"],
            error_kind=row["error_kind"],
            error_message=row["error_message"],
        )
