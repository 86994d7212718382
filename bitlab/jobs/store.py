"""SQLite-backed persistence for job snapshots."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import aiosqlite

from ..errors import PersistenceError
from .models import Job


class JobStore:
    """Async SQLite store holding one JSON snapshot per job."""

    def __init__(self, db_path: str = "bitlab_jobs.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the jobs table if it doesn't exist."""
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                priority TEXT NOT NULL DEFAULT 'normal',
                batch_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                payload TEXT NOT NULL
            )
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ── CRUD ─────────────────────────────────────────────────────────

    async def save_job(self, job: Job) -> None:
        """Insert or replace the snapshot for *job*."""
        if self._db is None:
            await self.initialize()
        now = datetime.now(timezone.utc).isoformat()
        try:
            await self._db.execute(
                """
                INSERT INTO jobs (job_id, name, status, priority, batch_id, created_at, updated_at, payload)
                VALUES (?,?,?,?,?,?,?,?)
                ON CONFLICT(job_id) DO UPDATE SET
                    name = excluded.name,
                    status = excluded.status,
                    priority = excluded.priority,
                    batch_id = excluded.batch_id,
                    updated_at = excluded.updated_at,
                    payload = excluded.payload
                """,
                (
                    job.id,
                    job.name,
                    job.status.value,
                    job.priority.value,
                    job.batch_id,
                    job.created_at,
                    now,
                    job.model_dump_json(),
                ),
            )
            await self._db.commit()
        except (aiosqlite.Error, ValueError) as exc:
            raise PersistenceError(f"Could not save job {job.id}: {exc}") from exc

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Fetch a single job by ID."""
        if self._db is None:
            await self.initialize()
        async with self._db.execute("SELECT payload FROM jobs WHERE job_id = ?", (job_id,)) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return Job.model_validate_json(row[0])

    async def list_jobs(self, limit: int = 500) -> List[Job]:
        """List jobs ordered by creation time (oldest first)."""
        if self._db is None:
            await self.initialize()
        async with self._db.execute(
            "SELECT payload FROM jobs ORDER BY created_at ASC LIMIT ?", (limit,)
        ) as cur:
            rows = await cur.fetchall()
        return [Job.model_validate_json(r[0]) for r in rows]

    async def delete_job(self, job_id: str) -> bool:
        if self._db is None:
            await self.initialize()
        try:
            cur = await self._db.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            await self._db.commit()
        except (aiosqlite.Error, ValueError) as exc:
            raise PersistenceError(f"Could not delete job {job_id}: {exc}") from exc
        return cur.rowcount > 0
