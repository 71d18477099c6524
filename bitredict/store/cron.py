"""Persistence for job locks and the execution log."""

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bitredict.models.system import CronExecutionLog, CronLock
from bitredict.store.records import ExecutionRecord, LockRecord

TERMINAL_STATUSES = ("completed", "failed", "timeout", "force_released")


def _duration_ms(started_at: datetime, ended_at: datetime) -> int:
    return max(0, int((ended_at - started_at).total_seconds() * 1000))


def _lock_record(row: CronLock) -> LockRecord:
    return LockRecord(
        job_name=row.job_name,
        locked_by=row.locked_by,
        locked_at=row.locked_at,
        expires_at=row.expires_at,
        execution_id=row.execution_id,
        metadata=row.lock_metadata or {},
    )


def _execution_record(row: CronExecutionLog) -> ExecutionRecord:
    return ExecutionRecord(
        job_name=row.job_name,
        execution_id=row.execution_id,
        status=row.status,
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
        error_message=row.error_message,
        metadata=row.log_metadata or {},
    )


class CronStore:
    """SQL implementation of the lock table and execution log."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _finish_logs(
        self,
        session: AsyncSession,
        execution_ids: list[uuid.UUID],
        status: str,
        error: str | None,
        now: datetime,
        job_name: str | None = None,
    ) -> None:
        if not execution_ids:
            return
        query = select(CronExecutionLog).where(
            CronExecutionLog.execution_id.in_(execution_ids),
            CronExecutionLog.status == "started",
        )
        if job_name is not None:
            query = query.where(CronExecutionLog.job_name == job_name)
        rows = await session.execute(query)
        for entry in rows.scalars():
            entry.status = status
            entry.completed_at = now
            entry.duration_ms = _duration_ms(entry.started_at, now)
            entry.error_message = error

    async def cleanup_expired(self, now: datetime) -> list[tuple[str, uuid.UUID]]:
        """Delete expired locks and move their started log rows to timeout."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(CronLock)
                .where(CronLock.expires_at < now)
                .returning(CronLock.job_name, CronLock.execution_id)
            )
            expired = [(row.job_name, row.execution_id) for row in result]
            await self._finish_logs(
                session,
                [execution_id for _, execution_id in expired],
                "timeout",
                "Lock expired before release",
                now,
            )
            await session.commit()
        return expired

    async def try_insert_lock(
        self,
        job_name: str,
        locked_by: str,
        ttl: timedelta,
        execution_id: uuid.UUID,
        metadata: dict[str, Any],
        now: datetime,
    ) -> bool:
        """Insert the lock row and its started log row; False when the job is held."""
        async with self.session_factory() as session:
            result = await session.execute(
                insert(CronLock)
                .values(
                    job_name=job_name,
                    locked_by=locked_by,
                    locked_at=now,
                    expires_at=now + ttl,
                    execution_id=execution_id,
                    lock_metadata=metadata,
                )
                .on_conflict_do_nothing(index_elements=["job_name"])
                .returning(CronLock.execution_id)
            )
            if result.scalar_one_or_none() is None:
                await session.rollback()
                return False
            session.add(
                CronExecutionLog(
                    job_name=job_name,
                    execution_id=execution_id,
                    status="started",
                    started_at=now,
                    log_metadata=metadata,
                )
            )
            await session.commit()
        return True

    async def delete_lock(
        self,
        job_name: str,
        execution_id: uuid.UUID,
        status: str,
        error: str | None,
        now: datetime,
    ) -> bool:
        """Delete the lock if execution_id still holds it and close that run's log row."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(CronLock)
                .where(CronLock.job_name == job_name, CronLock.execution_id == execution_id)
                .returning(CronLock.locked_at)
            )
            deleted = result.scalar_one_or_none() is not None
            if deleted:
                await self._finish_logs(session, [execution_id], status, error, now, job_name=job_name)
            await session.commit()
        return deleted

    async def force_release(self, job_name: str, now: datetime) -> LockRecord | None:
        async with self.session_factory() as session:
            existing = await session.get(CronLock, job_name)
            lock = _lock_record(existing) if existing else None
            await session.execute(delete(CronLock).where(CronLock.job_name == job_name))
            started = await session.execute(
                select(CronExecutionLog.execution_id).where(
                    CronExecutionLog.job_name == job_name,
                    CronExecutionLog.status == "started",
                )
            )
            await self._finish_logs(
                session, list(started.scalars()), "force_released", "Lock force-released", now
            )
            await session.commit()
        return lock

    async def get_lock(self, job_name: str, now: datetime) -> LockRecord | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(CronLock).where(CronLock.job_name == job_name, CronLock.expires_at > now)
            )
            return _lock_record(row) if row else None

    async def list_locks(self, now: datetime) -> list[LockRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(CronLock).where(CronLock.expires_at > now).order_by(CronLock.locked_at)
            )
            return [_lock_record(row) for row in rows]

    async def latest_execution(self, job_name: str, since: datetime) -> ExecutionRecord | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(CronExecutionLog)
                .where(CronExecutionLog.job_name == job_name, CronExecutionLog.started_at >= since)
                .order_by(CronExecutionLog.started_at.desc(), CronExecutionLog.id.desc())
                .limit(1)
            )
            return _execution_record(row) if row else None

    async def history(self, job_name: str, limit: int) -> list[ExecutionRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(CronExecutionLog)
                .where(CronExecutionLog.job_name == job_name)
                .order_by(CronExecutionLog.started_at.desc(), CronExecutionLog.id.desc())
                .limit(limit)
            )
            return [_execution_record(row) for row in rows]

    async def summary(self, since: datetime) -> dict[str, dict[str, Any]]:
        """Per-job status counts and average duration since a point in time."""
        async with self.session_factory() as session:
            rows = await session.execute(
                select(
                    CronExecutionLog.job_name,
                    CronExecutionLog.status,
                    func.count(),
                    func.avg(CronExecutionLog.duration_ms),
                    func.max(CronExecutionLog.started_at),
                )
                .where(CronExecutionLog.started_at >= since)
                .group_by(CronExecutionLog.job_name, CronExecutionLog.status)
            )
            summary: dict[str, dict[str, Any]] = {}
            for job_name, status, count, avg_duration, last_started in rows:
                job = summary.setdefault(job_name, {"total": 0, "last_started_at": None})
                job[status] = count
                job["total"] += count
                if status == "completed" and avg_duration is not None:
                    job["avg_duration_ms"] = int(avg_duration)
                if job["last_started_at"] is None or last_started > job["last_started_at"]:
                    job["last_started_at"] = last_started
            return summary

    async def insert_execution(self, record: ExecutionRecord) -> None:
        async with self.session_factory() as session:
            session.add(
                CronExecutionLog(
                    job_name=record.job_name,
                    execution_id=record.execution_id,
                    status=record.status,
                    started_at=record.started_at,
                    completed_at=record.completed_at,
                    duration_ms=record.duration_ms,
                    error_message=record.error_message,
                    log_metadata=record.metadata,
                )
            )
            await session.commit()

    async def prune_executions(self, before: datetime) -> int:
        """Delete terminal log rows older than ``before``; started rows are kept."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(CronExecutionLog).where(
                    CronExecutionLog.started_at < before,
                    CronExecutionLog.status.in_(TERMINAL_STATUSES),
                )
            )
            await session.commit()
            return result.rowcount or 0

