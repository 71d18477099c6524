"""Job coordinator.

Best-effort mutual exclusion for periodic jobs across processes, backed by the
system.cron_locks table:

- acquire/release of one lock row per job name, with a started/terminal
  execution log row per run
- dependency waits on another job's most recent execution
- retry with exponential backoff and jitter on contention or failure
- a TTL-bounded run context that unwinds the job once the lock is lost

It is not a consensus service: runners whose clocks disagree by more than the
lock TTL may both acquire. Jobs stay idempotent to absorb that.
"""

import asyncio
import os
import random
import socket
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import structlog

from bitredict.config import Settings, get_settings
from bitredict.errors import (
    BitredictError,
    DependencyNotReady,
    LockContentionError,
    LockTimeoutError,
    should_alert,
)
from bitredict.store.records import ExecutionRecord

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 300.0
DEPENDENCY_LOOKBACK = timedelta(hours=1)
SUMMARY_WINDOW = timedelta(hours=24)


def default_locked_by() -> str:
    """hostname:pid, for diagnostics only."""
    host = os.environ.get("HOSTNAME") or socket.gethostname()
    pid = os.environ.get("PID") or os.getpid()
    return f"{host}:{pid}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobContext:
    """Handle passed to a coordinated job for the lifetime of its lock."""

    job_name: str
    execution_id: uuid.UUID
    attempt: int
    ttl_seconds: float
    deadline: float
    metadata: dict[str, Any] = field(default_factory=dict)
    monotonic: Callable[[], float] = field(default=time.monotonic, repr=False)

    def remaining(self) -> float:
        return self.deadline - self.monotonic()

    def ensure_active(self) -> None:
        """Raise once the lock TTL has elapsed; call before every chain write."""
        if self.remaining() <= 0:
            raise LockTimeoutError(self.job_name, self.ttl_seconds)


class JobCoordinator:
    def __init__(
        self,
        store,
        alerts=None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        jitter: Callable[[], float] | None = None,
        locked_by: str | None = None,
    ):
        self.store = store
        self.alerts = alerts
        self.settings = settings or get_settings()
        self.clock = clock
        self.sleep = sleep
        self.monotonic = monotonic
        self.jitter = jitter or (lambda: random.uniform(0, 1.0))
        self.locked_by = locked_by or default_locked_by()

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    async def cleanup_expired_locks(self) -> int:
        """Delete expired locks; their started log rows become ``timeout``."""
        expired = await self.store.cleanup_expired(self.clock())
        for job_name, execution_id in expired:
            logger.warning("lock_expired", job_name=job_name, execution_id=str(execution_id))
        return len(expired)

    async def acquire_lock(
        self,
        job_name: str,
        ttl_seconds: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> uuid.UUID | None:
        """Take the job's lock without blocking; None when another runner holds it."""
        ttl = ttl_seconds if ttl_seconds is not None else self.settings.lock_ttl_seconds
        if ttl <= 0:
            raise ValueError("Lock TTL must be positive")
        await self.cleanup_expired_locks()
        execution_id = uuid.uuid4()
        acquired = await self.store.try_insert_lock(
            job_name,
            self.locked_by,
            timedelta(seconds=ttl),
            execution_id,
            metadata or {},
            self.clock(),
        )
        if not acquired:
            logger.info("lock_busy", job_name=job_name)
            return None
        logger.info(
            "lock_acquired",
            job_name=job_name,
            execution_id=str(execution_id),
            locked_by=self.locked_by,
            ttl_seconds=ttl,
        )
        return execution_id

    async def release_lock(
        self,
        job_name: str,
        execution_id: uuid.UUID,
        status: str = "completed",
        error: str | None = None,
    ) -> bool:
        released = await self.store.delete_lock(job_name, execution_id, status, error, self.clock())
        logger.info(
            "lock_released",
            job_name=job_name,
            execution_id=str(execution_id),
            status=status,
            held=released,
        )
        return released

    async def is_locked(self, job_name: str) -> bool:
        await self.cleanup_expired_locks()
        return await self.store.get_lock(job_name, self.clock()) is not None

    async def force_release_lock(self, job_name: str) -> bool:
        """Emergency path: drop the lock and mark started runs force_released."""
        lock = await self.store.force_release(job_name, self.clock())
        logger.warning(
            "lock_force_released",
            job_name=job_name,
            execution_id=str(lock.execution_id) if lock else None,
            locked_by=lock.locked_by if lock else None,
        )
        return lock is not None

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    async def wait_for_dependency(
        self,
        dependency: str,
        max_wait_seconds: float | None = None,
        poll_seconds: float | None = None,
    ) -> bool:
        """
        Wait until ``dependency`` is unlocked and its latest run in the last
        hour completed. No recent run counts as satisfied; a failed one does not.
        """
        max_wait = (
            max_wait_seconds if max_wait_seconds is not None else self.settings.dependency_max_wait_seconds
        )
        poll = poll_seconds if poll_seconds is not None else self.settings.dependency_poll_seconds
        deadline = self.monotonic() + max_wait

        while True:
            if not await self.is_locked(dependency):
                latest = await self.store.latest_execution(
                    dependency, self.clock() - DEPENDENCY_LOOKBACK
                )
                if latest is None or latest.status == "completed":
                    return True
                if latest.status != "started":
                    logger.warning(
                        "dependency_not_satisfied",
                        dependency=dependency,
                        status=latest.status,
                        error=latest.error_message,
                    )
                    return False

            remaining = deadline - self.monotonic()
            if remaining <= 0:
                logger.warning("dependency_wait_timeout", dependency=dependency, max_wait=max_wait)
                return False
            await self.sleep(min(poll, remaining))

    # ------------------------------------------------------------------
    # Coordinated execution
    # ------------------------------------------------------------------

    def backoff_delay(self, attempt: int) -> float:
        base = self.settings.lock_retry_base_delay_seconds
        return min(base * 2 ** (attempt - 1) + self.jitter(), MAX_BACKOFF_SECONDS)

    async def execute_with_coordination(
        self,
        job_name: str,
        fn: Callable[[JobContext], Awaitable[T]],
        dependencies: list[str] | tuple[str, ...] = (),
        lock_ttl_seconds: float | None = None,
        retries: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> T:
        """
        Run ``fn`` under the job's lock.

        Lock contention and retryable failures are retried with backoff up to
        ``retries`` attempts; non-retryable errors and TTL breaches are raised
        immediately.
        """
        ttl = lock_ttl_seconds if lock_ttl_seconds is not None else self.settings.lock_ttl_seconds
        attempts = retries if retries is not None else self.settings.lock_retry_attempts

        for dependency in dependencies:
            if not await self.wait_for_dependency(dependency):
                raise DependencyNotReady(job_name, dependency)

        for attempt in range(1, attempts + 1):
            run_metadata = {**(metadata or {}), "attempt": attempt, "dependencies": list(dependencies)}
            execution_id = await self.acquire_lock(job_name, ttl, run_metadata)
            if execution_id is None:
                if attempt == attempts:
                    raise LockContentionError(job_name, attempts)
                delay = self.backoff_delay(attempt)
                logger.info("lock_contended_retrying", job_name=job_name, attempt=attempt, delay=delay)
                await self.sleep(delay)
                continue

            ctx = JobContext(
                job_name=job_name,
                execution_id=execution_id,
                attempt=attempt,
                ttl_seconds=ttl,
                deadline=self.monotonic() + ttl,
                metadata=run_metadata,
                monotonic=self.monotonic,
            )
            started = self.monotonic()
            try:
                async with asyncio.timeout(ttl) as scope:
                    result = await fn(ctx)
            except (TimeoutError, LockTimeoutError) as e:
                if isinstance(e, TimeoutError) and not scope.expired():
                    await self._handle_failure(job_name, execution_id, e)
                    if attempt == attempts:
                        raise
                    await self.sleep(self.backoff_delay(attempt))
                    continue
                await self.release_lock(job_name, execution_id, "timeout", f"Lock TTL of {ttl}s elapsed")
                logger.error("job_timed_out", job_name=job_name, execution_id=str(execution_id), ttl=ttl)
                raise LockTimeoutError(job_name, ttl) from e
            except Exception as e:
                await self._handle_failure(job_name, execution_id, e)
                retryable = e.retryable if isinstance(e, BitredictError) else True
                if not retryable or attempt == attempts:
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "job_failed_retrying",
                    job_name=job_name,
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
                await self.sleep(delay)
                continue

            await self.release_lock(job_name, execution_id, "completed")
            logger.info(
                "job_completed",
                job_name=job_name,
                execution_id=str(execution_id),
                duration_ms=int((self.monotonic() - started) * 1000),
            )
            return result

        raise LockContentionError(job_name, attempts)

    async def _handle_failure(self, job_name: str, execution_id: uuid.UUID, error: BaseException) -> None:
        await self.release_lock(job_name, execution_id, "failed", str(error))
        logger.error("job_failed", job_name=job_name, execution_id=str(execution_id), error=str(error))
        if self.alerts is not None and should_alert(error):
            await self.alerts.record(
                alert_type=type(error).__name__,
                message=str(error),
                details={
                    "job_name": job_name,
                    "execution_id": str(execution_id),
                    **(error.details if isinstance(error, BitredictError) else {}),
                },
            )

    # ------------------------------------------------------------------
    # Introspection and maintenance
    # ------------------------------------------------------------------

    async def get_lock_status(self, job_name: str) -> dict[str, Any] | None:
        lock = await self.store.get_lock(job_name, self.clock())
        if lock is None:
            return None
        return {
            "job_name": lock.job_name,
            "locked_by": lock.locked_by,
            "locked_at": lock.locked_at,
            "expires_at": lock.expires_at,
            "execution_id": str(lock.execution_id),
            "metadata": lock.metadata,
        }

    async def get_execution_history(self, job_name: str, limit: int = 10) -> list[ExecutionRecord]:
        return await self.store.history(job_name, limit)

    async def get_system_status(self) -> dict[str, Any]:
        now = self.clock()
        locks = await self.store.list_locks(now)
        return {
            "active_locks": [
                {
                    "job_name": lock.job_name,
                    "locked_by": lock.locked_by,
                    "locked_at": lock.locked_at,
                    "expires_at": lock.expires_at,
                    "execution_id": str(lock.execution_id),
                }
                for lock in locks
            ],
            "summary_24h": await self.store.summary(now - SUMMARY_WINDOW),
            "checked_at": now,
        }

    async def log_execution(
        self,
        job_name: str,
        status: str,
        error: str | None = None,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> uuid.UUID:
        """Record an uncoordinated run (for example an operator action)."""
        now = self.clock()
        execution_id = uuid.uuid4()
        await self.store.insert_execution(
            ExecutionRecord(
                job_name=job_name,
                execution_id=execution_id,
                status=status,
                started_at=now,
                completed_at=None if status == "started" else now,
                duration_ms=duration_ms,
                error_message=error,
                metadata=metadata or {},
            )
        )
        return execution_id

    async def prune_execution_log(self, older_than: timedelta | None = None) -> int:
        retention = older_than or timedelta(days=self.settings.execution_log_retention_days)
        removed = await self.store.prune_executions(self.clock() - retention)
        logger.info("execution_log_pruned", removed=removed, retention_days=retention.days)
        return removed
