"""Glue between Celery task bodies and the job coordinator."""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from bitredict.errors import DependencyNotReady, LockContentionError
from bitredict.runtime import Runtime, open_runtime
from bitredict.services.coordinator import JobContext

logger = structlog.get_logger(__name__)


async def run_coordinated(
    job_name: str,
    fn: Callable[[Runtime, JobContext], Awaitable[Any]],
    dependencies: tuple[str, ...] = (),
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Run ``fn`` under the job's lock with a fresh runtime.

    Contention and unmet dependencies end the run as skipped; the next
    scheduled run tries again. Every other error propagates to Celery.
    """
    async with open_runtime() as runtime:
        try:
            result = await runtime.coordinator.execute_with_coordination(
                job_name,
                lambda ctx: fn(runtime, ctx),
                dependencies=dependencies,
                metadata=metadata,
            )
        except (LockContentionError, DependencyNotReady) as e:
            logger.warning("job_skipped", job_name=job_name, reason=e.kind.value, error=e.message)
            return {"status": "skipped", "job_name": job_name, "reason": e.message}
    return {"status": "completed", "job_name": job_name, "result": result}
