"""Lock and log housekeeping."""

import asyncio
from typing import Any

from celery import shared_task

from bitredict.runtime import open_runtime
from bitredict.services.results import FixtureResultValidator
from bitredict.tasks.coordination import run_coordinated


@shared_task(name="bitredict.tasks.maintenance.cleanup_expired_locks")
def cleanup_expired_locks() -> dict[str, Any]:
    """Reclaim expired locks. Not itself locked: the delete is idempotent."""

    async def _run():
        async with open_runtime() as runtime:
            return {"expired": await runtime.coordinator.cleanup_expired_locks()}

    return asyncio.run(_run())


@shared_task(name="bitredict.tasks.maintenance.prune_execution_log")
def prune_execution_log() -> dict[str, Any]:
    async def _prune(runtime, ctx):
        return {"removed": await runtime.coordinator.prune_execution_log()}

    return asyncio.run(run_coordinated("prune_execution_log", _prune))


@shared_task(name="bitredict.tasks.maintenance.repair_legacy_results")
def repair_legacy_results() -> dict[str, Any]:
    async def _repair(runtime, ctx):
        return await FixtureResultValidator(runtime.results_store).repair_legacy_results()

    return asyncio.run(run_coordinated("repair_legacy_results", _repair))
