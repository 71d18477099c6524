"""Oddyssey cycle tasks.

- oddyssey_open_cycle: daily, starts the cycle on chain
- unified_results: ingests final scores and resolves ended cycles
- unified_evaluation: evaluates, syncs and finalizes resolved cycles;
  waits for unified_results
- audit_cycle / fix_slip / reevaluate_cycle: operator actions
"""

import asyncio
from typing import Any

from celery import shared_task

from bitredict.tasks.coordination import run_coordinated


async def _open_cycle(runtime, ctx) -> dict[str, Any]:
    return await runtime.pipeline.open_cycle(ctx)


async def _unified_results(runtime, ctx) -> dict[str, Any]:
    ingested = await runtime.ingestor.ingest_pending_results()
    resolved = await runtime.pipeline.resolve_ready_cycles(ctx)
    return {"ingested": ingested, "resolved": resolved}


async def _unified_evaluation(runtime, ctx) -> list[dict[str, Any]]:
    return await runtime.pipeline.evaluate_pending_cycles(ctx)


@shared_task(name="bitredict.tasks.oddyssey.oddyssey_open_cycle")
def oddyssey_open_cycle() -> dict[str, Any]:
    """Open the daily cycle. Runs at 00:05 UTC."""
    return asyncio.run(run_coordinated("oddyssey_open_cycle", _open_cycle))


@shared_task(name="bitredict.tasks.oddyssey.unified_results")
def unified_results() -> dict[str, Any]:
    return asyncio.run(run_coordinated("unified_results", _unified_results))


@shared_task(name="bitredict.tasks.oddyssey.unified_evaluation")
def unified_evaluation() -> dict[str, Any]:
    return asyncio.run(
        run_coordinated("unified_evaluation", _unified_evaluation, dependencies=("unified_results",))
    )


@shared_task(name="bitredict.tasks.oddyssey.audit_cycle")
def audit_cycle(cycle_id: int) -> dict[str, Any]:
    async def _audit(runtime, ctx):
        return await runtime.pipeline.audit_cycle(cycle_id)

    return asyncio.run(run_coordinated(f"audit_cycle_{cycle_id}", _audit, metadata={"cycle_id": cycle_id}))


@shared_task(name="bitredict.tasks.oddyssey.fix_slip")
def fix_slip(slip_id: int) -> dict[str, Any]:
    async def _fix(runtime, ctx):
        return await runtime.pipeline.fix_slip(slip_id)

    return asyncio.run(run_coordinated(f"fix_slip_{slip_id}", _fix, metadata={"slip_id": slip_id}))


@shared_task(name="bitredict.tasks.oddyssey.reevaluate_cycle")
def reevaluate_cycle(cycle_id: int) -> dict[str, Any]:
    """Evaluate, sync and finalize one cycle under the evaluation lock."""

    async def _reevaluate(runtime, ctx):
        return await runtime.pipeline.process_cycle_evaluation(cycle_id, ctx)

    return asyncio.run(
        run_coordinated("unified_evaluation", _reevaluate, metadata={"cycle_id": cycle_id, "manual": True})
    )
