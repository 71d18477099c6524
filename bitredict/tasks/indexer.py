"""Indexer reconciliation tasks."""

import asyncio
from typing import Any

from celery import shared_task

from bitredict.tasks.coordination import run_coordinated


@shared_task(name="bitredict.tasks.indexer.indexer_fallback_reconcile")
def indexer_fallback_reconcile() -> dict[str, Any]:
    """
    Replay the trailing fallback window for every contract.

    Picks up events the polling indexer missed while it was down.
    """

    async def _reconcile(runtime, ctx):
        return await runtime.indexer.reconcile()

    return asyncio.run(run_coordinated("indexer_fallback_reconcile", _reconcile))


@shared_task(name="bitredict.tasks.indexer.fallback_bet_sync")
def fallback_bet_sync() -> dict[str, Any]:
    async def _sync(runtime, ctx):
        return await runtime.indexer.reconcile(contracts=["PoolCore"])

    return asyncio.run(run_coordinated("fallback_bet_sync", _sync))
