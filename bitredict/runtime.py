"""Composition root.

Builds every component once per process (or per Celery task run) and wires
them together explicitly; nothing below this module reaches for a global.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bitredict.config import Settings, get_settings
from bitredict.models.base import task_session_factory
from bitredict.services.chain import ChainGateway
from bitredict.services.coordinator import JobCoordinator
from bitredict.services.indexer import EventIndexer, PoolEventHandlers, build_handlers
from bitredict.services.oddyssey import CycleSelector, OddysseyPipeline
from bitredict.services.results import ResultIngestor, SportMonksFeed
from bitredict.services.settlement import PoolSettlement
from bitredict.store import (
    AlertStore,
    CronStore,
    CursorStore,
    OddysseyStore,
    PoolStore,
    ResultStore,
)


@dataclass
class Runtime:
    settings: Settings
    alerts: AlertStore
    results_store: ResultStore
    oddyssey_store: OddysseyStore
    pool_store: PoolStore
    coordinator: JobCoordinator
    gateway: ChainGateway
    ingestor: ResultIngestor
    pipeline: OddysseyPipeline
    settlement: PoolSettlement
    indexer: EventIndexer


def build_runtime(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
    gateway: ChainGateway | None = None,
    feed=None,
) -> Runtime:
    settings = settings or get_settings()
    alerts = AlertStore(session_factory)
    results_store = ResultStore(session_factory)
    oddyssey_store = OddysseyStore(session_factory)
    pool_store = PoolStore(session_factory)
    gateway = gateway or ChainGateway(settings)

    coordinator = JobCoordinator(CronStore(session_factory), alerts=alerts, settings=settings)
    ingestor = ResultIngestor(results_store, oddyssey_store, feed=feed)
    selector = CycleSelector(results_store, settings, settings.load_defaults_config())
    pipeline = OddysseyPipeline(gateway, oddyssey_store, results_store, selector, settings, alerts=alerts)
    settlement = PoolSettlement(gateway, pool_store)
    handlers = build_handlers(pipeline, PoolEventHandlers(gateway, pool_store, alerts), settlement)
    indexer = EventIndexer(gateway, CursorStore(session_factory), handlers, settings)

    return Runtime(
        settings=settings,
        alerts=alerts,
        results_store=results_store,
        oddyssey_store=oddyssey_store,
        pool_store=pool_store,
        coordinator=coordinator,
        gateway=gateway,
        ingestor=ingestor,
        pipeline=pipeline,
        settlement=settlement,
        indexer=indexer,
    )


@asynccontextmanager
async def open_runtime(settings: Settings | None = None) -> AsyncIterator[Runtime]:
    """Runtime bound to a fresh engine and HTTP client, closed on exit."""
    settings = settings or get_settings()
    async with task_session_factory() as session_factory:
        feed = SportMonksFeed(settings) if settings.sportmonks_api_token else None
        try:
            yield build_runtime(session_factory, settings, feed=feed)
        finally:
            if feed is not None:
                await feed.__aexit__(None, None, None)
