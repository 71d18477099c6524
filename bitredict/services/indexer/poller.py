"""HTTP-polling event indexer.

Each contract is read in bounded block windows from its persisted cursor to
the chain head. Events of one contract are dispatched in (block, log index)
order and the contract's cursors advance only once every handler of the
window has succeeded, so a failed window is read again on the next poll.
"""

import asyncio
from collections import defaultdict
from typing import Any

import structlog

from bitredict.services.chain.gateway import ChainEvent
from bitredict.services.indexer.handlers import Handler

logger = structlog.get_logger(__name__)


class EventIndexer:
    def __init__(self, gateway, cursors, handlers: dict[tuple[str, str], Handler], settings):
        self.gateway = gateway
        self.cursors = cursors
        self.handlers = handlers
        self.settings = settings
        self.subscriptions: dict[str, list[str]] = defaultdict(list)
        for contract, event in handlers:
            self.subscriptions[contract].append(event)

    async def _dispatch(self, events: list[ChainEvent]) -> None:
        for event in events:
            handler = self.handlers.get((event.contract, event.event))
            if handler is None:
                continue
            await handler(event)

    async def _process_range(self, contract: str, from_block: int, to_block: int) -> int:
        """Read and dispatch [from_block, to_block] window by window, advancing cursors after each."""
        event_names = self.subscriptions[contract]
        window = self.settings.indexer_window_blocks
        processed = 0
        start = from_block
        while start <= to_block:
            end = min(start + window - 1, to_block)
            events = await self.gateway.fetch_events(contract, event_names, start, end)
            await self._dispatch(events)
            await self.cursors.advance(contract, event_names, end)
            processed += len(events)
            if events:
                logger.info(
                    "indexer_window_processed",
                    contract=contract,
                    from_block=start,
                    to_block=end,
                    events=len(events),
                )
            start = end + 1
        return processed

    async def _start_block(self, contract: str, head: int) -> int:
        # A newly subscribed event starts from the oldest cursor of its contract.
        cursors = await self.cursors.get(contract, self.subscriptions[contract])
        if cursors:
            return min(cursors.values()) + 1
        return self.settings.indexer_start_block or head

    async def poll_once(self) -> dict[str, Any]:
        """One pass over every subscribed contract up to the current head."""
        head = await self.gateway.get_block_number()
        stats: dict[str, Any] = {"head": head, "events": 0, "failed_contracts": []}
        for contract in self.subscriptions:
            try:
                start = await self._start_block(contract, head)
                stats["events"] += await self._process_range(contract, start, head)
            except Exception as e:
                logger.error("indexer_window_failed", contract=contract, head=head, error=str(e))
                stats["failed_contracts"].append(contract)
        return stats

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        interval = self.settings.indexer_poll_interval_seconds
        logger.info("indexer_started", contracts=sorted(self.subscriptions), interval=interval)
        while not stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("indexer_poll_failed", error=str(e))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass
        logger.info("indexer_stopped")

    async def reconcile(
        self,
        lookback_blocks: int | None = None,
        contracts: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Replay the trailing ``lookback_blocks`` for each contract.

        Handlers are idempotent, so events already stored are no-ops. A
        contract whose cursor lags behind the window is replayed from its
        cursor instead, so no block is skipped. Cursors only move forward.
        """
        lookback = lookback_blocks or self.settings.indexer_fallback_window_blocks
        head = await self.gateway.get_block_number()
        from_block = max(head - lookback + 1, self.settings.indexer_start_block, 0)
        stats: dict[str, Any] = {"from_block": from_block, "head": head, "events": 0}
        for contract in contracts or list(self.subscriptions):
            if contract not in self.subscriptions:
                continue
            start = from_block
            cursors = await self.cursors.get(contract, self.subscriptions[contract])
            if cursors and min(cursors.values()) + 1 < from_block:
                start = min(cursors.values()) + 1
                logger.warning(
                    "indexer_cursor_behind_window", contract=contract, from_block=start, window_start=from_block
                )
            stats["events"] += await self._process_range(contract, start, head)
        logger.info("indexer_reconciled", **stats)
        return stats
