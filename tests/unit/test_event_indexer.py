"""Unit tests for the event indexer and pool event handlers.

CRITICAL TESTS:
- Delivering an event twice leaves the store exactly as delivering it once
- A failed window is not skipped: its cursor does not advance
- Fallback reconciliation recovers events emitted while the indexer was down
"""

import asyncio
import copy
from unittest.mock import AsyncMock

from bitredict.services.indexer import EventIndexer, PoolEventHandlers
from bitredict.services.indexer.handlers import build_handlers
from bitredict.services.oddyssey import CycleSelector, OddysseyPipeline
from bitredict.services.settlement import PoolSettlement

from fakes import FakeCursorStore, FakePoolStore, pool_record

BETTORS = ["0x" + f"{i:02x}" * 20 for i in (1, 2, 3)]
POOL_CORE_EVENTS = ("PoolCreated", "BetPlaced", "LiquidityAdded", "PoolSettled", "PoolRefunded")


def bet_args(pool_id, bettor, amount):
    return {"poolId": pool_id, "bettor": bettor, "amount": amount, "isForOutcome": False}


class TestPoolEventHandlers:
    """Test idempotence of the PoolCore handlers."""

    def setup_method(self):
        self.pool_store = FakePoolStore()

    def _handlers(self, gateway, alerts=None):
        return PoolEventHandlers(gateway, self.pool_store, alerts=alerts)

    async def test_pool_created_twice_is_identical(self, gateway):
        gateway.pools[7] = pool_record(7, market_id="Bayern vs Union")
        event = gateway.emit("PoolCore", "PoolCreated", {"poolId": 7}, block_number=50)
        handlers = self._handlers(gateway)

        await handlers.handle_pool_created(event)
        once = copy.deepcopy((self.pool_store.pools, self.pool_store.lookup))
        await handlers.handle_pool_created(event)

        assert (self.pool_store.pools, self.pool_store.lookup) == once
        assert self.pool_store.pools[7].total_bettor_stake == 0
        assert self.pool_store.pools[7].block_number == 50

    async def test_bet_placed_twice_counts_once(self, gateway):
        gateway.pools[7] = pool_record(7)
        handlers = self._handlers(gateway)
        await handlers.handle_pool_created(gateway.emit("PoolCore", "PoolCreated", {"poolId": 7}, 50))
        bet = gateway.emit("PoolCore", "BetPlaced", bet_args(7, BETTORS[0], 5 * 10**17), 51, log_index=2)

        await handlers.handle_bet_placed(bet)
        once = copy.deepcopy((self.pool_store.pools, self.pool_store.bets))
        await handlers.handle_bet_placed(bet)

        assert (self.pool_store.pools, self.pool_store.bets) == once
        assert self.pool_store.pools[7].total_bettor_stake == 5 * 10**17

    async def test_liquidity_added_to_creator_side(self, gateway):
        gateway.pools[7] = pool_record(7)
        handlers = self._handlers(gateway)
        await handlers.handle_pool_created(gateway.emit("PoolCore", "PoolCreated", {"poolId": 7}, 50))
        event = gateway.emit(
            "PoolCore", "LiquidityAdded", {"poolId": 7, "provider": BETTORS[1], "amount": 10**18}, 52
        )

        await handlers.handle_liquidity_added(event)
        await handlers.handle_liquidity_added(event)

        assert self.pool_store.pools[7].total_creator_side_stake == 2 * 10**18

    async def test_inconsistent_pool_times_alerted(self, gateway, alert_store):
        pool = pool_record(8)
        pool.betting_end_time = pool.event_start_time.replace(hour=23)
        gateway.pools[8] = pool

        await self._handlers(gateway, alert_store).handle_pool_created(
            gateway.emit("PoolCore", "PoolCreated", {"poolId": 8}, 50)
        )

        assert 8 not in self.pool_store.pools
        assert alert_store.alerts[0]["alert_type"] == "InvariantViolation"

    async def test_pool_settled_and_refunded(self, gateway):
        gateway.pools[7] = pool_record(7)
        handlers = self._handlers(gateway)
        await handlers.handle_pool_created(gateway.emit("PoolCore", "PoolCreated", {"poolId": 7}, 50))

        await handlers.handle_pool_settled(
            gateway.emit("PoolCore", "PoolSettled", {"poolId": 7, "result": b"\x01", "creatorSideWon": True}, 60)
        )
        await handlers.handle_pool_refunded(
            gateway.emit("PoolCore", "PoolRefunded", {"poolId": 7, "reason": "no bets"}, 61)
        )

        pool = self.pool_store.pools[7]
        assert pool.is_settled and pool.creator_side_won is True
        assert pool.result == "0x01"
        assert pool.is_refunded is True


class TestEventIndexer:
    """Test windowed polling, cursors and reconciliation."""

    def setup_method(self):
        self.seen = []

    def _indexer(self, gateway, cursors, settings, handlers=None):
        async def record(event):
            self.seen.append((event.contract, event.event, event.block_number, event.log_index))

        handlers = handlers or {
            ("PoolCore", "BetPlaced"): record,
            ("Oddyssey", "SlipPlaced"): record,
        }
        return EventIndexer(gateway, cursors, handlers, settings)

    async def test_reads_in_windows_and_advances_cursor(self, gateway, cursor_store, settings):
        gateway.head = 35
        cursor_store.cursors[("PoolCore", "BetPlaced")] = 5
        cursor_store.cursors[("Oddyssey", "SlipPlaced")] = 35
        gateway.emit("PoolCore", "BetPlaced", bet_args(1, BETTORS[0], 1), 20, log_index=3)
        gateway.emit("PoolCore", "BetPlaced", bet_args(1, BETTORS[1], 1), 20, log_index=1)
        gateway.emit("PoolCore", "BetPlaced", bet_args(1, BETTORS[2], 1), 8)

        stats = await self._indexer(gateway, cursor_store, settings).poll_once()

        assert stats == {"head": 35, "events": 3, "failed_contracts": []}
        assert [c for c in gateway.fetch_calls if c[0] == "PoolCore"] == [
            ("PoolCore", 6, 15),
            ("PoolCore", 16, 25),
            ("PoolCore", 26, 35),
        ]
        assert self.seen == [
            ("PoolCore", "BetPlaced", 8, 0),
            ("PoolCore", "BetPlaced", 20, 1),
            ("PoolCore", "BetPlaced", 20, 3),
        ]
        assert cursor_store.cursors[("PoolCore", "BetPlaced")] == 35

    async def test_new_deployment_starts_at_head(self, gateway, cursor_store, settings):
        gateway.head = 500
        gateway.emit("PoolCore", "BetPlaced", bet_args(1, BETTORS[0], 1), 400)

        await self._indexer(gateway, cursor_store, settings).poll_once()

        assert self.seen == []
        assert cursor_store.cursors[("PoolCore", "BetPlaced")] == 500

    async def test_failed_window_not_advanced(self, gateway, cursor_store, settings):
        """A handler failure stops the contract at the last good window."""
        gateway.head = 30
        cursor_store.cursors[("PoolCore", "BetPlaced")] = 0
        cursor_store.cursors[("Oddyssey", "SlipPlaced")] = 0
        gateway.emit("PoolCore", "BetPlaced", bet_args(1, BETTORS[0], 1), 5)
        gateway.emit("PoolCore", "BetPlaced", bet_args(1, BETTORS[1], 1), 15)
        gateway.emit("Oddyssey", "SlipPlaced", {"slipId": 1}, 25)
        failures = {"left": 1}

        async def flaky(event):
            if event.block_number == 15 and failures["left"]:
                failures["left"] -= 1
                raise RuntimeError("database unavailable")
            self.seen.append((event.contract, event.event, event.block_number, event.log_index))

        async def record(event):
            self.seen.append((event.contract, event.event, event.block_number, event.log_index))

        indexer = self._indexer(
            gateway,
            cursor_store,
            settings,
            {("PoolCore", "BetPlaced"): flaky, ("Oddyssey", "SlipPlaced"): record},
        )

        stats = await indexer.poll_once()

        assert stats["failed_contracts"] == ["PoolCore"]
        assert cursor_store.cursors[("PoolCore", "BetPlaced")] == 10
        assert cursor_store.cursors[("Oddyssey", "SlipPlaced")] == 30

        stats = await indexer.poll_once()

        assert stats["failed_contracts"] == []
        assert cursor_store.cursors[("PoolCore", "BetPlaced")] == 30
        assert ("PoolCore", "BetPlaced", 15, 0) in self.seen

    async def test_fetch_failure_isolated_per_contract(self, gateway, cursor_store, settings):
        gateway.head = 10
        cursor_store.cursors[("PoolCore", "BetPlaced")] = 0
        cursor_store.cursors[("Oddyssey", "SlipPlaced")] = 0
        gateway.fail("fetch_events:Oddyssey", RuntimeError("getLogs 502"))

        stats = await self._indexer(gateway, cursor_store, settings).poll_once()

        assert stats["failed_contracts"] == ["Oddyssey"]
        assert cursor_store.cursors[("Oddyssey", "SlipPlaced")] == 0
        assert cursor_store.cursors[("PoolCore", "BetPlaced")] == 10

    async def test_run_forever_stops_on_event(self, gateway, cursor_store, settings):
        indexer = self._indexer(gateway, cursor_store, settings)
        stop = asyncio.Event()
        indexer.poll_once = AsyncMock(side_effect=lambda: stop.set())

        await asyncio.wait_for(indexer.run_forever(stop), timeout=1)

        indexer.poll_once.assert_awaited_once()


class TestFallbackReconciliation:
    """Missed BetPlaced events are recovered by the fallback sync."""

    def _full_indexer(self, gateway, pool_store, cursors, settings, oddyssey_store, result_store):
        pipeline = OddysseyPipeline(
            gateway, oddyssey_store, result_store, CycleSelector(result_store, settings), settings
        )
        handlers = build_handlers(
            pipeline, PoolEventHandlers(gateway, pool_store), PoolSettlement(gateway, pool_store)
        )
        return EventIndexer(gateway, cursors, handlers, settings)

    def _emit_bets(self, gateway):
        gateway.emit("PoolCore", "BetPlaced", bet_args(7, BETTORS[0], 10**17), 61, 0, tx_hash="0x" + "a1" * 32)
        gateway.emit("PoolCore", "BetPlaced", bet_args(7, BETTORS[1], 2 * 10**17), 61, 4, tx_hash="0x" + "a1" * 32)
        gateway.emit("PoolCore", "BetPlaced", bet_args(7, BETTORS[2], 3 * 10**17), 64, 1, tx_hash="0x" + "b2" * 32)

    async def test_missed_bets_recovered(self, gateway, settings, oddyssey_store, result_store):
        gateway.pools[7] = pool_record(7)
        gateway.emit("PoolCore", "PoolCreated", {"poolId": 7}, 50)
        gateway.head = 60

        # Live run up to block 60, then the process stops.
        live_store, live_cursors = FakePoolStore(), FakeCursorStore()
        for event in POOL_CORE_EVENTS:
            live_cursors.cursors[("PoolCore", event)] = 40
        indexer = self._full_indexer(gateway, live_store, live_cursors, settings, oddyssey_store, result_store)
        await indexer.poll_once()
        assert live_store.bets == {}

        self._emit_bets(gateway)
        gateway.head = 70
        stats = await indexer.reconcile(lookback_blocks=30, contracts=["PoolCore"])

        assert stats["from_block"] == 41
        bets = await live_store.bets_for_pool(7)
        assert [(b.tx_hash, b.log_index, b.amount, b.bettor_address) for b in bets] == [
            ("0x" + "a1" * 32, 0, 10**17, BETTORS[0]),
            ("0x" + "a1" * 32, 4, 2 * 10**17, BETTORS[1]),
            ("0x" + "b2" * 32, 1, 3 * 10**17, BETTORS[2]),
        ]

        # Same aggregate as an indexer that never stopped.
        reference_store, reference_cursors = FakePoolStore(), FakeCursorStore()
        for key in live_cursors.cursors:
            reference_cursors.cursors[key] = 40
        reference = self._full_indexer(
            gateway, reference_store, reference_cursors, settings, oddyssey_store, result_store
        )
        await reference.poll_once()
        assert live_store.pools[7].total_bettor_stake == reference_store.pools[7].total_bettor_stake == 6 * 10**17

    async def test_reconcile_is_idempotent(self, gateway, settings, oddyssey_store, result_store):
        gateway.pools[7] = pool_record(7)
        gateway.emit("PoolCore", "PoolCreated", {"poolId": 7}, 50)
        self._emit_bets(gateway)
        store, cursors = FakePoolStore(), FakeCursorStore()
        indexer = self._full_indexer(gateway, store, cursors, settings, oddyssey_store, result_store)

        await indexer.reconcile(contracts=["PoolCore"])
        once = copy.deepcopy((store.pools, store.bets))
        await indexer.reconcile(contracts=["PoolCore"])

        assert (store.pools, store.bets) == once
        assert cursors.cursors[("PoolCore", "BetPlaced")] == gateway.head

    async def test_lagging_cursor_replayed_from_cursor(self, gateway, settings, oddyssey_store, result_store):
        """A cursor older than the lookback window is replayed from the cursor, not the window start."""
        gateway.pools[7] = pool_record(7)
        gateway.emit("PoolCore", "PoolCreated", {"poolId": 7}, 15)
        gateway.emit("PoolCore", "BetPlaced", bet_args(7, BETTORS[0], 10**17), 20, 0, tx_hash="0x" + "c3" * 32)
        gateway.head = 200
        store, cursors = FakePoolStore(), FakeCursorStore()
        for event in POOL_CORE_EVENTS:
            cursors.cursors[("PoolCore", event)] = 10
        indexer = self._full_indexer(gateway, store, cursors, settings, oddyssey_store, result_store)

        stats = await indexer.reconcile(lookback_blocks=30, contracts=["PoolCore"])

        assert stats["from_block"] == 171
        assert ("PoolCore", 11, 20) in gateway.fetch_calls
        assert [(b.tx_hash, b.amount) for b in await store.bets_for_pool(7)] == [("0x" + "c3" * 32, 10**17)]
        assert cursors.cursors[("PoolCore", "BetPlaced")] == 200
