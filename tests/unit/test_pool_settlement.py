"""Unit tests for guided pool settlement.

CRITICAL TESTS:
- An indexed market id hash finds its pool even when the stored id carries control characters
- Only the pool whose market id matches is settled
- Known settlement reverts end quietly; anything else propagates
"""

import pytest

from bitredict.errors import TxRevertError, ValidationError, classify_revert
from bitredict.services.settlement import PoolSettlement, outcome_bytes32
from bitredict.store.pools import market_hash

from fakes import pool_record

HOME = b"Home".ljust(32, b"\x00")
AWAY = b"Away".ljust(32, b"\x00")


class TestOutcomeBytes32:
    def test_bytes_padded(self):
        assert outcome_bytes32(b"Away") == AWAY

    def test_hex_string_decoded(self):
        assert outcome_bytes32("0x" + b"Away".hex()) == AWAY

    def test_text_encoded(self):
        assert outcome_bytes32("Away") == AWAY

    def test_oversized_rejected(self):
        with pytest.raises(ValidationError):
            outcome_bytes32(b"x" * 33)


class TestPoolSettlement:
    """Test OutcomeSubmitted handling end to end against the fake chain."""

    @pytest.fixture(autouse=True)
    def _settlement(self, gateway, pool_store, clock):
        self.gateway = gateway
        self.pools = pool_store
        self.settlement = PoolSettlement(gateway, pool_store, clock=clock)

    async def seed_pools(self):
        for pool in (pool_record(7, "\x01\x02Bayern vs Union"), pool_record(8, "Dortmund vs Koln")):
            await self.pools.upsert_pool(pool)
            self.gateway.pools[pool.pool_id] = pool

    def outcome_event(self, market_id, result=b"Away"):
        return self.gateway.emit(
            "GuidedOracle",
            "OutcomeSubmitted",
            {"marketId": bytes.fromhex(market_hash(market_id)[2:]), "resultData": result},
            150,
        )

    async def test_settles_pool_found_through_lookup(self):
        """The event carries keccak("Bayern vs Union"); the stored id has two leading control bytes."""
        await self.seed_pools()

        outcomes = await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        assert [o["pool_id"] for o in outcomes] == [7]
        assert outcomes[0]["status"] == "settled"
        settled = self.pools.pools[7]
        assert settled.is_settled is True
        assert settled.result == "0x" + AWAY.hex()
        assert settled.creator_side_won is True
        assert settled.settlement_tx_hash == outcomes[0]["tx_hash"]
        assert self.pools.pools[8].is_settled is False

    async def test_settles_pool_found_by_rehash(self):
        await self.seed_pools()

        self.pools.lookup.clear()

        outcomes = await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        assert [o["pool_id"] for o in outcomes] == [7]
        assert self.pools.pools[7].is_settled is True
        assert self.pools.pools[8].is_settled is False

    async def test_matching_outcome_means_creator_lost(self):
        await self.seed_pools()

        await self.settlement.handle_outcome_submitted(self.outcome_event("Dortmund vs Koln", b"Home"))

        assert self.pools.pools[8].creator_side_won is False

    async def test_unknown_market_ignored(self):
        await self.seed_pools()

        outcomes = await self.settlement.handle_outcome_submitted(self.outcome_event("Nobody vs Nothing"))

        assert outcomes == []
        assert self.gateway.writes == []

    async def test_settles_through_oracle_execute_call(self):
        await self.seed_pools()

        await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        (target, calldata), = self.gateway.writes_of("executeCall")
        assert target.lower() == "0x" + "22" * 20
        assert calldata == ("settlePool", 7, AWAY)

    async def test_already_settled_syncs_chain_result(self):
        await self.seed_pools()

        self.gateway.pools[7].is_settled = True
        self.gateway.pools[7].result = "0x" + HOME.hex()
        self.gateway.pools[7].creator_side_won = False

        outcomes = await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        assert outcomes == [{"pool_id": 7, "status": "already_settled"}]
        stored = self.pools.pools[7]
        assert stored.is_settled is True
        assert stored.result == "0x" + HOME.hex()
        assert stored.creator_side_won is False

    @pytest.mark.parametrize(
        "revert,reason",
        [
            ("execution reverted: Only guided oracle", "only_guided_oracle"),
            ("execution reverted: Event not ended yet", "event_not_ended"),
        ],
    )
    async def test_known_reverts_skip(self, revert, reason):
        await self.seed_pools()

        self.gateway.fail("executeCall", classify_revert(revert))

        outcomes = await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        assert outcomes == [{"pool_id": 7, "status": "skipped", "reason": reason}]
        assert self.pools.pools[7].is_settled is False

    async def test_unknown_revert_propagates(self):
        await self.seed_pools()

        self.gateway.fail("executeCall", classify_revert("execution reverted: paused"))

        with pytest.raises(TxRevertError) as exc_info:
            await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        assert exc_info.value.classified is False
        assert self.pools.pools[7].is_settled is False

    async def test_settled_pool_not_matched_again(self):
        await self.seed_pools()

        await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        again = await self.settlement.handle_outcome_submitted(self.outcome_event("Bayern vs Union"))

        assert again == []
        assert len(self.gateway.writes_of("executeCall")) == 1

