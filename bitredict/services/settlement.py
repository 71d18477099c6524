"""Guided pool settlement.

Reacts to GuidedOracle.OutcomeSubmitted: the indexed market id arrives as its
keccak hash, so the pool is found through the reverse lookup table or, failing
that, by rehashing the stored market ids. Settlement is sent through the
oracle's executeCall so that PoolCore sees the oracle as the caller.
"""

from datetime import datetime, timezone
from typing import Any

import structlog

from bitredict.errors import TxRevertError, ValidationError
from bitredict.services.chain.gateway import ChainEvent, to_hex
from bitredict.store.pools import market_hash, market_id_variants
from bitredict.store.records import PoolRecord

logger = structlog.get_logger(__name__)

SKIP_REASONS = {"only_guided_oracle", "event_not_ended"}


def outcome_bytes32(result_data: bytes | str) -> bytes:
    """Result bytes right-padded with zeros to 32 bytes."""
    if isinstance(result_data, str):
        result_data = bytes.fromhex(result_data[2:]) if result_data.startswith("0x") else result_data.encode()
    if len(result_data) > 32:
        raise ValidationError(
            f"Outcome of {len(result_data)} bytes does not fit in bytes32",
            details={"length": len(result_data)},
        )
    return bytes(result_data).ljust(32, b"\x00")


class PoolSettlement:
    def __init__(self, gateway, pools, clock=None):
        self.gateway = gateway
        self.pools = pools
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def pools_for_hash(self, hash_hex: str) -> list[PoolRecord]:
        """Unsettled pools whose market id (raw or cleaned) hashes to ``hash_hex``."""
        hash_hex = hash_hex.lower()
        known = await self.pools.lookup_market_hash(hash_hex)
        matched = []
        for pool in await self.pools.pools_with_market():
            variants = market_id_variants(pool.market_id)
            if known is not None:
                if known in variants:
                    matched.append(pool)
            elif any(market_hash(v) == hash_hex for v in variants):
                matched.append(pool)
        if known is None and matched:
            logger.info("market_id_resolved_by_rehash", market_hash=hash_hex, pools=[p.pool_id for p in matched])
        return matched

    async def handle_outcome_submitted(self, event: ChainEvent) -> list[dict[str, Any]]:
        hash_hex = to_hex(event.args["marketId"])
        pools = await self.pools_for_hash(hash_hex)
        if not pools:
            logger.info("outcome_without_pool", market_hash=hash_hex, tx_hash=event.tx_hash)
            return []
        outcome = outcome_bytes32(event.args["resultData"])
        return [await self.settle(pool, outcome) for pool in pools]

    async def settle(self, pool: PoolRecord, outcome: bytes) -> dict[str, Any]:
        """
        Settle one pool with ``outcome``.

        Known non-retry reverts end here; anything else propagates so the
        indexer retries the window.
        """
        calldata = self.gateway.encode_settle_pool(pool.pool_id, outcome)
        try:
            tx = await self.gateway.execute_oracle_call(self.gateway.contract_address("PoolCore"), calldata)
        except TxRevertError as e:
            if e.reason == "already_settled":
                chain_pool = await self.gateway.get_pool(pool.pool_id)
                await self.pools.mark_pool_settled(
                    pool.pool_id,
                    chain_pool.result,
                    chain_pool.creator_side_won,
                    None,
                    self.clock(),
                )
                logger.info("pool_already_settled", pool_id=pool.pool_id)
                return {"pool_id": pool.pool_id, "status": "already_settled"}
            if e.reason in SKIP_REASONS:
                logger.warning("pool_settlement_skipped", pool_id=pool.pool_id, reason=e.reason)
                return {"pool_id": pool.pool_id, "status": "skipped", "reason": e.reason}
            raise

        settled = self.gateway.decode_receipt_events("PoolCore", "PoolSettled", tx.receipt)
        event = next((s for s in settled if int(s["poolId"]) == pool.pool_id), None)
        result = to_hex(event["result"]) if event else to_hex(outcome)
        creator_side_won = bool(event["creatorSideWon"]) if event else None
        await self.pools.mark_pool_settled(pool.pool_id, result, creator_side_won, tx.tx_hash, self.clock())
        logger.info(
            "pool_settled",
            pool_id=pool.pool_id,
            tx_hash=tx.tx_hash,
            result=result,
            creator_side_won=creator_side_won,
        )
        return {"pool_id": pool.pool_id, "status": "settled", "tx_hash": tx.tx_hash}
