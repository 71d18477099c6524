"""EVM chain gateway.

Typed access to the Oddyssey, PoolCore, GuidedOracle and ReputationSystem
contracts through one JSON-RPC endpoint and one signing key:

- Reads with a per-call timeout and retry with exponential backoff
- Writes through estimate -> balance check -> send -> receipt
- Error classification into the backend error taxonomy
- Log fetching and decoding for the event indexer
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from eth_account import Account
from eth_utils import event_abi_to_log_topic, to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception
from web3.logs import DISCARD

from bitredict.config import Settings, get_settings
from bitredict.errors import (
    BitredictError,
    ErrorKind,
    IncompleteResults,
    InsufficientBalanceError,
    NotFoundError,
    TransientRpcError,
    ValidationError,
    classify_revert,
)
from bitredict.services.canonical import (
    BetType,
    CycleState,
    MoneylineResult,
    OracleType,
    OverUnderResult,
)
from bitredict.services.chain.abi import find_entry, load_abi
from bitredict.services.chain.gas import GasEstimate, GasPolicy
from bitredict.store.records import PoolRecord

logger = structlog.get_logger(__name__)

MATCHES_PER_CYCLE = 10
RECEIPT_TIMEOUT_SECONDS = 180
READ_RETRIES = 3


def to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def _timestamp(value: int) -> datetime | None:
    return datetime.fromtimestamp(int(value), tz=timezone.utc) if value else None


def _is_zero_address(value: Any) -> bool:
    return not value or int(str(value), 16) == 0


@dataclass
class ChainMatch:
    """One of a cycle's 10 matches. Odds are decimal odds x1000."""

    id: int
    start_time: int
    odds_home: int
    odds_draw: int
    odds_away: int
    odds_over: int
    odds_under: int
    moneyline: MoneylineResult = MoneylineResult.NOT_SET
    over_under: OverUnderResult = OverUnderResult.NOT_SET

    def as_args(self) -> tuple:
        return (
            self.id,
            self.start_time,
            self.odds_home,
            self.odds_draw,
            self.odds_away,
            self.odds_over,
            self.odds_under,
            (int(self.moneyline), int(self.over_under)),
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time,
            "odds_home": self.odds_home,
            "odds_draw": self.odds_draw,
            "odds_away": self.odds_away,
            "odds_over": self.odds_over,
            "odds_under": self.odds_under,
        }


@dataclass
class ChainSlip:
    slip_id: int
    player: str
    cycle_id: int
    placed_at: int
    predictions: list[dict[str, Any]]
    final_score: int
    correct_count: int
    is_evaluated: bool


@dataclass
class CycleStatus:
    cycle_id: int
    exists: bool
    state: CycleState
    end_time: int
    prize_pool: int
    slip_count: int
    has_winner: bool


@dataclass
class TxResult:
    tx_hash: str
    block_number: int
    gas_used: int
    gas: GasEstimate
    receipt: Any = None


@dataclass
class ChainEvent:
    contract: str
    event: str
    args: dict[str, Any]
    block_number: int
    log_index: int
    tx_hash: str
    raw: Any = field(default=None, repr=False)


def decode_predictions(raw: list[Any]) -> list[dict[str, Any]]:
    """Contract array form [matchId, betType, selection, selectedOdd] -> dicts."""
    predictions = []
    for item in raw:
        if isinstance(item, dict):
            match_id, bet_type = item["matchId"], item["betType"]
            selection, selected_odd = item["selection"], item["selectedOdd"]
        else:
            match_id, bet_type, selection, selected_odd = item[0], item[1], item[2], item[3]
        predictions.append(
            {
                "match_id": int(match_id),
                "bet_type": "Moneyline" if int(bet_type) == BetType.MONEYLINE else "OverUnder",
                "selection": to_hex(selection) if isinstance(selection, (bytes, bytearray)) else selection,
                "selected_odd": int(selected_odd),
            }
        )
    return predictions


def _named(entry: dict[str, Any] | None, values: Any) -> dict[str, Any]:
    """Zip a call's return values with the ABI output names."""
    if entry is None:
        raise ValueError("Unknown ABI entry")
    if not isinstance(values, (list, tuple)):
        values = [values]
    names = [o.get("name") or f"_{i}" for i, o in enumerate(entry["outputs"])]
    if len(names) == 1 and len(values) != 1:
        values = [values]
    return dict(zip(names, values))


class ChainGateway:
    """
    Typed chain access for one signer.

    Outgoing transactions are serialized on an asyncio.Lock; concurrent writers
    in other processes must use a different key or external coordination.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        w3: AsyncWeb3 | None = None,
        account: Any = None,
        gas_policy: GasPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(
                self.settings.rpc_url,
                request_kwargs={"timeout": self.settings.rpc_timeout_seconds},
            )
        )
        if account is None and self.settings.signing_key:
            account = Account.from_key(self.settings.signing_key)
        self.account = account
        self.gas_policy = gas_policy or GasPolicy.from_config(self.settings.load_defaults_config())
        self.rpc_timeout = self.settings.rpc_timeout_seconds
        self._abis: dict[str, list[dict[str, Any]]] = {}
        self._contracts: dict[str, Any] = {}
        self._tx_lock = asyncio.Lock()
        self._sleep = asyncio.sleep

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        if self.account is None:
            raise ValidationError("No signing key configured (PRIVATE_KEY / ORACLE_PRIVATE_KEY)")
        return self.account.address

    def contract_address(self, name: str) -> str:
        address = {
            "Oddyssey": self.settings.oddyssey_address,
            "PoolCore": self.settings.pool_core_address,
            "GuidedOracle": self.settings.guided_oracle_address,
            "ReputationSystem": self.settings.reputation_system_address,
        }.get(name)
        if not address:
            raise ValidationError(f"No address configured for contract {name}")
        return to_checksum_address(address)

    def abi(self, name: str) -> list[dict[str, Any]]:
        if name not in self._abis:
            self._abis[name] = load_abi(name, self.settings.abi_dir)
        return self._abis[name]

    def contract(self, name: str):
        if name not in self._contracts:
            self._contracts[name] = self.w3.eth.contract(
                address=self.contract_address(name), abi=self.abi(name)
            )
        return self._contracts[name]

    async def _rpc(self, awaitable, what: str):
        """Await one RPC with the per-call ceiling, mapping failures to error kinds."""
        try:
            async with asyncio.timeout(self.rpc_timeout):
                return await awaitable
        except ContractLogicError as e:
            raise classify_revert(str(e)) from e
        except TimeoutError as e:
            raise TransientRpcError(f"{what} timed out after {self.rpc_timeout}s") from e
        except Web3Exception as e:
            raise TransientRpcError(f"{what} failed: {e}") from e
        except OSError as e:
            raise TransientRpcError(f"{what} connection error: {e}") from e

    async def _read(self, contract: str, function: str, *args):
        """Call a view function, retrying transient failures with backoff."""
        for attempt in range(READ_RETRIES):
            try:
                fn = self.contract(contract).functions[function](*args)
                return await self._rpc(fn.call(), f"{contract}.{function}")
            except TransientRpcError as e:
                if attempt == READ_RETRIES - 1:
                    raise
                wait_time = 2**attempt
                logger.warning(
                    "rpc_read_retrying",
                    contract=contract,
                    function=function,
                    attempt=attempt,
                    wait_time=wait_time,
                    error=str(e),
                )
                await self._sleep(wait_time)

    # ------------------------------------------------------------------
    # Chain state
    # ------------------------------------------------------------------

    async def get_block_number(self) -> int:
        return int(await self._rpc(self.w3.eth.block_number, "eth_blockNumber"))

    async def gas_price(self) -> int:
        node_price = await self._rpc(self.w3.eth.gas_price, "eth_gasPrice")
        return self.gas_policy.adjust_price(int(node_price))

    async def get_balance(self, address: str | None = None) -> int:
        return int(await self._rpc(self.w3.eth.get_balance(address or self.address), "eth_getBalance"))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_current_cycle_id(self) -> int:
        return int(await self._read("Oddyssey", "dailyCycleId"))

    async def get_slip_count(self) -> int:
        return int(await self._read("Oddyssey", "slipCount"))

    async def get_entry_fee(self) -> int:
        return int(await self._read("Oddyssey", "entryFee"))

    async def get_cycle_status(self, cycle_id: int) -> CycleStatus:
        values = _named(
            find_entry(self.abi("Oddyssey"), "function", "getCycleStatus"),
            await self._read("Oddyssey", "getCycleStatus", cycle_id),
        )
        return CycleStatus(
            cycle_id=cycle_id,
            exists=bool(values["exists"]),
            state=CycleState(int(values["state"])),
            end_time=int(values["endTime"]),
            prize_pool=int(values["prizePool"]),
            slip_count=int(values["cycleSlipCount"]),
            has_winner=bool(values["hasWinner"]),
        )

    async def is_cycle_resolved(self, cycle_id: int) -> bool:
        return bool(await self._read("Oddyssey", "isCycleResolved", cycle_id))

    async def get_daily_matches(self, cycle_id: int) -> list[ChainMatch]:
        raw = await self._read("Oddyssey", "getDailyMatches", cycle_id)
        matches = []
        for m in raw:
            result = m[7] if len(m) > 7 else (0, 0)
            matches.append(
                ChainMatch(
                    id=int(m[0]),
                    start_time=int(m[1]),
                    odds_home=int(m[2]),
                    odds_draw=int(m[3]),
                    odds_away=int(m[4]),
                    odds_over=int(m[5]),
                    odds_under=int(m[6]),
                    moneyline=MoneylineResult(int(result[0])),
                    over_under=OverUnderResult(int(result[1])),
                )
            )
        return matches

    async def get_slip(self, slip_id: int) -> ChainSlip:
        values = _named(
            find_entry(self.abi("Oddyssey"), "function", "getSlip"),
            await self._read("Oddyssey", "getSlip", slip_id),
        )
        if _is_zero_address(values["player"]):
            raise NotFoundError(f"Slip {slip_id} not found on chain", details={"slip_id": slip_id})
        return ChainSlip(
            slip_id=slip_id,
            player=values["player"],
            cycle_id=int(values["cycleId"]),
            placed_at=int(values["placedAt"]),
            predictions=decode_predictions(values["predictions"]),
            final_score=int(values["finalScore"]),
            correct_count=int(values["correctCount"]),
            is_evaluated=bool(values["isEvaluated"]),
        )

    async def get_pool(self, pool_id: int) -> PoolRecord:
        values = _named(
            find_entry(self.abi("PoolCore"), "function", "getPool"),
            await self._read("PoolCore", "getPool", pool_id),
        )
        if _is_zero_address(values["creator"]):
            raise NotFoundError(f"Pool {pool_id} not found on chain", details={"pool_id": pool_id})
        return PoolRecord(
            pool_id=pool_id,
            creator_address=values["creator"],
            odds=int(values["odds"]),
            event_start_time=_timestamp(values["eventStartTime"]),
            event_end_time=_timestamp(values["eventEndTime"]),
            betting_end_time=_timestamp(values["bettingEndTime"]),
            market_id=values["marketId"],
            predicted_outcome=to_hex(values["predictedOutcome"]),
            creator_stake=int(values["creatorStake"]),
            total_creator_side_stake=int(values["totalCreatorSideStake"]),
            total_bettor_stake=int(values["totalBettorStake"]),
            league=values.get("league"),
            category=values.get("category"),
            market_type=int(values["marketType"]),
            oracle_type=OracleType.from_code(values["oracleType"]).value,
            is_private=bool(values["isPrivate"]),
            use_bitr=bool(values["usesBitr"]),
            is_settled=bool(values["settled"]),
            creator_side_won=bool(values["creatorSideWon"]) if values["settled"] else None,
            result=to_hex(values["result"]) if values["settled"] else None,
        )

    async def get_outcome(self, market_id: str) -> tuple[bool, bytes]:
        is_set, result_data = await self._read("GuidedOracle", "getOutcome", market_id)
        return bool(is_set), bytes(result_data)

    async def get_reputation(self, address: str) -> int:
        return int(await self._read("ReputationSystem", "getUserReputation", to_checksum_address(address)))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def estimate_gas(self, write_type: str, fn_call, value: int = 0) -> GasEstimate:
        """Estimate a write, falling back to the write type's ceiling when estimation reverts."""
        gas_price = await self.gas_price()
        try:
            estimate = await self._rpc(
                fn_call.estimate_gas({"from": self.address, "value": value}),
                f"estimate {write_type}",
            )
        except BitredictError as e:
            if e.kind != ErrorKind.TX_REVERT:
                raise
            logger.warning("gas_estimate_reverted", write_type=write_type, error=e.message)
            return self.gas_policy.build(write_type, None, gas_price)
        return self.gas_policy.build(write_type, int(estimate), gas_price)

    async def _revert_reason(self, fn_call, value: int, block_number: int) -> str:
        try:
            await fn_call.call({"from": self.address, "value": value}, block_identifier=block_number)
        except ContractLogicError as e:
            return str(e)
        except Web3Exception as e:
            return f"reverted ({e})"
        return "reverted without reason"

    async def _send(self, write_type: str, fn_call, value: int = 0) -> TxResult:
        async with self._tx_lock:
            gas = await self.estimate_gas(write_type, fn_call, value)
            balance = await self.get_balance()
            required = gas.total_cost_wei + value
            if balance < required:
                logger.error(
                    "tx_refused_insufficient_balance",
                    write_type=write_type,
                    balance=balance,
                    required=required,
                )
                raise InsufficientBalanceError(balance, required)

            nonce = await self._rpc(
                self.w3.eth.get_transaction_count(self.address, "pending"), "eth_getTransactionCount"
            )
            tx_params: dict[str, Any] = {
                "from": self.address,
                "nonce": nonce,
                "gas": gas.gas_limit,
                "gasPrice": gas.gas_price,
                "value": value,
            }
            if self.settings.chain_id is not None:
                tx_params["chainId"] = self.settings.chain_id
            tx = await self._rpc(fn_call.build_transaction(tx_params), f"build {write_type}")
            signed = self.account.sign_transaction(tx)
            tx_hash = await self._rpc(
                self.w3.eth.send_raw_transaction(signed.raw_transaction), f"send {write_type}"
            )
            logger.info(
                "tx_sent",
                write_type=write_type,
                tx_hash=to_hex(tx_hash),
                gas_limit=gas.gas_limit,
                used_fallback=gas.used_fallback,
            )
            try:
                receipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS
                )
            except Web3Exception as e:
                raise TransientRpcError(
                    f"No receipt for {write_type} {to_hex(tx_hash)}: {e}",
                    details={"tx_hash": to_hex(tx_hash)},
                ) from e

        if receipt["status"] == 0:
            reason = await self._revert_reason(fn_call, value, receipt["blockNumber"])
            logger.error("tx_reverted", write_type=write_type, tx_hash=to_hex(tx_hash), reason=reason)
            raise classify_revert(reason, tx_hash=to_hex(tx_hash))

        result = TxResult(
            tx_hash=to_hex(tx_hash),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            gas=gas,
            receipt=receipt,
        )
        logger.info("tx_confirmed", write_type=write_type, tx_hash=result.tx_hash, gas_used=result.gas_used)
        return result

    def _function(self, contract: str, function: str, *args):
        return self.contract(contract).functions[function](*args)

    async def start_daily_cycle(self, matches: list[ChainMatch]) -> TxResult:
        if len(matches) != MATCHES_PER_CYCLE:
            raise ValidationError(f"A cycle needs exactly {MATCHES_PER_CYCLE} matches, got {len(matches)}")
        return await self._send(
            "startDailyCycle",
            self._function("Oddyssey", "startDailyCycle", [m.as_args() for m in matches]),
        )

    async def resolve_cycle(
        self,
        cycle_id: int,
        results: list[tuple[MoneylineResult, OverUnderResult]],
    ) -> TxResult:
        """
        Write a cycle's 10 results on chain.

        Refuses, before any RPC, when a result is missing or any of the 20
        fields is NOT_SET.
        """
        if len(results) != MATCHES_PER_CYCLE:
            raise IncompleteResults(
                f"Cannot resolve cycle {cycle_id}: expected {MATCHES_PER_CYCLE} results, got {len(results)}",
                details={"cycle_id": cycle_id},
            )
        not_set = sum(
            1
            for moneyline, over_under in results
            if moneyline == MoneylineResult.NOT_SET or over_under == OverUnderResult.NOT_SET
        )
        if not_set:
            raise IncompleteResults(
                f"Cannot resolve cycle {cycle_id}: {not_set} match(es) have NotSet results. "
                "All matches must have valid results before resolution.",
                details={"cycle_id": cycle_id, "not_set": not_set},
            )
        return await self._send(
            "resolveDailyCycle",
            self._function(
                "Oddyssey",
                "resolveDailyCycle",
                cycle_id,
                [(int(moneyline), int(over_under)) for moneyline, over_under in results],
            ),
        )

    async def evaluate_slip(self, slip_id: int) -> TxResult:
        return await self._send("evaluateSlip", self._function("Oddyssey", "evaluateSlip", slip_id))

    async def place_slip(self, predictions: list[tuple], value: int) -> TxResult:
        if len(predictions) != MATCHES_PER_CYCLE:
            raise ValidationError(f"A slip needs exactly {MATCHES_PER_CYCLE} predictions")
        return await self._send("placeSlip", self._function("Oddyssey", "placeSlip", predictions), value)

    async def claim_prize(self, cycle_id: int) -> TxResult:
        return await self._send("claimPrize", self._function("Oddyssey", "claimPrize", cycle_id))

    async def create_pool(
        self,
        predicted_outcome: bytes,
        odds: int,
        creator_stake: int,
        event_start_time: int,
        event_end_time: int,
        league: str,
        category: str,
        market_id: str,
        is_private: bool = False,
        max_bet_per_user: int = 0,
        use_bitr: bool = False,
        oracle_type: OracleType = OracleType.GUIDED,
        market_type: int = 0,
        value: int = 0,
    ) -> TxResult:
        return await self._send(
            "createPool",
            self._function(
                "PoolCore",
                "createPool",
                predicted_outcome,
                odds,
                creator_stake,
                event_start_time,
                event_end_time,
                league,
                category,
                market_id,
                is_private,
                max_bet_per_user,
                use_bitr,
                0 if oracle_type == OracleType.GUIDED else 1,
                market_type,
            ),
            value,
        )

    async def place_bet(self, pool_id: int, amount: int, value: int = 0) -> TxResult:
        return await self._send("placeBet", self._function("PoolCore", "placeBet", pool_id, amount), value)

    async def claim_pool(self, pool_id: int) -> TxResult:
        return await self._send("claim", self._function("PoolCore", "claim", pool_id))

    async def settle_pool(self, pool_id: int, outcome: bytes) -> TxResult:
        return await self._send("settlePool", self._function("PoolCore", "settlePool", pool_id, outcome))

    def encode_settle_pool(self, pool_id: int, outcome: bytes) -> str:
        return self.contract("PoolCore").encode_abi("settlePool", args=[pool_id, outcome])

    async def execute_oracle_call(self, target: str, calldata: str | bytes) -> TxResult:
        """Run calldata against ``target`` under the guided oracle's authority."""
        return await self._send(
            "executeCall",
            self._function("GuidedOracle", "executeCall", to_checksum_address(target), calldata),
        )

    async def submit_outcome(self, market_id: str, result_data: bytes) -> TxResult:
        return await self._send(
            "submitOutcome", self._function("GuidedOracle", "submitOutcome", market_id, result_data)
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def decode_receipt_events(self, contract: str, event: str, receipt: Any) -> list[dict[str, Any]]:
        decoded = self.contract(contract).events[event]().process_receipt(receipt, errors=DISCARD)
        return [dict(item["args"]) for item in decoded]

    async def fetch_events(
        self,
        contract: str,
        event_names: list[str],
        from_block: int,
        to_block: int,
    ) -> list[ChainEvent]:
        """All subscribed events of one contract in [from_block, to_block], in block/log order."""
        abi = self.abi(contract)
        topics: dict[str, str] = {}
        for name in event_names:
            entry = find_entry(abi, "event", name)
            if entry is None:
                logger.warning("event_not_in_abi", contract=contract, event=name)
                continue
            topics[to_hex(event_abi_to_log_topic(entry)).lower()] = name
        if not topics:
            return []

        logs = await self._rpc(
            self.w3.eth.get_logs(
                {
                    "address": self.contract_address(contract),
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "topics": [list(topics)],
                }
            ),
            f"eth_getLogs {contract}",
        )
        events = []
        instance = self.contract(contract)
        for log in logs:
            name = topics.get(to_hex(log["topics"][0]).lower())
            if name is None:
                continue
            decoded = instance.events[name]().process_log(log)
            events.append(
                ChainEvent(
                    contract=contract,
                    event=name,
                    args=dict(decoded["args"]),
                    block_number=int(log["blockNumber"]),
                    log_index=int(log["logIndex"]),
                    tx_hash=to_hex(log["transactionHash"]),
                    raw=log,
                )
            )
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events
