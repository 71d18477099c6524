"""Unit tests for the chain gateway.

CRITICAL TESTS:
- resolve_cycle MUST refuse NotSet results before any RPC
- A reverting gas estimate falls back to the write type's ceiling
- A write is refused when the signer cannot pay for it
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_utils import function_signature_to_4byte_selector
from web3.exceptions import ContractLogicError, Web3Exception

from bitredict.errors import (
    IncompleteResults,
    InsufficientBalanceError,
    InvariantViolation,
    NotFoundError,
    TransientRpcError,
)
from bitredict.services.canonical import CycleState, MoneylineResult, OverUnderResult
from bitredict.services.chain import ChainGateway, GasEstimate, GasPolicy, decode_predictions
from bitredict.services.chain.abi import FALLBACK_ABIS, load_abi

SIGNER = "0x" + "ab" * 20
ALL_SET = [(MoneylineResult.HOME_WIN, OverUnderResult.OVER)] * 10


def make_gateway(settings):
    gateway = ChainGateway(settings, w3=MagicMock(), account=MagicMock(address=SIGNER))
    gateway._sleep = AsyncMock()
    return gateway


class TestResolveGuard:
    """Test the pre-flight guard on resolveDailyCycle."""

    def setup_method(self):
        self.send = AsyncMock()

    @pytest.mark.parametrize("index", [0, 4, 9])
    async def test_not_set_moneyline_refused(self, settings, index):
        gateway = make_gateway(settings)
        gateway._send = self.send
        results = list(ALL_SET)
        results[index] = (MoneylineResult.NOT_SET, OverUnderResult.UNDER)

        with pytest.raises(InvariantViolation) as exc_info:
            await gateway.resolve_cycle(5, results)

        assert isinstance(exc_info.value, IncompleteResults)
        assert "Cannot resolve cycle 5: 1 match(es) have NotSet results" in exc_info.value.message
        self.send.assert_not_awaited()
        gateway.w3.eth.contract.assert_not_called()

    async def test_not_set_over_under_refused(self, settings):
        gateway = make_gateway(settings)
        gateway._send = self.send
        results = list(ALL_SET)
        results[2] = (MoneylineResult.DRAW, OverUnderResult.NOT_SET)
        results[7] = (MoneylineResult.NOT_SET, OverUnderResult.NOT_SET)

        with pytest.raises(IncompleteResults, match="2 match\\(es\\) have NotSet"):
            await gateway.resolve_cycle(8, results)
        self.send.assert_not_awaited()

    async def test_wrong_result_count_refused(self, settings):
        gateway = make_gateway(settings)
        gateway._send = self.send

        with pytest.raises(IncompleteResults):
            await gateway.resolve_cycle(5, ALL_SET[:9])
        self.send.assert_not_awaited()

    async def test_complete_results_are_sent(self, settings):
        gateway = make_gateway(settings)
        gateway._send = self.send
        gateway._function = MagicMock(return_value="resolve-call")

        await gateway.resolve_cycle(5, ALL_SET)

        gateway._function.assert_called_once_with("Oddyssey", "resolveDailyCycle", 5, [(1, 1)] * 10)
        self.send.assert_awaited_once_with("resolveDailyCycle", "resolve-call")


class TestGas:
    """Test gas estimation and the balance pre-check."""

    def setup_method(self):
        self.fn_call = MagicMock()

    async def test_estimate_buffered(self, settings):
        gateway = make_gateway(settings)
        gateway.gas_price = AsyncMock(return_value=10)
        self.fn_call.estimate_gas = AsyncMock(return_value=100_000)

        gas = await gateway.estimate_gas("evaluateSlip", self.fn_call)

        assert gas.gas_limit == 120_000
        assert gas.total_cost_wei == 1_200_000
        assert gas.used_fallback is False

    async def test_reverting_estimate_uses_fallback_ceiling(self, settings):
        gateway = make_gateway(settings)
        gateway.gas_price = AsyncMock(return_value=10)
        self.fn_call.estimate_gas = AsyncMock(side_effect=ContractLogicError("execution reverted"))

        gas = await gateway.estimate_gas("evaluateSlip", self.fn_call)

        assert gas.used_fallback is True
        assert gas.gas_limit == 600_000

    async def test_transient_estimate_failure_propagates(self, settings):
        gateway = make_gateway(settings)
        gateway.gas_price = AsyncMock(return_value=10)
        self.fn_call.estimate_gas = AsyncMock(side_effect=Web3Exception("connection reset"))

        with pytest.raises(TransientRpcError):
            await gateway.estimate_gas("evaluateSlip", self.fn_call)

    async def test_insufficient_balance_refuses_before_sending(self, settings):
        gateway = make_gateway(settings)
        gateway.estimate_gas = AsyncMock(
            return_value=GasEstimate("evaluateSlip", 100_000, 120_000, 10, 1_200_000)
        )
        gateway.get_balance = AsyncMock(return_value=1_000_000)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await gateway._send("evaluateSlip", self.fn_call)

        assert exc_info.value.details == {"balance_wei": 1_000_000, "required_wei": 1_200_000}
        self.fn_call.build_transaction.assert_not_called()
        gateway.w3.eth.send_raw_transaction.assert_not_called()

    def test_policy_from_defaults(self, settings):
        policy = GasPolicy.from_config(settings.load_defaults_config())

        assert policy.rule("startDailyCycle").fallback_limit == 4_000_000
        assert policy.rule("resolveDailyCycle").buffer == 0.5
        assert policy.rule("unknownWrite").fallback_limit == 500_000
        assert policy.adjust_price(100) == 110


class TestReads:
    """Test typed reads over mocked contract calls."""

    async def test_transient_read_retried(self, settings):
        gateway = make_gateway(settings)
        gateway.contract = MagicMock()
        fn_call = gateway.contract.return_value.functions.__getitem__.return_value.return_value
        fn_call.call = AsyncMock(side_effect=[Web3Exception("boom"), 7])

        assert await gateway.get_current_cycle_id() == 7
        gateway._sleep.assert_awaited_once_with(1)

    async def test_get_slip_decodes_predictions(self, settings):
        gateway = make_gateway(settings)
        predictions = [(100 + i, i % 2, "Home" if i % 2 == 0 else "Over", 2100) for i in range(10)]
        gateway._read = AsyncMock(return_value=(SIGNER, 3, 1_760_000_000, predictions, 0, 0, False))

        slip = await gateway.get_slip(12)

        assert slip.cycle_id == 3
        assert slip.is_evaluated is False
        assert [p["match_id"] for p in slip.predictions] == list(range(100, 110))
        assert slip.predictions[1] == {
            "match_id": 101,
            "bet_type": "OverUnder",
            "selection": "Over",
            "selected_odd": 2100,
        }

    async def test_unknown_slip_is_not_found(self, settings):
        gateway = make_gateway(settings)
        gateway._read = AsyncMock(return_value=("0x" + "00" * 20, 0, 0, [], 0, 0, False))

        with pytest.raises(NotFoundError):
            await gateway.get_slip(999)

    async def test_cycle_status(self, settings):
        gateway = make_gateway(settings)
        gateway._read = AsyncMock(return_value=(True, 3, 1_760_000_000, 10**18, 4, False))

        status = await gateway.get_cycle_status(2)

        assert status.state == CycleState.RESOLVED
        assert status.slip_count == 4
        assert status.prize_pool == 10**18


class TestDecodePredictions:
    def test_array_and_dict_forms(self):
        raw = [
            (100, 0, b"\x01" * 2, 1800),
            {"matchId": 101, "betType": 1, "selection": "Under", "selectedOdd": 1950},
        ]

        decoded = decode_predictions(raw)

        assert decoded[0] == {"match_id": 100, "bet_type": "Moneyline", "selection": "0x0101", "selected_odd": 1800}
        assert decoded[1]["bet_type"] == "OverUnder"
        assert decoded[1]["selection"] == "Under"


class TestAbiLoading:
    """Test artifact discovery with the built-in fallback."""

    def test_missing_artifacts_use_fallback(self, tmp_path):
        assert load_abi("PoolCore", tmp_path) is FALLBACK_ABIS["PoolCore"]

    def test_incomplete_artifact_rejected(self, tmp_path):
        (tmp_path / "PoolCore.json").write_text(json.dumps({"abi": [{"type": "function", "name": "foo", "inputs": []}]}))

        assert load_abi("PoolCore", tmp_path) is FALLBACK_ABIS["PoolCore"]

    def test_complete_artifact_preferred(self, tmp_path):
        artifact_dir = tmp_path / "contracts" / "PoolCore.sol"
        artifact_dir.mkdir(parents=True)
        abi = FALLBACK_ABIS["PoolCore"] + [{"type": "function", "name": "extra", "inputs": []}]
        (artifact_dir / "PoolCore.json").write_text(json.dumps({"abi": abi}))

        loaded = load_abi("PoolCore", tmp_path)

        assert any(entry.get("name") == "extra" for entry in loaded)

    def test_encode_settle_pool(self, settings):
        gateway = ChainGateway(settings, account=MagicMock(address=SIGNER))
        calldata = gateway.encode_settle_pool(7, b"\x01".ljust(32, b"\x00"))

        selector = function_signature_to_4byte_selector("settlePool(uint256,bytes32)").hex()
        assert calldata.removeprefix("0x").startswith(selector)
        assert len(calldata.removeprefix("0x")) == 8 + 64 * 2
