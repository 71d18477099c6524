"""Contract ABIs.

Compiled artifacts are preferred; when none of the known artifact paths yields
an ABI covering the functions the backend calls, a built-in fallback ABI with
just those functions and events is used.
"""

import json
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

ABI = list[dict[str, Any]]


def _param(type_: str, name: str = "", components: list[dict] | None = None, indexed: bool | None = None) -> dict:
    param: dict[str, Any] = {"type": type_, "name": name}
    if components is not None:
        param["components"] = components
    if indexed is not None:
        param["indexed"] = indexed
    return param


def _fn(name: str, inputs: list[dict], outputs: list[dict] | None = None, mutability: str = "nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs or [],
        "stateMutability": mutability,
    }


def _view(name: str, inputs: list[dict], outputs: list[dict]) -> dict:
    return _fn(name, inputs, outputs, "view")


def _event(name: str, inputs: list[dict]) -> dict:
    return {"type": "event", "name": name, "inputs": inputs, "anonymous": False}


_RESULT = [_param("uint8", "moneyline"), _param("uint8", "overUnder")]
_MATCH = [
    _param("uint64", "id"),
    _param("uint64", "startTime"),
    _param("uint32", "oddsHome"),
    _param("uint32", "oddsDraw"),
    _param("uint32", "oddsAway"),
    _param("uint32", "oddsOver"),
    _param("uint32", "oddsUnder"),
    _param("tuple", "result", _RESULT),
]
_PREDICTION = [
    _param("uint64", "matchId"),
    _param("uint8", "betType"),
    _param("string", "selection"),
    _param("uint32", "selectedOdd"),
]

ODDYSSEY_ABI: ABI = [
    _fn("startDailyCycle", [_param("tuple[10]", "_matches", _MATCH)]),
    _fn("resolveDailyCycle", [_param("uint256", "_cycleId"), _param("tuple[10]", "_results", _RESULT)]),
    _fn("placeSlip", [_param("tuple[10]", "_predictions", _PREDICTION)], mutability="payable"),
    _fn("evaluateSlip", [_param("uint256", "_slipId")]),
    _fn("claimPrize", [_param("uint256", "_cycleId")]),
    _view("dailyCycleId", [], [_param("uint256")]),
    _view("slipCount", [], [_param("uint256")]),
    _view("entryFee", [], [_param("uint256")]),
    _view(
        "getCurrentCycleInfo",
        [],
        [
            _param("uint256", "cycleId"),
            _param("uint8", "state"),
            _param("uint256", "endTime"),
            _param("uint256", "prizePool"),
            _param("uint32", "cycleSlipCount"),
        ],
    ),
    _view(
        "getCycleStatus",
        [_param("uint256", "_cycleId")],
        [
            _param("bool", "exists"),
            _param("uint8", "state"),
            _param("uint256", "endTime"),
            _param("uint256", "prizePool"),
            _param("uint32", "cycleSlipCount"),
            _param("bool", "hasWinner"),
        ],
    ),
    _view("getDailyMatches", [_param("uint256", "_cycleId")], [_param("tuple[10]", "", _MATCH)]),
    _view(
        "getSlip",
        [_param("uint256", "_slipId")],
        [
            _param("address", "player"),
            _param("uint256", "cycleId"),
            _param("uint256", "placedAt"),
            _param("tuple[10]", "predictions", _PREDICTION),
            _param("uint256", "finalScore"),
            _param("uint8", "correctCount"),
            _param("bool", "isEvaluated"),
        ],
    ),
    _view("isCycleResolved", [_param("uint256", "_cycleId")], [_param("bool")]),
    _event("CycleStarted", [_param("uint256", "cycleId", indexed=True), _param("uint256", "endTime", indexed=False)]),
    _event(
        "SlipPlaced",
        [
            _param("uint256", "cycleId", indexed=True),
            _param("address", "player", indexed=True),
            _param("uint256", "slipId", indexed=True),
        ],
    ),
    _event(
        "SlipEvaluated",
        [
            _param("uint256", "slipId", indexed=True),
            _param("address", "player", indexed=True),
            _param("uint256", "cycleId", indexed=True),
            _param("uint8", "correctCount", indexed=False),
            _param("uint256", "finalScore", indexed=False),
        ],
    ),
    _event("CycleResolved", [_param("uint256", "cycleId", indexed=True), _param("uint256", "prizePool", indexed=False)]),
    _event(
        "PrizeClaimed",
        [
            _param("uint256", "cycleId", indexed=True),
            _param("address", "player", indexed=True),
            _param("uint256", "rank", indexed=False),
            _param("uint256", "amount", indexed=False),
        ],
    ),
]

POOL_CORE_ABI: ABI = [
    _fn(
        "createPool",
        [
            _param("bytes32", "_predictedOutcome"),
            _param("uint256", "_odds"),
            _param("uint256", "_creatorStake"),
            _param("uint256", "_eventStartTime"),
            _param("uint256", "_eventEndTime"),
            _param("string", "_league"),
            _param("string", "_category"),
            _param("string", "_marketId"),
            _param("bool", "_isPrivate"),
            _param("uint256", "_maxBetPerUser"),
            _param("bool", "_useBitr"),
            _param("uint8", "_oracleType"),
            _param("uint8", "_marketType"),
        ],
        mutability="payable",
    ),
    _fn("placeBet", [_param("uint256", "poolId"), _param("uint256", "amount")], mutability="payable"),
    _fn("settlePool", [_param("uint256", "poolId"), _param("bytes32", "outcome")]),
    _fn("claim", [_param("uint256", "poolId")]),
    _view(
        "getPool",
        [_param("uint256", "poolId")],
        [
            _param("address", "creator"),
            _param("uint16", "odds"),
            _param("bool", "settled"),
            _param("bool", "creatorSideWon"),
            _param("bool", "isPrivate"),
            _param("bool", "usesBitr"),
            _param("uint8", "oracleType"),
            _param("uint8", "marketType"),
            _param("uint256", "creatorStake"),
            _param("uint256", "totalCreatorSideStake"),
            _param("uint256", "totalBettorStake"),
            _param("bytes32", "predictedOutcome"),
            _param("bytes32", "result"),
            _param("string", "marketId"),
            _param("uint256", "eventStartTime"),
            _param("uint256", "eventEndTime"),
            _param("uint256", "bettingEndTime"),
            _param("string", "league"),
            _param("string", "category"),
        ],
    ),
    _event(
        "PoolCreated",
        [
            _param("uint256", "poolId", indexed=True),
            _param("address", "creator", indexed=True),
            _param("uint256", "eventStartTime", indexed=False),
            _param("uint256", "eventEndTime", indexed=False),
            _param("uint8", "oracleType", indexed=False),
            _param("uint8", "marketType", indexed=False),
            _param("string", "league", indexed=False),
            _param("string", "category", indexed=False),
        ],
    ),
    _event(
        "BetPlaced",
        [
            _param("uint256", "poolId", indexed=True),
            _param("address", "bettor", indexed=True),
            _param("uint256", "amount", indexed=False),
            _param("bool", "isForOutcome", indexed=False),
        ],
    ),
    _event(
        "LiquidityAdded",
        [
            _param("uint256", "poolId", indexed=True),
            _param("address", "provider", indexed=True),
            _param("uint256", "amount", indexed=False),
        ],
    ),
    _event(
        "PoolSettled",
        [
            _param("uint256", "poolId", indexed=True),
            _param("bytes32", "result", indexed=False),
            _param("bool", "creatorSideWon", indexed=False),
            _param("uint256", "timestamp", indexed=False),
        ],
    ),
    _event("PoolRefunded", [_param("uint256", "poolId", indexed=True), _param("string", "reason", indexed=False)]),
]

GUIDED_ORACLE_ABI: ABI = [
    _fn("submitOutcome", [_param("string", "marketId"), _param("bytes", "resultData")]),
    _fn("executeCall", [_param("address", "target"), _param("bytes", "data")], [_param("bytes")]),
    _view("getOutcome", [_param("string", "marketId")], [_param("bool", "isSet"), _param("bytes", "resultData")]),
    _event(
        "OutcomeSubmitted",
        [
            _param("string", "marketId", indexed=True),
            _param("bytes", "resultData", indexed=False),
            _param("uint256", "timestamp", indexed=False),
        ],
    ),
]

REPUTATION_SYSTEM_ABI: ABI = [
    _view("getUserReputation", [_param("address", "user")], [_param("uint256")]),
]

FALLBACK_ABIS: dict[str, ABI] = {
    "Oddyssey": ODDYSSEY_ABI,
    "PoolCore": POOL_CORE_ABI,
    "GuidedOracle": GUIDED_ORACLE_ABI,
    "ReputationSystem": REPUTATION_SYSTEM_ABI,
}

# Function signatures an artifact must cover to replace the fallback.
REQUIRED_SIGNATURES: dict[str, set[str]] = {
    "Oddyssey": {
        "startDailyCycle((uint64,uint64,uint32,uint32,uint32,uint32,uint32,(uint8,uint8))[10])",
        "resolveDailyCycle(uint256,(uint8,uint8)[10])",
        "evaluateSlip(uint256)",
        "getSlip(uint256)",
        "getDailyMatches(uint256)",
        "getCycleStatus(uint256)",
        "isCycleResolved(uint256)",
        "dailyCycleId()",
    },
    "PoolCore": {"settlePool(uint256,bytes32)", "getPool(uint256)"},
    "GuidedOracle": {"executeCall(address,bytes)", "submitOutcome(string,bytes)"},
    "ReputationSystem": {"getUserReputation(address)"},
}


def canonical_type(param: dict[str, Any]) -> str:
    type_ = param["type"]
    if type_.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){type_[len('tuple'):]}"
    return type_


def function_signatures(abi: ABI) -> set[str]:
    return {
        f"{entry['name']}({','.join(canonical_type(p) for p in entry.get('inputs', []))})"
        for entry in abi
        if entry.get("type") == "function"
    }


def artifact_paths(abi_dir: Path, name: str) -> list[Path]:
    return [
        abi_dir / f"{name}.json",
        abi_dir / "contracts" / f"{name}.sol" / f"{name}.json",
        abi_dir / "abis" / f"{name}.json",
    ]


def _read_abi(path: Path) -> ABI | None:
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("abi_artifact_unreadable", path=str(path), error=str(e))
        return None
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("abi"), list):
        return data["abi"]
    return None


def load_abi(name: str, abi_dir: Path) -> ABI:
    """Return the first artifact ABI covering the required signatures, else the fallback."""
    required = REQUIRED_SIGNATURES.get(name, set())
    for path in artifact_paths(abi_dir, name):
        if not path.exists():
            continue
        abi = _read_abi(path)
        if abi is None:
            continue
        missing = required - function_signatures(abi)
        if not missing:
            logger.info("abi_loaded", contract=name, path=str(path))
            return abi
        logger.warning("abi_artifact_incomplete", contract=name, path=str(path), missing=sorted(missing))
    logger.info("abi_fallback_used", contract=name)
    return FALLBACK_ABIS[name]


def find_entry(abi: ABI, kind: str, name: str) -> dict[str, Any] | None:
    for entry in abi:
        if entry.get("type") == kind and entry.get("name") == name:
            return entry
    return None
