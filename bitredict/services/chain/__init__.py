"""Chain gateway: the only module talking to the EVM node."""

from bitredict.services.chain.gas import GasEstimate, GasPolicy, GasRule
from bitredict.services.chain.gateway import (
    ChainEvent,
    ChainGateway,
    ChainMatch,
    ChainSlip,
    CycleStatus,
    TxResult,
    decode_predictions,
)

__all__ = [
    "ChainEvent",
    "ChainGateway",
    "ChainMatch",
    "ChainSlip",
    "CycleStatus",
    "GasEstimate",
    "GasPolicy",
    "GasRule",
    "TxResult",
    "decode_predictions",
]
