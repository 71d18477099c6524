"""Gas policy: per-write-type buffer and fallback ceiling."""

from dataclasses import dataclass
from typing import Any

DEFAULT_BUFFER = 0.20
DEFAULT_FALLBACK_LIMIT = 500_000
DEFAULT_PRICE_MULTIPLIER = 1.1


@dataclass(frozen=True)
class GasRule:
    buffer: float
    fallback_limit: int


@dataclass(frozen=True)
class GasEstimate:
    """What a write will cost, known before it is broadcast."""

    write_type: str
    estimate: int
    gas_limit: int
    gas_price: int
    total_cost_wei: int
    used_fallback: bool = False


class GasPolicy:
    def __init__(
        self,
        rules: dict[str, GasRule] | None = None,
        default: GasRule | None = None,
        price_multiplier: float = DEFAULT_PRICE_MULTIPLIER,
    ):
        self.rules = rules or {}
        self.default = default or GasRule(DEFAULT_BUFFER, DEFAULT_FALLBACK_LIMIT)
        self.price_multiplier = price_multiplier

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "GasPolicy":
        """Build from the ``gas`` section of defaults.yaml."""
        gas = config.get("gas", {})
        default_cfg = gas.get("default", {})
        default = GasRule(
            float(default_cfg.get("buffer", DEFAULT_BUFFER)),
            int(default_cfg.get("fallback_limit", DEFAULT_FALLBACK_LIMIT)),
        )
        rules = {
            name: GasRule(
                float(rule.get("buffer", default.buffer)),
                int(rule.get("fallback_limit", default.fallback_limit)),
            )
            for name, rule in (gas.get("writes") or {}).items()
        }
        return cls(rules, default, float(gas.get("price_multiplier", DEFAULT_PRICE_MULTIPLIER)))

    def rule(self, write_type: str) -> GasRule:
        return self.rules.get(write_type, self.default)

    def adjust_price(self, node_price: int) -> int:
        return int(node_price * self.price_multiplier)

    def build(self, write_type: str, estimate: int | None, gas_price: int) -> GasEstimate:
        """A buffered estimate, or the fallback ceiling when estimate is None."""
        rule = self.rule(write_type)
        if estimate is None:
            gas_limit = rule.fallback_limit
            return GasEstimate(
                write_type, gas_limit, gas_limit, gas_price, gas_limit * gas_price, used_fallback=True
            )
        gas_limit = int(estimate * (1 + rule.buffer))
        return GasEstimate(write_type, estimate, gas_limit, gas_price, gas_limit * gas_price)
