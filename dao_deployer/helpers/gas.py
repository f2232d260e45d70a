"""
Gas estimation with a safety multiplier and a live fee quote.

The adjusted limit is ``ceil(raw * multiplier)`` computed with Decimal so it
never rounds below the raw simulation. A failed simulation is an error; no
default gas limit is ever substituted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal, localcontext
from typing import Any, Optional

from dao_deployer.config.settings import DEFAULT_GAS_MULTIPLIER, DeployerSettings, FEE_MODES, parse_multiplier
from dao_deployer.helpers.amounts import checked_mul, format_display_amount
from dao_deployer.helpers.chain_client import ChainRegistry

__all__ = ["GasEstimate", "GasEstimator", "apply_multiplier"]

logger = logging.getLogger(__name__)


def apply_multiplier(raw_estimate: int, multiplier: Decimal) -> int:
    if raw_estimate < 0:
        raise ValueError(f"Negative gas estimate: {raw_estimate}")
    with localcontext() as ctx:
        ctx.prec = 78
        adjusted = (Decimal(raw_estimate) * multiplier).to_integral_value(rounding=ROUND_CEILING)
    return int(adjusted)


@dataclass(frozen=True)
class GasEstimate:
    raw_estimate: int
    multiplier: Decimal
    adjusted_limit: int
    fee_mode: str = "legacy"
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    def __post_init__(self) -> None:
        if self.multiplier < 1:
            raise ValueError(f"gas multiplier below 1.0: {self.multiplier}")
        if self.adjusted_limit < self.raw_estimate:
            raise ValueError("adjusted gas limit below raw estimate")
        if self.fee_mode == "legacy" and self.gas_price is None:
            raise ValueError("legacy estimate requires gas_price")
        if self.fee_mode == "eip1559" and (self.max_fee_per_gas is None or self.max_priority_fee_per_gas is None):
            raise ValueError("eip1559 estimate requires max_fee_per_gas and max_priority_fee_per_gas")

    @property
    def price_or_fee(self) -> int:
        """Per-gas price used for the worst-case cost."""
        return int(self.gas_price if self.fee_mode == "legacy" else self.max_fee_per_gas)

    @property
    def estimated_cost_wei(self) -> int:
        return checked_mul(self.adjusted_limit, self.price_or_fee)

    def as_tx_fields(self) -> dict[str, int]:
        if self.fee_mode == "eip1559":
            return {
                "gas": self.adjusted_limit,
                "maxFeePerGas": int(self.max_fee_per_gas),
                "maxPriorityFeePerGas": int(self.max_priority_fee_per_gas),
            }
        return {"gas": self.adjusted_limit, "gasPrice": int(self.gas_price)}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "rawEstimate": self.raw_estimate,
            "multiplier": str(self.multiplier),
            "gasLimit": self.adjusted_limit,
            "feeMode": self.fee_mode,
            "estimatedCostWei": str(self.estimated_cost_wei),
        }
        if self.fee_mode == "eip1559":
            out["maxFeePerGas"] = str(self.max_fee_per_gas)
            out["maxPriorityFeePerGas"] = str(self.max_priority_fee_per_gas)
        else:
            out["gasPrice"] = str(self.gas_price)
        return out


class GasEstimator:
    def __init__(self, chains: ChainRegistry, settings: DeployerSettings | None = None):
        self.chains = chains
        self.settings = settings or DeployerSettings()

    def resolve_multiplier(self, network_name: str, multiplier: Decimal | str | float | None = None) -> Decimal:
        """Explicit argument, then the configured default, then the network's own value."""
        if multiplier is not None:
            return parse_multiplier(multiplier)
        if self.settings.default_gas_multiplier is not None:
            return self.settings.default_gas_multiplier
        network = self.chains.network(network_name)
        if network.gas_multiplier is not None:
            return parse_multiplier(network.gas_multiplier)
        return DEFAULT_GAS_MULTIPLIER

    async def estimate(
        self,
        network_name: str,
        tx_skeleton: dict[str, Any],
        multiplier: Decimal | str | float | None = None,
        fee_mode: str | None = None,
    ) -> GasEstimate:
        """Simulate ``tx_skeleton`` and quote fees.

        Raises:
            ValueError: multiplier below 1.0 or unknown fee mode.
            NetworkError: endpoint unreachable or wrong chain id.
            EstimationError: the simulation reverted or could not run.
        """
        mult = self.resolve_multiplier(network_name, multiplier)
        mode = fee_mode or self.settings.fee_mode
        if mode not in FEE_MODES:
            raise ValueError(f"Unknown fee mode {mode!r}")

        client = await self.chains.checked_client(network_name)
        raw = await client.estimate_gas(dict(tx_skeleton))
        adjusted = apply_multiplier(raw, mult)
        logger.debug("Gas estimate on %s: raw=%d x%s -> %d", network_name, raw, mult, adjusted)

        if mode == "eip1559":
            base_fee = await client.get_base_fee()
            if base_fee is not None:
                max_fee, priority = self._eip1559_fees(network_name, base_fee, await client.get_max_priority_fee())
                return GasEstimate(
                    raw_estimate=raw,
                    multiplier=mult,
                    adjusted_limit=adjusted,
                    fee_mode="eip1559",
                    max_fee_per_gas=max_fee,
                    max_priority_fee_per_gas=priority,
                )
            logger.info("%s reports no base fee; quoting legacy gas price", network_name)

        gas_price = await client.get_gas_price()
        return GasEstimate(
            raw_estimate=raw,
            multiplier=mult,
            adjusted_limit=adjusted,
            fee_mode="legacy",
            gas_price=gas_price,
        )

    def _eip1559_fees(self, network_name: str, base_fee: int, priority: int) -> tuple[int, int]:
        network = self.chains.network(network_name)
        if network.max_priority_fee_per_gas is not None:
            priority = min(priority, network.max_priority_fee_per_gas)
        if network.max_fee_per_gas is not None:
            priority = min(priority, network.max_fee_per_gas)
        max_fee = base_fee + priority * 2
        if network.max_fee_per_gas is not None:
            max_fee = min(max_fee, network.max_fee_per_gas)
        return max(max_fee, priority), priority

    def to_display_cost(self, estimate: GasEstimate, network_name: str) -> str:
        network = self.chains.network(network_name)
        return format_display_amount(
            estimate.estimated_cost_wei, network.native_currency_decimals, network.currency_symbol
        )
