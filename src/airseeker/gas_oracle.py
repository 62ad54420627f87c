#!/usr/bin/env python3
"""Gas price oracle for Airseeker.

The oracle estimates a competitive gas price from the transactions of recent
blocks and falls back in order to:

1. the percentile of the latest block's gas prices, if that block has enough
   transactions and the price stays within the allowed deviation of the same
   percentile in a reference block further back;
2. the provider's own gas price estimate, scaled by the recommended
   multiplier;
3. the static fallback gas price from the configuration.

Every network stage runs through the retry helper with whatever is left of
the caller's cycle budget. The chosen price is then expressed in the chain's
fee model (legacy gas price or EIP-1559 fees).
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Any, Iterable

from .config import ChainOptions
from .providers import Provider
from .utils.retry import go, prepare_go_options

# Get logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GasTarget:
    """Gas pricing of a transaction.

    Attributes:
        tx_type: "legacy" or "eip1559"
        gas_price: Legacy gas price in wei
        max_fee_per_gas: EIP-1559 max fee in wei
        max_priority_fee_per_gas: EIP-1559 priority fee in wei
        source: Cascade stage that produced the price ("oracle", "provider", "fallback")
    """

    tx_type: str
    source: str
    gas_price: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None

    def to_tx_params(self) -> dict[str, int]:
        """Transaction fields for this pricing."""
        if self.tx_type == "legacy":
            return {"gasPrice": self.gas_price}
        return {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }

    def __str__(self) -> str:
        if self.tx_type == "legacy":
            return f"GasTarget(legacy, gasPrice={self.gas_price}, source={self.source})"
        return (
            f"GasTarget(eip1559, maxFee={self.max_fee_per_gas}, "
            f"priorityFee={self.max_priority_fee_per_gas}, source={self.source})"
        )


def get_percentile(percentile: float, values: Iterable[int]) -> int | None:
    """Percentile of ``values`` with linear interpolation between samples.

    The rank is ``percentile / 100 * (n - 1)`` on the ascending samples; the
    interpolated value is floored to whole wei.

    Returns:
        The percentile, or None for an empty sample
    """
    ordered = sorted(values)
    if not ordered:
        return None

    rank = Fraction(str(percentile)) / 100 * (len(ordered) - 1)
    lower_index = int(rank)
    upper_index = min(lower_index + 1, len(ordered) - 1)
    weight = rank - lower_index

    lower = ordered[lower_index]
    upper = ordered[upper_index]
    return int(lower + (upper - lower) * weight)


def check_max_deviation_limit(latest_gas_price: int, reference_gas_price: int, max_deviation_multiplier: float) -> bool:
    """True iff the latest price is within ``multiplier`` times the reference in either direction."""
    multiplier = Fraction(str(max_deviation_multiplier))
    return reference_gas_price / multiplier <= latest_gas_price <= reference_gas_price * multiplier


def _multiply(amount: int, multiplier: float) -> int:
    return int(Decimal(amount) * Decimal(str(multiplier)))


def to_gas_target(gas_price: int, options: ChainOptions, source: str) -> GasTarget:
    """Express a gas price in the chain's fee model."""
    if options.tx_type == "legacy":
        return GasTarget(tx_type="legacy", source=source, gas_price=gas_price)

    priority_fee = min(options.priority_fee.to_wei(), gas_price)
    return GasTarget(
        tx_type="eip1559",
        source=source,
        max_fee_per_gas=_multiply(gas_price, options.base_fee_multiplier) + priority_fee,
        max_priority_fee_per_gas=priority_fee,
    )


def _transaction_gas_prices(block: Any) -> list[int]:
    return [int(tx["gasPrice"]) for tx in block["transactions"] if tx.get("gasPrice") is not None]


class GasOracle:
    """Gas price cascade for one chain provider."""

    def __init__(self, provider: Provider, options: ChainOptions) -> None:
        """
        Initialize the GasOracle.

        Args:
            provider: Provider to read blocks and gas prices from
            options: Chain transaction options including the gas oracle settings
        """
        self.provider = provider
        self.options = options
        self.oracle_config = options.gas_oracle
        self.log_prefix = f"[chain={provider.chain_id} provider={provider.provider_name}]"

    async def _fetch_blocks_gas_prices(self) -> tuple[list[int], list[int]]:
        """Gas prices of the latest block and of the reference block."""
        eth = self.provider.rpc_provider.eth
        latest_block = await eth.get_block("latest", full_transactions=True)
        past_blocks = self.oracle_config.latest_gas_price_options.past_to_compare_in_blocks
        reference_block = await eth.get_block(max(0, latest_block["number"] - past_blocks), full_transactions=True)
        return _transaction_gas_prices(latest_block), _transaction_gas_prices(reference_block)

    async def get_oracle_gas_price(self, start_time: float, total_timeout: float) -> int | None:
        """Percentile gas price of recent blocks, or None if it cannot be trusted."""
        latest_options = self.oracle_config.latest_gas_price_options

        result = await go(
            self._fetch_blocks_gas_prices,
            prepare_go_options(start_time, total_timeout).with_attempt_error(
                lambda error, _attempt: logger.warning(
                    f"{self.log_prefix} Failed attempt to get blocks for gas oracle. Error: {error}"
                )
            ),
        )
        if not result.success:
            logger.warning(f"{self.log_prefix} Unable to get blocks for gas oracle. Error: {result.error}")
            return None

        latest_prices, reference_prices = result.data
        if len(latest_prices) < latest_options.min_transaction_count:
            logger.info(
                f"{self.log_prefix} Latest block has {len(latest_prices)} transactions, "
                f"fewer than {latest_options.min_transaction_count} required by the gas oracle"
            )
            return None

        latest_percentile = get_percentile(latest_options.percentile, latest_prices)
        reference_percentile = get_percentile(latest_options.percentile, reference_prices)
        if latest_percentile is None or reference_percentile is None:
            logger.info(f"{self.log_prefix} Not enough gas price samples for the gas oracle")
            return None

        if not check_max_deviation_limit(
            latest_percentile, reference_percentile, latest_options.max_deviation_multiplier
        ):
            logger.warning(
                f"{self.log_prefix} Latest gas price {latest_percentile} deviates from reference "
                f"{reference_percentile} by more than {latest_options.max_deviation_multiplier}x"
            )
            return None

        return latest_percentile

    async def get_fallback_gas_price(self, start_time: float, total_timeout: float) -> int | None:
        """Provider gas price estimate scaled by the recommended multiplier."""

        async def fetch_gas_price() -> int:
            return await self.provider.rpc_provider.eth.gas_price

        result = await go(
            fetch_gas_price,
            prepare_go_options(start_time, total_timeout).with_attempt_error(
                lambda error, _attempt: logger.warning(
                    f"{self.log_prefix} Failed attempt to get provider gas price. Error: {error}"
                )
            ),
        )
        if not result.success:
            logger.warning(f"{self.log_prefix} Unable to get provider gas price. Error: {result.error}")
            return None

        return _multiply(int(result.data), self.oracle_config.recommended_gas_price_multiplier)

    async def get_gas_target(self, start_time: float, total_timeout: float) -> GasTarget:
        """Gas pricing for a transaction, following the fallback cascade.

        Args:
            start_time: Monotonic start time of the caller's cycle
            total_timeout: Total budget of the caller's cycle in seconds

        Returns:
            GasTarget in the chain's fee model
        """
        if (oracle_price := await self.get_oracle_gas_price(start_time, total_timeout)) is not None:
            target = to_gas_target(oracle_price, self.options, "oracle")
        elif (provider_price := await self.get_fallback_gas_price(start_time, total_timeout)) is not None:
            target = to_gas_target(provider_price, self.options, "provider")
        else:
            fallback_price = self.oracle_config.fallback_gas_price.to_wei()
            logger.warning(f"{self.log_prefix} Using configured fallback gas price {fallback_price} wei")
            target = to_gas_target(fallback_price, self.options, "fallback")

        logger.debug(f"{self.log_prefix} Gas target: {target}")
        return target
