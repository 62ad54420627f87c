"""Update conditions for data feeds.

Heartbeat freshness is a hard ceiling on staleness; the deviation check is an
early trigger below that ceiling.
"""

import time
from decimal import Decimal

from .constants import HUNDRED_PERCENT


def calculate_update_in_percentage(initial_value: int, updated_value: int) -> int:
    """Relative change between two values in fixed point (HUNDRED_PERCENT is 100%).

    A zero initial value uses the absolute difference as the change, which
    makes any nonzero update at least as large as any threshold up to its
    magnitude.
    """
    delta = abs(updated_value - initial_value)
    if initial_value == 0:
        return delta * HUNDRED_PERCENT
    return delta * HUNDRED_PERCENT // abs(initial_value)


def threshold_to_fixed_point(deviation_threshold: float) -> int:
    """Convert a fractional threshold (0.1 == 10%) to the fixed point unit."""
    return int(Decimal(str(deviation_threshold)) * HUNDRED_PERCENT)


def check_update_condition(on_chain_value: int, deviation_threshold: float, api_value: int) -> bool:
    """Whether the candidate value deviates enough from the on-chain value.

    Args:
        on_chain_value: Value currently stored on chain
        deviation_threshold: Minimum fractional change (0.1 == 10%)
        api_value: Candidate value

    Returns:
        True iff the change meets or exceeds the threshold
    """
    update_in_percentage = calculate_update_in_percentage(on_chain_value, api_value)
    return update_in_percentage >= threshold_to_fixed_point(deviation_threshold)


def check_onchain_data_freshness(timestamp: int, heartbeat_interval: float, now: float | None = None) -> bool:
    """True iff the on-chain record is younger than the heartbeat interval."""
    current_time = time.time() if now is None else now
    return current_time - timestamp < heartbeat_interval


def check_signed_data_freshness(on_chain_timestamp: int, candidate_timestamp: int) -> bool:
    """True iff the candidate is strictly newer than what is stored on chain."""
    return candidate_timestamp > on_chain_timestamp
