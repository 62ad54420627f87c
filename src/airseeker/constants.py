#!/usr/bin/env python3
"""Protocol and timing constants for Airseeker.

All durations are in seconds.
"""

# Retry ceiling used where only the total deadline should stop retrying
INFINITE_RETRIES: int = 100_000

GATEWAY_TIMEOUT: float = 5.0
PROVIDER_TIMEOUT: float = 5.0
RANDOM_BACKOFF_MIN: float = 0.0
RANDOM_BACKOFF_MAX: float = 2.5

# Airnode protocol ID used for sponsor wallet derivation
PROTOCOL_ID: str = "5"

GAS_LIMIT: int = 500_000
PRIORITY_FEE_IN_WEI: int = 3_120_000_000
BASE_FEE_MULTIPLIER: int = 2

# Solidity type(int224).min / type(int224).max
INT224_MIN: int = -(2**223)
INT224_MAX: int = 2**223 - 1

# Fixed-point representation of 100% used by the deviation check
HUNDRED_PERCENT: int = 10**8

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"

CONFIG_ERROR_EXIT_CODE: int = 1
NO_FETCH_EXIT_CODE: int = 2
NO_DATA_FEEDS_EXIT_CODE: int = 3
