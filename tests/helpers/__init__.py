"""Test helpers module for shared test utilities.

This module consolidates common test utilities to reduce duplication:
- constants: Token addresses, timestamps and common amounts
- factories: Pool config and pool factories, fake clock and rate source
"""

from tests.helpers.constants import (
    DAI,
    DAY,
    ONE,
    SEED_AMOUNTS,
    SHARE,
    T0,
    TOKEN_DECIMALS,
    USDC,
    USDT,
    WETH,
    WSTETH,
)
from tests.helpers.factories import (
    ManualClock,
    MockRateSource,
    apply_deltas,
    make_pool,
    make_pool_config,
    registry_balances,
)

__all__ = [
    # Constants
    "DAI",
    "USDC",
    "USDT",
    "WETH",
    "WSTETH",
    "SHARE",
    "TOKEN_DECIMALS",
    "ONE",
    "SEED_AMOUNTS",
    "T0",
    "DAY",
    # Factories
    "ManualClock",
    "MockRateSource",
    "apply_deltas",
    "make_pool",
    "make_pool_config",
    "registry_balances",
]
