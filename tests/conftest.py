"""Pytest configuration and fixtures."""

import pytest

from stablepool.pool import Authority, ComposableStablePool
from tests.helpers import (
    DAI,
    ONE,
    SEED_AMOUNTS,
    USDC,
    USDT,
    ManualClock,
    MockRateSource,
    make_pool,
    make_pool_config,
    registry_balances,
)


@pytest.fixture
def clock() -> ManualClock:
    """Logical clock starting at T0."""
    return ManualClock()


@pytest.fixture
def authority() -> Authority:
    """Capability accepted by the pool for parameter changes."""
    return Authority()


@pytest.fixture
def rate_source() -> MockRateSource:
    """Rate source with every test token at rate ONE."""
    return MockRateSource({DAI: ONE, USDC: ONE, USDT: ONE})


@pytest.fixture
def pool(clock: ManualClock, authority: Authority) -> ComposableStablePool:
    """Initialized DAI/USDC/USDT pool (share token at index 0), no protocol fees."""
    pool = make_pool(make_pool_config(), clock=clock, authority=authority)
    pool.initialize(registry_balances(pool, SEED_AMOUNTS))
    return pool


@pytest.fixture
def fee_pool(clock: ManualClock, authority: Authority) -> ComposableStablePool:
    """Initialized DAI/USDC/USDT pool charging a 50% protocol swap fee."""
    pool = make_pool(
        make_pool_config(),
        protocol_swap_fee="0.5",
        clock=clock,
        authority=authority,
    )
    pool.initialize(registry_balances(pool, SEED_AMOUNTS))
    return pool
