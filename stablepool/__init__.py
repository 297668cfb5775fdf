"""Composable Stable Pool - dual-amplification pricing and protocol fee core."""

from stablepool.errors import PoolError
from stablepool.pool import ComposableStablePool, PoolConfig, TokenConfig

__version__ = "0.1.0"
__all__ = ["ComposableStablePool", "PoolConfig", "PoolError", "TokenConfig", "__version__"]
