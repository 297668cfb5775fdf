"""Composable stable pool.

This package provides the pool orchestrator and the capabilities it is
composed of:
- AmplificationManager: two independently ramped amplification coefficients
- RateCache: cached external rates of rate-bearing tokens
- ProtocolFeeAccountant: swap growth and yield protocol fees
"""

# Amplification
from .amplification import AmpCoefficient, AmplificationManager, AmpRamp

# Pool
from .composable import ComposableStablePool

# Configuration
from .config import PoolConfig, TokenConfig

# Protocol fees
from .protocol_fees import (
    FeeBaseline,
    ProtocolFeeAccountant,
    ProtocolFeeProvider,
    StaticProtocolFeeProvider,
    bpt_for_ownership_percentage,
    get_protocol_ownership_percentage,
)

# Rates
from .rates import RateCache, RateSource, TokenRateCache

# Requests, results and kinds
from .types import (
    Authority,
    ExitKind,
    ExitRequest,
    JoinKind,
    JoinRequest,
    OperationResult,
    SwapKind,
)

__all__ = [
    # Amplification
    "AmpCoefficient",
    "AmplificationManager",
    "AmpRamp",
    # Pool
    "ComposableStablePool",
    # Configuration
    "PoolConfig",
    "TokenConfig",
    # Protocol fees
    "FeeBaseline",
    "ProtocolFeeAccountant",
    "ProtocolFeeProvider",
    "StaticProtocolFeeProvider",
    "bpt_for_ownership_percentage",
    "get_protocol_ownership_percentage",
    # Rates
    "RateCache",
    "RateSource",
    "TokenRateCache",
    # Kinds and requests
    "Authority",
    "ExitKind",
    "ExitRequest",
    "JoinKind",
    "JoinRequest",
    "OperationResult",
    "SwapKind",
]
