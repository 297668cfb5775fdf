"""Mathematical utilities for the stable pool core.

This package provides mathematical primitives for pool calculations:
- Bfp: 18-decimal fixed-point arithmetic (Balancer-style)
- stable_math: the dual-amplification stable-swap invariant engine
"""

from stablepool.math.fixed_point import AMP_PRECISION, ONE_18, Bfp

__all__ = ["AMP_PRECISION", "ONE_18", "Bfp"]
