"""Stable pool error classes.

Every failure aborts the whole pool operation; no state is committed.
"""


class PoolError(Exception):
    """Base error for stable pool operations."""

    pass


class InputShapeError(PoolError, ValueError):
    """Amount vector length does not match the token registry."""

    pass


class BoundsError(PoolError, IndexError):
    """Token index or identifier outside the token registry."""

    pass


class SlippageError(PoolError):
    """Result violates the caller's minimum-out or maximum-in bound."""

    pass


class UnsupportedOperationError(PoolError):
    """Unknown join/exit kind, or proportional join/exit outside recovery."""

    pass


class NotInRecoveryModeError(UnsupportedOperationError):
    """Recovery exit requested while recovery mode is disabled."""

    pass


class UninitializedError(PoolError):
    """Operation attempted before the pool was initialized."""

    pass


class AlreadyInitializedError(PoolError):
    """Initialization attempted twice."""

    pass


class MinimumShareError(PoolError):
    """Initial invariant is below the locked minimum share amount."""

    pass


class UnauthorizedError(PoolError):
    """Parameter change attempted without the pool's authority."""

    pass


class ZeroBalanceError(PoolError):
    """Token balance must be positive for pricing."""

    pass


class InvalidFeeError(PoolError, ValueError):
    """Fee percentage outside its allowed range."""

    pass


class InvalidScalingFactorError(PoolError):
    """Scaling factor must be positive."""

    pass


class InvalidRateError(PoolError):
    """Rate source returned a non-positive rate."""

    pass


class ConvergenceError(PoolError, ArithmeticError):
    """Invariant engine failed to converge within its iteration bound."""

    pass


class StableInvariantDidNotConverge(ConvergenceError):
    """Newton-Raphson iteration for stable invariant D did not converge."""

    pass


class StableGetBalanceDidNotConverge(ConvergenceError):
    """Newton-Raphson iteration for stable balance Y did not converge."""

    pass


class AmplificationError(PoolError):
    """Base error for amplification ramp changes."""

    pass


class AmpOutOfBoundsError(AmplificationError):
    """Amplification end value outside [MIN_AMP, MAX_AMP]."""

    pass


class AmpEndTimeTooCloseError(AmplificationError):
    """Ramp duration shorter than MIN_UPDATE_TIME."""

    pass


class AmpOngoingUpdateError(AmplificationError):
    """A ramp is already in progress for this coefficient."""

    pass


class AmpNoOngoingUpdateError(AmplificationError):
    """No ramp in progress to stop."""

    pass


class AmpRateTooHighError(AmplificationError):
    """Ramp would change the value faster than the daily rate limit."""

    pass
