"""Amplification parameter management.

The pool curve has two amplification coefficients. Each one can be ramped
linearly from its current value to a new value over a time window; outside
a ramp it is constant. Values are stored multiplied by AMP_PRECISION.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from stablepool.constants import MAX_AMP, MAX_AMP_UPDATE_DAILY_RATE, MIN_AMP, MIN_UPDATE_TIME
from stablepool.errors import (
    AmpEndTimeTooCloseError,
    AmpNoOngoingUpdateError,
    AmpOngoingUpdateError,
    AmpOutOfBoundsError,
    AmpRateTooHighError,
)
from stablepool.math.fixed_point import AMP_PRECISION

logger = structlog.get_logger()

_ONE_DAY = 24 * 60 * 60


class AmpCoefficient(str, Enum):
    """Which amplification coefficient of the curve."""

    # Weighs the balance sum (constant-sum side of the curve)
    AMP1 = "amp1"
    # Weighs the invariant term
    AMP2 = "amp2"


@dataclass(frozen=True)
class AmpRamp:
    """Linear ramp of one coefficient.

    A constant value is a ramp whose start and end values are equal.

    Attributes:
        start_value: Value at start_time (scaled by AMP_PRECISION)
        end_value: Value from end_time on (scaled by AMP_PRECISION)
        start_time: Ramp start timestamp
        end_time: Ramp end timestamp
    """

    start_value: int
    end_value: int
    start_time: int
    end_time: int

    @classmethod
    def constant(cls, value: int, now: int) -> AmpRamp:
        return cls(start_value=value, end_value=value, start_time=now, end_time=now)

    def value_at(self, now: int) -> tuple[int, bool]:
        """Interpolated value at `now` and whether the ramp is still running."""
        if now >= self.end_time:
            return self.end_value, False

        elapsed = max(0, now - self.start_time)
        duration = self.end_time - self.start_time
        if self.end_value > self.start_value:
            delta = (self.end_value - self.start_value) * elapsed // duration
            return self.start_value + delta, True
        delta = (self.start_value - self.end_value) * elapsed // duration
        return self.start_value - delta, True


class AmplificationManager:
    """Holds the two independently ramped amplification coefficients."""

    def __init__(self, raw_amp1: int, raw_amp2: int, now: int) -> None:
        for coefficient, raw in ((AmpCoefficient.AMP1, raw_amp1), (AmpCoefficient.AMP2, raw_amp2)):
            _check_bounds(coefficient, raw)
        self._ramps: dict[AmpCoefficient, AmpRamp] = {
            AmpCoefficient.AMP1: AmpRamp.constant(raw_amp1 * AMP_PRECISION, now),
            AmpCoefficient.AMP2: AmpRamp.constant(raw_amp2 * AMP_PRECISION, now),
        }

    def current_value(self, coefficient: AmpCoefficient, now: int) -> tuple[int, bool]:
        """Return (value, is_updating) for one coefficient."""
        return self._ramps[coefficient].value_at(now)

    def current_values(self, now: int) -> tuple[int, int]:
        """Return (amp1, amp2), both scaled by AMP_PRECISION."""
        amp1, _ = self.current_value(AmpCoefficient.AMP1, now)
        amp2, _ = self.current_value(AmpCoefficient.AMP2, now)
        return amp1, amp2

    def get_ramp(self, coefficient: AmpCoefficient) -> AmpRamp:
        return self._ramps[coefficient]

    def start_update(
        self,
        coefficient: AmpCoefficient,
        raw_end_value: int,
        end_time: int,
        now: int,
    ) -> AmpRamp:
        """Start ramping one coefficient towards raw_end_value.

        Args:
            coefficient: Coefficient to ramp
            raw_end_value: Target value, unscaled (MIN_AMP..MAX_AMP)
            end_time: Timestamp at which the target is reached
            now: Current timestamp

        Returns:
            The new ramp

        Raises:
            AmpOutOfBoundsError: If raw_end_value is outside [MIN_AMP, MAX_AMP]
            AmpEndTimeTooCloseError: If the ramp lasts less than MIN_UPDATE_TIME
            AmpOngoingUpdateError: If this coefficient is already ramping
            AmpRateTooHighError: If the value would change more than
                MAX_AMP_UPDATE_DAILY_RATE times per day
        """
        _check_bounds(coefficient, raw_end_value)

        duration = end_time - now
        if duration < MIN_UPDATE_TIME:
            raise AmpEndTimeTooCloseError(
                f"{coefficient.value} ramp must last at least {MIN_UPDATE_TIME}s, got {duration}s"
            )

        current_value, is_updating = self.current_value(coefficient, now)
        if is_updating:
            raise AmpOngoingUpdateError(f"{coefficient.value} is already being updated")

        end_value = raw_end_value * AMP_PRECISION

        # daily_rate = ceil(1 day * larger / (smaller * duration))
        if end_value > current_value:
            daily_rate = -(-(_ONE_DAY * end_value) // (current_value * duration))
        else:
            daily_rate = -(-(_ONE_DAY * current_value) // (end_value * duration))
        if daily_rate > MAX_AMP_UPDATE_DAILY_RATE:
            raise AmpRateTooHighError(
                f"{coefficient.value} ramp changes value {daily_rate}x per day, "
                f"max is {MAX_AMP_UPDATE_DAILY_RATE}x"
            )

        ramp = AmpRamp(
            start_value=current_value,
            end_value=end_value,
            start_time=now,
            end_time=end_time,
        )
        self._ramps[coefficient] = ramp
        logger.info(
            "amp_update_started",
            coefficient=coefficient.value,
            start_value=current_value,
            end_value=end_value,
            start_time=now,
            end_time=end_time,
        )
        return ramp

    def stop_update(self, coefficient: AmpCoefficient, now: int) -> int:
        """Freeze a ramping coefficient at its current value.

        Raises:
            AmpNoOngoingUpdateError: If the coefficient is not ramping
        """
        current_value, is_updating = self.current_value(coefficient, now)
        if not is_updating:
            raise AmpNoOngoingUpdateError(f"{coefficient.value} is not being updated")

        self._ramps[coefficient] = AmpRamp.constant(current_value, now)
        logger.info("amp_update_stopped", coefficient=coefficient.value, value=current_value)
        return current_value

    def snapshot(self) -> dict[AmpCoefficient, AmpRamp]:
        return dict(self._ramps)

    def restore(self, state: dict[AmpCoefficient, AmpRamp]) -> None:
        self._ramps = dict(state)


def _check_bounds(coefficient: AmpCoefficient, raw_value: int) -> None:
    if raw_value < MIN_AMP or raw_value > MAX_AMP:
        raise AmpOutOfBoundsError(
            f"{coefficient.value} must be within [{MIN_AMP}, {MAX_AMP}], got {raw_value}"
        )
