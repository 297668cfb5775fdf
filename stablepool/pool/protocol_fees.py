"""Protocol fee accounting.

The protocol takes a cut of the value the pool accrues, paid as newly
issued share tokens that dilute the other holders. Two sources of value are
tracked separately:

- Swap growth: growth of the invariant since the last operation, measured
  at the token rates in force back then so that rate growth is not counted.
- Yield growth: growth of the weighted product of token rates above its
  all-time high.

Both are expressed as the share of the pool the protocol is owed, then
converted into a share token amount.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import structlog

from stablepool.constants import MAX_PROTOCOL_FEE_PERCENTAGE
from stablepool.errors import InputShapeError, InvalidFeeError
from stablepool.math.fixed_point import Bfp
from stablepool.math.stable_math import calculate_invariant
from stablepool.pool.rates import RateCache

logger = structlog.get_logger()


class ProtocolFeeProvider(Protocol):
    """Protocol for the governance-controlled protocol fee percentages."""

    def get_swap_fee_percentage(self) -> Decimal:
        """Share of swap growth owed to the protocol, in [0, 1]."""
        ...

    def get_yield_fee_percentage(self) -> Decimal:
        """Share of yield growth owed to the protocol, in [0, 1]."""
        ...


@dataclass
class StaticProtocolFeeProvider:
    """In-process fee provider with fixed (but reassignable) percentages."""

    swap_fee_percentage: Decimal = Decimal(0)
    yield_fee_percentage: Decimal = Decimal(0)

    def get_swap_fee_percentage(self) -> Decimal:
        return self.swap_fee_percentage

    def get_yield_fee_percentage(self) -> Decimal:
        return self.yield_fee_percentage


@dataclass(frozen=True)
class FeeBaseline:
    """Pool state right after the last settled operation.

    Attributes:
        amp1: Balance-sum amplification in force (scaled by AMP_PRECISION)
        amp2: Invariant-term amplification in force (scaled by AMP_PRECISION)
        invariant: Invariant of `balances` at (amp1, amp2)
        balances: Scaled token balances after the operation
        rates: Token rates the balances were scaled with
    """

    amp1: int
    amp2: int
    invariant: Bfp
    balances: tuple[Bfp, ...]
    rates: tuple[int, ...]


def get_protocol_ownership_percentage(
    invariant_growth: Bfp,
    supply_growth: Bfp,
    fee_percentage: Bfp,
) -> Bfp:
    """Share of the pool owed to the protocol after growth.

    Holders keep `supply_growth / invariant_growth` of the new value; the
    protocol is owed `fee_percentage` of the rest. Zero when supply grew at
    least as fast as the invariant.
    """
    if supply_growth >= invariant_growth:
        return Bfp(0)
    # Round the holders' part up so the protocol's part rounds down
    return supply_growth.div_up(invariant_growth).complement().mul_down(fee_percentage)


def bpt_for_ownership_percentage(total_supply: int, ownership_percentage: Bfp) -> int:
    """Share amount owed for `ownership_percentage` of `total_supply`, rounded down."""
    return Bfp(total_supply).mul_down(ownership_percentage).value


def _baseline_invariant_at(baseline: FeeBaseline, amps: tuple[int, int]) -> Bfp:
    """Baseline invariant at `amps`, recomputed when the amps moved since the baseline."""
    if (baseline.amp1, baseline.amp2) == amps:
        return baseline.invariant
    return calculate_invariant(amps[0], amps[1], list(baseline.balances))


def _to_percentage(name: str, value: Decimal) -> Bfp:
    if value < 0 or Bfp.from_decimal(value).value > MAX_PROTOCOL_FEE_PERCENTAGE:
        raise InvalidFeeError(f"Protocol {name} fee percentage must be within [0, 1], got {value}")
    return Bfp.from_decimal(value)


class ProtocolFeeAccountant:
    """Tracks fee baselines and computes protocol fees owed.

    Holds the swap fee baseline and the yield watermark (all-time-high rate
    product). Percentages are read from the fee provider at call time.
    """

    def __init__(
        self,
        rate_cache: RateCache,
        tokens: Sequence[str],
        yield_weights: Sequence[Bfp],
        fee_provider: ProtocolFeeProvider,
    ) -> None:
        if len(tokens) != len(yield_weights):
            raise InputShapeError(
                f"Expected {len(tokens)} yield weights, got {len(yield_weights)}"
            )
        self._rate_cache = rate_cache
        self._tokens = tuple(tokens)
        self._yield_weights = tuple(yield_weights)
        self._fee_provider = fee_provider
        self._baseline: FeeBaseline | None = None
        self._ath_rate_product = 0
        self._recovery_mode = False

    @property
    def baseline(self) -> FeeBaseline | None:
        return self._baseline

    @property
    def ath_rate_product(self) -> int:
        return self._ath_rate_product

    def set_recovery_mode(self, enabled: bool) -> None:
        """While enabled, both protocol fee percentages are treated as zero."""
        self._recovery_mode = enabled

    def protocol_swap_fee_percentage(self) -> Bfp:
        if self._recovery_mode:
            return Bfp(0)
        return _to_percentage("swap", self._fee_provider.get_swap_fee_percentage())

    def protocol_yield_fee_percentage(self) -> Bfp:
        if self._recovery_mode:
            return Bfp(0)
        return _to_percentage("yield", self._fee_provider.get_yield_fee_percentage())

    def _yield_eligible(self) -> list[tuple[str, Bfp]]:
        return [
            (token, weight)
            for token, weight in zip(self._tokens, self._yield_weights)
            if weight.value > 0
            and self._rate_cache.has_rate_source(token)
            and not self._rate_cache.is_exempt(token)
        ]

    def get_rate_product(self) -> Bfp:
        """Weighted product of cached rates: prod(rate_i ^ weight_i).

        Tokens without a rate source or exempt from yield fees contribute
        unity.
        """
        product = Bfp.one()
        for token, weight in self._yield_eligible():
            rate = Bfp(self._rate_cache.get_rate(token))
            product = product.mul_down(rate.pow_down(weight))
        return product

    def initialize_watermark(self) -> None:
        """Set the yield watermark to the current rate product.

        Left uninitialized when no token is eligible for yield fees.
        """
        if self._yield_eligible():
            self._ath_rate_product = self.get_rate_product().value

    def raise_watermark(self) -> None:
        """Move an initialized watermark up to the current rate product."""
        if self._ath_rate_product and self._yield_eligible():
            self._ath_rate_product = max(self._ath_rate_product, self.get_rate_product().value)

    def get_swap_growth_protocol_fee(
        self,
        growth_balances: Sequence[Bfp],
        amps: tuple[int, int],
        supply: int,
    ) -> int:
        """Share amount owed on invariant growth since the baseline.

        Args:
            growth_balances: Current balances scaled at the baseline rates
            amps: Current (amp1, amp2)
            supply: Current virtual supply

        Returns:
            Share amount owed, zero when the invariant has not grown
        """
        if self._baseline is None:
            return 0

        baseline_invariant = _baseline_invariant_at(self._baseline, amps)
        current_invariant = calculate_invariant(amps[0], amps[1], list(growth_balances))
        if current_invariant <= baseline_invariant:
            return 0

        ownership = get_protocol_ownership_percentage(
            current_invariant.div_down(baseline_invariant),
            Bfp.one(),
            self.protocol_swap_fee_percentage(),
        )
        return bpt_for_ownership_percentage(supply, ownership)

    def get_yield_protocol_fee(self, supply: int) -> int:
        """Share amount owed on rate growth above the watermark.

        The first call with eligible tokens only initializes the watermark.
        The watermark only ever moves up.
        """
        if not self._yield_eligible():
            return 0

        rate_product = self.get_rate_product()
        if self._ath_rate_product == 0:
            self._ath_rate_product = rate_product.value
            return 0
        if rate_product.value <= self._ath_rate_product:
            return 0

        ownership = get_protocol_ownership_percentage(
            rate_product.div_down(Bfp(self._ath_rate_product)),
            Bfp.one(),
            self.protocol_yield_fee_percentage(),
        )
        logger.debug(
            "yield_watermark_raised",
            previous=self._ath_rate_product,
            rate_product=rate_product.value,
        )
        self._ath_rate_product = rate_product.value
        return bpt_for_ownership_percentage(supply, ownership)

    def settle(
        self,
        growth_balances: Sequence[Bfp],
        amps: tuple[int, int],
        supply: int,
    ) -> int:
        """Total share amount owed since the last operation."""
        swap_fee = self.get_swap_growth_protocol_fee(growth_balances, amps, supply)
        yield_fee = self.get_yield_protocol_fee(supply)
        if swap_fee or yield_fee:
            logger.debug(
                "protocol_fees_settled",
                swap_growth_fee=swap_fee,
                yield_fee=yield_fee,
                supply=supply,
            )
        return swap_fee + yield_fee

    def get_join_exit_protocol_fee(
        self,
        pre_invariant: Bfp,
        post_invariant: Bfp,
        pre_supply: int,
        post_supply: int,
    ) -> int:
        """Share amount owed on the swap fees retained by one operation.

        Compares invariant growth with supply growth across the operation:
        proportional joins and exits grow both equally and owe nothing.
        """
        if pre_invariant.value == 0 or pre_supply == 0:
            return 0

        ownership = get_protocol_ownership_percentage(
            post_invariant.div_down(pre_invariant),
            Bfp(post_supply).div_down(Bfp(pre_supply)),
            self.protocol_swap_fee_percentage(),
        )
        return bpt_for_ownership_percentage(post_supply, ownership)

    def update_baseline(
        self,
        amps: tuple[int, int],
        invariant: Bfp,
        balances: Sequence[Bfp],
        rates: Sequence[int],
    ) -> None:
        self._baseline = FeeBaseline(
            amp1=amps[0],
            amp2=amps[1],
            invariant=invariant,
            balances=tuple(balances),
            rates=tuple(rates),
        )

    def snapshot(self) -> tuple[FeeBaseline | None, int, bool]:
        return self._baseline, self._ath_rate_product, self._recovery_mode

    def restore(self, state: tuple[FeeBaseline | None, int, bool]) -> None:
        self._baseline, self._ath_rate_product, self._recovery_mode = state

