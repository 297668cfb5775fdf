"""Composable stable pool.

Pool holding 2..5 tokens plus its own share token, priced on the
dual-amplification stable curve. The host ledger owns the balances and
passes them in (registry order, share entry included) on every call; the
pool returns the amounts to move and tracks the virtual share supply.

Every priced operation runs the same sequence:

    refresh rates -> settle protocol fees -> execute -> rebaseline

and is all-or-nothing: if any step raises, every piece of pool state is
restored before the error propagates.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from stablepool.constants import MINIMUM_SHARE, PREMINTED_SHARE_BALANCE
from stablepool.errors import (
    AlreadyInitializedError,
    BoundsError,
    InputShapeError,
    InvalidFeeError,
    MinimumShareError,
    NotInRecoveryModeError,
    SlippageError,
    UnauthorizedError,
    UninitializedError,
    UnsupportedOperationError,
)
from stablepool.math.fixed_point import AMP_PRECISION, Bfp
from stablepool.math.stable_math import (
    calc_bpt_in_given_exact_tokens_out,
    calc_bpt_out_given_exact_tokens_in,
    calc_in_given_out,
    calc_out_given_in,
    calc_token_in_given_exact_bpt_out,
    calc_token_out_given_exact_bpt_in,
    calculate_invariant,
)
from stablepool.pool.amplification import AmpCoefficient, AmplificationManager, AmpRamp
from stablepool.pool.config import MAX_SWAP_FEE, MIN_SWAP_FEE, PoolConfig, normalize_address
from stablepool.pool.protocol_fees import (
    ProtocolFeeAccountant,
    ProtocolFeeProvider,
    StaticProtocolFeeProvider,
)
from stablepool.pool.rates import RateCache, RateSource, TokenRateCache
from stablepool.pool.scaling import (
    add_swap_fee_amount,
    compute_scaling_factor,
    scale_down_down,
    scale_down_up,
    scale_up,
    scale_up_array,
    subtract_swap_fee_amount,
)
from stablepool.pool.types import (
    Authority,
    ExitKind,
    ExitRequest,
    JoinKind,
    JoinRequest,
    OperationResult,
    SwapKind,
)

logger = structlog.get_logger()


def _wall_clock() -> int:
    return int(time.time())


@dataclass(frozen=True)
class _Context:
    """Pre-operation state, after rate refresh and fee settlement."""

    amps: tuple[int, int]
    scaling_factors: tuple[Bfp, ...]
    raw_balances: tuple[int, ...]
    balances: tuple[Bfp, ...]
    invariant: Bfp
    supply: int


@dataclass(frozen=True)
class _Step:
    """Outcome of one executed operation.

    Attributes:
        amount: The computed quantity returned to the caller
        balances: Raw pricing balances after the operation
        supply: Virtual supply after the operation
    """

    amount: int
    balances: tuple[int, ...]
    supply: int


class ComposableStablePool:
    """Pricing and protocol fee core of a composable stable pool."""

    def __init__(
        self,
        config: PoolConfig,
        *,
        rate_sources: Mapping[str, RateSource] | None = None,
        protocol_fees: ProtocolFeeProvider | None = None,
        authority: Authority | None = None,
        clock: Callable[[], int] = _wall_clock,
    ) -> None:
        """Create an uninitialized pool.

        Args:
            config: Validated pool configuration
            rate_sources: Rate source per rate-bearing token address
            protocol_fees: Governance fee percentages (zero fees if omitted)
            authority: Capability required for parameter changes; without
                one every parameter change is rejected
            clock: Returns the ledger's current timestamp
        """
        self.config = config
        self._clock = clock
        self._authority = authority
        self._registry = config.registry
        self._share_index = config.share_index
        self._tokens = tuple(token.address for token in config.tokens)
        self._decimals = tuple(token.decimals for token in config.tokens)
        self._swap_fee = Bfp.from_decimal(config.swap_fee_percentage)

        now = self._now()
        sources = {
            normalize_address(token): source for token, source in (rate_sources or {}).items()
        }
        self._amplification = AmplificationManager(config.amp1, config.amp2, now)
        self._rate_cache = RateCache(
            self._tokens,
            sources,
            durations={token.address: token.rate_cache_duration for token in config.tokens},
            exempt={token.address: token.exempt_from_yield_fees for token in config.tokens},
            now=now,
        )
        self._fees = ProtocolFeeAccountant(
            self._rate_cache,
            self._tokens,
            [Bfp.from_decimal(weight) for weight in config.yield_weights()],
            protocol_fees if protocol_fees is not None else StaticProtocolFeeProvider(),
        )

        self._initialized = False
        self._recovery_mode = False
        self._virtual_supply = 0
        self._total_issued = 0
        self._protocol_fees_minted = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def registry(self) -> tuple[str, ...]:
        return self._registry

    @property
    def tokens(self) -> tuple[str, ...]:
        """Non-share tokens in pricing order."""
        return self._tokens

    @property
    def share_index(self) -> int:
        return self._share_index

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def in_recovery_mode(self) -> bool:
        return self._recovery_mode

    @property
    def virtual_supply(self) -> int:
        return self._virtual_supply

    @property
    def total_issued(self) -> int:
        return self._total_issued

    @property
    def protocol_fees_minted(self) -> int:
        """Cumulative share amount issued to the protocol."""
        return self._protocol_fees_minted

    @property
    def swap_fee_percentage(self) -> Decimal:
        return self._swap_fee.to_decimal()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self, amounts_in: Sequence[int]) -> int:
        """Seed the pool. One-time.

        Args:
            amounts_in: Initial token amounts in registry order; the share
                entry is ignored

        Returns:
            Share amount issued to the caller, equal to the initial
            invariant. MINIMUM_SHARE of it stays locked in the supply.

        Raises:
            AlreadyInitializedError: If the pool is already initialized
            MinimumShareError: If the invariant is below MINIMUM_SHARE
        """
        with self._atomic("initialize"):
            if self._initialized:
                raise AlreadyInitializedError(f"Pool {self.config.name} is already initialized")

            raw = self._pricing_balances(amounts_in)
            now = self._now()
            self._rate_cache.refresh_all_if_expired(now)
            amps = self._amplification.current_values(now)
            balances = scale_up_array(raw, self._scaling_factors())
            invariant = calculate_invariant(amps[0], amps[1], balances)
            if invariant.value < MINIMUM_SHARE:
                raise MinimumShareError(
                    f"Initial invariant {invariant.value} below minimum share {MINIMUM_SHARE}"
                )

            self._total_issued = PREMINTED_SHARE_BALANCE
            self._virtual_supply = invariant.value
            self._initialized = True
            self._fees.update_baseline(amps, invariant, balances, self._rate_cache.get_rates())
            self._fees.initialize_watermark()

            logger.info(
                "stable_pool_initialized",
                pool=self.config.name,
                invariant=invariant.value,
                amp1=amps[0],
                amp2=amps[1],
            )
            return invariant.value

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    def swap(
        self,
        balances: Sequence[int],
        kind: SwapKind,
        token_in: str,
        token_out: str,
        amount: int,
        limit: int | None = None,
    ) -> int:
        """Swap between two registry tokens.

        Swaps involving the share token are single-token joins or exits and
        are priced as such.

        Args:
            balances: Current raw balances in registry order
            kind: GIVEN_IN fixes the amount in, GIVEN_OUT the amount out
            token_in: Address of the token entering the pool
            token_out: Address of the token leaving the pool
            amount: The fixed amount
            limit: Minimum out (GIVEN_IN) or maximum in (GIVEN_OUT)

        Returns:
            Amount out for GIVEN_IN, amount in for GIVEN_OUT

        Raises:
            BoundsError: If a token is not in the registry
            InputShapeError: If token_in == token_out or amount is negative
            SlippageError: If the result violates `limit`
        """
        index_in = self._registry_index(token_in)
        index_out = self._registry_index(token_out)
        if index_in == index_out:
            raise InputShapeError("Cannot swap token with itself")
        _check_non_negative([amount])

        with self._atomic("swap"):
            ctx = self._begin(balances)
            if self._share_index in (index_in, index_out):
                step = self._swap_with_share(ctx, kind, index_in, index_out, amount)
            else:
                step = self._swap_regular(
                    ctx, kind, self._pricing_index(index_in), self._pricing_index(index_out), amount
                )

            if kind == SwapKind.GIVEN_IN:
                _check_min(step.amount, limit, "amount out")
            else:
                _check_max(step.amount, limit, "amount in")

            self._commit(ctx, step)
            logger.debug(
                "stable_pool_swap",
                pool=self.config.name,
                kind=kind.value,
                token_in=token_in,
                token_out=token_out,
                amount=amount,
                result=step.amount,
            )
            return step.amount

    def _swap_regular(
        self, ctx: _Context, kind: SwapKind, index_in: int, index_out: int, amount: int
    ) -> _Step:
        amp1, amp2 = ctx.amps
        balances = list(ctx.balances)
        factor_in = ctx.scaling_factors[index_in]
        factor_out = ctx.scaling_factors[index_out]

        if kind == SwapKind.GIVEN_IN:
            amount_in = amount
            scaled_in = subtract_swap_fee_amount(scale_up(amount_in, factor_in), self._swap_fee)
            scaled_out = calc_out_given_in(
                amp1, amp2, balances, index_in, index_out, scaled_in, ctx.invariant
            )
            amount_out = scale_down_down(scaled_out, factor_out)
            result = amount_out
        else:
            amount_out = amount
            scaled_in = calc_in_given_out(
                amp1,
                amp2,
                balances,
                index_in,
                index_out,
                scale_up(amount_out, factor_out),
                ctx.invariant,
            )
            amount_in = scale_down_up(add_swap_fee_amount(scaled_in, self._swap_fee), factor_in)
            result = amount_in

        post = list(ctx.raw_balances)
        post[index_in] += amount_in
        post[index_out] -= amount_out
        return _Step(result, tuple(post), ctx.supply)

    def _swap_with_share(
        self, ctx: _Context, kind: SwapKind, index_in: int, index_out: int, amount: int
    ) -> _Step:
        if index_in == self._share_index:
            token_index = self._pricing_index(index_out)
            if kind == SwapKind.GIVEN_IN:
                return self._exit_share_in_for_token(ctx, amount, token_index)
            amounts_out = [0] * len(self._tokens)
            amounts_out[token_index] = amount
            return self._exit_tokens_out(ctx, amounts_out)

        token_index = self._pricing_index(index_in)
        if kind == SwapKind.GIVEN_IN:
            amounts_in = [0] * len(self._tokens)
            amounts_in[token_index] = amount
            return self._join_tokens_in(ctx, amounts_in)
        return self._join_token_in_for_share(ctx, amount, token_index)

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    def join_exact_tokens_in(
        self, balances: Sequence[int], amounts_in: Sequence[int], min_share_out: int = 0
    ) -> int:
        """Add exact token amounts (pricing order) and mint shares.

        Raises:
            SlippageError: If fewer than min_share_out shares would be minted
        """
        with self._atomic("join_exact_tokens_in"):
            ctx = self._begin(balances)
            step = self._join_tokens_in(ctx, amounts_in)
            _check_min(step.amount, min_share_out, "share out")
            self._commit(ctx, step)
            logger.debug("stable_pool_join", pool=self.config.name, share_out=step.amount)
            return step.amount

    def join_token_in_for_exact_share_out(
        self,
        balances: Sequence[int],
        share_out: int,
        token_index: int,
        max_amount_in: int | None = None,
    ) -> int:
        """Mint an exact share amount paying a single token.

        Returns:
            Amount of tokens[token_index] required

        Raises:
            BoundsError: If token_index is out of range
            SlippageError: If more than max_amount_in would be required
        """
        with self._atomic("join_token_in_for_exact_share_out"):
            ctx = self._begin(balances)
            step = self._join_token_in_for_share(ctx, share_out, token_index)
            _check_max(step.amount, max_amount_in, "amount in")
            self._commit(ctx, step)
            logger.debug(
                "stable_pool_join",
                pool=self.config.name,
                share_out=share_out,
                token_index=token_index,
                amount_in=step.amount,
            )
            return step.amount

    def _join_tokens_in(self, ctx: _Context, amounts_in: Sequence[int]) -> _Step:
        self._check_amounts(amounts_in)
        share_out = calc_bpt_out_given_exact_tokens_in(
            ctx.amps[0],
            ctx.amps[1],
            list(ctx.balances),
            scale_up_array(list(amounts_in), list(ctx.scaling_factors)),
            ctx.supply,
            ctx.invariant,
            self._swap_fee,
        ).value
        post = tuple(balance + amount for balance, amount in zip(ctx.raw_balances, amounts_in))
        return _Step(share_out, post, ctx.supply + share_out)

    def _join_token_in_for_share(self, ctx: _Context, share_out: int, token_index: int) -> _Step:
        self._check_token_index(token_index)
        _check_non_negative([share_out])
        scaled_in = calc_token_in_given_exact_bpt_out(
            ctx.amps[0],
            ctx.amps[1],
            list(ctx.balances),
            token_index,
            share_out,
            ctx.supply,
            ctx.invariant,
            self._swap_fee,
        )
        amount_in = scale_down_up(scaled_in, ctx.scaling_factors[token_index])
        post = list(ctx.raw_balances)
        post[token_index] += amount_in
        return _Step(amount_in, tuple(post), ctx.supply + share_out)

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def exit_exact_tokens_out(
        self,
        balances: Sequence[int],
        amounts_out: Sequence[int],
        max_share_in: int | None = None,
    ) -> int:
        """Withdraw exact token amounts (pricing order) and burn shares.

        Raises:
            SlippageError: If more than max_share_in shares would be burned
            MinimumShareError: If the burn would leave less than MINIMUM_SHARE
        """
        with self._atomic("exit_exact_tokens_out"):
            ctx = self._begin(balances)
            step = self._exit_tokens_out(ctx, amounts_out)
            _check_max(step.amount, max_share_in, "share in")
            self._commit(ctx, step)
            logger.debug("stable_pool_exit", pool=self.config.name, share_in=step.amount)
            return step.amount

    def exit_exact_share_in_for_token_out(
        self,
        balances: Sequence[int],
        share_in: int,
        token_index: int,
        min_amount_out: int | None = None,
    ) -> int:
        """Burn an exact share amount for a single token.

        Returns:
            Amount of tokens[token_index] paid out

        Raises:
            BoundsError: If token_index is out of range
            SlippageError: If less than min_amount_out would be paid
            MinimumShareError: If the burn would leave less than MINIMUM_SHARE
        """
        with self._atomic("exit_exact_share_in_for_token_out"):
            ctx = self._begin(balances)
            step = self._exit_share_in_for_token(ctx, share_in, token_index)
            _check_min(step.amount, min_amount_out, "amount out")
            self._commit(ctx, step)
            logger.debug(
                "stable_pool_exit",
                pool=self.config.name,
                share_in=share_in,
                token_index=token_index,
                amount_out=step.amount,
            )
            return step.amount

    def exit_recovery_proportional(self, balances: Sequence[int], share_in: int) -> list[int]:
        """Proportional withdrawal available in recovery mode.

        Uses neither rates nor the invariant, and neither settles protocol
        fees nor moves the fee baseline.

        Returns:
            Amounts out in registry order, zero at the share entry

        Raises:
            NotInRecoveryModeError: If recovery mode is disabled
            InputShapeError: If share_in exceeds the virtual supply
            MinimumShareError: If the burn would leave less than MINIMUM_SHARE
        """
        with self._atomic("exit_recovery_proportional"):
            self._check_initialized()
            if not self._recovery_mode:
                raise NotInRecoveryModeError("Proportional exit requires recovery mode")
            raw = self._pricing_balances(balances)
            _check_non_negative([share_in])
            if share_in > self._virtual_supply:
                raise InputShapeError(
                    f"share_in {share_in} exceeds virtual supply {self._virtual_supply}"
                )
            self._check_locked_supply(self._virtual_supply - share_in)

            share_ratio = Bfp(share_in).div_down(Bfp(self._virtual_supply))
            amounts_out = [Bfp(balance).mul_down(share_ratio).value for balance in raw]
            self._virtual_supply -= share_in

            logger.info(
                "stable_pool_recovery_exit",
                pool=self.config.name,
                share_in=share_in,
                amounts_out=amounts_out,
            )
            return self._to_registry(amounts_out)

    def _exit_tokens_out(self, ctx: _Context, amounts_out: Sequence[int]) -> _Step:
        self._check_amounts(amounts_out)
        share_in = calc_bpt_in_given_exact_tokens_out(
            ctx.amps[0],
            ctx.amps[1],
            list(ctx.balances),
            scale_up_array(list(amounts_out), list(ctx.scaling_factors)),
            ctx.supply,
            ctx.invariant,
            self._swap_fee,
        ).value
        post = tuple(balance - amount for balance, amount in zip(ctx.raw_balances, amounts_out))
        return _Step(share_in, post, ctx.supply - share_in)

    def _exit_share_in_for_token(self, ctx: _Context, share_in: int, token_index: int) -> _Step:
        self._check_token_index(token_index)
        _check_non_negative([share_in])
        self._check_locked_supply(ctx.supply - share_in)
        scaled_out = calc_token_out_given_exact_bpt_in(
            ctx.amps[0],
            ctx.amps[1],
            list(ctx.balances),
            token_index,
            share_in,
            ctx.supply,
            ctx.invariant,
            self._swap_fee,
        )
        amount_out = scale_down_down(scaled_out, ctx.scaling_factors[token_index])
        post = list(ctx.raw_balances)
        post[token_index] -= amount_out
        return _Step(amount_out, tuple(post), ctx.supply - share_in)

    # ------------------------------------------------------------------
    # Dispatch by kind
    # ------------------------------------------------------------------

    def join(self, balances: Sequence[int], request: JoinRequest) -> OperationResult:
        """Run the join selected by request.kind."""
        return _JOIN_HANDLERS[request.kind](self, balances, request)

    def exit(self, balances: Sequence[int], request: ExitRequest) -> OperationResult:
        """Run the exit selected by request.kind."""
        return _EXIT_HANDLERS[request.kind](self, balances, request)

    def _join_init(self, balances: Sequence[int], request: JoinRequest) -> OperationResult:
        share_out = self.initialize(request.amounts)
        amounts = list(request.amounts)
        amounts[self._share_index] = self._total_issued - self._virtual_supply
        return OperationResult(share_amount=share_out, amounts=amounts)

    def _join_exact_tokens(self, balances: Sequence[int], request: JoinRequest) -> OperationResult:
        share_out = self.join_exact_tokens_in(balances, request.amounts, request.limit or 0)
        return OperationResult(share_amount=share_out, amounts=self._to_registry(request.amounts))

    def _join_for_exact_share(
        self, balances: Sequence[int], request: JoinRequest
    ) -> OperationResult:
        amount_in = self.join_token_in_for_exact_share_out(
            balances, request.share_amount, request.token_index, request.limit
        )
        return OperationResult(
            share_amount=request.share_amount,
            amounts=self._single_amount(request.token_index, amount_in),
        )

    def _join_proportional(self, balances: Sequence[int], request: JoinRequest) -> OperationResult:
        raise UnsupportedOperationError("Proportional joins are not supported")

    def _exit_for_one_token(self, balances: Sequence[int], request: ExitRequest) -> OperationResult:
        amount_out = self.exit_exact_share_in_for_token_out(
            balances, request.share_amount, request.token_index, request.limit
        )
        return OperationResult(
            share_amount=request.share_amount,
            amounts=self._single_amount(request.token_index, amount_out),
        )

    def _exit_exact_tokens(self, balances: Sequence[int], request: ExitRequest) -> OperationResult:
        share_in = self.exit_exact_tokens_out(balances, request.amounts, request.limit)
        return OperationResult(share_amount=share_in, amounts=self._to_registry(request.amounts))

    def _exit_proportional(self, balances: Sequence[int], request: ExitRequest) -> OperationResult:
        amounts_out = self.exit_recovery_proportional(balances, request.share_amount)
        return OperationResult(share_amount=request.share_amount, amounts=amounts_out)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_actual_supply(self, balances: Sequence[int]) -> int:
        """Virtual supply plus protocol fees that would be settled now."""
        self._check_initialized()
        raw = self._pricing_balances(balances)
        with self._preview():
            amps = self._amplification.current_values(self._now())
            return self._virtual_supply + self._fees.settle(
                self._growth_balances(raw), amps, self._virtual_supply
            )

    def get_rate(self, balances: Sequence[int]) -> int:
        """Value of one share in invariant units (18-decimal).

        Uses the cached rates and accounts for pending protocol fees. Never
        changes pool state.
        """
        self._check_initialized()
        raw = self._pricing_balances(balances)
        with self._preview():
            amps = self._amplification.current_values(self._now())
            supply = self._virtual_supply + self._fees.settle(
                self._growth_balances(raw), amps, self._virtual_supply
            )
            invariant = calculate_invariant(
                amps[0], amps[1], scale_up_array(raw, self._scaling_factors())
            )
            return invariant.div_down(Bfp(supply)).value

    def get_amplification_parameter(self, coefficient: AmpCoefficient) -> tuple[int, bool, int]:
        """Return (value, is_updating, precision) for one coefficient."""
        value, is_updating = self._amplification.current_value(coefficient, self._now())
        return value, is_updating, AMP_PRECISION

    def get_amplification_ramp(self, coefficient: AmpCoefficient) -> AmpRamp:
        return self._amplification.get_ramp(coefficient)

    def get_last_invariant(self) -> tuple[int, int, int]:
        """Return (invariant, amp1, amp2) recorded after the last operation."""
        baseline = self._fees.baseline
        if not self._initialized or baseline is None:
            raise UninitializedError(f"Pool {self.config.name} is not initialized")
        return baseline.invariant.value, baseline.amp1, baseline.amp2

    def get_ath_rate_product(self) -> int:
        return self._fees.ath_rate_product

    def get_scaling_factors(self) -> list[int]:
        """Current scaling factors in registry order (ONE for the share token)."""
        return self._to_registry([factor.value for factor in self._scaling_factors()], Bfp.ONE)

    def get_minimum_share(self) -> int:
        return MINIMUM_SHARE

    def get_token_rate_cache(self, token: str) -> TokenRateCache:
        return self._rate_cache.get_token_rate_cache(normalize_address(token))

    # ------------------------------------------------------------------
    # Parameter changes
    # ------------------------------------------------------------------

    def set_swap_fee_percentage(self, authority: Authority, fee: Decimal) -> None:
        """Set the pool swap fee.

        Raises:
            UnauthorizedError: If authority is not the pool's
            InvalidFeeError: If fee is outside [MIN_SWAP_FEE, MAX_SWAP_FEE]
        """
        self._check_authority(authority)
        if not MIN_SWAP_FEE <= fee <= MAX_SWAP_FEE:
            raise InvalidFeeError(f"Swap fee {fee} outside [{MIN_SWAP_FEE}, {MAX_SWAP_FEE}]")
        self._swap_fee = Bfp.from_decimal(fee)
        logger.info("swap_fee_percentage_set", pool=self.config.name, fee=str(fee))

    def start_amplification_parameter_update(
        self,
        authority: Authority,
        coefficient: AmpCoefficient,
        raw_end_value: int,
        end_time: int,
    ) -> AmpRamp:
        self._check_authority(authority)
        return self._amplification.start_update(coefficient, raw_end_value, end_time, self._now())

    def stop_amplification_parameter_update(
        self, authority: Authority, coefficient: AmpCoefficient
    ) -> int:
        self._check_authority(authority)
        return self._amplification.stop_update(coefficient, self._now())

    def set_token_rate_cache_duration(
        self, authority: Authority, token: str, duration: int
    ) -> TokenRateCache:
        self._check_authority(authority)
        with self._atomic("set_token_rate_cache_duration"):
            return self._rate_cache.set_token_rate_cache_duration(
                normalize_address(token), duration, self._now()
            )

    def update_token_rate_cache(self, token: str) -> TokenRateCache:
        """Force a rate refresh of one token. Permissionless."""
        with self._atomic("update_token_rate_cache"):
            return self._rate_cache.update_token_rate_cache(normalize_address(token), self._now())

    def enable_recovery_mode(self, authority: Authority) -> None:
        """Allow proportional exits and waive protocol fees."""
        self._check_authority(authority)
        self._recovery_mode = True
        self._fees.set_recovery_mode(True)
        logger.info("recovery_mode_enabled", pool=self.config.name)

    def disable_recovery_mode(self, authority: Authority, balances: Sequence[int]) -> None:
        """Leave recovery mode, taking the current state as the fee baseline.

        Growth accrued while in recovery mode is forfeited by the protocol.
        """
        self._check_authority(authority)
        if not self._recovery_mode:
            raise NotInRecoveryModeError("Recovery mode is not enabled")
        with self._atomic("disable_recovery_mode"):
            self._recovery_mode = False
            self._fees.set_recovery_mode(False)
            if self._initialized:
                raw = self._pricing_balances(balances)
                now = self._now()
                self._rate_cache.refresh_all_if_expired(now)
                amps = self._amplification.current_values(now)
                scaled = scale_up_array(raw, self._scaling_factors())
                invariant = calculate_invariant(amps[0], amps[1], scaled)
                self._fees.update_baseline(amps, invariant, scaled, self._rate_cache.get_rates())
                self._fees.raise_watermark()
            logger.info("recovery_mode_disabled", pool=self.config.name)

    # ------------------------------------------------------------------
    # Operation pipeline
    # ------------------------------------------------------------------

    def _begin(self, balances: Sequence[int]) -> _Context:
        """Refresh rates, settle protocol fees and snapshot pre-operation state."""
        self._check_initialized()
        raw = self._pricing_balances(balances)
        now = self._now()
        self._rate_cache.refresh_all_if_expired(now)
        amps = self._amplification.current_values(now)

        self._mint_protocol_fees(
            self._fees.settle(self._growth_balances(raw), amps, self._virtual_supply)
        )

        factors = self._scaling_factors()
        scaled = scale_up_array(raw, factors)
        invariant = calculate_invariant(amps[0], amps[1], scaled)
        return _Context(
            amps=amps,
            scaling_factors=tuple(factors),
            raw_balances=tuple(raw),
            balances=tuple(scaled),
            invariant=invariant,
            supply=self._virtual_supply,
        )

    def _commit(self, ctx: _Context, step: _Step) -> None:
        """Apply the step's supply, charge its retained swap fees and rebaseline."""
        if any(balance < 0 for balance in step.balances):
            raise InputShapeError("Operation would leave a negative balance")
        self._check_locked_supply(step.supply)
        self._virtual_supply = step.supply

        balances = scale_up_array(list(step.balances), list(ctx.scaling_factors))
        invariant = calculate_invariant(ctx.amps[0], ctx.amps[1], balances)
        self._mint_protocol_fees(
            self._fees.get_join_exit_protocol_fee(ctx.invariant, invariant, ctx.supply, step.supply)
        )
        self._fees.update_baseline(ctx.amps, invariant, balances, self._rate_cache.get_rates())

    def _mint_protocol_fees(self, amount: int) -> None:
        if amount <= 0:
            return
        self._virtual_supply += amount
        self._protocol_fees_minted += amount
        logger.debug("protocol_fees_minted", pool=self.config.name, amount=amount)

    def _growth_balances(self, raw: list[int]) -> list[Bfp]:
        """Balances scaled at the rates of the fee baseline."""
        baseline = self._fees.baseline
        if baseline is None:
            return scale_up_array(raw, self._scaling_factors())
        factors = [
            compute_scaling_factor(decimals, rate)
            for decimals, rate in zip(self._decimals, baseline.rates)
        ]
        return scale_up_array(raw, factors)

    def _scaling_factors(self) -> list[Bfp]:
        return [
            compute_scaling_factor(decimals, self._rate_cache.get_rate(token))
            for token, decimals in zip(self._tokens, self._decimals)
        ]

    # ------------------------------------------------------------------
    # Atomicity
    # ------------------------------------------------------------------

    def _snapshot(self) -> dict[str, Any]:
        return {
            "amplification": self._amplification.snapshot(),
            "rates": self._rate_cache.snapshot(),
            "fees": self._fees.snapshot(),
            "initialized": self._initialized,
            "recovery_mode": self._recovery_mode,
            "virtual_supply": self._virtual_supply,
            "total_issued": self._total_issued,
            "protocol_fees_minted": self._protocol_fees_minted,
            "swap_fee": self._swap_fee,
        }

    def _restore(self, state: dict[str, Any]) -> None:
        self._amplification.restore(state["amplification"])
        self._rate_cache.restore(state["rates"])
        self._fees.restore(state["fees"])
        self._initialized = state["initialized"]
        self._recovery_mode = state["recovery_mode"]
        self._virtual_supply = state["virtual_supply"]
        self._total_issued = state["total_issued"]
        self._protocol_fees_minted = state["protocol_fees_minted"]
        self._swap_fee = state["swap_fee"]

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        """Restore all pool state if the wrapped operation raises."""
        state = self._snapshot()
        try:
            yield
        except Exception as e:
            self._restore(state)
            logger.warning(
                "stable_pool_operation_reverted",
                pool=self.config.name,
                operation=operation,
                error=str(e),
            )
            raise

    @contextmanager
    def _preview(self) -> Iterator[None]:
        """Restore all pool state when the wrapped block exits."""
        state = self._snapshot()
        try:
            yield
        finally:
            self._restore(state)

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _now(self) -> int:
        return self._clock()

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise UninitializedError(f"Pool {self.config.name} is not initialized")

    def _check_authority(self, authority: Authority) -> None:
        if self._authority is None or authority is not self._authority:
            raise UnauthorizedError("Caller does not hold the pool's authority")

    def _check_locked_supply(self, supply: int) -> None:
        if supply < MINIMUM_SHARE:
            raise MinimumShareError(
                f"Virtual supply {supply} would fall below the locked minimum {MINIMUM_SHARE}"
            )

    def _pricing_balances(self, balances: Sequence[int]) -> list[int]:
        """Drop the share entry from a registry-order vector."""
        if len(balances) != len(self._registry):
            raise InputShapeError(
                f"Expected {len(self._registry)} balances (registry order), got {len(balances)}"
            )
        _check_non_negative(balances)
        return [b for i, b in enumerate(balances) if i != self._share_index]

    def _check_amounts(self, amounts: Sequence[int]) -> None:
        if len(amounts) != len(self._tokens):
            raise InputShapeError(
                f"Expected {len(self._tokens)} amounts (pricing order), got {len(amounts)}"
            )
        _check_non_negative(amounts)

    def _check_token_index(self, token_index: int) -> None:
        if token_index < 0 or token_index >= len(self._tokens):
            raise BoundsError(
                f"token_index {token_index} out of range for {len(self._tokens)} tokens"
            )

    def _registry_index(self, token: str) -> int:
        try:
            return self._registry.index(normalize_address(token))
        except ValueError:
            raise BoundsError(
                f"Token {token} is not registered in pool {self.config.name}"
            ) from None

    def _pricing_index(self, registry_index: int) -> int:
        return registry_index - 1 if registry_index > self._share_index else registry_index

    def _to_registry(self, amounts: Sequence[int], share_value: int = 0) -> list[int]:
        registry_amounts = list(amounts)
        registry_amounts.insert(self._share_index, share_value)
        return registry_amounts

    def _single_amount(self, token_index: int, amount: int) -> list[int]:
        amounts = [0] * len(self._tokens)
        amounts[token_index] = amount
        return self._to_registry(amounts)


def _check_non_negative(amounts: Sequence[int]) -> None:
    for amount in amounts:
        if amount < 0:
            raise InputShapeError(f"Amounts must be non-negative, got {amount}")


def _check_min(value: int, minimum: int | None, what: str) -> None:
    if minimum is not None and value < minimum:
        raise SlippageError(f"{what} {value} below minimum {minimum}")


def _check_max(value: int, maximum: int | None, what: str) -> None:
    if maximum is not None and value > maximum:
        raise SlippageError(f"{what} {value} above maximum {maximum}")


_JOIN_HANDLERS: dict[JoinKind, Callable[..., OperationResult]] = {
    JoinKind.INIT: ComposableStablePool._join_init,
    JoinKind.EXACT_TOKENS_IN_FOR_BPT_OUT: ComposableStablePool._join_exact_tokens,
    JoinKind.TOKEN_IN_FOR_EXACT_BPT_OUT: ComposableStablePool._join_for_exact_share,
    JoinKind.ALL_TOKENS_IN_FOR_EXACT_BPT_OUT: ComposableStablePool._join_proportional,
}

_EXIT_HANDLERS: dict[ExitKind, Callable[..., OperationResult]] = {
    ExitKind.EXACT_BPT_IN_FOR_ONE_TOKEN_OUT: ComposableStablePool._exit_for_one_token,
    ExitKind.BPT_IN_FOR_EXACT_TOKENS_OUT: ComposableStablePool._exit_exact_tokens,
    ExitKind.EXACT_BPT_IN_FOR_ALL_TOKENS_OUT: ComposableStablePool._exit_proportional,
}


def _check_dispatch_complete(handlers: Mapping[Any, Any], kinds: type[Enum]) -> None:
    missing = set(kinds) - set(handlers)
    if missing:
        raise RuntimeError(f"No handler for {sorted(kind.value for kind in missing)}")


_check_dispatch_complete(_JOIN_HANDLERS, JoinKind)
_check_dispatch_complete(_EXIT_HANDLERS, ExitKind)
