"""Tests for protocol fee accounting.

Covers the ownership percentage formula, swap growth fees against the
baseline, yield fees against the all-time-high watermark, and the fee
charged across a single join or exit.
"""

from decimal import Decimal

import pytest

from stablepool.errors import InvalidFeeError
from stablepool.math.fixed_point import AMP_PRECISION, ONE_18, Bfp
from stablepool.math.stable_math import calculate_invariant
from stablepool.pool.protocol_fees import (
    ProtocolFeeAccountant,
    StaticProtocolFeeProvider,
    bpt_for_ownership_percentage,
    get_protocol_ownership_percentage,
)
from stablepool.pool.rates import RateCache
from tests.helpers import DAI, ONE, T0, USDC, WSTETH, MockRateSource

AMPS = (200 * AMP_PRECISION, 200 * AMP_PRECISION)
SUPPLY = 2_000 * ONE_18


def bfps(*amounts: int) -> list[Bfp]:
    return [Bfp(amount * ONE_18) for amount in amounts]


def make_accountant(
    tokens=(WSTETH, DAI),
    weights=(ONE_18, 0),
    source: MockRateSource | None = None,
    exempt=(),
    swap_fee="0.5",
    yield_fee="0.5",
):
    source = source or MockRateSource({WSTETH: ONE})
    rate_tokens = [token for token in tokens if token in source.rates]
    cache = RateCache(
        tokens,
        {token: source for token in rate_tokens},
        {},
        {token: True for token in exempt},
        T0,
    )
    provider = StaticProtocolFeeProvider(Decimal(swap_fee), Decimal(yield_fee))
    accountant = ProtocolFeeAccountant(cache, tokens, [Bfp(w) for w in weights], provider)
    return accountant, cache, source, provider


class TestOwnershipPercentage:
    """Tests for get_protocol_ownership_percentage."""

    def test_no_growth_is_zero(self):
        """Equal growth of invariant and supply owes nothing."""
        one = Bfp.one()
        assert get_protocol_ownership_percentage(one, one, Bfp(ONE_18 // 2)).value == 0

    def test_supply_outgrowing_invariant_is_zero(self):
        """Never a negative fee."""
        result = get_protocol_ownership_percentage(
            Bfp(ONE_18), Bfp(2 * ONE_18), Bfp(ONE_18 // 2)
        )
        assert result.value == 0

    def test_growth_formula(self):
        """(1 - supply_growth / invariant_growth) * pct."""
        result = get_protocol_ownership_percentage(Bfp(2 * ONE_18), Bfp(ONE_18), Bfp(ONE_18 // 2))
        assert result.value == ONE_18 // 4

    def test_bpt_for_ownership(self):
        """supply * pct, rounded down."""
        assert bpt_for_ownership_percentage(1_000 * ONE_18, Bfp(ONE_18 // 4)) == 250 * ONE_18


class TestSwapGrowthFee:
    """Tests for fees on invariant growth since the baseline."""

    def test_no_baseline_is_zero(self):
        """Before the first rebaseline nothing is owed."""
        accountant, *_ = make_accountant()
        assert accountant.get_swap_growth_protocol_fee(bfps(1_000, 1_000), AMPS, SUPPLY) == 0

    def test_unchanged_balances_owe_nothing(self):
        """Current invariant equal to the baseline is exactly zero."""
        accountant, *_ = make_accountant()
        balances = bfps(1_000, 1_000)
        accountant.update_baseline(AMPS, calculate_invariant(*AMPS, balances), balances, [ONE, ONE])
        assert accountant.get_swap_growth_protocol_fee(balances, AMPS, SUPPLY) == 0

    def test_shrinking_invariant_owes_nothing(self):
        """A lower invariant never yields a negative fee."""
        accountant, *_ = make_accountant()
        balances = bfps(1_000, 1_000)
        accountant.update_baseline(AMPS, calculate_invariant(*AMPS, balances), balances, [ONE, ONE])
        assert accountant.get_swap_growth_protocol_fee(bfps(900, 1_000), AMPS, SUPPLY) == 0

    def test_growth_is_charged(self):
        """owed = supply * (1 - baseline / current) * pct."""
        accountant, *_ = make_accountant()
        balances = bfps(1_000, 1_000)
        baseline = calculate_invariant(*AMPS, balances)
        accountant.update_baseline(AMPS, baseline, balances, [ONE, ONE])

        grown = bfps(1_010, 1_010)
        current = calculate_invariant(*AMPS, grown)
        owed = accountant.get_swap_growth_protocol_fee(grown, AMPS, SUPPLY)

        expected = SUPPLY * (current.value - baseline.value) // current.value // 2
        assert owed > 0
        assert abs(owed - expected) <= expected // 10**12

    def test_amp_change_recomputes_baseline(self):
        """Changing amps alone does not look like growth."""
        accountant, *_ = make_accountant()
        balances = bfps(1_000, 1_500)
        accountant.update_baseline(AMPS, calculate_invariant(*AMPS, balances), balances, [ONE, ONE])

        new_amps = (400 * AMP_PRECISION, 400 * AMP_PRECISION)
        assert calculate_invariant(*new_amps, balances) > calculate_invariant(*AMPS, balances)
        assert accountant.get_swap_growth_protocol_fee(balances, new_amps, SUPPLY) == 0


class TestYieldFee:
    """Tests for fees on rate growth above the watermark."""

    def test_first_call_initializes_watermark(self):
        """The first observation sets the watermark and owes nothing."""
        accountant, *_ = make_accountant()
        assert accountant.ath_rate_product == 0
        assert accountant.get_yield_protocol_fee(SUPPLY) == 0
        assert accountant.ath_rate_product == ONE

    def test_twenty_percent_rate_growth_at_fifty_percent_fee(self):
        """supply * 0.5 * (1 - 1/1.2) within 0.01%."""
        accountant, cache, source, _ = make_accountant()
        accountant.initialize_watermark()

        source.rates[WSTETH] = ONE * 12 // 10
        cache.update_token_rate_cache(WSTETH, T0)
        owed = accountant.get_yield_protocol_fee(SUPPLY)

        expected = Decimal(SUPPLY) * Decimal("0.5") * (1 - 1 / Decimal("1.2"))
        assert abs(Decimal(owed) - expected) <= expected * Decimal("0.0001")
        assert accountant.ath_rate_product == ONE * 12 // 10

    def test_watermark_never_decreases(self):
        """Rates oscillating below the high leave it in place and owe nothing."""
        accountant, cache, source, _ = make_accountant()
        accountant.initialize_watermark()
        history = []
        for rate in (ONE * 11 // 10, ONE, ONE * 105 // 100, ONE * 11 // 10, ONE * 115 // 100):
            source.rates[WSTETH] = rate
            cache.update_token_rate_cache(WSTETH, T0)
            owed = accountant.get_yield_protocol_fee(SUPPLY)
            if accountant.get_rate_product().value <= (history[-1] if history else ONE):
                assert owed == 0
            history.append(accountant.ath_rate_product)

        assert history == sorted(history)
        assert history[-1] == ONE * 115 // 100

    def test_no_eligible_tokens(self):
        """Without rate-bearing tokens the watermark is never set."""
        accountant, *_ = make_accountant(
            tokens=(DAI, USDC), weights=(ONE_18 // 2, ONE_18 // 2), source=MockRateSource()
        )
        accountant.initialize_watermark()
        assert accountant.get_yield_protocol_fee(SUPPLY) == 0
        assert accountant.ath_rate_product == 0

    def test_exempt_token_excluded(self):
        """An exempt token contributes unity to the rate product."""
        accountant, cache, source, _ = make_accountant(exempt=(WSTETH,))
        accountant.initialize_watermark()
        source.rates[WSTETH] = 2 * ONE
        cache.update_token_rate_cache(WSTETH, T0)
        assert accountant.get_rate_product() == Bfp.one()
        assert accountant.get_yield_protocol_fee(SUPPLY) == 0
        assert accountant.ath_rate_product == 0

    def test_weighted_product(self):
        """Each rate is raised to its weight."""
        source = MockRateSource({WSTETH: 4 * ONE, DAI: ONE})
        accountant, *_ = make_accountant(weights=(ONE_18 // 2, ONE_18 // 2), source=source)
        product = accountant.get_rate_product().value
        assert 2 * ONE - 10**6 < product <= 2 * ONE


class TestJoinExitFee:
    """Tests for the fee retained by a single operation."""

    def test_proportional_change_is_free(self):
        """Invariant and supply growing alike owe nothing."""
        accountant, *_ = make_accountant()
        pre = Bfp(2_000 * ONE_18)
        post = Bfp(2_020 * ONE_18)
        owed = accountant.get_join_exit_protocol_fee(pre, post, SUPPLY, SUPPLY * 101 // 100)
        assert owed == 0

    def test_non_proportional_join_is_charged(self):
        """Invariant outgrowing supply owes a positive fee."""
        accountant, *_ = make_accountant()
        pre = Bfp(2_000 * ONE_18)
        post = Bfp(2_020 * ONE_18)
        post_supply = SUPPLY * 1009 // 1000
        owed = accountant.get_join_exit_protocol_fee(pre, post, SUPPLY, post_supply)

        expected = Decimal(post_supply) * (1 - Decimal("1.009") / Decimal("1.01")) / 2
        assert owed > 0
        assert abs(Decimal(owed) - expected) <= expected * Decimal("1e-12")

    def test_swap_growth_is_charged(self):
        """A swap grows the invariant at constant supply."""
        accountant, *_ = make_accountant()
        owed = accountant.get_join_exit_protocol_fee(
            Bfp(2_000 * ONE_18), Bfp(2_001 * ONE_18), SUPPLY, SUPPLY
        )
        assert owed > 0


class TestRecoveryAndValidation:
    """Tests for recovery mode and percentage validation."""

    def test_recovery_mode_zeroes_percentages(self):
        """Both percentages read as zero in recovery mode."""
        accountant, *_ = make_accountant()
        accountant.set_recovery_mode(True)
        assert accountant.protocol_swap_fee_percentage().value == 0
        assert accountant.protocol_yield_fee_percentage().value == 0

    def test_percentage_above_one_rejected(self):
        """Governance cannot configure more than 100%."""
        accountant, _, _, provider = make_accountant()
        provider.swap_fee_percentage = Decimal("1.5")
        with pytest.raises(InvalidFeeError):
            accountant.protocol_swap_fee_percentage()

    def test_full_percentage_allowed(self):
        """100% is the upper bound and is accepted."""
        accountant, _, _, provider = make_accountant()
        provider.yield_fee_percentage = Decimal(1)
        assert accountant.protocol_yield_fee_percentage() == Bfp.one()

    def test_negative_percentage_rejected(self):
        accountant, _, _, provider = make_accountant()
        provider.yield_fee_percentage = Decimal("-0.1")
        with pytest.raises(InvalidFeeError):
            accountant.protocol_yield_fee_percentage()

    def test_snapshot_restore(self):
        """restore() undoes watermark and baseline changes."""
        accountant, *_ = make_accountant()
        state = accountant.snapshot()
        accountant.initialize_watermark()
        balances = bfps(1_000, 1_000)
        accountant.update_baseline(AMPS, calculate_invariant(*AMPS, balances), balances, [ONE, ONE])
        accountant.restore(state)
        assert accountant.baseline is None
        assert accountant.ath_rate_product == 0
