"""Dual-amplification stable pool math.

Core math for the generalized StableSwap curve used by the pool. Two
independent amplification coefficients shape the curve:

    A1 * n * S + D = A2 * n * D + D^(n+1) / (n^n * P)

where S is the sum and P the product of the balances. A1 weighs the
constant-sum part, A2 the invariant term. With A1 == A2 this is exactly
Balancer's StableMath curve.

Uses Newton-Raphson iteration for the invariant and for single balances.
All rounding is biased in the pool's favor.

IMPORTANT: All financial calculations use SafeInt for overflow protection
and explicit bounds checking.
"""

from stablepool.errors import (
    BoundsError,
    InputShapeError,
    StableGetBalanceDidNotConverge,
    StableInvariantDidNotConverge,
    ZeroBalanceError,
)
from stablepool.math.fixed_point import AMP_PRECISION, Bfp
from stablepool.safe_int import S

# Maximum iterations for Newton-Raphson convergence
_STABLE_MAX_ITERATIONS = 255


def _check_index(name: str, index: int, n_coins: int) -> None:
    if index < 0 or index >= n_coins:
        raise BoundsError(f"{name} {index} out of range for {n_coins} tokens")


def _check_pair(token_index_in: int, token_index_out: int, n_coins: int) -> None:
    _check_index("token_index_in", token_index_in, n_coins)
    _check_index("token_index_out", token_index_out, n_coins)
    if token_index_in == token_index_out:
        raise InputShapeError("Cannot swap token with itself")


def _sum(balances: list[Bfp]) -> Bfp:
    return Bfp(sum(b.value for b in balances))


def calculate_invariant(amp1: int, amp2: int, balances: list[Bfp]) -> Bfp:
    """Calculate the invariant D using Newton-Raphson iteration.

    Uses Balancer's parameterization where the Newton-Raphson formula uses
    A*n (not A*n^n). The n^n factor is incorporated through the iterative
    d_p calculation.

    Algorithm:
        1. Initial guess: D = sum(balances)
        2. Iterate D = (A1*n*S + n*D_P) * D / ((A2*n - 1) * D + (n+1) * D_P)
           until |D_new - D_old| <= 1 wei
        3. Max iterations: 255

    Args:
        amp1: Balance-sum amplification (scaled by AMP_PRECISION=1000)
        amp2: Invariant-term amplification (scaled by AMP_PRECISION=1000)
        balances: List of token balances (already scaled to 18 decimals)

    Returns:
        The calculated invariant D as Bfp, rounded down

    Raises:
        StableInvariantDidNotConverge: If iteration doesn't converge
        ZeroBalanceError: If any balance is zero
    """
    n_coins = len(balances)
    if n_coins == 0:
        return Bfp(0)

    for i, bal in enumerate(balances):
        if bal.value <= 0:
            raise ZeroBalanceError(f"Balance at index {i} must be positive")

    sum_balances = S(sum(b.value for b in balances))
    d_prev = sum_balances

    # A * n (Balancer convention, NOT A * n^n); amps already include AMP_PRECISION
    sum_amp_times_n = S(amp1) * S(n_coins)
    invariant_amp_times_n = S(amp2) * S(n_coins)

    for _ in range(_STABLE_MAX_ITERATIONS):
        # d_p = D^(n+1) / (n^n * prod(balances)), built one balance at a time
        d_p = d_prev
        for bal in balances:
            d_p = (d_p * d_prev) // (S(n_coins) * S(bal.value))

        term1 = (sum_amp_times_n * sum_balances) // S(AMP_PRECISION)
        numerator = (term1 + d_p * S(n_coins)) * d_prev

        term2 = ((invariant_amp_times_n - S(AMP_PRECISION)) * d_prev) // S(AMP_PRECISION)
        denominator = term2 + S(n_coins + 1) * d_p

        d_new = numerator // denominator

        if d_new > d_prev:
            if d_new - d_prev <= 1:
                return Bfp(d_new.value)
        else:
            if d_prev - d_new <= 1:
                return Bfp(d_new.value)

        d_prev = d_new

    raise StableInvariantDidNotConverge(
        f"Stable invariant did not converge after {_STABLE_MAX_ITERATIONS} iterations"
    )


def get_token_balance_given_invariant_and_all_other_balances(
    amp1: int,
    amp2: int,
    balances: list[Bfp],
    invariant: Bfp,
    token_index: int,
) -> Bfp:
    """Solve for balance[token_index] given D and all other balances.

    With every other balance fixed the curve reduces to the quadratic

        y^2 + (b - D * A2 / A1) * y = c

    where b = S' + D / (A1 * n) and c = D^(n+1) / (A1 * n * n^n * P'),
    S' and P' being the sum and product of the other balances. Solved with
    Newton-Raphson, rounding up at every step.

    Args:
        amp1: Balance-sum amplification (scaled by AMP_PRECISION=1000)
        amp2: Invariant-term amplification (scaled by AMP_PRECISION=1000)
        balances: Token balances (the value at token_index is used in the c calculation)
        invariant: The invariant D to preserve
        token_index: Index of the token whose balance we're solving for

    Returns:
        The calculated balance as Bfp

    Raises:
        StableGetBalanceDidNotConverge: If iteration doesn't converge
        BoundsError: If token_index is out of range
        ZeroBalanceError: If the invariant is zero
    """
    n_coins = len(balances)
    _check_index("token_index", token_index, n_coins)
    if invariant.value <= 0:
        raise ZeroBalanceError("Invariant must be positive")

    d = S(invariant.value)
    sum_amp_times_n = S(amp1) * S(n_coins)

    # P_D starts as balance[0] * n
    # For each subsequent balance j: P_D = P_D * balance[j] * n / invariant
    sum_balances = S(balances[0].value)
    p_d = S(balances[0].value) * S(n_coins)

    for j in range(1, n_coins):
        p_d = (p_d * S(balances[j].value) * S(n_coins)) // d
        sum_balances = sum_balances + S(balances[j].value)

    sum_others = sum_balances - S(balances[token_index].value)

    inv2 = d * d

    amp_times_p_d = sum_amp_times_n * p_d
    if amp_times_p_d == 0:
        raise StableGetBalanceDidNotConverge("amp_times_p_d is zero")
    c = inv2.ceiling_div(amp_times_p_d) * S(AMP_PRECISION) * S(balances[token_index].value)

    b = sum_others + (d // sum_amp_times_n) * S(AMP_PRECISION)

    # D * A2 / A1, equal to D when both coefficients match
    d_eff = (d * S(amp2)).ceiling_div(S(amp1))

    token_balance = (d_eff * d_eff + c).ceiling_div(d_eff + b)

    for _ in range(_STABLE_MAX_ITERATIONS):
        prev_token_balance = token_balance

        # tokenBalance = (tokenBalance^2 + c) / (2*tokenBalance + b - D_eff)
        numerator = token_balance * token_balance + c
        denominator = S(2) * token_balance + b

        if denominator <= d_eff:
            raise StableGetBalanceDidNotConverge("Denominator became non-positive")

        token_balance = numerator.ceiling_div(denominator - d_eff)

        if token_balance > prev_token_balance:
            if token_balance - prev_token_balance <= 1:
                return Bfp(token_balance.value)
        else:
            if prev_token_balance - token_balance <= 1:
                return Bfp(token_balance.value)

    raise StableGetBalanceDidNotConverge(
        f"Stable get_balance did not converge after {_STABLE_MAX_ITERATIONS} iterations"
    )


def calc_out_given_in(
    amp1: int,
    amp2: int,
    balances: list[Bfp],
    token_index_in: int,
    token_index_out: int,
    amount_in: Bfp,
    invariant: Bfp,
) -> Bfp:
    """Calculate output amount for a given input.

    Fee should be subtracted from amount_in BEFORE calling this function.

    Algorithm:
        1. Add amount_in to balances[token_index_in]
        2. Solve for new balances[token_index_out] given the invariant
        3. Return: old_balance_out - new_balance_out - 1 (1 wei rounding protection)

    Args:
        amp1: Balance-sum amplification (scaled by AMP_PRECISION=1000)
        amp2: Invariant-term amplification (scaled by AMP_PRECISION=1000)
        balances: List of scaled token balances (18 decimals)
        token_index_in: Index of input token
        token_index_out: Index of output token
        amount_in: Scaled input amount (after fee subtraction)
        invariant: Current invariant of balances

    Returns:
        Scaled output amount, rounded down

    Raises:
        StableGetBalanceDidNotConverge: If balance calculation doesn't converge
        InputShapeError: If token_index_in == token_index_out
        BoundsError: If token indices are out of range
    """
    _check_pair(token_index_in, token_index_out, len(balances))

    new_balances = list(balances)
    new_balances[token_index_in] = balances[token_index_in].add(amount_in)

    new_balance_out = get_token_balance_given_invariant_and_all_other_balances(
        amp1, amp2, new_balances, invariant, token_index_out
    )

    amount_out = balances[token_index_out].value - new_balance_out.value - 1
    return Bfp(max(0, amount_out))


def calc_in_given_out(
    amp1: int,
    amp2: int,
    balances: list[Bfp],
    token_index_in: int,
    token_index_out: int,
    amount_out: Bfp,
    invariant: Bfp,
) -> Bfp:
    """Calculate input amount for a given output.

    Fee should be added to the result AFTER calling this function.

    Args:
        amp1: Balance-sum amplification (scaled by AMP_PRECISION=1000)
        amp2: Invariant-term amplification (scaled by AMP_PRECISION=1000)
        balances: List of scaled token balances (18 decimals)
        token_index_in: Index of input token
        token_index_out: Index of output token
        amount_out: Scaled output amount
        invariant: Current invariant of balances

    Returns:
        Scaled input amount (before fee addition), rounded up

    Raises:
        ZeroBalanceError: If amount_out >= balance_out
        InputShapeError: If token_index_in == token_index_out
        BoundsError: If token indices are out of range
    """
    _check_pair(token_index_in, token_index_out, len(balances))

    if amount_out.value >= balances[token_index_out].value:
        raise ZeroBalanceError("amount_out must be less than balance_out")

    new_balances = list(balances)
    new_balances[token_index_out] = Bfp(balances[token_index_out].value - amount_out.value)

    new_balance_in = get_token_balance_given_invariant_and_all_other_balances(
        amp1, amp2, new_balances, invariant, token_index_in
    )

    return Bfp(new_balance_in.value - balances[token_index_in].value + 1)


def calc_bpt_out_given_exact_tokens_in(
    amp1: int,
    amp2: int,
    balances: list[Bfp],
    amounts_in: list[Bfp],
    bpt_total_supply: int,
    current_invariant: Bfp,
    swap_fee_percentage: Bfp,
) -> Bfp:
    """Share amount minted for a multi-token join (rounds down).

    Each token amount is compared with what a proportional join would need
    at the balance-weighted average ratio. Only the excess is treated as an
    implicit swap and charged the pool swap fee, so a proportional join is
    fee-free.

    Raises:
        InputShapeError: If amounts_in and balances differ in length
    """
    if len(amounts_in) != len(balances):
        raise InputShapeError(f"Expected {len(balances)} amounts, got {len(amounts_in)}")

    sum_balances = _sum(balances)
    one = Bfp.one()

    balance_ratios_with_fee = []
    invariant_ratio_with_fees = Bfp(0)
    for balance, amount_in in zip(balances, amounts_in):
        current_weight = balance.div_down(sum_balances)
        ratio = balance.add(amount_in).div_down(balance)
        balance_ratios_with_fee.append(ratio)
        invariant_ratio_with_fees = invariant_ratio_with_fees.add(ratio.mul_down(current_weight))

    fee_complement = swap_fee_percentage.complement()
    new_balances = []
    for balance, amount_in, ratio in zip(balances, amounts_in, balance_ratios_with_fee):
        if ratio > invariant_ratio_with_fees:
            non_taxable_amount = balance.mul_down(invariant_ratio_with_fees.sub(one))
            taxable_amount = amount_in.sub(non_taxable_amount)
            amount_in_without_fee = non_taxable_amount.add(taxable_amount.mul_down(fee_complement))
        else:
            amount_in_without_fee = amount_in
        new_balances.append(balance.add(amount_in_without_fee))

    new_invariant = calculate_invariant(amp1, amp2, new_balances)
    invariant_ratio = new_invariant.div_down(current_invariant)
    if invariant_ratio > one:
        return Bfp(bpt_total_supply).mul_down(invariant_ratio.sub(one))
    return Bfp(0)


def calc_bpt_in_given_exact_tokens_out(
    amp1: int,
    amp2: int,
    balances: list[Bfp],
    amounts_out: list[Bfp],
    bpt_total_supply: int,
    current_invariant: Bfp,
    swap_fee_percentage: Bfp,
) -> Bfp:
    """Share amount burned for a multi-token exit (rounds up).

    Mirror of calc_bpt_out_given_exact_tokens_in: the part of each amount
    beyond the proportional exit is grossed up by the swap fee.

    Raises:
        InputShapeError: If amounts_out and balances differ in length
        ZeroBalanceError: If an amount would drain its token balance
    """
    if len(amounts_out) != len(balances):
        raise InputShapeError(f"Expected {len(balances)} amounts, got {len(amounts_out)}")

    for i, (balance, amount_out) in enumerate(zip(balances, amounts_out)):
        if amount_out >= balance:
            raise ZeroBalanceError(f"amount_out at index {i} must be less than its balance")

    sum_balances = _sum(balances)

    balance_ratios_without_fee = []
    invariant_ratio_without_fees = Bfp(0)
    for balance, amount_out in zip(balances, amounts_out):
        current_weight = balance.div_up(sum_balances)
        ratio = balance.sub(amount_out).div_up(balance)
        balance_ratios_without_fee.append(ratio)
        invariant_ratio_without_fees = invariant_ratio_without_fees.add(
            ratio.mul_up(current_weight)
        )

    fee_complement = swap_fee_percentage.complement()
    new_balances = []
    for balance, amount_out, ratio in zip(balances, amounts_out, balance_ratios_without_fee):
        if invariant_ratio_without_fees > ratio:
            non_taxable_amount = balance.mul_down(invariant_ratio_without_fees.complement())
            taxable_amount = amount_out.sub(non_taxable_amount)
            amount_out_with_fee = non_taxable_amount.add(taxable_amount.div_up(fee_complement))
        else:
            amount_out_with_fee = amount_out
        new_balances.append(balance.sub(amount_out_with_fee))

    new_invariant = calculate_invariant(amp1, amp2, new_balances)
    invariant_ratio = new_invariant.div_down(current_invariant)
    return Bfp(bpt_total_supply).mul_up(invariant_ratio.complement())


def calc_token_in_given_exact_bpt_out(
    amp1: int,
    amp2: int,
    balances: list[Bfp],
    token_index: int,
    bpt_amount_out: int,
    bpt_total_supply: int,
    current_invariant: Bfp,
    swap_fee_percentage: Bfp,
) -> Bfp:
    """Token amount required to mint an exact share amount (rounds up).

    The target invariant grows with the share supply. The fee applies to the
    taxable part of the amount, i.e. everything but the token's own weight
    in the pool, as if the rest had been swapped in.
    """
    _check_index("token_index", token_index, len(balances))

    supply = Bfp(bpt_total_supply)
    new_invariant = supply.add(Bfp(bpt_amount_out)).div_up(supply).mul_up(current_invariant)

    new_balance = get_token_balance_given_invariant_and_all_other_balances(
        amp1, amp2, balances, new_invariant, token_index
    )
    amount_in_without_fee = new_balance.sub(balances[token_index])

    current_weight = balances[token_index].div_down(_sum(balances))
    taxable_percentage = current_weight.complement()
    taxable_amount = amount_in_without_fee.mul_up(taxable_percentage)
    non_taxable_amount = amount_in_without_fee.sub(taxable_amount)

    return non_taxable_amount.add(taxable_amount.div_up(swap_fee_percentage.complement()))


def calc_token_out_given_exact_bpt_in(
    amp1: int,
    amp2: int,
    balances: list[Bfp],
    token_index: int,
    bpt_amount_in: int,
    bpt_total_supply: int,
    current_invariant: Bfp,
    swap_fee_percentage: Bfp,
) -> Bfp:
    """Token amount paid out for burning an exact share amount (rounds down).

    Raises:
        ZeroBalanceError: If the share amount would burn the whole supply
    """
    _check_index("token_index", token_index, len(balances))
    if bpt_amount_in >= bpt_total_supply:
        raise ZeroBalanceError("Share amount in must be less than the supply")

    supply = Bfp(bpt_total_supply)
    new_invariant = supply.sub(Bfp(bpt_amount_in)).div_up(supply).mul_up(current_invariant)

    new_balance = get_token_balance_given_invariant_and_all_other_balances(
        amp1, amp2, balances, new_invariant, token_index
    )
    amount_out_without_fee = balances[token_index].sub(new_balance)

    current_weight = balances[token_index].div_down(_sum(balances))
    taxable_percentage = current_weight.complement()
    taxable_amount = amount_out_without_fee.mul_up(taxable_percentage)
    non_taxable_amount = amount_out_without_fee.sub(taxable_amount)

    return non_taxable_amount.add(taxable_amount.mul_down(swap_fee_percentage.complement()))
