"""Operation kinds, requests and results of the stable pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SwapKind(str, Enum):
    """Which side of a swap the caller fixes."""

    GIVEN_IN = "given_in"
    GIVEN_OUT = "given_out"


class JoinKind(str, Enum):
    """How liquidity is added."""

    INIT = "init"
    EXACT_TOKENS_IN_FOR_BPT_OUT = "exact_tokens_in_for_bpt_out"
    TOKEN_IN_FOR_EXACT_BPT_OUT = "token_in_for_exact_bpt_out"
    # Proportional join, not supported by composable stable pools
    ALL_TOKENS_IN_FOR_EXACT_BPT_OUT = "all_tokens_in_for_exact_bpt_out"


class ExitKind(str, Enum):
    """How liquidity is removed."""

    EXACT_BPT_IN_FOR_ONE_TOKEN_OUT = "exact_bpt_in_for_one_token_out"
    BPT_IN_FOR_EXACT_TOKENS_OUT = "bpt_in_for_exact_tokens_out"
    # Proportional exit, only available in recovery mode
    EXACT_BPT_IN_FOR_ALL_TOKENS_OUT = "exact_bpt_in_for_all_tokens_out"


@dataclass(frozen=True)
class JoinRequest:
    """Join parameters.

    Which fields are read depends on `kind`:
    - INIT: amounts (registry order, share entry ignored)
    - EXACT_TOKENS_IN_FOR_BPT_OUT: amounts, limit (minimum share out)
    - TOKEN_IN_FOR_EXACT_BPT_OUT: share_amount, token_index, limit (maximum in)

    Amounts and token_index use pricing order except for INIT.
    """

    kind: JoinKind
    amounts: list[int] = field(default_factory=list)
    share_amount: int = 0
    token_index: int = 0
    limit: int | None = None


@dataclass(frozen=True)
class ExitRequest:
    """Exit parameters.

    Which fields are read depends on `kind`:
    - EXACT_BPT_IN_FOR_ONE_TOKEN_OUT: share_amount, token_index, limit (minimum out)
    - BPT_IN_FOR_EXACT_TOKENS_OUT: amounts, limit (maximum share in)
    - EXACT_BPT_IN_FOR_ALL_TOKENS_OUT: share_amount (recovery mode only)
    """

    kind: ExitKind
    amounts: list[int] = field(default_factory=list)
    share_amount: int = 0
    token_index: int = 0
    limit: int | None = None


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a join or exit dispatched by kind.

    Attributes:
        share_amount: Share tokens minted (join) or burned (exit)
        amounts: Token amounts moved in registry order. The share entry is
            zero, except for INIT where it holds the share amount placed in
            pool custody (total issued minus virtual supply)
    """

    share_amount: int
    amounts: list[int]


@dataclass(frozen=True, eq=False)
class Authority:
    """Opaque capability required by parameter-changing entry points.

    Compared by identity: only the exact object handed to the pool at
    construction authorizes changes.
    """

    name: str = "governance"
