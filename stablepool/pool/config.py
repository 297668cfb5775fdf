"""Pool configuration models.

Deployment-time parameters of a composable stable pool, validated on
construction. The token registry is the list of tokens with the share
token inserted at `share_index`.
"""

from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, model_validator

from stablepool.constants import (
    MAX_AMP,
    MAX_SWAP_FEE_PERCENTAGE,
    MAX_TOKENS,
    MIN_AMP,
    MIN_SWAP_FEE_PERCENTAGE,
    MIN_TOKENS,
)
from stablepool.math.fixed_point import ONE_18


def normalize_address(value: Any) -> Any:
    """Lowercase address strings so identifiers compare case-insensitively."""
    if isinstance(value, str):
        return value.lower()
    return value


# Token identifier (40 hex chars after 0x prefix), stored lowercase
Address = Annotated[
    str,
    BeforeValidator(normalize_address),
    Field(pattern=r"^0x[a-f0-9]{40}$"),
]

MIN_SWAP_FEE = Decimal(MIN_SWAP_FEE_PERCENTAGE) / ONE_18
MAX_SWAP_FEE = Decimal(MAX_SWAP_FEE_PERCENTAGE) / ONE_18


class TokenConfig(BaseModel):
    """One non-share token of the pool."""

    address: Address
    decimals: int = Field(default=18, ge=0, le=18)
    rate_cache_duration: int = Field(default=0, ge=0, description="Seconds a rate stays cached.")
    exempt_from_yield_fees: bool = False
    yield_weight: Decimal | None = Field(
        default=None,
        ge=0,
        le=1,
        description="Weight in the yield rate product. Defaults to an equal split.",
    )

    model_config = {"frozen": True}


class PoolConfig(BaseModel):
    """Deployment parameters of a composable stable pool."""

    name: str = "composable-stable-pool"
    share_token: Address
    share_index: int = Field(default=0, ge=0)
    tokens: list[TokenConfig] = Field(min_length=MIN_TOKENS, max_length=MAX_TOKENS)
    amp1: int = Field(ge=MIN_AMP, le=MAX_AMP, description="Raw balance-sum amplification.")
    amp2: int = Field(ge=MIN_AMP, le=MAX_AMP, description="Raw invariant-term amplification.")
    swap_fee_percentage: Decimal = Field(ge=MIN_SWAP_FEE, le=MAX_SWAP_FEE)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_registry(self) -> "PoolConfig":
        if self.share_index > len(self.tokens):
            raise ValueError(
                f"share_index {self.share_index} out of range for {len(self.tokens) + 1} entries"
            )
        addresses = [token.address for token in self.tokens] + [self.share_token]
        if len(set(addresses)) != len(addresses):
            raise ValueError("Token addresses must be unique")

        weights = [token.yield_weight for token in self.tokens]
        given = [weight for weight in weights if weight is not None]
        if given and len(given) != len(weights):
            raise ValueError("yield_weight must be given for every token or for none")
        if given and sum(given) != 1:
            raise ValueError(f"yield weights must sum to 1, got {sum(given)}")
        return self

    @property
    def registry(self) -> tuple[str, ...]:
        """All token identifiers in registry order, share token included."""
        addresses = [token.address for token in self.tokens]
        addresses.insert(self.share_index, self.share_token)
        return tuple(addresses)

    def yield_weights(self) -> list[Decimal]:
        """Yield weights in pricing order, equal split when none are given."""
        if self.tokens[0].yield_weight is not None:
            return [token.yield_weight or Decimal(0) for token in self.tokens]
        count = len(self.tokens)
        return [Decimal(1) / count] * count
