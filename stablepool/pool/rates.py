"""Token rate cache.

Rate-bearing tokens (wrapped or yield-accruing assets) are priced by the
curve at their redemption rate. Rates come from an external RateSource and
are cached per token for a configurable duration; a cached rate is only
replaced once its entry has expired.

Tokens without a rate source have a fixed rate of ONE and no cache entry.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Protocol

import structlog

from stablepool.errors import BoundsError, InvalidRateError, UnsupportedOperationError
from stablepool.math.fixed_point import Bfp

logger = structlog.get_logger()


class RateSource(Protocol):
    """Protocol for external token rate providers.

    Implementations must fail closed: raise rather than return a stale or
    meaningless rate.
    """

    def fetch_rate(self, token: str) -> int:
        """Return the current rate of `token` as 18-decimal fixed point."""
        ...


@dataclass(frozen=True)
class TokenRateCache:
    """Cached rate of one token.

    Attributes:
        rate: Current cached rate (18-decimal)
        old_rate: Rate before the most recent refresh, kept for introspection.
            Fee accounting compares against the rates stored in the fee
            baseline instead, since several refreshes can happen between
            two operations.
        duration: Seconds a fetched rate stays valid
        expires: Timestamp from which the entry must be refreshed
    """

    rate: int
    old_rate: int
    duration: int
    expires: int


class RateCache:
    """Per-token rate cache over a set of rate sources."""

    def __init__(
        self,
        tokens: Sequence[str],
        sources: Mapping[str, RateSource],
        durations: Mapping[str, int],
        exempt: Mapping[str, bool],
        now: int,
    ) -> None:
        """Build the cache and fetch an initial rate for every rate-bearing token.

        Args:
            tokens: Pool tokens in pricing order
            sources: Rate source per rate-bearing token
            durations: Cache duration per token (missing means 0)
            exempt: Yield fee exemption flag per token (missing means False)
            now: Current timestamp

        Raises:
            BoundsError: If a source is registered for an unknown token
            InvalidRateError: If a source returns a non-positive rate
        """
        self._tokens = tuple(tokens)
        unknown = set(sources) - set(self._tokens)
        if unknown:
            raise BoundsError(f"Rate sources given for unknown tokens: {sorted(unknown)}")

        self._sources = dict(sources)
        self._exempt = {token: bool(exempt.get(token, False)) for token in self._tokens}
        self._entries: dict[str, TokenRateCache] = {}
        for token in self._tokens:
            if token not in self._sources:
                continue
            duration = durations.get(token, 0)
            rate = self._fetch(token)
            self._entries[token] = TokenRateCache(
                rate=rate, old_rate=rate, duration=duration, expires=now + duration
            )

    @property
    def tokens(self) -> tuple[str, ...]:
        return self._tokens

    def has_rate_source(self, token: str) -> bool:
        self._check_token(token)
        return token in self._sources

    def is_exempt(self, token: str) -> bool:
        self._check_token(token)
        return self._exempt[token]

    def get_rate(self, token: str) -> int:
        """Cached rate of `token` (ONE without a rate source). Never refreshes."""
        self._check_token(token)
        entry = self._entries.get(token)
        return entry.rate if entry is not None else Bfp.ONE

    def get_old_rate(self, token: str) -> int:
        """Rate before the last refresh (ONE without a rate source). Introspection only."""
        self._check_token(token)
        entry = self._entries.get(token)
        return entry.old_rate if entry is not None else Bfp.ONE

    def get_rates(self) -> tuple[int, ...]:
        return tuple(self.get_rate(token) for token in self._tokens)

    def get_token_rate_cache(self, token: str) -> TokenRateCache:
        return self._entry(token)

    def refresh_if_expired(self, token: str, now: int) -> bool:
        """Refresh the entry of `token` if it has expired.

        Returns:
            True if a new rate was fetched
        """
        self._check_token(token)
        entry = self._entries.get(token)
        if entry is None or now < entry.expires:
            return False
        self._refresh(token, entry.duration, now)
        return True

    def refresh_all_if_expired(self, now: int) -> None:
        for token in self._tokens:
            self.refresh_if_expired(token, now)

    def update_token_rate_cache(self, token: str, now: int) -> TokenRateCache:
        """Force a refresh of `token` regardless of expiry."""
        entry = self._entry(token)
        return self._refresh(token, entry.duration, now)

    def set_token_rate_cache_duration(self, token: str, duration: int, now: int) -> TokenRateCache:
        """Change the cache duration of `token` and refresh its rate."""
        if duration < 0:
            raise InvalidRateError(f"Rate cache duration must be non-negative, got {duration}")
        self._entry(token)
        entry = self._refresh(token, duration, now)
        logger.info("token_rate_cache_duration_set", token=token, duration=duration)
        return entry

    def snapshot(self) -> dict[str, TokenRateCache]:
        return dict(self._entries)

    def restore(self, state: dict[str, TokenRateCache]) -> None:
        self._entries = dict(state)

    def _refresh(self, token: str, duration: int, now: int) -> TokenRateCache:
        previous = self._entries[token]
        rate = self._fetch(token)
        entry = replace(
            previous,
            rate=rate,
            old_rate=previous.rate,
            duration=duration,
            expires=now + duration,
        )
        self._entries[token] = entry
        logger.debug(
            "token_rate_refreshed",
            token=token,
            rate=rate,
            old_rate=previous.rate,
            expires=entry.expires,
        )
        return entry

    def _fetch(self, token: str) -> int:
        rate = self._sources[token].fetch_rate(token)
        if rate <= 0:
            raise InvalidRateError(f"Rate source returned non-positive rate {rate} for {token}")
        return rate

    def _entry(self, token: str) -> TokenRateCache:
        self._check_token(token)
        entry = self._entries.get(token)
        if entry is None:
            raise UnsupportedOperationError(f"Token {token} has no rate source")
        return entry

    def _check_token(self, token: str) -> None:
        if token not in self._exempt:
            raise BoundsError(f"Unknown token {token}")
