"""
services/rate_provider.py — Exchange-rate providers.

Contract shared by every provider:

    get_rate(base, target, as_of) -> RateQuote | None

  - `as_of` is a `date` for a historical lookup or the LATEST sentinel.
  - Returns None when the provider has no rate for the pair.
  - Raises RateProviderError on transport, HTTP or payload failures.
  - For historical lookups the provider MAY answer with the nearest prior
    date's rate (markets are closed on weekends); `RateQuote.as_of` always
    carries the date the rate is actually valid for.

Caching and fallback live here, never in the resolver.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from decimal import Decimal, InvalidOperation

import httpx

from fairshare.app.errors import RateProviderError
from fairshare.app.services.types import LATEST, RateQuote

logger = logging.getLogger(__name__)


class RateProvider:
    """Base class; subclasses implement get_rate()."""

    def get_rate(self, base: str, target: str, as_of) -> RateQuote | None:
        raise NotImplementedError


# ── Frankfurter (ECB reference rates) ──────────────────────────────────────

class FrankfurterRateProvider(RateProvider):
    """
    Fetches rates from the Frankfurter API.

      GET {base_url}/latest?from=EUR&to=USD
      GET {base_url}/2024-03-02?from=EUR&to=USD

    Frankfurter answers a weekend/holiday date with the previous business
    day's rate; the `date` field of the payload says which.
    """

    def __init__(
            self,
            base_url: str = "https://api.frankfurter.app",
            timeout: float = 10.0,
            client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def get_rate(self, base: str, target: str, as_of) -> RateQuote | None:
        path = "/latest" if as_of == LATEST else f"/{as_of.isoformat()}"

        try:
            resp = self._client.get(path, params={"from": base, "to": target})
        except httpx.HTTPError as exc:
            raise RateProviderError(
                f"Exchange-rate request for {base}->{target} failed: {exc}"
            ) from exc

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise RateProviderError(
                f"Exchange-rate API returned {resp.status_code} for {base}->{target}"
            )

        try:
            data = resp.json()
            raw_rate = data["rates"].get(target)
            if raw_rate is None:
                return None
            return RateQuote(
                rate=Decimal(str(raw_rate)),
                as_of=date.fromisoformat(data["date"]),
            )
        except (ValueError, KeyError, TypeError, AttributeError, InvalidOperation) as exc:
            raise RateProviderError(
                f"Malformed exchange-rate payload for {base}->{target}"
            ) from exc


# ── Static table (offline / tests) ─────────────────────────────────────────

class StaticRateProvider(RateProvider):
    """
    Serves rates from an in-memory table:

        {("EUR", "USD"): {date(2024, 1, 1): Decimal("1.10"), ...}}

    LATEST returns the newest entry. A historical date returns the exact
    entry or, failing that, the nearest earlier one.
    """

    def __init__(self, table: dict | None = None) -> None:
        self._table: dict[tuple[str, str], dict[date, Decimal]] = {}
        for pair, by_date in (table or {}).items():
            for on, rate in by_date.items():
                self.set_rate(pair[0], pair[1], on, rate)

    def set_rate(self, base: str, target: str, on: date, rate) -> None:
        self._table.setdefault((base, target), {})[on] = Decimal(str(rate))

    def get_rate(self, base: str, target: str, as_of) -> RateQuote | None:
        by_date = self._table.get((base, target))
        if not by_date:
            return None

        if as_of == LATEST:
            newest = max(by_date)
            return RateQuote(rate=by_date[newest], as_of=newest)

        candidates = [d for d in by_date if d <= as_of]
        if not candidates:
            return None
        nearest = max(candidates)
        return RateQuote(rate=by_date[nearest], as_of=nearest)


# ── Read-through cache ─────────────────────────────────────────────────────

class CachingRateProvider(RateProvider):
    """
    Read-through cache in front of another provider.

      - LATEST quotes expire after `latest_ttl` seconds.
      - Historical quotes are facts keyed by date and never expire.
      - Concurrent writers may race; the last one wins, which is harmless
        because every writer stores an equally valid quote.
      - When the upstream fails or has nothing, the most recent cached quote
        for the pair that is not newer than the requested date is served
        instead (any cached quote, for LATEST).
    """

    def __init__(
            self,
            upstream: RateProvider,
            latest_ttl: float = 300,
            clock=time.monotonic,
    ) -> None:
        self._upstream = upstream
        self._latest_ttl = latest_ttl
        self._clock = clock
        self._latest: dict[tuple[str, str], tuple[RateQuote, float]] = {}
        self._historical: dict[tuple[str, str, date], RateQuote] = {}
        self._lock = threading.Lock()

    def get_rate(self, base: str, target: str, as_of) -> RateQuote | None:
        cached = self._lookup(base, target, as_of)
        if cached is not None:
            return cached

        try:
            quote = self._upstream.get_rate(base, target, as_of)
        except RateProviderError:
            fallback = self._fallback(base, target, as_of)
            if fallback is None:
                raise
            logger.warning(
                "Serving cached exchange rate after provider failure",
                extra={"extra_data": {
                    "base": base,
                    "target": target,
                    "requested": str(as_of),
                    "served_as_of": fallback.as_of.isoformat(),
                }},
            )
            return fallback

        if quote is None:
            return self._fallback(base, target, as_of)

        self._store(base, target, as_of, quote)
        return quote

    def _lookup(self, base: str, target: str, as_of) -> RateQuote | None:
        with self._lock:
            if as_of == LATEST:
                entry = self._latest.get((base, target))
                if entry and self._clock() - entry[1] < self._latest_ttl:
                    return entry[0]
                return None
            return self._historical.get((base, target, as_of))

    def _store(self, base: str, target: str, as_of, quote: RateQuote) -> None:
        with self._lock:
            if as_of == LATEST:
                self._latest[(base, target)] = (quote, self._clock())
            else:
                self._historical[(base, target, as_of)] = quote
            # Every quote is also a historical fact for the date it is valid on.
            self._historical[(base, target, quote.as_of)] = quote

    def _fallback(self, base: str, target: str, as_of) -> RateQuote | None:
        with self._lock:
            quotes = [
                q for (b, t, _), q in self._historical.items()
                if b == base and t == target
                and (as_of == LATEST or q.as_of <= as_of)
            ]
        if not quotes:
            return None
        return max(quotes, key=lambda q: q.as_of)


def build_rate_provider(config) -> RateProvider:
    """Creates the configured provider, wrapped in the read-through cache."""
    kind = config.get("EXCHANGE_RATE_PROVIDER", "frankfurter")

    if kind == "static":
        upstream: RateProvider = StaticRateProvider()
    else:
        upstream = FrankfurterRateProvider(
            base_url=config.get("EXCHANGE_RATE_API_BASE", "https://api.frankfurter.app"),
            timeout=config.get("EXCHANGE_RATE_TIMEOUT_SECONDS", 10.0),
        )

    return CachingRateProvider(
        upstream,
        latest_ttl=config.get("LATEST_RATE_CACHE_SECONDS", 300),
    )
