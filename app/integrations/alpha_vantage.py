"""Alpha Vantage gateway for market data.

Every call to the metered provider goes through ``AlphaVantageGateway.fetch``:

1. Serve a cached response younger than the TTL (no token spent)
2. Join an identical request already in flight on the same event loop
3. Spend one token from the per-minute bucket and one from the daily cap
4. Issue the request and cache the payload

Typed accessors (``search_symbols``, ``get_daily``, ``get_quote``) reshape the
provider payloads and raise ``MalformedResponse`` when a field is missing.
"""
import asyncio
import logging
import math
import threading
import time
from enum import Enum
from typing import Any, Callable, Mapping

import httpx
from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict

from app.config import Settings, get_settings
from app.core.errors import GatewayError, MalformedResponse, ProviderNotConfigured
from app.core.rate_limiting import CACHE_TTL, RateBudget, RateLimitConfig

logger = logging.getLogger(__name__)

# Alpha Vantage reports throttling and bad calls with HTTP 200 and one of these
NOTICE_FIELDS = ("Error Message", "Note", "Information")

# Query parameters the gateway sets on every request
RESERVED_PARAMS = frozenset({"function", "apikey", "datatype"})

_MISSING = object()


class AlphaFunction(str, Enum):
    SYMBOL_SEARCH = "SYMBOL_SEARCH"
    TIME_SERIES_DAILY_ADJUSTED = "TIME_SERIES_DAILY_ADJUSTED"
    GLOBAL_QUOTE = "GLOBAL_QUOTE"


class Quote(BaseModel):
    """Normalized quote snapshot."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    change: float


class SymbolMatch(BaseModel):
    """A single symbol-search match."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    name: str


def provider_notice(payload: Any) -> str | None:
    """Return the provider's error/throttle message, if the payload is one."""
    if isinstance(payload, dict):
        for field in NOTICE_FIELDS:
            if payload.get(field):
                return str(payload[field])
    return None


def _parse_number(container: Mapping[str, Any], field: str, function: str, notice: str | None) -> float:
    try:
        value = float(container[field])
    except (KeyError, TypeError, ValueError):
        raise MalformedResponse(function, field, notice) from None
    if not math.isfinite(value):
        raise MalformedResponse(function, field, notice)
    return value


class AlphaVantageGateway:
    """Rate-limited, caching client for the Alpha Vantage query API.

    One instance owns its token budget, daily counter and response cache.
    The budget and cache are guarded by a lock, so an instance may be shared
    between threads as well as between tasks.

    Args:
        api_key: Alpha Vantage API key
        base_url: Query endpoint
        requests_per_minute: Token bucket capacity (and refill per minute)
        requests_per_day: Hard daily cap
        cache_ttl: Seconds a successful response is reused
        cache_maxsize: Entries kept before least-recently-used eviction
        timeout: HTTP timeout in seconds
        clock: Returns seconds since the epoch; drives refill, day rollover
            and cache expiry
        transport: Optional httpx transport (tests pass a MockTransport)
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://www.alphavantage.co/query",
        requests_per_minute: int = 5,
        requests_per_day: int = 25,
        cache_ttl: float = CACHE_TTL["alpha_vantage"].total_seconds(),
        cache_maxsize: int = 512,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._clock = clock
        self._transport = transport
        self._lock = threading.Lock()
        self._budget = RateBudget.full(requests_per_minute, requests_per_day, clock())
        self._cache = TTLCache(maxsize=cache_maxsize, ttl=cache_ttl, timer=clock)
        self._inflight: dict[str, asyncio.Future] = {}
        self._stats = {
            "cache_hits": 0,
            "cache_misses": 0,
            "coalesced": 0,
            "provider_calls": 0,
        }

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "AlphaVantageGateway":
        """Build a gateway from application settings."""
        kwargs = {
            "base_url": settings.alphavantage_base_url,
            "requests_per_minute": settings.alpha_requests_per_minute,
            "requests_per_day": settings.alpha_requests_per_day,
            "cache_ttl": settings.alpha_cache_ttl_seconds,
            "cache_maxsize": settings.alpha_cache_maxsize,
            "timeout": settings.http_timeout_seconds,
        }
        kwargs.update(overrides)
        return cls(settings.alphavantage_key, **kwargs)

    @property
    def budget(self) -> RateBudget:
        return self._budget

    async def _request(self, function: AlphaFunction, params: dict[str, str]) -> Any:
        """Make request to Alpha Vantage."""
        query = {
            **params,
            "function": function.value,
            "apikey": self.api_key,
            "datatype": "json",
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            response = await client.get(self.base_url, params=query)
            response.raise_for_status()
            try:
                return response.json()
            except ValueError:
                raise MalformedResponse(function.value, "body") from None

    # ==================== Gateway ====================

    async def fetch(self, function: AlphaFunction | str, params: Mapping[str, str]) -> Any:
        """Fetch a provider payload, from cache when possible.

        Raises:
            ValueError: unknown function name, or a reserved parameter
                (``function``, ``apikey``, ``datatype``) in ``params``
            ProviderNotConfigured: no API key
            RateLimitExceeded: per-minute bucket empty
            DailyQuotaExceeded: daily cap reached
            MalformedResponse: body is not JSON
            httpx.HTTPError: transport failure, unchanged
        """
        function = AlphaFunction(function)
        params = {str(k): str(v) for k, v in params.items()}
        reserved = sorted(RESERVED_PARAMS & params.keys())
        if reserved:
            raise ValueError(f"Parameters set by the gateway itself: {', '.join(reserved)}")
        key = RateLimitConfig.get_cache_key(function.value, params)
        loop = asyncio.get_running_loop()

        while True:
            with self._lock:
                cached = self._cache.get(key, _MISSING)
                if cached is not _MISSING:
                    self._stats["cache_hits"] += 1
                    logger.debug("Cache hit for %s", key)
                    return cached

                pending = self._inflight.get(key)
                if pending is not None and pending.get_loop() is loop:
                    self._stats["coalesced"] += 1
                else:
                    pending = None
                    self._stats["cache_misses"] += 1
                    future = loop.create_future()
                    self._inflight[key] = future

            if pending is None:
                break

            logger.debug("Joining in-flight request for %s", key)
            # wait() leaves the shared future alone if this waiter is cancelled
            await asyncio.wait([pending])
            if not pending.cancelled():
                return pending.result()
            # The leading caller was cancelled; take over the request
            logger.debug("In-flight request for %s was cancelled, retrying", key)

        try:
            payload = await self._fetch_uncached(function, params, key)
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved; waiters (if any) re-raise it themselves
            future.exception()
            raise
        else:
            future.set_result(payload)
            return payload
        finally:
            if not future.done():
                future.cancel()
            with self._lock:
                if self._inflight.get(key) is future:
                    del self._inflight[key]

    async def _fetch_uncached(self, function: AlphaFunction, params: dict[str, str], key: str) -> Any:
        if not self.api_key:
            raise ProviderNotConfigured("ALPHAVANTAGE_KEY")

        with self._lock:
            try:
                self._budget.consume(self._clock())
            except GatewayError as e:
                logger.warning("Alpha Vantage %s refused: %s", function.value, e)
                raise
            self._stats["provider_calls"] += 1
            tokens, daily = self._budget.tokens, self._budget.daily_count

        logger.info(
            "Alpha Vantage %s %s (tokens left %d, daily %d/%d)",
            function.value, params, tokens, daily, self._budget.per_day,
        )
        payload = await self._request(function, params)

        notice = provider_notice(payload)
        if notice:
            logger.warning("Alpha Vantage %s returned a notice: %s", function.value, notice)
            return payload

        with self._lock:
            self._cache[key] = payload
        return payload

    def status(self) -> dict:
        """Budget and cache counters."""
        with self._lock:
            self._cache.expire()
            return {
                "budget": self._budget.snapshot(),
                "cache": {
                    "size": len(self._cache),
                    "maxsize": self._cache.maxsize,
                    "ttl_seconds": self._cache.ttl,
                    **self._stats,
                },
                "in_flight": len(self._inflight),
            }

    # ==================== Typed accessors ====================

    async def search_symbols(self, keywords: str) -> list[SymbolMatch]:
        """Search symbols by keyword, best match first."""
        function = AlphaFunction.SYMBOL_SEARCH
        data = await self.fetch(function, {"keywords": keywords})
        notice = provider_notice(data)
        if not isinstance(data, dict):
            raise MalformedResponse(function.value, "bestMatches", notice)

        matches = data.get("bestMatches")
        if matches is None:
            return []
        if not isinstance(matches, list):
            raise MalformedResponse(function.value, "bestMatches", notice)

        results = []
        for match in matches:
            try:
                results.append(SymbolMatch(symbol=match["1. symbol"], name=match["2. name"]))
            except (KeyError, TypeError):
                raise MalformedResponse(function.value, "bestMatches", notice) from None
        return results

    async def get_daily(self, symbol: str) -> dict[str, dict[str, str]]:
        """Daily OHLCV bars keyed by date, as the provider returns them."""
        function = AlphaFunction.TIME_SERIES_DAILY_ADJUSTED
        data = await self.fetch(function, {"symbol": symbol})
        series = data.get("Time Series (Daily)") if isinstance(data, dict) else None
        if not isinstance(series, dict):
            raise MalformedResponse(function.value, "Time Series (Daily)", provider_notice(data))
        return series

    async def get_quote(self, symbol: str) -> Quote:
        """Latest price and absolute change for a symbol."""
        function = AlphaFunction.GLOBAL_QUOTE
        data = await self.fetch(function, {"symbol": symbol})
        notice = provider_notice(data)
        quote = data.get("Global Quote") if isinstance(data, dict) else None
        # Unknown symbols come back as an empty "Global Quote" object
        if not isinstance(quote, dict) or not quote:
            raise MalformedResponse(function.value, "Global Quote", notice)

        return Quote(
            symbol=symbol,
            price=_parse_number(quote, "05. price", function.value, notice),
            change=_parse_number(quote, "09. change", function.value, notice),
        )


# Singleton instance
_gateway: AlphaVantageGateway | None = None


def get_alpha_gateway() -> AlphaVantageGateway:
    """Get or create the process-wide gateway."""
    global _gateway
    if _gateway is None:
        _gateway = AlphaVantageGateway.from_settings(get_settings())
    return _gateway
