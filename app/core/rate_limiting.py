"""Rate Limiting & Caching Strategy.

Keeps the Alpha Vantage free tier (5 requests/minute, 25 requests/day)
from ever being exceeded, and sets the cache lifetimes the API advertises.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from urllib.parse import urlencode

from app.core.errors import DailyQuotaExceeded, RateLimitExceeded

# =============================================================================
# CACHE LIFETIMES
# =============================================================================

# Cache TTLs
CACHE_TTL = {
    "alpha_vantage": timedelta(seconds=60),   # Gateway response cache
    "search": timedelta(seconds=60),          # Shared CDN cache for /search
    "market_data": timedelta(seconds=60),     # Quotes and daily series
    "deep_research": timedelta(hours=1),      # LLM research reports
}

REFILL_WINDOW_SECONDS = 60.0

# =============================================================================
# IMPLEMENTATION
# =============================================================================


class RateLimitConfig:
    """Rate limiting configuration."""

    @staticmethod
    def get_cache_key(endpoint: str, params: dict = None) -> str:
        """Generate cache key for endpoint."""
        base = endpoint.replace("/", ":")
        if params:
            param_str = urlencode(sorted(params.items()))
            return f"{base}:{param_str}"
        return base

    @staticmethod
    def get_ttl(endpoint: str) -> timedelta:
        """Get cache TTL for endpoint."""
        if "research" in endpoint:
            return CACHE_TTL["deep_research"]
        elif "search" in endpoint:
            return CACHE_TTL["search"]
        else:
            return CACHE_TTL["market_data"]

    @staticmethod
    def cache_control(endpoint: str) -> str:
        """Cache-Control header value for a public endpoint."""
        ttl = RateLimitConfig.get_ttl(endpoint)
        return f"s-maxage={int(ttl.total_seconds())}"


def calendar_day(timestamp: float) -> date:
    """Local calendar day of a POSIX timestamp."""
    return datetime.fromtimestamp(timestamp).date()


@dataclass
class RateBudget:
    """Per-minute token bucket plus a per-day hard cap.

    Tokens are refilled lazily, in whole-minute steps, when the budget is
    checked. The daily counter resets on the first check of a new calendar
    day, before any token check.
    """
    per_minute: int
    per_day: int
    tokens: int
    last_refill: float
    daily_count: int = 0
    last_day: date | None = None

    @classmethod
    def full(cls, per_minute: int, per_day: int, now: float) -> "RateBudget":
        return cls(
            per_minute=per_minute,
            per_day=per_day,
            tokens=per_minute,
            last_refill=now,
            daily_count=0,
            last_day=calendar_day(now),
        )

    def refill(self, now: float) -> None:
        """Reset the daily counter on a new day, then grant elapsed minutes."""
        today = calendar_day(now)
        if today != self.last_day:
            self.daily_count = 0
            self.last_day = today

        minutes = math.floor((now - self.last_refill) / REFILL_WINDOW_SECONDS)
        new_tokens = minutes * self.per_minute
        if new_tokens > 0:
            self.tokens = min(self.tokens + new_tokens, self.per_minute)
            self.last_refill = now

    def consume(self, now: float) -> None:
        """Spend one request from both budgets or raise.

        Raises:
            RateLimitExceeded: no tokens left this minute
            DailyQuotaExceeded: daily cap reached
        """
        self.refill(now)

        if self.tokens <= 0:
            raise RateLimitExceeded(retry_after=self.seconds_until_refill(now))

        if self.daily_count >= self.per_day:
            raise DailyQuotaExceeded(self.per_day)

        self.tokens -= 1
        self.daily_count += 1

    def seconds_until_refill(self, now: float) -> float:
        remaining = REFILL_WINDOW_SECONDS - (now - self.last_refill)
        return max(1.0, math.ceil(remaining))

    def snapshot(self) -> dict:
        return {
            "tokens_remaining": self.tokens,
            "per_minute": self.per_minute,
            "daily_count": self.daily_count,
            "per_day": self.per_day,
            "day": self.last_day.isoformat() if self.last_day else None,
        }
