"""
Shared fixtures: isolated settings, a controllable clock and a fake
Alpha Vantage endpoint served through httpx.MockTransport.
"""
import os
import tempfile

# Must be set before any app module reads settings
_DB_DIR = tempfile.mkdtemp(prefix="mungermind-tests-")
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["RATE_LIMIT_PER_MINUTE"] = "10000"
os.environ["ALPHAVANTAGE_KEY"] = "test-key"
os.environ["LLM_PROVIDER"] = "gemini"
os.environ["GEMINI_KEY"] = "gemini-test-key"
os.environ["OPENAI_API_KEY"] = "openai-test-key"
os.environ["LOG_LEVEL"] = "WARNING"

import asyncio
from datetime import date, datetime, time as dtime

import httpx
import pytest

from app.integrations.alpha_vantage import AlphaVantageGateway

T0 = datetime(2026, 3, 10, 12, 0, 0).timestamp()


def local_midnight(day: date) -> float:
    """POSIX timestamp of local midnight at the start of ``day``."""
    return datetime.combine(day, dtime.min).timestamp()


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def quote_payload(symbol: str, price: str = "101.50", change: str = "1.25") -> dict:
    return {
        "Global Quote": {
            "01. symbol": symbol,
            "05. price": price,
            "09. change": change,
            "10. change percent": "1.2468%",
        }
    }


def daily_payload(symbol: str) -> dict:
    return {
        "Meta Data": {"2. Symbol": symbol},
        "Time Series (Daily)": {
            "2026-03-09": {
                "1. open": "100.00",
                "2. high": "102.00",
                "3. low": "99.50",
                "4. close": "101.50",
                "6. volume": "1200000",
            },
            "2026-03-06": {
                "1. open": "98.00",
                "2. high": "100.50",
                "3. low": "97.75",
                "4. close": "100.00",
                "6. volume": "900000",
            },
        },
    }


def search_payload(keywords: str) -> dict:
    return {
        "bestMatches": [
            {"1. symbol": keywords.upper(), "2. name": f"{keywords.title()} Inc", "9. matchScore": "1.0000"},
            {"1. symbol": f"{keywords.upper()}.LON", "2. name": f"{keywords.title()} PLC", "9. matchScore": "0.7000"},
        ]
    }


class FakeAlphaVantage:
    """Answers the three supported functions and records every request.

    ``overrides[function]`` replaces the payload: a dict is returned as-is,
    an ``httpx.Response`` is returned verbatim, an exception is raised.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.requests: list[dict] = []
        self.overrides: dict = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.requests.append(params)
        if self.delay:
            await asyncio.sleep(self.delay)

        function = params["function"]
        override = self.overrides.get(function)
        if isinstance(override, Exception):
            raise override
        if isinstance(override, httpx.Response):
            return override
        if override is not None:
            return httpx.Response(200, json=override)

        if function == "GLOBAL_QUOTE":
            return httpx.Response(200, json=quote_payload(params["symbol"]))
        if function == "TIME_SERIES_DAILY_ADJUSTED":
            return httpx.Response(200, json=daily_payload(params["symbol"]))
        if function == "SYMBOL_SEARCH":
            return httpx.Response(200, json=search_payload(params["keywords"]))
        return httpx.Response(200, json={"Error Message": "Invalid API call."})

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_av():
    return FakeAlphaVantage()


@pytest.fixture
def make_gateway(clock, fake_av):
    """Factory for gateways wired to the fake clock and fake provider."""
    def _make(**overrides) -> AlphaVantageGateway:
        kwargs = {
            "requests_per_minute": 5,
            "requests_per_day": 25,
            "cache_ttl": 60.0,
            "clock": clock,
            "transport": fake_av.transport,
        }
        kwargs.update(overrides)
        api_key = kwargs.pop("api_key", "test-key")
        return AlphaVantageGateway(api_key, **kwargs)
    return _make


@pytest.fixture
def gateway(make_gateway):
    return make_gateway()
