"""Market data endpoints - Alpha Vantage gateway."""
from fastapi import APIRouter, Depends, Path, Query, Response
from pydantic import BaseModel

from app.core.rate_limiting import RateLimitConfig
from app.integrations.alpha_vantage import (
    AlphaVantageGateway,
    Quote,
    SymbolMatch,
    get_alpha_gateway,
)

router = APIRouter()

SYMBOL_PATTERN = r"^[A-Za-z0-9.\-:]{1,20}$"


class SearchResponse(BaseModel):
    """Symbol search results, best match first."""
    results: list[SymbolMatch]


class DailySeriesResponse(BaseModel):
    """Daily bars keyed by date."""
    symbol: str
    series: dict[str, dict[str, str]]


@router.get("/search", response_model=SearchResponse)
async def search(
    response: Response,
    q: str = Query(..., min_length=3, max_length=100, description="Company name or ticker fragment"),
    gateway: AlphaVantageGateway = Depends(get_alpha_gateway),
):
    """Search symbols by keyword."""
    results = await gateway.search_symbols(q.strip())
    response.headers["Cache-Control"] = RateLimitConfig.cache_control("search")
    return SearchResponse(results=results)


@router.get("/quote/{symbol}", response_model=Quote)
async def get_quote(
    response: Response,
    symbol: str = Path(..., pattern=SYMBOL_PATTERN),
    gateway: AlphaVantageGateway = Depends(get_alpha_gateway),
):
    """Latest quote for a symbol."""
    quote = await gateway.get_quote(symbol.upper())
    response.headers["Cache-Control"] = RateLimitConfig.cache_control("quote")
    return quote


@router.get("/daily/{symbol}", response_model=DailySeriesResponse)
async def get_daily(
    response: Response,
    symbol: str = Path(..., pattern=SYMBOL_PATTERN),
    gateway: AlphaVantageGateway = Depends(get_alpha_gateway),
):
    """Daily OHLCV series for a symbol."""
    symbol = symbol.upper()
    series = await gateway.get_daily(symbol)
    response.headers["Cache-Control"] = RateLimitConfig.cache_control("daily")
    return DailySeriesResponse(symbol=symbol, series=series)


@router.get("/gateway/status")
async def gateway_status(
    gateway: AlphaVantageGateway = Depends(get_alpha_gateway),
):
    """Remaining Alpha Vantage budget and cache counters."""
    return gateway.status()
