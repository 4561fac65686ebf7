"""Main API v1 router."""
from fastapi import APIRouter

from app.api.v1 import health, journal, market_data, research, watchlist

router = APIRouter()

router.include_router(health.router, tags=["health"])
router.include_router(market_data.router, tags=["market-data"])  # Alpha Vantage gateway
router.include_router(research.router, tags=["research"])  # LLM reports
router.include_router(watchlist.router, prefix="/watchlist", tags=["watchlist"])
router.include_router(journal.router, prefix="/journal", tags=["journal"])
