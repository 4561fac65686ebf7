"""Watchlist endpoints."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.watchlist import WatchlistItem

router = APIRouter()


class WatchlistCreate(BaseModel):
    """Symbol to follow."""
    symbol: str = Field(..., min_length=1, max_length=20)
    name: str = Field(default="", max_length=255)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be blank")
        return v


class WatchlistResponse(BaseModel):
    """Watchlist item."""
    id: str
    symbol: str
    name: str
    added_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=list[WatchlistResponse])
async def list_watchlist(db: AsyncSession = Depends(get_db)):
    """All followed symbols, newest first."""
    result = await db.execute(
        select(WatchlistItem).order_by(WatchlistItem.added_at.desc())
    )
    return [WatchlistResponse.model_validate(item) for item in result.scalars().all()]


@router.post("", response_model=WatchlistResponse, status_code=201)
async def add_to_watchlist(
    payload: WatchlistCreate,
    db: AsyncSession = Depends(get_db),
):
    """Follow a symbol."""
    symbol = payload.symbol
    existing = await db.execute(select(WatchlistItem).where(WatchlistItem.symbol == symbol))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"{symbol} is already on the watchlist")

    item = WatchlistItem(symbol=symbol, name=payload.name.strip())
    db.add(item)
    await db.commit()
    return WatchlistResponse.model_validate(item)


@router.delete("/{symbol}", status_code=204)
async def remove_from_watchlist(
    symbol: str,
    db: AsyncSession = Depends(get_db),
):
    """Stop following a symbol."""
    result = await db.execute(
        select(WatchlistItem).where(WatchlistItem.symbol == symbol.strip().upper())
    )
    item = result.scalar_one_or_none()
    if not item:
        raise HTTPException(status_code=404, detail="Symbol not on watchlist")

    await db.delete(item)
    await db.commit()
