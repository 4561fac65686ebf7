"""Investment journal endpoints."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db, utcnow
from app.models.journal import JournalEntry, JournalEntryType

router = APIRouter()


class JournalCreate(BaseModel):
    """New journal entry."""
    symbol: str = Field(..., min_length=1, max_length=20)
    type: JournalEntryType = JournalEntryType.ANALYSIS
    content: str = Field(..., min_length=1)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be blank")
        return v


class JournalUpdate(BaseModel):
    """Partial update; omitted fields are kept."""
    type: Optional[JournalEntryType] = None
    content: Optional[str] = Field(default=None, min_length=1)


class JournalResponse(BaseModel):
    """Journal entry."""
    id: str
    symbol: str
    type: JournalEntryType
    content: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


async def _get_entry(db: AsyncSession, entry_id: str) -> JournalEntry:
    result = await db.execute(select(JournalEntry).where(JournalEntry.id == entry_id))
    entry = result.scalar_one_or_none()
    if not entry:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return entry


@router.get("", response_model=list[JournalResponse])
async def list_entries(
    symbol: Optional[str] = Query(None, description="Only entries for this symbol"),
    db: AsyncSession = Depends(get_db),
):
    """Journal entries, newest first."""
    query = select(JournalEntry).order_by(JournalEntry.created_at.desc())
    if symbol:
        query = query.where(JournalEntry.symbol == symbol.strip().upper())
    result = await db.execute(query)
    return [JournalResponse.model_validate(e) for e in result.scalars().all()]


@router.post("", response_model=JournalResponse, status_code=201)
async def create_entry(
    payload: JournalCreate,
    db: AsyncSession = Depends(get_db),
):
    """Write a journal entry."""
    entry = JournalEntry(
        symbol=payload.symbol,
        type=payload.type.value,
        content=payload.content,
    )
    db.add(entry)
    await db.commit()
    return JournalResponse.model_validate(entry)


@router.patch("/{entry_id}", response_model=JournalResponse)
async def update_entry(
    entry_id: str,
    payload: JournalUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Edit an entry's type or content."""
    entry = await _get_entry(db, entry_id)
    if payload.type is not None:
        entry.type = payload.type.value
    if payload.content is not None:
        entry.content = payload.content
    entry.updated_at = utcnow()
    await db.commit()
    return JournalResponse.model_validate(entry)


@router.delete("/{entry_id}", status_code=204)
async def delete_entry(
    entry_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Delete an entry."""
    entry = await _get_entry(db, entry_id)
    await db.delete(entry)
    await db.commit()
