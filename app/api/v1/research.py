"""Deep research endpoints."""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel

from app.config import LLMProvider, get_settings
from app.core.rate_limiting import RateLimitConfig
from app.services.llm import deep_research

router = APIRouter()


class ResearchResponse(BaseModel):
    """Markdown research report."""
    topic: str
    provider: LLMProvider
    report: str


@router.get("/deep-research", response_model=ResearchResponse)
async def get_deep_research(
    response: Response,
    topic: str = Query(..., min_length=1, max_length=200, description="Ticker or topic"),
    provider: Optional[LLMProvider] = Query(None, description="gemini or openai; defaults to LLM_PROVIDER"),
    refresh: bool = Query(False, description="Bypass the report cache"),
):
    """Generate (or reuse) a research report."""
    topic = topic.strip()
    if not topic:
        raise HTTPException(status_code=422, detail="topic must not be blank")
    provider = provider or get_settings().llm_provider

    report = await deep_research(topic, provider, force_refresh=refresh)
    response.headers["Cache-Control"] = RateLimitConfig.cache_control("deep_research")
    return ResearchResponse(topic=topic, provider=provider, report=report)
