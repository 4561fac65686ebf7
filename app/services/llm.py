"""
LLM text generation for MungerMind.

Providers:
- Gemini (default, free tier)
- OpenAI (selected per request or via LLM_PROVIDER)

Deep-research reports are cached for 1h to minimize API calls.
"""
import logging
from typing import Optional

import httpx
from cachetools import TTLCache

from app.config import LLMProvider, Settings, get_settings
from app.core.rate_limiting import CACHE_TTL

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

# In-memory cache (topic, provider) -> report
_research_cache: TTLCache = TTLCache(
    maxsize=128, ttl=CACHE_TTL["deep_research"].total_seconds()
)


class LLMError(Exception):
    """Provider answered without usable text."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


# ─── Gemini ─────────────────────────────────────────────────────────────────

async def generate_with_gemini(
    prompt: str,
    *,
    max_tokens: int,
    temperature: float,
    top_p: Optional[float] = None,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Generate text with Gemini."""
    if not settings.gemini_key:
        raise LLMError("gemini", "GEMINI_KEY is not configured")

    generation_config = {
        "temperature": temperature,
        "maxOutputTokens": max_tokens,
    }
    if top_p is not None:
        generation_config["topP"] = top_p

    async with httpx.AsyncClient(transport=transport, timeout=settings.http_timeout_seconds) as client:
        response = await client.post(
            GEMINI_URL.format(model=settings.gemini_model),
            params={"key": settings.gemini_key},
            json={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": generation_config,
            },
        )

    if response.status_code != 200:
        logger.error("Gemini error: %s - %s", response.status_code, response.text[:200])
        raise LLMError("gemini", f"HTTP {response.status_code}")

    try:
        result = response.json()
    except ValueError:
        logger.error("Gemini returned a non-JSON body: %s", response.text[:200])
        raise LLMError("gemini", "invalid JSON response") from None
    try:
        text = result["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not text:
        raise LLMError("gemini", "empty response")
    return text


# ─── OpenAI ─────────────────────────────────────────────────────────────────

async def generate_with_openai(
    prompt: str,
    *,
    max_tokens: int,
    temperature: float,
    top_p: Optional[float] = None,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Generate text with an OpenAI chat model."""
    if not settings.openai_api_key:
        raise LLMError("openai", "OPENAI_API_KEY is not configured")

    headers = {"Authorization": f"Bearer {settings.openai_api_key}"}
    if settings.openai_org_id:
        headers["OpenAI-Organization"] = settings.openai_org_id

    body = {
        # Long outputs need the larger model
        "model": "gpt-4o" if max_tokens > 4096 else "gpt-4o-mini",
        "messages": [{"role": "system", "content": prompt}],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if top_p is not None:
        body["top_p"] = top_p

    async with httpx.AsyncClient(transport=transport, timeout=settings.http_timeout_seconds) as client:
        response = await client.post(OPENAI_URL, headers=headers, json=body)

    if response.status_code != 200:
        logger.error("OpenAI error: %s - %s", response.status_code, response.text[:200])
        raise LLMError("openai", f"HTTP {response.status_code}")

    try:
        result = response.json()
    except ValueError:
        logger.error("OpenAI returned a non-JSON body: %s", response.text[:200])
        raise LLMError("openai", "invalid JSON response") from None
    try:
        text = result["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not text:
        raise LLMError("openai", "empty response")
    return text


# ─── Provider switch ────────────────────────────────────────────────────────

async def call_llm(
    prompt: str,
    max_tokens: int = 2048,
    temperature: float = 0.25,
    *,
    top_p: Optional[float] = None,
    provider: Optional[LLMProvider] = None,
    settings: Optional[Settings] = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Generate text with the requested (or configured) provider."""
    settings = settings or get_settings()
    provider = LLMProvider(provider or settings.llm_provider)

    generate = generate_with_openai if provider == LLMProvider.OPENAI else generate_with_gemini
    return await generate(
        prompt,
        max_tokens=max_tokens,
        temperature=temperature,
        top_p=top_p,
        settings=settings,
        transport=transport,
    )


# ─── Deep research ──────────────────────────────────────────────────────────

RESEARCH_TEMPLATE = """SYSTEM:
You are a deep-research equity analyst.
Analyze the given stock ticker and provide a comprehensive research report.
Focus on factual information, market analysis, and key metrics.
Be concise but thorough in your analysis.

USER:
Topic: {topic}
Return Markdown sections:
1. TL;DR, 2. Financials, 3. Valuation, 4. Catalysts, 5. Risks, 6. Sources"""


def build_research_prompt(topic: str) -> str:
    return RESEARCH_TEMPLATE.format(topic=topic)


async def deep_research(
    topic: str,
    provider: Optional[LLMProvider] = None,
    *,
    force_refresh: bool = False,
    settings: Optional[Settings] = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Markdown research report for a ticker or topic.

    Order: Cache → provider
    """
    settings = settings or get_settings()
    provider = LLMProvider(provider or settings.llm_provider)
    key = f"research:{provider.value}:{topic.strip().lower()}"

    if not force_refresh and key in _research_cache:
        return _research_cache[key]

    report = await call_llm(
        build_research_prompt(topic),
        max_tokens=2000,
        temperature=0.25,
        top_p=0.9,
        provider=provider,
        settings=settings,
        transport=transport,
    )
    _research_cache[key] = report
    logger.info("Generated %s research report for %r (%d chars)", provider.value, topic, len(report))
    return report


def clear_research_cache() -> None:
    _research_cache.clear()
