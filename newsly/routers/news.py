"""
API Router for the public news feed and article summaries.
"""
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from ..dependencies import get_news_client, get_optional_ai_client, get_page_fetcher
from ..schemas.news_schema import NewsResponse, SummaryRequest, SummaryResponse
from ..services.news_service import NewsProviderError, summarize_article

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/news", tags=["news"])


def _provider_error(e: NewsProviderError) -> HTTPException:
    status_code = e.status_code if 400 <= e.status_code < 600 else 502
    return HTTPException(status_code=status_code, detail=f"News provider error: {str(e)}")


@router.get("", response_model=NewsResponse)
async def latest_news(
    category: str = Query(default="general", description="Category keyword; 'general' means no filter"),
    lang: str = Query(default="en"),
    country: str = Query(default="IN"),
    max: int = Query(default=10, ge=1, le=50),
    news_client=Depends(get_news_client),
):
    query = None if category.lower() == "general" else category
    try:
        articles = await news_client.articles(query=query, language=lang, country=country, page_size=max)
    except NewsProviderError as e:
        raise _provider_error(e)
    return NewsResponse(articles=articles, totalResults=len(articles))


@router.get("/search", response_model=NewsResponse)
async def search_news(
    q: str = Query(..., min_length=1, description="Search terms"),
    lang: str = Query(default="en"),
    country: str = Query(default="us"),
    max: int = Query(default=8, ge=1, le=50),
    news_client=Depends(get_news_client),
):
    try:
        articles = await news_client.articles(query=q, language=lang, country=country, page_size=max)
    except NewsProviderError as e:
        raise _provider_error(e)
    return NewsResponse(articles=articles, totalResults=len(articles))


@router.post("/summary", response_model=SummaryResponse)
async def summarize(
    request: SummaryRequest,
    ai_client=Depends(get_optional_ai_client),
    page_fetcher=Depends(get_page_fetcher),
):
    """
    Summarize an article. The text comes from content, description or title,
    in that order; when all are empty the page at `url` is downloaded.
    """
    text = next(
        (value.strip() for value in (request.content, request.description, request.title) if value and value.strip()),
        "",
    )

    if not text and request.url:
        try:
            text = await page_fetcher.fetch_text(request.url)
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Could not fetch {request.url} for a summary: {str(e)}")

    if not text:
        raise HTTPException(status_code=400, detail="No text available to summarize")

    detailed = request.summaryType == "full" or request.maxSentences >= 10
    summary = await summarize_article(
        ai_client,
        title=request.title or "",
        description=request.description or "",
        content=text,
        url=request.url or "",
        max_sentences=request.maxSentences,
        detailed=detailed,
    )
    return SummaryResponse(summary=summary)
