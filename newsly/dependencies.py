"""
FastAPI dependencies that build the external collaborators (email, AI) per request
and guard cron/admin endpoints. Tests replace them through app.dependency_overrides.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from .config import get_settings
from .services.ai_client import OpenAITextClient
from .services.content_service import NewsletterContentGenerator
from .services.email_service import ResendEmailClient
from .services.news_service import FinlightNewsClient, PageFetcher

logger = logging.getLogger(__name__)


def get_email_client() -> ResendEmailClient:
    settings = get_settings()
    if not settings.resend_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="RESEND_API_KEY not configured",
        )
    return ResendEmailClient(
        api_key=settings.resend_api_key,
        from_email=settings.resend_from_email,
        reply_to=settings.resend_reply_to or None,
    )


def get_optional_email_client() -> Optional[ResendEmailClient]:
    """Email client for best-effort mails (welcome); None when email is not configured."""
    settings = get_settings()
    if not settings.resend_api_key:
        return None
    return ResendEmailClient(
        api_key=settings.resend_api_key,
        from_email=settings.resend_from_email,
        reply_to=settings.resend_reply_to or None,
    )


def get_ai_client() -> OpenAITextClient:
    settings = get_settings()
    if not settings.openai_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="OPENAI_API_KEY not configured",
        )
    return OpenAITextClient(api_key=settings.openai_api_key, model=settings.openai_model)


def get_optional_ai_client() -> Optional[OpenAITextClient]:
    """AI client for best-effort features (article summaries); None when AI is not configured."""
    settings = get_settings()
    if not settings.openai_api_key:
        return None
    return OpenAITextClient(api_key=settings.openai_api_key, model=settings.openai_model, max_tokens=600)


def get_news_client() -> FinlightNewsClient:
    settings = get_settings()
    if not settings.finlight_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="FINLIGHT_API_KEY not configured",
        )
    return FinlightNewsClient(api_key=settings.finlight_api_key, base_url=settings.finlight_base_url)


def get_page_fetcher() -> PageFetcher:
    return PageFetcher()


def get_content_generator(ai_client=Depends(get_ai_client)) -> NewsletterContentGenerator:
    return NewsletterContentGenerator(ai_client, app_url=get_settings().app_url)


def require_cron_secret(authorization: Optional[str] = Header(None)):
    """Cron calls must carry `Authorization: Bearer <CRON_SECRET>` when a secret is configured."""
    cron_secret = get_settings().cron_secret
    if cron_secret and authorization != f"Bearer {cron_secret}":
        logger.warning("Rejected cron call with a bad or missing secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def require_admin(x_admin_key: Optional[str] = Header(None)):
    admin_key = get_settings().admin_api_key
    if admin_key and x_admin_key != admin_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
