"""
API Router for newsletter records: scheduled AI issues, admin sends, drafts and resumes.
"""
import json
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..dependencies import get_content_generator, get_email_client, require_admin, require_cron_secret
from ..models.newsletter import (
    Newsletter,
    InvalidStatusTransition,
    NEWSLETTER_STATUS_DRAFT,
)
from ..models.subscriber import Subscriber, TIERS
from ..models.tool import Tool
from ..schemas.newsletter_schema import (
    AutoNewsletterRequest,
    AutoNewsletterResponse,
    ComposeNewsletterRequest,
    DispatchOut,
    NewsletterOut,
    SendNewsletterResponse,
)
from ..services.content_service import build_admin_newsletter_html, scheduled_topic
from ..services.dispatch_service import (
    run_scheduled_dispatch,
    resume_dispatch,
    send_admin_newsletter,
    send_draft,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/newsletter", tags=["newsletter"])


def _load_tools(db: Session, tool_ids: List[int]) -> List[Tool]:
    if not tool_ids:
        return []
    tools = db.query(Tool).filter(Tool.id.in_(tool_ids)).all()
    # Keep the order the admin picked
    by_id = {tool.id: tool for tool in tools}
    return [by_id[tool_id] for tool_id in tool_ids if tool_id in by_id]


def _compose_html(db: Session, body: ComposeNewsletterRequest) -> str:
    return build_admin_newsletter_html(
        title=body.title,
        intro=body.intro,
        tools=_load_tools(db, body.tool_ids),
        custom_content=body.custom_content,
        cta=body.cta,
        app_url=get_settings().app_url,
    )


def _get_newsletter_or_404(db: Session, newsletter_id: int) -> Newsletter:
    newsletter = db.query(Newsletter).filter(Newsletter.id == newsletter_id).first()
    if not newsletter:
        raise HTTPException(status_code=404, detail="Newsletter not found")
    return newsletter


@router.post("/auto", response_model=AutoNewsletterResponse, dependencies=[Depends(require_cron_secret)])
async def auto_newsletter(
    body: Optional[AutoNewsletterRequest] = None,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
    generator=Depends(get_content_generator),
):
    """
    Scheduled run: generate the FREE, PRO and PREMIUM issues for one topic and
    send each to its segment. A tier that fails is reported, the others still run.
    """
    topic = body.topic if body and body.topic else scheduled_topic()
    logger.info(f"⏰ Scheduled newsletter run for topic {topic}")

    try:
        results = await run_scheduled_dispatch(
            db,
            email_client,
            generator,
            topic,
            batch_size=get_settings().newsletter_batch_size,
        )
    except Exception as e:
        logger.error(f"❌ Scheduled newsletter run failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to run newsletter automation")

    return AutoNewsletterResponse(
        success=True,
        topic=topic,
        results={key: result.model_dump() for key, result in results.items()},
        timestamp=datetime.utcnow(),
    )


@router.get("/auto")
def auto_newsletter_status(db: Session = Depends(get_db)):
    """Recent AI-generated issues and how many subscribers each tier would reach."""
    recent = (
        db.query(Newsletter)
        .filter(Newsletter.ai_generated == True)  # noqa: E712
        .order_by(Newsletter.created_at.desc(), Newsletter.id.desc())
        .limit(10)
        .all()
    )

    eligible = {}
    for tier in TIERS:
        eligible[tier.lower()] = (
            db.query(Subscriber)
            .filter(
                Subscriber.tier == tier,
                Subscriber.unsubscribed == False,  # noqa: E712
                Subscriber.daily_digest == True,  # noqa: E712
            )
            .count()
        )

    return {
        "recentNewsletters": [NewsletterOut.model_validate(n).model_dump() for n in recent],
        "eligibleSubscribers": eligible,
        "nextTopic": scheduled_topic(),
    }


@router.post("/send", response_model=SendNewsletterResponse, dependencies=[Depends(require_admin)])
async def send_newsletter(
    body: ComposeNewsletterRequest,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
):
    """
    Compose a newsletter from tools and free text and send it right away, either to
    every active subscriber or to the given subscriber ids / topics.
    """
    try:
        newsletter, result = await send_admin_newsletter(
            db,
            email_client,
            subject=body.effective_subject,
            content_html=_compose_html(db, body),
            subscriber_ids=body.subscriber_ids,
            target_topics=body.target_topics,
            batch_size=get_settings().newsletter_batch_size,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Error sending newsletter: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send newsletter")

    audience = "targeted subscribers" if body.targeted else "subscribers"
    return SendNewsletterResponse(
        success=True,
        newsletterId=newsletter.id,
        sentCount=result.sent,
        failedCount=result.failed,
        targeted=body.targeted,
        message=f"Newsletter sent to {result.sent} {audience}",
    )


@router.get("", response_model=List[NewsletterOut], dependencies=[Depends(require_admin)])
def list_newsletters(limit: int = 50, db: Session = Depends(get_db)):
    return (
        db.query(Newsletter)
        .order_by(Newsletter.created_at.desc(), Newsletter.id.desc())
        .limit(limit)
        .all()
    )


@router.post("", response_model=NewsletterOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
def create_draft(body: ComposeNewsletterRequest, db: Session = Depends(get_db)):
    """Save an admin-composed newsletter as DRAFT; it is sent later through /{id}/send."""
    try:
        newsletter = Newsletter(
            subject=body.effective_subject,
            content_html=_compose_html(db, body),
            status=NEWSLETTER_STATUS_DRAFT,
            ai_generated=False,
            audience_json=json.dumps({
                "subscriberIds": body.subscriber_ids or [],
                "targetTopics": body.target_topics or [],
            }),
        )
        db.add(newsletter)
        db.commit()
        db.refresh(newsletter)
        logger.info(f"📝 Draft newsletter {newsletter.id} created")
        return newsletter
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error creating draft: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create newsletter")


async def _run_existing(db: Session, newsletter: Newsletter, runner, email_client) -> DispatchOut:
    try:
        result = await runner(db, email_client, newsletter, batch_size=get_settings().newsletter_batch_size)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Error dispatching newsletter {newsletter.id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send newsletter")

    return DispatchOut(
        success=True,
        newsletterId=newsletter.id,
        status=newsletter.status,
        sentCount=result.sent,
        failedCount=result.failed,
        skippedCount=result.skipped,
        recipientCount=newsletter.recipient_count,
    )


@router.post("/{newsletter_id}/send", response_model=DispatchOut, dependencies=[Depends(require_admin)])
async def send_existing_draft(
    newsletter_id: int,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
):
    newsletter = _get_newsletter_or_404(db, newsletter_id)
    return await _run_existing(db, newsletter, send_draft, email_client)


@router.post("/{newsletter_id}/resume", response_model=DispatchOut, dependencies=[Depends(require_admin)])
async def resume_newsletter(
    newsletter_id: int,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
):
    """Finish a SENDING or FAILED newsletter; subscribers already logged for it are skipped."""
    newsletter = _get_newsletter_or_404(db, newsletter_id)
    return await _run_existing(db, newsletter, resume_dispatch, email_client)
