"""
Newsletter dispatch: sends one newsletter to a list of subscribers in fixed-size
batches and keeps the Newsletter record and per-recipient EmailLog rows in step.

Within a batch all sends run concurrently; batches run one after another.
Failed sends are logged and counted, never retried inside the same run.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.email_log import EmailLog, EMAIL_STATUS_SENT, EMAIL_STATUS_FAILED, EMAIL_TYPE_NEWSLETTER
from ..models.newsletter import (
    Newsletter,
    InvalidStatusTransition,
    NEWSLETTER_STATUS_DRAFT,
    NEWSLETTER_STATUS_SENDING,
    NEWSLETTER_STATUS_SENT,
    NEWSLETTER_STATUS_FAILED,
)
from ..models.subscriber import Subscriber, TIER_FREE, TIER_PRO, TIER_PREMIUM
from .content_service import ContentGenerationError, NewsletterContentGenerator
from .email_service import render_personalized_email
from .segment_service import select_segment, select_admin_recipients

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class DispatchResult(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped: int = 0  # Already logged for this newsletter (resumed runs)


class TierResult(BaseModel):
    generated: bool
    sent: int = 0
    failed: int = 0
    newsletterId: Optional[int] = None
    error: Optional[str] = None


async def _send_one(email_client, to: str, subject: str, html_content: str) -> Optional[str]:
    """Send a single email. Returns None on success or the provider error message."""
    try:
        await asyncio.to_thread(email_client.send, to=to, subject=subject, html_content=html_content)
        return None
    except Exception as e:
        logger.error(f"Failed to send to {to}: {str(e)}")
        return str(e) or e.__class__.__name__


async def send_to_subscribers(
    db: Session,
    email_client,
    subscribers: List[Subscriber],
    newsletter: Newsletter,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> DispatchResult:
    """
    Send `newsletter` to every subscriber that has no EmailLog for it yet and
    write exactly one EmailLog (SENT or FAILED) per attempt.
    """
    result = DispatchResult()

    already_logged = {
        subscriber_id
        for (subscriber_id,) in db.query(EmailLog.subscriber_id).filter(EmailLog.newsletter_id == newsletter.id).all()
    }
    pending = []
    for subscriber in subscribers:
        if subscriber.id in already_logged:
            result.skipped += 1
        else:
            pending.append(subscriber)

    sent_ids = []
    for start in range(0, len(pending), batch_size):
        batch = pending[start:start + batch_size]
        logger.info(f"📤 Newsletter {newsletter.id}: batch {start // batch_size + 1} ({len(batch)} recipients)")

        errors = await asyncio.gather(*[
            _send_one(
                email_client,
                subscriber.email,
                newsletter.subject,
                render_personalized_email(newsletter.content_html, subscriber),
            )
            for subscriber in batch
        ])

        for subscriber, error in zip(batch, errors):
            if error is None:
                status = EMAIL_STATUS_SENT
                sent_ids.append(subscriber.id)
                result.sent += 1
            else:
                status = EMAIL_STATUS_FAILED
                result.failed += 1
            db.add(EmailLog(
                subscriber_id=subscriber.id,
                newsletter_id=newsletter.id,
                email_type=EMAIL_TYPE_NEWSLETTER,
                subject=newsletter.subject,
                status=status,
                error_message=error,
                sent_at=datetime.utcnow(),
            ))
        db.commit()

    if sent_ids:
        db.query(Subscriber).filter(Subscriber.id.in_(sent_ids)).update(
            {Subscriber.last_email_sent: datetime.utcnow()},
            synchronize_session=False,
        )
        db.commit()

    return result


def logged_counts(db: Session, newsletter_id: int) -> tuple:
    """(sent, failed) EmailLog counts recorded for a newsletter."""
    rows = (
        db.query(EmailLog.status, func.count(EmailLog.id))
        .filter(EmailLog.newsletter_id == newsletter_id)
        .group_by(EmailLog.status)
        .all()
    )
    counts = dict(rows)
    return counts.get(EMAIL_STATUS_SENT, 0), counts.get(EMAIL_STATUS_FAILED, 0)


async def dispatch_newsletter(
    db: Session,
    email_client,
    newsletter: Newsletter,
    subscribers: List[Subscriber],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> DispatchResult:
    """
    Run the send loop for a newsletter that is already SENDING and finalize it.

    The record ends SENT however many individual sends failed. Only an exception
    escaping the loop marks it FAILED (and is re-raised).
    """
    if newsletter.status != NEWSLETTER_STATUS_SENDING:
        raise InvalidStatusTransition(newsletter.status, NEWSLETTER_STATUS_SENT)

    logger.info(f"🚀 Dispatching newsletter {newsletter.id} to {len(subscribers)} subscribers")
    try:
        result = await send_to_subscribers(db, email_client, subscribers, newsletter, batch_size)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Dispatch of newsletter {newsletter.id} aborted: {str(e)}", exc_info=True)
        newsletter.transition_to(NEWSLETTER_STATUS_FAILED)
        db.commit()
        raise

    newsletter.recipient_count = (
        db.query(EmailLog).filter(EmailLog.newsletter_id == newsletter.id).count()
    )
    newsletter.transition_to(NEWSLETTER_STATUS_SENT)
    db.commit()

    logger.info(
        f"✅ Newsletter {newsletter.id} sent: {result.sent} sent, {result.failed} failed, {result.skipped} skipped"
    )
    return result


async def run_tier_dispatch(
    db: Session,
    email_client,
    generator: NewsletterContentGenerator,
    topic: str,
    tier: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> TierResult:
    """Generate the tier's issue for a topic and send it to the tier's segment."""
    try:
        content = await generator.generate(topic, tier)
    except ContentGenerationError as e:
        logger.error(f"Content generation failed for {topic}/{tier}: {str(e)}")
        return TierResult(generated=False, error=str(e))

    newsletter = None
    try:
        subscribers = select_segment(db, topic, tier)

        newsletter = Newsletter(
            subject=content.subject,
            preview_text=content.preview_text,
            content_html=content.content_html,
            content_json=json.dumps(content.content_json),
            topic=topic,
            target_tier=tier,
            ai_generated=True,
            status=NEWSLETTER_STATUS_SENDING,
        )
        db.add(newsletter)
        db.commit()
        db.refresh(newsletter)

        result = await dispatch_newsletter(db, email_client, newsletter, subscribers, batch_size)
    except Exception as e:
        logger.error(f"Dispatch failed for {topic}/{tier}: {str(e)}", exc_info=True)
        db.rollback()
        if newsletter is None or newsletter.id is None:
            return TierResult(generated=True, error=str(e))
        # Batches committed before the abort still count
        sent, failed = logged_counts(db, newsletter.id)
        return TierResult(generated=True, sent=sent, failed=failed, newsletterId=newsletter.id, error=str(e))

    return TierResult(generated=True, sent=result.sent, failed=result.failed, newsletterId=newsletter.id)


async def run_scheduled_dispatch(
    db: Session,
    email_client,
    generator: NewsletterContentGenerator,
    topic: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Dict[str, TierResult]:
    """
    One scheduled run: FREE, PRO and PREMIUM issues for the same topic, one after
    another. A failing tier does not stop the others.
    """
    results = {}
    for key, tier in (("free", TIER_FREE), ("pro", TIER_PRO), ("premium", TIER_PREMIUM)):
        results[key] = await run_tier_dispatch(db, email_client, generator, topic, tier, batch_size)
    return results


async def send_admin_newsletter(
    db: Session,
    email_client,
    subject: str,
    content_html: str,
    subscriber_ids: Optional[List[int]] = None,
    target_topics: Optional[List[str]] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> tuple:
    """Create an admin-composed newsletter in SENDING and dispatch it. Returns (newsletter, result)."""
    subscribers = select_admin_recipients(db, subscriber_ids, target_topics)
    if not subscribers:
        raise ValueError("No subscribers to send to")

    newsletter = Newsletter(
        subject=subject,
        content_html=content_html,
        status=NEWSLETTER_STATUS_SENDING,
        ai_generated=False,
        audience_json=json.dumps({"subscriberIds": subscriber_ids or [], "targetTopics": target_topics or []}),
    )
    db.add(newsletter)
    db.commit()
    db.refresh(newsletter)

    result = await dispatch_newsletter(db, email_client, newsletter, subscribers, batch_size)
    return newsletter, result


def recipients_for(db: Session, newsletter: Newsletter) -> List[Subscriber]:
    """Recompute who a newsletter is meant for, from its topic/tier or stored admin audience."""
    if newsletter.topic and newsletter.target_tier:
        return select_segment(db, newsletter.topic, newsletter.target_tier)

    audience = json.loads(newsletter.audience_json) if newsletter.audience_json else {}
    return select_admin_recipients(db, audience.get("subscriberIds"), audience.get("targetTopics"))


async def send_draft(
    db: Session,
    email_client,
    newsletter: Newsletter,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> DispatchResult:
    """Send a DRAFT newsletter through the same DRAFT -> SENDING -> SENT path as every other send."""
    if newsletter.status != NEWSLETTER_STATUS_DRAFT:
        raise InvalidStatusTransition(newsletter.status, NEWSLETTER_STATUS_SENDING)

    subscribers = recipients_for(db, newsletter)
    newsletter.transition_to(NEWSLETTER_STATUS_SENDING)
    db.commit()
    return await dispatch_newsletter(db, email_client, newsletter, subscribers, batch_size)


async def resume_dispatch(
    db: Session,
    email_client,
    newsletter: Newsletter,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> DispatchResult:
    """
    Finish a run that was interrupted (left SENDING) or aborted (FAILED).
    Subscribers that already have an EmailLog for this newsletter are skipped.
    """
    if newsletter.status not in (NEWSLETTER_STATUS_SENDING, NEWSLETTER_STATUS_FAILED):
        raise InvalidStatusTransition(newsletter.status, NEWSLETTER_STATUS_SENDING)

    subscribers = recipients_for(db, newsletter)
    newsletter.transition_to(NEWSLETTER_STATUS_SENDING)
    db.commit()
    logger.info(f"🔁 Resuming newsletter {newsletter.id}")
    return await dispatch_newsletter(db, email_client, newsletter, subscribers, batch_size)
