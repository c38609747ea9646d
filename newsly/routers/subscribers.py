"""
API Router for newsletter subscriptions and subscriber preferences.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..dependencies import get_optional_email_client, require_admin
from ..models.email_log import EmailLog, EMAIL_STATUS_SENT, EMAIL_STATUS_FAILED, EMAIL_TYPE_WELCOME
from ..models.subscriber import (
    Subscriber,
    TIER_FREE,
    TIER_PRO,
    TIER_PREMIUM,
    TOPIC_AI_TOOLS,
    TOPIC_STOCK_MARKET,
    TOPIC_CRYPTO,
    TOPIC_STARTUPS,
    TOPIC_PRODUCTIVITY,
)
from ..schemas.subscriber_schema import (
    PreferencesResponse,
    PreferencesUpdate,
    SubscribeRequest,
    SubscribeResponse,
    SubscriberDetailOut,
    SubscriberOut,
    UnsubscribeRequest,
)
from ..services.email_service import send_welcome_email
from ..services.subscription_service import apply_topic_preferences

logger = logging.getLogger(__name__)
router = APIRouter(tags=["subscribers"])


def _find_by_email(db: Session, email: str) -> Optional[Subscriber]:
    return db.query(Subscriber).filter(Subscriber.email == email.lower()).first()


def _get_subscriber_or_404(db: Session, email: str) -> Subscriber:
    subscriber = _find_by_email(db, email)
    if not subscriber:
        raise HTTPException(status_code=404, detail="Subscriber not found")
    return subscriber


def _welcome(db: Session, email_client, subscriber: Subscriber):
    """Best-effort welcome email; the outcome is logged but never fails the request."""
    sent = send_welcome_email(email_client, subscriber, get_settings().app_url)
    if email_client is None:
        return
    db.add(EmailLog(
        subscriber_id=subscriber.id,
        email_type=EMAIL_TYPE_WELCOME,
        subject="Welcome to Newsly! 🚀",
        status=EMAIL_STATUS_SENT if sent else EMAIL_STATUS_FAILED,
        error_message=None if sent else "Welcome email could not be sent",
        sent_at=datetime.utcnow(),
    ))
    db.commit()


@router.post("/subscribe", response_model=SubscribeResponse)
def subscribe(
    request: SubscribeRequest,
    db: Session = Depends(get_db),
    email_client=Depends(get_optional_email_client),
):
    """
    Subscribe an email to the FREE digest.
    If the email already exists and is active, returns a friendly message.
    If it exists but unsubscribed, the subscription is reactivated.
    """
    existing = _find_by_email(db, request.email)

    if existing:
        if not existing.unsubscribed:
            return SubscribeResponse(
                success=True,
                message="You're already subscribed! Watch your inbox for the next digest.",
            )
        existing.unsubscribed = False
        existing.unsubscribed_at = None
        existing.subscribed_at = datetime.utcnow()
        if request.name:
            existing.name = request.name
        db.commit()
        logger.info(f"🔄 Resubscribed {existing.email}")
        return SubscribeResponse(success=True, message="Welcome back! Your subscription is active again.")

    try:
        subscriber = Subscriber(
            email=request.email.lower(),
            name=request.name,
            source=request.source or "landing_page",
            tier=TIER_FREE,
        )
        db.add(subscriber)
        db.commit()
        db.refresh(subscriber)
    except IntegrityError:
        db.rollback()
        return SubscribeResponse(success=True, message="You're already subscribed!")
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error subscribing {request.email}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process subscription")

    logger.info(f"✅ New subscriber {subscriber.email} ({subscriber.source})")
    _welcome(db, email_client, subscriber)

    return SubscribeResponse(success=True, message="Thanks for subscribing! Check your inbox for a welcome email.")


@router.get("/subscribe")
def subscription_status(email: str, db: Session = Depends(get_db)):
    subscriber = _get_subscriber_or_404(db, email)
    return {
        "subscribed": not subscriber.unsubscribed,
        "tier": subscriber.tier,
        "subscribedAt": subscriber.subscribed_at,
    }


@router.post("/unsubscribe", response_model=SubscribeResponse)
def unsubscribe(request: UnsubscribeRequest, db: Session = Depends(get_db)):
    subscriber = _get_subscriber_or_404(db, request.email)
    if not subscriber.unsubscribed:
        subscriber.unsubscribed = True
        subscriber.unsubscribed_at = datetime.utcnow()
        db.commit()
        logger.info(f"👋 Unsubscribed {subscriber.email}")
    return SubscribeResponse(success=True, message="You've been unsubscribed.")


@router.get("/subscriber/me", response_model=SubscriberDetailOut)
def get_my_subscription(email: str, db: Session = Depends(get_db)):
    return _get_subscriber_or_404(db, email)


@router.put("/subscriber/preferences", response_model=PreferencesResponse)
def update_preferences(request: PreferencesUpdate, db: Session = Depends(get_db)):
    """
    Update topic interests and delivery preferences.
    Topics the subscriber's tier does not include are not written and are
    returned in `ignoredTopics`.
    """
    subscriber = _get_subscriber_or_404(db, request.email)

    ignored = apply_topic_preferences(subscriber, {
        TOPIC_AI_TOOLS: request.topic_ai_tools,
        TOPIC_STOCK_MARKET: request.topic_stock_market,
        TOPIC_CRYPTO: request.topic_crypto,
        TOPIC_STARTUPS: request.topic_startups,
        TOPIC_PRODUCTIVITY: request.topic_productivity,
    })
    if request.daily_digest is not None:
        subscriber.daily_digest = request.daily_digest
    if request.marketing_emails is not None:
        subscriber.marketing_emails = request.marketing_emails

    db.commit()
    db.refresh(subscriber)

    message = "Preferences updated"
    if ignored:
        message += f". Upgrade your plan to follow: {', '.join(ignored)}"

    return PreferencesResponse(
        success=True,
        message=message,
        subscriber=SubscriberDetailOut.model_validate(subscriber),
        ignoredTopics=ignored,
    )


@router.get("/subscribers", dependencies=[Depends(require_admin)])
def list_subscribers(
    includeTopics: bool = False,
    includeUnsubscribed: bool = False,
    db: Session = Depends(get_db),
):
    """Subscriber list for the admin dashboard, with counts per tier."""
    query = db.query(Subscriber)
    if not includeUnsubscribed:
        query = query.filter(Subscriber.unsubscribed == False)  # noqa: E712
    subscribers = query.order_by(Subscriber.subscribed_at.desc(), Subscriber.id.desc()).all()

    out_model = SubscriberDetailOut if includeTopics else SubscriberOut
    counts = {tier: 0 for tier in (TIER_FREE, TIER_PRO, TIER_PREMIUM)}
    for subscriber in subscribers:
        counts[subscriber.tier] = counts.get(subscriber.tier, 0) + 1

    return {
        "subscribers": [out_model.model_validate(s).model_dump() for s in subscribers],
        "total": len(subscribers),
        "freeCount": counts[TIER_FREE],
        "proCount": counts[TIER_PRO],
        "premiumCount": counts[TIER_PREMIUM],
    }


@router.delete("/subscribers/{subscriber_id}", dependencies=[Depends(require_admin)])
def delete_subscriber(subscriber_id: int, db: Session = Depends(get_db)):
    """Hard delete. Email logs and transactions of the subscriber go with it."""
    subscriber = db.query(Subscriber).filter(Subscriber.id == subscriber_id).first()
    if not subscriber:
        raise HTTPException(status_code=404, detail="Subscriber not found")

    try:
        db.delete(subscriber)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error deleting subscriber {subscriber_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete subscriber")

    logger.info(f"🗑️ Deleted subscriber {subscriber_id}")
    return {"success": True, "message": "Subscriber deleted"}
