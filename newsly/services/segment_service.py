"""
Segment selection: which subscribers receive a newsletter for a topic and target tier.
"""
import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.subscriber import Subscriber, TIERS, TOPIC_COLUMNS, tier_rank

logger = logging.getLogger(__name__)


def tiers_for_target(target_tier: str) -> List[str]:
    """
    Tiers that receive a send aimed at target_tier.

    Higher tiers receive everything sent to lower tiers:
    FREE -> FREE, PRO, PREMIUM; PRO -> PRO, PREMIUM; PREMIUM -> PREMIUM.
    """
    if target_tier not in TIERS:
        raise ValueError(f"Unknown tier: {target_tier}")
    return [tier for tier in TIERS if tier_rank(tier) >= tier_rank(target_tier)]


def select_segment(db: Session, topic: str, target_tier: str) -> List[Subscriber]:
    """
    Subscribers eligible for a topic/tier send: subscribed, on the daily digest,
    in the tier-inclusion set and opted into the topic. An empty list is a valid result.
    """
    if topic not in TOPIC_COLUMNS:
        raise ValueError(f"Unknown topic: {topic}")

    topic_column = getattr(Subscriber, TOPIC_COLUMNS[topic])
    subscribers = (
        db.query(Subscriber)
        .filter(
            Subscriber.unsubscribed.is_(False),
            Subscriber.daily_digest.is_(True),
            Subscriber.tier.in_(tiers_for_target(target_tier)),
            topic_column.is_(True),
        )
        .order_by(Subscriber.id)
        .all()
    )
    logger.info(f"🎯 Segment {topic}/{target_tier}: {len(subscribers)} subscribers")
    return subscribers


def select_admin_recipients(
    db: Session,
    subscriber_ids: Optional[List[int]] = None,
    target_topics: Optional[List[str]] = None,
) -> List[Subscriber]:
    """
    Recipients for an admin-composed send.

    Explicit subscriber ids win over topics; with neither, every subscribed
    subscriber is targeted. Unsubscribed subscribers are never included.
    """
    query = db.query(Subscriber).filter(Subscriber.unsubscribed.is_(False))

    if subscriber_ids:
        query = query.filter(Subscriber.id.in_(subscriber_ids))
    elif target_topics:
        unknown = [t for t in target_topics if t not in TOPIC_COLUMNS]
        if unknown:
            raise ValueError(f"Unknown topics: {', '.join(unknown)}")
        columns = [getattr(Subscriber, TOPIC_COLUMNS[t]).is_(True) for t in target_topics]
        query = query.filter(or_(*columns))

    return query.order_by(Subscriber.id).all()
