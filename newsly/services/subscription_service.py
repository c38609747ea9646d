"""
Tier and topic preference rules for subscribers.
"""
import logging
from typing import Dict, List, Optional

from ..models.subscriber import (
    Subscriber,
    TIER_FREE,
    TIER_PREMIUM,
    TIER_TOPICS,
    TOPIC_COLUMNS,
    tier_rank,
)

logger = logging.getLogger(__name__)

# Plan prices in paise (₹1 = 100 paise)
PLAN_PRICES = {
    "PRO": 300,
    "PREMIUM": 1000,
}


def permitted_topics(tier: str) -> tuple:
    return TIER_TOPICS.get(tier, TIER_TOPICS[TIER_FREE])


def apply_topic_preferences(subscriber: Subscriber, requested: Dict[str, bool]) -> List[str]:
    """
    Write the requested topic flags that the subscriber's tier allows.

    Returns the topics that were requested but ignored because the tier does not
    permit them. Disabling is gated the same way as enabling.
    """
    allowed = permitted_topics(subscriber.tier)
    ignored = []
    for topic, enabled in requested.items():
        if enabled is None:
            continue
        if topic not in allowed:
            ignored.append(topic)
            continue
        setattr(subscriber, TOPIC_COLUMNS[topic], bool(enabled))
    if ignored:
        logger.info(f"Ignored topics {ignored} for {subscriber.email} ({subscriber.tier})")
    return ignored


def change_tier(subscriber: Subscriber, new_tier: str, stripe_customer_id: Optional[str] = None) -> Subscriber:
    """
    Move a subscriber to a new tier.

    Upgrades switch on every topic the new tier permits. Downgrades only change the
    tier: topic flags enabled under the old tier are left as they are.
    """
    old_tier = subscriber.tier or TIER_FREE
    subscriber.tier = new_tier
    if stripe_customer_id:
        subscriber.stripe_customer_id = stripe_customer_id

    if tier_rank(new_tier) > tier_rank(old_tier):
        for topic in permitted_topics(new_tier):
            setattr(subscriber, TOPIC_COLUMNS[topic], True)
        if new_tier == TIER_PREMIUM:
            subscriber.personalized_digest = True
        logger.info(f"⬆️ Upgraded subscriber {subscriber.id} from {old_tier} to {new_tier}")
    elif tier_rank(new_tier) < tier_rank(old_tier):
        logger.info(f"⬇️ Downgraded subscriber {subscriber.id} from {old_tier} to {new_tier}")

    return subscriber
