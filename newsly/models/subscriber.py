"""
Subscriber model plus the tier and topic tables that gate what each subscriber gets.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime

from ..database import Base

# Subscription tiers, lowest to highest
TIER_FREE = "FREE"
TIER_PRO = "PRO"
TIER_PREMIUM = "PREMIUM"
TIERS = (TIER_FREE, TIER_PRO, TIER_PREMIUM)

# Topics a subscriber can opt into
TOPIC_AI_TOOLS = "AI_TOOLS"
TOPIC_STOCK_MARKET = "STOCK_MARKET"
TOPIC_CRYPTO = "CRYPTO"
TOPIC_STARTUPS = "STARTUPS"
TOPIC_PRODUCTIVITY = "PRODUCTIVITY"
TOPICS = (TOPIC_AI_TOOLS, TOPIC_STOCK_MARKET, TOPIC_CRYPTO, TOPIC_STARTUPS, TOPIC_PRODUCTIVITY)

# Topic -> boolean column on Subscriber
TOPIC_COLUMNS = {
    TOPIC_AI_TOOLS: "topic_ai_tools",
    TOPIC_STOCK_MARKET: "topic_stock_market",
    TOPIC_CRYPTO: "topic_crypto",
    TOPIC_STARTUPS: "topic_startups",
    TOPIC_PRODUCTIVITY: "topic_productivity",
}

# Topics each tier is allowed to enable
TIER_TOPICS = {
    TIER_FREE: (TOPIC_AI_TOOLS, TOPIC_STOCK_MARKET),
    TIER_PRO: (TOPIC_AI_TOOLS, TOPIC_STOCK_MARKET, TOPIC_CRYPTO),
    TIER_PREMIUM: TOPICS,
}


def tier_rank(tier: str) -> int:
    return TIERS.index(tier)


def normalize_tier(value: str | None) -> str | None:
    """Map free-form plan/tier names onto a tier. BASIC is sold as PRO."""
    if not value:
        return None
    value = value.strip().upper()
    if value == "BASIC":
        return TIER_PRO
    return value if value in TIERS else None


class Subscriber(Base):
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    tier = Column(String(20), nullable=False, default=TIER_FREE, index=True)  # FREE, PRO, PREMIUM
    source = Column(String(50), default="landing_page")
    verified = Column(Boolean, default=False)

    # Topic interests (only topics permitted by the tier may be enabled)
    topic_ai_tools = Column(Boolean, default=True)
    topic_stock_market = Column(Boolean, default=True)
    topic_crypto = Column(Boolean, default=False)
    topic_startups = Column(Boolean, default=False)
    topic_productivity = Column(Boolean, default=False)

    # Delivery preferences
    daily_digest = Column(Boolean, default=True)
    marketing_emails = Column(Boolean, default=True)
    personalized_digest = Column(Boolean, default=False)

    unsubscribed = Column(Boolean, default=False, index=True)
    unsubscribed_at = Column(DateTime, nullable=True)

    stripe_customer_id = Column(String(100), nullable=True, index=True)

    subscribed_at = Column(DateTime, default=datetime.utcnow)
    last_email_sent = Column(DateTime, nullable=True)

    email_logs = relationship("EmailLog", back_populates="subscriber", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="subscriber", cascade="all, delete-orphan")

    def has_topic(self, topic: str) -> bool:
        return bool(getattr(self, TOPIC_COLUMNS[topic]))

    def enabled_topics(self) -> list[str]:
        return [topic for topic in TOPICS if self.has_topic(topic)]
