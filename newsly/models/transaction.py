from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from datetime import datetime

from ..database import Base

TRANSACTION_STATUS_PENDING = "PENDING"
TRANSACTION_STATUS_SUCCESS = "SUCCESS"
TRANSACTION_STATUS_FAILED = "FAILED"

PROVIDER_STRIPE = "stripe"
PROVIDER_PHONEPE = "phonepe"
PROVIDER_MOCK = "mock"


class Transaction(Base):
    """
    Payment attempt for a plan upgrade.
    One subscriber can have many attempts; each is keyed by the provider's reference.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    subscriber_id = Column(Integer, ForeignKey("subscribers.id"), nullable=False, index=True)

    provider = Column(String(20), nullable=False)  # stripe, phonepe, mock
    # Merchant transaction id (PhonePe) or checkout session id (Stripe)
    provider_reference = Column(String(100), unique=True, nullable=False, index=True)

    plan = Column(String(20), nullable=False)  # PRO, PREMIUM
    amount = Column(Integer, nullable=True)  # Minor units (paise, cents)
    currency = Column(String(10), default="INR")
    status = Column(String(20), nullable=False, default=TRANSACTION_STATUS_PENDING)
    provider_code = Column(String(50), nullable=True)  # Raw status code returned by the provider

    raw_payload = Column(Text, nullable=True)  # Last provider payload as JSON

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subscriber = relationship("Subscriber", back_populates="transactions")
