from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from ..database import Base

EMAIL_STATUS_SENT = "SENT"
EMAIL_STATUS_FAILED = "FAILED"
EMAIL_STATUS_DELIVERED = "DELIVERED"

EMAIL_TYPE_NEWSLETTER = "newsletter"
EMAIL_TYPE_WELCOME = "welcome"


class EmailLog(Base):
    """
    One row per delivery attempt to one subscriber.
    A subscriber gets at most one row per newsletter, which is what makes resumed runs safe.
    """
    __tablename__ = "email_logs"
    __table_args__ = (
        UniqueConstraint("subscriber_id", "newsletter_id", name="uq_email_logs_subscriber_newsletter"),
    )

    id = Column(Integer, primary_key=True, index=True)
    subscriber_id = Column(Integer, ForeignKey("subscribers.id"), nullable=False, index=True)
    # NULL for emails that are not tied to a newsletter (welcome, etc.)
    newsletter_id = Column(Integer, ForeignKey("newsletters.id"), nullable=True, index=True)
    email_type = Column(String(50), nullable=False, default=EMAIL_TYPE_NEWSLETTER)
    subject = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)  # SENT, FAILED, DELIVERED
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, default=datetime.utcnow)

    subscriber = relationship("Subscriber", back_populates="email_logs")
    newsletter = relationship("Newsletter", back_populates="email_logs")
