from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text
from sqlalchemy.orm import relationship
from datetime import datetime

from ..database import Base

# Newsletter status constants
# DRAFT -> SENDING -> SENT | FAILED
NEWSLETTER_STATUS_DRAFT = "DRAFT"
NEWSLETTER_STATUS_SENDING = "SENDING"
NEWSLETTER_STATUS_SENT = "SENT"
NEWSLETTER_STATUS_FAILED = "FAILED"

# SENDING -> SENDING only happens when a stuck run is resumed.
# FAILED -> SENDING is a resume after an aborted run.
ALLOWED_TRANSITIONS = {
    NEWSLETTER_STATUS_DRAFT: {NEWSLETTER_STATUS_SENDING},
    NEWSLETTER_STATUS_SENDING: {NEWSLETTER_STATUS_SENDING, NEWSLETTER_STATUS_SENT, NEWSLETTER_STATUS_FAILED},
    NEWSLETTER_STATUS_FAILED: {NEWSLETTER_STATUS_SENDING},
    NEWSLETTER_STATUS_SENT: set(),
}


class InvalidStatusTransition(Exception):
    """Raised when a newsletter is moved to a status its current status does not allow."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move newsletter from {current} to {target}")
        self.current = current
        self.target = target


class Newsletter(Base):
    __tablename__ = "newsletters"

    id = Column(Integer, primary_key=True, index=True)
    subject = Column(String(255), nullable=False)
    preview_text = Column(String(255), nullable=True)
    content_html = Column(Text, nullable=False)
    content_json = Column(Text, nullable=True)  # Structured content as JSON text
    status = Column(String(20), nullable=False, default=NEWSLETTER_STATUS_DRAFT, index=True)
    topic = Column(String(50), nullable=True)
    target_tier = Column(String(20), nullable=True)
    ai_generated = Column(Boolean, default=False)
    # Admin targeting as JSON ({"subscriberIds": [...], "targetTopics": [...]}), used when resuming
    audience_json = Column(Text, nullable=True)

    recipient_count = Column(Integer, default=0)
    # Filled by the email provider's tracking, never computed here
    open_rate = Column(Float, nullable=True)
    click_rate = Column(Float, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    email_logs = relationship("EmailLog", back_populates="newsletter")

    def transition_to(self, status: str):
        allowed = ALLOWED_TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise InvalidStatusTransition(self.status, status)
        self.status = status
        if status == NEWSLETTER_STATUS_SENT:
            self.sent_at = datetime.utcnow()
