from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.subscriber import TOPICS


def _check_topics(topics: Optional[List[str]]) -> Optional[List[str]]:
    if topics is None:
        return None
    normalized = [t.strip().upper() for t in topics]
    unknown = [t for t in normalized if t not in TOPICS]
    if unknown:
        raise ValueError(f"Unknown topics: {', '.join(unknown)}")
    return normalized


class AutoNewsletterRequest(BaseModel):
    """Body of the cron trigger. Without a topic the time of day picks one."""
    topic: Optional[str] = None

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if v not in TOPICS:
            raise ValueError(f"Unknown topic: {v}")
        return v


class TierResultOut(BaseModel):
    generated: bool
    sent: int = 0
    failed: int = 0
    newsletterId: Optional[int] = None
    error: Optional[str] = None


class AutoNewsletterResponse(BaseModel):
    success: bool
    topic: str
    results: Dict[str, TierResultOut]
    timestamp: datetime


class ComposeNewsletterRequest(BaseModel):
    """Admin-composed newsletter built from selected tools and free text."""
    title: str = Field(..., min_length=1, max_length=200)
    subject: Optional[str] = Field(None, max_length=255)
    intro: Optional[str] = None
    tool_ids: List[int] = Field(default_factory=list, alias="toolIds")
    custom_content: Optional[str] = Field(None, alias="customContent")
    cta: Optional[str] = None
    subscriber_ids: Optional[List[int]] = Field(None, alias="subscriberIds")
    target_topics: Optional[List[str]] = Field(None, alias="targetTopics")

    model_config = {"populate_by_name": True}

    @field_validator("target_topics")
    @classmethod
    def validate_topics(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _check_topics(v)

    @property
    def effective_subject(self) -> str:
        return self.subject or self.title

    @property
    def targeted(self) -> bool:
        return bool(self.subscriber_ids or self.target_topics)


class SendNewsletterResponse(BaseModel):
    success: bool
    newsletterId: int
    sentCount: int
    failedCount: int
    targeted: bool
    message: str


class NewsletterOut(BaseModel):
    id: int
    subject: str
    status: str
    topic: Optional[str] = None
    target_tier: Optional[str] = None
    ai_generated: bool = False
    recipient_count: int = 0
    open_rate: Optional[float] = None
    click_rate: Optional[float] = None
    sent_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DispatchOut(BaseModel):
    success: bool
    newsletterId: int
    status: str
    sentCount: int
    failedCount: int
    skippedCount: int
    recipientCount: int
