from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class SubscribeRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(None, max_length=255)
    source: Optional[str] = "landing_page"


class SubscribeResponse(BaseModel):
    success: bool
    message: str


class UnsubscribeRequest(BaseModel):
    email: EmailStr


class PreferencesUpdate(BaseModel):
    """Only the fields sent are touched; topic flags are filtered by tier."""
    email: EmailStr
    topic_ai_tools: Optional[bool] = Field(None, alias="topicAiTools")
    topic_stock_market: Optional[bool] = Field(None, alias="topicStockMarket")
    topic_crypto: Optional[bool] = Field(None, alias="topicCrypto")
    topic_startups: Optional[bool] = Field(None, alias="topicStartups")
    topic_productivity: Optional[bool] = Field(None, alias="topicProductivity")
    daily_digest: Optional[bool] = Field(None, alias="dailyDigest")
    marketing_emails: Optional[bool] = Field(None, alias="marketingEmails")

    model_config = {"populate_by_name": True}


class SubscriberOut(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    tier: str
    verified: bool = False
    subscribed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubscriberDetailOut(SubscriberOut):
    topic_ai_tools: bool = False
    topic_stock_market: bool = False
    topic_crypto: bool = False
    topic_startups: bool = False
    topic_productivity: bool = False
    personalized_digest: bool = False
    daily_digest: bool = True
    marketing_emails: bool = True
    unsubscribed: bool = False


class PreferencesResponse(BaseModel):
    success: bool
    message: str
    subscriber: SubscriberDetailOut
    ignoredTopics: List[str] = Field(default_factory=list)
