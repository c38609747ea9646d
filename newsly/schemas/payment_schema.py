from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional

from ..models.subscriber import TIER_PRO, TIER_PREMIUM, normalize_tier


class CheckoutRequest(BaseModel):
    """Schema to start a plan upgrade checkout"""
    email: EmailStr = Field(..., description="Subscriber email")
    plan: str = Field(default=TIER_PRO, description="Plan to buy (PRO, PREMIUM; BASIC is sold as PRO)")

    @field_validator("plan")
    @classmethod
    def validate_plan(cls, v: str) -> str:
        tier = normalize_tier(v)
        if tier not in (TIER_PRO, TIER_PREMIUM):
            raise ValueError("Invalid plan")
        return tier

    class Config:
        json_schema_extra = {
            "example": {
                "email": "reader@example.com",
                "plan": "PRO",
            }
        }


class CheckoutResponse(BaseModel):
    """Schema for the checkout response"""
    success: bool
    redirectUrl: str = Field(..., description="Payment page URL")
    orderId: str = Field(..., description="Merchant transaction id")
    mock: bool = Field(False, description="True when no real gateway was called")


class StripeCheckoutRequest(CheckoutRequest):
    """Schema to start a Stripe subscription checkout"""
    successUrl: Optional[str] = Field(None, description="Where Stripe sends the buyer after paying")
    cancelUrl: Optional[str] = Field(None, description="Where Stripe sends the buyer on cancel")


class StripeCheckoutResponse(BaseModel):
    url: str = Field(..., description="Stripe hosted checkout page")
    sessionId: str


class MockCompleteRequest(BaseModel):
    """Schema to complete a payment in mock mode"""
    orderId: str = Field(..., description="Merchant transaction id returned by checkout")


class PhonePeWebhook(BaseModel):
    """Schema for PhonePe server-to-server callbacks"""
    response: str = Field(..., description="Base64 encoded payment payload")


class TransactionOut(BaseModel):
    id: int
    provider: str
    provider_reference: str
    plan: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: str

    model_config = {"from_attributes": True}
