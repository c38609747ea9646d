from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime


class ToolBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    tagline: Optional[str] = Field(None, max_length=500)
    website_url: str = Field(..., max_length=500)
    category: Optional[str] = "GENERAL"
    price_inr: Optional[int] = Field(None, ge=0)
    free_tier: Optional[bool] = False

    @field_validator("website_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("website_url must start with http:// or https://")
        return v

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: Optional[str]) -> str:
        if not v:
            return "GENERAL"
        return v.strip().upper().replace(" ", "_")


class ToolCreate(ToolBase):
    slug: Optional[str] = None


class ToolOut(ToolBase):
    id: int
    slug: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
