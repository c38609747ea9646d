from sqlalchemy import Column, Integer, String, DateTime, Boolean
from datetime import datetime

from ..database import Base


class Tool(Base):
    """AI tool entry that admins can feature in a composed newsletter."""
    __tablename__ = "tools"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    tagline = Column(String(500), nullable=True)
    website_url = Column(String(500), nullable=False)
    category = Column(String(100), nullable=False, default="GENERAL")
    price_inr = Column(Integer, nullable=True)  # Monthly price, None when unknown
    free_tier = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
