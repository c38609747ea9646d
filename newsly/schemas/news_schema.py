from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class ArticleSource(BaseModel):
    id: Optional[str] = None
    name: str


class ArticleOut(BaseModel):
    id: str
    title: str
    description: str
    content: Optional[str] = None
    url: str
    urlToImage: Optional[str] = None
    publishedAt: str
    author: Optional[str] = None
    source: ArticleSource
    category: Optional[str] = None


class NewsResponse(BaseModel):
    articles: List[ArticleOut]
    totalResults: int
    status: str = "ok"


class SummaryRequest(BaseModel):
    """Schema to summarize an article from its text or, failing that, its URL"""
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    url: Optional[str] = None
    maxSentences: int = Field(5, ge=1, le=30)
    summaryType: Literal["brief", "full"] = "brief"

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Sensex closes at a record high",
                "url": "https://example.com/markets/sensex-record",
                "summaryType": "brief",
            }
        }


class SummaryResponse(BaseModel):
    summary: str
