"""Tests for the news feed, search and article summaries."""
import json

import httpx
import pytest

from conftest import FakeAIClient
from newsly.dependencies import get_news_client, get_optional_ai_client, get_page_fetcher
from newsly.main import app
from newsly.services.news_service import (
    FinlightNewsClient,
    PageFetcher,
    extractive_summary,
    normalize_article,
)

ARTICLES = [
    {
        "title": "Sensex closes at a record high",
        "summary": "Markets rallied on strong earnings.",
        "link": "//example.com/sensex",
        "publishDate": "2026-10-19T09:30:00Z",
        "source": "Mint",
        "images": ["https://img.example.com/sensex.jpg"],
    },
    {"summary": "A new AI tool for spreadsheets launched today and many teams are trying it."},
    {"content": "No title or summary, dropped"},
]


class FakeNewsProvider:
    """Records provider requests and answers from a fixed payload."""

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = {"articles": ARTICLES} if payload is None else payload
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

    @property
    def last_body(self):
        return json.loads(self.requests[-1].content)


@pytest.fixture
def provider(client):
    fake = FakeNewsProvider()
    app.dependency_overrides[get_news_client] = lambda: FinlightNewsClient(
        api_key="fl_test", base_url="https://news.test", transport=httpx.MockTransport(fake)
    )
    return fake


def test_latest_news_normalizes_articles(client, provider):
    response = client.get("/api/news", params={"category": "markets", "max": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["totalResults"] == 2

    first = body["articles"][0]
    assert first["url"] == "https://example.com/sensex"
    assert first["source"]["name"] == "Mint"
    assert first["urlToImage"] == "https://img.example.com/sensex.jpg"
    assert first["publishedAt"].startswith("2026-10-19T09:30:00")
    assert first["category"] == "Business"

    second = body["articles"][1]
    assert second["title"] == "A new AI tool for spreadsheets launched today and many teams"
    assert second["url"] == "#"
    assert second["category"] == "Technology"

    request = provider.requests[-1]
    assert request.url == "https://news.test/v2/articles"
    assert request.headers["X-API-KEY"] == "fl_test"
    assert provider.last_body == {"language": "en", "pageSize": 5, "query": "markets", "countries": ["IN"]}


def test_general_category_sends_no_query(client, provider):
    client.get("/api/news")

    assert "query" not in provider.last_body
    assert provider.last_body["pageSize"] == 10


def test_search_requires_query(client, provider):
    assert client.get("/api/news/search").status_code == 422

    response = client.get("/api/news/search", params={"q": "nifty"})

    assert response.status_code == 200
    assert provider.last_body == {"language": "en", "pageSize": 8, "query": "nifty", "countries": ["US"]}


def test_provider_errors_are_passed_on(client, provider):
    provider.status_code = 429
    provider.payload = {"error": "rate limited"}

    response = client.get("/api/news")

    assert response.status_code == 429
    assert "News provider error" in response.json()["detail"]


def test_news_needs_api_key(client):
    assert client.get("/api/news").status_code == 500


def test_summary_uses_ai_when_configured(client):
    ai = FakeAIClient([json.dumps({"summary": "Markets hit a record."})])
    app.dependency_overrides[get_optional_ai_client] = lambda: ai

    response = client.post("/api/news/summary", json={"title": "Sensex", "content": "Markets rallied today."})

    assert response.json() == {"summary": "Markets hit a record."}
    assert "Markets rallied today." in ai.prompts[0]
    assert "concise" in ai.prompts[0]


def test_summary_falls_back_to_extractive_when_ai_fails(client):
    app.dependency_overrides[get_optional_ai_client] = lambda: FakeAIClient([RuntimeError("AI is down")])

    response = client.post("/api/news/summary", json={"content": "One. Two. Three.", "maxSentences": 2})

    assert response.status_code == 200
    assert response.json()["summary"] == "One. Two."


def test_summary_fetches_page_when_no_text(client):
    def page(request):
        return httpx.Response(200, text="<html><script>x()</script><p>Rates were held.</p></html>")

    app.dependency_overrides[get_page_fetcher] = lambda: PageFetcher(transport=httpx.MockTransport(page))

    response = client.post("/api/news/summary", json={"url": "https://example.com/rates"})

    assert response.json() == {"summary": "Rates were held."}


def test_summary_without_any_text_is_400(client):
    assert client.post("/api/news/summary", json={}).status_code == 400


def test_extractive_summary_keeps_original_order():
    text = (
        "Markets rose. Markets rallied as markets cheered markets news. "
        "The weather was fine. Investors bought markets funds."
    )

    summary = extractive_summary(text, max_sentences=2)

    assert summary == "Markets rallied as markets cheered markets news. Investors bought markets funds."


def test_normalize_article_prefers_structured_source():
    article = normalize_article({"title": "Budget", "source": {"id": "et", "name": "ET"}, "url": "et.com/budget"})

    assert article["source"] == {"id": "et", "name": "ET"}
    assert article["url"] == "https://et.com/budget"
