"""
News feed backed by the Finlight articles API, plus article summaries.

Articles are normalized into one shape whatever field names the provider uses.
"""
import json
import logging
import re
from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)

ARTICLES_ENDPOINT = "/v2/articles"
USER_AGENT = "newsly/1.0"

CATEGORY_KEYWORDS = [
    ("Technology", ("tech", "ai", "software", "digital")),
    ("Business", ("business", "market", "finance", "economy")),
    ("Health", ("health", "medical", "covid", "hospital")),
    ("Sports", ("sports", "football", "game", "match")),
    ("Science", ("science", "research", "study", "discovery")),
    ("Environment", ("environment", "climate", "green", "nature")),
    ("Politics", ("politics", "government", "election", "policy")),
    ("Entertainment", ("entertainment", "movie", "music", "celebrity")),
]


class NewsProviderError(Exception):
    """The news provider could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


def categorize(title: str, description: str) -> str:
    words = re.findall(r"[a-z0-9]+", f"{title or ''} {description or ''}".lower())
    for category, keywords in CATEGORY_KEYWORDS:
        if any(word.startswith(keywords) for word in words):
            return category
    return "General"


def _published_at(raw: dict) -> str:
    value = raw.get("publishDate") or raw.get("published_at") or raw.get("publishedAt")
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00")).isoformat()
        except ValueError:
            logger.warning(f"Unparsable publish date {value!r}")
    return datetime.now(timezone.utc).isoformat()


def _resolve_url(raw: dict) -> str:
    for key in ("link", "url", "original_url", "canonical_url", "source_url", "href"):
        url = raw.get(key)
        if not url:
            continue
        if url.startswith("//"):
            return f"https:{url}"
        if not url.startswith("http") and re.match(r"^[^\s/]+\.[^\s]+", url):
            return f"https://{url}"
        return url
    return "#"


def normalize_article(raw: dict, index: int = 0) -> dict:
    """Map one provider article onto the shape served by /api/news."""
    summary = raw.get("summary")
    content = raw.get("content")
    title = raw.get("title") or (str(summary)[:60] if summary else "Untitled")
    description = summary or content or "No description available"

    source = raw.get("source")
    if isinstance(source, str):
        source = {"id": None, "name": source}
    source = source or {}

    images = raw.get("images") or []
    image = images[0] if images else raw.get("image") or raw.get("thumbnail")

    published = _published_at(raw)
    return {
        "id": raw.get("id") or f"finlight-{published}-{index}",
        "title": title,
        "description": description,
        "content": content,
        "url": _resolve_url(raw),
        "urlToImage": image,
        "publishedAt": published,
        "author": raw.get("author"),
        "source": {"id": source.get("id"), "name": source.get("name") or "Unknown Source"},
        "category": raw.get("category") or categorize(title, summary or ""),
    }


class FinlightNewsClient:
    """
    Async client for the articles endpoint. `transport` lets callers plug in any
    httpx transport (tests use httpx.MockTransport).
    """

    def __init__(self, api_key: str, base_url: str = "https://api.finlight.me", transport=None, timeout: float = 10.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def articles(self, query: Optional[str] = None, language: str = "en",
                       country: Optional[str] = None, page_size: int = 10) -> List[dict]:
        body = {"language": language, "pageSize": page_size}
        if query:
            body["query"] = query
        if country:
            body["countries"] = [country.upper()]

        logger.info(f"📰 Fetching news: {body}")
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}{ARTICLES_ENDPOINT}",
                    json=body,
                    headers={"X-API-KEY": self.api_key, "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ News provider unreachable: {str(e)}")
            raise NewsProviderError(str(e)) from e

        if response.status_code >= 400:
            logger.error(f"❌ News provider returned {response.status_code}: {response.text[:200]}")
            raise NewsProviderError(response.text[:200] or "News provider error", response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise NewsProviderError("News provider returned invalid JSON") from e

        raw_articles = payload.get("articles") if isinstance(payload, dict) else None
        if not isinstance(raw_articles, list):
            return []
        return [
            normalize_article(raw, index)
            for index, raw in enumerate(raw_articles)
            if isinstance(raw, dict) and (raw.get("title") or raw.get("summary"))
        ]


class PageFetcher:
    """Downloads article pages for summaries that arrive without any text."""

    def __init__(self, transport=None, timeout: float = 5.0):
        self.transport = transport
        self.timeout = timeout

    async def fetch_text(self, url: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(url, headers={"User-Agent": USER_AGENT}, follow_redirects=True)
        return html_to_text(response.text)


def html_to_text(html: str) -> str:
    text = re.sub(r"<script[\s\S]*?>[\s\S]*?</script>", " ", html or "", flags=re.IGNORECASE)
    text = re.sub(r"<style[\s\S]*?>[\s\S]*?</style>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def extractive_summary(text: str, max_sentences: int = 5) -> str:
    """
    Pick the highest scoring sentences (by word frequency) and keep them in
    their original order.
    """
    text = re.sub(r"\s+", " ", text).strip()
    sentences = [s.strip() for s in re.findall(r"[^.!?]+[.!?]+|[^.!?]+$", text) if s.strip()] or [text]
    if len(sentences) <= max_sentences:
        return " ".join(sentences)

    def words(value):
        return [w for w in re.sub(r"[^a-z0-9\s]", " ", value.lower()).split() if len(w) > 2]

    frequency = Counter(words(text))
    ranked = sorted(
        range(len(sentences)),
        key=lambda i: sum(frequency[w] for w in words(sentences[i])),
        reverse=True,
    )[:max_sentences]
    return " ".join(sentences[i] for i in sorted(ranked))


def build_summary_prompt(title: str, description: str, content: str, url: str, detailed: bool) -> str:
    header = (
        "Produce a DETAILED, well-structured summary of the article below. "
        "Include key points, context and notable quotes when available."
        if detailed else
        "Produce a concise summary of the article below."
    )
    return f"""{header}
Answer with JSON: {{"summary": "<summary text>"}}

Title: {title or ''}
Description: {description or ''}
Content: {content or ''}
URL: {url or ''}"""


async def summarize_article(ai_client, title: str = "", description: str = "", content: str = "",
                            url: str = "", max_sentences: int = 5, detailed: bool = False) -> str:
    """
    Summarize with the AI client when one is configured; otherwise, or when the
    AI call fails, fall back to an extractive summary of the text.
    """
    text = content or description or title or ""
    if ai_client is not None:
        try:
            raw = await ai_client.complete(build_summary_prompt(title, description, text, url, detailed))
            summary = (json.loads(raw).get("summary") or "").strip()
            if summary:
                return summary
        except Exception as e:
            logger.warning(f"⚠️ AI summary failed, using extractive summary: {str(e)}")
    return extractive_summary(text, max_sentences)
