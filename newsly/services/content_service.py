"""
Newsletter content: AI-generated issues per topic/tier and admin-composed issues from tools.

Both produce HTML that still carries the per-recipient placeholders
({{personalization}}, {{name}}); email_service fills them in per subscriber.
"""
import json
import html
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import markdown
from pydantic import BaseModel, Field, ValidationError

from ..models.subscriber import (
    TIER_FREE,
    TIER_PRO,
    TIER_PREMIUM,
    TOPIC_AI_TOOLS,
    TOPIC_STOCK_MARKET,
    TOPIC_CRYPTO,
    TOPIC_STARTUPS,
    TOPIC_PRODUCTIVITY,
    TOPICS,
    TIERS,
)

logger = logging.getLogger(__name__)

PERSONALIZATION_PLACEHOLDER = "{{personalization}}"
NAME_PLACEHOLDER = "{{name}}"

TOPIC_PROMPTS = {
    TOPIC_AI_TOOLS: """You are an AI tools newsletter curator for Indian developers and traders.
Write about the latest AI tools, updates, and tips. Include:
- 3-5 new or trending AI tools with brief descriptions
- One "Tool of the Day" with deeper coverage
- A quick tip or prompt for using AI effectively
- Indian pricing where applicable (₹)""",
    TOPIC_STOCK_MARKET: """You are a stock market newsletter curator for Indian traders.
Write about the latest market trends and AI tools for trading. Include:
- Market overview and key movements (NSE/BSE focused)
- 2-3 AI tools useful for trading/analysis
- One trading tip or strategy
- Keep it educational, not financial advice""",
    TOPIC_CRYPTO: """You are a crypto newsletter curator for Indian investors.
Write about crypto trends and AI tools for crypto trading. Include:
- Market overview (BTC, ETH, major alts)
- 2-3 AI tools for crypto analysis/trading
- One DeFi or Web3 update
- Regulatory updates relevant to India""",
    TOPIC_STARTUPS: """You are a startup newsletter curator for Indian entrepreneurs.
Write about AI tools for startups and entrepreneurship. Include:
- 3-4 AI tools that help startups (marketing, ops, dev)
- One startup success story using AI
- Funding news or trends in India
- A productivity tip for founders""",
    TOPIC_PRODUCTIVITY: """You are a productivity newsletter curator.
Write about AI tools that boost productivity. Include:
- 3-4 AI productivity tools with use cases
- One workflow automation tip
- A "before vs after AI" comparison
- Time-saving hacks using AI""",
}

# Tier changes how much detail is asked for, never the output schema
TIER_CONTEXT = {
    TIER_FREE: "Keep it concise. This is for free subscribers.",
    TIER_PRO: "Include more detail and exclusive insights. This is for Pro subscribers.",
    TIER_PREMIUM: "Make it highly personalized and comprehensive. This is for Premium subscribers.",
}

TOPIC_EMOJI = {
    TOPIC_AI_TOOLS: "🤖",
    TOPIC_STOCK_MARKET: "📈",
    TOPIC_CRYPTO: "₿",
    TOPIC_STARTUPS: "🚀",
    TOPIC_PRODUCTIVITY: "⚡",
}

RESPONSE_FORMAT = """Generate a newsletter in the following JSON format:
{
  "subject": "Catchy email subject line (max 60 chars)",
  "previewText": "Email preview text (max 100 chars)",
  "headline": "Main headline for the newsletter",
  "intro": "2-3 sentence introduction",
  "sections": [
    {
      "title": "Section title",
      "content": "Section content with details, can include markdown",
      "link": "optional relevant URL"
    }
  ],
  "cta": "Call to action text"
}

Return ONLY valid JSON, no markdown code blocks."""

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```")


class ContentGenerationError(Exception):
    """The AI call failed or returned something that is not a newsletter."""


class GeneratedSection(BaseModel):
    title: str
    content: str
    link: Optional[str] = None


class GeneratedPayload(BaseModel):
    """Shape the AI is asked to return."""
    subject: str = Field(..., min_length=1)
    previewText: str = ""
    headline: str = ""
    intro: str = ""
    sections: List[GeneratedSection] = Field(default_factory=list)
    cta: str = "Read more on Newsly"


class NewsletterContent(BaseModel):
    subject: str
    preview_text: str = ""
    content_html: str
    content_json: Dict[str, Any] = Field(default_factory=dict)


def scheduled_topic(now: Optional[datetime] = None) -> str:
    """Topic for a cron run: mornings AI tools, afternoons stock market, evenings crypto."""
    hour = (now or datetime.now()).hour
    if hour < 12:
        return TOPIC_AI_TOOLS
    if hour < 17:
        return TOPIC_STOCK_MARKET
    return TOPIC_CRYPTO


def format_issue_date(day: datetime) -> str:
    return day.strftime("%A, %B %d, %Y").replace(" 0", " ")


def build_prompt(topic: str, tier: str, today: datetime) -> str:
    return f"""{TOPIC_PROMPTS[topic]}

{TIER_CONTEXT[tier]}

Today's date: {format_issue_date(today)}

{RESPONSE_FORMAT}"""


def parse_ai_response(text: str) -> GeneratedPayload:
    """Parse the model's JSON answer, tolerating markdown code fences around it."""
    if not text or not text.strip():
        raise ContentGenerationError("AI returned an empty response")

    clean_json = _CODE_FENCE.sub("", text).strip()
    try:
        data = json.loads(clean_json)
    except json.JSONDecodeError as e:
        raise ContentGenerationError(f"AI response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ContentGenerationError("AI response is not a JSON object")

    try:
        return GeneratedPayload.model_validate(data)
    except ValidationError as e:
        raise ContentGenerationError(f"AI response is missing newsletter fields: {e}") from e


def tier_badge_html(tier: str) -> str:
    if tier == TIER_PREMIUM:
        return (
            '<span style="background: linear-gradient(135deg, #FFD700, #FFA500); color: #000; '
            'padding: 2px 8px; border-radius: 4px; font-size: 12px;">PREMIUM</span>'
        )
    if tier == TIER_PRO:
        return (
            '<span style="background: #4F46E5; color: #fff; padding: 2px 8px; '
            'border-radius: 4px; font-size: 12px;">PRO</span>'
        )
    return ""


def render_ai_newsletter_html(payload: GeneratedPayload, topic: str, tier: str, app_url: str, today: datetime) -> str:
    sections_html = ""
    for section in payload.sections:
        link_html = ""
        if section.link:
            link_html = (
                f'<a href="{html.escape(section.link, quote=True)}" '
                f'style="color: #4F46E5; text-decoration: none; font-weight: 500;">Learn more →</a>'
            )
        sections_html += f"""
      <div style="margin-bottom: 24px; padding: 16px; background: #f9fafb; border-radius: 8px;">
        <h3 style="margin: 0 0 12px 0; color: #111827; font-size: 18px;">{html.escape(section.title)}</h3>
        <div style="margin: 0; color: #4b5563; line-height: 1.6;">{markdown.markdown(section.content)}</div>
        {link_html}
      </div>
        """

    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #374151; max-width: 600px; margin: 0 auto; padding: 20px;">

  <div style="text-align: center; margin-bottom: 32px;">
    <h1 style="font-size: 28px; margin: 0;">{TOPIC_EMOJI[topic]} Newsly</h1>
    <p style="color: #6b7280; margin: 8px 0;">{format_issue_date(today)}</p>
    {tier_badge_html(tier)}
  </div>

  {PERSONALIZATION_PLACEHOLDER}

  <h2 style="font-size: 24px; color: #111827; margin-bottom: 16px;">{html.escape(payload.headline)}</h2>
  <p style="font-size: 16px; color: #4b5563; margin-bottom: 32px;">{html.escape(payload.intro)}</p>

  {sections_html}

  <div style="text-align: center; margin: 40px 0;">
    <a href="{app_url}/my-newsletters" style="display: inline-block; background: #4F46E5; color: #fff; padding: 14px 32px; border-radius: 8px; text-decoration: none; font-weight: 600;">
      {html.escape(payload.cta)}
    </a>
  </div>

  <div style="border-top: 1px solid #e5e7eb; padding-top: 24px; margin-top: 40px; text-align: center; color: #9ca3af; font-size: 14px;">
    <p>You're receiving this because you subscribed to Newsly.</p>
    <p>
      <a href="{app_url}/unsubscribe" style="color: #9ca3af;">Unsubscribe</a> ·
      <a href="{app_url}/my-newsletters" style="color: #9ca3af;">Preferences</a>
    </p>
  </div>

</body>
</html>
"""


class NewsletterContentGenerator:
    """
    Generates one newsletter issue for a topic/tier through the AI client.

    Failures are never papered over with template content: any AI or parsing
    problem raises ContentGenerationError so the caller can abort that send.
    """

    def __init__(self, ai_client, app_url: str):
        self.ai_client = ai_client
        self.app_url = app_url.rstrip("/")

    async def generate(self, topic: str, tier: str = TIER_FREE, today: Optional[datetime] = None) -> NewsletterContent:
        if topic not in TOPICS:
            raise ValueError(f"Unknown topic: {topic}")
        if tier not in TIERS:
            raise ValueError(f"Unknown tier: {tier}")

        today = today or datetime.now()
        prompt = build_prompt(topic, tier, today)

        logger.info(f"📝 Generating {topic} newsletter for {tier}")
        try:
            text = await self.ai_client.complete(prompt)
        except Exception as e:
            logger.error(f"AI generation failed for {topic}/{tier}: {str(e)}", exc_info=True)
            raise ContentGenerationError(f"Failed to generate newsletter content: {e}") from e

        payload = parse_ai_response(text)
        content_json = {
            "headline": payload.headline,
            "intro": payload.intro,
            "sections": [section.model_dump(exclude_none=True) for section in payload.sections],
            "cta": payload.cta,
        }

        return NewsletterContent(
            subject=payload.subject,
            preview_text=payload.previewText,
            content_html=render_ai_newsletter_html(payload, topic, tier, self.app_url, today),
            content_json=content_json,
        )


def build_admin_newsletter_html(
    title: str,
    intro: Optional[str],
    tools: list,
    custom_content: Optional[str],
    cta: Optional[str],
    app_url: str,
) -> str:
    """
    Assemble an admin-composed issue from operator-selected tools. No AI involved.
    Title and intro may contain {{name}}, which is filled per recipient.
    """
    tools_html = ""
    for tool in tools:
        category = (tool.category or "").replace("_", " ")
        free_badge = (
            '<span style="display: inline-block; margin-left: 8px; padding: 4px 8px; background: #dcfce7; '
            'border-radius: 4px; font-size: 12px; color: #166534;">Free tier</span>'
            if tool.free_tier else ""
        )
        price_badge = (
            f'<span style="display: inline-block; margin-left: 8px; padding: 4px 8px; background: #fef3c7; '
            f'border-radius: 4px; font-size: 12px; color: #92400e;">₹{tool.price_inr}/mo</span>'
            if tool.price_inr else ""
        )
        tools_html += f"""
        <div style="margin-bottom: 24px; padding: 20px; background: #ffffff; border: 1px solid #e5e5e5; border-radius: 12px;">
          <h3 style="margin: 0 0 8px 0; color: #1a1a1a; font-size: 18px;">{html.escape(tool.name)}</h3>
          <p style="margin: 0 0 12px 0; color: #666; font-size: 14px;">{html.escape(tool.tagline or "")}</p>
          <div style="margin-bottom: 12px;">
            <span style="display: inline-block; padding: 4px 8px; background: #f0f0f0; border-radius: 4px; font-size: 12px; color: #555;">{html.escape(category)}</span>
            {free_badge}
            {price_badge}
          </div>
          <a href="{html.escape(tool.website_url, quote=True)}" style="display: inline-block; padding: 10px 20px; background: #000; color: #fff; text-decoration: none; border-radius: 6px; font-size: 14px;">
            Try {html.escape(tool.name)} →
          </a>
        </div>
        """

    intro_html = f"""
          <div style="background: #fff; padding: 24px; border-radius: 12px; margin-bottom: 24px;">
            <p style="margin: 0; font-size: 16px; line-height: 1.6; color: #333;">{html.escape(intro)}</p>
          </div>
    """ if intro else ""

    tools_block = f"""
          <h2 style="margin: 32px 0 16px 0; font-size: 20px; color: #1a1a1a;">🔧 This Week's AI Tools</h2>
          {tools_html}
    """ if tools_html else ""

    custom_block = f"""
          <div style="margin-top: 32px; padding: 24px; background: #1a1a1a; border-radius: 12px;">
            <h3 style="margin: 0 0 16px 0; color: #fff;">💡 Code Snippet / Tip</h3>
            <pre style="margin: 0; white-space: pre-wrap; font-family: 'Monaco', 'Menlo', monospace; font-size: 13px; color: #a0a0a0; overflow-x: auto;">{html.escape(custom_content)}</pre>
          </div>
    """ if custom_content else ""

    cta_block = f"""
          <div style="text-align: center; margin-top: 40px; padding: 32px; background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); border-radius: 12px;">
            <p style="margin: 0 0 16px 0; color: #fff; font-size: 16px;">{html.escape(cta)}</p>
            <a href="{app_url}/tools" style="display: inline-block; padding: 14px 28px; background: #fff; color: #764ba2; text-decoration: none; border-radius: 8px; font-weight: 600;">
              Browse All Tools →
            </a>
          </div>
    """ if cta else ""

    return f"""
      <!DOCTYPE html>
      <html>
      <head>
        <meta charset="utf-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
      </head>
      <body style="margin: 0; padding: 0; background: #f5f5f5; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
        <div style="max-width: 600px; margin: 0 auto; padding: 40px 20px;">
          <div style="text-align: center; margin-bottom: 32px;">
            <h1 style="margin: 0; font-size: 28px; color: #1a1a1a;">✨ {html.escape(title)}</h1>
          </div>

          {PERSONALIZATION_PLACEHOLDER}
          {intro_html}
          {tools_block}
          {custom_block}
          {cta_block}

          <div style="margin-top: 40px; padding-top: 24px; border-top: 1px solid #e5e5e5; text-align: center;">
            <p style="margin: 0; font-size: 14px; color: #666;">
              Newsly • Curated tools for Indian traders & developers
            </p>
            <p style="margin: 12px 0 0 0; font-size: 12px; color: #999;">
              <a href="{app_url}/unsubscribe" style="color: #999;">Unsubscribe</a>
            </p>
          </div>
        </div>
      </body>
      </html>
    """
