"""
Email service using Resend
Docs: https://resend.com/docs
"""
import html
import logging
from typing import Optional

import resend

from ..config import get_settings
from ..models.subscriber import Subscriber, TIER_FREE
from .content_service import PERSONALIZATION_PLACEHOLDER, NAME_PLACEHOLDER, tier_badge_html

logger = logging.getLogger(__name__)

TOPIC_LABELS = {
    "AI_TOOLS": "AI Tools",
    "STOCK_MARKET": "Stock Market",
    "CRYPTO": "Crypto",
    "STARTUPS": "Startups",
    "PRODUCTIVITY": "Productivity",
}


def get_email_config_info() -> dict:
    settings = get_settings()
    return {
        "api_key_configured": bool(settings.resend_api_key),
        "from_email": settings.resend_from_email,
        "reply_to": settings.resend_reply_to or None,
        "configured": bool(settings.resend_api_key),
    }


class ResendEmailClient:
    """
    Sends one email through Resend. `send` either returns the provider id or raises.
    """

    def __init__(self, api_key: str, from_email: str, reply_to: Optional[str] = None):
        self.api_key = api_key
        self.from_email = from_email
        self.reply_to = reply_to

    def send(self, to: str, subject: str, html_content: str) -> str:
        params = {
            "from": self.from_email,
            "to": [to],
            "subject": subject,
            "html": html_content,
        }
        if self.reply_to:
            params["reply_to"] = [self.reply_to]

        resend.api_key = self.api_key
        response = resend.Emails.send(params)
        return response.get("id", "N/A") if isinstance(response, dict) else getattr(response, "id", "N/A")


def display_name(subscriber: Subscriber) -> str:
    return subscriber.name.strip() if subscriber.name and subscriber.name.strip() else "there"


def render_personalized_email(content_html: str, subscriber: Subscriber) -> str:
    """
    Fill the per-recipient parts of a newsletter: greeting with the subscriber's
    name (or a fallback), their tier badge and the topics they follow.
    """
    name = html.escape(display_name(subscriber))
    topics = ", ".join(TOPIC_LABELS.get(t, t) for t in subscriber.enabled_topics()) or "General updates"
    badge = tier_badge_html(subscriber.tier or TIER_FREE)

    block = f"""
  <div style="margin-bottom: 24px; padding: 12px 16px; background: #eef2ff; border-radius: 8px;">
    <p style="margin: 0 0 4px 0; font-size: 16px;">Hi <strong>{name}</strong>, {badge}</p>
    <p style="margin: 0; font-size: 13px; color: #6b7280;">Your topics: {html.escape(topics)}</p>
  </div>
    """
    return content_html.replace(PERSONALIZATION_PLACEHOLDER, block).replace(NAME_PLACEHOLDER, name)


def build_welcome_email(subscriber: Subscriber, app_url: str) -> str:
    return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); padding: 30px; border-radius: 12px 12px 0 0; text-align: center;">
                <h1 style="color: white; margin: 0; font-size: 24px;">Welcome to Newsly! 🚀</h1>
            </div>

            <div style="background: #ffffff; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 12px 12px;">
                <p style="font-size: 16px;">Hi <strong>{html.escape(display_name(subscriber))}</strong>,</p>

                <p>Thanks for subscribing. Your first AI-curated digest on AI tools and the stock market arrives tomorrow morning.</p>

                <p style="font-size: 14px; color: #6b7280;">
                    Pick more topics or upgrade for deeper coverage in your
                    <a href="{app_url}/my-newsletters" style="color: #667eea;">newsletter settings</a>.
                </p>
            </div>

            <p style="text-align: center; font-size: 12px; color: #9ca3af; margin-top: 20px;">
                <a href="{app_url}/unsubscribe" style="color: #9ca3af;">Unsubscribe</a>
            </p>
        </body>
        </html>
        """


def send_welcome_email(email_client, subscriber: Subscriber, app_url: str) -> bool:
    """
    Send the welcome email to a new subscriber.

    Returns:
        bool: True if the email was sent, False otherwise
    """
    if email_client is None:
        logger.warning("Email service not configured, skipping welcome email")
        return False

    try:
        email_id = email_client.send(
            to=subscriber.email,
            subject="Welcome to Newsly! 🚀",
            html_content=build_welcome_email(subscriber, app_url),
        )
        logger.info(f"Welcome email sent to {subscriber.email}. ID: {email_id}")
        return True
    except Exception as e:
        logger.error(f"Error sending welcome email to {subscriber.email}: {str(e)}", exc_info=True)
        return False
