"""
Weekly leadership email delivery through the Resend HTTP API.

Transactional, one request per subscriber. Plain HTML, no images.
"""

import os
import logging
from typing import Optional, Union

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel

from models import Post, WeeklyEmail, GeneratedPost
from .renderer import render_template

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

RESEND_API_URL = "https://api.resend.com/emails"
FROM_NAME = "Build Better Daily"
DEFAULT_FROM_EMAIL = "onboarding@resend.dev"


class EmailSendResult(BaseModel):
    """Outcome of one send; errors are reported, never raised."""
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


def get_from_address() -> str:
    from_email = os.getenv("RESEND_FROM_EMAIL") or DEFAULT_FROM_EMAIL
    return f"{FROM_NAME} <{from_email}>"


def build_leadership_email_html(weekly_email: WeeklyEmail, post: Union[Post, GeneratedPost],
                                article_url: str) -> str:
    """
    Render the leadership email.

    Raises:
        ValueError: If the post has no leadership tool
    """
    if post.leadership_tool is None:
        raise ValueError("Post must have leadership_tool to send email")

    return render_template(
        "leadership_email.html",
        email=weekly_email,
        tool=post.leadership_tool,
        article_url=article_url,
    ).strip()


def send_weekly_email_to_subscriber(subscriber_email: str, weekly_email: WeeklyEmail,
                                    post: Union[Post, GeneratedPost], article_url: str,
                                    api_key: Optional[str] = None,
                                    transport: Optional[httpx.BaseTransport] = None) -> EmailSendResult:
    """
    Send the weekly leadership email to a single subscriber.

    Args:
        subscriber_email: Recipient address
        weekly_email: Stored email companion
        post: The article the email belongs to
        article_url: Absolute URL of the article
        api_key: Resend API key (defaults to RESEND_API_KEY)
        transport: Optional httpx transport

    Returns:
        EmailSendResult with success flag and error message on failure
    """
    api_key = api_key or os.getenv("RESEND_API_KEY")
    if not api_key:
        logger.error("RESEND_API_KEY is not configured")
        return EmailSendResult(success=False, error="RESEND_API_KEY is not configured")

    try:
        html = build_leadership_email_html(weekly_email, post, article_url)
    except ValueError as e:
        return EmailSendResult(success=False, error=str(e))

    payload = {
        "from": get_from_address(),
        "to": subscriber_email,
        "subject": weekly_email.subject,
        "html": html,
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    try:
        with httpx.Client(timeout=httpx.Timeout(30.0), transport=transport) as client:
            response = client.post(RESEND_API_URL, headers=headers, json=payload)
    except httpx.HTTPError as e:
        logger.error(f"✗ Error sending email to {subscriber_email}: {e}")
        return EmailSendResult(success=False, error=str(e))

    if response.status_code >= 400:
        try:
            body = response.json()
            error_message = body.get("message") or body.get("name") or response.text
        except ValueError:
            error_message = response.text or f"HTTP {response.status_code}"
        logger.error(f"✗ Failed to send email to {subscriber_email}: {error_message}")
        return EmailSendResult(success=False, error=error_message)

    try:
        message_id = response.json().get("id")
    except ValueError:
        message_id = None

    logger.info(f"✓ Email sent to {subscriber_email} (ID: {message_id})")
    return EmailSendResult(success=True, message_id=message_id)
