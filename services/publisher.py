"""
Publishing workflows: weekly content generation, email generation, email sends.

Each workflow raises PublishError with the HTTP status the web layer returns.
"""

import os
import time
import logging
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from models import Post
from services.ai_client import AIClientError
from services.content_generator import (
    ContentGenerator,
    ContentGenerationError,
)
from services.agents.pipeline import generate_article_with_pipeline
from .database import SupabaseClient, DatabaseError
from .mailer import send_weekly_email_to_subscriber
from .cache_manager import page_cache
from .utils import normalize_email, is_valid_email

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

DEFAULT_SITE_URL = "https://buildbetterdaily.com"
RECENT_TITLES_COUNT = 52
RATE_LIMIT_DELAY_SECONDS = 0.7


class PublishError(Exception):
    """Workflow failure carrying an HTTP status and optional extra response fields."""

    def __init__(self, message: str, status_code: int = 500, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.extra = extra or {}


def get_site_url() -> str:
    return (os.getenv("SITE_URL") or os.getenv("NEXT_PUBLIC_SITE_URL") or DEFAULT_SITE_URL).rstrip("/")


class WeeklyPublisher:
    """Runs the weekly article, email and LinkedIn workflows against Supabase."""

    # Allowed article generation modes
    ALLOWED_MODES = {"pipeline", "single"}

    def __init__(self, db: Optional[SupabaseClient] = None, client=None):
        self.generation_mode = os.getenv("GENERATION_MODE", "pipeline").lower().strip()
        self.db = db or SupabaseClient()
        self.client = client
        self.generator = ContentGenerator(client)
        self.site_url = get_site_url()

    def validate_generation_mode(self) -> None:
        """Raise ValueError for an unknown GENERATION_MODE. Only generation depends on it."""
        if self.generation_mode not in self.ALLOWED_MODES:
            raise ValueError(
                f"Invalid GENERATION_MODE '{self.generation_mode}'. "
                f"Must be one of: {', '.join(sorted(self.ALLOWED_MODES))}"
            )

    def article_url(self, slug: str) -> str:
        return f"{self.site_url}/post/{slug}"

    def _require_post(self, post_id: str) -> Post:
        post = self.db.get_post_by_id(post_id)
        if post is None:
            raise PublishError("Post not found", 404)
        return post

    def _generate_article(self, existing_titles: List[str], theme: Optional[str]):
        if self.generation_mode == "single":
            logger.info("Generating article in single-shot mode")
            return self.generator.generate_blog_post(existing_titles)

        logger.info("Generating article with multi-agent pipeline")
        return generate_article_with_pipeline(existing_titles, client=self.generator.client, theme=theme)

    def generate_weekly_content(self, theme: Optional[str] = None) -> Dict[str, Any]:
        """
        Generate, save and publish this week's article with its email and LinkedIn pack.

        Returns:
            Summary dict with the saved post and email

        Raises:
            ValueError: Unknown GENERATION_MODE
            PipelineError, ContentGenerationError, AIClientError, DatabaseError
        """
        self.validate_generation_mode()
        logger.info("Starting weekly content generation...")

        existing_titles = self.db.get_recent_post_titles(RECENT_TITLES_COUNT)
        logger.info(f"Found {len(existing_titles)} existing posts to avoid")

        article = self._generate_article(existing_titles, theme)
        logger.info(f"✓ Article generated: \"{article.title}\"")

        post = self.db.create_post({
            "title": article.title,
            "slug": article.slug,
            "content": article.content,
            "excerpt": article.excerpt,
            "pillar": article.pillar,
            "archetype": article.archetype,
            "leadership_tool": article.leadership_tool.model_dump(),
            "books": [b.model_dump() for b in article.books],
            "published": True,
        })

        generated_email = self.generator.generate_weekly_email(article)
        email = self.db.create_weekly_email({
            "post_id": post.id,
            "subject": generated_email.subject,
            "preheader": generated_email.preheader,
            "body": generated_email.body,
            "leadership_prompt": generated_email.leadership_prompt,
            "watch_for": generated_email.watch_for,
            "execution_nudge": generated_email.execution_nudge,
            "sent": False,
        })

        try:
            pack = self.generator.generate_linkedin_pack(article, self.article_url(post.slug))
            self.db.create_linkedin_pack({
                "post_id": post.id,
                "primary_post": pack.primary_post,
                "short_version": pack.short_version,
                "comment_starters": pack.comment_starters,
                "reply_angles": pack.reply_angles,
                "article_link": pack.article_link,
                "status": "draft",
            })
        except (ContentGenerationError, AIClientError, DatabaseError) as e:
            logger.warning(f"⚠ LinkedIn pack generation failed (post still published): {e}")

        page_cache.purge_post(post.slug)

        logger.info(f"✓ Weekly content generated: \"{post.title}\"")
        return {
            "success": True,
            "post": {
                "id": post.id,
                "title": post.title,
                "slug": post.slug,
                "pillar": post.pillar,
                "archetype": post.archetype,
            },
            "email": {"id": email.id, "subject": email.subject},
        }

    def generate_email_for_post(self, post_id: str) -> Dict[str, Any]:
        """Generate and save the weekly email for an existing post."""
        post = self._require_post(post_id)

        if self.db.get_weekly_email_by_post_id(post.id) is not None:
            raise PublishError("Post already has a weekly email", 400)
        if post.leadership_tool is None:
            raise PublishError("Post must have a leadership_tool to generate email", 400)
        if not post.pillar or not post.archetype:
            raise PublishError("Post must have both pillar and archetype to generate email", 400)

        logger.info(f"Generating weekly email for post: \"{post.title}\"")
        generated = self.generator.generate_weekly_email(post)

        email = self.db.create_weekly_email({
            "post_id": post.id,
            "subject": generated.subject,
            "preheader": generated.preheader,
            "body": generated.body,
            "leadership_prompt": generated.leadership_prompt,
            "watch_for": generated.watch_for,
            "execution_nudge": generated.execution_nudge,
            "sent": False,
        })

        logger.info(f"✓ Email generated and saved for post: \"{post.title}\"")
        return {"success": True, "email": {"id": email.id, "subject": email.subject}}

    def send_weekly_emails(self, post_id: str, delay_seconds: float = RATE_LIMIT_DELAY_SECONDS) -> Dict[str, Any]:
        """
        Send a post's weekly email to every active subscriber, one request at a time.

        Args:
            post_id: Post whose email should be sent
            delay_seconds: Pause between sends to respect the Resend rate limit

        Returns:
            Dict with sent, failed, total and (when any) failures
        """
        post = self._require_post(post_id)

        if not post.published:
            raise PublishError("Post must be published before sending emails", 400)
        if post.is_read_first:
            raise PublishError("Read First instructional posts are excluded from email automation", 400)
        if post.leadership_tool is None:
            raise PublishError("Post must have leadership_tool to send emails", 400)

        weekly_email = self.db.get_weekly_email_by_post_id(post.id)
        if weekly_email is None:
            raise PublishError("Weekly email not found for this post", 404)
        if weekly_email.sent:
            raise PublishError("Emails already sent for this post", 400,
                               {"sent_count": weekly_email.sent_count or 0})

        subscribers = self.db.get_active_subscribers()
        if not subscribers:
            raise PublishError("No active subscribers found", 400)

        article_url = self.article_url(post.slug)
        total = len(subscribers)

        logger.info("=" * 60)
        logger.info(f"SENDING WEEKLY EMAILS FOR: \"{post.title}\"")
        logger.info(f"Subscribers: {total}")
        logger.info("=" * 60)

        sent = 0
        failures = []
        for i, subscriber in enumerate(subscribers, start=1):
            result = send_weekly_email_to_subscriber(subscriber.email, weekly_email, post, article_url)
            if result.success:
                sent += 1
                logger.info(f"✓ [{i}/{total}] Sent to {subscriber.email}")
            else:
                error = result.error or "Unknown error"
                failures.append({"email": subscriber.email, "error": error})
                logger.warning(f"✗ [{i}/{total}] Failed: {subscriber.email} - {error}")

            if i < total and delay_seconds > 0:
                time.sleep(delay_seconds)

        if sent > 0:
            self.db.update_weekly_email_sent_status(weekly_email.id, sent)

        logger.info(f"EMAIL SENDING COMPLETE: {sent} sent, {len(failures)} failed")

        summary: Dict[str, Any] = {
            "success": True,
            "sent": sent,
            "failed": len(failures),
            "total": total,
        }
        if failures:
            summary["failures"] = failures
        return summary

    def get_email_content(self, email: str, post_id: str) -> Dict[str, Any]:
        """Return a post's weekly email for a subscribed reader."""
        if not email or not post_id:
            raise PublishError("Email and postId are required", 400)

        subscriber = None
        if is_valid_email(email):
            subscriber = self.db.get_subscriber_by_email(normalize_email(email))
        if subscriber is None or subscriber.unsubscribed:
            raise PublishError("Email not found in subscribers list. Please subscribe first.", 404)

        post = self._require_post(post_id)
        weekly_email = self.db.get_weekly_email_by_post_id(post.id)
        if weekly_email is None:
            raise PublishError("No email content available for this article", 404)

        return {
            "success": True,
            "email": {
                "subject": weekly_email.subject,
                "body": weekly_email.body,
                "leadership_prompt": weekly_email.leadership_prompt,
                "watch_for": weekly_email.watch_for,
                "execution_nudge": weekly_email.execution_nudge,
                "leadership_tool": post.leadership_tool.model_dump() if post.leadership_tool else None,
                "article_url": self.article_url(post.slug),
            },
        }
