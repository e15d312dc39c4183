"""
Supabase persistence over the PostgREST HTTP API.

Tables: posts, weekly_emails, subscribers, linkedin_packs.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import httpx
from dotenv import load_dotenv
from pydantic import ValidationError

from models import Post, WeeklyEmail, Subscriber, LinkedInPack
from .utils import normalize_email, validate_record_id

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


class DatabaseError(Exception):
    """Raised when a write (or an admin query) fails."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(f"Database error: {message} (Code: {code})")


def _mock_posts() -> List[Post]:
    now = datetime.now(timezone.utc)
    return [
        Post(
            id="1",
            title="The Cash Flow Rollercoaster: How to Get Off",
            slug="cash-flow-rollercoaster",
            excerpt="Most construction businesses die because of cash flow, not lack of work. "
                    "Here is the framework for stabilizing your finances.",
            content="Mock content...",
            created_at=now,
            published=True,
        ),
        Post(
            id="2",
            title="Leadership in the Field vs. The Office",
            slug="leadership-field-vs-office",
            excerpt="Why your best foreman struggles when you promote him to project manager, "
                    "and how to bridge the gap.",
            content="Mock content...",
            created_at=now - timedelta(days=1),
            published=True,
        ),
        Post(
            id="3",
            title="Stop Bidding on Everything",
            slug="stop-bidding-everything",
            excerpt="The power of niche. Why narrowing your focus actually increases your profit margins.",
            content="Mock content...",
            created_at=now - timedelta(days=2),
            published=True,
        ),
    ]


def _validate_rows(model, rows: List[Dict[str, Any]], label: str) -> list:
    """Validate rows one at a time; a malformed row is logged and skipped."""
    records = []
    for row in rows:
        try:
            records.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(f"⚠ Skipping malformed {label} row {row.get('id')}: {e.error_count()} error(s)")
    return records


def sort_posts_for_listing(posts: List[Post]) -> List[Post]:
    """Pinned read-first posts first, then newest first."""
    by_date = sorted(posts, key=lambda p: p.created_at, reverse=True)
    return sorted(by_date, key=lambda p: not p.is_read_first)


class SupabaseClient:
    """Thin PostgREST client authenticated with the service role key."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None,
                 timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None):
        self.url = (url or os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "").rstrip("/")
        self.key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")
        self.timeout = timeout
        self._transport = transport

        if not self.is_configured():
            logger.warning("Supabase not configured. Public pages will serve mock posts.")

    def is_configured(self) -> bool:
        return bool(self.url and self.key)

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.key or "",
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(self, method: str, table: str, params: Optional[Dict[str, str]] = None,
                 json: Any = None, prefer: Optional[str] = None) -> Any:
        """
        Send one PostgREST request.

        Raises:
            DatabaseError: On a PostgREST error response
            httpx.TransportError: On connection problems (callers decide on fallback)
        """
        if not self.is_configured():
            raise DatabaseError("Supabase is not configured", "CONFIG")

        endpoint = f"{self.url}/rest/v1/{table}"
        with httpx.Client(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
            response = client.request(method, endpoint, params=params, json=json,
                                      headers=self._headers(prefer))

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("message") or response.text or response.reason_phrase
            code = body.get("code") or str(response.status_code)
            raise DatabaseError(message, code)

        if not response.content:
            return None
        return response.json()

    def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        return self._request("GET", table, params={"select": "*", **params}) or []

    def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._request("POST", table, json=row, prefer="return=representation")
        if not rows:
            raise DatabaseError(f"Insert into {table} returned no rows", "EMPTY")
        return rows[0]

    def _update(self, table: str, record_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self._request("PATCH", table, params={"id": f"eq.{record_id}"},
                             json=updates, prefer="return=representation")
        return rows[0] if rows else None

    def _safe_read(self, label: str, fn, default):
        """Run a read; query and transport errors are logged and yield the default."""
        try:
            return fn()
        except (DatabaseError, httpx.HTTPError, ValidationError) as e:
            logger.error(f"✗ Error fetching {label}: {e}")
            return default

    # ------------------------------------------------------------------ posts

    def get_posts(self, limit: Optional[int] = None) -> List[Post]:
        """Published posts, pinned read-first posts first; limit applies after sorting."""
        if not self.is_configured():
            logger.warning("Supabase not configured, returning mock data")
            posts = _mock_posts()
            return posts[:limit] if limit else posts

        try:
            rows = self._select("posts", {"published": "eq.true"})
            posts = _validate_rows(Post, rows, "post")
        except httpx.TransportError as e:
            logger.warning(f"⚠ Error connecting to Supabase, returning mock data: {e}")
            return _mock_posts()
        except (DatabaseError, ValidationError) as e:
            logger.error(f"✗ Error fetching posts: {e}")
            return []

        posts = sort_posts_for_listing(posts)
        return posts[:limit] if limit else posts

    def get_post_by_slug(self, slug: str) -> Optional[Post]:
        if not self.is_configured():
            return next((p for p in _mock_posts() if p.slug == slug), None)

        def query():
            rows = self._select("posts", {"slug": f"eq.{slug}", "published": "eq.true", "limit": "1"})
            return Post.model_validate(rows[0]) if rows else None

        return self._safe_read(f"post {slug}", query, None)

    def get_post_by_id(self, post_id: str) -> Optional[Post]:
        if not validate_record_id(post_id):
            logger.warning(f"Rejected invalid post id: {post_id!r}")
            return None

        def query():
            rows = self._select("posts", {"id": f"eq.{post_id}", "limit": "1"})
            return Post.model_validate(rows[0]) if rows else None

        return self._safe_read(f"post {post_id}", query, None)

    def list_all_posts(self) -> List[Post]:
        """Every post including drafts, newest first."""
        def query():
            rows = self._select("posts", {"order": "created_at.desc"})
            return _validate_rows(Post, rows, "post")

        return self._safe_read("all posts", query, [])

    def get_recent_post_titles(self, count: int = 30) -> List[str]:
        if not self.is_configured():
            return [p.title for p in _mock_posts()][:count]

        def query():
            rows = self._request("GET", "posts", params={
                "select": "title", "order": "created_at.desc", "limit": str(count),
            }) or []
            return [r["title"] for r in rows]

        return self._safe_read("recent titles", query, [])

    def create_post(self, post: Dict[str, Any]) -> Post:
        row = self._insert("posts", post)
        logger.info(f"✓ Post saved with ID: {row.get('id')}")
        return Post.model_validate(row)

    def update_post(self, post_id: str, updates: Dict[str, Any]) -> Optional[Post]:
        if not validate_record_id(post_id):
            raise DatabaseError(f"Invalid post id: {post_id}", "INVALID_ID")
        row = self._update("posts", post_id, updates)
        return Post.model_validate(row) if row else None

    def delete_post(self, post_id: str) -> None:
        """Delete a post and its companion rows. Companion failures are logged only."""
        if not validate_record_id(post_id):
            raise DatabaseError(f"Invalid post id: {post_id}", "INVALID_ID")

        for table in ("weekly_emails", "linkedin_packs"):
            try:
                self._request("DELETE", table, params={"post_id": f"eq.{post_id}"})
            except (DatabaseError, httpx.HTTPError) as e:
                logger.warning(f"⚠ Error deleting from {table} (may not exist): {e}")

        self._request("DELETE", "posts", params={"id": f"eq.{post_id}"})
        logger.info(f"✓ Post {post_id} deleted")

    # ---------------------------------------------------------- weekly emails

    def create_weekly_email(self, email: Dict[str, Any]) -> WeeklyEmail:
        row = self._insert("weekly_emails", email)
        logger.info(f"✓ Email saved with ID: {row.get('id')}")
        return WeeklyEmail.model_validate(row)

    def get_weekly_email_by_post_id(self, post_id: str) -> Optional[WeeklyEmail]:
        if not validate_record_id(post_id):
            return None

        def query():
            rows = self._select("weekly_emails", {"post_id": f"eq.{post_id}", "limit": "1"})
            return WeeklyEmail.model_validate(rows[0]) if rows else None

        return self._safe_read(f"weekly email for post {post_id}", query, None)

    def list_weekly_email_post_ids(self) -> Set[str]:
        def query():
            rows = self._request("GET", "weekly_emails", params={"select": "post_id"}) or []
            return {str(r["post_id"]) for r in rows}

        return self._safe_read("weekly email post ids", query, set())

    def update_weekly_email_sent_status(self, email_id: str, sent_count: int) -> None:
        if not validate_record_id(email_id):
            raise DatabaseError(f"Invalid email id: {email_id}", "INVALID_ID")
        self._update("weekly_emails", email_id, {
            "sent": True,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "sent_count": sent_count,
        })

    # ------------------------------------------------------------ subscribers

    def add_subscriber(self, email: str, leadership_meeting_day: Optional[str] = None,
                       delivery_window: Optional[str] = None) -> Subscriber:
        """Insert or re-activate a subscriber keyed on the normalized email."""
        row = {
            "email": normalize_email(email),
            "unsubscribed": False,
        }
        if leadership_meeting_day:
            row["leadership_meeting_day"] = leadership_meeting_day
        if delivery_window:
            row["delivery_window"] = delivery_window

        rows = self._request(
            "POST", "subscribers",
            params={"on_conflict": "email"},
            json=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise DatabaseError("Subscriber upsert returned no rows", "EMPTY")
        return Subscriber.model_validate(rows[0])

    def get_subscriber_by_email(self, email: str) -> Optional[Subscriber]:
        def query():
            rows = self._select("subscribers", {"email": f"eq.{normalize_email(email)}", "limit": "1"})
            return Subscriber.model_validate(rows[0]) if rows else None

        return self._safe_read("subscriber", query, None)

    def get_active_subscribers(self) -> List[Subscriber]:
        def query():
            rows = self._select("subscribers", {"unsubscribed": "eq.false", "order": "created_at.desc"})
            return _validate_rows(Subscriber, rows, "subscriber")

        return self._safe_read("active subscribers", query, [])

    def list_subscribers(self) -> List[Subscriber]:
        def query():
            rows = self._select("subscribers", {"order": "created_at.desc"})
            return _validate_rows(Subscriber, rows, "subscriber")

        return self._safe_read("subscribers", query, [])

    def delete_subscriber(self, subscriber_id: str) -> None:
        if not validate_record_id(subscriber_id):
            raise DatabaseError(f"Invalid subscriber id: {subscriber_id}", "INVALID_ID")
        self._request("DELETE", "subscribers", params={"id": f"eq.{subscriber_id}"})

    # --------------------------------------------------------- linkedin packs

    def create_linkedin_pack(self, pack: Dict[str, Any]) -> LinkedInPack:
        row = self._insert("linkedin_packs", pack)
        logger.info(f"✓ LinkedIn pack saved with ID: {row.get('id')}")
        return LinkedInPack.model_validate(row)

    def get_linkedin_pack(self, pack_id: str) -> Optional[LinkedInPack]:
        if not validate_record_id(pack_id):
            return None

        def query():
            rows = self._select("linkedin_packs", {"id": f"eq.{pack_id}", "limit": "1"})
            return LinkedInPack.model_validate(rows[0]) if rows else None

        return self._safe_read(f"LinkedIn pack {pack_id}", query, None)

    def get_linkedin_pack_by_post_id(self, post_id: str) -> Optional[LinkedInPack]:
        if not validate_record_id(post_id):
            return None

        def query():
            rows = self._select("linkedin_packs", {"post_id": f"eq.{post_id}", "limit": "1"})
            return LinkedInPack.model_validate(rows[0]) if rows else None

        return self._safe_read(f"LinkedIn pack for post {post_id}", query, None)

    def list_linkedin_packs(self) -> List[LinkedInPack]:
        def query():
            rows = self._select("linkedin_packs", {"order": "created_at.desc"})
            return _validate_rows(LinkedInPack, rows, "LinkedIn pack")

        return self._safe_read("LinkedIn packs", query, [])

    def update_linkedin_pack(self, pack_id: str, updates: Dict[str, Any]) -> Optional[LinkedInPack]:
        """Apply updates; moving to 'posted' stamps posted_at."""
        if not validate_record_id(pack_id):
            raise DatabaseError(f"Invalid LinkedIn pack id: {pack_id}", "INVALID_ID")

        updates = dict(updates)
        if updates.get("status") == "posted":
            updates["posted_at"] = datetime.now(timezone.utc).isoformat()

        row = self._update("linkedin_packs", pack_id, updates)
        return LinkedInPack.model_validate(row) if row else None
