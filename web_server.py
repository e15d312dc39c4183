#!/usr/bin/env python3
"""
FastAPI server for Build Better Daily: public pages, cron endpoints, admin API.
"""

import os
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode

import httpx
from fastapi import FastAPI, Request, HTTPException, Depends, Header, Query, status
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv

from models import (
    SubscribeRequest, LeadershipTool, Book,
    CONTENT_PILLARS, ARTICLE_ARCHETYPES, LINKEDIN_PACK_STATUSES,
)
from services.database import SupabaseClient, DatabaseError
from services.publisher import WeeklyPublisher, PublishError
from services.content_generator import ContentGenerator, ContentGenerationError
from services.ai_client import AIClientError
from services.cache_manager import page_cache
from services.renderer import render_template
from services.utils import is_valid_email, slugify, is_valid_slug

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Build Better Daily", version="1.0.0")

LINKEDIN_PACK_FIELDS = {"primary_post", "short_version", "comment_starters", "reply_angles", "article_link"}
POST_FIELDS = {
    "title", "slug", "content", "excerpt", "pillar", "archetype", "leadership_tool",
    "books", "infographic_url", "published", "is_read_first",
}


def get_db() -> SupabaseClient:
    return SupabaseClient()


def get_publisher(db: SupabaseClient = Depends(get_db)) -> WeeklyPublisher:
    return WeeklyPublisher(db)


def get_generator() -> ContentGenerator:
    return ContentGenerator()


def _error(message: str, status_code: int, details: Optional[str] = None, **extra) -> JSONResponse:
    content: Dict[str, Any] = {"error": message}
    if details is not None:
        content["details"] = details
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


async def _read_payload(request: Request) -> Dict[str, Any]:
    """Read a JSON or form-encoded body; an empty or malformed body yields {}."""
    body = await request.body()
    if not body:
        return {}

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded"):
        return dict(parse_qsl(body.decode("utf-8", errors="replace")))

    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Request body is not valid JSON")
        return {}
    return payload if isinstance(payload, dict) else {}


def _clean_post_fields(row: Dict[str, Any]) -> Optional[str]:
    """Normalize admin post fields in place. Returns an error message for invalid input."""
    for field, allowed in (("pillar", CONTENT_PILLARS), ("archetype", ARTICLE_ARCHETYPES)):
        if field not in row:
            continue
        if not row[field]:
            row[field] = None
        elif row[field] not in allowed:
            return f"Invalid {field}. Must be one of: {', '.join(allowed)}"

    if "leadership_tool" in row:
        if not row["leadership_tool"]:
            row["leadership_tool"] = None
        else:
            try:
                row["leadership_tool"] = LeadershipTool.model_validate(row["leadership_tool"]).model_dump()
            except ValidationError:
                return "Invalid leadership_tool. Expected question, prompt and action"

    if "books" in row:
        books = row["books"] or []
        if not isinstance(books, list):
            return "Invalid books. Expected a list"
        try:
            row["books"] = [Book.model_validate(book).model_dump() for book in books]
        except ValidationError:
            return "Invalid books. Each book needs title, author and asin"

    for flag in ("published", "is_read_first"):
        if flag in row and not isinstance(row[flag], bool):
            return f"Invalid {flag}. Expected true or false"

    if "slug" in row and not row["slug"]:
        if row.get("title"):
            row["slug"] = slugify(row["title"])
        else:
            del row["slug"]
    return None


def _database_failure(action: str, e: Exception) -> JSONResponse:
    """Map an invalid record id to 400; anything else is a server error."""
    if isinstance(e, DatabaseError) and e.code == "INVALID_ID":
        return _error("Invalid id", 400, details=str(e))
    return _error(f"Failed to {action}", 500, details=str(e))


def _extract_token(authorization: Optional[str], secret: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:]
    return secret


async def verify_cron_auth(authorization: Optional[str] = Header(None),
                           secret: Optional[str] = Query(None)) -> None:
    """Verify the cron secret. Access is open when CRON_SECRET is unset."""
    cron_secret = os.getenv("CRON_SECRET")
    if not cron_secret:
        logger.warning("⚠ CRON_SECRET not configured, allowing unauthenticated cron request")
        return

    token = _extract_token(authorization, secret)
    if not token or not hmac.compare_digest(token.encode(), cron_secret.encode()):
        logger.warning("Invalid cron secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def verify_admin_auth(authorization: Optional[str] = Header(None),
                            secret: Optional[str] = Query(None)) -> None:
    """Verify the admin token from a Bearer header or ?secret=."""
    expected_token = os.getenv("ADMIN_API_TOKEN")
    if not expected_token:
        logger.error("Admin endpoint accessed but ADMIN_API_TOKEN not configured - server misconfiguration")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server authentication not properly configured"
        )

    token = _extract_token(authorization, secret)
    if not token:
        logger.warning("Admin endpoint accessed without credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization",
            headers={"WWW-Authenticate": "Bearer"}
        )

    # Use constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(token.encode(), expected_token.encode()):
        logger.warning("Invalid admin API token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization token",
            headers={"WWW-Authenticate": "Bearer"}
        )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """HTML 404 page for browsers, JSON for the API."""
    if exc.status_code == 404 and not request.url.path.startswith("/api/"):
        return HTMLResponse(render_template("not_found.html"), status_code=404)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail},
                        headers=getattr(exc, "headers", None))


# ============================================================================
# Public pages
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/", response_class=HTMLResponse)
async def home(db: SupabaseClient = Depends(get_db)):
    cached = page_cache.get("/")
    if cached is not None:
        return HTMLResponse(cached)

    posts = await run_in_threadpool(db.get_posts)
    html = render_template("home.html", posts=posts)
    page_cache.set("/", html)
    return HTMLResponse(html)


@app.get("/post/{slug}", response_class=HTMLResponse)
async def post_page(slug: str, db: SupabaseClient = Depends(get_db)):
    if not is_valid_slug(slug):
        raise HTTPException(status_code=404, detail="Post not found")

    path = f"/post/{slug}"
    cached = page_cache.get(path)
    if cached is not None:
        return HTMLResponse(cached)

    post = await run_in_threadpool(db.get_post_by_slug, slug)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")

    html = render_template("post.html", post=post)
    page_cache.set(path, html)
    return HTMLResponse(html)


@app.post("/post/{slug}/email", response_class=HTMLResponse)
async def post_email_page(slug: str, request: Request, db: SupabaseClient = Depends(get_db),
                          publisher: WeeklyPublisher = Depends(get_publisher)):
    """Show a post's weekly email to a subscriber who submitted the form on the article."""
    post = await run_in_threadpool(db.get_post_by_slug, slug) if is_valid_slug(slug) else None
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")

    payload = await _read_payload(request)
    try:
        result = await run_in_threadpool(publisher.get_email_content, payload.get("email"), post.id)
    except PublishError as e:
        return HTMLResponse(render_template("email_content.html", post=post, email=None, error=e.message),
                            status_code=e.status_code)
    except (DatabaseError, httpx.HTTPError) as e:
        logger.error(f"✗ Error fetching email content: {e}")
        return HTMLResponse(render_template("email_content.html", post=post, email=None,
                                            error="Failed to fetch email content"),
                            status_code=500)

    return HTMLResponse(render_template("email_content.html", post=post, email=result["email"], error=None))


# ============================================================================
# Cron endpoints
# ============================================================================

async def _generate_post(theme: Optional[str], db: SupabaseClient):
    logger.info("=" * 60)
    logger.info("WEEKLY LEADERSHIP ARTICLE GENERATION")
    logger.info("=" * 60)
    try:
        publisher = WeeklyPublisher(db)
        return await run_in_threadpool(publisher.generate_weekly_content, theme)
    except Exception as e:
        logger.error(f"✗ Error generating weekly content: {e}")
        return _error(
            "Failed to generate weekly leadership content",
            500,
            details=str(e),
            env_check={
                "has_anthropic_key": bool(os.getenv("ANTHROPIC_API_KEY")),
                "has_supabase_url": bool(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")),
                "has_service_key": bool(os.getenv("SUPABASE_SERVICE_ROLE_KEY")),
            },
        )


@app.get("/api/generate-post")
async def generate_post_get(theme: Optional[str] = None, db: SupabaseClient = Depends(get_db),
                            _: None = Depends(verify_cron_auth)):
    """Cron trigger: generate, publish and email-draft this week's article."""
    return await _generate_post(theme, db)


@app.post("/api/generate-post")
async def generate_post_post(theme: Optional[str] = None, db: SupabaseClient = Depends(get_db),
                             _: None = Depends(verify_cron_auth)):
    return await _generate_post(theme, db)


async def _send_weekly_emails(post_id: Optional[str], publisher: WeeklyPublisher):
    if not post_id:
        return _error("Missing post_id parameter", 400)

    try:
        return await run_in_threadpool(publisher.send_weekly_emails, post_id)
    except PublishError as e:
        return _error(e.message, e.status_code, **e.extra)
    except (DatabaseError, httpx.HTTPError) as e:
        logger.error(f"✗ Error sending weekly emails: {e}")
        return _error("Failed to send weekly emails", 500, details=str(e))


@app.get("/api/send-weekly-emails")
async def send_weekly_emails_get(post_id: Optional[str] = None,
                                 publisher: WeeklyPublisher = Depends(get_publisher),
                                 _: None = Depends(verify_cron_auth)):
    return await _send_weekly_emails(post_id, publisher)


@app.post("/api/send-weekly-emails")
async def send_weekly_emails_post(post_id: Optional[str] = None,
                                  publisher: WeeklyPublisher = Depends(get_publisher),
                                  _: None = Depends(verify_cron_auth)):
    """Send a post's weekly email to all active subscribers."""
    return await _send_weekly_emails(post_id, publisher)


# ============================================================================
# Public API
# ============================================================================

@app.post("/api/subscribe")
async def subscribe(request: Request, db: SupabaseClient = Depends(get_db)):
    """Subscribe an email. Persistence failures are logged; the reader still sees success."""
    payload = await _read_payload(request)
    email = payload.get("email")
    if not isinstance(email, str) or not is_valid_email(email):
        return _error("Invalid email address", 400)

    try:
        subscription = SubscribeRequest.model_validate(payload)
    except ValidationError as e:
        return _error(e.errors()[0]["msg"], 400)

    try:
        await run_in_threadpool(
            db.add_subscriber,
            subscription.email,
            subscription.leadership_meeting_day,
            subscription.delivery_window,
        )
        logger.info("✓ Subscriber saved")
    except (DatabaseError, httpx.HTTPError, ValidationError) as e:
        logger.warning(f"⚠ Failed to save subscriber: {e}")

    return {"success": True}


@app.post("/api/get-email-content")
async def get_email_content(request: Request, publisher: WeeklyPublisher = Depends(get_publisher)):
    """Return the weekly email for a post to a verified subscriber."""
    payload = await _read_payload(request)
    try:
        return await run_in_threadpool(
            publisher.get_email_content, payload.get("email"), payload.get("postId")
        )
    except PublishError as e:
        return _error(e.message, e.status_code)
    except (DatabaseError, httpx.HTTPError) as e:
        logger.error(f"✗ Error fetching email content: {e}")
        return _error("Failed to fetch email content", 500, details=str(e))


# ============================================================================
# Admin API
# ============================================================================

@app.post("/api/generate-email")
async def generate_email(request: Request, publisher: WeeklyPublisher = Depends(get_publisher),
                         _: None = Depends(verify_admin_auth)):
    """Generate the weekly email for an existing post."""
    payload = await _read_payload(request)
    post_id = payload.get("post_id")
    if not post_id:
        return _error("Missing post_id", 400)

    try:
        return await run_in_threadpool(publisher.generate_email_for_post, str(post_id))
    except PublishError as e:
        return _error(e.message, e.status_code)
    except (ContentGenerationError, AIClientError, DatabaseError) as e:
        logger.error(f"✗ Error generating email: {e}")
        return _error("Failed to generate email", 500, details=str(e))


@app.post("/api/generate-social")
async def generate_social(request: Request, generator: ContentGenerator = Depends(get_generator),
                          _: None = Depends(verify_admin_auth)):
    """Repurpose an article into LinkedIn and X/Twitter copy."""
    payload = await _read_payload(request)
    title = payload.get("title")
    content = payload.get("content")
    if not title or not content:
        return _error("Missing title or content", 400)

    try:
        posts = await run_in_threadpool(generator.generate_social_posts, title, content)
    except (ContentGenerationError, AIClientError) as e:
        logger.error(f"✗ Error generating social content: {e}")
        return _error("Failed to generate content", 500)
    return posts.model_dump()


@app.get("/api/linkedin-pack")
async def get_linkedin_pack(postId: Optional[str] = None, db: SupabaseClient = Depends(get_db),
                            _: None = Depends(verify_admin_auth)):
    if not postId:
        return _error("Post ID is required", 400)

    pack = await run_in_threadpool(db.get_linkedin_pack_by_post_id, postId)
    if pack is None:
        return _error("LinkedIn Pack not found", 404)
    return JSONResponse(content=pack.model_dump(mode="json"))


@app.patch("/api/linkedin-pack")
async def update_linkedin_pack(request: Request, db: SupabaseClient = Depends(get_db),
                               _: None = Depends(verify_admin_auth)):
    """Edit pack content or move it through draft -> edited -> posted."""
    payload = await _read_payload(request)
    pack_id = payload.pop("id", None)
    if not pack_id:
        return _error("LinkedIn Pack ID is required", 400)

    new_status = payload.get("status")
    if new_status and new_status not in LINKEDIN_PACK_STATUSES:
        return _error("Invalid status. Must be: draft, edited, or posted", 400)

    updates = {k: v for k, v in payload.items() if k in LINKEDIN_PACK_FIELDS}
    if new_status:
        updates["status"] = new_status

    try:
        current = await run_in_threadpool(db.get_linkedin_pack, str(pack_id))
        if current is None:
            return _error("LinkedIn Pack not found", 404)

        # Content edits on a draft mark it edited
        content_changed = any(getattr(current, k) != v for k, v in updates.items() if k in LINKEDIN_PACK_FIELDS)
        if content_changed and not new_status and current.status == "draft":
            updates["status"] = "edited"

        pack = await run_in_threadpool(db.update_linkedin_pack, str(pack_id), updates)
    except (DatabaseError, httpx.HTTPError, ValidationError) as e:
        logger.error(f"✗ Error updating LinkedIn pack {pack_id}: {e}")
        return _error("Failed to update LinkedIn Pack", 500, details=str(e))

    if pack is None:
        return _error("LinkedIn Pack not found", 404)
    return {"success": True, "pack": pack.model_dump(mode="json")}


@app.post("/api/revalidate")
async def revalidate(path: Optional[str] = None, _: None = Depends(verify_admin_auth)):
    """Purge a cached page."""
    if not path:
        return _error("Path parameter is required", 400)

    page_cache.purge_paths([path])
    return {"success": True, "message": f"Revalidated path: {path}"}


@app.delete("/api/delete-post")
async def delete_post(request: Request, db: SupabaseClient = Depends(get_db),
                      _: None = Depends(verify_admin_auth)):
    """Delete a post with its weekly email and LinkedIn pack."""
    payload = await _read_payload(request)
    post_id = payload.get("postId")
    if not post_id:
        return _error("Post ID is required", 400)

    post = await run_in_threadpool(db.get_post_by_id, str(post_id))
    try:
        await run_in_threadpool(db.delete_post, str(post_id))
    except (DatabaseError, httpx.HTTPError) as e:
        logger.error(f"✗ Error deleting post {post_id}: {e}")
        return _database_failure("delete post", e)

    if post is not None:
        page_cache.purge_post(post.slug)
    else:
        page_cache.purge_paths(["/"])
    return {"success": True, "message": "Post deleted successfully"}


@app.get("/api/admin/posts")
async def admin_list_posts(db: SupabaseClient = Depends(get_db), _: None = Depends(verify_admin_auth)):
    posts = await run_in_threadpool(db.list_all_posts)
    return {"posts": [p.model_dump(mode="json") for p in posts]}


@app.post("/api/admin/posts")
async def admin_create_post(request: Request, db: SupabaseClient = Depends(get_db),
                            _: None = Depends(verify_admin_auth)):
    """Create a post by hand. The slug is derived from the title when omitted."""
    payload = await _read_payload(request)
    row = {k: v for k, v in payload.items() if k in POST_FIELDS}
    if row.get("title") and not row.get("slug"):
        row["slug"] = slugify(row["title"])

    problem = _clean_post_fields(row)
    if problem:
        return _error(problem, 400)
    if not row.get("title") or not row.get("slug") or not row.get("content"):
        return _error("Please fill in title, slug, and content", 400)
    if not is_valid_slug(row["slug"]):
        return _error("Invalid slug", 400)

    try:
        post = await run_in_threadpool(db.create_post, row)
    except (DatabaseError, httpx.HTTPError, ValidationError) as e:
        logger.error(f"✗ Error creating post: {e}")
        return _error("Failed to create post", 500, details=str(e))

    page_cache.purge_post(post.slug)
    return JSONResponse(status_code=201, content={"success": True, "post": post.model_dump(mode="json")})


@app.patch("/api/admin/posts/{post_id}")
async def admin_update_post(post_id: str, request: Request, db: SupabaseClient = Depends(get_db),
                            _: None = Depends(verify_admin_auth)):
    payload = await _read_payload(request)
    updates = {k: v for k, v in payload.items() if k in POST_FIELDS}
    if not updates:
        return _error("No updatable fields provided", 400)
    problem = _clean_post_fields(updates)
    if problem:
        return _error(problem, 400)
    if not updates:
        return _error("No updatable fields provided", 400)
    if "slug" in updates and not is_valid_slug(updates["slug"]):
        return _error("Invalid slug", 400)

    try:
        previous = await run_in_threadpool(db.get_post_by_id, post_id)
        post = await run_in_threadpool(db.update_post, post_id, updates)
    except (DatabaseError, httpx.HTTPError, ValidationError) as e:
        logger.error(f"✗ Error updating post {post_id}: {e}")
        return _database_failure("update post", e)

    if post is None:
        return _error("Post not found", 404)

    page_cache.purge_post(post.slug)
    if previous is not None and previous.slug != post.slug:
        page_cache.purge_paths([f"/post/{previous.slug}"])
    return {"success": True, "post": post.model_dump(mode="json")}


@app.get("/api/admin/subscribers")
async def admin_list_subscribers(db: SupabaseClient = Depends(get_db), _: None = Depends(verify_admin_auth)):
    subscribers = await run_in_threadpool(db.list_subscribers)
    return {"subscribers": [s.model_dump(mode="json") for s in subscribers]}


@app.delete("/api/admin/subscribers/{subscriber_id}")
async def admin_delete_subscriber(subscriber_id: str, db: SupabaseClient = Depends(get_db),
                                  _: None = Depends(verify_admin_auth)):
    try:
        await run_in_threadpool(db.delete_subscriber, subscriber_id)
    except (DatabaseError, httpx.HTTPError) as e:
        logger.error(f"✗ Error deleting subscriber {subscriber_id}: {e}")
        return _database_failure("delete subscriber", e)
    return {"success": True}


# ============================================================================
# Admin pages
# ============================================================================

def _auth_query(secret: Optional[str]) -> str:
    return "?" + urlencode({"secret": secret}) if secret else ""


@app.get("/admin/dashboard", response_class=HTMLResponse)
async def admin_dashboard(secret: Optional[str] = None, db: SupabaseClient = Depends(get_db),
                          _: None = Depends(verify_admin_auth)):
    posts = await run_in_threadpool(db.list_all_posts)
    email_post_ids = await run_in_threadpool(db.list_weekly_email_post_ids)
    return render_template("admin_dashboard.html", posts=posts, email_post_ids=email_post_ids,
                           auth_query=_auth_query(secret))


@app.get("/admin/posts/new", response_class=HTMLResponse)
async def admin_new_post(secret: Optional[str] = None, _: None = Depends(verify_admin_auth)):
    return render_template("admin_post_editor.html", post=None, pillars=CONTENT_PILLARS,
                           archetypes=ARTICLE_ARCHETYPES, auth_query=_auth_query(secret))


@app.get("/admin/posts/{post_id}", response_class=HTMLResponse)
async def admin_edit_post(post_id: str, secret: Optional[str] = None, db: SupabaseClient = Depends(get_db),
                          _: None = Depends(verify_admin_auth)):
    post = await run_in_threadpool(db.get_post_by_id, post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return render_template("admin_post_editor.html", post=post, pillars=CONTENT_PILLARS,
                           archetypes=ARTICLE_ARCHETYPES, auth_query=_auth_query(secret))


@app.get("/admin/subscribers", response_class=HTMLResponse)
async def admin_subscribers(secret: Optional[str] = None, db: SupabaseClient = Depends(get_db),
                            _: None = Depends(verify_admin_auth)):
    subscribers = await run_in_threadpool(db.list_subscribers)
    return render_template("admin_subscribers.html", subscribers=subscribers,
                           auth_query=_auth_query(secret))


@app.get("/admin/social", response_class=HTMLResponse)
async def admin_social(secret: Optional[str] = None, db: SupabaseClient = Depends(get_db),
                       _: None = Depends(verify_admin_auth)):
    posts = await run_in_threadpool(db.list_all_posts)
    packs = await run_in_threadpool(db.list_linkedin_packs)
    packs_by_post = {p.post_id: p for p in packs}
    items = [{"post": post, "pack": packs_by_post.get(post.id)} for post in posts]
    return render_template("admin_social.html", items=items, auth_query=_auth_query(secret))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
