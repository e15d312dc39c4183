"""
Tests for the FastAPI web server.
"""

import os
from unittest.mock import patch, MagicMock

from fastapi.testclient import TestClient

from models import Post, LinkedInPack, Subscriber, LeadershipTool, SocialPosts
from services.cache_manager import page_cache
from services.database import SupabaseClient, DatabaseError
from services.publisher import WeeklyPublisher, PublishError
from services.content_generator import ContentGenerator, ContentGenerationError
from web_server import app, get_db, get_publisher, get_generator

POST_ID = "11111111-2222-3333-4444-555555555555"
ADMIN = {"Authorization": "Bearer admin-token"}


def make_post(**overrides):
    data = dict(
        id=POST_ID,
        title="Stop Bidding on Everything",
        slug="stop-bidding-everything",
        content="Niche work **pays**.",
        excerpt="The power of niche.",
        leadership_tool=LeadershipTool(
            question="Which bids did we chase just to stay busy?",
            prompt="List the last ten bids.",
            action="By Friday, the estimator drops one bid category.",
        ),
        books=[{"title": "Traction", "author": "Gino Wickman", "asin": "1936661837"}],
        published=True,
    )
    data.update(overrides)
    return Post(**data)


def make_pack(**overrides):
    data = dict(id="p1", post_id=POST_ID, primary_post="Primary", short_version="Short",
                comment_starters=["1", "2", "3"], reply_angles=["a", "b", "c"], status="draft")
    data.update(overrides)
    return LinkedInPack(**data)


class WebServerTestCase:
    """Shared setup: mocked database, publisher and generator; admin and cron secrets set."""

    def setup_method(self):
        self.env_patcher = patch.dict(os.environ, {
            "ADMIN_API_TOKEN": "admin-token",
            "CRON_SECRET": "cron-secret",
        })
        self.env_patcher.start()
        page_cache.purge_all()

        self.db = MagicMock(spec=SupabaseClient)
        self.publisher = MagicMock(spec=WeeklyPublisher)
        self.generator = MagicMock(spec=ContentGenerator)
        app.dependency_overrides[get_db] = lambda: self.db
        app.dependency_overrides[get_publisher] = lambda: self.publisher
        app.dependency_overrides[get_generator] = lambda: self.generator
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()
        page_cache.purge_all()
        self.env_patcher.stop()


class TestPublicPages(WebServerTestCase):
    """Test HTML pages and the page cache."""

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_home_lists_posts_and_caches(self):
        self.db.get_posts.return_value = [make_post()]

        first = self.client.get("/")
        second = self.client.get("/")

        assert first.status_code == 200
        assert "Stop Bidding on Everything" in first.text
        assert second.text == first.text
        self.db.get_posts.assert_called_once()

    def test_post_page(self):
        self.db.get_post_by_slug.return_value = make_post()

        response = self.client.get("/post/stop-bidding-everything")

        assert response.status_code == 200
        assert "<strong>pays</strong>" in response.text
        assert "Bring This to Your Leadership Meeting" in response.text
        assert "https://www.amazon.com/dp/1936661837" in response.text
        assert 'id="email-content-form"' in response.text

    def test_read_first_post_hides_email_form(self):
        self.db.get_post_by_slug.return_value = make_post(is_read_first=True)
        response = self.client.get("/post/stop-bidding-everything")
        assert 'id="email-content-form"' not in response.text

    def test_missing_post_renders_404_page(self):
        self.db.get_post_by_slug.return_value = None
        response = self.client.get("/post/nope")
        assert response.status_code == 404
        assert "That page doesn't exist." in response.text or "That page doesn&#39;t exist." in response.text

    def test_invalid_slug_skips_database(self):
        response = self.client.get("/post/Bad_Slug")
        assert response.status_code == 404
        self.db.get_post_by_slug.assert_not_called()

    def test_unknown_api_route_returns_json(self):
        response = self.client.get("/api/nope")
        assert response.status_code == 404
        assert "error" in response.json()

    def test_post_form_submits_to_email_page(self):
        self.db.get_post_by_slug.return_value = make_post()
        response = self.client.get("/post/stop-bidding-everything")
        assert 'action="/post/stop-bidding-everything/email"' in response.text


class TestEmailPage(WebServerTestCase):
    """Test the subscriber-facing email companion page."""

    def test_renders_email_for_subscriber(self):
        self.db.get_post_by_slug.return_value = make_post()
        self.publisher.get_email_content.return_value = {"success": True, "email": {
            "subject": "The bid you should have dropped",
            "body": "First paragraph.\n\nSecond paragraph.",
            "leadership_prompt": "",
            "watch_for": "Someone defending a pet customer.",
            "execution_nudge": "Pick the smallest category first.",
            "leadership_tool": make_post().leadership_tool.model_dump(),
            "article_url": "https://example.com/post/stop-bidding-everything",
        }}

        response = self.client.post("/post/stop-bidding-everything/email", data={"email": "a@b.co"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "<p>Second paragraph.</p>" in response.text
        assert "Which bids did we chase just to stay busy?" in response.text
        assert "If it stalls:" in response.text
        self.publisher.get_email_content.assert_called_once_with("a@b.co", POST_ID)

    def test_unknown_subscriber_sees_message(self):
        self.db.get_post_by_slug.return_value = make_post()
        self.publisher.get_email_content.side_effect = PublishError(
            "Email not found in subscribers list. Please subscribe first.", 404
        )

        response = self.client.post("/post/stop-bidding-everything/email", data={"email": "a@b.co"})

        assert response.status_code == 404
        assert response.headers["content-type"].startswith("text/html")
        assert "Please subscribe first." in response.text

    def test_missing_post(self):
        self.db.get_post_by_slug.return_value = None
        response = self.client.post("/post/nope/email", data={"email": "a@b.co"})
        assert response.status_code == 404
        self.publisher.get_email_content.assert_not_called()


class TestCronEndpoints(WebServerTestCase):
    """Test cron-protected endpoints."""

    def test_generate_post_requires_secret(self):
        response = self.client.get("/api/generate-post")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    @patch("web_server.WeeklyPublisher")
    def test_generate_post_with_query_secret(self, mock_publisher_cls):
        summary = {"success": True, "post": {"id": POST_ID}, "email": None}
        mock_publisher_cls.return_value.generate_weekly_content.return_value = summary

        response = self.client.get("/api/generate-post?secret=cron-secret&theme=pricing")

        assert response.status_code == 200
        assert response.json() == summary
        mock_publisher_cls.return_value.generate_weekly_content.assert_called_once_with("pricing")

    @patch("web_server.WeeklyPublisher")
    def test_generate_post_failure_reports_env(self, mock_publisher_cls):
        mock_publisher_cls.return_value.generate_weekly_content.side_effect = ContentGenerationError("nope")

        response = self.client.post("/api/generate-post", headers={"Authorization": "Bearer cron-secret"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to generate weekly leadership content"
        assert body["details"] == "nope"
        assert set(body["env_check"]) == {"has_anthropic_key", "has_supabase_url", "has_service_key"}

    @patch("web_server.WeeklyPublisher")
    def test_open_when_secret_unset(self, mock_publisher_cls):
        mock_publisher_cls.return_value.generate_weekly_content.return_value = {"success": True}
        with patch.dict(os.environ, {"CRON_SECRET": ""}):
            response = self.client.get("/api/generate-post")
        assert response.status_code == 200

    def test_send_emails_missing_post_id(self):
        response = self.client.post("/api/send-weekly-emails?secret=cron-secret")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing post_id parameter"}

    def test_send_emails_already_sent(self):
        self.publisher.send_weekly_emails.side_effect = PublishError(
            "Emails already sent for this post", 400, {"sent_count": 4}
        )

        response = self.client.post(f"/api/send-weekly-emails?secret=cron-secret&post_id={POST_ID}")

        assert response.status_code == 400
        assert response.json() == {"error": "Emails already sent for this post", "sent_count": 4}

    def test_send_emails_success(self):
        self.publisher.send_weekly_emails.return_value = {"success": True, "sent": 3, "failed": 0, "total": 3}
        response = self.client.post(f"/api/send-weekly-emails?post_id={POST_ID}",
                                    headers={"Authorization": "Bearer cron-secret"})
        assert response.json()["sent"] == 3


class TestPublicApi(WebServerTestCase):
    """Test the subscribe and email lookup endpoints."""

    def test_subscribe(self):
        response = self.client.post("/api/subscribe", json={
            "email": "owner@example.com", "leadership_meeting_day": "monday", "delivery_window": "morning",
        })
        assert response.status_code == 200
        assert response.json() == {"success": True}
        self.db.add_subscriber.assert_called_once_with("owner@example.com", "Monday", "morning")

    def test_subscribe_form_post(self):
        response = self.client.post("/api/subscribe", data={"email": "owner@example.com"})
        assert response.json() == {"success": True}

    def test_subscribe_invalid_email(self):
        response = self.client.post("/api/subscribe", json={"email": "not-an-email"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid email address"}
        self.db.add_subscriber.assert_not_called()

    def test_subscribe_invalid_day(self):
        response = self.client.post("/api/subscribe", json={"email": "a@b.co", "leadership_meeting_day": "Someday"})
        assert response.status_code == 400

    def test_subscribe_succeeds_when_database_fails(self):
        self.db.add_subscriber.side_effect = DatabaseError("relation does not exist", "42P01")
        response = self.client.post("/api/subscribe", json={"email": "owner@example.com"})
        assert response.status_code == 200
        assert response.json() == {"success": True}

    def test_get_email_content(self):
        self.publisher.get_email_content.return_value = {"success": True, "email": {"subject": "S"}}

        response = self.client.post("/api/get-email-content", json={"email": "a@b.co", "postId": POST_ID})

        assert response.json()["email"]["subject"] == "S"
        self.publisher.get_email_content.assert_called_once_with("a@b.co", POST_ID)

    def test_get_email_content_error(self):
        self.publisher.get_email_content.side_effect = PublishError(
            "Email not found in subscribers list. Please subscribe first.", 404
        )
        response = self.client.post("/api/get-email-content", json={"email": "a@b.co", "postId": POST_ID})
        assert response.status_code == 404

    def test_email_lookup_ignores_unknown_generation_mode(self):
        del app.dependency_overrides[get_publisher]
        self.db.get_subscriber_by_email.return_value = None

        with patch.dict(os.environ, {"GENERATION_MODE": "batch"}):
            response = self.client.post("/api/get-email-content", json={"email": "a@b.co", "postId": POST_ID})

        assert response.status_code == 404
        assert response.json() == {"error": "Email not found in subscribers list. Please subscribe first."}

    def test_form_body_with_invalid_utf8(self):
        form = {"Content-Type": "application/x-www-form-urlencoded"}

        response = self.client.post("/api/subscribe", content=b"email=%ff\xff", headers=form)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid email address"}

        response = self.client.post("/api/subscribe", content=b"email=owner%40example.com&note=\xff",
                                    headers=form)
        assert response.status_code == 200
        self.db.add_subscriber.assert_called_once_with("owner@example.com", None, None)


class TestAdminAuth(WebServerTestCase):
    """Test admin token handling."""

    def test_missing_token(self):
        response = self.client.get("/api/admin/posts")
        assert response.status_code == 401

    def test_wrong_token(self):
        response = self.client.get("/api/admin/posts", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401

    def test_query_secret(self):
        self.db.list_all_posts.return_value = []
        response = self.client.get("/api/admin/posts?secret=admin-token")
        assert response.status_code == 200
        assert response.json() == {"posts": []}

    def test_unconfigured_token_is_server_error(self):
        with patch.dict(os.environ, {"ADMIN_API_TOKEN": ""}):
            response = self.client.get("/api/admin/posts", headers=ADMIN)
        assert response.status_code == 500


class TestAdminApi(WebServerTestCase):
    """Test admin endpoints."""

    def test_generate_email_missing_id(self):
        response = self.client.post("/api/generate-email", json={}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing post_id"}

    def test_generate_email_error_status(self):
        self.publisher.generate_email_for_post.side_effect = PublishError("Post already has a weekly email", 400)
        response = self.client.post("/api/generate-email", json={"post_id": POST_ID}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json() == {"error": "Post already has a weekly email"}

    def test_generate_email_failure(self):
        self.publisher.generate_email_for_post.side_effect = ContentGenerationError("subject too long")
        response = self.client.post("/api/generate-email", json={"post_id": POST_ID}, headers=ADMIN)
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate email", "details": "subject too long"}

    def test_generate_social(self):
        self.generator.generate_social_posts.return_value = SocialPosts(linkedin="L", twitter="T")
        response = self.client.post("/api/generate-social", json={"title": "T", "content": "C"}, headers=ADMIN)
        assert response.json() == {"linkedin": "L", "twitter": "T"}

    def test_generate_social_missing_fields(self):
        response = self.client.post("/api/generate-social", json={"title": "T"}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing title or content"}

    def test_get_linkedin_pack(self):
        self.db.get_linkedin_pack_by_post_id.return_value = make_pack()
        response = self.client.get(f"/api/linkedin-pack?postId={POST_ID}", headers=ADMIN)
        assert response.json()["primary_post"] == "Primary"

    def test_get_linkedin_pack_errors(self):
        assert self.client.get("/api/linkedin-pack", headers=ADMIN).json() == {"error": "Post ID is required"}
        self.db.get_linkedin_pack_by_post_id.return_value = None
        response = self.client.get(f"/api/linkedin-pack?postId={POST_ID}", headers=ADMIN)
        assert response.status_code == 404
        assert response.json() == {"error": "LinkedIn Pack not found"}

    def test_patch_pack_content_marks_draft_edited(self):
        self.db.get_linkedin_pack.return_value = make_pack()
        self.db.update_linkedin_pack.return_value = make_pack(primary_post="Rewritten", status="edited")

        response = self.client.patch("/api/linkedin-pack", json={"id": "p1", "primary_post": "Rewritten",
                                                                  "created_at": "ignored"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["success"] is True
        self.db.update_linkedin_pack.assert_called_once_with("p1", {"primary_post": "Rewritten", "status": "edited"})

    def test_patch_pack_explicit_status(self):
        self.db.get_linkedin_pack.return_value = make_pack(status="edited")
        self.db.update_linkedin_pack.return_value = make_pack(status="posted")

        self.client.patch("/api/linkedin-pack", json={"id": "p1", "status": "posted"}, headers=ADMIN)

        self.db.update_linkedin_pack.assert_called_once_with("p1", {"status": "posted"})

    def test_patch_pack_validation(self):
        response = self.client.patch("/api/linkedin-pack", json={"primary_post": "x"}, headers=ADMIN)
        assert response.json() == {"error": "LinkedIn Pack ID is required"}

        response = self.client.patch("/api/linkedin-pack", json={"id": "p1", "status": "archived"}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid status. Must be: draft, edited, or posted"}

    def test_patch_pack_not_found(self):
        self.db.get_linkedin_pack.return_value = None
        response = self.client.patch("/api/linkedin-pack", json={"id": "p1", "status": "posted"}, headers=ADMIN)
        assert response.status_code == 404

    def test_revalidate(self):
        page_cache.set("/post/foo", "cached")

        response = self.client.post("/api/revalidate?path=/post/foo", headers=ADMIN)

        assert response.json() == {"success": True, "message": "Revalidated path: /post/foo"}
        assert page_cache.get("/post/foo") is None

    def test_revalidate_requires_path(self):
        response = self.client.post("/api/revalidate", headers=ADMIN)
        assert response.status_code == 400
        assert response.json() == {"error": "Path parameter is required"}

    def test_delete_post(self):
        self.db.get_post_by_id.return_value = make_post()
        page_cache.set("/post/stop-bidding-everything", "cached")

        response = self.client.request("DELETE", "/api/delete-post", json={"postId": POST_ID}, headers=ADMIN)

        assert response.json() == {"success": True, "message": "Post deleted successfully"}
        self.db.delete_post.assert_called_once_with(POST_ID)
        assert page_cache.get("/post/stop-bidding-everything") is None

    def test_delete_post_errors(self):
        response = self.client.request("DELETE", "/api/delete-post", json={}, headers=ADMIN)
        assert response.json() == {"error": "Post ID is required"}

        self.db.delete_post.side_effect = DatabaseError("boom", "500")
        response = self.client.request("DELETE", "/api/delete-post", json={"postId": POST_ID}, headers=ADMIN)
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to delete post"

    def test_create_post_derives_slug(self):
        self.db.create_post.return_value = make_post(slug="my-new-post", published=False)

        response = self.client.post("/api/admin/posts", json={"title": "My New Post", "content": "Body"},
                                    headers=ADMIN)

        assert response.status_code == 201
        row = self.db.create_post.call_args.args[0]
        assert row["slug"] == "my-new-post"

    def test_create_post_requires_content(self):
        response = self.client.post("/api/admin/posts", json={"title": "T"}, headers=ADMIN)
        assert response.status_code == 400

    def test_update_post(self):
        self.db.get_post_by_id.return_value = make_post()
        self.db.update_post.return_value = make_post(published=False)

        response = self.client.patch(f"/api/admin/posts/{POST_ID}", json={"published": False, "id": "x"},
                                     headers=ADMIN)

        assert response.status_code == 200
        self.db.update_post.assert_called_once_with(POST_ID, {"published": False})

    def test_update_missing_post(self):
        self.db.get_post_by_id.return_value = None
        self.db.update_post.return_value = None
        response = self.client.patch(f"/api/admin/posts/{POST_ID}", json={"title": "T"}, headers=ADMIN)
        assert response.status_code == 404

    def test_create_post_rejects_unknown_pillar(self):
        response = self.client.post("/api/admin/posts", json={
            "title": "My New Post", "content": "Body", "pillar": "Leadership",
        }, headers=ADMIN)

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid pillar. Must be one of:")
        self.db.create_post.assert_not_called()

    def test_update_post_rejects_unknown_archetype(self):
        response = self.client.patch(f"/api/admin/posts/{POST_ID}", json={"archetype": "Listicle"},
                                     headers=ADMIN)

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid archetype.")
        self.db.update_post.assert_not_called()

    def test_update_post_rejects_incomplete_tool_and_books(self):
        response = self.client.patch(f"/api/admin/posts/{POST_ID}",
                                     json={"leadership_tool": {"question": "Only a question"}}, headers=ADMIN)
        assert response.status_code == 400

        response = self.client.patch(f"/api/admin/posts/{POST_ID}", json={"books": [{"title": "Traction"}]},
                                     headers=ADMIN)
        assert response.status_code == 400
        self.db.update_post.assert_not_called()

    def test_editor_blanks_become_null(self):
        self.db.create_post.return_value = make_post(slug="my-new-post")

        response = self.client.post("/api/admin/posts", json={
            "title": "My New Post", "slug": "", "content": "Body", "pillar": "", "archetype": "Decision Framework",
            "leadership_tool": None, "books": [], "published": False,
        }, headers=ADMIN)

        assert response.status_code == 201
        row = self.db.create_post.call_args.args[0]
        assert row["slug"] == "my-new-post"
        assert row["pillar"] is None
        assert row["archetype"] == "Decision Framework"
        assert row["leadership_tool"] is None
        assert row["books"] == []

    def test_invalid_record_ids_are_client_errors(self):
        self.db.get_post_by_id.return_value = None
        self.db.update_post.side_effect = DatabaseError("Invalid post id: 1;drop", "INVALID_ID")
        response = self.client.patch("/api/admin/posts/1;drop", json={"published": True}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid id"

        self.db.delete_post.side_effect = DatabaseError("Invalid post id: 1;drop", "INVALID_ID")
        response = self.client.request("DELETE", "/api/delete-post", json={"postId": "1;drop"}, headers=ADMIN)
        assert response.status_code == 400

        self.db.delete_subscriber.side_effect = DatabaseError("Invalid subscriber id: x", "INVALID_ID")
        response = self.client.delete("/api/admin/subscribers/x", headers=ADMIN)
        assert response.status_code == 400

    def test_subscribers(self):
        self.db.list_subscribers.return_value = [Subscriber(id="1", email="a@b.co")]
        response = self.client.get("/api/admin/subscribers", headers=ADMIN)
        assert response.json()["subscribers"][0]["email"] == "a@b.co"

        response = self.client.delete("/api/admin/subscribers/1", headers=ADMIN)
        assert response.json() == {"success": True}
        self.db.delete_subscriber.assert_called_once_with("1")


class TestAdminPages(WebServerTestCase):
    """Test admin HTML pages."""

    def test_dashboard(self):
        self.db.list_all_posts.return_value = [make_post(), make_post(id="2", slug="draft", title="Draft",
                                                                      published=False)]
        self.db.list_weekly_email_post_ids.return_value = {POST_ID}

        response = self.client.get("/admin/dashboard?secret=admin-token")

        assert response.status_code == 200
        assert "2 total, 1 published" in response.text
        assert "/admin/subscribers?secret=admin-token" in response.text

    def test_subscribers_page(self):
        self.db.list_subscribers.return_value = [
            Subscriber(id="1", email="a@b.co", leadership_meeting_day="Monday"),
            Subscriber(id="2", email="c@d.co", unsubscribed=True),
        ]
        response = self.client.get("/admin/subscribers", headers=ADMIN)
        assert "2 total, 1 active" in response.text

    def test_social_page(self):
        self.db.list_all_posts.return_value = [make_post(), make_post(id="2", slug="other", title="Other")]
        self.db.list_linkedin_packs.return_value = [make_pack()]

        response = self.client.get("/admin/social", headers=ADMIN)

        assert "Primary" in response.text
        assert "No LinkedIn pack for this post." in response.text
        assert 'class="mark-posted"' in response.text

    def test_dashboard_actions(self):
        self.db.list_all_posts.return_value = [make_post()]
        self.db.list_weekly_email_post_ids.return_value = set()

        response = self.client.get("/admin/dashboard?secret=admin-token")

        assert 'id="generate-post"' in response.text
        assert 'class="delete-post"' in response.text
        assert 'class="generate-email"' in response.text
        assert f"/admin/posts/{POST_ID}?secret=admin-token" in response.text

    def test_new_post_editor(self):
        response = self.client.get("/admin/posts/new?secret=admin-token")

        assert response.status_code == 200
        assert "New post" in response.text
        assert '<option value="Decision Framework">' in response.text
        self.db.get_post_by_id.assert_not_called()

    def test_edit_post_editor(self):
        self.db.get_post_by_id.return_value = make_post(
            pillar="Leadership Reality in Small Companies", archetype="Decision Framework",
        )

        response = self.client.get(f"/admin/posts/{POST_ID}", headers=ADMIN)

        assert response.status_code == 200
        assert "Edit post" in response.text
        assert '<option value="Leadership Reality in Small Companies" selected>' in response.text
        assert "Traction | Gino Wickman | 1936661837" in response.text

    def test_edit_missing_post(self):
        self.db.get_post_by_id.return_value = None
        response = self.client.get(f"/admin/posts/{POST_ID}", headers=ADMIN)
        assert response.status_code == 404

    def test_pages_require_token(self):
        assert self.client.get("/admin/dashboard").status_code == 401
