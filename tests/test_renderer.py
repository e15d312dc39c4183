"""
Tests for template rendering helpers.
"""

from datetime import datetime

from markupsafe import Markup

from models import Post, LeadershipTool
from services.renderer import render_template, markdown_to_html, format_date, paragraphs


class TestFilters:
    """Test Jinja filters."""

    def test_markdown_returns_markup(self):
        html = markdown_to_html("## Heading\n\nSome **bold** text.")
        assert isinstance(html, Markup)
        assert "<h2>Heading</h2>" in html
        assert "<strong>bold</strong>" in html

    def test_markdown_handles_none(self):
        assert markdown_to_html(None) == ""

    def test_format_date(self):
        assert format_date(datetime(2025, 1, 6)) == "January 06, 2025"
        assert format_date(None) == ""
        assert format_date("2025-01-06") == "2025-01-06"

    def test_paragraphs(self):
        assert paragraphs("One.\n\n  \n\nTwo.\n") == ["One.", "Two."]
        assert paragraphs(None) == []


class TestTemplates:
    """Test page templates."""

    def test_post_page_escapes_tool_text(self):
        post = Post(
            id="1",
            title="Cash <Flow>",
            slug="cash-flow",
            content="Body",
            published=True,
            leadership_tool=LeadershipTool(question="Who owns <this>?", prompt="P", action="A"),
        )

        html = render_template("post.html", post=post)

        assert "Who owns &lt;this&gt;?" in html
        assert "Cash &lt;Flow&gt;" in html

    def test_home_empty(self):
        html = render_template("home.html", posts=[])
        assert "Build Better Daily" in html
