"""
HTML rendering for public pages, admin pages, and the leadership email.
"""

import logging
from pathlib import Path
from typing import Any

import markdown as md_lib
from jinja2 import Environment, FileSystemLoader
from markupsafe import Markup

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

SITE_NAME = "Build Better Daily"


def markdown_to_html(text: str) -> Markup:
    """Render article markdown. Output is trusted HTML for templates."""
    html = md_lib.markdown(text or "", extensions=["extra", "sane_lists", "smarty"])
    return Markup(html)


def format_date(value: Any, fmt: str = "%B %d, %Y") -> str:
    if value is None:
        return ""
    try:
        return value.strftime(fmt)
    except (AttributeError, ValueError):
        return str(value)


def paragraphs(text: str) -> list:
    """Split plain text on blank lines for email bodies."""
    return [p.strip() for p in (text or "").split("\n\n") if p.strip()]


def _build_env() -> Environment:
    # Setup Jinja2 environment with autoescape for security
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["markdown"] = markdown_to_html
    env.filters["date"] = format_date
    env.filters["paragraphs"] = paragraphs
    env.globals["site_name"] = SITE_NAME
    return env


_env = _build_env()


def render_template(name: str, **context: Any) -> str:
    """Render a template from services/templates by file name."""
    return _env.get_template(name).render(**context)
