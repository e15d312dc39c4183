#!/usr/bin/env python3
"""
Main CLI entrypoint for Build Better Daily.
"""

import json
import logging
import os

import click
from dotenv import load_dotenv

from models import PipelineConfig
from services.ai_client import AIClientError
from services.agents.pipeline import ArticlePipeline, PipelineError, format_pipeline_failure
from services.content_generator import ContentGenerationError
from services.database import SupabaseClient, DatabaseError
from services.publisher import WeeklyPublisher, PublishError, RECENT_TITLES_COUNT

# Load environment variables
load_dotenv()

logging.basicConfig(level=logging.INFO)

GENERATION_ERRORS = (PipelineError, ContentGenerationError, AIClientError, DatabaseError)


@click.group()
def cli():
    """Build Better Daily - weekly leadership articles, emails and LinkedIn packs."""
    pass


@cli.command(name="generate-post")
@click.option('--theme', default=None, help='Optional theme to steer the insight')
def generate_post(theme):
    """Generate, save and publish this week's article with its email."""
    click.echo("Generating weekly leadership article...")

    publisher = WeeklyPublisher()
    try:
        result = publisher.generate_weekly_content(theme)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    except GENERATION_ERRORS as e:
        raise click.ClickException(str(e)) from e

    post = result["post"]
    click.echo(f"✅ Published: {post['title']}")
    click.echo(f"   Slug: {post['slug']}")
    click.echo(f"   Pillar: {post['pillar']}")
    click.echo(f"   Archetype: {post['archetype']}")
    if result.get("email"):
        click.echo(f"📧 Email: {result['email']['subject']}")


@cli.command(name="generate-email")
@click.argument('post_id')
def generate_email(post_id):
    """Generate the weekly email for an existing post."""
    publisher = WeeklyPublisher()
    try:
        result = publisher.generate_email_for_post(post_id)
    except PublishError as e:
        raise click.ClickException(f"{e.message} ({e.status_code})") from e
    except GENERATION_ERRORS as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"✅ Email generated: {result['email']['subject']}")


@cli.command(name="send-emails")
@click.argument('post_id')
def send_emails(post_id):
    """Send a post's weekly email to every active subscriber."""
    publisher = WeeklyPublisher()
    try:
        result = publisher.send_weekly_emails(post_id)
    except PublishError as e:
        raise click.ClickException(f"{e.message} ({e.status_code})") from e
    except DatabaseError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"✅ Sent: {result['sent']}")
    click.echo(f"❌ Failed: {result['failed']}")
    click.echo(f"📊 Total: {result['total']}")
    for failure in result.get("failures", []):
        click.echo(f"   {failure['email']}: {failure['error']}")


@cli.command(name="list-posts")
def list_posts():
    """List every post, drafts included."""
    db = SupabaseClient()
    posts = db.list_all_posts() if db.is_configured() else db.get_posts()

    if not posts:
        click.echo("No posts found")
        return

    for post in posts:
        state = "published" if post.published else "draft"
        pin = " [read first]" if post.is_read_first else ""
        click.echo(f"{post.id}  {post.created_at:%Y-%m-%d}  {state:<9}  {post.title}{pin}")


@cli.command()
@click.option('--theme', default=None, help='Optional theme to steer the insight')
@click.option('--retries', type=click.IntRange(min=1), default=None,
              help='Maximum pipeline attempts (default 2)')
@click.option('--dry-run', is_flag=True, help='Run the agents only; do not read or write the database')
def pipeline(theme, retries, dry_run):
    """Run the multi-agent pipeline and print the verdict."""
    existing_titles = []
    db = None
    if not dry_run:
        db = SupabaseClient()
        existing_titles = db.get_recent_post_titles(RECENT_TITLES_COUNT)

    overrides = {"max_pipeline_retries": retries} if retries else {}
    config = PipelineConfig(existing_titles=existing_titles, **overrides)

    try:
        result = ArticlePipeline(config=config).run(theme)
    except AIClientError as e:
        raise click.ClickException(str(e)) from e

    click.echo(json.dumps(result.summary(), indent=2))
    if result.metadata:
        click.echo(f"⏱  {result.metadata.total_duration_ms}ms over {result.metadata.attempts} attempt(s)")

    if not result.success:
        raise click.ClickException(format_pipeline_failure(result))

    if dry_run:
        click.echo("Dry run: article not saved")
        return

    article = result.article
    try:
        post = db.create_post({
            "title": article.title,
            "slug": article.slug,
            "content": article.content,
            "excerpt": article.excerpt,
            "pillar": article.pillar,
            "archetype": article.archetype,
            "leadership_tool": article.leadership_tool.model_dump(),
            "books": [b.model_dump() for b in article.books],
            "published": False,
        })
    except DatabaseError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"✅ Saved as draft: {post.id}")


@cli.command()
@click.option('--host', default='0.0.0.0', help='Bind address')
@click.option('--port', type=int, default=lambda: int(os.getenv('PORT', '8000')), help='Bind port')
def serve(host, port):
    """Run the web server."""
    import uvicorn
    click.echo(f"Starting server on {host}:{port}")
    uvicorn.run("web_server:app", host=host, port=port)


if __name__ == '__main__':
    cli()
