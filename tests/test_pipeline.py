"""
Tests for the four-stage article pipeline.
"""

import pytest
import json
from unittest.mock import Mock

from models import PipelineConfig, CONTENT_PILLARS, ARTICLE_ARCHETYPES, LEADERSHIP_SECTION_HEADING
from services.ai_client import AIClientError
from services.agents.pipeline import (
    ArticlePipeline,
    PipelineError,
    format_pipeline_failure,
    generate_article_with_pipeline,
    run_article_pipeline,
)

INSIGHT = {
    "insight": (
        "Owners who still estimate every job themselves are not protecting margin. "
        "They are hiding the fact that nobody else in the company is allowed to be wrong."
    ),
}

ARTICLE = {
    "sourceInsight": INSIGHT["insight"],
    "pillar": CONTENT_PILLARS[3],
    "archetype": ARTICLE_ARCHETYPES[0],
    "title": "You Are the Bottleneck in Every Bid",
    "slug": "you-are-the-bottleneck-in-every-bid",
    "excerpt": "If every number has to pass through you, the company has one estimator.",
    "content": f"The owner prices every job.\n\n{LEADERSHIP_SECTION_HEADING}\n\nThe Question...",
    "leadershipTool": {
        "question": "Which bid last month could only the owner defend?",
        "prompt": "Walk the last three bids and name who could have priced them without you.",
        "action": "By Friday, the ops manager hands one bid to the senior PM to price alone.",
    },
    "books": [
        {"title": "Traction", "author": "Gino Wickman", "asin": "1936661837"},
        {"title": "The Goal", "author": "Eliyahu Goldratt", "asin": "0884271951"},
    ],
}

PASS = {"status": "PASS", "confidence": 0.85, "polisherNotes": "Trim the opener"}
FAIL = {"status": "FAIL", "violations": [{"type": "TONE_GENERIC", "description": "Could be any industry"}]}

POLISHED = dict(ARTICLE, title="You Are the Bottleneck", polishChanges=["Shortened title"])


def client_with(*responses):
    client = Mock()
    client.generate.side_effect = [
        r if isinstance(r, Exception) else json.dumps(r) for r in responses
    ]
    return client


class TestArticlePipeline:
    """Test pipeline orchestration."""

    def test_happy_path(self):
        client = client_with(INSIGHT, ARTICLE, PASS, POLISHED)

        result = ArticlePipeline(client, PipelineConfig(existing_titles=["Old Title"])).run("bidding")

        assert result.success is True
        assert result.article.title == "You Are the Bottleneck"
        assert result.failure is None
        assert result.metadata.attempts == 1
        assert result.metadata.polisher_duration_ms is not None
        assert client.generate.call_count == 4

        insight_prompt = client.generate.call_args_list[0].kwargs["prompt"]
        assert "bidding" in insight_prompt
        assert "- Old Title" in insight_prompt
        polish_prompt = client.generate.call_args_list[3].kwargs["prompt"]
        assert "Trim the opener" in polish_prompt

    def test_retry_feeds_violations_back(self):
        client = client_with(INSIGHT, ARTICLE, FAIL, INSIGHT, ARTICLE, PASS, POLISHED)

        result = ArticlePipeline(client).run()

        assert result.success is True
        assert result.metadata.attempts == 2
        second_architect_prompt = client.generate.call_args_list[4].kwargs["prompt"]
        assert "PREVIOUS ATTEMPT WAS REJECTED" in second_architect_prompt
        assert "[TONE_GENERIC] Could be any industry" in second_architect_prompt

    def test_fails_after_exhausting_attempts(self):
        client = client_with(INSIGHT, ARTICLE, FAIL, INSIGHT, ARTICLE, FAIL)

        result = ArticlePipeline(client).run()

        assert result.success is False
        assert result.failure.failed_at == "DISCIPLINE_ENFORCER"
        assert result.failure.reason == "Article failed editorial standards after 2 attempts"
        assert result.failure.violations[0].type == "TONE_GENERIC"
        assert client.generate.call_count == 6

    def test_single_attempt_config(self):
        client = client_with(INSIGHT, ARTICLE, FAIL)

        result = ArticlePipeline(client, PipelineConfig(max_pipeline_retries=1)).run()

        assert result.success is False
        assert result.failure.reason == "Article failed editorial standards after 1 attempts"

    def test_regex_violations_override_ai_pass(self):
        hustle = dict(ARTICLE, content=f"Outwork everyone.\n\n{LEADERSHIP_SECTION_HEADING}\n\nTool")
        client = client_with(INSIGHT, hustle, PASS)

        result = ArticlePipeline(client, PipelineConfig(max_pipeline_retries=1)).run()

        assert result.success is False
        assert result.failure.violations[0].type == "ANTI_PATTERN_HUSTLE"

    def test_insight_stage_error(self):
        client = client_with({"insight": "short"})

        result = ArticlePipeline(client).run()

        assert result.success is False
        assert result.failure.failed_at == "INSIGHT_GENERATOR"
        assert "Insight too short or missing" in result.failure.reason

    def test_architect_stage_error(self):
        client = client_with(INSIGHT, dict(ARTICLE, pillar="Nope"))

        result = ArticlePipeline(client).run()

        assert result.failure.failed_at == "EDITORIAL_ARCHITECT"

    def test_polisher_stage_error(self):
        client = client_with(INSIGHT, ARTICLE, PASS, AIClientError("HTTP 529: Overloaded"))

        result = ArticlePipeline(client).run()

        assert result.failure.failed_at == "FINAL_POLISHER"
        assert "Overloaded" in result.failure.reason

    def test_metadata_can_be_disabled(self):
        client = client_with(INSIGHT, ARTICLE, PASS, POLISHED)

        result = run_article_pipeline(config=PipelineConfig(include_metadata=False), client=client)

        assert result.success is True
        assert result.metadata is None


class TestPipelineHelpers:
    """Test the wrapper used by the publisher."""

    def test_generate_article_returns_post(self):
        client = client_with(INSIGHT, ARTICLE, PASS, POLISHED)

        article = generate_article_with_pipeline(["Old"], client=client)

        assert article.slug == "you-are-the-bottleneck-in-every-bid"
        assert article.leadership_tool.action.startswith("By Friday")

    def test_generate_article_raises_with_violations(self):
        client = client_with(INSIGHT, ARTICLE, FAIL)

        with pytest.raises(PipelineError) as exc_info:
            generate_article_with_pipeline([], client=client, max_retries=1)

        message = str(exc_info.value)
        assert message.startswith("Pipeline failed: Article failed editorial standards")
        assert "Violations:\n- [TONE_GENERIC] Could be any industry" in message
        assert exc_info.value.result.success is False

    def test_format_without_failure(self):
        from models import PipelineResult
        assert format_pipeline_failure(PipelineResult(success=False)) == "Pipeline failed: unknown error"
