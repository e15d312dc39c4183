"""
Four-stage article pipeline.

    Insight Generator -> Editorial Architect -> Discipline Enforcer -> Final Polisher

Any stage error stops the run. Enforcer failures restart from the insight
stage, with the violations fed back to the architect, until attempts run out.
"""

import time
import logging
from typing import List, Optional

from models import (
    RawInsight, StructuredDraft, EnforcerVerdict, Violation,
    PipelineConfig, PipelineFailure, PipelineMetadata, PipelineResult,
)
from services.ai_client import AnthropicClient, AIClientError
from .common import AgentError
from .insight_generator import generate_insight
from .editorial_architect import architect_article
from .discipline_enforcer import enforce_editorial_standards, run_regex_validation
from .final_polisher import polish_article

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Raised when the pipeline cannot produce a publishable article."""

    def __init__(self, message: str, result: Optional[PipelineResult] = None):
        super().__init__(message)
        self.result = result


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class ArticlePipeline:
    """Run the multi-agent article pipeline with retry-with-feedback."""

    def __init__(self, client=None, config: Optional[PipelineConfig] = None):
        self.client = client or AnthropicClient()
        self.config = config or PipelineConfig()
        self.metadata = PipelineMetadata()

    def _fail(self, stage: str, reason: str, start: float,
              violations: Optional[List[Violation]] = None) -> PipelineResult:
        logger.error(f"✗ Pipeline failed at {stage}: {reason}")
        return PipelineResult(
            success=False,
            failure=PipelineFailure(failed_at=stage, reason=reason, violations=violations or []),
            metadata=self._finish_metadata(start),
        )

    def _finish_metadata(self, start: float) -> Optional[PipelineMetadata]:
        if not self.config.include_metadata:
            return None
        self.metadata.total_duration_ms = _elapsed_ms(start)
        return self.metadata

    def run(self, theme: Optional[str] = None) -> PipelineResult:
        """
        Run the full pipeline.

        Args:
            theme: Optional theme for the insight stage

        Returns:
            PipelineResult with either the polished article or a failure record
        """
        start = time.monotonic()
        self.metadata = PipelineMetadata()
        max_attempts = self.config.max_pipeline_retries
        model = self.config.model

        draft: Optional[StructuredDraft] = None
        verdict: Optional[EnforcerVerdict] = None
        feedback: Optional[List[Violation]] = None
        last_violations: List[Violation] = []

        logger.info("=" * 60)
        logger.info("MULTI-AGENT ARTICLE PIPELINE")
        logger.info("=" * 60)

        for attempt in range(1, max_attempts + 1):
            self.metadata.attempts = attempt
            logger.info(f"Attempt {attempt}/{max_attempts}")

            # Stage 1: insight
            logger.info("[1/4] Generating raw insight...")
            stage_start = time.monotonic()
            try:
                insight: RawInsight = generate_insight(
                    self.client, theme, self.config.existing_titles, model=model
                )
            except (AgentError, AIClientError) as e:
                return self._fail("INSIGHT_GENERATOR", str(e), start)
            self.metadata.insight_duration_ms = _elapsed_ms(stage_start)
            logger.info(f"✓ Insight generated ({len(insight.insight)} chars)")

            # Stage 2: structure
            logger.info("[2/4] Architecting article structure...")
            stage_start = time.monotonic()
            try:
                draft = architect_article(self.client, insight, feedback=feedback, model=model)
            except (AgentError, AIClientError) as e:
                return self._fail("EDITORIAL_ARCHITECT", str(e), start)
            self.metadata.architect_duration_ms = _elapsed_ms(stage_start)

            # Stage 3: enforcement, deterministic screen first
            logger.info("[3/4] Enforcing editorial standards...")
            stage_start = time.monotonic()
            regex_violations = run_regex_validation(draft)
            if regex_violations:
                logger.warning(f"⚠ Regex screen found {len(regex_violations)} violation(s)")
            try:
                verdict = enforce_editorial_standards(self.client, draft, model=model)
            except (AgentError, AIClientError) as e:
                return self._fail("DISCIPLINE_ENFORCER", str(e), start)
            self.metadata.enforcer_duration_ms = _elapsed_ms(stage_start)

            if regex_violations:
                verdict = verdict.model_copy(update={
                    "status": "FAIL",
                    "violations": regex_violations + verdict.violations,
                })

            if verdict.status == "PASS":
                logger.info(f"✓ Enforcer verdict: PASS (confidence: {verdict.confidence})")
                break

            last_violations = verdict.violations
            logger.warning(f"✗ Enforcer verdict: FAIL with {len(last_violations)} violation(s)")
            for v in last_violations:
                logger.warning(f"  - [{v.type}] {v.description}")

            if attempt < max_attempts:
                logger.info("Retrying with enforcer feedback...")
                feedback = last_violations
        else:
            return self._fail(
                "DISCIPLINE_ENFORCER",
                f"Article failed editorial standards after {max_attempts} attempts",
                start,
                violations=last_violations,
            )

        # Stage 4: polish
        logger.info("[4/4] Polishing final article...")
        stage_start = time.monotonic()
        try:
            polished = polish_article(self.client, draft, verdict.polisher_notes, model=model)
        except (AgentError, AIClientError) as e:
            return self._fail("FINAL_POLISHER", str(e), start)
        self.metadata.polisher_duration_ms = _elapsed_ms(stage_start)

        article = polished.to_generated_post()
        logger.info(f"✓ Pipeline complete: \"{article.title}\"")

        return PipelineResult(
            success=True,
            article=article,
            metadata=self._finish_metadata(start),
        )


def format_pipeline_failure(result: PipelineResult) -> str:
    """Human-readable failure message with a bullet per violation."""
    failure = result.failure
    if failure is None:
        return "Pipeline failed: unknown error"

    message = f"Pipeline failed: {failure.reason}"
    if failure.violations:
        bullets = "\n".join(f"- [{v.type}] {v.description}" for v in failure.violations)
        message += f"\n\nViolations:\n{bullets}"
    return message


def run_article_pipeline(theme: Optional[str] = None, config: Optional[PipelineConfig] = None,
                         client=None) -> PipelineResult:
    return ArticlePipeline(client, config).run(theme)


def generate_article_with_pipeline(existing_titles: List[str], client=None,
                                   theme: Optional[str] = None,
                                   max_retries: Optional[int] = None):
    """
    Generate a publishable article through the pipeline.

    Returns:
        GeneratedPost

    Raises:
        PipelineError: With the failure reason and violations in the message
    """
    overrides = {"max_pipeline_retries": max_retries} if max_retries is not None else {}
    config = PipelineConfig(existing_titles=existing_titles, **overrides)

    result = ArticlePipeline(client, config).run(theme)
    if not result.success or result.article is None:
        raise PipelineError(format_pipeline_failure(result), result)

    return result.article
