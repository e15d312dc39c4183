"""
Pydantic models for posts, subscribers, and the editorial generation pipeline.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Literal, get_args
from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.utils import slugify, is_valid_slug


# ============================================================================
# Editorial taxonomy
# ============================================================================

ContentPillar = Literal[
    "Think Like an Investor (Operator Edition)",
    "Financial Clarity Without Accounting Theater",
    "Operational Discipline That Reduces Chaos",
    "Leadership Reality in Small Companies",
    "Building Value Without Burning Your Life Down",
]

ArticleArchetype = Literal[
    "Misconception Kill Shot",      # Demolish a false belief head-on
    "Operator Reality Check",       # Ground truth from lived experience
    "Decision Framework",           # Structured approach to a recurring decision
    "Failure-Earned Insight",       # Wisdom extracted from a specific failure
    "Quiet Discipline Piece",       # Unsexy habit that compounds
    "Value vs Life Tension Piece",  # Navigate the real tradeoffs
]

ViolationType = Literal[
    "TONE_MOTIVATIONAL",
    "TONE_GENERIC",
    "ADVICE_NO_FRICTION",
    "LEADERSHIP_TOOL_WEAK",
    "LEADERSHIP_TOOL_MISSING",
    "ANTI_PATTERN_LISTICLE",
    "ANTI_PATTERN_OPENER",
    "ANTI_PATTERN_HUSTLE",
    "ANTI_PATTERN_MARKETING",
    "STRUCTURE_VIOLATION",
    "PILLAR_MISMATCH",
    "ARCHETYPE_MISMATCH",
    "VOICE_DRIFT",
]

PipelineStage = Literal[
    "INSIGHT_GENERATOR",
    "EDITORIAL_ARCHITECT",
    "DISCIPLINE_ENFORCER",
    "FINAL_POLISHER",
]

LinkedInPackStatus = Literal["draft", "edited", "posted"]

CONTENT_PILLARS = get_args(ContentPillar)
ARTICLE_ARCHETYPES = get_args(ArticleArchetype)
VIOLATION_TYPES = get_args(ViolationType)
PIPELINE_STAGES = get_args(PipelineStage)
LINKEDIN_PACK_STATUSES = get_args(LinkedInPackStatus)

LEADERSHIP_SECTION_HEADING = "## Bring This to Your Leadership Meeting"

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
DELIVERY_WINDOWS = ("morning", "before")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def canonical_slug(value: str) -> str:
    """Lowercase hyphenated slug as served under /post/{slug}."""
    return value if is_valid_slug(value) else slugify(value)


class Book(BaseModel):
    """Recommended book attached to a post."""
    title: str
    author: str
    asin: str
    description: str = ""

    @property
    def amazon_url(self) -> str:
        return f"https://www.amazon.com/dp/{self.asin}"


class LeadershipTool(BaseModel):
    """Question / prompt / action triple used in a leadership meeting."""
    question: str
    prompt: str
    action: str

    def is_complete(self) -> bool:
        return bool(self.question and self.prompt and self.action)


# ============================================================================
# Database records
# ============================================================================

class Post(BaseModel):
    """Blog article row from the posts table."""
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    slug: str
    content: str
    excerpt: str = ""
    pillar: Optional[ContentPillar] = None
    archetype: Optional[ArticleArchetype] = None
    leadership_tool: Optional[LeadershipTool] = None
    books: List[Book] = Field(default_factory=list)
    infographic_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    published: bool = False
    is_read_first: bool = False

    @field_validator("books", mode="before")
    @classmethod
    def default_books(cls, v):
        # Older rows store NULL instead of an empty array
        return v or []

    @field_validator("is_read_first", mode="before")
    @classmethod
    def default_read_first(cls, v):
        return bool(v)

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, v):
        # timestamp columns without a zone are stored in UTC
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class WeeklyEmail(BaseModel):
    """Email companion row, one per post."""
    model_config = ConfigDict(extra="ignore")

    id: str
    post_id: str
    subject: str
    preheader: str = ""
    body: str
    leadership_prompt: str = ""
    watch_for: str = ""
    execution_nudge: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    sent: bool = False
    sent_at: Optional[datetime] = None
    sent_count: Optional[int] = None


class Subscriber(BaseModel):
    """Newsletter subscriber row."""
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    leadership_meeting_day: Optional[str] = None
    delivery_window: Optional[str] = None
    unsubscribed: bool = False
    unsubscribed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


class LinkedInPack(BaseModel):
    """LinkedIn content drafted alongside a weekly article."""
    model_config = ConfigDict(extra="ignore")

    id: str
    post_id: str
    primary_post: str
    short_version: str = ""
    comment_starters: List[str] = Field(default_factory=list)
    reply_angles: List[str] = Field(default_factory=list)
    article_link: Optional[str] = None
    status: LinkedInPackStatus = "draft"
    posted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


class SubscribeRequest(BaseModel):
    """Payload accepted by the public subscribe endpoint."""
    model_config = ConfigDict(extra="ignore")

    email: str
    leadership_meeting_day: Optional[str] = None
    delivery_window: Optional[str] = None

    @field_validator("leadership_meeting_day")
    @classmethod
    def validate_meeting_day(cls, v):
        if v is None or v == "":
            return None
        day = v.strip().capitalize()
        if day not in WEEKDAYS:
            raise ValueError(f"leadership_meeting_day must be one of: {', '.join(WEEKDAYS)}")
        return day

    @field_validator("delivery_window")
    @classmethod
    def validate_delivery_window(cls, v):
        if v is None or v == "":
            return None
        window = v.strip().lower()
        if window not in DELIVERY_WINDOWS:
            raise ValueError(f"delivery_window must be one of: {', '.join(DELIVERY_WINDOWS)}")
        return window


# ============================================================================
# Generation contracts (JSON returned by the model uses camelCase keys)
# ============================================================================

class GeneratedPost(BaseModel):
    """Article with full editorial metadata, ready to be saved."""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    slug: str
    content: str
    excerpt: str
    pillar: ContentPillar
    archetype: ArticleArchetype
    leadership_tool: LeadershipTool = Field(alias="leadershipTool")
    books: List[Book] = Field(default_factory=list)

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v):
        return canonical_slug(v)


class GeneratedEmail(BaseModel):
    """Weekly email companion as returned by the model."""
    model_config = ConfigDict(populate_by_name=True)

    subject: str
    preheader: str = ""
    body: str
    leadership_prompt: str = Field(alias="leadershipPrompt")
    watch_for: str = Field(alias="watchFor")
    execution_nudge: str = Field(alias="executionNudge")


class GeneratedLinkedInPack(BaseModel):
    """LinkedIn pack as returned by the model."""
    model_config = ConfigDict(populate_by_name=True)

    primary_post: str = Field(alias="primaryPost")
    short_version: str = Field(alias="shortVersion")
    comment_starters: List[str] = Field(default_factory=list, alias="commentStarters")
    reply_angles: List[str] = Field(default_factory=list, alias="replyAngles")
    article_link: str = Field(default="", alias="articleLink")


class SocialPosts(BaseModel):
    """Ad-hoc repurposed social copy."""
    linkedin: str
    twitter: str


# ============================================================================
# Multi-agent pipeline contracts
# ============================================================================

class RawInsight(BaseModel):
    """Unstructured creative insight from the Insight Generator."""
    model_config = ConfigDict(populate_by_name=True)

    insight: str
    trigger: Optional[str] = None
    emotional_core: Optional[str] = Field(default=None, alias="emotionalCore")


class StructuredDraft(BaseModel):
    """Fully structured article from the Editorial Architect."""
    model_config = ConfigDict(populate_by_name=True)

    source_insight: str = Field(default="", alias="sourceInsight")
    pillar: ContentPillar
    archetype: ArticleArchetype
    title: str
    slug: str
    excerpt: str
    content: str
    leadership_tool: LeadershipTool = Field(alias="leadershipTool")
    books: List[Book] = Field(default_factory=list)

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v):
        return canonical_slug(v)

    def to_generated_post(self) -> GeneratedPost:
        return GeneratedPost(
            title=self.title,
            slug=self.slug,
            content=self.content,
            excerpt=self.excerpt,
            pillar=self.pillar,
            archetype=self.archetype,
            leadership_tool=self.leadership_tool,
            books=self.books,
        )


class Violation(BaseModel):
    """A specific editorial violation with context."""
    # Unknown types from the enforcer are kept as plain strings
    type: str
    description: str
    evidence: Optional[str] = None
    remediation: Optional[str] = None


class EnforcerVerdict(BaseModel):
    """Binary PASS/FAIL gate from the Discipline Enforcer."""
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["PASS", "FAIL"]
    violations: List[Violation] = Field(default_factory=list)
    confidence: Optional[float] = None
    polisher_notes: Optional[str] = Field(default=None, alias="polisherNotes")


class PolishedArticle(StructuredDraft):
    """Final article from the Final Polisher."""
    pipeline_complete: bool = Field(default=True, alias="pipelineComplete")
    polish_changes: List[str] = Field(default_factory=list, alias="polishChanges")


class PipelineConfig(BaseModel):
    """Tuning knobs for the article pipeline."""
    max_pipeline_retries: int = Field(default=2, ge=1)
    include_metadata: bool = True
    model: Optional[str] = None
    existing_titles: List[str] = Field(default_factory=list)


class PipelineFailure(BaseModel):
    """Where and why the pipeline stopped."""
    failed_at: PipelineStage
    reason: str
    violations: List[Violation] = Field(default_factory=list)


class PipelineMetadata(BaseModel):
    """Per-stage timings in milliseconds."""
    total_duration_ms: int = 0
    insight_duration_ms: int = 0
    architect_duration_ms: int = 0
    enforcer_duration_ms: int = 0
    polisher_duration_ms: Optional[int] = None
    attempts: int = 0


class PipelineResult(BaseModel):
    """Final output of a pipeline run: an article or a failure."""
    success: bool
    article: Optional[GeneratedPost] = None
    failure: Optional[PipelineFailure] = None
    metadata: Optional[PipelineMetadata] = None

    def summary(self) -> Dict[str, Any]:
        if self.success and self.article:
            return {
                "success": True,
                "title": self.article.title,
                "pillar": self.article.pillar,
                "archetype": self.article.archetype,
            }
        return {
            "success": False,
            "failed_at": self.failure.failed_at if self.failure else None,
            "reason": self.failure.reason if self.failure else None,
            "violations": [v.model_dump() for v in self.failure.violations] if self.failure else [],
        }
