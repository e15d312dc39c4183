"""
Editorial Architect: the second pipeline stage.

Turns a raw insight into a fully structured article. This stage is
convergent: pick one pillar and one archetype, apply the mandatory article
structure, and write a leadership tool strong enough to survive the enforcer.
"""

import logging
from typing import List, Optional

from pydantic import ValidationError

from models import (
    RawInsight, StructuredDraft, Violation,
    CONTENT_PILLARS, ARTICLE_ARCHETYPES, LEADERSHIP_SECTION_HEADING,
)
from services.content_generator import (
    banner, format_book_options, PILLAR_GUIDE, ARCHETYPE_GUIDE, STRUCTURE_GUIDE, SIGNATURE_PHRASES,
)
from .common import AgentError, call_agent

logger = logging.getLogger(__name__)

AGENT_NAME = "EditorialArchitect"
MAX_TOKENS = 6000
MIN_BOOKS = 2

EDITORIAL_ARCHITECT_SYSTEM = f"""You are the Editorial Architect for Build Better Daily. Your job is to transform a raw insight into a precisely structured article.

{banner("YOUR SINGLE RESPONSIBILITY")}

Take the raw insight provided and architect it into a complete article that follows the Build Better Daily editorial framework EXACTLY.

You are NOT generating new ideas. You are STRUCTURING the insight you receive.

{banner("CONTENT PILLARS: SELECT EXACTLY ONE")}

{PILLAR_GUIDE}

{banner("ARTICLE ARCHETYPES: SELECT EXACTLY ONE")}

{ARCHETYPE_GUIDE}

{banner("MANDATORY ARTICLE STRUCTURE: FOLLOW EXACTLY")}

{STRUCTURE_GUIDE}

{banner("LEADERSHIP TOOL: THIS IS THE MOST IMPORTANT SECTION")}

The Leadership Tool is what makes this article usable in a real meeting.

THE QUESTION must:
- Be uncomfortable to ask out loud
- Force the team to confront something they've been avoiding
- Have no easy answer

THE PROMPT must:
- Start a conversation that reveals the real issue
- Be specific enough that everyone knows what you're asking
- Expose disagreement or misalignment

THE ACTION must:
- Be completable within 7 days
- Have a specific owner (a name, not "someone should")
- Create a forcing function for change

WEAK LEADERSHIP TOOLS (will cause rejection):
❌ "Are we aligned on our goals?" (too vague)
❌ "Discuss how we can improve" (no forcing function)
❌ "Think about what could be better" (no ownership, no deadline)

STRONG LEADERSHIP TOOLS:
✓ "What's the one project we're keeping alive that should be killed?" (uncomfortable, specific)
✓ "Name the person on this team who carries weight they shouldn't" (forces clarity)
✓ "By Friday, [Name] will cancel or renegotiate one commitment we made under pressure" (specific, owned, deadline)

{banner("VOICE: WRITE AS MARTIN RILEY")}

TONE: Calm, direct, experienced peer. Not a guru. Not motivational. Not selling hope.

SIGNATURE PHRASES (use naturally):
{SIGNATURE_PHRASES}

WRITING MECHANICS:
- Short paragraphs that punch
- One idea per paragraph
- No jargon, no corporate speak
- 1000-1500 words total

{banner("WHAT YOU MUST NOT DO")}

❌ Add ideas not in the original insight
❌ Make the insight more "positive" or "balanced"
❌ Soften uncomfortable truths
❌ Use listicle format ("5 tips...")
❌ Use motivational language ("You've got this!")
❌ Use hustle framing ("Grind harder")
❌ Add marketing CTAs"""


def format_feedback(violations: List[Violation]) -> str:
    """Render enforcer violations from a rejected attempt as prompt text."""
    lines = []
    for v in violations:
        lines.append(f"- [{v.type}] {v.description}")
        if v.evidence:
            lines.append(f"  Evidence: {v.evidence}")
        if v.remediation:
            lines.append(f"  Fix: {v.remediation}")
    return "\n".join(lines)


def build_architect_prompt(insight: RawInsight, feedback: Optional[List[Violation]] = None) -> str:
    context_lines = [insight.insight, ""]
    if insight.trigger:
        context_lines.append(f"TRIGGER: {insight.trigger}")
    if insight.emotional_core:
        context_lines.append(f"EMOTIONAL CORE: {insight.emotional_core}")
    insight_block = "\n".join(context_lines).rstrip()

    feedback_block = ""
    if feedback:
        feedback_block = f"""

{banner("PREVIOUS ATTEMPT WAS REJECTED")}

The Discipline Enforcer failed the last draft built from this insight. Do not repeat these problems:

{format_feedback(feedback)}"""

    return f"""Transform this raw insight into a fully structured Build Better Daily article.

{banner("RAW INSIGHT TO ARCHITECT")}

{insight_block}{feedback_block}

{banner("YOUR TASK")}

1. Select the ONE content pillar that best fits this insight
2. Select the ONE article archetype that best structures this insight
3. Write the full article following the mandatory structure
4. Create a STRONG Leadership Tool section (this will be validated)
5. Select 2-3 relevant books

BOOK OPTIONS (choose 2-3 most relevant):
{format_book_options()}

{banner("OUTPUT FORMAT")}

Respond with a JSON object in this EXACT format:
{{
  "sourceInsight": "Copy the original insight here for traceability",
  "pillar": "Exact pillar name from the list",
  "archetype": "Exact archetype name from the list",
  "title": "Compelling title that signals the core tension",
  "slug": "url-friendly-slug-with-hyphens",
  "excerpt": "2-3 sentences in Martin's voice (150-200 chars)",
  "content": "Full article in Markdown. MUST include '{LEADERSHIP_SECTION_HEADING}' section. 1000-1500 words.",
  "leadershipTool": {{
    "question": "The uncomfortable alignment question",
    "prompt": "The clarity-forcing discussion starter",
    "action": "Specific 7-day action with ownership"
  }},
  "books": [
    {{
      "title": "Book Title",
      "author": "Author Name",
      "asin": "ASIN",
      "description": "One sentence on why this book matters for this topic"
    }}
  ]
}}

Return ONLY the JSON object, no other text."""


def validate_draft_fields(data: dict, agent_name: str) -> None:
    """Structural checks shared by the architect and the polisher."""
    if not all(data.get(k) for k in ("title", "slug", "content", "excerpt")):
        raise AgentError(agent_name, "Missing required fields")

    tool = data.get("leadershipTool")
    if not isinstance(tool, dict) or not all(tool.get(k) for k in ("question", "prompt", "action")):
        raise AgentError(agent_name, "Missing or incomplete leadership tool")

    if LEADERSHIP_SECTION_HEADING not in data["content"]:
        raise AgentError(agent_name, "Missing leadership meeting section in content")


def architect_article(client, insight: RawInsight,
                      feedback: Optional[List[Violation]] = None,
                      model: Optional[str] = None) -> StructuredDraft:
    """
    Transform a raw insight into a structured article draft.

    Args:
        client: AnthropicClient
        insight: Output of the Insight Generator
        feedback: Violations from a previous rejected attempt, if any
        model: Optional model override

    Returns:
        StructuredDraft (tone problems are left for the enforcer)

    Raises:
        AgentError: On invalid taxonomy, missing leadership tool, or too few books
    """
    prompt = build_architect_prompt(insight, feedback)
    data = call_agent(client, AGENT_NAME, EDITORIAL_ARCHITECT_SYSTEM, prompt, MAX_TOKENS, model)

    if data.get("pillar") not in CONTENT_PILLARS:
        raise AgentError(AGENT_NAME, f"Invalid pillar: {data.get('pillar')}")

    if data.get("archetype") not in ARTICLE_ARCHETYPES:
        raise AgentError(AGENT_NAME, f"Invalid archetype: {data.get('archetype')}")

    validate_draft_fields(data, AGENT_NAME)

    books = data.get("books")
    if not isinstance(books, list) or len(books) < MIN_BOOKS:
        raise AgentError(AGENT_NAME, f"Expected at least {MIN_BOOKS} book recommendations")

    # Keep traceability even when the model skips the echo
    data.setdefault("sourceInsight", insight.insight)

    try:
        draft = StructuredDraft.model_validate(data)
    except ValidationError as e:
        raise AgentError(AGENT_NAME, f"Draft failed validation: {e}") from e

    logger.info(f"[{AGENT_NAME}] ✓ Draft \"{draft.title}\" ({draft.pillar} / {draft.archetype})")
    return draft
