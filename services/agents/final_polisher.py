"""
Final Polisher: the last pipeline stage.

Receives only drafts the enforcer passed. Tightens language without changing
meaning, structure, or the leadership tool.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from models import StructuredDraft, PolishedArticle, LEADERSHIP_SECTION_HEADING
from services.content_generator import banner
from .common import AgentError, call_agent

logger = logging.getLogger(__name__)

AGENT_NAME = "FinalPolisher"
MAX_TOKENS = 6000

FINAL_POLISHER_SYSTEM = f"""You are the Final Polisher for Build Better Daily. Your job is to make good writing great without changing what it says.

{banner("YOUR ROLE")}

This article has ALREADY PASSED editorial validation. It does not need to be fixed.

Your job is to TIGHTEN and CLARIFY. That's it.

Think of yourself as a copyeditor, not a rewriter. Every change should make the sentence stronger without making it different.

{banner("WHAT YOU CAN DO")}

✓ Remove filler words ("really", "very", "just", "actually", "basically")
✓ Tighten sentences (fewer words, same meaning)
✓ Improve word choice (more precise, more vivid)
✓ Fix awkward phrasing
✓ Improve rhythm and punch
✓ Ensure consistent paragraph length (short paragraphs that punch)
✓ Strengthen the opening line if it's weak
✓ Make the close land better

{banner("WHAT YOU MUST NOT DO")}

❌ Add new ideas or content
❌ Remove sections or paragraphs
❌ Change the structure
❌ Alter the meaning of any sentence
❌ Soften strong statements
❌ Add qualifiers or hedging
❌ Change the Leadership Tool content (only word choice improvements allowed)
❌ Make the tone more formal or less direct
❌ Add transitions that feel artificial

{banner("MARTIN'S VOICE REMINDERS")}

- Short paragraphs that punch
- One idea per paragraph
- Simple words over impressive ones
- No jargon, no corporate speak
- Calm, direct, experienced peer tone
- Not preachy, not motivational

{banner("OUTPUT")}

Return the polished article in the same JSON format, with minimal changes.
Track what you changed in the "polishChanges" array so we can audit.

If the article is already tight and clear, return it as-is with minimal changes.
Less is more. Restraint is the goal."""


def build_polisher_prompt(draft: StructuredDraft, polisher_notes: Optional[str] = None) -> str:
    tool = draft.leadership_tool
    notes_section = ""
    if polisher_notes:
        notes_section = f"\n{banner('ENFORCER NOTES (areas to consider)')}\n\n{polisher_notes}"

    return f"""Polish this approved article for publication.

{banner("ARTICLE TO POLISH")}

Title: {draft.title}
Slug: {draft.slug}
Pillar: {draft.pillar}
Archetype: {draft.archetype}

Excerpt:
{draft.excerpt}

Leadership Tool:
- Question: {tool.question}
- Prompt: {tool.prompt}
- Action: {tool.action}

Content:
{draft.content}
{notes_section}

{banner("YOUR TASK")}

1. Read the article and identify opportunities to tighten language
2. Make surgical improvements (not sweeping rewrites)
3. Preserve meaning exactly
4. Track what you changed

Return a JSON object with these fields:
- sourceInsight: Copy the original source insight exactly (preserve it unchanged)
- pillar: "{draft.pillar}"
- archetype: "{draft.archetype}"
- title: The title (unchanged unless there's a clear typo)
- slug: "{draft.slug}"
- excerpt: The excerpt (tightened if needed)
- content: The full polished article content in Markdown
- leadershipTool: Object with question, prompt, action (unchanged or only word choice improved)
- books: The same book array provided above
- pipelineComplete: true
- polishChanges: Array of brief descriptions of changes made

If no changes are needed, return the article as-is with polishChanges: ["No changes needed - article is already tight"]

Return ONLY a valid JSON object, no other text. Ensure all string values are properly escaped for JSON (escape newlines as \\n, quotes as \\", etc)."""


def polish_article(client, draft: StructuredDraft, polisher_notes: Optional[str] = None,
                   model: Optional[str] = None) -> PolishedArticle:
    """
    Polish an approved draft for publication.

    Taxonomy, slug, books, and source insight are carried over from the
    approved draft when the model omits them.

    Raises:
        AgentError: If required fields are missing or the leadership tool/section was removed
    """
    prompt = build_polisher_prompt(draft, polisher_notes)
    data = call_agent(client, AGENT_NAME, FINAL_POLISHER_SYSTEM, prompt, MAX_TOKENS, model)

    if not all(data.get(k) for k in ("title", "slug", "content", "excerpt")):
        raise AgentError(AGENT_NAME, "Missing required fields")

    tool = data.get("leadershipTool")
    if not isinstance(tool, dict) or not all(tool.get(k) for k in ("question", "prompt", "action")):
        raise AgentError(AGENT_NAME, "Leadership tool was removed or corrupted")

    if LEADERSHIP_SECTION_HEADING not in data["content"]:
        raise AgentError(AGENT_NAME, "Leadership meeting section was removed")

    data["pipelineComplete"] = True
    data.setdefault("sourceInsight", draft.source_insight)
    data.setdefault("pillar", draft.pillar)
    data.setdefault("archetype", draft.archetype)
    if not data.get("books"):
        data["books"] = [book.model_dump() for book in draft.books]

    try:
        polished = PolishedArticle.model_validate(data)
    except ValidationError as e:
        raise AgentError(AGENT_NAME, f"Polished article failed validation: {e}") from e

    if polished.polish_changes:
        logger.info(f"[{AGENT_NAME}] Changes made: {polished.polish_changes}")

    return polished
