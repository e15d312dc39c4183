"""
Insight Generator: the first pipeline stage.

Surfaces a raw, unstructured insight from an optional theme. Structure is
applied later by the Editorial Architect, so this prompt stays loose.
"""

import logging
from typing import List, Optional

from pydantic import ValidationError

from models import RawInsight
from .common import AgentError, call_agent

logger = logging.getLogger(__name__)

AGENT_NAME = "InsightGenerator"
MAX_TOKENS = 1500
MIN_INSIGHT_LENGTH = 100
MAX_AVOIDED_TOPICS = 20

INSIGHT_GENERATOR_SYSTEM = """You are Martin Riley's creative intuition: the part that notices patterns, feels tensions, and sees what others avoid.

YOUR ROLE: Surface a raw insight about leadership, business ownership, or operational reality for construction company owners.

YOUR AUDIENCE: Construction owners who've hit $2-10M and discovered that growth amplified their problems instead of solving them. They don't need motivation. They need truth.

YOUR MINDSET:
- You've sat across the table from hundreds of owners
- You notice what they avoid, what they pretend, what they fear
- You see the gap between what they say and what they do
- You recognize patterns that repeat across companies

WHAT MAKES A GOOD INSIGHT:
- It names something uncomfortable but true
- It reveals a tension the reader feels but hasn't articulated
- It comes from operator reality, not business theory
- It makes the reader think "this is about me"

WHAT TO AVOID:
- Generic business advice ("communicate better")
- Motivational framing ("you can do it!")
- Academic or consultant-speak
- Solutions (that comes later, just surface the tension)

OUTPUT: Write freely. No formatting. No structure. Capture the core tension or insight in 200-400 words of unstructured prose. Think of this as a journal entry or internal monologue, not a polished piece."""


def build_insight_prompt(theme: Optional[str] = None,
                         existing_topics: Optional[List[str]] = None) -> str:
    if theme:
        prompt = f"""Surface a raw insight about: "{theme}"

Write freely. No formatting. Just capture what's true about this topic for construction owners who've outgrown their systems but not their habits."""
    else:
        prompt = """Surface a raw insight about something construction owners avoid, pretend about, or struggle with silently.

Think about:
- What patterns repeat across the owners you've worked with?
- What truth do they avoid until it's too late?
- What tension exists between what they want and how they behave?

Write freely. No formatting. Just capture what's true."""

    if existing_topics:
        avoided = "\n".join(f"- {t}" for t in existing_topics[:MAX_AVOIDED_TOPICS])
        prompt += f"""

AVOID THESE TOPICS (already covered):
{avoided}

Surface something different."""

    prompt += """

Respond with a JSON object:
{
  "insight": "Your 200-400 word raw insight (unstructured prose)",
  "trigger": "What triggered this insight (optional, one sentence)",
  "emotionalCore": "The emotional truth this surfaces (optional, one sentence)"
}

Return ONLY the JSON object."""
    return prompt


def generate_insight(client, theme: Optional[str] = None,
                     existing_topics: Optional[List[str]] = None,
                     model: Optional[str] = None) -> RawInsight:
    """
    Generate a raw insight from a theme or trigger.

    Args:
        client: AnthropicClient (or anything with a compatible generate())
        theme: Optional theme, e.g. "pricing fear". The agent picks one when omitted.
        existing_topics: Titles already covered; only the first 20 are listed
        model: Optional model override

    Returns:
        RawInsight

    Raises:
        AgentError: If the response is missing, unparseable, or too short
    """
    prompt = build_insight_prompt(theme, existing_topics)
    data = call_agent(client, AGENT_NAME, INSIGHT_GENERATOR_SYSTEM, prompt, MAX_TOKENS, model)

    insight = data.get("insight")
    if not isinstance(insight, str) or len(insight) < MIN_INSIGHT_LENGTH:
        raise AgentError(AGENT_NAME, "Insight too short or missing")

    try:
        return RawInsight.model_validate(data)
    except ValidationError as e:
        raise AgentError(AGENT_NAME, f"Invalid insight: {e}") from e
