"""
Discipline Enforcer: the third pipeline stage.

An adversarial PASS/FAIL gate. The AI verdict is backed by a deterministic
regex screen that catches the obvious anti-patterns regardless of what the
model decides.
"""

import re
import logging
from typing import List, Optional

from pydantic import ValidationError

from models import StructuredDraft, EnforcerVerdict, Violation, VIOLATION_TYPES
from services.content_generator import banner
from .common import AgentError, call_agent

logger = logging.getLogger(__name__)

AGENT_NAME = "DisciplineEnforcer"
MAX_TOKENS = 2000

DISCIPLINE_ENFORCER_SYSTEM = f"""You are the Discipline Enforcer for Build Better Daily. Your job is to REJECT articles that violate editorial doctrine.

{banner("YOUR ROLE")}

You are a strict quality gate. You exist to CATCH problems, not to approve content.

Your default stance is SKEPTICAL. Assume the article has problems until proven otherwise.

A FAIL verdict is not a failure. It's the system working correctly.
Letting weak content through IS the failure.

{banner("WHAT MAKES YOU FAIL AN ARTICLE")}

You MUST return FAIL if ANY of these are true:

1. TONE VIOLATIONS
   - TONE_MOTIVATIONAL: Sounds like a guru or cheerleader ("You've got this!", "Crush it!")
   - TONE_GENERIC: Could have been written for any audience, not construction owners specifically
   - VOICE_DRIFT: Doesn't sound like Martin Riley (calm, direct, experienced peer)

2. ADVICE QUALITY
   - ADVICE_NO_FRICTION: Ignores human resistance, ego, or fear
   - Generic advice that anyone could give ("Communicate better with your team")
   - Solutions without acknowledging why they're hard to implement

3. LEADERSHIP TOOL PROBLEMS
   - LEADERSHIP_TOOL_WEAK: Question, prompt, or action is vague
   - LEADERSHIP_TOOL_MISSING: Section not present or incomplete

   WEAK EXAMPLES (must fail):
   ❌ Question: "Are we aligned?" (too vague, easy to answer "yes")
   ❌ Prompt: "Discuss how to improve" (no specificity, no forcing function)
   ❌ Action: "Think about priorities" (no owner, no deadline, no commitment)

   STRONG EXAMPLES (can pass):
   ✓ Question: "What's the one project we're keeping alive that should be killed?"
   ✓ Prompt: "Name the person who knows about a problem but hasn't escalated it"
   ✓ Action: "By Friday, [specific name] will cancel or renegotiate one commitment we made under pressure"

4. ANTI-PATTERN VIOLATIONS
   - ANTI_PATTERN_LISTICLE: Uses "5 tips", "7 ways", numbered list format
   - ANTI_PATTERN_OPENER: Throat-clearing intro ("In today's competitive landscape...")
   - ANTI_PATTERN_HUSTLE: Hustle/grind language ("10x", "outwork the competition")
   - ANTI_PATTERN_MARKETING: CTAs, downloads, sign-ups

5. STRUCTURE VIOLATIONS
   - STRUCTURE_VIOLATION: Missing required sections
   - PILLAR_MISMATCH: Content doesn't actually match the declared pillar
   - ARCHETYPE_MISMATCH: Article structure doesn't match the declared archetype

{banner("HOW TO EVALUATE")}

Read the article as if you're a construction owner who's seen too much generic content.

Ask yourself:
- Does this feel like it was written BY an operator, or FOR operators by a marketer?
- Is the leadership tool something I could actually use in a meeting, or is it filler?
- Does the advice acknowledge that I'll resist it, or does it assume I'll just do it?
- Does this sound like Martin Riley, or like a business content mill?

Be specific in your violations. Quote the problematic text. Suggest remediation.

{banner("OUTPUT FORMAT")}

Return a JSON verdict:

For PASS:
{{
  "status": "PASS",
  "violations": [],
  "confidence": 85,
  "polisherNotes": "Optional suggestions for the polisher (minor improvements, not violations)"
}}

For FAIL:
{{
  "status": "FAIL",
  "violations": [
    {{
      "type": "VIOLATION_TYPE",
      "description": "What's wrong",
      "evidence": "Quote the problematic text",
      "remediation": "How to fix it"
    }}
  ],
  "confidence": 90
}}

VIOLATION TYPES:
{chr(10).join(f"- {t}" for t in VIOLATION_TYPES)}

{banner("CRITICAL REMINDERS")}

- You are NOT here to improve the article, just to pass or fail it
- If you're uncertain, FAIL. Weak content is more expensive than regeneration.
- Leadership Tool quality is the #1 failure point, scrutinize it closely
- Generic advice is a silent killer, catch it even when it sounds good"""

# Deterministic screen: (pattern, violation type, description)
ANTI_PATTERN_RULES = [
    (re.compile(r"\d+\s+(tips|ways|steps|secrets|hacks)"),
     "ANTI_PATTERN_LISTICLE", "Uses listicle format which is explicitly forbidden"),
    (re.compile(r"in today's (competitive|fast-paced|modern|ever-changing)"),
     "ANTI_PATTERN_OPENER", "Uses throat-clearing opener"),
    (re.compile(r"(you've got this|crush it|let's go|you can do it)"),
     "TONE_MOTIVATIONAL", "Uses motivational language which violates editorial tone"),
    (re.compile(r"(hustle|grind|outwork|10x|double down)"),
     "ANTI_PATTERN_HUSTLE", "Uses hustle culture framing"),
    (re.compile(r"(download our|free guide|sign up now|book a call|get started today)"),
     "ANTI_PATTERN_MARKETING", "Contains marketing CTA"),
]

VAGUE_QUESTION_PATTERNS = [
    re.compile(r"^are we aligned"),
    re.compile(r"^how can we improve"),
    re.compile(r"^what should we do"),
    re.compile(r"^do we have"),
]

DEADLINE_MARKERS = ("by ", "within ", "friday", "monday")
DEADLINE_WORDS = re.compile(r"\b(week|day|hour|tomorrow)\b")
NO_OWNER_PATTERNS = [
    re.compile(r"someone (should|needs|must|will)"),
    re.compile(r"we (should|need|must) think"),
]


def build_enforcer_prompt(draft: StructuredDraft) -> str:
    tool = draft.leadership_tool
    return f"""Evaluate this article draft against Build Better Daily editorial standards.

{banner("ARTICLE METADATA")}

Title: {draft.title}
Declared Pillar: {draft.pillar}
Declared Archetype: {draft.archetype}
Excerpt: {draft.excerpt}

{banner("LEADERSHIP TOOL (SCRUTINIZE CLOSELY)")}

Question: {tool.question}
Prompt: {tool.prompt}
Action: {tool.action}

{banner("FULL ARTICLE CONTENT")}

{draft.content}

{banner("YOUR TASK")}

1. Read the article critically as a construction owner who's tired of generic content
2. Evaluate against all failure modes
3. Pay SPECIAL attention to the Leadership Tool, this is the most common failure point
4. Return your verdict as JSON

Return ONLY the JSON verdict object, no other text."""


def enforce_editorial_standards(client, draft: StructuredDraft,
                                model: Optional[str] = None) -> EnforcerVerdict:
    """
    Evaluate a structured draft and return a PASS/FAIL verdict.

    Raises:
        AgentError: On an invalid status or a FAIL without violations
    """
    data = call_agent(client, AGENT_NAME, DISCIPLINE_ENFORCER_SYSTEM,
                      build_enforcer_prompt(draft), MAX_TOKENS, model)

    if data.get("status") not in ("PASS", "FAIL"):
        raise AgentError(AGENT_NAME, "Invalid verdict status")

    if not isinstance(data.get("violations"), list):
        data["violations"] = []

    if data["status"] == "FAIL" and not data["violations"]:
        raise AgentError(AGENT_NAME, "FAIL verdict must include violations")

    try:
        verdict = EnforcerVerdict.model_validate(data)
    except ValidationError as e:
        raise AgentError(AGENT_NAME, f"Verdict failed validation: {e}") from e

    for violation in verdict.violations:
        if violation.type not in VIOLATION_TYPES:
            logger.warning(f"[{AGENT_NAME}] Unknown violation type: {violation.type}")

    return verdict


def run_regex_validation(draft: StructuredDraft) -> List[Violation]:
    """
    Deterministic anti-pattern and leadership tool screen.

    Runs on lower-cased text. Each anti-pattern rule reports at most once,
    with the first match as evidence.
    """
    violations: List[Violation] = []
    content = draft.content.lower()

    for pattern, violation_type, description in ANTI_PATTERN_RULES:
        match = pattern.search(content)
        if match:
            violations.append(Violation(
                type=violation_type,
                description=description,
                evidence=match.group(0),
                remediation="Remove or rewrite this phrase",
            ))

    tool = draft.leadership_tool
    question = tool.question.lower()
    action = tool.action.lower()

    if any(p.search(question) for p in VAGUE_QUESTION_PATTERNS):
        violations.append(Violation(
            type="LEADERSHIP_TOOL_WEAK",
            description="Leadership question is too vague to force real alignment",
            evidence=tool.question,
            remediation="Make the question uncomfortable and specific",
        ))

    has_marker = any(marker in action for marker in DEADLINE_MARKERS)
    if not has_marker and not DEADLINE_WORDS.search(action):
        violations.append(Violation(
            type="LEADERSHIP_TOOL_WEAK",
            description="Leadership action lacks a clear deadline",
            evidence=tool.action,
            remediation='Add a specific deadline (e.g., "By Friday...", "Within 7 days...")',
        ))

    if any(p.search(action) for p in NO_OWNER_PATTERNS):
        violations.append(Violation(
            type="LEADERSHIP_TOOL_WEAK",
            description="Leadership action lacks specific ownership",
            evidence=tool.action,
            remediation='Assign to a specific role or person (e.g., "The ops manager will...")',
        ))

    return violations
