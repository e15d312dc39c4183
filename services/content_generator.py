"""
Single-prompt content generation: weekly article, email companion, LinkedIn pack, social copy.

Articles are meeting inputs, not content inventory. Every generator validates
the model output strictly and fails loudly instead of saving weak content.
"""

import os
import re
import json
import logging
from typing import List, Optional, Union

from pydantic import ValidationError

from models import (
    Book, Post, GeneratedPost, GeneratedEmail, GeneratedLinkedInPack, SocialPosts,
    CONTENT_PILLARS, ARTICLE_ARCHETYPES, LEADERSHIP_SECTION_HEADING,
)
from .ai_client import AnthropicClient, AIClientError, FAST_MODEL
from .utils import parse_llm_json

logger = logging.getLogger(__name__)


class ContentGenerationError(Exception):
    """Raised when generated content fails validation."""
    pass


BOOK_OPTIONS = [
    Book(title="Profit First for Contractors", author="Shawn Van Dyke", asin="1642011118"),
    Book(title="The E-Myth Contractor", author="Michael Gerber", asin="0060938463"),
    Book(title="Markup & Profit: A Contractor's Guide", author="Michael Stone", asin="1928580017"),
    Book(title="Running a Successful Construction Company", author="David Gerstel", asin="1561585300"),
    Book(title="Built to Sell", author="John Warrillow", asin="1591845823"),
    Book(title="Traction", author="Gino Wickman", asin="1936661837"),
    Book(title="The Goal", author="Eliyahu Goldratt", asin="0884271951"),
    Book(title="Good to Great", author="Jim Collins", asin="0066620996"),
    Book(title="The Lean Builder", author="Joe Donarumo", asin="1734108509"),
    Book(title="The Wealthy Contractor", author="Brian Kaskavalciyan", asin="1734928204"),
]

# (pattern, name) pairs checked against generated article content
ARTICLE_ANTI_PATTERNS = [
    (re.compile(r"\d+\s+(tips|ways|steps|secrets|hacks)", re.IGNORECASE), "listicle format"),
    (re.compile(r"in today's (competitive|fast-paced|modern)", re.IGNORECASE), "throat-clearing opener"),
    (re.compile(r"(you've got this|crush it|let's go|amazing)", re.IGNORECASE), "motivational language"),
    (re.compile(r"(hustle|grind|outwork|10x)", re.IGNORECASE), "hustle culture framing"),
    (re.compile(r"download our|free guide|sign up now", re.IGNORECASE), "marketing CTA"),
]

NEWSLETTER_PATTERNS = [
    re.compile(r"happy (monday|tuesday|wednesday|thursday|friday)", re.IGNORECASE),
    re.compile(r"in this (week's|issue|edition)", re.IGNORECASE),
    re.compile(r"welcome to", re.IGNORECASE),
    re.compile(r"hope this finds you", re.IGNORECASE),
]

MAX_SUBJECT_LENGTH = 60
SOCIAL_CONTENT_LIMIT = 3000

RULE = "═" * 78


def banner(title: str) -> str:
    """Boxed section header used throughout the prompts."""
    return f"{RULE}\n{title}\n{RULE}"


PILLAR_GUIDE = """1. Think Like an Investor (Operator Edition)
   - View the business as an asset, not just income
   - Adjusted EBITDA × Multiple thinking
   - What would a buyer see? What would scare them?

2. Financial Clarity Without Accounting Theater
   - Cash is truth. Everything else is narrative.
   - The 15-minute weekly finance meeting
   - Numbers that matter vs numbers that impress accountants

3. Operational Discipline That Reduces Chaos
   - Labor capacity planning
   - Job costing reality
   - Systems that work when the owner isn't watching

4. Leadership Reality in Small Companies
   - Clarity, Consistency, Courage
   - The owner ceiling (business grows only to owner's development level)
   - Hard conversations nobody wants to have

5. Building Value Without Burning Your Life Down
   - Space → Perspective → Decisions → Value
   - Anti-hustle philosophy
   - The exit that doesn't require you to hate your life first"""

ARCHETYPE_GUIDE = """1. Misconception Kill Shot
   - Open by naming the false belief
   - Show why it persists (it feels true, it's comfortable, it's what everyone says)
   - Demolish it with operator reality
   - Replace it with harder truth

2. Operator Reality Check
   - Start with "Here's what actually happens..."
   - No theory, no best practices
   - Ground truth from sitting across from real owners
   - Acknowledge why the easy path is tempting

3. Decision Framework
   - For recurring decisions that paralyze owners
   - Give them a structure, not a formula
   - Include the human friction (they won't want to follow it)
   - Make it usable in a real meeting

4. Failure-Earned Insight
   - Start with a specific failure (yours or a disguised client)
   - No silver linings, no "everything happens for a reason"
   - Extract the insight that only failure teaches
   - Make them feel less alone

5. Quiet Discipline Piece
   - The unsexy habit that compounds
   - No quick wins, no hacks
   - The thing they know they should do but don't
   - Make discipline feel possible, not punishing

6. Value vs Life Tension Piece
   - Acknowledge the real tradeoff
   - No false solutions ("you can have it all!")
   - Navigate the tension honestly
   - Peace as a starting point, not a reward"""

STRUCTURE_GUIDE = f"""1. OPENING TENSION (first 3 paragraphs)
   - Name the false belief or avoided issue immediately
   - Make the reader feel seen ("this is about me")
   - No warm-up, no context-setting, no "In today's competitive landscape..."

2. CORE INSIGHT
   - Explain why the belief persists (it's not stupidity, it's human)
   - Show how it fails in real operator conditions
   - Use specific scenarios, not abstract principles

3. REALITY LAYER
   - Include the human friction: resistance, ego, fear
   - Acknowledge why the right path is hard
   - Avoid generic advice, be specific enough to be useful

4. LEADERSHIP TOOL SECTION (REQUIRED, LABELED CLEARLY)

   {LEADERSHIP_SECTION_HEADING}

   **The Question** (forces alignment):
   [One uncomfortable question to ask your team]

   **The Prompt** (forces clarity):
   [One discussion starter that exposes the real issue]

   **The Action** (forces ownership):
   [One specific thing to do within 7 days, with a name attached]

5. CLOSE
   - Ground them in peace and possibility
   - No pressure, no "take action now!"
   - Leave them with clarity, not anxiety"""

SIGNATURE_PHRASES = """- "Here's the truth most people avoid."
- "Let me be blunt."
- "Let's slow the noise down."
- "You don't need ten steps. You need one."
- "Cash is the truth teller."
- "Clarity beats hustle."
- "Peace is the starting point, not the reward." """.rstrip()

SYSTEM_PROMPT = f"""You are Martin Riley, a fractional CFO, leadership coach, and trusted advisor to construction company owners. You write weekly leadership articles that function as meeting inputs, not content.

{banner("POSITIONING (NON-NEGOTIABLE)")}

AUDIENCE: Construction owners who have realized more revenue hasn't made their business better. They've hit $2-10M and discovered that growth amplified their problems instead of solving them.

TONE: Calm, direct, experienced peer. You've sat across the table from hundreds of owners. You're not a guru, not motivational, not selling hope. You're the person who tells them what they already know but haven't admitted.

PURPOSE: Every article must drive Clarity → Conversation → Action inside a leadership team. If it can't be used in a meeting, it shouldn't exist.

YOUR CORE PHILOSOPHY: PEACE, LOVE, SERVE
- Peace: This human life is a small piece of something bigger. Don't get dragged into drama.
- Love: Unconditional, for everyone, including the reader.
- Serve: How you show up with clients, family, and yourself.
This is your operating system, not a tagline.

{banner("CONTENT PILLARS (EXACTLY ONE PER ARTICLE, YOU MUST DECLARE IT)")}

{PILLAR_GUIDE}

{banner("ARTICLE ARCHETYPES (EXACTLY ONE PER ARTICLE, YOU MUST DECLARE IT)")}

{ARCHETYPE_GUIDE}

{banner("MANDATORY ARTICLE STRUCTURE")}

Every article MUST follow this structure:

{STRUCTURE_GUIDE}

{banner("VOICE CALIBRATION")}

SIGNATURE PHRASES (use naturally, not forced):
{SIGNATURE_PHRASES}

WRITING MECHANICS:
- Short paragraphs that punch
- One idea per paragraph
- No jargon, no corporate speak
- Simple words over impressive ones
- 1000-1500 words (these are leadership tools, not blog posts)

{banner("ANTI-PATTERNS: IF YOU PRODUCE THESE, YOU HAVE FAILED")}

EXPLICITLY FORBIDDEN:
❌ "5 tips" or any listicle format
❌ "In today's competitive landscape..." or any throat-clearing opener
❌ Motivational language ("You've got this!", "Crush it!")
❌ Hustle/grind framing ("Work harder", "Outwork the competition")
❌ Generic best practices ("Communicate clearly with your team")
❌ SEO-driven question headlines ("What is WIP and why does it matter?")
❌ Tool roundups or software recommendations
❌ Marketing CTAs ("Download our free guide!")
❌ False urgency ("Act now before it's too late!")
❌ Inspirational quotes from famous people
❌ Success theater ("Here's how I 10x'd my business")

IF YOU CANNOT SATISFY THE CONSTRAINTS, FAIL LOUDLY.
Return an error explaining which constraint you cannot meet.
Do not produce weak content to satisfy a request."""


def format_book_options() -> str:
    """Render BOOK_OPTIONS as the prompt bullet list."""
    return "\n".join(f'- "{b.title}" by {b.author} (ASIN: {b.asin})' for b in BOOK_OPTIONS)


def _numbered(values) -> str:
    return "\n".join(f"{i}. {v}" for i, v in enumerate(values, 1))


def _tool_lines(post: Union[Post, GeneratedPost]) -> str:
    tool = post.leadership_tool
    return (
        f"- Question: {tool.question}\n"
        f"- Prompt: {tool.prompt}\n"
        f"- Action: {tool.action}"
    )


class ContentGenerator:
    """Generate weekly editorial content with the Anthropic API."""

    def __init__(self, client: Optional[AnthropicClient] = None):
        self._client = client

    @property
    def client(self) -> AnthropicClient:
        if self._client is None:
            self._client = AnthropicClient()
        return self._client

    def _parse(self, text: str, label: str) -> dict:
        try:
            return parse_llm_json(text, label)
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to parse {label} response: {text[:500]}")
            raise ContentGenerationError(f"Failed to parse generated {label}: {e}") from e

    def _generate(self, prompt: str, max_tokens: int, system: str = SYSTEM_PROMPT,
                  model: Optional[str] = None) -> str:
        try:
            return self.client.generate(prompt=prompt, system=system, max_tokens=max_tokens, model=model)
        except AIClientError as e:
            raise ContentGenerationError(f"AI request failed: {e}") from e

    def generate_blog_post(self, existing_titles: List[str]) -> GeneratedPost:
        """
        Generate one weekly leadership article from a single prompt.

        Args:
            existing_titles: Titles already published, listed as topics to avoid

        Returns:
            GeneratedPost that passed every editorial check

        Raises:
            ContentGenerationError: On refusal, missing fields, or any anti-pattern hit
        """
        titles_context = ""
        if existing_titles:
            avoided = "\n".join(f"- {t}" for t in existing_titles)
            titles_context = f"\n\nAVOID THESE TOPICS (already covered):\n{avoided}"

        prompt = f"""Generate a weekly leadership article following the editorial playbook exactly.

CONTENT PILLARS (choose exactly ONE):
{_numbered(CONTENT_PILLARS)}

ARTICLE ARCHETYPES (choose exactly ONE):
{_numbered(ARTICLE_ARCHETYPES)}{titles_context}

Respond with a JSON object in this EXACT format:
{{
  "pillar": "exact pillar name from list above",
  "archetype": "exact archetype name from list above",
  "title": "Compelling title that signals the core tension (no SEO-bait questions)",
  "slug": "url-friendly-slug-with-hyphens",
  "excerpt": "2-3 sentences in Martin's voice, direct, specific, no fluff (150-200 chars)",
  "content": "Full article in Markdown. MUST include '{LEADERSHIP_SECTION_HEADING}' section with The Question, The Prompt, and The Action. 1000-1500 words.",
  "leadershipTool": {{
    "question": "The uncomfortable alignment question",
    "prompt": "The clarity-forcing discussion starter",
    "action": "Specific 7-day action with ownership"
  }},
  "books": [
    {{
      "title": "Book Title",
      "author": "Author Name",
      "asin": "Amazon ASIN",
      "description": "One sentence on why this book matters for this specific topic"
    }}
  ]
}}

BOOK OPTIONS (choose 2-3 most relevant):
{format_book_options()}

Return ONLY the JSON object, no other text.
If you cannot satisfy all editorial constraints, return: {{"error": "explanation of which constraint cannot be met"}}"""

        text = self._generate(prompt, max_tokens=6000)
        data = self._parse(text, "post")

        if data.get("error"):
            raise ContentGenerationError(f"Model refused to generate: {data['error']}")

        if not all(data.get(k) for k in ("title", "slug", "content", "excerpt")):
            raise ContentGenerationError("Missing required fields in generated post")

        if data.get("pillar") not in CONTENT_PILLARS:
            raise ContentGenerationError(
                f"Invalid or missing pillar. Must be one of: {', '.join(CONTENT_PILLARS)}"
            )

        if data.get("archetype") not in ARTICLE_ARCHETYPES:
            raise ContentGenerationError(
                f"Invalid or missing archetype. Must be one of: {', '.join(ARTICLE_ARCHETYPES)}"
            )

        tool = data.get("leadershipTool") or {}
        if not isinstance(tool, dict) or not all(tool.get(k) for k in ("question", "prompt", "action")):
            raise ContentGenerationError("Missing required Leadership Tool section (question, prompt, action)")

        if LEADERSHIP_SECTION_HEADING not in data["content"]:
            raise ContentGenerationError(
                f'Article content must include "{LEADERSHIP_SECTION_HEADING}" section'
            )

        books = data.get("books")
        if not isinstance(books, list) or not 2 <= len(books) <= 3:
            raise ContentGenerationError("Expected 2-3 book recommendations")

        for pattern, name in ARTICLE_ANTI_PATTERNS:
            if pattern.search(data["content"]):
                raise ContentGenerationError(f"Anti-pattern detected: {name}. Article rejected.")

        try:
            post = GeneratedPost.model_validate(data)
        except ValidationError as e:
            raise ContentGenerationError(f"Generated post failed validation: {e}") from e

        logger.info(f"✓ Article generated: \"{post.title}\" ({post.pillar} / {post.archetype})")
        return post

    def generate_weekly_email(self, post: Union[Post, GeneratedPost]) -> GeneratedEmail:
        """
        Generate the email companion for an article.

        The email is a meeting nudge, not a recap. Subject length and
        newsletter-voice phrases are checked before it is returned.
        """
        if post.leadership_tool is None:
            raise ContentGenerationError("Post must have a leadership tool to generate an email")

        prompt = f"""Generate a weekly leadership email companion for this article.

ARTICLE TITLE: "{post.title}"
ARTICLE PILLAR: {post.pillar}
ARTICLE ARCHETYPE: {post.archetype}
LEADERSHIP TOOL:
{_tool_lines(post)}

ARTICLE EXCERPT: "{post.excerpt}"

EMAIL REQUIREMENTS:
1. SHORTER than the article. This is a meeting nudge, not a summary
2. Focus on helping the reader USE the idea in their next leadership meeting
3. DO NOT recap the article, assume they'll read it
4. DO NOT use newsletter voice ("Happy Monday!", "In this week's issue...")
5. Write as Martin: direct, human, grounded

MUST INCLUDE:
- One sharpened leadership prompt (can be adapted from article)
- One "watch for this" warning (what will resist this change)
- One execution nudge (how to actually do the thing)

Respond with JSON in this EXACT format:
{{
  "subject": "Email subject line, direct, no clickbait (under 50 chars)",
  "preheader": "Preview text that appears after subject (under 100 chars)",
  "body": "The email body in plain text. 150-250 words max. Direct, human, focused on meeting utility.",
  "leadershipPrompt": "One sharpened prompt to bring to the meeting",
  "watchFor": "One specific resistance pattern to anticipate",
  "executionNudge": "One concrete way to actually do this"
}}

Return ONLY the JSON object."""

        text = self._generate(prompt, max_tokens=2000)
        data = self._parse(text, "email")

        required = ("subject", "body", "leadershipPrompt", "watchFor", "executionNudge")
        if not all(data.get(k) for k in required):
            raise ContentGenerationError("Missing required fields in generated email")

        if len(data["subject"]) > MAX_SUBJECT_LENGTH:
            raise ContentGenerationError(f"Email subject too long (max {MAX_SUBJECT_LENGTH} chars)")

        for pattern in NEWSLETTER_PATTERNS:
            if pattern.search(data["body"]):
                raise ContentGenerationError("Email uses newsletter voice. Rejected.")

        try:
            email = GeneratedEmail.model_validate(data)
        except ValidationError as e:
            raise ContentGenerationError(f"Generated email failed validation: {e}") from e

        logger.info(f"✓ Email generated: \"{email.subject}\"")
        return email

    def generate_linkedin_pack(self, post: Union[Post, GeneratedPost], article_url: str) -> GeneratedLinkedInPack:
        """Draft the LinkedIn pack for an article."""
        tool_section = _tool_lines(post) if post.leadership_tool else "- (none)"

        prompt = f"""Draft a LinkedIn pack that points leadership teams to this week's article.

ARTICLE TITLE: "{post.title}"
ARTICLE PILLAR: {post.pillar}
ARTICLE EXCERPT: "{post.excerpt}"
LEADERSHIP TOOL:
{tool_section}
ARTICLE URL: {article_url}

PACK REQUIREMENTS:
1. Write as Martin: calm, direct, experienced peer. No hashtag walls, no emoji bullets.
2. The primary post names the tension from the article in the first line. 150-250 words.
3. The short version is the same idea in under 300 characters.
4. Exactly 3 comment starters: first comments Martin can post under his own post to start a real discussion.
5. Exactly 3 reply angles: how Martin should respond when owners push back or share their own story.
6. The article link line is one sentence that invites the reader to the full article, ending with the URL.
7. No marketing CTAs, no "link in comments", no engagement bait.

Respond with JSON in this EXACT format:
{{
  "primaryPost": "The full LinkedIn post",
  "shortVersion": "The short version",
  "commentStarters": ["starter 1", "starter 2", "starter 3"],
  "replyAngles": ["angle 1", "angle 2", "angle 3"],
  "articleLink": "One sentence ending with {article_url}"
}}

Return ONLY the JSON object."""

        text = self._generate(prompt, max_tokens=2000)
        data = self._parse(text, "LinkedIn pack")

        if not data.get("primaryPost") or not data.get("shortVersion"):
            raise ContentGenerationError("Missing required fields in generated LinkedIn pack")

        for key in ("commentStarters", "replyAngles"):
            items = data.get(key)
            if not isinstance(items, list) or len(items) < 3:
                raise ContentGenerationError(f"Expected 3 {key} in generated LinkedIn pack")
            data[key] = [str(item) for item in items[:3]]

        if not data.get("articleLink"):
            data["articleLink"] = f"Read the full article: {article_url}"

        try:
            pack = GeneratedLinkedInPack.model_validate(data)
        except ValidationError as e:
            raise ContentGenerationError(f"Generated LinkedIn pack failed validation: {e}") from e

        logger.info("✓ LinkedIn pack generated")
        return pack

    def generate_social_posts(self, title: str, content: str) -> SocialPosts:
        """
        Repurpose an article into LinkedIn and X/Twitter copy with the fast model.

        Returns a canned response when no API key is configured.
        """
        if self._client is None and not os.getenv("ANTHROPIC_API_KEY"):
            logger.warning("⚠ ANTHROPIC_API_KEY not set, returning mock social posts")
            return mock_social_posts(title)

        prompt = f"""You are an expert social media manager for a high-end construction business consultancy.
Your goal is to repurpose the following blog post into engaging social media content.

BLOG TITLE: "{title}"
BLOG CONTENT: "{content[:SOCIAL_CONTENT_LIMIT]}..." (truncated for context)

Please generate two distinct posts in JSON format:
1. "linkedin": A professional, engaging LinkedIn post. Use line breaks for readability. 3-4 hashtags. Professional but bold tone.
2. "twitter": A punchy X/Twitter post (under 280 chars). Use 1-2 hashtags.

Return ONLY valid JSON: {{ "linkedin": "string", "twitter": "string" }}"""

        text = self._generate(
            prompt,
            max_tokens=1024,
            system="You repurpose long-form articles into social media posts.",
            model=FAST_MODEL,
        )
        data = self._parse(text, "social")

        try:
            return SocialPosts.model_validate(data)
        except ValidationError as e:
            raise ContentGenerationError(f"Generated social posts failed validation: {e}") from e


def mock_social_posts(title: str) -> SocialPosts:
    """Placeholder copy used when the AI service is not configured."""
    return SocialPosts(
        linkedin=(
            f"**{title}**\n\n"
            "In the construction business, we often get caught up in the daily noise...\n\n"
            "(This is a mock response. Configure ANTHROPIC_API_KEY to generate real insights.)\n\n"
            "#Construction #Leadership #BuildBetter"
        ),
        twitter=(
            f"{title}\n\n"
            "Stop bidding everything. Start building better.\n\n"
            "#Construction #Leadership"
        ),
    )


def generate_blog_post(existing_titles: List[str], client: Optional[AnthropicClient] = None) -> GeneratedPost:
    return ContentGenerator(client).generate_blog_post(existing_titles)


def generate_weekly_email(post: Union[Post, GeneratedPost],
                          client: Optional[AnthropicClient] = None) -> GeneratedEmail:
    return ContentGenerator(client).generate_weekly_email(post)


def generate_linkedin_pack(post: Union[Post, GeneratedPost], article_url: str,
                           client: Optional[AnthropicClient] = None) -> GeneratedLinkedInPack:
    return ContentGenerator(client).generate_linkedin_pack(post, article_url)


def generate_social_posts(title: str, content: str,
                          client: Optional[AnthropicClient] = None) -> SocialPosts:
    return ContentGenerator(client).generate_social_posts(title, content)
