"""
Utility functions for parsing model output and normalizing user input.
"""

import json
import logging
import re
import unicodedata
from typing import Any, Dict

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Double-quoted JSON string literal, including escaped characters
_JSON_STRING_PATTERN = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")


def extract_json_text(text: str) -> str:
    """
    Pull the JSON object out of a model response.

    Strips markdown code fences and any chatter around the outermost object.

    Args:
        text: Raw text returned by the model

    Returns:
        Text that should parse as a single JSON object
    """
    json_string = (text or "").strip()

    if json_string.startswith("```json"):
        json_string = json_string[7:]
    elif json_string.startswith("```"):
        json_string = json_string[3:]
    if json_string.endswith("```"):
        json_string = json_string[:-3]
    json_string = json_string.strip()

    match = re.search(r"\{.*\}", json_string, re.DOTALL)
    if match:
        json_string = match.group(0)

    return json_string


def _escape_control_chars(match: re.Match) -> str:
    literal = match.group(0)
    literal = literal.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    return _CONTROL_CHARS.sub("", literal)


def parse_json_robust(json_string: str, agent_name: str) -> Any:
    """
    Parse JSON from a model response, repairing raw control characters in strings.

    Models sometimes emit literal newlines inside string values. The first
    attempt is a plain parse; the second escapes control characters inside
    string literals only.

    Args:
        json_string: The JSON text to parse
        agent_name: Name of the caller, used in log lines

    Returns:
        The parsed value

    Raises:
        json.JSONDecodeError: The original error if the repaired text still fails
    """
    try:
        return json.loads(json_string)
    except json.JSONDecodeError as first_error:
        logger.info(f"[{agent_name}] First parse failed, attempting to sanitize control characters...")
        sanitized = _JSON_STRING_PATTERN.sub(_escape_control_chars, json_string)
        try:
            result = json.loads(sanitized)
        except json.JSONDecodeError:
            logger.error(f"[{agent_name}] Sanitization failed. Original error: {first_error}")
            raise first_error
        logger.info(f"[{agent_name}] Sanitization successful")
        return result


def parse_llm_json(text: str, agent_name: str) -> Dict[str, Any]:
    """Extract and parse a JSON object from a model response."""
    parsed = parse_json_robust(extract_json_text(text), agent_name)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def slugify(text: str, max_length: int = 80) -> str:
    """Turn a title into a URL-friendly slug."""
    if not text:
        return "untitled"

    normalized = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")

    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")

    return slug or "untitled"


def is_valid_slug(slug: str) -> bool:
    """Check that a slug only contains lowercase letters, digits, and single hyphens."""
    if not slug or not isinstance(slug, str):
        return False
    return re.fullmatch(r"[a-z0-9]+(?:-[a-z0-9]+)*", slug) is not None


def word_count(content: str) -> int:
    """Count whitespace-separated words."""
    return len((content or "").split())


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    """Loose email check: something@domain.tld with no whitespace."""
    if not email or not isinstance(email, str):
        return False
    return EMAIL_PATTERN.match(email.strip()) is not None


def validate_record_id(record_id: str) -> bool:
    """
    Validate a database id before it is interpolated into a query filter.

    Args:
        record_id: The id to validate (UUID or numeric string)

    Returns:
        True if valid, False otherwise
    """
    if not record_id or not isinstance(record_id, str):
        return False

    if not record_id.isascii():
        return False

    # UUIDs and integer keys only: alphanumerics and hyphens
    if not record_id.replace("-", "").isalnum():
        return False

    if len(record_id) > 64:
        return False

    return True
