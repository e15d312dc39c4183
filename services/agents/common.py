"""
Shared plumbing for the editorial agents.
"""

import json
import logging
from typing import Any, Dict, Optional

from services.ai_client import AIClientError
from services.utils import parse_llm_json

logger = logging.getLogger(__name__)


class AgentError(Exception):
    """Raised when an agent cannot produce a valid result."""

    def __init__(self, agent_name: str, message: str):
        self.agent_name = agent_name
        super().__init__(f"[{agent_name}] {message}")


def call_agent(client, agent_name: str, system: str, prompt: str, max_tokens: int,
               model: Optional[str] = None) -> Dict[str, Any]:
    """
    Run one agent turn and return the parsed JSON object.

    Transport failures and unparseable output are both surfaced as AgentError.
    """
    try:
        text = client.generate(prompt=prompt, system=system, max_tokens=max_tokens, model=model)
    except AIClientError as e:
        raise AgentError(agent_name, f"AI request failed: {e}") from e

    if not text:
        raise AgentError(agent_name, "No text content in response")

    try:
        return parse_llm_json(text, agent_name)
    except (json.JSONDecodeError, ValueError) as e:
        logger.error(f"[{agent_name}] Failed to parse response: {text[:500]}")
        raise AgentError(agent_name, f"Parse failed: {e}") from e
