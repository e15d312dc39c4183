"""
Thin Anthropic Messages API client for editorial generation.
"""

import os
import re
import requests
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from dotenv import load_dotenv

import tiktoken

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
FAST_MODEL = "claude-3-haiku-20240307"

# Model-specific token limits, context windows, and pricing (USD per million tokens)
MODEL_LIMITS = {
    "claude-sonnet-4-5-20250929": {
        "context_window": 200000,
        "max_output_tokens": 64000,
        "tiktoken_model": "cl100k_base",  # Closest public approximation of the Claude tokenizer
        "input_cost_per_million": 3.00,
        "output_cost_per_million": 15.00,
        "display_name": "Claude Sonnet 4.5"
    },
    "claude-3-haiku-20240307": {
        "context_window": 200000,
        "max_output_tokens": 4096,
        "tiktoken_model": "cl100k_base",
        "input_cost_per_million": 0.25,
        "output_cost_per_million": 1.25,
        "display_name": "Claude 3 Haiku"
    },
}

# Status codes worth retrying: rate limited, server errors, overloaded
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504, 529}


class AIClientError(Exception):
    """Custom exception for AI client errors."""
    pass


class TokenLimitExceededError(AIClientError):
    """Raised when input tokens exceed model limits."""
    pass


class AIResponseError(AIClientError):
    """Raised when AI response is invalid or malformed."""
    pass


class AnthropicClient:
    """Minimal client for the Anthropic Messages API."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None) -> None:
        self.api_key: Optional[str] = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model: str = model or os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL)
        self.timeout: float = int(os.getenv("AI_TIMEOUT_MS", "300000")) / 1000.0
        self.default_max_tokens: int = int(os.getenv("AI_MAX_TOKENS", "2000"))
        self.max_retries: int = max(1, int(os.getenv("AI_MAX_RETRIES", "5")))
        self.retry_base_delay: float = float(os.getenv("AI_RETRY_BASE_DELAY", "4"))
        self.retry_max_delay: float = float(os.getenv("AI_RETRY_MAX_DELAY", "120"))

        # Token validation settings
        self.validate_tokens: bool = os.getenv("AI_VALIDATE_TOKENS", "true").lower() == "true"

        if not self.api_key:
            raise AIClientError("ANTHROPIC_API_KEY is required")

        self.base_url: str = ANTHROPIC_API_URL
        self._init_tokenizer()

    def _init_tokenizer(self) -> None:
        """Initialize the tokenizer used for pre-flight token estimates."""
        model_config = MODEL_LIMITS.get(self.model, MODEL_LIMITS[DEFAULT_MODEL])
        self.model_config: Dict[str, Any] = model_config
        try:
            self.tokenizer = tiktoken.get_encoding(model_config["tiktoken_model"])
        except Exception as e:
            logger.warning(f"Failed to load tokenizer, falling back to character estimate: {e}")
            self.tokenizer = None

        logger.info(f"Initialized AI client for {self.model}")

    def _config_for(self, model: str) -> Dict[str, Any]:
        return MODEL_LIMITS.get(model, self.model_config)

    def _count_tokens(self, text: str) -> int:
        """Count tokens in text using tiktoken."""
        if self.tokenizer is None:
            # Fallback to character-based estimation when tiktoken fails
            return len(text) // 4
        return len(self.tokenizer.encode(text))

    def _validate_token_limits(self, system: str, prompt: str, max_tokens: int, model: str) -> None:
        """Validate that the request doesn't exceed token limits."""
        if not self.validate_tokens:
            return

        if max_tokens <= 0:
            raise TokenLimitExceededError(f"max_tokens must be positive, got: {max_tokens}")

        model_config = self._config_for(model)
        input_tokens = self._count_tokens(system + "\n\n" + prompt)
        total_tokens = input_tokens + max_tokens

        if max_tokens > model_config["max_output_tokens"]:
            raise TokenLimitExceededError(
                f"Output tokens ({max_tokens:,}) exceed model limit ({model_config['max_output_tokens']:,})"
            )

        if total_tokens > model_config["context_window"]:
            raise TokenLimitExceededError(
                f"Total tokens ({total_tokens:,}) exceed context window ({model_config['context_window']:,})"
            )

        logger.debug(f"Token validation passed - Input: {input_tokens:,}, Max output: {max_tokens:,}")

    def _retry_delay(self, attempt: int, response: Optional[requests.Response] = None) -> float:
        """Exponential backoff, honouring a numeric retry-after header when present."""
        if response is not None:
            retry_after = response.headers.get("retry-after")
            if retry_after:
                try:
                    return min(max(float(retry_after), 0.0), self.retry_max_delay)
                except ValueError:
                    pass
        return min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)

    def generate(self, prompt: str, system: str, max_tokens: Optional[int] = None,
                 model: Optional[str] = None) -> str:
        """Generate text with the Messages API and return the first text block."""
        max_tokens = max_tokens or self.default_max_tokens
        model = model or self.model

        self._validate_token_limits(system, prompt, max_tokens, model)

        start_time = time.time()
        request_timestamp = datetime.now(timezone.utc).isoformat()

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

        payload = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [
                {"role": "user", "content": prompt},
            ],
        }

        data = self._post_with_retry(headers, payload, start_time)

        response_time = time.time() - start_time
        self._log_token_usage(data, model, system, prompt, response_time, request_timestamp)

        for block in data.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text":
                return block.get("text", "")

        sanitized_data = self._sanitize_response_for_logging(data)
        logger.error("Unexpected response format from AI service: %s", sanitized_data)
        raise AIResponseError("No text content in response")

    def _post_with_retry(self, headers: Dict[str, str], payload: Dict[str, Any],
                         start_time: float) -> Dict[str, Any]:
        """POST the request, retrying on rate limits and overload."""
        for attempt in range(self.max_retries):
            resp = None
            try:
                resp = requests.post(self.base_url, headers=headers, json=payload, timeout=self.timeout)
                if resp.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries - 1:
                    delay = self._retry_delay(attempt, resp)
                    logger.warning(
                        f"AI API returned {resp.status_code}, retrying in {delay:.0f}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    continue
                resp.raise_for_status()
                return resp.json()
            except requests.exceptions.Timeout:
                response_time = time.time() - start_time
                logger.error(f"AI request timed out after {self.timeout}s (actual: {response_time:.2f}s)")
                raise AIClientError(f"Request timed out after {self.timeout}s")
            except requests.exceptions.HTTPError as e:
                response_time = time.time() - start_time
                status = getattr(resp, "status_code", "unknown")
                reason = getattr(resp, "reason", "")
                logger.error("AI request failed: status=%s reason=%s response_time=%.2fs",
                             status, reason, response_time)
                try:
                    err = resp.json()
                    safe = {k: err.get(k) for k in ("error", "type", "message") if k in err}
                    logger.error("AI error (sanitized): %s", safe)
                except ValueError:
                    sanitized_text = self._sanitize_error_text(getattr(resp, "text", ""))
                    logger.debug("AI error body (non-JSON, sanitized): %s", sanitized_text)
                raise AIClientError(f"HTTP {status}: {reason}") from e
            except requests.exceptions.JSONDecodeError as e:
                raise AIResponseError(f"AI service returned invalid JSON: {e}") from e
            except requests.exceptions.RequestException as e:
                response_time = time.time() - start_time
                logger.error("AI request error: %s (response_time=%.2fs)", e, response_time)
                raise AIClientError(f"Request failed: {e}") from e
            except ValueError as e:
                raise AIResponseError(f"AI service returned invalid JSON: {e}") from e

        raise AIClientError(f"AI request failed after {self.max_retries} attempts")

    def _log_token_usage(self, response_data: dict, model: str, system: str, prompt: str,
                         response_time: float, request_timestamp: str) -> None:
        """Log model, tokens, response time, and estimated cost for the call."""
        try:
            usage = response_data.get("usage") or {}
            input_tokens = usage.get("input_tokens", 0)
            output_tokens = usage.get("output_tokens", 0)

            if input_tokens == 0 and output_tokens == 0:
                input_tokens = self._count_tokens(system + "\n\n" + prompt)
                text = "".join(
                    block.get("text", "") for block in response_data.get("content") or []
                    if isinstance(block, dict)
                )
                output_tokens = self._count_tokens(text)

            model_info = self._config_for(model)
            model_name = model_info.get("display_name", model)
            total_tokens = input_tokens + output_tokens
            total_cost = (
                input_tokens / 1_000_000 * model_info.get("input_cost_per_million", 0.0)
                + output_tokens / 1_000_000 * model_info.get("output_cost_per_million", 0.0)
            )

            logger.info(
                f"AI_USAGE - Model: {model_name} | "
                f"Input: {input_tokens:,} tokens | Output: {output_tokens:,} tokens | "
                f"Total: {total_tokens:,} tokens | Response Time: {response_time:.2f}s | "
                f"Cost: ${total_cost:.4f} | Timestamp: {request_timestamp}"
            )

            logger.info(
                f"AI_USAGE_STRUCTURED - "
                f"model={model} display_name={model_name} "
                f"input_tokens={input_tokens} output_tokens={output_tokens} total_tokens={total_tokens} "
                f"response_time={response_time:.3f} cost={total_cost:.6f} "
                f"stop_reason={response_data.get('stop_reason')} timestamp={request_timestamp}"
            )

        except Exception as e:
            logger.warning(f"Failed to log token usage: {e}")

    def _sanitize_response_for_logging(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Sanitize response data for logging to avoid leaking model output."""
        sanitized = {}
        for key, value in data.items():
            if key in ["content", "text", "output"]:
                sanitized[key] = f"[TRUNCATED: {len(str(value))} chars]"
            elif key in ["error", "message", "type"]:
                if isinstance(value, str):
                    sanitized[key] = self._sanitize_error_text(value)
                else:
                    sanitized[key] = value
            else:
                sanitized[key] = value
        return sanitized

    def _sanitize_error_text(self, text: str) -> str:
        """Sanitize error text to remove potential secrets or PII."""
        if not text:
            return ""

        if len(text) > 256:
            text = text[:256] + "..."

        text = re.sub(r'[A-Za-z0-9_-]{20,}', '[REDACTED]', text)
        text = re.sub(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b', '[EMAIL_REDACTED]', text)
        text = re.sub(r'https?://[^\s]+', '[URL_REDACTED]', text)

        return text
