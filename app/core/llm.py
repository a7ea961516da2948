"""LLM client utilities: OpenAI client, retry with backoff, response parsing."""

import json
import re
import time
from collections.abc import Callable
from typing import Any, TypeVar

from openai import APIConnectionError, APIStatusError, OpenAI

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def get_openai_client() -> OpenAI:
    """
    Get an OpenAI client configured from settings.

    SDK-level retries are disabled; call_with_backoff owns the retry policy.
    """
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0)


def is_retryable(error: Exception) -> bool:
    """
    Transient failures: network errors, 429 and 5xx.

    Other 4xx responses are treated as permanent.
    """
    # APITimeoutError subclasses APIConnectionError
    if isinstance(error, APIConnectionError):
        return True
    if isinstance(error, APIStatusError):
        return error.status_code == 429 or error.status_code >= 500
    return False


def call_with_backoff(
    fn: Callable[[], T],
    max_retries: int = 2,
    base_delay: float = 1.0,
    sleep: Callable[[float], Any] | None = None,
) -> T:
    """
    Call fn, retrying transient failures with exponential backoff.

    Args:
        fn: Zero-argument callable performing the request
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry; doubles each retry
        sleep: Sleep function, time.sleep when omitted

    Returns:
        Result of fn

    Raises:
        The last error once retries are exhausted, or immediately for
        non-retryable errors
    """
    sleep = sleep or time.sleep
    for attempt in range(max_retries + 1):
        try:
            return fn()
        except Exception as e:
            if not is_retryable(e) or attempt >= max_retries:
                raise
            delay = base_delay * (2**attempt)
            logger.warning(f"Attempt {attempt + 1} failed: {e}. Retry in {delay}s")
            sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("call_with_backoff exhausted without result")


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    # Extract JSON from markdown code fences
    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    # Fallback: strip leading/trailing fences without regex
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json(raw_output: str) -> Any:
    """
    Parse LLM output as JSON.

    Handles common LLM response quirks:
    - Markdown code fences (```json ... ```)
    - Leading/trailing whitespace

    Args:
        raw_output: Raw string from LLM response

    Returns:
        Parsed JSON value (object, array, ...)

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
    """
    cleaned = _strip_llm_fences(raw_output)
    return json.loads(cleaned)
