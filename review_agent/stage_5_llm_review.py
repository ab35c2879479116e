"""
Stage 5: LLM Review — Code Review Agent

PURPOSE:
    Send the prompt from Stage 4 to the configured LLM provider and turn the
    reply into a validated review dict:

        {"summary": str, "issues": [...], "strengths": [...], "recommendations": [...]}

    This is the only stage that costs money.

CALLED BY:
    review_pipeline_main.py — once per reviewed chunk.

EXTERNAL APIS USED:
    - OpenAI Chat Completions   (OPEN_AI)
    - Anthropic Messages        (ANTHROPIC)
    - Gemini generateContent    (GEMINI)
    All three are plain HTTPS + JSON, so we call them with `requests` rather
    than three vendor SDKs.

DESIGN DECISIONS:
    - Each provider is a small class with two methods: build_request() and
      extract_text(). get_provider() picks one from the LLMConfig once, and
      the rest of this module never branches on the provider name again.
    - The HTTP call runs in a worker thread (asyncio.to_thread) and is
      wrapped in call_with_retry. Transport errors and non-2xx statuses are
      RetryableAPIError; everything about the *content* of a reply is a
      MalformedResponseError and is not retried, because asking again with
      the same prompt at temperature 0 gives the same bad answer.
    - temperature=0 for reproducible reviews.
    - Parsing tolerates Markdown code fences and stray prose around the JSON
      (some models add them even when told not to), but the four top-level
      fields are mandatory. A partial review is rejected, never padded out.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from review_agent.errors import ConfigurationError, MalformedResponseError, RetryableAPIError
from review_agent.retry_with_backoff import call_with_retry
from review_agent.stage_1_load_config import LLMConfig

logger = logging.getLogger(__name__)

REQUIRED_LIST_FIELDS = ("issues", "strengths", "recommendations")

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass(frozen=True)
class HttpRequest:
    """Everything needed to POST one request to a provider."""

    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# PROVIDERS
# ---------------------------------------------------------------------------


class LLMProvider:
    """Request/response shape of one hosted LLM API."""

    name = ""

    def __init__(self, model: str, api_key: str, max_output_tokens: int = 4000):
        self.model = model
        self.api_key = api_key
        self.max_output_tokens = max_output_tokens

    def build_request(self, prompt: str) -> HttpRequest:
        raise NotImplementedError

    def extract_text(self, response_json: dict) -> str:
        raise NotImplementedError


class OpenAIProvider(LLMProvider):
    name = "OPEN_AI"
    endpoint = "https://api.openai.com/v1/chat/completions"

    def build_request(self, prompt: str) -> HttpRequest:
        return HttpRequest(
            url=self.endpoint,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            body={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": 0,
                "max_tokens": self.max_output_tokens,
                "response_format": {"type": "json_object"},
            },
        )

    def extract_text(self, response_json: dict) -> str:
        return response_json["choices"][0]["message"]["content"]


class AnthropicProvider(LLMProvider):
    name = "ANTHROPIC"
    endpoint = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def build_request(self, prompt: str) -> HttpRequest:
        return HttpRequest(
            url=self.endpoint,
            headers={
                "Content-Type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": self.api_version,
            },
            body={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": 0,
                "max_tokens": self.max_output_tokens,
            },
        )

    def extract_text(self, response_json: dict) -> str:
        # The reply is a list of content blocks; only "text" blocks carry prose.
        blocks = response_json["content"]
        texts = [b["text"] for b in blocks if b.get("type", "text") == "text"]
        if not texts:
            raise KeyError("content[].text")
        return "".join(texts)


class GeminiProvider(LLMProvider):
    name = "GEMINI"
    endpoint_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def build_request(self, prompt: str) -> HttpRequest:
        return HttpRequest(
            url=self.endpoint_template.format(model=self.model),
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": self.api_key,
            },
            body={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": 0,
                    "maxOutputTokens": self.max_output_tokens,
                    "responseMimeType": "application/json",
                },
            },
        )

    def extract_text(self, response_json: dict) -> str:
        parts = response_json["candidates"][0]["content"]["parts"]
        return "".join(p["text"] for p in parts if "text" in p)


PROVIDERS = {
    OpenAIProvider.name: OpenAIProvider,
    AnthropicProvider.name: AnthropicProvider,
    GeminiProvider.name: GeminiProvider,
}


def get_provider(config: LLMConfig) -> LLMProvider:
    """Instantiate the provider class selected by config.provider."""
    provider_cls = PROVIDERS.get(config.provider)
    if provider_cls is None:
        raise ConfigurationError(
            f"Unsupported LLM provider: {config.provider}. "
            f"Must be one of: {', '.join(PROVIDERS)}."
        )
    return provider_cls(config.model, config.api_key, config.max_output_tokens)


# ---------------------------------------------------------------------------
# REVIEW CALL
# ---------------------------------------------------------------------------


async def run_llm_review(
    prompt: str,
    config: LLMConfig,
    provider: Optional[LLMProvider] = None,
) -> dict:
    """
    Send the review prompt to the configured LLM and return the parsed review.

    Args:
        prompt: The complete prompt from Stage 4.
        config: Process-wide settings (provider, key, retry policy, timeout).
        provider: Override the provider built from config. Tests use this.

    Returns:
        The validated review dict.

    Raises:
        RetryableAPIError: The API kept failing after config.max_retries retries.
        MalformedResponseError: The reply was not valid review JSON.
    """
    provider = provider or get_provider(config)
    request = provider.build_request(prompt)

    async def attempt() -> dict:
        data = await asyncio.to_thread(_post_json, request, config.request_timeout_s)
        raw_text = _extract_text(provider, data)
        return parse_review_response(raw_text)

    logger.info(
        "Sending code review request to %s (model=%s, prompt_chars=%d)",
        provider.name,
        provider.model,
        len(prompt),
    )
    return await call_with_retry(attempt, config.max_retries, config.initial_delay_ms)


def parse_review_response(raw_text: str) -> dict:
    """
    Parse and validate the LLM's reply text.

    Handles several common response formats:
    1. Clean JSON (ideal case)
    2. JSON wrapped in Markdown code fences (```json ... ```)
    3. JSON with prose before/after it (between first { and last })

    Raises:
        MalformedResponseError: Not JSON, not an object, or missing/invalid
                                required fields. The raw text is logged.
    """
    review = _decode_json_object(raw_text)
    if review is None:
        _log_malformed("LLM response is not valid JSON", raw_text)
        raise MalformedResponseError("Failed to parse LLM response: not valid JSON", raw_text=raw_text)

    problems = _validate_review_schema(review)
    if problems:
        message = f"Invalid response structure from LLM: {'; '.join(problems)}"
        _log_malformed(message, raw_text)
        raise MalformedResponseError(f"Failed to parse LLM response: {message}", raw_text=raw_text)

    for issue in review["issues"]:
        for key in ("type", "severity"):
            if isinstance(issue.get(key), str):
                issue[key] = issue[key].strip().upper()

    return review


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _post_json(request: HttpRequest, timeout_s: float) -> dict:
    """Blocking POST. Runs in a worker thread."""
    try:
        response = requests.post(
            request.url,
            headers=request.headers,
            json=request.body,
            timeout=timeout_s,
        )
    except requests.RequestException as e:
        raise RetryableAPIError(f"LLM API request failed: {e}") from e

    if not response.ok:
        raise RetryableAPIError(
            f"LLM API request failed: {response.status_code} {response.reason} - {response.text[:500]}",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(
            "LLM API returned a body that is not JSON", raw_text=response.text
        ) from e


def _extract_text(provider: LLMProvider, data: Any) -> str:
    """Pull the reply text out of the provider envelope."""
    try:
        text = provider.extract_text(data)
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raw = _envelope_text(data)
        _log_malformed(f"Unexpected {provider.name} response envelope", raw)
        raise MalformedResponseError(
            f"Unexpected {provider.name} response envelope: missing {e}", raw_text=raw
        ) from e
    if not isinstance(text, str) or not text.strip():
        raw = _envelope_text(data)
        _log_malformed(f"{provider.name} returned an empty response", raw)
        raise MalformedResponseError(f"{provider.name} returned an empty response", raw_text=raw)
    return text


def _envelope_text(data: Any) -> str:
    return json.dumps(data)[:2000] if isinstance(data, (dict, list)) else str(data)


def _decode_json_object(raw_text: str) -> Optional[Any]:
    """Try the three supported layouts in order; None if none parses."""
    text = raw_text.strip()
    candidates = [text]

    # Clean JSON is tried first: review text may itself contain ``` fences.
    match = _FENCED_JSON.search(text)
    if match:
        candidates.append(match.group(1).strip())

    first_brace = text.find("{")
    last_brace = text.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        candidates.append(text[first_brace:last_brace + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    return None


def _validate_review_schema(review: Any) -> list:
    """
    Check the review has the required fields with the right shapes.

    Returns:
        List of problems. Empty list means valid.
    """
    if not isinstance(review, dict):
        return [f"expected a JSON object, got {type(review).__name__}"]

    problems = []

    summary = review.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        problems.append("missing summary")

    for name in REQUIRED_LIST_FIELDS:
        if name not in review:
            problems.append(f"missing {name}")
        elif not isinstance(review[name], list):
            problems.append(f"{name} must be a list")

    if problems:
        return problems

    for i, issue in enumerate(review["issues"]):
        if not isinstance(issue, dict):
            problems.append(f"issues[{i}] must be an object")
            continue
        line_numbers = issue.get("line_numbers")
        if line_numbers is not None and not (
            isinstance(line_numbers, list)
            and all(isinstance(n, int) and not isinstance(n, bool) for n in line_numbers)
        ):
            problems.append(f"issues[{i}].line_numbers must be a list of integers")

    return problems


def _log_malformed(message: str, raw_text: str) -> None:
    logger.error("%s. Response text:\n%s", message, raw_text)
