"""
Stage 1: Load Config — Code Review Agent

PURPOSE:
    Read every environment setting the pipeline needs exactly once and freeze
    it into an LLMConfig. Later stages receive the LLMConfig as an argument
    instead of reaching into os.environ themselves, so tests can build one
    directly and two configs can coexist in one process.

CALLED BY:
    review_pipeline_main.py (CLI start) and the MCP server (first code_review
    call). Both catch ConfigurationError and show its message to the user.

ENVIRONMENT:
    LLM_PROVIDER                 OPEN_AI | ANTHROPIC | GEMINI (required)
    OPENAI_API_KEY / ANTHROPIC_API_KEY / GEMINI_API_KEY
                                 Key for the selected provider (required)
    OPENAI_MODEL / ANTHROPIC_MODEL / GEMINI_MODEL
                                 Optional model override
    LLM_MAX_RETRIES              Retries for transient API errors (default 3)
    LLM_RETRY_INITIAL_DELAY_MS   First backoff delay (default 1000)
    LLM_REQUEST_TIMEOUT_SECONDS  Per-request HTTP timeout (default 120)
    LLM_MAX_OUTPUT_TOKENS        Output token cap sent to the API (default 4000)
    REVIEW_MAX_CHUNK_CHARS       Chunk size limit in characters (default 100000)
    REVIEW_CHUNK_STRATEGY        first | all (default first)
    REPOMIX_COMMAND              Flattener executable (default repomix)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from review_agent.errors import ConfigurationError

SUPPORTED_PROVIDERS = ("OPEN_AI", "ANTHROPIC", "GEMINI")

API_KEY_ENV_VARS = {
    "OPEN_AI": "OPENAI_API_KEY",
    "ANTHROPIC": "ANTHROPIC_API_KEY",
    "GEMINI": "GEMINI_API_KEY",
}

MODEL_ENV_VARS = {
    "OPEN_AI": "OPENAI_MODEL",
    "ANTHROPIC": "ANTHROPIC_MODEL",
    "GEMINI": "GEMINI_MODEL",
}

DEFAULT_MODELS = {
    "OPEN_AI": "gpt-4o",
    "ANTHROPIC": "claude-3-opus-20240229",
    "GEMINI": "gemini-1.5-pro",
}

CHUNK_STRATEGIES = ("first", "all")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_REQUEST_TIMEOUT_S = 120.0
DEFAULT_MAX_OUTPUT_TOKENS = 4000
DEFAULT_MAX_CHUNK_CHARS = 100000
DEFAULT_REPOMIX_COMMAND = "repomix"


@dataclass(frozen=True)
class LLMConfig:
    """Immutable settings for one review process."""

    provider: str
    model: str
    api_key: str
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    chunk_strategy: str = "first"
    repomix_command: str = DEFAULT_REPOMIX_COMMAND


def load_llm_config(environ: Optional[Mapping[str, str]] = None) -> LLMConfig:
    """
    Build an LLMConfig from environment variables.

    Args:
        environ: Mapping to read from. Defaults to os.environ. Tests pass a
                 plain dict so they never touch the real environment.

    Returns:
        A validated LLMConfig.

    Raises:
        ConfigurationError: Missing/unsupported LLM_PROVIDER, missing API key,
                            or a numeric setting that does not parse.
    """
    env = os.environ if environ is None else environ

    provider = env.get("LLM_PROVIDER", "").strip().upper()
    if not provider:
        raise ConfigurationError(
            "LLM_PROVIDER environment variable is required. "
            "Set it to OPEN_AI, ANTHROPIC, or GEMINI."
        )
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(
            f"Unsupported LLM provider: {provider}. "
            f"Must be one of: {', '.join(SUPPORTED_PROVIDERS)}."
        )

    api_key_var = API_KEY_ENV_VARS[provider]
    api_key = env.get(api_key_var, "").strip()
    if not api_key:
        raise ConfigurationError(
            f"{api_key_var} environment variable is required for provider {provider}."
        )

    model = env.get(MODEL_ENV_VARS[provider], "").strip() or DEFAULT_MODELS[provider]

    chunk_strategy = env.get("REVIEW_CHUNK_STRATEGY", "first").strip().lower() or "first"
    if chunk_strategy not in CHUNK_STRATEGIES:
        raise ConfigurationError(
            f"REVIEW_CHUNK_STRATEGY must be one of: {', '.join(CHUNK_STRATEGIES)}. "
            f"Got: {chunk_strategy}"
        )

    return LLMConfig(
        provider=provider,
        model=model,
        api_key=api_key,
        max_retries=_read_int(env, "LLM_MAX_RETRIES", DEFAULT_MAX_RETRIES, minimum=0),
        initial_delay_ms=_read_int(env, "LLM_RETRY_INITIAL_DELAY_MS", DEFAULT_INITIAL_DELAY_MS, minimum=1),
        request_timeout_s=float(
            _read_int(env, "LLM_REQUEST_TIMEOUT_SECONDS", int(DEFAULT_REQUEST_TIMEOUT_S), minimum=1)
        ),
        max_output_tokens=_read_int(env, "LLM_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS, minimum=1),
        max_chunk_chars=_read_int(env, "REVIEW_MAX_CHUNK_CHARS", DEFAULT_MAX_CHUNK_CHARS, minimum=1),
        chunk_strategy=chunk_strategy,
        repomix_command=load_repomix_command(env),
    )


def load_repomix_command(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Read REPOMIX_COMMAND on its own.

    Flattening needs no API key, so analyze_repo can call this without a full
    LLMConfig.
    """
    env = os.environ if environ is None else environ
    return env.get("REPOMIX_COMMAND", "").strip() or DEFAULT_REPOMIX_COMMAND


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _read_int(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    """Parse an optional integer setting, rejecting junk and out-of-range values."""
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got: {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got: {value}")
    return value
