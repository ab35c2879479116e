"""
Error Taxonomy — Code Review Agent

PURPOSE:
    Every failure the pipeline can surface is one of the classes below. The
    split matters for exactly one decision: whether the retry wrapper in
    retry_with_backoff.py is allowed to try again.

    - ConfigurationError:     bad/missing environment. Fatal, never retried.
    - RetryableAPIError:      HTTP or transport failure talking to the LLM.
                              Retried while its `retryable` flag is True.
    - MalformedResponseError: the LLM answered, but not with the review JSON
                              we asked for. Retrying would reproduce the same
                              bad output, so it is never retried.
    - FlatteningError:        repomix failed or is not installed.

    The MCP server and the CLI catch ReviewAgentError and turn it into a
    human-readable message. Nothing below the entry points swallows these.
"""

from typing import Optional


class ReviewAgentError(Exception):
    """Base class for every error raised by the review pipeline."""


class ConfigurationError(ReviewAgentError):
    """Missing or unsupported provider, missing API key, bad numeric setting."""


class RetryableAPIError(ReviewAgentError):
    """
    A failed LLM API call that may succeed if attempted again.

    Args:
        message: Human-readable description of the failure.
        retryable: Set to False to force the retry wrapper to give up
                   immediately even though the failure came from the API.
        status_code: HTTP status if the server answered, None for transport
                     errors (DNS, connection reset, timeout).
    """

    def __init__(self, message: str, retryable: bool = True, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class MalformedResponseError(ReviewAgentError):
    """
    The LLM reply is not valid review JSON.

    Keeps the offending text on `raw_text` so callers can log or display it.
    """

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class FlatteningError(ReviewAgentError):
    """The repomix subprocess failed, timed out, or is unavailable."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr
