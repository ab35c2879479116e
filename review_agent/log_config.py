"""Logging setup shared by the CLI and the MCP server."""

import logging
import os
import sys
from typing import Optional, Union

LOG_LEVEL_ENV_VAR = "REVIEW_AGENT_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[Union[str, int]] = None) -> None:
    """
    Send all review_agent logging to stderr.

    stdout is never used: the MCP server speaks JSON-RPC on it, and the CLI
    prints the review report there.
    """
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV_VAR, DEFAULT_LOG_LEVEL)
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
