"""
MCP Server — Code Review Agent

PURPOSE:
    The interface for AI agents. Agents connect via MCP (Model Context
    Protocol) over stdio and get two tools:

    1. analyze_repo — Flatten a repository into one text blob (no LLM call).
    2. code_review  — Flatten a repository and return a structured LLM review.

ARCHITECTURE:
    Uses the official MCP Python SDK (mcp package) with stdio transport.
    Tools are registered with the @mcp.tool() decorator and return plain
    dicts that agents can consume directly.

    Failures never cross the protocol boundary as exceptions. Each tool
    returns {"isError": True, "error": "<message>"} instead, so the calling
    agent always gets a readable explanation.

INSTALLATION:
    pip install -e .
    npm install -g repomix

    Then add to your MCP config (e.g., Claude Desktop mcp.json):
    {
      "mcpServers": {
        "code-review": {
          "command": "code-review-server",
          "env": {
            "LLM_PROVIDER": "ANTHROPIC",
            "ANTHROPIC_API_KEY": "..."
          }
        }
      }
    }
"""

import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from review_agent.errors import ConfigurationError, ReviewAgentError
from review_agent.log_config import configure_logging
from review_agent.review_pipeline_main import review_codebase
from review_agent.stage_1_load_config import LLMConfig, load_llm_config, load_repomix_command
from review_agent.stage_2_flatten_repo import flatten_repository
from review_agent.stage_4_build_review_prompt import DETAIL_LEVELS, FOCUS_AREAS

logger = logging.getLogger(__name__)

SERVER_NAME = "code-review-server"

# -----------------------------------------------------------------------
# CONFIGURATION
# -----------------------------------------------------------------------
# The LLM config is loaded on the first code_review call rather than at
# import, so analyze_repo works on machines with no API key configured.
# Once loaded it is reused for the lifetime of the process.
# -----------------------------------------------------------------------

_config: Optional[LLMConfig] = None


def _get_config() -> LLMConfig:
    global _config
    if _config is None:
        _config = load_llm_config()
    return _config


def _error_response(message: str) -> dict:
    return {"isError": True, "error": message}


# -----------------------------------------------------------------------
# MCP SERVER DEFINITION
# -----------------------------------------------------------------------

mcp = FastMCP(SERVER_NAME)


@mcp.tool()
async def analyze_repo(
    repo_path: str,
    specific_files: Optional[List[str]] = None,
    file_types: Optional[List[str]] = None,
) -> dict:
    """
    Flatten a code repository into a single textual representation.

    Use this tool when you need to analyze a repository's structure without
    performing a review. It is ideal for a high-level overview of code
    organization, directory structure and file contents. Use it before
    code_review when you need to understand the codebase first, or when a
    full review is not needed.

    Args:
        repo_path: Path to the repository to analyze.
        specific_files: Specific files to analyze, relative to repo_path.
        file_types: File types to include, e.g. [".py", ".ts"].
    """
    command = _config.repomix_command if _config is not None else load_repomix_command()
    try:
        content = await asyncio.to_thread(
            flatten_repository,
            repo_path,
            specific_files=specific_files,
            file_types=file_types,
            command=command,
        )
    except ReviewAgentError as e:
        logger.error("analyze_repo failed for %s: %s", repo_path, e)
        return _error_response(f"Error analyzing repository: {e}")
    except Exception as e:
        logger.exception("Unexpected error in analyze_repo for %s", repo_path)
        return _error_response(f"Error analyzing repository: {e}")

    return {
        "repo_path": repo_path,
        "characters": len(content),
        "content": content,
    }


@mcp.tool()
async def code_review(
    repo_path: str,
    specific_files: Optional[List[str]] = None,
    file_types: Optional[List[str]] = None,
    detail_level: str = "detailed",
    focus_areas: Optional[List[str]] = None,
) -> dict:
    """
    Perform an LLM code review of a repository or specific files.

    Use this tool when you need a comprehensive review with specific
    feedback on code quality, security issues, performance problems and
    maintainability. Returns structured results: a summary, issues with
    type, severity, line numbers and recommended fixes, strengths, and
    overall recommendations.

    Args:
        repo_path: Path to the repository to review.
        specific_files: Specific files to review, relative to repo_path.
        file_types: File types to include, e.g. [".py", ".ts"].
        detail_level: "basic" or "detailed". Default: "detailed".
        focus_areas: Any of "security", "performance", "quality",
                     "maintainability". Default: all four.
    """
    if detail_level not in DETAIL_LEVELS:
        return _error_response(
            f"Invalid detail_level: {detail_level}. Must be one of: {', '.join(DETAIL_LEVELS)}"
        )

    unknown_areas = [a for a in focus_areas or [] if str(a).strip().lower() not in FOCUS_AREAS]
    if unknown_areas:
        return _error_response(
            f"Invalid focus_areas: {', '.join(map(str, unknown_areas))}. "
            f"Must be any of: {', '.join(FOCUS_AREAS)}"
        )

    try:
        config = _get_config()
    except ConfigurationError as e:
        logger.error("Code review service is not configured: %s", e)
        return _error_response(
            f"Error initializing code review service: {e}. Make sure you have set the "
            f"necessary environment variables (LLM_PROVIDER and the corresponding API key)."
        )

    try:
        flattened = await asyncio.to_thread(
            flatten_repository,
            repo_path,
            specific_files=specific_files,
            file_types=file_types,
            command=config.repomix_command,
        )
        return await review_codebase(
            flattened,
            config,
            detail_level=detail_level,
            focus_areas=focus_areas,
        )
    except (ReviewAgentError, ValueError) as e:
        logger.error("code_review failed for %s: %s", repo_path, e)
        return _error_response(f"Error performing code review: {e}")
    except Exception as e:
        logger.exception("Unexpected error in code_review for %s", repo_path)
        return _error_response(f"Error performing code review: {e}")


# -----------------------------------------------------------------------
# ENTRY POINT
# -----------------------------------------------------------------------
# Run the server via stdio transport. Agents connect by launching this
# module as a subprocess. Uncaught errors are logged instead of killing the
# process, so one bad request cannot take the server down.
# -----------------------------------------------------------------------


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    logger.error(
        "Unhandled error in event loop: %s",
        context.get("message", "no message"),
        exc_info=(type(exc), exc, exc.__traceback__) if exc is not None else None,
    )


def _log_uncaught_exception(exc_type, exc_value, exc_traceback) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


async def main() -> None:
    """Start the MCP server with stdio transport."""
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    logger.info("Starting %s on stdio", SERVER_NAME)
    await mcp.run_stdio_async()


def run() -> None:
    load_dotenv()
    configure_logging()
    sys.excepthook = _log_uncaught_exception
    asyncio.run(main())


if __name__ == "__main__":
    run()
