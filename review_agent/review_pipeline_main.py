"""
Review Pipeline Main — Code Review Agent

PURPOSE:
    Chain the stages into one code review and provide a command-line entry
    point for running a review without an MCP client.

    Stage flow:
      1. Load Config -> 2. Flatten Repo -> 3. Chunk Codebase
      -> 4. Build Review Prompt -> 5. LLM Review

    review_codebase() covers stages 3-5 for text that has already been
    flattened; the CLI and the MCP server run stage 2 first.

MULTI-CHUNK REVIEWS:
    When the flattened codebase is larger than config.max_chunk_chars it is
    split in Stage 3. With chunk_strategy="first" (the default) only the
    first chunk is reviewed and a warning names how many were dropped. With
    chunk_strategy="all" each chunk is reviewed in turn and the results are
    merged by merge_reviews(). Chunks are reviewed one after another, never
    in parallel, to stay inside provider rate limits.

USAGE:
    code-review <repo_path> [--files a.py,b.py] [--types .py,.ts]
                [--detail basic|detailed] [--focus security,performance]
                [--json] [--log-level DEBUG]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Iterable, List, Optional

from dotenv import load_dotenv

from review_agent.errors import ReviewAgentError
from review_agent.log_config import configure_logging
from review_agent.stage_1_load_config import LLMConfig, load_llm_config
from review_agent.stage_2_flatten_repo import flatten_repository
from review_agent.stage_3_chunk_codebase import prepare_codebase
from review_agent.stage_4_build_review_prompt import (
    DETAIL_LEVELS,
    FOCUS_AREAS,
    build_review_prompt,
)
from review_agent.stage_5_llm_review import LLMProvider, run_llm_review

logger = logging.getLogger(__name__)


async def review_codebase(
    flattened_output: str,
    config: LLMConfig,
    detail_level: str = "detailed",
    focus_areas: Optional[Iterable[str]] = None,
    provider: Optional[LLMProvider] = None,
) -> dict:
    """
    Review flattened repository text (or a path to a repomix .txt file).

    Args:
        flattened_output: repomix output, or the path of a file holding it.
        config: Loaded LLMConfig.
        detail_level: "basic" or "detailed".
        focus_areas: Subset of FOCUS_AREAS; None means all.
        provider: Optional provider override, passed through to Stage 5.

    Returns:
        The review dict. For chunk_strategy="all" it is the merged review.
    """
    focus_areas = list(focus_areas) if focus_areas else None
    chunks = prepare_codebase(flattened_output, config.max_chunk_chars)

    if config.chunk_strategy == "all":
        selected = chunks
    else:
        if len(chunks) > 1:
            logger.warning(
                "Code was split into %d chunks. Only reviewing the first chunk; %d dropped.",
                len(chunks),
                len(chunks) - 1,
            )
        selected = chunks[:1]

    reviews = []
    for index, chunk in enumerate(selected):
        prompt = build_review_prompt(
            chunk,
            detail_level=detail_level,
            focus_areas=focus_areas,
            chunk_index=index,
            chunk_count=len(selected),
        )
        logger.info("Reviewing chunk %d/%d (%d characters)", index + 1, len(selected), len(chunk))
        reviews.append(await run_llm_review(prompt, config, provider=provider))

    return reviews[0] if len(reviews) == 1 else merge_reviews(reviews)


def merge_reviews(reviews: List[dict]) -> dict:
    """
    Combine per-chunk reviews into one.

    Summaries are joined with blank lines, issues are concatenated, and
    strengths/recommendations are concatenated with exact duplicates removed
    (first occurrence wins).
    """
    if not reviews:
        raise ValueError("merge_reviews() needs at least one review")

    merged = {
        "summary": "\n\n".join(r["summary"] for r in reviews),
        "issues": [],
        "strengths": [],
        "recommendations": [],
    }
    for review in reviews:
        merged["issues"].extend(review["issues"])
        for key in ("strengths", "recommendations"):
            for item in review[key]:
                if item not in merged[key]:
                    merged[key].append(item)
    return merged


def format_review_report(review: dict) -> str:
    """Render a review dict as the plain-text report the CLI prints."""
    lines = ["Code Quality Review Results:", "=============================", ""]
    lines.append(f"Summary: {review['summary']}")

    lines.append("")
    lines.append("Issues:")
    if not review["issues"]:
        lines.append("  No issues found")
    for index, issue in enumerate(review["issues"], start=1):
        lines.append(
            f"  {index}. [{issue.get('severity', '?')}] {issue.get('type', '?')}: "
            f"{issue.get('description', '')}"
        )
        if issue.get("line_numbers"):
            lines.append(f"     Lines: {', '.join(str(n) for n in issue['line_numbers'])}")
        if issue.get("recommendation"):
            lines.append(f"     Recommendation: {issue['recommendation']}")
        lines.append("")

    for title, key in (("Strengths", "strengths"), ("Recommendations", "recommendations")):
        lines.append("")
        lines.append(f"{title}:")
        for index, item in enumerate(review[key], start=1):
            lines.append(f"  {index}. {item}")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="code-review",
        description="Flatten a repository with repomix and review it with an LLM.",
    )
    parser.add_argument("repo_path", help="Path to the repository to analyze")
    parser.add_argument("--files", default="", help="Comma-separated files to review")
    parser.add_argument("--types", default="", help="Comma-separated file types, e.g. .js,.ts")
    parser.add_argument("--detail", default="detailed", help="basic or detailed (default: detailed)")
    parser.add_argument(
        "--focus",
        default=",".join(FOCUS_AREAS),
        help="Comma-separated focus areas: security,performance,quality,maintainability",
    )
    parser.add_argument("--json", action="store_true", help="Print the raw review JSON")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = parse_args(argv)
    load_dotenv()
    configure_logging(args.log_level)

    detail_level = args.detail.strip().lower()
    if detail_level not in DETAIL_LEVELS:
        logger.warning("Invalid detail level: %s. Using 'detailed' instead.", args.detail)
        detail_level = "detailed"

    focus_areas = []
    for area in _split_csv(args.focus):
        area = area.lower()
        if area in FOCUS_AREAS:
            focus_areas.append(area)
        else:
            logger.warning("Ignoring unknown focus area: %s", area)

    specific_files = _split_csv(args.files) or None
    file_types = _split_csv(args.types) or None

    try:
        config = load_llm_config()
        logger.info(
            "Reviewing %s (detail=%s, focus=%s)",
            args.repo_path,
            detail_level,
            ", ".join(focus_areas or FOCUS_AREAS),
        )
        flattened = flatten_repository(
            args.repo_path,
            specific_files=specific_files,
            file_types=file_types,
            command=config.repomix_command,
        )
        review = asyncio.run(
            review_codebase(flattened, config, detail_level=detail_level, focus_areas=focus_areas)
        )
    except ReviewAgentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(review, indent=2))
    else:
        print(format_review_report(review))
    return 0


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


if __name__ == "__main__":
    sys.exit(main())
