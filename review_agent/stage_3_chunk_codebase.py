"""
Stage 3: Chunk Codebase — Code Review Agent

PURPOSE:
    A flattened repository can be far larger than what we want to put in a
    single LLM request. This stage normalizes repomix output so file
    boundaries are marked consistently, then splits it into chunks of at most
    `max_chars` characters, preferring to cut:

    1. at a file boundary marker ("================") slightly past the limit,
    2. else at the last newline before the limit,
    3. else exactly at the limit (one enormous line with no breaks).

    Concatenating the returned chunks always gives back the input exactly.

CALLED BY:
    review_pipeline_main.py — prepare_codebase() before building the prompt.

DESIGN DECISIONS:
    - A boundary marker may push a chunk past the limit by less than 20% of
      the limit. Cutting a file in half costs the reviewer more context than
      a slightly oversized request does.
    - Every iteration advances by at least one character, so chunking
      terminates even on input with no newlines at all.
    - The normalization pass exists because repomix's separator length and
      the presence of "File:" headers vary between versions and styles. The
      boundary search in chunk_codebase() only looks for the canonical marker.
"""

import logging
import os
import re
from typing import List

from review_agent.stage_1_load_config import DEFAULT_MAX_CHUNK_CHARS

logger = logging.getLogger(__name__)

FILE_BOUNDARY_MARKER = "================"

# A file boundary more than this fraction of the limit past the naive cut is
# too far away; fall back to a newline instead.
BOUNDARY_LOOKAHEAD_RATIO = 0.2

_SEPARATOR_LINE = re.compile(r"^[ \t]*[-=*]{10,}[ \t]*$", re.MULTILINE)
_FILE_HEADER_LINE = re.compile(r"^File: (.+)$", re.MULTILINE)


def chunk_codebase(text: str, max_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> List[str]:
    """
    Split text into ordered chunks of roughly max_chars characters.

    Args:
        text: The (normalized) flattened codebase. May be empty.
        max_chars: Positive chunk size limit in characters.

    Returns:
        List of chunks. `"".join(result) == text` always holds. Input that
        already fits is returned as a single-element list, unchanged.

    Raises:
        ValueError: If max_chars is not positive.
    """
    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive, got {max_chars}")

    if len(text) <= max_chars:
        return [text]

    chunks = []
    current = 0
    length = len(text)

    while current < length:
        end = min(current + max_chars, length)
        if end < length:
            end = _find_cut_index(text, current, end, max_chars)
        chunks.append(text[current:end])
        current = end

    return chunks


def normalize_flattened_output(text: str) -> str:
    """
    Rewrite separator and header lines into the canonical boundary form.

    - A line made only of 10+ '-', '=' or '*' becomes FILE_BOUNDARY_MARKER.
    - A "File: <name>" line gets a marker on the line before and after it.
    """
    normalized = _SEPARATOR_LINE.sub(FILE_BOUNDARY_MARKER, text)
    normalized = _FILE_HEADER_LINE.sub(
        lambda m: f"{FILE_BOUNDARY_MARKER}\nFile: {m.group(1)}\n{FILE_BOUNDARY_MARKER}",
        normalized,
    )
    return normalized


def load_flattened_output(output: str) -> str:
    """
    Accept either flattened text or the path of a repomix .txt output file.

    repomix can be asked to write to a file, and older callers pass that
    file's path around instead of its content.
    """
    candidate = output.strip()
    if candidate.endswith(".txt") and "\n" not in candidate and os.path.isfile(candidate):
        logger.info("Reading flattened output from file: %s", candidate)
        with open(candidate, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    return output


def prepare_codebase(output: str, max_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> List[str]:
    """Load, normalize and chunk flattener output in one call."""
    normalized = normalize_flattened_output(load_flattened_output(output))
    chunks = chunk_codebase(normalized, max_chars)
    if len(chunks) > 1:
        logger.warning(
            "Flattened codebase is %d characters, over the %d character limit. Split into %d chunks.",
            len(normalized),
            max_chars,
            len(chunks),
        )
    return chunks


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _find_cut_index(text: str, current: int, end: int, max_chars: int) -> int:
    """Pick the cut point for a chunk that starts at `current`; always > current."""
    boundary = text.find(FILE_BOUNDARY_MARKER, end)
    if boundary != -1 and boundary - end < max_chars * BOUNDARY_LOOKAHEAD_RATIO:
        return boundary

    # Newline at or before `end`, strictly after `current`.
    newline = text.rfind("\n", current + 1, end + 1)
    if newline != -1:
        return newline

    return end
