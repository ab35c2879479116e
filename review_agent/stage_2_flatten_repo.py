"""
Stage 2: Flatten Repository — Code Review Agent

PURPOSE:
    Turn a directory tree of source files into one linear text blob that the
    LLM can read. We do not walk the tree ourselves: the `repomix` CLI does
    the flattening (ignore rules, binary detection, file headers) and we just
    run it and collect what it writes.

    This stage does NOT execute any code from the repository. repomix only
    reads files.

CALLED BY:
    review_pipeline_main.py (CLI) and the MCP server's analyze_repo and
    code_review tools. The server runs it through asyncio.to_thread.

DEPENDS ON:
    - The `repomix` executable on PATH (npm install -g repomix), or the
      command named by REPOMIX_COMMAND.

DESIGN DECISIONS:
    - We ask repomix for `--style plain`. Plain output separates files with
      long `====` rules and `File: <path>` header lines, which is exactly what
      stage 3 normalizes into chunk boundaries.
    - Output goes to a file in a private temp directory rather than stdout.
      repomix prints progress and a summary to stdout, and we only want the
      flattened text.
    - The command runs with cwd=repo_path so `specific_files` can be given
      relative to the repository, the same way a user would type them.
    - Every failure becomes a FlatteningError carrying repomix's stderr. The
      flattener failing is never retried: rerunning a deterministic local
      command produces the same failure.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from typing import List, Optional

from review_agent.errors import FlatteningError

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "repomix-output.txt"
DEFAULT_TIMEOUT_S = 300


def flatten_repository(
    repo_path: str,
    specific_files: Optional[List[str]] = None,
    file_types: Optional[List[str]] = None,
    command: str = "repomix",
    timeout_s: int = DEFAULT_TIMEOUT_S,
) -> str:
    """
    Run repomix on a repository and return the flattened text.

    This is the ONLY public function in this file.

    Args:
        repo_path: Directory to flatten. Must exist.
        specific_files: Optional list of files or directories (relative to
                        repo_path) to flatten instead of the whole tree.
        file_types: Optional list of extensions like ".py" or "ts". Only
                    matching files are included.
        command: The repomix executable name or path.
        timeout_s: Hard limit for the subprocess.

    Returns:
        The flattened codebase as a string.

    Raises:
        FlatteningError: If the repo is missing, repomix is not installed,
                         times out, exits non-zero, or writes nothing.
    """
    if not os.path.isdir(repo_path):
        raise FlatteningError(f"Repository path does not exist or is not a directory: {repo_path}")

    tmp_dir = tempfile.mkdtemp(prefix="repomix_")
    output_path = os.path.join(tmp_dir, OUTPUT_FILENAME)

    try:
        cmd = build_repomix_command(output_path, specific_files, file_types, command)
        logger.info("Flattening %s with: %s", repo_path, " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout_s,
                cwd=repo_path,
            )
        except FileNotFoundError:
            raise FlatteningError(
                f"Flattener executable not found: {command}. Install it with: npm install -g repomix"
            ) from None
        except subprocess.TimeoutExpired:
            raise FlatteningError(
                f"Flattening {repo_path} timed out after {timeout_s} seconds. Repo may be too large."
            ) from None

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            error_msg = stderr or (result.stdout or "").strip() or "Unknown error"
            raise FlatteningError(
                f"Failed to execute {command} (exit code {result.returncode}): {error_msg}",
                stderr=stderr,
            )

        if not os.path.exists(output_path):
            raise FlatteningError(f"{command} finished but wrote no output file")

        with open(output_path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()

        if not content.strip():
            raise FlatteningError(f"{command} produced empty output for {repo_path}")

        logger.info("Flattened %s into %d characters", repo_path, len(content))
        return content

    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def build_repomix_command(
    output_path: str,
    specific_files: Optional[List[str]] = None,
    file_types: Optional[List[str]] = None,
    command: str = "repomix",
) -> List[str]:
    """Assemble the repomix argv list. Kept separate so it can be tested alone."""
    cmd = [command, "--style", "plain", "--output", output_path]

    include_globs = _file_types_to_globs(file_types)
    if include_globs:
        cmd.extend(["--include", ",".join(include_globs)])

    paths = [p for p in (specific_files or []) if p and p.strip()]
    cmd.extend(paths or ["."])
    return cmd


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _file_types_to_globs(file_types: Optional[List[str]]) -> List[str]:
    """
    Convert extension filters into repomix include globs.

    ".py" and "py" both become "**/*.py". Entries that already look like a
    glob (contain "*") are passed through untouched.
    """
    globs = []
    for file_type in file_types or []:
        file_type = file_type.strip()
        if not file_type:
            continue
        if "*" in file_type:
            globs.append(file_type)
            continue
        globs.append(f"**/*.{file_type.lstrip('.')}")
    return globs
