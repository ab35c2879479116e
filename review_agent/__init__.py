# Code Review Agent - Review Pipeline Package
#
# This package contains the 5-stage pipeline that turns a repository into a
# structured LLM code review. Each stage is in its own file following the
# one-function-per-file architecture pattern.
#
# The pipeline is orchestrated by review_pipeline_main.py, which is also the
# CLI. The MCP server in mcp_server/ calls the same stages. External tools:
# repomix (flattening) and one hosted LLM API (OpenAI, Anthropic or Gemini).
#
# Stage flow:
#   1. Load Config -> 2. Flatten Repo -> 3. Chunk Codebase
#   -> 4. Build Review Prompt -> 5. LLM Review
#
# Shared helpers: errors.py (error taxonomy), retry_with_backoff.py (generic
# async retry), log_config.py (stderr logging).
