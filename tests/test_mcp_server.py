import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mcp_server import mcp_code_review_server as server
from review_agent.errors import ConfigurationError, FlatteningError, MalformedResponseError

from .conftest import VALID_REVIEW


@pytest.fixture(autouse=True)
def reset_server_config(config):
    server._config = config
    yield
    server._config = None


class TestAnalyzeRepo:
    @pytest.mark.asyncio
    async def test_returns_flattened_content(self, tmp_path):
        with patch.object(server, "flatten_repository", return_value="File: a.py\nx = 1\n") as flatten:
            result = await server.analyze_repo(str(tmp_path), specific_files=["a.py"], file_types=[".py"])

        assert result == {
            "repo_path": str(tmp_path),
            "characters": len("File: a.py\nx = 1\n"),
            "content": "File: a.py\nx = 1\n",
        }
        assert flatten.call_args.kwargs["specific_files"] == ["a.py"]
        assert flatten.call_args.kwargs["command"] == "repomix"

    @pytest.mark.asyncio
    async def test_flattening_failure_is_error_flagged(self, tmp_path):
        with patch.object(server, "flatten_repository", side_effect=FlatteningError("repomix missing")):
            result = await server.analyze_repo(str(tmp_path))

        assert result["isError"] is True
        assert "repomix missing" in result["error"]

    @pytest.mark.asyncio
    async def test_unconfigured_server_reads_repomix_command_from_env(self, tmp_path):
        server._config = None
        with (
            patch.dict("os.environ", {"REPOMIX_COMMAND": "/opt/bin/my-repomix"}, clear=True),
            patch.object(server, "flatten_repository", return_value="x = 1\n") as flatten,
        ):
            result = await server.analyze_repo(str(tmp_path))

        assert result["content"] == "x = 1\n"
        assert flatten.call_args.kwargs["command"] == "/opt/bin/my-repomix"
        assert server._config is None

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_error_flagged(self, tmp_path):
        with patch.object(server, "flatten_repository", side_effect=OSError("disk full")):
            result = await server.analyze_repo(str(tmp_path))

        assert result == {"isError": True, "error": "Error analyzing repository: disk full"}


class TestCodeReview:
    @pytest.mark.asyncio
    async def test_returns_review(self, tmp_path, config):
        with (
            patch.object(server, "flatten_repository", return_value="x = 1\n"),
            patch.object(server, "review_codebase", new_callable=AsyncMock, return_value=VALID_REVIEW) as review,
        ):
            result = await server.code_review(str(tmp_path), detail_level="basic", focus_areas=["security"])

        assert result == VALID_REVIEW
        assert review.call_args.args == ("x = 1\n", config)
        assert review.call_args.kwargs == {"detail_level": "basic", "focus_areas": ["security"]}

    @pytest.mark.asyncio
    async def test_invalid_detail_level(self, tmp_path):
        result = await server.code_review(str(tmp_path), detail_level="extreme")
        assert result["isError"] is True
        assert "detail_level" in result["error"]

    @pytest.mark.asyncio
    async def test_invalid_focus_area_rejected_before_flattening(self, tmp_path):
        with patch.object(server, "flatten_repository") as flatten:
            result = await server.code_review(str(tmp_path), focus_areas=["Security", "style"])

        assert result["isError"] is True
        assert result["error"].startswith("Invalid focus_areas: style.")
        flatten.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_configuration(self, tmp_path):
        server._config = None
        with patch.object(server, "load_llm_config", side_effect=ConfigurationError("LLM_PROVIDER is required")):
            result = await server.code_review(str(tmp_path))

        assert result["isError"] is True
        assert "LLM_PROVIDER" in result["error"]
        assert "API key" in result["error"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [FlatteningError("no repomix"), MalformedResponseError("bad json"), ValueError("Invalid focus area: style")],
    )
    async def test_pipeline_failures_are_error_flagged(self, tmp_path, error):
        with (
            patch.object(server, "flatten_repository", return_value="x = 1\n"),
            patch.object(server, "review_codebase", new_callable=AsyncMock, side_effect=error),
        ):
            result = await server.code_review(str(tmp_path))

        assert result == {"isError": True, "error": f"Error performing code review: {error}"}


@pytest.mark.asyncio
async def test_tools_are_registered():
    names = {tool.name for tool in await server.mcp.list_tools()}
    assert {"analyze_repo", "code_review"} <= names


class TestProcessWideHandlers:
    def test_loop_exception_is_logged(self, caplog):
        with caplog.at_level(logging.ERROR, logger=server.logger.name):
            server._log_loop_exception(MagicMock(), {"message": "task failed", "exception": RuntimeError("boom")})

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert "task failed" in record.getMessage()
        assert record.exc_info[1].args == ("boom",)

    def test_loop_error_without_exception_is_logged(self, caplog):
        with caplog.at_level(logging.ERROR, logger=server.logger.name):
            server._log_loop_exception(MagicMock(), {"message": "callback failed"})

        assert caplog.records[-1].levelno == logging.ERROR
        assert "callback failed" in caplog.records[-1].getMessage()

    def test_uncaught_exception_is_logged_as_critical(self, caplog):
        error = ValueError("bad state")
        with caplog.at_level(logging.CRITICAL, logger=server.logger.name):
            server._log_uncaught_exception(ValueError, error, None)

        record = caplog.records[-1]
        assert record.levelno == logging.CRITICAL
        assert record.exc_info[1] is error

    def test_keyboard_interrupt_goes_to_default_hook(self, caplog):
        with patch.object(server.sys, "__excepthook__") as default_hook:
            server._log_uncaught_exception(KeyboardInterrupt, KeyboardInterrupt(), None)

        default_hook.assert_called_once()
        assert not any(r.levelno == logging.CRITICAL for r in caplog.records)
