import dataclasses
import json
from unittest.mock import AsyncMock, patch

import pytest

from review_agent.errors import FlatteningError
from review_agent.review_pipeline_main import (
    format_review_report,
    main,
    merge_reviews,
    review_codebase,
)

from .conftest import VALID_REVIEW

FLATTENED = "".join(f"File: mod{i}.py\n" + "x = 1\n" * 20 for i in range(10))


def _review(summary, strengths=(), recommendations=(), issues=()):
    return {
        "summary": summary,
        "issues": list(issues),
        "strengths": list(strengths),
        "recommendations": list(recommendations),
    }


class TestReviewCodebase:
    @pytest.mark.asyncio
    async def test_small_codebase_is_reviewed_once(self, config):
        with patch(
            "review_agent.review_pipeline_main.run_llm_review", new_callable=AsyncMock, return_value=VALID_REVIEW
        ) as run:
            review = await review_codebase("File: a.py\nx = 1\n", config, detail_level="basic", focus_areas=["security"])

        assert review == VALID_REVIEW
        prompt = run.call_args.args[0]
        assert "File: a.py" in prompt
        assert "Focus on critical issues" in prompt

    @pytest.mark.asyncio
    async def test_first_strategy_reviews_only_first_chunk(self, config):
        config = dataclasses.replace(config, max_chunk_chars=200)

        with patch(
            "review_agent.review_pipeline_main.run_llm_review", new_callable=AsyncMock, return_value=VALID_REVIEW
        ) as run:
            review = await review_codebase(FLATTENED, config)

        assert review == VALID_REVIEW
        assert run.call_count == 1
        assert "part 1 of" not in run.call_args.args[0]

    @pytest.mark.asyncio
    async def test_all_strategy_reviews_and_merges_every_chunk(self, config):
        config = dataclasses.replace(config, max_chunk_chars=200, chunk_strategy="all")
        replies = [_review(f"part {i}", strengths=["tidy"]) for i in range(50)]

        with patch(
            "review_agent.review_pipeline_main.run_llm_review", new_callable=AsyncMock, side_effect=replies
        ) as run:
            review = await review_codebase(FLATTENED, config)

        assert run.call_count > 1
        assert review["summary"].startswith("part 0\n\npart 1")
        assert review["strengths"] == ["tidy"]
        assert "part 1 of" in run.call_args_list[0].args[0]


class TestMergeReviews:
    def test_concatenates_and_deduplicates(self):
        issue_a = {"type": "QUALITY", "severity": "LOW", "description": "a", "recommendation": "r"}
        issue_b = {"type": "SECURITY", "severity": "HIGH", "description": "b", "recommendation": "r"}
        merged = merge_reviews(
            [
                _review("one", ["s1", "s2"], ["r1"], [issue_a]),
                _review("two", ["s2", "s3"], ["r1", "r2"], [issue_b]),
            ]
        )
        assert merged == {
            "summary": "one\n\ntwo",
            "issues": [issue_a, issue_b],
            "strengths": ["s1", "s2", "s3"],
            "recommendations": ["r1", "r2"],
        }

    def test_requires_at_least_one_review(self):
        with pytest.raises(ValueError):
            merge_reviews([])


def test_format_review_report():
    report = format_review_report(VALID_REVIEW)
    assert "Summary: A small utility module." in report
    assert "1. [HIGH] SECURITY: Uses eval on user input" in report
    assert "Lines: 3" in report
    assert "Recommendation: Use ast.literal_eval" in report
    assert "1. Short functions" in report
    assert "1. Add tests" in report


def test_format_review_report_without_issues():
    assert "No issues found" in format_review_report(_review("empty"))


ENV = {"LLM_PROVIDER": "OPEN_AI", "OPENAI_API_KEY": "sk-test"}


@pytest.fixture
def quiet_cli(monkeypatch):
    monkeypatch.setattr("review_agent.review_pipeline_main.load_dotenv", lambda: False)
    monkeypatch.setattr("review_agent.review_pipeline_main.configure_logging", lambda level=None: None)


class TestMain:
    def test_prints_json_review(self, tmp_path, capsys, quiet_cli):
        with (
            patch.dict("os.environ", ENV, clear=True),
            patch("review_agent.review_pipeline_main.flatten_repository", return_value="File: a.py\nx = 1\n") as flatten,
            patch(
                "review_agent.review_pipeline_main.run_llm_review", new_callable=AsyncMock, return_value=VALID_REVIEW
            ),
        ):
            code = main([str(tmp_path), "--json", "--files", "a.py, b.py", "--types", ".py"])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == VALID_REVIEW
        assert flatten.call_args.kwargs["specific_files"] == ["a.py", "b.py"]
        assert flatten.call_args.kwargs["file_types"] == [".py"]

    def test_invalid_detail_and_focus_fall_back(self, tmp_path, capsys, quiet_cli):
        with (
            patch.dict("os.environ", ENV, clear=True),
            patch("review_agent.review_pipeline_main.flatten_repository", return_value="x = 1\n"),
            patch(
                "review_agent.review_pipeline_main.review_codebase", new_callable=AsyncMock, return_value=VALID_REVIEW
            ) as review,
        ):
            code = main([str(tmp_path), "--detail", "extreme", "--focus", "security,style"])

        assert code == 0
        assert review.call_args.kwargs["detail_level"] == "detailed"
        assert review.call_args.kwargs["focus_areas"] == ["security"]
        assert "Code Quality Review Results:" in capsys.readouterr().out

    def test_errors_exit_with_status_1(self, tmp_path, capsys, quiet_cli):
        with (
            patch.dict("os.environ", ENV, clear=True),
            patch(
                "review_agent.review_pipeline_main.flatten_repository",
                side_effect=FlatteningError("repomix not found"),
            ),
        ):
            code = main([str(tmp_path)])

        assert code == 1
        assert "Error: repomix not found" in capsys.readouterr().err

    def test_missing_configuration_exits_with_status_1(self, tmp_path, capsys, quiet_cli):
        with patch.dict("os.environ", {}, clear=True):
            code = main([str(tmp_path)])

        assert code == 1
        assert "LLM_PROVIDER" in capsys.readouterr().err
