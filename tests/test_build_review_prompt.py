import pytest

from review_agent.stage_4_build_review_prompt import build_review_prompt


def test_includes_code_and_schema():
    prompt = build_review_prompt("def f():\n    return 1\n")

    assert "def f():\n    return 1\n" in prompt
    assert '"summary"' in prompt
    assert '"recommendations"' in prompt
    assert "SECURITY|PERFORMANCE|QUALITY|MAINTAINABILITY" in prompt
    assert "perform a detailed code review" in prompt
    assert "Provide detailed analysis" in prompt


def test_default_focus_areas_cover_all_four():
    prompt = build_review_prompt("x = 1")
    for text in (
        "Security vulnerabilities",
        "Performance issues",
        "Code quality, readability",
        "Architectural concerns",
    ):
        assert text in prompt


def test_basic_level_with_selected_focus():
    prompt = build_review_prompt("x = 1", detail_level="basic", focus_areas=["Security", "security"])

    assert "Focus on critical issues" in prompt
    assert prompt.count("- Security vulnerabilities and best practices") == 1
    assert "Performance issues" not in prompt


def test_chunk_note_only_for_split_codebases():
    assert "part 2 of 3" in build_review_prompt("x", chunk_index=1, chunk_count=3)
    assert "part 1 of 1" not in build_review_prompt("x")


@pytest.mark.parametrize(
    "kwargs",
    [{"detail_level": "verbose"}, {"focus_areas": ["style"]}],
)
def test_invalid_options_raise(kwargs):
    with pytest.raises(ValueError):
        build_review_prompt("x", **kwargs)
