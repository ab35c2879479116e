import json

import pytest

from review_agent.stage_1_load_config import LLMConfig

VALID_REVIEW = {
    "summary": "A small utility module.",
    "issues": [
        {
            "type": "SECURITY",
            "severity": "HIGH",
            "description": "Uses eval on user input",
            "line_numbers": [3],
            "recommendation": "Use ast.literal_eval",
        }
    ],
    "strengths": ["Short functions"],
    "recommendations": ["Add tests"],
}


@pytest.fixture
def config():
    return LLMConfig(
        provider="OPEN_AI",
        model="gpt-4o",
        api_key="sk-test",
        max_retries=3,
        initial_delay_ms=10,
    )


@pytest.fixture
def valid_review_text():
    return json.dumps(VALID_REVIEW)
