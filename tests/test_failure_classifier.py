from __future__ import annotations

import allure
import pytest

from refactor_pilot.agent.failure_classifier import (
    FailureClass,
    classify_agent_failure,
    has_write_block_signal,
)

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Failure Classification"),
]


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("Error: insufficient credits on this account", FailureClass.BILLING_OR_QUOTA),
        ("401 Unauthorized: invalid API key", FailureClass.ACCESS_OR_AUTH),
        ("unknown model 'gpt-9'", FailureClass.MODEL_NOT_AVAILABLE),
        ("HTTP 429 Too Many Requests", FailureClass.TRANSIENT),
        ("segmentation fault", FailureClass.NON_RETRYABLE),
    ],
)
def test_classify_agent_failure(output: str, expected: FailureClass) -> None:
    result = classify_agent_failure(provider="codex", output=output)

    assert result.failure_class is expected
    assert result.reason_code == f"codex_{expected.value}"
    assert result.transient is (expected is FailureClass.TRANSIENT)


def test_billing_wins_over_transient_when_both_match() -> None:
    result = classify_agent_failure(provider="claude", output="Rate limit: usage limit exceeded")

    assert result.failure_class is FailureClass.BILLING_OR_QUOTA
    assert result.matched_pattern == "usage limit"


def test_write_block_signal() -> None:
    prefix = "REFACTOR_PILOT_STATUS"

    assert has_write_block_signal("File writes are blocked here.", status_prefix=prefix)
    assert has_write_block_signal(
        "sandbox: read-only\nREFACTOR_PILOT_STATUS: CONTINUE",
        status_prefix=prefix,
    )
    assert not has_write_block_signal(
        "sandbox: read-only\nREFACTOR_PILOT_STATUS: COMPLETE",
        status_prefix=prefix,
    )
