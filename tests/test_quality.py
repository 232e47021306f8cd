from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_company.coding import CodingAgentError, CodingTaskRequest, CodingTaskResult
from agent_company.config import WorkflowSettings
from agent_company.workflow.models import ProposalTask, ReviewStatus, WorkerType
from agent_company.workflow.quality import (
    LINT_PROMPT,
    TEST_PROMPT,
    build_coding_prompt,
    build_review_prompt,
    parse_review_verdict,
    run_quality_checks,
    simulated_quality_results,
)
from conftest import ScriptedAgent

pytestmark = [
    allure.epic("Workflow Engine"),
    allure.feature("Quality Gates"),
]

TASK = ProposalTask(
    id="task-1",
    title="Add login form",
    description="Render the login form and validate input",
    worker_type=WorkerType.DEVELOPER,
    estimated_effort="1d",
)


class BrokenAgent:
    name = "broken"

    def is_available(self) -> bool:
        return True

    def execute(self, request: CodingTaskRequest) -> CodingTaskResult:
        raise CodingAgentError("crashed", code="START_FAILED", agent_name=self.name)


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("APPROVED", ReviewStatus.APPROVED),
        ("Looks good to me", ReviewStatus.APPROVED),
        ("NEEDS_REVISION: missing tests", ReviewStatus.NEEDS_REVISION),
        ("verdict: needs revision", ReviewStatus.NEEDS_REVISION),
    ],
)
def test_parse_review_verdict(output: str, expected: ReviewStatus) -> None:
    assert parse_review_verdict(output) == expected


def test_prompts_carry_task_and_instruction() -> None:
    coding = build_coding_prompt(TASK, "Implement a user login feature")
    review = build_review_prompt(TASK, "Implement a user login feature")

    assert coding.startswith("# Task: Add login form")
    assert "Implement a user login feature" in coding
    assert review.startswith("# Code review: Add login form")
    assert "Implement a user login feature" in review
    assert "NEEDS_REVISION" in review


def test_simulated_results_pass() -> None:
    results = simulated_quality_results()

    assert results.passed
    assert results.test_result.coverage == 85.0
    assert results.final_review_result.reviewer == "simulation"


def test_quality_checks_pass_when_lint_and_tests_pass(tmp_path: Path) -> None:
    agent = ScriptedAgent()

    results = run_quality_checks(agent, tmp_path, WorkflowSettings())

    assert results.passed
    assert agent.prompts == [LINT_PROMPT, TEST_PROMPT]
    assert results.final_review_result.feedback == "Quality gate passed: lint and tests succeeded"


def test_quality_checks_fail_when_agent_reports_failure(tmp_path: Path) -> None:
    results = run_quality_checks(ScriptedAgent(quality_success=False), tmp_path, WorkflowSettings())

    assert not results.passed
    assert results.test_result.failed_count == 2
    assert results.final_review_result.feedback == "Quality gate failed: lint=FAIL, test=FAIL"


def test_agent_errors_become_failed_results(tmp_path: Path) -> None:
    results = run_quality_checks(BrokenAgent(), tmp_path, WorkflowSettings())

    assert not results.lint_result.passed
    assert results.lint_result.details == "Lint run error: crashed"
    assert not results.test_result.passed
    assert results.test_result.total == 0
    assert not results.passed
