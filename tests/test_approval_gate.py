from __future__ import annotations

import asyncio
import json
from pathlib import Path

import allure
import pytest

from agent_company.storage.common import utc_now_iso
from agent_company.workflow.approval_gate import ApprovalGate
from agent_company.workflow.errors import ApprovalCancelledError, ApprovalGateError
from agent_company.workflow.models import (
    ApprovalAction,
    ApprovalDecision,
    Proposal,
    WorkflowPhase,
)

pytestmark = [
    allure.epic("Workflow Engine"),
    allure.feature("Approval Gate"),
    pytest.mark.asyncio,
]

WORKFLOW_ID = "wf-0000feed"


def _proposal() -> Proposal:
    return Proposal(
        workflow_id=WORKFLOW_ID,
        summary="summary",
        scope="scope",
        task_breakdown=(),
        worker_assignments=(),
        risk_assessment=(),
        dependencies=(),
        meeting_minutes_ids=(),
        created_at=utc_now_iso(),
    )


def _decision(action: ApprovalAction = ApprovalAction.APPROVE, feedback: str | None = None):
    return ApprovalDecision(
        workflow_id=WORKFLOW_ID,
        phase=WorkflowPhase.APPROVAL,
        action=action,
        decided_at=utc_now_iso(),
        feedback=feedback,
    )


async def _wait_for_listener(gate: ApprovalGate) -> None:
    while not gate.has_listener(WORKFLOW_ID):
        await asyncio.sleep(0)


async def test_submit_decision_resolves_waiting_request(tmp_path: Path) -> None:
    gate = ApprovalGate(tmp_path)
    request = asyncio.create_task(
        gate.request_approval(WORKFLOW_ID, WorkflowPhase.APPROVAL, _proposal()),
    )
    await _wait_for_listener(gate)
    assert gate.is_waiting_approval(WORKFLOW_ID)

    resolved = await gate.submit_decision(WORKFLOW_ID, _decision(feedback="ship it"))

    assert resolved is True
    decision = await request
    assert decision.action == ApprovalAction.APPROVE
    assert decision.feedback == "ship it"
    assert gate.get_pending_approvals() == []
    assert not gate.has_listener(WORKFLOW_ID)


async def test_decision_without_listener_is_persisted(tmp_path: Path) -> None:
    gate = ApprovalGate(tmp_path)

    resolved = await gate.submit_decision(
        WORKFLOW_ID,
        _decision(ApprovalAction.REJECT, "no budget"),
    )

    assert resolved is False
    payload = json.loads((tmp_path / WORKFLOW_ID / "approvals.json").read_text("utf-8"))
    assert payload["workflow_id"] == WORKFLOW_ID
    assert payload["decisions"][0]["action"] == "reject"
    assert payload["decisions"][0]["feedback"] == "no budget"


async def test_history_survives_a_new_gate_instance(tmp_path: Path) -> None:
    first = ApprovalGate(tmp_path)
    await first.submit_decision(WORKFLOW_ID, _decision(ApprovalAction.REQUEST_REVISION, "more"))

    second = ApprovalGate(tmp_path)
    await second.submit_decision(WORKFLOW_ID, _decision())

    history = await ApprovalGate(tmp_path).load_approvals(WORKFLOW_ID)
    assert [item.action for item in history] == [
        ApprovalAction.REQUEST_REVISION,
        ApprovalAction.APPROVE,
    ]
    assert second.get_approval_history(WORKFLOW_ID) == history


async def test_second_request_for_same_workflow_is_rejected(tmp_path: Path) -> None:
    gate = ApprovalGate(tmp_path)
    request = asyncio.create_task(
        gate.request_approval(WORKFLOW_ID, WorkflowPhase.APPROVAL, _proposal()),
    )
    await _wait_for_listener(gate)

    with pytest.raises(ApprovalGateError):
        await gate.request_approval(WORKFLOW_ID, WorkflowPhase.APPROVAL, _proposal())

    assert gate.cancel_approval(WORKFLOW_ID, "cleanup") is True
    with pytest.raises(ApprovalCancelledError, match="cleanup"):
        await request


async def test_cancel_without_waiter_clears_pending_item(tmp_path: Path) -> None:
    gate = ApprovalGate(tmp_path)
    gate.restore_pending_approval(WORKFLOW_ID, WorkflowPhase.APPROVAL, _proposal())
    gate.restore_pending_approval(WORKFLOW_ID, WorkflowPhase.APPROVAL, _proposal())

    assert len(gate.get_pending_approvals()) == 1
    assert gate.is_waiting_approval(WORKFLOW_ID)
    assert not gate.has_listener(WORKFLOW_ID)

    assert gate.cancel_approval(WORKFLOW_ID, "rollback") is False
    assert not gate.is_waiting_approval(WORKFLOW_ID)


async def test_decision_for_other_workflow_is_rejected(tmp_path: Path) -> None:
    gate = ApprovalGate(tmp_path)

    with pytest.raises(ApprovalGateError):
        await gate.submit_decision("wf-other", _decision())


async def test_corrupt_history_raises(tmp_path: Path) -> None:
    path = tmp_path / WORKFLOW_ID / "approvals.json"
    path.parent.mkdir(parents=True)
    path.write_text("[1, 2]", "utf-8")

    with pytest.raises(ApprovalGateError):
        await ApprovalGate(tmp_path).load_approvals(WORKFLOW_ID)
