"""Pure helpers that turn meeting minutes into plans and plans into deliverables."""

from __future__ import annotations

import heapq
from collections.abc import Sequence

from agent_company.storage.common import utc_now_iso
from agent_company.workflow.errors import DependencyCycleError
from agent_company.workflow.models import (
    ApprovalAction,
    ChangeEntry,
    Deliverable,
    MeetingMinutes,
    Proposal,
    ProposalTask,
    ReviewLogEntry,
    RiskItem,
    SubtaskProgress,
    TaskDependency,
    TestResultSummary,
    WorkerAssignment,
    WorkflowProgress,
    WorkflowState,
)

SCHEDULE_RISK = RiskItem(
    description="Schedule delay",
    severity="medium",
    mitigation="Prioritize tasks and implement in phases",
)


def fold_minutes_into_proposal(workflow_id: str, minutes: MeetingMinutes) -> Proposal:
    """Build a proposal from one meeting's decisions and action items.

    Tasks form a sequential chain: ``task-N`` is blocked by ``task-(N-1)``.
    """

    tasks: list[ProposalTask] = []
    assignments: list[WorkerAssignment] = []
    for index, item in enumerate(minutes.action_items):
        task_id = f"task-{index + 1}"
        tasks.append(
            ProposalTask(
                id=task_id,
                title=item.description,
                description=item.description,
                worker_type=item.worker_type,
                estimated_effort="1d",
                dependencies=(f"task-{index}",) if index > 0 else (),
            ),
        )
        assignments.append(
            WorkerAssignment(
                task_id=task_id,
                worker_type=item.worker_type,
                rationale=f"Assigned from meeting decision (owner: {item.assignee})",
            ),
        )

    dependencies = tuple(
        TaskDependency(from_task=task.dependencies[0], to_task=task.id)
        for task in tasks
        if task.dependencies
    )
    summary = "; ".join(decision.decision for decision in minutes.decisions)
    scope = "; ".join(item.description for item in minutes.action_items)
    return Proposal(
        workflow_id=workflow_id,
        summary=summary or "Proposal based on meeting outcome",
        scope=scope or "Scope derived from the instruction",
        task_breakdown=tuple(tasks),
        worker_assignments=tuple(assignments),
        risk_assessment=(SCHEDULE_RISK,),
        dependencies=dependencies,
        meeting_minutes_ids=(minutes.meeting_id,),
        created_at=utc_now_iso(),
    )


def resolve_execution_order(
    tasks: Sequence[ProposalTask],
    dependencies: Sequence[TaskDependency],
) -> list[str]:
    """Kahn's algorithm with an ascending-id ready queue.

    Edges referencing unknown task ids are ignored. Raises
    :class:`DependencyCycleError` listing the ids that could not be ordered.
    """

    task_ids = {task.id for task in tasks}
    in_degree = dict.fromkeys(task_ids, 0)
    adjacency: dict[str, list[str]] = {task_id: [] for task_id in task_ids}
    seen_edges: set[tuple[str, str]] = set()
    for edge in dependencies:
        if edge.from_task not in task_ids or edge.to_task not in task_ids:
            continue
        key = (edge.from_task, edge.to_task)
        if key in seen_edges:
            continue
        seen_edges.add(key)
        adjacency[edge.from_task].append(edge.to_task)
        in_degree[edge.to_task] += 1

    ready = [task_id for task_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        current = heapq.heappop(ready)
        order.append(current)
        for successor in adjacency[current]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, successor)

    if len(order) != len(task_ids):
        ordered = set(order)
        unresolved = sorted(task_id for task_id in task_ids if task_id not in ordered)
        raise DependencyCycleError(unresolved)
    return order


def initial_progress(proposal: Proposal) -> WorkflowProgress:
    return WorkflowProgress(
        total_tasks=len(proposal.task_breakdown),
        subtasks=[
            SubtaskProgress(id=task.id, title=task.title, worker_type=task.worker_type)
            for task in proposal.task_breakdown
        ],
    )


def build_deliverable(state: WorkflowState) -> Deliverable:
    """Assemble the delivery-phase deliverable from the recorded workflow state."""

    tasks = state.proposal.task_breakdown if state.proposal else ()
    changes = tuple(
        ChangeEntry(path=f"src/{task.worker_type.value}/{task.id}.py") for task in tasks
    )

    quality = state.quality_results
    lint = quality.lint_result if quality else None
    test = quality.test_result if quality else None
    lint_passed = lint.passed if lint else True
    test_passed = test.passed if test else True
    test_results = TestResultSummary(
        lint_passed=lint_passed,
        lint_output=lint.details if lint else "no lint result",
        test_passed=test_passed,
        test_output=(
            f"Tests: {test.passed_count}/{test.total} passed, coverage {test.coverage}%"
            if test
            else "Tests: 0/0 passed, coverage 0%"
        ),
        overall_passed=lint_passed and test_passed,
    )

    review_history = tuple(
        ReviewLogEntry(
            timestamp=decision.decided_at,
            run_id=state.run_id,
            ticket_id=state.workflow_id,
            event_type="approve" if decision.action == ApprovalAction.APPROVE else "reject",
            feedback=decision.feedback,
        )
        for decision in state.approval_decisions
    )

    completed = state.progress.completed_tasks if state.progress else 0
    summary_report = "\n".join(
        [
            f"# Workflow {state.workflow_id} deliverable report",
            "",
            "## Overview",
            f"- Project: {state.project_id}",
            f"- Instruction: {state.instruction}",
            f"- Tasks: {len(tasks)} (completed: {completed})",
            "",
            "## Quality",
            f"- Lint: {'PASS' if test_results.lint_passed else 'FAIL'}",
            f"- Tests: {'PASS' if test_results.test_passed else 'FAIL'}",
            f"- Overall: {'PASS' if test_results.overall_passed else 'FAIL'}",
        ],
    )
    return Deliverable(
        workflow_id=state.workflow_id,
        summary_report=summary_report,
        changes=changes,
        test_results=test_results,
        review_history=review_history,
        artifacts=tuple(change.path for change in changes),
        created_at=utc_now_iso(),
    )
