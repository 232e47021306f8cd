"""Controllers for agent-company CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from agent_company.config import Settings
from agent_company.runtime import Runtime, build_registry, open_runtime
from agent_company.workflow.errors import WorkflowNotFoundError
from agent_company.workflow.models import (
    ApprovalAction,
    EscalationAction,
    EscalationDecision,
    WorkflowPhase,
    WorkflowState,
    WorkflowStatus,
)


@dataclass(slots=True)
class WorkflowStartCommand:
    """CLI input for starting a workflow."""

    state_dir: Path | None
    instruction: str
    project_id: str
    wait: bool = True


@dataclass(slots=True)
class WorkflowInspectCommand:
    """CLI input for commands addressing one workflow."""

    state_dir: Path | None
    workflow_id: str


@dataclass(slots=True)
class WorkflowListCommand:
    state_dir: Path | None
    status: str | None


@dataclass(slots=True)
class WorkflowApproveCommand:
    """CLI input for an approval decision."""

    state_dir: Path | None
    workflow_id: str
    action: str
    feedback: str | None


@dataclass(slots=True)
class WorkflowEscalationCommand:
    """CLI input for resolving an escalation."""

    state_dir: Path | None
    workflow_id: str
    action: str
    reason: str
    resume: bool


@dataclass(slots=True)
class WorkflowRollbackCommand:
    state_dir: Path | None
    workflow_id: str
    phase: str
    resume: bool


@dataclass(slots=True)
class WorkflowTerminateCommand:
    state_dir: Path | None
    workflow_id: str
    reason: str


@dataclass(slots=True)
class WorkflowRestoreCommand:
    state_dir: Path | None


@dataclass(slots=True)
class BusHistoryCommand:
    state_dir: Path | None
    run_id: str


@dataclass(slots=True)
class BusCleanupCommand:
    state_dir: Path | None
    retention_days: int | None


class AgentCompanyCliController:
    """Run engine operations for one CLI invocation and render the result."""

    def start(self, command: WorkflowStartCommand) -> list[str]:
        async def _start(runtime: Runtime) -> list[str]:
            engine = runtime.engine
            workflow_id = await engine.start_workflow(command.instruction, command.project_id)
            if command.wait:
                await engine.wait_until_settled(workflow_id)
            state = await _require_state(runtime, workflow_id)
            return [f"Workflow started: {workflow_id}", *_state_lines(state)]

        return _run(command.state_dir, _start)

    def status(self, command: WorkflowInspectCommand) -> list[str]:
        async def _status(runtime: Runtime) -> list[str]:
            state = await _require_state(runtime, command.workflow_id)
            lines = _state_lines(state)
            lines.append(f"Phase history: {len(state.phase_history)}")
            for transition in state.phase_history:
                lines.append(
                    f"  {transition.timestamp} {transition.from_phase.value} -> "
                    f"{transition.to_phase.value} ({transition.reason})",
                )
            if state.progress is not None:
                lines.append("Subtasks:")
                for subtask in state.progress.subtasks:
                    lines.append(
                        f"  {subtask.id} [{subtask.worker_type.value}] "
                        f"status={subtask.status.value} "
                        f"review={subtask.review_status.value if subtask.review_status else '-'} "
                        f"title={subtask.title}",
                    )
            for entry in state.error_log:
                lines.append(f"  error {entry.timestamp} [{entry.phase.value}] {entry.message}")
            return lines

        return _run(command.state_dir, _status)

    def list_workflows(self, command: WorkflowListCommand) -> list[str]:
        status = WorkflowStatus(command.status.strip().lower()) if command.status else None

        async def _list(runtime: Runtime) -> list[str]:
            workflow_ids = await asyncio.to_thread(runtime.repository.list_workflow_ids)
            for workflow_id in workflow_ids:
                await runtime.engine.get_workflow_state(workflow_id)
            states = runtime.engine.list_workflows(status)
            lines = [f"Workflows: {len(states)}"]
            for state in states:
                lines.append(
                    f"  {state.workflow_id} project={state.project_id} "
                    f"phase={state.current_phase.value} status={state.status.value} "
                    f"created_at={state.created_at}",
                )
            return lines

        return _run(command.state_dir, _list)

    def approve(self, command: WorkflowApproveCommand) -> list[str]:
        action = ApprovalAction(command.action.strip().lower())

        async def _approve(runtime: Runtime) -> list[str]:
            engine = runtime.engine
            await _require_state(runtime, command.workflow_id)
            await runtime.approval_gate.load_approvals(command.workflow_id)
            resolved = await engine.submit_approval(command.workflow_id, action, command.feedback)
            await engine.wait_until_settled(command.workflow_id)
            state = await _require_state(runtime, command.workflow_id)
            return [
                f"Decision recorded: {action.value} "
                f"({'resumed waiting phase' if resolved else 'applied directly'})",
                *_state_lines(state),
            ]

        return _run(command.state_dir, _approve)

    def escalate(self, command: WorkflowEscalationCommand) -> list[str]:
        decision = EscalationDecision(
            action=EscalationAction(command.action.strip().lower()),
            reason=command.reason,
        )

        async def _escalate(runtime: Runtime) -> list[str]:
            engine = runtime.engine
            outcome = await engine.handle_escalation(command.workflow_id, decision)
            lines = [f"Escalation resolved: {outcome.action.value}"]
            if outcome.resume_required:
                if command.resume:
                    await engine.resume_workflow(command.workflow_id)
                    await engine.wait_until_settled(command.workflow_id)
                else:
                    lines.append(
                        f"Resume with: agent-company workflow resume {command.workflow_id}",
                    )
            state = await _require_state(runtime, command.workflow_id)
            return [*lines, *_state_lines(state)]

        return _run(command.state_dir, _escalate)

    def resume(self, command: WorkflowInspectCommand) -> list[str]:
        async def _resume(runtime: Runtime) -> list[str]:
            await runtime.engine.resume_workflow(command.workflow_id)
            await runtime.engine.wait_until_settled(command.workflow_id)
            state = await _require_state(runtime, command.workflow_id)
            return [f"Workflow resumed: {command.workflow_id}", *_state_lines(state)]

        return _run(command.state_dir, _resume)

    def rollback(self, command: WorkflowRollbackCommand) -> list[str]:
        target = WorkflowPhase(command.phase.strip().lower())

        async def _rollback(runtime: Runtime) -> list[str]:
            engine = runtime.engine
            await engine.rollback_to_phase(command.workflow_id, target)
            if command.resume:
                await engine.resume_workflow(command.workflow_id)
                await engine.wait_until_settled(command.workflow_id)
            state = await _require_state(runtime, command.workflow_id)
            return [f"Rolled back to {target.value}", *_state_lines(state)]

        return _run(command.state_dir, _rollback)

    def terminate(self, command: WorkflowTerminateCommand) -> list[str]:
        async def _terminate(runtime: Runtime) -> list[str]:
            await runtime.engine.terminate_workflow(command.workflow_id, command.reason)
            state = await _require_state(runtime, command.workflow_id)
            return [f"Workflow terminated: {command.workflow_id}", *_state_lines(state)]

        return _run(command.state_dir, _terminate)

    def restore(self, command: WorkflowRestoreCommand) -> list[str]:
        async def _restore(runtime: Runtime) -> list[str]:
            engine = runtime.engine
            restored = await engine.restore_workflows()
            for state in engine.list_workflows():
                await engine.wait_until_settled(state.workflow_id)
            pending = runtime.approval_gate.get_pending_approvals()
            lines = [f"Restored workflows: {restored}", f"Pending approvals: {len(pending)}"]
            for item in pending:
                lines.append(f"  {item.workflow_id} phase={item.phase.value}")
            return lines

        return _run(command.state_dir, _restore)

    def meetings(self, command: WorkflowInspectCommand) -> list[str]:
        async def _meetings(runtime: Runtime) -> list[str]:
            minutes = await runtime.engine.get_meeting_minutes(command.workflow_id)
            lines = [f"Meetings: {len(minutes)}"]
            for item in minutes:
                lines.append(
                    f"  {item.meeting_id} facilitator={item.facilitator} "
                    f"participants={len(item.participants)} "
                    f"statements={len(item.statements)} started_at={item.started_at}",
                )
                for decision in item.decisions:
                    lines.append(f"    decision: {decision.decision}")
                for action_item in item.action_items:
                    lines.append(
                        f"    action [{action_item.worker_type.value}] "
                        f"{action_item.assignee}: {action_item.description}",
                    )
            return lines

        return _run(command.state_dir, _meetings)

    def bus_history(self, command: BusHistoryCommand) -> list[str]:
        async def _history(runtime: Runtime) -> list[str]:
            messages = await runtime.bus.get_message_history(command.run_id)
            lines = [f"Messages: {len(messages)}"]
            for message in messages:
                lines.append(
                    f"  {message.timestamp} {message.type.value} "
                    f"{message.from_agent} -> {message.to_agent}",
                )
            return lines

        return _run(command.state_dir, _history)

    def bus_cleanup(self, command: BusCleanupCommand) -> list[str]:
        async def _cleanup(runtime: Runtime) -> list[str]:
            days = command.retention_days
            if days is None:
                days = runtime.settings.bus.retention_days
            removed = await runtime.bus.cleanup(days)
            return [f"Removed messages: {removed}"]

        return _run(command.state_dir, _cleanup)

    def list_agents(self) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        agents = build_registry(settings.coding).list_agents()
        lines = [f"Coding agents: {len(agents)}"]
        for info in agents:
            marker = "available" if info.available else "missing"
            preferred = " (preferred)" if info.name == settings.coding.preferred_agent else ""
            lines.append(f"  {info.name}: {marker}{preferred}")
        return lines


def _run(
    state_dir: Path | None,
    body: Callable[[Runtime], Awaitable[list[str]]],
) -> list[str]:
    settings = Settings.from_env(state_dir=state_dir)
    with open_runtime(settings) as runtime:
        return asyncio.run(body(runtime))


async def _require_state(runtime: Runtime, workflow_id: str) -> WorkflowState:
    state = await runtime.engine.get_workflow_state(workflow_id)
    if state is None:
        raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
    return state


def _state_lines(state: WorkflowState) -> list[str]:
    lines = [
        f"Workflow: {state.workflow_id}",
        f"Project: {state.project_id}",
        f"Phase: {state.current_phase.value}",
        f"Status: {state.status.value}",
        f"Updated: {state.updated_at}",
    ]
    if state.progress is not None:
        lines.append(
            f"Progress: {state.progress.completed_tasks}/{state.progress.total_tasks} "
            f"completed, {state.progress.failed_tasks} failed",
        )
    if state.quality_results is not None:
        lines.append(f"Quality: {'passed' if state.quality_results.passed else 'failed'}")
    if state.escalation is not None:
        lines.append(
            f"Escalation: task {state.escalation.ticket_id}: "
            f"{state.escalation.failure_details}",
        )
    return lines
