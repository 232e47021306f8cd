"""Phase-driven workflow engine: proposal, approval, development, QA and delivery."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any

from agent_company.bus import AgentBus, AgentMessageType, MessageBusError
from agent_company.coding import (
    CodingAgent,
    CodingAgentError,
    CodingAgentRegistry,
    CodingTaskRequest,
)
from agent_company.config import WorkflowSettings
from agent_company.storage.common import utc_now_iso
from agent_company.workflow.approval_gate import ApprovalGate
from agent_company.workflow.errors import (
    ApprovalCancelledError,
    InvalidTransitionError,
    InvalidWorkflowInputError,
    WorkflowEngineError,
    WorkflowNotFoundError,
    WorkflowPersistenceError,
)
from agent_company.workflow.meeting import MeetingCoordinator
from agent_company.workflow.models import (
    PHASE_ORDER,
    VALID_TRANSITIONS,
    ApprovalAction,
    ApprovalDecision,
    ErrorLogEntry,
    EscalationAction,
    EscalationDecision,
    EscalationOutcome,
    MeetingMinutes,
    PhaseTransition,
    ProposalTask,
    QualityResults,
    ReviewStatus,
    SubtaskProgress,
    SubtaskStatus,
    WorkflowEscalation,
    WorkflowPhase,
    WorkflowProgress,
    WorkflowState,
    WorkflowStatus,
    requires_coding_agent,
)
from agent_company.workflow.planning import (
    build_deliverable,
    fold_minutes_into_proposal,
    initial_progress,
    resolve_execution_order,
)
from agent_company.workflow.quality import (
    build_coding_prompt,
    build_review_prompt,
    parse_review_verdict,
    run_quality_checks,
    simulated_quality_results,
)
from agent_company.workflow.repository import WorkflowRepository
from agent_company.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

_STDERR_LIMIT = 500
_SETTLE_POLL_SECONDS = 0.01


class _WorkflowHalted(Exception):
    """The workflow left the running state while a phase body was executing."""


class WorkflowEngine:
    """Own workflow state and drive phases as background asyncio tasks.

    At most one phase task runs per workflow id. The task loops over phases
    while the status stays ``running``; it stops when the workflow suspends
    on an approval or escalation, fails, completes or is terminated.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        meeting_coordinator: MeetingCoordinator,
        approval_gate: ApprovalGate,
        *,
        settings: WorkflowSettings,
        coding_agents: CodingAgentRegistry | None = None,
        preferred_agent: str | None = None,
        workspace_manager: WorkspaceManager | None = None,
        bus: AgentBus | None = None,
    ) -> None:
        self.repository = repository
        self.meeting_coordinator = meeting_coordinator
        self.approval_gate = approval_gate
        self.settings = settings
        self.coding_agents = coding_agents
        self.preferred_agent = preferred_agent
        self.workspace_manager = workspace_manager
        self.bus = bus
        self._workflows: dict[str, WorkflowState] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    async def start_workflow(self, instruction: str, project_id: str) -> str:
        """Create a workflow in the proposal phase and schedule its execution."""

        if not instruction or not instruction.strip():
            raise InvalidWorkflowInputError("Instruction must not be empty")
        if not project_id or not project_id.strip():
            raise InvalidWorkflowInputError("Project ID must not be empty")

        workflow_id = f"wf-{uuid.uuid4().hex[:8]}"
        now = utc_now_iso()
        state = WorkflowState(
            workflow_id=workflow_id,
            run_id=workflow_id,
            project_id=project_id.strip(),
            instruction=instruction.strip(),
            current_phase=WorkflowPhase.PROPOSAL,
            status=WorkflowStatus.RUNNING,
            created_at=now,
            updated_at=now,
        )
        self._workflows[workflow_id] = state
        await self._persist(state)
        logger.info("Started workflow %s for project %s", workflow_id, state.project_id)
        self._schedule(workflow_id)
        return workflow_id

    async def get_workflow_state(self, workflow_id: str) -> WorkflowState | None:
        state = self._workflows.get(workflow_id)
        if state is not None:
            return state
        state = await asyncio.to_thread(self.repository.load_state, workflow_id)
        if state is not None:
            self._workflows[workflow_id] = state
        return state

    def list_workflows(self, status: WorkflowStatus | None = None) -> list[WorkflowState]:
        states = [
            state
            for state in self._workflows.values()
            if status is None or state.status == status
        ]
        return sorted(states, key=lambda state: state.created_at)

    async def transition_to_phase(
        self,
        workflow_id: str,
        target: WorkflowPhase,
        reason: str,
    ) -> None:
        state = await self._require(workflow_id)
        if state.is_terminal:
            raise InvalidTransitionError(
                f"Workflow {workflow_id} is {state.status.value}; no further transitions",
            )
        self._record_transition(state, target, reason)
        await self._persist(state)

    async def rollback_to_phase(self, workflow_id: str, target: WorkflowPhase) -> None:
        """Move back to a strictly earlier phase without resuming execution.

        An outstanding approval wait is cancelled and any open escalation is
        dropped. Call :meth:`resume_workflow` to continue.
        """

        state = await self._require(workflow_id)
        if state.is_terminal:
            raise InvalidTransitionError(
                f"Cannot roll back workflow {workflow_id}: status is {state.status.value}",
            )
        current = state.current_phase
        if PHASE_ORDER.index(target) >= PHASE_ORDER.index(current):
            raise InvalidTransitionError(
                f"Rollback target {target.value} is not before {current.value}",
            )

        task = self._tasks.get(workflow_id)
        if task is not None and not task.done():
            if not self.approval_gate.has_listener(workflow_id):
                raise InvalidTransitionError(
                    f"Workflow {workflow_id} is executing {current.value}; "
                    "roll back once it is suspended or stopped",
                )
        self.approval_gate.cancel_approval(workflow_id, f"rollback to {target.value}")
        if task is not None and not task.done():
            await asyncio.wait({task})

        state.phase_history.append(
            PhaseTransition(
                from_phase=current,
                to_phase=target,
                timestamp=utc_now_iso(),
                reason=f"rollback: {current.value} -> {target.value}",
            ),
        )
        state.current_phase = target
        state.status = WorkflowStatus.RUNNING
        state.escalation = None
        await self._persist(state)
        logger.info("Workflow %s rolled back %s -> %s", workflow_id, current.value, target.value)

    async def terminate_workflow(self, workflow_id: str, reason: str) -> None:
        state = await self._require(workflow_id)
        if state.is_terminal:
            raise InvalidTransitionError(
                f"Workflow {workflow_id} is already {state.status.value}",
            )
        await self._terminate(state, reason)

    async def get_progress(self, workflow_id: str) -> WorkflowProgress:
        state = await self._require(workflow_id)
        return state.progress or WorkflowProgress()

    async def get_quality_results(self, workflow_id: str) -> QualityResults:
        state = await self._require(workflow_id)
        return state.quality_results or QualityResults()

    async def get_meeting_minutes(self, workflow_id: str) -> list[MeetingMinutes]:
        state = await self._require(workflow_id)
        minutes: list[MeetingMinutes] = []
        for meeting_id in state.meeting_minutes_ids:
            item = self.meeting_coordinator.get_meeting_minutes(meeting_id)
            if item is None:
                item = await self.meeting_coordinator.load_meeting_minutes(
                    workflow_id,
                    meeting_id,
                )
            minutes.append(item)
        return minutes

    async def handle_escalation(
        self,
        workflow_id: str,
        decision: EscalationDecision,
    ) -> EscalationOutcome:
        """Apply a retry, skip or abort decision to the outstanding escalation.

        Retry and skip leave the workflow ``running`` without scheduling it;
        the returned outcome says that :meth:`resume_workflow` is required.
        """

        state = await self._require(workflow_id)
        if state.is_terminal:
            raise InvalidTransitionError(
                f"Workflow {workflow_id} is already {state.status.value}",
            )
        escalation = state.escalation
        if escalation is None:
            raise WorkflowNotFoundError(f"No escalation found for workflow {workflow_id}")
        try:
            action = EscalationAction(decision.action)
        except ValueError as error:
            raise InvalidWorkflowInputError(
                f"Unknown escalation action: {decision.action!r}",
            ) from error

        subtask = state.progress.find(escalation.ticket_id) if state.progress else None
        logger.info(
            "Escalation for workflow %s task %s resolved with %s",
            workflow_id,
            escalation.ticket_id,
            action.value,
        )

        match action:
            case EscalationAction.RETRY:
                if subtask is not None:
                    subtask.status = SubtaskStatus.PENDING
                    subtask.review_status = None
                    subtask.assigned_worker_id = None
                    if state.progress is not None and state.progress.failed_tasks > 0:
                        state.progress.failed_tasks -= 1
                state.escalation = None
                state.status = WorkflowStatus.RUNNING
                await self._persist(state)
                return EscalationOutcome(workflow_id, action, resume_required=True)
            case EscalationAction.SKIP:
                if subtask is not None:
                    subtask.status = SubtaskStatus.SKIPPED
                    subtask.completed_at = utc_now_iso()
                state.escalation = None
                state.status = WorkflowStatus.RUNNING
                await self._persist(state)
                return EscalationOutcome(workflow_id, action, resume_required=True)
            case EscalationAction.ABORT:
                state.escalation = None
                await self._terminate(
                    state,
                    f"Escalation abort ({decision.reason or 'no reason given'})",
                )
                return EscalationOutcome(workflow_id, action, resume_required=False)

    async def resume_workflow(self, workflow_id: str) -> None:
        state = await self._require(workflow_id)
        if state.status != WorkflowStatus.RUNNING:
            raise InvalidTransitionError(
                f"Workflow {workflow_id} is {state.status.value}; only running workflows resume",
            )
        if self._is_active(workflow_id):
            raise InvalidTransitionError(f"Workflow {workflow_id} is already executing")
        self._schedule(workflow_id)

    async def submit_approval(
        self,
        workflow_id: str,
        action: ApprovalAction | str,
        feedback: str | None = None,
    ) -> bool:
        """Submit a decision for the current approval point.

        Returns ``True`` when a suspended phase picked the decision up, and
        ``False`` when the engine applied it directly because nothing was
        waiting (for example after a restart).
        """

        try:
            resolved_action = ApprovalAction(action)
        except ValueError as error:
            raise InvalidWorkflowInputError(f"Unknown approval action: {action!r}") from error

        await self.wait_until_settled(workflow_id)
        state = await self._require(workflow_id)
        self._ensure_awaiting_approval(state)

        decision = ApprovalDecision(
            workflow_id=workflow_id,
            phase=state.current_phase,
            action=resolved_action,
            decided_at=utc_now_iso(),
            feedback=feedback,
        )
        resolved = await self.approval_gate.submit_decision(workflow_id, decision)
        if not resolved:
            await self.submit_approval_directly(workflow_id, decision)
        return resolved

    async def submit_approval_directly(
        self,
        workflow_id: str,
        decision: ApprovalDecision,
    ) -> None:
        """Apply a persisted decision as the suspended phase would have."""

        state = await self._require(workflow_id)
        self._ensure_awaiting_approval(state)
        if decision.phase != state.current_phase:
            raise InvalidTransitionError(
                f"Decision is for {decision.phase.value} but workflow {workflow_id} "
                f"is in {state.current_phase.value}",
            )
        state.approval_decisions.append(decision)
        await self._apply_approval_decision(state, decision)
        if state.status == WorkflowStatus.RUNNING and not self._is_active(workflow_id):
            self._schedule(workflow_id)

    async def restore_workflows(self) -> int:
        """Reload persisted workflows and pick up where they stopped.

        Returns the number of workflows loaded from disk.
        """

        workflow_ids = await asyncio.to_thread(self.repository.list_workflow_ids)
        loaded = 0
        for workflow_id in workflow_ids:
            if workflow_id in self._workflows:
                continue
            try:
                state = await asyncio.to_thread(self.repository.load_state, workflow_id)
            except WorkflowPersistenceError as error:
                logger.warning("Skipping workflow %s: %s", workflow_id, error)
                continue
            if state is None:
                continue
            self._workflows[workflow_id] = state
            await self.approval_gate.load_approvals(workflow_id)
            loaded += 1

        for state in list(self._workflows.values()):
            workflow_id = state.workflow_id
            if state.status == WorkflowStatus.WAITING_APPROVAL and state.escalation is None:
                content = (
                    state.proposal
                    if state.current_phase == WorkflowPhase.APPROVAL
                    else state.deliverable
                )
                if content is not None and not self.approval_gate.has_listener(workflow_id):
                    self.approval_gate.restore_pending_approval(
                        workflow_id,
                        state.current_phase,
                        content,
                    )
            elif state.status == WorkflowStatus.RUNNING and not self._is_active(workflow_id):
                self._schedule(workflow_id)

        logger.info("Restored %s workflows from %s", loaded, self.repository.base_path)
        return loaded

    async def wait_until_settled(self, workflow_id: str, timeout: float | None = None) -> None:
        """Wait until no phase task runs for the id or it is suspended on approval."""

        async def _settled() -> None:
            while self._is_active(workflow_id) and not self.approval_gate.has_listener(
                workflow_id,
            ):
                await asyncio.sleep(_SETTLE_POLL_SECONDS)

        await asyncio.wait_for(_settled(), timeout)

    def _schedule(self, workflow_id: str) -> None:
        task = asyncio.create_task(self._drive(workflow_id), name=f"workflow-{workflow_id}")
        self._tasks[workflow_id] = task

        def _forget(done: asyncio.Task[None]) -> None:
            if self._tasks.get(workflow_id) is done:
                del self._tasks[workflow_id]

        task.add_done_callback(_forget)

    def _is_active(self, workflow_id: str) -> bool:
        task = self._tasks.get(workflow_id)
        return task is not None and not task.done()

    async def _drive(self, workflow_id: str) -> None:
        state = self._workflows[workflow_id]
        phase = state.current_phase
        try:
            while state.status == WorkflowStatus.RUNNING:
                phase = state.current_phase
                transitions = len(state.phase_history)
                await self._execute_phase(state)
                stalled = len(state.phase_history) == transitions
                if state.status == WorkflowStatus.RUNNING and stalled:
                    logger.error(
                        "Phase %s of workflow %s returned without a transition",
                        phase.value,
                        workflow_id,
                    )
                    break
        except ApprovalCancelledError as error:
            logger.info("Workflow %s stopped waiting: %s", workflow_id, error.reason)
        except _WorkflowHalted:
            logger.info(
                "Workflow %s halted in %s (%s)",
                workflow_id,
                phase.value,
                state.status.value,
            )
        except Exception as error:
            logger.exception("Phase %s of workflow %s failed", phase.value, workflow_id)
            await self._record_failure(state, phase, error)

    async def _execute_phase(self, state: WorkflowState) -> None:
        logger.info("Workflow %s executing %s", state.workflow_id, state.current_phase.value)
        match state.current_phase:
            case WorkflowPhase.PROPOSAL:
                await self._run_proposal(state)
            case WorkflowPhase.APPROVAL:
                await self._run_approval(state)
            case WorkflowPhase.DEVELOPMENT:
                await self._run_development(state)
            case WorkflowPhase.QUALITY_ASSURANCE:
                await self._run_quality_assurance(state)
            case WorkflowPhase.DELIVERY:
                await self._run_delivery(state)

    async def _run_proposal(self, state: WorkflowState) -> None:
        minutes = await self.meeting_coordinator.convene_meeting(
            state.workflow_id,
            state.instruction,
            self.settings.facilitator_id,
        )
        self._ensure_running(state)
        state.meeting_minutes_ids.append(minutes.meeting_id)
        proposal = fold_minutes_into_proposal(state.workflow_id, minutes)
        async with self.repository.lock(state.workflow_id):
            await asyncio.to_thread(
                self.repository.save_proposal,
                proposal,
                feedback=self._revision_feedback(state),
            )
        state.proposal = proposal
        state.progress = None
        state.quality_results = None
        state.deliverable = None
        await self._advance(state, WorkflowPhase.APPROVAL, "Proposal ready for approval")

    async def _run_approval(self, state: WorkflowState) -> None:
        if state.proposal is None:
            raise WorkflowEngineError(f"Workflow {state.workflow_id} has no proposal to approve")
        state.status = WorkflowStatus.WAITING_APPROVAL
        await self._persist(state)
        decision = await self.approval_gate.request_approval(
            state.workflow_id,
            WorkflowPhase.APPROVAL,
            state.proposal,
        )
        state.approval_decisions.append(decision)
        await self._apply_approval_decision(state, decision)

    async def _run_development(self, state: WorkflowState) -> None:
        proposal = state.proposal
        if proposal is None:
            raise WorkflowEngineError(f"Workflow {state.workflow_id} has no proposal to develop")
        if state.progress is None or not state.progress.subtasks:
            state.progress = initial_progress(proposal)
            await self._persist(state)
        progress = state.progress

        order = resolve_execution_order(proposal.task_breakdown, proposal.dependencies)
        tasks = {task.id: task for task in proposal.task_breakdown}
        agent = await self._resolve_agent()

        for task_id in order:
            self._ensure_running(state)
            subtask = progress.find(task_id)
            if subtask is None or subtask.status in (
                SubtaskStatus.COMPLETED,
                SubtaskStatus.SKIPPED,
            ):
                continue
            task = tasks[task_id]
            worker_id = agent.name if agent is not None else f"{task.worker_type.value}-agent"

            subtask.status = SubtaskStatus.WORKING
            subtask.started_at = utc_now_iso()
            subtask.assigned_worker_id = worker_id
            await self._persist(state)
            await self._audit(state, AgentMessageType.TASK_ASSIGN, worker_id, task_id=task_id)

            if agent is not None and requires_coding_agent(task.worker_type):
                failure = await self._run_coding_task(state, task, agent)
                self._ensure_running(state)
                if failure is not None:
                    await self._escalate(state, subtask, failure)
                    return

            subtask.status = SubtaskStatus.REVIEW
            subtask.review_status = ReviewStatus.PENDING
            await self._persist(state)

            verdict = await self._review_task(state, task, agent)
            self._ensure_running(state)
            if verdict == ReviewStatus.NEEDS_REVISION:
                subtask.review_status = ReviewStatus.NEEDS_REVISION
                await self._escalate(state, subtask, "Code review requested revision")
                return

            subtask.review_status = ReviewStatus.APPROVED
            subtask.status = SubtaskStatus.COMPLETED
            subtask.completed_at = utc_now_iso()
            progress.completed_tasks += 1
            await self._persist(state)
            await self._audit(state, AgentMessageType.TASK_COMPLETE, worker_id, task_id=task_id)

        await self._advance(
            state,
            WorkflowPhase.QUALITY_ASSURANCE,
            "Development complete: running quality checks",
        )

    async def _run_quality_assurance(self, state: WorkflowState) -> None:
        agent = await self._resolve_agent()
        if agent is not None:
            working_directory = await self._working_directory(state.project_id)
            results = await asyncio.to_thread(
                run_quality_checks,
                agent,
                working_directory,
                self.settings,
            )
        else:
            results = simulated_quality_results()
        self._ensure_running(state)
        state.quality_results = results
        await self._persist(state)

        if results.passed:
            await self._advance(state, WorkflowPhase.DELIVERY, "Quality gates passed")
            return

        cycles = sum(
            1
            for item in state.phase_history
            if item.from_phase == WorkflowPhase.QUALITY_ASSURANCE
            and item.to_phase == WorkflowPhase.DEVELOPMENT
        )
        if cycles >= self.settings.max_quality_cycles:
            raise WorkflowEngineError(
                f"Quality gates still failing after {cycles} development cycles",
            )
        await self._advance(
            state,
            WorkflowPhase.DEVELOPMENT,
            "Quality gates failed: returning to development",
        )

    async def _run_delivery(self, state: WorkflowState) -> None:
        deliverable = build_deliverable(state)
        state.deliverable = deliverable
        state.status = WorkflowStatus.WAITING_APPROVAL
        await self._persist(state)
        decision = await self.approval_gate.request_approval(
            state.workflow_id,
            WorkflowPhase.DELIVERY,
            deliverable,
        )
        state.approval_decisions.append(decision)
        await self._apply_approval_decision(state, decision)

    async def _apply_approval_decision(
        self,
        state: WorkflowState,
        decision: ApprovalDecision,
    ) -> None:
        phase = state.current_phase
        feedback = decision.feedback
        match decision.action:
            case ApprovalAction.APPROVE:
                if phase == WorkflowPhase.APPROVAL:
                    state.status = WorkflowStatus.RUNNING
                    await self._advance(
                        state,
                        WorkflowPhase.DEVELOPMENT,
                        "Approved: proceeding to development",
                    )
                else:
                    state.status = WorkflowStatus.COMPLETED
                    await self._persist(state)
                    logger.info("Workflow %s completed", state.workflow_id)
            case ApprovalAction.REQUEST_REVISION:
                state.status = WorkflowStatus.RUNNING
                target = (
                    WorkflowPhase.PROPOSAL
                    if phase == WorkflowPhase.APPROVAL
                    else WorkflowPhase.DEVELOPMENT
                )
                await self._advance(
                    state,
                    target,
                    f"Revision requested: {feedback or 'no feedback given'}",
                )
            case ApprovalAction.REJECT:
                await self._terminate(state, f"Rejected: {feedback or 'no feedback given'}")

    async def _run_coding_task(
        self,
        state: WorkflowState,
        task: ProposalTask,
        agent: CodingAgent,
    ) -> str | None:
        """Run one task through the coding agent; return failure details or ``None``."""

        request = CodingTaskRequest(
            working_directory=await self._working_directory(state.project_id),
            prompt=build_coding_prompt(task, state.instruction),
            timeout_seconds=self.settings.coding_timeout_seconds,
        )
        try:
            result = await asyncio.to_thread(agent.execute, request)
        except CodingAgentError as error:
            return f"{error.code}: {error}"
        if result.success:
            logger.info(
                "Task %s of workflow %s finished in %sms",
                task.id,
                state.workflow_id,
                result.duration_ms,
            )
            return None
        return f"exit code: {result.exit_code}, stderr: {result.stderr[:_STDERR_LIMIT]}"

    async def _review_task(
        self,
        state: WorkflowState,
        task: ProposalTask,
        agent: CodingAgent | None,
    ) -> ReviewStatus:
        if agent is None:
            return ReviewStatus.APPROVED
        request = CodingTaskRequest(
            working_directory=await self._working_directory(state.project_id),
            prompt=build_review_prompt(task, state.instruction),
            timeout_seconds=self.settings.review_timeout_seconds,
        )
        try:
            result = await asyncio.to_thread(agent.execute, request)
        except CodingAgentError as error:
            logger.warning("Review of task %s failed, approving: %s", task.id, error)
            return ReviewStatus.APPROVED
        return parse_review_verdict(result.output)

    async def _escalate(
        self,
        state: WorkflowState,
        subtask: SubtaskProgress,
        failure_details: str,
    ) -> None:
        if state.escalation is not None:
            raise WorkflowEngineError(
                f"Workflow {state.workflow_id} already has an open escalation "
                f"for {state.escalation.ticket_id}",
            )
        subtask.status = SubtaskStatus.FAILED
        if state.progress is not None:
            state.progress.failed_tasks += 1
        state.escalation = WorkflowEscalation(
            workflow_id=state.workflow_id,
            ticket_id=subtask.id,
            failure_details=failure_details,
            worker_type=subtask.worker_type,
            retry_count=0,
            created_at=utc_now_iso(),
        )
        state.status = WorkflowStatus.WAITING_APPROVAL
        await self._persist(state)
        logger.warning(
            "Workflow %s escalated task %s: %s",
            state.workflow_id,
            subtask.id,
            failure_details,
        )
        worker_id = subtask.assigned_worker_id or f"{subtask.worker_type.value}-agent"
        await self._audit(
            state,
            AgentMessageType.TASK_FAILED,
            worker_id,
            task_id=subtask.id,
            details=failure_details,
        )
        await self._audit(
            state,
            AgentMessageType.ESCALATE,
            self.settings.facilitator_id,
            task_id=subtask.id,
            details=failure_details,
        )

    async def _terminate(self, state: WorkflowState, reason: str) -> None:
        state.status = WorkflowStatus.TERMINATED
        state.escalation = None
        state.error_log.append(
            ErrorLogEntry(
                message=f"Workflow terminated: {reason}",
                phase=state.current_phase,
                timestamp=utc_now_iso(),
                recoverable=False,
            ),
        )
        self.approval_gate.cancel_approval(state.workflow_id, reason)
        await self._persist(state)
        logger.info("Workflow %s terminated: %s", state.workflow_id, reason)

    async def _record_failure(
        self,
        state: WorkflowState,
        phase: WorkflowPhase,
        error: Exception,
    ) -> None:
        if state.is_terminal:
            return
        state.error_log.append(
            ErrorLogEntry(
                message=str(error) or type(error).__name__,
                phase=phase,
                timestamp=utc_now_iso(),
                recoverable=False,
            ),
        )
        state.status = WorkflowStatus.FAILED
        try:
            await self._persist(state)
        except WorkflowPersistenceError:
            logger.exception("Could not persist failure of workflow %s", state.workflow_id)

    async def _advance(self, state: WorkflowState, target: WorkflowPhase, reason: str) -> None:
        self._ensure_running(state)
        self._record_transition(state, target, reason)
        await self._persist(state)

    def _record_transition(
        self,
        state: WorkflowState,
        target: WorkflowPhase,
        reason: str,
    ) -> None:
        current = state.current_phase
        if target not in VALID_TRANSITIONS.get(current, ()):
            raise InvalidTransitionError(
                f"Invalid transition from {current.value} to {target.value}",
            )
        state.phase_history.append(
            PhaseTransition(
                from_phase=current,
                to_phase=target,
                timestamp=utc_now_iso(),
                reason=reason,
            ),
        )
        state.current_phase = target
        logger.info(
            "Workflow %s: %s -> %s (%s)",
            state.workflow_id,
            current.value,
            target.value,
            reason,
        )

    async def _persist(self, state: WorkflowState) -> None:
        state.updated_at = utc_now_iso()
        payload = state.to_dict()
        async with self.repository.lock(state.workflow_id):
            await asyncio.to_thread(self.repository.write_state, state.workflow_id, payload)

    async def _require(self, workflow_id: str) -> WorkflowState:
        state = await self.get_workflow_state(workflow_id)
        if state is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return state

    async def _resolve_agent(self) -> CodingAgent | None:
        if self.coding_agents is None:
            return None
        try:
            return await asyncio.to_thread(self.coding_agents.select_adapter, self.preferred_agent)
        except CodingAgentError as error:
            logger.info("No coding agent available, simulating work: %s", error)
            return None

    async def _working_directory(self, project_id: str) -> Path:
        if self.workspace_manager is not None:
            info = await asyncio.to_thread(self.workspace_manager.get_workspace_info, project_id)
            if info is not None:
                return info.local_path
        return Path(".")

    async def _audit(
        self,
        state: WorkflowState,
        message_type: AgentMessageType,
        to_agent: str,
        **payload: Any,
    ) -> None:
        if self.bus is None:
            return
        try:
            message = self.bus.create_message(
                message_type,
                self.settings.facilitator_id,
                to_agent,
                {"workflow_id": state.workflow_id, **payload},
            )
            await self.bus.send(message, run_id=state.run_id)
        except (MessageBusError, OSError) as error:
            logger.warning(
                "Could not record %s for workflow %s: %s",
                message_type.value,
                state.workflow_id,
                error,
            )

    def _revision_feedback(self, state: WorkflowState) -> str | None:
        for decision in reversed(state.approval_decisions):
            if decision.phase == WorkflowPhase.APPROVAL:
                if decision.action == ApprovalAction.REQUEST_REVISION:
                    return decision.feedback
                return None
        return None

    def _ensure_running(self, state: WorkflowState) -> None:
        if state.status != WorkflowStatus.RUNNING:
            raise _WorkflowHalted(state.workflow_id)

    def _ensure_awaiting_approval(self, state: WorkflowState) -> None:
        if state.status != WorkflowStatus.WAITING_APPROVAL or state.escalation is not None:
            raise InvalidTransitionError(
                f"Workflow {state.workflow_id} is not awaiting an approval decision",
            )
        if state.current_phase not in (WorkflowPhase.APPROVAL, WorkflowPhase.DELIVERY):
            raise InvalidTransitionError(
                f"Workflow {state.workflow_id} has no approval point in "
                f"{state.current_phase.value}",
            )
