"""Domain models for workflow state, proposals, meetings and deliverables."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class WorkflowPhase(str, Enum):
    """Sequential workflow stages."""

    PROPOSAL = "proposal"
    APPROVAL = "approval"
    DEVELOPMENT = "development"
    QUALITY_ASSURANCE = "quality_assurance"
    DELIVERY = "delivery"


PHASE_ORDER: tuple[WorkflowPhase, ...] = (
    WorkflowPhase.PROPOSAL,
    WorkflowPhase.APPROVAL,
    WorkflowPhase.DEVELOPMENT,
    WorkflowPhase.QUALITY_ASSURANCE,
    WorkflowPhase.DELIVERY,
)

VALID_TRANSITIONS: dict[WorkflowPhase, tuple[WorkflowPhase, ...]] = {
    WorkflowPhase.PROPOSAL: (WorkflowPhase.APPROVAL,),
    WorkflowPhase.APPROVAL: (WorkflowPhase.DEVELOPMENT, WorkflowPhase.PROPOSAL),
    WorkflowPhase.DEVELOPMENT: (WorkflowPhase.QUALITY_ASSURANCE,),
    WorkflowPhase.QUALITY_ASSURANCE: (WorkflowPhase.DELIVERY, WorkflowPhase.DEVELOPMENT),
    WorkflowPhase.DELIVERY: (WorkflowPhase.DEVELOPMENT,),
}


class WorkflowStatus(str, Enum):
    """Coarse workflow lifecycle states."""

    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    FAILED = "failed"
    COMPLETED = "completed"
    TERMINATED = "terminated"


TERMINAL_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.TERMINATED})


class ApprovalAction(str, Enum):
    """Decision-maker actions at an approval gate."""

    APPROVE = "approve"
    REQUEST_REVISION = "request_revision"
    REJECT = "reject"


class EscalationAction(str, Enum):
    """Decision-maker actions for a development escalation."""

    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"


class WorkerType(str, Enum):
    """Closed set of specialist worker types."""

    RESEARCH = "research"
    DESIGN = "design"
    DESIGNER = "designer"
    DEVELOPER = "developer"
    TEST = "test"
    REVIEWER = "reviewer"


class SubtaskStatus(str, Enum):
    """Development-phase subtask lifecycle."""

    PENDING = "pending"
    WORKING = "working"
    REVIEW = "review"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"


class AgendaStatus(str, Enum):
    PENDING = "pending"
    DISCUSSING = "discussing"
    CONCLUDED = "concluded"


def requires_coding_agent(worker_type: WorkerType) -> bool:
    """Return whether work of this type is delegated to a coding agent."""

    match worker_type:
        case WorkerType.DEVELOPER | WorkerType.TEST:
            return True
        case WorkerType.RESEARCH | WorkerType.DESIGN | WorkerType.DESIGNER | WorkerType.REVIEWER:
            return False


def parse_worker_type(value: Any) -> WorkerType:
    """Parse a worker type, rejecting unknown values."""

    try:
        return WorkerType(value)
    except ValueError as error:
        raise ValueError(f"Unknown worker type: {value!r}") from error


@dataclass(slots=True, frozen=True)
class PhaseTransition:
    """Immutable record of one phase change."""

    from_phase: WorkflowPhase
    to_phase: WorkflowPhase
    timestamp: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_phase.value,
            "to": self.to_phase.value,
            "timestamp": self.timestamp,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PhaseTransition:
        return cls(
            from_phase=WorkflowPhase(raw["from"]),
            to_phase=WorkflowPhase(raw["to"]),
            timestamp=str(raw["timestamp"]),
            reason=str(raw.get("reason", "")),
        )


@dataclass(slots=True, frozen=True)
class ErrorLogEntry:
    message: str
    phase: WorkflowPhase
    timestamp: str
    recoverable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ErrorLogEntry:
        return cls(
            message=str(raw["message"]),
            phase=WorkflowPhase(raw["phase"]),
            timestamp=str(raw["timestamp"]),
            recoverable=bool(raw.get("recoverable", False)),
        )


@dataclass(slots=True, frozen=True)
class ApprovalDecision:
    """One decision submitted at an approval gate."""

    workflow_id: str
    phase: WorkflowPhase
    action: ApprovalAction
    decided_at: str
    feedback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ApprovalDecision:
        feedback = raw.get("feedback")
        return cls(
            workflow_id=str(raw["workflow_id"]),
            phase=WorkflowPhase(raw["phase"]),
            action=ApprovalAction(raw["action"]),
            decided_at=str(raw["decided_at"]),
            feedback=str(feedback) if feedback is not None else None,
        )


@dataclass(slots=True, frozen=True)
class ProposalTask:
    id: str
    title: str
    description: str
    worker_type: WorkerType
    estimated_effort: str
    dependencies: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["dependencies"] = list(self.dependencies)
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ProposalTask:
        return cls(
            id=str(raw["id"]),
            title=str(raw["title"]),
            description=str(raw.get("description", "")),
            worker_type=parse_worker_type(raw["worker_type"]),
            estimated_effort=str(raw.get("estimated_effort", "")),
            dependencies=tuple(str(item) for item in raw.get("dependencies", [])),
        )


@dataclass(slots=True, frozen=True)
class WorkerAssignment:
    task_id: str
    worker_type: WorkerType
    rationale: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WorkerAssignment:
        return cls(
            task_id=str(raw["task_id"]),
            worker_type=parse_worker_type(raw["worker_type"]),
            rationale=str(raw.get("rationale", "")),
        )


@dataclass(slots=True, frozen=True)
class RiskItem:
    description: str
    severity: str
    mitigation: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RiskItem:
        return cls(
            description=str(raw["description"]),
            severity=str(raw["severity"]),
            mitigation=str(raw.get("mitigation", "")),
        )


@dataclass(slots=True, frozen=True)
class TaskDependency:
    """Edge where ``from_task`` blocks ``to_task``."""

    from_task: str
    to_task: str
    type: str = "blocks"

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.from_task, "to": self.to_task, "type": self.type}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskDependency:
        return cls(
            from_task=str(raw["from"]),
            to_task=str(raw["to"]),
            type=str(raw.get("type", "blocks")),
        )


@dataclass(slots=True, frozen=True)
class Proposal:
    """Structured output of the proposal phase."""

    workflow_id: str
    summary: str
    scope: str
    task_breakdown: tuple[ProposalTask, ...]
    worker_assignments: tuple[WorkerAssignment, ...]
    risk_assessment: tuple[RiskItem, ...]
    dependencies: tuple[TaskDependency, ...]
    meeting_minutes_ids: tuple[str, ...]
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "summary": self.summary,
            "scope": self.scope,
            "task_breakdown": [task.to_dict() for task in self.task_breakdown],
            "worker_assignments": [item.to_dict() for item in self.worker_assignments],
            "risk_assessment": [item.to_dict() for item in self.risk_assessment],
            "dependencies": [item.to_dict() for item in self.dependencies],
            "meeting_minutes_ids": list(self.meeting_minutes_ids),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Proposal:
        return cls(
            workflow_id=str(raw["workflow_id"]),
            summary=str(raw.get("summary", "")),
            scope=str(raw.get("scope", "")),
            task_breakdown=tuple(ProposalTask.from_dict(item) for item in raw["task_breakdown"]),
            worker_assignments=tuple(
                WorkerAssignment.from_dict(item) for item in raw.get("worker_assignments", [])
            ),
            risk_assessment=tuple(
                RiskItem.from_dict(item) for item in raw.get("risk_assessment", [])
            ),
            dependencies=tuple(
                TaskDependency.from_dict(item) for item in raw.get("dependencies", [])
            ),
            meeting_minutes_ids=tuple(str(item) for item in raw.get("meeting_minutes_ids", [])),
            created_at=str(raw["created_at"]),
        )


@dataclass(slots=True)
class MeetingParticipant:
    agent_id: str
    role: str
    worker_type: WorkerType
    expertise: tuple[str, ...] = ()
    is_facilitator: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["expertise"] = list(self.expertise)
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MeetingParticipant:
        return cls(
            agent_id=str(raw["agent_id"]),
            role=str(raw["role"]),
            worker_type=parse_worker_type(raw["worker_type"]),
            expertise=tuple(str(item) for item in raw.get("expertise", [])),
            is_facilitator=bool(raw.get("is_facilitator", False)),
        )


@dataclass(slots=True)
class AgendaItem:
    id: str
    topic: str
    description: str
    status: AgendaStatus = AgendaStatus.PENDING
    summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AgendaItem:
        summary = raw.get("summary")
        return cls(
            id=str(raw["id"]),
            topic=str(raw["topic"]),
            description=str(raw.get("description", "")),
            status=AgendaStatus(raw.get("status", AgendaStatus.PENDING.value)),
            summary=str(summary) if summary is not None else None,
        )


@dataclass(slots=True, frozen=True)
class MeetingStatement:
    participant_id: str
    participant_role: str
    content: str
    agenda_item_id: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MeetingStatement:
        return cls(
            participant_id=str(raw["participant_id"]),
            participant_role=str(raw["participant_role"]),
            content=str(raw["content"]),
            agenda_item_id=str(raw["agenda_item_id"]),
            timestamp=str(raw["timestamp"]),
        )


@dataclass(slots=True, frozen=True)
class MeetingDecision:
    agenda_item_id: str
    decision: str
    rationale: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MeetingDecision:
        return cls(
            agenda_item_id=str(raw["agenda_item_id"]),
            decision=str(raw["decision"]),
            rationale=str(raw.get("rationale", "")),
        )


@dataclass(slots=True, frozen=True)
class ActionItem:
    description: str
    assignee: str
    worker_type: WorkerType
    priority: str = "medium"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ActionItem:
        return cls(
            description=str(raw["description"]),
            assignee=str(raw["assignee"]),
            worker_type=parse_worker_type(raw["worker_type"]),
            priority=str(raw.get("priority", "medium")),
        )


@dataclass(slots=True)
class MeetingMinutes:
    """Record of one convened meeting."""

    meeting_id: str
    workflow_id: str
    agenda: list[AgendaItem]
    participants: list[MeetingParticipant]
    statements: list[MeetingStatement]
    decisions: list[MeetingDecision]
    action_items: list[ActionItem]
    facilitator: str
    started_at: str
    ended_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "workflow_id": self.workflow_id,
            "agenda": [item.to_dict() for item in self.agenda],
            "participants": [item.to_dict() for item in self.participants],
            "statements": [item.to_dict() for item in self.statements],
            "decisions": [item.to_dict() for item in self.decisions],
            "action_items": [item.to_dict() for item in self.action_items],
            "facilitator": self.facilitator,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MeetingMinutes:
        return cls(
            meeting_id=str(raw["meeting_id"]),
            workflow_id=str(raw["workflow_id"]),
            agenda=[AgendaItem.from_dict(item) for item in raw.get("agenda", [])],
            participants=[
                MeetingParticipant.from_dict(item) for item in raw.get("participants", [])
            ],
            statements=[MeetingStatement.from_dict(item) for item in raw.get("statements", [])],
            decisions=[MeetingDecision.from_dict(item) for item in raw.get("decisions", [])],
            action_items=[ActionItem.from_dict(item) for item in raw.get("action_items", [])],
            facilitator=str(raw["facilitator"]),
            started_at=str(raw["started_at"]),
            ended_at=str(raw["ended_at"]),
        )


@dataclass(slots=True)
class SubtaskProgress:
    id: str
    title: str
    worker_type: WorkerType
    status: SubtaskStatus = SubtaskStatus.PENDING
    review_status: ReviewStatus | None = None
    assigned_worker_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SubtaskProgress:
        review_status = raw.get("review_status")
        return cls(
            id=str(raw["id"]),
            title=str(raw["title"]),
            worker_type=parse_worker_type(raw["worker_type"]),
            status=SubtaskStatus(raw.get("status", SubtaskStatus.PENDING.value)),
            review_status=ReviewStatus(review_status) if review_status is not None else None,
            assigned_worker_id=raw.get("assigned_worker_id"),
            started_at=raw.get("started_at"),
            completed_at=raw.get("completed_at"),
        )


@dataclass(slots=True)
class WorkflowProgress:
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    subtasks: list[SubtaskProgress] = field(default_factory=list)

    def find(self, task_id: str) -> SubtaskProgress | None:
        for subtask in self.subtasks:
            if subtask.id == task_id:
                return subtask
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "subtasks": [item.to_dict() for item in self.subtasks],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WorkflowProgress:
        return cls(
            total_tasks=int(raw.get("total_tasks", 0)),
            completed_tasks=int(raw.get("completed_tasks", 0)),
            failed_tasks=int(raw.get("failed_tasks", 0)),
            subtasks=[SubtaskProgress.from_dict(item) for item in raw.get("subtasks", [])],
        )


@dataclass(slots=True, frozen=True)
class LintResult:
    passed: bool
    error_count: int
    warning_count: int
    details: str


@dataclass(slots=True, frozen=True)
class TestRunResult:
    passed: bool
    total: int
    passed_count: int
    failed_count: int
    coverage: float


@dataclass(slots=True, frozen=True)
class FinalReviewResult:
    passed: bool
    reviewer: str
    feedback: str


@dataclass(slots=True, frozen=True)
class QualityResults:
    lint_result: LintResult | None = None
    test_result: TestRunResult | None = None
    final_review_result: FinalReviewResult | None = None

    @property
    def passed(self) -> bool:
        return all(
            item is not None and item.passed
            for item in (self.lint_result, self.test_result, self.final_review_result)
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> QualityResults:
        lint = raw.get("lint_result")
        test = raw.get("test_result")
        review = raw.get("final_review_result")
        return cls(
            lint_result=LintResult(**lint) if lint else None,
            test_result=TestRunResult(**test) if test else None,
            final_review_result=FinalReviewResult(**review) if review else None,
        )


@dataclass(slots=True, frozen=True)
class WorkflowEscalation:
    workflow_id: str
    ticket_id: str
    failure_details: str
    worker_type: WorkerType
    retry_count: int
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WorkflowEscalation:
        return cls(
            workflow_id=str(raw["workflow_id"]),
            ticket_id=str(raw["ticket_id"]),
            failure_details=str(raw.get("failure_details", "")),
            worker_type=parse_worker_type(raw["worker_type"]),
            retry_count=int(raw.get("retry_count", 0)),
            created_at=str(raw["created_at"]),
        )


@dataclass(slots=True, frozen=True)
class EscalationDecision:
    action: EscalationAction
    reason: str = ""
    decided_at: str | None = None


@dataclass(slots=True, frozen=True)
class EscalationOutcome:
    """Result of applying an escalation decision.

    ``resume_required`` tells the caller that phase execution is not resumed
    automatically and must be re-invoked through ``resume_workflow``.
    """

    workflow_id: str
    action: EscalationAction
    resume_required: bool


@dataclass(slots=True, frozen=True)
class ChangeEntry:
    path: str
    action: str = "created"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class TestResultSummary:
    lint_passed: bool
    lint_output: str
    test_passed: bool
    test_output: str
    overall_passed: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class ReviewLogEntry:
    timestamp: str
    run_id: str
    ticket_id: str
    event_type: str
    feedback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class Deliverable:
    """Structured output presented for final approval."""

    workflow_id: str
    summary_report: str
    changes: tuple[ChangeEntry, ...]
    test_results: TestResultSummary
    review_history: tuple[ReviewLogEntry, ...]
    artifacts: tuple[str, ...]
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "summary_report": self.summary_report,
            "changes": [item.to_dict() for item in self.changes],
            "test_results": self.test_results.to_dict(),
            "review_history": [item.to_dict() for item in self.review_history],
            "artifacts": list(self.artifacts),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Deliverable:
        return cls(
            workflow_id=str(raw["workflow_id"]),
            summary_report=str(raw.get("summary_report", "")),
            changes=tuple(ChangeEntry(**item) for item in raw.get("changes", [])),
            test_results=TestResultSummary(**raw["test_results"]),
            review_history=tuple(ReviewLogEntry(**item) for item in raw.get("review_history", [])),
            artifacts=tuple(str(item) for item in raw.get("artifacts", [])),
            created_at=str(raw["created_at"]),
        )


ApprovalContent = Proposal | Deliverable


@dataclass(slots=True, frozen=True)
class PendingApproval:
    """Outstanding request awaiting a human decision."""

    workflow_id: str
    phase: WorkflowPhase
    content: ApprovalContent
    created_at: str


@dataclass(slots=True)
class WorkflowState:
    """Full state of one workflow instance."""

    workflow_id: str
    run_id: str
    project_id: str
    instruction: str
    current_phase: WorkflowPhase
    status: WorkflowStatus
    created_at: str
    updated_at: str
    phase_history: list[PhaseTransition] = field(default_factory=list)
    approval_decisions: list[ApprovalDecision] = field(default_factory=list)
    error_log: list[ErrorLogEntry] = field(default_factory=list)
    meeting_minutes_ids: list[str] = field(default_factory=list)
    proposal: Proposal | None = None
    deliverable: Deliverable | None = None
    progress: WorkflowProgress | None = None
    quality_results: QualityResults | None = None
    escalation: WorkflowEscalation | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "run_id": self.run_id,
            "project_id": self.project_id,
            "instruction": self.instruction,
            "current_phase": self.current_phase.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "phase_history": [item.to_dict() for item in self.phase_history],
            "approval_decisions": [item.to_dict() for item in self.approval_decisions],
            "error_log": [item.to_dict() for item in self.error_log],
            "meeting_minutes_ids": list(self.meeting_minutes_ids),
            "proposal": self.proposal.to_dict() if self.proposal else None,
            "deliverable": self.deliverable.to_dict() if self.deliverable else None,
            "progress": self.progress.to_dict() if self.progress else None,
            "quality_results": self.quality_results.to_dict() if self.quality_results else None,
            "escalation": self.escalation.to_dict() if self.escalation else None,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WorkflowState:
        missing = [
            key
            for key in ("workflow_id", "project_id", "instruction", "current_phase", "status")
            if key not in raw
        ]
        if missing:
            raise ValueError(f"Workflow state missing required fields: {', '.join(missing)}")

        proposal = raw.get("proposal")
        deliverable = raw.get("deliverable")
        progress = raw.get("progress")
        quality = raw.get("quality_results")
        escalation = raw.get("escalation")
        return cls(
            workflow_id=str(raw["workflow_id"]),
            run_id=str(raw.get("run_id", raw["workflow_id"])),
            project_id=str(raw["project_id"]),
            instruction=str(raw["instruction"]),
            current_phase=WorkflowPhase(raw["current_phase"]),
            status=WorkflowStatus(raw["status"]),
            created_at=str(raw.get("created_at", "")),
            updated_at=str(raw.get("updated_at", "")),
            phase_history=[
                PhaseTransition.from_dict(item) for item in raw.get("phase_history", [])
            ],
            approval_decisions=[
                ApprovalDecision.from_dict(item) for item in raw.get("approval_decisions", [])
            ],
            error_log=[ErrorLogEntry.from_dict(item) for item in raw.get("error_log", [])],
            meeting_minutes_ids=[str(item) for item in raw.get("meeting_minutes_ids", [])],
            proposal=Proposal.from_dict(proposal) if proposal else None,
            deliverable=Deliverable.from_dict(deliverable) if deliverable else None,
            progress=WorkflowProgress.from_dict(progress) if progress else None,
            quality_results=QualityResults.from_dict(quality) if quality else None,
            escalation=WorkflowEscalation.from_dict(escalation) if escalation else None,
        )
