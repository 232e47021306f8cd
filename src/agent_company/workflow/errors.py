"""Exception taxonomy for workflow components."""

from __future__ import annotations


class WorkflowEngineError(RuntimeError):
    """Base error raised by the workflow engine."""


class InvalidWorkflowInputError(WorkflowEngineError):
    """Blank or malformed caller input, rejected before any mutation."""


class InvalidTransitionError(WorkflowEngineError):
    """Phase change that violates the transition or rollback rules."""


class WorkflowNotFoundError(WorkflowEngineError):
    """Unknown workflow id or missing escalation."""


class WorkflowPersistenceError(WorkflowEngineError):
    """Workflow documents could not be read or written."""


class ApprovalGateError(RuntimeError):
    """Base error raised by the approval gate."""


class ApprovalCancelledError(ApprovalGateError):
    """Raised into a suspended approval request when it is cancelled."""

    def __init__(self, workflow_id: str, reason: str) -> None:
        super().__init__(f"Approval for workflow {workflow_id} cancelled: {reason}")
        self.workflow_id = workflow_id
        self.reason = reason


class MeetingCoordinatorError(RuntimeError):
    """Base error raised by the meeting coordinator."""


class DependencyCycleError(WorkflowEngineError):
    """Task dependencies contain a cycle."""

    def __init__(self, unresolved: list[str]) -> None:
        super().__init__(f"Circular task dependencies detected: {', '.join(unresolved)}")
        self.unresolved = unresolved
