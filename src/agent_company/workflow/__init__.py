"""Workflow engine, approval gate and meeting coordinator."""

from agent_company.workflow.approval_gate import ApprovalGate
from agent_company.workflow.engine import WorkflowEngine
from agent_company.workflow.meeting import MeetingCoordinator
from agent_company.workflow.repository import WorkflowRepository

__all__ = [
    "ApprovalGate",
    "MeetingCoordinator",
    "WorkflowEngine",
    "WorkflowRepository",
]
