"""CLI entrypoint for agent-company."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from agent_company import __version__
from agent_company.bus import MessageBusError
from agent_company.coding import CodingAgentError
from agent_company.controllers import (
    AgentCompanyCliController,
    BusCleanupCommand,
    BusHistoryCommand,
    WorkflowApproveCommand,
    WorkflowEscalationCommand,
    WorkflowInspectCommand,
    WorkflowListCommand,
    WorkflowRestoreCommand,
    WorkflowRollbackCommand,
    WorkflowStartCommand,
    WorkflowTerminateCommand,
)
from agent_company.workflow.errors import (
    ApprovalGateError,
    MeetingCoordinatorError,
    WorkflowEngineError,
)
from agent_company.workflow.models import (
    PHASE_ORDER,
    ApprovalAction,
    EscalationAction,
    WorkflowStatus,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentCompanyCliController()

_COMMAND_ERRORS = (
    WorkflowEngineError,
    ApprovalGateError,
    MeetingCoordinatorError,
    MessageBusError,
    CodingAgentError,
    ValueError,
)
_Command = TypeVar("_Command")

STATE_DIR_OPTION = click.option(
    "--state-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Workflow state directory (defaults to AGENT_COMPANY_STATE_DIR).",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-company")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
    help="Logging verbosity.",
)
def agent_company(log_level: str) -> None:
    """Run multi-agent development workflows with human approval gates.

    A workflow moves through **proposal**, **approval**, **development**,
    **quality_assurance** and **delivery**. Approval points and escalations
    wait for a decision submitted with `workflow approve` or
    `workflow escalate`.
    """

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_company.group()
def workflow() -> None:
    """Workflow commands."""


@workflow.command("start")
@STATE_DIR_OPTION
@click.option("--project", "project_id", required=True, help="Project id for the workspace.")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Wait until the workflow reaches an approval point or stops.",
)
@click.argument("instruction")
def workflow_start(state_dir: Path | None, project_id: str, wait: bool, instruction: str) -> None:
    """Start a workflow from a natural-language instruction."""

    _emit_lines(
        _invoke(
            CONTROLLER.start,
            WorkflowStartCommand(
                state_dir=state_dir,
                instruction=instruction,
                project_id=project_id,
                wait=wait,
            ),
        ),
    )


@workflow.command("status")
@STATE_DIR_OPTION
@click.argument("workflow_id")
def workflow_status(state_dir: Path | None, workflow_id: str) -> None:
    """Show phase, progress, history and errors of one workflow."""

    _emit_lines(
        _invoke(
            CONTROLLER.status,
            WorkflowInspectCommand(state_dir=state_dir, workflow_id=workflow_id),
        ),
    )


@workflow.command("list")
@STATE_DIR_OPTION
@click.option(
    "--status",
    type=click.Choice([item.value for item in WorkflowStatus], case_sensitive=False),
    default=None,
    help="Only show workflows with this status.",
)
def workflow_list(state_dir: Path | None, status: str | None) -> None:
    """List persisted workflows ordered by creation time."""

    _emit_lines(
        _invoke(CONTROLLER.list_workflows, WorkflowListCommand(state_dir=state_dir, status=status)),
    )


@workflow.command("approve")
@STATE_DIR_OPTION
@click.option(
    "--action",
    type=click.Choice([item.value for item in ApprovalAction], case_sensitive=False),
    default=ApprovalAction.APPROVE.value,
    show_default=True,
    help="Decision for the current approval point.",
)
@click.option("--feedback", default=None, help="Feedback stored with the decision.")
@click.argument("workflow_id")
def workflow_approve(
    state_dir: Path | None,
    action: str,
    feedback: str | None,
    workflow_id: str,
) -> None:
    """Submit a decision for a workflow waiting on approval or delivery."""

    _emit_lines(
        _invoke(
            CONTROLLER.approve,
            WorkflowApproveCommand(
                state_dir=state_dir,
                workflow_id=workflow_id,
                action=action,
                feedback=feedback,
            ),
        ),
    )


@workflow.command("escalate")
@STATE_DIR_OPTION
@click.option("--reason", default="", help="Reason recorded with the decision.")
@click.option(
    "--resume/--no-resume",
    default=True,
    show_default=True,
    help="Resume development after retry or skip.",
)
@click.argument("workflow_id")
@click.argument(
    "action",
    type=click.Choice([item.value for item in EscalationAction], case_sensitive=False),
)
def workflow_escalate(
    state_dir: Path | None,
    reason: str,
    resume: bool,
    workflow_id: str,
    action: str,
) -> None:
    """Resolve a failed-task escalation with retry, skip or abort."""

    _emit_lines(
        _invoke(
            CONTROLLER.escalate,
            WorkflowEscalationCommand(
                state_dir=state_dir,
                workflow_id=workflow_id,
                action=action,
                reason=reason,
                resume=resume,
            ),
        ),
    )


@workflow.command("resume")
@STATE_DIR_OPTION
@click.argument("workflow_id")
def workflow_resume(state_dir: Path | None, workflow_id: str) -> None:
    """Continue phase execution of a running workflow."""

    _emit_lines(
        _invoke(
            CONTROLLER.resume,
            WorkflowInspectCommand(state_dir=state_dir, workflow_id=workflow_id),
        ),
    )


@workflow.command("rollback")
@STATE_DIR_OPTION
@click.option(
    "--resume/--no-resume",
    default=False,
    show_default=True,
    help="Resume execution from the target phase.",
)
@click.argument("workflow_id")
@click.argument(
    "phase",
    type=click.Choice([item.value for item in PHASE_ORDER], case_sensitive=False),
)
def workflow_rollback(state_dir: Path | None, resume: bool, workflow_id: str, phase: str) -> None:
    """Return a workflow to an earlier phase."""

    _emit_lines(
        _invoke(
            CONTROLLER.rollback,
            WorkflowRollbackCommand(
                state_dir=state_dir,
                workflow_id=workflow_id,
                phase=phase,
                resume=resume,
            ),
        ),
    )


@workflow.command("terminate")
@STATE_DIR_OPTION
@click.option("--reason", default="terminated by operator", show_default=True)
@click.argument("workflow_id")
def workflow_terminate(state_dir: Path | None, reason: str, workflow_id: str) -> None:
    """Stop a workflow permanently."""

    _emit_lines(
        _invoke(
            CONTROLLER.terminate,
            WorkflowTerminateCommand(state_dir=state_dir, workflow_id=workflow_id, reason=reason),
        ),
    )


@workflow.command("restore")
@STATE_DIR_OPTION
def workflow_restore(state_dir: Path | None) -> None:
    """Reload persisted workflows, resume running ones and list pending approvals."""

    _emit_lines(_invoke(CONTROLLER.restore, WorkflowRestoreCommand(state_dir=state_dir)))


@workflow.command("meetings")
@STATE_DIR_OPTION
@click.argument("workflow_id")
def workflow_meetings(state_dir: Path | None, workflow_id: str) -> None:
    """Print the minutes of meetings held for a workflow."""

    _emit_lines(
        _invoke(
            CONTROLLER.meetings,
            WorkflowInspectCommand(state_dir=state_dir, workflow_id=workflow_id),
        ),
    )


@agent_company.group()
def bus() -> None:
    """Agent message bus commands."""


@bus.command("history")
@STATE_DIR_OPTION
@click.argument("run_id")
def bus_history(state_dir: Path | None, run_id: str) -> None:
    """Show messages logged for a workflow run."""

    _emit_lines(
        _invoke(CONTROLLER.bus_history, BusHistoryCommand(state_dir=state_dir, run_id=run_id)),
    )


@bus.command("cleanup")
@STATE_DIR_OPTION
@click.option(
    "--retention-days",
    type=click.IntRange(min=0),
    default=None,
    help="Override AGENT_COMPANY_BUS_RETENTION_DAYS.",
)
def bus_cleanup(state_dir: Path | None, retention_days: int | None) -> None:
    """Delete queued and logged messages older than the retention window."""

    _emit_lines(
        _invoke(
            CONTROLLER.bus_cleanup,
            BusCleanupCommand(state_dir=state_dir, retention_days=retention_days),
        ),
    )


@agent_company.group()
def agents() -> None:
    """Coding agent commands."""


@agents.command("list")
def agents_list() -> None:
    """Show configured coding agents and whether their executables are installed."""

    try:
        lines = CONTROLLER.list_agents()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _invoke(handler: Callable[[_Command], list[str]], command: _Command) -> list[str]:
    try:
        return handler(command)
    except _COMMAND_ERRORS as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_company()
