"""Shared test fixtures."""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from agent_company.bus import AgentBus, FileMessageQueue
from agent_company.coding import CodingAgentRegistry, CodingTaskRequest, CodingTaskResult
from agent_company.config import CodingAgentSettings, Settings, WorkflowSettings
from agent_company.workflow import (
    ApprovalGate,
    MeetingCoordinator,
    WorkflowEngine,
    WorkflowRepository,
)
from agent_company.workflow.errors import WorkflowPersistenceError
from agent_company.workflow.quality import LINT_PROMPT, TEST_PROMPT
from agent_company.workspace import DirectoryWorkspaceManager

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m agent_company.coding.echo_agent --prompt-file {{prompt_file}}"
)


class ScriptedAgent:
    """In-process coding agent with scripted outcomes per prompt kind."""

    def __init__(
        self,
        name: str = "scripted",
        *,
        coding_failures: int = 0,
        review_output: str = "APPROVED",
        quality_success: bool = True,
        available: bool = True,
    ) -> None:
        self.name = name
        self.coding_failures = coding_failures
        self.review_output = review_output
        self.quality_success = quality_success
        self.available = available
        self.prompts: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def execute(self, request: CodingTaskRequest) -> CodingTaskResult:
        self.prompts.append(request.prompt)
        if request.prompt in (LINT_PROMPT, TEST_PROMPT):
            return _result(self.quality_success, "checks finished")
        if request.prompt.startswith("# Code review"):
            return _result(True, self.review_output)
        if self.coding_failures > 0:
            self.coding_failures -= 1
            return CodingTaskResult(
                success=False,
                exit_code=2,
                output="",
                stderr="compilation failed",
                duration_ms=1,
            )
        return _result(True, "done")

    @property
    def coding_calls(self) -> int:
        return sum(1 for prompt in self.prompts if prompt.startswith("# Task:"))


class FailingRepository(WorkflowRepository):
    """Repository whose state writes fail while ``fail_writes`` is set."""

    fail_writes = False

    def write_state(self, workflow_id: str, payload: dict[str, Any]) -> None:
        if self.fail_writes:
            raise WorkflowPersistenceError(f"Failed to save workflow state: {workflow_id}")
        super().write_state(workflow_id, payload)


def _result(success: bool, output: str) -> CodingTaskResult:
    return CodingTaskResult(
        success=success,
        exit_code=0 if success else 1,
        output=output,
        stderr="",
        duration_ms=1,
    )


@pytest.fixture()
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "runs"


@pytest.fixture()
def make_engine(tmp_path: Path, state_dir: Path):
    """Build engines sharing one state directory; a second call simulates a restart."""

    def _make(
        agent: ScriptedAgent | None = None,
        *,
        with_bus: bool = False,
        max_quality_cycles: int = 3,
        repository: WorkflowRepository | None = None,
    ) -> WorkflowEngine:
        registry = None
        if agent is not None:
            registry = CodingAgentRegistry()
            registry.register(agent)
        bus = None
        if with_bus:
            bus = AgentBus(FileMessageQueue(tmp_path / "bus"), poll_interval_seconds=0.01)
        return WorkflowEngine(
            repository or WorkflowRepository(state_dir),
            MeetingCoordinator(bus, state_dir),
            ApprovalGate(state_dir),
            settings=WorkflowSettings(max_quality_cycles=max_quality_cycles),
            coding_agents=registry,
            workspace_manager=DirectoryWorkspaceManager(tmp_path / "workspaces"),
            bus=bus,
        )

    return _make


@pytest.fixture()
def echo_agent(monkeypatch, tmp_path: Path):
    """Monkeypatch Settings.from_env to run the local echo agent under tmp_path."""

    original_from_env = Settings.from_env

    def _patched_from_env(state_dir=None):
        settings = original_from_env(state_dir=state_dir)
        return replace(
            settings,
            bus=replace(settings.bus, base_path=tmp_path / "bus", db_path=tmp_path / "bus.db"),
            coding=CodingAgentSettings(
                enabled=True,
                preferred_agent="echo",
                command_templates={"echo": ECHO_AGENT_COMMAND_TEMPLATE},
            ),
            workspace=replace(settings.workspace, projects_root=tmp_path / "workspaces"),
        )

    monkeypatch.setattr(Settings, "from_env", staticmethod(_patched_from_env))
