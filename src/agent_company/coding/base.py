"""Coding agent interface and errors."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class CodingAgentError(RuntimeError):
    """Coding agent execution error with a machine-readable code."""

    def __init__(self, message: str, *, code: str, agent_name: str) -> None:
        super().__init__(message)
        self.code = code
        self.agent_name = agent_name


class CodingAgentTimeoutError(CodingAgentError):
    def __init__(self, agent_name: str, timeout_seconds: int) -> None:
        super().__init__(
            f"Coding agent '{agent_name}' timed out after {timeout_seconds}s",
            code="TIMEOUT",
            agent_name=agent_name,
        )
        self.timeout_seconds = timeout_seconds


class CodingAgentNotFoundError(CodingAgentError):
    def __init__(self, agent_name: str, command: str) -> None:
        super().__init__(
            f"Coding agent '{agent_name}' not found; is '{command}' installed?",
            code="NOT_FOUND",
            agent_name=agent_name,
        )
        self.command = command


@dataclass(slots=True)
class CodingTaskRequest:
    """Inputs for one coding agent invocation."""

    working_directory: Path
    prompt: str
    timeout_seconds: int = 600


@dataclass(slots=True)
class CodingTaskResult:
    """Execution outcome of one coding agent invocation."""

    success: bool
    exit_code: int
    output: str
    stderr: str
    duration_ms: int


class CodingAgent(Protocol):
    """Protocol implemented by coding agent adapters."""

    name: str

    def is_available(self) -> bool:
        """Whether the agent can be invoked on this machine."""

    def execute(self, request: CodingTaskRequest) -> CodingTaskResult:
        """Run the agent synchronously and return its outcome."""
