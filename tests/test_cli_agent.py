from __future__ import annotations

import shlex
import sys
from pathlib import Path

import allure
import pytest

from agent_company.coding import (
    CliCodingAgent,
    CodingAgentError,
    CodingAgentNotFoundError,
    CodingAgentRegistry,
    CodingAgentTimeoutError,
    CodingTaskRequest,
)
from agent_company.coding.cli_agent import _build_run_args
from agent_company.coding.echo_agent import main as echo_main
from conftest import ECHO_AGENT_COMMAND_TEMPLATE, ScriptedAgent

pytestmark = [
    allure.epic("Coding Agents"),
    allure.feature("CLI Adapter"),
]


def _request(tmp_path: Path, prompt: str, timeout_seconds: int = 30) -> CodingTaskRequest:
    return CodingTaskRequest(
        working_directory=tmp_path / "work",
        prompt=prompt,
        timeout_seconds=timeout_seconds,
    )


def test_echo_agent_approves_plain_prompt(tmp_path: Path) -> None:
    agent = CliCodingAgent("echo", ECHO_AGENT_COMMAND_TEMPLATE)

    result = agent.execute(_request(tmp_path, "# Task: build the login form"))

    assert result.success
    assert result.exit_code == 0
    assert result.output.strip() == "APPROVED"
    assert (tmp_path / "work").is_dir()


def test_echo_agent_failure_marker_returns_non_zero(tmp_path: Path) -> None:
    agent = CliCodingAgent("echo", ECHO_AGENT_COMMAND_TEMPLATE)

    result = agent.execute(_request(tmp_path, "please FAIL_TASK now"))

    assert not result.success
    assert result.exit_code == 1
    assert "FAIL_TASK requested" in result.stderr


def test_echo_agent_revision_marker(capsys) -> None:
    assert echo_main(["--prompt", "REVISE_TASK please"]) == 0

    assert capsys.readouterr().out.startswith("NEEDS_REVISION")


def test_inline_prompt_is_passed_as_a_single_argument(tmp_path: Path) -> None:
    python = shlex.quote(sys.executable)
    agent = CliCodingAgent(
        "inline",
        f"{python} -c \"import sys; print(sys.argv[1])\" {{prompt}}",
    )

    result = agent.execute(_request(tmp_path, "two words; and 'quotes'"))

    assert result.output.strip() == "two words; and 'quotes'"


def test_timeout_kills_the_process(tmp_path: Path) -> None:
    python = shlex.quote(sys.executable)
    agent = CliCodingAgent("sleepy", f"{python} -c \"import time; time.sleep(5)\" {{prompt}}")

    with pytest.raises(CodingAgentTimeoutError) as error:
        agent.execute(_request(tmp_path, "wait", timeout_seconds=1))

    assert error.value.code == "TIMEOUT"
    assert error.value.agent_name == "sleepy"


def test_missing_executable_raises_not_found(tmp_path: Path) -> None:
    agent = CliCodingAgent("ghost", "agent-company-missing-binary {prompt}")

    assert not agent.is_available()
    with pytest.raises(CodingAgentNotFoundError) as error:
        agent.execute(_request(tmp_path, "hello"))
    assert error.value.code == "NOT_FOUND"
    assert error.value.command == "agent-company-missing-binary"


@pytest.mark.parametrize(
    "template",
    ["", "claude --no-prompt", "claude {prompt} {model}"],
)
def test_invalid_templates_are_rejected(template: str) -> None:
    with pytest.raises(CodingAgentError) as error:
        _build_run_args(
            agent_name="claude",
            command_template=template,
            prompt="hello",
            prompt_file=Path("prompt.txt"),
            workdir=Path("."),
        )

    assert error.value.code == "INVALID_TEMPLATE"


def test_placeholders_are_rendered_and_quoted() -> None:
    argv = _build_run_args(
        agent_name="claude",
        command_template="claude -p {prompt} --add-dir {workdir}",
        prompt="fix the bug",
        prompt_file=Path("prompt.txt"),
        workdir=Path("/tmp/my project"),
    )

    assert argv == ["claude", "-p", "fix the bug", "--add-dir", "/tmp/my project"]


def test_registry_prefers_requested_available_agent() -> None:
    registry = CodingAgentRegistry()
    registry.register(ScriptedAgent("claude"))
    registry.register(ScriptedAgent("codex"))

    assert registry.select_adapter("codex").name == "codex"
    assert registry.select_adapter().name == "claude"


def test_registry_falls_back_when_preferred_is_unavailable() -> None:
    registry = CodingAgentRegistry()
    registry.register(ScriptedAgent("claude", available=False))
    registry.register(ScriptedAgent("codex"))

    assert registry.select_adapter("claude").name == "codex"
    assert [(item.name, item.available) for item in registry.list_agents()] == [
        ("claude", False),
        ("codex", True),
    ]


def test_registry_without_available_agents_raises() -> None:
    registry = CodingAgentRegistry()
    registry.register(ScriptedAgent("claude", available=False))

    with pytest.raises(CodingAgentError) as error:
        registry.select_adapter("claude")

    assert error.value.code == "NO_AGENT_AVAILABLE"
