"""Subprocess-based adapter for CLI coding agents."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import IO

from agent_company.coding.base import (
    CodingAgentError,
    CodingAgentNotFoundError,
    CodingAgentTimeoutError,
    CodingTaskRequest,
    CodingTaskResult,
)

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1


class CliCodingAgent:
    """Run a coding agent CLI rendered from a command template.

    Placeholders: ``{prompt}`` or ``{prompt_file}`` (one is required) and the
    optional ``{workdir}``. Values are shell-quoted before the template is split.
    """

    def __init__(self, name: str, command_template: str) -> None:
        self.name = name
        self.command_template = command_template

    def is_available(self) -> bool:
        try:
            head = self.command_head()
        except CodingAgentError:
            return False
        return shutil.which(head) is not None

    def command_head(self) -> str:
        argv = _build_run_args(
            agent_name=self.name,
            command_template=self.command_template,
            prompt="check",
            prompt_file=Path("prompt.txt"),
            workdir=Path("."),
        )
        return argv[0]

    def execute(self, request: CodingTaskRequest) -> CodingTaskResult:
        workdir = request.working_directory
        workdir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix=f"agent-company-{self.name}-") as scratch:
            scratch_dir = Path(scratch)
            prompt_file = scratch_dir / "task_prompt.txt"
            prompt_file.write_text(request.prompt, "utf-8")
            stdout_path = scratch_dir / "stdout.txt"
            stderr_path = scratch_dir / "stderr.txt"

            run_args = _build_run_args(
                agent_name=self.name,
                command_template=self.command_template,
                prompt=request.prompt,
                prompt_file=prompt_file,
                workdir=workdir,
            )
            env = os.environ.copy()
            env["AGENT_COMPANY_CODING_AGENT"] = self.name

            started = time.monotonic()
            try:
                with (
                    stdout_path.open("w", encoding="utf-8") as stdout_handle,
                    stderr_path.open("w", encoding="utf-8") as stderr_handle,
                ):
                    exit_code = _run_subprocess(
                        run_args=run_args,
                        cwd=workdir,
                        env=env,
                        timeout_seconds=request.timeout_seconds,
                        stdout_handle=stdout_handle,
                        stderr_handle=stderr_handle,
                    )
            except FileNotFoundError as error:
                raise CodingAgentNotFoundError(self.name, run_args[0]) from error
            except OSError as error:
                raise CodingAgentError(
                    f"Coding agent '{self.name}' failed to start: {error}",
                    code="START_FAILED",
                    agent_name=self.name,
                ) from error

            duration_ms = int((time.monotonic() - started) * 1000)
            if exit_code is None:
                raise CodingAgentTimeoutError(self.name, request.timeout_seconds)

            output = stdout_path.read_text("utf-8", errors="replace")
            stderr = stderr_path.read_text("utf-8", errors="replace")

        logger.debug("Coding agent %s exited with %s in %sms", self.name, exit_code, duration_ms)
        return CodingTaskResult(
            success=exit_code == 0,
            exit_code=exit_code,
            output=output,
            stderr=stderr,
            duration_ms=duration_ms,
        )


def _build_run_args(
    *,
    agent_name: str,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    workdir: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise CodingAgentError(
            "Coding agent command template is empty.",
            code="INVALID_TEMPLATE",
            agent_name=agent_name,
        )
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise CodingAgentError(
            "Coding agent command template must include {prompt} or {prompt_file}.",
            code="INVALID_TEMPLATE",
            agent_name=agent_name,
        )

    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            workdir=shlex.quote(str(workdir)),
        )
    except (KeyError, IndexError) as error:
        raise CodingAgentError(
            f"Unsupported command template placeholder: {error}",
            code="INVALID_TEMPLATE",
            agent_name=agent_name,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise CodingAgentError(
            "Coding agent command template rendered empty command.",
            code="INVALID_TEMPLATE",
            agent_name=agent_name,
        )
    return argv


def _run_subprocess(  # noqa: PLR0913
    *,
    run_args: list[str],
    cwd: Path,
    env: dict[str, str],
    timeout_seconds: int,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
) -> int | None:
    """Return the exit code, or ``None`` when the process was killed on timeout."""

    process = subprocess.Popen(  # noqa: S603
        run_args,
        cwd=cwd,
        env=env,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    start_monotonic = time.monotonic()
    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode
        if time.monotonic() - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            return None
        time.sleep(_POLL_SECONDS)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
