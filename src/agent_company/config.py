"""Runtime configuration for the workflow core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_BUS_BACKENDS = ("file", "sqlite")

DEFAULT_COMMAND_TEMPLATES = {
    "claude": "claude -p {prompt} --output-format text --add-dir {workdir}",
    "codex": "codex exec --sandbox workspace-write {prompt}",
    "opencode": "opencode run {prompt}",
    "kiro": "kiro-cli chat -p {prompt}",
}


@dataclass(slots=True)
class WorkflowSettings:
    """Phase execution settings."""

    facilitator_id: str = "coo_pm"
    max_quality_cycles: int = 3
    coding_timeout_seconds: int = 600
    review_timeout_seconds: int = 300
    lint_timeout_seconds: int = 120
    test_timeout_seconds: int = 300


@dataclass(slots=True)
class BusSettings:
    """Agent message bus backend settings."""

    backend: str = "file"
    base_path: Path = Path("runtime/state/bus")
    db_path: Path = Path("runtime/state/bus.db")
    poll_interval_seconds: float = 0.1
    poll_timeout_seconds: float = 5.0
    retention_days: int = 7


@dataclass(slots=True)
class CodingAgentSettings:
    """External coding agent CLI settings."""

    enabled: bool = True
    preferred_agent: str | None = None
    command_templates: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_COMMAND_TEMPLATES),
    )


@dataclass(slots=True)
class WorkspaceSettings:
    projects_root: Path = Path("runtime/workspaces")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    state_dir: Path = Path("runtime/state/runs")
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    bus: BusSettings = field(default_factory=BusSettings)
    coding: CodingAgentSettings = field(default_factory=CodingAgentSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)

    @classmethod
    def from_env(cls, state_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        templates = dict(DEFAULT_COMMAND_TEMPLATES)
        for name in DEFAULT_COMMAND_TEMPLATES:
            override = os.getenv(f"AGENT_COMPANY_{name.upper()}_COMMAND", "").strip()
            if override:
                templates[name] = override

        return cls(
            state_dir=state_dir or Path(os.getenv("AGENT_COMPANY_STATE_DIR", "runtime/state/runs")),
            workflow=WorkflowSettings(
                facilitator_id=os.getenv("AGENT_COMPANY_FACILITATOR_ID", "coo_pm"),
                max_quality_cycles=int(os.getenv("AGENT_COMPANY_MAX_QUALITY_CYCLES", "3")),
                coding_timeout_seconds=int(
                    os.getenv("AGENT_COMPANY_CODING_TIMEOUT_SECONDS", "600"),
                ),
                review_timeout_seconds=int(
                    os.getenv("AGENT_COMPANY_REVIEW_TIMEOUT_SECONDS", "300"),
                ),
                lint_timeout_seconds=int(os.getenv("AGENT_COMPANY_LINT_TIMEOUT_SECONDS", "120")),
                test_timeout_seconds=int(os.getenv("AGENT_COMPANY_TEST_TIMEOUT_SECONDS", "300")),
            ),
            bus=BusSettings(
                backend=os.getenv("AGENT_COMPANY_BUS_BACKEND", "file").strip().lower(),
                base_path=Path(os.getenv("AGENT_COMPANY_BUS_PATH", "runtime/state/bus")),
                db_path=Path(os.getenv("AGENT_COMPANY_BUS_DB_PATH", "runtime/state/bus.db")),
                poll_interval_seconds=float(
                    os.getenv("AGENT_COMPANY_BUS_POLL_INTERVAL_SECONDS", "0.1"),
                ),
                poll_timeout_seconds=float(
                    os.getenv("AGENT_COMPANY_BUS_POLL_TIMEOUT_SECONDS", "5.0"),
                ),
                retention_days=int(os.getenv("AGENT_COMPANY_BUS_RETENTION_DAYS", "7")),
            ),
            coding=CodingAgentSettings(
                enabled=_env_bool("AGENT_COMPANY_CODING_AGENTS_ENABLED", default=True),
                preferred_agent=os.getenv("AGENT_COMPANY_PREFERRED_AGENT", "").strip() or None,
                command_templates=templates,
            ),
            workspace=WorkspaceSettings(
                projects_root=Path(
                    os.getenv("AGENT_COMPANY_PROJECTS_ROOT", "runtime/workspaces"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if not self.workflow.facilitator_id.strip():
            raise ValueError("AGENT_COMPANY_FACILITATOR_ID must not be empty.")
        if self.workflow.max_quality_cycles <= 0:
            raise ValueError("AGENT_COMPANY_MAX_QUALITY_CYCLES must be > 0.")
        for name, value in (
            ("AGENT_COMPANY_CODING_TIMEOUT_SECONDS", self.workflow.coding_timeout_seconds),
            ("AGENT_COMPANY_REVIEW_TIMEOUT_SECONDS", self.workflow.review_timeout_seconds),
            ("AGENT_COMPANY_LINT_TIMEOUT_SECONDS", self.workflow.lint_timeout_seconds),
            ("AGENT_COMPANY_TEST_TIMEOUT_SECONDS", self.workflow.test_timeout_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if self.bus.backend not in SUPPORTED_BUS_BACKENDS:
            raise ValueError(
                "AGENT_COMPANY_BUS_BACKEND must be one of "
                f"{', '.join(SUPPORTED_BUS_BACKENDS)}: {self.bus.backend!r}",
            )
        if self.bus.poll_interval_seconds <= 0:
            raise ValueError("AGENT_COMPANY_BUS_POLL_INTERVAL_SECONDS must be > 0.")
        if self.bus.poll_timeout_seconds < 0:
            raise ValueError("AGENT_COMPANY_BUS_POLL_TIMEOUT_SECONDS must be >= 0.")
        if self.bus.retention_days < 0:
            raise ValueError("AGENT_COMPANY_BUS_RETENTION_DAYS must be >= 0.")
        preferred = self.coding.preferred_agent
        if preferred is not None and preferred not in self.coding.command_templates:
            raise ValueError(
                f"AGENT_COMPANY_PREFERRED_AGENT is not a known coding agent: {preferred!r}",
            )
        for name, template in self.coding.command_templates.items():
            if "{prompt}" not in template and "{prompt_file}" not in template:
                raise ValueError(
                    f"AGENT_COMPANY_{name.upper()}_COMMAND must include {{prompt}} "
                    "or {prompt_file}.",
                )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
