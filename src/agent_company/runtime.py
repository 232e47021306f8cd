"""Wire settings into a bus, approval gate, meeting coordinator and engine."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from agent_company.bus import AgentBus, FileMessageQueue, MessageQueue, SqlMessageQueue
from agent_company.coding import CliCodingAgent, CodingAgentRegistry
from agent_company.config import BusSettings, CodingAgentSettings, Settings
from agent_company.workflow import (
    ApprovalGate,
    MeetingCoordinator,
    WorkflowEngine,
    WorkflowRepository,
)
from agent_company.workspace import DirectoryWorkspaceManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Collaborators sharing one state directory and one message bus."""

    settings: Settings
    bus: AgentBus
    registry: CodingAgentRegistry
    repository: WorkflowRepository
    approval_gate: ApprovalGate
    meeting_coordinator: MeetingCoordinator
    engine: WorkflowEngine


def build_queue(settings: BusSettings) -> MessageQueue:
    if settings.backend == "sqlite":
        return SqlMessageQueue(settings.db_path)
    return FileMessageQueue(settings.base_path)


def build_registry(settings: CodingAgentSettings) -> CodingAgentRegistry:
    """Register one CLI adapter per command template, or none when disabled."""

    registry = CodingAgentRegistry()
    if not settings.enabled:
        return registry
    for name, template in settings.command_templates.items():
        registry.register(CliCodingAgent(name=name, command_template=template))
    return registry


@contextmanager
def open_runtime(settings: Settings) -> Iterator[Runtime]:
    settings.validate()
    queue = build_queue(settings.bus)
    bus = AgentBus(
        queue,
        poll_interval_seconds=settings.bus.poll_interval_seconds,
        default_timeout_seconds=settings.bus.poll_timeout_seconds,
    )
    registry = build_registry(settings.coding)
    repository = WorkflowRepository(settings.state_dir)
    approval_gate = ApprovalGate(settings.state_dir)
    meeting_coordinator = MeetingCoordinator(bus, settings.state_dir)
    engine = WorkflowEngine(
        repository,
        meeting_coordinator,
        approval_gate,
        settings=settings.workflow,
        coding_agents=registry if settings.coding.enabled else None,
        preferred_agent=settings.coding.preferred_agent,
        workspace_manager=DirectoryWorkspaceManager(settings.workspace.projects_root),
        bus=bus,
    )
    logger.debug(
        "Runtime ready: state_dir=%s bus=%s coding_agents=%s",
        settings.state_dir,
        settings.bus.backend,
        "on" if settings.coding.enabled else "off",
    )
    try:
        yield Runtime(
            settings=settings,
            bus=bus,
            registry=registry,
            repository=repository,
            approval_gate=approval_gate,
            meeting_coordinator=meeting_coordinator,
            engine=engine,
        )
    finally:
        if isinstance(queue, SqlMessageQueue):
            queue.close()
