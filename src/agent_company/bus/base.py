"""Queue backend interface for the agent bus."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from agent_company.bus.models import AgentMessage


class MessageQueue(Protocol):
    """Synchronous storage backend; the bus runs it in worker threads."""

    def initialize(self) -> None:
        """Create directories or schema."""

    def send(self, message: AgentMessage, run_id: str | None = None) -> None:
        """Enqueue for ``message.to_agent`` and append to the run history."""

    def fetch(self, agent_id: str) -> list[AgentMessage]:
        """Return and consume all queued messages for one agent."""

    def broadcast(
        self,
        message: AgentMessage,
        exclude: Iterable[str] = (),
        run_id: str | None = None,
    ) -> list[str]:
        """Deliver a copy to every known agent except ``exclude``; return recipients.

        The run history records the message once, addressed to ``broadcast``.
        """

    def history(self, run_id: str) -> list[AgentMessage]:
        """Messages logged for one run, oldest first."""

    def cleanup(self, retention_days: int) -> int:
        """Delete messages older than the retention window; return removed count."""
