"""Registry of coding agent adapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agent_company.coding.base import CodingAgent, CodingAgentError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CodingAgentInfo:
    name: str
    available: bool


class CodingAgentRegistry:
    """Keep adapters in registration order and pick one that is installed."""

    def __init__(self) -> None:
        self._agents: dict[str, CodingAgent] = {}

    def register(self, agent: CodingAgent) -> None:
        self._agents[agent.name] = agent

    def get(self, name: str) -> CodingAgent | None:
        return self._agents.get(name)

    def list_agents(self) -> list[CodingAgentInfo]:
        return [
            CodingAgentInfo(name=name, available=agent.is_available())
            for name, agent in self._agents.items()
        ]

    def select_adapter(self, preferred: str | None = None) -> CodingAgent:
        """Return ``preferred`` when available, else the first available adapter."""

        if preferred:
            agent = self._agents.get(preferred)
            if agent is not None and agent.is_available():
                return agent
            logger.warning("Preferred coding agent %s is not available", preferred)

        for agent in self._agents.values():
            if agent.is_available():
                return agent
        raise CodingAgentError(
            "No coding agent is available",
            code="NO_AGENT_AVAILABLE",
            agent_name=preferred or "",
        )
