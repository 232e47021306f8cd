"""Coding agent adapters."""

from agent_company.coding.base import (
    CodingAgent,
    CodingAgentError,
    CodingAgentNotFoundError,
    CodingAgentTimeoutError,
    CodingTaskRequest,
    CodingTaskResult,
)
from agent_company.coding.cli_agent import CliCodingAgent
from agent_company.coding.registry import CodingAgentInfo, CodingAgentRegistry

__all__ = [
    "CliCodingAgent",
    "CodingAgent",
    "CodingAgentError",
    "CodingAgentInfo",
    "CodingAgentNotFoundError",
    "CodingAgentRegistry",
    "CodingAgentTimeoutError",
    "CodingTaskRequest",
    "CodingTaskResult",
]
