"""Agent message bus with file and SQLite queue backends."""

from agent_company.bus.agent_bus import AgentBus
from agent_company.bus.base import MessageQueue
from agent_company.bus.file_queue import FileMessageQueue
from agent_company.bus.models import AgentMessage, AgentMessageType, MessageBusError
from agent_company.bus.sql_queue import SqlMessageQueue

__all__ = [
    "AgentBus",
    "AgentMessage",
    "AgentMessageType",
    "FileMessageQueue",
    "MessageBusError",
    "MessageQueue",
    "SqlMessageQueue",
]
