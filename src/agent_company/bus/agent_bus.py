"""Async pull-model message bus over an interchangeable queue backend."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from agent_company.bus.base import MessageQueue
from agent_company.bus.models import AgentMessage, AgentMessageType, MessageBusError

logger = logging.getLogger(__name__)


class AgentBus:
    """Message passing between agents.

    Sent messages are consumed once by the addressed recipient through
    :meth:`poll` and, when ``run_id`` is given, appended to that run's
    history. Queue calls are blocking and run in worker threads.
    """

    def __init__(
        self,
        queue: MessageQueue,
        *,
        poll_interval_seconds: float = 0.1,
        default_timeout_seconds: float = 5.0,
    ) -> None:
        self.queue = queue
        self.poll_interval_seconds = poll_interval_seconds
        self.default_timeout_seconds = default_timeout_seconds
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        await asyncio.to_thread(self.queue.initialize)
        self._initialized = True

    async def send(self, message: AgentMessage, *, run_id: str | None = None) -> None:
        _validate_message(message)
        await self.initialize()
        await asyncio.to_thread(self.queue.send, message, run_id)

    async def poll(
        self,
        agent_id: str,
        timeout_seconds: float | None = None,
    ) -> list[AgentMessage]:
        """Wait up to ``timeout_seconds`` for messages addressed to ``agent_id``."""

        if not agent_id or not agent_id.strip():
            raise MessageBusError("Agent ID is required for polling")
        await self.initialize()

        timeout = self.default_timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            messages = await asyncio.to_thread(self.queue.fetch, agent_id)
            if messages or time.monotonic() >= deadline:
                return messages
            await asyncio.sleep(self.poll_interval_seconds)

    async def broadcast(
        self,
        message: AgentMessage,
        *,
        exclude: tuple[str, ...] = (),
        run_id: str | None = None,
    ) -> list[str]:
        _validate_message(message, require_recipient=False)
        await self.initialize()
        recipients = await asyncio.to_thread(self.queue.broadcast, message, exclude, run_id)
        logger.debug("Broadcast %s to %s agents", message.id, len(recipients))
        return recipients

    async def get_message_history(self, run_id: str) -> list[AgentMessage]:
        if not run_id or not run_id.strip():
            raise MessageBusError("Run ID is required to get message history")
        await self.initialize()
        return await asyncio.to_thread(self.queue.history, run_id)

    async def cleanup(self, retention_days: int) -> int:
        await self.initialize()
        removed = await asyncio.to_thread(self.queue.cleanup, retention_days)
        logger.info("Removed %s bus messages older than %s days", removed, retention_days)
        return removed

    def create_message(
        self,
        message_type: AgentMessageType | str,
        from_agent: str,
        to_agent: str,
        payload: dict[str, Any] | None = None,
    ) -> AgentMessage:
        try:
            resolved_type = AgentMessageType(message_type)
        except ValueError as error:
            raise MessageBusError(f"Invalid message type: {message_type}") from error
        return AgentMessage.create(resolved_type, from_agent, to_agent, payload)

    def task_assign(self, from_agent: str, to_agent: str, **payload: Any) -> AgentMessage:
        return self.create_message(AgentMessageType.TASK_ASSIGN, from_agent, to_agent, payload)

    def task_complete(self, from_agent: str, to_agent: str, **payload: Any) -> AgentMessage:
        return self.create_message(AgentMessageType.TASK_COMPLETE, from_agent, to_agent, payload)

    def task_failed(self, from_agent: str, to_agent: str, **payload: Any) -> AgentMessage:
        return self.create_message(AgentMessageType.TASK_FAILED, from_agent, to_agent, payload)

    def escalate(self, from_agent: str, to_agent: str, **payload: Any) -> AgentMessage:
        return self.create_message(AgentMessageType.ESCALATE, from_agent, to_agent, payload)


def _validate_message(message: AgentMessage, *, require_recipient: bool = True) -> None:
    if not message.id:
        raise MessageBusError("Message ID is required")
    if not isinstance(message.type, AgentMessageType):
        raise MessageBusError(f"Invalid message type: {message.type}")
    if not message.from_agent or not message.from_agent.strip():
        raise MessageBusError("Message sender (from) is required")
    if require_recipient and (not message.to_agent or not message.to_agent.strip()):
        raise MessageBusError("Message recipient (to) is required")
    if not message.timestamp:
        raise MessageBusError("Message timestamp is required")
