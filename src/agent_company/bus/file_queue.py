"""File-backed message queue: one JSON document per message."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path

from agent_company.bus.models import BROADCAST_AGENT_ID, AgentMessage, MessageBusError
from agent_company.storage.common import load_json, write_json

logger = logging.getLogger(__name__)

MESSAGE_SUFFIX = ".json"
_CLAIM_SUFFIX = ".claimed"


class FileMessageQueue:
    """Queue laid out as ``queues/<agent>/<id>.json`` and ``history/<run>/<id>.json``."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path

    @property
    def queues_dir(self) -> Path:
        return self.base_path / "queues"

    @property
    def history_dir(self) -> Path:
        return self.base_path / "history"

    def initialize(self) -> None:
        self.queues_dir.mkdir(parents=True, exist_ok=True)
        self.history_dir.mkdir(parents=True, exist_ok=True)

    def send(self, message: AgentMessage, run_id: str | None = None) -> None:
        try:
            write_json(self._queue_path(message.to_agent, message.id), message.to_dict())
            if run_id:
                write_json(self._history_path(run_id, message.id), message.to_dict())
        except OSError as error:
            raise MessageBusError(f"Failed to enqueue message {message.id}: {error}") from error

    def fetch(self, agent_id: str) -> list[AgentMessage]:
        queue_dir = self.queues_dir / agent_id
        if not queue_dir.exists():
            return []

        messages: list[AgentMessage] = []
        for path in sorted(queue_dir.glob(f"*{MESSAGE_SUFFIX}")):
            claimed = path.with_name(path.name + _CLAIM_SUFFIX)
            try:
                os.replace(path, claimed)
            except FileNotFoundError:
                # another poller consumed it first
                continue
            try:
                messages.append(AgentMessage.from_dict(load_json(claimed)))
            except (TypeError, ValueError, KeyError) as error:
                logger.warning("Dropping unreadable message %s: %s", path.name, error)
            finally:
                claimed.unlink(missing_ok=True)
        messages.sort(key=lambda item: (item.timestamp, item.id))
        return messages

    def broadcast(
        self,
        message: AgentMessage,
        exclude: Iterable[str] = (),
        run_id: str | None = None,
    ) -> list[str]:
        skipped = set(exclude) | {message.from_agent}
        recipients = [agent for agent in self.known_agents() if agent not in skipped]
        for agent_id in recipients:
            self.send(replace(message, to_agent=agent_id))
        if run_id:
            logged = replace(message, to_agent=BROADCAST_AGENT_ID)
            write_json(self._history_path(run_id, message.id), logged.to_dict())
        return recipients

    def history(self, run_id: str) -> list[AgentMessage]:
        run_dir = self.history_dir / run_id
        if not run_dir.exists():
            return []
        messages = [
            AgentMessage.from_dict(load_json(path))
            for path in run_dir.glob(f"*{MESSAGE_SUFFIX}")
        ]
        messages.sort(key=lambda item: (item.timestamp, item.id))
        return messages

    def cleanup(self, retention_days: int) -> int:
        cutoff = time.time() - retention_days * 86_400
        removed = 0
        for root in (self.queues_dir, self.history_dir):
            if not root.exists():
                continue
            for path in root.rglob(f"*{MESSAGE_SUFFIX}"):
                if path.stat().st_mtime < cutoff:
                    path.unlink(missing_ok=True)
                    removed += 1
            for directory in sorted(root.iterdir()):
                if directory.is_dir() and not any(directory.iterdir()):
                    directory.rmdir()
        return removed

    def known_agents(self) -> list[str]:
        if not self.queues_dir.exists():
            return []
        return sorted(
            entry.name
            for entry in self.queues_dir.iterdir()
            if entry.is_dir() and entry.name != BROADCAST_AGENT_ID
        )

    def _queue_path(self, agent_id: str, message_id: str) -> Path:
        return self.queues_dir / agent_id / f"{message_id}{MESSAGE_SUFFIX}"

    def _history_path(self, run_id: str, message_id: str) -> Path:
        return self.history_dir / run_id / f"{message_id}{MESSAGE_SUFFIX}"
