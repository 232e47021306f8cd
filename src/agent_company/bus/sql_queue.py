"""SQLite message queue backed by SQLModel tables."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

from alembic.util import CommandError
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from agent_company.bus.models import (
    BROADCAST_AGENT_ID,
    AgentMessage,
    AgentMessageType,
    MessageBusError,
)
from agent_company.bus.sqlmodel_models import BusHistoryEntry, BusMessage
from agent_company.storage.alembic_runner import upgrade_head
from agent_company.storage.common import build_sqlite_engine, utc_now


class SqlMessageQueue:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def initialize(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            upgrade_head(self.db_path)
        except (SQLAlchemyError, CommandError) as error:
            raise MessageBusError(
                f"Failed to migrate bus database {self.db_path}: {error}",
            ) from error

    def send(self, message: AgentMessage, run_id: str | None = None) -> None:
        now = utc_now()
        try:
            with Session(self.engine) as session:
                session.add(
                    BusMessage(
                        message_id=message.id,
                        message_type=message.type.value,
                        from_agent=message.from_agent,
                        to_agent=message.to_agent,
                        payload_json=json.dumps(message.payload, ensure_ascii=False),
                        sent_at=message.timestamp,
                        created_at=now,
                    ),
                )
                if run_id:
                    session.add(_history_row(run_id, message, created_at=now))
                session.commit()
        except SQLAlchemyError as error:
            raise MessageBusError(f"Failed to enqueue message {message.id}: {error}") from error

    def fetch(self, agent_id: str) -> list[AgentMessage]:
        now = utc_now()
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(BusMessage)
                    .where(BusMessage.to_agent == agent_id)
                    .where(col(BusMessage.consumed_at).is_(None))
                    .order_by(col(BusMessage.sent_at), col(BusMessage.row_id)),
                ).all()
                if not rows:
                    return []
                row_ids = [row.row_id for row in rows]
                messages = [_to_message(row) for row in rows]
                session.exec(  # type: ignore[call-overload]
                    sa_update(BusMessage)
                    .where(col(BusMessage.row_id).in_(row_ids))
                    .where(col(BusMessage.consumed_at).is_(None))
                    .values(consumed_at=now),
                )
                session.commit()
        except SQLAlchemyError as error:
            raise MessageBusError(f"Failed to fetch messages for {agent_id}: {error}") from error
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
            try:
                with Session(self.engine) as session:
                    session.add(
                        _history_row(
                            run_id,
                            replace(message, to_agent=BROADCAST_AGENT_ID),
                            created_at=utc_now(),
                        ),
                    )
                    session.commit()
            except SQLAlchemyError as error:
                raise MessageBusError(
                    f"Failed to record broadcast {message.id}: {error}",
                ) from error
        return recipients

    def history(self, run_id: str) -> list[AgentMessage]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(BusHistoryEntry)
                    .where(BusHistoryEntry.run_id == run_id)
                    .order_by(col(BusHistoryEntry.sent_at), col(BusHistoryEntry.row_id)),
                ).all()
        except SQLAlchemyError as error:
            raise MessageBusError(f"Failed to read history for {run_id}: {error}") from error
        return [_to_message(row) for row in rows]

    def cleanup(self, retention_days: int) -> int:
        cutoff = utc_now() - timedelta(days=retention_days)
        try:
            with Session(self.engine) as session:
                removed_messages = session.exec(  # type: ignore[call-overload]
                    sa_delete(BusMessage).where(col(BusMessage.created_at) < cutoff),
                )
                removed_history = session.exec(  # type: ignore[call-overload]
                    sa_delete(BusHistoryEntry).where(col(BusHistoryEntry.created_at) < cutoff),
                )
                session.commit()
        except SQLAlchemyError as error:
            raise MessageBusError(f"Failed to clean up bus messages: {error}") from error
        return int(removed_messages.rowcount or 0) + int(removed_history.rowcount or 0)

    def known_agents(self) -> list[str]:
        try:
            with Session(self.engine) as session:
                agents = session.exec(select(BusMessage.to_agent).distinct()).all()
        except SQLAlchemyError as error:
            raise MessageBusError(f"Failed to list bus agents: {error}") from error
        return sorted(agent for agent in agents if agent != BROADCAST_AGENT_ID)


def _history_row(run_id: str, message: AgentMessage, *, created_at) -> BusHistoryEntry:
    return BusHistoryEntry(
        run_id=run_id,
        message_id=message.id,
        message_type=message.type.value,
        from_agent=message.from_agent,
        to_agent=message.to_agent,
        payload_json=json.dumps(message.payload, ensure_ascii=False),
        sent_at=message.timestamp,
        created_at=created_at,
    )


def _to_message(row: BusMessage | BusHistoryEntry) -> AgentMessage:
    return AgentMessage(
        id=row.message_id,
        type=AgentMessageType(row.message_type),
        from_agent=row.from_agent,
        to_agent=row.to_agent,
        payload=json.loads(row.payload_json),
        timestamp=row.sent_at,
    )
