"""SQLModel ORM tables for the SQLite message queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class BusMessage(SQLModel, table=True):
    __tablename__ = "bus_messages"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_bus_messages_recipient_pending", "to_agent", "consumed_at"),
    )

    row_id: int | None = Field(default=None, primary_key=True)
    message_id: str = Field(index=True)
    message_type: str
    from_agent: str
    to_agent: str
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    sent_at: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    consumed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class BusHistoryEntry(SQLModel, table=True):
    __tablename__ = "bus_history"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_bus_history_run_time", "run_id", "sent_at"),)

    row_id: int | None = Field(default=None, primary_key=True)
    run_id: str
    message_id: str
    message_type: str
    from_agent: str
    to_agent: str
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    sent_at: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
