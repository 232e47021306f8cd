from __future__ import annotations

import os
import time
from pathlib import Path

import allure
import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel

import agent_company.storage
from agent_company.bus import (
    AgentBus,
    AgentMessageType,
    FileMessageQueue,
    MessageBusError,
    SqlMessageQueue,
)
from agent_company.bus import sql_queue
from agent_company.bus.models import BROADCAST_AGENT_ID, AgentMessage
from agent_company.storage.alembic_runner import MIGRATIONS_DIR, upgrade_head

pytestmark = [
    allure.epic("Agent Bus"),
    allure.feature("Message Queues"),
    pytest.mark.asyncio,
]


@pytest.fixture(params=["file", "sqlite"])
def bus(request, tmp_path: Path):
    if request.param == "file":
        queue = FileMessageQueue(tmp_path / "bus")
    else:
        queue = SqlMessageQueue(tmp_path / "bus.db")
    yield AgentBus(queue, poll_interval_seconds=0.01, default_timeout_seconds=0.05)
    if isinstance(queue, SqlMessageQueue):
        queue.close()


async def test_message_is_consumed_once(bus: AgentBus) -> None:
    message = bus.task_assign("coo_pm", "developer-agent", task_id="task-1")
    await bus.send(message, run_id="wf-00000001")

    received = await bus.poll("developer-agent", timeout_seconds=0)
    again = await bus.poll("developer-agent", timeout_seconds=0)

    assert [item.id for item in received] == [message.id]
    assert received[0].type == AgentMessageType.TASK_ASSIGN
    assert received[0].payload == {"task_id": "task-1"}
    assert again == []


async def test_poll_returns_empty_list_after_timeout(bus: AgentBus) -> None:
    started = time.monotonic()

    assert await bus.poll("nobody", timeout_seconds=0.05) == []
    assert time.monotonic() - started >= 0.05


async def test_broadcast_skips_sender_and_excluded_agents(bus: AgentBus) -> None:
    for agent_id in ("coo_pm", "developer-agent", "test-agent", "design-agent"):
        await bus.send(bus.create_message(AgentMessageType.STATUS_REQUEST, "setup", agent_id))
        await bus.poll(agent_id, timeout_seconds=0)

    message = bus.create_message(AgentMessageType.STATUS_REQUEST, "coo_pm", BROADCAST_AGENT_ID)
    recipients = await bus.broadcast(message, exclude=("design-agent",), run_id="wf-00000002")

    assert recipients == ["developer-agent", "test-agent"]
    assert await bus.poll("coo_pm", timeout_seconds=0) == []
    assert await bus.poll("design-agent", timeout_seconds=0) == []
    delivered = await bus.poll("test-agent", timeout_seconds=0)
    assert [item.id for item in delivered] == [message.id]
    history = await bus.get_message_history("wf-00000002")
    assert [item.to_agent for item in history] == [BROADCAST_AGENT_ID]


async def test_history_is_kept_per_run_in_send_order(bus: AgentBus) -> None:
    first = bus.task_assign("coo_pm", "developer-agent", task_id="task-1")
    second = bus.task_complete("developer-agent", "coo_pm", task_id="task-1")
    other = bus.task_assign("coo_pm", "test-agent", task_id="task-9")
    await bus.send(first, run_id="wf-00000003")
    await bus.send(second, run_id="wf-00000003")
    await bus.send(other, run_id="wf-00000004")
    await bus.send(bus.escalate("coo_pm", "ceo"))

    await bus.poll("developer-agent", timeout_seconds=0)
    history = await bus.get_message_history("wf-00000003")

    assert [item.id for item in history] == [first.id, second.id]
    assert await bus.get_message_history("wf-unknown") == []


async def test_invalid_messages_are_rejected(bus: AgentBus) -> None:
    with pytest.raises(MessageBusError, match="Invalid message type"):
        bus.create_message("not_a_type", "coo_pm", "developer-agent")
    with pytest.raises(MessageBusError, match="recipient"):
        await bus.send(bus.create_message(AgentMessageType.ESCALATE, "coo_pm", " "))
    with pytest.raises(MessageBusError, match="Agent ID is required"):
        await bus.poll("", timeout_seconds=0)
    with pytest.raises(MessageBusError, match="Run ID is required"):
        await bus.get_message_history(" ")


async def test_file_cleanup_removes_expired_messages(tmp_path: Path) -> None:
    queue = FileMessageQueue(tmp_path / "bus")
    bus = AgentBus(queue)
    stale = bus.task_assign("coo_pm", "developer-agent", task_id="old")
    await bus.send(stale, run_id="wf-00000005")
    fresh = bus.task_assign("coo_pm", "test-agent", task_id="new")
    await bus.send(fresh)
    expired = time.time() - 3 * 86_400
    for path in (tmp_path / "bus").rglob(f"{stale.id}.json"):
        os.utime(path, (expired, expired))

    removed = await bus.cleanup(retention_days=1)

    assert removed == 2
    assert not (tmp_path / "bus" / "history" / "wf-00000005").exists()
    assert [item.id for item in await bus.poll("test-agent", timeout_seconds=0)] == [fresh.id]


async def test_sql_cleanup_removes_messages_and_history(tmp_path: Path) -> None:
    queue = SqlMessageQueue(tmp_path / "bus.db")
    bus = AgentBus(queue)
    await bus.send(bus.task_assign("coo_pm", "developer-agent"), run_id="wf-00000006")

    assert await bus.cleanup(retention_days=7) == 0
    assert await bus.cleanup(retention_days=0) == 2
    assert await bus.get_message_history("wf-00000006") == []
    queue.close()


async def test_sql_queue_schema_is_migrated_to_head(tmp_path: Path) -> None:
    queue = SqlMessageQueue(tmp_path / "bus.db")
    queue.initialize()

    tables = set(inspect(queue.engine).get_table_names())
    assert {"bus_messages", "bus_history", "alembic_version"} <= tables
    with queue.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
    assert version == "20261019_0001"
    indexes = {item["name"] for item in inspect(queue.engine).get_indexes("bus_messages")}
    assert "idx_bus_messages_recipient_pending" in indexes
    queue.close()


async def test_message_dict_uses_wire_field_names() -> None:
    message = AgentMessage.create(AgentMessageType.REVIEW_REQUEST, "coo_pm", "reviewer-agent")

    payload = message.to_dict()

    assert payload["from"] == "coo_pm"
    assert payload["to"] == "reviewer-agent"
    assert payload["type"] == "review_request"
    assert AgentMessage.from_dict(payload) == message


async def test_migrations_run_outside_the_source_tree(tmp_path: Path, monkeypatch) -> None:
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    monkeypatch.chdir(elsewhere)

    upgrade_head(tmp_path / "bus.db")

    assert MIGRATIONS_DIR.parent == Path(agent_company.storage.__file__).resolve().parent
    assert (MIGRATIONS_DIR / "versions" / "20261019_0001_bus_tables.py").exists()
    queue = SqlMessageQueue(tmp_path / "bus.db")
    assert {"bus_messages", "bus_history"} <= set(inspect(queue.engine).get_table_names())
    queue.close()


async def test_sql_migration_failure_is_a_bus_error(tmp_path: Path, monkeypatch) -> None:
    def _fail(db_path: Path) -> None:
        raise OperationalError("PRAGMA journal_mode", {}, Exception("disk I/O error"))

    monkeypatch.setattr(sql_queue, "upgrade_head", _fail)
    queue = SqlMessageQueue(tmp_path / "bus.db")
    bus = AgentBus(queue)

    with pytest.raises(MessageBusError, match="Failed to migrate bus database"):
        queue.initialize()
    with pytest.raises(MessageBusError):
        await bus.send(bus.task_assign("coo_pm", "developer-agent"), run_id="wf-00000007")
    queue.close()


async def test_sql_read_failures_are_bus_errors(tmp_path: Path) -> None:
    queue = SqlMessageQueue(tmp_path / "bus.db")
    queue.initialize()
    message = AgentMessage.create(AgentMessageType.STATUS_REQUEST, "coo_pm", "test-agent")
    SQLModel.metadata.tables["bus_history"].drop(queue.engine)

    with pytest.raises(MessageBusError, match="Failed to record broadcast"):
        queue.broadcast(message, run_id="wf-00000008")

    SQLModel.metadata.drop_all(queue.engine)
    with pytest.raises(MessageBusError, match="Failed to fetch messages for test-agent"):
        queue.fetch("test-agent")
    with pytest.raises(MessageBusError, match="Failed to read history"):
        queue.history("wf-00000008")
    with pytest.raises(MessageBusError, match="Failed to list bus agents"):
        queue.known_agents()
    with pytest.raises(MessageBusError, match="Failed to list bus agents"):
        queue.broadcast(message)
    with pytest.raises(MessageBusError, match="Failed to clean up"):
        queue.cleanup(retention_days=0)
    queue.close()
