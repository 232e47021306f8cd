from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC
from pathlib import Path

import allure
import pytest

from agent_company.storage.common import from_iso, load_json, utc_now_iso, write_json
from agent_company.workflow.errors import WorkflowPersistenceError
from agent_company.workflow.models import Proposal
from agent_company.workflow.repository import WorkflowRepository

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("JSON Documents"),
]


def test_write_json_is_sorted_and_leaves_no_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "doc.json"

    write_json(path, {"b": 1, "a": "日本語"})
    write_json(path, {"b": 2, "a": "again"})

    text = path.read_text("utf-8")
    assert text.index('"a"') < text.index('"b"')
    assert json.loads(text) == {"a": "again", "b": 2}
    assert [item.name for item in path.parent.iterdir()] == ["doc.json"]


def test_write_json_keeps_previous_document_on_serialization_error(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    write_json(path, {"ok": True})

    with pytest.raises(TypeError):
        write_json(path, {"bad": object()})

    assert load_json(path) == {"ok": True}
    assert [item.name for item in tmp_path.iterdir()] == ["doc.json"]


def test_load_json_requires_an_object(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_text("[1, 2, 3]", "utf-8")

    with pytest.raises(TypeError, match="Expected JSON object"):
        load_json(path)


def test_from_iso_defaults_to_utc() -> None:
    assert from_iso("2026-10-19T10:00:00").tzinfo == UTC
    assert from_iso("2026-10-19T10:00:00+02:00").utcoffset().total_seconds() == 7200


def test_repository_reports_corrupt_state(tmp_path: Path) -> None:
    repository = WorkflowRepository(tmp_path)
    path = tmp_path / "wf-0000dead" / "workflow.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", "utf-8")

    with pytest.raises(WorkflowPersistenceError):
        repository.load_state("wf-0000dead")


def test_saving_a_proposal_again_bumps_the_version(tmp_path: Path) -> None:
    repository = WorkflowRepository(tmp_path)
    first = Proposal(
        workflow_id="wf-0000f00d",
        summary="first draft",
        scope="scope",
        task_breakdown=(),
        worker_assignments=(),
        risk_assessment=(),
        dependencies=(),
        meeting_minutes_ids=(),
        created_at=utc_now_iso(),
    )

    assert repository.save_proposal(first) == 1
    assert repository.save_proposal(replace(first, summary="second"), feedback="more") == 2

    document = repository.load_proposal_document("wf-0000f00d")
    assert document["summary"] == "second"
    assert document["revision_history"][0]["previous_summary"] == "first draft"
    assert document["revision_history"][0]["feedback"] == "more"
