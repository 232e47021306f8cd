"""File-per-workflow persistence for workflow state and proposals."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from agent_company.storage.common import load_json, utc_now_iso, write_json
from agent_company.workflow.errors import WorkflowPersistenceError
from agent_company.workflow.models import Proposal, WorkflowState

logger = logging.getLogger(__name__)

WORKFLOW_DIR_PREFIX = "wf-"
STATE_FILE = "workflow.json"
PROPOSAL_FILE = "proposal.json"


class WorkflowRepository:
    """Durable storage rooted at ``base_path/<workflow_id>/``.

    Methods are synchronous; async callers run them through
    ``asyncio.to_thread`` while holding :meth:`lock` for the workflow id.
    """

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, workflow_id: str) -> asyncio.Lock:
        """Return the writer lock for one workflow id."""

        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[workflow_id] = lock
        return lock

    def workflow_dir(self, workflow_id: str) -> Path:
        return self.base_path / workflow_id

    def save_state(self, state: WorkflowState) -> None:
        self.write_state(state.workflow_id, state.to_dict())

    def write_state(self, workflow_id: str, payload: dict[str, Any]) -> None:
        """Write an already-serialized state snapshot."""

        path = self.workflow_dir(workflow_id) / STATE_FILE
        try:
            write_json(path, payload)
        except (OSError, TypeError, ValueError) as error:
            raise WorkflowPersistenceError(
                f"Failed to persist workflow {workflow_id}: {error}",
            ) from error

    def load_state(self, workflow_id: str) -> WorkflowState | None:
        path = self.workflow_dir(workflow_id) / STATE_FILE
        if not path.exists():
            return None
        try:
            return WorkflowState.from_dict(load_json(path))
        except (OSError, TypeError, ValueError, KeyError) as error:
            raise WorkflowPersistenceError(
                f"Failed to load workflow {workflow_id}: {error}",
            ) from error

    def list_workflow_ids(self) -> list[str]:
        """Workflow directories that hold a state document, sorted by id."""

        if not self.base_path.exists():
            return []
        return sorted(
            entry.name
            for entry in self.base_path.iterdir()
            if entry.is_dir()
            and entry.name.startswith(WORKFLOW_DIR_PREFIX)
            and (entry / STATE_FILE).exists()
        )

    def save_proposal(self, proposal: Proposal, *, feedback: str | None = None) -> int:
        """Write the proposal document, bumping its version.

        The previous summary is appended to ``revision_history`` together with
        the feedback that triggered the revision. Returns the new version.
        """

        path = self.workflow_dir(proposal.workflow_id) / PROPOSAL_FILE
        try:
            previous = load_json(path) if path.exists() else None
            version = 1
            history: list[dict[str, Any]] = []
            if previous is not None:
                version = int(previous.get("version", 1)) + 1
                history = list(previous.get("revision_history", []))
                history.append(
                    {
                        "version": int(previous.get("version", 1)),
                        "previous_summary": previous.get("summary", ""),
                        "feedback": feedback,
                        "revised_at": utc_now_iso(),
                    },
                )
            payload = proposal.to_dict()
            payload["version"] = version
            payload["revision_history"] = history
            write_json(path, payload)
        except (OSError, TypeError, ValueError) as error:
            raise WorkflowPersistenceError(
                f"Failed to persist proposal for {proposal.workflow_id}: {error}",
            ) from error
        logger.info("Saved proposal v%s for workflow %s", version, proposal.workflow_id)
        return version

    def load_proposal_document(self, workflow_id: str) -> dict[str, Any] | None:
        """Raw proposal document including version and revision history."""

        path = self.workflow_dir(workflow_id) / PROPOSAL_FILE
        if not path.exists():
            return None
        try:
            return load_json(path)
        except (OSError, TypeError, ValueError) as error:
            raise WorkflowPersistenceError(
                f"Failed to load proposal for {workflow_id}: {error}",
            ) from error
