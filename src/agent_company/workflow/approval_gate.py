"""Durable blocking rendezvous between a suspended phase and a decision-maker."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from agent_company.storage.common import load_json, utc_now_iso, write_json
from agent_company.workflow.errors import ApprovalCancelledError, ApprovalGateError
from agent_company.workflow.models import (
    ApprovalContent,
    ApprovalDecision,
    PendingApproval,
    WorkflowPhase,
)

logger = logging.getLogger(__name__)

APPROVALS_FILE = "approvals.json"


class ApprovalGate:
    """Suspend a phase coroutine until a decision is submitted.

    Decisions are appended to ``<base_path>/<workflow_id>/approvals.json``
    before any waiter is woken. The in-memory future only exists while the
    requesting coroutine is alive, so :meth:`submit_decision` reports whether
    a waiter was found and callers drive the continuation themselves when it
    was not.
    """

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path
        self._waiters: dict[str, asyncio.Future[ApprovalDecision]] = {}
        self._pending: dict[str, PendingApproval] = {}
        self._history: dict[str, list[ApprovalDecision]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def request_approval(
        self,
        workflow_id: str,
        phase: WorkflowPhase,
        content: ApprovalContent,
    ) -> ApprovalDecision:
        """Block until a decision for ``workflow_id`` arrives or the wait is cancelled."""

        if workflow_id in self._waiters:
            raise ApprovalGateError(f"Approval already in flight for workflow {workflow_id}")

        future: asyncio.Future[ApprovalDecision] = asyncio.get_running_loop().create_future()
        self._waiters[workflow_id] = future
        self._pending[workflow_id] = PendingApproval(
            workflow_id=workflow_id,
            phase=phase,
            content=content,
            created_at=utc_now_iso(),
        )
        logger.info("Approval requested for workflow %s (%s)", workflow_id, phase.value)
        try:
            return await future
        finally:
            if self._waiters.get(workflow_id) is future:
                del self._waiters[workflow_id]
            pending = self._pending.get(workflow_id)
            if pending is not None and pending.phase == phase:
                del self._pending[workflow_id]

    async def submit_decision(self, workflow_id: str, decision: ApprovalDecision) -> bool:
        """Persist a decision, then wake the waiter if one exists.

        Returns ``True`` when a suspended request was resolved.
        """

        if decision.workflow_id != workflow_id:
            raise ApprovalGateError(
                f"Decision for {decision.workflow_id} submitted to workflow {workflow_id}",
            )

        async with self._lock(workflow_id):
            if workflow_id not in self._history:
                self._history[workflow_id] = await asyncio.to_thread(self._read, workflow_id)
            history = self._history[workflow_id]
            history.append(decision)
            await asyncio.to_thread(self._write, workflow_id, list(history))

        self._pending.pop(workflow_id, None)
        future = self._waiters.get(workflow_id)
        if future is None or future.done():
            logger.info(
                "Decision %s for workflow %s persisted without listener",
                decision.action.value,
                workflow_id,
            )
            return False
        future.set_result(decision)
        logger.info("Decision %s resolved workflow %s", decision.action.value, workflow_id)
        return True

    def restore_pending_approval(
        self,
        workflow_id: str,
        phase: WorkflowPhase,
        content: ApprovalContent,
    ) -> None:
        """Re-register a visible pending item after a restart without a waiter."""

        if workflow_id in self._pending:
            return
        self._pending[workflow_id] = PendingApproval(
            workflow_id=workflow_id,
            phase=phase,
            content=content,
            created_at=utc_now_iso(),
        )

    def cancel_approval(self, workflow_id: str, reason: str) -> bool:
        """Reject an outstanding wait with :class:`ApprovalCancelledError`."""

        self._pending.pop(workflow_id, None)
        future = self._waiters.pop(workflow_id, None)
        if future is None or future.done():
            return False
        future.set_exception(ApprovalCancelledError(workflow_id, reason))
        logger.info("Approval for workflow %s cancelled: %s", workflow_id, reason)
        return True

    async def load_approvals(self, workflow_id: str) -> list[ApprovalDecision]:
        """Load decision history from disk into memory."""

        async with self._lock(workflow_id):
            history = await asyncio.to_thread(self._read, workflow_id)
            self._history[workflow_id] = history
        return list(history)

    def get_pending_approvals(self) -> list[PendingApproval]:
        return sorted(self._pending.values(), key=lambda item: item.created_at)

    def get_approval_history(self, workflow_id: str) -> list[ApprovalDecision]:
        return list(self._history.get(workflow_id, []))

    def is_waiting_approval(self, workflow_id: str) -> bool:
        return workflow_id in self._pending

    def has_listener(self, workflow_id: str) -> bool:
        """Whether a live coroutine is suspended on this workflow."""

        future = self._waiters.get(workflow_id)
        return future is not None and not future.done()

    def _lock(self, workflow_id: str) -> asyncio.Lock:
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[workflow_id] = lock
        return lock

    def _path(self, workflow_id: str) -> Path:
        return self.base_path / workflow_id / APPROVALS_FILE

    def _read(self, workflow_id: str) -> list[ApprovalDecision]:
        path = self._path(workflow_id)
        if not path.exists():
            return []
        try:
            payload = load_json(path)
            return [ApprovalDecision.from_dict(item) for item in payload.get("decisions", [])]
        except (OSError, TypeError, ValueError, KeyError) as error:
            raise ApprovalGateError(
                f"Failed to load approvals for workflow {workflow_id}: {error}",
            ) from error

    def _write(self, workflow_id: str, decisions: list[ApprovalDecision]) -> None:
        try:
            write_json(
                self._path(workflow_id),
                {
                    "workflow_id": workflow_id,
                    "decisions": [item.to_dict() for item in decisions],
                },
            )
        except (OSError, TypeError, ValueError) as error:
            raise ApprovalGateError(
                f"Failed to persist approvals for workflow {workflow_id}: {error}",
            ) from error
