"""Deterministic multi-participant deliberation that produces meeting minutes."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from agent_company.bus import AgentBus, AgentMessageType, MessageBusError
from agent_company.storage.common import load_json, utc_now_iso, write_json
from agent_company.workflow.errors import MeetingCoordinatorError
from agent_company.workflow.models import (
    ActionItem,
    AgendaItem,
    AgendaStatus,
    MeetingDecision,
    MeetingMinutes,
    MeetingParticipant,
    MeetingStatement,
    WorkerType,
)

logger = logging.getLogger(__name__)

MEETINGS_DIR = "meetings"
FACILITATOR_ROLE = "Facilitator (COO/PM)"
FACILITATOR_EXPERTISE = (
    "project management",
    "requirements analysis",
    "task decomposition",
    "risk management",
)

SPECIALIST_TYPES: tuple[WorkerType, ...] = (
    WorkerType.RESEARCH,
    WorkerType.DESIGN,
    WorkerType.DESIGNER,
    WorkerType.DEVELOPER,
    WorkerType.TEST,
)

WORKER_TYPE_KEYWORDS: dict[WorkerType, tuple[str, ...]] = {
    WorkerType.RESEARCH: (
        "research", "investigate", "analysis", "analyze", "feasibility", "compare",
        "evaluate", "調査", "分析", "技術選定", "実現可能性", "リサーチ", "比較", "検証",
    ),
    WorkerType.DESIGN: (
        "architecture", "design", "api", "database", "schema", "structure",
        "設計", "アーキテクチャ", "データベース", "スキーマ", "構造",
    ),
    WorkerType.DESIGNER: (
        "ui", "ux", "layout", "screen", "user experience", "interface",
        "デザイン", "画面", "レイアウト", "ユーザー体験",
    ),
    WorkerType.DEVELOPER: (
        "implement", "develop", "code", "coding", "programming", "feature", "build",
        "実装", "開発", "コーディング", "プログラミング", "機能", "コード",
    ),
    WorkerType.TEST: (
        "test", "quality", "qa", "bug", "coverage",
        "テスト", "品質", "検証", "バグ", "カバレッジ",
    ),
    WorkerType.REVIEWER: (
        "review", "code review", "quality check",
        "レビュー", "品質チェック", "コードレビュー",
    ),
}

ROLE_NAMES: dict[WorkerType, str] = {
    WorkerType.RESEARCH: "Researcher",
    WorkerType.DESIGN: "Architect",
    WorkerType.DESIGNER: "UI/UX Designer",
    WorkerType.DEVELOPER: "Developer",
    WorkerType.TEST: "Tester",
    WorkerType.REVIEWER: "Reviewer",
}

TOPIC_REQUIREMENTS = "Requirements confirmation and analysis"
TOPIC_FEASIBILITY = "Technical feasibility assessment"
TOPIC_DESIGN = "Design direction"
TOPIC_DECOMPOSITION = "Task decomposition and assignment"
TOPIC_RISK = "Risk assessment and mitigation"


def matches_keywords(text: str, keywords: tuple[str, ...]) -> bool:
    """Case-insensitive substring match, so "build" also matches "ui"."""

    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


@dataclass(slots=True, frozen=True)
class OpinionContext:
    """Inputs available to an opinion generator for one agenda item."""

    instruction: str
    agenda_item: AgendaItem
    participant: MeetingParticipant
    statements: tuple[MeetingStatement, ...] = ()


class OpinionGenerator(Protocol):
    """Produces statement text; swap for a model-backed implementation."""

    def opinion(self, context: OpinionContext) -> str:
        """Specialist statement for one agenda item."""

    def synthesis(self, context: OpinionContext) -> str:
        """Facilitator summary of the statements collected for one item."""


class TemplateOpinionGenerator:
    """Deterministic template-based statements."""

    def opinion(self, context: OpinionContext) -> str:
        participant = context.participant
        topic = context.agenda_item.topic
        expertise = ", ".join(participant.expertise)
        prefix = f"[{participant.role}] On '{topic}', from the angle of {expertise}: "
        match participant.worker_type:
            case WorkerType.RESEARCH:
                return (
                    prefix
                    + f"'{context.instruction}' needs a feasibility check and a survey of "
                    "existing solutions."
                )
            case WorkerType.DESIGN:
                return prefix + "the architecture should stay extensible across the system."
            case WorkerType.DESIGNER:
                return prefix + "put user experience first with an intuitive interface."
            case WorkerType.DEVELOPER:
                return (
                    prefix
                    + "weigh implementation complexity and maintainability and deliver "
                    "incrementally."
                )
            case WorkerType.TEST:
                return prefix + "define the test strategy and quality bar early."
            case WorkerType.REVIEWER:
                return prefix + "set up review to keep code quality consistent."

    def synthesis(self, context: OpinionContext) -> str:
        return (
            f"[Facilitator summary] Collected {len(context.statements)} opinions on "
            f"'{context.agenda_item.topic}'. The direction for this item is set based on "
            "the specialists' views."
        )


class MeetingCoordinator:
    """Convene meetings and keep their minutes.

    Minutes are stored under ``<base_path>/<workflow_id>/meetings/``.
    """

    def __init__(
        self,
        bus: AgentBus | None,
        base_path: Path,
        *,
        opinion_generator: OpinionGenerator | None = None,
    ) -> None:
        self.bus = bus
        self.base_path = base_path
        self.opinion_generator = opinion_generator or TemplateOpinionGenerator()
        self._minutes: dict[str, MeetingMinutes] = {}
        self._by_workflow: dict[str, list[str]] = {}

    async def convene_meeting(
        self,
        workflow_id: str,
        instruction: str,
        facilitator_id: str,
    ) -> MeetingMinutes:
        if not workflow_id or not instruction or not instruction.strip() or not facilitator_id:
            raise MeetingCoordinatorError(
                "workflow_id, instruction and facilitator_id are required to convene a meeting",
            )

        meeting_id = _meeting_id()
        started_at = utc_now_iso()
        agenda = build_agenda(instruction)
        participants = select_participants(instruction, facilitator_id)
        specialists = [item for item in participants if not item.is_facilitator]
        facilitator = participants[0]

        statements: list[MeetingStatement] = []
        decisions: list[MeetingDecision] = []
        for agenda_item in agenda:
            agenda_item.status = AgendaStatus.DISCUSSING
            statements.append(
                MeetingStatement(
                    participant_id=facilitator_id,
                    participant_role=FACILITATOR_ROLE,
                    content=(
                        f"Opening discussion on '{agenda_item.topic}'. "
                        f"{agenda_item.description}"
                    ),
                    agenda_item_id=agenda_item.id,
                    timestamp=utc_now_iso(),
                ),
            )

            item_statements: list[MeetingStatement] = []
            for participant in specialists:
                statement = await self._collect_input(
                    workflow_id=workflow_id,
                    instruction=instruction,
                    facilitator_id=facilitator_id,
                    participant=participant,
                    agenda_item=agenda_item,
                )
                item_statements.append(statement)
            statements.extend(item_statements)

            summary = self.opinion_generator.synthesis(
                OpinionContext(
                    instruction=instruction,
                    agenda_item=agenda_item,
                    participant=facilitator,
                    statements=tuple(item_statements),
                ),
            )
            await self._emit(
                workflow_id,
                AgentMessageType.STATUS_RESPONSE,
                facilitator_id,
                facilitator_id,
                {"type": "meeting_summary", "agenda_item_id": agenda_item.id, "content": summary},
            )
            statements.append(
                MeetingStatement(
                    participant_id=facilitator_id,
                    participant_role=FACILITATOR_ROLE,
                    content=summary,
                    agenda_item_id=agenda_item.id,
                    timestamp=utc_now_iso(),
                ),
            )
            decisions.append(
                MeetingDecision(
                    agenda_item_id=agenda_item.id,
                    decision=f"Consensus reached on '{agenda_item.topic}'",
                    rationale=f"Based on {len(item_statements)} specialists' opinions",
                ),
            )
            agenda_item.status = AgendaStatus.CONCLUDED
            agenda_item.summary = summary

        minutes = MeetingMinutes(
            meeting_id=meeting_id,
            workflow_id=workflow_id,
            agenda=agenda,
            participants=participants,
            statements=statements,
            decisions=decisions,
            action_items=build_action_items(decisions, participants),
            facilitator=facilitator_id,
            started_at=started_at,
            ended_at=utc_now_iso(),
        )
        await self.save_meeting_minutes(minutes)
        logger.info(
            "Meeting %s for workflow %s concluded: %s agenda items, %s specialists",
            meeting_id,
            workflow_id,
            len(agenda),
            len(specialists),
        )
        return minutes

    async def save_meeting_minutes(self, minutes: MeetingMinutes) -> None:
        """Persist minutes, then register them in memory."""

        path = self._minutes_path(minutes.workflow_id, minutes.meeting_id)
        try:
            await asyncio.to_thread(write_json, path, minutes.to_dict())
        except (OSError, TypeError, ValueError) as error:
            raise MeetingCoordinatorError(
                f"Failed to persist meeting minutes {minutes.meeting_id}: {error}",
            ) from error
        self._register(minutes)

    async def load_meeting_minutes(self, workflow_id: str, meeting_id: str) -> MeetingMinutes:
        path = self._minutes_path(workflow_id, meeting_id)
        try:
            minutes = MeetingMinutes.from_dict(await asyncio.to_thread(load_json, path))
        except FileNotFoundError as error:
            raise MeetingCoordinatorError(f"Meeting minutes not found: {meeting_id}") from error
        except (OSError, TypeError, ValueError, KeyError) as error:
            raise MeetingCoordinatorError(
                f"Failed to load meeting minutes {meeting_id}: {error}",
            ) from error
        self._register(minutes)
        return minutes

    def get_meeting_minutes(self, meeting_id: str) -> MeetingMinutes | None:
        return self._minutes.get(meeting_id)

    async def get_meeting_minutes_for_workflow(self, workflow_id: str) -> list[MeetingMinutes]:
        """Minutes for a workflow, loading any that are only on disk."""

        meetings_dir = self.base_path / workflow_id / MEETINGS_DIR
        if meetings_dir.exists():
            for path in sorted(meetings_dir.glob("mtg-*.json")):
                if path.stem not in self._minutes:
                    await self.load_meeting_minutes(workflow_id, path.stem)
        minutes = [self._minutes[item] for item in self._by_workflow.get(workflow_id, [])]
        return sorted(minutes, key=lambda item: item.started_at)

    async def add_participant(self, meeting_id: str, participant: MeetingParticipant) -> None:
        minutes = self._require(meeting_id)
        if any(item.agent_id == participant.agent_id for item in minutes.participants):
            return
        minutes.participants.append(participant)
        await self.save_meeting_minutes(minutes)

    async def add_agenda_item(self, meeting_id: str, item: AgendaItem) -> None:
        minutes = self._require(meeting_id)
        minutes.agenda.append(item)
        await self.save_meeting_minutes(minutes)

    async def _collect_input(
        self,
        *,
        workflow_id: str,
        instruction: str,
        facilitator_id: str,
        participant: MeetingParticipant,
        agenda_item: AgendaItem,
    ) -> MeetingStatement:
        await self._emit(
            workflow_id,
            AgentMessageType.STATUS_REQUEST,
            facilitator_id,
            participant.agent_id,
            {
                "type": "meeting_input_request",
                "agenda_item_id": agenda_item.id,
                "agenda_item_topic": agenda_item.topic,
                "instruction": instruction,
            },
        )
        content = self.opinion_generator.opinion(
            OpinionContext(
                instruction=instruction,
                agenda_item=agenda_item,
                participant=participant,
            ),
        )
        await self._emit(
            workflow_id,
            AgentMessageType.STATUS_RESPONSE,
            participant.agent_id,
            facilitator_id,
            {
                "type": "meeting_input_response",
                "agenda_item_id": agenda_item.id,
                "content": content,
            },
        )
        return MeetingStatement(
            participant_id=participant.agent_id,
            participant_role=participant.role,
            content=content,
            agenda_item_id=agenda_item.id,
            timestamp=utc_now_iso(),
        )

    async def _emit(
        self,
        run_id: str,
        message_type: AgentMessageType,
        from_agent: str,
        to_agent: str,
        payload: dict[str, str],
    ) -> None:
        if self.bus is None:
            return
        try:
            message = self.bus.create_message(message_type, from_agent, to_agent, payload)
            await self.bus.send(message, run_id=run_id)
        except (MessageBusError, OSError) as error:
            logger.warning(
                "Meeting message %s -> %s not delivered: %s",
                from_agent,
                to_agent,
                error,
            )

    def _register(self, minutes: MeetingMinutes) -> None:
        self._minutes[minutes.meeting_id] = minutes
        ids = self._by_workflow.setdefault(minutes.workflow_id, [])
        if minutes.meeting_id not in ids:
            ids.append(minutes.meeting_id)

    def _require(self, meeting_id: str) -> MeetingMinutes:
        minutes = self._minutes.get(meeting_id)
        if minutes is None:
            raise MeetingCoordinatorError(f"Meeting minutes not found: {meeting_id}")
        return minutes

    def _minutes_path(self, workflow_id: str, meeting_id: str) -> Path:
        return self.base_path / workflow_id / MEETINGS_DIR / f"{meeting_id}.json"


def build_agenda(instruction: str) -> list[AgendaItem]:
    """Agenda for an instruction, in discussion order."""

    agenda = [
        _agenda_item(
            TOPIC_REQUIREMENTS,
            f"Confirm the requirements of '{instruction}' and clarify scope and constraints.",
        ),
    ]
    technical = (
        WORKER_TYPE_KEYWORDS[WorkerType.RESEARCH] + WORKER_TYPE_KEYWORDS[WorkerType.DEVELOPER]
    )
    if matches_keywords(instruction, technical):
        agenda.append(
            _agenda_item(
                TOPIC_FEASIBILITY,
                "Discuss technology choices, architecture and implementation challenges.",
            ),
        )
    design = WORKER_TYPE_KEYWORDS[WorkerType.DESIGN] + WORKER_TYPE_KEYWORDS[WorkerType.DESIGNER]
    if matches_keywords(instruction, design):
        agenda.append(
            _agenda_item(TOPIC_DESIGN, "Agree on the architecture and UI/UX design approach."),
        )
    agenda.append(
        _agenda_item(
            TOPIC_DECOMPOSITION,
            "Break the work into tasks and decide the worker type for each.",
        ),
    )
    agenda.append(
        _agenda_item(TOPIC_RISK, "Identify project risks and agree on mitigations."),
    )
    return agenda


def select_participants(instruction: str, facilitator_id: str) -> list[MeetingParticipant]:
    """Facilitator first, then keyword-matched specialists (developer when none match)."""

    participants = [
        MeetingParticipant(
            agent_id=facilitator_id,
            role=FACILITATOR_ROLE,
            worker_type=WorkerType.DESIGN,
            expertise=FACILITATOR_EXPERTISE,
            is_facilitator=True,
        ),
    ]
    matched = [
        worker_type
        for worker_type in SPECIALIST_TYPES
        if matches_keywords(instruction, WORKER_TYPE_KEYWORDS[worker_type])
    ]
    for worker_type in matched or [WorkerType.DEVELOPER]:
        participants.append(specialist(worker_type))
    return participants


def specialist(worker_type: WorkerType) -> MeetingParticipant:
    return MeetingParticipant(
        agent_id=f"{worker_type.value}-agent",
        role=ROLE_NAMES[worker_type],
        worker_type=worker_type,
        expertise=WORKER_TYPE_KEYWORDS[worker_type][:4],
    )


def build_action_items(
    decisions: list[MeetingDecision],
    participants: list[MeetingParticipant],
) -> list[ActionItem]:
    """One action item per decision, assigned round-robin over specialists."""

    specialists = [item for item in participants if not item.is_facilitator] or participants
    action_items: list[ActionItem] = []
    for decision in decisions:
        assignee = specialists[len(action_items) % len(specialists)]
        action_items.append(
            ActionItem(
                description=f"{decision.decision} - carry out the agreed work",
                assignee=assignee.agent_id,
                worker_type=assignee.worker_type,
            ),
        )
    return action_items


def _agenda_item(topic: str, description: str) -> AgendaItem:
    return AgendaItem(id=f"agenda-{uuid4().hex[:8]}", topic=topic, description=description)


def _meeting_id() -> str:
    return f"mtg-{int(time.time() * 1000)}-{uuid4().hex[:8]}"
