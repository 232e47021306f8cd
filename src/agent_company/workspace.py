"""Resolve project ids to local working directories."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

_PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(slots=True, frozen=True)
class WorkspaceInfo:
    project_id: str
    local_path: Path


class WorkspaceManager(Protocol):
    def get_workspace_info(self, project_id: str) -> WorkspaceInfo | None:
        """Workspace for a project, or ``None`` when it cannot be resolved."""


class DirectoryWorkspaceManager:
    """One directory per project under ``projects_root``."""

    def __init__(self, projects_root: Path) -> None:
        self.projects_root = projects_root

    def get_workspace_info(self, project_id: str) -> WorkspaceInfo | None:
        if not _PROJECT_ID_PATTERN.match(project_id):
            return None
        local_path = self.projects_root / project_id
        local_path.mkdir(parents=True, exist_ok=True)
        return WorkspaceInfo(project_id=project_id, local_path=local_path.resolve())
