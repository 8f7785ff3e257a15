"""Workflow definition lookup used by sub-workflow steps and the CLI."""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Tuple

from .contracts import Workflow


class WorkflowRepository(Protocol):
    """Source of workflow definitions."""

    async def get_workflow(
        self, workflow_id: str, version: Optional[str] = None
    ) -> Optional[Workflow]:
        """Return the workflow, latest version when ``version`` is ``None``."""


def _version_key(version: str) -> Tuple:
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in version.split(".")
    )


class InMemoryWorkflowRepository(WorkflowRepository):
    """Keep workflow definitions in a local dictionary keyed by id and version."""

    def __init__(self, workflows: Optional[List[Workflow]] = None) -> None:
        self._workflows: Dict[str, Dict[str, Workflow]] = {}
        for workflow in workflows or []:
            self.add(workflow)

    def add(self, workflow: Workflow) -> None:
        self._workflows.setdefault(workflow.id, {})[workflow.version] = workflow

    async def get_workflow(
        self, workflow_id: str, version: Optional[str] = None
    ) -> Optional[Workflow]:
        versions = self._workflows.get(workflow_id)
        if not versions:
            return None
        if version is not None:
            return versions.get(version)
        latest = max(versions, key=_version_key)
        return versions[latest]

    async def list_workflows(self) -> List[Workflow]:
        return [wf for versions in self._workflows.values() for wf in versions.values()]
