from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from conductor.errors import NotFoundError, ValidationError
from conductor.workflow.definitions import WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    def __init__(self, definitions: list[WorkflowDefinition] | None = None) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def __len__(self) -> int:
        return len(self._workflows)

    def register(self, definition: WorkflowDefinition) -> None:
        if definition.id in self._workflows:
            raise ValidationError(
                f"Workflow already registered: {definition.id}",
                details={"workflow_id": definition.id},
            )
        self._workflows[definition.id] = definition
        logger.info("Registered workflow %s (%d steps)", definition.id, len(definition.steps))

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        return self._workflows.get(workflow_id)

    def require(self, workflow_id: str) -> WorkflowDefinition:
        definition = self.get(workflow_id)
        if definition is None:
            raise NotFoundError(
                f"Workflow not found: {workflow_id}",
                details={"workflow_id": workflow_id},
            )
        return definition

    def list_workflows(self) -> list[WorkflowDefinition]:
        return [self._workflows[workflow_id] for workflow_id in sorted(self._workflows)]

    def describe(self, workflow_id: str) -> dict[str, Any]:
        definition = self.require(workflow_id)
        return {
            **definition.summary(),
            "steps": [step.model_dump(mode="json") for step in definition.steps],
            "optimization_rules": [
                {"type": rule.type, "target": list(rule.target), **rule.options}
                for rule in definition.optimization_rules
            ],
        }


def load_workflow_catalog(catalog_path: str | Path) -> list[WorkflowDefinition]:
    """Read workflow definitions from a YAML catalog.

    A missing file yields no workflows. A present but malformed entry is a
    ValidationError naming the entry.
    """
    path = Path(catalog_path)
    if not path.exists():
        logger.warning("Workflow catalog not found at %s", path)
        return []

    content = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    entries = content.get("workflows", []) if isinstance(content, dict) else []
    if not isinstance(entries, list):
        raise ValidationError(f"'workflows' must be a list in {path}")

    definitions: list[WorkflowDefinition] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError(f"Workflow entry #{index} in {path} is not a mapping")
        try:
            definitions.append(WorkflowDefinition.model_validate(entry))
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid workflow entry #{index} ({entry.get('id', '?')}) in {path}",
                details={"errors": json.loads(exc.json(include_url=False))},
            ) from exc
    return definitions
