"""Closed task variants accepted at the API boundary.

Workers historically switched on a free-text ``task_type``. Ingress now
validates the category and type once; anything outside the known set is
rejected before a worker is contacted.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from conductor.errors import ValidationError


class BusinessTaskType(str, Enum):
    MARKET_ANALYSIS = "market_analysis"
    COMPETITIVE_ANALYSIS = "competitive_analysis"
    STRATEGY_DEVELOPMENT = "strategy_development"
    FINANCIAL_ANALYSIS = "financial_analysis"
    FINANCIAL_FORECASTING = "financial_forecasting"
    RISK_ASSESSMENT = "risk_assessment"
    CAMPAIGN_CREATION = "campaign_creation"
    CONTENT_STRATEGY = "content_strategy"
    LEAD_QUALIFICATION = "lead_qualification"
    SALES_FORECASTING = "sales_forecasting"
    PRODUCT_PLANNING = "product_planning"
    LAUNCH_COORDINATION = "launch_coordination"


class SecurityTaskType(str, Enum):
    LEGAL_REVIEW = "legal_review"
    SECURITY_AUDIT = "security_audit"
    COMPLIANCE_CHECK = "compliance_check"
    DATA_PRIVACY_CHECK = "data_privacy_check"
    THREAT_ASSESSMENT = "threat_assessment"


class AudiovisualTaskType(str, Enum):
    SCRIPT_GENERATION = "script_generation"
    IMAGE_CURATION = "image_curation"
    ANIMATION_PROMPTS = "animation_prompts"
    SCENE_COMPOSITION = "scene_composition"
    QUALITY_CONTROL = "quality_control"


class _TaskBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    description: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class BusinessTask(_TaskBase):
    category: Literal["business"]
    task_type: BusinessTaskType = Field(..., validation_alias=AliasChoices("task_type", "type"))


class SecurityTask(_TaskBase):
    category: Literal["security"]
    task_type: SecurityTaskType = Field(..., validation_alias=AliasChoices("task_type", "type"))


class AudiovisualTask(_TaskBase):
    category: Literal["audiovisual"]
    task_type: AudiovisualTaskType = Field(..., validation_alias=AliasChoices("task_type", "type"))


TaskSpec = Annotated[
    Union[BusinessTask, SecurityTask, AudiovisualTask],
    Field(discriminator="category"),
]

_task_adapter: TypeAdapter[Any] = TypeAdapter(TaskSpec)


def parse_task(raw: Any) -> BusinessTask | SecurityTask | AudiovisualTask:
    if isinstance(raw, (BusinessTask, SecurityTask, AudiovisualTask)):
        return raw
    try:
        return _task_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Task is not a recognised category/type combination",
            details={"errors": json.loads(exc.json(include_url=False))},
        ) from exc


def task_wire_payload(task: BusinessTask | SecurityTask | AudiovisualTask) -> dict[str, Any]:
    """Shape forwarded to workers, which still expect ``task_type``."""
    return {
        "category": task.category,
        "task_type": task.task_type.value,
        "description": task.description,
        "payload": dict(task.payload),
    }
