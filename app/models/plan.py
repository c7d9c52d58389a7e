"""Plan document schema and API envelopes.

This module defines:
1. Structural schema of a stored plan document (CostShare, LinkedService,
   LinkedPlanService, Plan)
2. validate_plan_document, the validation gate used before every write
3. Response envelopes for the plans API

Every level forbids unknown fields. Numbers must be finite JSON numbers and strings
must be JSON strings; no coercion is applied. Fields starting with an
underscore (``_org``) are declared through aliases because pydantic reserves
underscore attribute names.
"""

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

Number = StrictInt | Annotated[float, Field(strict=True, allow_inf_nan=False)]


class _PlanSchemaModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CostShare(_PlanSchemaModel):
    """Cost sharing terms attached to a plan or to a linked plan service."""

    deductible: Number
    org: StrictStr = Field(..., alias="_org")
    copay: Number
    objectId: StrictStr
    objectType: StrictStr


class LinkedService(_PlanSchemaModel):
    """Service referenced by a linked plan service."""

    org: StrictStr = Field(..., alias="_org")
    objectId: StrictStr
    objectType: StrictStr
    name: StrictStr


class LinkedPlanService(_PlanSchemaModel):
    """A service covered by the plan with its own cost shares."""

    linkedService: LinkedService
    planserviceCostShares: CostShare
    org: StrictStr = Field(..., alias="_org")
    objectId: StrictStr
    objectType: StrictStr


class Plan(_PlanSchemaModel):
    """
    Top-level plan document.

    ``objectId`` identifies the plan and is used as its storage key.
    """

    planCostShares: CostShare
    linkedPlanServices: list[LinkedPlanService]
    org: StrictStr = Field(..., alias="_org")
    objectId: StrictStr
    objectType: StrictStr
    planType: StrictStr
    creationDate: StrictStr


def plan_key_fields() -> set[str]:
    """Top-level string fields of a plan, by wire name, usable as its storage key."""
    return {
        field.alias or name
        for name, field in Plan.model_fields.items()
        if field.annotation is str
    }


def _format_loc(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) if loc else "$"


def validate_plan_document(document: Any) -> list[dict[str, str]]:
    """
    Validate a document against the plan schema.

    Args:
        document: Decoded JSON value

    Returns:
        Empty list when the document is valid, otherwise one entry per
        violated constraint with ``loc`` (dotted path), ``msg`` and ``type``.
    """
    if not isinstance(document, dict):
        return [
            {
                "loc": "$",
                "msg": "Plan document must be a JSON object",
                "type": "object_type",
            }
        ]

    try:
        Plan.model_validate(document)
    except ValidationError as e:
        return [
            {"loc": _format_loc(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
    return []


class PlanEnvelope(BaseModel):
    """Response body for successful create, replace and update calls."""

    message: str = Field(..., description="Human readable outcome")
    data: dict[str, Any] = Field(..., description="Plan document as stored")
