from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class UniquenessConstraint(BaseModel):
    field: str
    entity_type: str
    entity_id: str
    value: str
    normalized_value: str
    verified: bool = False
    created_at: datetime
    updated_at: datetime


class MergeResolution(BaseModel):
    strategy: Literal["merge"] = "merge"
    target_entity_id: str
    fields_to_merge: list[str]


class ModifyResolution(BaseModel):
    strategy: Literal["modify"] = "modify"
    modified_values: dict[str, Any]


class OverrideResolution(BaseModel):
    strategy: Literal["override"] = "override"
    reason: str


class SkipResolution(BaseModel):
    strategy: Literal["skip"] = "skip"


ConflictResolution = Annotated[
    MergeResolution | ModifyResolution | OverrideResolution | SkipResolution,
    Field(discriminator="strategy"),
]


class Conflict(BaseModel):
    field: str
    value: str
    existing_entity_id: str
    existing_entity_type: str
    existing_verified: bool = False
    suggested_resolutions: list[ConflictResolution] = Field(min_length=1)
