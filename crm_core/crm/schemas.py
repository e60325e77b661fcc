from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field

from crm_core.crm.models import EntityRecord
from crm_core.platform.uniqueness.schemas import Conflict


RecordT = TypeVar("RecordT", bound=EntityRecord)


class ValidationIssue(BaseModel):
    field: str | None = None
    code: str
    message: str

    def render(self) -> str:
        return f"{self.field}: {self.message}" if self.field else self.message


class ValidationResult(BaseModel):
    valid: bool = True
    errors: list[ValidationIssue] = Field(default_factory=list)

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True, errors=[])

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> ValidationResult:
        return cls(valid=not issues, errors=issues)


@dataclass(slots=True)
class WriteResult(Generic[RecordT]):
    """Outcome of create/update/remove; business failures are returned, not raised."""

    success: bool
    data: RecordT | None = None
    errors: list[ValidationIssue] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)

    @classmethod
    def ok(cls, data: RecordT | None) -> WriteResult[RecordT]:
        return cls(success=True, data=data)

    @classmethod
    def failed(
        cls,
        errors: list[ValidationIssue] | None = None,
        conflicts: list[Conflict] | None = None,
    ) -> WriteResult[RecordT]:
        return cls(success=False, errors=list(errors or []), conflicts=list(conflicts or []))

    @property
    def error_messages(self) -> list[str]:
        return [issue.render() for issue in self.errors]


class ListQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=500)
    sort_by: str | None = None
    sort_order: Literal["asc", "desc"] = "desc"
    search: str | None = None
    filter: dict[str, Any] = Field(default_factory=dict)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


@dataclass(slots=True)
class Page(Generic[RecordT]):
    data: list[RecordT]
    pagination: Pagination
