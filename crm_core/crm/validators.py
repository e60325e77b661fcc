from __future__ import annotations

import re
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from crm_core.crm.models import DealStatus, EntityKind, EntityRecord
from crm_core.crm.schemas import ValidationIssue, ValidationResult


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[\d\s().\-]{7,20}$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class BusinessValidator(Protocol):
    """Per-kind business rules consumed by the repository facade."""

    async def validate_create(self, data: Mapping[str, Any]) -> ValidationResult:
        ...

    async def validate_update(self, entity_id: str, data: Mapping[str, Any], existing: EntityRecord) -> ValidationResult:
        ...

    async def validate_delete(self, entity_id: str, existing: EntityRecord) -> ValidationResult:
        ...


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class RuleValidator:
    """Field rules run on create and on the fields present in an update."""

    def rules(self, data: Mapping[str, Any], *, partial: bool) -> list[ValidationIssue]:
        return []

    def delete_rules(self, existing: EntityRecord) -> list[ValidationIssue]:
        return []

    async def validate_create(self, data: Mapping[str, Any]) -> ValidationResult:
        return ValidationResult.from_issues(self.rules(data, partial=False))

    async def validate_update(self, entity_id: str, data: Mapping[str, Any], existing: EntityRecord) -> ValidationResult:
        merged = {**existing.model_dump(), **data}
        issues = [issue for issue in self.rules(merged, partial=True) if issue.field is None or issue.field in data]
        return ValidationResult.from_issues(issues)

    async def validate_delete(self, entity_id: str, existing: EntityRecord) -> ValidationResult:
        return ValidationResult.from_issues(self.delete_rules(existing))

    @staticmethod
    def required(data: Mapping[str, Any], field: str, code: str, message: str) -> list[ValidationIssue]:
        if _is_blank(data.get(field)):
            return [ValidationIssue(field=field, code=code, message=message)]
        return []

    @staticmethod
    def email_format(data: Mapping[str, Any], field: str = "email") -> list[ValidationIssue]:
        value = data.get(field)
        if _is_blank(value) or EMAIL_RE.match(str(value).strip()):
            return []
        return [ValidationIssue(field=field, code="INVALID_EMAIL_FORMAT", message=f"Invalid email format: {value}")]

    @staticmethod
    def phone_format(data: Mapping[str, Any], field: str = "phone") -> list[ValidationIssue]:
        value = data.get(field)
        if _is_blank(value) or PHONE_RE.match(str(value).strip()):
            return []
        return [ValidationIssue(field=field, code="INVALID_PHONE_FORMAT", message=f"Invalid phone format: {value}")]


class OrganisationValidator(RuleValidator):
    def rules(self, data: Mapping[str, Any], *, partial: bool) -> list[ValidationIssue]:
        return [
            *self.required(data, "name", "NAME_REQUIRED", "Organisation name is required"),
            *self.email_format(data),
            *self.phone_format(data),
        ]


class ContactValidator(RuleValidator):
    def rules(self, data: Mapping[str, Any], *, partial: bool) -> list[ValidationIssue]:
        issues = [
            *self.required(data, "first_name", "FIRST_NAME_REQUIRED", "First name is required"),
            *self.required(data, "last_name", "LAST_NAME_REQUIRED", "Last name is required"),
            *self.email_format(data),
            *self.phone_format(data),
        ]
        for field, code, label in (
            ("first_name", "FIRST_NAME_TOO_SHORT", "First name"),
            ("last_name", "LAST_NAME_TOO_SHORT", "Last name"),
        ):
            value = data.get(field)
            if not _is_blank(value) and len(str(value).strip()) < 2:
                issues.append(ValidationIssue(field=field, code=code, message=f"{label} must be at least 2 characters"))
        return issues


class LeadValidator(RuleValidator):
    def rules(self, data: Mapping[str, Any], *, partial: bool) -> list[ValidationIssue]:
        issues = [
            *self.required(data, "title", "TITLE_REQUIRED", "Lead title is required"),
            *self.email_format(data),
            *self.phone_format(data),
        ]
        score = data.get("score")
        if score is not None and not (isinstance(score, int) and 0 <= score <= 100):
            issues.append(ValidationIssue(field="score", code="INVALID_SCORE", message="Score must be between 0 and 100"))
        return issues


class DealValidator(RuleValidator):
    def rules(self, data: Mapping[str, Any], *, partial: bool) -> list[ValidationIssue]:
        issues = self.required(data, "title", "TITLE_REQUIRED", "Deal title is required")

        amount = data.get("amount")
        if amount is not None:
            try:
                if Decimal(str(amount)) < 0:
                    raise InvalidOperation
            except InvalidOperation:
                issues.append(ValidationIssue(field="amount", code="AMOUNT_MUST_BE_POSITIVE", message="Deal amount must be positive"))

        currency = data.get("currency")
        if currency is not None and not CURRENCY_RE.match(str(currency)):
            issues.append(ValidationIssue(field="currency", code="INVALID_CURRENCY", message="Invalid currency code"))

        probability = data.get("probability")
        if probability is not None and not (isinstance(probability, int) and 0 <= probability <= 100):
            issues.append(
                ValidationIssue(field="probability", code="INVALID_PROBABILITY", message="Probability must be between 0 and 100")
            )

        status = data.get("status")
        if status == DealStatus.LOST and _is_blank(data.get("loss_reason")):
            issues.append(ValidationIssue(field="loss_reason", code="LOSS_REASON_REQUIRED", message="Loss reason is required for lost deals"))
        if status in (DealStatus.WON, DealStatus.LOST) and data.get("close_date") is None:
            issues.append(ValidationIssue(field="close_date", code="CLOSE_DATE_REQUIRED", message="Close date is required for closed deals"))
        return issues

    async def validate_update(self, entity_id: str, data: Mapping[str, Any], existing: EntityRecord) -> ValidationResult:
        merged = {**existing.model_dump(), **data}
        issues = self.rules(merged, partial=True)
        # Closing rules depend on the merged status, so they apply even when only status changed.
        closing_fields = {"loss_reason", "close_date"}
        relevant = [
            issue
            for issue in issues
            if issue.field in data or (issue.field in closing_fields and "status" in data)
        ]
        return ValidationResult.from_issues(relevant)

    def delete_rules(self, existing: EntityRecord) -> list[ValidationIssue]:
        status = getattr(existing, "status", None)
        if status in (DealStatus.WON, DealStatus.LOST):
            return [
                ValidationIssue(
                    field="status",
                    code="CLOSED_DEAL_DELETE",
                    message=f"Cannot delete a closed deal (status: {status.value})",
                )
            ]
        return []


class TaskValidator(RuleValidator):
    def rules(self, data: Mapping[str, Any], *, partial: bool) -> list[ValidationIssue]:
        return self.required(data, "title", "TITLE_REQUIRED", "Task title is required")


class PipelineValidator(RuleValidator):
    def rules(self, data: Mapping[str, Any], *, partial: bool) -> list[ValidationIssue]:
        issues = self.required(data, "name", "NAME_REQUIRED", "Pipeline name is required")
        if not data.get("stages"):
            issues.append(ValidationIssue(field="stages", code="STAGES_REQUIRED", message="Pipeline needs at least one stage"))
        return issues

    def delete_rules(self, existing: EntityRecord) -> list[ValidationIssue]:
        if getattr(existing, "is_default", False):
            return [ValidationIssue(field="is_default", code="DEFAULT_PIPELINE_DELETE", message="Cannot delete the default pipeline")]
        return []


def default_validators() -> dict[EntityKind, BusinessValidator]:
    return {
        EntityKind.ORGANISATION: OrganisationValidator(),
        EntityKind.CONTACT: ContactValidator(),
        EntityKind.LEAD: LeadValidator(),
        EntityKind.DEAL: DealValidator(),
        EntityKind.TASK: TaskValidator(),
        EntityKind.PIPELINE: PipelineValidator(),
    }
