from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from crm_core.crm.models import Deal, DealStatus, EntityKind, Pipeline
from crm_core.crm.validators import (
    ContactValidator,
    DealValidator,
    LeadValidator,
    OrganisationValidator,
    PipelineValidator,
    TaskValidator,
    default_validators,
)


NOW = datetime(2026, 2, 2, tzinfo=timezone.utc)


def _deal(**fields: object) -> Deal:
    return Deal(
        id="deal-1",
        tenant_id="tenant_001",
        created_at=NOW,
        updated_at=NOW,
        created_by="u",
        updated_by="u",
        assigned_user_id="u",
        title="Renewal",
        **fields,
    )


def test_default_validators_cover_every_kind() -> None:
    assert set(default_validators()) == set(EntityKind)


@pytest.mark.asyncio
async def test_organisation_rules() -> None:
    result = await OrganisationValidator().validate_create({"name": "", "email": "nope", "phone": "call me"})

    assert not result.valid
    assert [issue.code for issue in result.errors] == ["NAME_REQUIRED", "INVALID_EMAIL_FORMAT", "INVALID_PHONE_FORMAT"]
    assert (await OrganisationValidator().validate_create({"name": "Acme", "phone": "+44 20 7946 0958"})).valid


@pytest.mark.asyncio
async def test_contact_name_rules() -> None:
    missing = await ContactValidator().validate_create({"first_name": "Ada"})
    short = await ContactValidator().validate_create({"first_name": "A", "last_name": "L"})

    assert [issue.code for issue in missing.errors] == ["LAST_NAME_REQUIRED"]
    assert [issue.code for issue in short.errors] == ["FIRST_NAME_TOO_SHORT", "LAST_NAME_TOO_SHORT"]


@pytest.mark.asyncio
async def test_lead_score_bounds() -> None:
    result = await LeadValidator().validate_create({"title": "Inbound", "score": 101})

    assert [issue.code for issue in result.errors] == ["INVALID_SCORE"]


@pytest.mark.asyncio
async def test_deal_field_rules() -> None:
    result = await DealValidator().validate_create(
        {"title": "Renewal", "amount": Decimal("-1"), "currency": "usd", "probability": 150}
    )

    assert [issue.code for issue in result.errors] == [
        "AMOUNT_MUST_BE_POSITIVE",
        "INVALID_CURRENCY",
        "INVALID_PROBABILITY",
    ]


@pytest.mark.asyncio
async def test_update_only_reports_supplied_fields() -> None:
    existing = _deal(currency="usd")

    result = await DealValidator().validate_update(existing.id, {"probability": 40}, existing)

    assert result.valid


@pytest.mark.asyncio
async def test_closing_a_deal_uses_merged_state() -> None:
    existing = _deal(loss_reason="Budget cut")

    lost = await DealValidator().validate_update(existing.id, {"status": "lost", "close_date": date(2026, 2, 1)}, existing)
    won = await DealValidator().validate_update(existing.id, {"status": DealStatus.WON}, existing)

    assert lost.valid
    assert [issue.code for issue in won.errors] == ["CLOSE_DATE_REQUIRED"]


@pytest.mark.asyncio
async def test_delete_vetoes() -> None:
    won = _deal(status=DealStatus.WON, close_date=date(2026, 1, 1))
    pipeline = Pipeline(
        id="pipe-1",
        tenant_id="tenant_001",
        created_at=NOW,
        updated_at=NOW,
        created_by="u",
        updated_by="u",
        assigned_user_id="u",
        name="Sales",
        is_default=True,
    )

    assert (await DealValidator().validate_delete(won.id, won)).errors[0].code == "CLOSED_DEAL_DELETE"
    assert (await DealValidator().validate_delete("deal-2", _deal())).valid
    assert (await PipelineValidator().validate_delete(pipeline.id, pipeline)).errors[0].code == "DEFAULT_PIPELINE_DELETE"


@pytest.mark.asyncio
async def test_task_and_pipeline_creation_rules() -> None:
    task = await TaskValidator().validate_create({"title": " "})
    pipeline = await PipelineValidator().validate_create({"name": "Sales", "stages": []})

    assert [issue.code for issue in task.errors] == ["TITLE_REQUIRED"]
    assert [issue.code for issue in pipeline.errors] == ["STAGES_REQUIRED"]
