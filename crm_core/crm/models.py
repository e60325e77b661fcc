from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class EntityKind(StrEnum):
    ORGANISATION = "organisations"
    CONTACT = "contacts"
    DEAL = "deals"
    LEAD = "leads"
    TASK = "tasks"
    PIPELINE = "pipelines"


class OrganisationType(StrEnum):
    DEALER = "dealer"
    SHIPPER = "shipper"
    AUCTION = "auction"
    RETAIL = "retail"
    EXPEDITOR = "expeditor"
    PROCESSOR = "processor"
    OTHER = "other"


class LeadStatus(StrEnum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    DISQUALIFIED = "disqualified"
    CONVERTED = "converted"


class DealStatus(StrEnum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SocialMediaLink(BaseModel):
    platform: str
    url: str


class PipelineStage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    order: int = 0
    probability: int = Field(default=0, ge=0, le=100)


class EntityRecord(BaseModel):
    """Fields every stored entity carries, whatever its kind."""

    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[EntityKind]
    tracked_fields: ClassVar[tuple[str, ...]] = ()
    search_fields: ClassVar[tuple[str, ...]] = ()

    id: str
    tenant_id: str
    created_at: datetime
    updated_at: datetime
    created_by: str
    updated_by: str
    assigned_user_id: str
    verified: bool = False


class Organisation(EntityRecord):
    kind = EntityKind.ORGANISATION
    tracked_fields = ("email", "phone", "company_id", "tax_id", "social_media_links.url")
    search_fields = ("name", "email", "city", "country")

    name: str
    type: OrganisationType = OrganisationType.OTHER
    email: str | None = None
    phone: str | None = None
    company_id: str | None = None
    tax_id: str | None = None
    website: str | None = None
    country: str | None = None
    city: str | None = None
    description: str | None = None
    social_media_links: list[SocialMediaLink] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class Contact(EntityRecord):
    kind = EntityKind.CONTACT
    tracked_fields = ("email", "phone", "social_media_links.url")
    search_fields = ("first_name", "last_name", "email", "title")

    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    organisation_id: str | None = None
    title: str | None = None
    social_media_links: list[SocialMediaLink] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class Lead(EntityRecord):
    kind = EntityKind.LEAD
    tracked_fields = ("email", "phone")
    search_fields = ("title", "first_name", "last_name", "email")

    title: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    source: str | None = None
    status: LeadStatus = LeadStatus.NEW
    score: int = 0
    organisation_id: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class Deal(EntityRecord):
    kind = EntityKind.DEAL
    search_fields = ("title",)

    title: str
    amount: Decimal = Decimal("0")
    currency: str = "USD"
    probability: int = 0
    status: DealStatus = DealStatus.OPEN
    pipeline_id: str | None = None
    stage_id: str | None = None
    organisation_id: str | None = None
    contact_id: str | None = None
    close_date: date | None = None
    loss_reason: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class Task(EntityRecord):
    kind = EntityKind.TASK
    search_fields = ("title", "description")

    title: str
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    target_type: EntityKind | None = None
    target_id: str | None = None
    due_date: datetime | None = None
    description: str | None = None


class Pipeline(EntityRecord):
    kind = EntityKind.PIPELINE
    search_fields = ("name",)

    name: str
    is_default: bool = False
    stages: list[PipelineStage] = Field(default_factory=list)


ENTITY_MODELS: dict[EntityKind, type[EntityRecord]] = {
    EntityKind.ORGANISATION: Organisation,
    EntityKind.CONTACT: Contact,
    EntityKind.DEAL: Deal,
    EntityKind.LEAD: Lead,
    EntityKind.TASK: Task,
    EntityKind.PIPELINE: Pipeline,
}

SYSTEM_FIELDS = frozenset({"id", "tenant_id", "created_at", "updated_at", "created_by", "updated_by"})
IMMUTABLE_FIELDS = frozenset({"id", "tenant_id", "created_at", "created_by"})
