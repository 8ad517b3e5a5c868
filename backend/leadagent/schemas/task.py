# backend/leadagent/schemas/task.py
"""
Typed task payloads.

Each task type has its own payload model; the engine dispatches on
TaskType instead of free-form string checks. Payloads are stored as
camelCase JSON, unknown keys are preserved.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Type
from uuid import UUID
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from leadagent.exceptions import UnknownTaskTypeError


class TaskType(str, Enum):
    GENERATE_CAMPAIGN = "GENERATE_CAMPAIGN"
    SEARCH = "SEARCH"
    ENRICH = "ENRICH"
    CONTACT = "CONTACT"
    CONTACT_INITIAL = "CONTACT_INITIAL"


class EnrichmentLevel(str, Enum):
    BASIC = "basic"
    DEEP = "deep"


class TaskPayload(BaseModel):
    """Fields shared by every payload."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    user_id: Optional[UUID] = None
    campaign_name: Optional[str] = None
    campaign_context: Optional[str] = None


class SearchPayload(TaskPayload):
    job_title: Optional[str] = None
    location: Optional[str] = None
    industry: Optional[str] = None
    keywords: Optional[str] = None
    company_size: Optional[str] = None
    seniorities: List[str] = Field(default_factory=list)
    enrichment_level: Optional[str] = None
    mission_title: Optional[str] = None

    @field_validator("seniorities", mode="before")
    @classmethod
    def coerce_seniorities(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v


class GenerateCampaignPayload(SearchPayload):
    """Campaign generation carries the full search payload forward."""


class EnrichPayload(TaskPayload):
    leads: List[Dict[str, Any]] = Field(default_factory=list)
    enrichment_level: Optional[str] = None

    @property
    def tier(self) -> EnrichmentLevel:
        if self.enrichment_level == EnrichmentLevel.DEEP.value:
            return EnrichmentLevel.DEEP
        return EnrichmentLevel.BASIC


class ContactPayload(TaskPayload):
    enriched_leads: List[Dict[str, Any]] = Field(default_factory=list)


PAYLOAD_TYPES: Dict[TaskType, Type[TaskPayload]] = {
    TaskType.GENERATE_CAMPAIGN: GenerateCampaignPayload,
    TaskType.SEARCH: SearchPayload,
    TaskType.ENRICH: EnrichPayload,
    TaskType.CONTACT: ContactPayload,
    TaskType.CONTACT_INITIAL: ContactPayload,
}


def resolve_task_type(value: str) -> TaskType:
    try:
        return TaskType(value)
    except ValueError:
        raise UnknownTaskTypeError(value)


def parse_payload(task_type: TaskType, payload: Optional[Dict[str, Any]]) -> TaskPayload:
    """Validate a stored payload into its typed variant (raises ValidationError)."""
    return PAYLOAD_TYPES[task_type].model_validate(payload or {})


# ============================================================================
# API SCHEMAS
# ============================================================================

class TaskResponse(BaseModel):
    id: UUID
    mission_id: UUID
    organization_id: UUID
    type: str
    status: str
    payload: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_of: Optional[UUID] = None
    retry_count: int = 0
    processing_started_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RunBatchResponse(BaseModel):
    """Result of one engine invocation."""
    processed: int
    tasks: List[str]
