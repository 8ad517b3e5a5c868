"""Schemas for mission trigger, quota status and contact outcomes."""

from pydantic import BaseModel, Field
from typing import Optional
import datetime
from uuid import UUID


class MissionTriggerResponse(BaseModel):
    success: bool = True
    task_id: UUID = Field(..., serialization_alias="taskId")
    task_type: str = Field(..., serialization_alias="taskType")
    message: str = "Mission task created successfully"


class QuotaCounter(BaseModel):
    used: int
    limit: int
    runs: Optional[int] = None


class QuotaStatusResponse(BaseModel):
    """Today's usage against the active mission limits."""
    date: datetime.date
    searches: QuotaCounter
    enrichments: QuotaCounter
    investigations: QuotaCounter
    contacts: QuotaCounter


class ContactOutcomeRequest(BaseModel):
    """Delivery result reported by the outreach collaborator."""
    status: str = Field(..., pattern="^(sent|failed|blocked)$")


class ContactOutcomeResponse(BaseModel):
    id: UUID
    status: str
    lead_id: Optional[str] = None
