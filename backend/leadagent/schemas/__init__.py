"""Pydantic schemas for request/response validation and task payloads."""

from leadagent.schemas.task import (
    TaskType,
    EnrichmentLevel,
    TaskPayload,
    SearchPayload,
    GenerateCampaignPayload,
    EnrichPayload,
    ContactPayload,
    TaskResponse,
    RunBatchResponse,
    parse_payload,
    resolve_task_type,
)
from leadagent.schemas.mission import (
    MissionTriggerResponse,
    QuotaCounter,
    QuotaStatusResponse,
    ContactOutcomeRequest,
    ContactOutcomeResponse,
)
