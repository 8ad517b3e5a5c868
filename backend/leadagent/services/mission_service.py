# backend/leadagent/services/mission_service.py
"""
Mission Service - operator actions around the task queue

- trigger a mission (seed GENERATE_CAMPAIGN or SEARCH)
- list a mission's tasks
- bounded manual retry of a failed task
- daily quota status
- contact outcome reporting from the delivery collaborator
"""

from typing import Optional, Dict, Any, List
import logging
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from leadagent.config import settings
from leadagent.models import (
    Mission,
    Task,
    Lead,
    ContactedLead,
    MissionStatus,
    TaskStatus,
    LeadStatus,
    ContactStatus,
    LogLevel,
    utcnow
)
from leadagent.schemas.task import TaskType
from leadagent.exceptions import (
    MissionNotFoundError,
    MissionNotRunnableError,
    TaskNotFoundError,
    RetryNotAllowedError,
    ContactNotFoundError,
    AgentError
)
from leadagent.services.quota_ledger import QuotaLedger, resolve_limits
from leadagent.services.mission_logger import (
    MissionLogger,
    LEAD_CONTACT_SENT,
    LEAD_CONTACT_FAILED,
    LEAD_CONTACT_BLOCKED
)

logger = logging.getLogger(__name__)


SEED_FIELDS = (
    "jobTitle", "location", "industry", "keywords", "companySize",
    "seniorities", "enrichmentLevel", "campaignName", "campaignContext"
)

OUTCOME_EVENTS = {
    ContactStatus.SENT: LEAD_CONTACT_SENT,
    ContactStatus.FAILED: LEAD_CONTACT_FAILED,
    ContactStatus.BLOCKED: LEAD_CONTACT_BLOCKED,
}


def build_seed_payload(mission: Mission) -> Dict[str, Any]:
    params = mission.params or {}
    payload = {key: params.get(key) for key in SEED_FIELDS if params.get(key) not in (None, "")}
    payload["userId"] = str(mission.user_id) if mission.user_id else None
    payload["missionTitle"] = mission.title
    return payload


class MissionService:
    """Queue-facing operations exposed through the agent API."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.mission_logger = MissionLogger(db)

    async def get_mission(self, mission_id: uuid.UUID) -> Mission:
        mission = await self.db.get(Mission, mission_id)
        if mission is None:
            raise MissionNotFoundError(mission_id)
        return mission

    async def trigger_mission(self, mission_id: uuid.UUID) -> Task:
        """Seed the pipeline with its first task"""
        mission = await self.get_mission(mission_id)

        if mission.status != MissionStatus.ACTIVE:
            raise MissionNotRunnableError(
                f"Mission {mission_id} is {mission.status} and cannot be triggered"
            )

        auto_campaign = bool((mission.params or {}).get("autoGenerateCampaign"))
        task_type = TaskType.GENERATE_CAMPAIGN if auto_campaign else TaskType.SEARCH

        task = Task(
            id=uuid.uuid4(),
            mission_id=mission.id,
            organization_id=mission.organization_id,
            type=task_type.value,
            status=TaskStatus.PENDING,
            payload=build_seed_payload(mission),
        )
        self.db.add(task)

        self.mission_logger.log(
            mission.id, mission.organization_id, LogLevel.INFO,
            f"Mission triggered: {mission.title}",
            details={"taskId": str(task.id), "taskType": task_type.value}
        )
        await self.db.commit()

        logger.info(f"🚀 Mission {mission.id} triggered with {task_type.value} task {task.id}")
        return task

    async def list_tasks(self, mission_id: uuid.UUID, status: Optional[str] = None) -> List[Task]:
        await self.get_mission(mission_id)

        query = select(Task).where(Task.mission_id == mission_id)
        if status:
            query = query.where(Task.status == status)
        query = query.order_by(Task.created_at.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def retry_task(self, task_id: uuid.UUID) -> Task:
        """
        Re-queue a failed task as a new pending task.

        The failed task is left untouched; the new one points back at it
        through retry_of and carries retry_count + 1.
        """
        original = await self.db.get(Task, task_id)
        if original is None:
            raise TaskNotFoundError(task_id)

        if original.status != TaskStatus.FAILED:
            raise RetryNotAllowedError(f"Only failed tasks can be retried (task is {original.status})")

        retry_count = (original.retry_count or 0) + 1
        if retry_count > settings.MAX_TASK_RETRIES:
            raise RetryNotAllowedError(
                f"Retry limit reached ({settings.MAX_TASK_RETRIES}) for task {task_id}"
            )

        retry = Task(
            id=uuid.uuid4(),
            mission_id=original.mission_id,
            organization_id=original.organization_id,
            type=original.type,
            status=TaskStatus.PENDING,
            payload=dict(original.payload or {}),
            retry_of=original.id,
            retry_count=retry_count,
        )
        self.db.add(retry)

        self.mission_logger.log(
            original.mission_id, original.organization_id, LogLevel.WARNING,
            f"Task {original.type} re-queued (attempt {retry_count})",
            details={"taskId": str(retry.id), "retryOf": str(original.id)}
        )
        await self.db.commit()

        logger.warning(f"🔁 Task {original.id} retried as {retry.id} ({retry_count}/{settings.MAX_TASK_RETRIES})")
        return retry

    async def get_quota_status(self, organization_id: uuid.UUID) -> Dict[str, Any]:
        """Today's counters next to the limits of the latest active mission"""
        ledger = QuotaLedger(self.db)
        usage = await ledger.get_usage(organization_id)

        result = await self.db.execute(
            select(Mission)
            .where(
                Mission.organization_id == organization_id,
                Mission.status == MissionStatus.ACTIVE
            )
            .order_by(Mission.created_at.desc())
            .limit(1)
        )
        limits = resolve_limits(result.scalars().first())

        today_start = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        contacts = await self.db.execute(
            select(func.count(ContactedLead.id)).where(
                ContactedLead.organization_id == organization_id,
                ContactedLead.created_at >= today_start
            )
        )
        contacts_today = int(contacts.scalar() or 0)

        status = {
            "date": usage.date,
            "searches": {"used": usage.leads_searched, "runs": usage.search_runs, "limit": limits["search"]},
            "enrichments": {"used": usage.leads_enriched, "limit": limits["enrich"]},
            "investigations": {"used": usage.leads_investigated, "limit": limits["investigate"]},
            "contacts": {"used": contacts_today, "limit": limits["contact"]},
        }

        # get_usage may have created today's row
        await self.db.commit()
        return status

    async def report_contact_outcome(self, contact_id: uuid.UUID, status: str) -> ContactedLead:
        """Record what the delivery collaborator did with a queued contact"""
        if status not in OUTCOME_EVENTS:
            raise AgentError(f"Unsupported contact outcome: {status}")

        contact = await self.db.get(ContactedLead, contact_id)
        if contact is None:
            raise ContactNotFoundError(contact_id)

        now = utcnow()
        contact.status = status
        contact.updated_at = now
        if status == ContactStatus.SENT:
            contact.sent_at = now

        lead_id = MissionLogger._to_uuid(contact.lead_id)
        if status == ContactStatus.BLOCKED and lead_id is not None:
            lead = await self.db.get(Lead, lead_id)
            if lead is not None and lead.organization_id == contact.organization_id:
                lead.status = LeadStatus.DO_NOT_CONTACT

        if contact.mission_id is not None:
            self.mission_logger.record_lead_event(
                contact.mission_id, contact.organization_id,
                OUTCOME_EVENTS[status], lead_id, status
            )

        await self.db.commit()
        logger.info(f"📬 Contact {contact.id} marked {status}")
        return contact
