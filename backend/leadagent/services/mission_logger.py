# backend/leadagent/services/mission_logger.py
"""
Mission Logger - append-only outcome log and lead-level events
"""

from typing import Optional, Dict, Any, Iterable
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from leadagent.models import MissionLog, LeadEvent, LogLevel, Task


# Lead event types consumed by the tuning metrics pass
LEAD_FOUND = "lead_found"
LEAD_ENRICH_COMPLETED = "lead_enrich_completed"
LEAD_INVESTIGATE_COMPLETED = "lead_investigate_completed"
LEAD_CONTACT_QUEUED = "lead_contact_queued"
LEAD_CONTACT_SENT = "lead_contact_sent"
LEAD_CONTACT_FAILED = "lead_contact_failed"
LEAD_CONTACT_BLOCKED = "lead_contact_blocked"

OUTCOME_EMAIL_FOUND = "email_found"
OUTCOME_NO_EMAIL = "no_email"


class MissionLogger:
    """Writes mission log entries and lead events. Callers own the commit."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _to_uuid(value):
        """Safely convert to UUID"""
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except ValueError:
            return None

    def log(
        self,
        mission_id,
        organization_id,
        level: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> MissionLog:
        entry = MissionLog(
            mission_id=self._to_uuid(mission_id),
            organization_id=self._to_uuid(organization_id),
            level=level,
            message=message,
            details=details or {},
        )
        self.db.add(entry)
        return entry

    def log_task_completed(self, task: Task, result: Dict[str, Any]) -> MissionLog:
        level = LogLevel.WARNING if result.get("skipped") else LogLevel.SUCCESS
        return self.log(
            task.mission_id, task.organization_id, level,
            f"Task {task.type} completed.",
            details={"taskId": str(task.id), **result}
        )

    def log_task_failed(self, task: Task, error_message: str) -> MissionLog:
        return self.log(
            task.mission_id, task.organization_id, LogLevel.ERROR,
            f"Task {task.type} failed: {error_message}",
            details={"taskId": str(task.id)}
        )

    def record_lead_event(
        self,
        mission_id,
        organization_id,
        event_type: str,
        lead_id=None,
        outcome: Optional[str] = None
    ) -> LeadEvent:
        event = LeadEvent(
            mission_id=self._to_uuid(mission_id),
            organization_id=self._to_uuid(organization_id),
            lead_id=self._to_uuid(lead_id),
            event_type=event_type,
            outcome=outcome,
        )
        self.db.add(event)
        return event

    def record_lead_events(
        self,
        mission_id,
        organization_id,
        event_type: str,
        lead_ids: Iterable,
        outcome: Optional[str] = None
    ) -> int:
        count = 0
        for lead_id in lead_ids:
            self.record_lead_event(mission_id, organization_id, event_type, lead_id, outcome)
            count += 1
        return count
