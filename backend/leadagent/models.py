# backend/leadagent/models.py
"""
SQLAlchemy ORM models for the lead generation agent.

Column types stay portable between PostgreSQL (production) and SQLite
(local dev / tests): generic Uuid, JSON with a JSONB variant on postgres.
Relationships are one-way only; foreign keys keep integrity.
"""

from sqlalchemy import (
    Column, String, Integer, Text, DateTime, Date, JSON, Index,
    ForeignKey, CheckConstraint, UniqueConstraint, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from leadagent.database import Base
from datetime import datetime, timezone
import uuid


JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ============================================================================
# ENUM-LIKE CONSTANTS
# ============================================================================

class MissionStatus:
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class TaskStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class LeadStatus:
    SAVED = "saved"
    ENRICHED = "enriched"
    CONTACTED = "contacted"
    DO_NOT_CONTACT = "do_not_contact"


class ContactStatus:
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    BLOCKED = "blocked"


class LogLevel:
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ============================================================================
# MISSION
# ============================================================================

class Mission(Base):
    """A standing prospecting objective owned by an organization."""
    __tablename__ = "missions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(Uuid, nullable=False)
    title = Column(String(255), nullable=False)
    goal_summary = Column(Text, default="")
    status = Column(String(50), nullable=False, default=MissionStatus.ACTIVE)

    # Targeting + pipeline parameters
    params = Column(JSONType, nullable=False, default=dict)
    # Example: {
    #   "jobTitle": "CTO", "location": "Chile", "industry": "Software",
    #   "keywords": "saas", "companySize": "11-50",
    #   "seniorities": ["director"], "enrichmentLevel": "basic",
    #   "campaignName": "...", "campaignContext": "...",
    #   "autoGenerateCampaign": true
    # }

    # Daily limits promoted to first-class columns (NULL → defaults)
    daily_search_limit = Column(Integer)
    daily_enrich_limit = Column(Integer)
    daily_investigate_limit = Column(Integer)
    daily_contact_limit = Column(Integer)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'paused', 'completed')",
            name="chk_mission_status"
        ),
    )

    def __repr__(self):
        return f"<Mission(id={self.id}, title='{self.title}', status='{self.status}')>"


# ============================================================================
# TASK (UNIT OF WORK)
# ============================================================================

class Task(Base):
    """One typed pipeline step belonging to a mission."""
    __tablename__ = "agent_tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    mission_id = Column(Uuid, ForeignKey("missions.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(Uuid, nullable=False, index=True)
    type = Column(String(50), nullable=False)
    status = Column(String(50), nullable=False, default=TaskStatus.PENDING, index=True)

    payload = Column(JSONType, nullable=False, default=dict)
    result = Column(JSONType)
    error_message = Column(Text)

    # Manual retries create a new task pointing at the failed one
    retry_of = Column(Uuid, ForeignKey("agent_tasks.id"))
    retry_count = Column(Integer, nullable=False, default=0)

    processing_started_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="chk_task_status"
        ),
        Index("ix_agent_tasks_mission_status", "mission_id", "status"),
    )

    def __repr__(self):
        return f"<Task(id={self.id}, type='{self.type}', status='{self.status}')>"


# ============================================================================
# QUOTA LEDGER
# ============================================================================

class DailyUsage(Base):
    """Per-organization, per-day resource counters."""
    __tablename__ = "agent_daily_usage"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False)
    date = Column(Date, nullable=False)

    leads_searched = Column(Integer, nullable=False, default=0)
    leads_enriched = Column(Integer, nullable=False, default=0)
    leads_investigated = Column(Integer, nullable=False, default=0)
    search_runs = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "date", name="uq_daily_usage_org_date"),
    )

    def counters(self) -> dict:
        return {
            "leads_searched": self.leads_searched or 0,
            "leads_enriched": self.leads_enriched or 0,
            "leads_investigated": self.leads_investigated or 0,
            "search_runs": self.search_runs or 0,
        }


# ============================================================================
# EVENT / OUTCOME LOG
# ============================================================================

class MissionLog(Base):
    """Append-only log of what happened to a mission's units."""
    __tablename__ = "agent_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    mission_id = Column(Uuid, ForeignKey("missions.id", ondelete="CASCADE"), index=True)
    organization_id = Column(Uuid, nullable=False)
    level = Column(String(20), nullable=False, default=LogLevel.INFO)
    message = Column(Text, nullable=False)
    details = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class LeadEvent(Base):
    """Lead-level event consumed by the mission metrics pass."""
    __tablename__ = "agent_lead_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    mission_id = Column(Uuid, ForeignKey("missions.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(Uuid, nullable=False)
    lead_id = Column(Uuid)
    event_type = Column(String(64), nullable=False)
    outcome = Column(String(64))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_lead_events_mission_created", "mission_id", "created_at"),
    )


# ============================================================================
# LEADS, CAMPAIGNS, CONTACTS
# ============================================================================

class Lead(Base):
    """Prospect found by a mission search."""
    __tablename__ = "leads"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(Uuid)
    mission_id = Column(Uuid, ForeignKey("missions.id", ondelete="SET NULL"), index=True)

    name = Column(String(255), nullable=False, default="")
    title = Column(String(255), default="")
    company = Column(String(255), default="")
    email = Column(String(255))
    linkedin_url = Column(String(500))
    status = Column(String(50), nullable=False, default=LeadStatus.SAVED)
    enrichment_data = Column(JSONType, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Lead(id={self.id}, name='{self.name}', status='{self.status}')>"


class Campaign(Base):
    """Named outreach template. Looked up by (organization, name)."""
    __tablename__ = "campaigns"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(Uuid)
    name = Column(String(255), nullable=False)
    subject = Column(String(500), default="")
    body = Column(Text, default="")
    status = Column(String(50), nullable=False, default="draft")

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ContactedLead(Base):
    """Queued outreach record handed to the delivery collaborator."""
    __tablename__ = "contacted_leads"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    mission_id = Column(Uuid, ForeignKey("missions.id", ondelete="SET NULL"))
    campaign_id = Column(Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"))
    lead_id = Column(String(64))

    name = Column(String(255), default="")
    email = Column(String(255))
    company = Column(String(255), default="")
    role = Column(String(255), default="")
    status = Column(String(50), nullable=False, default=ContactStatus.QUEUED)
    provider = Column(String(50), nullable=False, default="gmail")

    sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
