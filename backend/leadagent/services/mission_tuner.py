# backend/leadagent/services/mission_tuner.py
"""
Mission Tuner - 24h metrics, recommendation rules, live patching

Read path (GET intelligence):
    metrics → rules (fixed order) → suggestedPatch + conflicts

Write path (PATCH intelligence, operator confirmed):
    validate/coerce updates → persist mission → info log
    → rewrite payloads of the mission's still-pending tasks

The tuner never calls providers. Validation clamps and coerces instead of
rejecting, so the write path does not fail on bad operator input.
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta, timezone
import logging
import math
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from leadagent.models import (
    Mission,
    Task,
    Lead,
    LeadEvent,
    ContactedLead,
    TaskStatus,
    LeadStatus,
    LogLevel,
    utcnow
)
from leadagent.schemas.task import TaskType, EnrichmentLevel
from leadagent.exceptions import MissionNotFoundError
from leadagent.services.quota_ledger import DEFAULT_LIMITS, resolve_limits
from leadagent.services.mission_logger import (
    MissionLogger,
    LEAD_FOUND,
    LEAD_ENRICH_COMPLETED,
    LEAD_INVESTIGATE_COMPLETED,
    LEAD_CONTACT_SENT,
    LEAD_CONTACT_FAILED,
    LEAD_CONTACT_BLOCKED,
    OUTCOME_EMAIL_FOUND,
    OUTCOME_NO_EMAIL
)

logger = logging.getLogger(__name__)


METRICS_WINDOW = timedelta(hours=24)

SEARCH_LIMIT_RANGE = (1, 5)
OTHER_LIMIT_RANGE = (1, 50)

DEFAULT_SENIORITIES = ["director", "manager", "head"]

TEXT_FIELDS = ("jobTitle", "location", "industry", "keywords", "companySize", "campaignName", "campaignContext")

# (params key, column, resource)
LIMIT_FIELDS = (
    ("dailySearchLimit", "daily_search_limit", "search"),
    ("dailyEnrichLimit", "daily_enrich_limit", "enrich"),
    ("dailyInvestigateLimit", "daily_investigate_limit", "investigate"),
    ("dailyContactLimit", "daily_contact_limit", "contact"),
)

PROPAGATED_TYPES = [t.value for t in TaskType]


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def clamp(value, low: int, high: int, fallback: int) -> int:
    """Round half-up and clamp into [low, high]; non-numeric values take the fallback"""
    if value is None or isinstance(value, str) and not value.strip():
        return fallback
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(n):
        return fallback
    return int(min(high, max(low, math.floor(n + 0.5))))


def normalize_text(value) -> str:
    return str(value if value is not None else "").strip()


def normalize_seniorities(value, fallback: Optional[List[str]] = None) -> List[str]:
    """List or comma-separated string → de-duplicated list, order preserved"""
    if isinstance(value, (list, tuple)):
        items = [str(x or "").strip() for x in value]
    elif isinstance(value, str):
        items = [x.strip() for x in value.split(",")]
    else:
        return list(fallback or [])
    return list(dict.fromkeys(x for x in items if x))


def normalize_enrichment_level(value) -> str:
    return EnrichmentLevel.DEEP.value if str(value) == EnrichmentLevel.DEEP.value else EnrichmentLevel.BASIC.value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_mission_snapshot(mission: Mission) -> Dict[str, Any]:
    limits = resolve_limits(mission)
    return {
        "id": str(mission.id),
        "organizationId": str(mission.organization_id),
        "userId": str(mission.user_id) if mission.user_id else None,
        "title": mission.title,
        "status": mission.status,
        "goalSummary": mission.goal_summary or "",
        "params": mission.params or {},
        "limits": {
            "dailySearchLimit": limits["search"],
            "dailyEnrichLimit": limits["enrich"],
            "dailyInvestigateLimit": limits["investigate"],
            "dailyContactLimit": limits["contact"],
        },
        "updatedAt": _isoformat(mission.updated_at),
        "createdAt": _isoformat(mission.created_at),
    }


# ============================================================================
# RECOMMENDATION RULES
# ============================================================================

def build_recommendations(metrics: Dict[str, int], mission: Mission) -> Dict[str, Any]:
    """
    Evaluate the fixed ruleset against a metrics snapshot.

    Returns:
        {recommendations, suggestedPatch, conflicts, reasoning}
        suggestedPatch merges rule patches in rule order (later wins);
        conflicts lists every field more than one rule proposed.
    """
    params = mission.params or {}
    limits = resolve_limits(mission)
    enrichment_level = str(params.get("enrichmentLevel") or EnrichmentLevel.BASIC.value)
    company_size = str(params.get("companySize") or "")
    seniorities = params.get("seniorities") if isinstance(params.get("seniorities"), list) else []

    recs: List[Dict[str, Any]] = []

    def fire(rule_id: str, title: str, why: str, confidence: float, patch: Dict[str, Any]):
        recs.append({
            "id": rule_id,
            "title": title,
            "why": why,
            "confidence": confidence,
            "patch": patch,
        })

    # 1. Searches return (almost) nothing
    runs = metrics["searchRuns24h"]
    found = metrics["found24h"]
    if runs > 0 and found <= max(1, runs):
        patch = {"dailySearchLimit": min(SEARCH_LIMIT_RANGE[1], limits["search"] + 1)}
        if company_size:
            patch["companySize"] = ""
        fire(
            "expand-search-scope",
            "Expand search scope",
            f"The mission ran {runs} search(es) and found {found} lead(s) in 24h.",
            0.82,
            patch
        )

    # 2. Basic enrichment keeps missing emails
    enrich_total = metrics["enrichEmail24h"] + metrics["enrichNoEmail24h"]
    no_email = metrics["enrichNoEmail24h"]
    if (
        enrich_total >= 4
        and no_email / max(1, enrich_total) >= 0.45
        and enrichment_level != EnrichmentLevel.DEEP.value
    ):
        fire(
            "upgrade-enrichment-quality",
            "Upgrade enrichment quality",
            f"{no_email} of {enrich_total} enriched leads had no email in 24h.",
            0.77,
            {
                "enrichmentLevel": EnrichmentLevel.DEEP.value,
                "dailyInvestigateLimit": min(OTHER_LIMIT_RANGE[1], max(limits["investigate"], limits["enrich"])),
            }
        )

    # 3. Enriched leads pile up faster than the contact cap drains them
    backlog = metrics["queueEnrichedWithEmail"]
    headroom = max(0, limits["contact"] - metrics["orgContactsToday"])
    if backlog > headroom:
        fire(
            "unblock-contact-backlog",
            "Unblock contact backlog",
            f"There are {backlog} lead(s) ready for contact and only {headroom} slot(s) left today.",
            0.90,
            {"dailyContactLimit": min(OTHER_LIMIT_RANGE[1], limits["contact"] + min(10, backlog - headroom))}
        )

    # 4. Delivery failing
    failed = metrics["contactFailed24h"]
    if failed >= 3:
        fire(
            "stabilize-contact-delivery",
            "Stabilize contact delivery",
            f"Detected {failed} contact failures in 24h.",
            0.68,
            {"dailyContactLimit": max(OTHER_LIMIT_RANGE[0], limits["contact"] - 2)}
        )

    # 5. No seniority filter
    if not seniorities:
        fire(
            "add-seniority-focus",
            "Define target seniorities",
            "The mission has no seniorities configured, which can reduce precision.",
            0.61,
            {"seniorities": list(DEFAULT_SENIORITIES)}
        )

    suggested: Dict[str, Any] = {}
    proposals: Dict[str, List[Dict[str, Any]]] = {}
    for rec in recs:
        for field, value in rec["patch"].items():
            proposals.setdefault(field, []).append({"ruleId": rec["id"], "value": value})
            suggested[field] = value

    conflicts = [
        {"field": field, "proposals": items}
        for field, items in proposals.items()
        if len(items) > 1
    ]

    if recs:
        reasoning = "Suggestions computed from search, enrichment and contact performance over the last 24h."
    else:
        reasoning = "The mission is balanced over the last window; no urgent automatic adjustments are needed."

    return {
        "recommendations": recs,
        "suggestedPatch": suggested,
        "conflicts": conflicts,
        "reasoning": reasoning,
    }


# ============================================================================
# PAYLOAD PROJECTION
# ============================================================================

def project_payload(task_type: str, payload: Dict[str, Any], params: Dict[str, Any], mission_title: str) -> Dict[str, Any]:
    """Overlay the new mission parameters a task of this type consumes"""
    campaign = {
        "campaignName": params.get("campaignName"),
        "campaignContext": params.get("campaignContext"),
    }

    if task_type in (TaskType.SEARCH.value, TaskType.GENERATE_CAMPAIGN.value):
        overlay = {
            "jobTitle": params.get("jobTitle"),
            "location": params.get("location"),
            "industry": params.get("industry"),
            "keywords": params.get("keywords"),
            "companySize": params.get("companySize"),
            "seniorities": params.get("seniorities"),
            "enrichmentLevel": params.get("enrichmentLevel"),
            **campaign,
            "missionTitle": mission_title,
        }
    elif task_type == TaskType.ENRICH.value:
        overlay = {"enrichmentLevel": params.get("enrichmentLevel"), **campaign}
    elif task_type in (TaskType.CONTACT.value, TaskType.CONTACT_INITIAL.value):
        overlay = campaign
    else:
        overlay = {}

    return {**(payload or {}), **overlay}


# ============================================================================
# TUNER
# ============================================================================

class MissionTuner:
    """Metrics, recommendations and patch application for one mission at a time."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.mission_logger = MissionLogger(db)

    async def get_mission(self, mission_id: uuid.UUID) -> Mission:
        mission = await self.db.get(Mission, mission_id, populate_existing=True)
        if mission is None:
            raise MissionNotFoundError(mission_id)
        return mission

    async def _count(self, stmt) -> int:
        result = await self.db.execute(stmt)
        return int(result.scalar() or 0)

    async def compute_metrics(self, mission: Mission) -> Dict[str, int]:
        now = utcnow()
        since = now - METRICS_WINDOW
        today_start = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)

        metrics = {
            "found24h": 0,
            "enrichEmail24h": 0,
            "enrichNoEmail24h": 0,
            "investigated24h": 0,
            "contactSent24h": 0,
            "contactFailed24h": 0,
            "contactBlocked24h": 0,
            "searchRuns24h": 0,
            "queueSaved": 0,
            "queueEnrichedWithEmail": 0,
            "queueDoNotContact": 0,
            "orgContactsToday": 0,
            "missionContactsToday": 0,
        }

        rows = await self.db.execute(
            select(LeadEvent.event_type, LeadEvent.outcome, func.count())
            .where(
                LeadEvent.mission_id == mission.id,
                LeadEvent.created_at >= since
            )
            .group_by(LeadEvent.event_type, LeadEvent.outcome)
        )

        for event_type, outcome, count in rows.all():
            if event_type == LEAD_FOUND:
                metrics["found24h"] += count
            elif event_type == LEAD_ENRICH_COMPLETED:
                if outcome == OUTCOME_EMAIL_FOUND:
                    metrics["enrichEmail24h"] += count
                elif outcome == OUTCOME_NO_EMAIL:
                    metrics["enrichNoEmail24h"] += count
            elif event_type == LEAD_INVESTIGATE_COMPLETED:
                metrics["investigated24h"] += count
            elif event_type == LEAD_CONTACT_SENT:
                metrics["contactSent24h"] += count
            elif event_type == LEAD_CONTACT_FAILED:
                metrics["contactFailed24h"] += count
            elif event_type == LEAD_CONTACT_BLOCKED:
                metrics["contactBlocked24h"] += count

        metrics["searchRuns24h"] = await self._count(
            select(func.count(Task.id)).where(
                Task.mission_id == mission.id,
                Task.type == TaskType.SEARCH.value,
                Task.status == TaskStatus.COMPLETED,
                Task.updated_at >= since
            )
        )

        lead_count = select(func.count(Lead.id)).where(Lead.mission_id == mission.id)
        metrics["queueSaved"] = await self._count(
            lead_count.where(Lead.status == LeadStatus.SAVED)
        )
        metrics["queueEnrichedWithEmail"] = await self._count(
            lead_count.where(Lead.status == LeadStatus.ENRICHED, Lead.email.isnot(None))
        )
        metrics["queueDoNotContact"] = await self._count(
            lead_count.where(Lead.status == LeadStatus.DO_NOT_CONTACT)
        )

        contacts_today = select(func.count(ContactedLead.id)).where(
            ContactedLead.organization_id == mission.organization_id,
            ContactedLead.created_at >= today_start
        )
        metrics["orgContactsToday"] = await self._count(contacts_today)
        metrics["missionContactsToday"] = await self._count(
            contacts_today.where(ContactedLead.mission_id == mission.id)
        )

        return metrics

    async def get_intelligence(self, mission_id: uuid.UUID) -> Dict[str, Any]:
        mission = await self.get_mission(mission_id)
        metrics = await self.compute_metrics(mission)
        return {
            "mission": build_mission_snapshot(mission),
            "metrics": metrics,
            **build_recommendations(metrics, mission),
        }

    @staticmethod
    def validate_updates(mission: Mission, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge operator updates into the mission params.

        Every field is coerced; nothing is rejected. Fields absent from
        updates are re-normalized from the current params.

        Returns:
            New params map (includes the four daily limits)
        """
        current = dict(mission.params or {})
        params = dict(current)

        def pick(key):
            return updates[key] if key in updates else current.get(key)

        for key in TEXT_FIELDS:
            params[key] = normalize_text(pick(key))

        params["enrichmentLevel"] = normalize_enrichment_level(pick("enrichmentLevel"))

        current_seniorities = normalize_seniorities(current.get("seniorities"), [])
        if "seniorities" in updates:
            params["seniorities"] = normalize_seniorities(updates["seniorities"], current_seniorities)
        else:
            params["seniorities"] = current_seniorities

        params["autoGenerateCampaign"] = bool(pick("autoGenerateCampaign"))

        for param_key, column, resource in LIMIT_FIELDS:
            low, high = SEARCH_LIMIT_RANGE if resource == "search" else OTHER_LIMIT_RANGE
            if param_key in updates:
                raw = updates[param_key]
            else:
                raw = getattr(mission, column) or current.get(param_key) or DEFAULT_LIMITS[resource]
            params[param_key] = clamp(raw, low, high, DEFAULT_LIMITS[resource])

        return params

    async def apply_patch(self, mission_id: uuid.UUID, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Commit a validated patch and propagate it to pending tasks.

        Args:
            body: {"updates": {...}} or the bare updates map
        """
        mission = await self.get_mission(mission_id)

        updates = body.get("updates") if isinstance(body.get("updates"), dict) else body
        params = self.validate_updates(mission, updates)

        if "title" in updates:
            mission.title = normalize_text(updates["title"]) or mission.title
            params["missionName"] = mission.title
        if "goalSummary" in updates:
            mission.goal_summary = normalize_text(updates["goalSummary"])

        mission.params = params
        for param_key, column, _ in LIMIT_FIELDS:
            setattr(mission, column, params[param_key])
        mission.updated_at = utcnow()

        result = await self.db.execute(
            select(Task).where(
                Task.mission_id == mission.id,
                Task.status == TaskStatus.PENDING,
                Task.type.in_(PROPAGATED_TYPES)
            )
        )
        pending = list(result.scalars().all())

        for task in pending:
            task.payload = project_payload(task.type, task.payload, params, mission.title)

        self.mission_logger.log(
            mission.id, mission.organization_id, LogLevel.INFO,
            "Mission tuned while running",
            details={
                "patchedPendingTasks": len(pending),
                "applied": {
                    "title": mission.title,
                    "dailySearchLimit": params["dailySearchLimit"],
                    "dailyEnrichLimit": params["dailyEnrichLimit"],
                    "dailyInvestigateLimit": params["dailyInvestigateLimit"],
                    "dailyContactLimit": params["dailyContactLimit"],
                    "enrichmentLevel": params["enrichmentLevel"],
                    "companySize": params["companySize"],
                    "seniorities": params["seniorities"],
                },
            }
        )

        await self.db.commit()
        logger.info(f"🎛️ Mission {mission.id} tuned, {len(pending)} pending tasks patched")

        metrics = await self.compute_metrics(mission)
        return {
            "ok": True,
            "patchedPendingTasks": len(pending),
            "mission": build_mission_snapshot(mission),
            "metrics": metrics,
            **build_recommendations(metrics, mission),
        }
