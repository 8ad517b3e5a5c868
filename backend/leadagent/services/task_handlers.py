# backend/leadagent/services/task_handlers.py
"""
Task Handlers - one coroutine per task type

Flow (chaining):
    GENERATE_CAMPAIGN → SEARCH → ENRICH → CONTACT

Quota policy: each handler that consumes a capped resource reads today's
counter first and returns a skip outcome when the mission limit is reached.
A skip is a successful result, never an error, and never chains.
"""

from typing import Optional, Dict, Any, List, Tuple
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadagent.models import (
    Task,
    Mission,
    Lead,
    Campaign,
    ContactedLead,
    TaskStatus,
    LeadStatus,
    ContactStatus,
    utcnow
)
from leadagent.schemas.task import (
    TaskType,
    EnrichmentLevel,
    GenerateCampaignPayload,
    SearchPayload,
    EnrichPayload,
    ContactPayload
)
from leadagent.exceptions import CampaignNotFoundError
from leadagent.services.quota_ledger import (
    QuotaLedger,
    resolve_limit,
    LEADS_SEARCHED,
    LEADS_ENRICHED,
    LEADS_INVESTIGATED,
    SEARCH_RUNS
)
from leadagent.services.mission_logger import (
    MissionLogger,
    LEAD_FOUND,
    LEAD_ENRICH_COMPLETED,
    LEAD_INVESTIGATE_COMPLETED,
    LEAD_CONTACT_QUEUED,
    OUTCOME_EMAIL_FOUND,
    OUTCOME_NO_EMAIL
)
from leadagent.services.lead_search_service import LeadSearchService
from leadagent.services.enrichment_service import EnrichmentService

logger = logging.getLogger(__name__)


SKIP_REASON_DAILY_LIMIT = "daily_limit_reached"
ENRICH_BATCH_SIZE = 10
DEFAULT_CAMPAIGN_LABEL = "Smart Campaign"
CONTACT_PROVIDER = "gmail"


def skip_outcome() -> Dict[str, Any]:
    return {"skipped": True, "reason": SKIP_REASON_DAILY_LIMIT}


def campaign_name_for(mission_title: Optional[str]) -> str:
    return f"Mission: {mission_title or DEFAULT_CAMPAIGN_LABEL}"


def render_campaign_template(
    job_title: Optional[str],
    industry: Optional[str],
    campaign_context: Optional[str]
) -> Tuple[str, str]:
    """Subject and body for an auto-generated campaign"""
    subject = f"An opportunity to innovate in {industry or 'your industry'}"

    context_block = f"\nSpecific context: {campaign_context}\n" if campaign_context else ""
    body = (
        "Hi {{firstName}},\n\n"
        "I hope you're doing well.\n\n"
        f"I saw that you're leading {job_title or 'growth'} initiatives and thought it was worth reaching out.\n"
        f"{context_block}\n"
        "I'd love to talk about how we can boost your results.\n\n"
        "Do you have 5 minutes this week?\n\n"
        "Best regards,"
    )
    return subject, body


def _parse_uuid(value) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _norm(value) -> str:
    return str(value or "").strip().lower()


class TaskHandlers:
    """Executes a single task of a given type inside the caller's transaction."""

    def __init__(
        self,
        db: AsyncSession,
        search_service: LeadSearchService,
        enrichment_service: EnrichmentService,
        ledger: QuotaLedger,
        mission_logger: MissionLogger
    ):
        self.db = db
        self.search_service = search_service
        self.enrichment_service = enrichment_service
        self.ledger = ledger
        self.mission_logger = mission_logger

    # ========================================================================
    # SHARED HELPERS
    # ========================================================================

    def enqueue(self, parent: Task, task_type: TaskType, payload: Dict[str, Any]) -> Task:
        """Create a pending follow-up task for the same mission"""
        follow_up = Task(
            id=uuid.uuid4(),
            mission_id=parent.mission_id,
            organization_id=parent.organization_id,
            type=task_type.value,
            status=TaskStatus.PENDING,
            payload=payload,
        )
        self.db.add(follow_up)
        logger.info(f"Chained {task_type.value} task {follow_up.id} from {parent.type} {parent.id}")
        return follow_up

    async def find_campaign(self, organization_id, name: str) -> Optional[Campaign]:
        result = await self.db.execute(
            select(Campaign)
            .where(
                Campaign.organization_id == organization_id,
                Campaign.name == name
            )
            .order_by(Campaign.created_at)
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    def _user_id(payload, mission: Optional[Mission]) -> Optional[uuid.UUID]:
        if payload.user_id:
            return payload.user_id
        return mission.user_id if mission is not None else None

    # ========================================================================
    # GENERATE_CAMPAIGN
    # ========================================================================

    async def generate_campaign(
        self,
        task: Task,
        mission: Optional[Mission],
        payload: GenerateCampaignPayload
    ) -> Dict[str, Any]:
        mission_title = payload.mission_title or (mission.title if mission is not None else None)
        name = campaign_name_for(mission_title)

        existing = await self.find_campaign(task.organization_id, name)

        if existing is None:
            subject, body = render_campaign_template(
                payload.job_title, payload.industry, payload.campaign_context
            )
            self.db.add(Campaign(
                organization_id=task.organization_id,
                user_id=self._user_id(payload, mission),
                name=name,
                subject=subject,
                body=body,
                status="draft",
            ))
            logger.info(f"[GENERATE] Created campaign '{name}'")
        else:
            logger.info(f"[GENERATE] Reusing campaign '{name}' ({existing.id})")

        self.enqueue(task, TaskType.SEARCH, {**(task.payload or {}), "campaignName": name})

        return {"campaignGenerated": True, "campaignName": name}

    # ========================================================================
    # SEARCH
    # ========================================================================

    async def search(
        self,
        task: Task,
        mission: Optional[Mission],
        payload: SearchPayload
    ) -> Dict[str, Any]:
        limit = resolve_limit(mission, "search")
        runs = await self.ledger.get_counter(task.organization_id, SEARCH_RUNS)

        if runs >= limit:
            logger.info(f"[Limit] Daily search run limit reached ({runs}/{limit}) for org {task.organization_id}")
            return skip_outcome()

        results = await self.search_service.search_people(
            job_title=payload.job_title,
            location=payload.location,
            industry=payload.industry,
            keywords=payload.keywords,
        )

        user_id = self._user_id(payload, mission)
        leads = [
            Lead(
                id=uuid.uuid4(),
                organization_id=task.organization_id,
                user_id=user_id,
                mission_id=task.mission_id,
                name=r.get("full_name") or r.get("name") or "",
                title=r.get("title") or "",
                company=r.get("organization_name") or r.get("company_name") or "",
                email=r.get("email") or None,
                linkedin_url=r.get("linkedin_url") or None,
                status=LeadStatus.SAVED,
            )
            for r in results
        ]

        if leads:
            self.db.add_all(leads)
            self.mission_logger.record_lead_events(
                task.mission_id, task.organization_id, LEAD_FOUND,
                [lead.id for lead in leads]
            )
            await self.ledger.increment(
                task.organization_id,
                {LEADS_SEARCHED: len(leads), SEARCH_RUNS: 1}
            )

        if payload.enrichment_level and leads:
            batch = [
                {**result, "leadId": str(lead.id)}
                for result, lead in zip(results, leads)
            ][:ENRICH_BATCH_SIZE]
            self.enqueue(task, TaskType.ENRICH, {
                "userId": str(user_id) if user_id else None,
                "leads": batch,
                "enrichmentLevel": payload.enrichment_level,
                "campaignName": payload.campaign_name,
                "campaignContext": payload.campaign_context,
            })

        logger.info(f"[SEARCH] Task {task.id}: found {len(leads)} leads")
        return {"leadsFound": len(leads)}

    # ========================================================================
    # ENRICH
    # ========================================================================

    async def enrich(
        self,
        task: Task,
        mission: Optional[Mission],
        payload: EnrichPayload
    ) -> Dict[str, Any]:
        deep = payload.tier == EnrichmentLevel.DEEP
        resource, counter = ("investigate", LEADS_INVESTIGATED) if deep else ("enrich", LEADS_ENRICHED)

        limit = resolve_limit(mission, resource)
        current = await self.ledger.get_counter(task.organization_id, counter)
        remaining = limit - current

        if remaining <= 0:
            logger.info(f"[Limit] Daily {resource} limit reached ({current}/{limit}) for org {task.organization_id}")
            return skip_outcome()

        # Partial batches are processed, not rejected
        batch = payload.leads[:remaining]
        if not batch:
            return {"enrichedCount": 0}

        user_id = self._user_id(payload, mission)
        enriched = await self.enrichment_service.enrich_leads(
            batch,
            user_id=str(user_id) if user_id else None,
            reveal_phone=deep
        )

        if enriched:
            # Quota reflects delivered value, not requested volume
            await self.ledger.increment(task.organization_id, {counter: len(enriched)})
            enriched = await self._store_enrichment(task, batch, enriched, deep)

        if payload.campaign_name and enriched:
            self.enqueue(task, TaskType.CONTACT, {
                "userId": str(user_id) if user_id else None,
                "enrichedLeads": enriched,
                "campaignName": payload.campaign_name,
                "campaignContext": payload.campaign_context,
            })

        logger.info(f"[ENRICH] Task {task.id}: enriched {len(enriched)}/{len(batch)} leads ({resource})")
        return {"enrichedCount": len(enriched)}

    @staticmethod
    def _match_requested(item: Dict[str, Any], requested: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Find the requested lead an enrichment result belongs to"""
        linkedin = _norm(item.get("linkedinUrl"))
        if linkedin:
            for lead in requested:
                if _norm(lead.get("linkedin_url") or lead.get("linkedinUrl")) == linkedin:
                    return lead

        name = _norm(item.get("fullName"))
        if name:
            for lead in requested:
                if _norm(lead.get("full_name") or lead.get("name") or lead.get("fullName")) == name:
                    return lead
        return None

    async def _store_enrichment(
        self,
        task: Task,
        requested: List[Dict[str, Any]],
        enriched: List[Dict[str, Any]],
        deep: bool
    ) -> List[Dict[str, Any]]:
        """Persist enrichment onto stored leads; returns results tagged with leadId"""
        tagged = []

        for item in enriched:
            match = self._match_requested(item, requested)
            lead = None
            lead_id = _parse_uuid(match.get("leadId")) if match else None
            if lead_id:
                lead = await self.db.get(Lead, lead_id)
                if lead is not None and lead.organization_id != task.organization_id:
                    lead = None

            if lead is None:
                lead = Lead(
                    id=uuid.uuid4(),
                    organization_id=task.organization_id,
                    mission_id=task.mission_id,
                    name=item.get("fullName") or "",
                    title=item.get("title") or "",
                    company=item.get("companyName") or "",
                    linkedin_url=item.get("linkedinUrl"),
                )
                self.db.add(lead)

            if item.get("email"):
                lead.email = item["email"]
            lead.status = LeadStatus.ENRICHED
            lead.enrichment_data = dict(item)

            outcome = OUTCOME_EMAIL_FOUND if item.get("email") else OUTCOME_NO_EMAIL
            self.mission_logger.record_lead_event(
                task.mission_id, task.organization_id, LEAD_ENRICH_COMPLETED, lead.id, outcome
            )
            if deep:
                self.mission_logger.record_lead_event(
                    task.mission_id, task.organization_id, LEAD_INVESTIGATE_COMPLETED, lead.id, outcome
                )

            tagged.append({**item, "leadId": str(lead.id)})

        return tagged

    # ========================================================================
    # CONTACT / CONTACT_INITIAL
    # ========================================================================

    async def contact(
        self,
        task: Task,
        mission: Optional[Mission],
        payload: ContactPayload
    ) -> Dict[str, Any]:
        """
        Queue enriched leads for outreach.

        Only creates the contacted-lead records; delivery is done by the
        outreach collaborator, which reports back through the outcome API.
        """
        name = payload.campaign_name
        campaign = await self.find_campaign(task.organization_id, name) if name else None
        if campaign is None:
            raise CampaignNotFoundError(name)

        now = utcnow()
        records = []
        for lead in payload.enriched_leads:
            lead_ref = lead.get("leadId") or lead.get("id")
            records.append(ContactedLead(
                organization_id=task.organization_id,
                mission_id=task.mission_id,
                campaign_id=campaign.id,
                lead_id=str(lead_ref) if lead_ref else None,
                name=lead.get("fullName") or lead.get("name") or "",
                email=lead.get("email"),
                company=lead.get("companyName") or "",
                role=lead.get("title") or "",
                status=ContactStatus.QUEUED,
                provider=CONTACT_PROVIDER,
                created_at=now,
                updated_at=now,
            ))
        self.db.add_all(records)

        stored_ids = [
            lead_id for lead_id in (_parse_uuid(r.lead_id) for r in records)
            if lead_id is not None
        ]
        if stored_ids:
            await self.db.execute(
                update(Lead)
                .where(
                    Lead.id.in_(stored_ids),
                    Lead.organization_id == task.organization_id
                )
                .values(status=LeadStatus.CONTACTED, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        self.mission_logger.record_lead_events(
            task.mission_id, task.organization_id, LEAD_CONTACT_QUEUED, stored_ids
        )

        logger.info(f"[CONTACT] Queued {len(records)} leads for campaign '{campaign.name}'")
        return {"contactedCount": len(records), "campaignId": str(campaign.id)}
