# backend/leadagent/services/quota_ledger.py
"""
Quota Ledger - per-organization daily usage counters

Counters live in one row per (organization, UTC day). Rows are created
lazily on first read. Increments are a single additive upsert executed by
the database (INSERT ... ON CONFLICT DO UPDATE SET col = col + excluded.col),
so no read-modify-write happens in application code. Counters never go down.
"""

from typing import Optional, Dict, Any
from datetime import date, datetime, timezone
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from leadagent.models import DailyUsage, Mission, utcnow

logger = logging.getLogger(__name__)


LEADS_SEARCHED = "leads_searched"
LEADS_ENRICHED = "leads_enriched"
LEADS_INVESTIGATED = "leads_investigated"
SEARCH_RUNS = "search_runs"

COUNTERS = (LEADS_SEARCHED, LEADS_ENRICHED, LEADS_INVESTIGATED, SEARCH_RUNS)

# Fallbacks when a mission leaves a limit unset
DEFAULT_LIMITS = {
    "search": 3,
    "enrich": 50,
    "investigate": 20,
    "contact": 3,
}

_LIMIT_FIELDS = {
    "search": ("daily_search_limit", "dailySearchLimit"),
    "enrich": ("daily_enrich_limit", "dailyEnrichLimit"),
    "investigate": ("daily_investigate_limit", "dailyInvestigateLimit"),
    "contact": ("daily_contact_limit", "dailyContactLimit"),
}


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def resolve_limit(mission: Optional[Mission], resource: str) -> int:
    """
    Mission limit for a resource: first-class column, then params, then default.
    """
    column, param_key = _LIMIT_FIELDS[resource]
    if mission is not None:
        value = getattr(mission, column, None)
        if not value:
            value = (mission.params or {}).get(param_key)
        try:
            value = int(value) if value else 0
        except (TypeError, ValueError):
            value = 0
        if value > 0:
            return value
    return DEFAULT_LIMITS[resource]


def resolve_limits(mission: Optional[Mission]) -> Dict[str, int]:
    return {resource: resolve_limit(mission, resource) for resource in _LIMIT_FIELDS}


class QuotaLedger:
    """Reads and increments daily usage counters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(DailyUsage.__table__)
        if dialect == "sqlite":
            return sqlite.insert(DailyUsage.__table__)
        raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")

    async def get_usage(self, organization_id: uuid.UUID, day: Optional[date] = None) -> DailyUsage:
        """Return today's row, creating a zeroed one if this is the first read."""
        day = day or today_utc()

        stmt = self._insert().values(
            id=uuid.uuid4(),
            organization_id=organization_id,
            date=day,
            updated_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=["organization_id", "date"])
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(DailyUsage)
            .where(
                DailyUsage.organization_id == organization_id,
                DailyUsage.date == day
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get_counter(self, organization_id: uuid.UUID, counter: str, day: Optional[date] = None) -> int:
        usage = await self.get_usage(organization_id, day)
        return usage.counters()[counter]

    async def increment(
        self,
        organization_id: uuid.UUID,
        amounts: Dict[str, int],
        day: Optional[date] = None
    ) -> None:
        """
        Atomically add to one or more counters in a single statement.

        Args:
            amounts: {"leads_searched": 3, "search_runs": 1}; zero entries are ignored
        """
        day = day or today_utc()
        amounts = {k: int(v) for k, v in amounts.items() if v}

        for counter, value in amounts.items():
            if counter not in COUNTERS:
                raise ValueError(f"Unknown usage counter: {counter}")
            if value < 0:
                raise ValueError(f"Usage counters never decrease ({counter}={value})")

        if not amounts:
            return

        now = utcnow()
        table = DailyUsage.__table__
        stmt = self._insert().values(
            id=uuid.uuid4(),
            organization_id=organization_id,
            date=day,
            updated_at=now,
            **amounts
        )
        set_: Dict[str, Any] = {
            counter: table.c[counter] + stmt.excluded[counter]
            for counter in amounts
        }
        set_["updated_at"] = now
        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id", "date"],
            set_=set_
        )
        await self.db.execute(stmt)

        logger.debug(f"Usage +{amounts} for org {organization_id} on {day}")
