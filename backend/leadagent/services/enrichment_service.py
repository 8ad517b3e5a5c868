# backend/leadagent/services/enrichment_service.py
"""
Lead Enrichment Service - contact reveal provider client

Request:  {leads: [{fullName, linkedinUrl, companyName, companyDomain, title, email}],
           revealEmail, revealPhone} + x-user-id header
Response: {enriched: [{id, fullName, linkedinUrl, companyName, title, email}]}
"""

from typing import Dict, List, Optional, Any
import logging
import httpx

from leadagent.config import settings
from leadagent.exceptions import ProviderError

logger = logging.getLogger(__name__)


def to_enrichment_lead(lead: Dict[str, Any]) -> Dict[str, Any]:
    """Map a search result (snake_case, provider naming) to the enrichment request shape"""
    return {
        "fullName": lead.get("full_name") or lead.get("name") or lead.get("fullName"),
        "linkedinUrl": lead.get("linkedin_url") or lead.get("linkedinUrl"),
        "companyName": lead.get("organization_name") or lead.get("company_name") or lead.get("companyName"),
        "companyDomain": lead.get("organization_website_url"),
        "title": lead.get("title"),
        "email": lead.get("email"),
    }


class EnrichmentService:
    """
    Enrichment provider client

    Basic tier reveals email only; deep tier (investigation) also reveals phone.
    """

    def __init__(self, base_url: str, timeout: float = 60.0):
        self.base_url = base_url
        self.timeout = timeout

    async def enrich_leads(
        self,
        leads: List[Dict[str, Any]],
        user_id: Optional[str],
        reveal_phone: bool = False
    ) -> List[Dict[str, Any]]:
        """
        Enrich a batch of leads in one provider call.

        Returns:
            The leads the provider actually enriched (may be fewer than requested)

        Raises:
            ProviderError on any non-2xx response
        """
        payload = {
            "leads": [to_enrichment_lead(lead) for lead in leads],
            "revealEmail": True,
            "revealPhone": reveal_phone,
        }
        headers = {"Content-Type": "application/json"}
        if user_id:
            headers["x-user-id"] = str(user_id)

        logger.info(f"Enriching {len(leads)} leads (reveal_phone={reveal_phone})")

        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.base_url,
                json=payload,
                headers=headers,
                timeout=self.timeout
            )

        if not response.is_success:
            raise ProviderError(
                f"Enrichment API failed: {response.reason_phrase or response.status_code}",
                status_code=response.status_code
            )

        data = response.json() or {}
        enriched = data.get("enriched") or []

        logger.info(f"  ✅ Provider enriched {len(enriched)}/{len(leads)} leads")
        return enriched


def create_enrichment_service() -> EnrichmentService:
    """Create enrichment service instance"""
    return EnrichmentService(
        base_url=settings.ENRICHMENT_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS
    )
