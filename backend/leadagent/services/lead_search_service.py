# backend/leadagent/services/lead_search_service.py
"""
Lead Search Service - people search provider client

Request:  {jobTitles, locations, industries, keywords, limit}
Response: {results: [{full_name|name, title, organization_name|company_name,
                      email?, linkedin_url?}]}
"""

import httpx
import logging
from typing import Dict, List, Optional, Any

from leadagent.config import settings
from leadagent.exceptions import ProviderError

logger = logging.getLogger(__name__)

MAX_RESULTS = 100


class LeadSearchService:
    """Client for the external lead search provider"""

    def __init__(self, base_url: str, timeout: float = 60.0):
        self.base_url = base_url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}

    @staticmethod
    def build_request(
        job_title: Optional[str] = None,
        location: Optional[str] = None,
        industry: Optional[str] = None,
        keywords: Optional[str] = None,
        limit: int = MAX_RESULTS
    ) -> Dict[str, Any]:
        return {
            "jobTitles": [job_title] if job_title else [],
            "locations": [location] if location else [],
            "industries": [industry] if industry else [],
            "keywords": keywords or "",
            "limit": min(limit, MAX_RESULTS),
        }

    async def search_people(
        self,
        job_title: Optional[str] = None,
        location: Optional[str] = None,
        industry: Optional[str] = None,
        keywords: Optional[str] = None,
        limit: int = MAX_RESULTS
    ) -> List[Dict[str, Any]]:
        """
        Run one search against the provider.

        Returns:
            Raw result dicts as returned by the provider (may be empty)

        Raises:
            ProviderError on any non-2xx response
        """
        payload = self.build_request(job_title, location, industry, keywords, limit)

        logger.info(
            f"🔍 Lead search: titles={payload['jobTitles']}, "
            f"locations={payload['locations']}, industries={payload['industries']}"
        )

        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.base_url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout
            )

        if not response.is_success:
            raise ProviderError(
                f"Search API failed: {response.reason_phrase or response.status_code}",
                status_code=response.status_code
            )

        data = response.json() or {}
        results = data.get("results") or []

        logger.info(f"✅ Lead search found {len(results)} leads")
        return results


def create_lead_search_service() -> LeadSearchService:
    """Factory function"""
    return LeadSearchService(
        base_url=settings.LEAD_SEARCH_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS
    )
