# tests/services/test_mission_tuner.py
"""
Tests for MissionTuner

Coverage:
- Validation helpers (clamp, seniorities, enrichment level)
- Metrics from lead events and store counts
- Each recommendation rule + conflicts reporting
- Patch application: persistence, idempotent clamping, propagation
"""

import pytest
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import select

from leadagent.models import (
    Mission,
    Task,
    Lead,
    LeadEvent,
    ContactedLead,
    MissionLog,
    TaskStatus,
    LeadStatus,
    LogLevel,
    utcnow
)
from leadagent.exceptions import MissionNotFoundError
from leadagent.services.mission_tuner import (
    MissionTuner,
    clamp,
    normalize_seniorities,
    normalize_enrichment_level,
    build_recommendations,
    project_payload
)


pytestmark = pytest.mark.unit


def empty_metrics(**overrides):
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
    metrics.update(overrides)
    return metrics


def seasoned_mission(**params):
    """Mission that trips no rule by default"""
    return Mission(
        id=uuid4(),
        organization_id=uuid4(),
        title="Test",
        params={"seniorities": ["director"], **params},
    )


def rule_ids(intelligence):
    return [rec["id"] for rec in intelligence["recommendations"]]


# ============================================================================
# TEST: Validation helpers
# ============================================================================

class TestValidationHelpers:

    @pytest.mark.parametrize("value,expected", [
        (0, 1), (3, 3), (9, 5), ("4", 4), (2.5, 3), (2.4, 2), ("abc", 3), (None, 3), (float("nan"), 3),
    ])
    def test_clamp_search_range(self, value, expected):
        assert clamp(value, 1, 5, 3) == expected

    def test_clamp_is_idempotent(self):
        once = clamp(500, 1, 50, 3)
        assert clamp(once, 1, 50, 3) == once == 50

    def test_seniorities_from_comma_string(self):
        assert normalize_seniorities("director, vp,, director ,head") == ["director", "vp", "head"]

    def test_seniorities_from_list(self):
        assert normalize_seniorities(["vp", " vp ", "", "cto"]) == ["vp", "cto"]

    def test_seniorities_fallback(self):
        assert normalize_seniorities(42, ["manager"]) == ["manager"]

    def test_enrichment_level(self):
        assert normalize_enrichment_level("deep") == "deep"
        assert normalize_enrichment_level("DEEP") == "basic"
        assert normalize_enrichment_level(None) == "basic"


# ============================================================================
# TEST: Rules
# ============================================================================

class TestRecommendations:

    def test_balanced_mission(self):
        result = build_recommendations(empty_metrics(), seasoned_mission())

        assert result["recommendations"] == []
        assert result["suggestedPatch"] == {}
        assert result["conflicts"] == []
        assert "balanced" in result["reasoning"]

    def test_expand_search_scope(self):
        mission = seasoned_mission(companySize="11-50")
        mission.daily_search_limit = 2

        result = build_recommendations(empty_metrics(searchRuns24h=3, found24h=1), mission)

        rec = result["recommendations"][0]
        assert rec["id"] == "expand-search-scope"
        assert rec["why"] == "The mission ran 3 search(es) and found 1 lead(s) in 24h."
        assert rec["confidence"] == 0.82
        assert result["suggestedPatch"]["dailySearchLimit"] == 3
        assert result["suggestedPatch"]["companySize"] == ""

    def test_expand_search_scope_capped_at_five(self):
        mission = seasoned_mission()
        mission.daily_search_limit = 5

        result = build_recommendations(empty_metrics(searchRuns24h=1, found24h=0), mission)

        assert result["suggestedPatch"] == {"dailySearchLimit": 5}

    def test_search_rule_needs_runs(self):
        result = build_recommendations(empty_metrics(found24h=0), seasoned_mission())
        assert "expand-search-scope" not in rule_ids(result)

    def test_upgrade_enrichment_quality(self):
        mission = seasoned_mission()
        mission.daily_enrich_limit = 30
        mission.daily_investigate_limit = 10

        result = build_recommendations(empty_metrics(enrichEmail24h=2, enrichNoEmail24h=2), mission)

        assert rule_ids(result) == ["upgrade-enrichment-quality"]
        assert result["suggestedPatch"] == {"enrichmentLevel": "deep", "dailyInvestigateLimit": 30}

    def test_enrichment_rule_silent_when_already_deep(self):
        mission = seasoned_mission(enrichmentLevel="deep")
        result = build_recommendations(empty_metrics(enrichNoEmail24h=10), mission)
        assert result["recommendations"] == []

    def test_unblock_contact_backlog(self):
        mission = seasoned_mission()
        mission.daily_contact_limit = 3

        result = build_recommendations(empty_metrics(queueEnrichedWithEmail=20, orgContactsToday=1), mission)

        rec = result["recommendations"][0]
        assert rec["id"] == "unblock-contact-backlog"
        assert "20 lead(s)" in rec["why"] and "only 2 slot(s)" in rec["why"]
        assert result["suggestedPatch"] == {"dailyContactLimit": 13}

    def test_contact_rules_conflict_later_wins(self):
        mission = seasoned_mission()
        mission.daily_contact_limit = 10

        result = build_recommendations(
            empty_metrics(queueEnrichedWithEmail=15, orgContactsToday=10, contactFailed24h=4),
            mission
        )

        assert rule_ids(result) == ["unblock-contact-backlog", "stabilize-contact-delivery"]
        assert result["suggestedPatch"]["dailyContactLimit"] == 8
        assert result["conflicts"] == [{
            "field": "dailyContactLimit",
            "proposals": [
                {"ruleId": "unblock-contact-backlog", "value": 20},
                {"ruleId": "stabilize-contact-delivery", "value": 8},
            ],
        }]

    def test_seniority_focus(self):
        mission = Mission(id=uuid4(), organization_id=uuid4(), title="T", params={})

        result = build_recommendations(empty_metrics(), mission)

        assert rule_ids(result) == ["add-seniority-focus"]
        assert result["recommendations"][0]["confidence"] == 0.61
        assert result["suggestedPatch"] == {"seniorities": ["director", "manager", "head"]}


# ============================================================================
# TEST: Projection
# ============================================================================

class TestProjection:

    PARAMS = {
        "jobTitle": "VP Sales", "location": "Peru", "industry": "Retail", "keywords": "ecommerce",
        "companySize": "", "seniorities": ["vp"], "enrichmentLevel": "deep",
        "campaignName": "Mission: New", "campaignContext": "Q3 push",
    }

    def test_search_gets_targeting(self):
        payload = project_payload("SEARCH", {"userId": "u1", "jobTitle": "CTO"}, self.PARAMS, "New")
        assert payload["jobTitle"] == "VP Sales"
        assert payload["missionTitle"] == "New"
        assert payload["userId"] == "u1"

    def test_enrich_gets_depth_and_campaign_only(self):
        payload = project_payload("ENRICH", {"leads": [1], "jobTitle": "CTO"}, self.PARAMS, "New")
        assert payload == {"leads": [1], "jobTitle": "CTO", "enrichmentLevel": "deep",
                           "campaignName": "Mission: New", "campaignContext": "Q3 push"}

    def test_contact_gets_campaign_only(self):
        payload = project_payload("CONTACT_INITIAL", {"enrichedLeads": []}, self.PARAMS, "New")
        assert payload == {"enrichedLeads": [], "campaignName": "Mission: New", "campaignContext": "Q3 push"}


# ============================================================================
# TEST: Metrics
# ============================================================================

class TestMetrics:

    @pytest.mark.asyncio
    async def test_counts_events_and_queues(self, db_session, mission, task_factory):
        org = mission.organization_id
        old = utcnow() - timedelta(hours=30)
        events = [
            ("lead_found", None), ("lead_found", None),
            ("lead_enrich_completed", "email_found"), ("lead_enrich_completed", "no_email"),
            ("lead_investigate_completed", "email_found"),
            ("lead_contact_sent", "sent"), ("lead_contact_failed", "failed"),
            ("lead_contact_blocked", "blocked"),
        ]
        for event_type, outcome in events:
            db_session.add(LeadEvent(mission_id=mission.id, organization_id=org,
                                     event_type=event_type, outcome=outcome))
        db_session.add(LeadEvent(mission_id=mission.id, organization_id=org,
                                 event_type="lead_found", created_at=old))
        db_session.add_all([
            Lead(organization_id=org, mission_id=mission.id, name="a", status=LeadStatus.SAVED),
            Lead(organization_id=org, mission_id=mission.id, name="b", status=LeadStatus.ENRICHED, email="b@x.io"),
            Lead(organization_id=org, mission_id=mission.id, name="c", status=LeadStatus.ENRICHED),
            Lead(organization_id=org, mission_id=mission.id, name="d", status=LeadStatus.DO_NOT_CONTACT),
            ContactedLead(organization_id=org, mission_id=mission.id, name="b"),
            ContactedLead(organization_id=org, mission_id=None, name="z"),
        ])
        await db_session.commit()
        await task_factory(mission, "SEARCH", {}, status=TaskStatus.COMPLETED, result={"leadsFound": 2})
        await task_factory(mission, "SEARCH", {}, status=TaskStatus.FAILED, error_message="x")

        metrics = await MissionTuner(db_session).compute_metrics(mission)

        assert metrics == {
            "found24h": 2,
            "enrichEmail24h": 1,
            "enrichNoEmail24h": 1,
            "investigated24h": 1,
            "contactSent24h": 1,
            "contactFailed24h": 1,
            "contactBlocked24h": 1,
            "searchRuns24h": 1,
            "queueSaved": 1,
            "queueEnrichedWithEmail": 1,
            "queueDoNotContact": 1,
            "orgContactsToday": 2,
            "missionContactsToday": 1,
        }

    @pytest.mark.asyncio
    async def test_expand_search_scope_scenario(self, db_session, mission_factory, task_factory):
        mission = await mission_factory(daily_search_limit=2)
        for _ in range(3):
            await task_factory(mission, "SEARCH", {}, status=TaskStatus.COMPLETED, result={"leadsFound": 0})
        db_session.add(LeadEvent(mission_id=mission.id, organization_id=mission.organization_id,
                                 event_type="lead_found"))
        await db_session.commit()

        intelligence = await MissionTuner(db_session).get_intelligence(mission.id)

        rec = intelligence["recommendations"][0]
        assert rec["id"] == "expand-search-scope"
        assert "ran 3 search(es)" in rec["why"]
        assert "found 1 lead(s)" in rec["why"]
        assert intelligence["suggestedPatch"]["dailySearchLimit"] == 3
        assert intelligence["mission"]["limits"]["dailySearchLimit"] == 2

    @pytest.mark.asyncio
    async def test_unknown_mission(self, db_session):
        with pytest.raises(MissionNotFoundError):
            await MissionTuner(db_session).get_intelligence(uuid4())


# ============================================================================
# TEST: Patch application
# ============================================================================

class TestApplyPatch:

    @pytest.mark.asyncio
    async def test_clamps_and_persists(self, db_session, mission):
        tuner = MissionTuner(db_session)

        result = await tuner.apply_patch(mission.id, {"updates": {
            "dailySearchLimit": 99,
            "dailyEnrichLimit": -4,
            "dailyInvestigateLimit": "12.6",
            "dailyContactLimit": "lots",
            "enrichmentLevel": "DEEP",
            "seniorities": "vp, director, vp",
            "jobTitle": "  Head of Data  ",
            "autoGenerateCampaign": 1,
        }})

        assert result["ok"] is True
        assert mission.daily_search_limit == 5
        assert mission.daily_enrich_limit == 1
        assert mission.daily_investigate_limit == 13
        assert mission.daily_contact_limit == 3
        assert mission.params["enrichmentLevel"] == "basic"
        assert mission.params["seniorities"] == ["vp", "director"]
        assert mission.params["jobTitle"] == "Head of Data"
        assert mission.params["autoGenerateCampaign"] is True
        assert result["mission"]["limits"] == {
            "dailySearchLimit": 5, "dailyEnrichLimit": 1,
            "dailyInvestigateLimit": 13, "dailyContactLimit": 3,
        }

    @pytest.mark.asyncio
    async def test_same_out_of_range_value_twice(self, db_session, mission):
        tuner = MissionTuner(db_session)

        await tuner.apply_patch(mission.id, {"dailyContactLimit": 400})
        first = mission.daily_contact_limit
        await tuner.apply_patch(mission.id, {"dailyContactLimit": 400})

        assert first == mission.daily_contact_limit == 50

    @pytest.mark.asyncio
    async def test_title_and_goal(self, db_session, mission):
        tuner = MissionTuner(db_session)

        await tuner.apply_patch(mission.id, {"title": "   ", "goalSummary": " More demos "})
        assert mission.title == "CTOs in Chile"
        assert mission.params["missionName"] == "CTOs in Chile"
        assert mission.goal_summary == "More demos"

        await tuner.apply_patch(mission.id, {"title": "CTOs in Peru"})
        assert mission.title == "CTOs in Peru"
        assert mission.params["missionName"] == "CTOs in Peru"

    @pytest.mark.asyncio
    async def test_propagates_only_to_pending(self, db_session, mission, task_factory):
        pending_search = await task_factory(mission, "SEARCH", {"jobTitle": "CTO"})
        pending_contact = await task_factory(mission, "CONTACT", {"campaignName": "Old", "enrichedLeads": []})
        completed = await task_factory(mission, "SEARCH", {"jobTitle": "CTO"},
                                       status=TaskStatus.COMPLETED, result={"leadsFound": 2})
        failed = await task_factory(mission, "ENRICH", {"enrichmentLevel": "basic"},
                                    status=TaskStatus.FAILED, error_message="x")
        processing = await task_factory(mission, "SEARCH", {"jobTitle": "CTO"}, status=TaskStatus.PROCESSING)

        result = await MissionTuner(db_session).apply_patch(mission.id, {"updates": {
            "jobTitle": "VP Sales", "campaignName": "Mission: Sales", "enrichmentLevel": "deep"
        }})

        assert result["patchedPendingTasks"] == 2
        assert pending_search.payload["jobTitle"] == "VP Sales"
        assert pending_search.payload["missionTitle"] == "CTOs in Chile"
        assert pending_contact.payload == {
            "campaignName": "Mission: Sales", "enrichedLeads": [], "campaignContext": ""
        }
        assert completed.payload == {"jobTitle": "CTO"}
        assert failed.payload == {"enrichmentLevel": "basic"}
        assert processing.payload == {"jobTitle": "CTO"}

    @pytest.mark.asyncio
    async def test_writes_info_log(self, db_session, mission, task_factory):
        await task_factory(mission, "ENRICH", {"leads": []})

        await MissionTuner(db_session).apply_patch(mission.id, {"dailySearchLimit": 2})

        log = (await db_session.execute(
            select(MissionLog).where(MissionLog.mission_id == mission.id)
        )).scalars().one()
        assert log.level == LogLevel.INFO
        assert log.message == "Mission tuned while running"
        assert log.details["patchedPendingTasks"] == 1
        assert log.details["applied"]["dailySearchLimit"] == 2

    @pytest.mark.asyncio
    async def test_response_includes_fresh_intelligence(self, db_session, mission):
        result = await MissionTuner(db_session).apply_patch(mission.id, {"seniorities": ["vp"]})

        assert set(result) == {
            "ok", "patchedPendingTasks", "mission", "metrics",
            "recommendations", "suggestedPatch", "conflicts", "reasoning"
        }
        assert "add-seniority-focus" not in rule_ids(result)
