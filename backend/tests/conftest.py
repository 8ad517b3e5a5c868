# tests/conftest.py
"""
Shared fixtures

- in-memory SQLite database (aiosqlite, one connection shared via StaticPool)
- httpx AsyncClient on the FastAPI app with get_db overridden
- mission/task factories and mocked provider clients
"""

import os
from uuid import uuid4
from unittest.mock import Mock, AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Force test database and keep the scheduler off
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENABLE_SCHEDULER"] = "false"

from leadagent.database import Base, get_db
from leadagent.models import Mission, Task, TaskStatus
from leadagent.main import app


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Fresh database per test, same session settings as the app"""
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session):
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# FACTORIES
# ============================================================================

@pytest.fixture
def organization_id():
    return uuid4()


@pytest.fixture
def mission_factory(db_session, organization_id):
    async def _create(**overrides):
        fields = dict(
            id=uuid4(),
            organization_id=organization_id,
            user_id=uuid4(),
            title="CTOs in Chile",
            goal_summary="Book intro calls with SaaS CTOs",
            status="active",
            params={
                "jobTitle": "CTO",
                "location": "Chile",
                "industry": "Software",
                "keywords": "saas",
                "enrichmentLevel": "basic",
                "campaignName": "Mission: CTOs in Chile",
            },
        )
        fields.update(overrides)
        mission = Mission(**fields)
        db_session.add(mission)
        await db_session.commit()
        return mission

    return _create


@pytest_asyncio.fixture
async def mission(mission_factory):
    return await mission_factory()


@pytest.fixture
def task_factory(db_session):
    async def _create(mission, task_type, payload=None, status=TaskStatus.PENDING, **extra):
        task = Task(
            id=uuid4(),
            mission_id=mission.id,
            organization_id=mission.organization_id,
            type=task_type,
            status=status,
            payload=payload if payload is not None else {},
            **extra
        )
        db_session.add(task)
        await db_session.commit()
        return task

    return _create


# ============================================================================
# PROVIDERS
# ============================================================================

@pytest.fixture
def search_results():
    return [
        {"full_name": "Ana Rojas", "title": "CTO", "organization_name": "Nube SpA",
         "linkedin_url": "https://linkedin.com/in/ana-rojas"},
        {"name": "Luis Soto", "title": "CTO", "company_name": "DataSur",
         "linkedin_url": "https://linkedin.com/in/luis-soto"},
        {"full_name": "Marta Diaz", "title": "VP Engineering", "organization_name": "Andes Labs",
         "email": "marta@andeslabs.cl"},
    ]


@pytest.fixture
def search_service(search_results):
    service = Mock()
    service.search_people = AsyncMock(return_value=search_results)
    return service


@pytest.fixture
def enrichment_service():
    """Echoes requested leads back as enriched, each with an email"""
    async def _enrich(leads, user_id=None, reveal_phone=False):
        return [
            {
                "id": f"enr-{i}",
                "fullName": lead.get("full_name") or lead.get("name") or lead.get("fullName"),
                "linkedinUrl": lead.get("linkedin_url"),
                "companyName": lead.get("organization_name") or lead.get("company_name"),
                "title": lead.get("title"),
                "email": f"lead{i}@example.com",
            }
            for i, lead in enumerate(leads)
        ]

    service = Mock()
    service.enrich_leads = AsyncMock(side_effect=_enrich)
    return service


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
