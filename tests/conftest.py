import asyncio
import uuid

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app.config import Settings
from app.core.database import Database
from app.main import create_app
from app.models.organization import MemberRole, OrganizationMember

ORG_ID = "org-acme"
OTHER_ORG_ID = "org-globex"

MEMBERS = [
    (ORG_ID, "owner-1", MemberRole.OWNER),
    (ORG_ID, "admin-1", MemberRole.ADMIN),
    (ORG_ID, "editor-1", MemberRole.EDITOR),
    (ORG_ID, "viewer-1", MemberRole.VIEWER),
    (OTHER_ORG_ID, "outsider-1", MemberRole.OWNER),
]


async def _seed_members(database: Database):
    await database.init()
    async with database.session_maker() as session:
        for organization_id, user_id, role in MEMBERS:
            session.add(
                OrganizationMember(
                    id=str(uuid.uuid4()),
                    organization_id=organization_id,
                    user_id=user_id,
                    role=role,
                )
            )
        await session.commit()


async def _prepare(url: str):
    database = Database(url)
    try:
        await _seed_members(database)
    finally:
        await database.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'variantly.db'}",
        DEBUG=False,
        LOG_LEVEL="WARNING",
        CORS_ORIGINS=[],
    )


@pytest.fixture
def org_id():
    return ORG_ID


@pytest.fixture
def client(settings):
    asyncio.run(_prepare(settings.DATABASE_URL))

    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def db_session(settings):
    database = Database(settings.DATABASE_URL)
    await _seed_members(database)

    async with database.session_maker() as session:
        yield session

    await database.close()
