import os

# Must be set before finapprove.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["APPROVAL_CHAIN"] = "standard"
os.environ["INTERNAL_JOB_SECRET"] = "test-job-secret"
os.environ["BREVO_API_KEY"] = ""
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"

import uuid
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import finapprove.models  # noqa: F401
from finapprove.database import Base, get_db, get_session_factory
from finapprove.main import app
from finapprove.models.user import User
from finapprove.services.auth_service import Actor, create_access_token

ROLES = (
    "EMPLOYEE",
    "FINANCE_TEAM",
    "FINANCE_CONTROLLER",
    "DIRECTOR",
    "MD",
    "ADMIN",
    "DEPARTMENT_HEAD",
)


def make_actor(user: User) -> Actor:
    return Actor(id=user.id, role=user.role, department=user.department, email=user.email)


def auth_headers(user: User) -> dict:
    token = create_access_token(
        user_id=user.id,
        role=user.role,
        email=user.email,
        department=user.department,
    )
    return {"Authorization": f"Bearer {token}"}


def request_data(**overrides) -> dict:
    data = {
        "department": "Operations",
        "payment_type": "INVOICE",
        "payment_mode": "NEFT",
        "purpose": "Quarterly facilities maintenance invoice",
        "vendor_name": "Acme Facilities",
        "base_amount": Decimal("10000"),
        "gst_applicable": True,
        "gst_percentage": Decimal("18"),
        "tds_applicable": False,
        "tds_percentage": None,
        "currency": "INR",
    }
    data.update(overrides)
    return data


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def users(db):
    """One active user per role, plus a second employee and finance team member."""
    created = {}
    for role in ROLES:
        user = User(
            id=uuid.uuid4(),
            email=f"{role.lower()}@finapprove.test",
            name=role.title(),
            role=role,
            department="Operations",
            is_active=True,
        )
        db.add(user)
        created[role] = user

    created["EMPLOYEE_2"] = User(
        id=uuid.uuid4(),
        email="employee2@finapprove.test",
        name="Second Employee",
        role="EMPLOYEE",
        department="Sales",
        is_active=True,
    )
    created["FINANCE_TEAM_2"] = User(
        id=uuid.uuid4(),
        email="finance2@finapprove.test",
        name="Second Finance",
        role="FINANCE_TEAM",
        department="Finance",
        is_active=True,
    )
    db.add_all([created["EMPLOYEE_2"], created["FINANCE_TEAM_2"]])
    await db.commit()
    return created


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def actor_of():
    return make_actor


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def new_request_data():
    return request_data
