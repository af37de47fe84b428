import os

# Must be set before app.config is imported; the app engine is never used in tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_invoices.db")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.main import app
from app.database import Base, get_db, use_immediate_transactions
from app.api.deps import get_password_hash
from app.models.user import User
from app.services.email_service import MockEmailService, get_email_service

# Test database URL (SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

TEST_PASSWORD = "testpassword123"


@pytest_asyncio.fixture
async def test_db():
    """Create test database and tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_db: AsyncSession):
    """Independent sessions on the test database, for concurrent writers."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)
    use_immediate_transactions(engine.sync_engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


async def _make_user(db: AsyncSession, email: str, **fields) -> User:
    user = User(
        email=email,
        hashed_password=get_password_hash(TEST_PASSWORD),
        is_active=True,
        **fields,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(test_db: AsyncSession):
    """Create a test user with an issuer block."""
    return await _make_user(
        test_db,
        "test@example.com",
        first_name="Test",
        last_name="User",
        company_name="Test Plumbing Co",
        company_address="1 Main Street, Springfield",
        company_phone="555-0100",
    )


@pytest_asyncio.fixture
async def other_user(test_db: AsyncSession):
    """A second owner, for isolation checks."""
    return await _make_user(test_db, "other@example.com", first_name="Other", last_name="Owner")


@pytest.fixture
def mock_email():
    """Reachable in-memory email transport."""
    return MockEmailService()


@pytest_asyncio.fixture
async def client(test_db: AsyncSession, mock_email: MockEmailService):
    """Create test client with overridden database and email transport."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_service] = lambda: mock_email

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(client: AsyncClient, test_user: User):
    """Create authenticated test client."""
    response = await client.post(
        "/api/v2/auth/login",
        json={"email": "test@example.com", "password": TEST_PASSWORD},
    )
    token = response.json()["access_token"]

    client.headers["Authorization"] = f"Bearer {token}"
    return client
