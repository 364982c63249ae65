"""
ProjectDesk - Test Configuration and Fixtures
"""
import os
from datetime import timedelta
from typing import AsyncGenerator, Generator
from unittest.mock import MagicMock

import pytest
from faker import Faker
from httpx import AsyncClient, ASGITransport
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

# Set testing environment before the app module builds its default instance
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from core.config import Settings
from core.database import create_db_and_tables, create_db_engine, utcnow
from core.security import create_token_for_user, hash_password
from main import create_app
from models.models import SubscriptionType, User, UserRole
from services.billing_service import GoCardlessClient
from services.email_service import EmailService

fake = Faker()

TEST_PASSWORD = "correct-horse-battery"


def make_email() -> str:
    return f"{fake.unique.user_name()}@university.edu".lower()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SECRET_KEY="test-secret-key-for-testing-only",
        DATABASE_URL="sqlite://",
        FRONTEND_URL="http://frontend.test",
        GOCARDLESS_ACCESS_TOKEN="sandbox-token",
        GOCARDLESS_WEBHOOK_SECRET="webhook-secret",
        GOCARDLESS_SUBSCRIPTION_AMOUNT=1500,
        GOCARDLESS_SUBSCRIPTION_CURRENCY="GBP",
        GOCARDLESS_SUBSCRIPTION_INTERVAL_UNIT="monthly",
        DEBUG=False,
    )


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture
def billing() -> MagicMock:
    return MagicMock(spec=GoCardlessClient)


@pytest.fixture
def mailer() -> MagicMock:
    mailer = MagicMock(spec=EmailService)
    mailer.send.return_value = True
    return mailer


@pytest.fixture
def app(settings, engine, billing, mailer):
    return create_app(settings=settings, engine=engine, billing_client=billing, email_service=mailer)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(session):
    """Factory for stored users. Pass password=None to skip hashing."""

    def _make_user(
        role: UserRole = UserRole.SUPERVISOR,
        subscription_type: SubscriptionType = SubscriptionType.SUBSCRIBED,
        password=TEST_PASSWORD,
        verified: bool = True,
        **fields,
    ) -> User:
        now = utcnow()
        values = {
            "name": fake.name(),
            "email": make_email(),
            "password_hash": hash_password(password) if password else None,
            "subscription_started_at": now,
            "email_verified_at": now if verified else None,
        }
        if subscription_type == SubscriptionType.FREE_TRIAL:
            values["subscription_expires_at"] = now + timedelta(days=8)
        values.update(fields)

        user = User(role=role, subscription_type=subscription_type, **values)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def test_password() -> str:
    return TEST_PASSWORD


@pytest.fixture
def auth_headers(settings):
    """Bearer headers for a stored user"""

    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_token_for_user(user, settings)}"}

    return _auth_headers


@pytest.fixture
def supervisor(make_user) -> User:
    return make_user(role=UserRole.SUPERVISOR, subscription_type=SubscriptionType.SUBSCRIBED)


@pytest.fixture
def admin(make_user) -> User:
    return make_user(role=UserRole.ADMIN, subscription_type=SubscriptionType.ADMIN_APPROVED)
