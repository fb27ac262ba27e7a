"""Pytest configuration for Bargenix API tests

WHAT: Provides shared fixtures for HTTP endpoint and service-level tests
WHY: Ensures consistent test setup, database isolation, and Shopify configuration
REFERENCES:
    - bargenix/main.py: FastAPI application
    - bargenix/database.py: Database configuration
    - bargenix/deps.py: Settings and auth dependencies
"""

import pytest
import os
from datetime import datetime
from decimal import Decimal
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test environment (read at import time by bargenix.security / database / deps)
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
# Must be URL-safe base64-encoded 32-byte string (bargenix.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SHOPIFY_API_KEY", "test-api-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-api-secret")
os.environ.setdefault("APP_URL", "https://api.bargenix.test")
os.environ.setdefault("FRONTEND_URL", "https://app.bargenix.test")
os.environ.setdefault("ENVIRONMENT", "development")

SHOPIFY_SECRET = os.environ["SHOPIFY_API_SECRET"]
TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are lru_cached; tests that tweak env vars need a clean cache."""
    from bargenix.deps import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory SQLite shared by every thread (TestClient runs sync routes in a pool)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from bargenix.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application bound to the test session."""
    from bargenix.main import create_app
    from bargenix.database import get_db

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, base_url="https://testserver")


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def free_plan(test_db_session):
    from bargenix.models import MembershipPlan

    plan = MembershipPlan(name="Free", slug="free", product_limit=3, price=Decimal("0"))
    test_db_session.add(plan)
    test_db_session.commit()
    return plan


def make_user(db, email: str, password: str = TEST_PASSWORD):
    from bargenix.models import AuthCredential, User
    from bargenix.security import get_password_hash

    user = User(email=email, first_name="Test", last_name="Merchant", company_name="Test Co")
    db.add(user)
    db.flush()
    db.add(AuthCredential(user_id=user.id, password_hash=get_password_hash(password)))
    db.commit()
    db.refresh(user)
    return user


def make_store(db, user, shop_domain: str, *, status=None, access_token: str = "shpat_test"):
    from bargenix.models import ShopifyStore, StoreStatusEnum
    from bargenix.services.token_service import store_shop_token

    store = ShopifyStore(
        user_id=user.id,
        shop_domain=shop_domain,
        shop_name=shop_domain.split(".")[0],
        status=status or StoreStatusEnum.active,
        last_status_check=datetime.utcnow(),
    )
    db.add(store)
    db.flush()
    if access_token:
        store_shop_token(db, store, access_token=access_token, scope="read_products")
    db.commit()
    db.refresh(store)
    return store


def login(client: TestClient, user) -> None:
    """Authenticate the TestClient as `user` via the access_token cookie."""
    from bargenix.security import create_access_token

    client.cookies.set("access_token", create_access_token(subject=str(user.id)))


@pytest.fixture
def test_user(test_db_session, free_plan):
    return make_user(test_db_session, "merchant@example.com")


@pytest.fixture
def other_user(test_db_session):
    return make_user(test_db_session, "other@example.com")


@pytest.fixture
def test_store(test_db_session, test_user):
    return make_store(test_db_session, test_user, "teststore.myshopify.com")


@pytest.fixture
def auth_client(client, test_user) -> TestClient:
    login(client, test_user)
    return client
