"""Pytest fixtures for testing"""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")

import uuid
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from ledger_bank_api.api.main import create_app
from ledger_bank_api.config import settings
from ledger_bank_api.infrastructure.cache import MemoryCache
from ledger_bank_api.infrastructure.clients.circuit_breaker import reset_circuit_breakers
from ledger_bank_api.infrastructure.database.models import Base
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.auth import AuthService
from ledger_bank_api.services.banking import BankingService
from ledger_bank_api.services.users import UserService

USER_PASSWORD = "password123"
STAFF_PASSWORD = "staff-password-123"

# Test database
engine = create_engine(settings.database_url, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def fresh_circuit_breakers():
    """Bank circuit breakers are process-wide; start every test closed"""
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session):
    """Factory for the separate sessions background workers open"""
    return TestingSessionLocal


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def client(db: Session, cache: MemoryCache) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(cache=cache)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def make_user(db: Session):
    """Create users; staff roles get a password long enough for their policy"""

    def _make(email: str | None = None, role: str = "user", full_name: str = "Test User"):
        password = STAFF_PASSWORD if role in ("admin", "support") else USER_PASSWORD
        return UserService(db).create_user(
            {
                "email": email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
                "full_name": full_name,
                "password": password,
                "role": role,
            },
            allow_role=True,
        )

    return _make


@pytest.fixture
def user(make_user):
    return make_user(email="alice@example.com", full_name="Alice")


@pytest.fixture
def other_user(make_user):
    return make_user(email="bob@example.com", full_name="Bob")


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", role="admin", full_name="Admin")


@pytest.fixture
def support(make_user):
    return make_user(email="support@example.com", role="support", full_name="Support")


@pytest.fixture
def auth_headers(db: Session):
    def _headers(user) -> dict:
        token = AuthService(db).generate_access_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def bank(db: Session):
    return BankingService(db).create_bank(
        {"name": "Test Bank", "country": "US", "code": "TEST_BANK", "api_endpoint": "http://bank.test"}
    )


@pytest.fixture
def branch(db: Session, bank):
    return BankingService(db).create_branch(bank, {"name": "Main Branch", "routing_number": "123456789"})


@pytest.fixture
def make_login(db: Session, branch):
    def _make(owner, username: str | None = None, **attrs):
        return BankingService(db).create_login(
            owner,
            {"bank_branch_id": branch.id, "username": username or f"login-{uuid.uuid4().hex[:8]}", **attrs},
        )

    return _make


@pytest.fixture
def make_account(db: Session, make_login):
    """Create an account, with a fresh bank login unless one is given"""

    def _make(owner, account_type: str = "CHECKING", balance: str = "500.00", login=None, **attrs):
        login = login or make_login(owner)
        return BankingService(db).create_account(
            owner,
            {
                "user_bank_login_id": login.id,
                "currency": "USD",
                "account_type": account_type,
                "balance": Decimal(balance),
                **attrs,
            },
        )

    return _make


@pytest.fixture
def account(user, make_account):
    return make_account(user)
