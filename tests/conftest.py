import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEED_DATA", "false")
os.environ.setdefault("JWT_SECRET", "test-secret-that-is-long-enough-for-hs256-signing")

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from httpx import Client
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token, hash_password, now_utc
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models import ROLE_ADMIN, ROLE_USER, User

RUN_INTEGRATION = os.getenv("RUN_INTEGRATION") == "1"
BASE_URL = os.getenv("BASE_URL", "http://localhost:10723")
TEST_PASSWORD = "Passw0rd-test"


# ── Live-server integration fixtures ────────────────────────────────────────


@pytest.fixture(scope="session")
def base_url() -> str:
    return BASE_URL


@pytest.fixture(scope="session")
def client(base_url: str):
    with Client(base_url=base_url, timeout=20.0) as c:
        yield c


@pytest.fixture(scope="session")
def integration_enabled() -> bool:
    return RUN_INTEGRATION


# ── In-process fixtures (SQLite in memory) ──────────────────────────────────


@pytest.fixture(scope="session")
def user_password() -> str:
    return TEST_PASSWORD


@pytest.fixture(scope="session")
def password_hash(user_password: str) -> str:
    return hash_password(user_password)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def make_user(db, password_hash):
    def _make(role: str = ROLE_USER, *, email: str | None = None, name: str | None = None, status: str = "active") -> User:
        suffix = uuid.uuid4().hex[:8]
        now = now_utc()
        user = User(
            email=email or f"user_{suffix}@example.com",
            display_name=name or f"User {suffix}",
            password_hash=password_hash,
            role=role,
            status=status,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def admin(make_user) -> User:
    return make_user(ROLE_ADMIN, name="Admin")


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(str(user.id), extra={"email": user.email, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def api_client(session_factory):
    def _override_get_db():
        with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def past():
    return now_utc() - timedelta(seconds=1)


@pytest.fixture()
def future():
    return now_utc() + timedelta(days=7)
