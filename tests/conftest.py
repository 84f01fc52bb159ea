import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from latidos.config.database import get_db, get_session_factory
from latidos.config.settings import settings
from latidos.core.auth.service import AuthService
from latidos.main import app
from latidos.shared.database.models import Base


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory, monkeypatch):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    monkeypatch.setattr(settings, "audit_poll_interval_seconds", 0.02)
    monkeypatch.setattr(settings, "audit_stream_max_lifetime_seconds", 0.3)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def make(organization_id="org-1", user_id="u1", name="Ana"):
        token = AuthService.create_access_token({
            "organization_id": organization_id,
            "user_id": user_id,
            "name": name
        })
        return {"Authorization": f"Bearer {token}"}
    return make
