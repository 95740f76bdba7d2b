import os

os.environ.setdefault("MFACORE_JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("MFACORE_SECRET_ENCRYPTION_KEY", "test-factor-secret-key")
os.environ["MFACORE_DATABASE_URL"] = "sqlite://"

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from mfa_core.core import security  # noqa: E402
from mfa_core.core.config import get_settings  # noqa: E402
from mfa_core.core.time import epoch_seconds  # noqa: E402
from mfa_core.db.base import Base  # noqa: E402
from mfa_core.db.session import build_engine, make_session_factory  # noqa: E402

get_settings.cache_clear()

NOW = datetime(2026, 3, 1, 12, 0, 10, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(engine):
    from mfa_core.api.deps import get_db
    from mfa_core.main import app

    TestingSessionLocal = make_session_factory(engine)

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_token(user_id: str = "user-1", aal: str | None = "aal1", amr=None, email: str | None = None) -> str:
    claims = {"sub": user_id}
    if aal is not None:
        claims["aal"] = aal
    if email:
        claims["email"] = email
    claims["amr"] = amr if amr is not None else [{"method": "password", "timestamp": epoch_seconds(NOW)}]
    return security.create_session_token(claims)


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
