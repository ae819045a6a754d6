import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.core.clock import ManualClock
from app.core.database import Base, create_engine_for, create_session_factory
from app.core.security import get_password_hash
from app.main import create_app
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.rate_limiter import FixedWindowRateLimiter, InMemoryQuotaStore

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
PASSWORD = "Sup3rSecret!"
ADMIN_PASSWORD = "AdminPass123!"


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send_password_reset(self, user, token, expires_at):
        self.sent.append({"user_id": user.id, "token": token, "expires_at": expires_at})


def make_settings(tmp_path, **overrides):
    values = dict(
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        SECRET_KEY=TEST_SECRET,
        BCRYPT_ROUNDS=4,
        DB_INIT_MODE="create_all",
        TOKEN_JANITOR_ENABLED=False,
        LOG_FILE=str(tmp_path / "app.log"),
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        ENVIRONMENT="test",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def engine(settings):
    engine = create_engine_for(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def auth_service(settings, clock, notifier):
    return AuthService(settings, clock, notifier=notifier)


@pytest.fixture
def make_user(session_factory, settings, clock):
    def _make(username="alice", email=None, password=PASSWORD, role="user", is_active=True):
        db = session_factory()
        try:
            user = User(
                username=username,
                email=email or f"{username}@example.com",
                password_hash=get_password_hash(password, settings.BCRYPT_ROUNDS),
                role=role,
                is_active=is_active,
                failed_login_attempts=0,
                created_at=clock.now(),
                password_changed_at=clock.now(),
            )
            db.add(user)
            db.commit()
            return user
        finally:
            db.close()

    return _make


@pytest.fixture
def rate_limiter(settings, clock):
    return FixedWindowRateLimiter(
        InMemoryQuotaStore(),
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        clock=clock,
    )


@pytest.fixture
def app(settings, session_factory, clock, rate_limiter, notifier):
    return create_app(
        settings,
        session_factory=session_factory,
        clock=clock,
        rate_limiter=rate_limiter,
        notifier=notifier,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def login(client, identifier="alice", password=PASSWORD):
    response = client.post("/api/v1/auth/login", json={"identifier": identifier, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
