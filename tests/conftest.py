"""Pytest configuration and shared fixtures."""

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

import stepup.models  # noqa: F401
from stepup.api.deps import get_db
from stepup.config import Settings
from stepup.db import build_engine
from stepup.main import create_app
from stepup.models.base import Base
from stepup.models.subject import Subject
from stepup.services.container import Services, build_services
from stepup.services.otp import generate_secret

RFC_SECRET_B32 = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class FakeChannel:
    """Records dispatched codes instead of talking to the gateway."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.error: Exception | None = None

    def send(self, destination: str, code: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((destination, code))

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'stepup.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None, sweep_interval_seconds=0)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def services(session_factory, channel, config, clock) -> Services:
    return build_services(session_factory, channel=channel, config=config, clock=clock)


@pytest.fixture
def subject(db) -> Subject:
    subject = Subject(id="client-1", phone="+244923456789", totp_enabled=False)
    db.add(subject)
    db.commit()
    return subject


@pytest.fixture
def totp_subject(db) -> Subject:
    subject = Subject(id="admin-1", phone="+244911222333", totp_secret=generate_secret(), totp_enabled=True)
    db.add(subject)
    db.commit()
    return subject


@pytest.fixture
def client(services, session_factory, config) -> TestClient:
    app = create_app(services=services, session_factory=session_factory, config=config)

    def _get_db() -> Generator[Session, None, None]:
        with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    return TestClient(app)
