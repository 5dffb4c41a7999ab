"""Pytest fixtures for testing"""

import pytest
from typing import Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from bizcoin_ledger.api.main import create_app
from bizcoin_ledger.api.dependencies import get_notification_client
from bizcoin_ledger.domain.models import MilestoneEvent
from bizcoin_ledger.infrastructure.database.models import Base
from bizcoin_ledger.infrastructure.database.session import get_db
from bizcoin_ledger.services.ledger import TokenLedgerService


# Test database: one shared in-memory connection
TEST_DATABASE_URL = "sqlite://"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

STUDENT = "student-1"
CLASSROOM = "classroom-a"


class RecordingNotifier:
    """Stands in for the webhook client; keeps delivered events in memory"""

    def __init__(self):
        self.delivered: List[MilestoneEvent] = []

    async def deliver_milestones(self, events: List[MilestoneEvent]) -> None:
        self.delivered.extend(events)


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
def milestone_sink() -> List[MilestoneEvent]:
    """Events handed to the delivery collaborator by the service"""
    return []


@pytest.fixture
def service(db: Session, milestone_sink: List[MilestoneEvent]) -> TokenLedgerService:
    return TokenLedgerService(db, on_milestones=milestone_sink.extend)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def client(db: Session, notifier: RecordingNotifier) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_client] = lambda: notifier
    return TestClient(app)
