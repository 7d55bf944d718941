import os
import sys
from collections.abc import Generator
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATABASE_URL = "sqlite://"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("REPORT_SCHEDULER_ENABLED", "false")
os.environ.setdefault("SEED_SYSTEM_REPORTS_ON_STARTUP", "false")

from report_engine.database import Base, get_db  # noqa: E402
from report_engine.main import app  # noqa: E402
from report_engine.routers.reporting import get_schedule_engine  # noqa: E402
from report_engine.schemas.reporting import ReportCreateRequest  # noqa: E402
from report_engine.services.report_catalog import (  # noqa: E402
    agent_table,
    call_table,
    campaign_table,
    catalog_metadata,
)
from report_engine.services.report_delivery import ReportDeliveryRouter  # noqa: E402
from report_engine.services.report_scheduler import ScheduledReportEngine  # noqa: E402
from report_engine.services.report_service import create_report  # noqa: E402
from report_engine.services.report_storage import ReportFileStorage, get_report_storage  # noqa: E402


def _create_testing_engine():
    return create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )


def _create_test_sessionmaker(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def _reset_schema(engine) -> None:
    Base.metadata.drop_all(bind=engine)
    catalog_metadata.drop_all(bind=engine)
    catalog_metadata.create_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture(scope="session")
def engine():
    engine = _create_testing_engine()
    _reset_schema(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    catalog_metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory(engine):
    return _create_test_sessionmaker(engine)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Session, None, None]:
    _reset_schema(engine)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def storage(tmp_path: Path) -> ReportFileStorage:
    storage = ReportFileStorage(tmp_path / "reports")
    storage.ensure_root()
    return storage


@pytest.fixture()
def delivery() -> ReportDeliveryRouter:
    return ReportDeliveryRouter()


@pytest.fixture()
def schedule_engine(session_factory, storage, delivery) -> ScheduledReportEngine:
    return ScheduledReportEngine(session_factory, delivery=delivery, storage=storage)


def _utc(*parts: int) -> datetime:
    return datetime(*parts, tzinfo=timezone.utc)


@pytest.fixture()
def call_rows(db_session: Session) -> list[dict[str, object]]:
    """Two campaigns and two agents with calls spread across the first week of 2024."""
    db_session.execute(
        campaign_table.insert(),
        [
            {"id": "camp-a", "name": "Spring Outreach", "status": "active", "createdAt": _utc(2023, 12, 1)},
            {"id": "camp-b", "name": "Renewals", "status": "active", "createdAt": _utc(2023, 12, 2)},
        ],
    )
    db_session.execute(
        agent_table.insert(),
        [
            {"id": "agent-1", "name": "Dana", "status": "available"},
            {"id": "agent-2", "name": "Lee", "status": "available"},
        ],
    )
    rows = [
        {"id": "call-01", "direction": "outbound", "status": "completed", "duration": 60,
         "createdAt": _utc(2024, 1, 1, 9), "campaignId": "camp-a", "agentId": "agent-1"},
        {"id": "call-02", "direction": "outbound", "status": "completed", "duration": 120,
         "createdAt": _utc(2024, 1, 2, 10), "campaignId": "camp-a", "agentId": "agent-2"},
        {"id": "call-03", "direction": "inbound", "status": "missed", "duration": 0,
         "createdAt": _utc(2024, 1, 3, 11), "campaignId": "camp-b", "agentId": "agent-1"},
        {"id": "call-04", "direction": "outbound", "status": "completed", "duration": 30,
         "createdAt": _utc(2024, 1, 7, 23, 30), "campaignId": "camp-a", "agentId": None},
        {"id": "call-05", "direction": "inbound", "status": "completed", "duration": 90,
         "createdAt": _utc(2024, 1, 9, 8), "campaignId": "camp-b", "agentId": "agent-2"},
    ]
    db_session.execute(call_table.insert(), rows)
    db_session.commit()
    return rows


class PrefixedTestClient(TestClient):
    api_prefix = "/api"

    def request(self, method: str, url: str, *args, **kwargs):  # type: ignore[override]
        if url.startswith("/"):
            url = f"{self.api_prefix}{url}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture()
def client(
    db_session: Session,
    storage: ReportFileStorage,
    schedule_engine: ScheduledReportEngine,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_report_storage] = lambda: storage
    app.dependency_overrides[get_schedule_engine] = lambda: schedule_engine

    client = PrefixedTestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.dependency_overrides.pop(get_report_storage, None)
        app.dependency_overrides.pop(get_schedule_engine, None)


CALLS_PER_CAMPAIGN = {
    "name": "Calls per campaign",
    "type": "campaign",
    "primaryEntity": "call",
    "columns": [
        {"id": "campaign", "field": "campaignId", "label": "Campaign"},
        {"id": "calls", "field": "id", "label": "Calls", "aggregation": "count"},
    ],
    "groupBy": [{"field": "campaignId", "label": "Campaign"}],
    "dateField": "createdAt",
}


@pytest.fixture()
def report_factory(db_session: Session):
    def factory(**overrides):
        payload = {**CALLS_PER_CAMPAIGN, **overrides}
        return create_report(db_session, ReportCreateRequest.model_validate(payload), actor_id="tester")

    return factory
