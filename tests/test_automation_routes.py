"""
Automation router tests through FastAPI's TestClient.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import AutomationSettings
from app.database import get_db
from app.models import OrderStatus
from app.routes import automation
from app.services.lifecycle_engine import OrderLifecycleEngine
from app.services.lifecycle_scheduler import LifecycleScheduler
from support import utc


@pytest.fixture
def lifecycle_scheduler(session_factory, calendar_client, clock, credentials_loader):
    engine = OrderLifecycleEngine(
        session_factory, calendar_client, clock, credentials_loader=credentials_loader
    )
    return LifecycleScheduler(engine, AutomationSettings(timezone="UTC"), scheduler=MagicMock())


@pytest.fixture
def api(db, lifecycle_scheduler):
    app = FastAPI()
    app.include_router(automation.router)
    app.state.lifecycle_scheduler = lifecycle_scheduler

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client


@pytest.mark.integration
class TestRunAutomation:
    def test_daily_run_returns_summary(self, api, db, make_order):
        order = make_order(delivery_date=utc(2026, 3, 15, 6, 0))

        response = api.post("/automation/run", params={"kind": "daily"})

        assert response.status_code == 200
        passes = response.json()["passes"]
        assert len(passes) == 1
        assert passes[0]["kind"] == "daily"
        assert passes[0]["status_changes"] == 1
        db.expire_all()
        assert order.status == OrderStatus.DELIVERED.value

    def test_both_runs_alerting_then_daily(self, api):
        response = api.post("/automation/run")
        assert [p["kind"] for p in response.json()["passes"]] == ["alerting", "daily"]

    def test_unknown_kind_is_rejected(self, api):
        assert api.post("/automation/run", params={"kind": "hourly"}).status_code == 422

    def test_run_while_pass_in_progress_is_skipped(self, api, lifecycle_scheduler):
        asyncio.run(lifecycle_scheduler._pass_lock.acquire())
        try:
            response = api.post("/automation/run", params={"kind": "alerting"})
        finally:
            lifecycle_scheduler._pass_lock.release()

        assert response.status_code == 200
        assert response.json()["passes"][0]["skipped"] is True

    def test_cron_secret_required_when_configured(self, api, monkeypatch):
        monkeypatch.setattr(automation, "CRON_SECRET", "s3cret")

        assert api.post("/automation/run").status_code == 401
        assert api.post("/automation/run", headers={"X-Cron-Secret": "wrong"}).status_code == 401
        assert api.post("/automation/run", headers={"X-Cron-Secret": "s3cret"}).status_code == 200

    def test_uninitialized_automation(self, db):
        app = FastAPI()
        app.include_router(automation.router)
        with TestClient(app) as client:
            assert client.post("/automation/run").status_code == 503


@pytest.mark.integration
class TestStatusAndExport:
    def test_status_reports_last_passes(self, api):
        assert api.get("/automation/status").json() == {
            "running": False,
            "current_pass": None,
            "last_passes": {},
        }

        api.post("/automation/run", params={"kind": "alerting"})
        body = api.get("/automation/status").json()

        assert set(body["last_passes"]) == {"alerting"}
        assert body["last_passes"]["alerting"]["skipped"] is False

    def test_ics_export(self, api, make_order):
        order = make_order(delivery_date=utc(2026, 3, 20, 0, 0))

        response = api.get(f"/automation/orders/{order.id}/calendar.ics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        assert f'filename="order-{order.id}.ics"' in response.headers["content-disposition"]
        assert response.text.startswith("BEGIN:VCALENDAR")

    def test_ics_export_missing_order(self, api):
        assert api.get("/automation/orders/999/calendar.ics").status_code == 404

    def test_ics_export_checks_owner(self, api, make_order, user):
        order = make_order(delivery_date=utc(2026, 3, 20, 0, 0))
        url = f"/automation/orders/{order.id}/calendar.ics"
        assert api.get(url, params={"user_id": user.id + 1}).status_code == 404
        assert api.get(url, params={"user_id": user.id}).status_code == 200


@pytest.mark.unit
class TestApplication:
    def test_health(self):
        from app.main import app

        # No context manager: the lifespan (and its scheduler) is not started
        client = TestClient(app)
        assert client.get("/health").json() == {"status": "healthy"}
        assert client.get("/health/scheduler").json()["scheduler"]["initialized"] is False

    def test_build_lifecycle_scheduler(self, session_factory, calendar_client):
        from app.main import build_lifecycle_scheduler

        settings = AutomationSettings(timezone="Asia/Kolkata", daily_pass_hour=7)
        scheduler = build_lifecycle_scheduler(settings, session_factory, calendar_client)

        assert scheduler.settings is settings
        assert scheduler.engine.clock.timezone_name == "Asia/Kolkata"
        assert scheduler.engine.calendar_client is calendar_client
        assert not scheduler.is_running
