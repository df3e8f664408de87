import threading
from datetime import datetime, timezone
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from orderdesk import main
from orderdesk.config import settings
from orderdesk.models import Order
from orderdesk.services.ecomanager_service import EcoManagerClient


@pytest.fixture
def scheduler_session(engine):
    with patch.object(main, "SessionLocal", sessionmaker(bind=engine, autoflush=False)):
        yield


class TestScheduledJobs:
    def test_disabled_under_pytest(self):
        assert main._is_scheduler_enabled() is False

    def test_tick_assigns_and_syncs(self, scheduler_session, db_session, make_agent, make_order):
        make_agent("A1", now=datetime.now(timezone.utc))
        make_order("R-1")
        make_order("R-2")

        summary = main.run_scheduled_jobs(threading.Event())

        assert "ingestion" not in summary
        assert summary["assignment"]["successful_assignments"] == 2
        assert summary["tracking"] == {"accounts": 0, "failed_accounts": 0, "updated": 0}
        db_session.expire_all()
        assert db_session.query(Order).filter(Order.assigned_agent_id.is_(None)).count() == 0

    def test_cancelled_tick_stops_before_assignment(self, scheduler_session, db_session, make_agent, make_order):
        make_agent("A1", now=datetime.now(timezone.utc))
        make_order("R-1")
        cancel = threading.Event()
        cancel.set()

        summary = main.run_scheduled_jobs(cancel)

        assert summary == {}
        db_session.expire_all()
        assert db_session.query(Order).one().assigned_agent_id is None

    def test_malformed_ingestion_does_not_stop_the_tick(self, scheduler_session, make_agent, make_order):
        make_agent("A1", now=datetime.now(timezone.utc))
        make_order("R-1")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))

        def client_factory(token):
            return EcoManagerClient(token, "https://eco.test/api", transport=transport)

        with patch.object(settings, "ecomanager_api_token", "eco-token"), patch.object(
            settings, "ecomanager_base_url", "https://eco.test/api"
        ), patch.object(main, "EcoManagerClient", client_factory):
            summary = main.run_scheduled_jobs(threading.Event())

        assert "non-JSON" in summary["ingestion"]["error"]
        assert summary["assignment"]["successful_assignments"] == 1
