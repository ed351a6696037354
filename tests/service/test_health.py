from unittest.mock import MagicMock

from fastapi.testclient import TestClient
import pytest

from app_maker.main import app
from app_maker.ws import WebSocketHub

pytestmark = pytest.mark.service


def test_health_reports_hub_stats():
    app.state.container = MagicMock(hub=WebSocketHub())
    # Without the context manager the lifespan does not run
    client = TestClient(app)

    response = client.get("/health", headers={"X-Correlation-ID": "req_test"})

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "websocket": {"total_clients": 0, "total_projects": 0, "active_projects": {}},
    }
