"""Tests for the POST /index-scan endpoint.

The panel fetch and the background index run are patched out; these tests
check request handling only: auth, date resolution, panel errors, and that
a run is handed to the supervisor after the 202 is produced.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from main import create_app
from services.app_state import Settings, build_app_state
from services.errors import PanelError

AUTH = {"Authorization": "Bearer test-token"}


def make_app():
    state = build_app_state(Settings(auth_token="test-token", api_url="http://aggregator.test"))
    return create_app(state), state


@pytest.fixture
def patched_quarter():
    with patch("api.routes.current_quarter", return_value="2025-Q1"), \
            patch("api.routes.today_iso", return_value="2025-02-14"):
        yield


def test_index_scan_rejects_bad_token():
    app, _ = make_app()
    with patch("api.routes.fetch_panel") as mock_panel, patch("api.routes.run_index_scan") as mock_run:
        with TestClient(app) as client:
            response = client.post("/index-scan", json={}, headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    mock_panel.assert_not_called()
    mock_run.assert_not_called()


@pytest.mark.parametrize(
    "body, expected_dates",
    [
        ({"from_date": "2025-01-30", "to_date": "2025-02-02"},
         ["2025-01-30", "2025-01-31", "2025-02-01", "2025-02-02"]),
        ({"scan_dates": ["2025-03-01", "2025-03-08"]}, ["2025-03-01", "2025-03-08"]),
        ({"scan_dates": ["2025-03-01"], "from_date": "2025-01-01", "to_date": "2025-01-02"},
         ["2025-01-01", "2025-01-02"]),
        ({}, ["2025-02-14"]),
    ],
)
def test_index_scan_starts_background_run(patched_quarter, body, expected_dates):
    app, state = make_app()
    with patch("api.routes.fetch_panel", return_value=["vercel/next.js", "rust-lang/rust"]) as mock_panel, \
            patch("api.routes.run_index_scan") as mock_run:
        with TestClient(app) as client:
            response = client.post("/index-scan", json=body, headers=AUTH)

    assert response.status_code == 202, response.text
    assert response.json() == {
        "status": "started",
        "repos": 2,
        "quarter": "2025-Q1",
        "scan_dates": expected_dates,
    }
    _, api_url, quarter = mock_panel.call_args.args
    assert (api_url, quarter) == ("http://aggregator.test", "2025-Q1")

    mock_run.assert_called_once()
    run_state, repos, scan_dates = mock_run.call_args.args
    assert run_state is state
    assert [r.slug for r in repos] == ["vercel/next.js", "rust-lang/rust"]
    assert scan_dates == expected_dates
    assert state.supervisor.active == 0


@pytest.mark.parametrize(
    "body, message",
    [
        ({"from_date": "2025-02-01", "to_date": "2025-01-01"}, "Invalid date range"),
        ({"from_date": "2025-02-30", "to_date": "2025-03-01"}, "Invalid from_date"),
        ({"scan_dates": ["2025-01-01", "March 3rd"]}, "Invalid scan_date format: March 3rd"),
    ],
)
def test_index_scan_bad_dates_return_400(patched_quarter, body, message):
    app, _ = make_app()
    with patch("api.routes.fetch_panel") as mock_panel, patch("api.routes.run_index_scan") as mock_run:
        with TestClient(app) as client:
            response = client.post("/index-scan", json=body, headers=AUTH)

    assert response.status_code == 400
    assert message in response.json()["detail"]
    mock_panel.assert_not_called()
    mock_run.assert_not_called()


def test_index_scan_panel_failure_returns_502(patched_quarter):
    app, _ = make_app()
    with patch("api.routes.fetch_panel", side_effect=PanelError("Failed to fetch panel: 500")), \
            patch("api.routes.run_index_scan") as mock_run:
        with TestClient(app) as client:
            response = client.post("/index-scan", json={}, headers=AUTH)

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to fetch panel"
    mock_run.assert_not_called()


@pytest.mark.parametrize("panel", [[], ["../../etc/passwd", "owner/repo;rm -rf"]])
def test_index_scan_empty_panel_reports_error_without_running(patched_quarter, panel):
    app, _ = make_app()
    with patch("api.routes.fetch_panel", return_value=panel), \
            patch("api.routes.run_index_scan") as mock_run:
        with TestClient(app) as client:
            response = client.post("/index-scan", json={}, headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"error": "No repos in panel", "quarter": "2025-Q1"}
    mock_run.assert_not_called()


def test_index_scan_malformed_body_returns_400():
    app, _ = make_app()
    with TestClient(app) as client:
        response = client.post("/index-scan", json={"scan_dates": "2025-01-01"}, headers=AUTH)
    assert response.status_code == 400
