"""Test health check endpoint and startup sweep."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def test_health_check():
    """Test that /health returns 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_startup_sweeps_stale_reports():
    with patch("app.main.expire_stale_reports", return_value=2) as sweep:
        with TestClient(app) as started:
            assert started.get("/health").status_code == 200

    sweep.assert_called_once_with()


def test_startup_sweep_failure_does_not_block_startup():
    with patch("app.main.expire_stale_reports", side_effect=ConnectionError("down")):
        with TestClient(app) as started:
            assert started.get("/health").status_code == 200
