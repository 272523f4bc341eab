"""Tests for correlation ID header on all responses."""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

import app.main as main_module
from app.database import get_db
from app.main import app
from app.middleware.rate_limit import limiter


def test_correlation_id_on_success(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert "X-Correlation-ID" in response.headers
    assert len(response.headers["X-Correlation-ID"]) == 8  # 4 bytes as hex


def test_correlation_id_on_json_error(client):
    response = client.get("/api/v1/skills/download?token=dl_unknown")
    assert response.status_code == 404
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_validation_error(client, api_headers):
    response = client.post("/api/v1/internal/agent-keys", json={"owner_id": ""}, headers=api_headers)
    assert response.status_code == 422
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_unauthorized_error(client):
    response = client.post(
        "/api/v1/skills/download-token", json={"skill_id": "s"}, headers={"Authorization": "InvalidFormat"}
    )
    assert response.status_code == 401
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_unhandled_exception(db_session, patched_settings, monkeypatch):
    """Unhandled exceptions get a generic 500 that still carries the correlation ID, and an alert."""
    from app.services.certification_engine import CertificationEngine

    def raise_error(*args, **kwargs):
        raise RuntimeError("Unexpected failure")

    monkeypatch.setattr(CertificationEngine, "list_criteria", raise_error)

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    original_engine = main_module.engine
    main_module.engine = db_session.get_bind()

    try:
        with patch("app.main.send_error_alert", new_callable=AsyncMock) as alert:
            with TestClient(app, raise_server_exceptions=False) as test_client:
                response = test_client.get("/api/v1/certification/criteria")

        assert response.status_code == 500
        assert len(response.headers["X-Correlation-ID"]) == 8
        assert response.json()["detail"] == "Internal Server Error"
        assert "Unexpected failure" not in response.text
        alert.assert_awaited_once()
        assert alert.call_args.kwargs["error_type"] == "RuntimeError"
        assert alert.call_args.kwargs["correlation_id"] == response.headers["X-Correlation-ID"]
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True
        main_module.engine = original_engine


def test_correlation_ids_unique_across_requests(client):
    corr_id_1 = client.get("/health").headers.get("X-Correlation-ID")
    corr_id_2 = client.get("/health").headers.get("X-Correlation-ID")
    assert corr_id_1 != corr_id_2, "Correlation IDs should be unique across requests"


def test_persistence_error_is_generic(client, monkeypatch):
    from app.services.certification_engine import CertificationEngine
    from app.services.errors import PersistenceError

    def fail(*args, **kwargs):
        raise PersistenceError("certification.list_criteria")

    monkeypatch.setattr(CertificationEngine, "list_criteria", fail)

    response = client.get("/api/v1/certification/criteria")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error"}
    assert "certification" not in response.text
    assert len(response.headers["X-Correlation-ID"]) == 8
