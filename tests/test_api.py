"""HTTP API tests. The app runs its real startup with the mock local engine."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import VALID_API_KEY, make_png
from menu_ocr.core.errors import NetworkError, ProcessingError, StateError
from menu_ocr.main import create_app


@pytest.fixture()
def client():
    with TestClient(create_app()) as c:
        yield c


def _upload(content_type: str = "image/png", data: bytes | None = None):
    return {"file": ("menu.png", data if data is not None else make_png(), content_type)}


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_root(client: TestClient) -> None:
    assert client.get("/").json()["docs"] == "/docs"


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------

def test_recognize_runs_local_only_without_cloud_key(client: TestClient) -> None:
    resp = client.post("/ocr/recognize", files=_upload())

    assert resp.status_code == 200
    body = resp.json()
    assert body["source"] == "local_only"
    assert body["confidence"] == 87
    assert body["full_text"].startswith("Paella valenciana")
    assert len(body["lines"]) == 2
    assert body["processing"]["cloud_available"] is False
    assert body["processing"]["fallback_reason"] is None


def test_recognize_passes_confidence_floor(client: TestClient) -> None:
    resp = client.post("/ocr/recognize", files=_upload(), data={"confidence_floor": "90"})
    assert resp.status_code == 200
    assert [w["text"] for w in resp.json()["words"]] == ["Paella", "Gazpacho"]


def test_recognize_rejects_unsupported_type(client: TestClient) -> None:
    resp = client.post("/ocr/recognize", files=_upload("application/pdf"))
    assert resp.status_code == 415


def test_recognize_rejects_empty_upload(client: TestClient) -> None:
    resp = client.post("/ocr/recognize", files=_upload(data=b""))
    assert resp.status_code == 400


def test_recognize_updates_status_statistics(client: TestClient) -> None:
    client.post("/ocr/recognize", files=_upload())
    client.post("/ocr/recognize", files=_upload(), data={"force_local": "true"})

    status = client.get("/ocr/status").json()

    assert status["initialized"] is True
    assert status["has_cloud"] is False
    assert status["has_local"] is True
    assert status["statistics"]["total_processed"] == 2
    assert status["statistics"]["local_used_count"] == 2
    assert status["engines"]["cloud"] is None


def test_compare_without_cloud(client: TestClient) -> None:
    resp = client.post("/ocr/compare", files=_upload())
    assert resp.status_code == 200
    body = resp.json()
    assert body["cloud"] is None
    assert body["comparison"] is None
    assert body["local"]["confidence"] == 87


def test_recommendation_without_cloud(client: TestClient) -> None:
    resp = client.post("/ocr/recommendation", json={"is_online": True, "battery_level": 0.9})
    assert resp.json() == {"method": "local", "reason": "No cloud vision API key configured"}


# ---------------------------------------------------------------------------
# Credential
# ---------------------------------------------------------------------------

def test_invalid_credential_is_rejected(client: TestClient) -> None:
    resp = client.put("/ocr/credential", json={"api_key": "short"})
    assert resp.status_code == 400
    assert "too short" in resp.json()["detail"]


def test_valid_credential_enables_cloud(client: TestClient) -> None:
    resp = client.put("/ocr/credential", json={"api_key": VALID_API_KEY})
    assert resp.status_code == 200
    assert resp.json()["has_cloud"] is True

    resp = client.put("/ocr/credential", json={"api_key": None})
    assert resp.json()["has_cloud"] is False


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "error,status",
    [
        (StateError("not initialized"), 503),
        (ProcessingError("OCR processing failed: boom"), 502),
        (NetworkError("Network error"), 502),
    ],
)
def test_recognition_errors_map_to_http(client: TestClient, error, status) -> None:
    coordinator = MagicMock()
    coordinator.process_image = AsyncMock(side_effect=error)
    coordinator.cleanup = AsyncMock()
    client.app.state.coordinator = coordinator

    resp = client.post("/ocr/recognize", files=_upload())

    assert resp.status_code == status
    assert resp.json()["detail"] == str(error)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

def test_usage_endpoints(client: TestClient) -> None:
    resp = client.get("/usage")
    assert resp.status_code == 200
    body = resp.json()
    assert body["monthly_limit"] == 500
    assert body["days_remaining"] is not None
    assert body["projected_calls"] is not None

    assert client.get("/usage/history").status_code == 200


def test_usage_returns_404_without_tracker(client: TestClient) -> None:
    client.app.state.usage_tracker = None
    assert client.get("/usage").status_code == 404
