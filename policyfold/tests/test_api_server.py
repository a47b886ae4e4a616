from __future__ import annotations

import io
from pathlib import Path

from fastapi.testclient import TestClient

SAMPLE = Path(__file__).parent / "data" / "userflow_export.xml"


def _client(monkeypatch, **env) -> TestClient:
    for name in ("POLICYFOLD_MAX_POLICY_BYTES", "POLICYFOLD_REMOVE_UNREFERENCED", "POLICYFOLD_MAX_UPLOAD_BYTES"):
        monkeypatch.delenv(name, raising=False)
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    from policyfold.api.server import create_app

    return TestClient(create_app())


def _upload(payload: bytes):
    return {"file": ("export.xml", io.BytesIO(payload), "application/xml")}


def test_health_reports_budget(monkeypatch):
    client = _client(monkeypatch, POLICYFOLD_MAX_POLICY_BYTES="4096")

    r = client.get("/health")

    assert r.status_code == 200
    assert r.json() == {"ok": True, "max_policy_bytes": 4096}
    assert r.headers.get("x-request-id")


def test_convert_returns_xml_policies_and_events(monkeypatch):
    client = _client(monkeypatch)

    r = client.post(
        "/convert",
        files=_upload(SAMPLE.read_bytes()),
        data={"remove_unreferenced_objects": "true"},
        headers={"X-Request-ID": "req-123"},
    )

    assert r.status_code == 200
    assert r.headers["x-request-id"] == "req-123"
    data = r.json()
    assert [p["policy_id"] for p in data["policies"]] == ["B2C_1A_susi", "B2C_1A_susi_base"]
    assert len(data["removed_objects"]) == 5
    assert data["removed_objects"][0]["object_id"] == "UnusedProfile"
    assert data["event_counts"]["PolicyRenamedEvent"] == 2
    assert data["xml"].startswith("<TrustFrameworkPolicies")


def test_convert_form_budget_overrides_server_default(monkeypatch):
    client = _client(monkeypatch)

    r = client.post("/convert", files=_upload(SAMPLE.read_bytes()), data={"max_policy_bytes": "1200"})

    assert r.status_code == 200
    policies = r.json()["policies"]
    assert len(policies) > 2
    assert all(p["size_bytes"] <= 1200 for p in policies)


def test_conversion_errors_map_to_422(monkeypatch):
    client = _client(monkeypatch)

    r = client.post("/convert", files=_upload(b"<Wrong/>"))

    assert r.status_code == 422
    assert r.json()["detail"]["error"] == "StructuralError"

    r2 = client.post("/convert", files=_upload(SAMPLE.read_bytes()), data={"max_policy_bytes": "100"})
    assert r2.status_code == 422
    assert r2.json()["detail"]["error"] == "ProgressError"


def test_upload_limit_returns_413(monkeypatch):
    client = _client(monkeypatch, POLICYFOLD_MAX_UPLOAD_BYTES="64")

    r = client.post("/inspect", files=_upload(SAMPLE.read_bytes()))

    assert r.status_code == 413


def test_inspect_describes_uploaded_set(monkeypatch):
    client = _client(monkeypatch)

    r = client.post("/inspect", files=_upload(SAMPLE.read_bytes()))

    assert r.status_code == 200
    data = r.json()
    assert data["policy_count"] == 2
    assert data["policies"][1]["object_counts"]["TechnicalProfile"] == 3


def test_convert_response_names_its_conversion(monkeypatch):
    client = _client(monkeypatch)

    r = client.post("/convert", files=_upload(SAMPLE.read_bytes()))
    failed = client.post("/convert", files=_upload(b"<Wrong/>"))
    health = client.get("/health")

    assert r.headers["x-conversion-id"] == r.json()["context_id"]
    assert failed.status_code == 422
    assert failed.headers.get("x-conversion-id")
    assert "x-conversion-id" not in health.headers


def test_unsafe_request_id_is_replaced(monkeypatch):
    client = _client(monkeypatch)

    r = client.get("/health", headers={"X-Request-ID": "bad id with spaces!"})
    long = client.get("/health", headers={"X-Request-ID": "a" * 129})

    assert r.headers["x-request-id"] != "bad id with spaces!"
    assert len(r.headers["x-request-id"]) == 32
    assert long.headers["x-request-id"] != "a" * 129
