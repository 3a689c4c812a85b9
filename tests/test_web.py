"""Tests for the genswap REST API."""

import tempfile
from pathlib import Path

import yaml
from fastapi.testclient import TestClient

from genswap.config import parse_config
from web.backend.app.deps import get_config
from web.backend.app.main import app


def _config(tmpdir, revision_id="R1"):
    root = Path(tmpdir)
    (root / "revision.yaml").write_text(yaml.dump({"id": revision_id, "components": ["nginx"]}))
    return parse_config(
        {
            "home": str(root / "state"),
            "targets": {
                "web-01": {
                    "source": {"type": "file", "path": "revision.yaml"},
                    "builder": {"type": "command", "command": "echo /artifacts/$GENSWAP_REVISION"},
                },
            },
        },
        base_dir=root,
    )


def _client(config):
    app.dependency_overrides[get_config] = lambda: config
    return TestClient(app)


def teardown_function():
    app.dependency_overrides.clear()


def test_root_and_health():
    client = TestClient(app)
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["name"] == "genswap API"


def test_update_then_inspect():
    with tempfile.TemporaryDirectory() as tmpdir:
        client = _client(_config(tmpdir))

        resp = client.post("/api/targets/web-01/update")
        assert resp.status_code == 200
        session = resp.json()
        assert session["outcome"] == "success"
        assert session["activated_generation_id"] == 1
        assert [s["step_name"] for s in session["steps"]] == [
            "fetch", "risk-check", "build", "stage", "activate",
        ]
        assert "Outcome:  SUCCESS" in session["report"]

        current = client.get("/api/targets/web-01/current").json()
        assert current["id"] == 1
        assert current["status"] == "active"
        assert current["revision"]["id"] == "R1"

        targets = client.get("/api/targets").json()
        assert targets[0]["name"] == "web-01"
        assert targets[0]["current_generation"]["artifact_ref"] == "/artifacts/R1"

        sessions = client.get("/api/targets/web-01/sessions").json()
        assert len(sessions) == 1
        one = client.get(f"/api/targets/web-01/sessions/{session['session_id']}")
        assert one.status_code == 200
        assert one.json()["session_id"] == session["session_id"]


def test_update_with_policy_override():
    with tempfile.TemporaryDirectory() as tmpdir:
        client = _client(_config(tmpdir))
        resp = client.post("/api/targets/web-01/update", json={"max_remediation_attempts": 42})
        assert resp.status_code == 400

        resp = client.post("/api/targets/web-01/update", json={"auto_proceed_on_critical": True})
        assert resp.status_code == 200


def test_rollback_endpoint():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _config(tmpdir)
        client = _client(config)
        client.post("/api/targets/web-01/update")

        resp = client.post("/api/targets/web-01/rollback")
        assert resp.status_code == 409
        assert "Manual action required" in resp.json()["detail"]

        (Path(tmpdir) / "revision.yaml").write_text(yaml.dump({"id": "R2", "components": ["nginx"]}))
        client.post("/api/targets/web-01/update")
        resp = client.post("/api/targets/web-01/rollback")
        assert resp.status_code == 200
        assert resp.json()["active_generation"]["id"] == 1

        generations = client.get("/api/targets/web-01/generations").json()
        assert [g["status"] for g in generations] == ["active", "rolled_back"]


def test_not_found():
    with tempfile.TemporaryDirectory() as tmpdir:
        client = _client(_config(tmpdir))
        assert client.get("/api/targets/db-01/generations").status_code == 404
        assert client.get("/api/targets/web-01/current").status_code == 404
        assert client.get("/api/targets/web-01/sessions/missing").status_code == 404
        assert client.get("/api/targets/web-01/sessions?limit=0").status_code == 422
