"""
HTTP Surface Tests

Exercises the FastAPI app through TestClient, including the typed
failure -> status code mapping.
"""

import pytest
from fastapi.testclient import TestClient

from chronicle.api.server import app

BASE = "/api/v1/projects/novel"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.delenv("CHRONICLE_STORAGE_DIR", raising=False)
    with TestClient(app) as client:
        yield client


def seed_alice(client):
    client.post(f"{BASE}/entities/alice/snapshots", json={
        "id": "K0", "entity_type": "CHARACTER", "is_keyframe": True,
        "change_type": "INITIAL", "created_at": "2026-01-01T00:00:00Z",
        "state": {"name": "Alice"}, "chapter_order": 1,
    })
    client.post(f"{BASE}/entities/alice/snapshots", json={
        "id": "D1", "entity_type": "CHARACTER", "is_keyframe": False,
        "created_at": "2026-01-01T00:01:00Z",
        "changes": {"name": {"old_value": "Alice", "new_value": "Alicia"}},
        "chapter_order": 3,
    })
    client.post(f"{BASE}/entities/alice/snapshots", json={
        "id": "D2", "entity_type": "CHARACTER", "is_keyframe": False,
        "created_at": "2026-01-01T00:02:00Z",
        "changes": {"age": {"new_value": "30"}},
        "chapter_order": 5,
    })


class TestSnapshotEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_history(self, client):
        seed_alice(client)
        response = client.get(f"{BASE}/entities/alice/snapshots")
        assert response.status_code == 200
        assert [s["id"] for s in response.json()["snapshots"]] == ["K0", "D1", "D2"]

    def test_materialize(self, client):
        seed_alice(client)
        response = client.get(f"{BASE}/snapshots/D2", params={"materialize": "true"})
        assert response.json()["state"] == {"name": "Alicia", "age": "30"}

    def test_compare(self, client):
        seed_alice(client)
        response = client.get(f"{BASE}/compare", params={"from_id": "K0", "to_id": "D2"})
        changes = response.json()["changes"]
        assert [c["field_path"] for c in changes] == ["age", "name"]
        assert changes[0]["classification"] == "added"
        assert changes[0]["old_value"] is None
        assert changes[1]["classification"] == "modified"

    def test_chapter_state_and_track(self, client):
        seed_alice(client)
        state = client.get(f"{BASE}/entities/alice/chapters/4/state").json()["state"]
        assert state == {"name": "Alicia"}
        points = client.get(f"{BASE}/entities/alice/track", params={"from_chapter": 3}).json()["points"]
        assert [p["snapshot_id"] for p in points] == ["D1", "D2"]

    def test_record_state(self, client):
        first = client.post(f"{BASE}/entities/bob/states", json={
            "entity_type": "CHARACTER", "state": {"name": "Bob"},
        })
        assert first.status_code == 201
        assert first.json()["is_keyframe"] is True
        latest = client.get(f"{BASE}/entities/bob/state").json()["state"]
        assert latest == {"name": "Bob"}

    def test_out_of_order_is_409(self, client):
        seed_alice(client)
        response = client.post(f"{BASE}/entities/alice/snapshots", json={
            "entity_type": "CHARACTER", "is_keyframe": False,
            "created_at": "2025-06-01T00:00:00Z",
            "changes": {"name": {"old_value": "Alicia", "new_value": "Al"}},
        })
        assert response.status_code == 409
        assert response.json()["error"] == "OUT_OF_ORDER"

    def test_missing_base_keyframe_is_409(self, client):
        response = client.post(f"{BASE}/entities/carol/snapshots", json={
            "entity_type": "CHARACTER", "is_keyframe": False,
            "changes": {"name": {"new_value": "Carol"}},
        })
        assert response.status_code == 409

    def test_unknown_snapshot_is_404(self, client):
        response = client.get(f"{BASE}/snapshots/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "SNAPSHOT_NOT_FOUND"

    def test_malformed_snapshot_is_422(self, client):
        response = client.post(f"{BASE}/entities/alice/snapshots", json={
            "entity_type": "CHARACTER", "is_keyframe": True,
        })
        assert response.status_code == 422

    def test_delete_entity(self, client):
        seed_alice(client)
        response = client.delete(f"{BASE}/entities/alice")
        assert response.json()["snapshots_removed"] == 3
        assert client.get(f"{BASE}/entities/alice/snapshots").json()["snapshots"] == []


class TestWarningEndpoints:

    def add(self, client, **overrides):
        body = {
            "warning_type": "NAME_CONFLICT",
            "description": "Alice is called Alicia in chapter 3",
            "severity": "error",
            "entity_id": "alice",
            "entity_type": "CHARACTER",
        }
        body.update(overrides)
        response = client.post(f"{BASE}/warnings", json=body)
        assert response.status_code == 201
        return response.json()

    def test_lifecycle(self, client):
        w1 = self.add(client)
        assert w1["status"] == "PENDING"

        resolved = client.post(f"{BASE}/warnings/{w1['id']}/resolve", json={"resolution": "fixed name"})
        assert resolved.json()["status"] == "RESOLVED"
        assert resolved.json()["resolution"] == "fixed name"
        assert resolved.json()["dismissed_at"] is None

        dismissed = client.post(f"{BASE}/warnings/{w1['id']}/dismiss")
        assert dismissed.status_code == 409
        assert dismissed.json()["error"] == "ALREADY_TERMINAL"

    def test_default_note_without_body(self, client):
        w1 = self.add(client)
        resolved = client.post(f"{BASE}/warnings/{w1['id']}/resolve")
        assert resolved.json()["resolution"] == "手动解决"

    def test_counts_and_filter(self, client):
        self.add(client)
        self.add(client, warning_type="PLOT_HOLE", severity="info", entity_id="bob")
        counts = client.get(f"{BASE}/warnings/count").json()
        assert counts == {"error": 1, "warning": 0, "info": 1, "total": 2}

        listed = client.get(f"{BASE}/warnings", params={"severity": "info"}).json()["warnings"]
        assert [w["warning_type"] for w in listed] == ["PLOT_HOLE"]

    def test_unknown_type_is_carried(self, client):
        warning = self.add(client, warning_type="dialogue_tone", severity=None)
        assert warning["warning_type"] == "DIALOGUE_TONE"
        assert warning["known_type"] is False
        assert warning["severity"] == "INFO"

    def test_bulk_dismiss(self, client):
        a = self.add(client, entity_id="a")
        b = self.add(client, entity_id="b")
        response = client.post(f"{BASE}/warnings/bulk-dismiss", json={"ids": [a["id"], b["id"], "nope"]})
        assert response.json() == {"transitioned": 2}
        dismissed = client.get(f"{BASE}/warnings/{a['id']}").json()
        assert dismissed["status"] == "DISMISSED"
        assert dismissed["dismissed_at"] is not None

    def test_unknown_warning_is_404(self, client):
        assert client.post(f"{BASE}/warnings/nope/dismiss").status_code == 404

    def test_bad_severity_filter_is_422(self, client):
        assert client.get(f"{BASE}/warnings", params={"severity": "loud"}).status_code == 422

    def test_delete_project(self, client):
        seed_alice(client)
        self.add(client)
        response = client.delete(BASE)
        assert response.json()["snapshots_removed"] == 3
        assert client.get(f"{BASE}/warnings/count").json()["total"] == 0


class TestStorageFailures:

    def test_corrupt_record_is_500(self, tmp_path, monkeypatch):
        (tmp_path / "novel.jsonl").write_text("{truncated\n", encoding="utf-8")
        monkeypatch.setenv("CHRONICLE_STORAGE_DIR", str(tmp_path))
        with TestClient(app) as client:
            response = client.get(f"{BASE}/entities/alice/snapshots")
        assert response.status_code == 500
        assert response.json()["error"] == "STORAGE_CORRUPTION"
        assert response.json()["retryable"] is False
