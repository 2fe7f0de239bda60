"""Tests for the trigger endpoints and admin gate."""
import link_assigner
import scrape_sources


class TestTriggerEndpoints:
    """Each stage answers with its JSON summary."""

    def test_scan(self, client, monkeypatch):
        monkeypatch.setattr(scrape_sources, "default_adapters", lambda: [])

        resp = client.post("/api/scan")

        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "count": 0, "matches": [], "errors": [], "sources": {}}

    def test_check_links_with_empty_store(self, client):
        body = client.post("/api/check-links").get_json()
        assert body["success"] is True
        assert body["tested"] == 0

    def test_sync_status(self, client):
        body = client.get("/api/sync-status").get_json()
        assert body == {"success": True, "updated": 0, "deactivated": 0}

    def test_assign_failure_becomes_json_error(self, client, monkeypatch):
        def boom(db, pool=None):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(link_assigner, "assign_links", boom)

        resp = client.post("/api/assign-links")

        assert resp.status_code == 500
        assert resp.get_json() == {"success": False, "error": "store unavailable"}


class TestAdminGate:
    """Optional shared key via X-API-Key or bearer token."""

    def test_rejects_without_key(self, client, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "s3cret")
        assert client.post("/api/sync-status").status_code == 401

    def test_accepts_bearer(self, client, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "s3cret")
        resp = client.post("/api/sync-status", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200

    def test_accepts_api_key_header(self, client, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "s3cret")
        resp = client.post("/api/sync-status", headers={"X-API-Key": "s3cret"})
        assert resp.status_code == 200


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"ok": True, "events": 0, "snapshot": 0}
