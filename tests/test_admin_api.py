"""Tests for the API-key protected admin endpoints."""

import pytest

from tests.helpers import ADMIN_KEY, admin_headers, client_headers

BLOCKED_IP = "198.51.100.40"


class TestAuthentication:
    def test_missing_key_is_401(self, client):
        response = client.get("/admin/blacklist", headers=client_headers("203.0.113.1"))

        assert response.status_code == 401
        assert response.json()["error"] == "missing_api_key"

    def test_invalid_key_is_401(self, client):
        response = client.get(
            "/admin/blacklist",
            headers=client_headers("203.0.113.1", **{"X-API-Key": "wrong"}),
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_api_key"

    def test_bearer_token_is_accepted(self, client):
        response = client.get(
            "/admin/whitelist",
            headers=client_headers("203.0.113.1", Authorization=f"Bearer {ADMIN_KEY}"),
        )

        assert response.status_code == 200

    def test_failed_attempts_lock_out_after_login_limit(self, client):
        ip = "203.0.113.9"
        for _ in range(5):
            response = client.get("/admin/blacklist", headers=client_headers(ip, **{"X-API-Key": "guess"}))
            assert response.status_code == 401

        locked = client.get("/admin/blacklist", headers=admin_headers(ip))

        assert locked.status_code == 429
        assert "Retry-After" in locked.headers
        assert client.get("/admin/blacklist", headers=admin_headers("203.0.113.10")).status_code == 200

    def test_public_routes_need_no_key(self, client):
        assert client.get("/api/health").status_code == 200


class TestBlacklistAdmin:
    def test_add_list_and_remove(self, client):
        created = client.post(
            "/admin/blacklist",
            json={"ip_address": BLOCKED_IP, "reason": "credential stuffing", "duration": 600},
            headers=admin_headers(),
        )

        assert created.status_code == 201
        entry = created.json()["entry"]
        assert entry["ip_address"] == BLOCKED_IP
        assert entry["status"] == "temporary"
        assert entry["added_by"].startswith("apikey:")

        listing = client.get("/admin/blacklist?page=1&limit=10", headers=admin_headers()).json()
        assert listing["pagination"]["total"] == 1
        assert listing["stats"] == {"total": 1, "auto": 0, "manual": 1}

        blocked = client.get(
            "/api/proxy",
            params={"url": "https://api.example.com/"},
            headers=client_headers(BLOCKED_IP),
        )
        assert blocked.status_code == 403

        removed = client.delete(f"/admin/blacklist/{entry['id']}", headers=admin_headers())
        assert removed.status_code == 200

        allowed = client.get(
            "/api/proxy",
            params={"url": "https://api.example.com/"},
            headers=client_headers(BLOCKED_IP),
        )
        assert allowed.status_code == 200

    def test_permanent_entry_without_duration(self, client):
        created = client.post(
            "/admin/blacklist",
            json={"user_agent_hash": "a" * 64, "reason": "known bad tool"},
            headers=admin_headers(),
        )

        assert created.status_code == 201
        assert created.json()["entry"]["status"] == "permanent"
        assert created.json()["entry"]["expires_at"] is None

    def test_entry_needs_an_identity(self, client):
        response = client.post("/admin/blacklist", json={"reason": "nobody"}, headers=admin_headers())

        assert response.status_code == 400

    @pytest.mark.parametrize("duration", [0, -5])
    def test_duration_must_be_positive(self, client, duration):
        response = client.post(
            "/admin/blacklist",
            json={"ip_address": BLOCKED_IP, "reason": "x", "duration": duration},
            headers=admin_headers(),
        )

        assert response.status_code == 422

    def test_remove_unknown_entry_is_404(self, client):
        assert client.delete("/admin/blacklist/999", headers=admin_headers()).status_code == 404


class TestWhitelistAdmin:
    def test_add_enforces_and_remove(self, make_client):
        client = make_client(whitelist_enabled=True)
        target = {"url": "https://api.partner.org/v1"}

        assert client.get("/api/proxy", params=target, headers=client_headers("192.0.2.1")).status_code == 403

        added = client.post("/admin/whitelist", json={"domain": "Partner.org"}, headers=admin_headers())
        assert added.status_code == 201
        assert added.json()["domain"] == "partner.org"

        duplicate = client.post("/admin/whitelist", json={"domain": "partner.org"}, headers=admin_headers())
        assert duplicate.status_code == 409

        listing = client.get("/admin/whitelist", headers=admin_headers()).json()
        assert listing == {"enabled": True, "domains": ["partner.org"], "count": 1}

        assert client.get("/api/proxy", params=target, headers=client_headers("192.0.2.1")).status_code == 200

        assert client.delete("/admin/whitelist/partner.org", headers=admin_headers()).status_code == 200
        assert client.delete("/admin/whitelist/partner.org", headers=admin_headers()).status_code == 404

    def test_admin_calls_use_strict_tier(self, client):
        for _ in range(30):
            assert client.get("/admin/whitelist", headers=admin_headers()).status_code == 200

        limited = client.get("/admin/whitelist", headers=admin_headers())

        assert limited.status_code == 429
        assert limited.json()["error"] == "rate_limited"
