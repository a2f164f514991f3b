# Overview: Pytest coverage for authentication and role-based access to the API.

"""
Authorization tests

Verifies:
- Unauthenticated requests return 401
- Grower role is limited to viewing compliance data and managing batches
- Admin role can run syncs and manage links and credentials
- Failed logins leave a security event
"""

import pytest

from canopy.models import SecurityEvent
from conftest import TEST_PASSWORD, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/compliance/sync"),
            ("GET", "/api/compliance/sync-logs"),
            ("GET", "/api/compliance/mappings"),
            ("GET", "/api/compliance/cache/items?site_id=1"),
            ("GET", "/api/compliance/cache/facilities"),
            ("POST", "/api/compliance/sites/1/link-facility"),
            ("POST", "/api/compliance/plant-batches/1/import"),
            ("POST", "/api/compliance/lots/1/push"),
            ("POST", "/api/compliance/batches/1/transition"),
            ("GET", "/api/compliance/credentials"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, db_session):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# GROWER ROLE
# =============================================================================


class TestGrowerAccess:
    """Growers see compliance data but cannot change registry state."""

    def test_can_view_sync_logs(self, client, grower_headers):
        resp = client.get("/api/compliance/sync-logs", headers=grower_headers)
        assert resp.status_code == 200

    def test_can_view_cached_facilities(self, client, grower_headers):
        resp = client.get("/api/compliance/cache/facilities", headers=grower_headers)
        assert resp.status_code == 200

    def test_cannot_link_facility(self, client, grower_headers, site_a):
        resp = client.post(
            f"/api/compliance/sites/{site_a.id}/link-facility",
            json={"license_number": "LIC-100"},
            headers=grower_headers,
        )
        assert resp.status_code == 403

    def test_cannot_push_lot(self, client, grower_headers):
        resp = client.post("/api/compliance/lots/1/push", headers=grower_headers)
        assert resp.status_code == 403

    def test_cannot_import_plant_batch(self, client, grower_headers):
        resp = client.post("/api/compliance/plant-batches/1/import", headers=grower_headers)
        assert resp.status_code == 403

    def test_denial_is_logged(self, client, grower_headers, grower_a, db_session):
        client.get("/api/compliance/credentials", headers=grower_headers)

        event = db_session.query(SecurityEvent).filter_by(
            event_type="PERMISSION_DENIED", user_id=grower_a.id
        ).one()
        assert event.resource == "/api/compliance/credentials"
        assert event.success is False


# =============================================================================
# ADMIN ROLE
# =============================================================================


class TestAdminAccess:
    """Admins hold every compliance permission."""

    def test_me_lists_permissions(self, client, admin_headers, org_a):
        resp = client.get("/api/auth/me", headers=admin_headers)

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["org_id"] == org_a.id
        for code in ("RUN_COMPLIANCE_SYNC", "PUSH_COMPLIANCE", "MANAGE_COMPLIANCE_LINKS", "MANAGE_REGISTRY_CREDENTIALS"):
            assert code in body["permissions"]

    def test_can_list_credentials(self, client, admin_headers):
        resp = client.get("/api/compliance/credentials", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_mappings(self, client, admin_headers):
        resp = client.get("/api/compliance/mappings", headers=admin_headers)
        assert resp.status_code == 200


# =============================================================================
# LOGIN
# =============================================================================


class TestLogin:

    def test_bad_password(self, client, user_a, db_session):
        resp = client.post("/api/auth/login", json={"username": "user_a", "password": "wrong-password"})

        assert resp.status_code == 401
        assert db_session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").count() == 1

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "user_a"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, user_a):
        token = get_auth_token(client, "user_a", TEST_PASSWORD)
        headers = {"Authorization": f"Bearer {token}"}

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================


class TestPublicEndpoints:

    def test_health(self, client, db_session):
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] in ("healthy", "degraded")
        assert set(body["checks"]) == {"database", "auth_service", "registry"}

    def test_version(self, client, db_session):
        resp = client.get("/version")

        assert resp.status_code == 200
        assert resp.get_json()["api_version"] == "0.4.0"
