# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for sites, users
and registry caches.

These tests create two organizations with separate sites and users, then
verify that:
1. Passing a foreign site_id is rejected with the same error as a missing site
2. Registry caches and mappings of one org are never visible to another
3. Security events are logged for cross-tenant access attempts
4. Sessions carry the org context and die with the organization
"""

import pytest
from sqlalchemy.exc import IntegrityError

from canopy.models import ImmutableRecordError, RegistryItemCache, SecurityEvent, Site, User
from canopy.services import cache_service, mapping_service
from canopy.services.auth_service import hash_password
from canopy.services.session_service import create_session, validate_session
from canopy.services.tenant_service import (
    TenantAccessError,
    get_org_sites,
    require_site_in_org,
    require_user_in_org,
    validate_org_active,
)


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_require_site_in_org_valid(self, db_session, org_a, site_a):
        """Site in its own org passes validation."""
        result = require_site_in_org(site_a.id, org_a.id)
        assert result.id == site_a.id

    def test_foreign_and_missing_sites_look_the_same(self, db_session, org_a, site_b):
        with pytest.raises(TenantAccessError) as foreign:
            require_site_in_org(site_b.id, org_a.id)
        with pytest.raises(TenantAccessError) as missing:
            require_site_in_org(99999, org_a.id)

        assert str(foreign.value) == str(missing.value) == "Site not found"

    def test_get_org_sites(self, db_session, org_a, org_b, site_a, site_b):
        """get_org_sites returns only sites for that org."""
        assert [s.id for s in get_org_sites(org_a.id)] == [site_a.id]
        assert [s.id for s in get_org_sites(org_b.id)] == [site_b.id]

    def test_cross_tenant_access_logs_security_event(self, db_session, app, org_a, site_b):
        """Cross-tenant access attempt is logged with request details."""
        with app.test_request_context("/api/compliance/cache/items", method="GET"):
            with pytest.raises(TenantAccessError):
                require_site_in_org(site_b.id, org_a.id)

        event = db_session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS_DENIED").one()
        assert event.org_id == org_a.id
        assert event.resource == "/api/compliance/cache/items"
        assert event.action == "GET"

    def test_logged_without_request_context(self, db_session, org_a, site_b):
        """CLI callers have no request; the attempt is still recorded."""
        with pytest.raises(TenantAccessError):
            require_site_in_org(site_b.id, org_a.id)

        event = db_session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS_DENIED").one()
        assert event.resource is None

    def test_require_user_in_org(self, db_session, org_a, user_a, user_b):
        assert require_user_in_org(user_a.id, org_a.id).id == user_a.id
        assert require_user_in_org(None, org_a.id) is None
        with pytest.raises(TenantAccessError):
            require_user_in_org(user_b.id, org_a.id)

    def test_validate_org_active(self, db_session, org_a):
        assert validate_org_active(org_a.id).id == org_a.id

        org_a.is_active = False
        db_session.commit()

        with pytest.raises(TenantAccessError, match="not active"):
            validate_org_active(org_a.id)


class TestSessionTenantContext:
    """Test that sessions carry tenant context."""

    def test_session_captures_org_and_site(self, db_session, user_a, org_a, site_a):
        session, token = create_session(user_id=user_a.id)

        assert session.org_id == org_a.id
        assert session.site_id == site_a.id

    def test_validate_session_returns_org_context(self, db_session, user_a, org_a):
        session, token = create_session(user_id=user_a.id)

        context = validate_session(token)

        assert context is not None
        assert context.org_id == org_a.id
        assert context.user.id == user_a.id

    def test_session_invalid_when_org_deactivated(self, db_session, user_a, org_a):
        session, token = create_session(user_id=user_a.id)

        org_a.is_active = False
        db_session.commit()

        assert validate_session(token) is None
        db_session.refresh(session)
        assert session.is_revoked is True
        assert session.revoked_reason == "Organization deactivated"

    def test_no_session_for_inactive_org(self, db_session, user_a, org_a):
        org_a.is_active = False
        db_session.commit()

        with pytest.raises(ValueError, match="not active"):
            create_session(user_id=user_a.id)


class TestUserAndSiteScoping:
    """Names unique per org, not globally."""

    def test_same_username_different_orgs(self, db_session, org_a, org_b, site_a, site_b):
        first = User(
            org_id=org_a.id,
            site_id=site_a.id,
            username="grower",
            email="grower@acme.com",
            password_hash=hash_password("Password123!"),
        )
        second = User(
            org_id=org_b.id,
            site_id=site_b.id,
            username="grower",
            email="grower@beta.com",
            password_hash=hash_password("Password123!"),
        )
        db_session.add_all([first, second])
        db_session.commit()

        assert first.id != second.id

    def test_same_site_code_different_orgs(self, db_session, org_a, org_b):
        db_session.add_all([
            Site(org_id=org_a.id, name="North", code="NORTH", state_code="CO"),
            Site(org_id=org_b.id, name="North", code="NORTH", state_code="CO"),
        ])
        db_session.commit()

        assert db_session.query(Site).filter_by(code="NORTH").count() == 2

    def test_duplicate_site_code_same_org_fails(self, db_session, org_a):
        db_session.add(Site(org_id=org_a.id, name="North", code="NORTH"))
        db_session.commit()

        db_session.add(Site(org_id=org_a.id, name="North Annex", code="NORTH"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


class TestRegistryCacheIsolation:
    """Cached registry data is keyed by org and site."""

    def test_items_not_visible_across_orgs(self, db_session, org_a, org_b, site_a, site_b):
        db_session.add_all([
            RegistryItemCache(org_id=org_a.id, site_id=site_a.id, registry_item_id="1", name="A Buds"),
            RegistryItemCache(org_id=org_b.id, site_id=site_b.id, registry_item_id="1", name="B Buds"),
        ])
        db_session.commit()

        assert [i.name for i in cache_service.list_cached_items(org_a.id, site_a.id)] == ["A Buds"]
        assert cache_service.list_cached_items(org_a.id, site_b.id) == []

    def test_mappings_not_visible_across_orgs(self, db_session, org_a, org_b, linked_site_a):
        assert len(mapping_service.list_mappings(org_a.id)) == 1
        assert mapping_service.list_mappings(org_b.id) == []


class TestSecurityEventAudit:
    """Security events are append-only."""

    def test_event_cannot_be_edited(self, db_session, org_a, site_b):
        with pytest.raises(TenantAccessError):
            require_site_in_org(site_b.id, org_a.id)
        event = db_session.query(SecurityEvent).one()

        event.reason = "edited"
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()
