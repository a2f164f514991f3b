# Overview: Service-layer tenant checks; site, user and organization scoping with audit of denials.

"""
Tenant Scoping

Any site or user id that arrives from outside (request bodies, query
strings, CLI options, sync jobs) is checked here against the caller's
organization before it is used:

    site = require_site_in_org(site_id, g.org_id)

A site in another organization is reported exactly like a missing one,
and both are written to security_events as CROSS_TENANT_ACCESS_DENIED.
"""

from flask import g, has_request_context, request

from ..extensions import db
from ..models import Site, Organization, User
from .permission_service import log_security_event


class TenantAccessError(Exception):
    """Raised when a resource is outside the caller's organization."""
    pass


def _request_details() -> dict:
    """Who and where, when called inside a request; empty for CLI and jobs."""
    if not has_request_context():
        return {}
    current_user = getattr(g, "current_user", None)
    return {
        "user_id": current_user.id if current_user is not None else None,
        "resource": request.path,
        "action": request.method,
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def _deny(reason: str, org_id: int, site_id: int | None = None) -> None:
    details = {"user_id": None, **_request_details()}
    log_security_event(
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        reason=reason,
        org_id=org_id,
        site_id=site_id,
        **details,
    )


def require_site_in_org(site_id: int, org_id: int) -> Site:
    site = db.session.get(Site, site_id)
    if site is None:
        _deny(f"Site {site_id} not found", org_id)
        raise TenantAccessError("Site not found")
    if site.org_id != org_id:
        _deny(f"Site {site_id} belongs to org {site.org_id}, not {org_id}", org_id, site_id)
        raise TenantAccessError("Site not found")
    return site


def require_user_in_org(user_id: int | None, org_id: int) -> User | None:
    """
    Check the initiating user is an active member of org_id.

    None means system-initiated (CLI, scheduler) and passes through.
    """
    if user_id is None:
        return None

    user = db.session.get(User, user_id)
    if user is None or user.org_id != org_id or not user.is_active:
        _deny(f"User {user_id} is not an active member of org {org_id}", org_id)
        raise TenantAccessError("User not authorized for this organization")
    return user


def get_org_sites(org_id: int, active_only: bool = True) -> list[Site]:
    query = db.session.query(Site).filter(Site.org_id == org_id)
    if active_only:
        query = query.filter(Site.is_active.is_(True))
    return query.order_by(Site.name).all()


def validate_org_active(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if org is None:
        raise TenantAccessError("Organization not found")
    if not org.is_active:
        raise TenantAccessError("Organization is not active")
    return org
