# Overview: Request decorators for API routes; session auth, permission gates, site scoping.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError
from .services.tenant_service import TenantAccessError, require_site_in_org


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Resolve the bearer session and establish tenant context.

    Sets g.current_user, g.org_id, g.site_id (the user's home site, may be
    None) and g.session_context. Returns 401 for a missing, unknown,
    expired or idle token, and for sessions whose user or organization
    has been deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.site_id = context.site_id
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Gate a route on one permission code. Apply below @require_auth.

    Denials are recorded as PERMISSION_DENIED security events and answered
    with 403 naming the missing code.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if getattr(g, "current_user", None) is None:
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    user_id=g.current_user.id,
                    permission_code=permission_code,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    org_id=g.org_id,
                    site_id=g.site_id,
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_site_param(f):
    """
    Read ?site_id= and check it belongs to the caller's organization.

    The validated Site is passed to the route as the `site` keyword.
    400 when site_id is missing, 404 (logged as a cross-tenant attempt)
    when the site is unknown or owned by another organization.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        site_id = request.args.get("site_id", type=int)
        if site_id is None:
            return jsonify({"error": "site_id is required"}), 400

        try:
            kwargs["site"] = require_site_in_org(site_id, g.org_id)
        except TenantAccessError as e:
            return jsonify({"error": str(e)}), 404

        return f(*args, **kwargs)

    return decorated_function
