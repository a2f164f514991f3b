# Overview: Flask API routes for login, logout and the current session.

# backend/canopy/routes/auth.py
"""
Session API routes

There is no self-registration; accounts come from `flask system init`.
A successful login returns a bearer token whose org and site context is
fixed for its lifetime. Failed logins leave a LOGIN_FAILED security event.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..services import auth_service, permission_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _client_info() -> dict:
    return {
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def _session_payload(user, org_id, site_id) -> dict:
    return {
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
        "org_id": org_id,
        "site_id": site_id,
    }


@auth_bp.post("/login")
def login_route():
    """
    Request body: {"username": "...", "password": "..."}

    "email" is accepted in place of "username".
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("username") or data.get("email")
    password = data.get("password")
    if not identifier or not password:
        return jsonify({"error": "username/email and password required"}), 400

    client = _client_info()
    try:
        user = auth_service.authenticate(identifier, password)
        if user is None:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for {identifier}",
                **client,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user_id=user.id, **client)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to log in %s", identifier)
        return jsonify({"error": "Internal server error"}), 500

    payload = _session_payload(user, session.org_id, session.site_id)
    payload.update(token=token, session=session.to_dict())
    return jsonify(payload), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the bearer token used for this request."""
    try:
        session_service.revoke(g.session_context.session, "User logout")
    except Exception:
        current_app.logger.exception("Failed to revoke session %s", g.session_context.session.id)
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(_session_payload(g.current_user, g.org_id, g.site_id)), 200
