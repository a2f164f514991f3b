# backend/canopy/routes/system.py
"""
Health and version endpoints (no authentication).

/health reports the database, the seeded auth tables and the registry
configuration. It never calls the registry itself.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Organization, Site, User, Role, Permission, RegistryCredential
from canopy.time_utils import to_utc_z, utcnow

API_VERSION = "0.4.0"

system_bp = Blueprint("system", __name__)


def _timed(name: str, check) -> dict:
    """Run one check, attach latency, and turn an exception into 'unhealthy'."""
    started = time.perf_counter()
    try:
        result = check()
    except Exception:
        current_app.logger.exception("%s health check failed", name)
        result = {"status": "unhealthy", "error": f"{name} error"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def _database() -> dict:
    return {
        "status": "healthy",
        "details": {
            "organizations": db.session.query(Organization).count(),
            "sites": db.session.query(Site).count(),
            "users": db.session.query(User).count(),
        },
    }


def _auth_tables() -> dict:
    details = {
        "permission_count": db.session.query(Permission).count(),
        "role_count": db.session.query(Role).count(),
    }
    if details["permission_count"] == 0:
        return {
            "status": "degraded",
            "warning": "Permissions not initialized. Run: flask system init",
            "details": details,
        }
    return {"status": "healthy", "details": details}


def _registry_config() -> dict:
    config = current_app.config
    vendor_keys = [
        key for key, value in config.items()
        if key.startswith("REGISTRY_VENDOR_KEY") and value
    ]
    details = {
        "test_mode": bool(config.get("REGISTRY_TEST_MODE")),
        "vendor_keys_configured": len(vendor_keys),
        "active_credentials": db.session.query(RegistryCredential).filter_by(is_active=True).count(),
        "timeout_seconds": config.get("REGISTRY_TIMEOUT_SECONDS"),
    }
    if not vendor_keys:
        return {"status": "degraded", "warning": "No REGISTRY_VENDOR_KEY configured", "details": details}
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """200 while healthy or degraded, 503 once any check is unhealthy."""
    started = time.perf_counter()
    checks = {
        "database": _timed("Database", _database),
        "auth_service": _timed("Auth service", _auth_tables),
        "registry": _timed("Registry config", _registry_config),
    }

    statuses = {check["status"] for check in checks.values()}
    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
