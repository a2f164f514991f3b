# Overview: Flask API routes for registry compliance; sync, caches, links, pushes and credentials.

# backend/canopy/routes/compliance.py
"""
Compliance API routes

Every route resolves the tenant from the session (g.org_id) and validates
any site_id from the request against it. Registry work goes through the
sync orchestrator so each attempt leaves one sync log entry.

The registry client factory can be overridden with the
REGISTRY_CLIENT_FACTORY config key (used by the test suite).
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..models import Batch, InventoryLot, RegistryCredential
from ..decorators import require_auth, require_permission, require_site_param
from ..services import (
    batch_service,
    cache_service,
    credential_service,
    link_service,
    mapping_service,
    permission_service,
    phase_service,
    sync_log_service,
    sync_orchestrator,
)
from ..services.batch_service import BatchError
from ..services.credential_service import CredentialError
from ..services.link_service import LinkConflictError, LinkError
from ..services.permission_service import PermissionDeniedError
from ..services.sync_orchestrator import SyncOptions, SyncType
from ..services.tenant_service import TenantAccessError, require_site_in_org


compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/compliance")


# Sync types that need more than RUN_COMPLIANCE_SYNC
SYNC_TYPE_PERMISSIONS = {
    SyncType.PUSH_LOT: "PUSH_COMPLIANCE",
    SyncType.PUSH_BATCH: "PUSH_COMPLIANCE",
    SyncType.PHASE_CHECK: "PUSH_COMPLIANCE",
    SyncType.SITE_LINK: "MANAGE_COMPLIANCE_LINKS",
}


def _client_factory():
    return current_app.config.get("REGISTRY_CLIENT_FACTORY") or credential_service.build_client


def _bool_arg(name: str, default: bool = False) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes")


def _limit_arg(default: int = 50, maximum: int = 500) -> int:
    limit = request.args.get("limit", default=default, type=int)
    return max(1, min(limit, maximum))


def _not_found_or_bad_request(e: Exception):
    message = str(e)
    status = 404 if "not found" in message.lower() else 400
    return jsonify({"error": message}), status


# =============================================================================
# SYNC
# =============================================================================

@compliance_bp.post("/sync")
@require_auth
@require_permission("RUN_COMPLIANCE_SYNC")
def sync_route():
    """
    Run one registry sync for a site.

    Request body:
    {
        "site_id": int,
        "sync_type": "items" | "strains" | "tags" | "plant_batches" | "facilities" |
                     "push_lot" | "push_batch" | "phase_check" | "site_link",
        "tag_type": "Plant" | "Package" | "all" (optional),
        "last_modified_start": "YYYY-MM-DD" (optional),
        "last_modified_end": "YYYY-MM-DD" (optional),
        "recent": bool (optional, last 7 days),
        "lot_id": int, "batch_id": int, "location": str, "license_number": str,
        "source_package_tag": str, "source_plant_tags": [str], ...
    }

    Returns:
        200: Sync completed (body carries per-item errors/warnings)
        400: Invalid request or sync failed
        403: Missing permission
        404: Site not found
    """
    data = request.get_json() or {}

    try:
        site_id = data.get("site_id")
        if site_id is None:
            return jsonify({"error": "site_id is required"}), 400
        sync_type = SyncType.parse(data.get("sync_type"))

        extra_permission = SYNC_TYPE_PERMISSIONS.get(sync_type)
        if extra_permission:
            permission_service.require_permission(
                user_id=g.current_user.id,
                permission_code=extra_permission,
                resource=request.path,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
                org_id=g.org_id,
                site_id=g.site_id,
            )

        require_site_in_org(int(site_id), g.org_id)

        options = SyncOptions.from_dict(data)
        if data.get("recent") and not (options.last_modified_start or options.last_modified_end):
            window = sync_orchestrator.default_sync_date_range()
            options.last_modified_start = window["last_modified_start"]
            options.last_modified_end = window["last_modified_end"]

        result = sync_orchestrator.run_sync(
            sync_type,
            int(site_id),
            g.org_id,
            g.current_user.id,
            options,
            client_factory=_client_factory(),
        )
        return jsonify(result.to_dict()), 200 if result.success else 400

    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to run registry sync")
        return jsonify({"error": "Internal server error"}), 500


@compliance_bp.get("/sync-logs")
@require_auth
@require_permission("VIEW_COMPLIANCE")
def sync_logs_route():
    """Sync log entries for the organization, newest first."""
    try:
        site_id = request.args.get("site_id", type=int)
        if site_id is not None:
            require_site_in_org(site_id, g.org_id)

        logs = sync_log_service.list_sync_logs(
            g.org_id,
            site_id=site_id,
            sync_type=request.args.get("sync_type"),
            status=request.args.get("status"),
            limit=_limit_arg(),
        )
        return jsonify({"logs": [entry.to_dict() for entry in logs]}), 200

    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list sync logs")
        return jsonify({"error": "Internal server error"}), 500


@compliance_bp.get("/mappings")
@require_auth
@require_permission("VIEW_COMPLIANCE")
def mappings_route():
    try:
        site_id = request.args.get("site_id", type=int)
        if site_id is not None:
            require_site_in_org(site_id, g.org_id)

        mappings = mapping_service.list_mappings(
            g.org_id,
            site_id=site_id,
            entity_type=request.args.get("entity_type"),
            include_released=_bool_arg("include_released"),
        )
        return jsonify({"mappings": [m.to_dict() for m in mappings]}), 200

    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list registry mappings")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CACHE READS
# =============================================================================

@compliance_bp.get("/cache/items")
@require_auth
@require_permission("VIEW_COMPLIANCE")
@require_site_param
def cached_items_route(site):
    items = cache_service.list_cached_items(
        g.org_id,
        site.id,
        active_only=not _bool_arg("include_inactive"),
    )
    return jsonify({"items": [i.to_dict() for i in items]}), 200


@compliance_bp.get("/cache/strains")
@require_auth
@require_permission("VIEW_COMPLIANCE")
@require_site_param
def cached_strains_route(site):
    """Query params: site_id, name (case-insensitive exact match), include_inactive."""
    name = request.args.get("name")
    if name is not None:
        strain = cache_service.get_cached_strain_by_name(g.org_id, site.id, name)
        strains = [strain] if strain else []
    else:
        strains = cache_service.list_cached_strains(
            g.org_id,
            site.id,
            active_only=not _bool_arg("include_inactive"),
        )
    return jsonify({"strains": [s.to_dict() for s in strains]}), 200


@compliance_bp.get("/cache/tags")
@require_auth
@require_permission("VIEW_COMPLIANCE")
@require_site_param
def cached_tags_route(site):
    """Query params: site_id, tag_type (plant|package), status, limit."""
    tags = cache_service.list_cached_tags(
        g.org_id,
        site.id,
        tag_type=request.args.get("tag_type"),
        status=request.args.get("status"),
        active_only=not _bool_arg("include_inactive"),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"tags": [t.to_dict() for t in tags]}), 200


@compliance_bp.get("/cache/tags/counts")
@require_auth
@require_permission("VIEW_COMPLIANCE")
@require_site_param
def tag_counts_route(site):
    return jsonify({"counts": cache_service.get_tag_inventory_counts(g.org_id, site.id)}), 200


@compliance_bp.get("/cache/plant-batches")
@require_auth
@require_permission("VIEW_COMPLIANCE")
@require_site_param
def cached_plant_batches_route(site):
    """Query params: site_id, active_only, linked_only, unlinked_only."""
    try:
        batches = cache_service.list_cached_plant_batches(
            g.org_id,
            site.id,
            active_only=_bool_arg("active_only"),
            linked_only=_bool_arg("linked_only"),
            unlinked_only=_bool_arg("unlinked_only"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"plant_batches": [b.to_dict() for b in batches]}), 200


@compliance_bp.get("/cache/plant-batches/stats")
@require_auth
@require_permission("VIEW_COMPLIANCE")
@require_site_param
def plant_batch_stats_route(site):
    return jsonify({"stats": cache_service.get_plant_batch_compliance_stats(g.org_id, site.id)}), 200


@compliance_bp.get("/cache/facilities")
@require_auth
@require_permission("VIEW_COMPLIANCE")
def cached_facilities_route():
    try:
        facilities = cache_service.list_cached_facilities(
            g.org_id,
            unlinked_only=_bool_arg("unlinked_only"),
        )
        return jsonify({"facilities": [f.to_dict() for f in facilities]}), 200

    except Exception:
        current_app.logger.exception("Failed to list cached facilities")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LINK / IMPORT
# =============================================================================

@compliance_bp.post("/sites/<int:site_id>/link-facility")
@require_auth
@require_permission("MANAGE_COMPLIANCE_LINKS")
def link_facility_route(site_id: int):
    """
    Link a site to a cached registry facility.

    Request body: {"license_number": str}

    Returns:
        200: Site linked
        400: Facility already linked elsewhere, inactive or missing license
        404: Site or facility not found
    """
    data = request.get_json() or {}

    try:
        site = link_service.link_facility_to_site(
            site_id=site_id,
            org_id=g.org_id,
            license_number=data.get("license_number"),
            user_id=g.current_user.id,
        )
        return jsonify({"site": site.to_dict()}), 200

    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except LinkConflictError as e:
        return jsonify({"error": str(e), "conflict": True}), 400
    except LinkError as e:
        return _not_found_or_bad_request(e)
    except Exception:
        current_app.logger.exception("Failed to link facility")
        return jsonify({"error": "Internal server error"}), 500


@compliance_bp.post("/sites/<int:site_id>/unlink-facility")
@require_auth
@require_permission("MANAGE_COMPLIANCE_LINKS")
def unlink_facility_route(site_id: int):
    try:
        site = link_service.unlink_facility_from_site(
            site_id=site_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
        )
        return jsonify({"site": site.to_dict()}), 200

    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except LinkError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to unlink facility")
        return jsonify({"error": "Internal server error"}), 500


@compliance_bp.post("/plant-batches/<int:cache_id>/import")
@require_auth
@require_permission("MANAGE_COMPLIANCE_LINKS")
def import_plant_batch_route(cache_id: int):
    """
    Create an internal batch from a cached registry plant batch.

    Returns:
        201: Batch created and linked
        400: Already linked, inactive, or batch number taken
        404: Cache entry not found
    """
    try:
        result = link_service.create_batch_from_plant_batch_cache(
            cache_id=cache_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
        )
        return jsonify({
            "batch": result.batch.to_dict(),
            "mapping_id": result.mapping_id,
            "warnings": result.warnings,
        }), 201

    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except LinkConflictError as e:
        return jsonify({"error": str(e), "conflict": True}), 400
    except LinkError as e:
        return _not_found_or_bad_request(e)
    except Exception:
        current_app.logger.exception("Failed to import plant batch")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PUSH / PHASE
# =============================================================================

@compliance_bp.post("/lots/<int:lot_id>/push")
@require_auth
@require_permission("PUSH_COMPLIANCE")
def push_lot_route(lot_id: int):
    """Report an inventory lot to the registry as a package."""
    try:
        lot = db.session.query(InventoryLot).filter_by(id=lot_id, org_id=g.org_id).first()
        if not lot:
            return jsonify({"error": "Inventory lot not found"}), 404

        result = sync_orchestrator.run_sync(
            SyncType.PUSH_LOT,
            lot.site_id,
            g.org_id,
            g.current_user.id,
            SyncOptions(lot_id=lot.id),
            client_factory=_client_factory(),
        )
        return jsonify(result.to_dict()), 200 if result.success else 400

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to push inventory lot")
        return jsonify({"error": "Internal server error"}), 500


@compliance_bp.post("/batches/<int:batch_id>/push")
@require_auth
@require_permission("PUSH_COMPLIANCE")
def push_batch_route(batch_id: int):
    """
    Create a registry plant batch for an internal batch.

    Request body:
    {
        "location": str,
        "source_package_tag": str (optional),
        "source_plant_tags": [str] (optional)
    }
    """
    data = request.get_json() or {}

    try:
        batch = db.session.query(Batch).filter_by(id=batch_id, org_id=g.org_id).first()
        if not batch:
            return jsonify({"error": "Batch not found"}), 404

        result = sync_orchestrator.run_sync(
            SyncType.PUSH_BATCH,
            batch.site_id,
            g.org_id,
            g.current_user.id,
            SyncOptions(
                batch_id=batch.id,
                location=data.get("location"),
                source_package_tag=data.get("source_package_tag"),
                source_plant_tags=data.get("source_plant_tags"),
            ),
            client_factory=_client_factory(),
        )
        return jsonify(result.to_dict()), 200 if result.success else 400

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to push batch")
        return jsonify({"error": "Internal server error"}), 500


@compliance_bp.post("/batches/<int:batch_id>/transition")
@require_auth
@require_permission("MANAGE_BATCHES")
def transition_batch_route(batch_id: int):
    """
    Change a batch's stage; reports the phase change to the registry when
    required.

    Request body: {"stage": str, "location": str (optional), "starting_tag": str (optional)}

    The stage change stands even if the registry call fails; the registry
    outcome is returned under "registry_sync".
    """
    data = request.get_json() or {}

    try:
        batch, sync_result = batch_service.transition_batch_stage(
            batch_id,
            g.org_id,
            data.get("stage"),
            g.current_user.id,
            location=data.get("location"),
            starting_tag=data.get("starting_tag"),
            client_factory=_client_factory(),
        )
        return jsonify({
            "batch": batch.to_dict(),
            "registry_sync": sync_result.to_dict() if sync_result else None,
        }), 200

    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 403
    except BatchError as e:
        return _not_found_or_bad_request(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to transition batch")
        return jsonify({"error": "Internal server error"}), 500


@compliance_bp.get("/phase-check")
@require_auth
@require_permission("VIEW_COMPLIANCE")
def phase_check_route():
    """
    Would moving a batch to a stage require a registry phase change?

    Query params: batch_id, stage
    """
    try:
        batch_id = request.args.get("batch_id", type=int)
        stage = request.args.get("stage")
        if batch_id is None or not stage:
            return jsonify({"error": "batch_id and stage are required"}), 400

        batch = db.session.query(Batch).filter_by(id=batch_id, org_id=g.org_id).first()
        if not batch:
            return jsonify({"error": "Batch not found"}), 404

        return jsonify({
            "batch_id": batch.id,
            "current_stage": batch.stage,
            "requested_stage": stage,
            "current_phase": phase_service.get_registry_phase(batch.stage),
            "requested_phase": phase_service.get_registry_phase(stage),
            "will_trigger": phase_service.will_trigger_phase_sync(batch.id, batch.stage, stage),
            "phase_move_error": phase_service.phase_move_error(batch.stage, stage),
            "sync_required": phase_service.is_phase_sync_required(batch, stage),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to evaluate phase change")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CREDENTIALS
# =============================================================================

@compliance_bp.get("/credentials")
@require_auth
@require_permission("MANAGE_REGISTRY_CREDENTIALS")
def list_credentials_route():
    credentials = db.session.query(RegistryCredential).filter_by(
        org_id=g.org_id
    ).order_by(RegistryCredential.state_code).all()
    return jsonify({"credentials": [c.to_dict() for c in credentials]}), 200


@compliance_bp.post("/credentials")
@require_auth
@require_permission("MANAGE_REGISTRY_CREDENTIALS")
def save_credentials_route():
    """
    Create or rotate the organization's registry key for a state and probe it.

    Request body:
    {
        "state_code": "CO",
        "user_api_key": str,
        "is_sandbox": bool (optional),
        "validate": bool (optional, default true)
    }

    Returns 201 with the credential; "valid" is null when validation was
    skipped. The user key is never echoed back.
    """
    data = request.get_json() or {}

    try:
        credential = credential_service.save_org_credential(
            org_id=g.org_id,
            state_code=data.get("state_code"),
            user_api_key=data.get("user_api_key"),
            is_sandbox=bool(data.get("is_sandbox", False)),
        )

        valid = None
        error = None
        facility_count = None
        if data.get("validate", True):
            valid, error, facilities = credential_service.validate_credential(
                credential,
                client_factory=_client_factory(),
            )
            facility_count = len(facilities)

        return jsonify({
            "credential": credential.to_dict(),
            "valid": valid,
            "validation_error": error,
            "facility_count": facility_count,
        }), 201

    except CredentialError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to save registry credentials")
        return jsonify({"error": "Internal server error"}), 500
