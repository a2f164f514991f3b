# Overview: Mapping Store: identity links between internal entities and registry entities.

"""
Registry Mapping Store

INVARIANTS:
- At most one active mapping per (entity_type, internal_id, registry_entity_type)
- At most one active mapping per (registry_entity_type, registry_id)

Conflicts raise MappingConflictError before anything is written; an
existing link is never overwritten. Releasing keeps the row (status
"released") so historical sync logs still resolve.

These functions flush but do not commit: callers own the transaction so a
link and its side effects commit or roll back together.
"""

from ..extensions import db
from ..models import RegistryMapping
from canopy.time_utils import utcnow


ENTITY_BATCH = "batch"
ENTITY_LOT = "lot"
ENTITY_SITE = "site"

REGISTRY_PLANT_BATCH = "plant_batch"
REGISTRY_PACKAGE = "package"
REGISTRY_FACILITY = "facility"


class MappingConflictError(Exception):
    """A link would violate an at-most-one-active-mapping invariant."""
    pass


def get_active_mapping_for_internal(entity_type: str, internal_id: int, registry_entity_type: str) -> RegistryMapping | None:
    return db.session.query(RegistryMapping).filter_by(
        entity_type=entity_type,
        internal_id=internal_id,
        registry_entity_type=registry_entity_type,
        status="active",
    ).first()


def get_active_mapping_for_registry(registry_entity_type: str, registry_id: str) -> RegistryMapping | None:
    return db.session.query(RegistryMapping).filter_by(
        registry_entity_type=registry_entity_type,
        registry_id=str(registry_id),
        status="active",
    ).first()


def create_mapping(
    *,
    org_id: int,
    site_id: int | None,
    entity_type: str,
    internal_id: int,
    registry_entity_type: str,
    registry_id: str,
    registry_name: str | None = None,
    user_id: int | None = None,
    sync_status: str = "synced",
) -> RegistryMapping:
    """
    Create an active mapping after checking both invariants.

    Re-creating the exact same active link is a conflict too: callers must
    detect "already linked" themselves rather than rely on idempotence here.
    """
    registry_id = str(registry_id)

    existing_internal = get_active_mapping_for_internal(entity_type, internal_id, registry_entity_type)
    if existing_internal:
        raise MappingConflictError(
            f"{entity_type} {internal_id} is already linked to {registry_entity_type} {existing_internal.registry_id}"
        )

    existing_registry = get_active_mapping_for_registry(registry_entity_type, registry_id)
    if existing_registry:
        raise MappingConflictError(
            f"{registry_entity_type} {registry_id} is already linked to {existing_registry.entity_type} {existing_registry.internal_id}"
        )

    now = utcnow()
    mapping = RegistryMapping(
        org_id=org_id,
        site_id=site_id,
        entity_type=entity_type,
        internal_id=internal_id,
        registry_entity_type=registry_entity_type,
        registry_id=registry_id,
        registry_name=registry_name,
        sync_status=sync_status,
        status="active",
        last_synced_at=now if sync_status == "synced" else None,
        created_by_user_id=user_id,
    )
    db.session.add(mapping)
    db.session.flush()
    return mapping


def release_mapping(mapping: RegistryMapping) -> RegistryMapping:
    mapping.status = "released"
    mapping.released_at = utcnow()
    db.session.flush()
    return mapping


def mark_synced(mapping: RegistryMapping) -> RegistryMapping:
    mapping.sync_status = "synced"
    mapping.last_synced_at = utcnow()
    db.session.flush()
    return mapping


def mark_error(mapping: RegistryMapping) -> RegistryMapping:
    mapping.sync_status = "error"
    db.session.flush()
    return mapping


def list_mappings(org_id: int, *, site_id: int | None = None, entity_type: str | None = None, include_released: bool = False) -> list[RegistryMapping]:
    query = db.session.query(RegistryMapping).filter_by(org_id=org_id)
    if site_id is not None:
        query = query.filter_by(site_id=site_id)
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if not include_released:
        query = query.filter_by(status="active")
    return query.order_by(RegistryMapping.id).all()
