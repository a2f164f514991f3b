# Overview: Cache Store access: atomic per-key upserts, soft tombstones, and cache readers.

"""
Registry Cache Store

WHY: Local mirror tables let the UI and the link/import operations read
registry state without a network call. Pull routines are the only writers
and go through upsert_cache_row / deactivate_missing below.

ATOMICITY: Each upsert runs in its own savepoint keyed on the table's
natural unique constraint. If a concurrent sync inserted the same key first
(IntegrityError), the savepoint is rolled back and the row is re-read and
updated, so two overlapping syncs converge instead of losing an update.
"""

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    RegistryItemCache,
    RegistryStrainCache,
    RegistryTagCache,
    RegistryPlantBatchCache,
    RegistryFacilityCache,
)
from canopy.time_utils import utcnow


CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


def _apply_values(row, values: dict) -> bool:
    changed = False
    for field, value in values.items():
        if getattr(row, field) != value:
            setattr(row, field, value)
            changed = True
    return changed


def upsert_cache_row(model, *, key: dict, values: dict):
    """
    Insert or update one cache row identified by its natural key.

    Returns (row, outcome) where outcome is "created", "updated" or
    "unchanged". last_synced_at is refreshed in every case.
    """
    now = utcnow()
    nested = db.session.begin_nested()
    try:
        row = db.session.query(model).filter_by(**key).first()
        if row is None:
            row = model(**key, **values)
            row.last_synced_at = now
            db.session.add(row)
            db.session.flush()
            nested.commit()
            return row, CREATED
        changed = _apply_values(row, values)
        row.last_synced_at = now
        nested.commit()
        return row, (UPDATED if changed else UNCHANGED)
    except IntegrityError:
        nested.rollback()

    # Lost the insert race: the row exists now
    row = db.session.query(model).filter_by(**key).one()
    changed = _apply_values(row, values)
    row.last_synced_at = now
    db.session.flush()
    return row, (UPDATED if changed else UNCHANGED)


def deactivate_missing(model, *, scope: dict, key_column: str, seen_keys) -> int:
    """
    Soft-tombstone active rows in scope whose key was not in the latest pull.

    Rows are never deleted: linked rows keep their history for audit.
    """
    seen = set(seen_keys)
    deactivated = 0
    rows = db.session.query(model).filter_by(is_active=True, **scope).all()
    for row in rows:
        if getattr(row, key_column) not in seen:
            row.is_active = False
            deactivated += 1
    if deactivated:
        db.session.flush()
    return deactivated


# -- readers --

def list_cached_items(org_id: int, site_id: int, *, active_only: bool = True) -> list[RegistryItemCache]:
    query = db.session.query(RegistryItemCache).filter_by(org_id=org_id, site_id=site_id)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(RegistryItemCache.name).all()


def list_cached_strains(org_id: int, site_id: int, *, active_only: bool = True) -> list[RegistryStrainCache]:
    query = db.session.query(RegistryStrainCache).filter_by(org_id=org_id, site_id=site_id)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(RegistryStrainCache.name).all()


def get_cached_strain_by_name(org_id: int, site_id: int, name: str | None) -> RegistryStrainCache | None:
    """Active cached strain with this name, ignoring case."""
    if not name or not name.strip():
        return None
    return db.session.query(RegistryStrainCache).filter(
        RegistryStrainCache.org_id == org_id,
        RegistryStrainCache.site_id == site_id,
        RegistryStrainCache.is_active.is_(True),
        func.lower(RegistryStrainCache.name) == name.strip().lower(),
    ).order_by(RegistryStrainCache.id).first()


def list_cached_tags(
    org_id: int,
    site_id: int,
    *,
    tag_type: str | None = None,
    status: str | None = None,
    active_only: bool = True,
    limit: int | None = None,
) -> list[RegistryTagCache]:
    query = db.session.query(RegistryTagCache).filter_by(org_id=org_id, site_id=site_id)
    if tag_type:
        query = query.filter_by(tag_type=tag_type)
    if status:
        query = query.filter_by(status=status)
    if active_only:
        query = query.filter_by(is_active=True)
    query = query.order_by(RegistryTagCache.tag_number)
    if limit:
        query = query.limit(limit)
    return query.all()


def get_tag_inventory_counts(org_id: int, site_id: int) -> dict:
    """Active tag counts grouped by type and status."""
    counts = {
        "plant": {"available": 0, "used": 0, "destroyed": 0, "returned": 0},
        "package": {"available": 0, "used": 0, "destroyed": 0, "returned": 0},
    }
    rows = (
        db.session.query(RegistryTagCache.tag_type, RegistryTagCache.status, func.count(RegistryTagCache.id))
        .filter_by(org_id=org_id, site_id=site_id, is_active=True)
        .group_by(RegistryTagCache.tag_type, RegistryTagCache.status)
        .all()
    )
    for tag_type, status, count in rows:
        counts.setdefault(tag_type, {})[status] = count
    return counts


def list_cached_plant_batches(
    org_id: int,
    site_id: int,
    *,
    active_only: bool = False,
    linked_only: bool = False,
    unlinked_only: bool = False,
) -> list[RegistryPlantBatchCache]:
    if linked_only and unlinked_only:
        raise ValueError("linked_only and unlinked_only are mutually exclusive")

    query = db.session.query(RegistryPlantBatchCache).filter_by(org_id=org_id, site_id=site_id)
    if active_only:
        query = query.filter_by(is_active=True)
    if linked_only:
        query = query.filter_by(is_linked=True)
    if unlinked_only:
        query = query.filter_by(is_linked=False)
    return query.order_by(RegistryPlantBatchCache.name).all()


def get_plant_batch_compliance_stats(org_id: int, site_id: int) -> dict:
    rows = db.session.query(RegistryPlantBatchCache).filter_by(org_id=org_id, site_id=site_id).all()
    active = [r for r in rows if r.is_active]
    linked = [r for r in active if r.is_linked]
    return {
        "total": len(rows),
        "active": len(active),
        "inactive": len(rows) - len(active),
        "linked": len(linked),
        "unlinked": len(active) - len(linked),
        "active_plant_count": sum(r.plant_count or 0 for r in active),
    }


def list_cached_facilities(org_id: int, *, unlinked_only: bool = False) -> list[RegistryFacilityCache]:
    query = db.session.query(RegistryFacilityCache).filter_by(org_id=org_id, is_active=True)
    if unlinked_only:
        query = query.filter_by(is_linked=False)
    return query.order_by(RegistryFacilityCache.facility_name).all()
