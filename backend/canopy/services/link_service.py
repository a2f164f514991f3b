# Overview: Link/Import operations promoting cached registry records into internal entities.

"""
Registry Link / Import Operations

- link_facility_to_site: claim a cached facility license for a site
- unlink_facility_from_site: release a site's facility link
- create_batch_from_plant_batch_cache: materialize an internal Batch from a
  cached registry plant batch

ATOMICITY: Each operation performs its reads and checks first, then all
writes (cache flags, mapping rows, target entity, sync log entry) are
flushed into one session transaction and committed once. Any failure rolls
the whole operation back, so no entity is left half linked and no registry
id is claimed twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Batch, Cultivar, RegistryFacilityCache, RegistryPlantBatchCache, Site
from . import cache_service, mapping_service, sync_log_service
from .mapping_service import MappingConflictError
from .tenant_service import require_site_in_org
from canopy.time_utils import utcnow


class LinkError(Exception):
    """Link/import request refers to something missing or unusable."""
    pass


class LinkConflictError(LinkError):
    """Link/import would claim an entity that is already linked."""
    pass


# Registry plant-batch type -> internal stage
BATCH_TYPE_TO_STAGE = {
    "clone": "clone",
    "seed": "germination",
}
DEFAULT_IMPORT_STAGE = "clone"


def stage_for_batch_type(batch_type: str | None) -> str:
    return BATCH_TYPE_TO_STAGE.get((batch_type or "").strip().lower(), DEFAULT_IMPORT_STAGE)


@dataclass
class ImportResult:
    batch: Batch
    mapping_id: int
    warnings: list[str] = field(default_factory=list)


def _release_site_facility(site: Site, *, org_id: int) -> RegistryFacilityCache | None:
    """Release the site's active facility mapping and un-flag its cache row. Flushes only."""
    released_row = None
    mapping = mapping_service.get_active_mapping_for_internal(
        mapping_service.ENTITY_SITE,
        site.id,
        mapping_service.REGISTRY_FACILITY,
    )
    if mapping:
        mapping_service.release_mapping(mapping)
        released_row = db.session.query(RegistryFacilityCache).filter_by(
            org_id=org_id,
            license_number=mapping.registry_id,
        ).first()

    # Cache rows can claim the site even if the mapping row was lost
    claimed = db.session.query(RegistryFacilityCache).filter_by(
        org_id=org_id,
        linked_site_id=site.id,
    ).all()
    rows = set(claimed)
    if released_row is not None:
        rows.add(released_row)
    for row in rows:
        row.is_linked = False
        row.linked_site_id = None

    site.registry_license_number = None
    site.registry_facility_id = None
    site.registry_credential_id = None
    site.compliance_status = "uncompliant"
    db.session.flush()
    return released_row


def link_facility_to_site(
    *,
    site_id: int,
    org_id: int,
    license_number: str,
    user_id: int | None = None,
    record_log: bool = True,
) -> Site:
    """
    Link a site to a cached registry facility license.

    Relinking a site to a different license releases the previous link in
    the same transaction. Linking a license already held by another site
    raises LinkConflictError and changes nothing.

    record_log=False is used by the sync orchestrator, which writes its own
    entry for the attempt.
    """
    license_number = (license_number or "").strip()
    if not license_number:
        raise LinkError("license_number is required")

    site = require_site_in_org(site_id, org_id)
    started_at = utcnow()

    facility = db.session.query(RegistryFacilityCache).filter_by(
        org_id=org_id,
        license_number=license_number,
    ).first()
    if not facility:
        raise LinkError(f"Facility {license_number} not found. Sync facilities first.")
    if not facility.is_active:
        raise LinkError(f"Facility {license_number} is no longer active in the registry")

    if facility.is_linked and facility.linked_site_id != site.id:
        raise LinkConflictError(f"Facility {license_number} is already linked to another site")

    if facility.is_linked and facility.linked_site_id == site.id and site.registry_license_number == license_number:
        raise LinkConflictError(f"Site is already linked to facility {license_number}")

    previous_license = site.registry_license_number
    try:
        if previous_license or facility.linked_site_id == site.id:
            _release_site_facility(site, org_id=org_id)

        mapping = mapping_service.create_mapping(
            org_id=org_id,
            site_id=site.id,
            entity_type=mapping_service.ENTITY_SITE,
            internal_id=site.id,
            registry_entity_type=mapping_service.REGISTRY_FACILITY,
            registry_id=license_number,
            registry_name=facility.facility_name,
            user_id=user_id,
        )

        facility.is_linked = True
        facility.linked_site_id = site.id

        site.registry_license_number = license_number
        site.registry_facility_id = facility.registry_facility_id
        site.registry_credential_id = facility.credential_id
        site.compliance_status = "compliant"
        if not site.state_code and facility.state_code:
            site.state_code = facility.state_code
        db.session.flush()

        if record_log:
            sync_log_service.record_sync(
                org_id=org_id,
                site_id=site.id,
                sync_type="site_link",
                direction=sync_log_service.DIRECTION_PULL,
                operation="link_facility",
                success=True,
                started_at=started_at,
                completed_at=utcnow(),
                payload={
                    "license_number": license_number,
                    "facility_name": facility.facility_name,
                    "previous_license_number": previous_license,
                    "mapping_id": mapping.id,
                },
                user_id=user_id,
                commit=False,
            )
        db.session.commit()
    except MappingConflictError as e:
        db.session.rollback()
        raise LinkConflictError(str(e)) from e
    except IntegrityError as e:
        db.session.rollback()
        raise LinkConflictError(f"Facility {license_number} was linked concurrently") from e
    except Exception:
        db.session.rollback()
        raise

    return site


def unlink_facility_from_site(*, site_id: int, org_id: int, user_id: int | None = None) -> Site:
    site = require_site_in_org(site_id, org_id)
    if not site.is_linked:
        raise LinkError("Site is not linked to a registry facility")

    started_at = utcnow()
    previous_license = site.registry_license_number
    try:
        _release_site_facility(site, org_id=org_id)
        sync_log_service.record_sync(
            org_id=org_id,
            site_id=site.id,
            sync_type="site_unlink",
            direction=sync_log_service.DIRECTION_PULL,
            operation="unlink_facility",
            success=True,
            started_at=started_at,
            completed_at=utcnow(),
            payload={"license_number": previous_license},
            user_id=user_id,
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return site


def _match_cultivar(org_id: int, site_id: int, strain_name: str | None) -> Cultivar | None:
    """A cultivar already matched to the site's cached strain wins over a plain name match."""
    if not strain_name:
        return None
    strain = cache_service.get_cached_strain_by_name(org_id, site_id, strain_name)
    if strain is not None:
        cultivar = db.session.query(Cultivar).filter_by(
            org_id=org_id,
            registry_strain_id=strain.registry_strain_id,
        ).first()
        if cultivar is not None:
            return cultivar
    return db.session.query(Cultivar).filter(
        Cultivar.org_id == org_id,
        func.lower(Cultivar.name) == strain_name.strip().lower(),
    ).first()


def create_batch_from_plant_batch_cache(*, cache_id: int, org_id: int, user_id: int | None = None) -> ImportResult:
    """
    Import a cached registry plant batch as a new internal Batch.

    At-most-once: an entry that is already linked raises LinkConflictError
    ("already linked") and no second batch is created.
    """
    cached = db.session.query(RegistryPlantBatchCache).filter_by(id=cache_id).first()
    if not cached or cached.org_id != org_id:
        raise LinkError("Plant batch not found")

    if cached.is_linked or cached.linked_batch_id:
        raise LinkConflictError("Plant batch is already linked to a batch")

    if not cached.is_active:
        raise LinkError("Plant batch is no longer active in the registry")

    require_site_in_org(cached.site_id, org_id)

    existing = db.session.query(Batch).filter_by(org_id=org_id, batch_number=cached.name).first()
    if existing:
        raise LinkConflictError(f"A batch numbered {cached.name} already exists")

    started_at = utcnow()
    warnings = []

    cultivar = _match_cultivar(org_id, cached.site_id, cached.strain_name)
    if cultivar is None:
        warnings.append(f"No cultivar match for strain {cached.strain_name or '(none)'}")

    try:
        batch = Batch(
            org_id=org_id,
            site_id=cached.site_id,
            cultivar_id=cultivar.id if cultivar else None,
            batch_number=cached.name,
            stage=stage_for_batch_type(cached.batch_type),
            status="active",
            plant_count=cached.plant_count or 0,
            tracked_plant_count=cached.tracked_count or 0,
            untracked_plant_count=cached.untracked_count or 0,
            start_date=cached.planted_date,
            source_type="registry_import",
            tracking_mode="closed_loop",
            registry_batch_id=cached.registry_batch_id,
        )
        db.session.add(batch)
        db.session.flush()

        mapping = mapping_service.create_mapping(
            org_id=org_id,
            site_id=cached.site_id,
            entity_type=mapping_service.ENTITY_BATCH,
            internal_id=batch.id,
            registry_entity_type=mapping_service.REGISTRY_PLANT_BATCH,
            registry_id=cached.registry_batch_id,
            registry_name=cached.name,
            user_id=user_id,
        )

        cached.is_linked = True
        cached.linked_batch_id = batch.id
        db.session.flush()

        sync_log_service.record_sync(
            org_id=org_id,
            site_id=cached.site_id,
            sync_type="plant_batches",
            direction=sync_log_service.DIRECTION_PULL,
            operation="link_batch",
            success=True,
            started_at=started_at,
            completed_at=utcnow(),
            payload={
                "cache_id": cached.id,
                "registry_batch_id": cached.registry_batch_id,
                "batch_id": batch.id,
                "stage": batch.stage,
                "cultivar_id": batch.cultivar_id,
                "warnings": warnings,
            },
            user_id=user_id,
            commit=False,
        )
        db.session.commit()
    except MappingConflictError as e:
        db.session.rollback()
        raise LinkConflictError("Plant batch is already linked to a batch") from e
    except IntegrityError as e:
        db.session.rollback()
        raise LinkConflictError("Plant batch is already linked to a batch") from e
    except Exception:
        db.session.rollback()
        raise

    return ImportResult(batch=batch, mapping_id=mapping.id, warnings=warnings)
