# Overview: Push sync reporting internal inventory lots and batches to the registry.

"""
Internal -> Registry Push

Lots become registry packages; batches become registry plant batches.

PRECONDITIONS (checked before any network call):
- the lot or batch belongs to the site and organization
- it has no registry counterpart yet; otherwise the push is a no-op that
  reports already_synced (safe for caller retries)
- lots: a package tag no other lot holds, an item name and a positive
  quantity
- batches: active, with plants, a cultivar, a registry location, a stage the
  registry tracks, and a batch number not already used by a registry plant
  batch at the site

On registry acceptance the registry identifiers are stored on the lot or
batch and a mapping is written. On rejection nothing is modified and the
registry's message is returned verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Batch, InventoryLot, RegistryPlantBatchCache
from ..registry import RegistryError
from . import mapping_service, phase_service
from .mapping_service import MappingConflictError
from canopy.time_utils import to_registry_date, utcnow


@dataclass
class PushResult:
    success: bool = True
    lots_created: int = 0
    already_synced: bool = False
    package_tag: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "lots_created": self.lots_created,
            "already_synced": self.already_synced,
            "package_tag": self.package_tag,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def build_package_payload(lot: InventoryLot) -> dict:
    payload = {
        "Tag": lot.package_tag,
        "Item": lot.item_name,
        "Quantity": float(lot.quantity),
        "UnitOfMeasure": lot.unit_of_measure,
        "PackagedDate": to_registry_date(lot.packaged_date or utcnow()),
    }
    if lot.note:
        payload["Note"] = lot.note
    return payload


def _validate_lot(lot: InventoryLot) -> list[str]:
    errors = []
    if not lot.package_tag:
        errors.append(f"Lot {lot.lot_number}: a package tag must be assigned before pushing")
    else:
        holder = mapping_service.get_active_mapping_for_registry(mapping_service.REGISTRY_PACKAGE, lot.package_tag)
        if holder is not None and (holder.entity_type, holder.internal_id) != (mapping_service.ENTITY_LOT, lot.id):
            errors.append(f"Lot {lot.lot_number}: package tag {lot.package_tag} is already used by another lot")
    if not lot.item_name:
        errors.append(f"Lot {lot.lot_number}: a registry item is required")
    if lot.quantity is None or lot.quantity <= 0:
        errors.append(f"Lot {lot.lot_number}: quantity must be greater than zero")
    return errors


def get_scoped_lot(lot_id: int, site_id: int, org_id: int) -> InventoryLot | None:
    return db.session.query(InventoryLot).filter_by(id=lot_id, org_id=org_id, site_id=site_id).first()


def push_inventory_lot_to_registry(client, lot_id: int, site_id: int, org_id: int, user_id: int | None = None) -> PushResult:
    result = PushResult()

    lot = get_scoped_lot(lot_id, site_id, org_id)
    if not lot:
        result.success = False
        result.errors.append("Inventory lot not found")
        return result

    if lot.registry_package_tag:
        result.already_synced = True
        result.package_tag = lot.registry_package_tag
        result.warnings.append(f"Lot {lot.lot_number} is already synced as package {lot.registry_package_tag}")
        return result

    validation_errors = _validate_lot(lot)
    if validation_errors:
        result.success = False
        result.errors.extend(validation_errors)
        return result

    payload = build_package_payload(lot)
    try:
        client.create_package(payload)
    except RegistryError as e:
        result.success = False
        result.errors.append(e.message)
        return result

    registry_package_id = None
    try:
        package = client.get_package_by_label(lot.package_tag)
        if package:
            registry_package_id = package.get("Id")
    except RegistryError as e:
        # The package exists in the registry; only the id lookup failed
        result.warnings.append(f"Package {lot.package_tag} created but its registry id could not be read: {e.message}")

    lot.registry_package_tag = lot.package_tag
    lot.registry_package_id = str(registry_package_id) if registry_package_id is not None else None
    lot.registry_synced_at = utcnow()

    mapping_service.create_mapping(
        org_id=org_id,
        site_id=site_id,
        entity_type=mapping_service.ENTITY_LOT,
        internal_id=lot.id,
        registry_entity_type=mapping_service.REGISTRY_PACKAGE,
        registry_id=lot.package_tag,
        registry_name=lot.item_name,
        user_id=user_id,
    )
    db.session.commit()

    result.lots_created = 1
    result.package_tag = lot.registry_package_tag
    return result


# -- batches --

@dataclass
class BatchPushResult:
    success: bool = True
    batches_created: int = 0
    already_synced: bool = False
    registry_batch_id: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def get_scoped_batch(batch_id: int, site_id: int, org_id: int) -> Batch | None:
    return db.session.query(Batch).filter_by(id=batch_id, org_id=org_id, site_id=site_id).first()


def registry_batch_id_for(batch: Batch) -> str | None:
    """Registry id the batch is already known by, from its mapping or its own column."""
    mapping = mapping_service.get_active_mapping_for_internal(
        mapping_service.ENTITY_BATCH,
        batch.id,
        mapping_service.REGISTRY_PLANT_BATCH,
    )
    if mapping is not None:
        return mapping.registry_id
    return batch.registry_batch_id


def plant_batch_type(batch: Batch) -> str:
    return "Seed" if batch.stage == "germination" else "Clone"


def build_plant_batch_payload(
    batch: Batch,
    *,
    location: str,
    source_package_tag: str | None = None,
    source_plant_tags: list[str] | None = None,
) -> dict:
    planted = to_registry_date(batch.start_date or utcnow())
    payload = {
        "Name": batch.batch_number,
        "Type": plant_batch_type(batch),
        "Count": batch.plant_count,
        "Strain": batch.cultivar.name,
        "Location": location,
        "ActualDate": planted,
        "PlantedDate": planted,
    }
    if source_package_tag:
        payload["SourcePackage"] = source_package_tag
    elif source_plant_tags:
        payload["SourcePlants"] = list(source_plant_tags)
    return payload


def _validate_batch(batch: Batch, location: str | None) -> list[str]:
    errors = []
    if batch.status != "active":
        errors.append(f"Batch {batch.batch_number} is not active")
    if not batch.plant_count or batch.plant_count <= 0:
        errors.append(f"Batch {batch.batch_number}: plant count must be greater than zero")
    if batch.cultivar is None:
        errors.append(f"Batch {batch.batch_number}: a cultivar is required for the registry strain")
    if not location:
        errors.append(f"Batch {batch.batch_number}: a registry location is required")
    if phase_service.get_registry_phase(batch.stage) is None:
        errors.append(f"Batch {batch.batch_number}: stage {batch.stage} is not tracked as a registry plant batch")

    existing = db.session.query(RegistryPlantBatchCache).filter_by(
        org_id=batch.org_id,
        site_id=batch.site_id,
        name=batch.batch_number,
        is_active=True,
    ).first()
    if existing is not None:
        errors.append(
            f"Batch {batch.batch_number}: the registry already has a plant batch with this name "
            f"(id {existing.registry_batch_id}); run a plant_batches sync to link it"
        )
    return errors


def _find_created(client, name: str) -> dict | None:
    for record in client.list_plant_batches(active=True):
        if str(record.get("Name") or "").strip() == name:
            return record
    return None


def push_batch_to_registry(
    client,
    batch_id: int,
    site_id: int,
    org_id: int,
    user_id: int | None = None,
    *,
    location: str | None = None,
    source_package_tag: str | None = None,
    source_plant_tags: list[str] | None = None,
) -> BatchPushResult:
    """
    Create a registry plant batch for an internal batch and link the two.

    The registry does not return the new id, so the active plant batch list
    is read back and matched by name. If that read fails or finds nothing
    the batch stays unlinked; the next plant_batches sync links it by name.
    """
    result = BatchPushResult()

    batch = get_scoped_batch(batch_id, site_id, org_id)
    if not batch:
        result.success = False
        result.errors.append("Batch not found")
        return result

    known_id = registry_batch_id_for(batch)
    if known_id:
        result.already_synced = True
        result.registry_batch_id = known_id
        result.warnings.append(f"Batch {batch.batch_number} is already synced as registry plant batch {known_id}")
        return result

    validation_errors = _validate_batch(batch, location)
    if validation_errors:
        result.success = False
        result.errors.extend(validation_errors)
        return result

    payload = build_plant_batch_payload(
        batch,
        location=location,
        source_package_tag=source_package_tag,
        source_plant_tags=source_plant_tags,
    )
    try:
        client.create_plant_batches([payload])
    except RegistryError as e:
        result.success = False
        result.errors.append(e.message)
        return result

    unverified = (
        f"Plant batch {batch.batch_number} was created in the registry but could not be read back; "
        "run a plant_batches sync to link it"
    )
    try:
        created = _find_created(client, batch.batch_number)
    except RegistryError as e:
        result.success = False
        result.errors.append(f"{unverified} ({e.message})")
        return result
    registry_id = str(created.get("Id") or "").strip() if created else ""
    if not registry_id:
        result.success = False
        result.errors.append(unverified)
        return result

    try:
        mapping_service.create_mapping(
            org_id=org_id,
            site_id=site_id,
            entity_type=mapping_service.ENTITY_BATCH,
            internal_id=batch.id,
            registry_entity_type=mapping_service.REGISTRY_PLANT_BATCH,
            registry_id=registry_id,
            registry_name=batch.batch_number,
            user_id=user_id,
        )
    except MappingConflictError as e:
        db.session.rollback()
        result.success = False
        result.errors.append(f"Batch {batch.batch_number}: created in the registry but not linked ({e})")
        return result

    batch.registry_batch_id = registry_id
    batch.tracking_mode = "closed_loop"

    cached = db.session.query(RegistryPlantBatchCache).filter_by(
        org_id=org_id,
        site_id=site_id,
        registry_batch_id=registry_id,
    ).first()
    if cached is not None:
        cached.is_linked = True
        cached.linked_batch_id = batch.id
    db.session.commit()

    result.batches_created = 1
    result.registry_batch_id = registry_id
    return result
