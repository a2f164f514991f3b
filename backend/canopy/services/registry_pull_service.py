# Overview: Pull-sync routines mirroring registry items, strains, tags, plant batches and facilities into the cache.

"""
Registry Pull Sync

Each routine lists every record for the bound facility, parses each one
into cache column values, and upserts the cache row keyed by
(org_id, site_id, registry id).

FAILURE SEMANTICS:
- Listing failure (network, timeout, non-2xx): abort, one error, success False
- Record without a natural key: skipped, reported in warnings
- Record that cannot be parsed: reported in errors as "<Kind> <key>: <reason>",
  the remaining records are still stored and success stays True
- Duplicate registry ids within one pull: last record wins

Cached rows missing from a full pull are soft-tombstoned (is_active False).
Incremental pulls (lastModified window) never tombstone, since they only
list what changed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import (
    Batch,
    Cultivar,
    RegistryCredential,
    RegistryFacilityCache,
    RegistryItemCache,
    RegistryPlantBatchCache,
    RegistryStrainCache,
    RegistryTagCache,
)
from ..registry import RegistryError, TAG_TYPE_PACKAGE, TAG_TYPE_PLANT, is_transport_failure
from . import cache_service, mapping_service
from .mapping_service import MappingConflictError
from canopy.time_utils import parse_registry_date, utcnow


@dataclass
class PullResult:
    success: bool = True
    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    deactivated: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)
    retryable: bool = False

    def record(self, outcome: str) -> None:
        self.synced += 1
        if outcome == cache_service.CREATED:
            self.created += 1
        elif outcome == cache_service.UPDATED:
            self.updated += 1

    def fail(self, message: str, *, retryable: bool = False) -> None:
        self.success = False
        self.retryable = self.retryable or retryable
        self.errors.append(message)

    def merge(self, other: "PullResult") -> None:
        self.success = self.success and other.success
        self.retryable = self.retryable or other.retryable
        self.synced += other.synced
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.deactivated += other.deactivated
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "synced": self.synced,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "deactivated": self.deactivated,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
        data.update(self.details)
        return data


def _text(value) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _count(record: dict, field_name: str) -> int:
    value = record.get(field_name)
    if value is None or value == "":
        return 0
    count = int(value)
    if count < 0:
        raise ValueError(f"{field_name} must not be negative")
    return count


def _dedupe(records, key_fn, kind: str, result: PullResult, describe=None) -> dict:
    """Index records by registry key; empty keys become warnings, duplicates keep the last."""
    describe = describe or (lambda r: r.get("Name"))
    by_key = {}
    for record in records:
        key = key_fn(record)
        if not key:
            result.skipped += 1
            result.warnings.append(f"{kind} record without identifier skipped: {_text(describe(record)) or 'unnamed'}")
            continue
        by_key.pop(key, None)
        by_key[key] = record
    return by_key


# -- items --

def _item_values(record: dict, categories: dict) -> dict:
    name = _text(record.get("Name"))
    if not name:
        raise ValueError("missing Name")
    category_name = _text(record.get("ProductCategoryName"))
    category = categories.get(category_name) or {}
    return {
        "name": name,
        "product_category_name": category_name,
        "product_category_type": _text(record.get("ProductCategoryType")),
        "quantity_type": _text(record.get("QuantityType")),
        "unit_of_measure": _text(record.get("UnitOfMeasureName")),
        "default_lab_testing_state": _text(record.get("DefaultLabTestingState")),
        "approval_status": _text(record.get("ApprovalStatus")),
        "strain_id": _text(record.get("StrainId")),
        "strain_name": _text(record.get("StrainName")),
        "requires_strain": bool(category.get("RequiresStrain")),
        "is_active": True,
        "raw_data": record,
    }


def sync_items_from_registry(
    client,
    org_id: int,
    site_id: int,
    *,
    last_modified_start: str | None = None,
    last_modified_end: str | None = None,
) -> PullResult:
    result = PullResult()
    try:
        records = client.list_items(last_modified_start=last_modified_start, last_modified_end=last_modified_end)
        categories = {
            _text(c.get("Name")): c
            for c in client.list_item_categories()
            if _text(c.get("Name"))
        }
    except RegistryError as e:
        result.fail(f"Failed to list items: {e.message}", retryable=is_transport_failure(e))
        return result

    by_id = _dedupe(records, lambda r: _text(r.get("Id")), "Item", result)

    for item_id, record in by_id.items():
        try:
            values = _item_values(record, categories)
        except (ValueError, TypeError) as e:
            result.errors.append(f"Item {_text(record.get('Name')) or item_id}: {e}")
            continue
        _, outcome = cache_service.upsert_cache_row(
            RegistryItemCache,
            key={"org_id": org_id, "site_id": site_id, "registry_item_id": item_id},
            values=values,
        )
        result.record(outcome)

    if last_modified_start is None and last_modified_end is None:
        result.deactivated = cache_service.deactivate_missing(
            RegistryItemCache,
            scope={"org_id": org_id, "site_id": site_id},
            key_column="registry_item_id",
            seen_keys=by_id.keys(),
        )

    db.session.commit()
    return result


# -- strains --

def _level(record: dict, field_name: str) -> float | None:
    value = record.get(field_name)
    if value is None or value == "":
        return None
    return float(value)


def _strain_values(record: dict, *, from_active_list: bool) -> dict:
    return {
        "name": _text(record.get("Name")),
        "testing_status": _text(record.get("TestingStatus")),
        "thc_level": _level(record, "ThcLevel"),
        "cbd_level": _level(record, "CbdLevel"),
        "indica_percentage": _level(record, "IndicaPercentage"),
        "sativa_percentage": _level(record, "SativaPercentage"),
        "is_used": bool(record.get("IsUsed")),
        "is_active": from_active_list,
        "raw_data": record,
    }


def _link_cultivars(org_id: int, strains: dict) -> int:
    """Set registry_strain_id on unmatched cultivars whose name matches a strain, ignoring case."""
    by_name = {name.lower(): strain_id for strain_id, name in strains.items()}
    linked = 0
    cultivars = db.session.query(Cultivar).filter(
        Cultivar.org_id == org_id,
        Cultivar.registry_strain_id.is_(None),
    ).all()
    for cultivar in cultivars:
        strain_id = by_name.get((cultivar.name or "").strip().lower())
        if strain_id:
            cultivar.registry_strain_id = strain_id
            linked += 1
    db.session.flush()
    return linked


def sync_strains_from_registry(client, org_id: int, site_id: int) -> PullResult:
    """
    Mirror the facility's active and inactive strains, then match cultivars
    to active strains by name. Matches are reported as cultivars_linked.
    """
    result = PullResult()
    result.details = {"cultivars_linked": 0}
    try:
        active = client.list_strains(active=True)
        inactive = client.list_strains(active=False)
    except RegistryError as e:
        result.fail(f"Failed to list strains: {e.message}", retryable=is_transport_failure(e))
        return result

    tagged = [(r, False) for r in inactive] + [(r, True) for r in active]
    by_id = _dedupe(
        tagged,
        lambda pair: _text(pair[0].get("Id")) if _text(pair[0].get("Name")) else None,
        "Strain",
        result,
        describe=lambda pair: pair[0].get("Name"),
    )

    active_names = {}
    for strain_id, (record, from_active_list) in by_id.items():
        name = _text(record.get("Name"))
        try:
            values = _strain_values(record, from_active_list=from_active_list)
        except (ValueError, TypeError) as e:
            result.errors.append(f"Strain {name}: {e}")
            continue

        _, outcome = cache_service.upsert_cache_row(
            RegistryStrainCache,
            key={"org_id": org_id, "site_id": site_id, "registry_strain_id": strain_id},
            values=values,
        )
        result.record(outcome)
        if from_active_list:
            active_names[strain_id] = name

    result.deactivated = cache_service.deactivate_missing(
        RegistryStrainCache,
        scope={"org_id": org_id, "site_id": site_id},
        key_column="registry_strain_id",
        seen_keys=by_id.keys(),
    )
    result.details["cultivars_linked"] = _link_cultivars(org_id, active_names)

    db.session.commit()
    return result


# -- tags --

TAG_TYPES = {
    TAG_TYPE_PLANT: "plant",
    TAG_TYPE_PACKAGE: "package",
}

TAG_STATUS_MAP = {
    "commissioned": "available",
    "used": "used",
    "voided": "destroyed",
    "destroyed": "destroyed",
    "returned": "returned",
}


def map_tag_status(registry_status: str | None) -> str:
    """Registry tag status to cache status; unknown values are treated as available."""
    return TAG_STATUS_MAP.get((registry_status or "").strip().lower(), "available")


def _resolve_tag_types(tag_type: str) -> list[str]:
    if tag_type in (None, "", "all"):
        return [TAG_TYPE_PLANT, TAG_TYPE_PACKAGE]
    if tag_type in TAG_TYPES:
        return [tag_type]
    raise ValueError(f"Unknown tag type: {tag_type}")


def _sync_tag_type(client, org_id: int, site_id: int, registry_type: str) -> PullResult:
    cache_type = TAG_TYPES[registry_type]
    result = PullResult()
    try:
        records = client.list_tags(registry_type)
    except RegistryError as e:
        result.fail(f"Failed to list {cache_type} tags: {e.message}", retryable=is_transport_failure(e))
        return result

    by_label = _dedupe(records, lambda r: _text(r.get("Label")), f"{registry_type} tag", result)

    for label, record in by_label.items():
        values = {
            "registry_tag_id": _text(record.get("Id")),
            "tag_type": cache_type,
            "status": map_tag_status(record.get("StatusName") or record.get("Status") or "Commissioned"),
            "is_active": True,
            "raw_data": record,
        }
        _, outcome = cache_service.upsert_cache_row(
            RegistryTagCache,
            key={"org_id": org_id, "site_id": site_id, "tag_number": label},
            values=values,
        )
        result.record(outcome)

    result.deactivated = cache_service.deactivate_missing(
        RegistryTagCache,
        scope={"org_id": org_id, "site_id": site_id, "tag_type": cache_type},
        key_column="tag_number",
        seen_keys=by_label.keys(),
    )
    db.session.commit()
    return result


def sync_tags_from_registry(client, org_id: int, site_id: int, *, tag_type: str = "all") -> PullResult:
    """
    Sync available plant and/or package tags.

    tag_type: "Plant", "Package" or "all". Per-type counts are reported as
    plant_tags_synced / package_tags_synced alongside the aggregate.
    """
    result = PullResult()
    result.details = {"plant_tags_synced": 0, "package_tags_synced": 0}

    for registry_type in _resolve_tag_types(tag_type):
        sub = _sync_tag_type(client, org_id, site_id, registry_type)
        result.merge(sub)
        result.details[f"{TAG_TYPES[registry_type]}_tags_synced"] = sub.synced
        if not sub.success:
            # Transport failure: the remaining tag types are not attempted
            break

    if result.success and result.synced == 0 and result.skipped == 0:
        result.warnings.append("No available tags found in the registry")

    return result


# -- plant batches --

def _plant_batch_values(record: dict, *, from_active_list: bool) -> dict:
    tracked = _count(record, "TrackedCount")
    untracked = _count(record, "UntrackedCount")
    destroyed_date = parse_registry_date(record.get("DestroyedDate"))
    return {
        "name": _text(record.get("Name")),
        "batch_type": _text(record.get("PlantBatchTypeName")) or _text(record.get("Type")) or "Clone",
        "strain_name": _text(record.get("StrainName")),
        "location_name": _text(record.get("LocationName")),
        "plant_count": tracked + untracked,
        "tracked_count": tracked,
        "untracked_count": untracked,
        "planted_date": parse_registry_date(record.get("PlantedDate")),
        "destroyed_date": destroyed_date,
        "is_active": from_active_list and destroyed_date is None,
        "raw_data": record,
    }


def _auto_link_by_name(row: RegistryPlantBatchCache, org_id: int, site_id: int) -> bool:
    """
    Link an unlinked cache row to the internal batch with the same batch
    number, when that batch has no registry id yet.
    """
    batch = db.session.query(Batch).filter_by(
        org_id=org_id,
        site_id=site_id,
        batch_number=row.name,
        registry_batch_id=None,
    ).first()
    if not batch:
        return False

    mapping_service.create_mapping(
        org_id=org_id,
        site_id=site_id,
        entity_type=mapping_service.ENTITY_BATCH,
        internal_id=batch.id,
        registry_entity_type=mapping_service.REGISTRY_PLANT_BATCH,
        registry_id=row.registry_batch_id,
        registry_name=row.name,
    )
    batch.registry_batch_id = row.registry_batch_id
    batch.tracking_mode = "closed_loop"
    row.is_linked = True
    row.linked_batch_id = batch.id
    db.session.flush()
    return True


def sync_plant_batches_from_registry(
    client,
    org_id: int,
    site_id: int,
    *,
    last_modified_start: str | None = None,
    last_modified_end: str | None = None,
) -> PullResult:
    result = PullResult()
    result.details = {"batches_linked": 0}
    try:
        active = client.list_plant_batches(
            active=True,
            last_modified_start=last_modified_start,
            last_modified_end=last_modified_end,
        )
        inactive = client.list_plant_batches(
            active=False,
            last_modified_start=last_modified_start,
            last_modified_end=last_modified_end,
        )
    except RegistryError as e:
        result.fail(f"Failed to list plant batches: {e.message}", retryable=is_transport_failure(e))
        return result

    tagged = [(r, False) for r in inactive] + [(r, True) for r in active]
    by_id = _dedupe(
        tagged,
        lambda pair: _text(pair[0].get("Id")) if _text(pair[0].get("Name")) else None,
        "Plant batch",
        result,
        describe=lambda pair: pair[0].get("Name"),
    )

    for batch_id, (record, from_active_list) in by_id.items():
        name = _text(record.get("Name"))
        try:
            values = _plant_batch_values(record, from_active_list=from_active_list)
        except (ValueError, TypeError) as e:
            result.errors.append(f"Plant batch {name}: {e}")
            continue

        row, outcome = cache_service.upsert_cache_row(
            RegistryPlantBatchCache,
            key={"org_id": org_id, "site_id": site_id, "registry_batch_id": batch_id},
            values=values,
        )
        result.record(outcome)

        if row.is_linked:
            mapping = mapping_service.get_active_mapping_for_registry(mapping_service.REGISTRY_PLANT_BATCH, batch_id)
            if mapping:
                mapping_service.mark_synced(mapping)
        elif row.is_active:
            try:
                if _auto_link_by_name(row, org_id, site_id):
                    result.details["batches_linked"] += 1
            except MappingConflictError as e:
                result.warnings.append(f"Plant batch {name}: not auto-linked ({e})")

    if last_modified_start is None and last_modified_end is None:
        result.deactivated = cache_service.deactivate_missing(
            RegistryPlantBatchCache,
            scope={"org_id": org_id, "site_id": site_id},
            key_column="registry_batch_id",
            seen_keys=by_id.keys(),
        )

    db.session.commit()
    return result


# -- facilities --

def _license_number(record: dict) -> str | None:
    license_info = record.get("License") or {}
    if isinstance(license_info, dict):
        return _text(license_info.get("Number"))
    return None


def _facility_values(record: dict, credential: RegistryCredential) -> dict:
    license_info = record.get("License") or {}
    name = _text(record.get("DisplayName")) or _text(record.get("Name"))
    if not name:
        raise ValueError("missing Name")
    address = record.get("PhysicalAddress")
    return {
        "credential_id": credential.id,
        "registry_facility_id": _text(record.get("Id")),
        "facility_name": name,
        "facility_type": _text(license_info.get("LicenseType")),
        "state_code": credential.state_code,
        "address": address if isinstance(address, dict) else None,
        "is_active": True,
        "raw_data": record,
    }


def sync_facilities_from_registry(client, org_id: int, credential_id: int) -> PullResult:
    """
    Mirror the facilities visible to an org credential.

    Facility cache rows are org-scoped and keyed by license number.
    """
    result = PullResult()
    credential = db.session.query(RegistryCredential).filter_by(id=credential_id, org_id=org_id).first()
    if not credential:
        result.fail("Registry credentials not found")
        return result

    try:
        records = client.list_facilities()
    except RegistryError as e:
        credential.validation_error = e.message
        db.session.commit()
        result.fail(f"Failed to list facilities: {e.message}", retryable=is_transport_failure(e))
        return result

    by_license = _dedupe(records, _license_number, "Facility", result)

    for license_number, record in by_license.items():
        try:
            values = _facility_values(record, credential)
        except (ValueError, TypeError, AttributeError) as e:
            result.errors.append(f"Facility {license_number}: {e}")
            continue
        _, outcome = cache_service.upsert_cache_row(
            RegistryFacilityCache,
            key={"org_id": org_id, "license_number": license_number},
            values=values,
        )
        result.record(outcome)

    missing_linked = db.session.query(RegistryFacilityCache).filter(
        RegistryFacilityCache.org_id == org_id,
        RegistryFacilityCache.credential_id == credential.id,
        RegistryFacilityCache.is_active.is_(True),
        RegistryFacilityCache.is_linked.is_(True),
        RegistryFacilityCache.license_number.notin_(list(by_license.keys()) or [""]),
    ).all()
    for row in missing_linked:
        result.warnings.append(f"Linked facility {row.license_number} is no longer returned by the registry")

    result.deactivated = cache_service.deactivate_missing(
        RegistryFacilityCache,
        scope={"org_id": org_id, "credential_id": credential.id},
        key_column="license_number",
        seen_keys=by_license.keys(),
    )

    now = utcnow()
    credential.last_facilities_sync = now
    credential.validated_at = now
    credential.validation_error = None
    db.session.commit()
    return result
