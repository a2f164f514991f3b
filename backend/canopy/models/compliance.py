from __future__ import annotations

from ..extensions import db
from canopy.time_utils import to_utc_z
from .security import append_only


def _date_str(value):
    return value.isoformat() if value else None


class RegistryCredential(db.Model):
    """
    Organization-level registry credential for one state.

    WHY: The registry issues one user API key per licensee per state; all of
    the organization's facilities in that state are reachable with it. The
    vendor (integrator) key is not stored here; it comes from configuration.
    """
    __tablename__ = "registry_credentials"
    __table_args__ = (
        db.UniqueConstraint("org_id", "state_code", name="uq_registry_credentials_org_state"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    state_code = db.Column(db.String(2), nullable=False)
    user_api_key = db.Column(db.String(255), nullable=False)
    is_sandbox = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    validation_error = db.Column(db.Text, nullable=True)
    last_facilities_sync = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("registry_credentials", lazy=True))

    def to_dict(self) -> dict:
        # Never serialize the user key
        return {
            "id": self.id,
            "org_id": self.org_id,
            "state_code": self.state_code,
            "is_sandbox": self.is_sandbox,
            "is_active": self.is_active,
            "validated_at": to_utc_z(self.validated_at),
            "validation_error": self.validation_error,
            "last_facilities_sync": to_utc_z(self.last_facilities_sync),
            "created_at": to_utc_z(self.created_at),
        }


class RegistryItemCache(db.Model):
    """Local mirror of a registry item (product definition) for a site."""
    __tablename__ = "registry_item_cache"
    __table_args__ = (
        db.UniqueConstraint("org_id", "site_id", "registry_item_id", name="uq_registry_item_cache_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    registry_item_id = db.Column(db.String(64), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    product_category_name = db.Column(db.String(255), nullable=True)
    product_category_type = db.Column(db.String(128), nullable=True)
    quantity_type = db.Column(db.String(64), nullable=True)
    unit_of_measure = db.Column(db.String(64), nullable=True)
    default_lab_testing_state = db.Column(db.String(64), nullable=True)
    approval_status = db.Column(db.String(64), nullable=True)
    strain_id = db.Column(db.String(64), nullable=True)
    strain_name = db.Column(db.String(255), nullable=True)
    requires_strain = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    raw_data = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "registry_item_id": self.registry_item_id,
            "name": self.name,
            "product_category_name": self.product_category_name,
            "product_category_type": self.product_category_type,
            "quantity_type": self.quantity_type,
            "unit_of_measure": self.unit_of_measure,
            "default_lab_testing_state": self.default_lab_testing_state,
            "approval_status": self.approval_status,
            "strain_id": self.strain_id,
            "strain_name": self.strain_name,
            "requires_strain": self.requires_strain,
            "is_active": self.is_active,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class RegistryStrainCache(db.Model):
    """
    Local mirror of a registry strain for a site.

    Cultivars are matched to strains by name; a matched cultivar carries the
    strain id in Cultivar.registry_strain_id.
    """
    __tablename__ = "registry_strain_cache"
    __table_args__ = (
        db.UniqueConstraint("org_id", "site_id", "registry_strain_id", name="uq_registry_strain_cache_key"),
        db.Index("ix_registry_strain_cache_site_name", "site_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    registry_strain_id = db.Column(db.String(64), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    testing_status = db.Column(db.String(64), nullable=True)
    thc_level = db.Column(db.Float, nullable=True)
    cbd_level = db.Column(db.Float, nullable=True)
    indica_percentage = db.Column(db.Float, nullable=True)
    sativa_percentage = db.Column(db.Float, nullable=True)
    is_used = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    raw_data = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "registry_strain_id": self.registry_strain_id,
            "name": self.name,
            "testing_status": self.testing_status,
            "thc_level": self.thc_level,
            "cbd_level": self.cbd_level,
            "indica_percentage": self.indica_percentage,
            "sativa_percentage": self.sativa_percentage,
            "is_used": self.is_used,
            "is_active": self.is_active,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class RegistryTagCache(db.Model):
    """
    Local mirror of a registry tag (plant or package).

    Tags are keyed by tag number, which is the registry's natural key.
    """
    __tablename__ = "registry_tag_cache"
    __table_args__ = (
        db.UniqueConstraint("org_id", "site_id", "tag_number", name="uq_registry_tag_cache_key"),
        db.Index("ix_registry_tag_cache_site_type_status", "site_id", "tag_type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    tag_number = db.Column(db.String(64), nullable=False)
    registry_tag_id = db.Column(db.String(64), nullable=True)

    tag_type = db.Column(db.String(16), nullable=False)  # plant, package
    status = db.Column(db.String(16), nullable=False, default="available")  # available, used, destroyed, returned

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    raw_data = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "tag_number": self.tag_number,
            "registry_tag_id": self.registry_tag_id,
            "tag_type": self.tag_type,
            "status": self.status,
            "is_active": self.is_active,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class RegistryPlantBatchCache(db.Model):
    """
    Local mirror of a registry plant batch.

    A row is either a pure mirror (is_linked False) or linked to exactly one
    internal Batch through an active RegistryMapping.
    """
    __tablename__ = "registry_plant_batch_cache"
    __table_args__ = (
        db.UniqueConstraint("org_id", "site_id", "registry_batch_id", name="uq_registry_plant_batch_cache_key"),
        db.Index("ix_registry_plant_batch_cache_site_name", "site_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    registry_batch_id = db.Column(db.String(64), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    batch_type = db.Column(db.String(32), nullable=True)  # Clone, Seed
    strain_name = db.Column(db.String(255), nullable=True)
    location_name = db.Column(db.String(255), nullable=True)
    plant_count = db.Column(db.Integer, nullable=False, default=0)
    tracked_count = db.Column(db.Integer, nullable=False, default=0)
    untracked_count = db.Column(db.Integer, nullable=False, default=0)
    planted_date = db.Column(db.Date, nullable=True)
    destroyed_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_linked = db.Column(db.Boolean, nullable=False, default=False)
    linked_batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    raw_data = db.Column(db.JSON, nullable=True)

    linked_batch = db.relationship("Batch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "registry_batch_id": self.registry_batch_id,
            "name": self.name,
            "batch_type": self.batch_type,
            "strain_name": self.strain_name,
            "location_name": self.location_name,
            "plant_count": self.plant_count,
            "tracked_count": self.tracked_count,
            "untracked_count": self.untracked_count,
            "planted_date": _date_str(self.planted_date),
            "destroyed_date": _date_str(self.destroyed_date),
            "is_active": self.is_active,
            "is_linked": self.is_linked,
            "linked_batch_id": self.linked_batch_id,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class RegistryFacilityCache(db.Model):
    """
    Local mirror of a registry facility (license) visible to an org credential.

    Org-scoped: the facility list belongs to the organization's state
    credential, not to a site. linked_site_id points at the one site that
    currently claims the license.
    """
    __tablename__ = "registry_facility_cache"
    __table_args__ = (
        db.UniqueConstraint("org_id", "license_number", name="uq_registry_facility_cache_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    credential_id = db.Column(db.Integer, db.ForeignKey("registry_credentials.id"), nullable=True)
    license_number = db.Column(db.String(64), nullable=False)

    registry_facility_id = db.Column(db.String(64), nullable=True)
    facility_name = db.Column(db.String(255), nullable=False)
    facility_type = db.Column(db.String(128), nullable=True)
    state_code = db.Column(db.String(2), nullable=True)
    address = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_linked = db.Column(db.Boolean, nullable=False, default=False)
    linked_site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    raw_data = db.Column(db.JSON, nullable=True)

    credential = db.relationship("RegistryCredential")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "credential_id": self.credential_id,
            "license_number": self.license_number,
            "registry_facility_id": self.registry_facility_id,
            "facility_name": self.facility_name,
            "facility_type": self.facility_type,
            "state_code": self.state_code,
            "address": self.address,
            "is_active": self.is_active,
            "is_linked": self.is_linked,
            "linked_site_id": self.linked_site_id,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class RegistryMapping(db.Model):
    """
    Identity link between one internal entity and one registry entity.

    INVARIANTS (enforced by partial unique indexes and by mapping_service):
    - At most one active mapping per (entity_type, internal_id, registry_entity_type)
    - At most one active mapping per (registry_entity_type, registry_id)

    Released mappings are kept for audit; relinking creates a new row.
    """
    __tablename__ = "registry_mappings"
    __table_args__ = (
        db.Index(
            "uq_registry_mappings_active_internal",
            "entity_type", "internal_id", "registry_entity_type",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index(
            "uq_registry_mappings_active_registry",
            "registry_entity_type", "registry_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_registry_mappings_org_site", "org_id", "site_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True)

    entity_type = db.Column(db.String(16), nullable=False)  # batch, lot, site
    internal_id = db.Column(db.Integer, nullable=False)
    registry_entity_type = db.Column(db.String(32), nullable=False)  # plant_batch, package, facility
    registry_id = db.Column(db.String(128), nullable=False)
    registry_name = db.Column(db.String(255), nullable=True)

    sync_status = db.Column(db.String(16), nullable=False, default="synced")  # synced, pending, error
    status = db.Column(db.String(16), nullable=False, default="active")  # active, released
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "entity_type": self.entity_type,
            "internal_id": self.internal_id,
            "registry_entity_type": self.registry_entity_type,
            "registry_id": self.registry_id,
            "registry_name": self.registry_name,
            "sync_status": self.sync_status,
            "status": self.status,
            "last_synced_at": to_utc_z(self.last_synced_at),
            "released_at": to_utc_z(self.released_at),
            "created_at": to_utc_z(self.created_at),
        }


class RegistrySyncLog(db.Model):
    """
    Audit record of one orchestrated registry sync attempt.

    IMMUTABLE: Written once after the attempt concludes. Updates and deletes
    through the ORM raise (see listeners below).
    """
    __tablename__ = "registry_sync_logs"
    __table_args__ = (
        db.Index("ix_registry_sync_logs_org_site_started", "org_id", "site_id", "started_at"),
        db.Index("ix_registry_sync_logs_type", "sync_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True)

    sync_type = db.Column(db.String(32), nullable=False)
    direction = db.Column(db.String(32), nullable=False)  # registry_to_internal, internal_to_registry
    operation = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False)  # completed, failed

    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    response_payload = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    initiated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "sync_type": self.sync_type,
            "direction": self.direction,
            "operation": self.operation,
            "status": self.status,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "response_payload": self.response_payload,
            "error_message": self.error_message,
            "initiated_by": self.initiated_by,
        }


append_only(RegistrySyncLog, "Sync log entries")
