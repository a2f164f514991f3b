from __future__ import annotations

from ..extensions import db
from canopy.time_utils import to_utc_z


BATCH_STAGES = ("germination", "clone", "vegetative", "flowering", "harvest", "drying", "curing")


class Cultivar(db.Model):
    """
    Cultivar (strain) catalog entry for an organization.

    Name is unique per organization; plant-batch imports match against it
    case-insensitively. registry_strain_id is set once a strains sync has
    matched the cultivar to a registry strain.
    """
    __tablename__ = "cultivars"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_cultivars_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    registry_strain_id = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "registry_strain_id": self.registry_strain_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Batch(db.Model):
    """
    Internal plant batch: the authoritative record for a group of plants.

    COMPLIANCE: registry_batch_id / registry_package_tag stay null until the
    batch is linked to the registry (import or push). tracking_mode records
    whether plant movements are mirrored to the registry (closed_loop) or
    tracked only internally (open_loop).
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("org_id", "batch_number", name="uq_batches_org_number"),
        db.Index("ix_batches_site_stage", "site_id", "stage"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    cultivar_id = db.Column(db.Integer, db.ForeignKey("cultivars.id"), nullable=True)

    batch_number = db.Column(db.String(128), nullable=False)
    stage = db.Column(db.String(32), nullable=False, default="clone")
    status = db.Column(db.String(32), nullable=False, default="active")  # active, quarantined, completed, destroyed

    plant_count = db.Column(db.Integer, nullable=False, default=0)
    tracked_plant_count = db.Column(db.Integer, nullable=False, default=0)
    untracked_plant_count = db.Column(db.Integer, nullable=False, default=0)
    start_date = db.Column(db.Date, nullable=True)

    source_type = db.Column(db.String(32), nullable=False, default="internal")  # internal, registry_import
    tracking_mode = db.Column(db.String(16), nullable=False, default="open_loop")  # open_loop, closed_loop
    registry_batch_id = db.Column(db.String(64), nullable=True, index=True)
    registry_package_tag = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    site = db.relationship("Site", backref=db.backref("batches", lazy=True))
    cultivar = db.relationship("Cultivar", backref=db.backref("batches", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "cultivar_id": self.cultivar_id,
            "batch_number": self.batch_number,
            "stage": self.stage,
            "status": self.status,
            "plant_count": self.plant_count,
            "tracked_plant_count": self.tracked_plant_count,
            "untracked_plant_count": self.untracked_plant_count,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "source_type": self.source_type,
            "tracking_mode": self.tracking_mode,
            "registry_batch_id": self.registry_batch_id,
            "registry_package_tag": self.registry_package_tag,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLot(db.Model):
    """
    Packaged inventory lot (harvested or processed product).

    COMPLIANCE: A lot becomes a registry package on push. package_tag is the
    tag assigned locally before push; registry_package_tag is set only after
    the registry accepted the package and is never cleared.
    """
    __tablename__ = "inventory_lots"
    __table_args__ = (
        db.UniqueConstraint("org_id", "lot_number", name="uq_inventory_lots_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)

    lot_number = db.Column(db.String(128), nullable=False)
    item_name = db.Column(db.String(255), nullable=True)  # Registry item name
    quantity = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    unit_of_measure = db.Column(db.String(32), nullable=False, default="Grams")
    packaged_date = db.Column(db.Date, nullable=True)
    package_tag = db.Column(db.String(64), nullable=True)
    note = db.Column(db.Text, nullable=True)

    registry_package_tag = db.Column(db.String(64), nullable=True, unique=True)
    registry_package_id = db.Column(db.String(64), nullable=True)
    registry_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    site = db.relationship("Site", backref=db.backref("inventory_lots", lazy=True))
    batch = db.relationship("Batch", backref=db.backref("inventory_lots", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "site_id": self.site_id,
            "batch_id": self.batch_id,
            "lot_number": self.lot_number,
            "item_name": self.item_name,
            "quantity": float(self.quantity) if self.quantity is not None else None,
            "unit_of_measure": self.unit_of_measure,
            "packaged_date": self.packaged_date.isoformat() if self.packaged_date else None,
            "package_tag": self.package_tag,
            "note": self.note,
            "registry_package_tag": self.registry_package_tag,
            "registry_package_id": self.registry_package_id,
            "registry_synced_at": to_utc_z(self.registry_synced_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
