from __future__ import annotations

from ..extensions import db
from canopy.time_utils import to_utc_z


class Organization(db.Model):
    """
    Tenant. Owns sites, users, roles, registry credentials and every cached
    registry row; nothing is shared between organizations.

    Deactivating an organization blocks login and revokes its live sessions
    on their next use.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        server_default=db.func.now(), onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization {self.code or self.id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Site(db.Model):
    """
    One licensed cultivation premises.

    Name and code are unique per organization. state_code picks the
    registry credential and endpoint. The registry_* columns describe the
    facility license the site is linked to; only link_service writes them
    and they are all null while compliance_status is "uncompliant".
    """
    __tablename__ = "sites"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_sites_org_name"),
        db.UniqueConstraint("org_id", "code", name="uq_sites_org_code"),
        db.Index("ix_sites_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)
    state_code = db.Column(db.String(2), nullable=True)
    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    registry_license_number = db.Column(db.String(64), nullable=True, index=True)
    registry_facility_id = db.Column(db.String(64), nullable=True)
    registry_credential_id = db.Column(db.Integer, db.ForeignKey("registry_credentials.id"), nullable=True)
    compliance_status = db.Column(db.String(16), nullable=False, default="uncompliant")

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("sites", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_linked(self) -> bool:
        return self.registry_license_number is not None

    def __repr__(self) -> str:
        return f"<Site {self.id} org={self.org_id} {self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "state_code": self.state_code,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "registry_license_number": self.registry_license_number,
            "registry_facility_id": self.registry_facility_id,
            "registry_credential_id": self.registry_credential_id,
            "compliance_status": self.compliance_status,
            "is_linked": self.is_linked,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
