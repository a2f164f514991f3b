# Overview: Sync Orchestrator; single entry point for every registry sync attempt.

"""
Registry Sync Orchestrator

WHY: API routes, the CLI and the batch workflow all trigger registry work.
Funnelling them through run_sync gives one place that re-checks tenancy,
resolves credentials, dispatches by SyncType and writes the audit entry.

GUARANTEES:
1. Exactly one RegistrySyncLog entry per run_sync call, whatever the outcome
   (unknown sync type, tenant mismatch, configuration error, registry
   failure or success)
2. No exception escapes: every outcome is a SyncResult
3. Configuration errors fail before any registry call
4. Pushes of already-synced lots and batches succeed without resolving
   credentials

MULTI-TENANT: site_id and user_id are re-validated against org_id even when
the caller already did so. A mismatch is recorded as a security event and
as a failed sync entry without a site.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

from ..extensions import db
from ..models import Batch
from ..registry import RegistryError, is_transport_failure
from . import credential_service, link_service, phase_service, push_sync_service, registry_pull_service, sync_log_service
from .credential_service import CredentialError
from .link_service import LinkError
from .tenant_service import TenantAccessError, require_site_in_org, require_user_in_org, validate_org_active
from canopy.time_utils import recent_date_range, to_utc_z, utcnow


log = logging.getLogger(__name__)


class SyncType(str, enum.Enum):
    ITEMS = "items"
    STRAINS = "strains"
    TAGS = "tags"
    PLANT_BATCHES = "plant_batches"
    FACILITIES = "facilities"
    PUSH_LOT = "push_lot"
    PUSH_BATCH = "push_batch"
    PHASE_CHECK = "phase_check"
    SITE_LINK = "site_link"

    @classmethod
    def parse(cls, value) -> "SyncType":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except (ValueError, AttributeError):
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Invalid sync_type: {value}. Must be one of: {valid}") from None


PUSH_TYPES = {SyncType.PUSH_LOT, SyncType.PUSH_BATCH, SyncType.PHASE_CHECK}

OPERATIONS = {
    SyncType.ITEMS: "sync_items",
    SyncType.STRAINS: "sync_strains",
    SyncType.TAGS: "sync_tags",
    SyncType.PLANT_BATCHES: "sync_plant_batches",
    SyncType.FACILITIES: "sync_facilities",
    SyncType.PUSH_LOT: "create_package",
    SyncType.PUSH_BATCH: "create_plant_batch",
    SyncType.PHASE_CHECK: "change_growth_phase",
    SyncType.SITE_LINK: "link_facility",
}

# Operation recorded for a sync_type string that names no SyncType
UNKNOWN_OPERATION = "unknown"


def _type_value(sync_type) -> str:
    """Log and response form of a sync type; unparsed strings are truncated to the column width."""
    if isinstance(sync_type, SyncType):
        return sync_type.value
    return str(sync_type)[:32]


@dataclass
class SyncOptions:
    last_modified_start: str | None = None
    last_modified_end: str | None = None
    tag_type: str = "all"
    lot_id: int | None = None
    batch_id: int | None = None
    previous_stage: str | None = None
    new_stage: str | None = None
    location: str | None = None
    starting_tag: str | None = None
    license_number: str | None = None
    source_package_tag: str | None = None
    source_plant_tags: list[str] | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "SyncOptions":
        data = data or {}
        return cls(
            last_modified_start=data.get("last_modified_start"),
            last_modified_end=data.get("last_modified_end"),
            tag_type=data.get("tag_type") or "all",
            lot_id=data.get("lot_id"),
            batch_id=data.get("batch_id"),
            previous_stage=data.get("previous_stage"),
            new_stage=data.get("new_stage"),
            location=data.get("location"),
            starting_tag=data.get("starting_tag"),
            license_number=data.get("license_number"),
            source_package_tag=data.get("source_package_tag"),
            source_plant_tags=data.get("source_plant_tags"),
        )

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class SyncResult:
    sync_type: SyncType | str
    success: bool = True
    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)
    retryable: bool = False
    started_at: object = None
    completed_at: object = None
    log_id: int | None = None

    def fail(self, message: str, *, retryable: bool = False) -> None:
        self.success = False
        self.retryable = self.retryable or retryable
        self.errors.append(message)

    def data(self) -> dict:
        data = {
            "synced": self.synced,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
        data.update(self.details)
        return data

    def to_dict(self) -> dict:
        duration_ms = None
        if self.started_at is not None and self.completed_at is not None:
            duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)
        return {
            "success": self.success,
            "sync_type": _type_value(self.sync_type),
            "data": self.data(),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "duration_ms": duration_ms,
            "log_id": self.log_id,
        }


@dataclass
class _SyncContext:
    sync_type: SyncType
    site: object
    org_id: int
    user_id: int | None
    options: SyncOptions
    client_factory: object
    clients: list = field(default_factory=list)

    def site_client(self):
        credentials = credential_service.get_site_registry_credentials(self.site.id, self.org_id)
        return self._open(credentials)

    def state_client(self):
        credentials = credential_service.get_state_registry_credentials(self.site.id, self.org_id)
        return self._open(credentials), credentials

    def _open(self, credentials):
        client = self.client_factory(credentials)
        self.clients.append(client)
        return client

    def close(self) -> None:
        for client in self.clients:
            close = getattr(client, "close", None)
            if close:
                close()


def _from_pull(sync_type: SyncType, pull) -> SyncResult:
    return SyncResult(
        sync_type=sync_type,
        success=pull.success,
        synced=pull.synced,
        created=pull.created,
        updated=pull.updated,
        skipped=pull.skipped,
        errors=list(pull.errors),
        warnings=list(pull.warnings),
        details={"deactivated": pull.deactivated, **pull.details},
        retryable=pull.retryable,
    )


# -- dispatch arms --

def _sync_items(ctx: _SyncContext) -> SyncResult:
    pull = registry_pull_service.sync_items_from_registry(
        ctx.site_client(),
        ctx.org_id,
        ctx.site.id,
        last_modified_start=ctx.options.last_modified_start,
        last_modified_end=ctx.options.last_modified_end,
    )
    return _from_pull(ctx.sync_type, pull)


def _sync_strains(ctx: _SyncContext) -> SyncResult:
    pull = registry_pull_service.sync_strains_from_registry(ctx.site_client(), ctx.org_id, ctx.site.id)
    return _from_pull(ctx.sync_type, pull)


def _sync_tags(ctx: _SyncContext) -> SyncResult:
    pull = registry_pull_service.sync_tags_from_registry(
        ctx.site_client(),
        ctx.org_id,
        ctx.site.id,
        tag_type=ctx.options.tag_type or "all",
    )
    return _from_pull(ctx.sync_type, pull)


def _sync_plant_batches(ctx: _SyncContext) -> SyncResult:
    pull = registry_pull_service.sync_plant_batches_from_registry(
        ctx.site_client(),
        ctx.org_id,
        ctx.site.id,
        last_modified_start=ctx.options.last_modified_start,
        last_modified_end=ctx.options.last_modified_end,
    )
    return _from_pull(ctx.sync_type, pull)


def _sync_facilities(ctx: _SyncContext) -> SyncResult:
    client, credentials = ctx.state_client()
    pull = registry_pull_service.sync_facilities_from_registry(client, ctx.org_id, credentials.credential_id)
    return _from_pull(ctx.sync_type, pull)


def _push_lot(ctx: _SyncContext) -> SyncResult:
    if not ctx.options.lot_id:
        raise ValueError("lot_id is required")

    # Repushing a synced lot is a no-op and must not depend on the site's credentials
    lot = push_sync_service.get_scoped_lot(ctx.options.lot_id, ctx.site.id, ctx.org_id)
    client = ctx.site_client() if lot is not None and not lot.registry_package_tag else None

    push = push_sync_service.push_inventory_lot_to_registry(
        client,
        ctx.options.lot_id,
        ctx.site.id,
        ctx.org_id,
        ctx.user_id,
    )
    return SyncResult(
        sync_type=ctx.sync_type,
        success=push.success,
        synced=push.lots_created,
        created=push.lots_created,
        errors=list(push.errors),
        warnings=list(push.warnings),
        details={
            "lots_created": push.lots_created,
            "already_synced": push.already_synced,
            "package_tag": push.package_tag,
        },
    )


def _push_batch(ctx: _SyncContext) -> SyncResult:
    opts = ctx.options
    if not opts.batch_id:
        raise ValueError("batch_id is required")

    batch = push_sync_service.get_scoped_batch(opts.batch_id, ctx.site.id, ctx.org_id)
    client = ctx.site_client() if batch is not None and not push_sync_service.registry_batch_id_for(batch) else None

    push = push_sync_service.push_batch_to_registry(
        client,
        opts.batch_id,
        ctx.site.id,
        ctx.org_id,
        ctx.user_id,
        location=opts.location,
        source_package_tag=opts.source_package_tag,
        source_plant_tags=opts.source_plant_tags,
    )
    return SyncResult(
        sync_type=ctx.sync_type,
        success=push.success,
        synced=push.batches_created,
        created=push.batches_created,
        errors=list(push.errors),
        warnings=list(push.warnings),
        details={
            "batches_created": push.batches_created,
            "already_synced": push.already_synced,
            "registry_batch_id": push.registry_batch_id,
        },
    )



def _phase_check(ctx: _SyncContext) -> SyncResult:
    opts = ctx.options
    if not opts.batch_id:
        raise ValueError("batch_id is required")

    batch = db.session.query(Batch).filter_by(id=opts.batch_id, org_id=ctx.org_id, site_id=ctx.site.id).first()
    if not batch:
        raise LinkError("Batch not found")

    new_stage = opts.new_stage or batch.stage
    result = SyncResult(sync_type=ctx.sync_type, details={"batches_changed": 0})

    if not phase_service.will_trigger_phase_sync(batch.id, opts.previous_stage, new_stage):
        result.warnings.append(f"No registry phase change required for {opts.previous_stage} -> {new_stage}")
        return result

    push = phase_service.push_batch_phase_change(
        ctx.site_client(),
        batch,
        previous_stage=opts.previous_stage,
        new_stage=new_stage,
        location=opts.location,
        starting_tag=opts.starting_tag,
    )
    db.session.commit()

    result.success = push.success
    result.synced = push.batches_changed
    result.updated = push.batches_changed
    result.errors.extend(push.errors)
    result.warnings.extend(push.warnings)
    result.details["batches_changed"] = push.batches_changed
    return result


def _site_link(ctx: _SyncContext) -> SyncResult:
    previous_license = ctx.site.registry_license_number
    site = link_service.link_facility_to_site(
        site_id=ctx.site.id,
        org_id=ctx.org_id,
        license_number=ctx.options.license_number,
        user_id=ctx.user_id,
        record_log=False,
    )
    return SyncResult(
        sync_type=ctx.sync_type,
        synced=1,
        updated=1,
        details={
            "license_number": site.registry_license_number,
            "previous_license_number": previous_license,
            "compliance_status": site.compliance_status,
        },
    )


_ROUTINES = {
    SyncType.ITEMS: _sync_items,
    SyncType.STRAINS: _sync_strains,
    SyncType.TAGS: _sync_tags,
    SyncType.PLANT_BATCHES: _sync_plant_batches,
    SyncType.FACILITIES: _sync_facilities,
    SyncType.PUSH_LOT: _push_lot,
    SyncType.PUSH_BATCH: _push_batch,
    SyncType.PHASE_CHECK: _phase_check,
    SyncType.SITE_LINK: _site_link,
}

_unhandled = set(SyncType) - set(_ROUTINES)
if _unhandled:
    raise RuntimeError(f"No sync routine registered for: {sorted(t.value for t in _unhandled)}")


def _write_log(result: SyncResult, *, org_id: int, site_id: int | None, user_id: int | None, options: SyncOptions) -> None:
    direction = sync_log_service.DIRECTION_PUSH if result.sync_type in PUSH_TYPES else sync_log_service.DIRECTION_PULL
    payload = result.data()
    payload["options"] = options.to_dict()
    entry = sync_log_service.record_sync(
        org_id=org_id,
        site_id=site_id,
        sync_type=_type_value(result.sync_type),
        direction=direction,
        operation=OPERATIONS.get(result.sync_type, UNKNOWN_OPERATION),
        success=result.success,
        started_at=result.started_at,
        completed_at=result.completed_at,
        payload=payload,
        errors=result.errors,
        user_id=user_id,
    )
    result.log_id = entry.id


def run_sync(
    sync_type,
    site_id: int,
    org_id: int,
    user_id: int | None = None,
    options: SyncOptions | None = None,
    *,
    client_factory=None,
) -> SyncResult:
    """
    Run one registry sync for a site and record it.

    client_factory maps ResolvedCredentials to a registry client; tests
    pass a fake, everything else uses credential_service.build_client.
    """
    options = options or SyncOptions()
    client_factory = client_factory or credential_service.build_client
    started_at = utcnow()

    try:
        sync_type = SyncType.parse(sync_type)
    except ValueError as e:
        log.warning("registry sync rejected for org %s site %s: %s", org_id, site_id, e)
        result = SyncResult(sync_type=_type_value(sync_type), started_at=started_at)
        result.fail(str(e))
        result.completed_at = utcnow()
        _write_log(result, org_id=org_id, site_id=None, user_id=None, options=options)
        return result

    result = SyncResult(sync_type=sync_type, started_at=started_at)

    try:
        validate_org_active(org_id)
        site = require_site_in_org(site_id, org_id)
        require_user_in_org(user_id, org_id)
    except TenantAccessError as e:
        db.session.rollback()
        log.warning("registry sync %s denied for org %s site %s: %s", sync_type.value, org_id, site_id, e)
        result.fail(str(e))
        result.completed_at = utcnow()
        _write_log(result, org_id=org_id, site_id=None, user_id=None, options=options)
        return result

    ctx = _SyncContext(
        sync_type=sync_type,
        site=site,
        org_id=org_id,
        user_id=user_id,
        options=options,
        client_factory=client_factory,
    )
    try:
        outcome = _ROUTINES[sync_type](ctx)
        outcome.started_at = started_at
        result = outcome
    except (CredentialError, LinkError, TenantAccessError, ValueError) as e:
        db.session.rollback()
        result.fail(str(e))
    except RegistryError as e:
        db.session.rollback()
        result.fail(e.message, retryable=is_transport_failure(e))
    except Exception:
        db.session.rollback()
        log.exception("registry sync %s failed for org %s site %s", sync_type.value, org_id, site_id)
        result.fail("Unexpected error during registry sync")
    finally:
        ctx.close()

    result.completed_at = utcnow()
    _write_log(result, org_id=org_id, site_id=site.id, user_id=user_id, options=options)

    log.info(
        "registry sync %s org=%s site=%s success=%s synced=%s errors=%s",
        sync_type.value,
        org_id,
        site.id,
        result.success,
        result.synced,
        len(result.errors),
    )
    return result


def run_multiple_sync(
    sync_types,
    site_id: int,
    org_id: int,
    user_id: int | None = None,
    options: SyncOptions | None = None,
    *,
    client_factory=None,
) -> list[SyncResult]:
    """Run several sync types in order; a failure does not stop the rest."""
    return [
        run_sync(sync_type, site_id, org_id, user_id, options, client_factory=client_factory)
        for sync_type in sync_types
    ]


def default_sync_date_range(days: int = 7) -> dict:
    start, end = recent_date_range(days)
    return {"last_modified_start": start, "last_modified_end": end}
