# Overview: Flask CLI command groups for bootstrap, credentials and registry sync.

# backend/canopy/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to canopy (PowerShell: $env:FLASK_APP="canopy").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--org "Org Name"] [--state CO]
#   Idempotent bootstrap: default org, site, roles, permissions and users.
# - python -m flask system init-permissions
#   Initialize permissions and assign defaults to every org's roles.
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
# - python -m flask orgs create --name "Green Acres" --code "GREEN"
# - python -m flask orgs add-site --org-id 1 --name "North Greenhouse" --state CO
#
# Registry credentials:
# - python -m flask credentials set --org-id 1 --state CO --user-key <key> [--sandbox] [--validate]
# - python -m flask credentials list --org-id 1
#
# Registry sync:
# - python -m flask compliance sync --org-id 1 --site-id 1 --type items --type tags [--recent]
#   Retries transport failures (timeouts, connection errors) with capped
#   exponential backoff: --retries 3 --backoff 2
# - python -m flask compliance logs --org-id 1 [--site-id 1] [--limit 20]

import time

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Site, User, RegistryCredential
from .services.auth_service import create_user, create_default_roles, assign_role, PasswordValidationError
from .services import credential_service, permission_service, sync_log_service, sync_orchestrator
from .services.credential_service import CredentialError
from .services.sync_orchestrator import SyncOptions, SyncType


MAX_BACKOFF_SECONDS = 60.0


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--state', 'state_code', default=None, help='Two-letter state of the default site')
@with_appcontext
def init_system(org_name, org_code, state_code):
    """
    Initialize the system: organization, site, roles, permissions and users.

    Creates:
    - Default organization and site (if none exist)
    - Roles: admin, manager, grower, with default permissions
    - Users: admin/manager/grower @canopy.local, password "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing system...")

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    site = db.session.query(Site).filter_by(org_id=org.id).first()
    if not site:
        site = Site(org_id=org.id, name="Main Site", code="MAIN", state_code=state_code.upper() if state_code else None)
        db.session.add(site)
        db.session.commit()
        click.echo(f"PASS Created site: {site.name} (ID: {site.id})")
    else:
        click.echo(f"PASS Using existing site: {site.name} (ID: {site.id})")

    click.echo("\nLIST Creating roles and permissions...")
    create_default_roles(org.id)
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions(org.id)
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"
    for username in ("admin", "manager", "grower"):
        existing = db.session.query(User).filter_by(org_id=org.id, username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists in org, skipping...")
            continue
        try:
            user = create_user(
                username=username,
                email=f"{username}@canopy.local",
                password=default_password,
                org_id=org.id,
                site_id=site.id,
            )
            assign_role(user.id, username)
            click.echo(f"PASS Created user: {username} with role '{username}'")
        except (PasswordValidationError, ValueError) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    click.echo("\nDONE System initialized")
    click.echo(f"Organization: {org.name} (ID: {org.id})  Site: {site.name} (ID: {site.id})")
    click.echo("Default password for all users: Password123! (CHANGE IN PRODUCTION!)")


@system_group.command('init-permissions')
@with_appcontext
def init_permissions():
    """Initialize permissions and grant role defaults in every organization."""
    perm_count = permission_service.initialize_permissions()
    total = 0
    for org in db.session.query(Organization).all():
        create_default_roles(org.id)
        total += permission_service.assign_default_role_permissions(org.id)
    click.echo(f"PASS Created {perm_count} permissions, {total} role assignments")


# =============================================================================
# ORGANIZATION MANAGEMENT COMMANDS (MULTI-TENANT)
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Sites':<8} {'Users'}")
    click.echo("="*80)

    for org in orgs:
        site_count = db.session.query(Site).filter_by(org_id=org.id).count()
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"

        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {site_count:<8} {user_count}")

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant) with its default roles."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    create_default_roles(org.id)
    permission_service.assign_default_role_permissions(org.id)

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@orgs_group.command('add-site')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Site name')
@click.option('--code', help='Site code (unique within org)')
@click.option('--state', 'state_code', help='Two-letter state code')
@with_appcontext
def add_site_to_org_cli(org_id, name, code, state_code):
    """Add a cultivation site to an organization."""
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    existing = db.session.query(Site).filter_by(org_id=org_id, name=name).first()
    if existing:
        click.echo(f"FAIL Site '{name}' already exists in this organization")
        return

    site = Site(org_id=org_id, name=name, code=code, state_code=state_code.upper() if state_code else None)
    db.session.add(site)
    db.session.commit()

    click.echo(f"PASS Created site: {site.name} (ID: {site.id}) in org '{org.name}'")


# =============================================================================
# REGISTRY CREDENTIALS
# =============================================================================

@click.group('credentials')
def credentials_group():
    """Registry credential management commands."""


@credentials_group.command('set')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--state', 'state_code', required=True, help='Two-letter state code')
@click.option('--user-key', required=True, help='Licensee user API key')
@click.option('--sandbox', is_flag=True, help='Use the registry sandbox')
@click.option('--validate', is_flag=True, help='Probe the registry with the new key')
@with_appcontext
def set_credentials_cli(org_id, state_code, user_key, sandbox, validate):
    """Create or rotate an organization's registry key for a state."""
    try:
        credential = credential_service.save_org_credential(
            org_id=org_id,
            state_code=state_code,
            user_api_key=user_key,
            is_sandbox=sandbox,
        )
    except CredentialError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Saved {credential.state_code} credentials for org {org_id} (ID: {credential.id})")

    if validate:
        try:
            ok, error, facilities = credential_service.validate_credential(credential)
        except CredentialError as e:
            click.echo(f"FAIL {e}")
            return
        if ok:
            click.echo(f"PASS Credentials valid, {len(facilities)} facilities visible")
        else:
            click.echo(f"FAIL Validation failed: {error}")


@credentials_group.command('list')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def list_credentials_cli(org_id):
    credentials = db.session.query(RegistryCredential).filter_by(org_id=org_id).order_by(RegistryCredential.state_code).all()
    if not credentials:
        click.echo("No registry credentials configured.")
        return

    for c in credentials:
        validated = c.validated_at.isoformat() if c.validated_at else "never"
        flags = []
        if c.is_sandbox:
            flags.append("sandbox")
        if not c.is_active:
            flags.append("inactive")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"{c.id:<5} {c.state_code:<4} validated: {validated}{suffix}")
        if c.validation_error:
            click.echo(f"      last error: {c.validation_error}")


# =============================================================================
# REGISTRY SYNC
# =============================================================================

@click.group('compliance')
def compliance_group():
    """Registry sync commands."""


def backoff_delay(attempt: int, base: float) -> float:
    """Seconds to wait before retry number `attempt` (0-based), capped."""
    return min(base * (2 ** attempt), MAX_BACKOFF_SECONDS)


def run_with_backoff(run, *, retries: int, backoff: float, sleep=time.sleep):
    """
    Call run() until it succeeds, fails for a non-transport reason, or
    `retries` attempts are used. Returns the last result.
    """
    attempt = 0
    while True:
        result = run()
        attempt += 1
        if result.success or not result.retryable or attempt >= retries:
            return result
        delay = backoff_delay(attempt - 1, backoff)
        click.echo(f"WARN  Transport failure, retrying in {delay:.0f}s ({attempt}/{retries})")
        sleep(delay)


@compliance_group.command('sync')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--site-id', type=int, required=True, help='Site ID')
@click.option('--type', 'sync_types', multiple=True, required=True,
              type=click.Choice([t.value for t in SyncType]), help='Sync type (repeatable)')
@click.option('--tag-type', default='all', show_default=True, help='Plant, Package or all')
@click.option('--recent', is_flag=True, help='Only records modified in the last 7 days')
@click.option('--lot-id', type=int, help='Inventory lot for push_lot')
@click.option('--batch-id', type=int, help='Batch for push_batch')
@click.option('--location', help='Registry location for push_batch')
@click.option('--license-number', help='Facility license for site_link')
@click.option('--retries', type=int, default=3, show_default=True, help='Attempts per sync type')
@click.option('--backoff', type=float, default=2.0, show_default=True, help='Base backoff in seconds')
@with_appcontext
def sync_cli(org_id, site_id, sync_types, tag_type, recent, lot_id, batch_id, location, license_number, retries, backoff):
    """Run one or more registry syncs for a site."""
    options = SyncOptions(
        tag_type=tag_type,
        lot_id=lot_id,
        batch_id=batch_id,
        location=location,
        license_number=license_number,
    )
    if recent:
        window = sync_orchestrator.default_sync_date_range()
        options.last_modified_start = window["last_modified_start"]
        options.last_modified_end = window["last_modified_end"]

    failed = False
    for sync_type in sync_types:
        result = run_with_backoff(
            lambda: sync_orchestrator.run_sync(sync_type, site_id, org_id, None, options),
            retries=max(1, retries),
            backoff=backoff,
        )
        status = "PASS" if result.success else "FAIL"
        click.echo(
            f"{status} {sync_type}: synced={result.synced} created={result.created} "
            f"updated={result.updated} skipped={result.skipped}"
        )
        for warning in result.warnings:
            click.echo(f"WARN  {warning}")
        for error in result.errors:
            click.echo(f"ERROR {error}")
        failed = failed or not result.success

    if failed:
        raise SystemExit(1)


@compliance_group.command('logs')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--site-id', type=int, help='Site ID')
@click.option('--type', 'sync_type', help='Filter by sync type')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def sync_logs_cli(org_id, site_id, sync_type, limit):
    """Show recent sync log entries."""
    entries = sync_log_service.list_sync_logs(org_id, site_id=site_id, sync_type=sync_type, limit=limit)
    if not entries:
        click.echo("No sync log entries found.")
        return

    for entry in entries:
        click.echo(
            f"{entry.id:<6} {entry.started_at.isoformat():<27} {entry.sync_type:<14} "
            f"{entry.operation:<20} {entry.status:<10} site={entry.site_id or '-'}"
        )
        if entry.error_message:
            click.echo(f"       {entry.error_message}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(credentials_group)
    app.cli.add_command(compliance_group)
