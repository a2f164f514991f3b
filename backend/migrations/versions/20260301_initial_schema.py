"""Initial schema: tenancy, auth, cultivation and registry compliance

Revision ID: 20260301_initial
Revises:
Create Date: 2026-03-01

This migration creates:
1. Organizations, registry credentials and sites (tenant root)
2. Users, roles, permissions, sessions and security events
3. Cultivars, batches and inventory lots
4. Registry caches (items, tags, plant batches, facilities)
5. Registry mappings (partial unique indexes on active rows)
6. Registry sync log (append-only)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    ]


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('organizations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_organizations_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_organizations_is_active'), ['is_active'], unique=False)

    op.create_table('registry_credentials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('state_code', sa.String(length=2), nullable=False),
        sa.Column('user_api_key', sa.String(length=255), nullable=False),
        sa.Column('is_sandbox', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validation_error', sa.Text(), nullable=True),
        sa.Column('last_facilities_sync', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'state_code', name='uq_registry_credentials_org_state'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('registry_credentials', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_registry_credentials_org_id'), ['org_id'], unique=False)

    op.create_table('sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('state_code', sa.String(length=2), nullable=True),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('registry_license_number', sa.String(length=64), nullable=True),
        sa.Column('registry_facility_id', sa.String(length=64), nullable=True),
        sa.Column('registry_credential_id', sa.Integer(), nullable=True),
        sa.Column('compliance_status', sa.String(length=16), nullable=False, server_default='uncompliant'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['registry_credential_id'], ['registry_credentials.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'name', name='uq_sites_org_name'),
        sa.UniqueConstraint('org_id', 'code', name='uq_sites_org_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sites', schema=None) as batch_op:
        batch_op.create_index('ix_sites_org_id', ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sites_code'), ['code'], unique=False)
        batch_op.create_index(batch_op.f('ix_sites_registry_license_number'), ['registry_license_number'], unique=False)

    # ==========================================================================
    # 2. AUTH
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'username', name='uq_users_org_username'),
        sa.UniqueConstraint('org_id', 'email', name='uq_users_org_email'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_org_id', ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_username'), ['username'], unique=False)

    op.create_table('roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'name', name='uq_roles_org_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('roles', schema=None) as batch_op:
        batch_op.create_index('ix_roles_org_id', ['org_id'], unique=False)

    op.create_table('user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('user_roles', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_user_roles_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_user_roles_role_id'), ['role_id'], unique=False)

    op.create_table('permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('permissions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_permissions_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_permissions_category'), ['category'], unique=False)

    op.create_table('role_permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('permission_id', sa.Integer(), nullable=False),
        sa.Column('granted_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.ForeignKeyConstraint(['permission_id'], ['permissions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permissions'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('role_permissions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_role_permissions_role_id'), ['role_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_role_permissions_permission_id'), ['permission_id'], unique=False)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=True),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.Column('last_used_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_session_tokens_user_active', ['user_id', 'is_revoked'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_session_tokens_expires_at'), ['expires_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_is_revoked'), ['is_revoked'], unique=False)

    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=True),
        sa.Column('site_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('security_events', schema=None) as batch_op:
        batch_op.create_index('ix_security_events_user_type', ['user_id', 'event_type'], unique=False)
        batch_op.create_index('ix_security_events_org_occurred', ['org_id', 'occurred_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_success'), ['success'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_occurred_at'), ['occurred_at'], unique=False)

    # ==========================================================================
    # 3. CULTIVATION
    # ==========================================================================
    op.create_table('cultivars',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('registry_strain_id', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'name', name='uq_cultivars_org_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cultivars', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cultivars_org_id'), ['org_id'], unique=False)

    op.create_table('batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('cultivar_id', sa.Integer(), nullable=True),
        sa.Column('batch_number', sa.String(length=128), nullable=False),
        sa.Column('stage', sa.String(length=32), nullable=False, server_default='clone'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='active'),
        sa.Column('plant_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tracked_plant_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('untracked_plant_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('source_type', sa.String(length=32), nullable=False, server_default='internal'),
        sa.Column('tracking_mode', sa.String(length=16), nullable=False, server_default='open_loop'),
        sa.Column('registry_batch_id', sa.String(length=64), nullable=True),
        sa.Column('registry_package_tag', sa.String(length=64), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['cultivar_id'], ['cultivars.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'batch_number', name='uq_batches_org_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('batches', schema=None) as batch_op:
        batch_op.create_index('ix_batches_site_stage', ['site_id', 'stage'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_registry_batch_id'), ['registry_batch_id'], unique=False)

    op.create_table('inventory_lots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('lot_number', sa.String(length=128), nullable=False),
        sa.Column('item_name', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('unit_of_measure', sa.String(length=32), nullable=False, server_default='Grams'),
        sa.Column('packaged_date', sa.Date(), nullable=True),
        sa.Column('package_tag', sa.String(length=64), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('registry_package_tag', sa.String(length=64), nullable=True),
        sa.Column('registry_package_id', sa.String(length=64), nullable=True),
        sa.Column('registry_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'lot_number', name='uq_inventory_lots_org_number'),
        sa.UniqueConstraint('registry_package_tag'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_lots', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_inventory_lots_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_lots_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_lots_batch_id'), ['batch_id'], unique=False)

    # ==========================================================================
    # 4. REGISTRY CACHES
    # ==========================================================================
    op.create_table('registry_item_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('registry_item_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('product_category_name', sa.String(length=255), nullable=True),
        sa.Column('product_category_type', sa.String(length=128), nullable=True),
        sa.Column('quantity_type', sa.String(length=64), nullable=True),
        sa.Column('unit_of_measure', sa.String(length=64), nullable=True),
        sa.Column('default_lab_testing_state', sa.String(length=64), nullable=True),
        sa.Column('approval_status', sa.String(length=64), nullable=True),
        sa.Column('strain_id', sa.String(length=64), nullable=True),
        sa.Column('strain_name', sa.String(length=255), nullable=True),
        sa.Column('requires_strain', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'site_id', 'registry_item_id', name='uq_registry_item_cache_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('registry_item_cache', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_registry_item_cache_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_item_cache_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_item_cache_is_active'), ['is_active'], unique=False)

    op.create_table('registry_strain_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('registry_strain_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('testing_status', sa.String(length=64), nullable=True),
        sa.Column('thc_level', sa.Float(), nullable=True),
        sa.Column('cbd_level', sa.Float(), nullable=True),
        sa.Column('indica_percentage', sa.Float(), nullable=True),
        sa.Column('sativa_percentage', sa.Float(), nullable=True),
        sa.Column('is_used', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'site_id', 'registry_strain_id', name='uq_registry_strain_cache_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('registry_strain_cache', schema=None) as batch_op:
        batch_op.create_index('ix_registry_strain_cache_site_name', ['site_id', 'name'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_strain_cache_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_strain_cache_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_strain_cache_is_active'), ['is_active'], unique=False)

    op.create_table('registry_tag_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('tag_number', sa.String(length=64), nullable=False),
        sa.Column('registry_tag_id', sa.String(length=64), nullable=True),
        sa.Column('tag_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='available'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'site_id', 'tag_number', name='uq_registry_tag_cache_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('registry_tag_cache', schema=None) as batch_op:
        batch_op.create_index('ix_registry_tag_cache_site_type_status', ['site_id', 'tag_type', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_tag_cache_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_tag_cache_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_tag_cache_is_active'), ['is_active'], unique=False)

    op.create_table('registry_plant_batch_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('registry_batch_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('batch_type', sa.String(length=32), nullable=True),
        sa.Column('strain_name', sa.String(length=255), nullable=True),
        sa.Column('location_name', sa.String(length=255), nullable=True),
        sa.Column('plant_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tracked_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('untracked_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('planted_date', sa.Date(), nullable=True),
        sa.Column('destroyed_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_linked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('linked_batch_id', sa.Integer(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['linked_batch_id'], ['batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'site_id', 'registry_batch_id', name='uq_registry_plant_batch_cache_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('registry_plant_batch_cache', schema=None) as batch_op:
        batch_op.create_index('ix_registry_plant_batch_cache_site_name', ['site_id', 'name'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_plant_batch_cache_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_plant_batch_cache_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_plant_batch_cache_is_active'), ['is_active'], unique=False)

    op.create_table('registry_facility_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('credential_id', sa.Integer(), nullable=True),
        sa.Column('license_number', sa.String(length=64), nullable=False),
        sa.Column('registry_facility_id', sa.String(length=64), nullable=True),
        sa.Column('facility_name', sa.String(length=255), nullable=False),
        sa.Column('facility_type', sa.String(length=128), nullable=True),
        sa.Column('state_code', sa.String(length=2), nullable=True),
        sa.Column('address', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_linked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('linked_site_id', sa.Integer(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['credential_id'], ['registry_credentials.id'], ),
        sa.ForeignKeyConstraint(['linked_site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'license_number', name='uq_registry_facility_cache_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('registry_facility_cache', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_registry_facility_cache_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_registry_facility_cache_is_active'), ['is_active'], unique=False)

    # ==========================================================================
    # 5. REGISTRY MAPPINGS
    # ==========================================================================
    op.create_table('registry_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=True),
        sa.Column('entity_type', sa.String(length=16), nullable=False),
        sa.Column('internal_id', sa.Integer(), nullable=False),
        sa.Column('registry_entity_type', sa.String(length=32), nullable=False),
        sa.Column('registry_id', sa.String(length=128), nullable=False),
        sa.Column('registry_name', sa.String(length=255), nullable=True),
        sa.Column('sync_status', sa.String(length=16), nullable=False, server_default='synced'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(
        'uq_registry_mappings_active_internal',
        'registry_mappings',
        ['entity_type', 'internal_id', 'registry_entity_type'],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index(
        'uq_registry_mappings_active_registry',
        'registry_mappings',
        ['registry_entity_type', 'registry_id'],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index('ix_registry_mappings_org_site', 'registry_mappings', ['org_id', 'site_id'], unique=False)

    # ==========================================================================
    # 6. REGISTRY SYNC LOG
    # ==========================================================================
    op.create_table('registry_sync_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=True),
        sa.Column('sync_type', sa.String(length=32), nullable=False),
        sa.Column('direction', sa.String(length=32), nullable=False),
        sa.Column('operation', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('response_payload', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('initiated_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['initiated_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('registry_sync_logs', schema=None) as batch_op:
        batch_op.create_index('ix_registry_sync_logs_org_site_started', ['org_id', 'site_id', 'started_at'], unique=False)
        batch_op.create_index('ix_registry_sync_logs_type', ['sync_type'], unique=False)


def downgrade():
    op.drop_table('registry_sync_logs')
    op.drop_index('ix_registry_mappings_org_site', table_name='registry_mappings')
    op.drop_index('uq_registry_mappings_active_registry', table_name='registry_mappings')
    op.drop_index('uq_registry_mappings_active_internal', table_name='registry_mappings')
    op.drop_table('registry_mappings')
    op.drop_table('registry_facility_cache')
    op.drop_table('registry_plant_batch_cache')
    op.drop_table('registry_tag_cache')
    op.drop_table('registry_strain_cache')
    op.drop_table('registry_item_cache')
    op.drop_table('inventory_lots')
    op.drop_table('batches')
    op.drop_table('cultivars')
    op.drop_table('security_events')
    op.drop_table('session_tokens')
    op.drop_table('role_permissions')
    op.drop_table('permissions')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_table('users')
    op.drop_table('sites')
    op.drop_table('registry_credentials')
    op.drop_table('organizations')
