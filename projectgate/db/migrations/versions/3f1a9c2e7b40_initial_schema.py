"""initial_schema

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SINGLE_HOLDER = sa.text("position IN ('primary', 'secondary')")
CHANGE_TYPES = "change_type IN ('created', 'updated', 'deleted')"


def _id() -> sa.Column:
    return sa.Column('id', sa.Uuid(), primary_key=True)


def _fk(name: str, target: str, ondelete: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Uuid(), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _stamp(name: str = 'created_at') -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=False)


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 2), nullable=False, server_default='0')


def _audit_columns() -> list[sa.Column]:
    return [
        _id(),
        sa.Column('subject_key', sa.Text),
        sa.Column('project_id', sa.Uuid()),
        sa.Column('change_type', sa.Text, nullable=False),
        sa.Column('old_values', sa.JSON),
        sa.Column('new_values', sa.JSON),
        sa.Column('changed_fields', sa.JSON, nullable=False),
        sa.Column('changed_by', sa.Text),
        _stamp('changed_at'),
    ]


def upgrade() -> None:
    # Identity
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.Text, nullable=False, unique=True),
        sa.Column('display_name', sa.Text),
        sa.Column('confirmed', sa.Boolean, nullable=False, server_default=sa.false()),
        _stamp(),
    )
    op.create_table(
        'user_roles',
        _id(),
        _fk('user_id', 'users.id', 'CASCADE'),
        sa.Column('role', sa.Text, nullable=False, server_default='user'),
        _stamp(),
        sa.UniqueConstraint('user_id', 'role', name='uq_user_roles_user_role'),
        sa.CheckConstraint(
            "role IN ('admin', 'moderator', 'user', 'client')", name='check_user_role_valid'
        ),
    )
    op.create_index('idx_user_roles_user', 'user_roles', ['user_id'])

    # Projects and membership
    op.create_table(
        'projects',
        _id(),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('project_number', sa.Text),
        sa.Column('status', sa.Text, nullable=False, server_default='active'),
        _fk('created_by', 'users.id', 'SET NULL', nullable=True),
        sa.Column('tenant_schedule_version', sa.Integer, nullable=False, server_default='0'),
        _stamp(),
        _stamp('updated_at'),
    )
    op.create_index('idx_projects_created_by', 'projects', ['created_by'])
    op.create_index('idx_projects_status', 'projects', ['status'])

    op.create_table(
        'project_members',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        _fk('user_id', 'users.id', 'CASCADE'),
        sa.Column('role', sa.Text, nullable=False, server_default='member'),
        sa.Column('position', sa.Text),
        sa.Column('invited_by', sa.Uuid()),
        _stamp(),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_project_members_project_user'),
        sa.CheckConstraint("role IN ('owner', 'editor', 'member')", name='check_member_role_valid'),
        sa.CheckConstraint(
            "position IS NULL OR position IN ('primary', 'secondary', 'admin', 'oversight')",
            name='check_member_position_valid',
        ),
    )
    # One primary and one secondary per project, enforced by the database
    op.create_index(
        'uq_project_single_holder_position',
        'project_members',
        ['project_id', 'position'],
        unique=True,
        sqlite_where=SINGLE_HOLDER,
        postgresql_where=SINGLE_HOLDER,
    )
    op.create_index('idx_project_members_user', 'project_members', ['user_id'])

    # Portal tokens
    op.create_table(
        'portal_tokens',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        sa.Column('token_class', sa.Text, nullable=False),
        sa.Column('token', sa.Text, nullable=False, unique=True),
        sa.Column('short_code', sa.Text, unique=True),
        sa.Column('holder_name', sa.Text),
        sa.Column('holder_email', sa.Text),
        sa.Column('contractor_type', sa.Text),
        sa.Column('document_tabs', sa.JSON, nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('auto_renew', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('access_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_accessed_at', sa.DateTime()),
        sa.Column('renewal_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_renewed_at', sa.DateTime()),
        sa.Column('created_by', sa.Uuid()),
        _stamp(),
        sa.CheckConstraint("token_class IN ('contractor', 'client')", name='check_token_class_valid'),
    )
    op.create_index('idx_portal_tokens_project', 'portal_tokens', ['project_id', 'token_class'])
    op.create_index(
        'idx_portal_tokens_renewal', 'portal_tokens', ['auto_renew', 'is_active', 'expires_at']
    )

    op.create_table(
        'portal_access_logs',
        _id(),
        _fk('token_id', 'portal_tokens.id', 'CASCADE'),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        _stamp('accessed_at'),
        sa.Column('ip_address', sa.Text),
        sa.Column('user_agent', sa.Text),
    )
    op.create_index(
        'idx_portal_access_token_time', 'portal_access_logs', ['token_id', 'accessed_at']
    )

    # Scoped resources
    op.create_table(
        'tenants',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        sa.Column('shop_number', sa.Text, nullable=False),
        sa.Column('shop_name', sa.Text),
        sa.Column('area_m2', sa.Numeric(12, 2)),
        sa.Column('db_size', sa.Text),
        sa.Column('opening_date', sa.DateTime()),
        sa.Column('workforce_details', sa.JSON),
        _stamp(),
        _stamp('updated_at'),
    )
    op.create_index('idx_tenants_project', 'tenants', ['project_id'])

    op.create_table(
        'cable_schedules',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('revision', sa.Text, nullable=False, server_default='Rev 0'),
        _stamp(),
    )
    op.create_table(
        'cable_entries',
        _id(),
        _fk('schedule_id', 'cable_schedules.id', 'CASCADE'),
        sa.Column('cable_tag', sa.Text, nullable=False),
        sa.Column('from_location', sa.Text),
        sa.Column('to_location', sa.Text),
        sa.Column('cable_size', sa.Text),
        sa.Column('planned_length', sa.Numeric(10, 2)),
        sa.Column('measured_length', sa.Numeric(10, 2)),
        sa.Column('contractor_installed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('installed_at', sa.DateTime()),
        sa.Column('contractor_notes', sa.Text),
    )
    op.create_index('idx_cable_entries_schedule', 'cable_entries', ['schedule_id'])

    op.create_table(
        'project_boqs',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        sa.Column('name', sa.Text, nullable=False),
        _money('total_amount'),
    )
    op.create_table(
        'boq_bills',
        _id(),
        _fk('boq_id', 'project_boqs.id', 'CASCADE'),
        sa.Column('bill_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('name', sa.Text, nullable=False),
        _money('total_amount'),
    )
    op.create_table(
        'boq_sections',
        _id(),
        _fk('bill_id', 'boq_bills.id', 'CASCADE'),
        sa.Column('section_code', sa.Text, nullable=False),
        sa.Column('name', sa.Text, nullable=False),
        _money('total_amount'),
    )
    op.create_table(
        'boq_items',
        _id(),
        _fk('section_id', 'boq_sections.id', 'CASCADE'),
        sa.Column('item_code', sa.Text),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('unit', sa.Text),
        sa.Column('item_type', sa.Text, nullable=False, server_default='quantity'),
        sa.Column('quantity', sa.Numeric(14, 3)),
        sa.Column('supply_rate', sa.Numeric(14, 2)),
        sa.Column('install_rate', sa.Numeric(14, 2)),
        sa.Column('prime_cost_amount', sa.Numeric(14, 2)),
        sa.Column('percentage_value', sa.Numeric(7, 3)),
        _fk('reference_item_id', 'boq_items.id', 'SET NULL', nullable=True),
        _money('total_rate'),
        _money('supply_cost'),
        _money('install_cost'),
        _money('total_amount'),
        sa.Column('display_order', sa.Integer, nullable=False, server_default='0'),
        _stamp('updated_at'),
        sa.CheckConstraint(
            "item_type IN ('quantity', 'prime_cost', 'percentage', 'sub_header')",
            name='check_boq_item_type_valid',
        ),
    )
    op.create_index('idx_boq_items_section', 'boq_items', ['section_id'])
    op.create_index('idx_boq_items_reference', 'boq_items', ['reference_item_id'])

    op.create_table(
        'roadmap_items',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        sa.Column('title', sa.Text, nullable=False),
        sa.Column('due_date', sa.DateTime()),
        sa.Column('is_completed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('completed_at', sa.DateTime()),
    )
    op.create_table(
        'procurement_items',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('supplier_name', sa.Text),
        sa.Column('status', sa.Text, nullable=False, server_default='pending'),
        sa.Column('order_date', sa.DateTime()),
        sa.Column('expected_delivery', sa.DateTime()),
        _fk('roadmap_item_id', 'roadmap_items.id', 'SET NULL', nullable=True),
        _stamp('updated_at'),
        sa.CheckConstraint(
            "status IN ('pending', 'quoted', 'ordered', 'in_transit', 'delivered', 'cancelled')",
            name='check_procurement_status_valid',
        ),
    )
    op.create_index(
        'idx_procurement_project_status', 'procurement_items', ['project_id', 'status']
    )

    op.create_table(
        'delivery_confirmations',
        _id(),
        _fk('procurement_item_id', 'procurement_items.id', 'CASCADE'),
        _fk('token_id', 'portal_tokens.id', 'SET NULL', nullable=True),
        sa.Column('confirmed_by_name', sa.Text, nullable=False),
        sa.Column('notes', sa.Text),
        _stamp('confirmed_at'),
    )
    op.create_table(
        'project_documents',
        _id(),
        _fk('project_id', 'projects.id', 'CASCADE'),
        sa.Column('category', sa.Text, nullable=False),
        sa.Column('title', sa.Text, nullable=False),
        sa.Column('file_path', sa.Text),
        _stamp(),
    )
    op.create_index(
        'idx_project_documents_category', 'project_documents', ['project_id', 'category']
    )

    op.create_table(
        'contacts',
        _id(),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('company', sa.Text),
        sa.Column('email', sa.Text),
        sa.Column('phone', sa.Text),
        _stamp(),
    )
    op.create_table(
        'notifications',
        _id(),
        _fk('user_id', 'users.id', 'CASCADE'),
        sa.Column('project_id', sa.Uuid()),
        sa.Column('kind', sa.Text, nullable=False),
        sa.Column('title', sa.Text, nullable=False),
        sa.Column('message', sa.Text),
        sa.Column('entity_type', sa.Text),
        sa.Column('entity_key', sa.Text),
        sa.Column('is_read', sa.Boolean, nullable=False, server_default=sa.false()),
        _stamp(),
    )
    op.create_index('idx_notifications_user_unread', 'notifications', ['user_id', 'is_read'])

    # Audit / history (append-only)
    op.create_table(
        'tenant_change_audit_log',
        *_audit_columns(),
        _fk('tenant_id', 'tenants.id', 'SET NULL', nullable=True),
        sa.CheckConstraint(CHANGE_TYPES, name='check_tenant_audit_change_type'),
    )
    op.create_index(
        'idx_tenant_audit_project_time', 'tenant_change_audit_log', ['project_id', 'changed_at']
    )

    op.create_table(
        'boq_item_history',
        *_audit_columns(),
        _fk('boq_item_id', 'boq_items.id', 'SET NULL', nullable=True),
        sa.CheckConstraint(CHANGE_TYPES, name='check_boq_history_change_type'),
    )
    op.create_index(
        'idx_boq_history_project_time', 'boq_item_history', ['project_id', 'changed_at']
    )

    op.create_table(
        'procurement_audit_log',
        *_audit_columns(),
        _fk('procurement_item_id', 'procurement_items.id', 'SET NULL', nullable=True),
        sa.CheckConstraint(CHANGE_TYPES, name='check_procurement_audit_change_type'),
    )
    op.create_index(
        'idx_procurement_audit_project_time',
        'procurement_audit_log',
        ['project_id', 'changed_at'],
    )

    op.create_table(
        'procurement_status_history',
        _id(),
        _fk('procurement_item_id', 'procurement_items.id', 'SET NULL', nullable=True),
        sa.Column('project_id', sa.Uuid()),
        sa.Column('from_status', sa.Text),
        sa.Column('to_status', sa.Text, nullable=False),
        sa.Column('changed_by', sa.Text),
        _stamp('changed_at'),
    )


def downgrade() -> None:
    for table in (
        'procurement_status_history',
        'procurement_audit_log',
        'boq_item_history',
        'tenant_change_audit_log',
        'notifications',
        'contacts',
        'project_documents',
        'delivery_confirmations',
        'procurement_items',
        'roadmap_items',
        'boq_items',
        'boq_sections',
        'boq_bills',
        'project_boqs',
        'cable_entries',
        'cable_schedules',
        'tenants',
        'portal_access_logs',
        'portal_tokens',
        'project_members',
        'projects',
        'user_roles',
        'users',
    ):
        op.drop_table(table)
