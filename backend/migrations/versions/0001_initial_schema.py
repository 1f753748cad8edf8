"""initial portal schema

Revision ID: 0001_initial_schema
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

STATUSES = ('draft', 'submitted', 'additional_info_requested', 'approved_not_paid', 'approved_paid', 'declined')
CRUD_FLAGS = ('can_create_service_ticket', 'can_view_own_tickets', 'can_view_all_tickets', 'can_edit_own_tickets', 'can_edit_all_tickets')


def _flag_columns():
    names = list(CRUD_FLAGS)
    names += [f'can_change_to_{s}' for s in STATUSES]
    names += [f'can_change_from_{s}' for s in STATUSES]
    names += [f'can_delete_{s}' for s in STATUSES]
    return [sa.Column(n, sa.Boolean(), nullable=False, server_default=sa.text('0')) for n in names]


def upgrade():
    op.create_table('user_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False, unique=True),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])

    op.create_table('role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role', sa.String(length=16), nullable=False, unique=True),
        *_flag_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False, unique=True),
        sa.Column('first_name', sa.String(length=80), nullable=False),
        sa.Column('last_name', sa.String(length=80), nullable=False),
        sa.Column('email', sa.String(length=128)),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('company_name', sa.String(length=128)),
        sa.Column('address', sa.String(length=255)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_profiles_user_id', 'profiles', ['user_id'])

    op.create_table('service_tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('work_start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('work_end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('before_photos', sa.JSON()),
        sa.Column('after_photos', sa.JSON()),
        sa.Column('invoice_file', sa.String(length=255)),
        sa.Column('hourly_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('invoice_number', sa.String(length=64)),
        sa.Column('admin_notes', sa.Text()),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            'status IN (' + ', '.join(f"'{s}'" for s in STATUSES) + ')', name='ck_service_tickets_status'),
    )
    op.create_index('ix_service_tickets_user_id', 'service_tickets', ['user_id'])
    op.create_index('ix_service_tickets_status', 'service_tickets', ['status'])

    op.create_table('line_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('service_tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('hours', sa.Float(), nullable=False, server_default='0'),
        sa.Column('hourly_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_line_items_ticket_id', 'line_items', ['ticket_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.String(length=64), nullable=False),
        sa.Column('actor_role', sa.String(length=16)),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64)),
        sa.Column('entity_id', sa.String(length=64)),
        sa.Column('meta', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('line_items')
    op.drop_table('service_tickets')
    op.drop_table('profiles')
    op.drop_table('role_permissions')
    op.drop_table('user_roles')
