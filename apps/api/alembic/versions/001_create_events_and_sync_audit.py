"""Create events and sync_audit_entries tables.

Revision ID: 001
Revises: 
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'events',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('location', sa.String(length=500), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('max_capacity', sa.Integer(), nullable=False),
        sa.Column('ticket_price', sa.Numeric(precision=36, scale=18), nullable=False),
        sa.Column('visibility', sa.String(length=20), nullable=False),
        sa.Column('require_approval', sa.Boolean(), nullable=False),
        sa.Column('has_poap', sa.Boolean(), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('view_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('creator_id', sa.String(length=42), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('idempotency_token', sa.String(length=255), nullable=False),
        sa.Column('unsigned_operation', sa.JSON(), nullable=True),
        sa.Column('pending_transaction_hash', sa.String(length=66), nullable=True),
        sa.Column('ledger_event_id', sa.Integer(), nullable=True),
        sa.Column('ledger_contract_address', sa.String(length=42), nullable=True),
        sa.Column('ledger_chain_id', sa.Integer(), nullable=True),
        sa.Column('ledger_transaction_hash', sa.String(length=66), nullable=True),
        sa.Column('content_metadata_ref', sa.String(length=255), nullable=True),
        sa.Column('content_image_ref', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('ledger_transaction_hash', name='uq_events_ledger_transaction_hash'),
    )
    op.create_index('ix_events_slug', 'events', ['slug'])
    op.create_index('ix_events_start_time', 'events', ['start_time'])
    op.create_index('ix_events_category', 'events', ['category'])
    op.create_index('ix_events_creator_id', 'events', ['creator_id'])
    op.create_index('ix_events_status', 'events', ['status'])
    op.create_index('ix_events_ledger_event_id', 'events', ['ledger_event_id'])

    # At most one in-flight draft per idempotency token
    op.create_index(
        'uq_events_inflight_idempotency_token',
        'events',
        ['idempotency_token'],
        unique=True,
        postgresql_where=sa.text("status IN ('draft', 'pending_ledger')"),
    )

    op.create_table(
        'sync_audit_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entry_hash', sa.String(length=64), nullable=False),
        sa.Column('previous_entry_hash', sa.String(length=64), nullable=True),
        sa.Column('event_id', sa.String(length=36), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('payload_json', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sync_audit_entries_entry_hash', 'sync_audit_entries', ['entry_hash'], unique=True)
    op.create_index('ix_sync_audit_entries_previous_entry_hash', 'sync_audit_entries', ['previous_entry_hash'])
    op.create_index('ix_sync_audit_entries_event_id', 'sync_audit_entries', ['event_id'])
    op.create_index('ix_sync_audit_entries_action', 'sync_audit_entries', ['action'])
    op.create_index('ix_sync_audit_entries_created_at', 'sync_audit_entries', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_sync_audit_entries_created_at', table_name='sync_audit_entries')
    op.drop_index('ix_sync_audit_entries_action', table_name='sync_audit_entries')
    op.drop_index('ix_sync_audit_entries_event_id', table_name='sync_audit_entries')
    op.drop_index('ix_sync_audit_entries_previous_entry_hash', table_name='sync_audit_entries')
    op.drop_index('ix_sync_audit_entries_entry_hash', table_name='sync_audit_entries')
    op.drop_table('sync_audit_entries')

    op.drop_index('uq_events_inflight_idempotency_token', table_name='events')
    op.drop_index('ix_events_ledger_event_id', table_name='events')
    op.drop_index('ix_events_status', table_name='events')
    op.drop_index('ix_events_creator_id', table_name='events')
    op.drop_index('ix_events_category', table_name='events')
    op.drop_index('ix_events_start_time', table_name='events')
    op.drop_index('ix_events_slug', table_name='events')
    op.drop_table('events')
