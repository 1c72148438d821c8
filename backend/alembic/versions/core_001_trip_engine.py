"""Core: trips, normalized client assignments, schedule, facts cache, search components

Revision ID: core_001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = 'core_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

json_document = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    # --- Trips (document side keeps the embedded client list) ---
    op.create_table(
        'trips',
        sa.Column('trip_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('destinations', json_document, nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('slug', sa.String(length=120), nullable=True),
        sa.Column('primary_client_email', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('clients', json_document, nullable=True),
        sa.Column('financials', json_document, nullable=True),
        sa.Column('document_version', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('trip_id'),
        sa.UniqueConstraint('slug'),
    )

    # --- Authoritative assignments ---
    op.create_table(
        'trip_client_assignments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('trip_id', sa.Integer(), nullable=False),
        sa.Column('client_email', sa.String(length=255), nullable=False),
        sa.Column('client_role', sa.String(length=30), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.trip_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('trip_id', 'client_email', 'client_role', name='uq_trip_client_role'),
    )
    op.create_index('ix_trip_client_assignments_email', 'trip_client_assignments', ['client_email'])

    # --- Schedule ---
    op.create_table(
        'trip_activities',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('trip_id', sa.Integer(), nullable=False),
        sa.Column('day_number', sa.Integer(), nullable=False),
        sa.Column('activity_type', sa.String(length=30), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.trip_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_trip_activities_trip_id', 'trip_activities', ['trip_id'])

    op.create_table(
        'trip_transit_legs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('trip_id', sa.Integer(), nullable=False),
        sa.Column('mode', sa.String(length=20), nullable=True),
        sa.Column('origin', sa.String(length=100), nullable=True),
        sa.Column('destination', sa.String(length=100), nullable=True),
        sa.Column('depart_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('arrive_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.trip_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_trip_transit_legs_trip_id', 'trip_transit_legs', ['trip_id'])

    # --- Fact cache + dirty queue ---
    op.create_table(
        'trip_facts',
        sa.Column('trip_id', sa.Integer(), nullable=False),
        sa.Column('total_nights', sa.Integer(), nullable=True),
        sa.Column('total_hotels', sa.Integer(), nullable=True),
        sa.Column('total_activities', sa.Integer(), nullable=True),
        sa.Column('total_cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('transit_minutes', sa.Integer(), nullable=True),
        sa.Column('traveler_count', sa.Integer(), nullable=True),
        sa.Column('traveler_emails', json_document, nullable=True),
        sa.Column('primary_client_email', sa.String(length=255), nullable=True),
        sa.Column('last_computed', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('trip_id'),
    )

    op.create_table(
        'facts_dirty',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('trip_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('touch_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('trip_id', 'reason', name='uq_facts_dirty_trip_reason'),
    )
    op.create_index('ix_facts_dirty_trip_id', 'facts_dirty', ['trip_id'])
    op.create_index('ix_facts_dirty_created', 'facts_dirty', ['created_at'])

    # --- Semantic components + search log ---
    op.create_table(
        'trip_components',
        sa.Column('component_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('trip_id', sa.Integer(), nullable=False),
        sa.Column('component_type', sa.String(length=20), nullable=False),
        sa.Column('component_value', sa.String(length=255), nullable=False),
        sa.Column('search_weight', sa.Float(), nullable=False),
        sa.Column('synonyms', json_document, nullable=True),
        sa.Column('source', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.trip_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('component_id'),
    )
    op.create_index('ix_trip_components_trip_type', 'trip_components', ['trip_id', 'component_type'])
    op.create_index('ix_trip_components_type_value', 'trip_components', ['component_type', 'component_value'])

    op.create_table(
        'search_queries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('query', sa.Text(), nullable=False),
        sa.Column('normalized_query', sa.Text(), nullable=False),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('trip_id', sa.Integer(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('searched_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade() -> None:
    op.drop_table('search_queries')
    op.drop_index('ix_trip_components_type_value', table_name='trip_components')
    op.drop_index('ix_trip_components_trip_type', table_name='trip_components')
    op.drop_table('trip_components')
    op.drop_index('ix_facts_dirty_created', table_name='facts_dirty')
    op.drop_index('ix_facts_dirty_trip_id', table_name='facts_dirty')
    op.drop_table('facts_dirty')
    op.drop_table('trip_facts')
    op.drop_index('ix_trip_transit_legs_trip_id', table_name='trip_transit_legs')
    op.drop_table('trip_transit_legs')
    op.drop_index('ix_trip_activities_trip_id', table_name='trip_activities')
    op.drop_table('trip_activities')
    op.drop_index('ix_trip_client_assignments_email', table_name='trip_client_assignments')
    op.drop_table('trip_client_assignments')
    op.drop_table('trips')
