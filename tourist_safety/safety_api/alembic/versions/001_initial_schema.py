"""Initial schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-09-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LEVELS = ('low', 'medium', 'high', 'critical')
JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    # Create locations table
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject_id', sa.Text(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('altitude', sa.Float(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_locations_subject_id_timestamp', 'locations', ['subject_id', 'timestamp'])

    # Create itineraries table
    op.create_table(
        'itineraries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('radius_meters', sa.Float(), nullable=True),
    )
    op.create_index('ix_itineraries_subject_id', 'itineraries', ['subject_id'])

    # Create restricted_zones table (legacy "active" flag, folded by 002)
    op.create_table(
        'restricted_zones',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('zone_type', sa.Text(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('radius_meters', sa.Float(), nullable=False),
        sa.Column('risk_level', sa.Enum(*LEVELS, name='risklevel'), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.CheckConstraint('radius_meters > 0', name='ck_restricted_zones_radius_positive'),
    )

    # Create anomalies table
    op.create_table(
        'anomalies',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subject_id', sa.Text(), nullable=False),
        sa.Column(
            'anomaly_type',
            sa.Enum(
                'inactivity', 'route_deviation', 'altitude_drop', 'speed_anomaly', 'geofence_breach',
                name='anomalytype',
            ),
            nullable=False,
        ),
        sa.Column('severity', sa.Enum(*LEVELS, name='severity'), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('metadata', JSON_TYPE, nullable=False),
        sa.Column(
            'status',
            sa.Enum('active', 'resolved', 'false_positive', name='anomalystatus'),
            nullable=False,
        ),
        sa.Column('detected_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_anomalies_subject_id', 'anomalies', ['subject_id'])
    op.create_index('ix_anomalies_subject_id_status', 'anomalies', ['subject_id', 'status'])
    op.create_index('ix_anomalies_status_detected_at', 'anomalies', ['status', 'detected_at'])
    # At most one active anomaly per (subject, type)
    op.create_index(
        'uq_anomalies_active_subject_type',
        'anomalies',
        ['subject_id', 'anomaly_type'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    # Create safety_score_events table
    op.create_table(
        'safety_score_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject_id', sa.Text(), nullable=False),
        sa.Column('delta', sa.Float(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('resulting_score', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_safety_score_events_subject_id_id', 'safety_score_events', ['subject_id', 'id'])

    # Create subject_profiles table
    op.create_table(
        'subject_profiles',
        sa.Column('subject_id', sa.Text(), primary_key=True),
        sa.Column('safety_score', sa.Float(), nullable=False, server_default='100'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            'safety_score >= 0 AND safety_score <= 100', name='ck_subject_profiles_score_range'
        ),
    )


def downgrade() -> None:
    op.drop_table('subject_profiles')
    op.drop_table('safety_score_events')
    op.drop_table('anomalies')
    op.drop_table('restricted_zones')
    op.drop_table('itineraries')
    op.drop_table('locations')
    if op.get_bind().dialect.name == 'postgresql':
        for enum_name in ('anomalystatus', 'anomalytype', 'severity', 'risklevel'):
            op.execute(f'DROP TYPE IF EXISTS {enum_name}')
