"""Normalize restricted zone active flag

Zone catalogs were loaded with the flag named either "active" or "is_active".
Fold the legacy column into the canonical nullable is_active column; NULL
still means active.

Revision ID: 002_normalize_zone_active_flag
Revises: 001_initial_schema
Create Date: 2026-09-15 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002_normalize_zone_active_flag'
down_revision: Union[str, None] = '001_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _zone_columns() -> set:
    inspector = sa.inspect(op.get_bind())
    return {column['name'] for column in inspector.get_columns('restricted_zones')}


def upgrade() -> None:
    columns = _zone_columns()
    if 'is_active' not in columns:
        op.add_column('restricted_zones', sa.Column('is_active', sa.Boolean(), nullable=True))
    if 'active' in columns:
        op.execute('UPDATE restricted_zones SET is_active = active WHERE is_active IS NULL')
        with op.batch_alter_table('restricted_zones') as batch_op:
            batch_op.drop_column('active')


def downgrade() -> None:
    op.add_column('restricted_zones', sa.Column('active', sa.Boolean(), nullable=True))
    op.execute('UPDATE restricted_zones SET active = is_active')
    with op.batch_alter_table('restricted_zones') as batch_op:
        batch_op.drop_column('is_active')
