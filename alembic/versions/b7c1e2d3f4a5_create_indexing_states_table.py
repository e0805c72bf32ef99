"""create_indexing_states_table

Revision ID: b7c1e2d3f4a5
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op


# revision identifiers, used by Alembic.
revision: str = 'b7c1e2d3f4a5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the indexing_states table, one row per tracked project."""
    op.create_table(
        'indexing_states',
        sa.Column('project_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('project_name', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.Text(), nullable=False, server_default='indexing'),
        sa.Column('percent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_step', sa.Text(), nullable=False, server_default=''),
        sa.Column('stats_json', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.Float(), nullable=False),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('project_id'),
    )
    op.create_index('idx_indexing_states_status', 'indexing_states', ['status'], unique=False)
    op.create_index('idx_indexing_states_started_at', 'indexing_states', ['started_at'], unique=False)


def downgrade() -> None:
    """Drop the indexing_states table."""
    op.drop_index('idx_indexing_states_started_at', table_name='indexing_states')
    op.drop_index('idx_indexing_states_status', table_name='indexing_states')
    op.drop_table('indexing_states')
