"""create sync_runs table

Revision ID: 3f1c9a7b2d10
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c9a7b2d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('sync_runs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('registry_name', sa.String(length=63), nullable=False),
        sa.Column('registry_namespace', sa.String(length=63), nullable=False),
        sa.Column('forced', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('server_count', sa.Integer(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('sync_runs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sync_runs_registry_name'), ['registry_name'], unique=False)
        batch_op.create_index(batch_op.f('ix_sync_runs_registry_namespace'), ['registry_namespace'], unique=False)


def downgrade() -> None:
    with op.batch_alter_table('sync_runs', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_sync_runs_registry_namespace'))
        batch_op.drop_index(batch_op.f('ix_sync_runs_registry_name'))

    op.drop_table('sync_runs')
