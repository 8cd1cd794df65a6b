"""create pupil term snapshots

Revision ID: 3b7c1e4a9d21
Revises:
Create Date: 2025-10-20 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b7c1e4a9d21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        'pupil_term_snapshots',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('pupil_id', sa.String(length=64), nullable=False),
        sa.Column('term_id', sa.String(length=64), nullable=False),
        sa.Column('academic_year_id', sa.String(length=64), nullable=False),
        sa.Column('class_id', sa.String(length=64), nullable=False),
        sa.Column('section', sa.String(length=16), nullable=True),
        sa.Column('admission_number', sa.String(length=32), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('snapshot_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('term_start_date', sa.Date(), nullable=False),
        sa.Column('term_end_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("section IN ('day','boarding')", name='ck_snapshot_section')
    )

    # Create indexes
    op.create_index('ix_pupil_term_snapshots_pupil_id', 'pupil_term_snapshots', ['pupil_id'])
    op.create_index('ix_pupil_term_snapshots_term_id', 'pupil_term_snapshots', ['term_id'])
    op.create_index('ix_pupil_term_snapshots_academic_year_id', 'pupil_term_snapshots', ['academic_year_id'])
    op.create_index('ix_snapshot_pupil_term', 'pupil_term_snapshots', ['pupil_id', 'term_id', 'is_active'])


def downgrade():
    op.drop_index('ix_snapshot_pupil_term', table_name='pupil_term_snapshots')
    op.drop_index('ix_pupil_term_snapshots_academic_year_id', table_name='pupil_term_snapshots')
    op.drop_index('ix_pupil_term_snapshots_term_id', table_name='pupil_term_snapshots')
    op.drop_index('ix_pupil_term_snapshots_pupil_id', table_name='pupil_term_snapshots')

    op.drop_table('pupil_term_snapshots')
