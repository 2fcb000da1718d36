"""group activity feed and cached member XP/rank

Revision ID: 0002_group_activity
Revises: 0001_initial_schema
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_group_activity'
down_revision = '0001_initial_schema'
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table('group_memberships') as batch:
        batch.add_column(sa.Column('total_xp', sa.Integer(), nullable=False, server_default='0'))
        batch.add_column(sa.Column('rank_title', sa.String(20), nullable=False, server_default='Novice'))

    op.create_table(
        'group_activity',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id'), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('user_name', sa.String(100), nullable=False),
        sa.Column('activity_type', sa.String(30), nullable=False),
        sa.Column('description', sa.String(200), nullable=False),
        sa.Column('xp_earned', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_group_activity_group_created', 'group_activity', ['group_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_group_activity_group_created', table_name='group_activity')
    op.drop_table('group_activity')
    with op.batch_alter_table('group_memberships') as batch:
        batch.drop_column('rank_title')
        batch.drop_column('total_xp')
