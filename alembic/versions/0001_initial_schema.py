"""initial schema: habits, chains, chain sessions, profiles and XP

Revision ID: 0001_initial_schema
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'habits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.String(1000), nullable=False),
        sa.Column('category', sa.String(40), nullable=False),
        sa.Column('frequency', sa.String(20), nullable=False),
        sa.Column('time_of_day', sa.String(20), nullable=False),
        sa.Column('time_to_complete', sa.String(50), nullable=False),
        sa.Column('priority', sa.String(10), nullable=False),
        sa.Column('streak', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('impact_score', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_habits_user_id', 'habits', ['user_id'])
    op.create_index('ix_habits_status', 'habits', ['status'])

    op.create_table(
        'habit_completions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('habit_id', sa.Integer(), sa.ForeignKey('habits.id'), nullable=False),
        sa.Column('completion_date', sa.Date(), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('time_spent', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('habit_id', 'completion_date', name='uq_habit_completion_day'),
    )
    op.create_index('ix_habit_completions_habit_id', 'habit_completions', ['habit_id'])
    op.create_index('ix_habit_completions_completion_date', 'habit_completions', ['completion_date'])

    op.create_table(
        'habit_feedbacks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('habit_id', sa.Integer(), sa.ForeignKey('habits.id'), nullable=False),
        sa.Column('feedback_date', sa.Date(), nullable=False),
        sa.Column('feedback', sa.String(500), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=False),
        sa.Column('mood', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('habit_id', 'feedback_date', name='uq_habit_feedback_day'),
    )
    op.create_index('ix_habit_feedbacks_habit_id', 'habit_feedbacks', ['habit_id'])
    op.create_index('ix_habit_feedbacks_feedback_date', 'habit_feedbacks', ['feedback_date'])

    op.create_table(
        'habit_chains',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.String(1000), nullable=False),
        sa.Column('time_of_day', sa.String(20), nullable=False),
        sa.Column('total_time', sa.String(50), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_habit_chains_user_id', 'habit_chains', ['user_id'])
    op.create_index('ix_habit_chains_created_at', 'habit_chains', ['created_at'])

    op.create_table(
        'chain_sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('chain_name', sa.String(200), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('habits', sa.JSON(), nullable=False),
        sa.Column('current_habit_index', sa.Integer(), nullable=False),
        sa.Column('total_habits', sa.Integer(), nullable=False),
        sa.Column('total_duration', sa.String(50), nullable=False),
        sa.Column('total_duration_minutes', sa.Integer(), nullable=False),
        sa.Column('actual_duration', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pause_duration', sa.Integer(), nullable=False),
        sa.Column('break_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('on_break', sa.Boolean(), nullable=False),
        sa.Column('completed_habits_count', sa.Integer(), nullable=False),
        sa.Column('completion_rate', sa.Integer(), nullable=False),
        sa.Column('success_rate', sa.Integer(), nullable=False),
        sa.Column('xp_earned', sa.Integer(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('hour_of_day', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_chain_sessions_user_id', 'chain_sessions', ['user_id'])
    op.create_index('ix_chain_sessions_chain_id', 'chain_sessions', ['chain_id'])
    op.create_index('ix_chain_sessions_user_status', 'chain_sessions', ['user_id', 'status'])
    op.create_index('ix_chain_sessions_status_activity', 'chain_sessions', ['status', 'last_activity_at'])
    op.create_index(
        'uq_chain_sessions_one_active',
        'chain_sessions',
        ['user_id'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('first_name', sa.String(50), nullable=True),
        sa.Column('last_name', sa.String(50), nullable=True),
        sa.Column('user_name', sa.String(30), nullable=True),
        sa.Column('bio', sa.String(500), nullable=True),
        sa.Column('timezone', sa.String(50), nullable=False),
        sa.Column('profile_visibility', sa.String(10), nullable=False),
        sa.Column('show_streak', sa.Boolean(), nullable=False),
        sa.Column('show_progress', sa.Boolean(), nullable=False),
        sa.Column('show_rank', sa.Boolean(), nullable=False),
        sa.Column('daily_habit_target', sa.Integer(), nullable=False),
        sa.Column('weekly_goal', sa.Integer(), nullable=False),
        sa.Column('xp_total', sa.Integer(), nullable=False),
        sa.Column('xp_last_updated', sa.DateTime(timezone=True), nullable=False),
        sa.Column('rank_title', sa.String(20), nullable=False),
        sa.Column('rank_level', sa.Integer(), nullable=False),
        sa.Column('rank_progress', sa.Integer(), nullable=False),
        sa.Column('rank_calculated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('global_position', sa.Integer(), nullable=True),
        sa.Column('total_habits_created', sa.Integer(), nullable=False),
        sa.Column('total_completions', sa.Integer(), nullable=False),
        sa.Column('longest_streak', sa.Integer(), nullable=False),
        sa.Column('current_streak', sa.Integer(), nullable=False),
        sa.Column('total_chains_completed', sa.Integer(), nullable=False),
        sa.Column('daily_bonuses_earned', sa.Integer(), nullable=False),
        sa.Column('total_groups_joined', sa.Integer(), nullable=False),
        sa.Column('avg_daily_xp', sa.Integer(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('user_id', name='uq_profiles_user'),
    )
    op.create_index('ix_profiles_user_id', 'profiles', ['user_id'])
    op.create_index('ix_profiles_last_activity_at', 'profiles', ['last_activity_at'])
    op.create_index('ix_profiles_leaderboard', 'profiles', ['xp_total', 'rank_level'])
    op.create_index('ix_profiles_visibility_xp', 'profiles', ['profile_visibility', 'xp_total'])

    op.create_table(
        'xp_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(30), nullable=False),
        sa.Column('description', sa.String(200), nullable=False),
        sa.Column('metadata_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_xp_history_user_id', 'xp_history', ['user_id'])
    op.create_index('ix_xp_history_source', 'xp_history', ['source'])
    op.create_index('ix_xp_history_user_created', 'xp_history', ['user_id', 'created_at'])

    op.create_table(
        'groups',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('description', sa.String(200), nullable=True),
        sa.Column('owner_id', sa.String(100), nullable=False),
        sa.Column('xp_multiplier', sa.Float(), nullable=False),
        sa.Column('total_xp_earned', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'group_memberships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id'), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('role', sa.String(10), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('group_id', 'user_id', name='uq_group_membership'),
    )
    op.create_index('ix_group_memberships_group_id', 'group_memberships', ['group_id'])
    op.create_index('ix_group_memberships_user_id', 'group_memberships', ['user_id'])


def downgrade() -> None:
    op.drop_table('group_memberships')
    op.drop_table('groups')
    op.drop_table('xp_history')
    op.drop_table('profiles')
    op.drop_table('chain_sessions')
    op.drop_table('habit_chains')
    op.drop_table('habit_feedbacks')
    op.drop_table('habit_completions')
    op.drop_table('habits')
