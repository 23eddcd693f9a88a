"""Create funnel tracking tables (funnels, visitor_profiles, funnel_sessions, funnel_events).

Revision ID: 20260101_000001
Revises:
Create Date: 2026-01-01 12:00:00.000000

WHAT:
    Creates the tables read by the analytics engine:
    - funnels: Tenant-scoped funnel definitions
    - visitor_profiles: Cross-session visitor identity + lazy lifecycle stage
    - funnel_sessions: One row per visit with attribution, device, geo, vitals
    - funnel_events: Immutable event log per session

WHY:
    Analytics queries filter sessions by (funnel_id, started_at) and events
    by (funnel_id, timestamp); both get composite indexes. Events are joined
    to sessions by the client session id, which is indexed on both sides.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260101_000001'
down_revision = None
branch_labels = None
depends_on = None


lifecycle_stage_enum = sa.Enum('NEW', 'RETURNING', 'LOYAL', 'CHURNED', name='lifecyclestageenum')
vital_rating_enum = sa.Enum('GOOD', 'NEEDS_IMPROVEMENT', 'POOR', name='vitalratingenum')


def upgrade() -> None:
    # =========================================================================
    # STEP 1: funnels
    # =========================================================================
    op.create_table(
        'funnels',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('subaccount_id', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('domain', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_funnels_organization_id', 'funnels', ['organization_id'])

    # =========================================================================
    # STEP 2: visitor_profiles
    # =========================================================================
    op.create_table(
        'visitor_profiles',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('identified_user_id', sa.String(), nullable=True),
        sa.Column('user_properties', sa.JSON(), nullable=True),
        sa.Column('first_seen', sa.DateTime(), nullable=False),
        sa.Column('last_seen', sa.DateTime(), nullable=False),
        sa.Column('total_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_events', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifecycle_stage', lifecycle_stage_enum, nullable=True),
    )
    op.create_index('ix_visitor_profiles_identified_user_id', 'visitor_profiles', ['identified_user_id'])

    # =========================================================================
    # STEP 3: funnel_sessions
    # =========================================================================
    op.create_table(
        'funnel_sessions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), nullable=False, unique=True),
        sa.Column('funnel_id', sa.String(), sa.ForeignKey('funnels.id'), nullable=False),
        sa.Column('anonymous_id', sa.String(), sa.ForeignKey('visitor_profiles.id'), nullable=True),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('page_views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('events_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('active_time_seconds', sa.Integer(), nullable=True),
        sa.Column('engagement_rate', sa.Float(), nullable=True),
        sa.Column('current_stage', sa.String(), nullable=True),
        sa.Column('stage_history', sa.JSON(), nullable=True),
        sa.Column('is_abandoned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conversion_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('conversion_platform', sa.String(), nullable=True),
        sa.Column('first_source', sa.String(), nullable=True),
        sa.Column('first_medium', sa.String(), nullable=True),
        sa.Column('first_campaign', sa.String(), nullable=True),
        sa.Column('first_fbclid', sa.String(), nullable=True),
        sa.Column('first_gclid', sa.String(), nullable=True),
        sa.Column('first_ttclid', sa.String(), nullable=True),
        sa.Column('last_source', sa.String(), nullable=True),
        sa.Column('last_medium', sa.String(), nullable=True),
        sa.Column('last_campaign', sa.String(), nullable=True),
        sa.Column('last_fbclid', sa.String(), nullable=True),
        sa.Column('last_gclid', sa.String(), nullable=True),
        sa.Column('last_ttclid', sa.String(), nullable=True),
        sa.Column('device_type', sa.String(), nullable=True),
        sa.Column('browser_name', sa.String(), nullable=True),
        sa.Column('browser_version', sa.String(), nullable=True),
        sa.Column('os_name', sa.String(), nullable=True),
        sa.Column('os_version', sa.String(), nullable=True),
        sa.Column('country_code', sa.String(), nullable=True),
        sa.Column('country_name', sa.String(), nullable=True),
        sa.Column('region', sa.String(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('avg_lcp', sa.Float(), nullable=True),
        sa.Column('avg_inp', sa.Float(), nullable=True),
        sa.Column('avg_cls', sa.Float(), nullable=True),
        sa.Column('avg_fcp', sa.Float(), nullable=True),
        sa.Column('avg_ttfb', sa.Float(), nullable=True),
        sa.Column('experience_score', sa.Float(), nullable=True),
        sa.CheckConstraint('conversion_value IS NULL OR conversion_value >= 0', name='ck_funnel_sessions_conversion_value'),
        sa.CheckConstraint('experience_score IS NULL OR experience_score >= 0', name='ck_funnel_sessions_experience_score'),
        sa.CheckConstraint('ended_at IS NULL OR ended_at >= started_at', name='ck_funnel_sessions_ended_after_start'),
    )
    op.create_index('ix_funnel_sessions_funnel_started', 'funnel_sessions', ['funnel_id', 'started_at'])

    # =========================================================================
    # STEP 4: funnel_events
    # =========================================================================
    op.create_table(
        'funnel_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('event_id', sa.String(), nullable=True),
        sa.Column('funnel_id', sa.String(), sa.ForeignKey('funnels.id'), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('anonymous_id', sa.String(), nullable=True),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('event_name', sa.String(), nullable=False),
        sa.Column('event_category', sa.String(), nullable=True),
        sa.Column('event_description', sa.Text(), nullable=True),
        sa.Column('event_properties', sa.JSON(), nullable=True),
        sa.Column('is_micro_conversion', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('micro_conversion_type', sa.String(), nullable=True),
        sa.Column('micro_conversion_value', sa.Float(), nullable=True),
        sa.Column('funnel_stage', sa.String(), nullable=True),
        sa.Column('is_conversion', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revenue', sa.Numeric(12, 2), nullable=True),
        sa.Column('page_url', sa.String(), nullable=True),
        sa.Column('page_title', sa.String(), nullable=True),
        sa.Column('page_path', sa.String(), nullable=True),
        sa.Column('utm_source', sa.String(), nullable=True),
        sa.Column('utm_medium', sa.String(), nullable=True),
        sa.Column('utm_campaign', sa.String(), nullable=True),
        sa.Column('device_type', sa.String(), nullable=True),
        sa.Column('browser_name', sa.String(), nullable=True),
        sa.Column('browser_version', sa.String(), nullable=True),
        sa.Column('os_name', sa.String(), nullable=True),
        sa.Column('country_code', sa.String(), nullable=True),
        sa.Column('country_name', sa.String(), nullable=True),
        sa.Column('region', sa.String(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('lcp', sa.Float(), nullable=True),
        sa.Column('inp', sa.Float(), nullable=True),
        sa.Column('cls', sa.Float(), nullable=True),
        sa.Column('fcp', sa.Float(), nullable=True),
        sa.Column('ttfb', sa.Float(), nullable=True),
        sa.Column('vital_rating', vital_rating_enum, nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_funnel_events_funnel_timestamp', 'funnel_events', ['funnel_id', 'timestamp'])
    op.create_index('ix_funnel_events_session', 'funnel_events', ['session_id'])


def downgrade() -> None:
    op.drop_index('ix_funnel_events_session', table_name='funnel_events')
    op.drop_index('ix_funnel_events_funnel_timestamp', table_name='funnel_events')
    op.drop_table('funnel_events')

    op.drop_index('ix_funnel_sessions_funnel_started', table_name='funnel_sessions')
    op.drop_table('funnel_sessions')

    op.drop_index('ix_visitor_profiles_identified_user_id', table_name='visitor_profiles')
    op.drop_table('visitor_profiles')

    op.drop_index('ix_funnels_organization_id', table_name='funnels')
    op.drop_table('funnels')

    vital_rating_enum.drop(op.get_bind(), checkfirst=True)
    lifecycle_stage_enum.drop(op.get_bind(), checkfirst=True)
