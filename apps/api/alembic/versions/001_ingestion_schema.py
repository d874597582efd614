"""ingestion schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    provider = op.create_table(
        'provider',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('slug', sa.Text(), nullable=False, unique=True),
        sa.Column('connection_type', sa.Text(), nullable=False, server_default='oauth2'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider.id'), nullable=False),
        sa.Column('user_external_id', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('provider_id', 'user_external_id', name='uq_users_provider_external_id'),
    )

    op.create_table(
        'athlete',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False, unique=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('country', sa.Text(), nullable=True),
        sa.Column('gender', sa.Text(), nullable=True),
        sa.Column('age', sa.Integer(), nullable=True),
        sa.Column('height', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'provider_oauth2_credentials',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider.id'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('provider_id', 'user_id', name='uq_credentials_provider_user'),
    )

    op.create_table(
        'provider_activity_raw_data',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider.id'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('athlete_id', sa.Uuid(), sa.ForeignKey('athlete.id'), nullable=True),
        sa.Column('provider_activity_id', sa.Text(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('elapsed_time', sa.Integer(), nullable=False),
        sa.Column('iana_timezone', sa.Text(), nullable=True),
        sa.Column('utc_offset', sa.Integer(), nullable=True),
        sa.Column('data', postgresql.JSONB(), nullable=False),
        sa.Column('detailed_activity_uri', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('provider_id', 'user_id', 'provider_activity_id', name='uq_raw_activity_natural_key'),
    )
    op.create_index('ix_raw_activity_unprocessed', 'provider_activity_raw_data', ['processed_at', 'created_at'])

    op.create_table(
        'activity_endurance',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider.id'), nullable=False),
        sa.Column('athlete_id', sa.Uuid(), sa.ForeignKey('athlete.id'), nullable=True),
        sa.Column('provider_raw_activity_id', sa.Uuid(), sa.ForeignKey('provider_activity_raw_data.id'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sport', sa.String(64), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('iana_timezone', sa.Text(), nullable=True),
        sa.Column('utc_offset', sa.Integer(), nullable=True),
        sa.Column('elapsed_time', sa.Integer(), nullable=False),
        sa.Column('moving_time', sa.Integer(), nullable=False),
        sa.Column('distance', sa.Integer(), nullable=False),
        sa.Column('elev_gain', sa.Integer(), nullable=True),
        sa.Column('elev_loss', sa.Integer(), nullable=True),
        sa.Column('avg_speed', sa.Float(), nullable=False),
        sa.Column('avg_hr', sa.Integer(), nullable=True),
        sa.Column('max_hr', sa.Integer(), nullable=True),
        sa.Column('summary_polyline', sa.Text(), nullable=True),
        sa.Column('summary_route', sa.Text(), nullable=True),
        sa.Column('gpx_file_uri', sa.Text(), nullable=True),
        sa.Column('fit_file_uri', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('provider_raw_activity_id', name='uq_activity_endurance_raw_id'),
    )
    op.create_index('ix_activity_endurance_athlete_start', 'activity_endurance', ['athlete_id', 'start_time'])

    op.create_table(
        'activity_tag',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text(), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    op.create_table(
        'activity_endurance_tag',
        sa.Column('activity_endurance_id', sa.Uuid(),
                  sa.ForeignKey('activity_endurance.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('activity_tag_id', sa.Integer(),
                  sa.ForeignKey('activity_tag.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    op.create_table(
        'webhook_verification',
        sa.Column('token', sa.String(64), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.bulk_insert(provider, [
        {
            'name': 'Strava',
            'slug': 'strava',
            'connection_type': 'oauth2',
            'description': 'Strava API v3 (OAuth2, push subscriptions)',
        },
    ])


def downgrade() -> None:
    op.drop_table('webhook_verification')
    op.drop_table('activity_endurance_tag')
    op.drop_table('activity_tag')
    op.drop_index('ix_activity_endurance_athlete_start', table_name='activity_endurance')
    op.drop_table('activity_endurance')
    op.drop_index('ix_raw_activity_unprocessed', table_name='provider_activity_raw_data')
    op.drop_table('provider_activity_raw_data')
    op.drop_table('provider_oauth2_credentials')
    op.drop_table('athlete')
    op.drop_table('users')
    op.drop_table('provider')
