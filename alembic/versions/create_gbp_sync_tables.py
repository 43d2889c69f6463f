"""Create connection, sync job, GBP cache and contact tables

Revision ID: create_gbp_sync_tables
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'create_gbp_sync_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _fetched_at() -> sa.Column:
    return sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    """Create all tables."""
    op.create_table('pipedream_connected_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('pipedream_account_id', sa.String(), nullable=False),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('app_name', sa.String(), nullable=False),
        sa.Column('account_name', sa.String(), nullable=True),
        sa.Column('account_email', sa.String(), nullable=True),
        sa.Column('hubspot_contact_id', sa.String(), nullable=True),
        sa.Column('healthy', sa.Boolean(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_pipedream_connected_accounts_user_id'), 'pipedream_connected_accounts', ['user_id'], unique=False)
    op.create_index(op.f('ix_pipedream_connected_accounts_pipedream_account_id'), 'pipedream_connected_accounts', ['pipedream_account_id'], unique=True)
    op.create_index(op.f('ix_pipedream_connected_accounts_hubspot_contact_id'), 'pipedream_connected_accounts', ['hubspot_contact_id'], unique=False)

    op.create_table('sync_jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('job_type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('records_fetched', sa.Integer(), nullable=True),
        sa.Column('records_created', sa.Integer(), nullable=True),
        sa.Column('records_updated', sa.Integer(), nullable=True),
        sa.Column('records_skipped', sa.Integer(), nullable=True),
        sa.Column('errors', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sync_jobs_job_type'), 'sync_jobs', ['job_type'], unique=False)

    op.create_table('gbp_reviews',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('review_id', sa.String(), nullable=False),
        sa.Column('reviewer_display_name', sa.String(), nullable=True),
        sa.Column('reviewer_profile_photo_url', sa.String(), nullable=True),
        sa.Column('star_rating', sa.Integer(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('reply_comment', sa.Text(), nullable=True),
        sa.Column('reply_update_time', sa.String(), nullable=True),
        sa.Column('create_time', sa.String(), nullable=True),
        sa.Column('update_time', sa.String(), nullable=True),
        _fetched_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'review_id', name='uq_gbp_reviews_location_review')
    )
    op.create_index(op.f('ix_gbp_reviews_location_id'), 'gbp_reviews', ['location_id'], unique=False)

    op.create_table('gbp_media',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('media_name', sa.String(), nullable=False),
        sa.Column('media_format', sa.String(), nullable=True),
        sa.Column('location_association', sa.String(), nullable=True),
        sa.Column('google_url', sa.String(), nullable=True),
        sa.Column('thumbnail_url', sa.String(), nullable=True),
        sa.Column('source_url', sa.String(), nullable=True),
        sa.Column('width_pixels', sa.Integer(), nullable=True),
        sa.Column('height_pixels', sa.Integer(), nullable=True),
        sa.Column('attribution_profile_name', sa.String(), nullable=True),
        sa.Column('attribution_profile_url', sa.String(), nullable=True),
        sa.Column('view_count', sa.Integer(), nullable=True),
        sa.Column('create_time', sa.String(), nullable=True),
        _fetched_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'media_name', name='uq_gbp_media_location_name')
    )
    op.create_index(op.f('ix_gbp_media_location_id'), 'gbp_media', ['location_id'], unique=False)

    op.create_table('gbp_posts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('post_name', sa.String(), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('language_code', sa.String(), nullable=True),
        sa.Column('topic_type', sa.String(), nullable=True),
        sa.Column('call_to_action_type', sa.String(), nullable=True),
        sa.Column('call_to_action_url', sa.String(), nullable=True),
        sa.Column('event_title', sa.String(), nullable=True),
        sa.Column('event_start_date', sa.String(), nullable=True),
        sa.Column('event_end_date', sa.String(), nullable=True),
        sa.Column('offer_coupon_code', sa.String(), nullable=True),
        sa.Column('offer_redeem_online_url', sa.String(), nullable=True),
        sa.Column('offer_terms_conditions', sa.Text(), nullable=True),
        sa.Column('media_url', sa.String(), nullable=True),
        sa.Column('media_format', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=True),
        sa.Column('create_time', sa.String(), nullable=True),
        sa.Column('update_time', sa.String(), nullable=True),
        _fetched_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'post_name', name='uq_gbp_posts_location_name')
    )
    op.create_index(op.f('ix_gbp_posts_location_id'), 'gbp_posts', ['location_id'], unique=False)

    op.create_table('gbp_locations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('location_name', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('store_code', sa.String(), nullable=True),
        sa.Column('address_lines', sa.JSON(), nullable=True),
        sa.Column('locality', sa.String(), nullable=True),
        sa.Column('administrative_area', sa.String(), nullable=True),
        sa.Column('postal_code', sa.String(), nullable=True),
        sa.Column('country_code', sa.String(), nullable=True),
        sa.Column('primary_phone', sa.String(), nullable=True),
        sa.Column('website_uri', sa.String(), nullable=True),
        sa.Column('primary_category_id', sa.String(), nullable=True),
        sa.Column('primary_category_name', sa.String(), nullable=True),
        sa.Column('additional_categories', sa.JSON(), nullable=True),
        sa.Column('verification_state', sa.String(), nullable=True),
        sa.Column('is_open', sa.Boolean(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('create_time', sa.String(), nullable=True),
        sa.Column('update_time', sa.String(), nullable=True),
        _fetched_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'location_id', name='uq_gbp_locations_account_location')
    )
    op.create_index(op.f('ix_gbp_locations_account_id'), 'gbp_locations', ['account_id'], unique=False)

    op.create_table('gbp_analytics_snapshots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('date_range_start', sa.Date(), nullable=True),
        sa.Column('date_range_end', sa.Date(), nullable=True),
        sa.Column('total_impressions', sa.Integer(), nullable=True),
        sa.Column('total_keywords', sa.Integer(), nullable=True),
        sa.Column('keywords', sa.JSON(), nullable=True),
        _fetched_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'snapshot_date', name='uq_gbp_analytics_location_date')
    )
    op.create_index(op.f('ix_gbp_analytics_snapshots_location_id'), 'gbp_analytics_snapshots', ['location_id'], unique=False)

    op.create_table('contacts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('hubspot_contact_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('hs_object_id', sa.String(), nullable=True),
        sa.Column('firstname', sa.String(), nullable=True),
        sa.Column('lastname', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('mobilephone', sa.String(), nullable=True),
        sa.Column('company', sa.String(), nullable=True),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=True),
        sa.Column('zip', sa.String(), nullable=True),
        sa.Column('country', sa.String(), nullable=True),
        sa.Column('website', sa.String(), nullable=True),
        sa.Column('hubspot_company_id', sa.String(), nullable=True),
        sa.Column('business_type', sa.String(), nullable=True),
        sa.Column('business_category_type', sa.String(), nullable=True),
        sa.Column('business_hours', sa.Text(), nullable=True),
        sa.Column('active_customer', sa.Boolean(), nullable=True),
        sa.Column('gbp_ready', sa.Boolean(), nullable=True),
        sa.Column('lifecyclestage', sa.String(), nullable=True),
        sa.Column('createdate', sa.String(), nullable=True),
        sa.Column('lastmodifieddate', sa.String(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hubspot_contact_id', 'user_id', name='uq_contacts_hubspot_user')
    )
    op.create_index(op.f('ix_contacts_hubspot_contact_id'), 'contacts', ['hubspot_contact_id'], unique=False)
    op.create_index(op.f('ix_contacts_user_id'), 'contacts', ['user_id'], unique=False)
    op.create_index(op.f('ix_contacts_lastmodifieddate'), 'contacts', ['lastmodifieddate'], unique=False)


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index(op.f('ix_contacts_lastmodifieddate'), table_name='contacts')
    op.drop_index(op.f('ix_contacts_user_id'), table_name='contacts')
    op.drop_index(op.f('ix_contacts_hubspot_contact_id'), table_name='contacts')
    op.drop_table('contacts')
    op.drop_index(op.f('ix_gbp_analytics_snapshots_location_id'), table_name='gbp_analytics_snapshots')
    op.drop_table('gbp_analytics_snapshots')
    op.drop_index(op.f('ix_gbp_locations_account_id'), table_name='gbp_locations')
    op.drop_table('gbp_locations')
    op.drop_index(op.f('ix_gbp_posts_location_id'), table_name='gbp_posts')
    op.drop_table('gbp_posts')
    op.drop_index(op.f('ix_gbp_media_location_id'), table_name='gbp_media')
    op.drop_table('gbp_media')
    op.drop_index(op.f('ix_gbp_reviews_location_id'), table_name='gbp_reviews')
    op.drop_table('gbp_reviews')
    op.drop_index(op.f('ix_sync_jobs_job_type'), table_name='sync_jobs')
    op.drop_table('sync_jobs')
    op.drop_index(op.f('ix_pipedream_connected_accounts_hubspot_contact_id'), table_name='pipedream_connected_accounts')
    op.drop_index(op.f('ix_pipedream_connected_accounts_pipedream_account_id'), table_name='pipedream_connected_accounts')
    op.drop_index(op.f('ix_pipedream_connected_accounts_user_id'), table_name='pipedream_connected_accounts')
    op.drop_table('pipedream_connected_accounts')
