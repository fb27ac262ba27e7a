"""Initial Bargenix schema

Revision ID: 20250601_000001
Revises:
Create Date: 2025-06-01 12:00:00.000000

WHAT:
    Creates every table of the merchant dashboard:
    - Accounts: users, auth_credentials, membership_plans, user_memberships,
      user_notifications, user_preferences, user_activity, account_deletion_logs
    - Shopify: shopify_stores, shopify_auth_tokens, shopify_nonce_tokens,
      shopify_uninstall_events, shopify_script_tags, widget_settings
    - Bargaining: bargain_requests, product_bargaining_settings, bargain_events
    Seeds the default membership plans.

WHY:
    `product_limit` of the free plan is the fallback limit for merchants
    without an active membership; `0` means unlimited.

REFERENCES:
    - bargenix/models.py
"""

import uuid

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20250601_000001'
down_revision = None
branch_labels = None
depends_on = None


STORE_STATUS = postgresql.ENUM('active', 'inactive', name='storestatusenum', create_type=False)
REQUEST_STATUS = postgresql.ENUM('pending', 'approved', 'rejected', 'completed', name='bargainrequeststatusenum', create_type=False)
MEMBERSHIP_STATUS = postgresql.ENUM('active', 'cancelled', 'expired', name='membershipstatusenum', create_type=False)
NONCE_PURPOSE = postgresql.ENUM('oauth', 'uninstall', name='noncepurposeenum', create_type=False)

DEFAULT_PLANS = [
    {"name": "Free", "slug": "free", "product_limit": 10, "price": 0},
    {"name": "Startup", "slug": "startup", "product_limit": 50, "price": 19},
    {"name": "Business", "slug": "business", "product_limit": 0, "price": 49},
]


def _uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True)


def upgrade() -> None:
    # =========================================================================
    # STEP 1: Enums
    # =========================================================================
    bind = op.get_bind()
    for enum_type in (STORE_STATUS, REQUEST_STATUS, MEMBERSHIP_STATUS, NONCE_PURPOSE):
        enum_type.create(bind, checkfirst=True)

    # =========================================================================
    # STEP 2: Accounts
    # =========================================================================
    op.create_table(
        'users',
        _uuid_pk(),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('company_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'auth_credentials',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'membership_plans',
        _uuid_pk(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False, unique=True),
        sa.Column('product_limit', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'user_memberships',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('membership_plans.id'), nullable=False),
        sa.Column('status', MEMBERSHIP_STATUS, nullable=False, server_default='active'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_user_memberships_user_id', 'user_memberships', ['user_id'])

    op.create_table(
        'user_notifications',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('email_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('marketing_emails', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('security_alerts', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('product_updates', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('account_activity', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'user_preferences',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('theme', sa.String(), nullable=False, server_default='system'),
        sa.Column('language', sa.String(), nullable=False, server_default='en'),
        sa.Column('auto_save', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('compact_view', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'user_activity',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('activity_type', sa.String(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_user_activity_user_id', 'user_activity', ['user_id'])
    op.create_index('ix_user_activity_created_at', 'user_activity', ['created_at'])

    # No FK: the log outlives the user row
    op.create_table(
        'account_deletion_logs',
        _uuid_pk(),
        sa.Column('original_user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('store_domains', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='completed'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    # =========================================================================
    # STEP 3: Shopify
    # =========================================================================
    op.create_table(
        'shopify_stores',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('shop_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('country', sa.String(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('owner_name', sa.String(), nullable=True),
        sa.Column('plan_name', sa.String(), nullable=True),
        sa.Column('status', STORE_STATUS, nullable=False, server_default='active'),
        sa.Column('last_status_check', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_shopify_stores_user_id', 'shopify_stores', ['user_id'])
    op.create_index('ix_shopify_stores_shop_domain', 'shopify_stores', ['shop_domain'], unique=True)

    op.create_table(
        'shopify_auth_tokens',
        _uuid_pk(),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('shopify_stores.id'), nullable=False),
        sa.Column('access_token_enc', sa.String(), nullable=False),
        sa.Column('scope', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_shopify_auth_tokens_store_id', 'shopify_auth_tokens', ['store_id'])

    op.create_table(
        'shopify_nonce_tokens',
        sa.Column('nonce', sa.String(), primary_key=True),
        sa.Column('purpose', NONCE_PURPOSE, nullable=False, server_default='oauth'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'shopify_uninstall_events',
        _uuid_pk(),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('shopify_stores.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('reason', sa.String(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_shopify_uninstall_events_store_id', 'shopify_uninstall_events', ['store_id'])

    op.create_table(
        'shopify_script_tags',
        _uuid_pk(),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('script_tag_id', sa.String(), nullable=False),
        sa.Column('script_type', sa.String(), nullable=False, server_default='widget'),
        sa.Column('src', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_shopify_script_tags_shop_domain', 'shopify_script_tags', ['shop_domain'])

    op.create_table(
        'widget_settings',
        _uuid_pk(),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('label', sa.String(), nullable=False, server_default='Bargain a Deal'),
        sa.Column('bg_color', sa.String(), nullable=False, server_default='#2E66F8'),
        sa.Column('text_color', sa.String(), nullable=False, server_default='#FFFFFF'),
        sa.Column('font_size', sa.String(), nullable=False, server_default='16px'),
        sa.Column('border_radius', sa.String(), nullable=False, server_default='8px'),
        sa.Column('position', sa.String(), nullable=False, server_default='bottom_right'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_widget_settings_shop_domain', 'widget_settings', ['shop_domain'], unique=True)

    # =========================================================================
    # STEP 4: Bargaining
    # =========================================================================
    op.create_table(
        'bargain_requests',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('product_id', sa.String(), nullable=False),
        sa.Column('variant_id', sa.String(), nullable=True),
        sa.Column('product_title', sa.String(), nullable=True),
        sa.Column('product_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('requested_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('status', REQUEST_STATUS, nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_bargain_requests_user_id', 'bargain_requests', ['user_id'])
    op.create_index('ix_bargain_requests_shop_domain', 'bargain_requests', ['shop_domain'])
    op.create_index('ix_bargain_requests_created_at', 'bargain_requests', ['created_at'])

    op.create_table(
        'product_bargaining_settings',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('product_id', sa.String(), nullable=False),
        sa.Column('variant_id', sa.String(), nullable=False, server_default='default'),
        sa.Column('bargaining_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('min_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('original_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('behavior', sa.String(), nullable=False, server_default='normal'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('user_id', 'product_id', 'variant_id', name='uq_bargaining_user_product_variant'),
    )
    op.create_index('ix_product_bargaining_settings_user_id', 'product_bargaining_settings', ['user_id'])
    op.create_index('ix_product_bargaining_settings_product_id', 'product_bargaining_settings', ['product_id'])

    op.create_table(
        'bargain_events',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('product_id', sa.String(), nullable=False),
        sa.Column('variant_id', sa.String(), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('referrer', sa.String(), nullable=True),
        sa.Column('ip_hash', sa.String(), nullable=True),
        sa.Column('device_type', sa.String(), nullable=True),
        sa.Column('product_title', sa.String(), nullable=True),
        sa.Column('product_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_bargain_events_user_id', 'bargain_events', ['user_id'])
    op.create_index('ix_bargain_events_shop_domain', 'bargain_events', ['shop_domain'])
    op.create_index('ix_bargain_events_event_type', 'bargain_events', ['event_type'])
    op.create_index('ix_bargain_events_created_at', 'bargain_events', ['created_at'])

    # =========================================================================
    # STEP 5: Default plans
    # =========================================================================
    plans = sa.table(
        'membership_plans',
        sa.column('id', postgresql.UUID(as_uuid=True)),
        sa.column('name', sa.String()),
        sa.column('slug', sa.String()),
        sa.column('product_limit', sa.Integer()),
        sa.column('price', sa.Numeric(10, 2)),
        sa.column('is_active', sa.Boolean()),
    )
    op.bulk_insert(plans, [dict(plan, id=uuid.uuid4(), is_active=True) for plan in DEFAULT_PLANS])


def downgrade() -> None:
    for table in (
        'bargain_events',
        'product_bargaining_settings',
        'bargain_requests',
        'widget_settings',
        'shopify_script_tags',
        'shopify_uninstall_events',
        'shopify_nonce_tokens',
        'shopify_auth_tokens',
        'shopify_stores',
        'account_deletion_logs',
        'user_activity',
        'user_preferences',
        'user_notifications',
        'user_memberships',
        'membership_plans',
        'auth_credentials',
        'users',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (NONCE_PURPOSE, MEMBERSHIP_STATUS, REQUEST_STATUS, STORE_STATUS):
        enum_type.drop(bind, checkfirst=True)
