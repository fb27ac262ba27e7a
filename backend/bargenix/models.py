"""SQLAlchemy ORM models and enums.

This module defines the merchant dashboard schema using UUID primary keys and
explicit relationships. Authentication secrets are stored in a separate
`auth_credentials` table and Shopify access tokens in `shopify_auth_tokens`
(encrypted) to keep the domain tables clean.
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, Enum, Integer, ForeignKey, Numeric, JSON, Text, Boolean, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


# Product-level bargaining rows use this variant id instead of NULL so the
# (user_id, product_id, variant_id) unique constraint holds on PostgreSQL.
PRODUCT_LEVEL_VARIANT = "default"


# Enums ---------------------------------------------------------

class StoreStatusEnum(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class BargainRequestStatusEnum(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"


class MembershipStatusEnum(str, enum.Enum):
    active = "active"
    cancelled = "cancelled"
    expired = "expired"


class NoncePurposeEnum(str, enum.Enum):
    oauth = "oauth"
    uninstall = "uninstall"


# Accounts -------------------------------------------------------

class User(Base):
    """A merchant who signs in to the dashboard and connects Shopify stores."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 1:1 credential for local password-based auth
    credential = relationship("AuthCredential", back_populates="user", uselist=False, cascade="all, delete-orphan")
    memberships = relationship("UserMembership", back_populates="user", cascade="all, delete-orphan")
    notification_settings = relationship("UserNotificationSettings", back_populates="user", uselist=False, cascade="all, delete-orphan")
    preferences = relationship("UserPreferences", back_populates="user", uselist=False, cascade="all, delete-orphan")
    activities = relationship("UserActivity", back_populates="user", cascade="all, delete-orphan")
    stores = relationship("ShopifyStore", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    # This is used to display the model in the admin interface.
    def __str__(self):
        return f"{self.full_name} ({self.email})"


class AuthCredential(Base):
    __tablename__ = "auth_credentials"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), primary_key=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="credential")

    def __str__(self):
        return f"Credential for {self.user.email if self.user else 'Unknown'}"


class MembershipPlan(Base):
    """Subscription tier. Only `product_limit` is enforced by this service.

    `product_limit <= 0` means unlimited bargaining products.
    """
    __tablename__ = "membership_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    product_limit = Column(Integer, nullable=False, default=10)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    memberships = relationship("UserMembership", back_populates="plan")

    def __str__(self):
        return self.name


class UserMembership(Base):
    __tablename__ = "user_memberships"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("membership_plans.id"), nullable=False)
    status = Column(Enum(MembershipStatusEnum, values_callable=lambda obj: [e.value for e in obj]), default=MembershipStatusEnum.active, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="memberships")
    plan = relationship("MembershipPlan", back_populates="memberships")

    def __str__(self):
        plan = self.plan.name if self.plan else "Unknown plan"
        return f"{plan} ({self.status.value})"


class UserNotificationSettings(Base):
    __tablename__ = "user_notifications"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), primary_key=True)
    email_notifications = Column(Boolean, nullable=False, default=True)
    marketing_emails = Column(Boolean, nullable=False, default=False)
    security_alerts = Column(Boolean, nullable=False, default=True)
    product_updates = Column(Boolean, nullable=False, default=True)
    account_activity = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="notification_settings")


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), primary_key=True)
    theme = Column(String, nullable=False, default="system")  # light, dark, system
    language = Column(String, nullable=False, default="en")
    auto_save = Column(Boolean, nullable=False, default=True)
    compact_view = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="preferences")


class UserActivity(Base):
    """Audit trail shown on the account page (profile_update, password_change, settings_change)."""
    __tablename__ = "user_activity"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    activity_type = Column(String, nullable=False)
    details = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="activities")

    def __str__(self):
        return f"{self.activity_type} at {self.created_at}"


class AccountDeletionLog(Base):
    """Survives the user row; no FK on purpose so the log outlives the account."""
    __tablename__ = "account_deletion_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_user_id = Column(UUID(as_uuid=True), nullable=False)
    email = Column(String, nullable=False)
    reason = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    store_domains = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="completed")
    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"Deletion of {self.email}"


# Shopify --------------------------------------------------------

class ShopifyStore(Base):
    """A Shopify store connected through OAuth.

    WHAT: One row per shop domain; the owning user is fixed at first connect.
    WHY: Uninstalls flip status to inactive instead of deleting so that
         bargain requests and analytics keep their store context.
    REFERENCES:
        - bargenix/services/store_lifecycle_service.py (status transitions)
        - https://shopify.dev/docs/api/admin-rest/2024-07/resources/shop
    """
    __tablename__ = "shopify_stores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    shop_domain = Column(String, unique=True, index=True, nullable=False)  # e.g., "mystore.myshopify.com"
    shop_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    country = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    timezone = Column(String, nullable=True)
    owner_name = Column(String, nullable=True)
    plan_name = Column(String, nullable=True)
    status = Column(Enum(StoreStatusEnum, values_callable=lambda obj: [e.value for e in obj]), default=StoreStatusEnum.active, nullable=False)
    last_status_check = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="stores")
    tokens = relationship("ShopifyAuthToken", back_populates="store", cascade="all, delete-orphan")
    uninstall_events = relationship("ShopifyUninstallEvent", back_populates="store")

    def __str__(self):
        return f"{self.shop_name} ({self.shop_domain})"


class ShopifyAuthToken(Base):
    """Encrypted Shopify Admin API access token.

    REFERENCES:
        - bargenix/security.py (encrypt_secret / decrypt_secret)
    """
    __tablename__ = "shopify_auth_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    store_id = Column(UUID(as_uuid=True), ForeignKey("shopify_stores.id"), nullable=False, index=True)
    access_token_enc = Column(String, nullable=False)
    scope = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)  # None for non-expiring offline tokens
    created_at = Column(DateTime, default=datetime.utcnow)

    store = relationship("ShopifyStore", back_populates="tokens")

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= datetime.utcnow()

    def __str__(self):
        expires = self.expires_at.strftime('%Y-%m-%d %H:%M') if self.expires_at else 'no-expiry'
        return f"Shopify token (expires: {expires})"


class ShopifyNonceToken(Base):
    """Single-use nonce for the OAuth redirect and the uninstall round trip."""
    __tablename__ = "shopify_nonce_tokens"

    nonce = Column(String, primary_key=True)
    purpose = Column(Enum(NoncePurposeEnum, values_callable=lambda obj: [e.value for e in obj]), default=NoncePurposeEnum.oauth, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class ShopifyUninstallEvent(Base):
    __tablename__ = "shopify_uninstall_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    store_id = Column(UUID(as_uuid=True), ForeignKey("shopify_stores.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    shop_domain = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = relationship("ShopifyStore", back_populates="uninstall_events")

    def __str__(self):
        return f"{self.shop_domain}: {self.reason}"


class ShopifyScriptTag(Base):
    """Script tags we installed in a storefront (the bargain widget loader)."""
    __tablename__ = "shopify_script_tags"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_domain = Column(String, nullable=False, index=True)
    script_tag_id = Column(String, nullable=False)  # Shopify's numeric id as string
    script_type = Column(String, nullable=False, default="widget")
    src = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.script_type} tag {self.script_tag_id} ({self.shop_domain})"


class WidgetSettings(Base):
    """Appearance of the storefront bargain button, one row per shop."""
    __tablename__ = "widget_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_domain = Column(String, unique=True, index=True, nullable=False)
    label = Column(String, nullable=False, default="Bargain a Deal")
    bg_color = Column(String, nullable=False, default="#2E66F8")
    text_color = Column(String, nullable=False, default="#FFFFFF")
    font_size = Column(String, nullable=False, default="16px")
    border_radius = Column(String, nullable=False, default="8px")
    position = Column(String, nullable=False, default="bottom_right")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __str__(self):
        return f"Widget for {self.shop_domain}"


# Bargaining -----------------------------------------------------

class BargainRequest(Base):
    """A customer's ask to negotiate a product price, reviewed by the merchant.

    Status machine lives in bargenix/services/bargain_request_service.py.
    """
    __tablename__ = "bargain_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)  # store owner at submit time
    shop_domain = Column(String, nullable=False, index=True)
    product_id = Column(String, nullable=False)  # gid://shopify/Product/...
    variant_id = Column(String, nullable=True)  # gid://shopify/ProductVariant/...
    product_title = Column(String, nullable=True)
    product_price = Column(Numeric(12, 2), nullable=True)
    requested_price = Column(Numeric(12, 2), nullable=True)
    customer_email = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    status = Column(Enum(BargainRequestStatusEnum, values_callable=lambda obj: [e.value for e in obj]), default=BargainRequestStatusEnum.pending, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __str__(self):
        return f"{self.product_title or self.product_id} ({self.status.value})"


class ProductBargainingSettings(Base):
    """Per product/variant switch controlling whether the widget offers bargaining.

    `behavior` is an opaque tag forwarded to the widget.
    """
    __tablename__ = "product_bargaining_settings"
    __table_args__ = (UniqueConstraint("user_id", "product_id", "variant_id", name="uq_bargaining_user_product_variant"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False, index=True)
    variant_id = Column(String, nullable=False, default=PRODUCT_LEVEL_VARIANT)
    bargaining_enabled = Column(Boolean, nullable=False, default=False)
    min_price = Column(Numeric(12, 2), nullable=True)
    original_price = Column(Numeric(12, 2), nullable=True)
    behavior = Column(String, nullable=False, default="normal")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __str__(self):
        state = "on" if self.bargaining_enabled else "off"
        return f"{self.product_id} / {self.variant_id} ({state})"


class BargainEvent(Base):
    """Storefront analytics event sent by the widget."""
    __tablename__ = "bargain_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)  # store owner at track time
    shop_domain = Column(String, nullable=False, index=True)
    product_id = Column(String, nullable=False)
    variant_id = Column(String, nullable=True)
    event_type = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    referrer = Column(String, nullable=True)
    ip_hash = Column(String, nullable=True)
    device_type = Column(String, nullable=True)
    product_title = Column(String, nullable=True)
    product_price = Column(Numeric(12, 2), nullable=True)
    currency = Column(String, nullable=True)
    event_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __str__(self):
        return f"{self.event_type} on {self.shop_domain}"
