"""Per-product bargaining settings and plan limits.

WHAT:
    Enable/disable bargaining per product or variant, store the minimum price
    and behavior tag, and enforce the number of products a plan may enable.

WHY:
    The widget reads these rows on every product page, and bargain request
    approval writes them. All writers go through `upsert_setting` so the
    (user, product, variant) key and price clamping are applied the same way.

NOTES:
    - Product ids are stored as Shopify GIDs; product-level rows use the
      variant id "default".
    - Enable and disable are idempotent: repeating them leaves one row with
      the same values.

REFERENCES:
    - bargenix/routers/bargaining.py
    - bargenix/services/bargain_request_service.py (approve cascade)
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from bargenix.models import (
    PRODUCT_LEVEL_VARIANT,
    MembershipPlan,
    MembershipStatusEnum,
    ProductBargainingSettings,
    User,
    UserMembership,
)
from bargenix.utils.shopify_ids import to_product_gid, to_variant_gid

logger = logging.getLogger(__name__)

FREE_PLAN_SLUG = "free"
DEFAULT_PRODUCT_LIMIT = 10

LIMIT_REACHED_MESSAGE = (
    "You've reached your bargaining product limit. Please upgrade your plan to enable more products."
)
OUT_OF_STOCK_MESSAGE = "Cannot enable bargaining for out-of-stock items"

CENTS = Decimal("0.01")


class BargainingLimitError(Exception):
    """Enabling would exceed the plan's product limit."""


class BargainingValidationError(ValueError):
    """Invalid settings payload (ids, prices, stock)."""


@dataclass
class BargainingLimits:
    max_products: int
    currently_enabled: int
    membership_level: str
    plan_name: str

    @property
    def is_limited(self) -> bool:
        return self.max_products > 0

    @property
    def remaining(self) -> Optional[int]:
        if not self.is_limited:
            return None
        return max(self.max_products - self.currently_enabled, 0)

    def can_add(self, count: int = 1) -> bool:
        return not self.is_limited or self.currently_enabled + count <= self.max_products


# =============================================================================
# LIMITS
# =============================================================================

def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def enabled_product_ids(db: Session, user_id: uuid.UUID) -> List[str]:
    rows = (
        db.query(ProductBargainingSettings.product_id)
        .filter(
            ProductBargainingSettings.user_id == user_id,
            ProductBargainingSettings.bargaining_enabled.is_(True),
        )
        .distinct()
        .all()
    )
    return [row[0] for row in rows]


def is_product_enabled(db: Session, user_id: uuid.UUID, product_gid: str) -> bool:
    return (
        db.query(ProductBargainingSettings.id)
        .filter(
            ProductBargainingSettings.user_id == user_id,
            ProductBargainingSettings.product_id == product_gid,
            ProductBargainingSettings.bargaining_enabled.is_(True),
        )
        .first()
        is not None
    )


def get_user_limits(db: Session, user: User) -> BargainingLimits:
    """Plan limit from the active membership, else the free plan, else 10 products."""
    membership = (
        db.query(UserMembership)
        .filter(UserMembership.user_id == user.id, UserMembership.status == MembershipStatusEnum.active)
        .order_by(UserMembership.created_at.desc())
        .first()
    )
    plan = membership.plan if membership else None
    if plan is None:
        plan = db.query(MembershipPlan).filter(MembershipPlan.slug == FREE_PLAN_SLUG).first()

    currently_enabled = (
        db.query(func.count(func.distinct(ProductBargainingSettings.product_id)))
        .filter(
            ProductBargainingSettings.user_id == user.id,
            ProductBargainingSettings.bargaining_enabled.is_(True),
        )
        .scalar()
        or 0
    )

    if plan is None:
        return BargainingLimits(DEFAULT_PRODUCT_LIMIT, currently_enabled, FREE_PLAN_SLUG, "Free")

    return BargainingLimits(plan.product_limit, currently_enabled, plan.slug, plan.name)


def check_can_enable(
    db: Session, user: User, product_gids: Iterable[str], *, bulk: bool = False
) -> BargainingLimits:
    """Raise BargainingLimitError if enabling these products would exceed the plan.

    Products that are already enabled do not count against the limit. Bulk
    updates always report the plan size and the attempted count.
    """
    limits = get_user_limits(db, user)
    already = set(enabled_product_ids(db, user.id))
    new_products = {gid for gid in product_gids if gid not in already}

    if new_products and not limits.can_add(len(new_products)):
        if len(new_products) == 1 and not bulk:
            raise BargainingLimitError(LIMIT_REACHED_MESSAGE)
        raise BargainingLimitError(
            f"Your plan allows only {limits.max_products} products for bargaining. "
            f"You currently have {limits.currently_enabled} enabled and are trying to add "
            f"{len(new_products)} more."
        )
    return limits


# =============================================================================
# WRITES
# =============================================================================

def upsert_setting(
    db: Session,
    user: User,
    *,
    product_id: str,
    variant_id: Optional[str],
    enabled: bool,
    min_price=None,
    original_price=None,
    behavior: Optional[str] = None,
) -> ProductBargainingSettings:
    """Insert or update the (user, product, variant) row. Does not commit.

    `min_price` is clamped to `original_price`.
    """
    product_gid = to_product_gid(product_id)
    if not product_gid:
        raise BargainingValidationError("Product ID is required")
    variant_key = to_variant_gid(variant_id) or PRODUCT_LEVEL_VARIANT

    original = _to_decimal(original_price)
    minimum = _to_decimal(min_price)
    if minimum is not None and original is not None and minimum > original:
        minimum = original

    setting = (
        db.query(ProductBargainingSettings)
        .filter(
            ProductBargainingSettings.user_id == user.id,
            ProductBargainingSettings.product_id == product_gid,
            ProductBargainingSettings.variant_id == variant_key,
        )
        .first()
    )
    if setting is None:
        setting = ProductBargainingSettings(
            user_id=user.id,
            product_id=product_gid,
            variant_id=variant_key,
        )
        db.add(setting)

    setting.bargaining_enabled = enabled
    if minimum is not None:
        setting.min_price = minimum
    if original is not None:
        setting.original_price = original
    if behavior:
        setting.behavior = behavior
    db.flush()
    return setting


def enable_product(
    db: Session,
    user: User,
    product_id: str,
    min_price,
    original_price,
    behavior: str = "normal",
) -> ProductBargainingSettings:
    """Enable product-level bargaining, respecting the plan limit."""
    product_gid = to_product_gid(product_id)
    check_can_enable(db, user, [product_gid])
    try:
        setting = upsert_setting(
            db,
            user,
            product_id=product_gid,
            variant_id=None,
            enabled=True,
            min_price=min_price,
            original_price=original_price,
            behavior=behavior,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"[BARGAINING] Enabled {product_gid} for user {user.id}")
    return setting


def disable_product(db: Session, user: User, product_id: str) -> int:
    """Disable every row of the product. Idempotent; returns the rows touched."""
    product_gid = to_product_gid(product_id)
    updated = (
        db.query(ProductBargainingSettings)
        .filter(
            ProductBargainingSettings.user_id == user.id,
            ProductBargainingSettings.product_id == product_gid,
        )
        .update({ProductBargainingSettings.bargaining_enabled: False}, synchronize_session=False)
    )
    db.commit()
    logger.info(f"[BARGAINING] Disabled {product_gid} for user {user.id} ({updated} row(s))")
    return updated


def save_variant_settings(
    db: Session,
    user: User,
    *,
    product_id: str,
    variant_id: str,
    enabled: bool,
    min_price,
    original_price,
    behavior: str = "normal",
    inventory_quantity: Optional[int] = None,
) -> ProductBargainingSettings:
    """Save settings for a single variant from the product table."""
    if not product_id or not variant_id:
        raise BargainingValidationError("Product ID and variant ID are required")
    original = _to_decimal(original_price)
    if original is None or original <= 0:
        raise BargainingValidationError("Original price must be greater than 0")
    if enabled and inventory_quantity is not None and inventory_quantity <= 0:
        raise BargainingValidationError(OUT_OF_STOCK_MESSAGE)

    product_gid = to_product_gid(product_id)
    if enabled:
        check_can_enable(db, user, [product_gid])

    try:
        setting = upsert_setting(
            db,
            user,
            product_id=product_gid,
            variant_id=variant_id,
            enabled=enabled,
            min_price=min_price,
            original_price=original,
            behavior=behavior,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return setting


@dataclass
class VariantInput:
    variant_id: str
    original_price: Decimal
    inventory_quantity: Optional[int] = None


def compute_min_price(original_price, min_price_type: str, min_price_value) -> Decimal:
    """Percentage of the original price or a fixed amount, never above the original."""
    original = _to_decimal(original_price)
    value = Decimal(str(min_price_value))
    if min_price_type == "percentage":
        minimum = original * value / Decimal(100)
    else:
        minimum = value
    minimum = minimum.quantize(CENTS, rounding=ROUND_HALF_UP)
    return min(minimum, original)


def save_product_settings(
    db: Session,
    user: User,
    *,
    product_id: str,
    variants: Sequence[VariantInput],
    enabled: bool,
    min_price_type: str,
    min_price_value,
    behavior: str = "normal",
) -> List[ProductBargainingSettings]:
    """Apply one rule to several variants of a product.

    When enabling, variants without stock are skipped.
    """
    if not product_id or not variants:
        raise BargainingValidationError("Product ID and at least one variant are required")

    product_gid = to_product_gid(product_id)
    targets = [
        v for v in variants
        if not (enabled and v.inventory_quantity is not None and v.inventory_quantity <= 0)
    ]
    if enabled and not targets:
        raise BargainingValidationError(OUT_OF_STOCK_MESSAGE)
    if enabled:
        check_can_enable(db, user, [product_gid])

    saved: List[ProductBargainingSettings] = []
    try:
        for variant in targets:
            if _to_decimal(variant.original_price) is None or variant.original_price <= 0:
                raise BargainingValidationError(f"Original price must be greater than 0 for {variant.variant_id}")
            saved.append(
                upsert_setting(
                    db,
                    user,
                    product_id=product_gid,
                    variant_id=variant.variant_id,
                    enabled=enabled,
                    min_price=compute_min_price(variant.original_price, min_price_type, min_price_value),
                    original_price=variant.original_price,
                    behavior=behavior,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    skipped = len(variants) - len(targets)
    logger.info(
        f"[BARGAINING] Saved {len(saved)} variant setting(s) for {product_gid} "
        f"(skipped {skipped} out of stock)"
    )
    return saved


@dataclass
class BulkItem:
    product_id: str
    variant_id: Optional[str]
    enabled: bool
    min_price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    behavior: str = "normal"


def bulk_update(db: Session, user: User, items: Sequence[BulkItem]) -> List[ProductBargainingSettings]:
    """Apply many settings at once; the limit is checked for the whole batch up front."""
    to_enable = {to_product_gid(item.product_id) for item in items if item.enabled}
    check_can_enable(db, user, to_enable, bulk=True)

    saved: List[ProductBargainingSettings] = []
    try:
        for item in items:
            saved.append(
                upsert_setting(
                    db,
                    user,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    enabled=item.enabled,
                    min_price=item.min_price,
                    original_price=item.original_price,
                    behavior=item.behavior,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"[BARGAINING] Bulk updated {len(saved)} setting(s) for user {user.id}")
    return saved


def list_settings(db: Session, user: User, product_id: Optional[str] = None) -> List[ProductBargainingSettings]:
    query = db.query(ProductBargainingSettings).filter(ProductBargainingSettings.user_id == user.id)
    if product_id:
        query = query.filter(ProductBargainingSettings.product_id == to_product_gid(product_id))
    return query.order_by(ProductBargainingSettings.updated_at.desc()).all()


def get_bargaining_status(db: Session, user: User, product_id: str, variant_id: Optional[str] = None) -> dict:
    """Dashboard view of one product/variant: {enabled, min_price, behavior}."""
    product_gid = to_product_gid(product_id)
    variant_key = to_variant_gid(variant_id) or PRODUCT_LEVEL_VARIANT
    setting = (
        db.query(ProductBargainingSettings)
        .filter(
            ProductBargainingSettings.user_id == user.id,
            ProductBargainingSettings.product_id == product_gid,
            ProductBargainingSettings.variant_id == variant_key,
        )
        .first()
    )
    if not setting:
        return {"enabled": False, "min_price": None, "behavior": "normal"}
    return {
        "enabled": setting.bargaining_enabled,
        "min_price": setting.min_price,
        "behavior": setting.behavior,
    }
