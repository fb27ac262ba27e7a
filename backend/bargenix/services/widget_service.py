"""Storefront widget data: appearance settings and per-product bargaining status.

WHAT:
    Read paths used by the customer-facing chat widget plus the merchant's
    widget appearance settings.

WHY:
    The widget runs on every product page of every connected store. It only
    ever reads, and must answer "no bargaining" rather than fail when a shop
    is unknown, inactive or has no settings.

REFERENCES:
    - bargenix/routers/widget.py (public endpoints)
    - bargenix/services/bargaining_service.py (writes the rows read here)
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from bargenix.models import (
    PRODUCT_LEVEL_VARIANT,
    ProductBargainingSettings,
    ShopifyStore,
    StoreStatusEnum,
    WidgetSettings,
)
from bargenix.utils.shopify_ids import numeric_id, to_product_gid, to_variant_gid

logger = logging.getLogger(__name__)

WIDGET_DEFAULTS: Dict[str, str] = {
    "label": "Bargain a Deal",
    "bg_color": "#2E66F8",
    "text_color": "#FFFFFF",
    "font_size": "16px",
    "border_radius": "8px",
    "position": "bottom_right",
}

DEFAULT_WIDGET_BEHAVIOR = "standard"


# =============================================================================
# WIDGET APPEARANCE
# =============================================================================

def ensure_widget_settings(db: Session, shop_domain: str) -> WidgetSettings:
    """Create default widget settings for the shop if none exist. Does not commit."""
    settings = db.query(WidgetSettings).filter(WidgetSettings.shop_domain == shop_domain).first()
    if settings:
        return settings

    settings = WidgetSettings(shop_domain=shop_domain, **WIDGET_DEFAULTS)
    db.add(settings)
    db.flush()
    logger.info(f"[WIDGET] Created default widget settings for {shop_domain}")
    return settings


def get_widget_settings(db: Session, shop_domain: str) -> Dict[str, str]:
    """Widget appearance for the shop, defaults when nothing was saved."""
    settings = db.query(WidgetSettings).filter(WidgetSettings.shop_domain == shop_domain).first()
    if not settings:
        return dict(WIDGET_DEFAULTS)
    return {field: getattr(settings, field) for field in WIDGET_DEFAULTS}


def save_widget_settings(db: Session, shop_domain: str, values: Dict[str, Any]) -> Dict[str, str]:
    """Upsert widget appearance; unknown keys are ignored, None keeps the current value."""
    settings = ensure_widget_settings(db, shop_domain)
    for field in WIDGET_DEFAULTS:
        value = values.get(field)
        if value is not None:
            setattr(settings, field, value)
    db.commit()
    return {field: getattr(settings, field) for field in WIDGET_DEFAULTS}


# =============================================================================
# BARGAINING STATUS
# =============================================================================

def _active_store(db: Session, shop_domain: str) -> Optional[ShopifyStore]:
    return (
        db.query(ShopifyStore)
        .filter(ShopifyStore.shop_domain == shop_domain, ShopifyStore.status == StoreStatusEnum.active)
        .first()
    )


def find_enabled_setting(
    db: Session,
    shop_domain: str,
    product_id: str,
    variant_id: Optional[str] = None,
) -> Optional[ProductBargainingSettings]:
    """Most specific enabled setting for a product on a shop.

    Order: exact variant, then product-level row, then any enabled row of the
    product. Only the shop owner's settings are considered.
    """
    store = _active_store(db, shop_domain)
    if not store:
        return None

    product_gid = to_product_gid(product_id)
    variant_gid = to_variant_gid(variant_id)

    base = db.query(ProductBargainingSettings).filter(
        ProductBargainingSettings.user_id == store.user_id,
        ProductBargainingSettings.product_id == product_gid,
        ProductBargainingSettings.bargaining_enabled.is_(True),
    )

    if variant_gid:
        setting = base.filter(ProductBargainingSettings.variant_id == variant_gid).first()
        if setting:
            return setting

    setting = base.filter(
        or_(
            ProductBargainingSettings.variant_id == PRODUCT_LEVEL_VARIANT,
            ProductBargainingSettings.variant_id == "",
            ProductBargainingSettings.variant_id.is_(None),
        )
    ).first()
    if setting:
        return setting

    return base.order_by(ProductBargainingSettings.updated_at.desc()).first()


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def product_check(db: Session, shop_domain: str, product_id: str, variant_id: Optional[str] = None) -> Dict[str, Any]:
    """Widget payload for a product page."""
    setting = find_enabled_setting(db, shop_domain, product_id, variant_id)
    product_title = numeric_id(to_product_gid(product_id)) or "Product"

    if not setting:
        return {
            "success": True,
            "bargainingEnabled": False,
            "message": "Bargaining is not enabled for this product",
            "productTitle": product_title,
            "productPrice": None,
            "productImage": "",
            "minPrice": None,
            "minPricePercentage": None,
            "bargainingBehavior": DEFAULT_WIDGET_BEHAVIOR,
        }

    price = setting.original_price
    min_price = setting.min_price
    min_percentage = None
    if price and min_price is not None and price > 0:
        min_percentage = round(float(min_price) / float(price) * 100)

    return {
        "success": True,
        "bargainingEnabled": True,
        "message": "Bargaining is enabled for this product",
        "productTitle": product_title,
        "productPrice": _money(price),
        "productImage": "",
        "minPrice": _money(min_price),
        "minPricePercentage": min_percentage,
        "bargainingBehavior": setting.behavior or DEFAULT_WIDGET_BEHAVIOR,
    }


def variant_check(db: Session, variant_id: str, shop_domain: Optional[str] = None) -> Dict[str, Any]:
    """Look up the setting row for one variant (any enabled state)."""
    variant_gid = to_variant_gid(variant_id)
    query = db.query(ProductBargainingSettings).filter(ProductBargainingSettings.variant_id == variant_gid)

    if shop_domain:
        store = _active_store(db, shop_domain)
        if not store:
            return {"success": True, "found": False, "settings": None}
        query = query.filter(ProductBargainingSettings.user_id == store.user_id)

    setting = query.order_by(ProductBargainingSettings.updated_at.desc()).first()
    if not setting:
        return {"success": True, "found": False, "settings": None}

    return {
        "success": True,
        "found": True,
        "settings": {
            "productId": setting.product_id,
            "variantId": setting.variant_id,
            "bargainingEnabled": setting.bargaining_enabled,
            "minPrice": _money(setting.min_price),
            "originalPrice": _money(setting.original_price),
            "behavior": setting.behavior,
        },
    }
