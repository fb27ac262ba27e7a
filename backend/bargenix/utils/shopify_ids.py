"""Shopify global id (GID) helpers.

The storefront widget sends numeric ids, the Admin API returns GIDs
(`gid://shopify/Product/123`). We always store GIDs.
"""

from typing import Optional

PRODUCT_GID_PREFIX = "gid://shopify/Product/"
VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"


def _to_gid(value: Optional[str], prefix: str) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if value.startswith("gid://"):
        return value
    return f"{prefix}{value}"


def to_product_gid(product_id: Optional[str]) -> Optional[str]:
    return _to_gid(product_id, PRODUCT_GID_PREFIX)


def to_variant_gid(variant_id: Optional[str]) -> Optional[str]:
    """Convert a variant id; the widget's "default" placeholder maps to None."""
    if variant_id is not None and str(variant_id).strip().lower() == "default":
        return None
    return _to_gid(variant_id, VARIANT_GID_PREFIX)


def numeric_id(gid: Optional[str]) -> Optional[str]:
    """`gid://shopify/Product/123` -> `123`."""
    if not gid:
        return None
    return str(gid).rsplit("/", 1)[-1]
