"""Shopify OAuth handshake: request verification and the transactional connect.

WHAT:
    - Shop domain normalization/validation
    - HMAC verification of Shopify's redirect query string
    - Authorization URL construction
    - The connect transaction: store upsert, token, default widget settings

WHY:
    The router only orchestrates (cookies, redirects, HTTP calls). Everything
    that must be right for security or consistency lives here so it can be
    unit tested without a running app.

REFERENCES:
    - https://shopify.dev/docs/apps/auth/oauth/getting-started
    - https://shopify.dev/docs/apps/auth/oauth/getting-started#step-2-verify-the-installation-request
    - bargenix/routers/shopify_oauth.py (HTTP orchestration)
"""

import hashlib
import hmac
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urlparse

from sqlalchemy.orm import Session

from bargenix.deps import Settings
from bargenix.models import ShopifyStore, StoreStatusEnum, User
from bargenix.services.token_service import store_shop_token
from bargenix.services.widget_service import ensure_widget_settings

logger = logging.getLogger(__name__)

SHOP_DOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")

# Query parameters excluded from the signed message
_UNSIGNED_PARAMS = ("hmac", "signature")


class StoreOwnershipError(Exception):
    """The shop is already connected to a different dashboard account."""

    def __init__(self, shop_domain: str):
        super().__init__("This Shopify store is connected to another Bargenix account")
        self.shop_domain = shop_domain


# =============================================================================
# DOMAIN HELPERS
# =============================================================================

def normalize_shop_domain(shop_input: str) -> str:
    """Normalize shop input to the canonical myshopify.com domain.

    Examples:
        'myshop' -> 'myshop.myshopify.com'
        'MyShop.myshopify.com/' -> 'myshop.myshopify.com'
        'https://myshop.myshopify.com/admin' -> 'myshop.myshopify.com'
    """
    shop = (shop_input or "").strip().lower()

    if shop.startswith("http://") or shop.startswith("https://"):
        parsed = urlparse(shop)
        shop = parsed.netloc or parsed.path

    shop = shop.split("/")[0].rstrip(".")

    if shop and not shop.endswith(".myshopify.com"):
        shop = f"{shop}.myshopify.com"

    return shop


def validate_shop_domain(shop_domain: str) -> bool:
    """Check the domain is `{store-name}.myshopify.com`."""
    return bool(SHOP_DOMAIN_PATTERN.match(shop_domain or ""))


# =============================================================================
# HMAC
# =============================================================================

def compute_oauth_hmac(params: Mapping[str, str], secret: str) -> str:
    """Hex HMAC-SHA256 over the sorted `key=value` pairs Shopify signed."""
    message = "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key not in _UNSIGNED_PARAMS
    )
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_oauth_hmac(params: Mapping[str, str], secret: Optional[str]) -> bool:
    """Verify the `hmac` query parameter of a Shopify redirect (constant time)."""
    provided = params.get("hmac")
    if not provided or not secret:
        return False
    expected = compute_oauth_hmac(params, secret)
    return hmac.compare_digest(expected, provided)


# =============================================================================
# AUTHORIZATION
# =============================================================================

def build_authorize_url(shop_domain: str, nonce: str, settings: Settings) -> str:
    params = {
        "client_id": settings.SHOPIFY_API_KEY,
        "scope": settings.SHOPIFY_SCOPES,
        "redirect_uri": f"{(settings.APP_URL or '').rstrip('/')}/auth/shopify/callback",
        "state": nonce,
        "grant_options[]": "per-user",
    }
    return f"https://{shop_domain}/admin/oauth/authorize?{urlencode(params)}"


def ensure_shop_available(db: Session, shop_domain: str, user: User) -> Optional[ShopifyStore]:
    """Return the user's existing store row for the domain, if any.

    Raises:
        StoreOwnershipError: If another user already owns the domain
    """
    store = db.query(ShopifyStore).filter(ShopifyStore.shop_domain == shop_domain).first()
    if store and store.user_id != user.id:
        raise StoreOwnershipError(shop_domain)
    return store


# =============================================================================
# CONNECT TRANSACTION
# =============================================================================

def shop_info_from_payload(shop_domain: str, shop_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Map a shop.json payload to store columns, falling back to the domain."""
    shop_data = shop_data or {}
    return {
        "shop_name": shop_data.get("name") or shop_domain.split(".")[0],
        "email": shop_data.get("email"),
        "country": shop_data.get("country_name") or shop_data.get("country_code"),
        "currency": shop_data.get("currency"),
        "timezone": shop_data.get("iana_timezone") or shop_data.get("timezone"),
        "owner_name": shop_data.get("shop_owner"),
        "plan_name": shop_data.get("plan_display_name") or shop_data.get("plan_name"),
    }


def connect_store(
    db: Session,
    user: User,
    shop_domain: str,
    token_data: Dict[str, Any],
    shop_data: Optional[Dict[str, Any]] = None,
) -> ShopifyStore:
    """Persist a completed OAuth handshake in one transaction.

    Steps: ownership check, store upsert (status active), replace tokens,
    default widget settings. Any failure rolls back all of it.

    Raises:
        StoreOwnershipError: If the shop belongs to another user
    """
    info = shop_info_from_payload(shop_domain, shop_data)
    now = datetime.utcnow()

    expires_at = None
    if token_data.get("expires_in"):
        expires_at = now + timedelta(seconds=int(token_data["expires_in"]))

    try:
        store = ensure_shop_available(db, shop_domain, user)

        if store:
            for field, value in info.items():
                if value is not None:
                    setattr(store, field, value)
            store.status = StoreStatusEnum.active
            store.last_status_check = now
            store.updated_at = now
            logger.info(f"[SHOPIFY_OAUTH] Reconnecting existing store {shop_domain}")
        else:
            store = ShopifyStore(
                user_id=user.id,
                shop_domain=shop_domain,
                status=StoreStatusEnum.active,
                last_status_check=now,
                **info,
            )
            db.add(store)
            logger.info(f"[SHOPIFY_OAUTH] Creating store {shop_domain}")
        db.flush()

        store_shop_token(
            db,
            store,
            access_token=token_data["access_token"],
            scope=token_data.get("scope"),
            expires_at=expires_at,
        )
        ensure_widget_settings(db, shop_domain)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(store)
    logger.info(f"[SHOPIFY_OAUTH] Store {shop_domain} connected for user {user.id}")
    return store
