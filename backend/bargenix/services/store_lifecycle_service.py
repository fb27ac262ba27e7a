"""Store lifecycle: active/inactive transitions for connected Shopify stores.

WHAT:
    Owns every status change of a `ShopifyStore` after it was connected:
    token checks, live status checks against the Admin API, uninstall
    webhooks, the "remove app in Shopify" round trip and hard deletion.

WHY:
    Shopify never tells us reliably when a merchant removed the app (the
    webhook can be missed), so a store is also considered gone when its token
    is missing, expired, or rejected with a 401. All of those paths must end in
    the same state: status inactive, tokens deleted, one uninstall event.

STATE MACHINE:
    active   --(token missing / 401 / no shop data / uninstall)--> inactive
    inactive --(OAuth connect / successful status check)---------> active

REFERENCES:
    - bargenix/routers/shopify_stores.py (HTTP surface)
    - bargenix/routers/shopify_webhooks.py (app/uninstalled)
    - https://shopify.dev/docs/api/admin-graphql/latest/queries/shop
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

from sqlalchemy.orm import Session

from bargenix.deps import Settings
from bargenix.models import (
    MembershipStatusEnum,
    NoncePurposeEnum,
    ShopifyStore,
    ShopifyUninstallEvent,
    StoreStatusEnum,
    User,
    UserMembership,
)
from bargenix.services import nonce_service
from bargenix.services.shopify_client import ShopifyAPIError, ShopifyClient
from bargenix.services.token_service import delete_store_tokens, get_access_token, get_active_token

logger = logging.getLogger(__name__)

# Events with the same store and reason inside this window are merged
UNINSTALL_EVENT_DEDUPE_WINDOW = timedelta(hours=1)

REASON_TOKEN_MISSING = "Access token missing - store appears to be uninstalled"
REASON_UNAUTHORIZED = "Shopify API returned 401 Unauthorized"
REASON_NO_SHOP_DATA = "Shopify API returned no shop data"
REASON_APPS_PAGE = "User returned from Shopify apps page"
REASON_DELETED = "Store data completely deleted from dashboard"
REASON_APP_UNINSTALLED = "app_uninstalled_webhook"
REASON_SHOP_REDACT = "shop_redact_webhook"


class StoreNotFoundError(Exception):
    """Store does not exist or belongs to another user."""


# =============================================================================
# LOOKUPS
# =============================================================================

def get_user_store(db: Session, user: User, store_id: uuid.UUID) -> ShopifyStore:
    """Load a store owned by `user`.

    Raises:
        StoreNotFoundError: If the id is unknown or owned by someone else
    """
    store = (
        db.query(ShopifyStore)
        .filter(ShopifyStore.id == store_id, ShopifyStore.user_id == user.id)
        .first()
    )
    if not store:
        raise StoreNotFoundError(f"Store {store_id} not found")
    return store


def get_store_by_domain(db: Session, shop_domain: str) -> Optional[ShopifyStore]:
    return db.query(ShopifyStore).filter(ShopifyStore.shop_domain == shop_domain).first()


def get_user_store_domains(db: Session, user: User) -> List[str]:
    """All shop domains the user has ever connected (active or not)."""
    rows = db.query(ShopifyStore.shop_domain).filter(ShopifyStore.user_id == user.id).all()
    return [row[0] for row in rows]


def get_connected_store(db: Session, user: User) -> Optional[ShopifyStore]:
    """Most recently updated store of the user.

    An "active" store without a usable token is corrected to inactive here,
    which is how a missed uninstall webhook is eventually noticed.
    """
    store = (
        db.query(ShopifyStore)
        .filter(ShopifyStore.user_id == user.id)
        .order_by(ShopifyStore.updated_at.desc())
        .first()
    )
    if not store:
        return None

    if store.status == StoreStatusEnum.active and get_active_token(db, store) is None:
        logger.info(f"[STORE_LIFECYCLE] {store.shop_domain} is active without a token, marking inactive")
        mark_store_inactive(db, store, REASON_TOKEN_MISSING)

    return store


def list_stores(db: Session, user: User) -> List[Tuple[ShopifyStore, bool]]:
    """Stores of the user, active first then most recently updated, with a has_token flag."""
    stores = (
        db.query(ShopifyStore)
        .filter(ShopifyStore.user_id == user.id)
        .order_by(ShopifyStore.updated_at.desc())
        .all()
    )
    # Stable sort keeps the updated_at ordering inside each status group
    stores.sort(key=lambda s: 0 if s.status == StoreStatusEnum.active else 1)
    return [(store, get_active_token(db, store) is not None) for store in stores]


# =============================================================================
# TRANSITIONS
# =============================================================================

def record_uninstall_event(
    db: Session,
    store: ShopifyStore,
    reason: str,
    details: Optional[Dict[str, Any]] = None,
) -> ShopifyUninstallEvent:
    """Insert an uninstall event, or refresh the one recorded within the last hour.

    Does not commit.
    """
    window_start = datetime.utcnow() - UNINSTALL_EVENT_DEDUPE_WINDOW
    existing = (
        db.query(ShopifyUninstallEvent)
        .filter(
            ShopifyUninstallEvent.store_id == store.id,
            ShopifyUninstallEvent.reason == reason,
            ShopifyUninstallEvent.created_at >= window_start,
        )
        .first()
    )
    if existing:
        if details is not None:
            existing.details = details
        existing.updated_at = datetime.utcnow()
        return existing

    event = ShopifyUninstallEvent(
        store_id=store.id,
        user_id=store.user_id,
        shop_domain=store.shop_domain,
        reason=reason,
        details=details,
    )
    db.add(event)
    return event


def mark_store_inactive(
    db: Session,
    store: ShopifyStore,
    reason: str,
    details: Optional[Dict[str, Any]] = None,
) -> ShopifyStore:
    """Set the store inactive, log the uninstall event and drop its tokens in one transaction."""
    try:
        now = datetime.utcnow()
        store.status = StoreStatusEnum.inactive
        store.last_status_check = now
        store.updated_at = now
        record_uninstall_event(db, store, reason, details)
        delete_store_tokens(db, store)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"[STORE_LIFECYCLE] Failed to mark {store.shop_domain} inactive")
        raise

    logger.info(f"[STORE_LIFECYCLE] {store.shop_domain} marked inactive: {reason}")
    return store


def mark_store_active(db: Session, store: ShopifyStore) -> ShopifyStore:
    now = datetime.utcnow()
    store.status = StoreStatusEnum.active
    store.last_status_check = now
    db.commit()
    return store


def cancel_active_memberships(db: Session, user_id: uuid.UUID) -> int:
    """Cancel the user's active plan memberships. Does not commit."""
    memberships = (
        db.query(UserMembership)
        .filter(UserMembership.user_id == user_id, UserMembership.status == MembershipStatusEnum.active)
        .all()
    )
    now = datetime.utcnow()
    for membership in memberships:
        membership.status = MembershipStatusEnum.cancelled
        membership.cancelled_at = now
    return len(memberships)


def handle_app_uninstalled(db: Session, store: ShopifyStore, payload: Dict[str, Any]) -> None:
    """Apply the `app/uninstalled` webhook in one transaction."""
    try:
        cancelled = cancel_active_memberships(db, store.user_id)
        now = datetime.utcnow()
        store.status = StoreStatusEnum.inactive
        store.last_status_check = now
        store.updated_at = now
        record_uninstall_event(db, store, REASON_APP_UNINSTALLED, payload)
        delete_store_tokens(db, store)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"[STORE_LIFECYCLE] Failed to process uninstall for {store.shop_domain}")
        raise

    logger.info(
        f"[STORE_LIFECYCLE] {store.shop_domain} uninstalled via webhook "
        f"({cancelled} membership(s) cancelled)"
    )


# =============================================================================
# LIVE CHECKS (Shopify Admin API)
# =============================================================================

def _client_for(db: Session, store: ShopifyStore, settings: Settings) -> Optional[ShopifyClient]:
    access_token = get_access_token(db, store)
    if not access_token:
        return None
    return ShopifyClient(store.shop_domain, access_token, api_version=settings.SHOPIFY_API_VERSION)


async def check_store_status(db: Session, store: ShopifyStore, settings: Settings) -> Dict[str, Any]:
    """Ask Shopify whether our token still works and update the status accordingly.

    Returns:
        {"success", "is_connected", "status", "message"}; success is False only
        for API errors that say nothing about the installation (5xx, timeouts).
    """
    client = _client_for(db, store, settings)
    if client is None:
        mark_store_inactive(db, store, REASON_TOKEN_MISSING)
        return {
            "success": True,
            "is_connected": False,
            "status": store.status.value,
            "message": "No access token found for this store",
        }

    try:
        shop_name = await client.ping()
    except ShopifyAPIError as e:
        if e.is_unauthorized:
            mark_store_inactive(db, store, REASON_UNAUTHORIZED)
            return {
                "success": True,
                "is_connected": False,
                "status": store.status.value,
                "message": "Store has uninstalled the app",
            }
        logger.warning(f"[STORE_LIFECYCLE] Status check failed for {store.shop_domain}: {e}")
        return {
            "success": False,
            "is_connected": store.status == StoreStatusEnum.active,
            "status": store.status.value,
            "message": f"Failed to check store status: {e}",
        }

    if not shop_name:
        mark_store_inactive(db, store, REASON_NO_SHOP_DATA)
        return {
            "success": True,
            "is_connected": False,
            "status": store.status.value,
            "message": "Shopify returned no shop data",
        }

    mark_store_active(db, store)
    return {
        "success": True,
        "is_connected": True,
        "status": store.status.value,
        "message": "Store is connected",
    }


async def refresh_store_data(db: Session, store: ShopifyStore, settings: Settings) -> Dict[str, Any]:
    """Re-read shop metadata from Shopify and store it."""
    client = _client_for(db, store, settings)
    if client is None:
        mark_store_inactive(db, store, REASON_TOKEN_MISSING)
        return {"success": False, "message": "No access token found for this store"}

    try:
        shop = await client.get_shop()
    except ShopifyAPIError as e:
        if e.is_unauthorized:
            mark_store_inactive(db, store, REASON_UNAUTHORIZED)
            return {"success": False, "message": "Store access was revoked; reconnect the store"}
        logger.warning(f"[STORE_LIFECYCLE] Refresh failed for {store.shop_domain}: {e}")
        return {"success": False, "message": f"Failed to refresh store data: {e}"}

    now = datetime.utcnow()
    store.shop_name = shop.get("name") or store.shop_name
    store.email = shop.get("email") or store.email
    store.currency = shop.get("currency") or store.currency
    store.timezone = shop.get("timezone") or store.timezone
    store.plan_name = shop.get("plan_name") or store.plan_name
    store.status = StoreStatusEnum.active
    store.last_status_check = now
    store.updated_at = now
    db.commit()

    logger.info(f"[STORE_LIFECYCLE] Refreshed store data for {store.shop_domain}")
    return {"success": True, "message": "Store data refreshed"}


# =============================================================================
# UNINSTALL ROUND TRIP AND DELETION
# =============================================================================

def build_uninstall_redirect(db: Session, store: ShopifyStore, settings: Settings) -> str:
    """URL of the store's Shopify apps page that sends the merchant back to us."""
    nonce = nonce_service.create_nonce(db, NoncePurposeEnum.uninstall, nonce_service.UNINSTALL_NONCE_TTL)
    app_url = (settings.APP_URL or "").rstrip("/")
    return_to = f"{app_url}/shopify/stores/uninstall-callback?" + urlencode(
        {"store_id": str(store.id), "nonce": nonce}
    )
    return f"https://{store.shop_domain}/admin/settings/apps?return_to={quote(return_to, safe='')}"


def complete_uninstall(db: Session, user: User, store_id: uuid.UUID, nonce: str) -> ShopifyStore:
    """Handle the merchant's return from the Shopify apps page.

    Raises:
        PermissionError: If the nonce is invalid or expired
        StoreNotFoundError: If the user does not own the store
    """
    if not nonce_service.consume_nonce(db, nonce, NoncePurposeEnum.uninstall):
        db.commit()
        raise PermissionError("Invalid or expired uninstall link")

    store = get_user_store(db, user, store_id)
    return mark_store_inactive(db, store, REASON_APPS_PAGE)


def delete_store(db: Session, store: ShopifyStore) -> None:
    """Remove the store and its tokens; the audit event survives with a null store id."""
    shop_domain = store.shop_domain
    try:
        event = ShopifyUninstallEvent(
            store_id=None,
            user_id=store.user_id,
            shop_domain=shop_domain,
            reason=REASON_DELETED,
            details={"store_id": str(store.id), "shop_name": store.shop_name},
        )
        db.add(event)
        delete_store_tokens(db, store)
        (
            db.query(ShopifyUninstallEvent)
            .filter(ShopifyUninstallEvent.store_id == store.id)
            .update({ShopifyUninstallEvent.store_id: None}, synchronize_session=False)
        )
        db.delete(store)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"[STORE_LIFECYCLE] Failed to delete {shop_domain}")
        raise

    logger.info(f"[STORE_LIFECYCLE] Deleted store {shop_domain}")
