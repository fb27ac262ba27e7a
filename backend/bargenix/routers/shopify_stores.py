"""Connected store management for the merchant dashboard.

WHAT:
    List stores, check/refresh them against Shopify, run the uninstall round
    trip through the Shopify apps page, delete store data, and manage the
    widget script tag.

REFERENCES:
    - bargenix/services/store_lifecycle_service.py (status transitions)
    - bargenix/services/script_tag_service.py
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from bargenix import schemas
from bargenix.database import get_db
from bargenix.deps import get_current_user, get_settings
from bargenix.models import ShopifyStore, User
from bargenix.services import script_tag_service
from bargenix.services import store_lifecycle_service as lifecycle
from bargenix.services.shopify_client import ShopifyAPIError
from bargenix.services.token_service import get_active_token

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/shopify/stores",
    tags=["Shopify Stores"],
    responses={
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Store not found"},
    },
)


def _store_out(store: ShopifyStore, has_token: bool) -> schemas.StoreOut:
    out = schemas.StoreOut.model_validate(store)
    out.has_token = has_token
    return out


def _load_store(db: Session, user: User, store_id: uuid.UUID) -> ShopifyStore:
    try:
        return lifecycle.get_user_store(db, user, store_id)
    except lifecycle.StoreNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")


def _shopify_error(e: ShopifyAPIError) -> HTTPException:
    if e.is_unauthorized:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Store access was revoked; reconnect the store")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Shopify API error: {e}")


# =============================================================================
# LISTING
# =============================================================================

@router.get("", response_model=List[schemas.StoreOut], summary="List connected stores")
def list_stores(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Active stores first, then most recently updated."""
    return [_store_out(store, has_token) for store, has_token in lifecycle.list_stores(db, current_user)]


@router.get("/current", response_model=Optional[schemas.StoreOut], summary="Most recent store")
def get_current_store(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Latest store of the user, or null when none was ever connected."""
    store = lifecycle.get_connected_store(db, current_user)
    if not store:
        return None
    return _store_out(store, get_active_token(db, store) is not None)


# =============================================================================
# LIVE CHECKS
# =============================================================================

@router.post("/{store_id}/status-check", response_model=schemas.StoreStatusOut)
async def status_check(
    store_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = _load_store(db, current_user, store_id)
    return await lifecycle.check_store_status(db, store, get_settings())


@router.post("/{store_id}/refresh", response_model=schemas.MessageResponse)
async def refresh_store(
    store_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = _load_store(db, current_user, store_id)
    return await lifecycle.refresh_store_data(db, store, get_settings())


# =============================================================================
# UNINSTALL ROUND TRIP
# =============================================================================

@router.post("/{store_id}/uninstall-redirect", response_model=schemas.UninstallRedirectOut)
def uninstall_redirect(
    store_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """URL of the Shopify apps page that returns to `/uninstall-callback`."""
    store = _load_store(db, current_user, store_id)
    url = lifecycle.build_uninstall_redirect(db, store, get_settings())
    logger.info(f"[STORE_LIFECYCLE] Uninstall redirect issued for {store.shop_domain}")
    return {"redirect_url": url}


@router.get("/uninstall-callback")
def uninstall_callback(
    store_id: uuid.UUID = Query(...),
    nonce: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Merchant came back from the Shopify apps page; mark the store inactive."""
    settings = get_settings()
    base = (settings.FRONTEND_URL or "").rstrip("/")
    try:
        store = lifecycle.complete_uninstall(db, current_user, store_id, nonce)
    except PermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except lifecycle.StoreNotFoundError:
        db.commit()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")

    return RedirectResponse(url=f"{base}/dashboard/shopify?uninstalled=true&store_id={store.id}")


@router.delete("/{store_id}", response_model=schemas.MessageResponse)
def delete_store(
    store_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Delete the store row and its tokens. Bargain requests keep the shop domain."""
    store = _load_store(db, current_user, store_id)
    shop_domain = store.shop_domain
    lifecycle.delete_store(db, store)
    return {"success": True, "message": f"Store {shop_domain} deleted"}


# =============================================================================
# WIDGET SCRIPT TAG
# =============================================================================

@router.get("/{store_id}/script-tag", response_model=schemas.ScriptTagStatus)
async def check_script_tag(
    store_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = _load_store(db, current_user, store_id)
    try:
        tags = await script_tag_service.list_widget_tags(db, store, get_settings())
    except ShopifyAPIError as e:
        raise _shopify_error(e)
    return {"installed": bool(tags), "tags": tags}


@router.post("/{store_id}/script-tag", response_model=schemas.ScriptTagStatus)
async def install_script_tag(
    store_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = _load_store(db, current_user, store_id)
    try:
        tag = await script_tag_service.register_widget_script(db, store, get_settings())
    except ShopifyAPIError as e:
        db.rollback()
        raise _shopify_error(e)
    return {"installed": True, "tags": [{"id": tag.script_tag_id, "src": tag.src}]}


@router.delete("/{store_id}/script-tag", response_model=schemas.MessageResponse)
async def remove_script_tag(
    store_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = _load_store(db, current_user, store_id)
    try:
        removed = await script_tag_service.remove_widget_script(db, store, get_settings())
    except ShopifyAPIError as e:
        db.rollback()
        raise _shopify_error(e)
    return {"success": True, "message": f"Removed {removed} script tag(s)"}
