"""Shopify OAuth 2.0 flow endpoints.

WHAT:
    Implements the install/connect handshake for a merchant's Shopify store:
    redirect to the consent screen, then verify and persist the callback.

WHY:
    The bargain widget and the dashboard both need an Admin API token for the
    store. The callback is a browser redirect, so every failure is reported
    back to the frontend as a redirect, never as a JSON error.

REFERENCES:
    - Shopify OAuth: https://shopify.dev/docs/apps/auth/oauth
    - bargenix/services/shopify_oauth_service.py (verification + connect transaction)
    - bargenix/services/script_tag_service.py (widget install after connect)
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from bargenix.database import get_db
from bargenix.deps import Settings, get_current_user, get_optional_user, get_settings
from bargenix.models import NoncePurposeEnum, User
from bargenix.services import nonce_service, shopify_client
from bargenix.services.script_tag_service import register_widget_script
from bargenix.services.shopify_client import ShopifyAPIError
from bargenix.services.shopify_oauth_service import (
    StoreOwnershipError,
    build_authorize_url,
    connect_store,
    ensure_shop_available,
    normalize_shop_domain,
    validate_shop_domain,
    verify_oauth_hmac,
)
from bargenix.telemetry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/shopify", tags=["Shopify OAuth"])

NONCE_COOKIE = "shopify_nonce"


# =============================================================================
# HELPERS
# =============================================================================

def _validate_shopify_config(settings: Settings) -> None:
    """Raise 503 when the app credentials needed for the handshake are missing."""
    missing = [
        name
        for name in ("SHOPIFY_API_KEY", "SHOPIFY_API_SECRET", "APP_URL")
        if not getattr(settings, name)
    ]
    if missing:
        logger.error("[SHOPIFY_OAUTH] Missing required configuration: %s", missing)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Shopify integration not configured. Missing: {', '.join(missing)}",
        )


def _frontend_redirect(
    settings: Settings,
    *,
    success: bool,
    message: str,
    store_id: Optional[str] = None,
) -> RedirectResponse:
    """Redirect to the dashboard's Shopify page and drop the nonce cookie."""
    params = {"success": "true"} if success else {"error": "true"}
    params["message"] = message
    if store_id:
        params["store_id"] = store_id

    base = (settings.FRONTEND_URL or "").rstrip("/")
    response = RedirectResponse(url=f"{base}/dashboard/shopify?{urlencode(params)}")
    response.delete_cookie(NONCE_COOKIE, path="/")
    return response


# =============================================================================
# OAUTH ENDPOINTS
# =============================================================================

@router.get("/authorize")
async def shopify_authorize(
    request: Request,
    shop: str = Query(..., description="Shopify store domain (e.g., 'mystore' or 'mystore.myshopify.com')"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Redirect the merchant to the Shopify consent screen.

    A fresh nonce is stored in the database and mirrored in an httpOnly
    cookie; the callback requires both to match the returned `state`.
    """
    settings = get_settings()
    _validate_shopify_config(settings)

    shop_domain = normalize_shop_domain(shop)
    if not validate_shop_domain(shop_domain):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid Shopify store domain: {shop_domain}. Expected format: mystore.myshopify.com",
        )

    try:
        ensure_shop_available(db, shop_domain, current_user)
    except StoreOwnershipError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    nonce = nonce_service.create_nonce(db, NoncePurposeEnum.oauth, nonce_service.OAUTH_NONCE_TTL)
    auth_url = build_authorize_url(shop_domain, nonce, settings)

    logger.info(f"[SHOPIFY_OAUTH] Redirecting user {current_user.id} to Shopify consent for {shop_domain}")

    response = RedirectResponse(url=auth_url)
    response.set_cookie(
        key=NONCE_COOKIE,
        value=nonce,
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
        max_age=int(nonce_service.OAUTH_NONCE_TTL.total_seconds()),
        path="/",
    )
    return response


@router.get("/callback")
async def shopify_callback(
    request: Request,
    code: Optional[str] = Query(None),
    shop: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    shopify_nonce: Optional[str] = Cookie(default=None),
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Complete the handshake started by `/authorize`.

    Order: nonce consumed (whatever happens next), HMAC, nonce match, user,
    code exchange, shop details, connect transaction, widget script tag.
    """
    settings = get_settings()

    # Single use: the nonce row goes before any check can return
    nonce_valid = False
    if state:
        nonce_valid = nonce_service.consume_nonce(db, state, NoncePurposeEnum.oauth)
        db.commit()

    if not settings.SHOPIFY_API_KEY or not settings.SHOPIFY_API_SECRET:
        logger.error("[SHOPIFY_OAUTH] Callback received but Shopify is not configured")
        return _frontend_redirect(settings, success=False, message="Shopify integration not configured")

    params = dict(request.query_params)
    if not verify_oauth_hmac(params, settings.SHOPIFY_API_SECRET):
        logger.warning(f"[SHOPIFY_OAUTH] HMAC verification failed for shop={shop}")
        return _frontend_redirect(settings, success=False, message="Invalid request signature")

    if not nonce_valid or not shopify_nonce or shopify_nonce != state:
        logger.warning(f"[SHOPIFY_OAUTH] Nonce mismatch or expired for shop={shop}")
        return _frontend_redirect(settings, success=False, message="Invalid or expired OAuth state")

    if current_user is None:
        return _frontend_redirect(settings, success=False, message="Please log in before connecting a store")

    if not shop or not code:
        return _frontend_redirect(settings, success=False, message="Missing shop or code parameter")

    shop_domain = normalize_shop_domain(shop)
    if not validate_shop_domain(shop_domain):
        return _frontend_redirect(settings, success=False, message="Invalid shop domain")

    try:
        token_data = await shopify_client.exchange_access_token(
            shop_domain,
            code,
            client_id=settings.SHOPIFY_API_KEY,
            client_secret=settings.SHOPIFY_API_SECRET,
        )
    except ShopifyAPIError as e:
        logger.error(f"[SHOPIFY_OAUTH] Token exchange failed for {shop_domain}: {e}")
        return _frontend_redirect(settings, success=False, message="Failed to get access token from Shopify")

    logger.info(f"[SHOPIFY_OAUTH] Token exchange successful for {shop_domain} (scope: {token_data.get('scope')})")

    try:
        shop_data = await shopify_client.fetch_shop_details(
            shop_domain, token_data["access_token"], settings.SHOPIFY_API_VERSION
        )
    except ShopifyAPIError as e:
        # Connect anyway; the name falls back to the subdomain
        logger.warning(f"[SHOPIFY_OAUTH] Could not fetch shop details for {shop_domain}: {e}")
        shop_data = None

    try:
        store = connect_store(db, current_user, shop_domain, token_data, shop_data)
    except StoreOwnershipError as e:
        logger.warning(f"[SHOPIFY_OAUTH] {shop_domain} is owned by another account")
        return _frontend_redirect(settings, success=False, message=str(e))
    except Exception as e:
        logger.exception(f"[SHOPIFY_OAUTH] Failed to save store {shop_domain}")
        capture_exception(e, extra={"shop_domain": shop_domain})
        return _frontend_redirect(settings, success=False, message="Failed to save store connection")

    try:
        await register_widget_script(db, store, settings, access_token=token_data["access_token"])
    except Exception as e:
        db.rollback()
        logger.exception(f"[SHOPIFY_OAUTH] Widget script registration failed for {shop_domain}")
        capture_exception(e, extra={"shop_domain": shop_domain, "step": "script_tag"})

    return _frontend_redirect(
        settings,
        success=True,
        message=f"Connected {store.shop_name}",
        store_id=str(store.id),
    )
