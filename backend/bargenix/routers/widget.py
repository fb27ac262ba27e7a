"""Public endpoints called by the storefront bargain widget.

WHAT:
    - Whether bargaining is enabled for a product/variant on a shop
    - Customer bargain request submission
    - Widget appearance (public read, merchant write)

WHY:
    The widget runs on any merchant storefront, so these routes allow any
    origin (see the public CORS middleware in main.py) and never cache, since
    merchants expect toggles to take effect immediately.

REFERENCES:
    - bargenix/services/widget_service.py
    - bargenix/services/bargain_request_service.py (submit_request)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from bargenix import schemas
from bargenix.database import get_db
from bargenix.deps import get_current_user
from bargenix.models import PRODUCT_LEVEL_VARIANT, User
from bargenix.services import bargain_request_service as requests_service
from bargenix.services import widget_service
from bargenix.services.shopify_oauth_service import normalize_shop_domain
from bargenix.services.store_lifecycle_service import get_connected_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Widget"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _no_store(response: Response) -> None:
    for key, value in NO_STORE_HEADERS.items():
        response.headers[key] = value


# =============================================================================
# BARGAINING STATUS (public)
# =============================================================================

@router.get("/bargain/product-check")
def product_check(
    response: Response,
    shop: Optional[str] = Query(None, description="Shop domain, e.g. mystore.myshopify.com"),
    product_id: Optional[str] = Query(None, alias="productId"),
    variant_id: Optional[str] = Query(PRODUCT_LEVEL_VARIANT, alias="variantId"),
    db: Session = Depends(get_db),
):
    """Bargaining state for a product page, in the widget's camelCase format."""
    _no_store(response)
    if not shop or not product_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="shop and productId are required")

    result = widget_service.product_check(db, normalize_shop_domain(shop), product_id, variant_id)
    logger.debug(f"[WIDGET] product-check {shop} {product_id}/{variant_id}: {result['bargainingEnabled']}")
    return result


@router.get("/bargain/variant-check")
def variant_check(
    response: Response,
    variant_id: Optional[str] = Query(None, alias="variantId"),
    shop: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    _no_store(response)
    if not variant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="variantId is required")
    shop_domain = normalize_shop_domain(shop) if shop else None
    return widget_service.variant_check(db, variant_id, shop_domain)


# =============================================================================
# REQUEST SUBMISSION (public)
# =============================================================================

@router.post("/bargain/request", status_code=status.HTTP_201_CREATED)
def submit_bargain_request(
    payload: schemas.BargainRequestSubmit,
    response: Response,
    db: Session = Depends(get_db),
):
    """Create a pending request for the merchant to review."""
    _no_store(response)
    data = payload.model_dump()
    data["shop_domain"] = normalize_shop_domain(payload.shop_domain)
    try:
        request = requests_service.submit_request(db, data)
    except requests_service.UnknownShopError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return {"success": True, "requestId": str(request.id), "message": "Bargain request submitted successfully"}


# =============================================================================
# WIDGET APPEARANCE
# =============================================================================

@router.get("/widget-settings", response_model=schemas.WidgetSettingsOut)
def get_my_widget_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = get_connected_store(db, current_user)
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No connected store")
    return widget_service.get_widget_settings(db, store.shop_domain)


@router.put("/widget-settings", response_model=schemas.WidgetSettingsOut)
def update_my_widget_settings(
    payload: schemas.WidgetSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = get_connected_store(db, current_user)
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No connected store")
    saved = widget_service.save_widget_settings(db, store.shop_domain, payload.model_dump(exclude_none=True))
    logger.info(f"[WIDGET] Updated widget settings for {store.shop_domain}")
    return saved


@router.get("/widget-settings/{shop}", response_model=schemas.WidgetSettingsOut)
def get_public_widget_settings(
    shop: str,
    response: Response,
    db: Session = Depends(get_db),
):
    """Appearance for the storefront; defaults when the merchant never saved any."""
    _no_store(response)
    return widget_service.get_widget_settings(db, normalize_shop_domain(shop))
