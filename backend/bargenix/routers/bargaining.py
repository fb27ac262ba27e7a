"""Bargaining settings endpoints for the dashboard product table."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from bargenix import schemas
from bargenix.database import get_db
from bargenix.deps import get_current_user
from bargenix.models import User
from bargenix.services import bargaining_service
from bargenix.services.bargaining_service import (
    BargainingLimitError,
    BargainingValidationError,
    BulkItem,
    VariantInput,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/bargaining",
    tags=["Bargaining"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Invalid settings"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        403: {"model": schemas.ErrorResponse, "description": "Plan limit reached"},
    },
)


def _translate(e: Exception) -> HTTPException:
    if isinstance(e, BargainingLimitError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/limits", response_model=schemas.BargainingLimitsOut)
def get_limits(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Plan product limit and how many distinct products are enabled."""
    limits = bargaining_service.get_user_limits(db, current_user)
    return schemas.BargainingLimitsOut(
        max_products=limits.max_products,
        currently_enabled=limits.currently_enabled,
        membership_level=limits.membership_level,
        plan_name=limits.plan_name,
        is_limited=limits.is_limited,
        remaining=limits.remaining,
    )


@router.get("/settings", response_model=List[schemas.BargainingSettingOut])
def list_settings(
    product_id: Optional[str] = Query(None, description="Shopify product id or GID"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return bargaining_service.list_settings(db, current_user, product_id)


@router.get("/status", response_model=schemas.BargainingStatusOut)
def get_status(
    product_id: str = Query(...),
    variant_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return bargaining_service.get_bargaining_status(db, current_user, product_id, variant_id)


@router.post("/products/{product_id}/enable", response_model=schemas.BargainingSettingOut)
def enable_product(
    product_id: str,
    payload: schemas.EnableProductRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return bargaining_service.enable_product(
            db,
            current_user,
            product_id,
            min_price=payload.min_price,
            original_price=payload.original_price,
            behavior=payload.behavior,
        )
    except (BargainingLimitError, BargainingValidationError) as e:
        raise _translate(e)


@router.post("/products/{product_id}/disable", response_model=schemas.MessageResponse)
def disable_product(
    product_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    updated = bargaining_service.disable_product(db, current_user, product_id)
    return {"success": True, "message": f"Bargaining disabled ({updated} setting(s) updated)"}


@router.put("/settings", response_model=schemas.BargainingSettingOut)
def save_variant_settings(
    payload: schemas.VariantSettingsSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Save one variant row from the product table."""
    try:
        return bargaining_service.save_variant_settings(
            db,
            current_user,
            product_id=payload.product_id,
            variant_id=payload.variant_id,
            enabled=payload.enabled,
            min_price=payload.min_price,
            original_price=payload.original_price,
            behavior=payload.behavior,
            inventory_quantity=payload.inventory_quantity,
        )
    except (BargainingLimitError, BargainingValidationError) as e:
        raise _translate(e)


@router.put("/products/{product_id}/settings", response_model=List[schemas.BargainingSettingOut])
def save_product_settings(
    product_id: str,
    payload: schemas.ProductSettingsSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Apply a percentage or fixed minimum to several variants at once."""
    variants = [
        VariantInput(
            variant_id=v.variant_id,
            original_price=v.original_price,
            inventory_quantity=v.inventory_quantity,
        )
        for v in payload.variants
    ]
    try:
        return bargaining_service.save_product_settings(
            db,
            current_user,
            product_id=product_id,
            variants=variants,
            enabled=payload.enabled,
            min_price_type=payload.min_price_type,
            min_price_value=payload.min_price_value,
            behavior=payload.behavior,
        )
    except (BargainingLimitError, BargainingValidationError) as e:
        raise _translate(e)


@router.post("/bulk", response_model=List[schemas.BargainingSettingOut])
def bulk_update(
    payload: schemas.BulkSettingsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items = [
        BulkItem(
            product_id=item.product_id,
            variant_id=item.variant_id,
            enabled=item.enabled,
            min_price=item.min_price,
            original_price=item.original_price,
            behavior=item.behavior,
        )
        for item in payload.items
    ]
    try:
        return bargaining_service.bulk_update(db, current_user, items)
    except (BargainingLimitError, BargainingValidationError) as e:
        raise _translate(e)
