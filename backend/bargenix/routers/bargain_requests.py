"""Merchant review of customer bargain requests.

WHAT:
    List, inspect and move requests through their status machine. Approval
    also switches bargaining on for the product.

REFERENCES:
    - bargenix/services/bargain_request_service.py (state machine)
    - bargenix/routers/widget.py (public submission endpoint)
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from bargenix import schemas
from bargenix.database import get_db
from bargenix.deps import get_current_user, get_settings
from bargenix.models import BargainRequestStatusEnum, User
from bargenix.services import bargain_request_service as requests_service
from bargenix.services.bargaining_service import BargainingLimitError, BargainingValidationError
from bargenix.services.store_lifecycle_service import get_connected_store

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/bargain-requests",
    tags=["Bargain Requests"],
    responses={
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Request not found"},
        409: {"model": schemas.ErrorResponse, "description": "Invalid status transition"},
    },
)


def _not_found(request_id: uuid.UUID) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Bargain request {request_id} not found")


@router.get("", response_model=List[schemas.BargainRequestOut], summary="List bargain requests")
def list_requests(
    status_filter: Optional[BargainRequestStatusEnum] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Requests for all stores of the merchant, newest first."""
    return requests_service.list_requests(db, current_user, status_filter)


@router.post(
    "/test",
    response_model=schemas.BargainRequestOut,
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False,
)
def create_test_request(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Insert a sample pending request for the current store (development only)."""
    if get_settings().ENVIRONMENT != "development":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    store = get_connected_store(db, current_user)
    if not store:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Connect a Shopify store first")
    return requests_service.create_test_request(db, store)


@router.get("/{request_id}", response_model=schemas.BargainRequestOut)
def get_request(
    request_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return requests_service.get_request(db, current_user, request_id)
    except requests_service.BargainRequestNotFoundError:
        raise _not_found(request_id)


@router.patch("/{request_id}/status", response_model=schemas.BargainRequestOut)
def update_status(
    request_id: uuid.UUID,
    payload: schemas.BargainRequestStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Generic status change. Use `/approve` to also enable bargaining."""
    try:
        return requests_service.update_status(db, current_user, request_id, payload.status, payload.notes)
    except requests_service.BargainRequestNotFoundError:
        raise _not_found(request_id)
    except requests_service.InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/{request_id}/approve", response_model=schemas.BargainRequestOut)
def approve_request(
    request_id: uuid.UUID,
    payload: schemas.BargainRequestApprove,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Approve and enable bargaining for the product in one transaction."""
    try:
        return requests_service.approve(
            db,
            current_user,
            request_id,
            min_price=payload.min_price,
            original_price=payload.original_price,
            behavior=payload.behavior,
            notes=payload.notes,
        )
    except requests_service.BargainRequestNotFoundError:
        raise _not_found(request_id)
    except requests_service.InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except BargainingLimitError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except BargainingValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/{request_id}/reject", response_model=schemas.BargainRequestOut)
def reject_request(
    request_id: uuid.UUID,
    payload: Optional[schemas.BargainRequestReject] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notes = payload.notes if payload else None
    try:
        return requests_service.reject(db, current_user, request_id, notes)
    except requests_service.BargainRequestNotFoundError:
        raise _not_found(request_id)
    except requests_service.InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/{request_id}/product", response_model=schemas.ProductDetailsOut)
async def get_request_product(
    request_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Title, price and image of the requested product from Shopify."""
    try:
        request = requests_service.get_request(db, current_user, request_id)
    except requests_service.BargainRequestNotFoundError:
        raise _not_found(request_id)
    return await requests_service.get_product_details(db, request, get_settings())
