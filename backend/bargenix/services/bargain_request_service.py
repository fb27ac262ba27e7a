"""Bargain request workflow: submission, review and approval cascade.

WHAT:
    Customers submit requests through the widget; merchants review them in
    the dashboard. Approval enables bargaining for the product in the same
    transaction.

STATE MACHINE:
    pending  -> approved | rejected | completed
    approved -> completed | rejected
    rejected, completed: terminal
    Setting the current status again is a no-op apart from notes.

REFERENCES:
    - bargenix/routers/bargain_requests.py (merchant endpoints)
    - bargenix/routers/widget.py (public submission)
    - bargenix/services/bargaining_service.py (upsert used by approve)
"""

import logging
import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from bargenix.deps import Settings
from bargenix.models import (
    BargainRequest,
    BargainRequestStatusEnum,
    ShopifyStore,
    StoreStatusEnum,
    User,
)
from bargenix.services import bargaining_service
from bargenix.services.shopify_client import ShopifyAPIError, ShopifyClient
from bargenix.services.store_lifecycle_service import get_store_by_domain, get_user_store_domains
from bargenix.services.token_service import get_access_token
from bargenix.utils.shopify_ids import to_product_gid, to_variant_gid

logger = logging.getLogger(__name__)

S = BargainRequestStatusEnum

ALLOWED_TRANSITIONS = {
    S.pending: {S.approved, S.rejected, S.completed},
    S.approved: {S.completed, S.rejected},
    S.rejected: set(),
    S.completed: set(),
}

TEST_REQUEST = {
    "product_id": "gid://shopify/Product/123456789",
    "variant_id": "gid://shopify/ProductVariant/987654321",
    "customer_email": "test@example.com",
    "product_title": "Test Product",
    "product_price": Decimal("99.99"),
}

_WHITESPACE = re.compile(r"\s+")


class BargainRequestNotFoundError(Exception):
    pass


class InvalidTransitionError(Exception):
    def __init__(self, current: BargainRequestStatusEnum, target: BargainRequestStatusEnum):
        super().__init__(f"Cannot change request status from {current.value} to {target.value}")
        self.current = current
        self.target = target


class UnknownShopError(Exception):
    """Submission for a shop that is not connected (or no longer active)."""


def can_transition(current: BargainRequestStatusEnum, target: BargainRequestStatusEnum) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


# =============================================================================
# READS (scoped to the merchant's stores)
# =============================================================================

def owned_requests(db: Session, user: User) -> Query:
    """Requests owned by the user.

    Ownership is the store owner recorded at submit time. Rows without an
    owner fall back to the shop domain, limited to stores the user holds now,
    so a domain reconnected by another merchant never exposes older requests.
    """
    ownership = BargainRequest.user_id == user.id
    domains = get_user_store_domains(db, user)
    if domains:
        ownership = or_(
            ownership,
            and_(BargainRequest.user_id.is_(None), BargainRequest.shop_domain.in_(domains)),
        )
    return db.query(BargainRequest).filter(ownership)


def list_requests(
    db: Session,
    user: User,
    status: Optional[BargainRequestStatusEnum] = None,
) -> List[BargainRequest]:
    query = owned_requests(db, user)
    if status is not None:
        query = query.filter(BargainRequest.status == status)
    return query.order_by(BargainRequest.created_at.desc()).all()


def get_request(db: Session, user: User, request_id: uuid.UUID) -> BargainRequest:
    request = owned_requests(db, user).filter(BargainRequest.id == request_id).first()
    if not request:
        raise BargainRequestNotFoundError(f"Bargain request {request_id} not found")
    return request


# =============================================================================
# TRANSITIONS
# =============================================================================

def _apply_status(request: BargainRequest, status: BargainRequestStatusEnum, notes: Optional[str]) -> None:
    if not can_transition(request.status, status):
        raise InvalidTransitionError(request.status, status)
    request.status = status
    if notes is not None:
        request.notes = notes
    request.updated_at = datetime.utcnow()


def update_status(
    db: Session,
    user: User,
    request_id: uuid.UUID,
    status: BargainRequestStatusEnum,
    notes: Optional[str] = None,
) -> BargainRequest:
    """Move a request to `status`; `notes=None` keeps the existing notes."""
    request = get_request(db, user, request_id)
    previous = request.status
    _apply_status(request, status, notes)
    db.commit()
    logger.info(f"[BARGAIN_REQUEST] {request.id}: {previous.value} -> {status.value}")
    return request


def approve(
    db: Session,
    user: User,
    request_id: uuid.UUID,
    *,
    min_price,
    original_price=None,
    behavior: str = "normal",
    notes: Optional[str] = None,
) -> BargainRequest:
    """Approve and enable bargaining for the request's product atomically.

    Raises:
        InvalidTransitionError: Request is rejected or completed
        BargainingLimitError: Product not yet enabled and the plan is full
    """
    request = get_request(db, user, request_id)
    original = original_price if original_price is not None else request.product_price
    product_gid = to_product_gid(request.product_id)

    if not can_transition(request.status, S.approved):
        raise InvalidTransitionError(request.status, S.approved)
    bargaining_service.check_can_enable(db, user, [product_gid])

    try:
        _apply_status(request, S.approved, notes)
        bargaining_service.upsert_setting(
            db,
            user,
            product_id=product_gid,
            variant_id=request.variant_id,
            enabled=True,
            min_price=min_price,
            original_price=original,
            behavior=behavior,
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"[BARGAIN_REQUEST] Approval failed for {request_id}")
        raise

    logger.info(f"[BARGAIN_REQUEST] Approved {request.id}; bargaining enabled for {product_gid}")
    return request


def reject(db: Session, user: User, request_id: uuid.UUID, notes: Optional[str] = None) -> BargainRequest:
    return update_status(db, user, request_id, S.rejected, notes)


# =============================================================================
# CREATION
# =============================================================================

def normalize_title(title: Optional[str]) -> Optional[str]:
    if not title:
        return title
    return _WHITESPACE.sub(" ", title).strip()


def submit_request(db: Session, payload: Dict[str, Any]) -> BargainRequest:
    """Create a pending request from the storefront widget.

    Raises:
        UnknownShopError: If the shop is not connected or inactive
    """
    shop_domain = payload["shop_domain"]
    store = get_store_by_domain(db, shop_domain)
    if not store or store.status != StoreStatusEnum.active:
        raise UnknownShopError(shop_domain)

    request = BargainRequest(
        user_id=store.user_id,
        shop_domain=shop_domain,
        product_id=to_product_gid(payload["product_id"]),
        variant_id=to_variant_gid(payload.get("variant_id")),
        product_title=normalize_title(payload.get("product_title")),
        product_price=payload.get("product_price"),
        requested_price=payload.get("requested_price"),
        customer_email=payload.get("customer_email"),
        customer_name=payload.get("customer_name"),
        status=S.pending,
    )
    db.add(request)
    db.commit()
    db.refresh(request)

    logger.info(f"[BARGAIN_REQUEST] New request {request.id} for {request.product_id} on {shop_domain}")
    return request


def create_test_request(db: Session, store: ShopifyStore) -> BargainRequest:
    """Insert the fixed sample request used while developing the dashboard."""
    request = BargainRequest(
        user_id=store.user_id,
        shop_domain=store.shop_domain,
        status=S.pending,
        **TEST_REQUEST,
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    return request


# =============================================================================
# PRODUCT DETAILS
# =============================================================================

async def get_product_details(db: Session, request: BargainRequest, settings: Settings) -> Dict[str, Any]:
    """Title, price and image from Shopify, with a placeholder when unavailable."""
    placeholder = {
        "id": request.product_id,
        "title": request.product_title or "Product details not available",
        "price": float(request.product_price) if request.product_price is not None else None,
        "image": None,
        "available": False,
    }

    store = get_store_by_domain(db, request.shop_domain)
    access_token = get_access_token(db, store) if store else None
    if not access_token:
        return placeholder

    client = ShopifyClient(store.shop_domain, access_token, api_version=settings.SHOPIFY_API_VERSION)
    try:
        product = await client.get_product(request.product_id)
    except ShopifyAPIError as e:
        logger.warning(f"[BARGAIN_REQUEST] Product lookup failed for {request.product_id}: {e}")
        return placeholder

    if not product:
        return placeholder

    return {
        "id": product["id"],
        "title": product["title"],
        "price": float(product["price"]) if product.get("price") is not None else placeholder["price"],
        "image": product.get("image"),
        "available": True,
    }
