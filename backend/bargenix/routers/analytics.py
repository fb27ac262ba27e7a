"""Widget event tracking and dashboard analytics.

REFERENCES:
    - bargenix/services/analytics_service.py
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from bargenix import schemas
from bargenix.database import get_db
from bargenix.deps import get_current_user, get_settings
from bargenix.models import User
from bargenix.services import analytics_service
from bargenix.services.shopify_oauth_service import normalize_shop_domain
from bargenix.utils.shopify_ids import to_product_gid, to_variant_gid

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analytics"])


def _client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


@router.post("/bargain/track", status_code=status.HTTP_201_CREATED)
def track_event(
    payload: schemas.TrackEventRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """Store a storefront widget event (public)."""
    response.headers["Cache-Control"] = "no-store"
    data = payload.model_dump()
    data["shop"] = normalize_shop_domain(payload.shop)
    data["product_id"] = to_product_gid(payload.product_id)
    data["variant_id"] = to_variant_gid(payload.variant_id)

    event = analytics_service.track_event(
        db,
        data,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        salt=get_settings().ANALYTICS_IP_SALT,
    )
    return {"success": True, "id": str(event.id)}


@router.get("/dashboard/kpi")
def dashboard_kpis(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return analytics_service.get_kpis(db, current_user)


@router.get("/analytics/dashboard")
def analytics_dashboard(
    time_range: str = Query(
        analytics_service.DEFAULT_TIME_RANGE,
        pattern="^(24hours|7days|30days|90days)$",
    ),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return analytics_service.get_dashboard_data(db, current_user, time_range)


@router.get("/analytics/top-products")
def top_products(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return analytics_service.get_top_products(db, current_user)
