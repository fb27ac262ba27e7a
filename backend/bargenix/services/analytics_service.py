"""Storefront event tracking and dashboard aggregates.

WHAT:
    - Persist widget events (`bargain_events`) with a hashed IP
    - KPI cards for the dashboard home
    - Request analytics by time range and top products

WHY:
    Aggregates are computed in Python over bounded windows (at most 90 days of
    one merchant's requests), which keeps the queries portable between
    PostgreSQL and the SQLite test database.
"""

import hashlib
import logging
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from bargenix.models import (
    BargainEvent,
    BargainRequest,
    BargainRequestStatusEnum,
    ProductBargainingSettings,
    User,
)
from bargenix.services.bargain_request_service import owned_requests
from bargenix.services.store_lifecycle_service import get_store_by_domain, get_user_store_domains

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "24hours": timedelta(days=1),
    "7days": timedelta(days=7),
    "30days": timedelta(days=30),
    "90days": timedelta(days=90),
}
DEFAULT_TIME_RANGE = "7days"


# =============================================================================
# TRACKING
# =============================================================================

def hash_ip(ip_address: Optional[str], salt: str) -> Optional[str]:
    if not ip_address:
        return None
    return hashlib.sha256(f"{ip_address}{salt}".encode("utf-8")).hexdigest()


def detect_device_type(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()
    if any(token in ua for token in ("mobile", "android", "iphone", "ipad")):
        return "mobile"
    if "tablet" in ua:
        return "tablet"
    return "desktop"


def track_event(
    db: Session,
    payload: Dict[str, Any],
    *,
    ip_address: Optional[str],
    user_agent: Optional[str],
    salt: str,
) -> BargainEvent:
    store = get_store_by_domain(db, payload["shop"])
    event = BargainEvent(
        user_id=store.user_id if store else None,
        shop_domain=payload["shop"],
        product_id=payload["product_id"],
        variant_id=payload.get("variant_id"),
        event_type=payload["event_type"],
        session_id=payload.get("session_id"),
        user_agent=user_agent,
        referrer=payload.get("referrer"),
        ip_hash=hash_ip(ip_address, salt),
        device_type=detect_device_type(user_agent),
        product_title=payload.get("product_title"),
        product_price=payload.get("product_price"),
        currency=payload.get("currency"),
        event_data=payload.get("event_data"),
    )
    db.add(event)
    db.commit()
    logger.debug(f"[ANALYTICS] {event.event_type} tracked for {event.shop_domain}")
    return event


# =============================================================================
# DASHBOARD
# =============================================================================

def _requests_since(db: Session, user: User, since: datetime) -> List[BargainRequest]:
    return (
        owned_requests(db, user)
        .filter(BargainRequest.created_at >= since)
        .order_by(BargainRequest.created_at.desc())
        .all()
    )


def _owned_events(db: Session, user: User):
    """Events recorded while the user owned the store, plus unowned events of stores held now."""
    ownership = BargainEvent.user_id == user.id
    domains = get_user_store_domains(db, user)
    if domains:
        ownership = or_(
            ownership,
            and_(BargainEvent.user_id.is_(None), BargainEvent.shop_domain.in_(domains)),
        )
    return ownership


def get_kpis(db: Session, user: User) -> Dict[str, Any]:
    now = datetime.utcnow()

    bargaining_products = (
        db.query(func.count(func.distinct(ProductBargainingSettings.product_id)))
        .filter(
            ProductBargainingSettings.user_id == user.id,
            ProductBargainingSettings.bargaining_enabled.is_(True),
        )
        .scalar()
        or 0
    )
    total_products = (
        db.query(func.count(func.distinct(ProductBargainingSettings.product_id)))
        .filter(ProductBargainingSettings.user_id == user.id)
        .scalar()
        or 0
    )

    active_sessions = (
        db.query(func.count(func.distinct(BargainEvent.session_id)))
        .filter(
            _owned_events(db, user),
            BargainEvent.session_id.isnot(None),
            BargainEvent.created_at >= now - timedelta(days=7),
        )
        .scalar()
        or 0
    )
    pending_requests = (
        owned_requests(db, user)
        .filter(BargainRequest.status == BargainRequestStatusEnum.pending)
        .count()
    )

    recent = _requests_since(db, user, now - timedelta(days=30))
    approved = [r for r in recent if r.status == BargainRequestStatusEnum.approved]
    conversion_rate = round(len(approved) / len(recent) * 100, 1) if recent else 0.0

    discounts = [
        (r.product_price - r.requested_price) / r.product_price * 100
        for r in approved
        if r.product_price and r.requested_price is not None and r.product_price > 0
    ]
    average_discount = round(float(sum(discounts, Decimal(0)) / len(discounts)), 1) if discounts else 0.0

    return {
        "bargainingProducts": bargaining_products,
        "totalProducts": total_products,
        "activeSessions": active_sessions,
        "conversionRate": conversion_rate,
        "pendingRequests": pending_requests,
        "averageDiscount": average_discount,
    }


def get_dashboard_data(db: Session, user: User, time_range: str = DEFAULT_TIME_RANGE) -> Dict[str, Any]:
    """Summary, per-day counts, recent and top requested products for a time range."""
    now = datetime.utcnow()
    window = TIME_RANGES.get(time_range, TIME_RANGES[DEFAULT_TIME_RANGE])
    since = now - window
    requests = _requests_since(db, user, since)

    by_day: "OrderedDict[str, int]" = OrderedDict()
    day = since.date()
    while day <= now.date():
        by_day[day.isoformat()] = 0
        day += timedelta(days=1)
    for r in requests:
        key = r.created_at.date().isoformat()
        if key in by_day:
            by_day[key] += 1

    recent = owned_requests(db, user).order_by(BargainRequest.created_at.desc()).limit(10).all()

    return {
        "summary": {
            "totalRequests": len(requests),
            "approvedRequests": sum(1 for r in requests if r.status == BargainRequestStatusEnum.approved),
            "pendingRequests": sum(1 for r in requests if r.status == BargainRequestStatusEnum.pending),
        },
        "requestsByDay": [{"day": k, "count": v} for k, v in by_day.items()],
        "recentRequests": [
            {
                "productTitle": r.product_title,
                "productId": r.product_id,
                "customerEmail": r.customer_email,
                "status": r.status.value,
                "createdAt": r.created_at.isoformat() if r.created_at else None,
            }
            for r in recent
        ],
        "topProducts": get_top_products(db, user),
    }


def get_top_products(db: Session, user: User, limit: int = 5) -> List[Dict[str, Any]]:
    """Most requested products over the last 30 days with approval counts."""
    requests = _requests_since(db, user, datetime.utcnow() - timedelta(days=30))
    titled = [r for r in requests if r.product_title]

    counts = Counter((r.product_id, r.product_title) for r in titled)
    approvals = Counter(
        (r.product_id, r.product_title) for r in titled if r.status == BargainRequestStatusEnum.approved
    )

    return [
        {
            "productId": product_id,
            "title": title,
            "requestCount": count,
            "approvedCount": approvals.get((product_id, title), 0),
        }
        for (product_id, title), count in counts.most_common(limit)
    ]
