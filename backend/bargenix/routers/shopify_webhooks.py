"""Shopify webhooks for app lifecycle and privacy compliance.

WHAT:
    A single endpoint that verifies the HMAC signature and dispatches on the
    `X-Shopify-Topic` header.

WHY:
    - app/uninstalled is the authoritative signal that our token is gone
    - Compliance webhooks are mandatory for App Store listing

WEBHOOKS:
    1. app/uninstalled - Store inactive, memberships cancelled, tokens dropped
    2. customers/data_request - Acknowledge (we only hold request emails)
    3. customers/redact - Acknowledge
    4. shop/redact - Record the redact event for the store

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https#step-5-verify-the-webhook
    - https://shopify.dev/docs/apps/build/compliance/privacy-law-compliance
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from bargenix.database import get_db
from bargenix.deps import get_settings
from bargenix.services import store_lifecycle_service as lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Shopify Webhooks"])


# =============================================================================
# HMAC VERIFICATION
# =============================================================================

def compute_webhook_hmac(request_body: bytes, secret: str) -> str:
    """base64(HMAC-SHA256(secret, raw body)), the format of X-Shopify-Hmac-SHA256."""
    digest = hmac.new(secret.encode("utf-8"), request_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_shopify_webhook(request_body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """Validate the webhook signature with a constant-time comparison."""
    if not secret:
        logger.error("[SHOPIFY_WEBHOOK] SHOPIFY_API_SECRET not configured")
        return False

    if not hmac_header:
        logger.warning("[SHOPIFY_WEBHOOK] Missing HMAC header")
        return False

    is_valid = hmac.compare_digest(compute_webhook_hmac(request_body, secret), hmac_header)
    if not is_valid:
        logger.warning("[SHOPIFY_WEBHOOK] Invalid HMAC signature")
    return is_valid


# =============================================================================
# TOPIC HANDLERS
# =============================================================================

def _handle_app_uninstalled(db: Session, shop_domain: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    store = lifecycle.get_store_by_domain(db, shop_domain)
    if not store:
        logger.info(f"[SHOPIFY_WEBHOOK] app/uninstalled for unknown shop {shop_domain}")
        return {"success": True, "message": "Shop not found"}

    lifecycle.handle_app_uninstalled(db, store, payload)
    return {"success": True, "message": "Store marked as uninstalled"}


def _handle_customers_data_request(db: Session, shop_domain: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    customer = payload.get("customer") or {}
    logger.info(
        f"[SHOPIFY_WEBHOOK] customers/data_request for shop={shop_domain} customer_id={customer.get('id')}"
    )
    return {"success": True, "message": "Data request acknowledged"}


def _handle_customers_redact(db: Session, shop_domain: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    customer = payload.get("customer") or {}
    logger.info(f"[SHOPIFY_WEBHOOK] customers/redact for shop={shop_domain} customer_id={customer.get('id')}")
    return {"success": True, "message": "Customer redact acknowledged"}


def _handle_shop_redact(db: Session, shop_domain: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    store = lifecycle.get_store_by_domain(db, shop_domain)
    if store:
        lifecycle.record_uninstall_event(db, store, lifecycle.REASON_SHOP_REDACT, payload)
        db.commit()
    logger.info(f"[SHOPIFY_WEBHOOK] shop/redact for shop={shop_domain} (known={store is not None})")
    return {"success": True, "message": "Shop redact acknowledged"}


TOPIC_HANDLERS: Dict[str, Callable[[Session, str, Dict[str, Any]], Dict[str, Any]]] = {
    "app/uninstalled": _handle_app_uninstalled,
    "customers/data_request": _handle_customers_data_request,
    "customers/redact": _handle_customers_redact,
    "shop/redact": _handle_shop_redact,
}


# =============================================================================
# ENDPOINT
# =============================================================================

@router.post("/shopify")
async def shopify_webhook(request: Request, db: Session = Depends(get_db)):
    """Verify and dispatch a Shopify webhook.

    Unknown topics are acknowledged with 200 so Shopify does not retry them.
    """
    body = await request.body()
    hmac_header = request.headers.get("X-Shopify-Hmac-SHA256")
    shop_domain = request.headers.get("X-Shopify-Shop-Domain")
    topic = request.headers.get("X-Shopify-Topic")

    if not hmac_header or not shop_domain or not topic:
        logger.warning("[SHOPIFY_WEBHOOK] Missing required Shopify headers")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Shopify webhook headers")

    if not verify_shopify_webhook(body, hmac_header, get_settings().SHOPIFY_API_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = json.loads(body) if body else {}
    except ValueError as e:
        logger.error(f"[SHOPIFY_WEBHOOK] Failed to parse JSON: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    logger.info(f"[SHOPIFY_WEBHOOK] Received {topic} for {shop_domain}")

    handler = TOPIC_HANDLERS.get(topic)
    if handler is None:
        logger.info(f"[SHOPIFY_WEBHOOK] Unhandled topic {topic}, acknowledging")
        return {"success": True, "message": f"Topic {topic} acknowledged"}

    return handler(db, shop_domain, payload)
