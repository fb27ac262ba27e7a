"""Token service for encrypting and persisting Shopify access tokens.

WHAT:
    Wraps the encryption helpers in `bargenix.security` and encapsulates how
    tokens are attached to (and removed from) a ShopifyStore.

WHY:
    - Keeps encryption logic out of routers.
    - "Has a usable token" is the signal the store lifecycle relies on, so
      expiry handling lives in one place.

REFERENCES:
    - bargenix/security.py (encrypt_secret / decrypt_secret)
    - bargenix/services/store_lifecycle_service.py (consumer)
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from bargenix.models import ShopifyAuthToken, ShopifyStore
from bargenix.security import encrypt_secret, decrypt_secret

logger = logging.getLogger(__name__)


def store_shop_token(
    db: Session,
    store: ShopifyStore,
    *,
    access_token: str,
    scope: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> ShopifyAuthToken:
    """Encrypt and persist a fresh token for the store, replacing older ones.

    Does not commit; the OAuth callback runs this inside its transaction.
    """
    delete_store_tokens(db, store)

    token = ShopifyAuthToken(
        store_id=store.id,
        access_token_enc=encrypt_secret(access_token, context=f"{store.shop_domain}:access"),
        scope=scope,
        expires_at=expires_at,
    )
    db.add(token)
    db.flush()
    logger.info("[TOKEN_SERVICE] Stored encrypted token for %s", store.shop_domain)
    return token


def delete_store_tokens(db: Session, store: ShopifyStore) -> int:
    """Remove every token of the store. Returns the number deleted."""
    deleted = (
        db.query(ShopifyAuthToken)
        .filter(ShopifyAuthToken.store_id == store.id)
        .delete(synchronize_session=False)
    )
    if deleted:
        db.expire(store, ["tokens"])
        logger.info("[TOKEN_SERVICE] Deleted %d token(s) for %s", deleted, store.shop_domain)
    return deleted


def get_active_token(db: Session, store: ShopifyStore) -> Optional[ShopifyAuthToken]:
    """Newest non-expired token row for the store, if any."""
    tokens = (
        db.query(ShopifyAuthToken)
        .filter(ShopifyAuthToken.store_id == store.id)
        .order_by(ShopifyAuthToken.created_at.desc())
        .all()
    )
    for token in tokens:
        if not token.is_expired:
            return token
    return None


def get_access_token(db: Session, store: ShopifyStore) -> Optional[str]:
    """Decrypted access token for API calls, or None if missing/expired/unreadable."""
    token = get_active_token(db, store)
    if not token:
        logger.warning("[TOKEN_SERVICE] No usable token for %s", store.shop_domain)
        return None

    try:
        return decrypt_secret(token.access_token_enc, context=f"{store.shop_domain}:access")
    except ValueError as e:
        logger.error("[TOKEN_SERVICE] Failed to decrypt token for %s: %s", store.shop_domain, e)
        return None
