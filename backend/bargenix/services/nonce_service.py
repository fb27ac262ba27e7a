"""Single-use nonces for Shopify redirects (OAuth start and uninstall round trip)."""

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from bargenix.models import NoncePurposeEnum, ShopifyNonceToken

logger = logging.getLogger(__name__)

OAUTH_NONCE_TTL = timedelta(minutes=5)
UNINSTALL_NONCE_TTL = timedelta(minutes=15)


def generate_nonce() -> str:
    """16 random bytes, hex encoded."""
    return secrets.token_hex(16)


def create_nonce(db: Session, purpose: NoncePurposeEnum, ttl: timedelta) -> str:
    """Persist a new nonce and commit. Expired nonces are pruned on the way."""
    now = datetime.utcnow()
    db.query(ShopifyNonceToken).filter(ShopifyNonceToken.expires_at < now).delete(synchronize_session=False)

    nonce = generate_nonce()
    db.add(ShopifyNonceToken(nonce=nonce, purpose=purpose, expires_at=now + ttl))
    db.commit()
    return nonce


def consume_nonce(db: Session, nonce: str, purpose: NoncePurposeEnum) -> bool:
    """Delete the nonce and report whether it was valid.

    The row is removed even when it has expired or has the wrong purpose, so a
    nonce can never be presented twice. Does not commit.
    """
    if not nonce:
        return False

    row = db.query(ShopifyNonceToken).filter(ShopifyNonceToken.nonce == nonce).first()
    if not row:
        logger.warning("[NONCE] Unknown nonce presented for %s", purpose.value)
        return False

    db.delete(row)
    db.flush()

    if row.purpose != purpose:
        logger.warning("[NONCE] Nonce purpose mismatch: expected %s, got %s", purpose.value, row.purpose.value)
        return False
    if row.expires_at <= datetime.utcnow():
        logger.warning("[NONCE] Expired nonce presented for %s", purpose.value)
        return False
    return True
