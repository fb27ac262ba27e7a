"""Install and remove the bargain widget script tag in a storefront.

WHAT:
    Keeps exactly one widget ScriptTag per shop, both in Shopify and in our
    `shopify_script_tags` table.

WHY:
    The widget JS is served by us; Shopify injects it on storefront pages via
    a ScriptTag. Re-registering (reconnect, new widget version) must not
    leave duplicates behind, since each one would render a second button.

REFERENCES:
    - https://shopify.dev/docs/api/admin-rest/2024-07/resources/scripttag
"""

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from bargenix.deps import Settings
from bargenix.models import ShopifyScriptTag, ShopifyStore
from bargenix.services.shopify_client import ShopifyAPIError, ShopifyClient
from bargenix.services.token_service import get_access_token

logger = logging.getLogger(__name__)

WIDGET_SCRIPT_TYPE = "widget"


def _client(db: Session, store: ShopifyStore, settings: Settings, access_token: Optional[str] = None) -> ShopifyClient:
    access_token = access_token or get_access_token(db, store)
    if not access_token:
        raise ShopifyAPIError(f"No access token for {store.shop_domain}", status_code=401)
    return ShopifyClient(store.shop_domain, access_token, api_version=settings.SHOPIFY_API_VERSION)


def _app_host(settings: Settings) -> str:
    return urlparse(settings.widget_script_url).netloc


def _is_ours(tag: Dict[str, Any], host: str) -> bool:
    return bool(host) and host in (tag.get("src") or "")


async def list_widget_tags(db: Session, store: ShopifyStore, settings: Settings) -> List[Dict[str, Any]]:
    """Script tags in Shopify whose src points at our host."""
    client = _client(db, store, settings)
    host = _app_host(settings)
    return [tag for tag in await client.list_script_tags() if _is_ours(tag, host)]


async def register_widget_script(
    db: Session,
    store: ShopifyStore,
    settings: Settings,
    access_token: Optional[str] = None,
) -> ShopifyScriptTag:
    """Replace any existing widget tag with a fresh, cache-busted one.

    Raises:
        ShopifyAPIError: If the tag cannot be created
    """
    client = _client(db, store, settings, access_token)

    existing = (
        db.query(ShopifyScriptTag)
        .filter(ShopifyScriptTag.shop_domain == store.shop_domain, ShopifyScriptTag.script_type == WIDGET_SCRIPT_TYPE)
        .all()
    )
    for row in existing:
        try:
            await client.delete_script_tag(row.script_tag_id)
        except ShopifyAPIError as e:
            # Already gone in Shopify (404) or token lost; the local row goes anyway
            logger.warning(f"[SCRIPT_TAG] Could not delete tag {row.script_tag_id} on {store.shop_domain}: {e}")
        db.delete(row)

    src = f"{settings.widget_script_url}?v={int(time.time())}"
    created = await client.create_script_tag(src)

    tag = ShopifyScriptTag(
        shop_domain=store.shop_domain,
        script_tag_id=str(created.get("id")),
        script_type=WIDGET_SCRIPT_TYPE,
        src=created.get("src", src),
    )
    db.add(tag)
    db.commit()

    logger.info(f"[SCRIPT_TAG] Registered widget script {tag.script_tag_id} on {store.shop_domain}")
    return tag


async def remove_widget_script(db: Session, store: ShopifyStore, settings: Settings) -> int:
    """Delete our tags from Shopify and locally. Returns the number removed in Shopify."""
    client = _client(db, store, settings)
    tags = await list_widget_tags(db, store, settings)
    for tag in tags:
        await client.delete_script_tag(str(tag["id"]))

    (
        db.query(ShopifyScriptTag)
        .filter(ShopifyScriptTag.shop_domain == store.shop_domain, ShopifyScriptTag.script_type == WIDGET_SCRIPT_TYPE)
        .delete(synchronize_session=False)
    )
    db.commit()

    logger.info(f"[SCRIPT_TAG] Removed {len(tags)} widget script tag(s) from {store.shop_domain}")
    return len(tags)
