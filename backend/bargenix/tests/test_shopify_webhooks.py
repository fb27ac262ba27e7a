"""Shopify webhook verification and topic dispatch."""

import json

from bargenix.models import ShopifyAuthToken, ShopifyUninstallEvent, StoreStatusEnum
from bargenix.routers.shopify_webhooks import compute_webhook_hmac, verify_shopify_webhook
from bargenix.services import store_lifecycle_service as lifecycle

from conftest import SHOPIFY_SECRET


def _post_webhook(client, topic, payload, shop="teststore.myshopify.com", signature=None):
    body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload
    headers = {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "X-Shopify-Hmac-SHA256": signature or compute_webhook_hmac(body, SHOPIFY_SECRET),
    }
    return client.post("/webhooks/shopify", content=body, headers=headers)


def test_verify_webhook_signature():
    body = b'{"id": 1}'
    signature = compute_webhook_hmac(body, SHOPIFY_SECRET)

    assert verify_shopify_webhook(body, signature, SHOPIFY_SECRET)
    assert not verify_shopify_webhook(b'{"id": 2}', signature, SHOPIFY_SECRET)
    assert not verify_shopify_webhook(body, None, SHOPIFY_SECRET)
    assert not verify_shopify_webhook(body, signature, None)


def test_app_uninstalled_marks_store_inactive(client, test_db_session, test_store):
    response = _post_webhook(client, "app/uninstalled", {"id": 123, "domain": "teststore.myshopify.com"})

    assert response.status_code == 200
    test_db_session.refresh(test_store)
    assert test_store.status == StoreStatusEnum.inactive
    assert test_db_session.query(ShopifyAuthToken).count() == 0
    event = test_db_session.query(ShopifyUninstallEvent).one()
    assert event.reason == lifecycle.REASON_APP_UNINSTALLED
    assert event.details["id"] == 123


def test_repeated_uninstall_webhook_records_one_event(client, test_db_session, test_store):
    _post_webhook(client, "app/uninstalled", {"id": 123})
    _post_webhook(client, "app/uninstalled", {"id": 123})

    assert test_db_session.query(ShopifyUninstallEvent).count() == 1


def test_bad_signature_is_rejected(client, test_db_session, test_store):
    response = _post_webhook(client, "app/uninstalled", {"id": 1}, signature="bm90LXRoZS1zaWduYXR1cmU=")

    assert response.status_code == 401
    test_db_session.refresh(test_store)
    assert test_store.status == StoreStatusEnum.active


def test_missing_headers_are_rejected(client):
    response = client.post("/webhooks/shopify", content=b"{}", headers={"X-Shopify-Topic": "app/uninstalled"})
    assert response.status_code == 401


def test_invalid_json_is_rejected(client, test_store):
    response = _post_webhook(client, "app/uninstalled", b"not json")
    assert response.status_code == 400


def test_unknown_shop_and_topic_are_acknowledged(client):
    assert _post_webhook(client, "app/uninstalled", {"id": 1}, shop="ghost.myshopify.com").status_code == 200
    assert _post_webhook(client, "orders/create", {"id": 1}).status_code == 200


def test_compliance_topics(client, test_db_session, test_store):
    customer = {"customer": {"id": 42, "email": "c@example.com"}}
    assert _post_webhook(client, "customers/data_request", customer).status_code == 200
    assert _post_webhook(client, "customers/redact", customer).status_code == 200

    response = _post_webhook(client, "shop/redact", {"shop_id": 1})
    assert response.status_code == 200
    event = test_db_session.query(ShopifyUninstallEvent).one()
    assert event.reason == lifecycle.REASON_SHOP_REDACT
