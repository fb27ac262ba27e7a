"""Widget event tracking and dashboard aggregates."""

from datetime import datetime, timedelta
from decimal import Decimal

from bargenix.deps import get_settings
from bargenix.models import BargainEvent, BargainRequest, BargainRequestStatusEnum as S
from bargenix.services import analytics_service

from conftest import login, make_store


def _request(db, store, status=S.pending, title="Leather Bag", product_id="gid://shopify/Product/1",
             price="100", requested="80", age=timedelta(0)):
    row = BargainRequest(
        user_id=store.user_id,
        shop_domain=store.shop_domain,
        product_id=product_id,
        product_title=title,
        product_price=Decimal(price),
        requested_price=Decimal(requested),
        status=status,
        created_at=datetime.utcnow() - age,
    )
    db.add(row)
    db.commit()
    return row


def test_hash_ip_is_salted_and_stable():
    first = analytics_service.hash_ip("203.0.113.9", "salt-a")

    assert first == analytics_service.hash_ip("203.0.113.9", "salt-a")
    assert first != analytics_service.hash_ip("203.0.113.9", "salt-b")
    assert len(first) == 64
    assert analytics_service.hash_ip(None, "salt-a") is None


def test_detect_device_type():
    assert analytics_service.detect_device_type("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)") == "mobile"
    assert analytics_service.detect_device_type("Mozilla/5.0 (Linux; Android 14) Mobile") == "mobile"
    assert analytics_service.detect_device_type("Mozilla/5.0 (Tablet; rv:120.0)") == "tablet"
    assert analytics_service.detect_device_type("Mozilla/5.0 (X11; Linux x86_64)") == "desktop"
    assert analytics_service.detect_device_type(None) == "unknown"


def test_track_event_endpoint(client, test_db_session):
    response = client.post(
        "/bargain/track",
        json={
            "shop": "teststore",
            "productId": "42",
            "variantId": "7",
            "eventType": "widget_opened",
            "sessionId": "sess-1",
            "eventData": {"step": 1},
        },
        headers={"User-Agent": "Mozilla/5.0 (iPhone)", "X-Forwarded-For": "198.51.100.4, 10.0.0.1"},
    )

    assert response.status_code == 201
    event = test_db_session.query(BargainEvent).one()
    assert str(event.id) == response.json()["id"]
    assert event.shop_domain == "teststore.myshopify.com"
    assert event.product_id == "gid://shopify/Product/42"
    assert event.variant_id == "gid://shopify/ProductVariant/7"
    assert event.device_type == "mobile"
    assert event.event_data == {"step": 1}
    assert event.ip_hash != "198.51.100.4"
    assert event.ip_hash == analytics_service.hash_ip("198.51.100.4", get_settings().ANALYTICS_IP_SALT)


def test_track_event_requires_fields(client):
    assert client.post("/bargain/track", json={"shop": "teststore"}).status_code == 422


def test_kpis(auth_client, test_db_session, test_store):
    _request(test_db_session, test_store, status=S.approved)
    _request(test_db_session, test_store, status=S.pending)
    _request(test_db_session, test_store, status=S.approved, age=timedelta(days=45))
    test_db_session.add(BargainEvent(
        shop_domain=test_store.shop_domain, product_id="p", event_type="view", session_id="s1",
    ))
    test_db_session.commit()

    body = auth_client.get("/dashboard/kpi").json()

    assert body["pendingRequests"] == 1
    assert body["activeSessions"] == 1
    assert body["conversionRate"] == 50.0
    assert body["averageDiscount"] == 20.0
    assert body["bargainingProducts"] == 0


def test_kpis_without_store(auth_client):
    body = auth_client.get("/dashboard/kpi").json()
    assert body["pendingRequests"] == 0
    assert body["conversionRate"] == 0.0


def test_dashboard_time_range(auth_client, test_db_session, test_store):
    _request(test_db_session, test_store)
    _request(test_db_session, test_store, age=timedelta(days=10))

    week = auth_client.get("/analytics/dashboard", params={"time_range": "7days"}).json()
    month = auth_client.get("/analytics/dashboard", params={"time_range": "30days"}).json()

    assert week["summary"]["totalRequests"] == 1
    assert month["summary"]["totalRequests"] == 2
    assert sum(d["count"] for d in week["requestsByDay"]) == 1
    assert len(week["recentRequests"]) == 2


def test_dashboard_rejects_unknown_range(auth_client):
    assert auth_client.get("/analytics/dashboard", params={"time_range": "1year"}).status_code == 422


def test_top_products_scoped_to_merchant(auth_client, test_db_session, test_store, other_user):
    _request(test_db_session, test_store, title="Bag", product_id="gid://shopify/Product/1", status=S.approved)
    _request(test_db_session, test_store, title="Bag", product_id="gid://shopify/Product/1")
    _request(test_db_session, test_store, title="Belt", product_id="gid://shopify/Product/2")
    foreign = make_store(test_db_session, other_user, "foreign.myshopify.com")
    for _ in range(3):
        _request(test_db_session, foreign, title="Hat", product_id="gid://shopify/Product/9")

    top = auth_client.get("/analytics/top-products").json()

    assert top[0] == {
        "productId": "gid://shopify/Product/1",
        "title": "Bag",
        "requestCount": 2,
        "approvedCount": 1,
    }
    assert {p["title"] for p in top} == {"Bag", "Belt"}


def test_track_event_records_store_owner(client, test_db_session, test_store, test_user):
    client.post("/bargain/track", json={"shop": "teststore", "productId": "42", "eventType": "widget_opened"})

    assert test_db_session.query(BargainEvent).one().user_id == test_user.id


def test_reconnected_domain_hides_previous_owner_analytics(client, test_db_session, test_store, other_user):
    from bargenix.services.store_lifecycle_service import delete_store

    _request(test_db_session, test_store, status=S.approved)
    _request(test_db_session, test_store)
    test_db_session.add(BargainEvent(
        user_id=test_store.user_id, shop_domain=test_store.shop_domain, product_id="p",
        event_type="view", session_id="s1",
    ))
    test_db_session.commit()
    delete_store(test_db_session, test_store)
    make_store(test_db_session, other_user, "teststore.myshopify.com")
    login(client, other_user)

    kpis = client.get("/dashboard/kpi").json()
    dashboard = client.get("/analytics/dashboard", params={"time_range": "30days"}).json()

    assert kpis["pendingRequests"] == 0
    assert kpis["activeSessions"] == 0
    assert kpis["conversionRate"] == 0.0
    assert dashboard["summary"]["totalRequests"] == 0
    assert dashboard["recentRequests"] == []
    assert client.get("/analytics/top-products").json() == []
