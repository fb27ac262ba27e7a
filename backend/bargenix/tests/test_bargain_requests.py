"""Bargain request review workflow and public submission."""

import uuid
from decimal import Decimal

import pytest

from bargenix.models import (
    BargainRequest,
    BargainRequestStatusEnum as S,
    ProductBargainingSettings,
    StoreStatusEnum,
)
from bargenix.services import bargain_request_service as service

from conftest import login, make_store


def _make_request(db, store, **overrides):
    values = dict(
        user_id=store.user_id,
        shop_domain=store.shop_domain,
        product_id="gid://shopify/Product/111",
        variant_id="gid://shopify/ProductVariant/222",
        product_title="Leather Bag",
        product_price=Decimal("100.00"),
        requested_price=Decimal("80.00"),
        customer_email="buyer@example.com",
        status=S.pending,
    )
    values.update(overrides)
    request = BargainRequest(**values)
    db.add(request)
    db.commit()
    db.refresh(request)
    return request


def _enable(db, user, product_number):
    db.add(
        ProductBargainingSettings(
            user_id=user.id,
            product_id=f"gid://shopify/Product/{product_number}",
            variant_id="default",
            bargaining_enabled=True,
        )
    )
    db.commit()


# =============================================================================
# State machine
# =============================================================================

@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (S.pending, S.approved, True),
        (S.pending, S.rejected, True),
        (S.pending, S.completed, True),
        (S.approved, S.completed, True),
        (S.approved, S.rejected, True),
        (S.approved, S.pending, False),
        (S.rejected, S.approved, False),
        (S.completed, S.pending, False),
        (S.rejected, S.rejected, True),
    ],
)
def test_can_transition(current, target, allowed):
    assert service.can_transition(current, target) is allowed


def test_normalize_title():
    assert service.normalize_title("  Leather \n  Bag\t ") == "Leather Bag"
    assert service.normalize_title(None) is None


# =============================================================================
# Merchant endpoints
# =============================================================================

def test_list_is_scoped_and_filterable(auth_client, test_db_session, test_store, other_user):
    mine = _make_request(test_db_session, test_store)
    _make_request(test_db_session, test_store, status=S.rejected)
    foreign_store = make_store(test_db_session, other_user, "foreign.myshopify.com")
    _make_request(test_db_session, foreign_store)

    all_requests = auth_client.get("/bargain-requests").json()
    assert len(all_requests) == 2
    assert {r["shop_domain"] for r in all_requests} == {"teststore.myshopify.com"}

    pending = auth_client.get("/bargain-requests", params={"status": "pending"}).json()
    assert [r["id"] for r in pending] == [str(mine.id)]


def test_foreign_request_is_not_found(client, test_db_session, test_store, other_user):
    request = _make_request(test_db_session, test_store)
    login(client, other_user)

    assert client.get(f"/bargain-requests/{request.id}").status_code == 404
    assert client.post(f"/bargain-requests/{request.id}/reject").status_code == 404


def test_reconnected_domain_hides_previous_owner_requests(client, test_db_session, test_store, other_user):
    from bargenix.services.store_lifecycle_service import delete_store

    request = _make_request(test_db_session, test_store)
    delete_store(test_db_session, test_store)
    make_store(test_db_session, other_user, "teststore.myshopify.com")

    assert service.list_requests(test_db_session, other_user) == []
    with pytest.raises(service.BargainRequestNotFoundError):
        service.get_request(test_db_session, other_user, request.id)

    login(client, other_user)
    assert client.get("/bargain-requests").json() == []
    approve = client.post(f"/bargain-requests/{request.id}/approve", json={"min_price": "85.00"})
    assert approve.status_code == 404
    assert client.post(f"/bargain-requests/{request.id}/reject").status_code == 404
    test_db_session.refresh(request)
    assert request.status == S.pending


def test_unowned_request_visible_through_held_store(test_db_session, test_store, test_user, other_user):
    request = _make_request(test_db_session, test_store, user_id=None)

    assert [r.id for r in service.list_requests(test_db_session, test_user)] == [request.id]
    assert service.list_requests(test_db_session, other_user) == []


def test_unknown_request_is_not_found(auth_client, test_store):
    assert auth_client.get(f"/bargain-requests/{uuid.uuid4()}").status_code == 404


def test_status_update_and_illegal_transition(auth_client, test_db_session, test_store):
    request = _make_request(test_db_session, test_store)

    response = auth_client.patch(
        f"/bargain-requests/{request.id}/status", json={"status": "completed", "notes": "Sold"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["notes"] == "Sold"

    response = auth_client.patch(f"/bargain-requests/{request.id}/status", json={"status": "pending"})
    assert response.status_code == 409


def test_same_status_keeps_notes(auth_client, test_db_session, test_store):
    request = _make_request(test_db_session, test_store, notes="keep me")

    response = auth_client.patch(f"/bargain-requests/{request.id}/status", json={"status": "pending"})

    assert response.status_code == 200
    assert response.json()["notes"] == "keep me"


def test_approve_enables_bargaining(auth_client, test_db_session, test_store, test_user):
    request = _make_request(test_db_session, test_store)

    response = auth_client.post(
        f"/bargain-requests/{request.id}/approve", json={"min_price": "85.00", "notes": "ok"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    setting = test_db_session.query(ProductBargainingSettings).one()
    assert setting.user_id == test_user.id
    assert setting.product_id == "gid://shopify/Product/111"
    assert setting.variant_id == "gid://shopify/ProductVariant/222"
    assert setting.bargaining_enabled is True
    assert setting.min_price == Decimal("85.00")
    assert setting.original_price == Decimal("100.00")


def test_approve_clamps_min_price_to_original(auth_client, test_db_session, test_store):
    request = _make_request(test_db_session, test_store)

    auth_client.post(f"/bargain-requests/{request.id}/approve", json={"min_price": "150"})

    assert test_db_session.query(ProductBargainingSettings).one().min_price == Decimal("100.00")


def test_approve_respects_plan_limit(auth_client, test_db_session, test_store, test_user):
    # free plan in conftest allows 3 products
    for number in (1, 2, 3):
        _enable(test_db_session, test_user, number)
    request = _make_request(test_db_session, test_store)

    response = auth_client.post(f"/bargain-requests/{request.id}/approve", json={"min_price": "80"})

    assert response.status_code == 403
    assert "upgrade your plan" in response.json()["detail"]
    test_db_session.refresh(request)
    assert request.status == S.pending
    assert test_db_session.query(ProductBargainingSettings).count() == 3


def test_approve_of_already_enabled_product_ignores_limit(auth_client, test_db_session, test_store, test_user):
    for number in (1, 2, 111):
        _enable(test_db_session, test_user, number)
    request = _make_request(test_db_session, test_store)

    response = auth_client.post(f"/bargain-requests/{request.id}/approve", json={"min_price": "80"})

    assert response.status_code == 200


def test_approve_rejected_request_conflicts(auth_client, test_db_session, test_store):
    request = _make_request(test_db_session, test_store, status=S.rejected)

    response = auth_client.post(f"/bargain-requests/{request.id}/approve", json={"min_price": "80"})

    assert response.status_code == 409
    assert test_db_session.query(ProductBargainingSettings).count() == 0


def test_reject_with_and_without_body(auth_client, test_db_session, test_store):
    first = _make_request(test_db_session, test_store)
    second = _make_request(test_db_session, test_store)

    assert auth_client.post(f"/bargain-requests/{first.id}/reject").json()["status"] == "rejected"
    response = auth_client.post(f"/bargain-requests/{second.id}/reject", json={"notes": "too low"})
    assert response.json()["notes"] == "too low"


def test_product_details_placeholder_without_token(auth_client, test_db_session, test_user):
    store = make_store(test_db_session, test_user, "tokenless.myshopify.com", access_token=None)
    request = _make_request(test_db_session, store)

    response = auth_client.get(f"/bargain-requests/{request.id}/product")

    assert response.status_code == 200
    body = response.json()
    assert body["available"] is False
    assert body["title"] == "Leather Bag"
    assert body["price"] == 100.0


def test_create_test_request(auth_client, test_store):
    response = auth_client.post("/bargain-requests/test")

    assert response.status_code == 201
    assert response.json()["product_title"] == "Test Product"
    assert response.json()["shop_domain"] == "teststore.myshopify.com"


def test_test_endpoint_hidden_outside_development(auth_client, test_store, monkeypatch):
    from bargenix.deps import get_settings

    monkeypatch.setenv("ENVIRONMENT", "production")
    get_settings.cache_clear()

    assert auth_client.post("/bargain-requests/test").status_code == 404


def test_unconfigured_environment_hides_test_endpoint(auth_client, test_store, monkeypatch):
    from bargenix.deps import Settings, get_settings

    monkeypatch.delenv("ENVIRONMENT", raising=False)
    get_settings.cache_clear()

    assert Settings(_env_file=None).ENVIRONMENT == "production"
    assert auth_client.post("/bargain-requests/test").status_code == 404


def test_test_endpoint_requires_store(auth_client):
    assert auth_client.post("/bargain-requests/test").status_code == 400


# =============================================================================
# Public submission
# =============================================================================

def test_widget_submission_normalizes_ids(client, test_db_session, test_store):
    response = client.post(
        "/bargain/request",
        json={
            "shop_domain": "teststore",
            "product_id": "111",
            "variant_id": "222",
            "product_title": "  Leather   Bag ",
            "product_price": "100",
            "requested_price": "70",
            "customer_email": "buyer@example.com",
        },
    )

    assert response.status_code == 201
    request = test_db_session.query(BargainRequest).one()
    assert str(request.id) == response.json()["requestId"]
    assert request.product_id == "gid://shopify/Product/111"
    assert request.variant_id == "gid://shopify/ProductVariant/222"
    assert request.product_title == "Leather Bag"
    assert request.status == S.pending
    assert request.user_id == test_store.user_id


def test_widget_submission_for_inactive_shop(client, test_db_session, test_user):
    make_store(test_db_session, test_user, "closed.myshopify.com", status=StoreStatusEnum.inactive)

    response = client.post(
        "/bargain/request", json={"shop_domain": "closed.myshopify.com", "product_id": "1"}
    )
    assert response.status_code == 404
