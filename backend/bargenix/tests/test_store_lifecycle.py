"""Store status transitions, live checks and the uninstall round trip."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, unquote, urlparse

from bargenix.deps import get_settings
from bargenix.models import (
    MembershipStatusEnum,
    ShopifyAuthToken,
    ShopifyStore,
    ShopifyUninstallEvent,
    StoreStatusEnum,
    UserMembership,
)
from bargenix.services import store_lifecycle_service as lifecycle
from bargenix.services.shopify_client import ShopifyAPIError

from conftest import make_store


def _mock_client(**methods):
    client = MagicMock()
    for name, value in methods.items():
        setattr(client, name, value)
    return client


# =============================================================================
# Transitions
# =============================================================================

def test_mark_inactive_drops_tokens_and_records_event(test_db_session, test_store):
    lifecycle.mark_store_inactive(test_db_session, test_store, lifecycle.REASON_UNAUTHORIZED)

    assert test_store.status == StoreStatusEnum.inactive
    assert test_db_session.query(ShopifyAuthToken).filter_by(store_id=test_store.id).count() == 0
    events = test_db_session.query(ShopifyUninstallEvent).filter_by(store_id=test_store.id).all()
    assert [e.reason for e in events] == [lifecycle.REASON_UNAUTHORIZED]


def test_uninstall_events_are_deduplicated_within_an_hour(test_db_session, test_store):
    lifecycle.mark_store_inactive(test_db_session, test_store, lifecycle.REASON_TOKEN_MISSING)
    lifecycle.mark_store_inactive(test_db_session, test_store, lifecycle.REASON_TOKEN_MISSING)
    assert test_db_session.query(ShopifyUninstallEvent).count() == 1

    event = test_db_session.query(ShopifyUninstallEvent).one()
    event.created_at = datetime.utcnow() - timedelta(hours=2)
    test_db_session.commit()

    lifecycle.mark_store_inactive(test_db_session, test_store, lifecycle.REASON_TOKEN_MISSING)
    assert test_db_session.query(ShopifyUninstallEvent).count() == 2


def test_different_reasons_are_not_merged(test_db_session, test_store):
    lifecycle.mark_store_inactive(test_db_session, test_store, lifecycle.REASON_TOKEN_MISSING)
    lifecycle.mark_store_inactive(test_db_session, test_store, lifecycle.REASON_UNAUTHORIZED)
    assert test_db_session.query(ShopifyUninstallEvent).count() == 2


def test_connected_store_without_token_becomes_inactive(test_db_session, test_user):
    store = make_store(test_db_session, test_user, "notoken.myshopify.com", access_token=None)

    current = lifecycle.get_connected_store(test_db_session, test_user)

    assert current.id == store.id
    assert current.status == StoreStatusEnum.inactive
    event = test_db_session.query(ShopifyUninstallEvent).one()
    assert event.reason == lifecycle.REASON_TOKEN_MISSING


def test_expired_token_counts_as_missing(test_db_session, test_store):
    token = test_db_session.query(ShopifyAuthToken).filter_by(store_id=test_store.id).one()
    token.expires_at = datetime.utcnow() - timedelta(minutes=1)
    test_db_session.commit()

    store = lifecycle.get_connected_store(test_db_session, test_store.user)
    assert store.status == StoreStatusEnum.inactive


def test_list_stores_puts_active_first(test_db_session, test_user):
    old_inactive = make_store(test_db_session, test_user, "a.myshopify.com", status=StoreStatusEnum.inactive)
    active = make_store(test_db_session, test_user, "b.myshopify.com")
    active.updated_at = datetime.utcnow() - timedelta(days=3)
    test_db_session.commit()

    stores = lifecycle.list_stores(test_db_session, test_user)

    assert [s.id for s, _ in stores] == [active.id, old_inactive.id]
    assert all(has_token for _, has_token in stores)


def test_app_uninstalled_cancels_memberships(test_db_session, test_store, free_plan):
    test_db_session.add(UserMembership(user_id=test_store.user_id, plan_id=free_plan.id))
    test_db_session.commit()

    lifecycle.handle_app_uninstalled(test_db_session, test_store, {"id": 1})

    membership = test_db_session.query(UserMembership).one()
    assert membership.status == MembershipStatusEnum.cancelled
    assert membership.cancelled_at is not None
    assert test_store.status == StoreStatusEnum.inactive


# =============================================================================
# Live status checks
# =============================================================================

def test_status_check_marks_inactive_on_401(test_db_session, test_store):
    client = _mock_client(ping=AsyncMock(side_effect=ShopifyAPIError("Unauthorized", status_code=401)))

    with patch("bargenix.services.store_lifecycle_service.ShopifyClient", return_value=client):
        result = asyncio.run(lifecycle.check_store_status(test_db_session, test_store, get_settings()))

    assert result["success"] is True
    assert result["is_connected"] is False
    assert test_store.status == StoreStatusEnum.inactive


def test_status_check_keeps_status_on_server_error(test_db_session, test_store):
    client = _mock_client(ping=AsyncMock(side_effect=ShopifyAPIError("Bad gateway", status_code=502)))

    with patch("bargenix.services.store_lifecycle_service.ShopifyClient", return_value=client):
        result = asyncio.run(lifecycle.check_store_status(test_db_session, test_store, get_settings()))

    assert result["success"] is False
    assert result["is_connected"] is True
    assert test_store.status == StoreStatusEnum.active
    assert test_db_session.query(ShopifyUninstallEvent).count() == 0


def test_status_check_reactivates_store(test_db_session, test_user):
    store = make_store(test_db_session, test_user, "back.myshopify.com", status=StoreStatusEnum.inactive)
    client = _mock_client(ping=AsyncMock(return_value="Back Shop"))

    with patch("bargenix.services.store_lifecycle_service.ShopifyClient", return_value=client):
        result = asyncio.run(lifecycle.check_store_status(test_db_session, store, get_settings()))

    assert result["is_connected"] is True
    assert store.status == StoreStatusEnum.active


def test_status_check_endpoint(auth_client, test_store):
    client = _mock_client(ping=AsyncMock(return_value=None))

    with patch("bargenix.services.store_lifecycle_service.ShopifyClient", return_value=client):
        response = auth_client.post(f"/shopify/stores/{test_store.id}/status-check")

    assert response.status_code == 200
    assert response.json()["is_connected"] is False
    assert response.json()["status"] == "inactive"


def test_refresh_updates_metadata(auth_client, test_db_session, test_store):
    client = _mock_client(get_shop=AsyncMock(return_value={"name": "Renamed", "currency": "CAD"}))

    with patch("bargenix.services.store_lifecycle_service.ShopifyClient", return_value=client):
        response = auth_client.post(f"/shopify/stores/{test_store.id}/refresh")

    assert response.status_code == 200
    test_db_session.refresh(test_store)
    assert test_store.shop_name == "Renamed"
    assert test_store.currency == "CAD"


# =============================================================================
# HTTP surface
# =============================================================================

def test_list_and_current_endpoints(auth_client, test_store):
    listed = auth_client.get("/shopify/stores")
    assert listed.status_code == 200
    assert listed.json()[0]["shop_domain"] == "teststore.myshopify.com"
    assert listed.json()[0]["has_token"] is True

    current = auth_client.get("/shopify/stores/current")
    assert current.json()["id"] == str(test_store.id)


def test_current_is_null_without_store(auth_client):
    response = auth_client.get("/shopify/stores/current")
    assert response.status_code == 200
    assert response.json() is None


def test_other_users_store_is_not_found(client, test_db_session, test_store, other_user):
    from conftest import login

    login(client, other_user)
    assert client.post(f"/shopify/stores/{test_store.id}/status-check").status_code == 404
    assert client.delete(f"/shopify/stores/{test_store.id}").status_code == 404


def test_uninstall_round_trip(auth_client, test_db_session, test_store):
    response = auth_client.post(f"/shopify/stores/{test_store.id}/uninstall-redirect")
    assert response.status_code == 200

    redirect = urlparse(response.json()["redirect_url"])
    assert redirect.netloc == "teststore.myshopify.com"
    assert redirect.path == "/admin/settings/apps"
    return_to = urlparse(unquote(parse_qs(redirect.query)["return_to"][0]))
    assert return_to.path == "/shopify/stores/uninstall-callback"
    params = {k: v[0] for k, v in parse_qs(return_to.query).items()}

    callback = auth_client.get("/shopify/stores/uninstall-callback", params=params, follow_redirects=False)

    assert callback.status_code == 307
    assert "uninstalled=true" in callback.headers["location"]
    test_db_session.refresh(test_store)
    assert test_store.status == StoreStatusEnum.inactive
    event = test_db_session.query(ShopifyUninstallEvent).one()
    assert event.reason == lifecycle.REASON_APPS_PAGE

    replay = auth_client.get("/shopify/stores/uninstall-callback", params=params, follow_redirects=False)
    assert replay.status_code == 403


def test_uninstall_callback_rejects_unknown_nonce(auth_client, test_store):
    response = auth_client.get(
        "/shopify/stores/uninstall-callback",
        params={"store_id": str(test_store.id), "nonce": "nope"},
        follow_redirects=False,
    )
    assert response.status_code == 403


def test_delete_store_keeps_audit_events(auth_client, test_db_session, test_store):
    lifecycle.mark_store_inactive(test_db_session, test_store, lifecycle.REASON_UNAUTHORIZED)
    store_id = test_store.id

    response = auth_client.delete(f"/shopify/stores/{store_id}")

    assert response.status_code == 200
    test_db_session.expire_all()
    assert test_db_session.query(ShopifyStore).filter_by(id=store_id).count() == 0
    assert test_db_session.query(ShopifyAuthToken).count() == 0
    reasons = sorted(e.reason for e in test_db_session.query(ShopifyUninstallEvent).all())
    assert reasons == sorted([lifecycle.REASON_UNAUTHORIZED, lifecycle.REASON_DELETED])
    assert all(e.store_id is None for e in test_db_session.query(ShopifyUninstallEvent).all())
