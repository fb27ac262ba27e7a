"""Public storefront widget endpoints and widget appearance settings."""

from decimal import Decimal

from bargenix.models import ProductBargainingSettings, StoreStatusEnum, WidgetSettings

from conftest import make_store


def _setting(db, user, variant_id="default", enabled=True, min_price="60", original_price="100", behavior="normal"):
    row = ProductBargainingSettings(
        user_id=user.id,
        product_id="gid://shopify/Product/111",
        variant_id=variant_id,
        bargaining_enabled=enabled,
        min_price=Decimal(min_price),
        original_price=Decimal(original_price),
        behavior=behavior,
    )
    db.add(row)
    db.commit()
    return row


def _check(client, **params):
    query = {"shop": "teststore.myshopify.com", "productId": "111"}
    query.update(params)
    return client.get("/bargain/product-check", params=query)


# =============================================================================
# product-check
# =============================================================================

def test_product_check_disabled_by_default(client, test_store):
    response = _check(client)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["bargainingEnabled"] is False
    assert body["productTitle"] == "111"
    assert body["bargainingBehavior"] == "standard"
    assert response.headers["Cache-Control"].startswith("no-store")


def test_product_check_prefers_exact_variant(client, test_db_session, test_store, test_user):
    _setting(test_db_session, test_user, variant_id="default", min_price="60", behavior="soft")
    _setting(test_db_session, test_user, variant_id="gid://shopify/ProductVariant/222", min_price="75", behavior="firm")

    body = _check(client, variantId="222").json()
    assert body["bargainingEnabled"] is True
    assert body["minPrice"] == 75.0
    assert body["minPricePercentage"] == 75
    assert body["bargainingBehavior"] == "firm"

    body = _check(client, variantId="999").json()
    assert body["minPrice"] == 60.0
    assert body["bargainingBehavior"] == "soft"


def test_product_check_falls_back_to_any_enabled_variant(client, test_db_session, test_store, test_user):
    _setting(test_db_session, test_user, variant_id="gid://shopify/ProductVariant/333", min_price="80")

    body = _check(client).json()

    assert body["bargainingEnabled"] is True
    assert body["productPrice"] == 100.0
    assert body["minPrice"] == 80.0


def test_product_check_ignores_disabled_rows(client, test_db_session, test_store, test_user):
    _setting(test_db_session, test_user, enabled=False)
    assert _check(client).json()["bargainingEnabled"] is False


def test_product_check_ignores_inactive_store(client, test_db_session, test_user):
    make_store(test_db_session, test_user, "teststore.myshopify.com", status=StoreStatusEnum.inactive)
    _setting(test_db_session, test_user)

    assert _check(client).json()["bargainingEnabled"] is False


def test_product_check_only_reads_shop_owner_settings(client, test_db_session, test_store, other_user):
    _setting(test_db_session, other_user)
    assert _check(client).json()["bargainingEnabled"] is False


def test_product_check_accepts_bare_shop_name(client, test_db_session, test_store, test_user):
    _setting(test_db_session, test_user)
    assert _check(client, shop="teststore").json()["bargainingEnabled"] is True


def test_product_check_requires_params(client):
    assert client.get("/bargain/product-check", params={"shop": "x.myshopify.com"}).status_code == 400


# =============================================================================
# variant-check
# =============================================================================

def test_variant_check(client, test_db_session, test_store, test_user):
    _setting(test_db_session, test_user, variant_id="gid://shopify/ProductVariant/222", enabled=False)

    body = client.get("/bargain/variant-check", params={"variantId": "222"}).json()
    assert body["found"] is True
    assert body["settings"]["bargainingEnabled"] is False
    assert body["settings"]["originalPrice"] == 100.0

    missing = client.get("/bargain/variant-check", params={"variantId": "404"}).json()
    assert missing == {"success": True, "found": False, "settings": None}


def test_variant_check_requires_variant(client):
    assert client.get("/bargain/variant-check").status_code == 400


# =============================================================================
# CORS
# =============================================================================

def test_public_endpoints_allow_any_origin(client, test_store):
    response = client.get(
        "/bargain/product-check",
        params={"shop": "teststore.myshopify.com", "productId": "1"},
        headers={"Origin": "https://some-storefront.com"},
    )
    assert response.headers["Access-Control-Allow-Origin"] == "*"

    preflight = client.options(
        "/bargain/request",
        headers={"Origin": "https://some-storefront.com", "Access-Control-Request-Method": "POST"},
    )
    assert preflight.status_code == 200
    assert preflight.headers["Access-Control-Allow-Origin"] == "*"


def test_dashboard_endpoints_keep_credentialed_cors(client):
    response = client.get("/health", headers={"Origin": "https://app.bargenix.test"})
    assert response.headers["Access-Control-Allow-Origin"] == "https://app.bargenix.test"


# =============================================================================
# Widget appearance
# =============================================================================

def test_public_widget_settings_defaults(client):
    body = client.get("/widget-settings/unknown.myshopify.com").json()
    assert body["label"] == "Bargain a Deal"
    assert body["position"] == "bottom_right"


def test_update_widget_settings(auth_client, test_db_session, test_store):
    response = auth_client.put("/widget-settings", json={"label": "Make an offer", "bg_color": "#000000"})

    assert response.status_code == 200
    assert response.json()["label"] == "Make an offer"
    assert response.json()["text_color"] == "#FFFFFF"

    row = test_db_session.query(WidgetSettings).filter_by(shop_domain="teststore.myshopify.com").one()
    assert row.bg_color == "#000000"

    public = auth_client.get("/widget-settings/teststore").json()
    assert public["label"] == "Make an offer"


def test_update_widget_settings_validates_colors(auth_client, test_store):
    assert auth_client.put("/widget-settings", json={"bg_color": "blue"}).status_code == 422


def test_widget_settings_need_a_store(auth_client):
    assert auth_client.get("/widget-settings").status_code == 404
