"""Per-product bargaining settings and plan limits."""

from decimal import Decimal

import pytest

from bargenix.models import MembershipPlan, ProductBargainingSettings, UserMembership
from bargenix.services import bargaining_service as service
from bargenix.services.bargaining_service import (
    BargainingLimitError,
    BargainingValidationError,
    BulkItem,
    VariantInput,
)


def _settings(db, user):
    return db.query(ProductBargainingSettings).filter_by(user_id=user.id).all()


# =============================================================================
# Limits
# =============================================================================

def test_limits_fall_back_to_free_plan(test_db_session, test_user):
    limits = service.get_user_limits(test_db_session, test_user)

    assert limits.max_products == 3
    assert limits.membership_level == "free"
    assert limits.remaining == 3


def test_limits_default_without_any_plan(test_db_session, other_user):
    limits = service.get_user_limits(test_db_session, other_user)
    assert limits.max_products == service.DEFAULT_PRODUCT_LIMIT


def test_active_membership_wins_and_zero_means_unlimited(test_db_session, test_user):
    plan = MembershipPlan(name="Pro", slug="pro", product_limit=0, price=Decimal("29"))
    test_db_session.add(plan)
    test_db_session.flush()
    test_db_session.add(UserMembership(user_id=test_user.id, plan_id=plan.id))
    test_db_session.commit()

    limits = service.get_user_limits(test_db_session, test_user)

    assert limits.membership_level == "pro"
    assert limits.is_limited is False
    assert limits.remaining is None
    assert limits.can_add(1000)


def test_variants_of_one_product_count_once(test_db_session, test_user):
    for variant in ("1", "2"):
        service.save_variant_settings(
            test_db_session, test_user,
            product_id="10", variant_id=variant, enabled=True,
            min_price="5", original_price="10",
        )

    assert service.get_user_limits(test_db_session, test_user).currently_enabled == 1


def test_limit_blocks_new_products_only(test_db_session, test_user):
    for number in ("1", "2", "3"):
        service.enable_product(test_db_session, test_user, number, min_price="5", original_price="10")

    with pytest.raises(BargainingLimitError):
        service.enable_product(test_db_session, test_user, "4", min_price="5", original_price="10")

    # already enabled product can be updated
    setting = service.enable_product(test_db_session, test_user, "2", min_price="7", original_price="10")
    assert setting.min_price == Decimal("7.00")


# =============================================================================
# Writes
# =============================================================================

def test_upsert_normalizes_ids_and_clamps(test_db_session, test_user):
    setting = service.upsert_setting(
        test_db_session, test_user,
        product_id="55", variant_id=None, enabled=True,
        min_price="12.345", original_price="10",
    )

    assert setting.product_id == "gid://shopify/Product/55"
    assert setting.variant_id == "default"
    assert setting.original_price == Decimal("10.00")
    assert setting.min_price == Decimal("10.00")


def test_disable_is_idempotent(test_db_session, test_user):
    service.enable_product(test_db_session, test_user, "9", min_price="5", original_price="10")

    assert service.disable_product(test_db_session, test_user, "9") == 1
    assert service.disable_product(test_db_session, test_user, "gid://shopify/Product/9") == 1
    assert service.disable_product(test_db_session, test_user, "404") == 0
    assert not service.is_product_enabled(test_db_session, test_user.id, "gid://shopify/Product/9")


def test_variant_settings_validation(test_db_session, test_user):
    with pytest.raises(BargainingValidationError):
        service.save_variant_settings(
            test_db_session, test_user,
            product_id="1", variant_id="2", enabled=True, min_price="1", original_price="0",
        )

    with pytest.raises(BargainingValidationError, match="out-of-stock"):
        service.save_variant_settings(
            test_db_session, test_user,
            product_id="1", variant_id="2", enabled=True, min_price="1", original_price="10",
            inventory_quantity=0,
        )

    # disabling an out-of-stock variant is fine
    setting = service.save_variant_settings(
        test_db_session, test_user,
        product_id="1", variant_id="2", enabled=False, min_price="1", original_price="10",
        inventory_quantity=0,
    )
    assert setting.bargaining_enabled is False


@pytest.mark.parametrize(
    "kind, value, expected",
    [
        ("percentage", "80", Decimal("40.00")),
        ("percentage", "33.333", Decimal("16.67")),
        ("fixed", "12.5", Decimal("12.50")),
        ("fixed", "75", Decimal("50.00")),
    ],
)
def test_compute_min_price(kind, value, expected):
    assert service.compute_min_price("50", kind, value) == expected


def test_product_settings_skip_out_of_stock(test_db_session, test_user):
    saved = service.save_product_settings(
        test_db_session, test_user,
        product_id="77",
        variants=[
            VariantInput("1", Decimal("100"), 5),
            VariantInput("2", Decimal("50"), 0),
            VariantInput("3", Decimal("20"), None),
        ],
        enabled=True,
        min_price_type="percentage",
        min_price_value="90",
    )

    assert {s.variant_id for s in saved} == {
        "gid://shopify/ProductVariant/1",
        "gid://shopify/ProductVariant/3",
    }
    assert {s.min_price for s in saved} == {Decimal("90.00"), Decimal("18.00")}


def test_product_settings_all_out_of_stock(test_db_session, test_user):
    with pytest.raises(BargainingValidationError):
        service.save_product_settings(
            test_db_session, test_user,
            product_id="77",
            variants=[VariantInput("1", Decimal("100"), 0)],
            enabled=True,
            min_price_type="fixed",
            min_price_value="10",
        )


def test_bulk_update_checks_whole_batch(test_db_session, test_user):
    items = [BulkItem(product_id=str(n), variant_id=None, enabled=True) for n in range(1, 5)]

    with pytest.raises(BargainingLimitError, match="allows only 3 products"):
        service.bulk_update(test_db_session, test_user, items)
    assert _settings(test_db_session, test_user) == []

    saved = service.bulk_update(test_db_session, test_user, items[:3])
    assert len(saved) == 3


def test_bulk_update_single_extra_product_reports_plan_size(test_db_session, test_user):
    service.bulk_update(
        test_db_session, test_user, [BulkItem(product_id=str(n), variant_id=None, enabled=True) for n in range(1, 4)]
    )

    with pytest.raises(BargainingLimitError) as exc:
        service.bulk_update(test_db_session, test_user, [BulkItem(product_id="9", variant_id=None, enabled=True)])

    assert str(exc.value) == (
        "Your plan allows only 3 products for bargaining. "
        "You currently have 3 enabled and are trying to add 1 more."
    )


def test_single_enable_at_limit_keeps_upgrade_message(test_db_session, test_user):
    for n in range(1, 4):
        service.enable_product(test_db_session, test_user, str(n), min_price="8", original_price="10")

    with pytest.raises(BargainingLimitError) as exc:
        service.enable_product(test_db_session, test_user, "9", min_price="8", original_price="10")

    assert str(exc.value) == service.LIMIT_REACHED_MESSAGE


def test_bargaining_status(test_db_session, test_user):
    assert service.get_bargaining_status(test_db_session, test_user, "1") == {
        "enabled": False,
        "min_price": None,
        "behavior": "normal",
    }

    service.enable_product(test_db_session, test_user, "1", min_price="8", original_price="10", behavior="firm")
    status = service.get_bargaining_status(test_db_session, test_user, "1", "default")
    assert status["enabled"] is True
    assert status["behavior"] == "firm"


# =============================================================================
# HTTP surface
# =============================================================================

def test_limits_endpoint(auth_client):
    body = auth_client.get("/bargaining/limits").json()
    assert body["max_products"] == 3
    assert body["is_limited"] is True
    assert body["remaining"] == 3


def test_enable_endpoint_returns_403_at_limit(auth_client, test_db_session, test_user):
    for number in ("1", "2", "3"):
        response = auth_client.post(
            f"/bargaining/products/{number}/enable", json={"min_price": "5", "original_price": "10"}
        )
        assert response.status_code == 200

    response = auth_client.post("/bargaining/products/4/enable", json={"min_price": "5", "original_price": "10"})
    assert response.status_code == 403


def test_product_settings_endpoint_rejects_percentage_over_100(auth_client):
    response = auth_client.put(
        "/bargaining/products/1/settings",
        json={
            "variants": [{"variant_id": "1", "original_price": "10"}],
            "enabled": True,
            "min_price_type": "percentage",
            "min_price_value": "120",
        },
    )
    assert response.status_code == 422


def test_variant_settings_endpoint_maps_validation_to_400(auth_client):
    response = auth_client.put(
        "/bargaining/settings",
        json={
            "product_id": "1",
            "variant_id": "2",
            "enabled": True,
            "min_price": "5",
            "original_price": "10",
            "inventory_quantity": 0,
        },
    )
    assert response.status_code == 400


def test_settings_listing_and_disable(auth_client):
    auth_client.post("/bargaining/products/5/enable", json={"min_price": "5", "original_price": "10"})

    listed = auth_client.get("/bargaining/settings", params={"product_id": "5"}).json()
    assert len(listed) == 1
    assert listed[0]["product_id"] == "gid://shopify/Product/5"

    assert auth_client.post("/bargaining/products/5/disable").status_code == 200
    status = auth_client.get("/bargaining/status", params={"product_id": "5"}).json()
    assert status["enabled"] is False


def test_bargaining_requires_login(client):
    assert client.get("/bargaining/limits").status_code == 401
