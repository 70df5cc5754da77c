from __future__ import annotations

from decimal import Decimal

import pytest

from storefront.errors import NotFoundError, ValidationError
from storefront.models import Product, ProductStatus
from storefront.services.catalog_service import CatalogService


@pytest.fixture
def catalog(db_session):
    return CatalogService(db_session)


def test_list_products_hides_inactive_by_default(catalog, make_product):
    make_product(title="Visible")
    make_product(title="Hidden", status=ProductStatus.INACTIVE)

    assert [p.title for p in catalog.list_products()] == ["Visible"]
    assert [p.title for p in catalog.list_products(include_inactive=True)] == ["Visible", "Hidden"]


def test_get_missing_product_raises_not_found(catalog):
    with pytest.raises(NotFoundError):
        catalog.get_product(404)


def test_create_product_sorts_and_stores_tiers(catalog):
    product = catalog.create_product({
        "title": "  Kaftan ",
        "currentPrice": "12.5",
        "pricingTiers": [{"quantity": 2, "price": 24}, {"quantity": 1, "price": 12.5}],
    })

    assert product.id is not None
    assert product.title == "Kaftan"
    assert product.current_price == Decimal("12.50")
    assert product.pricing_tiers == [
        {"quantity": 1, "price": 12.5, "discount": 0},
        {"quantity": 2, "price": 24.0, "discount": 0},
    ]


def test_create_product_reports_every_invalid_field(catalog, db_session):
    with pytest.raises(ValidationError) as excinfo:
        catalog.create_product({"title": "", "currentPrice": "abc", "status": "archived"})

    assert set(excinfo.value.details) == {"title", "currentPrice", "status"}
    assert db_session.query(Product).count() == 0


def test_create_product_rejects_bad_tiers(catalog):
    with pytest.raises(ValidationError) as excinfo:
        catalog.create_product({"title": "Shawl", "currentPrice": 3, "pricingTiers": [{"quantity": 0, "price": 1}]})

    assert "pricingTiers[0]" in excinfo.value.details


def test_update_product_changes_only_given_fields(catalog, make_product):
    product = make_product(title="Old", current_price="4.00")

    updated = catalog.update_product(product.id, {"currentPrice": 3.5, "status": "inactive"})

    assert updated.title == "Old"
    assert updated.current_price == Decimal("3.50")
    assert updated.status == ProductStatus.INACTIVE


def test_failed_update_leaves_product_unchanged(catalog, db_session, make_product):
    product = make_product(title="Stable", current_price="4.00")

    with pytest.raises(ValidationError):
        catalog.update_product(product.id, {"title": "Renamed", "currentPrice": -1})

    db_session.expire_all()
    assert db_session.get(Product, product.id).title == "Stable"


def test_quote_uses_tier_pricing(catalog, make_product):
    product = make_product(pricing_tiers=[{"quantity": 3, "price": 12.0, "discount": 0}])

    quote = catalog.quote(product.id, 3)

    assert quote.to_dict() == {"unitPrice": 4.0, "lineTotal": 12.0, "fromTier": True}


def test_resync_sequence_reports_next_id(catalog, db_session, make_product):
    make_product(title="One")
    last = make_product(title="Two")

    result = catalog.resync_product_id_sequence()

    assert result["maxId"] == last.id
    assert result["nextId"] == last.id + 1
    assert result["supported"] is (db_session.get_bind().dialect.name == "postgresql")
