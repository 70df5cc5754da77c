from __future__ import annotations

from decimal import Decimal

import pytest

from storefront.errors import NotFoundError, ValidationError
from storefront.models import AbandonedOrder, Order, OrderItem, OrderStatus, ProductStatus
from storefront.observability import get_counter_value
from storefront.services.abandoned_order_service import AbandonedOrderService, ReconcileOutcome
from storefront.services.order_service import OrderSubmissionService


class _StubConfig:
    ORDER_ID_PREFIX = "#QE"
    ORDER_ID_MIN_DIGITS = 4
    ORDER_ID_MAX_RETRIES = 3
    ABANDONED_MIN_FILLED_FIELDS = 4


@pytest.fixture
def service(db_session):
    return OrderSubmissionService(db_session, config=_StubConfig)


@pytest.fixture
def tiered_product(make_product):
    return make_product(
        title="Abaya",
        current_price="4.90",
        pricing_tiers=[
            {"quantity": 1, "price": 4.9, "discount": 0},
            {"quantity": 2, "price": 9.0, "discount": 8},
        ],
    )


def _checkout(product_id, quantity=2, **overrides):
    data = {
        "customer": "Ahmed",
        "phone": "9123",
        "city": "Muscat",
        "address": "X",
        "items": [{"product_id": product_id, "quantity": quantity}],
    }
    data.update(overrides)
    return data


def test_first_submission_is_qe0001_with_tier_total(service, tiered_product):
    order = service.submit_order(_checkout(tiered_product.id, quantity=2))

    assert order.id == "#QE0001"
    assert order.status == OrderStatus.PENDING
    assert order.total == Decimal("9.00")
    assert [(i.quantity, i.unit_price, i.line_total) for i in order.items] == [
        (2, Decimal("4.50"), Decimal("9.00")),
    ]
    assert get_counter_value("orders_submitted_total") == 1


def test_quantity_without_tier_uses_flat_price(service, tiered_product):
    order = service.submit_order(_checkout(tiered_product.id, quantity=4))

    assert order.total == Decimal("19.60")


def test_multiple_lines_are_summed_in_order(service, tiered_product, make_product):
    other = make_product(title="Scarf", current_price="2.50")

    order = service.submit_order({
        **_checkout(tiered_product.id),
        "items": [
            {"productId": other.id, "quantity": "3"},
            {"product_id": tiered_product.id, "quantity": 1},
        ],
    })

    assert [item.product_id for item in order.items] == [other.id, tiered_product.id]
    assert order.total == Decimal("12.40")


def test_single_product_form_fields_are_accepted(service, tiered_product):
    order = service.submit_order({
        "name": "Ahmed",
        "phone": "9123",
        "city": "Muscat",
        "address": "X",
        "product_id": str(tiered_product.id),
        "quantity": "1",
    })

    assert order.customer == "Ahmed"
    assert order.total == Decimal("4.90")


def test_sequential_submissions_increment(service, tiered_product):
    ids = [service.submit_order(_checkout(tiered_product.id)).id for _ in range(3)]
    assert ids == ["#QE0001", "#QE0002", "#QE0003"]


def test_missing_fields_are_reported_and_nothing_is_stored(service, db_session, tiered_product):
    with pytest.raises(ValidationError) as excinfo:
        service.submit_order(_checkout(tiered_product.id, quantity=0, phone=" ", address=None))

    assert set(excinfo.value.details) == {"phone", "address", "items[0].quantity"}
    assert db_session.query(Order).count() == 0


def test_empty_payload_is_rejected(service):
    with pytest.raises(ValidationError) as excinfo:
        service.submit_order(None)

    assert "items" in excinfo.value.details
    assert "customer" in excinfo.value.details


def test_inactive_or_unknown_products_are_rejected(service, db_session, make_product):
    hidden = make_product(title="Retired", status=ProductStatus.INACTIVE)

    with pytest.raises(ValidationError) as excinfo:
        service.submit_order({
            **_checkout(hidden.id),
            "items": [{"product_id": hidden.id, "quantity": 1}, {"product_id": 9999, "quantity": 1}],
        })

    assert set(excinfo.value.details) == {"items[0].product_id", "items[1].product_id"}
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0


def test_submission_clears_matching_abandoned_checkout(service, db_session, tiered_product, sample_checkout):
    abandoned = AbandonedOrderService(db_session, config=_StubConfig)
    abandoned.capture(sample_checkout)
    abandoned.capture({**sample_checkout, "phone": "5555"})

    service.submit_order(_checkout(tiered_product.id))

    assert [row.phone for row in db_session.query(AbandonedOrder).all()] == ["5555"]


def test_failed_reconcile_does_not_fail_the_order(db_session, tiered_product):
    class BrokenAbandonedService(AbandonedOrderService):
        def reconcile_on_submit(self, phone, name):
            return ReconcileOutcome(False, 0)

    service = OrderSubmissionService(
        db_session,
        config=_StubConfig,
        abandoned_service=BrokenAbandonedService(db_session, config=_StubConfig),
    )

    order = service.submit_order(_checkout(tiered_product.id))

    assert order.id == "#QE0001"
    assert db_session.get(Order, "#QE0001") is not None


def test_list_orders_newest_number_first_and_filtered(service, db_session, make_order):
    make_order("#QE0002")
    make_order("#QE0010")
    make_order("#QE0009")
    make_order("IMPORTED-1")
    service.update_status("#QE0009", "confirmed")

    assert [o.id for o in service.list_orders()] == ["#QE0010", "#QE0009", "#QE0002", "IMPORTED-1"]
    assert [o.id for o in service.list_orders(status="confirmed")] == ["#QE0009"]


def test_update_status_rejects_unknown_values(service, make_order):
    make_order("#QE0001")

    with pytest.raises(ValidationError):
        service.update_status("#QE0001", "shipped")


def test_update_status_records_transition(service, make_order):
    make_order("#QE0001")

    order = service.update_status("#QE0001", "Cancelled")

    assert order.status == OrderStatus.CANCELLED
    assert get_counter_value("order_status_transition_total", labels={"status": "cancelled"}) == 1


def test_delete_order_removes_items(service, db_session, tiered_product):
    order_id = service.submit_order(_checkout(tiered_product.id)).id

    assert service.delete_order(order_id) == order_id
    assert db_session.query(OrderItem).count() == 0

    with pytest.raises(NotFoundError):
        service.get_order(order_id)
