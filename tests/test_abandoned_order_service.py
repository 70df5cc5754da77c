from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from storefront.errors import NotFoundError, StorageError
from storefront.models import AbandonedOrder
from storefront.observability import get_counter_value
from storefront.services.abandoned_order_service import (
    AbandonedOrderService,
    count_filled_fields,
    normalize_capture,
)


class _StubConfig:
    ABANDONED_MIN_FILLED_FIELDS = 4


@pytest.fixture
def service(db_session):
    return AbandonedOrderService(db_session, config=_StubConfig)


def _operational_error(*args, **kwargs):
    raise OperationalError("stmt", {}, Exception("database is down"))


def test_count_filled_fields_ignores_blank_values():
    assert count_filled_fields({"name": "A", "phone": "1", "city": "  ", "address": ""}) == 2
    assert count_filled_fields({}) == 0
    assert count_filled_fields({"name": "A", "phone": "1", "city": "C", "quantity": "2", "address": " "}) == 4
    assert count_filled_fields(None) == 0


def test_count_filled_fields_counts_all_six_tracked_fields():
    data = {"name": "A", "phone": "1", "city": "C", "address": "D", "quantity": "2", "product_id": "7"}
    assert count_filled_fields(data) == 6
    assert count_filled_fields({**data, "notes": "not tracked"}) == 6


def test_normalize_capture_accepts_form_aliases():
    normalized = normalize_capture({"fullName": " Sara ", "mobile": 9123, "productId": 3})
    assert normalized == {
        "name": "Sara",
        "phone": "9123",
        "city": "",
        "address": "",
        "quantity": "",
        "product_id": "3",
    }


def test_capture_saves_row_with_four_fields(service, db_session, sample_checkout):
    outcome = service.capture(sample_checkout)

    assert outcome.success
    assert outcome.abandoned_order.name == "Ahmed"
    assert outcome.abandoned_order.to_dict()["status"] == "unsubmitted"
    assert db_session.query(AbandonedOrder).count() == 1
    assert get_counter_value("abandoned_captures_total", labels={"result": "saved"}) == 1


def test_capture_without_phone_is_rejected(service, db_session):
    outcome = service.capture(
        {"name": "Ahmed", "phone": "", "city": "Muscat", "address": "X", "quantity": "2", "product_id": ""}
    )

    assert not outcome.success
    assert outcome.message == "Name and phone are required"
    assert db_session.query(AbandonedOrder).count() == 0


def test_capture_below_minimum_fields_is_rejected(service, db_session):
    outcome = service.capture({"name": "Ahmed", "phone": "9123", "city": "Muscat"})

    assert not outcome.success
    assert "At least 4 fields" in outcome.message
    assert db_session.query(AbandonedOrder).count() == 0
    assert get_counter_value("abandoned_captures_total", labels={"result": "rejected"}) == 1


def test_repeated_capture_updates_single_row(service, db_session, sample_checkout):
    first = service.capture(sample_checkout)
    created_at = first.abandoned_order.created_at

    second = service.capture({**sample_checkout, "city": "Sohar", "quantity": "3"})

    rows = db_session.query(AbandonedOrder).all()
    assert len(rows) == 1
    assert second.abandoned_order.id == first.abandoned_order.id
    assert rows[0].city == "Sohar"
    assert rows[0].quantity == "3"
    assert rows[0].created_at == created_at


def test_last_capture_overwrites_fields_with_blanks(service, db_session, sample_checkout):
    service.capture({**sample_checkout, "product_id": "5"})
    service.capture({**sample_checkout, "product_id": ""})

    row = db_session.query(AbandonedOrder).one()
    assert row.product_id == ""


def test_different_names_on_same_phone_are_separate_rows(service, db_session, sample_checkout):
    service.capture(sample_checkout)
    service.capture({**sample_checkout, "name": "Fatma"})

    assert db_session.query(AbandonedOrder).count() == 2


def test_capture_storage_failure_is_reported_not_raised(service, db_session, sample_checkout, monkeypatch):
    monkeypatch.setattr(db_session, "execute", _operational_error)

    outcome = service.capture(sample_checkout)

    assert outcome == (False, "Failed to save abandoned order", None, False)
    assert get_counter_value("abandoned_captures_total", labels={"result": "error"}) == 1


def test_reconcile_removes_matching_row_only(service, db_session, sample_checkout):
    service.capture(sample_checkout)
    service.capture({**sample_checkout, "name": "Fatma"})

    outcome = service.reconcile_on_submit("9123", "Ahmed")

    assert outcome.success
    assert outcome.deleted_count == 1
    assert [row.name for row in db_session.query(AbandonedOrder).all()] == ["Fatma"]
    assert get_counter_value("abandoned_reconciled_total") == 1


def test_reconcile_without_match_succeeds_with_zero(service):
    assert service.reconcile_on_submit("0000", "Nobody") == (True, 0)


def test_reconcile_with_blank_key_is_a_no_op(service, sample_checkout):
    service.capture(sample_checkout)

    assert service.reconcile_on_submit("", "Ahmed") == (True, 0)
    assert service.reconcile_on_submit("9123", None) == (True, 0)


def test_reconcile_storage_failure_is_reported_not_raised(service, db_session, monkeypatch):
    monkeypatch.setattr(db_session, "query", _operational_error)

    assert service.reconcile_on_submit("9123", "Ahmed") == (False, 0)


def test_list_is_newest_first(service, db_session, sample_checkout):
    service.capture(sample_checkout)
    service.capture({**sample_checkout, "name": "Fatma"})

    rows = service.list_abandoned_orders()

    assert [row.name for row in rows] == ["Fatma", "Ahmed"]


def test_list_storage_failure_raises(service, db_session, monkeypatch):
    monkeypatch.setattr(db_session, "query", _operational_error)

    with pytest.raises(StorageError):
        service.list_abandoned_orders()


def test_delete_by_id(service, db_session, sample_checkout):
    row_id = service.capture(sample_checkout).abandoned_order.id

    assert service.delete_abandoned_order(row_id) == row_id
    assert db_session.query(AbandonedOrder).count() == 0

    with pytest.raises(NotFoundError):
        service.delete_abandoned_order(row_id)


def test_capture_rejections_are_flagged(service, sample_checkout):
    assert service.capture({"name": "Ahmed"}).rejected
    assert service.capture(["not", "a", "form"]) == (False, "Name and phone are required", None, True)
    assert not service.capture(sample_checkout).rejected


def test_normalize_capture_ignores_non_mapping_payloads():
    assert normalize_capture(["x"]) == {field: "" for field in ("name", "phone", "city", "address", "quantity", "product_id")}
