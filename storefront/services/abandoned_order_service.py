"""
Abandoned checkout tracking.

Checkout forms report partially filled customer details while the shopper is
still typing. Reports with a name, a phone and enough other fields are kept
(one row per ``(phone, name)``, last report wins) so that incomplete
checkouts can be followed up; the row is removed once that customer submits
a real order.

Everything here is best effort: failures are logged and reported through the
returned outcome, never raised, so recording a lead can not break checkout.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, NamedTuple, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.errors import NotFoundError, StorageError
from storefront.models import ABANDONED_STATUS, AbandonedOrder
from storefront.observability import increment_counter, record_event, set_gauge

TRACKED_FIELDS = ("name", "phone", "city", "address", "quantity", "product_id")
OPTIONAL_FIELDS = ("city", "address", "quantity", "product_id")

# Accepted spellings coming from the storefront forms
_FIELD_ALIASES = {
    "productId": "product_id",
    "fullName": "name",
    "mobile": "phone",
}

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class CaptureOutcome(NamedTuple):
    success: bool
    message: str
    abandoned_order: Optional[AbandonedOrder] = None
    # True when the payload itself was refused, as opposed to a storage failure
    rejected: bool = False


class ReconcileOutcome(NamedTuple):
    success: bool
    deleted_count: int = 0


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_capture(data: Optional[Mapping[str, Any]]) -> dict:
    """Map a raw form payload onto the six tracked fields as trimmed strings."""
    normalized = {field: "" for field in TRACKED_FIELDS}
    if not isinstance(data, Mapping):
        return normalized
    for key, value in data.items():
        field = _FIELD_ALIASES.get(key, key)
        if field in normalized:
            normalized[field] = _clean(value)
    return normalized


def count_filled_fields(partial: Optional[Mapping[str, Any]]) -> int:
    """How many of name, phone, city, address, quantity and product_id are non-blank."""
    normalized = normalize_capture(partial)
    return sum(1 for field in TRACKED_FIELDS if normalized[field])


class AbandonedOrderService:
    """Captures, lists and clears unsubmitted checkout attempts."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def validate_capture(self, data: Optional[Mapping[str, Any]]) -> Optional[str]:
        """Return the reason a capture would be rejected, or None if it is acceptable."""
        normalized = normalize_capture(data)
        if not normalized["name"] or not normalized["phone"]:
            return "Name and phone are required"
        filled = count_filled_fields(normalized)
        minimum = self.config.ABANDONED_MIN_FILLED_FIELDS
        if filled < minimum:
            return f"At least {minimum} fields must be filled ({filled} provided)"
        return None

    def capture(self, data: Optional[Mapping[str, Any]]) -> CaptureOutcome:
        rejection = self.validate_capture(data)
        if rejection:
            increment_counter("abandoned_captures_total", labels={"result": "rejected"})
            return CaptureOutcome(False, rejection, rejected=True)

        values = normalize_capture(data)
        try:
            self._upsert(values)
            self.db.commit()
            row = (
                self.db.query(AbandonedOrder)
                .filter_by(phone=values["phone"], name=values["name"])
                .execution_options(populate_existing=True)
                .one()
            )
        except SQLAlchemyError:
            self.db.rollback()
            increment_counter("abandoned_captures_total", labels={"result": "error"})
            self.logger.exception("Error saving abandoned order", extra={"phone": values["phone"]})
            return CaptureOutcome(False, "Failed to save abandoned order")

        increment_counter("abandoned_captures_total", labels={"result": "saved"})
        self.logger.info("Abandoned order %s captured", row.id, extra={"phone": row.phone})
        return CaptureOutcome(True, "Abandoned order saved", row)

    def _upsert(self, values: dict) -> None:
        now = datetime.now(timezone.utc)
        insert_factory = _UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)
        if insert_factory is None:
            self._upsert_generic(values, now)
            return

        stmt = insert_factory(AbandonedOrder).values(
            **values,
            status=ABANDONED_STATUS,
            created_at=now,
            updated_at=now,
        )
        # Last write wins for the optional fields; created_at keeps the first capture
        update_columns = {field: stmt.excluded[field] for field in OPTIONAL_FIELDS}
        update_columns["updated_at"] = now
        stmt = stmt.on_conflict_do_update(
            index_elements=["phone", "name"],
            set_=update_columns,
        )
        self.db.execute(stmt)

    def _upsert_generic(self, values: dict, now: datetime) -> None:
        row = (
            self.db.query(AbandonedOrder)
            .filter_by(phone=values["phone"], name=values["name"])
            .with_for_update()
            .first()
        )
        if row is None:
            row = AbandonedOrder(phone=values["phone"], name=values["name"], created_at=now)
            self.db.add(row)
        for field in OPTIONAL_FIELDS:
            setattr(row, field, values[field])
        row.status = ABANDONED_STATUS
        row.updated_at = now
        self.db.flush()

    def reconcile_on_submit(self, phone: Optional[str], name: Optional[str]) -> ReconcileOutcome:
        """Drop the abandoned row of a customer who has just submitted an order."""
        phone, name = _clean(phone), _clean(name)
        if not phone or not name:
            return ReconcileOutcome(True, 0)
        try:
            deleted = (
                self.db.query(AbandonedOrder)
                .filter_by(phone=phone, name=name)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Error removing abandoned order", extra={"phone": phone})
            return ReconcileOutcome(False, 0)

        if deleted:
            increment_counter("abandoned_reconciled_total", amount=deleted)
            record_event("abandoned_order_reconciled", {"phone": phone, "deleted_count": deleted})
            self.logger.info(
                "Removed %d abandoned order(s) after submission",
                deleted,
                extra={"phone": phone, "deleted_count": deleted},
            )
        return ReconcileOutcome(True, deleted)

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def list_abandoned_orders(self) -> List[AbandonedOrder]:
        try:
            rows = (
                self.db.query(AbandonedOrder)
                .order_by(AbandonedOrder.created_at.desc(), AbandonedOrder.id.desc())
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to fetch abandoned orders", cause=exc) from exc
        set_gauge("abandoned_orders_open", len(rows))
        return rows

    def delete_abandoned_order(self, abandoned_id: int) -> int:
        try:
            deleted = (
                self.db.query(AbandonedOrder)
                .filter_by(id=abandoned_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to delete abandoned order", cause=exc) from exc
        if not deleted:
            raise NotFoundError("Abandoned order", abandoned_id)
        return abandoned_id
