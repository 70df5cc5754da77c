"""
Order submission and admin order management.

Submission runs in a fixed order: validate everything, price every line,
insert under a freshly allocated ID, and only then clear the customer's
abandoned checkout record. Nothing is written before validation passes, and
a failure to clear the abandoned record never fails the order.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.errors import NotFoundError, StorageError, ValidationError
from storefront.models import Order, OrderItem, OrderStatus, Product
from storefront.observability import increment_counter, observe_latency, record_event
from storefront.services.abandoned_order_service import AbandonedOrderService
from storefront.services.order_id_service import OrderIdAllocator
from storefront.services.pricing_service import PriceQuote, resolve_price

CUSTOMER_FIELDS = ("customer", "phone", "city", "address")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number > 0 else None
    return None


class OrderSubmissionService:
    """Turns a checkout payload into a stored, priced order with a unique ID."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        allocator: Optional[OrderIdAllocator] = None,
        abandoned_service: Optional[AbandonedOrderService] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.allocator = allocator or OrderIdAllocator(db_session, config=config)
        self.abandoned_service = abandoned_service or AbandonedOrderService(db_session, config=config)

    # ------------------------------------------------------------------
    # Customer flow
    # ------------------------------------------------------------------
    def submit_order(self, form_data: Optional[Mapping[str, Any]]) -> Order:
        started = time.perf_counter()
        if form_data is None:
            form_data = {}
        if not isinstance(form_data, Mapping):
            raise ValidationError("Order payload must be an object", {"payload": type(form_data).__name__})
        customer, requested_items = self._validate(form_data)
        priced_lines = self._price_lines(requested_items)
        total = sum((quote.line_total for _, _, quote in priced_lines), Decimal("0.00"))

        def build_order(order_id: str) -> Order:
            order = Order(
                id=order_id,
                customer=customer["customer"],
                phone=customer["phone"],
                city=customer["city"],
                address=customer["address"],
                total=total,
                status=OrderStatus.PENDING,
            )
            for position, (product_id, quantity, quote) in enumerate(priced_lines):
                order.items.append(
                    OrderItem(
                        position=position,
                        product_id=product_id,
                        quantity=quantity,
                        unit_price=quote.unit_price,
                        line_total=quote.line_total,
                    )
                )
            return order

        order = self.allocator.persist_with_fresh_id(build_order)
        increment_counter("orders_submitted_total")
        record_event("order_submitted", {"order_id": order.id, "total": float(total)})
        observe_latency("order_submission_latency_ms", (time.perf_counter() - started) * 1000)
        self.logger.info("Order %s submitted", order.id, extra={"order_id": order.id})

        outcome = self.abandoned_service.reconcile_on_submit(order.phone, order.customer)
        if not outcome.success:
            self.logger.warning(
                "Order %s stored but its abandoned checkout record could not be cleared",
                order.id,
                extra={"order_id": order.id, "phone": order.phone},
            )
        return order

    def _validate(self, form_data: Mapping[str, Any]) -> Tuple[Dict[str, str], List[Tuple[int, int]]]:
        errors: Dict[str, str] = {}

        customer = {
            "customer": _text(form_data.get("customer") or form_data.get("name")),
            "phone": _text(form_data.get("phone")),
            "city": _text(form_data.get("city")),
            "address": _text(form_data.get("address")),
        }
        for field in CUSTOMER_FIELDS:
            if not customer[field]:
                errors[field] = "This field is required"

        raw_items = form_data.get("items")
        if raw_items is None and form_data.get("product_id") is not None:
            # Single-product checkout form
            raw_items = [{"product_id": form_data.get("product_id"), "quantity": form_data.get("quantity", 1)}]

        items: List[Tuple[int, int]] = []
        if not isinstance(raw_items, list) or not raw_items:
            errors["items"] = "At least one line item is required"
        else:
            for index, raw in enumerate(raw_items):
                if not isinstance(raw, Mapping):
                    errors[f"items[{index}]"] = "Invalid line item"
                    continue
                product_id = _positive_int(raw.get("product_id", raw.get("productId")))
                quantity = _positive_int(raw.get("quantity"))
                if product_id is None:
                    errors[f"items[{index}].product_id"] = "A valid product is required"
                if quantity is None:
                    errors[f"items[{index}].quantity"] = "Quantity must be a positive integer"
                if product_id is not None and quantity is not None:
                    items.append((product_id, quantity))

        if errors:
            raise ValidationError("Order is incomplete", errors)
        return customer, items

    def _price_lines(self, items: List[Tuple[int, int]]) -> List[Tuple[int, int, PriceQuote]]:
        product_ids = {product_id for product_id, _ in items}
        try:
            products = {
                product.id: product
                for product in self.db.query(Product).filter(Product.id.in_(product_ids)).all()
            }
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to load products", cause=exc) from exc

        errors: Dict[str, str] = {}
        priced: List[Tuple[int, int, PriceQuote]] = []
        for index, (product_id, quantity) in enumerate(items):
            product = products.get(product_id)
            if product is None or not product.is_active:
                errors[f"items[{index}].product_id"] = f"Product {product_id} is not available"
                continue
            priced.append((product_id, quantity, resolve_price(product, quantity)))
        if errors:
            raise ValidationError("Order references unavailable products", errors)
        return priced

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def list_orders(self, status: Optional[str] = None) -> List[Order]:
        """Newest first by numeric order number; IDs outside the #QE scheme sort last."""
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == self._parse_status(status))
        try:
            orders = query.all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to fetch orders", cause=exc) from exc

        def sort_key(order: Order):
            created = order.created_at.timestamp() if order.created_at else 0.0
            return (self.allocator.parse_order_number(order.id) or 0, created)

        return sorted(orders, key=sort_key, reverse=True)

    def get_order(self, order_id: str) -> Order:
        try:
            order = self.db.get(Order, order_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to fetch order", cause=exc) from exc
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def update_status(self, order_id: str, status: Any) -> Order:
        new_status = self._parse_status(status)
        order = self.get_order(order_id)
        old_status = order.status
        order.status = new_status
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to update order", cause=exc) from exc
        increment_counter("order_status_transition_total", labels={"status": new_status.value})
        self.logger.info(
            "Order %s status %s -> %s",
            order_id,
            old_status.value if old_status else None,
            new_status.value,
            extra={"order_id": order_id},
        )
        return order

    def delete_order(self, order_id: str) -> str:
        order = self.get_order(order_id)
        try:
            self.db.delete(order)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to delete order", cause=exc) from exc
        self.logger.info("Order %s deleted", order_id, extra={"order_id": order_id})
        return order_id

    @staticmethod
    def _parse_status(status: Any) -> OrderStatus:
        try:
            return OrderStatus(str(status).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(s.value for s in OrderStatus)
            raise ValidationError(f"Unknown order status {status!r}", {"status": f"must be one of {allowed}"}) from exc
