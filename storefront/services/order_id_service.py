"""
Sequential, human-readable order identifiers (``#QE0001``, ``#QE0002`` ...).

The next number is derived from the committed orders, and the primary key on
``Order.id`` makes the insert the point of truth: two requests that compute
the same number race on the insert, the loser gets an ``IntegrityError``,
rolls back and recomputes from a fresh read.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Optional

from sqlalchemy import Numeric, and_, cast, func, not_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.errors import OrderIdConflictError, StorageError
from storefront.models import Order
from storefront.observability import increment_counter


class OrderIdAllocator:
    """Allocates order IDs and inserts orders under them without duplicates."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.prefix = config.ORDER_ID_PREFIX
        self.min_digits = config.ORDER_ID_MIN_DIGITS
        self.max_attempts = max(1, config.ORDER_ID_MAX_RETRIES)
        self._pattern = re.compile(rf"^{re.escape(self.prefix)}(\d+)$")
        self.logger = logging.getLogger(__name__)

    def format_order_id(self, number: int) -> str:
        # Minimum width only; 10000 becomes #QE10000
        return f"{self.prefix}{number:0{self.min_digits}d}"

    def parse_order_number(self, order_id: Optional[str]) -> Optional[int]:
        if not order_id:
            return None
        match = self._pattern.match(order_id)
        if not match:
            return None
        return int(match.group(1))

    def highest_order_number(self, order_ids: Iterable[str]) -> int:
        """Largest numeric suffix among ``order_ids``; malformed IDs are ignored."""
        highest = 0
        for order_id in order_ids:
            number = self.parse_order_number(order_id)
            if number is not None and number > highest:
                highest = number
        return highest

    def next_order_id(self) -> str:
        """
        Compute the ID that follows every committed order.

        Suffixes are compared as integers, so ``#QE0100`` follows ``#QE0099``.
        The result is only a candidate until it is inserted; use
        :meth:`persist_with_fresh_id` to claim it.
        """
        try:
            highest = self._highest_number_in_store()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Failed to read existing order IDs")
            raise StorageError("Could not read existing order IDs", cause=exc) from exc
        return self.format_order_id(highest + 1)

    def _highest_number_in_store(self) -> int:
        well_formed = self._well_formed_id_clause(self.db.get_bind().dialect.name)
        if well_formed is None:
            rows = self.db.query(Order.id).filter(Order.id.like(f"{self.prefix}%")).all()
            return self.highest_order_number(row[0] for row in rows)

        suffix = func.substr(Order.id, len(self.prefix) + 1)
        highest = self.db.query(func.max(cast(suffix, Numeric(38, 0)))).filter(well_formed).scalar()
        return int(highest or 0)

    def _well_formed_id_clause(self, dialect: str):
        """SQL filter matching ``<prefix><digits>`` exactly, or None when the dialect has no pattern operator."""
        if dialect == "postgresql":
            return Order.id.op("~")(f"^{re.escape(self.prefix)}[0-9]+$")
        if dialect == "sqlite":
            glob_prefix = "".join(f"[{char}]" if char in "*?[" else char for char in self.prefix)
            return and_(
                Order.id.op("GLOB")(f"{glob_prefix}[0-9]*"),
                not_(Order.id.op("GLOB")(f"{glob_prefix}*[^0-9]*")),
            )
        return None

    def persist_with_fresh_id(self, build_order: Callable[[str], Order]) -> Order:
        """
        Insert the order produced by ``build_order(order_id)`` under a fresh ID.

        Each attempt re-reads the highest committed ID and inserts in its own
        transaction. A primary-key collision means a concurrent request won
        that number, so the attempt is rolled back and retried. When every
        attempt collides, ``OrderIdConflictError`` is raised; a duplicate is
        never returned.
        """
        for attempt in range(1, self.max_attempts + 1):
            order_id = self.next_order_id()
            order = build_order(order_id)
            try:
                self.db.add(order)
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                if not self._order_id_taken(order_id):
                    self.logger.exception("Order insert violated a constraint other than the order ID")
                    raise StorageError("Order could not be stored", cause=exc) from exc
                increment_counter("order_id_conflicts_total")
                self.logger.warning(
                    "Order ID %s was taken concurrently, retrying",
                    order_id,
                    extra={"order_id": order_id, "attempt": attempt},
                )
                continue
            except SQLAlchemyError as exc:
                self.db.rollback()
                self.logger.exception("Order insert failed")
                raise StorageError("Order could not be stored", cause=exc) from exc

            self.logger.info("Allocated order ID %s", order_id, extra={"order_id": order_id, "attempt": attempt})
            return order

        raise OrderIdConflictError(self.max_attempts)

    def _order_id_taken(self, order_id: str) -> bool:
        try:
            return self.db.query(Order.id).filter(Order.id == order_id).first() is not None
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Could not verify order ID", cause=exc) from exc
