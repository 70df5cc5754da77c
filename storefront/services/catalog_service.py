from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.errors import NotFoundError, StorageError, ValidationError
from storefront.models import Product, ProductStatus
from storefront.services.pricing_service import PriceQuote, resolve_price, to_money, validate_tiers


class CatalogService:
    """Product reads and admin writes, including tier validation."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def list_products(self, include_inactive: bool = False) -> List[Product]:
        query = self.db.query(Product)
        if not include_inactive:
            query = query.filter(Product.status == ProductStatus.ACTIVE)
        try:
            return query.order_by(Product.id).all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to fetch products", cause=exc) from exc

    def get_product(self, product_id: int) -> Product:
        try:
            product = self.db.get(Product, product_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to fetch product", cause=exc) from exc
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    def quote(self, product_id: int, quantity: int) -> PriceQuote:
        return resolve_price(self.get_product(product_id), quantity)

    def create_product(self, payload: Mapping[str, Any]) -> Product:
        product = Product(status=ProductStatus.ACTIVE, pricing_tiers=[])
        self._apply_payload(product, payload, creating=True)
        self.db.add(product)
        self._commit("create product")
        self.logger.info("Product %s created", product.id, extra={"product_id": product.id})
        return product

    def update_product(self, product_id: int, payload: Mapping[str, Any]) -> Product:
        product = self.get_product(product_id)
        try:
            self._apply_payload(product, payload, creating=False)
        except ValidationError:
            # Discard the fields applied before the failing one
            self.db.rollback()
            raise
        self._commit("update product")
        self.logger.info("Product %s updated", product.id, extra={"product_id": product.id})
        return product

    def _apply_payload(self, product: Product, payload: Mapping[str, Any], creating: bool) -> None:
        if not isinstance(payload, Mapping):
            raise ValidationError("Invalid product data", {"payload": "must be an object"})
        errors: Dict[str, str] = {}

        if creating or "title" in payload:
            title = str(payload.get("title") or "").strip()
            if not title:
                errors["title"] = "Title is required"
            else:
                product.title = title

        if "description" in payload:
            product.description = payload.get("description") or ""

        for key, attribute, required in (
            ("currentPrice", "current_price", True),
            ("originalPrice", "original_price", False),
        ):
            if key not in payload:
                if creating and required:
                    errors[key] = "Price is required"
                continue
            raw = payload.get(key)
            if raw is None and not required:
                setattr(product, attribute, None)
                continue
            try:
                amount = to_money(raw)
            except ValidationError:
                errors[key] = "Must be a number"
                continue
            if amount < 0:
                errors[key] = "Must not be negative"
                continue
            setattr(product, attribute, amount)

        if "status" in payload:
            try:
                product.status = ProductStatus(payload["status"])
            except ValueError:
                errors["status"] = f"Unknown status {payload['status']!r}"

        if "pricingTiers" in payload:
            try:
                tiers = validate_tiers(payload.get("pricingTiers"))
            except ValidationError as exc:
                errors.update(exc.details or {"pricingTiers": str(exc)})
            else:
                product.pricing_tiers = [tier.to_dict() for tier in tiers]

        if errors:
            raise ValidationError("Invalid product data", errors)

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Failed to %s", action)
            raise StorageError(f"Failed to {action}", cause=exc) from exc

    def resync_product_id_sequence(self) -> Dict[str, Any]:
        """
        Point the product id sequence past the highest stored id.

        Needed after bulk loads that insert explicit ids. Only PostgreSQL keeps
        a separate sequence; other dialects report ``supported: False``.
        """
        dialect = self.db.get_bind().dialect.name
        try:
            max_id: Optional[int] = self.db.query(func.max(Product.id)).scalar()
            next_id = (max_id or 0) + 1
            if dialect != "postgresql":
                return {"supported": False, "dialect": dialect, "maxId": max_id or 0, "nextId": next_id}
            self.db.execute(
                text("SELECT setval(pg_get_serial_sequence(:table, 'id'), :next_id, false)"),
                {"table": f'"{Product.__tablename__}"', "next_id": next_id},
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Failed to reset product id sequence")
            raise StorageError("Failed to reset sequence", cause=exc) from exc

        self.logger.info("Product id sequence reset, next id %d", next_id, extra={"product_id": next_id})
        return {"supported": True, "dialect": dialect, "maxId": max_id or 0, "nextId": next_id}
