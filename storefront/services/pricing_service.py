"""
Quantity-tier pricing.

A product may carry a list of pricing tiers, each giving the *total* price
charged for an exact quantity (``{"quantity": 2, "price": 9.0, "discount": 0}``).
Quantities without a matching tier are charged at the flat ``current_price``
per unit. Legacy products without tiers can be backfilled with the default
1/2/3-piece ladder derived from their flat price.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.errors import StorageError, ValidationError
from storefront.models import Product
from storefront.observability import increment_counter, record_event

CENT = Decimal("0.01")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value!r}")
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount


def to_money(value: Any) -> Decimal:
    """Coerce floats, strings and Decimals into a cent-rounded Decimal."""
    return _to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _tier_quantity(value: Any) -> int:
    # JSON numbers may arrive as 2.0; 2.5 and true are not quantities
    if isinstance(value, bool):
        raise ValueError(f"Invalid tier quantity: {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Invalid tier quantity: {value!r}")
        return int(value)
    if isinstance(value, int):
        return value
    raise ValueError(f"Invalid tier quantity: {value!r}")


@dataclass(frozen=True)
class PricingTier:
    quantity: int
    price: Decimal
    discount: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PricingTier":
        return cls(
            quantity=_tier_quantity(raw["quantity"]),
            price=to_money(raw["price"]),
            discount=_to_decimal(raw.get("discount", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        # JSON columns cannot hold Decimal
        discount = float(self.discount)
        return {
            "quantity": self.quantity,
            "price": float(self.price),
            "discount": int(discount) if discount.is_integer() else discount,
        }


@dataclass(frozen=True)
class PriceQuote:
    unit_price: Decimal
    line_total: Decimal
    tier: Optional[PricingTier] = None

    @property
    def from_tier(self) -> bool:
        return self.tier is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unitPrice": float(self.unit_price),
            "lineTotal": float(self.line_total),
            "fromTier": self.from_tier,
        }


def normalize_tiers(raw: Any) -> List[PricingTier]:
    """Parse stored tier JSON, dropping entries that cannot describe a tier."""
    if not isinstance(raw, list):
        return []
    tiers: List[PricingTier] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        try:
            tier = PricingTier.from_dict(entry)
        except (KeyError, TypeError, ValueError, ValidationError, InvalidOperation):
            continue
        if tier.quantity > 0:
            tiers.append(tier)
    return tiers


def validate_tiers(raw: Any) -> List[PricingTier]:
    """Strict counterpart of :func:`normalize_tiers` used when products are written."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("Pricing tiers must be a list", {"pricingTiers": "must be a list"})

    tiers: List[PricingTier] = []
    seen = set()
    for index, entry in enumerate(raw):
        field_name = f"pricingTiers[{index}]"
        if not isinstance(entry, Mapping) or "quantity" not in entry or "price" not in entry:
            raise ValidationError("Invalid pricing tier", {field_name: "quantity and price are required"})
        quantity = entry["quantity"]
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Invalid pricing tier", {field_name: "quantity must be a positive integer"})
        if quantity in seen:
            raise ValidationError("Invalid pricing tier", {field_name: f"duplicate quantity {quantity}"})
        tier = PricingTier.from_dict(entry)
        if tier.price < 0:
            raise ValidationError("Invalid pricing tier", {field_name: "price must not be negative"})
        seen.add(quantity)
        tiers.append(tier)
    return sorted(tiers, key=lambda t: t.quantity)


def synthesize_default_tiers(current_price: Any, count: int = 3) -> List[PricingTier]:
    """Linear tiers for quantities 1..count at the flat unit price."""
    unit_price = to_money(current_price)
    return [
        PricingTier(quantity=quantity, price=(unit_price * quantity).quantize(CENT), discount=Decimal("0"))
        for quantity in range(1, count + 1)
    ]


def resolve_price(product: Product, quantity: int) -> PriceQuote:
    """
    Price ``quantity`` units of ``product``.

    An exact-quantity tier sets the line total directly and the unit price is
    derived from it. Any other quantity is charged at ``current_price`` per unit.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer", {"quantity": str(quantity)})

    for tier in normalize_tiers(product.pricing_tiers):
        if tier.quantity == quantity:
            unit_price = (tier.price / quantity).quantize(CENT, rounding=ROUND_HALF_UP)
            return PriceQuote(unit_price=unit_price, line_total=tier.price, tier=tier)

    # TODO: confirm with product owners whether unmatched quantities should use the nearest lower tier's rate
    unit_price = to_money(product.current_price)
    return PriceQuote(unit_price=unit_price, line_total=(unit_price * quantity).quantize(CENT))


def has_tier_data(raw: Any) -> bool:
    """True when stored tier data is a non-empty list or a non-empty mapping."""
    if isinstance(raw, list):
        return len(raw) > 0
    if isinstance(raw, Mapping):
        return len(raw) > 0
    return False


class PricingService:
    """Catalog-wide pricing maintenance."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def backfill_default_tiers(self) -> Dict[str, int]:
        """
        Give every product without tier data the default tier ladder.

        Products that already hold a non-empty list or mapping are left
        untouched, so a second run changes nothing.
        """
        try:
            products: Iterable[Product] = self.db.query(Product).order_by(Product.id).all()
            total = 0
            updated = 0
            for product in products:
                total += 1
                if has_tier_data(product.pricing_tiers):
                    self.logger.debug("Product %s already has pricing tiers, skipping", product.id)
                    continue
                tiers = synthesize_default_tiers(product.current_price, self.config.DEFAULT_TIER_COUNT)
                product.pricing_tiers = [tier.to_dict() for tier in tiers]
                updated += 1
                self.logger.info(
                    "Product %s backfilled with default pricing tiers",
                    product.id,
                    extra={"product_id": product.id},
                )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Pricing tier backfill failed")
            raise StorageError("Pricing tier backfill failed", cause=exc) from exc

        self.logger.info(
            "Pricing tier backfill finished: %d of %d products updated",
            updated,
            total,
            extra={"updated_count": updated},
        )
        increment_counter("pricing_tiers_backfilled_total", amount=updated)
        record_event("pricing_tiers_backfilled", {"updated_count": updated, "total_products": total})
        return {"total_products": total, "updated_count": updated, "skipped": total - updated}
