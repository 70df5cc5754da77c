# storefront/models.py
from enum import Enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
# This ensures all models use the same SQLAlchemy metadata, preventing conflicts.
from storefront.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


ABANDONED_STATUS = "unsubmitted"


class Product(Base):
    __tablename__ = 'Product'
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    current_price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2))
    # List of {"quantity", "price", "discount"} mappings; empty means flat pricing
    pricing_tiers = Column(JSON, default=list)
    status = Column(
        SAEnum(ProductStatus, name="product_status", native_enum=False, validate_strings=True,
               values_callable=lambda members: [m.value for m in members]),
        nullable=False,
        default=ProductStatus.ACTIVE,
    )
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description or "",
            "currentPrice": float(self.current_price),
            "originalPrice": float(self.original_price) if self.original_price is not None else None,
            "pricingTiers": self.pricing_tiers or [],
            "status": self.status.value if self.status else None,
        }


class Order(Base):
    __tablename__ = 'Order'
    # "#QE0001"-style identifier; the primary key constraint guards allocation races
    id = Column(String(32), primary_key=True)
    customer = Column(String(255), nullable=False)
    phone = Column(String(64), nullable=False, index=True)
    city = Column(String(255), nullable=False)
    address = Column(Text, nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True,
               values_callable=lambda members: [m.value for m in members]),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer": self.customer,
            "phone": self.phone,
            "city": self.city,
            "address": self.address,
            "items": [item.to_dict() for item in self.items],
            "total": float(self.total),
            "status": self.status.value if self.status else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class OrderItem(Base):
    __tablename__ = 'OrderItem'
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey('Order.id', ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(Integer, ForeignKey('Product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "unitPrice": float(self.unit_price),
            "lineTotal": float(self.line_total),
        }


class AbandonedOrder(Base):
    __tablename__ = 'AbandonedOrder'
    __table_args__ = (
        UniqueConstraint("phone", "name", name="uq_abandoned_natural_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    phone = Column(String(64), nullable=False, index=True)
    city = Column(String(255), nullable=False, default="")
    address = Column(Text, nullable=False, default="")
    quantity = Column(String(32), nullable=False, default="")
    product_id = Column(String(64), nullable=False, default="")
    status = Column(String(20), nullable=False, default=ABANDONED_STATUS)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "city": self.city or "",
            "address": self.address or "",
            "quantity": self.quantity or "",
            "product_id": self.product_id or "",
            "status": ABANDONED_STATUS,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
