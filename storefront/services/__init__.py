from .pricing_service import PricingService, PricingTier, PriceQuote, resolve_price, synthesize_default_tiers
from .order_id_service import OrderIdAllocator
from .abandoned_order_service import AbandonedOrderService, count_filled_fields
from .order_service import OrderSubmissionService
from .catalog_service import CatalogService

__all__ = [
    "PricingService",
    "PricingTier",
    "PriceQuote",
    "resolve_price",
    "synthesize_default_tiers",
    "OrderIdAllocator",
    "AbandonedOrderService",
    "count_filled_fields",
    "OrderSubmissionService",
    "CatalogService",
]
