"""Storefront order desk: order IDs, abandoned checkouts and tiered pricing."""

__version__ = "1.0.0"
