from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import admin_required, is_admin
from storefront.config import Config
from storefront.database import get_db
from storefront.errors import ValidationError
from storefront.services.catalog_service import CatalogService
from storefront.services.pricing_service import PricingService

catalog_bp = Blueprint("catalog", __name__)


def _get_catalog_service() -> CatalogService:
    return CatalogService(get_db())


@catalog_bp.route("/api/products", methods=["GET"])
def api_list_products():
    include_inactive = is_admin() and request.args.get("all") == "1"
    products = _get_catalog_service().list_products(include_inactive=include_inactive)
    return jsonify({"products": [product.to_dict() for product in products]})


@catalog_bp.route("/api/products/<int:product_id>", methods=["GET"])
def api_get_product(product_id: int):
    return jsonify({"product": _get_catalog_service().get_product(product_id).to_dict()})


@catalog_bp.route("/api/products/<int:product_id>/quote", methods=["GET"])
def api_quote_product(product_id: int):
    quantity = request.args.get("quantity", type=int)
    if quantity is None:
        raise ValidationError("Quantity must be a positive integer", {"quantity": "required"})
    quote = _get_catalog_service().quote(product_id, quantity)
    response = quote.to_dict()
    response.update({"productId": product_id, "quantity": quantity, "currency": Config.CURRENCY})
    return jsonify(response)


@catalog_bp.route("/api/products", methods=["POST"])
@admin_required
def api_create_product():
    payload = request.get_json(silent=True) or {}
    product = _get_catalog_service().create_product(payload)
    return jsonify({"product": product.to_dict()}), 201


@catalog_bp.route("/api/products/<int:product_id>", methods=["PUT"])
@admin_required
def api_update_product(product_id: int):
    payload = request.get_json(silent=True) or {}
    product = _get_catalog_service().update_product(product_id, payload)
    return jsonify({"product": product.to_dict()})


@catalog_bp.route("/api/migrate-pricing", methods=["POST"])
@admin_required
def api_migrate_pricing():
    summary = PricingService(get_db()).backfill_default_tiers()
    return jsonify({
        "success": True,
        "message": f"Successfully migrated {summary['updated_count']} products with default pricing tiers",
        "totalProducts": summary["total_products"],
        "updatedCount": summary["updated_count"],
        "skipped": summary["skipped"],
    })


@catalog_bp.route("/api/reset-sequence", methods=["POST"])
@admin_required
def api_reset_sequence():
    result = _get_catalog_service().resync_product_id_sequence()
    return jsonify({"success": True, **result})
