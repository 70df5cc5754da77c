from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import admin_required
from storefront.database import get_db
from storefront.services.order_service import OrderSubmissionService

orders_bp = Blueprint("orders", __name__)

# Order IDs start with "#", so clients send them URL-encoded (%23QE0001).


def _get_order_service() -> OrderSubmissionService:
    return OrderSubmissionService(get_db())


@orders_bp.route("/api/orders", methods=["POST"])
def api_submit_order():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form.to_dict()
    order = _get_order_service().submit_order(payload)
    return jsonify({"order": order.to_dict()}), 201


@orders_bp.route("/api/orders", methods=["GET"])
@admin_required
def api_list_orders():
    orders = _get_order_service().list_orders(status=request.args.get("status"))
    return jsonify({"orders": [order.to_dict() for order in orders]})


@orders_bp.route("/api/orders/<order_id>", methods=["GET"])
@admin_required
def api_get_order(order_id: str):
    return jsonify({"order": _get_order_service().get_order(order_id).to_dict()})


@orders_bp.route("/api/orders/<order_id>/status", methods=["PUT"])
@admin_required
def api_update_order_status(order_id: str):
    payload = request.get_json(silent=True)
    status = payload.get("status") if isinstance(payload, dict) else None
    order = _get_order_service().update_status(order_id, status)
    return jsonify({"order": order.to_dict()})


@orders_bp.route("/api/orders/<order_id>", methods=["DELETE"])
@admin_required
def api_delete_order(order_id: str):
    deleted_id = _get_order_service().delete_order(order_id)
    return jsonify({"success": True, "id": deleted_id})
