from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, abort, jsonify, request

from storefront.blueprints.auth import admin_required, is_admin
from storefront.database import get_db
from storefront.services.abandoned_order_service import AbandonedOrderService

abandoned_bp = Blueprint("abandoned", __name__)


def _get_abandoned_service() -> AbandonedOrderService:
    return AbandonedOrderService(get_db())


@abandoned_bp.route("/api/abandoned", methods=["GET"])
@admin_required
def api_list_abandoned():
    rows = _get_abandoned_service().list_abandoned_orders()
    return jsonify({"abandonedOrders": [row.to_dict() for row in rows]})


@abandoned_bp.route("/api/abandoned", methods=["POST"])
def api_capture_abandoned():
    payload = request.get_json(silent=True)
    outcome = _get_abandoned_service().capture(payload)

    response: Dict[str, Any] = {"success": outcome.success, "message": outcome.message}
    if outcome.abandoned_order is not None:
        response["abandonedOrder"] = outcome.abandoned_order.to_dict()
    if outcome.success:
        return jsonify(response), 200
    return jsonify(response), 400 if outcome.rejected else 503


@abandoned_bp.route("/api/abandoned", methods=["DELETE"])
def api_delete_abandoned():
    abandoned_id = request.args.get("id")
    phone = request.args.get("phone")
    name = request.args.get("name")
    service = _get_abandoned_service()

    if abandoned_id:
        if not is_admin():
            abort(403)
        try:
            abandoned_id_int = int(abandoned_id)
        except ValueError:
            return jsonify({"error": "Invalid abandoned order id"}), 400
        service.delete_abandoned_order(abandoned_id_int)
        return jsonify({"success": True, "id": abandoned_id_int})

    if phone and name:
        outcome = service.reconcile_on_submit(phone, name)
        return jsonify({
            "success": outcome.success,
            "deleted": outcome.deleted_count > 0,
            "count": outcome.deleted_count,
        }), 200 if outcome.success else 503

    return jsonify({"error": "Either id or both phone and name are required"}), 400
