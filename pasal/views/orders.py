from flask import Blueprint, current_app, jsonify, request

from ..orders import serialize_order
from ..security import admin_required
from . import services

orders_bp = Blueprint("orders", __name__)


@orders_bp.route("/orders", methods=["POST"])
def place_order():
    payload = request.get_json(silent=True) or {}
    current_app.logger.info(
        "Order received: %s for user %s",
        payload.get("orderId") or payload.get("order_id"),
        payload.get("userId") or payload.get("user_id"),
    )
    order_document = services().orders.place_order(payload)
    return (
        jsonify({"message": "Order placed successfully", "order": serialize_order(order_document)}),
        201,
    )


@orders_bp.route("/orders/<order_id>", methods=["DELETE"])
def cancel_order(order_id: str):
    services().orders.cancel_order(order_id)
    return jsonify({"message": "Order deleted and stock restored successfully"})


@orders_bp.route("/orders/<user_id>", methods=["GET"])
def list_user_orders(user_id: str):
    orders = services().orders.list_orders(user_id)
    return jsonify({"orders": [serialize_order(document) for document in orders]})


@orders_bp.route("/orders", methods=["GET"])
@admin_required
def list_all_orders():
    orders = services().orders.list_orders()
    return jsonify({"orders": [serialize_order(document) for document in orders]})


@orders_bp.route("/orders/<order_id>", methods=["PUT"])
@admin_required
def update_order(order_id: str):
    payload = request.get_json(silent=True) or {}
    order_document = services().orders.update_order(order_id, payload)
    return jsonify({"message": "Order updated", "order": serialize_order(order_document)})
