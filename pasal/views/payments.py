from flask import Blueprint, current_app, jsonify, redirect, request

from ..errors import ServiceError
from . import services

payments_bp = Blueprint("payments", __name__)


@payments_bp.route("/initialize-esewa", methods=["POST"])
def initialize_esewa():
    payload = request.get_json(silent=True) or {}
    result = services().payments.initiate(
        payload.get("itemId", payload.get("item_id")),
        payload.get("totalPrice", payload.get("total_price")),
    )
    return jsonify({"success": True, **result})


@payments_bp.route("/complete-payment", methods=["GET"])
def complete_payment():
    try:
        services().payments.reconcile(request.args.get("data"), request.args.to_dict())
    except ServiceError as exc:
        current_app.logger.error("Error completing eSewa payment: %s", exc.message)
        return (
            jsonify(
                {
                    "success": False,
                    "message": "An error occurred during payment verification",
                    "error": exc.message,
                }
            ),
            exc.status_code,
        )

    return redirect(current_app.config["FRONTEND_URL"])
