from flask import Blueprint, jsonify, request
from flask_jwt_extended import create_access_token

from ..security import admin_required
from ..users import serialize_user
from . import services

accounts_bp = Blueprint("accounts", __name__)


@accounts_bp.route("/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    user_document = services().users.register(payload)
    return (
        jsonify(
            {
                "message": "Registration successful! Please check your email to activate your account.",
                "user": serialize_user(user_document),
            }
        ),
        201,
    )


@accounts_bp.route("/activate/<token>", methods=["GET"])
def activate(token: str):
    services().users.activate(token)
    return jsonify({"message": "Account activated successfully. You can now login."})


@accounts_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    user_document = services().users.authenticate(
        payload.get("username"), str(payload.get("password") or "")
    )
    role = user_document.get("role", "user")
    token = create_access_token(
        identity=str(user_document["_id"]), additional_claims={"role": role}
    )
    return jsonify(
        {
            "status": "Success",
            "access_token": token,
            "user_id": str(user_document["_id"]),
            "role": role,
        }
    )


@accounts_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    payload = request.get_json(silent=True) or {}
    services().users.begin_password_reset(payload.get("email"))
    return jsonify({"message": "If this email exists, a reset link has been sent."})


@accounts_bp.route("/reset-password/<token>", methods=["POST"])
def reset_password(token: str):
    payload = request.get_json(silent=True) or {}
    new_password = payload.get("newPassword", payload.get("new_password"))
    services().users.reset_password(token, new_password)
    return jsonify({"message": "Password updated successfully. You can now login."})


@accounts_bp.route("/users/<user_id>/profile", methods=["GET"])
def get_profile(user_id: str):
    user_document = services().users.find_by_id(user_id)
    return jsonify({"user": serialize_user(user_document)})


# Admin


@accounts_bp.route("/users/non-admins", methods=["GET"])
@admin_required
def list_customers():
    users = services().users.list_by_role(admins=False)
    return jsonify({"users": [serialize_user(document) for document in users]})


@accounts_bp.route("/admins", methods=["GET"])
@admin_required
def list_admins():
    admins = services().users.list_by_role(admins=True)
    return jsonify({"users": [serialize_user(document) for document in admins]})


@accounts_bp.route("/users/<user_id>/role", methods=["PUT"])
@admin_required
def update_user_role(user_id: str):
    payload = request.get_json(silent=True) or {}
    user_document = services().users.set_role(user_id, payload.get("role"))
    return jsonify(
        {
            "message": f"Role updated to {user_document['role']}.",
            "user": serialize_user(user_document),
        }
    )


@accounts_bp.route("/users/<user_id>/status", methods=["PUT"])
@admin_required
def update_user_status(user_id: str):
    payload = request.get_json(silent=True) or {}
    user_document = services().users.set_active(
        user_id, payload.get("is_active", payload.get("isActive"))
    )
    return jsonify({"message": "User status updated.", "user": serialize_user(user_document)})


@accounts_bp.route("/users/<user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id: str):
    services().users.delete(user_id)
    return jsonify({"message": "User deleted successfully"})
