from typing import Optional

from flask import Blueprint, current_app, jsonify, request, send_from_directory, url_for

from ..catalog import serialize_category, serialize_product
from ..security import admin_required
from . import get_payload, services

catalog_bp = Blueprint("catalog", __name__)


def build_upload_url(filename: Optional[str]) -> str:
    sanitized = str(filename or "").strip()
    if not sanitized:
        return ""
    if sanitized.startswith(("http://", "https://", "//")):
        return sanitized
    return url_for("catalog.serve_uploaded_file", filename=sanitized, _external=True)


def product_json(product_document):
    return serialize_product(product_document, image_url=build_upload_url)


@catalog_bp.route("/uploads/<path:filename>")
def serve_uploaded_file(filename: str):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)


@catalog_bp.route("/products", methods=["GET"])
def list_products():
    category = (request.args.get("category") or "").strip() or None
    products = services().catalog.list_products(category)
    return jsonify({"products": [product_json(document) for document in products]})


@catalog_bp.route("/products/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product_document = services().catalog.get_product(product_id)
    return jsonify({"product": product_json(product_document)})


@catalog_bp.route("/products", methods=["POST"])
@admin_required
def create_product():
    product_document = services().catalog.create_product(
        get_payload(), image_file=request.files.get("image")
    )
    return jsonify({"message": "Product created", "product": product_json(product_document)}), 201


@catalog_bp.route("/products/<product_id>", methods=["PUT"])
@admin_required
def update_product(product_id: str):
    product_document = services().catalog.update_product(product_id, get_payload())
    return jsonify({"message": "Product updated", "product": product_json(product_document)})


@catalog_bp.route("/products/<product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: str):
    services().catalog.delete_product(product_id)
    return jsonify({"message": "Product deleted successfully"})


@catalog_bp.route("/products/<product_id>/stock", methods=["PUT"])
def update_stock(product_id: str):
    payload = request.get_json(silent=True) or {}
    quantity_change = payload.get("quantityChange", payload.get("quantity_change"))
    current_app.logger.info("Updating stock for product %s by %s", product_id, quantity_change)
    stock = services().catalog.adjust_stock(product_id, quantity_change)
    return jsonify({"message": "Stock updated successfully", "stock": stock})


@catalog_bp.route("/products/<product_id>/image", methods=["PUT"])
@admin_required
def replace_product_image(product_id: str):
    product_document = services().catalog.replace_image(product_id, request.files.get("image"))
    return jsonify({"message": "Image updated", "product": product_json(product_document)})


@catalog_bp.route("/products/<product_id>/image", methods=["DELETE"])
@admin_required
def delete_product_image(product_id: str):
    product_document = services().catalog.remove_image(product_id)
    return jsonify({"message": "Image removed", "product": product_json(product_document)})


# Categories


@catalog_bp.route("/categories", methods=["GET"])
def list_categories():
    categories = services().catalog.list_categories()
    return jsonify({"categories": [serialize_category(document) for document in categories]})


@catalog_bp.route("/categories", methods=["POST"])
@admin_required
def create_category():
    payload = request.get_json(silent=True) or {}
    category_document = services().catalog.create_category(payload.get("name"))
    return (
        jsonify(
            {
                "message": "Category created successfully.",
                "category": serialize_category(category_document),
            }
        ),
        201,
    )


@catalog_bp.route("/categories/<category_id>", methods=["DELETE"])
@admin_required
def delete_category(category_id: str):
    category_document = services().catalog.delete_category(category_id)
    return jsonify(
        {
            "message": "Category deleted successfully",
            "category": {"id": str(category_document["_id"])},
        }
    )
