"""Order placement, cancellation and administrative updates.

Placement reserves stock for every line item and cancellation gives it back.
Both run inside ``Store.transaction()`` so a failure part way through leaves
products and orders exactly as they were.
"""
import logging
from typing import Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from .errors import CancellationError, NotFoundError, ValidationError
from .helpers import (
    clean_text,
    isoformat,
    maybe_object_id,
    normalize_email,
    pick,
    safe_float,
    safe_int,
    to_object_id,
    utcnow,
)

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("esewa", "khalti", "Cash in hand")
DEFAULT_PAYMENT_METHOD = "Cash in hand"
ORDER_STATUSES = ("pending", "completed", "refunded")
DELIVERY_STATUSES = ("in progress", "completed")


def normalize_order_item(payload) -> Dict:
    if not isinstance(payload, dict):
        raise ValidationError("Each ordered product must be an object.")

    product_identifier = clean_text(pick(payload, "product_id", "productId", "id", "product"))
    if not product_identifier:
        raise ValidationError("Each ordered product needs a product reference.")

    quantity = safe_int(payload.get("quantity"))
    if quantity is None or quantity <= 0:
        raise ValidationError("Quantity must be a positive whole number.")

    return {
        "product_id": to_object_id(product_identifier, "product"),
        "name": clean_text(pick(payload, "name", "title", default="")),
        "quantity": quantity,
        "image": clean_text(pick(payload, "image", "image_url", "imageUrl", default="")),
        "description": clean_text(pick(payload, "description", "desc", default="")),
    }


def serialize_order(order_document) -> Optional[Dict]:
    if not order_document:
        return None
    return {
        "id": str(order_document.get("_id")),
        "order_id": order_document.get("order_id", ""),
        "user_id": order_document.get("user_id", ""),
        "username": order_document.get("username", ""),
        "phone_number": order_document.get("phone_number", ""),
        "email": order_document.get("email", ""),
        "address": order_document.get("address", ""),
        "products": [
            {**item, "product_id": str(item.get("product_id"))}
            for item in order_document.get("products") or []
        ],
        "price": order_document.get("price", 0),
        "payment_method": order_document.get("payment_method", DEFAULT_PAYMENT_METHOD),
        "status": order_document.get("status", "pending"),
        "delivery_status": order_document.get("delivery_status", "in progress"),
        "purchase_date": isoformat(order_document.get("purchase_date")),
        "updated_at": isoformat(order_document.get("updated_at")),
    }


class OrderService:
    def __init__(self, store, catalog, reserve_stock: bool = True, verify_total: bool = False):
        self.store = store
        self.catalog = catalog
        self.reserve_stock = reserve_stock
        self.verify_total = verify_total

    def place_order(self, payload: Dict) -> Dict:
        payment_method = clean_text(pick(payload, "paymentMethod", "payment_method", default=""))
        if payment_method and payment_method not in PAYMENT_METHODS:
            raise ValidationError("Invalid payment method")

        order_reference = clean_text(pick(payload, "orderId", "order_id"))
        user_id = clean_text(pick(payload, "userId", "user_id"))
        if not order_reference or not user_id:
            raise ValidationError("Order reference and user are required.")
        if maybe_object_id(order_reference) is not None:
            raise ValidationError("Order reference must not be a 24-character hex identifier.")


        contact = {
            "username": clean_text(payload.get("username")),
            "phone_number": clean_text(pick(payload, "phoneNumber", "phone_number", "phonenumber")),
            "email": normalize_email(payload.get("email")),
            "address": clean_text(payload.get("address")),
        }
        missing = [field for field, value in contact.items() if not value]
        if missing:
            raise ValidationError(f"Missing contact details: {', '.join(missing)}.")

        raw_items = payload.get("products")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("Include at least one product to place an order.")
        items = [normalize_order_item(entry) for entry in raw_items]

        price = safe_float(payload.get("price"), None)
        if price is None or price < 0:
            raise ValidationError("Order price must be a non-negative number.")

        if self.store.orders.find_one({"order_id": order_reference}):
            raise ValidationError("An order with this reference already exists.")

        if self.verify_total:
            self._check_total(items, price)

        timestamp = utcnow()
        order_document = {
            "order_id": order_reference,
            "user_id": user_id,
            **contact,
            "products": items,
            "price": price,
            "payment_method": payment_method or DEFAULT_PAYMENT_METHOD,
            "status": "pending",
            "delivery_status": "in progress",
            "purchase_date": timestamp,
            "created_at": timestamp,
            "updated_at": timestamp,
        }

        with self.store.transaction() as unit:
            if self.reserve_stock:
                products = self.catalog.find_products(
                    [item["product_id"] for item in items], session=unit.session
                )
                for item in items:
                    product_document = products.get(item["product_id"])
                    if not product_document:
                        raise NotFoundError(f"Product {item['product_id']} not found")
                    self.catalog.reserve_stock(unit, product_document, item["quantity"])

            try:
                result = self.store.orders.insert_one(order_document, session=unit.session)
            except DuplicateKeyError:
                raise ValidationError("An order with this reference already exists.")
            unit.on_rollback(self.store.orders.delete_one, {"_id": result.inserted_id})

        order_document["_id"] = result.inserted_id
        logger.info(
            "Placed order %s for user %s (%s items, %s)",
            order_reference,
            user_id,
            len(items),
            order_document["payment_method"],
        )
        return order_document

    def _check_total(self, items: List[Dict], price: float):
        products = self.catalog.find_products([item["product_id"] for item in items])
        expected = 0.0
        for item in items:
            product_document = products.get(item["product_id"])
            if not product_document:
                raise NotFoundError(f"Product {item['product_id']} not found")
            expected += safe_float(product_document.get("price"), 0.0) * item["quantity"]
        if abs(round(expected, 2) - price) >= 0.005:
            raise ValidationError("Order price does not match the current product prices.")

    def find_order(self, identifier, required: bool = True) -> Optional[Dict]:
        """Look an order up by its database id, or by its order reference.

        References can never take the shape of an ObjectId, so the two
        lookups cannot collide.
        """
        object_id = maybe_object_id(identifier)
        if object_id is not None:
            return self.get_order(object_id, required=required)
        order_document = self.store.orders.find_one({"order_id": str(identifier)})
        if not order_document and required:
            raise NotFoundError("Order not found")
        return order_document

    def get_order(self, order_id, required: bool = True) -> Optional[Dict]:
        object_id = maybe_object_id(order_id)
        order_document = (
            self.store.orders.find_one({"_id": object_id}) if object_id is not None else None
        )
        if not order_document and required:
            raise NotFoundError("Order not found")
        return order_document

    def cancel_order(self, identifier) -> Dict:
        order_document = self.find_order(identifier)
        items = order_document.get("products") or []

        products = self.catalog.find_products([item["product_id"] for item in items])
        for item in items:
            if item["product_id"] not in products:
                logger.error(
                    "Cannot cancel order %s: product %s no longer exists",
                    order_document["_id"],
                    item["product_id"],
                )
                raise CancellationError(
                    f"Failed to delete order and restore stock: product {item['product_id']} not found"
                )

        with self.store.transaction() as unit:
            for item in items:
                self.catalog.restore_stock(unit, item["product_id"], item["quantity"])
            self.store.orders.delete_one({"_id": order_document["_id"]}, session=unit.session)
            unit.on_rollback(self.store.orders.insert_one, order_document)

        logger.info("Cancelled order %s and restored stock for %s items", order_document["_id"], len(items))
        return order_document

    def list_orders(self, user_id: Optional[str] = None):
        query = {"user_id": str(user_id)} if user_id else {}
        return list(self.store.orders.find(query).sort([("purchase_date", -1), ("_id", -1)]))

    def update_order(self, identifier, payload: Dict) -> Dict:
        updates: Dict[str, object] = {}

        status = pick(payload, "status")
        if status is not None:
            if status not in ORDER_STATUSES:
                raise ValidationError(f"Status must be one of: {', '.join(ORDER_STATUSES)}.")
            updates["status"] = status

        delivery_status = pick(payload, "deliveryStatus", "delivery_status")
        if delivery_status is not None:
            if delivery_status not in DELIVERY_STATUSES:
                raise ValidationError(
                    f"Delivery status must be one of: {', '.join(DELIVERY_STATUSES)}."
                )
            updates["delivery_status"] = delivery_status

        if not updates:
            raise ValidationError("Provide a status or delivery status to update.")

        order_document = self.find_order(identifier)
        updates["updated_at"] = utcnow()
        self.store.orders.update_one({"_id": order_document["_id"]}, {"$set": updates})
        order_document.update(updates)
        return order_document
