import logging
from typing import Dict, Tuple

from pymongo.errors import DuplicateKeyError

from .errors import NotFoundError, ValidationError
from .helpers import isoformat, safe_float, utcnow

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, store, orders, gateway):
        self.store = store
        self.orders = orders
        self.gateway = gateway

    def initiate(self, item_id, total_price) -> Dict:
        order_document = self.orders.get_order(item_id, required=False) if item_id else None
        expected_price = safe_float(total_price, None)
        if (
            not order_document
            or expected_price is None
            or safe_float(order_document.get("price"), None) != expected_price
        ):
            raise ValidationError("Item not found or price mismatch.")

        payment = self.gateway.initiate(expected_price, str(order_document["_id"]))
        return {
            "payment": payment,
            "form_url": self.gateway.form_url,
            "purchased_item_data": {
                "id": str(order_document["_id"]),
                "payment_method": "esewa",
                "price": order_document.get("price"),
                "status": order_document.get("status"),
                "purchase_date": isoformat(order_document.get("purchase_date")),
            },
        }

    def reconcile(self, encoded_data: str, query: Dict) -> Tuple[Dict, Dict]:
        payment_info = self.gateway.verify(encoded_data)
        decoded_data = payment_info["decoded_data"]
        transaction_uuid = payment_info["response"].get("transaction_uuid")

        order_document = (
            self.orders.get_order(transaction_uuid, required=False) if transaction_uuid else None
        )
        if not order_document:
            raise NotFoundError("Purchase not found")

        transaction_code = decoded_data.get("transaction_code")
        payment_query = {"transaction_id": transaction_code, "gateway": self.gateway.name}
        payment_document = self.store.payments.find_one(payment_query)
        if payment_document:
            logger.info("Payment %s was already recorded", transaction_code)
            self._complete_order(order_document)
        else:
            payment_document = {
                "pidx": transaction_code,
                "transaction_id": transaction_code,
                "order_ref": str(order_document["_id"]),
                "amount": order_document.get("price"),
                "verification": payment_info,
                "query": dict(query or {}),
                "gateway": self.gateway.name,
                "status": "success",
                "created_at": utcnow(),
            }
            try:
                with self.store.transaction() as unit:
                    result = self.store.payments.insert_one(payment_document, session=unit.session)
                    unit.on_rollback(self.store.payments.delete_one, {"_id": result.inserted_id})
                    self._complete_order(order_document, unit)
            except DuplicateKeyError:
                # an overlapping callback recorded the same transaction first
                logger.info("Payment %s was recorded concurrently", transaction_code)
                payment_document = self.store.payments.find_one(payment_query)
                self._complete_order(order_document)

        logger.info(
            "Recorded %s payment %s for order %s",
            self.gateway.name,
            transaction_code,
            order_document["_id"],
        )
        order_document["status"] = "completed"
        return payment_document, order_document

    def _complete_order(self, order_document: Dict, unit=None):
        self.store.orders.update_one(
            {"_id": order_document["_id"]},
            {"$set": {"status": "completed", "updated_at": utcnow()}},
            session=unit.session if unit else None,
        )
        if unit:
            unit.on_rollback(
                self.store.orders.update_one,
                {"_id": order_document["_id"]},
                {"$set": {"status": order_document.get("status", "pending")}},
            )
