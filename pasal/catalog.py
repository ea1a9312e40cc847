"""Products, categories and stock."""
import logging
from typing import Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .errors import NotFoundError, ValidationError
from .helpers import clean_text, isoformat, pick, safe_float, safe_int, to_object_id, utcnow

logger = logging.getLogger(__name__)

PRODUCT_TEXT_FIELDS = ("title", "description", "category")


def serialize_product(product_document, image_url=None) -> Optional[Dict]:
    if not product_document:
        return None
    image = product_document.get("image") or ""
    return {
        "id": str(product_document.get("_id")),
        "title": product_document.get("title", ""),
        "description": product_document.get("description", ""),
        "category": product_document.get("category", ""),
        "price": product_document.get("price", 0),
        "stock": product_document.get("stock", 0),
        "image": image,
        "image_url": image_url(image) if image_url else image,
        "created_at": isoformat(product_document.get("created_at")),
        "updated_at": isoformat(product_document.get("updated_at")),
    }


def serialize_category(category_document) -> Optional[Dict]:
    if not category_document:
        return None
    return {
        "id": str(category_document.get("_id")),
        "name": category_document.get("name", ""),
        "created_at": isoformat(category_document.get("created_at")),
    }


def parse_price(value) -> float:
    price = safe_float(value, None)
    if price is None or price < 0:
        raise ValidationError("Price must be a non-negative number.")
    return round(price, 2)


def parse_stock(value) -> int:
    stock = safe_int(value)
    if stock is None or stock < 0:
        raise ValidationError("Stock must be a whole number of zero or more.")
    return stock


class CatalogService:
    def __init__(self, store, images):
        self.store = store
        self.images = images

    # products

    def create_product(self, payload: Dict, image_file=None) -> Dict:
        title = clean_text(payload.get("title"))
        if not title:
            raise ValidationError("Product title is required.")

        document = {
            "title": title,
            "description": clean_text(pick(payload, "description", "desc", default="")),
            "category": clean_text(payload.get("category")),
            "price": parse_price(payload.get("price")),
            "stock": parse_stock(pick(payload, "stock", default=0)),
            "image": clean_text(payload.get("image")),
        }
        if image_file is not None and getattr(image_file, "filename", ""):
            document["image"] = self.images.save(image_file)

        timestamp = utcnow()
        document["created_at"] = timestamp
        document["updated_at"] = timestamp
        result = self.store.products.insert_one(document)
        document["_id"] = result.inserted_id
        logger.info("Created product %s (%s)", result.inserted_id, title)
        return document

    def list_products(self, category: Optional[str] = None):
        query = {"category": category} if category else {}
        return list(self.store.products.find(query).sort("created_at", -1))

    def get_product(self, product_id) -> Dict:
        object_id = to_object_id(product_id, "product")
        product_document = self.store.products.find_one({"_id": object_id})
        if not product_document:
            raise NotFoundError("Product not found")
        return product_document

    def find_products(self, product_ids, session=None) -> Dict:
        object_ids = [to_object_id(product_id, "product") for product_id in product_ids]
        cursor = self.store.products.find({"_id": {"$in": object_ids}}, session=session)
        return {document["_id"]: document for document in cursor}

    def update_product(self, product_id, payload: Dict) -> Dict:
        object_id = to_object_id(product_id, "product")
        updates: Dict[str, object] = {}

        if "desc" in payload and "description" not in payload:
            payload = {**payload, "description": payload["desc"]}
        for field in PRODUCT_TEXT_FIELDS:
            if field in payload:
                updates[field] = clean_text(payload.get(field))
        if "title" in updates and not updates["title"]:
            raise ValidationError("Product title cannot be empty.")
        if "price" in payload:
            updates["price"] = parse_price(payload.get("price"))
        if "stock" in payload:
            updates["stock"] = parse_stock(payload.get("stock"))

        updates["updated_at"] = utcnow()
        updated = self.store.products.find_one_and_update(
            {"_id": object_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Product not found")
        return updated

    def delete_product(self, product_id) -> Dict:
        object_id = to_object_id(product_id, "product")
        deleted = self.store.products.find_one_and_delete({"_id": object_id})
        if not deleted:
            raise NotFoundError("Product not found")
        self.images.remove(deleted.get("image"))
        logger.info("Deleted product %s", object_id)
        return deleted

    def replace_image(self, product_id, image_file) -> Dict:
        product_document = self.get_product(product_id)
        new_filename = self.images.save(image_file)
        self.store.products.update_one(
            {"_id": product_document["_id"]},
            {"$set": {"image": new_filename, "updated_at": utcnow()}},
        )
        self.images.remove(product_document.get("image"))
        product_document["image"] = new_filename
        return product_document

    def remove_image(self, product_id) -> Dict:
        product_document = self.get_product(product_id)
        self.images.remove(product_document.get("image"))
        self.store.products.update_one(
            {"_id": product_document["_id"]},
            {"$set": {"image": "", "updated_at": utcnow()}},
        )
        product_document["image"] = ""
        return product_document

    # stock

    def adjust_stock(self, product_id, quantity_change) -> int:
        object_id = to_object_id(product_id, "product")
        delta = safe_int(quantity_change)
        if delta is None:
            raise ValidationError("Quantity change must be a whole number.")

        # a single conditional $inc, so the counter never goes below zero
        enough_stock = {"stock": {"$gte": -delta}}
        if delta >= 0:
            enough_stock = {"$or": [enough_stock, {"stock": {"$exists": False}}]}
        updated = self.store.products.find_one_and_update(
            {"_id": object_id, **enough_stock},
            {"$inc": {"stock": delta}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            if not self.store.products.find_one({"_id": object_id}):
                raise NotFoundError("Product not found")
            raise ValidationError("Insufficient stock")

        logger.info("Stock for product %s changed by %s to %s", object_id, delta, updated["stock"])
        return updated["stock"]

    def reserve_stock(self, unit, product_document, quantity: int):
        result = self.store.products.update_one(
            {"_id": product_document["_id"], "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}},
            session=unit.session,
        )
        if result.matched_count == 0:
            raise ValidationError(
                f"Insufficient stock for {product_document.get('title') or product_document['_id']}"
            )
        unit.on_rollback(self._increment_stock, product_document["_id"], quantity)

    def restore_stock(self, unit, product_id, quantity: int):
        self._increment_stock(product_id, quantity, session=unit.session)
        unit.on_rollback(self._increment_stock, product_id, -quantity)

    def _increment_stock(self, product_id, quantity: int, session=None):
        self.store.products.update_one(
            {"_id": product_id}, {"$inc": {"stock": quantity}}, session=session
        )

    # categories

    def create_category(self, name) -> Dict:
        name_value = " ".join(clean_text(name).split())
        if len(name_value) < 2:
            raise ValidationError("Please provide a category name with at least two characters.")

        name_key = name_value.lower()
        if self.store.categories.find_one({"name_key": name_key}):
            raise ValidationError("Category already exists")

        document = {"name": name_value, "name_key": name_key, "created_at": utcnow()}
        try:
            result = self.store.categories.insert_one(document)
        except DuplicateKeyError:
            raise ValidationError("Category already exists")
        document["_id"] = result.inserted_id
        return document

    def list_categories(self):
        return list(self.store.categories.find().sort("name", 1))

    def delete_category(self, category_id) -> Dict:
        object_id = to_object_id(category_id, "category")
        deleted = self.store.categories.find_one_and_delete({"_id": object_id})
        if not deleted:
            raise NotFoundError("Category not found")
        return deleted
