"""
Product catalog operations.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError

from accounts import schema_error_message
from database import PRODUCTS, Database, object_id, serialize_doc
from errors import DuplicateKey, NotFound, ValidationError
from schemas import PRODUCT_STATUS_TEXT, Product

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "sku", "price", "stock", "category")


def serialize_product(doc: dict) -> dict:
    product = serialize_doc(doc)
    product["status_text"] = PRODUCT_STATUS_TEXT.get(product.get("status"), product.get("status"))
    return product


def _validate(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Run the Product schema over a complete field set and return the clean values."""
    try:
        return Product(**fields).model_dump()
    except SchemaError as e:
        raise ValidationError(schema_error_message(e))


def list_products(
    db: Database,
    category: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[dict], int]:
    filt: Dict[str, Any] = {}
    if category:
        filt["category"] = category
    if status:
        filt["status"] = status
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"sku": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    items = db.get_documents(
        PRODUCTS,
        filt,
        skip=(page - 1) * limit,
        limit=limit,
        sort=[("created_at", -1), ("_id", -1)],
    )
    total = db.count_documents(PRODUCTS, filt)
    return [serialize_product(i) for i in items], total


def get_product(db: Database, product_id: str) -> dict:
    item = db.get_document_by_id(PRODUCTS, object_id(product_id, "product id"))
    if not item:
        raise NotFound("Product not found")
    return serialize_product(item)


def create_product(db: Database, admin: dict, fields: Dict[str, Any]) -> dict:
    missing = [f for f in REQUIRED_FIELDS if fields.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    data = _validate({**fields, "created_by": admin["id"]})
    try:
        product_id = db.create_document(PRODUCTS, data)
    except DuplicateKeyError:
        raise DuplicateKey("SKU already exists")
    logger.info("Product created: %s (sku=%s)", product_id, data["sku"])
    return get_product(db, product_id)


def update_product(db: Database, admin: dict, product_id: str, fields: Dict[str, Any]) -> dict:
    _id = object_id(product_id, "product id")
    current = db.get_document_by_id(PRODUCTS, _id)
    if not current:
        raise NotFound("Product not found")
    fields = {k: v for k, v in fields.items() if v is not None}
    if not fields:
        return serialize_product(current)
    # validate the merged record so partial updates obey the create rules
    merged = {k: v for k, v in current.items() if k in Product.model_fields}
    merged.update(fields)
    data = _validate(merged)
    update = {k: data[k] for k in fields if k in data}
    if "sku" in update and db[PRODUCTS].find_one({"sku": update["sku"], "_id": {"$ne": _id}}):
        raise DuplicateKey("SKU already exists")
    try:
        item = db.update_document(PRODUCTS, _id, update)
    except DuplicateKeyError:
        raise DuplicateKey("SKU already exists")
    if not item:
        raise NotFound("Product not found")
    logger.info("Product %s updated by %s: %s", product_id, admin["id"], ", ".join(sorted(update)))
    return serialize_product(item)


def delete_product(db: Database, admin: dict, product_id: str):
    if not db.delete_document(PRODUCTS, object_id(product_id, "product id")):
        raise NotFound("Product not found")
    logger.info("Product %s deleted by %s", product_id, admin["id"])
