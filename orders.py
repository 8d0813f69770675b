"""
Order workflow.

Creating an order prices every line from the live catalog, takes the stock
for each line with a conditional decrement (only applied while enough stock
remains) and then stores the order with a snapshot of each product. If a
decrement or the insert fails, the stock already taken is put back so a
failed order leaves the catalog untouched.
"""
import logging
import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, get_args

from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from accounts import schema_error_message
from database import ORDERS, PRODUCTS, Database, object_id, serialize_doc
from errors import Forbidden, InsufficientStock, Internal, NotFound, ValidationError
from schemas import ORDER_STATUS_TEXT, PAYMENT_STATUS_TEXT, Order, OrderStatus, PaymentStatus
from security import is_admin

logger = logging.getLogger(__name__)

SHIPPING_FEE = 0  # free shipping
DISCOUNT = 0
SHIPPING_FIELDS = ("recipient_name", "phone", "postal_code", "address")
ORDER_STATUSES = get_args(OrderStatus)
PAYMENT_STATUSES = get_args(PaymentStatus)


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{now:%H%M%S}-{random.randint(0, 9999):04d}"


def serialize_order(doc: dict) -> dict:
    order = serialize_doc(doc)
    order["status_text"] = ORDER_STATUS_TEXT.get(order.get("status"), order.get("status"))
    order["payment_status_text"] = PAYMENT_STATUS_TEXT.get(order.get("payment_status"), order.get("payment_status"))
    return order


def unit_price(product: dict, selected_options: Optional[Dict[str, str]]) -> float:
    """Base price plus the adjustment of every selected option value the product declares.

    Keys or values that don't match an option group are ignored.
    """
    price = product["price"]
    if not selected_options:
        return price
    for group in product.get("options") or []:
        selected = selected_options.get(group.get("type"))
        if not selected:
            continue
        for value in group.get("values") or []:
            if value.get("value") == selected:
                price += value.get("price_adjustment") or 0
                break
    return price


def _validate_request(shipping_address: Optional[dict], payment_method: Optional[str], items: Optional[list]):
    if not shipping_address or not payment_method or not items:
        raise ValidationError("Shipping address, payment method and items are required")
    if any(not shipping_address.get(f) for f in SHIPPING_FIELDS):
        raise ValidationError("Please fill in all shipping address fields")
    for item in items:
        if not item.get("product_id"):
            raise ValidationError("Each item needs a product_id")
        quantity = item.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("Item quantity must be at least 1")


def _price_lines(db: Database, items: List[dict]) -> Tuple[List[dict], float]:
    lines = []
    subtotal = 0
    for item in items:
        product = db[PRODUCTS].find_one({"_id": object_id(item["product_id"], "product id")})
        if not product:
            raise NotFound(f"Product not found: {item['product_id']}")
        quantity = item["quantity"]
        if product.get("stock", 0) < quantity:
            raise InsufficientStock(f"Not enough stock for {product['name']} (stock: {product.get('stock', 0)})")
        selected = item.get("selected_options") or {}
        price = unit_price(product, selected)
        total = price * quantity
        subtotal += total
        lines.append({
            "product_id": str(product["_id"]),
            "product_name": product["name"],
            "product_image": product.get("image") or "",
            "sku": product["sku"],
            "selected_options": selected,
            "quantity": quantity,
            "unit_price": price,
            "total_price": total,
        })
    return lines, subtotal


def _take_stock(db: Database, lines: List[dict]) -> List[dict]:
    taken = []
    for line in lines:
        try:
            updated = db[PRODUCTS].find_one_and_update(
                {"_id": object_id(line["product_id"]), "stock": {"$gte": line["quantity"]}},
                {"$inc": {"stock": -line["quantity"]}, "$set": {"updated_at": datetime.now(timezone.utc)}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            _restore_stock(db, taken)
            logger.error("Stock update failed for %s: %s", line["sku"], e)
            raise Internal("Failed to create order")
        if updated is None:
            _restore_stock(db, taken)
            current = db[PRODUCTS].find_one({"_id": object_id(line["product_id"])})
            remaining = current.get("stock", 0) if current else 0
            raise InsufficientStock(f"Not enough stock for {line['product_name']} (stock: {remaining})")
        taken.append(line)
    return taken


def _restore_stock(db: Database, lines: List[dict]):
    for line in lines:
        db[PRODUCTS].update_one(
            {"_id": object_id(line["product_id"])},
            {"$inc": {"stock": line["quantity"]}},
        )
        logger.warning("Restored %d of %s after failed order", line["quantity"], line["sku"])


def create_order(
    db: Database,
    user: dict,
    shipping_address: Optional[dict],
    payment_method: Optional[str],
    items: Optional[List[dict]],
    notes: Optional[str] = None,
) -> dict:
    _validate_request(shipping_address, payment_method, items)
    lines, subtotal = _price_lines(db, items)
    total_amount = subtotal + SHIPPING_FEE - DISCOUNT

    try:
        order = Order(
            order_number=generate_order_number(),
            user_id=user["id"],
            customer_name=user["name"],
            customer_email=user["email"],
            customer_phone=shipping_address["phone"],
            shipping_address=shipping_address,
            items=lines,
            subtotal=subtotal,
            shipping_fee=SHIPPING_FEE,
            discount=DISCOUNT,
            total_amount=total_amount,
            payment_method=payment_method,
            notes=notes or "",
        )
    except SchemaError as e:
        raise ValidationError(schema_error_message(e))

    taken = _take_stock(db, lines)
    try:
        order_id = _insert_order(db, order)
    except PyMongoError as e:
        _restore_stock(db, taken)
        logger.error("Order insert failed for user %s: %s", user["id"], e)
        raise Internal("Failed to create order")
    logger.info("Order %s created for user %s (total %s)", order.order_number, user["id"], total_amount)
    return serialize_order(db.get_document_by_id(ORDERS, order_id))


def _insert_order(db: Database, order: Order) -> str:
    try:
        return db.create_document(ORDERS, order)
    except DuplicateKeyError:
        # order number collision within the same second
        order.order_number = generate_order_number()
        return db.create_document(ORDERS, order)


def list_user_orders(db: Database, user: dict, page: int = 1, limit: int = 10) -> Tuple[List[dict], int]:
    filt = {"user_id": user["id"]}
    orders = db.get_documents(
        ORDERS,
        filt,
        skip=(page - 1) * limit,
        limit=limit,
        sort=[("created_at", -1), ("_id", -1)],
    )
    total = db.count_documents(ORDERS, filt)
    return [serialize_order(o) for o in orders], total


def get_order(db: Database, user: dict, order_id: str) -> dict:
    order = db.get_document_by_id(ORDERS, object_id(order_id, "order id"))
    if not order:
        raise NotFound("Order not found")
    if not is_admin(user) and order.get("user_id") != user["id"]:
        raise Forbidden("Not allowed to view this order")
    return serialize_order(order)


def _apply(db: Database, order_id: str, update: Dict[str, Any]) -> dict:
    order = db.update_document(ORDERS, object_id(order_id, "order id"), update)
    if not order:
        raise NotFound("Order not found")
    return serialize_order(order)


def update_order_status(
    db: Database,
    order_id: str,
    status: str,
    tracking_number: Optional[str] = None,
    cancelled_reason: Optional[str] = None,
    refund_amount: Optional[float] = None,
) -> dict:
    # any status may follow any other; there is no transition table
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {status}")
    now = datetime.now(timezone.utc)
    update: Dict[str, Any] = {"status": status}
    if status == "shipped":
        update["shipped_date"] = now
        if tracking_number:
            update["tracking_number"] = tracking_number
    elif status == "delivered":
        update["delivered_date"] = now
    elif status == "cancelled":
        update["cancelled_date"] = now
        if cancelled_reason:
            update["cancelled_reason"] = cancelled_reason
    elif status == "refunded":
        update["refund_date"] = now
        if refund_amount is not None:
            if refund_amount < 0:
                raise ValidationError("Refund amount must not be negative")
            update["refund_amount"] = refund_amount
    order = _apply(db, order_id, update)
    logger.info("Order %s status -> %s", order_id, status)
    return order


def update_payment_status(db: Database, order_id: str, payment_status: str, payment_id: Optional[str] = None) -> dict:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {payment_status}")
    update: Dict[str, Any] = {"payment_status": payment_status}
    if payment_status == "completed":
        update["payment_date"] = datetime.now(timezone.utc)
        update["status"] = "confirmed"
        if payment_id:
            update["payment_id"] = payment_id
    order = _apply(db, order_id, update)
    logger.info("Order %s payment -> %s", order_id, payment_status)
    return order
