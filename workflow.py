"""
Order workflow: creation checks and the status state machine.

Transition functions are pure. They inspect an order document, raise an
``AppError`` when the move is not allowed and otherwise return the fields to
``$set``. ``apply_transition`` performs the write, guarded on the status that
was read, so two admins racing on the same order cannot both win.
"""
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId

from database import utcnow
from errors import AuthorizationError, NotFoundError, StaleStateError, ValidationError
from schemas import ORDER_STATUSES
from security import is_admin

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "Product"

SCREENSHOT_UPLOAD_STATUSES = ("pending_payment", "payment_uploaded")


def initial_status(payment_method: str) -> str:
    return "pending_payment" if payment_method == "card" else "pending"


def _coordinate(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_location(location: Any) -> Tuple[float, float]:
    if not isinstance(location, dict):
        raise ValidationError("Delivery location coordinates are required")
    raw_lat, raw_lng = location.get("lat"), location.get("lng")
    if raw_lat is None or raw_lng is None or raw_lat == "" or raw_lng == "":
        raise ValidationError("Delivery location coordinates are required")

    lat, lng = _coordinate(raw_lat), _coordinate(raw_lng)
    if lat is None or lng is None:
        raise ValidationError("Location coordinates must be numbers")
    if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        raise ValidationError("Location coordinates out of valid range")
    return lat, lng


def validate_order_request(items: List[Any], delivery_address: Any, delivery_location: Any) -> Tuple[float, float]:
    if not items:
        raise ValidationError("Order items are required")
    if not delivery_address:
        raise ValidationError("Delivery address is required")
    return parse_location(delivery_location)


def snapshot_items(items: List[Dict[str, Any]], find_product: Callable[[Any], Optional[dict]]) -> List[Dict[str, Any]]:
    """Copy the product's current title and image into each line item."""
    snapshot = []
    for item in items:
        ref = item["product"]
        if isinstance(ref, str) and ObjectId.is_valid(ref):
            ref = ObjectId(ref)
        product = find_product(ref) if isinstance(ref, ObjectId) else None
        snapshot.append({
            "product": ref,
            "name": product.get("title", PLACEHOLDER_NAME) if product else PLACEHOLDER_NAME,
            "image": product.get("image", "") if product else "",
            "quantity": item["quantity"],
            "price": item["price"],
        })
    return snapshot


def owns_order(user: dict, order: dict) -> bool:
    return str(order.get("user")) == str(user.get("_id"))


def can_view_order(user: dict, order: dict) -> bool:
    return owns_order(user, order) or is_admin(user)


def check_screenshot_upload(order: dict, user: dict, has_file: bool):
    if not owns_order(user, order):
        raise AuthorizationError("Not authorized")
    if order.get("paymentMethod") != "card":
        raise ValidationError("Payment method is not card")
    if not has_file:
        raise ValidationError("Screenshot file is required")
    # accepted from payment_uploaded too, replacing the unreviewed screenshot
    if order.get("status") not in SCREENSHOT_UPLOAD_STATUSES:
        raise ValidationError(f"Order is not awaiting payment (status: {order.get('status')})")


def screenshot_uploaded(screenshot_path: str) -> Dict[str, Any]:
    return {"paymentScreenshot": screenshot_path, "status": "payment_uploaded"}


def confirm_payment(order: dict, now: Optional[datetime] = None) -> Dict[str, Any]:
    if order.get("status") != "payment_uploaded":
        raise ValidationError("Order payment screenshot not uploaded yet")
    if not order.get("paymentScreenshot"):
        raise ValidationError("Payment screenshot not found")
    return {"status": "payment_confirmed", "isPaid": True, "paidAt": now or utcnow()}


def reject_payment(order: dict) -> Dict[str, Any]:
    # no status guard: rejecting an already reset order is a harmless repeat
    return {"status": "pending_payment", "paymentScreenshot": ""}


def set_status(order: dict, status: str) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Allowed: {', '.join(ORDER_STATUSES)}")
    return {"status": status}


def mark_delivered(order: dict, now: Optional[datetime] = None) -> Dict[str, Any]:
    if order.get("status") == "delivered":
        raise ValidationError("Order is already marked as delivered")
    return {"status": "delivered", "deliveredAt": now or utcnow()}


def apply_transition(collection, order: dict, changes: Dict[str, Any]) -> dict:
    """Write ``changes`` only if the order still has the status it was read with."""
    update = dict(changes)
    update["updatedAt"] = utcnow()
    res = collection.update_one({"_id": order["_id"], "status": order.get("status")}, {"$set": update})
    if res.matched_count == 0:
        if collection.find_one({"_id": order["_id"]}, {"_id": 1}) is None:
            raise NotFoundError("Order not found")
        raise StaleStateError("Order status changed while processing, reload and retry")
    logger.info("Order %s: %s -> %s", order["_id"], order.get("status"), update.get("status", order.get("status")))
    return collection.find_one({"_id": order["_id"]})
