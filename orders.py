"""
Order ledger: checkout, cancellation, status changes and the buyer, seller
and admin read views.

Checkout decrements stock line by line through `catalog.adjust_stock` and
gives back every decrement already applied when a later line fails, so an
order is either placed with all of its stock taken or not placed at all.
Cancellation returns the stock of every line.
"""

from datetime import timedelta
from typing import List, Optional, Tuple

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from access import Principal
from cart import clear as clear_cart
from cart import get_cart
from catalog import adjust_stock, check_orderable, get_listing
from database import create_document, object_id, to_dict, utcnow
from errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from schemas import (
    CANCELLABLE_STATUSES,
    CheckoutRequest,
    Order,
    OrderItem,
    OrderLineIn,
    OrderStatus,
    PlaceOrderRequest,
)
from settings import settings

logger = structlog.get_logger(__name__)

DEFAULT_DELIVERY_DAYS = 7
RECENT_DAYS = 30
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def next_order_number(db: Database, now=None) -> str:
    """Reserve the next ORD-<year>-<seq> number from the per-year counter."""
    now = now or utcnow()
    counter = db["counter"].find_one_and_update(
        {"_id": f"order-{now.year}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"ORD-{now.year}-{counter['seq']:0{settings.order_number_width}d}"


def _give_back(db: Database, applied: List[Tuple[str, int]]) -> None:
    for listing_id, quantity in reversed(applied):
        try:
            adjust_stock(db, listing_id, quantity)
        except NotFoundError:
            logger.warning("Listing deleted, stock not restored", listing_id=listing_id, quantity=quantity)
        except PyMongoError:
            logger.exception("Stock rollback failed", listing_id=listing_id, quantity=quantity)


def place_order(db: Database, buyer_id: str, request: PlaceOrderRequest) -> dict:
    applied: List[Tuple[str, int]] = []
    items: List[OrderItem] = []
    try:
        for line in request.items:
            listing = get_listing(db, line.listing_id)
            listing_id = str(listing["_id"])
            if (line.price is not None and listing.get("price") is not None
                    and abs(line.price - listing["price"]) > settings.price_tolerance):
                raise ValidationError(
                    f"Price of {listing['name']} has changed",
                    [{
                        "field": "price",
                        "listing_id": listing_id,
                        "expected": listing["price"],
                        "received": line.price,
                    }],
                )
            check_orderable(listing, line.quantity)
            adjust_stock(db, listing_id, -line.quantity)
            applied.append((listing_id, line.quantity))
            items.append(OrderItem(
                listing_id=listing_id,
                name=listing["name"],
                quantity=line.quantity,
                price=listing["price"],
                seller=listing["seller"],
            ))

        order = Order(
            order_number=next_order_number(db),
            buyer=buyer_id,
            items=items,
            shipping_address=request.shipping_address,
            payment_method=request.payment_method,
            total_price=round(sum(i.price * i.quantity for i in items), 2),
        )
        order_id = create_document(db, "order", order)
    except Exception:
        if applied:
            logger.warning("Checkout failed, restoring stock", buyer_id=buyer_id, lines=len(applied))
            _give_back(db, applied)
        raise

    try:
        clear_cart(db, buyer_id)
    except PyMongoError:
        # the order is already persisted
        logger.exception("Cart not cleared after checkout", order_id=order_id, buyer_id=buyer_id)
    logger.info(
        "Order placed",
        order_id=order_id,
        order_number=order.order_number,
        buyer_id=buyer_id,
        total_price=order.total_price,
    )
    return to_dict(db["order"].find_one({"_id": object_id(order_id)}))


def place_order_from_cart(db: Database, buyer_id: str, request: CheckoutRequest) -> dict:
    current = get_cart(db, buyer_id)
    if not current["items"]:
        raise ValidationError("Cart is empty")
    lines = [
        OrderLineIn(listing_id=i["listing_id"], quantity=i["quantity"], price=i["price"])
        for i in current["items"]
    ]
    return place_order(db, buyer_id, PlaceOrderRequest(
        items=lines,
        shipping_address=request.shipping_address,
        payment_method=request.payment_method,
    ))


def _get_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": object_id(order_id, "order")})
    if not order:
        raise NotFoundError("Order not found")
    return order


def _ensure_cancellable(order: dict) -> None:
    if order["status"] == OrderStatus.CANCELLED.value:
        raise InvalidStateError("Order is already cancelled")
    if order["status"] not in CANCELLABLE_STATUSES:
        raise InvalidStateError("Cannot cancel order that has been shipped or delivered")


def _cancel(db: Database, order: dict, reason: Optional[str]) -> dict:
    _ensure_cancellable(order)
    now = utcnow()
    updates = {"status": OrderStatus.CANCELLED.value, "cancelled_at": now, "updated_at": now}
    if reason:
        updates["cancel_reason"] = reason

    # Only one caller can win the status flip, so stock is restored once.
    doc = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": {"$in": list(CANCELLABLE_STATUSES)}},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        current = db["order"].find_one({"_id": order["_id"]})
        if current is None:
            raise NotFoundError("Order not found")
        _ensure_cancellable(current)
        raise InvalidStateError("Order can no longer be cancelled")

    for item in doc["items"]:
        try:
            adjust_stock(db, item["listing_id"], item["quantity"])
        except NotFoundError:
            logger.info("Listing deleted, skipping stock restore", listing_id=item["listing_id"])
        except PyMongoError:
            logger.exception(
                "Stock restore failed",
                order_number=doc["order_number"],
                listing_id=item["listing_id"],
                quantity=item["quantity"],
            )

    logger.info("Order cancelled", order_number=doc["order_number"], reason=reason)
    return to_dict(doc)


def cancel_order(db: Database, order_id: str, principal: Principal, reason: Optional[str] = None) -> dict:
    order = _get_order(db, order_id)
    if not (principal.owns(order["buyer"]) or principal.is_admin):
        raise AuthorizationError("Not authorized to cancel this order")
    return _cancel(db, order, reason)


def _sells_in(order: dict, principal: Principal) -> bool:
    return any(principal.owns(i["seller"]) for i in order["items"])


def update_status(db: Database, order_id: str, principal: Principal, status,
                  tracking_number: Optional[str] = None) -> dict:
    """Move an order to `status`.

    Any of the forward states may be set from any other, including skipping
    or going back; only cancelled orders are frozen. Cancelling through here
    follows the same rules as a buyer cancellation and gives the stock back.
    """
    try:
        status = OrderStatus(status).value
    except ValueError:
        raise ValidationError("Valid status is required", [{"field": "status", "message": f"invalid value {status!r}"}])

    order = _get_order(db, order_id)
    if not (principal.is_admin or _sells_in(order, principal)):
        raise AuthorizationError("Not authorized to update this order")

    if status == OrderStatus.CANCELLED.value:
        return _cancel(db, order, None)
    if order["status"] == OrderStatus.CANCELLED.value:
        raise InvalidStateError("Cancelled orders cannot change status")

    tracking = (tracking_number or "").strip()
    if status == OrderStatus.SHIPPED.value and not tracking:
        raise ValidationError(
            "Tracking number is required to mark an order as shipped",
            [{"field": "tracking_number", "message": "required when status is shipped"}],
        )

    now = utcnow()
    updates = {"status": status, "updated_at": now}
    if tracking:
        updates["tracking_number"] = tracking
    if status == OrderStatus.SHIPPED.value:
        updates["shipped_at"] = now
    elif status == OrderStatus.DELIVERED.value:
        updates["delivered_at"] = now

    doc = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": {"$ne": OrderStatus.CANCELLED.value}},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise InvalidStateError("Cancelled orders cannot change status")

    logger.info(
        "Order status updated",
        order_number=doc["order_number"],
        previous=order["status"],
        status=status,
        by=principal.id,
    )
    return to_dict(doc)


# Read views

def seller_view(order: dict, seller_id: str) -> dict:
    """Project an order down to one seller's lines."""
    items = [
        dict(i, subtotal=round(i["price"] * i["quantity"], 2))
        for i in order["items"]
        if i["seller"] == seller_id
    ]
    view = to_dict(order)
    view.pop("total_price", None)
    view["items"] = items
    view["subtotal"] = round(sum(i["subtotal"] for i in items), 2)
    return view


def _page(db: Database, query: dict, page: int, limit: int) -> Tuple[List[dict], int]:
    page = max(page, 1)
    total = db["order"].count_documents(query)
    cursor = db["order"].find(query).sort(NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
    return list(cursor), total


def get_order(db: Database, order_id: str, principal: Principal) -> dict:
    order = _get_order(db, order_id)
    if principal.owns(order["buyer"]) or principal.is_admin:
        return to_dict(order)
    if _sells_in(order, principal):
        return seller_view(order, principal.id)
    raise AuthorizationError("Not authorized to view this order")


def buyer_orders(db: Database, buyer_id: str, status: Optional[str] = None,
                 page: int = 1, limit: int = 10) -> Tuple[List[dict], int]:
    query = {"buyer": buyer_id}
    if status:
        query["status"] = status
    orders, total = _page(db, query, page, limit)

    first_ids = {o["items"][0]["listing_id"] for o in orders if o["items"]}
    delivery_days = {
        str(g["_id"]): g.get("delivery_days", DEFAULT_DELIVERY_DAYS)
        for g in db["gem"].find(
            {"_id": {"$in": [object_id(i) for i in first_ids]}},
            {"delivery_days": 1},
        )
    }

    views = []
    for order in orders:
        days = DEFAULT_DELIVERY_DAYS
        if order["items"]:
            days = delivery_days.get(order["items"][0]["listing_id"], DEFAULT_DELIVERY_DAYS)
        view = to_dict(order)
        view["delivery_days"] = days
        view["expected_delivery"] = order["created_at"] + timedelta(days=days)
        views.append(view)
    return views, total


def seller_orders(db: Database, seller_id: str, status: Optional[str] = None,
                  page: int = 1, limit: int = 10) -> Tuple[List[dict], int]:
    query = {"items.seller": seller_id}
    if status:
        query["status"] = status
    orders, total = _page(db, query, page, limit)
    return [seller_view(o, seller_id) for o in orders], total


def all_orders(db: Database, status: Optional[str] = None,
               page: int = 1, limit: int = 20) -> Tuple[List[dict], int]:
    query = {"status": status} if status else {}
    orders, total = _page(db, query, page, limit)
    return [to_dict(o) for o in orders], total


def seller_stats(db: Database, seller_id: str, now=None) -> dict:
    now = now or utcnow()
    cutoff = now - timedelta(days=RECENT_DAYS)
    statuses = [s.value for s in OrderStatus]
    stats = {
        "total_orders": 0,
        "total_revenue": 0.0,
        "orders_by_status": {s: 0 for s in statuses},
        "revenue_by_status": {s: 0.0 for s in statuses},
        "recent_orders": 0,
        "recent_revenue": 0.0,
    }

    for order in db["order"].find({"items.seller": seller_id}):
        subtotal = sum(i["price"] * i["quantity"] for i in order["items"] if i["seller"] == seller_id)
        stats["total_orders"] += 1
        stats["orders_by_status"][order["status"]] += 1
        stats["revenue_by_status"][order["status"]] += subtotal
        if order["status"] == OrderStatus.CANCELLED.value:
            continue
        stats["total_revenue"] += subtotal
        if order["created_at"] >= cutoff:
            stats["recent_orders"] += 1
            stats["recent_revenue"] += subtotal

    stats["total_revenue"] = round(stats["total_revenue"], 2)
    stats["recent_revenue"] = round(stats["recent_revenue"], 2)
    stats["revenue_by_status"] = {s: round(v, 2) for s, v in stats["revenue_by_status"].items()}
    active = stats["total_orders"] - stats["orders_by_status"][OrderStatus.CANCELLED.value]
    stats["average_order_value"] = round(stats["total_revenue"] / active, 2) if active else 0.0
    return stats
