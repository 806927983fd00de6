"""
Per-buyer cart. Lines hold a price snapshot taken when the listing was added.

Stock is validated here but never reserved: the cart does not touch the
catalog, and checkout validates again.
"""

import structlog
from bson.objectid import ObjectId
from pymongo.database import Database

from catalog import check_orderable, get_listing
from database import utcnow
from errors import NotFoundError, UnavailableError, ValidationError
from schemas import CartLine

logger = structlog.get_logger(__name__)


def get_cart(db: Database, buyer_id: str) -> dict:
    cart = db["cart"].find_one({"user": buyer_id})
    items = cart["items"] if cart else []
    return {
        "items": items,
        "total_items": sum(i["quantity"] for i in items),
        "total_price": round(sum(i["price"] * i["quantity"] for i in items), 2),
    }


def _ensure_cart(db: Database, buyer_id: str) -> None:
    db["cart"].update_one(
        {"user": buyer_id},
        {"$setOnInsert": {"items": [], "created_at": utcnow()}},
        upsert=True,
    )


def _increment_line(db: Database, buyer_id: str, listing_id: str, quantity: int):
    return db["cart"].update_one(
        {"user": buyer_id, "items.listing_id": listing_id},
        {"$inc": {"items.$.quantity": quantity}, "$set": {"updated_at": utcnow()}},
    )


def add_item(db: Database, buyer_id: str, listing_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    listing = get_listing(db, listing_id)
    listing_id = str(listing["_id"])
    check_orderable(listing, quantity)

    _ensure_cart(db, buyer_id)
    cart = db["cart"].find_one({"user": buyer_id})
    existing = next((i for i in cart["items"] if i["listing_id"] == listing_id), None)

    if existing:
        check_orderable(listing, existing["quantity"] + quantity)
        _increment_line(db, buyer_id, listing_id, quantity)
    else:
        line = CartLine(
            item_id=str(ObjectId()),
            listing_id=listing_id,
            quantity=quantity,
            price=listing["price"],
        )
        res = db["cart"].update_one(
            {"user": buyer_id, "items.listing_id": {"$ne": listing_id}},
            {"$push": {"items": line.model_dump()}, "$set": {"updated_at": utcnow()}},
        )
        if res.matched_count == 0:
            # the same listing was added concurrently; merge into that line
            _increment_line(db, buyer_id, listing_id, quantity)

    logger.info("Cart item added", buyer_id=buyer_id, listing_id=listing_id, quantity=quantity)
    return get_cart(db, buyer_id)


def _find_line(db: Database, buyer_id: str, item_id: str) -> dict:
    cart = db["cart"].find_one({"user": buyer_id})
    if not cart:
        raise NotFoundError("Cart not found")
    line = next((i for i in cart["items"] if i["item_id"] == item_id), None)
    if line is None:
        raise NotFoundError("Item not found in cart")
    return line


def update_quantity(db: Database, buyer_id: str, item_id: str, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    line = _find_line(db, buyer_id, item_id)

    listing = db["gem"].find_one({"_id": ObjectId(line["listing_id"])})
    if listing is None:
        raise UnavailableError("Gem is not available", listing_id=line["listing_id"])
    check_orderable(listing, quantity)

    db["cart"].update_one(
        {"user": buyer_id, "items.item_id": item_id},
        {"$set": {"items.$.quantity": quantity, "updated_at": utcnow()}},
    )
    return get_cart(db, buyer_id)


def remove_item(db: Database, buyer_id: str, item_id: str) -> dict:
    _find_line(db, buyer_id, item_id)
    db["cart"].update_one(
        {"user": buyer_id},
        {"$pull": {"items": {"item_id": item_id}}, "$set": {"updated_at": utcnow()}},
    )
    return get_cart(db, buyer_id)


def clear(db: Database, buyer_id: str) -> None:
    db["cart"].update_one(
        {"user": buyer_id},
        {"$set": {"items": [], "updated_at": utcnow()}},
    )
