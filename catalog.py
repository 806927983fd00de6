"""
Catalog store: gem listings, their price rules and stock.

Stock only changes through `adjust_stock` (order placement and cancellation)
or an explicit seller edit. Availability is derived from stock and rewritten
whenever stock changes.
"""

import re
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from access import Principal
from database import create_document, get_documents, object_id, to_dict, utcnow
from errors import (
    AuthorizationError,
    InsufficientStockError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from schemas import PRICE_REQUIRED, GemListing, ListingUpdate
from settings import settings

logger = structlog.get_logger(__name__)

NULLABLE_FIELDS = ("price", "planet_hindi")

SORTS = {
    "newest": [("created_at", DESCENDING), ("_id", DESCENDING)],
    "oldest": [("created_at", ASCENDING), ("_id", ASCENDING)],
    # contact-for-price listings go last
    "price-low": [("contact_for_price", ASCENDING), ("price", ASCENDING)],
    "price-high": [("contact_for_price", ASCENDING), ("price", DESCENDING)],
    "name": [("name", ASCENDING)],
}


def validation_error(exc: PydanticValidationError) -> ValidationError:
    errors = [
        {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
        for e in exc.errors()
    ]
    return ValidationError("Validation failed", errors)


def get_listing(db: Database, listing_id: str) -> dict:
    doc = db["gem"].find_one({"_id": object_id(listing_id, "gem")})
    if not doc:
        raise NotFoundError("Gem not found")
    return doc


def check_orderable(listing: dict, quantity: int) -> None:
    """Raise unless `quantity` units of the listing can be bought right now."""
    listing_id = str(listing["_id"])
    name = listing.get("name", listing_id)
    if listing.get("contact_for_price") or listing.get("price") is None:
        raise UnavailableError(f"{name} is available on request only", listing_id=listing_id)
    if listing.get("stock", 0) < quantity:
        raise InsufficientStockError(f"{name} is not available or insufficient stock", listing_id=listing_id)
    if not listing.get("availability"):
        raise UnavailableError(f"{name} is not available", listing_id=listing_id)


def _check_owner(listing: dict, principal: Principal, action: str) -> None:
    if not (principal.owns(listing.get("seller")) or principal.is_admin):
        raise AuthorizationError(f"Not authorized to {action} this gem")


def create_listing(db: Database, seller_id: str, attrs: Union[GemListing, Dict[str, Any]]) -> dict:
    try:
        listing = attrs if isinstance(attrs, GemListing) else GemListing(**attrs)
    except PydanticValidationError as exc:
        raise validation_error(exc)

    doc = listing.model_dump()
    doc["seller"] = seller_id
    doc["availability"] = listing.stock > 0
    listing_id = create_document(db, "gem", doc)
    logger.info("Listing created", listing_id=listing_id, seller_id=seller_id, stock=listing.stock)
    return to_dict(db["gem"].find_one({"_id": object_id(listing_id)}))


def _apply_price_rules(current: dict, updates: dict) -> None:
    contact = updates.get("contact_for_price")
    if contact is True:
        updates["price"] = None
        return

    if "price" in updates:
        price = updates["price"]
        if price is None:
            stays_contact = current.get("contact_for_price") if contact is None else contact
            if not stays_contact:
                raise ValidationError(PRICE_REQUIRED, [{"field": "price", "message": PRICE_REQUIRED}])
        elif price <= 0:
            raise ValidationError(PRICE_REQUIRED, [{"field": "price", "message": PRICE_REQUIRED}])
        else:
            # a concrete price takes the listing out of contact-for-price mode
            updates["contact_for_price"] = False
    elif contact is False and current.get("price") is None:
        raise ValidationError(PRICE_REQUIRED, [{"field": "price", "message": PRICE_REQUIRED}])


def update_listing(db: Database, listing_id: str, principal: Principal,
                   patch: Union[ListingUpdate, Dict[str, Any]]) -> dict:
    if not isinstance(patch, ListingUpdate):
        try:
            patch = ListingUpdate(**patch)
        except PydanticValidationError as exc:
            raise validation_error(exc)
    updates = patch.model_dump(exclude_unset=True)

    listing = get_listing(db, listing_id)
    _check_owner(listing, principal, "update")
    if not updates:
        return to_dict(listing)

    for key, value in updates.items():
        if value is None and key not in NULLABLE_FIELDS:
            raise ValidationError(f"{key} cannot be null", [{"field": key, "message": "cannot be null"}])

    _apply_price_rules(listing, updates)
    if "stock" in updates:
        updates["availability"] = updates["stock"] > 0
    updates["updated_at"] = utcnow()

    doc = db["gem"].find_one_and_update(
        {"_id": listing["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise NotFoundError("Gem not found")
    logger.info("Listing updated", listing_id=listing_id, fields=sorted(updates))
    return to_dict(doc)


def adjust_stock(db: Database, listing_id: str, delta: int) -> dict:
    """Atomically add `delta` to a listing's stock.

    A negative delta only applies while the stock covers it, so concurrent
    checkouts against the same listing can never drive it below zero.
    Raises NotFoundError when the listing no longer exists and
    InsufficientStockError when the stock guard fails.
    """
    oid = object_id(listing_id, "gem")
    query = {"_id": oid}
    if delta < 0:
        query["stock"] = {"$gte": -delta}

    doc = db["gem"].find_one_and_update(
        query,
        {"$inc": {"stock": delta}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        current = db["gem"].find_one({"_id": oid}, {"name": 1, "stock": 1})
        if current is None:
            raise NotFoundError("Gem not found")
        raise InsufficientStockError(
            f"{current.get('name', listing_id)} is not available or insufficient stock",
            listing_id=listing_id,
        )

    # Conditioned on the stock we produced: a later adjustment owns the flag.
    available = doc["stock"] > 0
    db["gem"].update_one(
        {"_id": oid, "stock": doc["stock"]},
        {"$set": {"availability": available}},
    )
    doc["availability"] = available
    logger.info("Stock adjusted", listing_id=listing_id, delta=delta, stock=doc["stock"])
    return to_dict(doc)


def delete_listing(db: Database, listing_id: str, principal: Principal) -> None:
    listing = get_listing(db, listing_id)
    _check_owner(listing, principal, "delete")
    db["gem"].delete_one({"_id": listing["_id"]})
    logger.info("Listing deleted", listing_id=listing_id, by=principal.id)


def delete_all_for_seller(db: Database, seller_id: str) -> int:
    res = db["gem"].delete_many({"seller": seller_id})
    logger.info("Seller listings deleted", seller_id=seller_id, count=res.deleted_count)
    return res.deleted_count


def seller_listings(db: Database, seller_id: str) -> List[dict]:
    return get_documents(db, "gem", {"seller": seller_id})


def browse_listings(
    db: Database,
    search: Optional[str] = None,
    category: Optional[str] = None,
    planet: Optional[str] = None,
    zodiac: Optional[str] = None,
    seller: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    availability: Optional[bool] = None,
    in_stock: bool = False,
    low_stock: bool = False,
    out_of_stock: bool = False,
    sort: str = "newest",
    page: int = 1,
    limit: int = 12,
) -> Tuple[List[dict], int]:
    """Filtered, paginated catalog query. Returns (listings, total matches)."""
    query: Dict[str, Any] = {}

    if search and search.strip():
        term = re.escape(search.strip())
        query["$or"] = [
            {field: {"$regex": term, "$options": "i"}}
            for field in ("name", "hindi_name", "description", "planet", "color")
        ]
    if category:
        query["category"] = {"$in": [c.strip() for c in category.split(",") if c.strip()]}
    if zodiac:
        query["suitable_for"] = {"$regex": re.escape(zodiac), "$options": "i"}
    if planet:
        query["planet"] = {"$regex": re.escape(planet), "$options": "i"}
    if min_price is not None or max_price is not None:
        price: Dict[str, float] = {}
        if min_price is not None:
            price["$gte"] = min_price
        if max_price is not None:
            price["$lte"] = max_price
        query["price"] = price
        query["contact_for_price"] = False
    if seller:
        query["seller"] = seller
    if availability is not None:
        query["availability"] = availability

    if in_stock:
        query["stock"] = {"$gt": 0}
    if low_stock:
        query["stock"] = {"$gt": 0, "$lte": settings.low_stock_threshold}
    if out_of_stock:
        query["stock"] = 0

    page = max(page, 1)
    total = db["gem"].count_documents(query)
    cursor = (
        db["gem"].find(query)
        .sort(SORTS.get(sort, SORTS["newest"]))
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return [to_dict(d) for d in cursor], total
