from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart
import catalog
import database
import orders
from access import Principal, Role, require_role
from errors import MarketplaceError
from log_config import configure_logging
from schemas import (
    AddToCartRequest,
    CancelOrderRequest,
    CheckoutRequest,
    GemListing,
    ListingUpdate,
    OrderStatus,
    PlaceOrderRequest,
    UpdateCartQuantityRequest,
    UpdateStatusRequest,
)
from settings import settings

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    yield


app = FastAPI(title="Gem Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

buyer = require_role(Role.BUYER)
seller = require_role(Role.SELLER)
admin = require_role(Role.ADMIN)
seller_or_admin = require_role(Role.SELLER, Role.ADMIN)
buyer_or_admin = require_role(Role.BUYER, Role.ADMIN)


def get_database() -> Database:
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def ok(message: str, status_code: int = 200, **payload):
    body = {"success": True, "message": message, **payload}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def paginated(message: str, key: str, items, total: int, page: int, limit: int):
    return ok(
        message,
        count=total,
        current_page=page,
        total_pages=(total + limit - 1) // limit,
        **{key: items},
    )


# Error envelope
def _error(status_code: int, message: str, errors=None, error=None):
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if error and not settings.is_production:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return _error(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
        for e in exc.errors()
    ]
    return _error(400, "Validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path, method=request.method)
    return _error(500, "Server error", error=str(exc))


@app.get("/")
async def root():
    return {"success": True, "message": "Gem Marketplace API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# Gems
@app.get("/gems")
def list_gems(
    search: Optional[str] = None,
    category: Optional[str] = None,
    planet: Optional[str] = None,
    zodiac: Optional[str] = None,
    seller_id: Optional[str] = Query(None, alias="seller"),
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    availability: Optional[bool] = None,
    in_stock: bool = False,
    low_stock: bool = False,
    out_of_stock: bool = False,
    sort: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Database = Depends(get_database),
):
    gems, total = catalog.browse_listings(
        db,
        search=search,
        category=category,
        planet=planet,
        zodiac=zodiac,
        seller=seller_id,
        min_price=min_price,
        max_price=max_price,
        availability=availability,
        in_stock=in_stock,
        low_stock=low_stock,
        out_of_stock=out_of_stock,
        sort=sort,
        page=page,
        limit=limit,
    )
    return paginated("Gems retrieved", "gems", gems, total, page, limit)


@app.get("/gems/my-gems")
def my_gems(principal: Principal = Depends(seller), db: Database = Depends(get_database)):
    gems = catalog.seller_listings(db, principal.id)
    return ok("Gems retrieved", count=len(gems), gems=gems)


@app.get("/gems/{gem_id}")
def get_gem(gem_id: str, db: Database = Depends(get_database)):
    return ok("Gem retrieved", gem=database.to_dict(catalog.get_listing(db, gem_id)))


@app.post("/gems")
def create_gem(payload: GemListing, principal: Principal = Depends(seller),
               db: Database = Depends(get_database)):
    gem = catalog.create_listing(db, principal.id, payload)
    return ok("Gem created successfully", 201, gem=gem)


@app.put("/gems/{gem_id}")
def update_gem(gem_id: str, payload: ListingUpdate, principal: Principal = Depends(seller_or_admin),
               db: Database = Depends(get_database)):
    gem = catalog.update_listing(db, gem_id, principal, payload)
    return ok("Gem updated successfully", gem=gem)


@app.delete("/gems/{gem_id}")
def delete_gem(gem_id: str, principal: Principal = Depends(seller_or_admin),
               db: Database = Depends(get_database)):
    catalog.delete_listing(db, gem_id, principal)
    return ok("Gem deleted successfully")


# Cart
@app.get("/cart")
def view_cart(principal: Principal = Depends(buyer), db: Database = Depends(get_database)):
    return ok("Cart retrieved", cart=cart.get_cart(db, principal.id))


@app.post("/cart")
def add_to_cart(payload: AddToCartRequest, principal: Principal = Depends(buyer),
                db: Database = Depends(get_database)):
    current = cart.add_item(db, principal.id, payload.listing_id, payload.quantity)
    return ok("Item added to cart", cart=current)


@app.post("/cart/checkout")
def checkout_cart(payload: CheckoutRequest, principal: Principal = Depends(buyer),
                  db: Database = Depends(get_database)):
    order = orders.place_order_from_cart(db, principal.id, payload)
    return ok("Order placed successfully", 201, order=order)


@app.put("/cart/{item_id}")
def update_cart_item(item_id: str, payload: UpdateCartQuantityRequest,
                     principal: Principal = Depends(buyer), db: Database = Depends(get_database)):
    current = cart.update_quantity(db, principal.id, item_id, payload.quantity)
    return ok("Cart item updated", cart=current)


@app.delete("/cart/{item_id}")
def remove_cart_item(item_id: str, principal: Principal = Depends(buyer),
                     db: Database = Depends(get_database)):
    current = cart.remove_item(db, principal.id, item_id)
    return ok("Item removed from cart", cart=current)


@app.delete("/cart")
def clear_cart(principal: Principal = Depends(buyer), db: Database = Depends(get_database)):
    cart.clear(db, principal.id)
    return ok("Cart cleared")


# Orders
@app.post("/orders")
def create_order(payload: PlaceOrderRequest, principal: Principal = Depends(buyer),
                 db: Database = Depends(get_database)):
    order = orders.place_order(db, principal.id, payload)
    return ok("Order placed successfully", 201, order=order)


@app.get("/orders/my-orders")
def my_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(buyer),
    db: Database = Depends(get_database),
):
    items, total = orders.buyer_orders(db, principal.id, status.value if status else None, page, limit)
    return paginated("Orders retrieved", "orders", items, total, page, limit)


@app.get("/orders/seller/orders")
def seller_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(seller),
    db: Database = Depends(get_database),
):
    items, total = orders.seller_orders(db, principal.id, status.value if status else None, page, limit)
    return paginated("Orders retrieved", "orders", items, total, page, limit)


@app.get("/orders/seller/stats")
def seller_order_stats(principal: Principal = Depends(seller), db: Database = Depends(get_database)):
    return ok("Order statistics retrieved", stats=orders.seller_stats(db, principal.id))


@app.get("/orders/{order_id}")
def get_order(order_id: str, principal: Principal = Depends(require_role(*Role)),
              db: Database = Depends(get_database)):
    return ok("Order retrieved", order=orders.get_order(db, order_id, principal))


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelOrderRequest] = None,
                 principal: Principal = Depends(buyer_or_admin), db: Database = Depends(get_database)):
    reason = payload.reason if payload else None
    order = orders.cancel_order(db, order_id, principal, reason)
    return ok("Order cancelled successfully", order=order)


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: UpdateStatusRequest,
                        principal: Principal = Depends(seller_or_admin), db: Database = Depends(get_database)):
    order = orders.update_status(db, order_id, principal, payload.status, payload.tracking_number)
    return ok("Order status updated successfully", order=order)


# Admin
@app.get("/admin/orders")
def admin_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(admin),
    db: Database = Depends(get_database),
):
    items, total = orders.all_orders(db, status.value if status else None, page, limit)
    return paginated("Orders retrieved", "orders", items, total, page, limit)


@app.delete("/admin/sellers/{seller_id}")
def delete_seller(seller_id: str, principal: Principal = Depends(admin),
                  db: Database = Depends(get_database)):
    removed = catalog.delete_all_for_seller(db, seller_id)
    return ok("Seller deleted successfully", gems_deleted=removed)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
