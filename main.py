import json
import logging
import os
from datetime import datetime
from typing import List, Optional

import structlog
import uvicorn
from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from auth import (
    AdminLoginDisabled,
    InvalidPassword,
    admin_login,
    admin_logout,
    create_anonymous_user,
    user_exists,
    verify_admin_token,
)
from cart import CartStore
from checkout import CheckoutFailed, CheckoutInvalid, CustomerDetails, Screenshot, place_order
from config import Settings, settings
from database import (
    ORDERS,
    PRODUCTS,
    OrderNotFound,
    StatusConflict,
    create_document,
    get_documents,
    get_order,
    parse_object_id,
    set_delivery_location,
    to_dict,
    transition_order_status,
    utcnow,
)
from feed import OrderFeed
from geocoding import GeocodingError, reverse_geocode
from order_status import CheckoutFlow, OrderStatus, TransitionRejected
from schemas import Location, Product
from storage import ImageRejected, StorageError, make_storage, product_image_path, validate_image
from views import (
    customer_orders_filter,
    fulfillment_queue_filter,
    order_card,
    payment_queue_filter,
    tracking_view,
)

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(settings.log_level)),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)

logger = structlog.get_logger()

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

feed = OrderFeed()
carts = CartStore()
bearer = HTTPBearer(auto_error=False)
_storage = None


# Dependencies
def get_settings() -> Settings:
    return settings


def get_db() -> Database:
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def get_storage(db: Database = Depends(get_db), cfg: Settings = Depends(get_settings)):
    global _storage
    if _storage is None:
        _storage = make_storage(cfg, db)
    return _storage


def current_user(x_user_id: Optional[str] = Header(None), db: Database = Depends(get_db)) -> str:
    if not x_user_id or not user_exists(db, x_user_id):
        raise HTTPException(status_code=401, detail="Unknown customer identity")
    return x_user_id


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Database = Depends(get_db),
) -> str:
    token = credentials.credentials if credentials else None
    if not verify_admin_token(db, token):
        raise HTTPException(
            status_code=401,
            detail="Admin login required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


# Utility helpers
def object_id(value: str) -> ObjectId:
    try:
        return parse_object_id(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid ID")


def field_error(field: str, message: str) -> dict:
    return {"loc": ["body", field], "msg": message, "type": "value_error"}


def read_upload(upload: Optional[UploadFile]):
    if upload is None or not upload.filename:
        return None, None, None
    return upload.file.read(), upload.content_type, upload.filename


def owned_order(db: Database, oid: ObjectId, user_id: str) -> dict:
    order = get_order(db, oid)
    if order.get("user_id") != user_id:
        # other customers' orders are reported as absent
        raise OrderNotFound(str(oid))
    return order


def sse(data: dict) -> str:
    return f"data: {json.dumps(data, default=str)}\n\n"


def tracking_events(order: dict, sub):
    """SSE frames for one order: the current view, then one frame per published snapshot."""
    try:
        yield sse(tracking_view(order))
        for snapshot in sub:
            if snapshot is None:
                yield ": keep-alive\n\n"
                continue
            yield sse(tracking_view(snapshot))
    finally:
        sub.close()


# Error mapping
@app.exception_handler(OrderNotFound)
async def order_not_found_handler(request: Request, exc: OrderNotFound):
    return JSONResponse(status_code=404, content={"detail": "Order not found"})


@app.exception_handler(TransitionRejected)
async def transition_rejected_handler(request: Request, exc: TransitionRejected):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StatusConflict)
async def status_conflict_handler(request: Request, exc: StatusConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.actual})


@app.exception_handler(ImageRejected)
async def image_rejected_handler(request: Request, exc: ImageRejected):
    return JSONResponse(status_code=422, content={"detail": [field_error(exc.field, exc.message)]})


@app.exception_handler(CheckoutInvalid)
async def checkout_invalid_handler(request: Request, exc: CheckoutInvalid):
    return JSONResponse(
        status_code=422,
        content={"detail": [field_error(k, v) for k, v in exc.errors.items()]},
    )


@app.exception_handler(CheckoutFailed)
async def checkout_failed_handler(request: Request, exc: CheckoutFailed):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("upload_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content={"detail": "Could not upload the image. Please try again."})


@app.exception_handler(GeocodingError)
async def geocoding_error_handler(request: Request, exc: GeocodingError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("database_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content={"detail": "Database request failed. Please try again."})


# Request models
class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateQuantityRequest(BaseModel):
    quantity: int


class AdminLoginRequest(BaseModel):
    password: str


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    expected_status: Optional[OrderStatus] = None


@app.get("/")
async def root():
    return {"message": "Storefront API running"}


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
    except PyMongoError as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# Customer identity
@app.post("/auth/anonymous", status_code=201)
def anonymous_sign_in(db: Database = Depends(get_db)):
    return {"user_id": create_anonymous_user(db)}


# Catalog
@app.get("/products")
def list_products(db: Database = Depends(get_db)):
    return get_documents(db, PRODUCTS, sort_field="created_at")


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    doc = db[PRODUCTS].find_one({"_id": object_id(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return to_dict(doc)


@app.get("/files/{path:path}")
def get_file(path: str, storage=Depends(get_storage)):
    try:
        stored = storage.get(path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=stored.data, media_type=stored.content_type)


# Cart
@app.get("/cart")
def get_cart(user_id: str = Depends(current_user)):
    return carts.get(user_id).snapshot()


@app.post("/cart/items", status_code=201)
def add_to_cart(req: AddToCartRequest, user_id: str = Depends(current_user), db: Database = Depends(get_db)):
    doc = db[PRODUCTS].find_one({"_id": object_id(req.product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    cart = carts.get(user_id)
    cart.add(to_dict(doc), req.quantity)
    return cart.snapshot()


@app.patch("/cart/items/{product_id}")
def update_cart_item(product_id: str, req: UpdateQuantityRequest, user_id: str = Depends(current_user)):
    cart = carts.get(user_id)
    try:
        cart.update_quantity(product_id, req.quantity)
    except KeyError:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return cart.snapshot()


@app.delete("/cart/items/{product_id}")
def remove_cart_item(product_id: str, user_id: str = Depends(current_user)):
    cart = carts.get(user_id)
    cart.remove(product_id)
    return cart.snapshot()


@app.delete("/cart")
def clear_cart(user_id: str = Depends(current_user)):
    cart = carts.get(user_id)
    cart.clear()
    return cart.snapshot()


# Checkout
@app.post("/checkout", status_code=201)
def checkout(
    customer_name: str = Form(""),
    customer_phone: str = Form(""),
    customer_address: str = Form(""),
    lat: Optional[float] = Form(None, ge=-90, le=90),
    lng: Optional[float] = Form(None, ge=-180, le=180),
    flow: Optional[CheckoutFlow] = Form(None),
    payment_screenshot: Optional[UploadFile] = File(None),
    user_id: str = Depends(current_user),
    db: Database = Depends(get_db),
    storage=Depends(get_storage),
    cfg: Settings = Depends(get_settings),
):
    if (lat is None) != (lng is None):
        raise HTTPException(status_code=422, detail=[field_error("location", "Both lat and lng are required")])
    location = Location(lat=lat, lng=lng) if lat is not None else None

    data, content_type, filename = read_upload(payment_screenshot)
    screenshot = Screenshot(data, content_type, filename) if filename else None

    details = CustomerDetails(
        name=customer_name,
        phone=customer_phone,
        address=customer_address,
        location=location,
    )
    return place_order(
        db,
        storage,
        carts.get(user_id),
        user_id,
        details,
        flow or CheckoutFlow(cfg.checkout_flow),
        screenshot,
        cfg.max_image_bytes,
    )


# Customer orders
@app.get("/orders")
def my_orders(user_id: str = Depends(current_user), db: Database = Depends(get_db)):
    orders = get_documents(db, ORDERS, customer_orders_filter(user_id), sort_field="order_date")
    return [order_card(o) for o in orders]


@app.get("/orders/{order_id}")
def my_order(order_id: str, user_id: str = Depends(current_user), db: Database = Depends(get_db)):
    order = owned_order(db, object_id(order_id), user_id)
    return {**order_card(order), "tracking": tracking_view(order)}


@app.get("/orders/{order_id}/events")
def order_events(order_id: str, user_id: str = Depends(current_user), db: Database = Depends(get_db)):
    order = owned_order(db, object_id(order_id), user_id)
    sub = feed.subscribe(order_id)
    return StreamingResponse(tracking_events(order, sub), media_type="text/event-stream")


# Delivery relay
@app.get("/delivery/{order_id}")
def delivery_order(order_id: str, db: Database = Depends(get_db)):
    order = get_order(db, object_id(order_id))
    return {
        "id": order["id"],
        "status": order["status"],
        "customer_name": order.get("customer_name"),
        "customer_address": order.get("customer_address"),
        "location": order.get("location"),
        "delivery_location": order.get("delivery_location"),
    }


@app.put("/delivery/{order_id}/location")
def update_delivery_location(order_id: str, location: Location, db: Database = Depends(get_db)):
    doc = set_delivery_location(db, object_id(order_id), location.model_dump())
    feed.publish(order_id, doc)
    logger.info("delivery_location_updated", order_id=order_id, lat=location.lat, lng=location.lng)
    return {"updated": True, "delivery_location": doc["delivery_location"]}


# Geocoding
@app.get("/geocode/reverse")
def geocode_reverse(lat: float, lng: float):
    return {"lat": lat, "lng": lng, "address": reverse_geocode(lat, lng)}


# Admin session
@app.post("/admin/login")
def login(req: AdminLoginRequest, db: Database = Depends(get_db), cfg: Settings = Depends(get_settings)):
    try:
        token, expires_at = admin_login(db, req.password, cfg)
    except AdminLoginDisabled:
        raise HTTPException(status_code=503, detail="Admin login is not configured")
    except InvalidPassword:
        raise HTTPException(status_code=401, detail="Incorrect password. Please try again.")
    return {"token": token, "token_type": "bearer", "expires_at": expires_at}


@app.post("/admin/logout")
def logout(token: str = Depends(require_admin), db: Database = Depends(get_db)):
    admin_logout(db, token)
    return {"logged_out": True}


# Products CRUD (admin)
@app.post("/admin/products", status_code=201)
def create_product(
    name: str = Form(..., min_length=3),
    description: str = Form(..., min_length=10),
    price: float = Form(..., ge=0),
    image: Optional[UploadFile] = File(None),
    _admin: str = Depends(require_admin),
    db: Database = Depends(get_db),
    storage=Depends(get_storage),
    cfg: Settings = Depends(get_settings),
):
    data, content_type, filename = read_upload(image)
    validate_image(data, content_type, cfg.max_image_bytes)

    image_url = storage.put(product_image_path(filename), data, content_type)
    product = Product(name=name, description=description, price=price, image_url=image_url)
    product_id = create_document(db, PRODUCTS, product)
    logger.info("product_created", product_id=product_id, name=name)
    return {"id": product_id, **product.model_dump()}


@app.put("/admin/products/{product_id}")
def update_product(
    product_id: str,
    name: str = Form(..., min_length=3),
    description: str = Form(..., min_length=10),
    price: float = Form(..., ge=0),
    image: Optional[UploadFile] = File(None),
    _admin: str = Depends(require_admin),
    db: Database = Depends(get_db),
    storage=Depends(get_storage),
    cfg: Settings = Depends(get_settings),
):
    oid = object_id(product_id)
    existing = db[PRODUCTS].find_one({"_id": oid})
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")

    image_url = existing.get("image_url")
    data, content_type, filename = read_upload(image)
    if filename:
        validate_image(data, content_type, cfg.max_image_bytes)
        image_url = storage.put(product_image_path(filename), data, content_type)

    product = Product(name=name, description=description, price=price, image_url=image_url)
    updates = {**product.model_dump(), "updated_at": utcnow()}
    db[PRODUCTS].update_one({"_id": oid}, {"$set": updates})
    logger.info("product_updated", product_id=product_id, image_replaced=bool(filename))
    return {"id": product_id, **product.model_dump()}


@app.delete("/admin/products/{product_id}")
def delete_product(product_id: str, _admin: str = Depends(require_admin), db: Database = Depends(get_db)):
    # The stored image is left in place on purpose.
    res = db[PRODUCTS].delete_one({"_id": object_id(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("product_deleted", product_id=product_id)
    return {"deleted": True}


# Orders (admin)
@app.get("/admin/orders")
def fulfillment_queue(_admin: str = Depends(require_admin), db: Database = Depends(get_db)):
    orders = get_documents(db, ORDERS, fulfillment_queue_filter(), sort_field="order_date")
    return [order_card(o) for o in orders]


@app.get("/admin/payments")
def payment_queue(_admin: str = Depends(require_admin), db: Database = Depends(get_db)):
    orders = get_documents(db, ORDERS, payment_queue_filter(), sort_field="order_date")
    return [order_card(o) for o in orders]


@app.get("/admin/orders/{order_id}")
def admin_order(order_id: str, _admin: str = Depends(require_admin), db: Database = Depends(get_db)):
    order = get_order(db, object_id(order_id))
    return {**order_card(order), "tracking": tracking_view(order)}


@app.post("/admin/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    req: StatusUpdateRequest,
    _admin: str = Depends(require_admin),
    db: Database = Depends(get_db),
):
    oid = object_id(order_id)
    expected = req.expected_status
    if expected is None:
        expected = OrderStatus(get_order(db, oid)["status"])
    doc = transition_order_status(db, oid, expected, req.status)
    feed.publish(order_id, doc)
    return order_card(doc)


@app.get("/admin/dashboard")
def dashboard(_admin: str = Depends(require_admin), db: Database = Depends(get_db)):
    counts = {s.value: 0 for s in OrderStatus}
    for row in db[ORDERS].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
        counts[row["_id"]] = row["count"]
    return {
        "products": db[PRODUCTS].count_documents({}),
        "orders": sum(counts.values()),
        "orders_by_status": counts,
    }


# Simple monthly report (orders summary)
@app.get("/admin/reports/monthly")
def monthly_report(
    year: Optional[int] = None,
    month: Optional[int] = None,
    _admin: str = Depends(require_admin),
    db: Database = Depends(get_db),
):
    now = utcnow()
    y = year or now.year
    m = month or now.month
    if not 1 <= m <= 12:
        raise HTTPException(status_code=422, detail="month must be between 1 and 12")

    start = datetime(y, m, 1)
    if m == 12:
        end = datetime(y + 1, 1, 1)
    else:
        end = datetime(y, m + 1, 1)

    pipeline = [
        {"$match": {"order_date": {"$gte": start, "$lt": end}}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "revenue": {"$sum": "$total_price"}}},
    ]
    agg: List[dict] = list(db[ORDERS].aggregate(pipeline))
    summary = {row["_id"]: {"orders": row["count"], "revenue": round(row["revenue"], 2)} for row in agg}
    total_orders = sum(row["count"] for row in agg) if agg else 0
    total_revenue = round(sum(row["revenue"] for row in agg), 2) if agg else 0.0

    return {"year": y, "month": m, "summary": summary, "total_orders": total_orders, "total_revenue": total_revenue}


def run() -> None:
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
