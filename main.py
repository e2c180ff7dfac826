import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import catalog
import config
import orders
import reports
from database import Store, get_store
from errors import StoreError, Unauthorized
from schemas import WIRE_CONFIG, CartLine, CustomerInfo, Product, to_wire

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    try:
        store.init()
        if config.ADMIN_EMAIL and config.ADMIN_PASSWORD:
            auth.ensure_admin(store, config.ADMIN_EMAIL, config.ADMIN_PASSWORD, config.ADMIN_NAME)
    except PyMongoError as e:
        logger.error(f"database setup failed: {e}")
    yield


app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses

@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message}, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        messages.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"message": "; ".join(messages) or "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} failed")
    return JSONResponse(status_code=500, content={"message": "Server error"})


# Request models

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProductUpdate(BaseModel):
    model_config = WIRE_CONFIG

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    images: Optional[List[str]] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")
    featured: Optional[bool] = None


class OrderRequest(BaseModel):
    model_config = WIRE_CONFIG

    customer: CustomerInfo
    items: List[CartLine] = Field(..., min_length=1)
    payment_method: str = "cash"
    delivery_option: str = "standard"


class OrderStatusUpdate(BaseModel):
    status: str


class PaymentStatusUpdate(BaseModel):
    model_config = WIRE_CONFIG

    payment_status: str


@app.get("/")
def read_root():
    return {
        "message": "Storefront API is running",
        "version": app.version,
        "endpoints": {
            "auth": "/api/auth/*",
            "products": "/api/products",
            "orders": "/api/orders",
            "customers": "/api/customers",
            "admin": "/api/admin/*",
        },
    }


@app.get("/test")
def test_database(store: Store = Depends(get_store)):
    info = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "store": store.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        info.update(store.describe())
        info["connection_status"] = "Connected"
    except PyMongoError as e:
        info["database"] = f"⚠️ Error: {str(e)[:80]}"
    return info


# Auth routes
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, store: Store = Depends(get_store)):
    token, user = auth.register(store, payload.name, payload.email, payload.password, payload.phone)
    return to_wire({"message": "User registered successfully", "token": token, "user": user})


@app.post("/api/auth/login")
def login(payload: LoginRequest, store: Store = Depends(get_store)):
    token, user = auth.login(store, payload.email, payload.password)
    return to_wire({"message": "Login successful", "token": token, "user": user})


@app.get("/api/auth/me")
def me(user: dict = Depends(auth.get_current_user)):
    return to_wire({"user": user})


# Products
@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    featured: Optional[bool] = None,
    store: Store = Depends(get_store),
):
    return to_wire({"products": catalog.list_products(store, category, search, status, featured)})


@app.get("/api/products/{product_id}")
def get_product(product_id: str, store: Store = Depends(get_store)):
    return to_wire({"product": catalog.get_product(store, product_id)})


@app.post("/api/products", status_code=201)
def create_product(product: Product, store: Store = Depends(get_store), _: dict = Depends(auth.require_admin)):
    return to_wire({"message": "Product created", "product": catalog.create_product(store, product)})


@app.put("/api/products/{product_id}")
def update_product(product_id: str, update: ProductUpdate, store: Store = Depends(get_store),
                   _: dict = Depends(auth.require_admin)):
    product = catalog.update_product(store, product_id, update.model_dump(exclude_none=True))
    return to_wire({"message": "Product updated", "product": product})


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, store: Store = Depends(get_store), _: dict = Depends(auth.require_admin)):
    catalog.delete_product(store, product_id)
    return to_wire({"message": "Product deleted"})


@app.get("/api/categories")
def list_categories(store: Store = Depends(get_store)):
    return to_wire({"categories": catalog.list_categories(store)})


# Orders
@app.post("/api/orders", status_code=201)
def create_order(req: OrderRequest, store: Store = Depends(get_store)):
    order = orders.submit_order(store, req.customer, req.items, req.payment_method, req.delivery_option)
    return to_wire({"message": "Order created successfully", "order": order})


@app.get("/api/orders")
def list_orders(status: Optional[str] = None, store: Store = Depends(get_store),
                _: dict = Depends(auth.require_admin)):
    return to_wire({"orders": orders.list_orders(store, status)})


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, store: Store = Depends(get_store)):
    return to_wire({"order": orders.get_order(store, order_id)})


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, store: Store = Depends(get_store),
                        _: dict = Depends(auth.require_admin)):
    order = orders.update_order_status(store, order_id, payload.status)
    return to_wire({"message": "Order status updated", "order": order})


@app.put("/api/orders/{order_id}/payment")
def update_payment_status(order_id: str, payload: PaymentStatusUpdate, store: Store = Depends(get_store),
                          _: dict = Depends(auth.require_admin)):
    order = orders.update_payment_status(store, order_id, payload.payment_status)
    return to_wire({"message": "Payment status updated", "order": order})


# Customers
@app.get("/api/customers/{email}/orders")
def customer_orders(email: str, store: Store = Depends(get_store)):
    return to_wire({"orders": orders.list_customer_orders(store, email)})


@app.get("/api/customers")
def list_customers(store: Store = Depends(get_store), _: dict = Depends(auth.require_admin)):
    return to_wire({"customers": reports.list_customers_with_stats(store)})


# Admin
@app.get("/api/admin/stats")
def admin_stats(store: Store = Depends(get_store), _: dict = Depends(auth.require_admin)):
    return to_wire({"stats": reports.get_stats(store), "recent_orders": reports.recent_orders(store)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
