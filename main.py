import asyncio
import contextlib
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field

import accounts
import catalog
import config
import orders
from database import Database, get_db
from errors import install_error_handlers
from schemas import Category, OptionGroup, OrderStatus, PaymentMethod, PaymentStatus, ProductStatus, Role, SocialProvider
from security import get_current_user, get_token_claims, require_admin


# ----------------------- Request bodies -----------------------
class SignupBody(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1)
    password: str = Field(..., min_length=accounts.MIN_PASSWORD_LENGTH)
    role: Role = "customer"
    address: Optional[str] = None


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class SocialLoginBody(BaseModel):
    provider: SocialProvider
    id_token: Optional[str] = None
    social_id: Optional[str] = None
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    profile_image: Optional[str] = None


class UserUpdateBody(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None
    role: Optional[Role] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None


class ProductCreateBody(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[Category] = None
    status: Optional[ProductStatus] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    options: Optional[List[OptionGroup]] = None


class ProductUpdateBody(ProductCreateBody):
    pass


class ShippingAddressBody(BaseModel):
    recipient_name: Optional[str] = None
    phone: Optional[str] = None
    postal_code: Optional[str] = None
    address: Optional[str] = None
    detail_address: Optional[str] = None
    delivery_request: str = ""


class OrderItemBody(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    selected_options: Dict[str, str] = {}


class OrderCreateBody(BaseModel):
    shipping_address: Optional[ShippingAddressBody] = None
    payment_method: Optional[PaymentMethod] = None
    items: List[OrderItemBody] = []
    notes: Optional[str] = None


class OrderStatusBody(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    cancelled_reason: Optional[str] = None
    refund_amount: Optional[float] = Field(None, ge=0)


class PaymentStatusBody(BaseModel):
    payment_status: PaymentStatus
    payment_id: Optional[str] = None


def ok(data=None, message: Optional[str] = None, **extra):
    body = {"success": True}
    if message:
        body["message"] = message
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body


def page_of(items: list, total: int, page: int, limit: int):
    return ok(items, count=len(items), total=total, page=page, pages=math.ceil(total / limit))


router = APIRouter(prefix="/api")


# ----------------------- Health -----------------------
@router.get("/health")
def health(db: Database = Depends(get_db)):
    connected = db.connected and db.health_check()
    return {
        "success": True,
        "database": {"connected": connected, "name": db.name if connected else None},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ----------------------- Auth -----------------------
@router.post("/auth/register", status_code=201)
def register(body: SignupBody, db: Database = Depends(get_db)):
    user = accounts.register(db, body.email, body.name, body.password, "customer", body.address)
    return ok(user, "Signed up")


@router.post("/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    return ok(accounts.login(db, body.email, body.password), "Logged in")


@router.post("/auth/social")
def social_login(body: SocialLoginBody, response: Response, db: Database = Depends(get_db)):
    session, created = accounts.social_login(db, body.provider, body)
    if created:
        response.status_code = 201
        return ok(session, "Signed up and logged in")
    return ok(session, "Logged in")


@router.get("/auth/me")
def me(claims: dict = Depends(get_token_claims), db: Database = Depends(get_db)):
    return ok(accounts.current_user(db, claims))


# ----------------------- Users -----------------------
@router.get("/users")
def list_users(db: Database = Depends(get_db)):
    users = accounts.list_users(db)
    return ok(users, count=len(users))


@router.get("/users/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    return ok(accounts.get_user(db, user_id))


@router.post("/users", status_code=201)
def create_user(body: SignupBody, db: Database = Depends(get_db)):
    user = accounts.register(db, body.email, body.name, body.password, body.role, body.address)
    return ok(user, "User created")


@router.put("/users/{user_id}")
def update_user(user_id: str, body: UserUpdateBody, db: Database = Depends(get_db)):
    user = accounts.update_user(db, user_id, body.model_dump(exclude_unset=True))
    return ok(user, "User updated")


@router.delete("/users/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db)):
    accounts.delete_user(db, user_id)
    return ok({}, "User deleted")


# ----------------------- Products -----------------------
@router.get("/products")
def list_products(
    category: Optional[Category] = None,
    status: Optional[ProductStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    items, total = catalog.list_products(db, category, status, search, page, limit)
    return page_of(items, total, page, limit)


@router.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok(catalog.get_product(db, product_id))


@router.post("/products", status_code=201)
def create_product(body: ProductCreateBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    product = catalog.create_product(db, user, body.model_dump(exclude_none=True))
    return ok(product, "Product created")


@router.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    product = catalog.update_product(db, user, product_id, body.model_dump(exclude_unset=True))
    return ok(product, "Product updated")


@router.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, user, product_id)
    return ok({}, "Product deleted")


# ----------------------- Orders -----------------------
@router.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = orders.create_order(
        db,
        user,
        body.shipping_address.model_dump() if body.shipping_address else None,
        body.payment_method,
        [i.model_dump() for i in body.items],
        body.notes,
    )
    return ok(order, "Order created")


@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    items, total = orders.list_user_orders(db, user, page, limit)
    return page_of(items, total, page, limit)


@router.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(orders.get_order(db, user, order_id))


@router.put("/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    order = orders.update_order_status(
        db, order_id, body.status, body.tracking_number, body.cancelled_reason, body.refund_amount
    )
    return ok(order, "Order status updated")


@router.put("/orders/{order_id}/payment")
def update_payment_status(order_id: str, body: PaymentStatusBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = orders.update_payment_status(db, order_id, body.payment_status, body.payment_id)
    return ok(order, "Payment status updated")


# ----------------------- App -----------------------
async def watch_database(db: Database, interval: float):
    while True:
        await asyncio.sleep(interval)
        if not await run_in_threadpool(db.health_check):
            await run_in_threadpool(db.reconnect)


def create_app(db: Optional[Database] = None, health_interval: float = config.DB_HEALTH_INTERVAL) -> FastAPI:
    db = db or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config.setup_logging()
        if not db.connected:
            await run_in_threadpool(db.connect)
        watcher = app.state.watcher = asyncio.create_task(watch_database(db, health_interval))
        try:
            yield
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
            db.close()

    app = FastAPI(title="OKI-MALL API", version="1.0.0", lifespan=lifespan)
    app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.get("/")
    def root(request: Request):
        database = request.app.state.db
        return {
            "message": "OKI-MALL API running",
            "version": app.version,
            "database": {"connected": database.connected, "name": database.name},
        }

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    config.setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
