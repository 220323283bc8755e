"""
Storefront API: FastAPI application factory and routes.

Usage:
    uvicorn main:create_app --factory --port 8000
    python main.py
"""

import os
import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field, ValidationError as SchemaError, field_validator

from checkout import Settlement, checkout
from config import Settings, load_settings
from database import JsonStore, generate_id
from errors import Conflict, Forbidden, InvalidCredentials, NotFound, ValidationError, register_exception_handlers
from logging_config import add_context, clear_context, configure_logging
from orders import delete_order, get_order, list_orders, update_order
from schemas import CartItem, CreditCard, Order, Product, Role, User, UserAccount
from security import (
    Identity,
    PasswordHasher,
    TokenSigner,
    get_admin_identity,
    get_current_identity,
    oauth2_scheme,
    require_self_or_admin,
)

logger = structlog.get_logger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,30}$")
MIN_PASSWORD_LENGTH = 6


# Request / response bodies
class AuthRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    token: str
    token_type: str = "bearer"
    user: User


def _check_password(v: str) -> str:
    if len(v) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return v


class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str
    first: str = Field(..., min_length=1)
    last: str = Field(..., min_length=1)
    street_address: str = ""
    role: Role = Role.customer

    @field_validator("username")
    @classmethod
    def check_username(cls, v: str) -> str:
        if not USERNAME_RE.match(v):
            raise ValueError("username must be 3-30 letters, digits or underscores")
        return v

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _check_password(v)


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    first: Optional[str] = Field(None, min_length=1)
    last: Optional[str] = Field(None, min_length=1)
    street_address: Optional[str] = None
    password: Optional[str] = None
    role: Optional[Role] = None

    @field_validator("password")
    @classmethod
    def check_password(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_password(v)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, allow_inf_nan=False)
    category: str = Field(..., min_length=1)
    on_hand: int = Field(..., ge=0)
    description: str = Field(..., min_length=1)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    category: Optional[str] = Field(None, min_length=1)
    on_hand: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None


class OrderUpdate(BaseModel):
    status: Optional[str] = Field(None, min_length=1)
    ship_address: Optional[str] = Field(None, min_length=1)


class CheckoutRequest(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    ship_address: str = Field(..., min_length=1)
    credit_card: CreditCard


class MessageResponse(BaseModel):
    message: str


# Dependencies
def get_store(request: Request) -> JsonStore:
    return request.app.state.store


def get_hasher(request: Request) -> PasswordHasher:
    return request.app.state.hasher


def get_signer(request: Request) -> TokenSigner:
    return request.app.state.signer


# Helper to accept either JSON or form for login
async def parse_auth_request(request: Request) -> AuthRequest:
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        data = {"username": form.get("username") or "", "password": form.get("password") or ""}
    else:
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Request body must be JSON or form encoded")
    if not isinstance(data, dict):
        raise ValidationError("Username and password required")
    try:
        return AuthRequest(**data)
    except SchemaError:
        raise ValidationError("Username and password required")


def create_user(store: JsonStore, hasher: PasswordHasher, body: RegisterRequest) -> UserAccount:
    password_hash = hasher.hash(body.password)
    account = UserAccount(**body.model_dump(exclude={"password"}), password_hash=password_hash)
    with store.transaction() as snapshot:
        if any(u.username == body.username or u.email.lower() == body.email.lower() for u in snapshot.users):
            raise Conflict("Username or email already exists", username=body.username)
        snapshot.users.append(account)
    return account


def ensure_admin(store: JsonStore, hasher: PasswordHasher, settings: Settings) -> None:
    """Create the configured bootstrap administrator if it is missing."""
    if not (settings.admin_username and settings.admin_email and settings.admin_password):
        return
    if store.load_snapshot().find_user(settings.admin_username):
        return
    body = RegisterRequest(
        username=settings.admin_username,
        email=settings.admin_email,
        password=settings.admin_password,
        first="Admin",
        last="User",
        role=Role.admin,
    )
    try:
        create_user(store, hasher, body)
    except Conflict:
        logger.warning("Bootstrap admin email already in use", username=settings.admin_username)
        return
    logger.info("Bootstrap admin created", username=settings.admin_username)


# Auth routes
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register", status_code=201, response_model=Token)
def register(
    body: RegisterRequest,
    store: JsonStore = Depends(get_store),
    hasher: PasswordHasher = Depends(get_hasher),
    signer: TokenSigner = Depends(get_signer),
    token: Optional[str] = Depends(oauth2_scheme),
):
    if body.role != Role.customer:
        requester = signer.verify_session(token) if token else None
        if requester is None or not requester.is_admin:
            raise Forbidden("Only an admin can create admin accounts", username=body.username)
    account = create_user(store, hasher, body)
    logger.info("User registered", username=account.username, role=account.role.value)
    session_token = signer.issue_session(account.username, account.role)
    return Token(token=session_token, user=account.public())


@auth_router.post("/login", response_model=Token)
async def login(request: Request):
    auth = await parse_auth_request(request)
    return await run_in_threadpool(authenticate, request.app.state.store, request.app.state.hasher,
                                   request.app.state.signer, auth)


def authenticate(store: JsonStore, hasher: PasswordHasher, signer: TokenSigner, auth: AuthRequest) -> Token:
    user = store.load_snapshot().find_user(auth.username)
    if user is None or not hasher.verify(auth.password, user.password_hash):
        logger.info("Login failed", username=auth.username)
        raise InvalidCredentials("Invalid credentials")

    logger.info("Login succeeded", username=user.username)
    return Token(token=signer.issue_session(user.username, user.role), user=user.public())


# Products
product_router = APIRouter(prefix="/api/products", tags=["products"])


@product_router.get("", response_model=List[Product])
def list_products(search: Optional[str] = None, category: Optional[str] = None, store: JsonStore = Depends(get_store)):
    products = store.load_snapshot().products
    if search:
        term = search.lower()
        products = [p for p in products if term in p.name.lower() or term in p.description.lower()]
    if category:
        products = [p for p in products if p.category.lower() == category.lower()]
    return products


@product_router.get("/{product_id}", response_model=Product)
def get_product(product_id: str, store: JsonStore = Depends(get_store)):
    product = store.load_snapshot().find_product(product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", product_id=product_id)
    return product


@product_router.post("", status_code=201, response_model=Product)
def create_product(body: ProductCreate, store: JsonStore = Depends(get_store), admin: Identity = Depends(get_admin_identity)):
    product = Product(id=generate_id(), **body.model_dump())
    with store.transaction() as snapshot:
        snapshot.products.append(product)
    logger.info("Product created", product_id=product.id, by=admin.username)
    return product


@product_router.patch("/{product_id}", response_model=Product)
def update_product(
    product_id: str,
    update: ProductUpdate,
    store: JsonStore = Depends(get_store),
    admin: Identity = Depends(get_admin_identity),
):
    update_dict = update.model_dump(exclude_none=True)
    with store.transaction() as snapshot:
        index = next((i for i, p in enumerate(snapshot.products) if p.id == product_id), None)
        if index is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        updated = Product(**{**snapshot.products[index].model_dump(), **update_dict})
        snapshot.products[index] = updated
    logger.info("Product updated", product_id=product_id, by=admin.username, fields=sorted(update_dict))
    return updated


@product_router.delete("/{product_id}", response_model=MessageResponse)
def delete_product(product_id: str, store: JsonStore = Depends(get_store), admin: Identity = Depends(get_admin_identity)):
    with store.transaction() as snapshot:
        before = len(snapshot.products)
        snapshot.products[:] = [p for p in snapshot.products if p.id != product_id]
        if len(snapshot.products) == before:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
    logger.info("Product deleted", product_id=product_id, by=admin.username)
    return MessageResponse(message="Product deleted successfully")


# Users
user_router = APIRouter(prefix="/api/users", tags=["users"])


@user_router.get("", response_model=List[User])
def list_users(store: JsonStore = Depends(get_store), _: Identity = Depends(get_admin_identity)):
    return [u.public() for u in store.load_snapshot().users]


@user_router.get("/{username}", response_model=User)
def get_user(username: str, store: JsonStore = Depends(get_store), identity: Identity = Depends(get_current_identity)):
    require_self_or_admin(identity, username)
    user = store.load_snapshot().find_user(username)
    if user is None:
        raise NotFound(f"User {username} not found", username=username)
    return user.public()


@user_router.patch("/{username}", response_model=User)
def update_user(
    username: str,
    update: UserUpdate,
    store: JsonStore = Depends(get_store),
    hasher: PasswordHasher = Depends(get_hasher),
    identity: Identity = Depends(get_current_identity),
):
    require_self_or_admin(identity, username)
    changes = update.model_dump(exclude_none=True)
    if "role" in changes and not identity.is_admin:
        raise Forbidden("Only an admin can change roles", username=identity.username)
    password = changes.pop("password", None)
    if password is not None:
        changes["password_hash"] = hasher.hash(password)

    with store.transaction() as snapshot:
        index = next((i for i, u in enumerate(snapshot.users) if u.username == username), None)
        if index is None:
            raise NotFound(f"User {username} not found", username=username)
        email = changes.get("email")
        if email and any(u.email.lower() == email.lower() and u.username != username for u in snapshot.users):
            raise Conflict("Email already in use", email=email)
        updated = UserAccount(**{**snapshot.users[index].model_dump(), **changes})
        snapshot.users[index] = updated

    logger.info("User updated", username=username, by=identity.username, fields=sorted(update.model_dump(exclude_none=True)))
    return updated.public()


# Orders
order_router = APIRouter(prefix="/api", tags=["orders"])


@order_router.get("/orders", response_model=List[Order])
def orders_index(store: JsonStore = Depends(get_store), identity: Identity = Depends(get_current_identity)):
    return list_orders(store, identity)


@order_router.get("/orders/{order_id}", response_model=Order)
def orders_detail(order_id: str, store: JsonStore = Depends(get_store), identity: Identity = Depends(get_current_identity)):
    return get_order(store, identity, order_id)


@order_router.patch("/orders/{order_id}", response_model=Order)
def orders_update(
    order_id: str,
    update: OrderUpdate,
    store: JsonStore = Depends(get_store),
    admin: Identity = Depends(get_admin_identity),
):
    return update_order(store, admin, order_id, update.model_dump(exclude_none=True))


@order_router.delete("/orders/{order_id}", response_model=MessageResponse)
def orders_delete(order_id: str, store: JsonStore = Depends(get_store), admin: Identity = Depends(get_admin_identity)):
    delete_order(store, admin, order_id)
    return MessageResponse(message="Order deleted successfully")


@order_router.post("/checkout", status_code=201, response_model=Settlement)
def checkout_cart(body: CheckoutRequest, store: JsonStore = Depends(get_store), identity: Identity = Depends(get_current_identity)):
    return checkout(store, identity, body.items, body.ship_address, body.credit_card)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.environment)

    app = FastAPI(title="Storefront API")
    app.state.settings = settings
    app.state.store = JsonStore(settings.database_path)
    app.state.hasher = PasswordHasher(settings.bcrypt_rounds)
    app.state.signer = TokenSigner.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        clear_context()
        add_context(request_id=request_id, method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_context()
        response.headers["X-Request-ID"] = request_id
        return response

    register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(product_router)
    app.include_router(user_router)
    app.include_router(order_router)

    @app.get("/api/health")
    def health():
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    ensure_admin(app.state.store, app.state.hasher, settings)
    logger.info("Storefront API ready", database=settings.database_path)
    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
