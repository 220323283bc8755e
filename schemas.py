"""
Database Schemas for the storefront

Each Pydantic model represents a record in one of the three collections of
the snapshot document (products, users, orders). Request bodies live next
to the routes in main.py.
"""

import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Role(str, Enum):
    admin = "admin"
    customer = "customer"


class Product(BaseModel):
    id: str
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, allow_inf_nan=False)
    category: str = Field(..., min_length=1)
    on_hand: int = Field(0, ge=0)
    description: str = ""


class User(BaseModel):
    """Public view of an account. Never carries credentials."""

    username: str
    email: EmailStr
    first: str
    last: str
    street_address: str = ""
    role: Role = Role.customer


class UserAccount(User):
    """Stored account: the public fields plus the bcrypt hash."""

    password_hash: str = Field(..., repr=False)

    def public(self) -> User:
        return User.model_validate(self.model_dump(exclude={"password_hash"}))


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price_at_purchase: float = Field(..., ge=0, allow_inf_nan=False)

    @property
    def subtotal(self) -> float:
        return self.unit_price_at_purchase * self.quantity


class Order(BaseModel):
    id: str
    username: str
    order_date: datetime
    ship_address: str
    items: List[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0, allow_inf_nan=False)
    status: str = "confirmed"


class Snapshot(BaseModel):
    """The whole persisted document at one point in time."""

    products: List[Product] = Field(default_factory=list)
    users: List[UserAccount] = Field(default_factory=list)
    orders: List[Order] = Field(default_factory=list)

    def find_product(self, product_id: str) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def find_user(self, username: str) -> Optional[UserAccount]:
        return next((u for u in self.users if u.username == username), None)

    def find_order(self, order_id: str) -> Optional[Order]:
        return next((o for o in self.orders if o.id == order_id), None)


class CartItem(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


_EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/(\d{2}|\d{4})$")


def luhn_ok(digits: str) -> bool:
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


class CreditCard(BaseModel):
    """Card-shaped payment input. Only the format is checked."""

    model_config = ConfigDict(hide_input_in_errors=True)

    number: str = Field(..., repr=False)
    cvv: str = Field(..., repr=False)
    expiry: str

    @field_validator("number")
    @classmethod
    def check_number(cls, v: str) -> str:
        digits = re.sub(r"[\s-]", "", v)
        if not digits.isdigit() or not 13 <= len(digits) <= 19:
            raise ValueError("card number must be 13-19 digits")
        if not luhn_ok(digits):
            raise ValueError("card number failed checksum")
        return digits

    @field_validator("cvv")
    @classmethod
    def check_cvv(cls, v: str) -> str:
        v = v.strip()
        if not re.fullmatch(r"\d{3,4}", v):
            raise ValueError("cvv must be 3 or 4 digits")
        return v

    @field_validator("expiry")
    @classmethod
    def check_expiry(cls, v: str) -> str:
        v = v.strip()
        if not _EXPIRY_RE.match(v):
            raise ValueError("expiry must be MM/YY or MM/YYYY")
        return v

    @property
    def last4(self) -> str:
        return self.number[-4:]
