import re
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import AliasChoices, BaseModel, Field, PlainSerializer, field_validator
from pydantic.config import ConfigDict

from .models import Role

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8

# kept exact in Python, sent to clients as a JSON number
Price = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def wire_name(field: str, name: str, **kwargs):
    """Field read by its own name or `name`, written to clients as `name`."""
    return Field(validation_alias=AliasChoices(field, name), serialization_alias=name, **kwargs)


class RegisterRequest(BaseModel):
    fullname: str
    username: str
    email: str
    password: str

    @field_validator("fullname", "username", "email")
    def strip_text(cls, v: str):
        return v.strip()

    @field_validator("fullname")
    def fullname_length(cls, v: str):
        if len(v) < 3:
            raise ValueError("full name must be at least 3 characters")
        return v

    @field_validator("username")
    def username_length(cls, v: str):
        if len(v) < 3:
            raise ValueError("username must be at least 3 characters")
        return v

    @field_validator("email")
    def email_format(cls, v: str):
        if not EMAIL_RE.match(v):
            raise ValueError("email address is not valid")
        return v

    @field_validator("password")
    def password_policy(cls, v: str):
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not re.search(r"[A-Z]", v):
            raise ValueError("password must contain an uppercase letter")
        if not re.search(r"[a-z]", v):
            raise ValueError("password must contain a lowercase letter")
        if not re.search(r"[0-9]", v):
            raise ValueError("password must contain a number")
        return v


class LoginRequest(BaseModel):
    # either the username or the email address
    username: Optional[str] = None
    password: Optional[str] = None


class Principal(BaseModel):
    id: int
    username: str
    email: str
    role: Role

    model_config = ConfigDict(from_attributes=True)


class AuthResponse(BaseModel):
    message: str
    token: str
    user: Principal


class VerifyResponse(BaseModel):
    user: Principal


class ProductFields(BaseModel):
    """Validated product attributes, ready to persist."""

    title: str
    description: str
    quantity: int
    price: Decimal


class ProductRead(BaseModel):
    id: int
    title: str = wire_name("title", "titulo")
    description: str = wire_name("description", "detalle")
    quantity: int = wire_name("quantity", "cantidad")
    price: Price = wire_name("price", "precio")
    image: Optional[str] = wire_name("image", "imagen", default=None)
    admin_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductMutationResponse(BaseModel):
    message: str
    product: ProductRead


class MessageResponse(BaseModel):
    message: str
    success: bool = True


class CartAdd(BaseModel):
    product_id: Optional[int] = None
    quantity: Optional[int] = None


class CartUpdate(BaseModel):
    quantity: Optional[int] = None


class CartAddResult(BaseModel):
    message: str
    id: int
    quantity: int


class CartLineView(BaseModel):
    id: int
    product_id: int
    quantity: int
    title: str = wire_name("title", "titulo")
    description: str = wire_name("description", "detalle")
    stock: int
    price: Price = wire_name("price", "precio")
    image: Optional[str] = wire_name("image", "imagen", default=None)

    model_config = ConfigDict(from_attributes=True)
