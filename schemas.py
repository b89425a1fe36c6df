"""
Database Schemas for the storefront

Each collection model corresponds to a MongoDB collection. Collection name is
the lowercase class name. Request bodies accept snake_case and camelCase keys.
"""
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import AliasChoices, AnyHttpUrl, BaseModel, EmailStr, Field, field_validator

ADMIN = "ADMIN"
VISITOR = "VISITOR"

Role = Literal["ADMIN", "VISITOR"]


# Collections

class User(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Role = VISITOR
    recovery_code: Optional[str] = None
    recovery_code_expires_at: Optional[datetime] = None


class Product(BaseModel):
    name: str = Field(..., min_length=3)
    description: Optional[str] = Field(None, min_length=10)
    price: float = Field(..., gt=0)
    image_url: Optional[AnyHttpUrl] = Field(None, validation_alias=AliasChoices("image_url", "imageUrl"))
    category: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    stock: int = Field(0, ge=0, strict=True)


class CartItem(BaseModel):
    cart_id: str
    product_id: str
    quantity: int = Field(..., ge=1, strict=True)


# Users

class UserCreate(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3)
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role: Optional[Role] = None

    @field_validator("name", "email", "password", "role")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("Field may not be null")
        return v


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: Role
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: Role
    token: str


class ForgotPasswordInput(BaseModel):
    email: EmailStr


class ResetPasswordInput(BaseModel):
    email: EmailStr
    recovery_code: str = Field(..., validation_alias=AliasChoices("recovery_code", "recoveryCode"))
    new_password: str = Field(..., validation_alias=AliasChoices("new_password", "newPassword"))


# Products

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3)
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[float] = Field(None, gt=0)
    image_url: Optional[AnyHttpUrl] = Field(None, validation_alias=AliasChoices("image_url", "imageUrl"))
    category: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0, strict=True)

    @field_validator("name", "price", "stock")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("Field may not be null")
        return v


# Cart

class AddToCartInput(BaseModel):
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(..., ge=1, strict=True)

    @field_validator("product_id")
    @classmethod
    def valid_product_id(cls, v: str) -> str:
        if not ObjectId.is_valid(v):
            raise ValueError("Invalid product id")
        return v


class UpdateCartItemInput(BaseModel):
    quantity: int = Field(..., ge=1, strict=True)


class ProductSnapshot(BaseModel):
    id: str
    name: str
    price: float
    image_url: Optional[str] = None
    stock: int


class CartItemOut(BaseModel):
    id: str
    cart_id: str
    product_id: str
    quantity: int
    product: Optional[ProductSnapshot] = None


class CartOut(BaseModel):
    id: Optional[str] = None
    user_id: str
    cart_items: List[CartItemOut] = Field(default_factory=list)
