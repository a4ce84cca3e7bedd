"""
Storefront Schemas

Pydantic models for the in-memory collections (users, products, carts) and
for the request/response bodies of the API. Field names follow the JSON the
frontend exchanges with the service, hence the camelCase.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from settings import DEFAULT_MAX_PRICE, DEFAULT_MIN_PRICE, DEFAULT_PAGE_SIZE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Collections

class User(BaseModel):
    id: int
    firstName: str
    lastName: str
    email: str = Field(..., description="Lower-cased email address, unique")
    passwordHash: str = Field(..., description="BCrypt hashed password")
    role: Literal["customer", "admin"] = "customer"

    def public(self) -> dict:
        return self.model_dump(exclude={"passwordHash"})


class Product(BaseModel):
    id: int
    name: str
    category: str
    price: float
    description: str = ""
    image: Optional[str] = None
    stock: int = 0
    rating: float = 4.0
    featured: bool = False


class CartItem(BaseModel):
    productId: int
    quantity: int = Field(..., description="Always >= 1 while the line exists")
    addedAt: datetime = Field(default_factory=utcnow)


class Cart(BaseModel):
    userId: int
    items: List[CartItem] = Field(default_factory=list)


# Product admin inputs
# Numeric fields are type-checked only; ranges are stored as given.

class ProductCreate(BaseModel):
    name: str
    category: str
    price: float
    description: str = ""
    image: Optional[str] = None
    stock: int = 0
    rating: float = 4.0


class ProductPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None
    image: Optional[str] = None
    stock: Optional[int] = None
    rating: Optional[float] = None
    featured: Optional[bool] = None


# Catalog query

class ProductQuery(BaseModel):
    search: str = ""
    category: str = ""
    minPrice: float = DEFAULT_MIN_PRICE
    maxPrice: float = DEFAULT_MAX_PRICE
    sortBy: str = "name"
    sortOrder: Literal["asc", "desc"] = "asc"
    page: int = Field(1, ge=1)
    limit: int = Field(DEFAULT_PAGE_SIZE, ge=1)


class Pagination(BaseModel):
    currentPage: int
    totalPages: int
    totalItems: int
    itemsPerPage: int


# Auth models
# Presence is checked by the route so the error message matches the client's expectations.

class RegisterInput(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class LoginInput(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AuthResponse(BaseModel):
    token: str
    user: dict


# Cart inputs

ProductRef = Union[int, str]


class CartAddInput(BaseModel):
    productId: ProductRef
    quantity: int = 1


class CartUpdateInput(BaseModel):
    productId: ProductRef
    quantity: int
