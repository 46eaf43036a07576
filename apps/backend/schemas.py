"""
Catalog API - Data Schemas
==========================
Pydantic models for request validation across companies, users and products.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


def reject_null(v):
    """Update schemas omit a field to keep it; null would clear a required column."""
    if v is None:
        raise ValueError("must not be null")
    return v


# =============================================================================
# Query Models
# =============================================================================

class PageRequest(BaseModel):
    """Validated listing parameters."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: Optional[str] = Field(default=None, alias="sortBy")
    sort_order: str = Field(default="asc", alias="sortOrder", pattern="^(asc|desc)$")
    search: Optional[str] = Field(default=None, max_length=200)

    @field_validator("search")
    @classmethod
    def blank_search_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# =============================================================================
# Company Models
# =============================================================================

class CompanyBase(BaseModel):
    business_address: Optional[str] = Field(default=None, max_length=512)
    contact_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[EmailStr] = None
    hired_at: Optional[date] = None
    sale_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)


class CompanyCreate(CompanyBase):
    """Request schema for creating a company."""

    trade_name: str = Field(..., min_length=1, max_length=255)
    status: int = Field(default=1, ge=0, le=1)


class CompanyUpdate(CompanyBase):
    """Request schema for updating a company. Omitted fields remain unchanged."""

    trade_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    status: Optional[int] = Field(default=None, ge=0, le=1)

    @field_validator("trade_name", "status")
    @classmethod
    def required_not_null(cls, v):
        return reject_null(v)


# =============================================================================
# User Models
# =============================================================================

class UserCreate(BaseModel):
    """Request schema for creating a user; the password is hashed before storage."""

    username: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=6, max_length=72)
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: Optional[str] = Field(default=None, max_length=128)
    email: EmailStr
    mobile: Optional[str] = Field(default=None, max_length=32)
    role_id: int = Field(default=1, ge=1)
    status: int = Field(default=1, ge=0, le=1)
    company_id: Optional[int] = Field(default=None, ge=1)


class UserUpdate(BaseModel):
    """Request schema for updating a user. A new password is re-hashed."""

    username: Optional[str] = Field(default=None, min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    password: Optional[str] = Field(default=None, min_length=6, max_length=72)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    last_name: Optional[str] = Field(default=None, max_length=128)
    email: Optional[EmailStr] = None
    mobile: Optional[str] = Field(default=None, max_length=32)
    role_id: Optional[int] = Field(default=None, ge=1)
    status: Optional[int] = Field(default=None, ge=0, le=1)
    company_id: Optional[int] = Field(default=None, ge=1)

    @field_validator("username", "first_name", "email", "role_id", "status")
    @classmethod
    def required_not_null(cls, v):
        return reject_null(v)


class LoginRequest(BaseModel):
    """Credentials; ``username`` also accepts an email address."""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=72)


# =============================================================================
# Product Models
# =============================================================================

class PriceIn(BaseModel):
    label: str = Field(..., min_length=1, max_length=128)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    min_quantity: int = Field(default=1, ge=1)
    company_id: Optional[int] = Field(default=None, ge=1)


class InventoryIn(BaseModel):
    warehouse: str = Field(..., min_length=1, max_length=128)
    quantity: int = Field(default=0, ge=0)


class ProductBase(BaseModel):
    supplier_key: Optional[str] = Field(default=None, max_length=64)
    slug: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    cost: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    weight: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=3)
    company_id: Optional[int] = Field(default=None, ge=1)


class ProductCreate(ProductBase):
    """
    Request schema for creating a product.

    ``prices`` and ``inventory`` rows are inserted in the same transaction as
    the product itself.
    """

    code: str = Field(..., min_length=1, max_length=64)
    product_code: Optional[str] = Field(default=None, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    status: int = Field(default=1, ge=0, le=1)
    is_rental: bool = False
    visible_in_ecommerce: bool = False
    published_by_marketplace: bool = False
    prices: List[PriceIn] = Field(default_factory=list)
    inventory: List[InventoryIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_warehouses(self) -> "ProductCreate":
        warehouses = [item.warehouse for item in self.inventory]
        if len(warehouses) != len(set(warehouses)):
            raise ValueError("inventory warehouses must be unique")
        return self


class ProductUpdate(ProductBase):
    """Request schema for updating a product. Omitted fields remain unchanged."""

    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    product_code: Optional[str] = Field(default=None, max_length=64)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    status: Optional[int] = Field(default=None, ge=0, le=1)
    is_rental: Optional[bool] = None
    visible_in_ecommerce: Optional[bool] = None
    published_by_marketplace: Optional[bool] = None

    @field_validator(
        "code",
        "name",
        "price",
        "status",
        "is_rental",
        "visible_in_ecommerce",
        "published_by_marketplace",
    )
    @classmethod
    def required_not_null(cls, v):
        return reject_null(v)
