"""
Catalog Database Models
=======================
SQLAlchemy models for companies, users and products.
Rows are never hard-deleted: ``status = 0`` marks an inactive record.
"""

import enum
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class EntityStatus(int, enum.Enum):
    """
    Status codes shared by every entity.

    INACTIVE: soft-deleted (cancelled company, disabled user, retired product)
    ACTIVE: visible and usable
    """
    INACTIVE = 0
    ACTIVE = 1


def _money(value):
    return float(value) if isinstance(value, Decimal) else value


class TimestampMixin:
    created_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        doc="Server-side timestamp of record creation"
    )

    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        doc="Server-side timestamp of last update"
    )


class Company(TimestampMixin, Base):
    """
    Company that owns users and products.

    Attributes:
        id: Auto-increment identifier
        trade_name: Commercial name shown to customers
        email: Contact email, unique when present
        status: EntityStatus code
        hired_at: Date the company contracted the service
        sale_price: Price the service was sold at
    """
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trade_name = Column(String(255), nullable=False, index=True)
    business_address = Column(String(512), nullable=True)
    contact_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True, unique=True)
    status = Column(Integer, nullable=False, default=EntityStatus.ACTIVE.value, index=True)
    hired_at = Column(Date, nullable=True)
    sale_price = Column(Numeric(12, 2), nullable=True)

    users = relationship("User", back_populates="company")
    products = relationship("Product", back_populates="company")

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, trade_name='{self.trade_name}')>"

    def summary(self) -> dict:
        return {"id": self.id, "trade_name": self.trade_name}

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "trade_name": self.trade_name,
            "business_address": self.business_address,
            "contact_name": self.contact_name,
            "phone": self.phone,
            "email": self.email,
            "status": self.status,
            "hired_at": self.hired_at.isoformat() if self.hired_at else None,
            "sale_price": _money(self.sale_price),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class User(TimestampMixin, Base):
    """Login-capable user, optionally attached to a company."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), nullable=False, unique=True)
    password_hash = Column(String(128), nullable=False)
    first_name = Column(String(128), nullable=False)
    last_name = Column(String(128), nullable=True)
    email = Column(String(255), nullable=False, unique=True)
    mobile = Column(String(32), nullable=True)
    role_id = Column(Integer, nullable=False, default=1)
    status = Column(Integer, nullable=False, default=EntityStatus.ACTIVE.value, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)

    company = relationship("Company", back_populates="users")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"

    def to_dict(self) -> dict:
        """Public representation; the password hash is never included."""
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "mobile": self.mobile,
            "role_id": self.role_id,
            "status": self.status,
            "company_id": self.company_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Product(TimestampMixin, Base):
    """Sellable product or rentable item belonging to a company."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(64), nullable=False, unique=True)
    product_code = Column(String(64), nullable=True, unique=True)
    supplier_key = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    cost = Column(Numeric(12, 2), nullable=True)
    weight = Column(Numeric(10, 3), nullable=True)
    status = Column(Integer, nullable=False, default=EntityStatus.ACTIVE.value)
    is_rental = Column(Boolean, nullable=False, default=False)
    visible_in_ecommerce = Column(Boolean, nullable=False, default=False)
    published_by_marketplace = Column(Boolean, nullable=False, default=False)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)

    company = relationship("Company", back_populates="products")
    prices = relationship("ProductPrice", back_populates="product", cascade="all, delete-orphan")
    inventory = relationship("ProductInventory", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_products_company_status", "company_id", "status"),
        Index("ix_products_name", "name"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, code='{self.code}')>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "code": self.code,
            "product_code": self.product_code,
            "supplier_key": self.supplier_key,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "price": _money(self.price),
            "cost": _money(self.cost),
            "weight": _money(self.weight),
            "status": self.status,
            "is_rental": self.is_rental,
            "visible_in_ecommerce": self.visible_in_ecommerce,
            "published_by_marketplace": self.published_by_marketplace,
            "company_id": self.company_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProductPrice(Base):
    """Alternative price list entry for a product."""
    __tablename__ = "product_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    label = Column(String(128), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    min_quantity = Column(Integer, nullable=False, default=1)

    product = relationship("Product", back_populates="prices")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "company_id": self.company_id,
            "label": self.label,
            "price": _money(self.price),
            "min_quantity": self.min_quantity,
        }


class ProductInventory(Base):
    """Stock level of a product in one warehouse."""
    __tablename__ = "product_inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    warehouse = Column(String(128), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="inventory")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse": self.warehouse,
            "quantity": self.quantity,
        }
