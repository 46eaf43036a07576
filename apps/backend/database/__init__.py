"""
Database Package
================
SQLAlchemy models and the engine/session handle.
"""

from .models import (
    Base,
    Company,
    EntityStatus,
    Product,
    ProductInventory,
    ProductPrice,
    User,
)
from .session import Database

__all__ = [
    "Base",
    "Company",
    "Database",
    "EntityStatus",
    "Product",
    "ProductInventory",
    "ProductPrice",
    "User",
]
