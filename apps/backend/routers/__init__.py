"""
API Routers
===========
FastAPI routers for the Catalog API.
"""

from .companies import router as companies_router
from .products import router as products_router
from .users import router as users_router

__all__ = ["companies_router", "products_router", "users_router"]
