"""
Catalog API - Application Context & Dependencies
================================================
Process-wide resources live on one ``AppContext`` built by ``create_app`` and
stored on ``app.state``. Handlers receive services through FastAPI
dependencies, so tests can swap any of them via ``app.dependency_overrides``.
"""

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Query, Request

from cache import ResponseCache
from config import Settings
from database import Database
from exceptions import RateLimitExceeded, ValidationError
from rate_limiter import RateLimiter, client_address
from schemas import PageRequest
from services.company_service import CompanyService
from services.product_service import ProductService
from services.user_service import UserService


@dataclass
class AppContext:
    """Resources owned by one application instance."""
    settings: Settings
    database: Database
    cache: ResponseCache
    login_limiter: RateLimiter
    started: bool = field(default=False, init=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppContext":
        return cls(
            settings=settings,
            database=Database(settings.database_url, echo=settings.database_echo),
            cache=ResponseCache(max_entries=settings.cache_max_entries),
            login_limiter=RateLimiter(
                max_requests=settings.login_rate_limit_max_requests,
                window_seconds=settings.login_rate_limit_window_seconds,
                scope="login",
            ),
        )

    async def startup(self) -> None:
        await self.database.initialize(create_schema=self.settings.auto_create_schema)
        self.started = True

    async def shutdown(self) -> None:
        self.cache.clear()
        await self.database.dispose()
        self.started = False


# =============================================================================
# Context providers
# =============================================================================

def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_app_settings(context: AppContext = Depends(get_context)) -> Settings:
    return context.settings


def get_database(context: AppContext = Depends(get_context)) -> Database:
    return context.database


def get_company_service(database: Database = Depends(get_database)) -> CompanyService:
    return CompanyService(database)


def get_user_service(context: AppContext = Depends(get_context)) -> UserService:
    return UserService(context.database, bcrypt_rounds=context.settings.bcrypt_rounds)


def get_product_service(context: AppContext = Depends(get_context)) -> ProductService:
    return ProductService(context.database, batch_size=context.settings.export_batch_size)


# =============================================================================
# Request parameters
# =============================================================================

def page_request(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Rows per page"),
    sort_by: Optional[str] = Query(None, alias="sortBy", description="Sort field"),
    sort_order: str = Query("asc", alias="sortOrder", pattern="^(asc|desc)$"),
    search: Optional[str] = Query(None, max_length=200, description="Case-insensitive substring"),
) -> PageRequest:
    return PageRequest(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order, search=search)


def parse_id(raw: str, entity: str) -> int:
    """
    Strictly parse a path identifier: ASCII digits only, at least 1.

    Raises:
        ValidationError: Before any database work is done
    """
    if not raw.isascii() or not raw.isdigit() or int(raw) < 1:
        raise ValidationError(f"Invalid {entity} id", field="id", value=raw)
    return int(raw)


def enforce_login_rate_limit(
    request: Request,
    context: AppContext = Depends(get_context),
) -> None:
    """Stricter per-client budget for credential checks."""
    allowed, retry_after = context.login_limiter.check_rate_limit(client_address(request))
    if not allowed:
        raise RateLimitExceeded(retry_after or 1.0, scope="login")
