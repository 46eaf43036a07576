"""
Products Router
===============
REST API endpoints for the product catalog, including streaming exports.

Endpoints:
- GET    /api/v1/products                            - List products (paginated, searchable)
- GET    /api/v1/products/stream                     - Stream products as one chunked JSON document
- GET    /api/v1/products/stats                      - Aggregate statistics
- GET    /api/v1/products/company/{company_id}/stream - Stream one page of a company's products
- GET    /api/v1/products/company/{company_id}       - Products of a company (paginated)
- GET    /api/v1/products/status/{status}            - Products with a status (paginated)
- GET    /api/v1/products/{id}                       - Product with company, prices and inventory
- POST   /api/v1/products                            - Create product with prices and inventory
- PUT    /api/v1/products/{id}                       - Update product
- DELETE /api/v1/products/{id}                       - Retire product (soft delete)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from config import Settings
from dependencies import (
    get_app_settings,
    get_company_service,
    get_product_service,
    page_request,
    parse_id,
)
from exceptions import ValidationError
from schemas import PageRequest, ProductCreate, ProductUpdate
from services.company_service import CompanyService
from services.export import ExportResponse, ExportSession
from services.pagination import build_pagination
from services.product_service import ProductService

router = APIRouter()


def _check_export_limit(limit: int, settings: Settings) -> int:
    if limit < 1 or limit > settings.export_max_limit:
        raise ValidationError(
            f"limit must be between 1 and {settings.export_max_limit}",
            field="limit",
            value=limit,
        )
    return limit


@router.get("")
async def list_products(
    request: PageRequest = Depends(page_request),
    service: ProductService = Depends(get_product_service),
):
    """
    List products with their company summary.

    ``search`` matches name, code, product code, supplier key and description.
    """
    rows, pagination = await service.list(request)
    return {"success": True, "data": rows, "pagination": pagination}


@router.get("/stream")
async def stream_products(
    limit: Optional[int] = Query(None, description="Maximum rows to export"),
    service: ProductService = Depends(get_product_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Stream products as ``{"success":true,"data":[...],"total":N}``.

    The document is written row by row. A failure before the first row is a
    normal error response; a later failure closes the document with an
    ``error`` field and keeps status 200.
    """
    limit = _check_export_limit(settings.export_default_limit if limit is None else limit, settings)

    session = ExportSession(
        service.open_export_cursor(limit),
        name="products",
        row_timeout=settings.export_row_timeout_seconds,
        expose_errors=settings.debug,
    )
    await session.prime()
    return ExportResponse(session)


@router.get("/stats")
async def product_stats(service: ProductService = Depends(get_product_service)):
    return {"success": True, "data": await service.stats()}


@router.get("/company/{company_id}/stream")
async def stream_company_products(
    company_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(1000, ge=1),
    sort_by: str = Query("name", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder"),
    products: ProductService = Depends(get_product_service),
    companies: CompanyService = Depends(get_company_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Stream one page of a company's products.

    The id, page and sort are validated and the company is looked up before
    any byte is sent. The trailer carries the pagination block computed from
    the count taken before streaming, plus the number of rows streamed.
    """
    company_pk = parse_id(company_id, "company")
    _check_export_limit(limit, settings)
    sort = products.resolve_company_sort(sort_by, sort_order)

    company = await companies.require_summary(company_pk)
    total = await products.count_by_company(company_pk)
    pagination = build_pagination(page, limit, total)

    session = ExportSession(
        products.open_company_export_cursor(company_pk, sort=sort, page=page, limit=limit),
        name="company_products",
        head={"company": company},
        tail=lambda count: {"pagination": pagination, "streamedCount": count},
        row_timeout=settings.export_row_timeout_seconds,
        expose_errors=settings.debug,
    )
    await session.prime()
    return ExportResponse(session)


@router.get("/company/{company_id}")
async def list_company_products(
    company_id: str,
    request: PageRequest = Depends(page_request),
    products: ProductService = Depends(get_product_service),
    companies: CompanyService = Depends(get_company_service),
):
    company_pk = parse_id(company_id, "company")
    company = await companies.require_summary(company_pk)
    rows, pagination = await products.list_by_company(company_pk, request)
    return {"success": True, "company": company, "data": rows, "pagination": pagination}


@router.get("/status/{status}")
async def list_products_by_status(
    status: int,
    request: PageRequest = Depends(page_request),
    service: ProductService = Depends(get_product_service),
):
    rows, pagination = await service.list_by_status(status, request)
    return {"success": True, "status": status, "data": rows, "pagination": pagination}


@router.get("/{product_id}")
async def get_product(product_id: str, service: ProductService = Depends(get_product_service)):
    product = await service.get(parse_id(product_id, "product"))
    return {"success": True, "data": product}


@router.post("", status_code=201)
async def create_product(payload: ProductCreate, service: ProductService = Depends(get_product_service)):
    """
    Create a product together with its price list and inventory rows.

    The slug is derived from the name when not provided.
    """
    product = await service.create(payload)
    return {"success": True, "message": "Product created successfully", "data": product}


@router.put("/{product_id}")
async def update_product(
    product_id: str,
    payload: ProductUpdate,
    service: ProductService = Depends(get_product_service),
):
    product = await service.update(parse_id(product_id, "product"), payload)
    return {"success": True, "message": "Product updated successfully", "data": product}


@router.delete("/{product_id}")
async def delete_product(product_id: str, service: ProductService = Depends(get_product_service)):
    product = await service.soft_delete(parse_id(product_id, "product"))
    return {"success": True, "message": "Product retired successfully", "data": product}
