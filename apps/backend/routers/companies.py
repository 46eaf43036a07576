"""
Companies Router
================
REST API endpoints for company management.

Endpoints:
- GET    /api/v1/companies          - List companies (paginated, searchable)
- GET    /api/v1/companies/stats    - Aggregate statistics
- GET    /api/v1/companies/{id}     - Company with users and first products
- POST   /api/v1/companies          - Create company
- PUT    /api/v1/companies/{id}     - Update company
- DELETE /api/v1/companies/{id}     - Deactivate company (soft delete)
"""

from fastapi import APIRouter, Depends

from dependencies import get_company_service, page_request, parse_id
from schemas import CompanyCreate, CompanyUpdate, PageRequest
from services.company_service import CompanyService

router = APIRouter()


@router.get("")
async def list_companies(
    request: PageRequest = Depends(page_request),
    service: CompanyService = Depends(get_company_service),
):
    """
    List companies with user and product counts.

    ``search`` matches trade name, contact name and email.
    """
    rows, pagination = await service.list(request)
    return {"success": True, "data": rows, "pagination": pagination}


@router.get("/stats")
async def company_stats(service: CompanyService = Depends(get_company_service)):
    return {"success": True, "data": await service.stats()}


@router.get("/{company_id}")
async def get_company(company_id: str, service: CompanyService = Depends(get_company_service)):
    company = await service.get(parse_id(company_id, "company"))
    return {"success": True, "data": company}


@router.post("", status_code=201)
async def create_company(payload: CompanyCreate, service: CompanyService = Depends(get_company_service)):
    company = await service.create(payload)
    return {"success": True, "message": "Company created successfully", "data": company}


@router.put("/{company_id}")
async def update_company(
    company_id: str,
    payload: CompanyUpdate,
    service: CompanyService = Depends(get_company_service),
):
    """Update a company. Only provided fields change."""
    company = await service.update(parse_id(company_id, "company"), payload)
    return {"success": True, "message": "Company updated successfully", "data": company}


@router.delete("/{company_id}")
async def delete_company(company_id: str, service: CompanyService = Depends(get_company_service)):
    company = await service.soft_delete(parse_id(company_id, "company"))
    return {"success": True, "message": "Company deactivated successfully", "data": company}
