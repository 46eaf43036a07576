"""
Catalog API - Company Service
=============================
Company listing, detail, mutations and aggregate statistics.
"""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from database import Company, Database, EntityStatus, Product, User
from exceptions import CatalogBaseException, ConflictError, NotFoundError
from logging_config import get_logger
from schemas import CompanyCreate, CompanyUpdate, PageRequest
from services.gateway import TableGateway, database_error
from services.pagination import paginate

logger = get_logger(__name__)

DETAIL_PRODUCT_LIMIT = 10


def company_gateway(database: Database) -> TableGateway:
    user_count = (
        select(func.count(User.id))
        .where(User.company_id == Company.id)
        .correlate(Company)
        .scalar_subquery()
    )
    product_count = (
        select(func.count(Product.id))
        .where(Product.company_id == Company.id)
        .correlate(Company)
        .scalar_subquery()
    )

    return TableGateway(
        database,
        Company,
        columns=[
            Company.id,
            Company.trade_name,
            Company.business_address,
            Company.contact_name,
            Company.phone,
            Company.email,
            Company.status,
            Company.hired_at,
            Company.sale_price,
            user_count.label("user_count"),
            product_count.label("product_count"),
        ],
        sortable={
            "id": Company.id,
            "trade_name": Company.trade_name,
            "contact_name": Company.contact_name,
            "email": Company.email,
            "status": Company.status,
            "hired_at": Company.hired_at,
            "sale_price": Company.sale_price,
            "created_at": Company.created_at,
        },
        search_fields=[Company.trade_name, Company.contact_name, Company.email],
        label="company",
    )


class CompanyService:
    """
    Service for managing companies.

    Features:
    - Paginated, searchable listing with user/product counts
    - Detail view with users and the first products
    - Create/update with unique email checks
    - Soft delete
    - Aggregate statistics
    """

    def __init__(self, database: Database, gateway: Optional[TableGateway] = None):
        self.database = database
        self.gateway = gateway or company_gateway(database)

    async def list(self, request: PageRequest) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        return await paginate(self.gateway, request)

    async def summary(self, company_id: int) -> Optional[Dict[str, Any]]:
        """``{id, trade_name}`` of a company, or None when it does not exist."""
        stmt = select(Company.id, Company.trade_name).where(Company.id == company_id)
        try:
            async with self.database.session() as session:
                row = (await session.execute(stmt)).mappings().first()
        except SQLAlchemyError as e:
            raise self._database_error("summary", e) from e
        return dict(row) if row is not None else None

    async def require_summary(self, company_id: int) -> Dict[str, Any]:
        company = await self.summary(company_id)
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    async def get(self, company_id: int) -> Dict[str, Any]:
        """Company with its users and up to ten products."""
        try:
            async with self.database.session() as session:
                company = await session.get(Company, company_id)
                if company is None:
                    raise NotFoundError("Company", company_id)

                users = (await session.execute(
                    select(User)
                    .where(User.company_id == company_id)
                    .order_by(User.id)
                )).scalars().all()

                products = (await session.execute(
                    select(Product)
                    .where(Product.company_id == company_id)
                    .order_by(Product.id)
                    .limit(DETAIL_PRODUCT_LIMIT)
                )).scalars().all()
        except SQLAlchemyError as e:
            raise self._database_error("get", e) from e

        data = company.to_dict()
        data["users"] = [
            {
                "id": user.id,
                "username": user.username,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "email": user.email,
                "status": user.status,
            }
            for user in users
        ]
        data["products"] = [
            {
                "id": product.id,
                "name": product.name,
                "code": product.code,
                "price": float(product.price) if product.price is not None else None,
                "status": product.status,
            }
            for product in products
        ]
        return data

    async def _ensure_email_free(self, session, email: Optional[str], exclude_id: Optional[int] = None) -> None:
        if not email:
            return
        stmt = select(Company.id).where(Company.email == email)
        if exclude_id is not None:
            stmt = stmt.where(Company.id != exclude_id)
        if (await session.execute(stmt)).first() is not None:
            raise ConflictError("A company with this email already exists", fields=["email"])

    async def create(self, payload: CompanyCreate) -> Dict[str, Any]:
        values = payload.model_dump()
        try:
            async with self.database.session() as session:
                await self._ensure_email_free(session, values.get("email"))
                company = Company(**values)
                session.add(company)
                await session.commit()
                await session.refresh(company)
        except SQLAlchemyError as e:
            raise self._database_error("create", e) from e

        logger.info("Company created", company_id=company.id)
        return company.to_dict()

    async def update(self, company_id: int, payload: CompanyUpdate) -> Dict[str, Any]:
        values = payload.model_dump(exclude_unset=True)
        try:
            async with self.database.session() as session:
                company = await session.get(Company, company_id)
                if company is None:
                    raise NotFoundError("Company", company_id)

                if values.get("email") and values["email"] != company.email:
                    await self._ensure_email_free(session, values["email"], exclude_id=company_id)

                for key, value in values.items():
                    setattr(company, key, value)
                await session.commit()
                await session.refresh(company)
        except SQLAlchemyError as e:
            raise self._database_error("update", e) from e

        logger.info("Company updated", company_id=company_id, fields=sorted(values))
        return company.to_dict()

    async def soft_delete(self, company_id: int) -> Dict[str, Any]:
        """Mark the company inactive; rows are never removed."""
        try:
            async with self.database.session() as session:
                company = await session.get(Company, company_id)
                if company is None:
                    raise NotFoundError("Company", company_id)
                company.status = EntityStatus.INACTIVE.value
                await session.commit()
                await session.refresh(company)
        except SQLAlchemyError as e:
            raise self._database_error("delete", e) from e

        logger.info("Company deactivated", company_id=company_id)
        return company.to_dict()

    async def stats(self) -> Dict[str, Any]:
        active = Company.status == EntityStatus.ACTIVE.value
        try:
            async with self.database.session() as session:
                total = (await session.execute(
                    select(func.count(Company.id)).where(active)
                )).scalar() or 0
                average = (await session.execute(
                    select(func.avg(Company.sale_price)).where(active)
                )).scalar()
                by_status = (await session.execute(
                    select(Company.status, func.count(Company.id).label("count"))
                    .group_by(Company.status)
                    .order_by(Company.status)
                )).mappings().all()
        except SQLAlchemyError as e:
            raise self._database_error("stats", e) from e

        return {
            "total_companies": int(total),
            "average_sale_price": float(average) if average is not None else None,
            "by_status": [dict(row) for row in by_status],
        }

    def _database_error(self, operation: str, error: Exception) -> CatalogBaseException:
        return database_error("company", operation, error)
