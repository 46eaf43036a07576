"""
Catalog API - Product Service
=============================
Product catalog operations: listings, detail with prices and inventory,
transactional creation, soft delete, statistics and export cursors.
"""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from database import (
    Company,
    Database,
    EntityStatus,
    Product,
    ProductInventory,
    ProductPrice,
)
from exceptions import CatalogBaseException, ConflictError, NotFoundError, ValidationError
from logging_config import get_logger
from schemas import PageRequest, ProductCreate, ProductUpdate
from security import slugify
from services.gateway import RowCursor, SortSpec, TableGateway, database_error, nest_company
from services.pagination import paginate

logger = get_logger(__name__)


PRODUCT_SORTABLE = {
    "id": Product.id,
    "code": Product.code,
    "name": Product.name,
    "price": Product.price,
    "cost": Product.cost,
    "status": Product.status,
    "created_at": Product.created_at,
}


def product_gateway(database: Database) -> TableGateway:
    return TableGateway(
        database,
        Product,
        columns=[
            Product.id,
            Product.code,
            Product.product_code,
            Product.supplier_key,
            Product.name,
            Product.slug,
            Product.price,
            Product.cost,
            Product.status,
            Product.is_rental,
            Product.visible_in_ecommerce,
            Product.published_by_marketplace,
            Product.company_id,
            Company.trade_name.label("company_trade_name"),
        ],
        sortable={**PRODUCT_SORTABLE, "company_id": Product.company_id},
        search_fields=[
            Product.name,
            Product.code,
            Product.product_code,
            Product.supplier_key,
            Product.description,
        ],
        joins=[(Company, Product.company_id == Company.id)],
        label="product",
    )


def export_gateway(database: Database, batch_size: int = 500) -> TableGateway:
    """Flat projection streamed by ``GET /products/stream``."""
    return TableGateway(
        database,
        Product,
        columns=[
            Product.id,
            Product.code,
            Product.name,
            Product.description,
            Product.price,
            Product.cost,
            Product.weight,
            Product.status,
            Product.is_rental,
            Product.visible_in_ecommerce,
            Product.published_by_marketplace,
            Product.created_at,
            Product.company_id,
        ],
        sortable={"id": Product.id},
        label="product_export",
        batch_size=batch_size,
    )


def company_export_gateway(database: Database, batch_size: int = 500) -> TableGateway:
    """Projection streamed by ``GET /products/company/{id}/stream``."""
    return TableGateway(
        database,
        Product,
        columns=[
            Product.id,
            Product.code,
            Product.name,
            Product.description,
            Product.price,
            Product.cost,
            Product.status,
            Product.visible_in_ecommerce,
            Product.published_by_marketplace,
        ],
        sortable=PRODUCT_SORTABLE,
        label="company_product_export",
        batch_size=batch_size,
    )


class ProductService:
    """
    Service for managing products.

    Listing and export share the gateway query path; exports receive an open
    ``RowCursor`` that the streaming pipeline owns and closes.
    """

    def __init__(
        self,
        database: Database,
        gateway: Optional[TableGateway] = None,
        stream_gateway: Optional[TableGateway] = None,
        company_stream_gateway: Optional[TableGateway] = None,
        batch_size: int = 500,
    ):
        self.database = database
        self.gateway = gateway or product_gateway(database)
        self.stream_gateway = stream_gateway or export_gateway(database, batch_size)
        self.company_stream_gateway = company_stream_gateway or company_export_gateway(database, batch_size)

    # =========================================================================
    # Listings
    # =========================================================================

    async def list(self, request: PageRequest) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        rows, pagination = await paginate(self.gateway, request)
        return [nest_company(row) for row in rows], pagination

    async def list_by_company(self, company_id: int, request: PageRequest) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        rows, pagination = await paginate(
            self.gateway,
            request,
            filters=[Product.company_id == company_id],
            default_sort="name",
        )
        return [nest_company(row) for row in rows], pagination

    async def list_by_status(self, status: int, request: PageRequest) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        rows, pagination = await paginate(
            self.gateway,
            request,
            filters=[Product.status == status],
            default_sort="name",
        )
        return [nest_company(row) for row in rows], pagination

    # =========================================================================
    # Export cursors
    # =========================================================================

    def open_export_cursor(self, limit: int) -> RowCursor:
        """First ``limit`` products in id order."""
        return self.stream_gateway.open_cursor(sort=SortSpec("id"), limit=limit)

    def resolve_company_sort(self, sort_by: Optional[str], sort_order: Optional[str]) -> SortSpec:
        return self.company_stream_gateway.resolve_sort(sort_by, sort_order)

    def open_company_export_cursor(self, company_id: int, sort: SortSpec, page: int, limit: int) -> RowCursor:
        return self.company_stream_gateway.open_cursor(
            filters=[Product.company_id == company_id],
            sort=sort,
            limit=limit,
            offset=(page - 1) * limit,
        )

    async def count_by_company(self, company_id: int) -> int:
        return await self.company_stream_gateway.count(filters=[Product.company_id == company_id])

    # =========================================================================
    # Detail and mutations
    # =========================================================================

    async def _load(self, session, product_id: int) -> Product:
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .options(
                selectinload(Product.company),
                selectinload(Product.prices),
                selectinload(Product.inventory),
            )
            .execution_options(populate_existing=True)
        )
        product = (await session.execute(stmt)).scalars().first()
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    @staticmethod
    def _detail(product: Product) -> Dict[str, Any]:
        data = product.to_dict()
        data["company"] = product.company.summary() if product.company is not None else None
        data["prices"] = [price.to_dict() for price in product.prices]
        data["inventory"] = [item.to_dict() for item in product.inventory]
        return data

    async def get(self, product_id: int) -> Dict[str, Any]:
        try:
            async with self.database.session() as session:
                product = await self._load(session, product_id)
                return self._detail(product)
        except SQLAlchemyError as e:
            raise self._database_error("get", e) from e

    async def _check_codes(
        self,
        session,
        code: Optional[str],
        product_code: Optional[str],
        exclude_id: Optional[int] = None,
    ) -> None:
        clauses = []
        if code:
            clauses.append(Product.code == code)
        if product_code:
            clauses.append(Product.product_code == product_code)
        if not clauses:
            return

        stmt = select(Product.code, Product.product_code).where(or_(*clauses))
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)

        existing = (await session.execute(stmt)).first()
        if existing is not None:
            fields = []
            if code and existing.code == code:
                fields.append("code")
            if product_code and existing.product_code == product_code:
                fields.append("product_code")
            raise ConflictError("A product with this code already exists", fields=fields)

    async def _check_company(self, session, company_id: Optional[int]) -> None:
        if company_id is None:
            return
        if await session.get(Company, company_id) is None:
            raise ValidationError("Company does not exist", field="company_id", value=company_id)

    async def create(self, payload: ProductCreate) -> Dict[str, Any]:
        """Insert the product, its prices and its inventory in one transaction."""
        values = payload.model_dump(exclude={"prices", "inventory"})
        if not values.get("slug"):
            values["slug"] = slugify(values["name"])

        try:
            async with self.database.session() as session:
                await self._check_codes(session, values["code"], values.get("product_code"))
                await self._check_company(session, values.get("company_id"))

                product = Product(**values)
                product.prices = [ProductPrice(**price.model_dump()) for price in payload.prices]
                product.inventory = [ProductInventory(**item.model_dump()) for item in payload.inventory]
                session.add(product)
                await session.commit()

                product = await self._load(session, product.id)
                data = self._detail(product)
        except SQLAlchemyError as e:
            raise self._database_error("create", e) from e

        logger.info(
            "Product created",
            product_id=data["id"],
            prices=len(payload.prices),
            warehouses=len(payload.inventory),
        )
        return data

    async def update(self, product_id: int, payload: ProductUpdate) -> Dict[str, Any]:
        values = payload.model_dump(exclude_unset=True)

        try:
            async with self.database.session() as session:
                product = await session.get(Product, product_id)
                if product is None:
                    raise NotFoundError("Product", product_id)

                code = values.get("code") if values.get("code") != product.code else None
                product_code = (
                    values.get("product_code")
                    if values.get("product_code") != product.product_code
                    else None
                )
                await self._check_codes(session, code, product_code, exclude_id=product_id)
                if "company_id" in values:
                    await self._check_company(session, values["company_id"])

                if values.get("name") and not values.get("slug"):
                    values["slug"] = slugify(values["name"])

                for key, value in values.items():
                    setattr(product, key, value)
                await session.commit()

                product = await self._load(session, product_id)
                data = self._detail(product)
        except SQLAlchemyError as e:
            raise self._database_error("update", e) from e

        logger.info("Product updated", product_id=product_id, fields=sorted(values))
        return data

    async def soft_delete(self, product_id: int) -> Dict[str, Any]:
        try:
            async with self.database.session() as session:
                product = await session.get(Product, product_id)
                if product is None:
                    raise NotFoundError("Product", product_id)
                product.status = EntityStatus.INACTIVE.value
                await session.commit()
                await session.refresh(product)
        except SQLAlchemyError as e:
            raise self._database_error("delete", e) from e

        logger.info("Product deactivated", product_id=product_id)
        return product.to_dict()

    async def stats(self) -> Dict[str, Any]:
        active = Product.status == EntityStatus.ACTIVE.value
        try:
            async with self.database.session() as session:
                aggregate = (await session.execute(
                    select(
                        func.count(Product.id).label("total"),
                        func.avg(Product.price).label("average_price"),
                        func.avg(Product.cost).label("average_cost"),
                        func.sum(Product.price).label("total_value"),
                    ).where(active)
                )).mappings().one()

                by_status = (await session.execute(
                    select(Product.status, func.count(Product.id).label("count"))
                    .group_by(Product.status)
                    .order_by(Product.status)
                )).mappings().all()

                product_count = func.count(Product.id).label("count")
                top_companies = (await session.execute(
                    select(Product.company_id, Company.trade_name, product_count)
                    .join(Company, Product.company_id == Company.id)
                    .where(active)
                    .group_by(Product.company_id, Company.trade_name)
                    .order_by(product_count.desc(), Product.company_id)
                    .limit(10)
                )).mappings().all()
        except SQLAlchemyError as e:
            raise self._database_error("stats", e) from e

        def _number(value):
            return float(value) if value is not None else None

        return {
            "total_products": int(aggregate["total"] or 0),
            "average_price": _number(aggregate["average_price"]),
            "average_cost": _number(aggregate["average_cost"]),
            "total_value": _number(aggregate["total_value"]) or 0.0,
            "by_status": [dict(row) for row in by_status],
            "top_companies": [dict(row) for row in top_companies],
        }

    def _database_error(self, operation: str, error: Exception) -> CatalogBaseException:
        return database_error("product", operation, error)
