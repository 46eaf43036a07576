"""
Persistence Gateway
===================
Read access to one table projection through a single cursor abstraction.

Paginated listings and streaming exports share the same query path:
``open_cursor`` builds the SELECT and hands back a lazy, forward-only
``RowCursor``. Listings drain a bounded cursor into a list, exports iterate
it one row at a time.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database import Database
from exceptions import CatalogBaseException, ConflictError, DatabaseError, ValidationError
from logging_config import get_logger
import metrics as app_metrics

logger = get_logger(__name__)

Row = Dict[str, Any]


def database_error(entity: str, operation: str, error: Exception) -> CatalogBaseException:
    """
    Translate a SQLAlchemy failure into the API exception hierarchy.

    Unique or foreign key violations that slipped past the explicit checks
    become a 409; everything else is a 500.
    """
    if isinstance(error, IntegrityError):
        logger.warning("Integrity violation", operation=operation, entity=entity, error=str(error.orig))
        return ConflictError(f"{entity.capitalize()} conflicts with an existing record")

    logger.error("Database error", operation=operation, entity=entity, error=str(error))
    app_metrics.database_errors_total.labels(entity=entity, operation=operation).inc()
    return DatabaseError(operation=operation, entity=entity, original_error=error)


@dataclass(frozen=True)
class SortSpec:
    """Validated ORDER BY request."""
    field: str
    descending: bool = False


class RowCursor:
    """
    Forward-only, non-restartable async iterator over query rows.

    The cursor owns a dedicated session, opened lazily on the first fetch and
    released by ``aclose()``, on exhaustion, or on a fetch error. ``aclose()``
    is idempotent.
    """

    def __init__(self, database: Database, statement: Select, batch_size: int = 500, label: str = "rows"):
        self._database = database
        self._statement = statement
        self._batch_size = batch_size
        self._session = None
        self._result = None
        self._rows = None
        self._closed = False
        self.label = label

    @property
    def closed(self) -> bool:
        return self._closed

    async def _open(self) -> None:
        self._session = self._database.session_factory()
        self._result = await self._session.stream(
            self._statement.execution_options(yield_per=self._batch_size)
        )
        self._rows = self._result.mappings()

    def __aiter__(self) -> "RowCursor":
        return self

    async def __anext__(self) -> Row:
        if self._closed:
            raise StopAsyncIteration

        try:
            if self._rows is None:
                await self._open()
            row = await self._rows.fetchone()
        except BaseException:
            await self.aclose()
            raise

        if row is None:
            await self.aclose()
            raise StopAsyncIteration

        return dict(row)

    async def aclose(self) -> None:
        """Release the result and its connection."""
        if self._closed:
            return
        self._closed = True

        try:
            if self._result is not None:
                await self._result.close()
        finally:
            if self._session is not None:
                await self._session.close()
            self._result = None
            self._rows = None
            self._session = None


class TableGateway:
    """
    Query interface over one entity projection.

    Args:
        database: Database handle
        model: ORM class whose primary key is ``id``
        columns: Labelled columns forming each row
        sortable: Public sort name -> column
        search_fields: Columns matched case-insensitively by ``search_filter``
        joins: (target, onclause) pairs applied as LEFT OUTER JOINs
        label: Entity name used in logs and errors
    """

    def __init__(
        self,
        database: Database,
        model,
        columns: Sequence,
        sortable: Mapping[str, Any],
        search_fields: Sequence = (),
        joins: Sequence[tuple] = (),
        label: str = "rows",
        batch_size: int = 500,
    ):
        self.database = database
        self.model = model
        self.columns = list(columns)
        self.sortable = dict(sortable)
        self.search_fields = list(search_fields)
        self.joins = list(joins)
        self.label = label
        self.batch_size = batch_size

    # =========================================================================
    # Query building
    # =========================================================================

    def resolve_sort(self, sort_by: Optional[str], sort_order: Optional[str] = "asc") -> SortSpec:
        """Validate a public sort request against the allowlist."""
        field = sort_by or "id"
        if field not in self.sortable:
            raise ValidationError(
                f"Cannot sort by '{field}'. Allowed: {', '.join(sorted(self.sortable))}",
                field="sortBy",
                value=field,
            )

        order = (sort_order or "asc").lower()
        if order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be 'asc' or 'desc'", field="sortOrder", value=sort_order)

        return SortSpec(field=field, descending=order == "desc")

    def search_filter(self, term: Optional[str]):
        """OR of case-insensitive substring matches, or None for no search."""
        if not term or not self.search_fields:
            return None

        return or_(*(column.icontains(term, autoescape=True) for column in self.search_fields))

    def build_select(
        self,
        filters: Sequence = (),
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Select:
        stmt = select(*self.columns).select_from(self.model)
        for target, onclause in self.joins:
            stmt = stmt.outerjoin(target, onclause)

        for clause in filters:
            if clause is not None:
                stmt = stmt.where(clause)

        if sort is not None:
            column = self.sortable[sort.field]
            stmt = stmt.order_by(column.desc() if sort.descending else column.asc())
        # Primary key keeps ordering deterministic between pages
        if sort is None or sort.field != "id":
            stmt = stmt.order_by(self.model.id.asc())

        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        return stmt

    # =========================================================================
    # Gateway operations
    # =========================================================================

    def open_cursor(
        self,
        filters: Sequence = (),
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> RowCursor:
        """Return a lazy cursor; no connection is taken until the first fetch."""
        statement = self.build_select(filters=filters, sort=sort, limit=limit, offset=offset)
        return RowCursor(self.database, statement, batch_size=self.batch_size, label=self.label)

    async def fetch_all(
        self,
        filters: Sequence = (),
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Row]:
        """Drain a bounded cursor into a list."""
        cursor = self.open_cursor(filters=filters, sort=sort, limit=limit, offset=offset)
        try:
            return [row async for row in cursor]
        except SQLAlchemyError as e:
            raise self._database_error("fetch", e) from e
        finally:
            await cursor.aclose()

    async def count(self, filters: Sequence = ()) -> int:
        stmt = select(func.count()).select_from(self.model)
        for clause in filters:
            if clause is not None:
                stmt = stmt.where(clause)

        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise self._database_error("count", e) from e

    async def find_one(self, entity_id: int) -> Optional[Row]:
        stmt = self.build_select(filters=[self.model.id == entity_id], limit=1)

        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise self._database_error("find_one", e) from e

        return dict(row) if row is not None else None

    def _database_error(self, operation: str, error: Exception) -> CatalogBaseException:
        return database_error(self.label, operation, error)


def nest_company(row: Row) -> Row:
    """Fold the joined ``company_trade_name`` column into a ``company`` summary."""
    trade_name = row.pop("company_trade_name", None)
    row["company"] = (
        {"id": row["company_id"], "trade_name": trade_name}
        if row.get("company_id") is not None
        else None
    )
    return row
