"""
Integration Tests - Persistence Gateway
=======================================
RowCursor and TableGateway against a real SQLite database.
"""

import pytest

from database import Company, Product
from exceptions import ValidationError
from services.gateway import SortSpec, nest_company
from services.product_service import export_gateway, product_gateway

pytestmark = pytest.mark.integration


async def seed(database, count: int = 5):
    async with database.session() as session:
        company = Company(trade_name="Acme", email="acme@example.com")
        session.add(company)
        await session.flush()
        for i in range(1, count + 1):
            session.add(Product(
                code=f"C-{i:03d}",
                name=f"Widget {count - i}",
                price=i * 10,
                company_id=company.id if i % 2 else None,
                description="Heavy duty" if i == 3 else None,
            ))
        await session.commit()
        return company.id


class TestRowCursor:

    async def test_yields_rows_lazily_and_closes_on_exhaustion(self, database):
        await seed(database, 3)
        gateway = export_gateway(database, batch_size=1)

        cursor = gateway.open_cursor(sort=SortSpec("id"))
        rows = [row async for row in cursor]

        assert [row["code"] for row in rows] == ["C-001", "C-002", "C-003"]
        assert cursor.closed

    async def test_aclose_releases_partially_read_cursor(self, database):
        await seed(database, 5)
        cursor = export_gateway(database).open_cursor(sort=SortSpec("id"))

        first = await cursor.__anext__()
        await cursor.aclose()
        await cursor.aclose()

        assert first["id"] == 1
        assert cursor.closed
        with pytest.raises(StopAsyncIteration):
            await cursor.__anext__()

    async def test_limit_caps_rows(self, database):
        await seed(database, 5)
        cursor = export_gateway(database).open_cursor(sort=SortSpec("id"), limit=2)

        assert len([row async for row in cursor]) == 2

    async def test_unopened_cursor_holds_no_session(self, database):
        cursor = export_gateway(database).open_cursor()

        await cursor.aclose()

        assert cursor.closed


class TestTableGateway:

    async def test_sort_allowlist(self, database):
        gateway = product_gateway(database)

        assert gateway.resolve_sort("price", "DESC") == SortSpec("price", descending=True)
        with pytest.raises(ValidationError):
            gateway.resolve_sort("password_hash", "asc")
        with pytest.raises(ValidationError):
            gateway.resolve_sort("name", "up")

    async def test_fetch_sorted_page(self, database):
        await seed(database, 5)
        gateway = product_gateway(database)

        rows = await gateway.fetch_all(sort=SortSpec("name"), limit=2, offset=1)

        assert [row["name"] for row in rows] == ["Widget 1", "Widget 2"]

    async def test_search_is_case_insensitive_and_escaped(self, database):
        await seed(database, 5)
        gateway = product_gateway(database)

        matches = await gateway.fetch_all(filters=[gateway.search_filter("HEAVY")])
        wildcard = await gateway.fetch_all(filters=[gateway.search_filter("%")])

        assert [row["code"] for row in matches] == ["C-003"]
        assert wildcard == []

    async def test_count_with_filters(self, database):
        company_id = await seed(database, 5)
        gateway = product_gateway(database)

        assert await gateway.count() == 5
        assert await gateway.count(filters=[Product.company_id == company_id]) == 3

    async def test_find_one_includes_joined_columns(self, database):
        await seed(database, 1)
        gateway = product_gateway(database)

        row = await gateway.find_one(1)

        assert row["code"] == "C-001"
        assert row["company_trade_name"] == "Acme"
        assert await gateway.find_one(999) is None


async def test_unreachable_database_raises_connection_error(tmp_path):
    from database import Database
    from exceptions import DatabaseConnectionError

    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")
    db = Database(f"sqlite+aiosqlite:///{blocker / 'catalog.db'}")

    with pytest.raises(DatabaseConnectionError) as exc_info:
        await db.initialize()

    assert exc_info.value.status_code == 503
    await db.dispose()


@pytest.mark.parametrize("row, company", [
    ({"id": 1, "company_id": 4, "company_trade_name": "Acme"}, {"id": 4, "trade_name": "Acme"}),
    ({"id": 2, "company_id": None, "company_trade_name": None}, None),
])
def test_nest_company(row, company):
    nested = nest_company(dict(row))

    assert nested["company"] == company
    assert "company_trade_name" not in nested
