"""
Integration Tests - Streaming Export Endpoints
==============================================
End-to-end streams over SQLite, plus failure modes driven by fake cursors
injected through dependency overrides.
"""

import json

import pytest

from dependencies import get_company_service, get_product_service
from exceptions import NotFoundError, UpstreamTimeoutError
from services.product_service import company_export_gateway

pytestmark = pytest.mark.integration

STREAM = "/api/v1/products/stream"


def company_stream(company_id) -> str:
    return f"/api/v1/products/company/{company_id}/stream"


class FakeProductService:
    """Export surface of ProductService backed by FakeCursor."""

    def __init__(self, cursor_factory, rows=(), fail_with=None, total=None):
        self._make = cursor_factory
        self.rows = list(rows)
        self.fail_with = fail_with
        self.total = len(self.rows) if total is None else total
        self.calls = []

    def open_export_cursor(self, limit):
        self.calls.append(("open_export_cursor", limit))
        return self._make(self.rows[:limit], self.fail_with)

    def resolve_company_sort(self, sort_by, sort_order):
        return company_export_gateway(None).resolve_sort(sort_by, sort_order)

    def open_company_export_cursor(self, company_id, sort, page, limit):
        self.calls.append(("open_company_export_cursor", company_id, sort.field, page, limit))
        offset = (page - 1) * limit
        return self._make(self.rows[offset:offset + limit], self.fail_with)

    async def count_by_company(self, company_id):
        self.calls.append(("count_by_company", company_id))
        return self.total


class FakeCompanyService:

    def __init__(self, companies=None):
        self.companies = companies or {}
        self.calls = []

    async def require_summary(self, company_id):
        self.calls.append(company_id)
        if company_id not in self.companies:
            raise NotFoundError("Company", company_id)
        return {"id": company_id, "trade_name": self.companies[company_id]}


@pytest.fixture
def override(app):
    def _override(products=None, companies=None):
        if products is not None:
            app.dependency_overrides[get_product_service] = lambda: products
        if companies is not None:
            app.dependency_overrides[get_company_service] = lambda: companies

    yield _override
    app.dependency_overrides.clear()


class TestProductStreamOverSqlite:

    def test_streams_seeded_products(self, client):
        for i in range(1, 6):
            client.post("/api/v1/products", json={"code": f"P-{i}", "name": f"Item {i}", "price": "2.50"})

        response = client.get(STREAM, params={"limit": 3})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["connection"] == "keep-alive"
        assert "x-cache" not in response.headers
        document = response.json()
        assert document["success"] is True
        assert document["total"] == 3
        assert [row["code"] for row in document["data"]] == ["P-1", "P-2", "P-3"]
        assert document["data"][0]["price"] == 2.5

    def test_empty_catalog(self, client):
        response = client.get(STREAM)

        assert response.status_code == 200
        assert response.content == b'{"success":true,"data":[],"total":0}'

    @pytest.mark.parametrize("limit", ["0", "-3", "abc", "1000001"])
    def test_invalid_limit_is_400(self, client, limit):
        response = client.get(STREAM, params={"limit": limit})

        assert response.status_code == 400
        assert b'"data":[' not in response.content

    def test_company_stream(self, client):
        company = client.post("/api/v1/companies", json={"trade_name": "Acme \"Tools\""}).json()["data"]
        for name in ["Delta", "Alpha", "Charlie", "Bravo"]:
            client.post("/api/v1/products", json={"code": name.upper(), "name": name, "company_id": company["id"]})
        client.post("/api/v1/products", json={"code": "OTHER", "name": "Other"})

        response = client.get(company_stream(company["id"]), params={"page": 1, "limit": 3})

        document = response.json()
        assert document["company"] == {"id": company["id"], "trade_name": 'Acme "Tools"'}
        assert [row["name"] for row in document["data"]] == ["Alpha", "Bravo", "Charlie"]
        assert document["pagination"] == {
            "page": 1,
            "limit": 3,
            "total": 4,
            "totalPages": 2,
            "hasNext": True,
            "hasPrev": False,
        }
        assert document["streamedCount"] == 3

    def test_company_stream_sorting(self, client):
        company = client.post("/api/v1/companies", json={"trade_name": "Acme"}).json()["data"]
        for code, price in [("A", "5"), ("B", "15"), ("C", "10")]:
            client.post("/api/v1/products", json={"code": code, "name": code, "price": price, "company_id": company["id"]})

        document = client.get(
            company_stream(company["id"]),
            params={"sortBy": "price", "sortOrder": "desc"},
        ).json()

        assert [row["code"] for row in document["data"]] == ["B", "C", "A"]

    def test_company_stream_bad_sort_is_400(self, client):
        company = client.post("/api/v1/companies", json={"trade_name": "Acme"}).json()["data"]

        response = client.get(company_stream(company["id"]), params={"sortBy": "password"})

        assert response.status_code == 400


class TestPreStreamValidation:

    @pytest.mark.parametrize("raw_id", ["abc", "12abc", "1.5", "-1", "0"])
    def test_non_numeric_company_id_touches_nothing(self, client, override, fake_cursor_factory, raw_id):
        products = FakeProductService(fake_cursor_factory)
        companies = FakeCompanyService({1: "Acme"})
        override(products, companies)

        response = client.get(company_stream(raw_id))

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert companies.calls == []
        assert products.calls == []
        assert fake_cursor_factory.created == []

    def test_missing_company_opens_no_cursor(self, client, override, fake_cursor_factory):
        products = FakeProductService(fake_cursor_factory)
        companies = FakeCompanyService({})
        override(products, companies)

        response = client.get(company_stream(9))

        assert response.status_code == 404
        assert response.json()["message"] == "Company not found"
        assert companies.calls == [9]
        assert fake_cursor_factory.created == []


class TestStreamFailures:

    def test_failure_before_first_row_is_clean_500(self, client, override, fake_cursor_factory):
        products = FakeProductService(fake_cursor_factory, rows=[], fail_with=RuntimeError("database is locked"))
        override(products)

        response = client.get(STREAM)

        assert response.status_code == 500
        assert b'"data":[' not in response.content
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "DatabaseError"
        assert fake_cursor_factory.created[0].closed

    def test_timeout_before_first_row_is_504(self, client, override, fake_cursor_factory):
        products = FakeProductService(fake_cursor_factory, fail_with=UpstreamTimeoutError("products_fetch", 5))
        override(products)

        response = client.get(STREAM)

        assert response.status_code == 504

    def test_failure_after_rows_is_salvaged(self, client, override, fake_cursor_factory, rows_factory):
        rows = rows_factory(3)
        products = FakeProductService(fake_cursor_factory, rows=rows, fail_with=RuntimeError("connection lost"))
        override(products)

        response = client.get(STREAM, params={"limit": 10})

        assert response.status_code == 200
        document = json.loads(response.content)
        assert document == {"success": True, "data": rows, "error": "Internal server error"}
        assert fake_cursor_factory.created[0].closed

    def test_company_stream_failure_after_rows(self, client, override, fake_cursor_factory, rows_factory):
        rows = rows_factory(2)
        products = FakeProductService(fake_cursor_factory, rows=rows, fail_with=RuntimeError("boom"), total=50)
        override(products, FakeCompanyService({3: "Acme"}))

        response = client.get(company_stream(3))

        assert response.status_code == 200
        document = response.json()
        assert document["company"] == {"id": 3, "trade_name": "Acme"}
        assert document["data"] == rows
        assert document["error"] == "Internal server error"
        assert "pagination" not in document
        assert ("count_by_company", 3) in products.calls

    def test_large_export_streams_every_row(self, client, override, fake_cursor_factory, rows_factory):
        rows = rows_factory(5000)
        override(FakeProductService(fake_cursor_factory, rows=rows))

        response = client.get(STREAM, params={"limit": 5000})

        document = response.json()
        assert document["total"] == 5000
        assert document["data"][-1] == rows[-1]


def test_salvage_carries_error_text_in_debug(settings, fake_cursor_factory, rows_factory):
    from fastapi.testclient import TestClient
    from main import create_app

    app = create_app(settings.model_copy(update={"debug": True}))
    products = FakeProductService(fake_cursor_factory, rows=rows_factory(1), fail_with=RuntimeError("disk I/O error"))
    app.dependency_overrides[get_product_service] = lambda: products

    with TestClient(app) as client:
        document = client.get(STREAM).json()

    assert document["error"] == "disk I/O error"
