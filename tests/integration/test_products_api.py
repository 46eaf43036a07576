"""
Integration Tests - Products API
================================
"""

import pytest

pytestmark = pytest.mark.integration

BASE = "/api/v1/products"


@pytest.fixture
def company(client):
    return client.post("/api/v1/companies", json={"trade_name": "Acme"}).json()["data"]


def create_product(client, code, **overrides):
    payload = {"code": code, "name": f"Product {code}", "price": "10.00", **overrides}
    response = client.post(BASE, json=payload)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestProductCrud:

    def test_create_with_prices_and_inventory(self, client, company, product_payload):
        response = client.post(BASE, json={**product_payload, "company_id": company["id"]})

        assert response.status_code == 201
        product = response.json()["data"]
        assert product["slug"] == "taladro-percutor-1-2"
        assert product["price"] == pytest.approx(1299.90)
        assert product["company"] == {"id": company["id"], "trade_name": "Acme"}
        assert [p["label"] for p in product["prices"]] == ["Mayoreo"]
        assert {i["warehouse"]: i["quantity"] for i in product["inventory"]} == {"Norte": 12, "Sur": 3}

        detail = client.get(f"{BASE}/{product['id']}").json()["data"]
        assert detail["prices"][0]["min_quantity"] == 10
        assert len(detail["inventory"]) == 2

    @pytest.mark.parametrize("field", ["code", "product_code"])
    def test_duplicate_codes_conflict(self, client, product_payload, field):
        client.post(BASE, json=product_payload)
        other = {**product_payload, "code": "OTHER-1", "product_code": "000", field: product_payload[field]}

        response = client.post(BASE, json=other)

        assert response.status_code == 409

    def test_failed_create_leaves_nothing_behind(self, client, product_payload):
        response = client.post(BASE, json={**product_payload, "company_id": 999})

        assert response.status_code == 400
        assert client.get(BASE).json()["pagination"]["total"] == 0

    def test_update_regenerates_slug(self, client):
        product = create_product(client, "A-1")

        response = client.put(f"{BASE}/{product['id']}", json={"name": "Llave Inglesa 12"})

        data = response.json()["data"]
        assert data["name"] == "Llave Inglesa 12"
        assert data["slug"] == "llave-inglesa-12"

    def test_update_keeps_explicit_slug(self, client):
        product = create_product(client, "A-1")

        data = client.put(f"{BASE}/{product['id']}", json={"name": "Nuevo", "slug": "custom"}).json()["data"]

        assert data["slug"] == "custom"

    @pytest.mark.parametrize("body", [{"name": None}, {"code": None}, {"price": None}])
    def test_update_with_null_required_field_is_400(self, client, body):
        product = create_product(client, "A-1")

        response = client.put(f"{BASE}/{product['id']}", json=body)

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == next(iter(body))
        assert client.get(f"{BASE}/{product['id']}").json()["data"]["name"] == "Product A-1"

    def test_soft_delete(self, client):
        product = create_product(client, "A-1")

        assert client.delete(f"{BASE}/{product['id']}").json()["data"]["status"] == 0

    def test_missing_product_is_404(self, client):
        assert client.get(f"{BASE}/77").status_code == 404


class TestProductListings:

    def test_search_over_codes(self, client):
        create_product(client, "DRILL-1", supplier_key="BOSCH")
        create_product(client, "SAW-1")

        body = client.get(BASE, params={"search": "bosch"}).json()

        assert [p["code"] for p in body["data"]] == ["DRILL-1"]

    def test_by_company(self, client, company):
        create_product(client, "B-1", name="Bravo", company_id=company["id"])
        create_product(client, "A-1", name="Alpha", company_id=company["id"])
        create_product(client, "X-1")

        body = client.get(f"{BASE}/company/{company['id']}").json()

        assert body["company"] == {"id": company["id"], "trade_name": "Acme"}
        assert [p["name"] for p in body["data"]] == ["Alpha", "Bravo"]
        assert body["pagination"]["total"] == 2

    def test_by_missing_company_is_404(self, client):
        assert client.get(f"{BASE}/company/55").status_code == 404

    def test_by_status(self, client):
        create_product(client, "A-1")
        retired = create_product(client, "B-1")
        client.delete(f"{BASE}/{retired['id']}")

        body = client.get(f"{BASE}/status/0").json()

        assert body["status"] == 0
        assert [p["code"] for p in body["data"]] == ["B-1"]

    def test_stats(self, client, company):
        create_product(client, "A-1", price="10.00", cost="4.00", company_id=company["id"])
        create_product(client, "B-1", price="30.00", cost="6.00", company_id=company["id"])
        retired = create_product(client, "C-1", price="1000.00")
        client.delete(f"{BASE}/{retired['id']}")

        data = client.get(f"{BASE}/stats").json()["data"]

        assert data["total_products"] == 2
        assert data["average_price"] == pytest.approx(20.0)
        assert data["average_cost"] == pytest.approx(5.0)
        assert data["total_value"] == pytest.approx(40.0)
        assert data["top_companies"] == [{"company_id": company["id"], "trade_name": "Acme", "count": 2}]


class TestResponseCaching:

    def test_get_is_cached_until_a_write(self, client):
        create_product(client, "A-1")

        first = client.get(BASE)
        second = client.get(BASE)
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.json() == first.json()

        create_product(client, "B-1")

        third = client.get(BASE)
        assert third.headers["X-Cache"] == "MISS"
        assert third.json()["pagination"]["total"] == 2

    def test_errors_are_not_cached(self, client):
        first = client.get(f"{BASE}/404")
        second = client.get(f"{BASE}/404")

        assert first.status_code == second.status_code == 404
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "MISS"
