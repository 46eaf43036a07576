"""
Catalog API - Test Configuration
================================
Pytest fixtures and markers.

API tests build a fresh application per test with ``create_app(settings)``
on a temporary SQLite file, so every test starts from an empty catalog.
"""

import sys
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio

# Add backend to path for imports
BACKEND_PATH = Path(__file__).parent.parent / "apps" / "backend"
sys.path.insert(0, str(BACKEND_PATH))


# =============================================================================
# Test Run Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Fast, no I/O, fakes only"
    )
    config.addinivalue_line(
        "markers", "integration: Real SQLite database through aiosqlite"
    )


# =============================================================================
# Fake row sources
# =============================================================================

class FakeCursor:
    """
    In-memory stand-in for ``RowCursor``.

    Yields ``rows`` in order, then raises ``fail_with`` if given. Records
    whether it was closed and how many rows were pulled.
    """

    def __init__(self, rows: Iterable[Dict[str, Any]] = (), fail_with: Optional[BaseException] = None):
        self._rows = iter(rows)
        self.fail_with = fail_with
        self.closed = False
        self.pulled = 0

    def __aiter__(self) -> "FakeCursor":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        try:
            row = next(self._rows)
        except StopIteration:
            if self.fail_with is not None:
                raise self.fail_with
            raise StopAsyncIteration
        self.pulled += 1
        return row

    async def aclose(self) -> None:
        self.closed = True


def make_rows(count: int) -> List[Dict[str, Any]]:
    return [{"id": i, "code": f"P-{i:05d}", "name": f"Product {i}", "price": 10.5} for i in range(1, count + 1)]


@pytest.fixture
def fake_cursor_factory():
    """Build FakeCursor instances and keep them for later assertions."""
    created: List[FakeCursor] = []

    def _make(rows: Iterable[Dict[str, Any]] = (), fail_with: Optional[BaseException] = None) -> FakeCursor:
        cursor = FakeCursor(rows, fail_with)
        created.append(cursor)
        return cursor

    _make.created = created
    return _make


# =============================================================================
# Settings & application
# =============================================================================

@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}"


@pytest.fixture
def settings(database_url: str):
    """Settings isolated from the environment and any .env file."""
    from config import Settings

    return Settings(
        _env_file=None,
        database_url=database_url,
        environment="test",
        log_level="WARNING",
        debug=False,
        bcrypt_rounds=4,
        rate_limit_max_requests=10_000,
        login_rate_limit_max_requests=1_000,
        export_row_timeout_seconds=5,
    )


@pytest.fixture
def app(settings):
    from main import create_app

    return create_app(settings)


@pytest.fixture
def client(app):
    """TestClient with lifespan, so the schema exists before the first request."""
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncIterator[Any]:
    """Initialized database handle for gateway tests."""
    from database import Database

    db = Database(database_url)
    await db.initialize(create_schema=True)
    yield db
    await db.dispose()


# =============================================================================
# Sample payloads
# =============================================================================

@pytest.fixture
def company_payload() -> Dict[str, Any]:
    return {
        "trade_name": "Ferretería Central",
        "business_address": "Av. Reforma 100",
        "contact_name": "Laura Méndez",
        "phone": "5550001111",
        "email": "contacto@central.example.com",
        "hired_at": "2023-04-01",
        "sale_price": "1500.00",
    }


@pytest.fixture
def user_payload() -> Dict[str, Any]:
    return {
        "username": "lmendez",
        "password": "s3cret-pass",
        "first_name": "Laura",
        "last_name": "Méndez",
        "email": "laura@central.example.com",
        "role_id": 2,
    }


@pytest.fixture
def product_payload() -> Dict[str, Any]:
    return {
        "code": "TAL-001",
        "product_code": "7501000000011",
        "supplier_key": "SUP-9",
        "name": "Taladro Percutor 1/2",
        "description": "Taladro de 750W",
        "price": "1299.90",
        "cost": "800.00",
        "weight": "2.150",
        "prices": [
            {"label": "Mayoreo", "price": "1100.00", "min_quantity": 10},
        ],
        "inventory": [
            {"warehouse": "Norte", "quantity": 12},
            {"warehouse": "Sur", "quantity": 3},
        ],
    }


@pytest.fixture
def rows_factory():
    """Identical-shape product rows: ``rows_factory(n)``."""
    return make_rows
