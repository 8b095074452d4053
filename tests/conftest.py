"""
Shared pytest fixtures for pricing tests.

Provides:
- Test data factories (purchase requests, products, exchange rates)
- In-memory Supabase client mock
"""

import pytest
import os
import sys
from unittest.mock import MagicMock, patch
from datetime import datetime, date, timezone
from uuid import uuid4

# Set test environment before importing services
os.environ["TESTING"] = "true"
os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
os.environ.setdefault("DECOLECTA_API_KEY", "test-decolecta-key")

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ============================================================================
# MOCK FACTORIES
# ============================================================================

def make_uuid():
    """Generate a UUID string."""
    return str(uuid4())


def make_product(
    product_id=None,
    request_id=None,
    title="Test Product",
    price=30.0,
    weight=0.5,
    profit_amount=0.0
):
    """Create a mock `products` row."""
    return {
        "id": product_id or make_uuid(),
        "request_id": request_id or make_uuid(),
        "title": title,
        "price": price,
        "weight": weight,
        "profit_amount": profit_amount,
        "source": "amazon",
        "description": None,
        "image_url": None,
    }


def make_purchase_request(
    request_id=None,
    status="pending",
    description="Quiero cotizar estos productos",
    exchange_rate=3.7,
    final_price=None,
    profit=None
):
    """Create a mock `purchase_requests` row."""
    return {
        "id": request_id or make_uuid(),
        "description": description,
        "status": status,
        "price": None,
        "final_price": final_price,
        "profit": profit,
        "exchange_rate": exchange_rate,
        "currency": "USD",
        "response": None,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }


def make_exchange_rate(
    rate_id=None,
    rate_date=None,
    buy_price=3.745,
    sell_price=3.752
):
    """Create a mock `exchange_rates` row."""
    return {
        "id": rate_id or make_uuid(),
        "buy_price": buy_price,
        "sell_price": sell_price,
        "base_currency": "USD",
        "quote_currency": "PEN",
        "date": (rate_date or date(2026, 10, 15)).isoformat(),
        "created_at": "2026-10-15T14:00:00+00:00",
        "updated_at": "2026-10-15T14:00:00+00:00",
    }


# ============================================================================
# SUPABASE MOCK
# ============================================================================

class MockSupabaseResponse:
    """Mock response from Supabase queries."""
    def __init__(self, data=None, error=None):
        self.data = data or []
        self.error = error


class MockSupabaseQuery:
    """Mock Supabase query builder backed by the client's table rows."""

    def __init__(self, client, table_name):
        self.client = client
        self.table_name = table_name
        self._filters = {}
        self._insert = None
        self._update = None
        self._order = None
        self._limit = None

    def select(self, columns="*"):
        return self

    def insert(self, data):
        self._insert = data
        return self

    def update(self, data):
        self._update = data
        return self

    def eq(self, column, value):
        self._filters[column] = value
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self):
        rows = self.client._tables.setdefault(self.table_name, [])

        if self._insert is not None:
            row = {"id": make_uuid(), **self._insert}
            rows.append(row)
            self.client.inserts.append((self.table_name, self._insert))
            return MockSupabaseResponse(data=[row])

        result = [r for r in rows if all(r.get(c) == v for c, v in self._filters.items())]

        if self._update is not None:
            self.client.updates.append((self.table_name, dict(self._filters), self._update))
            for row in result:
                row.update(self._update)
            return MockSupabaseResponse(data=result)

        if self._order:
            column, desc = self._order
            result = sorted(result, key=lambda r: r.get(column) or "", reverse=desc)
        if self._limit is not None:
            result = result[:self._limit]
        return MockSupabaseResponse(data=result)


class MockSupabaseClient:
    """In-memory Supabase client for testing."""

    def __init__(self):
        self._tables = {}
        self.inserts = []
        self.updates = []

    def set_table_data(self, table_name, data):
        """Set mock data for a table."""
        self._tables[table_name] = [dict(row) for row in data]

    def rows(self, table_name):
        return self._tables.get(table_name, [])

    def table(self, name):
        """Return a mock query for the table."""
        return MockSupabaseQuery(self, name)


@pytest.fixture
def mock_supabase():
    """Create a mock Supabase client."""
    return MockSupabaseClient()


@pytest.fixture
def failing_supabase():
    """Supabase client whose every query raises."""
    client = MagicMock()
    client.table.side_effect = Exception("connection reset")
    return client


# ============================================================================
# REQUEST FIXTURES
# ============================================================================

@pytest.fixture
def request_with_products(mock_supabase):
    """A purchase request with two products stored in the mock client."""
    request = make_purchase_request(request_id="req-1")
    products = [
        make_product(request_id="req-1", title="Audífonos", price=40.0, weight=0.6, profit_amount=18.5),
        make_product(request_id="req-1", title="Funda", price=10.0, weight=0.3, profit_amount=0.0),
    ]
    mock_supabase.set_table_data("purchase_requests", [request])
    mock_supabase.set_table_data("products", products)
    with patch("services.purchase_request_service.get_supabase", return_value=mock_supabase):
        yield mock_supabase
