"""
Tests for services/purchase_request_service.py

Covers reading requests and products, partial updates with explicit touched
fields, and storing request quotes with the cost floor and write retries.
"""

import pytest
import os
import sys
from decimal import Decimal
from unittest.mock import patch, MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import make_purchase_request, MockSupabaseResponse
from pricing_engine import compute_breakdown
from pricing_models import PricingRequest
from services.purchase_request_service import (
    PurchaseRequest,
    get_purchase_request,
    get_request_line_items,
    save_breakdown_snapshot,
    save_request_quote,
    update_request,
)


def _stored_request(client):
    return client.rows("purchase_requests")[0]


# ============================================================================
# READ Operations
# ============================================================================

class TestReadRequests:

    def test_from_dict(self):
        request = PurchaseRequest.from_dict(make_purchase_request(request_id="r1", final_price=120.5))
        assert request.id == "r1"
        assert request.final_price == Decimal("120.5")
        assert request.price is None
        assert request.created_at is not None

    def test_get_purchase_request(self, request_with_products):
        request = get_purchase_request("req-1")
        assert request.id == "req-1"
        assert request.exchange_rate == Decimal("3.7")

    def test_get_missing_request(self, request_with_products):
        assert get_purchase_request("nope") is None

    def test_line_items(self, request_with_products):
        items = get_request_line_items("req-1")
        assert [item.title for item in items] == ["Audífonos", "Funda"]
        assert items[0].profit_amount_pen == Decimal("18.5")

    def test_line_items_db_error(self, failing_supabase):
        with patch("services.purchase_request_service.get_supabase", return_value=failing_supabase):
            assert get_request_line_items("req-1") == []


# ============================================================================
# UPDATE Operations
# ============================================================================

class TestUpdateRequest:
    """Only touched fields are written."""

    def test_writes_touched_fields_only(self, request_with_products):
        ok = update_request("req-1", {"final_price": Decimal("99.5"), "profit": 10}, touched=["final_price"])

        assert ok is True
        _, filters, data = request_with_products.updates[-1]
        assert filters == {"id": "req-1"}
        assert data["final_price"] == 99.5
        assert "profit" not in data
        assert "updated_at" in data

    def test_cleared_field_written_as_null(self, request_with_products):
        update_request("req-1", {}, touched=["response"])
        _, _, data = request_with_products.updates[-1]
        assert data["response"] is None

    def test_non_editable_field_rejected(self, request_with_products):
        with pytest.raises(ValueError, match="status"):
            update_request("req-1", {"status": "done"}, touched=["status"])
        assert request_with_products.updates == []

    def test_missing_request(self, request_with_products):
        assert update_request("nope", {"price": 1}, touched=["price"]) is False


# ============================================================================
# REQUEST QUOTE
# ============================================================================

class TestSaveRequestQuote:

    def test_formula_price_stored(self, request_with_products):
        result = save_request_quote("req-1", Decimal("3.7"))

        assert result.success is True
        assert result.attempts == 1
        # 50 + 7 shipping + 18.5 / 3.7 product profit
        assert result.final_price_usd == Decimal("62")
        stored = _stored_request(request_with_products)
        assert stored["final_price"] == 62.0
        assert stored["profit"] == 5.0
        assert stored["exchange_rate"] == 3.7

    def test_override_above_costs(self, request_with_products):
        result = save_request_quote("req-1", Decimal("3.7"), final_price_usd=Decimal("80"))

        assert result.success is True
        assert result.warning is None
        assert _stored_request(request_with_products)["final_price"] == 80.0
        assert _stored_request(request_with_products)["profit"] == 23.0

    def test_override_below_costs_recomputed(self, request_with_products):
        result = save_request_quote("req-1", Decimal("3.7"), additional_profit_usd=Decimal("3"),
                                    final_price_usd=Decimal("40"))

        assert result.success is True
        assert result.final_price_usd == Decimal("65")
        assert "no puede ser menor a los costos totales" in result.warning
        assert _stored_request(request_with_products)["final_price"] == 65.0

    def test_request_without_products(self, mock_supabase):
        mock_supabase.set_table_data("purchase_requests", [make_purchase_request(request_id="empty")])
        with patch("services.purchase_request_service.get_supabase", return_value=mock_supabase):
            result = save_request_quote("empty", Decimal("3.7"))

        assert result.success is False
        assert result.error_message == "La solicitud no tiene productos"
        assert mock_supabase.updates == []

    @patch("services.purchase_request_service.time.sleep")
    def test_retries_failed_writes(self, mock_sleep, request_with_products):
        products = request_with_products.rows("products")
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value = \
            MockSupabaseResponse(data=products)
        update_chain = client.table.return_value.update.return_value.eq.return_value.execute
        update_chain.side_effect = [Exception("timeout"), MockSupabaseResponse(data=[{"id": "req-1"}])]

        with patch("services.purchase_request_service.get_supabase", return_value=client):
            result = save_request_quote("req-1", Decimal("3.7"))

        assert result.success is True
        assert result.attempts == 2
        mock_sleep.assert_called_once()

    @patch("services.purchase_request_service.time.sleep")
    def test_gives_up_after_max_attempts(self, mock_sleep, request_with_products):
        products = request_with_products.rows("products")
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value = \
            MockSupabaseResponse(data=products)
        client.table.return_value.update.return_value.eq.return_value.execute.side_effect = Exception("timeout")

        with patch("services.purchase_request_service.get_supabase", return_value=client):
            result = save_request_quote("req-1", Decimal("3.7"), max_attempts=3)

        assert result.success is False
        assert result.attempts == 3
        assert result.error_message == "timeout"
        assert mock_sleep.call_count == 2

    @patch("services.purchase_request_service.time.sleep")
    def test_missing_request_not_retried(self, mock_sleep, request_with_products):
        request_with_products.set_table_data("purchase_requests", [])
        result = save_request_quote("req-1", Decimal("3.7"))

        assert result.success is False
        assert result.attempts == 1
        assert result.error_message == "Purchase request not found"
        mock_sleep.assert_not_called()


class TestSaveBreakdownSnapshot:

    def test_snapshot_stored(self, request_with_products):
        breakdown = compute_breakdown(PricingRequest(
            base_price=Decimal("30"), weight=Decimal("0.5"), exchange_rate=Decimal("3.7"),
            margin_percentage=Decimal("10"),
        ))
        assert save_breakdown_snapshot("req-1", breakdown) is True

        stored = _stored_request(request_with_products)
        assert stored["price"] == 30.0
        assert stored["final_price"] == 54.1
        assert stored["profit"] == 3.0
