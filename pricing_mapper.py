"""
Quotation Pricing Mapping Module

This module handles:
- Safe conversion of raw form / database values
- Mapping flat form dicts and `products` rows to engine models
- Applying partial edits with an explicit set of touched fields
- Flattening engine results to plain numbers for storage

The engine never sees raw strings: everything goes through this module (or
QuoteFormInput) first.
"""

from typing import Any, Dict, Iterable, Optional
from decimal import Decimal, InvalidOperation
import logging

from pydantic import BaseModel, Field, validator

from pricing_engine import round_decimal
from pricing_models import (
    DEFAULT_POLICY,
    FinalPriceResolution,
    LineItem,
    LineItemTotals,
    MarginMode,
    PricingBreakdown,
    PricingPolicy,
    PricingRequest,
)

# Setup logger
logger = logging.getLogger(__name__)


# ============================================================================
# SAFE CONVERSION UTILITIES
# ============================================================================

def safe_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """Safely convert value to Decimal"""
    if value is None or value == "":
        return default
    try:
        result = Decimal(str(value).strip().replace(",", "."))
    except (ValueError, TypeError, InvalidOperation):
        return default
    if not result.is_finite():
        return default
    return result


def safe_str(value: Any, default: str = "") -> str:
    """Safely convert value to string"""
    if value is None or value == "":
        return default
    return str(value)


def safe_int(value: Any, default: int = 0) -> int:
    """Safely convert value to int"""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


# ============================================================================
# UI FORM INPUT
# ============================================================================

class QuoteFormInput(BaseModel):
    """Live-edited calculator fields, validated before they reach the engine"""
    base_price: Decimal = Field(..., ge=0, description="Product price (USD)")
    weight: Optional[Decimal] = Field(default=None, ge=0, description="Weight (kg)")
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0, description="PEN per USD")
    tax_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100, description="Sales tax %")
    margin_mode: Optional[MarginMode] = Field(default=None, description="Explicit margin mode")
    margin_percentage: Optional[Decimal] = Field(default=None, ge=0, description="Margin %")
    margin_pen: Optional[Decimal] = Field(default=None, ge=0, description="Fixed margin (PEN)")

    @validator('margin_mode', pre=True)
    def empty_mode_is_none(cls, v):
        """Blank selects mean 'let the base price decide'"""
        if v == "":
            return None
        return v

    def to_pricing_request(self) -> PricingRequest:
        return PricingRequest(**self.model_dump())


# Fields a caller may touch on a live PricingRequest
EDITABLE_PRICING_FIELDS = frozenset(PricingRequest.model_fields.keys())


def map_form_to_pricing_request(form: Dict[str, Any], policy: PricingPolicy = DEFAULT_POLICY) -> PricingRequest:
    """
    Map a flat form dict (strings allowed) to a validated PricingRequest.

    Missing optional fields stay None so the engine applies policy defaults.
    Raises pydantic.ValidationError for out-of-range values.
    """
    exchange_rate = safe_decimal(form.get("exchange_rate"), default=None)

    form_input = QuoteFormInput(
        base_price=safe_decimal(form.get("base_price")),
        weight=safe_decimal(form.get("weight"), default=None),
        exchange_rate=exchange_rate if exchange_rate is not None else policy.default_exchange_rate,
        tax_percentage=safe_decimal(form.get("tax_percentage"), default=None),
        margin_mode=form.get("margin_mode") or None,
        margin_percentage=safe_decimal(form.get("margin_percentage"), default=None),
        margin_pen=safe_decimal(form.get("margin_pen"), default=None),
    )
    return form_input.to_pricing_request()


def map_product_row_to_line_item(row: Dict[str, Any]) -> LineItem:
    """Map a `products` table row (price, weight, profit_amount in PEN) to a LineItem."""
    return LineItem(
        price=safe_decimal(row.get("price")),
        weight=safe_decimal(row.get("weight")),
        profit_amount_pen=safe_decimal(row.get("profit_amount")),
        title=row.get("title"),
    )


def map_product_rows(rows: Iterable[Dict[str, Any]]) -> list:
    """Map every product row, skipping rows without a usable price"""
    items = []
    for row in rows or []:
        if safe_decimal(row.get("price"), default=None) is None:
            logger.warning(f"Skipping product {row.get('id')} without price")
            continue
        items.append(map_product_row_to_line_item(row))
    return items


# ============================================================================
# PARTIAL UPDATES
# ============================================================================

def apply_pricing_update(current: PricingRequest, changes: Dict[str, Any], touched: Iterable[str]) -> PricingRequest:
    """
    Return a new PricingRequest with only the touched fields taken from changes.

    `touched` is the explicit list of edited fields; a field missing from it is
    left alone even if present in `changes`, and a touched field missing from
    `changes` is reset to None (cleared input).
    """
    touched = set(touched)
    unknown = touched - EDITABLE_PRICING_FIELDS
    if unknown:
        raise ValueError(f"Unknown pricing fields: {', '.join(sorted(unknown))}")

    update = {}
    for field_name in touched:
        value = changes.get(field_name)
        if field_name == "margin_mode":
            update[field_name] = MarginMode(value) if value else None
        elif field_name == "base_price":
            update[field_name] = safe_decimal(value)
        else:
            update[field_name] = safe_decimal(value, default=None)

    # Re-validate through the model instead of model_copy(update=...) which skips validation
    data = current.model_dump()
    data.update(update)
    return PricingRequest(**data)


# ============================================================================
# STORAGE MAPPING
# ============================================================================

def _money(value: Decimal) -> float:
    return float(round_decimal(value))


def breakdown_to_storage_dict(breakdown: PricingBreakdown) -> Dict[str, Any]:
    """Plain numeric fields of a single-product breakdown for a purchase request record"""
    return {
        "price": _money(breakdown.base_price),
        "shipping_cost": _money(breakdown.shipping_cost),
        "profit": _money(breakdown.margin_amount),
        "final_price": _money(breakdown.total_with_margin_usd),
        "exchange_rate": float(breakdown.exchange_rate),
        "currency": "USD",
    }


def line_item_totals_to_storage_dict(totals: LineItemTotals, resolution: FinalPriceResolution) -> Dict[str, Any]:
    """Plain numeric fields of a request quote for a purchase request record"""
    return {
        "price": _money(totals.calculated_price_usd),
        "sub_total": _money(totals.sub_total),
        "weight": float(totals.weight),
        "shipping_cost": _money(totals.shipping_cost),
        "profit": _money(resolution.final_price_usd - totals.total_costs_usd),
        "final_price": _money(resolution.final_price_usd),
        "exchange_rate": float(totals.exchange_rate),
        "currency": "USD",
    }
