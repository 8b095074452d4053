"""
Purchase Request Service

Reads purchase requests and their products, and stores computed quotations
back on the `purchase_requests` record. The pricing engine never touches the
database; this module is the persistence side of a quotation.
"""

import time
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from pricing_engine import aggregate_line_items, resolve_final_price
from pricing_mapper import (
    breakdown_to_storage_dict,
    line_item_totals_to_storage_dict,
    map_product_rows,
    safe_decimal,
)
from pricing_models import (
    DEFAULT_POLICY,
    FinalPriceResolution,
    LineItem,
    LineItemTotals,
    PricingBreakdown,
    PricingPolicy,
)
from .database import get_supabase

logger = logging.getLogger(__name__)

# Columns an operator can edit from the request detail view
UPDATABLE_REQUEST_FIELDS = ('price', 'final_price', 'profit', 'response', 'currency', 'exchange_rate')

RETRY_DELAY_SECONDS = 0.5


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PurchaseRequest:
    """A client's purchase request with its quotation fields."""
    id: str
    description: str
    status: Optional[str]
    price: Optional[Decimal] = None
    final_price: Optional[Decimal] = None
    profit: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    currency: Optional[str] = None
    response: Optional[str] = None
    products: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'PurchaseRequest':
        """Create a PurchaseRequest instance from a table row."""
        return cls(
            id=data['id'],
            description=data.get('description') or '',
            status=data.get('status'),
            price=safe_decimal(data.get('price'), default=None),
            final_price=safe_decimal(data.get('final_price'), default=None),
            profit=safe_decimal(data.get('profit'), default=None),
            exchange_rate=safe_decimal(data.get('exchange_rate'), default=None),
            currency=data.get('currency'),
            response=data.get('response'),
            products=data.get('products') or [],
            created_at=datetime.fromisoformat(data['created_at'].replace('Z', '+00:00')) if isinstance(data.get('created_at'), str) else data.get('created_at'),
            updated_at=datetime.fromisoformat(data['updated_at'].replace('Z', '+00:00')) if isinstance(data.get('updated_at'), str) else data.get('updated_at'),
        )


@dataclass
class QuoteSaveResult:
    """Result of storing a quotation on a purchase request."""
    success: bool
    request_id: str
    final_price_usd: Optional[Decimal] = None
    totals: Optional[LineItemTotals] = None
    resolution: Optional[FinalPriceResolution] = None
    warning: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0


# ============================================================================
# READ Operations
# ============================================================================

def get_purchase_request(request_id: str) -> Optional[PurchaseRequest]:
    """Get a purchase request by ID, or None if missing."""
    supabase = get_supabase()

    try:
        result = supabase.table('purchase_requests')\
            .select('*')\
            .eq('id', request_id)\
            .limit(1)\
            .execute()

        if result.data:
            return PurchaseRequest.from_dict(result.data[0])
        return None
    except Exception as e:
        logger.error(f"Error getting purchase request {request_id}: {e}")
        return None


def get_request_line_items(request_id: str) -> List[LineItem]:
    """Products of a purchase request as engine line items."""
    supabase = get_supabase()

    try:
        result = supabase.table('products')\
            .select('id, title, price, weight, profit_amount')\
            .eq('request_id', request_id)\
            .execute()

        return map_product_rows(result.data or [])
    except Exception as e:
        logger.error(f"Error getting products for request {request_id}: {e}")
        return []


# ============================================================================
# UPDATE Operations
# ============================================================================

def _to_column(value):
    if isinstance(value, Decimal):
        return float(value)
    return value


def update_request(request_id: str, changes: Dict[str, Any], touched: Iterable[str]) -> bool:
    """
    Write the touched quotation fields of a purchase request.

    Only fields listed in `touched` are written, so a cleared field (None) can
    be told apart from one the operator never edited.

    Raises:
        ValueError: If a touched field is not editable
    """
    touched = set(touched)
    invalid = touched - set(UPDATABLE_REQUEST_FIELDS)
    if invalid:
        raise ValueError(f"Fields not editable on a purchase request: {', '.join(sorted(invalid))}")

    update_data = {'updated_at': datetime.now(timezone.utc).isoformat()}
    for field_name in touched:
        update_data[field_name] = _to_column(changes.get(field_name))

    supabase = get_supabase()

    try:
        result = supabase.table('purchase_requests')\
            .update(update_data)\
            .eq('id', request_id)\
            .execute()

        if result.data:
            logger.info(f"Updated request {request_id}: {sorted(touched)}")
            return True
        logger.warning(f"Purchase request {request_id} not found for update")
        return False
    except Exception as e:
        logger.error(f"Error updating request {request_id}: {e}")
        return False


def _write_with_retry(request_id: str, update_data: Dict[str, Any], max_attempts: int) -> tuple:
    """Update a request row, retrying failed writes. Returns (saved, attempts, last_error)."""
    supabase = get_supabase()
    last_error = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = supabase.table('purchase_requests')\
                .update(update_data)\
                .eq('id', request_id)\
                .execute()

            if result.data:
                return True, attempt, None
            # No rows matched: retrying will not help
            return False, attempt, "Purchase request not found"
        except Exception as e:
            last_error = str(e)
            logger.warning(f"Write attempt {attempt}/{max_attempts} for request {request_id} failed: {e}")
            if attempt < max_attempts:
                time.sleep(RETRY_DELAY_SECONDS * attempt)

    return False, max_attempts, last_error


def save_request_quote(
    request_id: str,
    exchange_rate,
    additional_profit_usd=Decimal("0"),
    final_price_usd=None,
    policy: PricingPolicy = DEFAULT_POLICY,
    max_attempts: int = 3,
) -> QuoteSaveResult:
    """
    Quote a multi-product purchase request and store the result.

    Sums the request's products, applies the cost floor to an operator-entered
    final price (a lower value is replaced by the formula price and reported as
    a warning), then writes price, final price, profit, shipping and exchange
    rate on the request.

    Example:
        result = save_request_quote('req-123', Decimal('3.75'), final_price_usd=Decimal('120'))
        if result.warning:
            show_warning(result.warning)
    """
    items = get_request_line_items(request_id)
    if not items:
        return QuoteSaveResult(
            success=False,
            request_id=request_id,
            error_message="La solicitud no tiene productos",
        )

    totals = aggregate_line_items(items, policy, exchange_rate, additional_profit_usd)
    resolution = resolve_final_price(totals, final_price_usd)

    update_data = line_item_totals_to_storage_dict(totals, resolution)
    update_data['updated_at'] = datetime.now(timezone.utc).isoformat()

    saved, attempts, error = _write_with_retry(request_id, update_data, max_attempts)
    if saved:
        logger.info(f"Saved quote for request {request_id}: final_price={update_data['final_price']}")
    else:
        logger.error(f"Could not save quote for request {request_id}: {error}")

    return QuoteSaveResult(
        success=saved,
        request_id=request_id,
        final_price_usd=resolution.final_price_usd,
        totals=totals,
        resolution=resolution,
        warning=resolution.warning,
        error_message=error,
        attempts=attempts,
    )


def save_breakdown_snapshot(request_id: str, breakdown: PricingBreakdown, max_attempts: int = 3) -> bool:
    """Store a single-product calculator breakdown on a purchase request."""
    update_data = breakdown_to_storage_dict(breakdown)
    update_data['updated_at'] = datetime.now(timezone.utc).isoformat()

    saved, _, error = _write_with_retry(request_id, update_data, max_attempts)
    if not saved:
        logger.error(f"Could not save breakdown for request {request_id}: {error}")
    return saved
