"""
Pricing Services

Persistence and integration collaborators around the pricing engine:
exchange rates, purchase request quotations, proformas, display formatting
and debounced live recalculation.
"""

from .database import get_supabase
from .exchange_rate_service import (
    ExchangeRate,
    RateRefreshResult,
    lima_today,
    fetch_sunat_rate,
    get_current_rate,
    get_rate_by_date,
    get_rate_history,
    get_effective_exchange_rate,
    save_rate,
    refresh_daily_rate,
)
from .purchase_request_service import (
    PurchaseRequest,
    QuoteSaveResult,
    get_purchase_request,
    get_request_line_items,
    update_request,
    save_request_quote,
    save_breakdown_snapshot,
)
from .proforma_service import (
    IGV_RATE,
    ProformaItem,
    ProformaTotals,
    calculate_totals,
    get_proforma,
)
from .currency_format import (
    format_usd,
    format_pen,
    format_dual,
    format_exchange_rate,
    breakdown_display_lines,
    email_totals_payload,
)
from .debounce import Debouncer, LiveQuote

__all__ = [
    "get_supabase",
    # Exchange rates
    "ExchangeRate",
    "RateRefreshResult",
    "lima_today",
    "fetch_sunat_rate",
    "get_current_rate",
    "get_rate_by_date",
    "get_rate_history",
    "get_effective_exchange_rate",
    "save_rate",
    "refresh_daily_rate",
    # Purchase requests
    "PurchaseRequest",
    "QuoteSaveResult",
    "get_purchase_request",
    "get_request_line_items",
    "update_request",
    "save_request_quote",
    "save_breakdown_snapshot",
    # Proformas
    "IGV_RATE",
    "ProformaItem",
    "ProformaTotals",
    "calculate_totals",
    "get_proforma",
    # Display
    "format_usd",
    "format_pen",
    "format_dual",
    "format_exchange_rate",
    "breakdown_display_lines",
    "email_totals_payload",
    # Live recalculation
    "Debouncer",
    "LiveQuote",
]
