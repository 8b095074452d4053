"""
Exchange Rate Service - USD/PEN rates from SUNAT (via the Decolecta API)

A daily job stores one row per date in `exchange_rates`; quotations read the
latest row. The sell price is the PEN-per-USD rate used for pricing.

Required env vars:
    DECOLECTA_API_KEY - Bearer token for api.decolecta.com
"""

import os
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from zoneinfo import ZoneInfo

import httpx
from dotenv import load_dotenv

from pricing_models import DEFAULT_POLICY, PricingPolicy
from .database import get_supabase

load_dotenv()

logger = logging.getLogger(__name__)

DECOLECTA_SUNAT_URL = "https://api.decolecta.com/v1/tipo-cambio/sunat"
LIMA_TZ = ZoneInfo("America/Lima")

MAX_HISTORY_DAYS = 90


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ExchangeRate:
    """Stored SUNAT exchange rate for one date."""
    id: Optional[str]
    buy_price: Decimal
    sell_price: Decimal
    base_currency: str
    quote_currency: str
    date: date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'ExchangeRate':
        """Create an ExchangeRate instance from a table row."""
        return cls(
            id=data.get('id'),
            buy_price=Decimal(str(data['buy_price'])),
            sell_price=Decimal(str(data['sell_price'])),
            base_currency=data.get('base_currency') or 'USD',
            quote_currency=data.get('quote_currency') or 'PEN',
            date=date.fromisoformat(data['date']) if isinstance(data['date'], str) else data['date'],
            created_at=_parse_timestamp(data.get('created_at')),
            updated_at=_parse_timestamp(data.get('updated_at')),
        )

    @property
    def pricing_rate(self) -> Decimal:
        """PEN per USD used in quotations"""
        return self.sell_price


@dataclass
class RateRefreshResult:
    """Result of the daily refresh job."""
    success: bool
    skipped: bool = False
    rate: Optional[ExchangeRate] = None
    error_message: Optional[str] = None


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def lima_today() -> date:
    """Current date in Peru (America/Lima)."""
    return datetime.now(LIMA_TZ).date()


# ============================================================================
# DECOLECTA API
# ============================================================================

def fetch_sunat_rate(rate_date: Optional[date] = None) -> dict:
    """
    Fetch the SUNAT USD/PEN rate for a date from Decolecta.

    Returns the raw JSON: {buy_price, sell_price, base_currency, quote_currency, date}

    Raises:
        ValueError: If DECOLECTA_API_KEY is not configured
        httpx.HTTPError: On network or non-2xx responses
    """
    api_key = os.environ.get("DECOLECTA_API_KEY", "")
    if not api_key:
        raise ValueError("DECOLECTA_API_KEY is not configured")

    if rate_date is None:
        rate_date = lima_today()

    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    response = httpx.get(
        DECOLECTA_SUNAT_URL,
        params={"date": rate_date.isoformat()},
        headers=headers,
        timeout=10.0,
    )
    response.raise_for_status()
    return response.json()


# ============================================================================
# READ Operations
# ============================================================================

def get_current_rate() -> Optional[ExchangeRate]:
    """Most recent stored exchange rate, or None when the table is empty."""
    supabase = get_supabase()

    try:
        result = supabase.table('exchange_rates')\
            .select('*')\
            .order('date', desc=True)\
            .limit(1)\
            .execute()

        if result.data:
            return ExchangeRate.from_dict(result.data[0])
        return None
    except Exception as e:
        logger.error(f"Error fetching current exchange rate: {e}")
        return None


def get_rate_by_date(rate_date: date) -> Optional[ExchangeRate]:
    """Stored exchange rate for a specific date."""
    supabase = get_supabase()

    try:
        result = supabase.table('exchange_rates')\
            .select('*')\
            .eq('date', rate_date.isoformat())\
            .limit(1)\
            .execute()

        if result.data:
            return ExchangeRate.from_dict(result.data[0])
        return None
    except Exception as e:
        logger.error(f"Error fetching exchange rate for {rate_date}: {e}")
        return None


def get_rate_history(days: int = 30) -> List[ExchangeRate]:
    """
    Last `days` stored rates, newest first.

    Raises:
        ValueError: If days is outside 1..90
    """
    if days < 1 or days > MAX_HISTORY_DAYS:
        raise ValueError(f"days must be between 1 and {MAX_HISTORY_DAYS}")

    supabase = get_supabase()

    try:
        result = supabase.table('exchange_rates')\
            .select('*')\
            .order('date', desc=True)\
            .limit(days)\
            .execute()

        return [ExchangeRate.from_dict(row) for row in result.data or []]
    except Exception as e:
        logger.error(f"Error fetching exchange rate history: {e}")
        return []


def get_effective_exchange_rate(policy: PricingPolicy = DEFAULT_POLICY) -> Decimal:
    """
    Rate to seed new quotations with: latest stored sell price, or the policy
    default when nothing is stored yet.
    """
    current = get_current_rate()
    if current is None or current.pricing_rate <= 0:
        logger.warning(f"No stored exchange rate, using default {policy.default_exchange_rate}")
        return policy.default_exchange_rate
    return current.pricing_rate


# ============================================================================
# DAILY REFRESH (cron)
# ============================================================================

def save_rate(data: dict) -> Optional[ExchangeRate]:
    """Insert a Decolecta payload into exchange_rates."""
    supabase = get_supabase()
    now = datetime.now(LIMA_TZ).isoformat()

    try:
        result = supabase.table('exchange_rates').insert({
            'buy_price': float(data['buy_price']),
            'sell_price': float(data['sell_price']),
            'base_currency': data.get('base_currency') or 'USD',
            'quote_currency': data.get('quote_currency') or 'PEN',
            'date': data['date'],
            'created_at': now,
            'updated_at': now,
        }).execute()

        if result.data:
            logger.info(f"Saved exchange rate for {data['date']}: sell={data['sell_price']}")
            return ExchangeRate.from_dict(result.data[0])
        return None
    except Exception as e:
        logger.error(f"Error saving exchange rate: {e}")
        return None


def refresh_daily_rate(today: Optional[date] = None) -> RateRefreshResult:
    """
    Store today's SUNAT rate unless it is already stored.

    Meant to run once a day (morning, Lima time).
    """
    if today is None:
        today = lima_today()

    existing = get_rate_by_date(today)
    if existing:
        return RateRefreshResult(success=True, skipped=True, rate=existing)

    try:
        data = fetch_sunat_rate(today)
    except ValueError as e:
        return RateRefreshResult(success=False, error_message=str(e))
    except httpx.HTTPError as e:
        logger.error(f"Decolecta API error: {e}")
        return RateRefreshResult(success=False, error_message=f"Decolecta API error: {e}")

    if not data.get('buy_price') or not data.get('sell_price'):
        return RateRefreshResult(success=False, error_message="Invalid exchange rate data received from Decolecta API")

    if not data.get('date'):
        data = {**data, 'date': today.isoformat()}

    rate = save_rate(data)
    if rate is None:
        return RateRefreshResult(success=False, error_message="Failed to store exchange rate")

    return RateRefreshResult(success=True, rate=rate)
