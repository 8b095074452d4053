"""
Proforma Service

Totals for proforma invoices (subtotal, IGV, total) and proforma lookup.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from pricing_mapper import safe_decimal
from .database import get_supabase

logger = logging.getLogger(__name__)

# Peruvian general sales tax (IGV)
IGV_RATE = Decimal("0.18")


@dataclass
class ProformaItem:
    """A line of a proforma invoice."""
    description: str
    quantity: Decimal
    unit_price: Decimal

    @classmethod
    def from_dict(cls, data: dict) -> 'ProformaItem':
        return cls(
            description=data.get('description') or '',
            quantity=safe_decimal(data.get('quantity')),
            unit_price=safe_decimal(data.get('unit_price')),
        )

    @property
    def amount(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass
class ProformaTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def calculate_totals(items: Iterable[ProformaItem], include_igv: bool) -> ProformaTotals:
    """Subtotal of quantity * unit price, plus 18% IGV when included."""
    subtotal = sum((item.amount for item in items), Decimal("0"))
    tax = subtotal * IGV_RATE if include_igv else Decimal("0")
    return ProformaTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def get_proforma(proforma_id: str) -> Optional[dict]:
    """Get a proforma row by ID."""
    supabase = get_supabase()

    try:
        result = supabase.table('proformas')\
            .select('*')\
            .eq('id', proforma_id)\
            .limit(1)\
            .execute()

        if result.data:
            return result.data[0]
        return None
    except Exception as e:
        logger.error(f"Error getting proforma {proforma_id}: {e}")
        return None
