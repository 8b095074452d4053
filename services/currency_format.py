"""
Currency display helpers for USD / PEN amounts.

Formatting only: values are rounded half-up to 2 decimals for display, the
engine's Decimal results are never modified.
"""

from decimal import Decimal
from typing import Dict, List, Tuple

from pricing_engine import round_decimal
from pricing_models import MarginMode, PricingBreakdown

USD_PREFIX = "$"
PEN_PREFIX = "S/."


def _amount(value) -> str:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return f"{round_decimal(value):,.2f}"


def format_usd(value) -> str:
    """54.1 -> '$54.10'"""
    text = _amount(value)
    if text.startswith("-"):
        return f"-{USD_PREFIX}{text[1:]}"
    return f"{USD_PREFIX}{text}"


def format_pen(value) -> str:
    """200.17 -> 'S/. 200.17'"""
    return f"{PEN_PREFIX} {_amount(value)}"


def format_dual(usd, pen) -> str:
    return f"{format_usd(usd)} ({format_pen(pen)})"


def format_exchange_rate(rate) -> str:
    """Rate as shown to operators: '$1 = S/. 3.7500'"""
    if not isinstance(rate, Decimal):
        rate = Decimal(str(rate))
    return f"{USD_PREFIX}1 = {PEN_PREFIX} {round_decimal(rate, 4)}"


def breakdown_display_lines(breakdown: PricingBreakdown) -> List[Tuple[str, str]]:
    """(label, value) rows of the calculator summary, in display order."""
    rate = breakdown.exchange_rate
    lines = [
        ("Precio base", format_dual(breakdown.base_price, breakdown.base_price * rate)),
        ("Envío", format_usd(breakdown.shipping_cost)),
        ("Procesamiento", format_usd(breakdown.processing_fee)),
        ("Movilidad", format_usd(breakdown.handling_fee)),
        (f"Impuesto ({breakdown.tax_percentage.normalize():f}%)", format_usd(breakdown.tax_amount)),
    ]
    if breakdown.has_import_tax:
        lines.append(("Impuesto de importación", format_usd(breakdown.import_tax)))

    if breakdown.margin_mode == MarginMode.PERCENTAGE:
        lines.append((f"Margen ({breakdown.margin_percentage.normalize():f}%)", format_usd(breakdown.margin_amount)))
        lines.append(("Total", format_dual(breakdown.total_usd, breakdown.total_pen)))
    else:
        lines.append(("Total sin margen", format_dual(breakdown.total_usd, breakdown.total_pen)))
        lines.append(("Margen", format_dual(breakdown.margin_amount, breakdown.margin_pen)))
        lines.append(("Total con margen", format_dual(breakdown.total_with_margin_usd, breakdown.total_with_margin_pen)))

    lines.append(("Tipo de cambio", format_exchange_rate(rate)))
    return lines


def email_totals_payload(breakdown: PricingBreakdown) -> Dict[str, float]:
    """Totals handed to the e-mail drafting collaborator. No calculation detail crosses over."""
    return {
        "total_usd": float(round_decimal(breakdown.total_with_margin_usd)),
        "total_pen": float(round_decimal(breakdown.total_with_margin_pen)),
    }
