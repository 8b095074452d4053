#!/usr/bin/env python3
"""
Quotation calculator

Usage:
    python scripts/quote_calculator.py 30 --weight 0.5 --margin-percentage 10
    python scripts/quote_calculator.py 250 --weight 2 --margin-pen 20 --rate 3.7
    python scripts/quote_calculator.py --request <purchase-request-id> [--final-price 120] [--save]
"""

import argparse
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import ValidationError

from pricing_engine import aggregate_line_items, compute_breakdown, resolve_final_price
from pricing_mapper import map_form_to_pricing_request, safe_decimal
from pricing_models import PricingPolicy
from services.currency_format import breakdown_display_lines, format_dual, format_exchange_rate


def print_breakdown(args, policy: PricingPolicy) -> int:
    form = {
        "base_price": args.base_price,
        "weight": args.weight,
        "exchange_rate": args.rate,
        "tax_percentage": args.tax,
        "margin_mode": args.mode,
        "margin_percentage": args.margin_percentage,
        "margin_pen": args.margin_pen,
    }
    try:
        request = map_form_to_pricing_request(form, policy)
    except ValidationError as e:
        print("Invalid input:")
        for error in e.errors():
            print(f"  {'.'.join(str(p) for p in error['loc'])}: {error['msg']}")
        return 1

    breakdown = compute_breakdown(request, policy)

    print("=" * 60)
    for label, value in breakdown_display_lines(breakdown):
        print(f"  {label:30s} {value}")
    print("=" * 60)
    for issue in breakdown.issues:
        print(f"  ! {issue.message}")
    return 0


def quote_request(args, policy: PricingPolicy) -> int:
    from services.exchange_rate_service import get_effective_exchange_rate
    from services.purchase_request_service import get_request_line_items, save_request_quote

    rate = safe_decimal(args.rate, default=None) or get_effective_exchange_rate(policy)
    additional = safe_decimal(args.additional_profit)
    final_price = safe_decimal(args.final_price, default=None)

    if args.save:
        result = save_request_quote(args.request, rate, additional, final_price, policy)
        if result.warning:
            print(f"WARNING: {result.warning}")
        if not result.success:
            print(f"ERROR: {result.error_message}")
            return 1
        print(f"Saved final price {format_dual(result.final_price_usd, result.final_price_usd * rate)}")
        return 0

    items = get_request_line_items(args.request)
    if not items:
        print("ERROR: request has no products")
        return 1

    totals = aggregate_line_items(items, policy, rate, additional)
    resolution = resolve_final_price(totals, final_price)

    print("=" * 60)
    print(f"  {'Productos':30s} {len(items)}")
    print(f"  {'Subtotal':30s} {format_dual(totals.sub_total, totals.sub_total * rate)}")
    print(f"  {'Peso total (kg)':30s} {totals.weight}")
    print(f"  {'Envío':30s} {format_dual(totals.shipping_cost, totals.shipping_cost * rate)}")
    print(f"  {'Costos totales':30s} {format_dual(totals.total_costs_usd, totals.total_costs_pen)}")
    print(f"  {'Ganancia total':30s} {format_dual(totals.total_profit_usd, totals.total_profit_pen)}")
    print(f"  {'Precio calculado':30s} {format_dual(totals.calculated_price_usd, totals.calculated_price_pen)}")
    print(f"  {'Precio final':30s} {format_dual(resolution.final_price_usd, resolution.final_price_pen)}")
    print(f"  {'Tipo de cambio':30s} {format_exchange_rate(rate)}")
    print("=" * 60)
    if resolution.warning:
        print(f"WARNING: {resolution.warning}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="USD/PEN quotation calculator")
    parser.add_argument("base_price", nargs="?", help="Base product price (USD)")
    parser.add_argument("--weight", help="Weight in kg")
    parser.add_argument("--rate", help="Exchange rate (PEN per USD)")
    parser.add_argument("--tax", help="Sales tax %% (default from policy)")
    parser.add_argument("--mode", choices=["percentage", "fixed_pen"], help="Force margin mode")
    parser.add_argument("--margin-percentage", help="Margin %%")
    parser.add_argument("--margin-pen", help="Fixed margin in PEN")
    parser.add_argument("--request", help="Quote a stored purchase request instead")
    parser.add_argument("--additional-profit", default="0", help="Additional profit (USD) for --request")
    parser.add_argument("--final-price", help="Operator final price (USD) for --request")
    parser.add_argument("--save", action="store_true", help="Store the request quote")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    policy = PricingPolicy.from_env()

    if args.request:
        return quote_request(args, policy)
    if args.base_price is None:
        parser.error("base_price is required unless --request is given")
    return print_breakdown(args, policy)


if __name__ == "__main__":
    sys.exit(main())
