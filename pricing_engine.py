"""
Import Quotation Pricing - Calculation Engine

Derives the cost breakdown and final customer price of a quotation in USD and
PEN (Peruvian Sol).

CALCULATION ORDER (single product / summed request):
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
1. Shipping     = max(weight, floor) rule: < 1 kg pays the minimum, else weight * rate
2. Sales tax    = base * tax% / 100
3. Import tax   = (base + sales tax on base) * import% / 100, only when base > threshold
4. Margin       = percentage mode: base * margin% / 100 (folded into USD total)
                  fixed mode:      margin PEN, added only after conversion
5. Total USD    = base + shipping + tax + processing + handling + import tax (+ % margin)
6. Total PEN    = Total USD * exchange rate
7. With margin  = fixed mode adds margin PEN (and margin PEN / rate in USD)
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

Purchase requests with several products use the simplified request quote
(aggregate_line_items): costs are base + shipping only, without sales or
import tax.

Every function here is pure: no I/O, no shared state, no exceptions for bad
numbers. Invalid input is reported through PricingIssue entries.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional
import logging

from pricing_models import (
    DEFAULT_POLICY,
    FinalPriceResolution,
    ImportTaxResult,
    IssueKind,
    LineItem,
    LineItemTotals,
    MarginMode,
    PricingBreakdown,
    PricingIssue,
    PricingPolicy,
    PricingRequest,
    PricingValidationError,
    ResolvedMargin,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE_KG = Decimal("1")
HUNDRED = Decimal("100")


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def round_decimal(value: Decimal, decimal_places: int = 2) -> Decimal:
    """Round decimal to specified places using ROUND_HALF_UP.

    Default is 2 places, the precision used for display and storage.
    Breakdown values themselves are never rounded.
    """
    if decimal_places == 2:
        return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    elif decimal_places == 0:
        return value.quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    else:
        quantizer = Decimal(10) ** -decimal_places
        return value.quantize(quantizer, rounding=ROUND_HALF_UP)


def _as_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _is_finite(value: Optional[Decimal]) -> bool:
    return value is not None and value.is_finite()


def _pen_to_usd(amount_pen: Decimal, exchange_rate: Decimal) -> Decimal:
    # Zero or non-finite rates are reported by validation, not raised
    if not _is_finite(exchange_rate) or exchange_rate == 0:
        return ZERO
    return amount_pen / exchange_rate


def _percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return amount * percentage / HUNDRED


# ============================================================================
# SHIPPING COST RESOLVER
# ============================================================================

def shipping_cost(weight, policy: PricingPolicy = DEFAULT_POLICY) -> Decimal:
    """Shipping fee in USD for a package weight in kg.

    Unset, zero, sub-kilogram (and invalid negative or non-finite) weights pay
    the minimum shipping cost.
    """
    weight = _as_decimal(weight)
    if not _is_finite(weight) or weight < ONE_KG:
        return policy.minimum_shipping_cost
    return weight * policy.shipping_rate_per_kg


# ============================================================================
# IMPORT TAX RESOLVER
# ============================================================================

def has_import_tax(base_price, policy: PricingPolicy = DEFAULT_POLICY) -> bool:
    """Import duty applies strictly above the threshold."""
    base_price = _as_decimal(base_price)
    return _is_finite(base_price) and base_price > policy.import_tax_threshold


def import_tax(base_price, tax_percentage, policy: PricingPolicy = DEFAULT_POLICY) -> ImportTaxResult:
    """Import duty levied on the tax-inclusive base price."""
    base_price = _as_decimal(base_price)
    tax_percentage = _as_decimal(tax_percentage)

    if not has_import_tax(base_price, policy):
        return ImportTaxResult(applies=False, amount=ZERO)

    taxed_base = base_price + _percent_of(base_price, tax_percentage)
    return ImportTaxResult(applies=True, amount=_percent_of(taxed_base, policy.import_tax_percentage))


# ============================================================================
# MARGIN RESOLVER
# ============================================================================

def default_margin_mode(base_price, policy: PricingPolicy = DEFAULT_POLICY) -> MarginMode:
    """Low-value orders get a percentage margin, the rest a fixed PEN margin."""
    base_price = _as_decimal(base_price)
    if _is_finite(base_price) and base_price <= policy.percentage_margin_threshold:
        return MarginMode.PERCENTAGE
    return MarginMode.FIXED_PEN


def resolve_margin(request: PricingRequest, policy: PricingPolicy = DEFAULT_POLICY) -> ResolvedMargin:
    """Pick the margin mode for a request.

    An explicit request.margin_mode always wins. When both a percentage and a
    PEN amount are supplied without an explicit mode, the base price threshold
    decides and the result is flagged as a conflict.
    """
    percentage = request.margin_percentage
    if percentage is None:
        percentage = policy.default_margin_percentage
    pen = request.margin_pen
    if pen is None:
        pen = policy.default_margin_pen

    if request.margin_mode is not None:
        return ResolvedMargin(mode=request.margin_mode, percentage=percentage, pen=pen)

    conflict = request.margin_percentage is not None and request.margin_pen is not None
    mode = default_margin_mode(request.base_price, policy)
    if conflict:
        logger.debug("Both margin values supplied, resolved to %s by base price %s", mode.value, request.base_price)
    return ResolvedMargin(mode=mode, percentage=percentage, pen=pen, conflict=conflict)


def margin_amount_usd(mode: MarginMode, base_price, percentage, pen, exchange_rate) -> Decimal:
    """Margin normalized to USD regardless of mode."""
    if mode == MarginMode.PERCENTAGE:
        return _percent_of(_as_decimal(base_price), _as_decimal(percentage))
    return _pen_to_usd(_as_decimal(pen), _as_decimal(exchange_rate))


# ============================================================================
# INPUT VALIDATION
# ============================================================================

def _check_field(issues: List[PricingIssue], field: str, value: Optional[Decimal], allow_zero: bool = True):
    if value is None:
        return
    if not value.is_finite():
        issues.append(PricingIssue(kind=IssueKind.VALIDATION_ERROR, field=field,
                                   message=f"{field}: valor no numérico"))
    elif value < 0 or (not allow_zero and value == 0):
        bound = "mayor o igual a 0" if allow_zero else "mayor a 0"
        issues.append(PricingIssue(kind=IssueKind.VALIDATION_ERROR, field=field,
                                   message=f"{field}: debe ser {bound}"))


def validate_pricing_request(request: PricingRequest, policy: PricingPolicy = DEFAULT_POLICY) -> List[PricingIssue]:
    """List VALIDATION_ERROR issues for every offending field of a request."""
    issues: List[PricingIssue] = []
    exchange_rate = request.exchange_rate if request.exchange_rate is not None else policy.default_exchange_rate

    _check_field(issues, "base_price", request.base_price)
    _check_field(issues, "weight", request.weight)
    _check_field(issues, "exchange_rate", exchange_rate, allow_zero=False)
    _check_field(issues, "tax_percentage", request.tax_percentage)
    _check_field(issues, "margin_percentage", request.margin_percentage)
    _check_field(issues, "margin_pen", request.margin_pen)
    return issues


def ensure_valid_request(request: PricingRequest, policy: PricingPolicy = DEFAULT_POLICY) -> PricingRequest:
    """Return the request unchanged or raise PricingValidationError listing the bad fields."""
    issues = validate_pricing_request(request, policy)
    if issues:
        raise PricingValidationError(issues)
    return request


# ============================================================================
# PRICING AGGREGATOR
# ============================================================================

def compute_breakdown(request: PricingRequest, policy: PricingPolicy = DEFAULT_POLICY) -> PricingBreakdown:
    """
    Full USD/PEN breakdown for one quotation.

    Percentage margin is part of total_usd. Fixed PEN margin is not: it only
    shows up in the *_with_margin totals. Invalid inputs still produce a
    breakdown (negative prices give negative totals) with VALIDATION_ERROR
    issues attached.
    """
    base_price = request.base_price
    exchange_rate = request.exchange_rate if request.exchange_rate is not None else policy.default_exchange_rate
    tax_percentage = request.tax_percentage if request.tax_percentage is not None else policy.sales_tax_percentage

    issues = validate_pricing_request(request, policy)

    # 1. Shipping
    shipping = shipping_cost(request.weight, policy)

    # 2. Sales tax
    tax_amount = _percent_of(base_price, tax_percentage)

    # 3. Import tax on the tax-inclusive base
    duty = import_tax(base_price, tax_percentage, policy)

    # 4. Margin
    margin = resolve_margin(request, policy)
    if margin.conflict:
        issues.append(PricingIssue(
            kind=IssueKind.CONFLICTING_MARGIN_MODE,
            field="margin_mode",
            message=f"Se recibieron margen porcentual y fijo; se usó {margin.mode.value}",
        ))
    margin_usd = margin_amount_usd(margin.mode, base_price, margin.percentage, margin.pen, exchange_rate)
    is_percentage = margin.mode == MarginMode.PERCENTAGE

    # 5. Total USD
    total_usd = (
        base_price
        + shipping
        + tax_amount
        + policy.processing_fee
        + policy.handling_fee
        + (duty.amount if duty.applies else ZERO)
        + (margin_usd if is_percentage else ZERO)
    )

    # 6. Total PEN
    total_pen = total_usd * exchange_rate

    # 7. Fixed margin is added after conversion
    if is_percentage:
        total_with_margin_usd = total_usd
        total_with_margin_pen = total_pen
    else:
        total_with_margin_pen = total_pen + margin.pen
        total_with_margin_usd = total_usd + margin_usd

    weight = request.weight if request.weight is not None else ZERO

    logger.debug(
        "Breakdown base=%s weight=%s mode=%s total_usd=%s total_pen=%s",
        base_price, weight, margin.mode.value, total_usd, total_pen,
    )

    return PricingBreakdown(
        base_price=base_price,
        weight=weight,
        exchange_rate=exchange_rate,
        shipping_cost=shipping,
        processing_fee=policy.processing_fee,
        handling_fee=policy.handling_fee,
        tax_percentage=tax_percentage,
        tax_amount=tax_amount,
        has_import_tax=duty.applies,
        import_tax=duty.amount,
        margin_mode=margin.mode,
        margin_percentage=margin.percentage,
        margin_pen=margin.pen,
        margin_amount=margin_usd,
        total_usd=total_usd,
        total_pen=total_pen,
        total_with_margin_usd=total_with_margin_usd,
        total_with_margin_pen=total_with_margin_pen,
        issues=issues,
    )


# ============================================================================
# MULTI-PRODUCT AGGREGATOR (simplified request quote)
# ============================================================================

def aggregate_line_items(
    items: Iterable[LineItem],
    policy: PricingPolicy = DEFAULT_POLICY,
    exchange_rate=None,
    additional_profit_usd=ZERO,
) -> LineItemTotals:
    """
    Sum the products of a purchase request into a request quote.

    Final price = sub total + shipping(total weight) + products profit + additional profit.
    Sales tax and import tax are not part of this quote.
    """
    items = list(items)
    exchange_rate = _as_decimal(exchange_rate) if exchange_rate is not None else policy.default_exchange_rate
    additional_profit_usd = _as_decimal(additional_profit_usd) or ZERO

    sub_total = sum((item.price for item in items), ZERO)
    weight = sum((item.weight or ZERO for item in items), ZERO)
    profit_pen = sum((item.profit_amount_pen or ZERO for item in items), ZERO)

    shipping = shipping_cost(weight, policy)
    products_profit_usd = _pen_to_usd(profit_pen, exchange_rate)
    total_profit_usd = products_profit_usd + additional_profit_usd

    return LineItemTotals(
        sub_total=sub_total,
        weight=weight,
        shipping_cost=shipping,
        total_costs_usd=sub_total + shipping,
        products_profit_usd=products_profit_usd,
        additional_profit_usd=additional_profit_usd,
        total_profit_usd=total_profit_usd,
        calculated_price_usd=sub_total + shipping + products_profit_usd + additional_profit_usd,
        exchange_rate=exchange_rate,
    )


def additional_profit_from_total(total_profit_usd, products_profit_usd) -> Decimal:
    """Additional profit implied by an operator-entered total profit."""
    return _as_decimal(total_profit_usd) - _as_decimal(products_profit_usd)


def resolve_final_price(totals: LineItemTotals, requested_final_price_usd=None) -> FinalPriceResolution:
    """
    Apply an operator-entered final price.

    The final price may never be less than the total costs. A lower override is
    discarded, the price is recomputed from the formula and a MARGIN_VIOLATION
    issue carries the warning to show.
    """
    calculated = totals.calculated_price_usd
    requested = _as_decimal(requested_final_price_usd)

    if requested is None:
        final_price, override_applied, issue = calculated, False, None
    elif _is_finite(requested) and requested >= totals.total_costs_usd:
        final_price, override_applied, issue = requested, True, None
    else:
        logger.warning(
            "Final price %s below total costs %s, recomputed as %s",
            requested, totals.total_costs_usd, calculated,
        )
        final_price, override_applied = calculated, False
        issue = PricingIssue(
            kind=IssueKind.MARGIN_VIOLATION,
            field="final_price",
            message=(
                "El precio final no puede ser menor a los costos totales "
                f"(${round_decimal(totals.total_costs_usd)}). Se recalculó a ${round_decimal(calculated)}"
            ),
        )

    return FinalPriceResolution(
        final_price_usd=final_price,
        final_price_pen=final_price * totals.exchange_rate,
        price_adjustment_usd=final_price - calculated,
        override_applied=override_applied,
        issue=issue,
    )
