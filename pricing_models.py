"""
Import Quotation Pricing - Models
Pydantic models for the USD/PEN quotation pricing engine.

All money values are Decimal. USD is the calculation currency; PEN (Peruvian
Sol) amounts are derived with the quotation's exchange rate.
"""

import os
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


# ============================================================================
# ENUMS
# ============================================================================

class MarginMode(str, Enum):
    """How the seller's profit is expressed"""
    PERCENTAGE = "percentage"  # % of base price, folded into the USD total
    FIXED_PEN = "fixed_pen"    # fixed amount in soles, added after conversion


class IssueKind(str, Enum):
    """Recoverable conditions reported by the engine"""
    VALIDATION_ERROR = "validation_error"
    MARGIN_VIOLATION = "margin_violation"
    CONFLICTING_MARGIN_MODE = "conflicting_margin_mode"


class PricingIssue(BaseModel):
    """A single reported condition, optionally tied to an input field"""
    kind: IssueKind
    field: Optional[str] = None
    message: str = ""

    class Config:
        frozen = True


class PricingValidationError(ValueError):
    """Raised by strict callers when a pricing request has invalid fields"""

    def __init__(self, issues: List[PricingIssue]):
        self.issues = issues
        self.fields = [issue.field for issue in issues if issue.field]
        super().__init__(f"Invalid pricing input: {', '.join(self.fields)}")


# ============================================================================
# POLICY (admin controlled constants)
# ============================================================================

POLICY_ENV_VARS = {
    "shipping_rate_per_kg": "PRICING_SHIPPING_RATE_PER_KG",
    "minimum_shipping_cost": "PRICING_MINIMUM_SHIPPING_COST",
    "processing_fee": "PRICING_PROCESSING_FEE",
    "handling_fee": "PRICING_HANDLING_FEE",
    "sales_tax_percentage": "PRICING_SALES_TAX_PERCENTAGE",
    "import_tax_percentage": "PRICING_IMPORT_TAX_PERCENTAGE",
    "import_tax_threshold": "PRICING_IMPORT_TAX_THRESHOLD",
    "default_margin_percentage": "PRICING_DEFAULT_MARGIN_PERCENTAGE",
    "default_margin_pen": "PRICING_DEFAULT_MARGIN_PEN",
    "percentage_margin_threshold": "PRICING_PERCENTAGE_MARGIN_THRESHOLD",
    "default_exchange_rate": "PRICING_DEFAULT_EXCHANGE_RATE",
}


class PricingPolicy(BaseModel):
    """Named rates, fees and thresholds that parameterize every calculation"""
    # Shipping
    shipping_rate_per_kg: Decimal = Field(default=Decimal("7"), ge=0, description="USD per kg")
    minimum_shipping_cost: Decimal = Field(default=Decimal("7"), ge=0, description="USD for packages under 1 kg")

    # Fixed fees
    processing_fee: Decimal = Field(default=Decimal("7"), ge=0, description="Processing fee (USD)")
    handling_fee: Decimal = Field(default=Decimal("5"), ge=0, description="Handling / mobility fee (USD)")

    # Taxes
    sales_tax_percentage: Decimal = Field(default=Decimal("7"), ge=0, description="General sales tax %")
    import_tax_percentage: Decimal = Field(default=Decimal("22"), ge=0, description="Import duty %")
    import_tax_threshold: Decimal = Field(default=Decimal("200"), ge=0, description="Import duty applies strictly above this base price (USD)")

    # Margins
    default_margin_percentage: Decimal = Field(default=Decimal("10"), ge=0, description="Default margin %")
    default_margin_pen: Decimal = Field(default=Decimal("0"), ge=0, description="Default fixed margin (PEN)")
    percentage_margin_threshold: Decimal = Field(default=Decimal("50"), ge=0, description="Base prices at or below use percentage margin (USD)")

    # Currency
    default_exchange_rate: Decimal = Field(default=Decimal("3.7"), gt=0, description="PEN per USD")

    class Config:
        frozen = True

    @classmethod
    def from_env(cls) -> "PricingPolicy":
        """Build a policy from PRICING_* environment variables, keeping defaults for unset ones."""
        overrides = {}
        for field_name, env_var in POLICY_ENV_VARS.items():
            value = os.getenv(env_var)
            if value is not None and value.strip() != "":
                overrides[field_name] = Decimal(value.strip())
        return cls(**overrides)


DEFAULT_POLICY = PricingPolicy()


# ============================================================================
# SINGLE QUOTATION INPUT / OUTPUT
# ============================================================================

class PricingRequest(BaseModel):
    """
    Input for one quotation.

    Values are unconstrained and the engine never raises for bad
    numbers. Use pricing_engine.validate_pricing_request() or the mapper's
    QuoteFormInput to reject invalid entry.
    """
    base_price: Decimal = Field(..., description="Sum of product prices (USD)")
    weight: Optional[Decimal] = Field(default=None, description="Sum of product weights (kg)")
    exchange_rate: Optional[Decimal] = Field(default=None, description="PEN per USD, None = policy default")
    tax_percentage: Optional[Decimal] = Field(default=None, description="Sales tax %, None = policy default")

    # Margin: margin_mode=None lets the base price threshold decide
    margin_mode: Optional[MarginMode] = Field(default=None, description="Explicit margin mode override")
    margin_percentage: Optional[Decimal] = Field(default=None, description="Margin % (percentage mode)")
    margin_pen: Optional[Decimal] = Field(default=None, description="Fixed margin in PEN (fixed mode)")

    class Config:
        frozen = True


class ImportTaxResult(BaseModel):
    """Whether import duty applies and its amount (USD)"""
    applies: bool
    amount: Decimal

    class Config:
        frozen = True


class ResolvedMargin(BaseModel):
    """Margin mode and values after defaults and conflict resolution"""
    mode: MarginMode
    percentage: Decimal
    pen: Decimal
    conflict: bool = False

    class Config:
        frozen = True


class PricingBreakdown(BaseModel):
    """Full cost breakdown of one quotation. Created fresh per calculation."""
    base_price: Decimal
    weight: Decimal = Field(..., description="Weight used for shipping (kg), 0 when unset")
    exchange_rate: Decimal

    shipping_cost: Decimal
    processing_fee: Decimal
    handling_fee: Decimal

    tax_percentage: Decimal
    tax_amount: Decimal
    has_import_tax: bool
    import_tax: Decimal

    margin_mode: MarginMode
    margin_percentage: Decimal
    margin_pen: Decimal
    margin_amount: Decimal = Field(..., description="Margin normalized to USD")

    total_usd: Decimal
    total_pen: Decimal
    total_with_margin_usd: Decimal
    total_with_margin_pen: Decimal

    issues: List[PricingIssue] = Field(default_factory=list)

    class Config:
        frozen = True


# ============================================================================
# MULTI-PRODUCT (PURCHASE REQUEST) QUOTING
# ============================================================================

class LineItem(BaseModel):
    """One product of a purchase request"""
    price: Decimal = Field(..., description="Product price (USD)")
    weight: Decimal = Field(default=Decimal("0"), description="Product weight (kg)")
    profit_amount_pen: Decimal = Field(default=Decimal("0"), description="Per-product profit (PEN)")
    title: Optional[str] = None

    class Config:
        frozen = True


class LineItemTotals(BaseModel):
    """Simplified request quote: costs plus profit, no sales or import tax"""
    sub_total: Decimal
    weight: Decimal
    shipping_cost: Decimal
    total_costs_usd: Decimal

    products_profit_usd: Decimal
    additional_profit_usd: Decimal
    total_profit_usd: Decimal

    calculated_price_usd: Decimal
    exchange_rate: Decimal

    class Config:
        frozen = True

    @property
    def total_costs_pen(self) -> Decimal:
        return self.total_costs_usd * self.exchange_rate

    @property
    def total_profit_pen(self) -> Decimal:
        return self.total_profit_usd * self.exchange_rate

    @property
    def calculated_price_pen(self) -> Decimal:
        return self.calculated_price_usd * self.exchange_rate


class FinalPriceResolution(BaseModel):
    """Outcome of applying an operator-entered final price"""
    final_price_usd: Decimal
    final_price_pen: Decimal
    price_adjustment_usd: Decimal = Field(..., description="final - calculated")
    override_applied: bool
    issue: Optional[PricingIssue] = None

    class Config:
        frozen = True

    @property
    def warning(self) -> Optional[str]:
        return self.issue.message if self.issue else None
