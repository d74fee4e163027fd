"""Domain models for Bundle Pricing Service."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RuleCategory(str, Enum):
    """Rule category enum; each category is consumed by one pipeline stage."""

    DISCOUNT = "DISCOUNT"
    BUNDLE_ADJUSTMENT = "BUNDLE_ADJUSTMENT"
    FEE = "FEE"
    CONSTRAINT = "CONSTRAINT"


class ConditionOperator(str, Enum):
    """Condition operator enum."""

    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    IN = "IN"
    NOT_IN = "NOT_IN"
    CONTAINS = "CONTAINS"
    BETWEEN = "BETWEEN"
    EXISTS = "EXISTS"
    NOT_EXISTS = "NOT_EXISTS"
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class ActionType(str, Enum):
    """Rule action kind enum."""

    ADD_MARKUP = "ADD_MARKUP"
    APPLY_DISCOUNT_PERCENTAGE = "APPLY_DISCOUNT_PERCENTAGE"
    APPLY_FIXED_DISCOUNT = "APPLY_FIXED_DISCOUNT"
    SET_DISCOUNT_PER_UNUSED_DAY = "SET_DISCOUNT_PER_UNUSED_DAY"
    SET_PROCESSING_RATE = "SET_PROCESSING_RATE"
    SET_MINIMUM_PROFIT = "SET_MINIMUM_PROFIT"
    SET_MINIMUM_PRICE = "SET_MINIMUM_PRICE"


class PaymentMethod(str, Enum):
    """Payment method enum."""

    ISRAELI_CARD = "ISRAELI_CARD"
    FOREIGN_CARD = "FOREIGN_CARD"
    AMEX = "AMEX"
    DINERS = "DINERS"
    BIT = "BIT"


class DataType(str, Enum):
    """Requested data plan type."""

    DEFAULT = "DEFAULT"
    FIXED = "FIXED"
    UNLIMITED = "UNLIMITED"


class Bundle(CamelModel):
    """Catalog offer. Owned by the catalog, never mutated by the pipeline."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    base_price: float
    validity_in_days: int
    currency: str = "USD"
    region: Optional[str] = None
    groups: List[str] = Field(default_factory=list)
    is_unlimited: bool = False
    countries: List[str] = Field(default_factory=list)
    data_amount_mb: Optional[int] = Field(default=None, alias="dataAmountMB")

    @model_validator(mode="before")
    @classmethod
    def _default_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            data = {**data, "id": data.get("name")}
        return data


class RuleCondition(CamelModel):
    """Single rule condition; `field` is a dotted path into the pricing state."""

    field: str
    operator: ConditionOperator
    value: Any = None


class RuleAction(CamelModel):
    """Single rule action."""

    kind: ActionType = Field(alias="type")
    value: float


class PricingRule(CamelModel):
    """Admin-authored pricing rule."""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    category: RuleCategory
    priority: int = 0
    conditions: List[RuleCondition] = Field(default_factory=list)
    actions: List[RuleAction] = Field(default_factory=list)
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class DiscountLine(CamelModel):
    """Itemized discount entry."""

    rule_id: Optional[str] = None
    rule_name: str
    amount: float
    kind: str


class PricingBreakdown(CamelModel):
    """Pricing snapshot threaded through the stages."""

    cost: float
    markup: float = 0.0
    total_cost: float
    discount_value: float = 0.0
    discount_rate: float = 0.0
    price_after_discount: float
    discount_per_day: float = 0.0
    processing_rate: float = 0.0
    processing_cost: float = 0.0
    final_revenue: float
    revenue_after_processing: float
    net_profit: float = 0.0
    constraint_adjustment: float = 0.0
    currency: str = "USD"
    duration: int = 0
    discounts: List[DiscountLine] = Field(default_factory=list)
    finalized: bool = False

    @classmethod
    def from_bundle(cls, bundle: Bundle) -> "PricingBreakdown":
        """Initial breakdown: base price, every adjustment at zero."""
        return cls(
            cost=bundle.base_price,
            total_cost=bundle.base_price,
            price_after_discount=bundle.base_price,
            final_revenue=bundle.base_price,
            revenue_after_processing=bundle.base_price,
            currency=bundle.currency,
            duration=bundle.validity_in_days,
        )

    def snapshot(self) -> Dict[str, float]:
        """Numeric fields only, for stage debug payloads."""
        return {
            "cost": self.cost,
            "markup": self.markup,
            "totalCost": self.total_cost,
            "discountValue": self.discount_value,
            "discountRate": self.discount_rate,
            "priceAfterDiscount": self.price_after_discount,
            "discountPerDay": self.discount_per_day,
            "processingRate": self.processing_rate,
            "processingCost": self.processing_cost,
            "finalRevenue": self.final_revenue,
            "revenueAfterProcessing": self.revenue_after_processing,
            "netProfit": self.net_profit,
            "constraintAdjustment": self.constraint_adjustment,
        }


class Customer(CamelModel):
    """Customer facts available to rule conditions. Extra keys are kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = None
    segment: str = "default"
    email: Optional[str] = None
    country_iso: Optional[str] = Field(default=None, alias="countryISO")
    is_first_purchase: bool = False


class PaymentInfo(CamelModel):
    """Payment facts."""

    method: Optional[PaymentMethod] = None
    promo: Optional[str] = None
    currency: Optional[str] = None


class PricingContext(CamelModel):
    """Read-only calculation inputs."""

    bundles: List[Bundle] = Field(default_factory=list)
    customer: Optional[Customer] = None
    payment: Optional[PaymentInfo] = None
    rules: List[PricingRule] = Field(default_factory=list)
    date: datetime = Field(default_factory=utc_now)


class PricingRequest(CamelModel):
    """The caller's ask. Required fields are checked by the input validator."""

    duration: Optional[int] = None
    country_iso: Optional[str] = Field(default=None, alias="countryISO")
    payment_method: Optional[PaymentMethod] = None
    data_type: Optional[DataType] = None
    region: Optional[str] = None
    promo: Optional[str] = None


class InputMetadata(CamelModel):
    """Caller-supplied tracing metadata."""

    correlation_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    version: Optional[str] = None


class StateMetadata(CamelModel):
    """Resolved tracing metadata."""

    correlation_id: str
    timestamp: datetime
    version: str


class StepResult(CamelModel):
    """Trace entry for one pipeline stage."""

    name: str
    applied_rules: List[str] = Field(default_factory=list)
    debug: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    elapsed_ms: float = 0.0


class ProcessingState(CamelModel):
    """Derived working values."""

    steps: List[StepResult] = Field(default_factory=list)
    selected_bundle: Optional[Bundle] = None
    previous_bundle: Optional[Bundle] = None
    region: str = ""
    group: str = ""
    # keyed by bundle id; holds breakdowns computed for comparison bundles
    comparison_pricing: Dict[str, PricingBreakdown] = Field(default_factory=dict)
    markup_difference: float = 0.0
    unused_days_discount_per_day: float = 0.0
    bundle_upgrade: bool = False
    effective_discount: float = 0.0

    @property
    def previous_pricing(self) -> Optional[PricingBreakdown]:
        if self.previous_bundle is None:
            return None
        return self.comparison_pricing.get(self.previous_bundle.id)


class ResponseState(CamelModel):
    """Externally visible result."""

    unused_days: int = 0
    selected_bundle: Optional[Bundle] = None
    pricing: Optional[PricingBreakdown] = None
    applied_rules: List[PricingRule] = Field(default_factory=list)


class PricingState(CamelModel):
    """The single value threaded through the pipeline."""

    context: PricingContext
    request: PricingRequest
    processing: ProcessingState = Field(default_factory=ProcessingState)
    response: ResponseState = Field(default_factory=ResponseState)
    metadata: StateMetadata


class PricingInput(CamelModel):
    """Calculation input from the calling service."""

    context: PricingContext = Field(default_factory=PricingContext)
    request: PricingRequest = Field(default_factory=PricingRequest)
    metadata: Optional[InputMetadata] = None


class PricingOutput(CamelModel):
    """Calculation output for the calling service."""

    response: ResponseState
    processing: ProcessingState
    metadata: StateMetadata


class BulkPricingRequest(CamelModel):
    """Request to price many inputs."""

    requests: List[PricingInput]


class BulkPricingResponse(CamelModel):
    """Response for bulk pricing."""

    results: List[PricingOutput]
    count: int


class RuleSetRequest(CamelModel):
    """Replacement rule set."""

    rules: List[PricingRule]


class RuleSetResponse(CamelModel):
    """Current rule set."""

    rules: List[PricingRule]
    count: int
