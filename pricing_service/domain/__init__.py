"""Domain layer."""
from pricing_service.domain.exceptions import (
    BulkPricingException,
    BundleProcessingException,
    CalculationTimeoutException,
    DomainException,
    RuleEvaluationException,
    StateManagementException,
    StepExecutionException,
    ValidationException,
)
from pricing_service.domain.models import (
    ActionType,
    Bundle,
    ConditionOperator,
    DataType,
    DiscountLine,
    PaymentMethod,
    PricingBreakdown,
    PricingContext,
    PricingInput,
    PricingOutput,
    PricingRequest,
    PricingRule,
    PricingState,
    RuleAction,
    RuleCategory,
    RuleCondition,
    StepResult,
)

__all__ = [
    # Models
    "ActionType",
    "Bundle",
    "ConditionOperator",
    "DataType",
    "DiscountLine",
    "PaymentMethod",
    "PricingBreakdown",
    "PricingContext",
    "PricingInput",
    "PricingOutput",
    "PricingRequest",
    "PricingRule",
    "PricingState",
    "RuleAction",
    "RuleCategory",
    "RuleCondition",
    "StepResult",
    # Exceptions
    "DomainException",
    "ValidationException",
    "BundleProcessingException",
    "RuleEvaluationException",
    "StateManagementException",
    "StepExecutionException",
    "CalculationTimeoutException",
    "BulkPricingException",
]
