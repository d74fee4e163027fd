"""Rule action application.

Each action kind maps to a pure transform over the pricing breakdown plus an
explicit composition strategy:

* ADDITIVE  - every matching rule contributes to a running total.
* LAST_WINS - the value is overwritten; the stage decides which matching rule
  is applied (see ``resolve_last_wins``).
* FLOOR     - the price can only be raised, never lowered.
"""
import logging
import math
from enum import Enum
from typing import Callable, Dict, NamedTuple, Optional

from pricing_service.domain.exceptions import RuleEvaluationException, StateManagementException
from pricing_service.domain.models import (
    ActionType,
    DiscountLine,
    PricingBreakdown,
    PricingRule,
    PricingState,
    RuleAction,
)
from pricing_service.engine.constraints import enforce_minimum_price, enforce_minimum_profit

logger = logging.getLogger(__name__)


class CompositionStrategy(str, Enum):
    """How repeated applications of one action kind combine."""

    ADDITIVE = "ADDITIVE"
    LAST_WINS = "LAST_WINS"
    FLOOR = "FLOOR"


class LastWinsPolicy(str, Enum):
    """Which matching rule supplies a LAST_WINS value."""

    # rules run in priority-descending order, so the last one is the lowest priority
    LOWEST_PRIORITY = "lowest_priority"
    HIGHEST_PRIORITY = "highest_priority"


ActionTransform = Callable[[PricingBreakdown, float, Optional[PricingRule]], PricingBreakdown]


class ActionHandler(NamedTuple):
    kind: ActionType
    strategy: CompositionStrategy
    transform: ActionTransform


def add_discount(
    pricing: PricingBreakdown,
    amount: float,
    kind: str,
    rule_id: Optional[str] = None,
    rule_name: str = "",
) -> PricingBreakdown:
    """Add an itemized discount and recompute the discounted price."""
    discount_value = pricing.discount_value + amount
    total_cost = pricing.total_cost
    return pricing.model_copy(
        update={
            "discount_value": discount_value,
            "discount_rate": discount_value / total_cost * 100 if total_cost > 0 else 0.0,
            "price_after_discount": max(0.0, total_cost - discount_value),
            "discounts": [
                *pricing.discounts,
                DiscountLine(rule_id=rule_id, rule_name=rule_name or kind, amount=amount, kind=kind),
            ],
        }
    )


def _rule_id(rule: Optional[PricingRule]) -> Optional[str]:
    return rule.id if rule else None


def _rule_name(rule: Optional[PricingRule]) -> str:
    return rule.display_name if rule else ""


def _add_markup(pricing: PricingBreakdown, value: float, rule: Optional[PricingRule]) -> PricingBreakdown:
    markup = pricing.markup + value
    total_cost = pricing.cost + markup
    if pricing.discount_value == 0:
        price = total_cost
    else:
        price = max(0.0, total_cost - pricing.discount_value)
    return pricing.model_copy(
        update={"markup": markup, "total_cost": total_cost, "price_after_discount": price}
    )


def _apply_discount_percentage(
    pricing: PricingBreakdown, value: float, rule: Optional[PricingRule]
) -> PricingBreakdown:
    amount = pricing.total_cost * value / 100
    return add_discount(pricing, amount, "percentage", _rule_id(rule), _rule_name(rule))


def _apply_fixed_discount(
    pricing: PricingBreakdown, value: float, rule: Optional[PricingRule]
) -> PricingBreakdown:
    return add_discount(pricing, value, "fixed", _rule_id(rule), _rule_name(rule))


def _set_discount_per_unused_day(
    pricing: PricingBreakdown, value: float, rule: Optional[PricingRule]
) -> PricingBreakdown:
    return pricing.model_copy(update={"discount_per_day": pricing.discount_per_day + value})


def _set_processing_rate(
    pricing: PricingBreakdown, value: float, rule: Optional[PricingRule]
) -> PricingBreakdown:
    # rules carry a percentage, the breakdown keeps the fraction
    return pricing.model_copy(update={"processing_rate": value / 100})


def _set_minimum_profit(
    pricing: PricingBreakdown, value: float, rule: Optional[PricingRule]
) -> PricingBreakdown:
    return enforce_minimum_profit(pricing, value)


def _set_minimum_price(
    pricing: PricingBreakdown, value: float, rule: Optional[PricingRule]
) -> PricingBreakdown:
    return enforce_minimum_price(pricing, value)


ACTION_HANDLERS: Dict[ActionType, ActionHandler] = {
    handler.kind: handler
    for handler in (
        ActionHandler(ActionType.ADD_MARKUP, CompositionStrategy.ADDITIVE, _add_markup),
        ActionHandler(
            ActionType.APPLY_DISCOUNT_PERCENTAGE,
            CompositionStrategy.ADDITIVE,
            _apply_discount_percentage,
        ),
        ActionHandler(
            ActionType.APPLY_FIXED_DISCOUNT, CompositionStrategy.ADDITIVE, _apply_fixed_discount
        ),
        ActionHandler(
            ActionType.SET_DISCOUNT_PER_UNUSED_DAY,
            CompositionStrategy.ADDITIVE,
            _set_discount_per_unused_day,
        ),
        ActionHandler(
            ActionType.SET_PROCESSING_RATE, CompositionStrategy.LAST_WINS, _set_processing_rate
        ),
        ActionHandler(ActionType.SET_MINIMUM_PROFIT, CompositionStrategy.FLOOR, _set_minimum_profit),
        ActionHandler(ActionType.SET_MINIMUM_PRICE, CompositionStrategy.FLOOR, _set_minimum_price),
    )
}


def get_handler(
    action: RuleAction,
    rule: Optional[PricingRule] = None,
    correlation_id: Optional[str] = None,
) -> ActionHandler:
    """Look up the handler for an action kind."""
    handler = ACTION_HANDLERS.get(action.kind)
    if handler is None:
        raise RuleEvaluationException(
            message=f"Unknown action kind {action.kind!r}",
            rule_id=_rule_id(rule) or "unknown",
            rule_name=_rule_name(rule) or None,
            correlation_id=correlation_id,
        )
    return handler


def transform_pricing(
    action: RuleAction,
    pricing: PricingBreakdown,
    rule: Optional[PricingRule] = None,
    correlation_id: Optional[str] = None,
) -> PricingBreakdown:
    """Apply one action to a breakdown, returning a new breakdown."""
    handler = get_handler(action, rule, correlation_id)
    value = action.value
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise RuleEvaluationException(
            message=f"Action {action.kind.value} has a non-numeric value {value!r}",
            rule_id=_rule_id(rule) or "unknown",
            rule_name=_rule_name(rule) or None,
            correlation_id=correlation_id,
        )
    return handler.transform(pricing, float(value), rule)


def apply_action(
    action: RuleAction,
    state: PricingState,
    rule: Optional[PricingRule] = None,
) -> PricingState:
    """Apply one action to the state's pricing; the input state is left untouched."""
    pricing = state.response.pricing
    correlation_id = state.metadata.correlation_id
    if pricing is None:
        raise StateManagementException(
            "Cannot apply actions before bundle selection",
            state_path="response.pricing",
            correlation_id=correlation_id,
        )
    if pricing.finalized:
        raise StateManagementException(
            "Cannot apply actions to a finalized breakdown",
            state_path="response.pricing",
            correlation_id=correlation_id,
        )

    updated = transform_pricing(action, pricing, rule, correlation_id)
    response = state.response.model_copy(update={"pricing": updated})
    return state.model_copy(update={"response": response})


def resolve_last_wins(current: Optional[PricingRule], candidate: PricingRule, policy: LastWinsPolicy) -> PricingRule:
    """Pick the rule whose LAST_WINS action survives, given rules seen in priority order."""
    if current is None or policy == LastWinsPolicy.LOWEST_PRIORITY:
        return candidate
    return current
