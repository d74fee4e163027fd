"""Rule condition evaluation against the pricing state."""
import logging
import math
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel

from pricing_service.domain.models import ConditionOperator, PricingState, RuleCondition, as_utc

logger = logging.getLogger(__name__)

STATE_PARTITIONS = frozenset({"context", "request", "processing", "response", "metadata"})

# Short field names accepted in rule conditions
FIELD_ALIASES = {
    "country": "request.country_iso",
    "countryISO": "request.country_iso",
    "duration": "request.duration",
    "requestedDuration": "request.duration",
    "paymentMethod": "request.payment_method",
    "dataType": "request.data_type",
    "promo": "request.promo",
    "region": "processing.region",
    "group": "processing.group",
    "bundleGroup": "processing.group",
    "bundleId": "processing.selected_bundle.id",
    "bundleName": "processing.selected_bundle.name",
    "bundleDuration": "processing.selected_bundle.validity_in_days",
    "isUnlimited": "processing.selected_bundle.is_unlimited",
    "markupDifference": "processing.markup_difference",
    "unusedDays": "response.unused_days",
    "cost": "response.pricing.cost",
    "markup": "response.pricing.markup",
    "totalCost": "response.pricing.total_cost",
    "priceAfterDiscount": "response.pricing.price_after_discount",
    "customerSegment": "context.customer.segment",
    "date": "context.date",
}

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
# "date", "startDate", "expiry_date"; not "candidateTier" or "lastUpdateSource"
_DATE_FIELD = re.compile(r"(?:^|_)date(?:$|_)|Date(?:$|[A-Z_])")
_NUMERIC_OPERATORS = {
    ConditionOperator.GREATER_THAN: lambda a, b: a > b,
    ConditionOperator.LESS_THAN: lambda a, b: a < b,
    ConditionOperator.GREATER_THAN_OR_EQUAL: lambda a, b: a >= b,
    ConditionOperator.LESS_THAN_OR_EQUAL: lambda a, b: a <= b,
}
_TEMPORAL_OPERATORS = {
    ConditionOperator.EQUALS: lambda a, b: a == b,
    ConditionOperator.NOT_EQUALS: lambda a, b: a != b,
    ConditionOperator.GREATER_THAN: lambda a, b: a > b,
    ConditionOperator.AFTER: lambda a, b: a > b,
    ConditionOperator.LESS_THAN: lambda a, b: a < b,
    ConditionOperator.BEFORE: lambda a, b: a < b,
    ConditionOperator.GREATER_THAN_OR_EQUAL: lambda a, b: a >= b,
    ConditionOperator.LESS_THAN_OR_EQUAL: lambda a, b: a <= b,
}


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def _step(current: Any, key: str) -> Any:
    if isinstance(current, BaseModel):
        fields = type(current).model_fields
        if key in fields:
            return getattr(current, key)
        for name, info in fields.items():
            if info.alias == key:
                return getattr(current, name)
        extra = current.model_extra or {}
        return extra.get(key)
    if isinstance(current, Mapping):
        return current.get(key)
    if isinstance(current, (list, tuple)) and key.isdigit():
        index = int(key)
        return current[index] if index < len(current) else None
    return None


def resolve_field(state: Any, path: str) -> Any:
    """Resolve a dotted path against the whole state; None for missing segments."""
    segments = path.split(".")
    if segments[0] not in STATE_PARTITIONS and path in FIELD_ALIASES:
        segments = FIELD_ALIASES[path].split(".")

    current = state
    for segment in segments:
        current = _step(current, segment)
        if current is None:
            return None
    return _normalize(current)


def _strict_equals(left: Any, right: Any) -> bool:
    left_is_number = isinstance(left, (int, float)) and not isinstance(left, bool)
    right_is_number = isinstance(right, (int, float)) and not isinstance(right, bool)
    if left_is_number and right_is_number:
        return left == right
    return type(left) is type(right) and left == right


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and _ISO_DATE.match(value):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def _looks_like_date(value: Any) -> bool:
    return isinstance(value, (date, datetime)) or (
        isinstance(value, str) and bool(_ISO_DATE.match(value))
    )


def is_temporal(condition: RuleCondition, actual: Any) -> bool:
    """Whether a condition compares dates rather than plain values."""
    operator = condition.operator
    if operator in (ConditionOperator.BEFORE, ConditionOperator.AFTER):
        return True
    if isinstance(actual, (date, datetime)):
        return True
    if operator == ConditionOperator.BETWEEN:
        bounds = condition.value
        return (
            isinstance(bounds, (list, tuple))
            and len(bounds) == 2
            and all(_looks_like_date(bound) for bound in bounds)
        )
    return bool(_DATE_FIELD.search(condition.field.rsplit(".", 1)[-1]))


def _evaluate_temporal(operator: ConditionOperator, actual: Any, expected: Any) -> bool:
    actual_dt = _to_datetime(actual)
    if actual_dt is None:
        return operator in (ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_IN)

    if operator == ConditionOperator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        low, high = _to_datetime(expected[0]), _to_datetime(expected[1])
        if low is None or high is None:
            return False
        return low <= actual_dt <= high

    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(expected, (list, tuple)):
            return False
        found = any(_to_datetime(item) == actual_dt for item in expected)
        return found if operator == ConditionOperator.IN else not found

    compare = _TEMPORAL_OPERATORS.get(operator)
    expected_dt = _to_datetime(expected)
    if compare is None or expected_dt is None:
        return False
    return compare(actual_dt, expected_dt)


def evaluate_condition(condition: RuleCondition, state: Any) -> bool:
    """Evaluate one condition against the pricing state (or any nested mapping)."""
    operator = condition.operator
    actual = resolve_field(state, condition.field)
    expected = _normalize(condition.value)

    if operator == ConditionOperator.EXISTS:
        return actual is not None
    if operator == ConditionOperator.NOT_EXISTS:
        return actual is None

    if is_temporal(condition, actual):
        return _evaluate_temporal(operator, actual, expected)

    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(expected, list):
            return False
        found = actual is not None and any(_strict_equals(actual, item) for item in expected)
        return found if operator == ConditionOperator.IN else not found

    if actual is None:
        return operator == ConditionOperator.NOT_EQUALS

    if operator == ConditionOperator.EQUALS:
        return _strict_equals(actual, expected)
    if operator == ConditionOperator.NOT_EQUALS:
        return not _strict_equals(actual, expected)

    if operator == ConditionOperator.CONTAINS:
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        if isinstance(actual, list):
            return any(_strict_equals(item, expected) for item in actual)
        return False

    if operator == ConditionOperator.BETWEEN:
        if not isinstance(expected, list) or len(expected) != 2:
            return False
        value, low, high = _to_number(actual), _to_number(expected[0]), _to_number(expected[1])
        if value is None or low is None or high is None:
            return False
        return low <= value <= high

    compare = _NUMERIC_OPERATORS.get(operator)
    if compare is None:
        logger.warning(f"Operator {operator} is not applicable to field {condition.field}")
        return False
    left, right = _to_number(actual), _to_number(expected)
    if left is None or right is None or math.isnan(left) or math.isnan(right):
        return False
    return compare(left, right)


def evaluate_conditions(conditions: List[RuleCondition], state: PricingState) -> bool:
    """AND-combine conditions; an empty list always matches."""
    return all(evaluate_condition(condition, state) for condition in conditions)
