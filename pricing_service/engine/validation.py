"""Input validation performed before the pipeline runs."""
import logging
import math
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from pricing_service.domain.exceptions import ValidationException
from pricing_service.domain.models import (
    ActionType,
    Bundle,
    ConditionOperator,
    PricingInput,
    PricingRule,
)

logger = logging.getLogger(__name__)

_COUNTRY_ISO = re.compile(r"^[A-Z]{2}$")
_CURRENCY = re.compile(r"^[A-Z]{3}$")
_LIST_OPERATORS = (ConditionOperator.IN, ConditionOperator.NOT_IN, ConditionOperator.BETWEEN)
_NON_NEGATIVE_ACTIONS = (
    ActionType.APPLY_DISCOUNT_PERCENTAGE,
    ActionType.APPLY_FIXED_DISCOUNT,
    ActionType.SET_PROCESSING_RATE,
)


def parse_input(
    raw: Union[PricingInput, Dict[str, Any]],
    correlation_id: Optional[str] = None,
) -> PricingInput:
    """Coerce raw input into a PricingInput, reporting schema errors as ValidationException."""
    if isinstance(raw, PricingInput):
        return raw
    if correlation_id is None and isinstance(raw, dict):
        metadata = raw.get("metadata")
        if isinstance(metadata, dict):
            correlation_id = metadata.get("correlationId") or metadata.get("correlation_id")
    try:
        return PricingInput.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationException(
            message=f"Invalid pricing input: {first['msg']}",
            field=field,
            value=first.get("input"),
            correlation_id=correlation_id,
            context={"errors": len(e.errors())},
        ) from e


class InputValidator:
    """Collects every input problem, then raises the first one."""

    def __init__(self, correlation_id: Optional[str] = None) -> None:
        self.correlation_id = correlation_id
        self.errors: List[ValidationException] = []
        self.warnings: List[str] = []

    def validate(self, pricing_input: PricingInput, rules: Optional[List[PricingRule]] = None) -> List[str]:
        """Validate input (and rules when given); returns warnings."""
        self.errors = []
        self.warnings = []

        self._validate_request(pricing_input)
        self._validate_bundles(pricing_input.context.bundles)
        if pricing_input.context.customer is None:
            self.warnings.append("Customer information is missing")
        if rules is not None:
            for rule in rules:
                self._validate_rule(rule)

        if self.errors:
            first = self.errors[0]
            first.context["all_errors"] = [error.message for error in self.errors]
            raise first

        for warning in self.warnings:
            logger.debug(f"Input warning [{self.correlation_id}]: {warning}")
        return self.warnings

    def _add_error(self, message: str, field: str, value: Any) -> None:
        self.errors.append(
            ValidationException(message, field=field, value=value, correlation_id=self.correlation_id)
        )

    def _validate_request(self, pricing_input: PricingInput) -> None:
        request = pricing_input.request

        if request.duration is None:
            self._add_error("Duration is required", "request.duration", request.duration)
        elif request.duration <= 0:
            self._add_error("Duration must be positive", "request.duration", request.duration)

        if not request.country_iso:
            self._add_error("Country ISO is required", "request.countryISO", request.country_iso)
        elif not _COUNTRY_ISO.match(request.country_iso):
            self._add_error(
                "Country ISO must be a 2-letter code", "request.countryISO", request.country_iso
            )

        if request.data_type is None:
            self._add_error("Data type is required", "request.dataType", request.data_type)

    def _validate_bundles(self, bundles: List[Bundle]) -> None:
        if not bundles:
            self._add_error("At least one bundle is required", "context.bundles", bundles)
            return

        for index, bundle in enumerate(bundles):
            path = f"context.bundles[{index}]"
            if bundle.base_price < 0 or not math.isfinite(bundle.base_price):
                self._add_error(
                    "Bundle base price must be a non-negative number",
                    f"{path}.basePrice",
                    bundle.base_price,
                )
            if bundle.validity_in_days <= 0:
                self._add_error(
                    "Bundle validity must be positive",
                    f"{path}.validityInDays",
                    bundle.validity_in_days,
                )
            if not _CURRENCY.match(bundle.currency):
                self._add_error(
                    "Bundle currency must be a 3-letter ISO code", f"{path}.currency", bundle.currency
                )

    def _validate_rule(self, rule: PricingRule) -> None:
        path = f"rules[{rule.id}]"
        for index, action in enumerate(rule.actions):
            value = action.value
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                self._add_error(
                    "Action value must be numeric", f"{path}.actions[{index}].value", value
                )
            elif not math.isfinite(value):
                self._add_error(
                    "Action value must be a finite number", f"{path}.actions[{index}].value", value
                )
            elif action.kind in _NON_NEGATIVE_ACTIONS and value < 0:
                self._add_error(
                    f"{action.kind.value} value must not be negative",
                    f"{path}.actions[{index}].value",
                    value,
                )
        for index, condition in enumerate(rule.conditions):
            if condition.operator in _LIST_OPERATORS and not isinstance(condition.value, list):
                self._add_error(
                    f"{condition.operator.value} requires a list value",
                    f"{path}.conditions[{index}].value",
                    condition.value,
                )
            elif condition.operator == ConditionOperator.BETWEEN and len(condition.value) != 2:
                self._add_error(
                    "BETWEEN requires exactly two bounds",
                    f"{path}.conditions[{index}].value",
                    condition.value,
                )
