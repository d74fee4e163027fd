"""Domain exceptions for Bundle Pricing Service."""
from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base domain exception."""

    def __init__(
        self,
        message: str,
        code: str = "DOMAIN_ERROR",
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.correlation_id = correlation_id
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logs and API error bodies."""
        return {
            "code": self.code,
            "message": self.message,
            "correlationId": self.correlation_id,
            "context": self.context,
        }


class ValidationException(DomainException):
    """Malformed pricing input."""

    def __init__(
        self,
        message: str,
        field: str,
        value: Any = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            correlation_id=correlation_id,
            context={"field": field, "value": repr(value), **(context or {})},
        )


class BundleProcessingException(DomainException):
    """No bundle could be selected for the request."""

    def __init__(
        self,
        message: str,
        bundle_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.bundle_id = bundle_id
        super().__init__(
            message=message,
            code="BUNDLE_PROCESSING_ERROR",
            correlation_id=correlation_id,
            context={"bundle_id": bundle_id, **(context or {})},
        )


class RuleEvaluationException(DomainException):
    """A rule action could not be applied."""

    def __init__(
        self,
        message: str,
        rule_id: str,
        rule_name: Optional[str] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.rule_id = rule_id
        self.rule_name = rule_name
        super().__init__(
            message=message,
            code="RULE_EVALUATION_ERROR",
            correlation_id=correlation_id,
            context={"rule_id": rule_id, "rule_name": rule_name, **(context or {})},
        )


class StateManagementException(DomainException):
    """Illegal write to the pricing state."""

    def __init__(
        self,
        message: str,
        state_path: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        self.state_path = state_path
        super().__init__(
            message=message,
            code="STATE_MANAGEMENT_ERROR",
            correlation_id=correlation_id,
            context={"state_path": state_path},
        )


class StepExecutionException(DomainException):
    """A pipeline stage failed; wraps the underlying error."""

    def __init__(
        self,
        stage: str,
        elapsed_ms: float,
        cause: BaseException,
        correlation_id: Optional[str] = None,
    ) -> None:
        self.stage = stage
        self.elapsed_ms = elapsed_ms
        self.cause = cause
        context: Dict[str, Any] = {"stage": stage, "elapsed_ms": round(elapsed_ms, 3)}
        if isinstance(cause, DomainException):
            context["cause_code"] = cause.code
        super().__init__(
            message=f"Pipeline stage {stage} failed: {cause}",
            code="STEP_EXECUTION_ERROR",
            correlation_id=correlation_id,
            context=context,
        )


class CalculationTimeoutException(DomainException):
    """A single calculation exceeded the configured timeout."""

    def __init__(self, timeout: float, correlation_id: Optional[str] = None) -> None:
        super().__init__(
            message=f"Price calculation timed out after {timeout}s",
            code="CALCULATION_TIMEOUT",
            correlation_id=correlation_id,
            context={"timeout": timeout},
        )


class BulkPricingException(DomainException):
    """Bulk pricing aborted at a failing request."""

    def __init__(self, index: int, cause: DomainException) -> None:
        self.index = index
        self.cause = cause
        super().__init__(
            message=f"Bulk pricing failed at index {index}: {cause.message}",
            code="BULK_PRICING_ERROR",
            correlation_id=cause.correlation_id,
            context={"index": index, "cause_code": cause.code},
        )
