"""API routes."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from prometheus_client import Counter, Histogram

from pricing_service.domain.exceptions import (
    BulkPricingException,
    BundleProcessingException,
    CalculationTimeoutException,
    DomainException,
    StepExecutionException,
    ValidationException,
)
from pricing_service.domain.models import (
    BulkPricingRequest,
    BulkPricingResponse,
    PricingInput,
    PricingOutput,
    RuleSetRequest,
    RuleSetResponse,
)
from pricing_service.services.pricing_service import PricingService

from .dependencies import get_pricing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal/pricing", tags=["pricing"])

# Prometheus metrics
price_calculation_counter = Counter(
    "price_calculation_total", "Total number of price calculations", ["status"]
)
bulk_calculation_counter = Counter(
    "price_bulk_calculation_total", "Total number of bulk price calculations", ["status"]
)
rule_set_update_counter = Counter(
    "pricing_rule_set_update_total", "Total number of rule set replacements", ["status"]
)
price_calculation_duration = Histogram(
    "price_calculation_duration_seconds", "Time spent calculating prices"
)


def _root_cause(e: DomainException) -> DomainException:
    """Follow stage and batch wrappers down to the domain error that started it."""
    current = e
    while isinstance(current, (StepExecutionException, BulkPricingException)) and isinstance(
        current.cause, DomainException
    ):
        current = current.cause
    return current


def _status_for(e: DomainException) -> int:
    cause = _root_cause(e)
    if isinstance(cause, (ValidationException, BundleProcessingException)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(cause, CalculationTimeoutException):
        return status.HTTP_504_GATEWAY_TIMEOUT
    return status.HTTP_400_BAD_REQUEST


def _status_label(status_code: int) -> str:
    return {
        status.HTTP_422_UNPROCESSABLE_ENTITY: "invalid",
        status.HTTP_504_GATEWAY_TIMEOUT: "timeout",
    }.get(status_code, "error")


def _http_error(e: DomainException) -> HTTPException:
    return HTTPException(
        status_code=_status_for(e),
        detail={"code": e.code, "message": e.message, "correlationId": e.correlation_id},
    )


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "INTERNAL_ERROR", "message": "Internal server error", "correlationId": None},
    )


@router.post("/calculate", response_model=PricingOutput)
async def calculate_price(
    request: PricingInput,
    service: PricingService = Depends(get_pricing_service),
) -> PricingOutput:
    """Price one request.

    Rules default to the stored rule set when the body carries none.
    """
    try:
        with price_calculation_duration.time():
            response = await service.calculate(request)
        price_calculation_counter.labels(status="success").inc()
        return response
    except DomainException as e:
        error = _http_error(e)
        logger.error(f"Domain error calculating price: {e.to_dict()}")
        price_calculation_counter.labels(status=_status_label(error.status_code)).inc()
        raise error
    except Exception as e:
        logger.exception(f"Unexpected error calculating price: {e}")
        price_calculation_counter.labels(status="internal_error").inc()
        raise _internal_error()


@router.post("/calculate/bulk", response_model=BulkPricingResponse)
async def calculate_bulk(
    request: BulkPricingRequest,
    service: PricingService = Depends(get_pricing_service),
) -> BulkPricingResponse:
    """Price many requests in order; the batch stops at the first failure."""
    try:
        results = await service.calculate_bulk(request.requests)
        bulk_calculation_counter.labels(status="success").inc()
        return BulkPricingResponse(results=results, count=len(results))
    except DomainException as e:
        error = _http_error(e)
        logger.error(f"Domain error in bulk pricing: {e.to_dict()}")
        bulk_calculation_counter.labels(status=_status_label(error.status_code)).inc()
        raise error
    except Exception as e:
        logger.exception(f"Unexpected error in bulk pricing: {e}")
        bulk_calculation_counter.labels(status="internal_error").inc()
        raise _internal_error()


@router.get("/rules", response_model=RuleSetResponse)
async def get_rules(
    service: PricingService = Depends(get_pricing_service),
) -> RuleSetResponse:
    """Get the stored rule set."""
    rules = await service.get_rules()
    return RuleSetResponse(rules=rules, count=len(rules))


@router.put("/rules", response_model=RuleSetResponse)
async def replace_rules(
    request: RuleSetRequest,
    service: PricingService = Depends(get_pricing_service),
) -> RuleSetResponse:
    """Replace the stored rule set."""
    try:
        rules = await service.replace_rules(request.rules)
        rule_set_update_counter.labels(status="success").inc()
        return RuleSetResponse(rules=rules, count=len(rules))
    except Exception as e:
        logger.exception(f"Unexpected error replacing rules: {e}")
        rule_set_update_counter.labels(status="error").inc()
        raise _internal_error()
