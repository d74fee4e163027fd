"""Pricing Service implementation."""
import asyncio
import logging
from typing import List, Optional

from pricing_service.config import settings
from pricing_service.domain.exceptions import CalculationTimeoutException, ValidationException
from pricing_service.domain.models import InputMetadata, PricingInput, PricingOutput, PricingRule
from pricing_service.engine.pipeline import PricingEngine
from pricing_service.engine.state import generate_correlation_id
from pricing_service.infrastructure.repositories import RuleRepository

logger = logging.getLogger(__name__)


class PricingService:
    """Service for pricing calculations and rule set management."""

    def __init__(
        self,
        engine: PricingEngine,
        rule_repository: RuleRepository,
        calculation_timeout: Optional[float] = None,
        bulk_max_requests: Optional[int] = None,
    ):
        self.engine = engine
        self.rule_repository = rule_repository
        self.calculation_timeout = calculation_timeout or settings.calculation_timeout
        self.bulk_max_requests = bulk_max_requests or settings.bulk_max_requests

    async def _with_rules(self, pricing_input: PricingInput) -> PricingInput:
        """Fill in the stored rule set when the caller sent no rules."""
        if pricing_input.context.rules:
            return pricing_input
        rules = await self.rule_repository.get_active_rules(pricing_input.context.date)
        context = pricing_input.context.model_copy(update={"rules": rules})
        return pricing_input.model_copy(update={"context": context})

    @staticmethod
    def _with_correlation_id(pricing_input: PricingInput) -> PricingInput:
        """Stamp a correlation id on input that arrived without one."""
        metadata = pricing_input.metadata or InputMetadata()
        if metadata.correlation_id:
            return pricing_input
        metadata = metadata.model_copy(
            update={"correlation_id": generate_correlation_id(settings.correlation_id_prefix)}
        )
        return pricing_input.model_copy(update={"metadata": metadata})

    async def calculate(self, pricing_input: PricingInput) -> PricingOutput:
        """Price one request within the configured timeout."""
        pricing_input = self._with_correlation_id(pricing_input)
        correlation_id = pricing_input.metadata.correlation_id
        logger.info(
            f"Calculating price for duration={pricing_input.request.duration} "
            f"country={pricing_input.request.country_iso}"
        )

        prepared = await self._with_rules(pricing_input)
        try:
            output = await asyncio.wait_for(
                self.engine.calculate_price(prepared), timeout=self.calculation_timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Price calculation timed out after {self.calculation_timeout}s")
            raise CalculationTimeoutException(self.calculation_timeout, correlation_id)

        pricing = output.response.pricing
        logger.info(
            f"Priced bundle {output.response.selected_bundle.id} at "
            f"{pricing.price_after_discount:.2f} {pricing.currency} "
            f"[{output.metadata.correlation_id}]"
        )
        return output

    async def calculate_bulk(self, pricing_inputs: List[PricingInput]) -> List[PricingOutput]:
        """Price requests in order; the first failure aborts the batch."""
        batch_id = generate_correlation_id(f"{settings.correlation_id_prefix}-bulk")
        if len(pricing_inputs) > self.bulk_max_requests:
            raise ValidationException(
                f"Bulk request exceeds {self.bulk_max_requests} items",
                field="requests",
                value=len(pricing_inputs),
                correlation_id=batch_id,
            )

        logger.info(f"Calculating bulk prices for {len(pricing_inputs)} requests [{batch_id}]")
        prepared = [
            await self._with_rules(self._with_correlation_id(item)) for item in pricing_inputs
        ]
        timeout = self.calculation_timeout * max(1, len(prepared))
        try:
            return await asyncio.wait_for(
                self.engine.calculate_bulk_prices(prepared), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Bulk price calculation timed out after {timeout}s")
            raise CalculationTimeoutException(timeout, batch_id)

    async def get_rules(self) -> List[PricingRule]:
        return await self.rule_repository.list_rules()

    async def replace_rules(self, rules: List[PricingRule]) -> List[PricingRule]:
        """Replace the stored rule set."""
        logger.info(f"Replacing rule set with {len(rules)} rules")
        return await self.rule_repository.replace_rules(rules)
