"""Pricing engine: runs the stage pipeline over one calculation input."""
import time
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

import structlog

from pricing_service.domain.exceptions import (
    BulkPricingException,
    DomainException,
    StepExecutionException,
)
from pricing_service.domain.models import PricingInput, PricingOutput, PricingRule, PricingState
from pricing_service.engine.actions import LastWinsPolicy
from pricing_service.engine.rule_matcher import sort_rules_by_priority
from pricing_service.engine.state import StageOutcome, StateBuilder
from pricing_service.engine.steps import PIPELINE_STAGES, PipelineStage, StageOptions
from pricing_service.engine.validation import InputValidator, parse_input

RawInput = Union[PricingInput, Dict[str, Any]]


class PricingEngine:
    """Holds an engine-level rule set and prices inputs through the fixed stage order."""

    def __init__(
        self,
        rules: Optional[Iterable[PricingRule]] = None,
        last_wins_policy: LastWinsPolicy = LastWinsPolicy.LOWEST_PRIORITY,
        enable_rule_validation: bool = True,
        schema_version: str = "1.0",
        correlation_id_prefix: str = "pricing",
        stages: Optional[List[PipelineStage]] = None,
    ) -> None:
        self._rules: List[PricingRule] = []
        self._options = StageOptions(last_wins_policy=LastWinsPolicy(last_wins_policy))
        self._stages = list(stages) if stages is not None else list(PIPELINE_STAGES)
        self.enable_rule_validation = enable_rule_validation
        self.schema_version = schema_version
        self.correlation_id_prefix = correlation_id_prefix
        if rules:
            self.add_rules(rules)

    def add_rules(self, rules: Iterable[PricingRule]) -> None:
        self._rules = sort_rules_by_priority([*self._rules, *rules])

    def clear_rules(self) -> None:
        self._rules = []

    def get_rules(self) -> List[PricingRule]:
        return list(self._rules)

    async def calculate_price_steps(self, raw_input: RawInput) -> AsyncIterator[StageOutcome]:
        """Yield the outcome of each stage as it completes.

        Every yielded outcome's state already carries its own trace entry.
        Input validation errors are raised as-is; a failing stage is wrapped in
        StepExecutionException and ends the calculation.
        """
        pricing_input = parse_input(raw_input)
        builder = StateBuilder.from_input(
            pricing_input, self.schema_version, self.correlation_id_prefix
        )
        correlation_id = builder.correlation_id
        log = structlog.get_logger(__name__).bind(correlation_id=correlation_id)

        rules = sort_rules_by_priority([*self._rules, *pricing_input.context.rules])
        InputValidator(correlation_id).validate(
            pricing_input, rules if self.enable_rule_validation else None
        )

        state: PricingState = builder.state
        log.info(
            "pricing_calculation_started",
            duration=state.request.duration,
            country=state.request.country_iso,
            bundles=len(state.context.bundles),
            rules=len(rules),
        )

        for stage in self._stages:
            started = time.perf_counter()
            try:
                outcome = await stage.run(state, rules, self._options)
            except Exception as e:
                elapsed_ms = (time.perf_counter() - started) * 1000
                log.error(
                    "pricing_stage_failed",
                    stage=stage.name,
                    elapsed_ms=round(elapsed_ms, 3),
                    error=str(e),
                )
                raise StepExecutionException(stage.name, elapsed_ms, e, correlation_id) from e

            elapsed_ms = (time.perf_counter() - started) * 1000
            outcome = outcome.model_copy(update={"elapsed_ms": elapsed_ms})
            state = StateBuilder(outcome.state).with_step_result(outcome.to_trace()).state
            outcome = outcome.model_copy(update={"state": state})

            log.debug(
                "pricing_stage_completed",
                stage=stage.name,
                applied_rules=len(outcome.applied_rules),
                elapsed_ms=round(elapsed_ms, 3),
            )
            yield outcome

        pricing = state.response.pricing
        log.info(
            "pricing_calculation_finished",
            bundle=state.response.selected_bundle.id if state.response.selected_bundle else None,
            final_price=pricing.price_after_discount if pricing else None,
        )

    async def calculate_price(self, raw_input: RawInput) -> PricingOutput:
        """Run every stage and return the final output."""
        final_state: Optional[PricingState] = None
        async for outcome in self.calculate_price_steps(raw_input):
            final_state = outcome.state
        return StateBuilder(final_state).to_output()

    async def calculate_bulk_prices(self, inputs: List[RawInput]) -> List[PricingOutput]:
        """Price inputs one after another; the first failure aborts the batch."""
        results: List[PricingOutput] = []
        for index, raw_input in enumerate(inputs):
            try:
                results.append(await self.calculate_price(raw_input))
            except DomainException as e:
                raise BulkPricingException(index, e) from e
        return results
