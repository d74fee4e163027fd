"""Copy-on-write state and stage result builders."""
import time
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from pricing_service.domain.exceptions import StateManagementException
from pricing_service.domain.models import (
    Bundle,
    PricingBreakdown,
    PricingInput,
    PricingOutput,
    PricingRule,
    PricingState,
    StateMetadata,
    StepResult,
    utc_now,
)


def generate_correlation_id(prefix: str = "pricing") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid4().hex[:9]}"


class StateBuilder:
    """Immutable-style builder: every update returns a new builder over a new state."""

    def __init__(self, state: PricingState) -> None:
        self._state = state

    @classmethod
    def from_input(
        cls,
        pricing_input: PricingInput,
        schema_version: str = "1.0",
        correlation_prefix: str = "pricing",
    ) -> "StateBuilder":
        """Build the initial state from calculation input."""
        metadata = pricing_input.metadata
        state = PricingState(
            context=pricing_input.context.model_copy(deep=True),
            request=pricing_input.request.model_copy(deep=True),
            metadata=StateMetadata(
                correlation_id=(metadata.correlation_id if metadata else None)
                or generate_correlation_id(correlation_prefix),
                timestamp=(metadata.timestamp if metadata else None) or utc_now(),
                version=(metadata.version if metadata else None) or schema_version,
            ),
        )
        return cls(state)

    @property
    def state(self) -> PricingState:
        return self._state

    @property
    def correlation_id(self) -> str:
        return self._state.metadata.correlation_id

    def update(self, updater: Callable[[PricingState], None]) -> "StateBuilder":
        """Apply `updater` to a deep copy of the state."""
        draft = self._state.model_copy(deep=True)
        updater(draft)
        return StateBuilder(draft)

    def with_selected_bundle(self, bundle: Bundle, unused_days: int = 0) -> "StateBuilder":
        """Select a bundle and start a fresh breakdown from its base price."""

        def _apply(draft: PricingState) -> None:
            draft.response.selected_bundle = bundle
            draft.response.unused_days = unused_days
            draft.response.pricing = PricingBreakdown.from_bundle(bundle)
            draft.processing.selected_bundle = bundle
            draft.processing.region = bundle.region or ""
            draft.processing.group = bundle.groups[0] if bundle.groups else ""
            draft.processing.bundle_upgrade = (
                draft.request.duration is not None
                and bundle.validity_in_days > draft.request.duration
            )

        return self.update(_apply)

    def with_previous_bundle(self, bundle: Optional[Bundle]) -> "StateBuilder":
        def _apply(draft: PricingState) -> None:
            draft.processing.previous_bundle = bundle

        return self.update(_apply)

    def with_pricing(
        self, transform: Callable[[PricingBreakdown], PricingBreakdown]
    ) -> "StateBuilder":
        """Replace the breakdown with `transform(breakdown)`."""
        pricing = self._state.response.pricing
        if pricing is None:
            raise StateManagementException(
                "Cannot update pricing before bundle selection",
                state_path="response.pricing",
                correlation_id=self.correlation_id,
            )
        if pricing.finalized:
            raise StateManagementException(
                "Pricing breakdown is finalized",
                state_path="response.pricing",
                correlation_id=self.correlation_id,
            )

        updated = transform(pricing.model_copy(deep=True))

        def _apply(draft: PricingState) -> None:
            draft.response.pricing = updated

        return self.update(_apply)

    def with_comparison_pricing(self, bundle_id: str, pricing: PricingBreakdown) -> "StateBuilder":
        def _apply(draft: PricingState) -> None:
            draft.processing.comparison_pricing[bundle_id] = pricing

        return self.update(_apply)

    def with_processing(self, **fields: Any) -> "StateBuilder":
        """Set computed processing fields."""

        def _apply(draft: PricingState) -> None:
            for name, value in fields.items():
                setattr(draft.processing, name, value)

        return self.update(_apply)

    def with_step_result(self, step: StepResult) -> "StateBuilder":
        def _apply(draft: PricingState) -> None:
            draft.processing.steps.append(step)

        return self.update(_apply)

    def with_applied_rules(self, rules: List[PricingRule]) -> "StateBuilder":
        def _apply(draft: PricingState) -> None:
            draft.response.applied_rules = list(rules)

        return self.update(_apply)

    def to_output(self) -> PricingOutput:
        return PricingOutput(
            response=self._state.response,
            processing=self._state.processing,
            metadata=self._state.metadata,
        )


class StageOutcome(BaseModel):
    """What a stage hands back to the orchestrator."""

    name: str
    state: PricingState
    applied_rules: List[str] = Field(default_factory=list)
    debug: Dict[str, Any] = Field(default_factory=dict)
    elapsed_ms: float = 0.0

    def to_trace(self) -> StepResult:
        return StepResult(
            name=self.name,
            applied_rules=list(self.applied_rules),
            debug=dict(self.debug),
            elapsed_ms=self.elapsed_ms,
        )


class ResultBuilder:
    """Fluent builder for stage outcomes."""

    def __init__(self, stage_name: str) -> None:
        self._name = stage_name
        self._state: Optional[PricingState] = None
        self._applied_rules: List[str] = []
        self._debug: Dict[str, Any] = {}

    def with_state(self, state: PricingState) -> "ResultBuilder":
        self._state = state
        return self

    def with_applied_rules(self, rule_ids: List[str]) -> "ResultBuilder":
        self._applied_rules = list(rule_ids)
        return self

    def with_debug_info(self, **debug: Any) -> "ResultBuilder":
        self._debug.update(debug)
        return self

    def build(self) -> StageOutcome:
        if self._state is None:
            raise StateManagementException(
                f"Stage {self._name} produced no state", state_path="state"
            )
        return StageOutcome(
            name=self._name,
            state=self._state,
            applied_rules=self._applied_rules,
            debug=self._debug,
        )
