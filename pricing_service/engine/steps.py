"""Pipeline stages.

Every stage is an async function ``(state, rules, options) -> StageOutcome``.
A stage never modifies the state it receives; it hands back a new state along
with the ids of the rules that fired and a debug payload holding before/after
snapshots of the breakdown.
"""
import logging
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel

from pricing_service.domain.exceptions import RuleEvaluationException
from pricing_service.domain.models import (
    ActionType,
    PricingBreakdown,
    PricingRule,
    PricingState,
    RuleAction,
    RuleCategory,
)
from pricing_service.engine.actions import (
    CompositionStrategy,
    LastWinsPolicy,
    add_discount,
    apply_action,
    get_handler,
    resolve_last_wins,
)
from pricing_service.engine.conditions import evaluate_conditions
from pricing_service.engine.rule_matcher import (
    extract_applied_rule_ids,
    filter_rules,
    get_applied_rules,
)
from pricing_service.engine.selector import select_bundle
from pricing_service.engine.state import ResultBuilder, StageOutcome, StateBuilder

logger = logging.getLogger(__name__)

BUNDLE_SELECTION = "BUNDLE_SELECTION"
BUNDLE_ADJUSTMENT = "BUNDLE_ADJUSTMENT"
APPLY_DISCOUNTS = "APPLY_DISCOUNTS"
APPLY_UNUSED_DAYS_DISCOUNT = "APPLY_UNUSED_DAYS_DISCOUNT"
APPLY_CONSTRAINTS = "APPLY_CONSTRAINTS"
APPLY_FEES = "APPLY_FEES"
FINALIZE = "FINALIZE"


class StageOptions(BaseModel):
    """Engine-wide knobs passed to every stage."""

    last_wins_policy: LastWinsPolicy = LastWinsPolicy.LOWEST_PRIORITY


StageFunction = Callable[[PricingState, List[PricingRule], StageOptions], Awaitable[StageOutcome]]


class PipelineStage(NamedTuple):
    name: str
    run: StageFunction


def _snapshot(state: PricingState) -> Optional[Dict[str, float]]:
    pricing = state.response.pricing
    return pricing.snapshot() if pricing is not None else None


def _apply_rule_action(state: PricingState, rule: PricingRule, action: RuleAction) -> PricingState:
    try:
        return apply_action(action, state, rule)
    except RuleEvaluationException:
        raise
    except Exception as e:
        raise RuleEvaluationException(
            message=f"Failed to apply {action.kind.value}: {e}",
            rule_id=rule.id,
            rule_name=rule.display_name,
            correlation_id=state.metadata.correlation_id,
            context={"action": action.kind.value},
        ) from e


def apply_matching_rules(
    state: PricingState,
    rules: List[PricingRule],
    policy: LastWinsPolicy = LastWinsPolicy.LOWEST_PRIORITY,
) -> Tuple[PricingState, List[str]]:
    """Apply every rule whose conditions hold, in the given order.

    Conditions are evaluated against the state as it evolves, so a rule sees
    the effect of higher-priority rules. LAST_WINS actions are held back until
    all rules have been evaluated and only the winning rule's value is applied.
    """
    correlation_id = state.metadata.correlation_id
    current = state
    applied_ids: List[str] = []
    deferred: Dict[ActionType, Tuple[PricingRule, RuleAction]] = {}

    for rule in rules:
        if not evaluate_conditions(rule.conditions, current):
            continue

        for action in rule.actions:
            handler = get_handler(action, rule, correlation_id)
            if handler.strategy == CompositionStrategy.LAST_WINS:
                held = deferred.get(action.kind)
                winner = resolve_last_wins(held[0] if held else None, rule, policy)
                if winner is rule:
                    deferred[action.kind] = (rule, action)
                continue
            current = _apply_rule_action(current, rule, action)

        applied_ids.append(rule.id)
        logger.debug(f"Rule {rule.id} fired [{correlation_id}]")

    for rule, action in deferred.values():
        current = _apply_rule_action(current, rule, action)

    return current, applied_ids


async def bundle_selection_stage(
    state: PricingState, rules: List[PricingRule], options: StageOptions
) -> StageOutcome:
    """Pick the catalog bundle for the requested duration and seed the breakdown."""
    builder = StateBuilder(state)
    requested = state.request.duration or 0
    selection = select_bundle(state.context.bundles, requested, builder.correlation_id)

    new_state = (
        builder.with_selected_bundle(selection.selected_bundle, selection.unused_days)
        .with_previous_bundle(selection.previous_bundle)
        .state
    )
    previous = selection.previous_bundle

    return (
        ResultBuilder(BUNDLE_SELECTION)
        .with_state(new_state)
        .with_debug_info(
            requestedDuration=requested,
            selectedBundle=selection.selected_bundle.id,
            selectedDuration=selection.selected_bundle.validity_in_days,
            previousBundle=previous.id if previous else None,
            previousDuration=previous.validity_in_days if previous else None,
            unusedDays=selection.unused_days,
            exactMatch=selection.exact_match,
            exceedsCatalog=selection.exceeds_catalog,
            after=_snapshot(new_state),
        )
        .build()
    )


async def bundle_adjustment_stage(
    state: PricingState, rules: List[PricingRule], options: StageOptions
) -> StageOutcome:
    """Apply bundle adjustment rules to the selected bundle and, separately, to the previous one."""
    adjustment_rules = filter_rules(rules, RuleCategory.BUNDLE_ADJUSTMENT, state.context.date)
    adjusted, applied_ids = apply_matching_rules(state, adjustment_rules, options.last_wins_policy)
    builder = StateBuilder(adjusted)

    previous = state.processing.previous_bundle
    previous_snapshot: Optional[Dict[str, float]] = None
    if previous is not None:
        # priced from this stage's input so the selected bundle's adjustments do not leak in
        requested = state.request.duration or 0
        comparison = StateBuilder(state).with_selected_bundle(
            previous, max(0, previous.validity_in_days - requested)
        ).state
        comparison, _ = apply_matching_rules(comparison, adjustment_rules, options.last_wins_policy)
        previous_pricing = comparison.response.pricing
        builder = builder.with_comparison_pricing(previous.id, previous_pricing)
        previous_snapshot = previous_pricing.snapshot()

    return (
        ResultBuilder(BUNDLE_ADJUSTMENT)
        .with_state(builder.state)
        .with_applied_rules(applied_ids)
        .with_debug_info(
            candidateRules=len(adjustment_rules),
            before=_snapshot(state),
            after=_snapshot(builder.state),
            previousBundle=previous.id if previous else None,
            previousPricing=previous_snapshot,
        )
        .build()
    )


async def discount_stage(
    state: PricingState, rules: List[PricingRule], options: StageOptions
) -> StageOutcome:
    discount_rules = filter_rules(rules, RuleCategory.DISCOUNT, state.context.date)
    discounted, applied_ids = apply_matching_rules(state, discount_rules, options.last_wins_policy)
    return (
        ResultBuilder(APPLY_DISCOUNTS)
        .with_state(discounted)
        .with_applied_rules(applied_ids)
        .with_debug_info(
            candidateRules=len(discount_rules),
            before=_snapshot(state),
            after=_snapshot(discounted),
        )
        .build()
    )


async def unused_days_stage(
    state: PricingState, rules: List[PricingRule], options: StageOptions
) -> StageOutcome:
    """Credit the customer for days of the selected bundle they did not ask for.

    The per-day rate is the price step between the previous and the selected
    bundle spread over the duration gap between them, plus whatever per-day
    amount discount rules accumulated.
    """
    result = ResultBuilder(APPLY_UNUSED_DAYS_DISCOUNT)
    pricing = state.response.pricing
    unused_days = state.response.unused_days
    previous_pricing = state.processing.previous_pricing

    if unused_days <= 0 or pricing is None or previous_pricing is None:
        return (
            result.with_state(state)
            .with_debug_info(
                skipped=True,
                unusedDays=unused_days,
                hasPreviousBundle=previous_pricing is not None,
            )
            .build()
        )

    selected = state.processing.selected_bundle
    previous = state.processing.previous_bundle
    duration_gap = selected.validity_in_days - previous.validity_in_days
    markup_difference = pricing.total_cost - previous_pricing.total_cost
    step_rate = markup_difference / duration_gap if duration_gap > 0 else 0.0
    discount_per_day = step_rate + pricing.discount_per_day

    builder = StateBuilder(state).with_processing(markup_difference=markup_difference)
    debug = {
        "unusedDays": unused_days,
        "durationGap": duration_gap,
        "markupDifference": markup_difference,
        "stepRate": step_rate,
        "discountPerDay": discount_per_day,
        "before": _snapshot(state),
    }

    if discount_per_day <= 0:
        return result.with_state(builder.state).with_debug_info(skipped=True, **debug).build()

    total_discount = discount_per_day * unused_days

    def _apply(breakdown: PricingBreakdown) -> PricingBreakdown:
        updated = add_discount(breakdown, total_discount, "unused_days", rule_name="Unused days discount")
        return updated.model_copy(update={"discount_per_day": discount_per_day})

    builder = builder.with_pricing(_apply).with_processing(
        unused_days_discount_per_day=discount_per_day,
        effective_discount=total_discount,
    )
    logger.debug(
        f"Unused days discount {total_discount:.4f} for {unused_days} days "
        f"[{state.metadata.correlation_id}]"
    )

    return (
        result.with_state(builder.state)
        .with_debug_info(
            skipped=False,
            totalUnusedDiscount=total_discount,
            after=_snapshot(builder.state),
            **debug,
        )
        .build()
    )


async def constraint_stage(
    state: PricingState, rules: List[PricingRule], options: StageOptions
) -> StageOutcome:
    constraint_rules = filter_rules(rules, RuleCategory.CONSTRAINT, state.context.date)
    constrained, applied_ids = apply_matching_rules(state, constraint_rules, options.last_wins_policy)

    price_before = state.response.pricing.price_after_discount
    price_after = constrained.response.pricing.price_after_discount
    return (
        ResultBuilder(APPLY_CONSTRAINTS)
        .with_state(constrained)
        .with_applied_rules(applied_ids)
        .with_debug_info(
            candidateRules=len(constraint_rules),
            floorApplied=price_after > price_before,
            before=_snapshot(state),
            after=_snapshot(constrained),
        )
        .build()
    )


async def fee_stage(
    state: PricingState, rules: List[PricingRule], options: StageOptions
) -> StageOutcome:
    """Set the processing rate and derive the processing cost."""
    fee_rules = filter_rules(rules, RuleCategory.FEE, state.context.date)
    with_fees, applied_ids = apply_matching_rules(state, fee_rules, options.last_wins_policy)

    def _derive(breakdown: PricingBreakdown) -> PricingBreakdown:
        price = breakdown.price_after_discount
        return breakdown.model_copy(
            update={"final_revenue": price, "processing_cost": price * breakdown.processing_rate}
        )

    new_state = StateBuilder(with_fees).with_pricing(_derive).state
    return (
        ResultBuilder(APPLY_FEES)
        .with_state(new_state)
        .with_applied_rules(applied_ids)
        .with_debug_info(
            candidateRules=len(fee_rules),
            before=_snapshot(state),
            after=_snapshot(new_state),
        )
        .build()
    )


async def finalize_stage(
    state: PricingState, rules: List[PricingRule], options: StageOptions
) -> StageOutcome:
    """Compute the revenue figures, freeze the breakdown and attach applied rules."""

    def _finalize(breakdown: PricingBreakdown) -> PricingBreakdown:
        price = breakdown.price_after_discount
        return breakdown.model_copy(
            update={
                "final_revenue": price,
                "revenue_after_processing": price - breakdown.processing_cost,
                "net_profit": price - breakdown.cost,
                "finalized": True,
            }
        )

    applied = get_applied_rules(rules, extract_applied_rule_ids(state.processing.steps))
    new_state = StateBuilder(state).with_pricing(_finalize).with_applied_rules(applied).state
    return (
        ResultBuilder(FINALIZE)
        .with_state(new_state)
        .with_debug_info(
            appliedRuleCount=len(applied),
            before=_snapshot(state),
            after=_snapshot(new_state),
        )
        .build()
    )


PIPELINE_STAGES: List[PipelineStage] = [
    PipelineStage(BUNDLE_SELECTION, bundle_selection_stage),
    PipelineStage(BUNDLE_ADJUSTMENT, bundle_adjustment_stage),
    PipelineStage(APPLY_DISCOUNTS, discount_stage),
    PipelineStage(APPLY_UNUSED_DAYS_DISCOUNT, unused_days_stage),
    PipelineStage(APPLY_CONSTRAINTS, constraint_stage),
    PipelineStage(APPLY_FEES, fee_stage),
    PipelineStage(FINALIZE, finalize_stage),
]
