"""Rule filtering and ordering for pipeline stages."""
from datetime import datetime
from typing import Iterable, List, Optional

from pricing_service.domain.models import PricingRule, RuleCategory, StepResult, as_utc


def sort_rules_by_priority(rules: Iterable[PricingRule]) -> List[PricingRule]:
    """Highest priority first; ties keep their input order."""
    return sorted(rules, key=lambda rule: rule.priority, reverse=True)


def is_rule_in_window(rule: PricingRule, at: datetime) -> bool:
    moment = as_utc(at)
    if rule.valid_from is not None and as_utc(rule.valid_from) > moment:
        return False
    if rule.valid_until is not None and as_utc(rule.valid_until) < moment:
        return False
    return True


def filter_rules(
    rules: Iterable[PricingRule],
    category: RuleCategory,
    at: Optional[datetime] = None,
) -> List[PricingRule]:
    """Active rules of one category, valid at `at`, in priority order."""
    candidates = [
        rule
        for rule in rules
        if rule.is_active
        and rule.category == category
        and (at is None or is_rule_in_window(rule, at))
    ]
    return sort_rules_by_priority(candidates)


def extract_applied_rule_ids(steps: Iterable[StepResult]) -> List[str]:
    """Unique rule ids from the stage trace, in first-fired order."""
    seen: List[str] = []
    for step in steps:
        for rule_id in step.applied_rules:
            if rule_id not in seen:
                seen.append(rule_id)
    return seen


def get_applied_rules(rules: Iterable[PricingRule], rule_ids: List[str]) -> List[PricingRule]:
    wanted = set(rule_ids)
    applied: List[PricingRule] = []
    for rule in sort_rules_by_priority(rules):
        if rule.id in wanted:
            applied.append(rule)
            wanted.discard(rule.id)
    return applied
