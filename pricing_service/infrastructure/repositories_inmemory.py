"""In-memory repository implementation."""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pricing_service.domain.models import PricingRule, utc_now
from pricing_service.engine.rule_matcher import is_rule_in_window, sort_rules_by_priority
from pricing_service.infrastructure.repositories import RuleRepository

logger = logging.getLogger(__name__)


class InMemoryRuleRepository(RuleRepository):
    """In-memory implementation of rule repository."""

    def __init__(self, rules: Optional[List[PricingRule]] = None) -> None:
        self._rules: Dict[str, PricingRule] = {}
        for rule in rules or []:
            self._rules[rule.id] = rule

    async def list_rules(self) -> List[PricingRule]:
        return sort_rules_by_priority(self._rules.values())

    async def replace_rules(self, rules: List[PricingRule]) -> List[PricingRule]:
        """Replace the whole rule set; a later rule with a repeated id wins."""
        self._rules = {rule.id: rule for rule in rules}
        logger.info(f"Rule set replaced: {len(self._rules)} rules")
        return await self.list_rules()

    async def get_by_id(self, rule_id: str) -> Optional[PricingRule]:
        return self._rules.get(rule_id)

    async def get_active_rules(self, at: Optional[datetime] = None) -> List[PricingRule]:
        moment = at or utc_now()
        return [
            rule
            for rule in await self.list_rules()
            if rule.is_active and is_rule_in_window(rule, moment)
        ]
