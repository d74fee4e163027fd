"""Abstract repository interface."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from pricing_service.domain.models import PricingRule


class RuleRepository(ABC):
    """Abstract pricing rule repository interface."""

    @abstractmethod
    async def list_rules(self) -> List[PricingRule]:
        """Get every stored rule, highest priority first."""
        pass

    @abstractmethod
    async def replace_rules(self, rules: List[PricingRule]) -> List[PricingRule]:
        """Replace the whole rule set."""
        pass

    @abstractmethod
    async def get_by_id(self, rule_id: str) -> Optional[PricingRule]:
        """Get rule by ID."""
        pass

    @abstractmethod
    async def get_active_rules(self, at: Optional[datetime] = None) -> List[PricingRule]:
        """Get active rules valid at the given moment."""
        pass
