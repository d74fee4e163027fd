"""API dependencies with dependency injection."""
from typing import Optional

from pricing_service.config import settings
from pricing_service.engine.actions import LastWinsPolicy
from pricing_service.engine.pipeline import PricingEngine
from pricing_service.infrastructure.repositories import RuleRepository
from pricing_service.infrastructure.repositories_inmemory import InMemoryRuleRepository
from pricing_service.services.pricing_service import PricingService

# Singleton instances
_engine: Optional[PricingEngine] = None
_rule_repository: Optional[RuleRepository] = None


def get_pricing_engine() -> PricingEngine:
    """Get PricingEngine singleton."""
    global _engine
    if _engine is None:
        _engine = PricingEngine(
            last_wins_policy=LastWinsPolicy(settings.last_wins_policy),
            enable_rule_validation=settings.enable_rule_validation,
            schema_version=settings.pricing_schema_version,
            correlation_id_prefix=settings.correlation_id_prefix,
        )
    return _engine


def get_rule_repository() -> RuleRepository:
    """Get RuleRepository singleton."""
    global _rule_repository
    if _rule_repository is None:
        _rule_repository = InMemoryRuleRepository()
    return _rule_repository


def get_pricing_service() -> PricingService:
    """Get PricingService with dependencies."""
    return PricingService(
        engine=get_pricing_engine(),
        rule_repository=get_rule_repository(),
    )
