"""Pytest configuration and fixtures.

Catalog fixtures mirror a typical data-plan catalog: 5, 10, 15 and 30 day
bundles priced 8, 15, 25 and 45.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from pricing_service.domain.models import (
    ActionType,
    Bundle,
    ConditionOperator,
    DataType,
    PaymentMethod,
    PricingContext,
    PricingInput,
    PricingRequest,
    PricingRule,
    PricingState,
    RuleAction,
    RuleCategory,
    RuleCondition,
)
from pricing_service.engine.pipeline import PricingEngine
from pricing_service.engine.state import StateBuilder
from pricing_service.infrastructure.repositories import RuleRepository
from pricing_service.infrastructure.repositories_inmemory import InMemoryRuleRepository
from pricing_service.services.pricing_service import PricingService

FIXED_DATE = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_bundle(days: int, price: float, **overrides: Any) -> Bundle:
    """Catalog bundle named after its duration."""
    data: Dict[str, Any] = {
        "id": f"bundle-{days}d",
        "name": f"{days} days",
        "base_price": price,
        "validity_in_days": days,
        "region": "europe",
        "groups": ["Standard"],
        "countries": ["IL", "US"],
    }
    data.update(overrides)
    return Bundle(**data)


def make_rule(
    rule_id: str,
    category: RuleCategory,
    kind: ActionType,
    value: float,
    priority: int = 0,
    conditions: Optional[List[RuleCondition]] = None,
    **overrides: Any,
) -> PricingRule:
    """Single-action rule."""
    return PricingRule(
        id=rule_id,
        name=overrides.pop("name", rule_id),
        category=category,
        priority=priority,
        conditions=conditions or [],
        actions=[RuleAction(kind=kind, value=value)],
        **overrides,
    )


def make_input(
    duration: int,
    bundles: List[Bundle],
    rules: Optional[List[PricingRule]] = None,
    **request_overrides: Any,
) -> PricingInput:
    request: Dict[str, Any] = {
        "duration": duration,
        "country_iso": "IL",
        "payment_method": PaymentMethod.ISRAELI_CARD,
        "data_type": DataType.DEFAULT,
    }
    request.update(request_overrides)
    return PricingInput(
        context=PricingContext(bundles=bundles, rules=rules or [], date=FIXED_DATE),
        request=PricingRequest(**request),
    )


@pytest.fixture
def pricing_date() -> datetime:
    """Calculation date used by every input built here."""
    return FIXED_DATE


@pytest.fixture
def catalog() -> List[Bundle]:
    """Standard four-bundle catalog."""
    return [
        make_bundle(5, 8.0),
        make_bundle(10, 15.0),
        make_bundle(15, 25.0),
        make_bundle(30, 45.0),
    ]


@pytest.fixture
def single_bundle() -> List[Bundle]:
    """One 10-day bundle costing 10."""
    return [make_bundle(10, 10.0)]


@pytest.fixture
def bundle_factory() -> Callable[..., Bundle]:
    return make_bundle


@pytest.fixture
def rule_factory() -> Callable[..., PricingRule]:
    return make_rule


@pytest.fixture
def input_factory() -> Callable[..., PricingInput]:
    return make_input


@pytest.fixture
def israel_condition() -> RuleCondition:
    """Condition matching Israeli requests."""
    return RuleCondition(field="request.countryISO", operator=ConditionOperator.EQUALS, value="IL")


@pytest.fixture
def state_factory() -> Callable[..., PricingState]:
    """Initial pipeline state, optionally with a bundle already selected."""

    def _factory(
        duration: int,
        bundles: List[Bundle],
        selected: Optional[Bundle] = None,
        unused_days: int = 0,
    ) -> PricingState:
        builder = StateBuilder.from_input(make_input(duration, bundles))
        if selected is not None:
            builder = builder.with_selected_bundle(selected, unused_days)
        return builder.state

    return _factory


@pytest.fixture
def engine() -> PricingEngine:
    """Engine with no engine-level rules."""
    return PricingEngine()


@pytest.fixture
def rule_repository() -> InMemoryRuleRepository:
    """Empty in-memory rule repository."""
    return InMemoryRuleRepository()


@pytest.fixture
def mock_rule_repository() -> AsyncMock:
    """Mock rule repository returning no rules."""
    repository = AsyncMock(spec=RuleRepository)
    repository.get_active_rules = AsyncMock(return_value=[])
    repository.list_rules = AsyncMock(return_value=[])
    return repository


@pytest.fixture
def pricing_service(engine: PricingEngine, rule_repository: InMemoryRuleRepository) -> PricingService:
    """Pricing service over a real engine and in-memory repository."""
    return PricingService(engine=engine, rule_repository=rule_repository)
