"""Tests for PricingService."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from pricing_service.domain.exceptions import (
    BulkPricingException,
    CalculationTimeoutException,
    ValidationException,
)
from pricing_service.domain.models import ActionType, InputMetadata, RuleCategory
from pricing_service.engine.pipeline import PricingEngine
from pricing_service.infrastructure.repositories_inmemory import InMemoryRuleRepository
from pricing_service.services.pricing_service import PricingService


@pytest.mark.asyncio
async def test_calculate_uses_stored_rules(
    pricing_service: PricingService,
    rule_repository: InMemoryRuleRepository,
    input_factory,
    single_bundle,
    rule_factory,
) -> None:
    """Test repository rules are used when the input carries none."""
    # Arrange
    await rule_repository.replace_rules(
        [rule_factory("markup", RuleCategory.BUNDLE_ADJUSTMENT, ActionType.ADD_MARKUP, 5)]
    )

    # Act
    output = await pricing_service.calculate(input_factory(10, single_bundle))

    # Assert
    assert output.response.pricing.total_cost == pytest.approx(15.0)
    assert [rule.id for rule in output.response.applied_rules] == ["markup"]


@pytest.mark.asyncio
async def test_calculate_prefers_input_rules(
    pricing_service: PricingService,
    rule_repository: InMemoryRuleRepository,
    input_factory,
    single_bundle,
    rule_factory,
) -> None:
    await rule_repository.replace_rules(
        [rule_factory("stored", RuleCategory.BUNDLE_ADJUSTMENT, ActionType.ADD_MARKUP, 5)]
    )
    inline = [rule_factory("inline", RuleCategory.BUNDLE_ADJUSTMENT, ActionType.ADD_MARKUP, 1)]

    output = await pricing_service.calculate(input_factory(10, single_bundle, inline))

    assert output.response.pricing.markup == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_calculate_reads_rules_at_calculation_date(
    mock_rule_repository: AsyncMock, input_factory, single_bundle, pricing_date
) -> None:
    service = PricingService(engine=PricingEngine(), rule_repository=mock_rule_repository)

    await service.calculate(input_factory(10, single_bundle))

    mock_rule_repository.get_active_rules.assert_called_once_with(pricing_date)


@pytest.mark.asyncio
async def test_calculate_timeout(mock_rule_repository: AsyncMock, input_factory, single_bundle) -> None:
    """Test a slow calculation is reported as CalculationTimeoutException."""
    # Arrange
    engine = AsyncMock(spec=PricingEngine)

    async def slow(_):
        await asyncio.sleep(1)

    engine.calculate_price = AsyncMock(side_effect=slow)
    service = PricingService(engine=engine, rule_repository=mock_rule_repository, calculation_timeout=0.01)

    # Act & Assert
    with pytest.raises(CalculationTimeoutException) as exc_info:
        await service.calculate(input_factory(10, single_bundle))

    assert exc_info.value.code == "CALCULATION_TIMEOUT"
    assert exc_info.value.correlation_id.startswith("pricing-")
    sent = engine.calculate_price.call_args.args[0]
    assert sent.metadata.correlation_id == exc_info.value.correlation_id


@pytest.mark.asyncio
async def test_calculate_keeps_caller_correlation_id(
    pricing_service: PricingService, input_factory, single_bundle
) -> None:
    pricing_input = input_factory(10, single_bundle).model_copy(
        update={"metadata": InputMetadata(correlation_id="checkout-42")}
    )

    output = await pricing_service.calculate(pricing_input)

    assert output.metadata.correlation_id == "checkout-42"


@pytest.mark.asyncio
async def test_bulk_timeout_carries_correlation_id(
    mock_rule_repository: AsyncMock, input_factory, single_bundle
) -> None:
    engine = AsyncMock(spec=PricingEngine)

    async def slow(_):
        await asyncio.sleep(1)

    engine.calculate_bulk_prices = AsyncMock(side_effect=slow)
    service = PricingService(engine=engine, rule_repository=mock_rule_repository, calculation_timeout=0.01)

    with pytest.raises(CalculationTimeoutException) as exc_info:
        await service.calculate_bulk([input_factory(10, single_bundle)])

    assert exc_info.value.correlation_id.startswith("pricing-bulk-")
    sent = engine.calculate_bulk_prices.call_args.args[0]
    assert sent[0].metadata.correlation_id.startswith("pricing-")


@pytest.mark.asyncio
async def test_calculate_bulk(pricing_service: PricingService, input_factory, catalog) -> None:
    results = await pricing_service.calculate_bulk([input_factory(7, catalog), input_factory(13, catalog)])

    assert len(results) == 2
    assert results[1].response.pricing.price_after_discount == pytest.approx(21.0)


@pytest.mark.asyncio
async def test_calculate_bulk_limit(
    engine: PricingEngine, rule_repository: InMemoryRuleRepository, input_factory, catalog
) -> None:
    service = PricingService(engine=engine, rule_repository=rule_repository, bulk_max_requests=2)

    with pytest.raises(ValidationException) as exc_info:
        await service.calculate_bulk([input_factory(7, catalog)] * 3)

    assert exc_info.value.field == "requests"
    assert exc_info.value.correlation_id is not None


@pytest.mark.asyncio
async def test_calculate_bulk_failure(pricing_service: PricingService, input_factory, catalog) -> None:
    with pytest.raises(BulkPricingException) as exc_info:
        await pricing_service.calculate_bulk([input_factory(7, catalog), input_factory(-1, catalog)])

    assert exc_info.value.index == 1


@pytest.mark.asyncio
async def test_replace_and_get_rules(pricing_service: PricingService, rule_factory) -> None:
    """Test the stored rule set is replaced wholesale and kept in priority order."""
    low = rule_factory("low", RuleCategory.DISCOUNT, ActionType.APPLY_FIXED_DISCOUNT, 1, priority=1)
    high = rule_factory("high", RuleCategory.DISCOUNT, ActionType.APPLY_FIXED_DISCOUNT, 2, priority=9)

    await pricing_service.replace_rules([low, high])
    await pricing_service.replace_rules([low])
    rules = await pricing_service.get_rules()

    assert [rule.id for rule in rules] == ["low"]


@pytest.mark.asyncio
async def test_repository_active_rules(rule_factory, pricing_date) -> None:
    repository = InMemoryRuleRepository(
        [
            rule_factory("on", RuleCategory.FEE, ActionType.SET_PROCESSING_RATE, 2, priority=1),
            rule_factory("off", RuleCategory.FEE, ActionType.SET_PROCESSING_RATE, 3, is_active=False),
            rule_factory("top", RuleCategory.FEE, ActionType.SET_PROCESSING_RATE, 4, priority=5),
        ]
    )

    active = await repository.get_active_rules(pricing_date)

    assert [rule.id for rule in active] == ["top", "on"]
    assert (await repository.get_by_id("off")).is_active is False
    assert await repository.get_by_id("missing") is None
