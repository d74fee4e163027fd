"""Tests for API endpoints."""
import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from pricing_service.api.dependencies import get_pricing_service, get_rule_repository
from pricing_service.domain.exceptions import (
    BundleProcessingException,
    CalculationTimeoutException,
    RuleEvaluationException,
    StepExecutionException,
    ValidationException,
)
from pricing_service.domain.models import PricingOutput
from pricing_service.engine.pipeline import PricingEngine
from pricing_service.infrastructure.repositories_inmemory import InMemoryRuleRepository
from pricing_service.main import app
from pricing_service.services.pricing_service import PricingService

CALCULATE_BODY = {
    "context": {
        "bundles": [
            {"id": "b10", "name": "10 days", "basePrice": 15, "validityInDays": 10},
            {"id": "b15", "name": "15 days", "basePrice": 25, "validityInDays": 15},
        ],
        "date": "2025-06-01T12:00:00Z",
    },
    "request": {"duration": 13, "countryISO": "IL", "dataType": "DEFAULT", "paymentMethod": "AMEX"},
}


@pytest.fixture
def mock_pricing_service() -> AsyncMock:
    """Mock pricing service."""
    return AsyncMock(spec=PricingService)


@pytest.fixture
def client(mock_pricing_service: AsyncMock) -> TestClient:
    """Test client with mocked dependencies."""
    app.dependency_overrides[get_pricing_service] = lambda: mock_pricing_service
    app.dependency_overrides[get_rule_repository] = lambda: InMemoryRuleRepository()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def live_client() -> TestClient:
    """Test client over a real engine and a fresh rule repository."""
    service = PricingService(engine=PricingEngine(), rule_repository=InMemoryRuleRepository())
    app.dependency_overrides[get_pricing_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_pricing_output(input_factory, catalog) -> PricingOutput:
    """Output of a real 13-day calculation."""
    return asyncio.run(PricingEngine().calculate_price(input_factory(13, catalog)))


def test_root_endpoint(client: TestClient) -> None:
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "bundle-pricing-service"
    assert data["status"] == "running"
    assert data["storage"] == "in-memory"


def test_health_endpoint(client: TestClient) -> None:
    """Test health endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["rules"] == 0


def test_metrics_endpoint(client: TestClient) -> None:
    """Test metrics endpoint."""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "python_info" in response.text


def test_calculate_success(
    client: TestClient,
    mock_pricing_service: AsyncMock,
    mock_pricing_output: PricingOutput,
) -> None:
    """Test calculate endpoint returns camelCase output."""
    # Arrange
    mock_pricing_service.calculate = AsyncMock(return_value=mock_pricing_output)

    # Act
    response = client.post("/internal/pricing/calculate", json=CALCULATE_BODY)

    # Assert
    assert response.status_code == 200
    data = response.json()
    assert data["response"]["unusedDays"] == 2
    assert data["response"]["pricing"]["priceAfterDiscount"] == pytest.approx(21.0)
    assert data["response"]["selectedBundle"]["validityInDays"] == 15
    assert len(data["processing"]["steps"]) == 7
    mock_pricing_service.calculate.assert_called_once()


@pytest.mark.parametrize(
    "error,status_code",
    [
        (ValidationException("Duration is required", field="request.duration"), 422),
        (BundleProcessingException("No bundles available for selection"), 422),
        (CalculationTimeoutException(2.0, correlation_id="pricing-1"), 504),
        (RuleEvaluationException("Unknown action kind", rule_id="r1"), 400),
        (
            StepExecutionException(
                "BUNDLE_SELECTION", 0.4, BundleProcessingException("No bundles available")
            ),
            422,
        ),
        (
            StepExecutionException(
                "APPLY_FEES", 0.1, RuleEvaluationException("Unknown action kind", rule_id="r1")
            ),
            400,
        ),
    ],
)
def test_calculate_domain_errors(
    client: TestClient, mock_pricing_service: AsyncMock, error, status_code: int
) -> None:
    """Test domain errors map to HTTP status codes."""
    mock_pricing_service.calculate = AsyncMock(side_effect=error)

    response = client.post("/internal/pricing/calculate", json=CALCULATE_BODY)

    assert response.status_code == status_code
    detail = response.json()["detail"]
    assert detail["code"] == error.code
    assert detail["message"] == error.message
    assert detail["correlationId"] == error.correlation_id


def test_calculate_unexpected_error(client: TestClient, mock_pricing_service: AsyncMock) -> None:
    mock_pricing_service.calculate = AsyncMock(side_effect=RuntimeError("boom"))

    response = client.post("/internal/pricing/calculate", json=CALCULATE_BODY)

    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "INTERNAL_ERROR"


def test_calculate_malformed_body(client: TestClient) -> None:
    response = client.post(
        "/internal/pricing/calculate",
        json={"request": {"duration": "many"}},
    )

    assert response.status_code == 422


def test_calculate_end_to_end(live_client: TestClient) -> None:
    """Test the real pipeline behind the endpoint."""
    response = live_client.post("/internal/pricing/calculate", json=CALCULATE_BODY)

    assert response.status_code == 200
    pricing = response.json()["response"]["pricing"]
    assert pricing["totalCost"] == pytest.approx(25.0)
    assert pricing["discountValue"] == pytest.approx(4.0)
    assert pricing["priceAfterDiscount"] == pytest.approx(21.0)
    assert pricing["finalized"] is True


def test_calculate_validation_error_end_to_end(live_client: TestClient) -> None:
    body = {**CALCULATE_BODY, "request": {"duration": 13, "dataType": "DEFAULT"}}

    response = live_client.post("/internal/pricing/calculate", json=body)

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"
    assert response.json()["detail"]["correlationId"].startswith("pricing-")


def test_bulk_end_to_end(live_client: TestClient) -> None:
    short = {**CALCULATE_BODY, "request": {**CALCULATE_BODY["request"], "duration": 10}}

    response = live_client.post(
        "/internal/pricing/calculate/bulk", json={"requests": [CALCULATE_BODY, short]}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    assert data["results"][1]["response"]["pricing"]["priceAfterDiscount"] == pytest.approx(15.0)


def test_bulk_failure_reports_index(live_client: TestClient) -> None:
    broken = {**CALCULATE_BODY, "request": {**CALCULATE_BODY["request"], "duration": 0}}

    response = live_client.post(
        "/internal/pricing/calculate/bulk", json={"requests": [CALCULATE_BODY, broken]}
    )

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "BULK_PRICING_ERROR"
    assert "index 1" in detail["message"]


def test_rule_set_round_trip(live_client: TestClient) -> None:
    """Test stored rules are applied to calculations without inline rules."""
    rules = {
        "rules": [
            {
                "id": "markup",
                "name": "Flat markup",
                "category": "BUNDLE_ADJUSTMENT",
                "priority": 10,
                "actions": [{"type": "ADD_MARKUP", "value": 3}],
            }
        ]
    }

    put_response = live_client.put("/internal/pricing/rules", json=rules)
    get_response = live_client.get("/internal/pricing/rules")
    calc_response = live_client.post("/internal/pricing/calculate", json=CALCULATE_BODY)

    assert put_response.status_code == 200
    assert put_response.json()["count"] == 1
    assert get_response.json()["rules"][0]["actions"][0]["type"] == "ADD_MARKUP"
    pricing = calc_response.json()["response"]["pricing"]
    assert pricing["totalCost"] == pytest.approx(28.0)
    assert pricing["priceAfterDiscount"] == pytest.approx(24.0)
    assert calc_response.json()["response"]["appliedRules"][0]["id"] == "markup"
