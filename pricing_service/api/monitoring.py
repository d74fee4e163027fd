"""Monitoring endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from starlette.responses import Response

from pricing_service.config import settings
from pricing_service.infrastructure.repositories import RuleRepository

from .dependencies import get_rule_repository

router = APIRouter(tags=["monitoring"])


@router.get("/health")
async def health(rule_repository: RuleRepository = Depends(get_rule_repository)) -> dict:
    """Health check endpoint."""
    rules = await rule_repository.list_rules()
    return {
        "status": "healthy",
        "service": settings.app_name,
        "rules": len(rules),
    }


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    if not settings.enable_metrics:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
    )
