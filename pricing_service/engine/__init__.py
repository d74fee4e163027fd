"""Pricing engine."""
from pricing_service.engine.actions import CompositionStrategy, LastWinsPolicy
from pricing_service.engine.pipeline import PricingEngine
from pricing_service.engine.selector import BundleSelection, select_bundle
from pricing_service.engine.state import StageOutcome, StateBuilder

__all__ = [
    "BundleSelection",
    "CompositionStrategy",
    "LastWinsPolicy",
    "PricingEngine",
    "StageOutcome",
    "StateBuilder",
    "select_bundle",
]
