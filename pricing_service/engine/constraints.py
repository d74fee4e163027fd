"""Price-floor enforcement for the constraint stage.

Every constraint goes through ``reprice`` so the discount aggregate, discount
rate and net profit are always rewritten together. Itemized discount lines are
left untouched; the amount a floor added on top of the discounted price is
accumulated in ``constraint_adjustment``.
"""
import logging

from pricing_service.domain.models import PricingBreakdown

logger = logging.getLogger(__name__)


def reprice(pricing: PricingBreakdown, new_price: float) -> PricingBreakdown:
    """Move the customer price and recompute the fields derived from it."""
    total_cost = pricing.total_cost
    discount_value = max(0.0, total_cost - new_price)
    discount_rate = discount_value / total_cost * 100 if total_cost > 0 else 0.0
    return pricing.model_copy(
        update={
            "price_after_discount": new_price,
            "discount_value": discount_value,
            "discount_rate": discount_rate,
            "net_profit": new_price - pricing.cost,
            "constraint_adjustment": pricing.constraint_adjustment
            + (new_price - pricing.price_after_discount),
        }
    )


def enforce_minimum_profit(pricing: PricingBreakdown, target_profit: float) -> PricingBreakdown:
    """Raise the price so that price - cost reaches the target profit."""
    current_profit = pricing.price_after_discount - pricing.cost
    if current_profit >= target_profit:
        return pricing

    required_price = pricing.cost + target_profit
    if pricing.price_after_discount >= required_price:
        return pricing

    logger.debug(
        f"Minimum profit {target_profit} raises price "
        f"{pricing.price_after_discount:.4f} -> {required_price:.4f}"
    )
    return reprice(pricing, required_price)


def enforce_minimum_price(pricing: PricingBreakdown, floor: float) -> PricingBreakdown:
    """Raise the price to an absolute floor."""
    if pricing.price_after_discount >= floor:
        return pricing

    logger.debug(
        f"Minimum price {floor} raises price {pricing.price_after_discount:.4f} -> {floor:.4f}"
    )
    return reprice(pricing, floor)
