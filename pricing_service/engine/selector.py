"""Bundle selection for a requested duration."""
import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from pricing_service.domain.exceptions import BundleProcessingException
from pricing_service.domain.models import Bundle

logger = logging.getLogger(__name__)


class BundleSelection(BaseModel):
    """Outcome of bundle selection."""

    model_config = ConfigDict(frozen=True)

    selected_bundle: Bundle
    previous_bundle: Optional[Bundle] = None
    unused_days: int = 0
    exact_match: bool = False
    exceeds_catalog: bool = False


def find_previous_bundle(bundles: List[Bundle], selected: Bundle) -> Optional[Bundle]:
    """Largest-duration bundle strictly shorter than the selected one."""
    previous: Optional[Bundle] = None
    for bundle in bundles:
        if bundle.validity_in_days >= selected.validity_in_days:
            continue
        if previous is None or bundle.validity_in_days > previous.validity_in_days:
            previous = bundle
    return previous


def select_bundle(
    bundles: List[Bundle],
    requested_duration: int,
    correlation_id: Optional[str] = None,
) -> BundleSelection:
    """Pick the bundle that best covers the requested duration.

    An exact duration match wins outright and carries no previous bundle.
    Otherwise the shortest bundle covering the request is selected, and the
    next-shorter bundle becomes the previous bundle used for unused-days
    discounting. When the request is longer than every bundle the longest
    bundle is returned with zero unused days.
    """
    if not bundles:
        raise BundleProcessingException(
            message="No bundles available for selection",
            correlation_id=correlation_id,
            context={"requested_duration": requested_duration},
        )

    exact: Optional[Bundle] = None
    smallest_suitable: Optional[Bundle] = None
    largest: Optional[Bundle] = None

    for bundle in bundles:
        duration = bundle.validity_in_days
        if duration == requested_duration and exact is None:
            exact = bundle
        if duration >= requested_duration and (
            smallest_suitable is None or duration < smallest_suitable.validity_in_days
        ):
            smallest_suitable = bundle
        if largest is None or duration > largest.validity_in_days:
            largest = bundle

    if exact is not None:
        logger.debug(f"Exact duration match {exact.id} for {requested_duration} days")
        return BundleSelection(selected_bundle=exact, exact_match=True)

    if smallest_suitable is None:
        logger.info(
            f"Requested {requested_duration} days exceeds catalog, "
            f"falling back to {largest.id} ({largest.validity_in_days} days)"
        )
        return BundleSelection(selected_bundle=largest, exceeds_catalog=True)

    previous = find_previous_bundle(bundles, smallest_suitable)
    unused_days = max(0, smallest_suitable.validity_in_days - requested_duration)

    logger.debug(
        f"Selected {smallest_suitable.id} for {requested_duration} days, "
        f"previous={previous.id if previous else None}, unused_days={unused_days}"
    )
    return BundleSelection(
        selected_bundle=smallest_suitable,
        previous_bundle=previous,
        unused_days=unused_days,
    )
