"""Coupon value estimation for redemptions that carry no saved amount.

The chain stops at the first rule that applies:

1. An explicit numeric ``value`` on the definition
2. ``discountPercentage`` of the assumed average purchase
3. An explicit ``discountAmount``
4. The first integer in the ``discount`` text, as a percentage when the text
   contains "%", otherwise as a flat amount
5. The floor value

Examples:
    >>> estimate_coupon_value(CouponDefinition(coupon_id="c1", discount_percentage=20))
    10.0
    >>> estimate_coupon_value(CouponDefinition(coupon_id="c2", discount_text="5 dollars"))
    5.0
"""

from __future__ import annotations

import asyncio
import logging
import re

from loyaltylink.coupons.schema import CouponDefinition
from loyaltylink.store.base import DocumentStore
from loyaltylink.store.config import Collection, LoyaltySettings
from loyaltylink.store.exceptions import SourceUnavailableError

logger = logging.getLogger(__name__)

_FIRST_INTEGER = re.compile(r"\d+")


def estimate_coupon_value(
    coupon: CouponDefinition | None,
    average_purchase: float = 50.0,
    floor_value: float = 5.0,
) -> float:
    """Estimate what redeeming a coupon saved.

    Args:
        coupon: Coupon definition, or None if it could not be found.
        average_purchase: Purchase amount assumed for percentage discounts.
        floor_value: Value used when nothing else applies.

    Returns:
        Estimated saving in currency units.
    """
    if coupon is None:
        return float(floor_value)
    if coupon.value is not None:
        return coupon.value
    if coupon.discount_percentage is not None:
        return coupon.discount_percentage / 100 * average_purchase
    if coupon.discount_amount is not None:
        return coupon.discount_amount
    if coupon.discount_text:
        match = _FIRST_INTEGER.search(coupon.discount_text)
        if match:
            amount = float(int(match.group(0)))
            if "%" in coupon.discount_text:
                return amount / 100 * average_purchase
            return amount
    return float(floor_value)


class CouponValueEstimator:
    """Estimate redemption values, loading each coupon definition once.

    Definitions are cached per estimator instance; create one per
    computation so stale definitions do not outlive it.
    """

    def __init__(self, store: DocumentStore, settings: LoyaltySettings | None = None):
        self.store = store
        self.settings = settings or LoyaltySettings()
        self._cache: dict[str, asyncio.Future[CouponDefinition | None]] = {}

    async def estimate(self, coupon_id: str | None) -> float:
        """Estimate the value of one coupon by id."""
        coupon = await self.load(coupon_id) if coupon_id else None
        return estimate_coupon_value(
            coupon,
            average_purchase=self.settings.average_purchase,
            floor_value=self.settings.floor_value,
        )

    async def load(self, coupon_id: str) -> CouponDefinition | None:
        """Load a definition; a missing or unreadable one yields None."""
        if coupon_id not in self._cache:
            self._cache[coupon_id] = asyncio.ensure_future(self._fetch(coupon_id))
        return await self._cache[coupon_id]

    async def _fetch(self, coupon_id: str) -> CouponDefinition | None:
        try:
            doc = await self.store.get_async(Collection.COUPONS.value, coupon_id)
        except SourceUnavailableError as e:
            logger.warning(f"Could not load coupon {coupon_id} for estimation: {e}")
            return None
        if doc is None:
            logger.debug(f"Coupon {coupon_id} not found, using floor value")
            return None
        return CouponDefinition.from_document(doc)
