"""
LoyaltyLink Coupons - entitlement aggregation across legacy schemas.

Provides:
- Canonical Entitlement and CouponDefinition models
- Normalizers for distribution and customer-coupon records
- Concurrent, failure-tolerant aggregation with dedup and hydration

Usage:
    from loyaltylink.coupons import CouponAggregator

    aggregator = CouponAggregator(store)
    coupons = await aggregator.aggregate_coupons("uid-123")
"""

from loyaltylink.coupons.aggregator import AggregationResult, CouponAggregator
from loyaltylink.coupons.normalizer import (
    BusinessOfferNormalizer,
    CustomerCouponNormalizer,
    DistributionNormalizer,
    EntitlementNormalizer,
)
from loyaltylink.coupons.schema import CouponDefinition, DiscountType, Entitlement, SourceKind

__all__ = [
    # Schema
    "CouponDefinition",
    "DiscountType",
    "Entitlement",
    "SourceKind",
    # Normalizers
    "EntitlementNormalizer",
    "DistributionNormalizer",
    "CustomerCouponNormalizer",
    "BusinessOfferNormalizer",
    # Aggregation
    "CouponAggregator",
    "AggregationResult",
]
