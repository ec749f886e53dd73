"""
LoyaltyLink Reconcile - public entry point for customer reconciliation.

Usage:
    from loyaltylink.reconcile import ReconciliationService

    service = ReconciliationService()
    outcome = await service.resolve_and_link("uid-123", phone_changed=True)
    coupons = await service.aggregate_coupons("uid-123")
    stats = await service.compute_savings_stats("uid-123")
"""

from loyaltylink.reconcile.service import ReconciliationReport, ReconciliationService

__all__ = [
    "ReconciliationReport",
    "ReconciliationService",
]
