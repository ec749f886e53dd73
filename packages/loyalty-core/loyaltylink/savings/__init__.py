"""
LoyaltyLink Savings - savings metrics from events or estimated redemptions.

Usage:
    from loyaltylink.savings import SavingsCalculator

    calculator = SavingsCalculator(store)
    stats = await calculator.compute_savings_stats("uid-123")
"""

from loyaltylink.savings.calculator import (
    SavingsCalculator,
    SavingsStats,
    goal_progress,
    start_of_month,
)
from loyaltylink.savings.estimation import CouponValueEstimator, estimate_coupon_value
from loyaltylink.savings.streak import StreakResult, calculate_streaks, event_date

__all__ = [
    "SavingsCalculator",
    "SavingsStats",
    "goal_progress",
    "start_of_month",
    "CouponValueEstimator",
    "estimate_coupon_value",
    "StreakResult",
    "calculate_streaks",
    "event_date",
]
