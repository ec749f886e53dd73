"""Collection names and tunable settings for reconciliation."""

from __future__ import annotations

import os
from enum import Enum

from pydantic import BaseModel, Field


class Collection(str, Enum):
    """Logical record sets in the document store."""

    USERS = "users"
    CUSTOMERS = "customers"

    # Entitlements (two legacy shapes)
    DISTRIBUTIONS = "couponDistributions"
    CUSTOMER_COUPONS = "customerCoupons"

    COUPONS = "coupons"

    # Savings sources
    SAVINGS_EVENTS = "savingsEvents"
    REDEMPTIONS = "couponRedemptions"


class LoyaltySettings(BaseModel):
    """Settings shared by the resolver, aggregator and savings calculator."""

    monthly_goal: float = Field(default=100.0, gt=0)
    average_purchase: float = Field(default=50.0, ge=0)
    floor_value: float = Field(default=5.0, ge=0)
    page_size: int = Field(default=50, ge=1)
    public_coupon_limit: int = Field(default=10, ge=1)
    serialize_links: bool = True

    @classmethod
    def from_env(cls) -> LoyaltySettings:
        """Load settings from environment variables."""
        values: dict[str, str] = {}
        for name, env_var in (
            ("monthly_goal", "LOYALTYLINK_MONTHLY_GOAL"),
            ("average_purchase", "LOYALTYLINK_AVERAGE_PURCHASE"),
            ("floor_value", "LOYALTYLINK_FLOOR_VALUE"),
            ("page_size", "LOYALTYLINK_PAGE_SIZE"),
            ("public_coupon_limit", "LOYALTYLINK_PUBLIC_COUPON_LIMIT"),
        ):
            value = os.getenv(env_var)
            if value:
                values[name] = value
        serialize = os.getenv("LOYALTYLINK_SERIALIZE_LINKS")
        if serialize:
            values["serialize_links"] = serialize.lower() not in ("0", "false", "no")
        return cls(**values)
