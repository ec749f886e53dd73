"""
Coupon schema - canonical entitlement and coupon definition models.

Entitlements are stored in two coexisting shapes:
- Distributions (``couponDistributions``), keyed by ``customerId``
- Customer coupons (``customerCoupons``), keyed by ``customerId`` or ``userId``

Both are normalized into ``Entitlement`` immediately after fetch so the
merge and dedup steps never look at the source shape. Active business offers
found by the fallback lookup become entitlements of kind ``BUSINESS_OFFER``
whose coupon id is the offer's own document id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loyaltylink.identity.records import coerce_datetime
from loyaltylink.store.base import Document


class SourceKind(str, Enum):
    """Where an entitlement was read from."""

    DISTRIBUTION = "distribution"
    CUSTOMER_COUPON = "customer_coupon"
    BUSINESS_OFFER = "business_offer"


class DiscountType(str, Enum):
    """Discount types on a coupon definition."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    BUY_GET = "buyXgetY"
    FREE_ITEM = "freeItem"

    @classmethod
    def parse(cls, value: Any) -> DiscountType:
        """Map a stored ``type`` value, treating unknown values as free items."""
        for member in cls:
            if member.value == value:
                return member
        return cls.FREE_ITEM


@dataclass(frozen=True)
class Entitlement:
    """A coupon assigned to an owner, whatever schema stored it."""

    coupon_id: str
    source_kind: SourceKind
    owner_id: str | None = None
    record_id: str | None = None
    allocated_at: datetime | None = None


@dataclass
class CouponDefinition:
    """
    A business-scoped offer.

    Numeric fields are kept as stored (None when absent or not a number) so
    that value estimation can tell "missing" apart from zero.

    Example:
        coupon = CouponDefinition.from_document(doc)
        coupon.discount_label  # "20%"
    """

    coupon_id: str
    business_id: str | None = None
    title: str = ""
    description: str = ""
    discount_type: DiscountType = DiscountType.FREE_ITEM

    # Value fields used by estimation
    value: float | None = None
    discount_percentage: float | None = None
    discount_amount: float | None = None
    discount_text: str | None = None

    # Buy-get and free-item details
    buy_quantity: int | None = None
    get_quantity: int | None = None
    free_item: str | None = None

    # Validity and usage caps
    active: bool = True
    is_public: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    usage_limit: int | None = None
    per_customer_limit: int | None = None
    code: str | None = None
    terms: str = ""

    raw_data: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def discount_label(self) -> str:
        """Short display text for the discount."""
        if self.discount_type == DiscountType.PERCENTAGE:
            return f"{_format_number(self.value or 0)}%"
        if self.discount_type == DiscountType.FIXED:
            return f"${_format_number(self.value or 0)}"
        if self.discount_type == DiscountType.BUY_GET:
            return f"Buy {self.buy_quantity or 1} get {self.get_quantity or 1}"
        return f"Free {self.free_item or 'item'}"

    def is_valid_at(self, moment: datetime) -> bool:
        """Return True if the offer is active and inside its validity window."""
        if not self.active:
            return False
        if self.start_date and moment < self.start_date:
            return False
        if self.end_date and moment > self.end_date:
            return False
        return True

    @classmethod
    def from_document(cls, doc: Document) -> CouponDefinition:
        """Build from a ``coupons`` document."""
        data = doc.data
        discount = data.get("discount")
        return cls(
            coupon_id=doc.id,
            business_id=data.get("businessId") or None,
            title=data.get("title") or "",
            description=data.get("description") or "",
            discount_type=DiscountType.parse(data.get("type")),
            value=_number(data.get("value")),
            discount_percentage=_number(data.get("discountPercentage")),
            discount_amount=_number(data.get("discountAmount")),
            discount_text=discount if isinstance(discount, str) else None,
            buy_quantity=_integer(data.get("buyQuantity")),
            get_quantity=_integer(data.get("getQuantity")),
            free_item=data.get("freeItem") or None,
            active=data.get("active") is not False,
            is_public=data.get("isPublic") is True,
            start_date=coerce_datetime(data.get("startDate")),
            end_date=coerce_datetime(data.get("endDate")),
            usage_limit=_integer(data.get("usageLimit")),
            per_customer_limit=_integer(data.get("perCustomerLimit")),
            code=data.get("code") or None,
            terms=data.get("termsAndConditions") or "",
            raw_data=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "coupon_id": self.coupon_id,
            "business_id": self.business_id,
            "title": self.title,
            "description": self.description,
            "discount_type": self.discount_type.value,
            "discount": self.discount_label,
            "value": self.value,
            "active": self.active,
            "is_public": self.is_public,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "usage_limit": self.usage_limit,
            "per_customer_limit": self.per_customer_limit,
            "code": self.code,
            "terms": self.terms,
        }


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _integer(value: Any) -> int | None:
    number = _number(value)
    return int(number) if number is not None else None


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
