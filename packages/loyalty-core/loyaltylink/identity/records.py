"""Identity records for customer reconciliation.

This module provides the data structures that represent the two sides of a
link: the consumer's account (``UserIdentity``) and the business-scoped
loyalty profile (``CustomerRecord``). Both are read from documents whose
field names vary between generations of the app, so ``from_document``
accepts the known aliases.

Examples:
    Building a customer record from a stored document:
        >>> doc = Document(id="cust-1", data={"businessId": "biz-9", "phone": "27831234567"})
        >>> customer = CustomerRecord.from_document(doc)
        >>> customer.is_linked
        False
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loyaltylink.store.base import Document


def coerce_datetime(value: Any) -> datetime | None:
    """Convert a stored timestamp value to an aware UTC datetime.

    Accepts datetimes (including Firestore's ``DatetimeWithNanoseconds``),
    ISO-8601 strings and epoch seconds. Returns None for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


@dataclass
class UserIdentity:
    """A consumer account.

    Attributes:
        user_id: Immutable account id.
        phone: Phone on file, if any (mutable).
        display_name: Optional display name.
        email: Optional email address.
        linked_customer_id: Customer id recorded on the user side of the link.
    """

    user_id: str
    phone: str | None = None
    display_name: str | None = None
    email: str | None = None
    linked_customer_id: str | None = None

    @classmethod
    def from_document(cls, doc: Document) -> UserIdentity:
        """Build from a ``users`` document."""
        data = doc.data
        return cls(
            user_id=doc.id,
            phone=data.get("phone") or data.get("phoneNumber") or None,
            display_name=data.get("displayName") or None,
            email=data.get("email") or None,
            linked_customer_id=data.get("linkedCustomerId") or None,
        )


@dataclass
class CustomerRecord:
    """A business-scoped loyalty profile.

    Attributes:
        customer_id: Document id.
        business_id: Business that owns the profile.
        phone: Phone as stored (may be unnormalized).
        user_id: Linked account id, or None when unlinked.
        name: Optional display name.
        visited_businesses: Other businesses this customer has visited.
        visits: Denormalized visit count.
        points: Denormalized points balance.
        updated_at: Last update time, used to break ties between duplicates.
        created_at: Creation time.
    """

    customer_id: str
    business_id: str | None = None
    phone: str | None = None
    user_id: str | None = None
    name: str | None = None
    visited_businesses: list[str] = field(default_factory=list)
    visits: int = 0
    points: int = 0
    updated_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_linked(self) -> bool:
        """Return True if a user account is linked to this record."""
        return bool(self.user_id)

    @property
    def business_ids(self) -> list[str]:
        """Own business first, then visited businesses, without duplicates."""
        ids: list[str] = []
        for business_id in [self.business_id, *self.visited_businesses]:
            if business_id and business_id not in ids:
                ids.append(business_id)
        return ids

    @classmethod
    def from_document(cls, doc: Document) -> CustomerRecord:
        """Build from a ``customers`` document."""
        data = doc.data
        visited = data.get("visitedBusinesses")
        return cls(
            customer_id=doc.id,
            business_id=data.get("businessId") or None,
            phone=data.get("phone") or None,
            user_id=data.get("userId") or None,
            name=data.get("name") or None,
            visited_businesses=[b for b in visited if isinstance(b, str)]
            if isinstance(visited, list)
            else [],
            visits=_as_int(data.get("visits", data.get("visitCount"))),
            points=_as_int(data.get("points", data.get("pointsBalance"))),
            updated_at=coerce_datetime(data.get("updatedAt")),
            created_at=coerce_datetime(data.get("createdAt")),
        )


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0
