"""Customer record lookup by phone number or linked user id.

The resolver is read-only. Query failures are reported on the returned
``Resolution`` as ``ErrorKind.SOURCE_UNAVAILABLE`` so callers can tell a
failed lookup apart from a lookup that simply matched nothing.

Example:
    >>> resolver = IdentityResolver(store)
    >>> resolution = await resolver.resolve_by_phone("+27 83 123 4567")
    >>> if resolution.found:
    ...     print(resolution.customer.customer_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loyaltylink.identity.phone import lookup_candidates
from loyaltylink.identity.records import CustomerRecord, UserIdentity
from loyaltylink.store.base import DocumentStore
from loyaltylink.store.config import Collection
from loyaltylink.store.exceptions import ErrorKind, SourceUnavailableError

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass
class Resolution:
    """Result of a customer lookup.

    ``kind`` is None when a customer was found. ``ErrorKind.NOT_FOUND`` is a
    valid outcome, not a failure. ``others`` holds any further records that
    carry the same user id, which legacy data can contain.
    """

    customer: CustomerRecord | None = None
    kind: ErrorKind | None = None
    matched_value: str | None = None
    via_user_pointer: bool = False
    others: list[CustomerRecord] = field(default_factory=list)

    @property
    def found(self) -> bool:
        """Return True if a customer was resolved."""
        return self.customer is not None

    @property
    def unavailable(self) -> bool:
        """Return True if the lookup failed at the query layer."""
        return self.kind == ErrorKind.SOURCE_UNAVAILABLE


def pick_first(records: list[CustomerRecord]) -> CustomerRecord | None:
    """Choose one record from several matches.

    Most recently updated wins (falling back to creation time), then the
    lowest document id, so the choice does not depend on store order.
    """
    if not records:
        return None
    by_id = sorted(records, key=lambda r: r.customer_id)
    return max(by_id, key=lambda r: r.updated_at or r.created_at or _EPOCH)


class IdentityResolver:
    """Find customer records by phone or by linked user id."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def resolve_by_phone(self, phone: str | None) -> Resolution:
        """Resolve a customer by phone.

        Queries the normalized phone first and the raw phone only if the
        normalized query matched nothing.

        Args:
            phone: Phone number in any formatting.

        Returns:
            Resolution with the chosen customer, or the outcome kind.
        """
        candidates = lookup_candidates(phone)
        if not candidates:
            logger.warning("Empty phone number provided for customer lookup")
            return Resolution(kind=ErrorKind.INVALID_INPUT)

        try:
            value, records = await self._query_phone_candidates(candidates)
        except SourceUnavailableError as e:
            logger.error(f"Customer lookup by phone failed: {e}")
            return Resolution(kind=ErrorKind.SOURCE_UNAVAILABLE)

        if not records:
            logger.info(f"No customer found for phone {candidates[0]}")
            return Resolution(kind=ErrorKind.NOT_FOUND)

        if len(records) > 1:
            logger.warning(
                f"{len(records)} customers share phone {value}: "
                f"{[r.customer_id for r in records]}"
            )
        return Resolution(customer=pick_first(records), matched_value=value)

    async def find_all_by_phone(self, phone: str | None) -> list[CustomerRecord]:
        """Return every customer record stored under a phone.

        Legacy data may hold several records for one phone (one per business,
        or duplicates from manual entry).

        Raises:
            SourceUnavailableError: If the customer query fails.
        """
        candidates = lookup_candidates(phone)
        if not candidates:
            return []
        _value, records = await self._query_phone_candidates(candidates)
        return records

    async def resolve_by_user_id(self, user_id: str | None) -> Resolution:
        """Resolve the customer linked to a user account.

        Looks for a customer whose ``userId`` equals the user id. If none
        does, follows the ``linkedCustomerId`` pointer on the user document,
        ignoring it when the target is linked to a different user.
        """
        if not user_id or not user_id.strip():
            logger.warning("Empty user id provided for customer lookup")
            return Resolution(kind=ErrorKind.INVALID_INPUT)

        try:
            docs = await self.store.query_async(
                Collection.CUSTOMERS.value, [("userId", "==", user_id)]
            )
        except SourceUnavailableError as e:
            logger.error(f"Customer lookup by user id {user_id} failed: {e}")
            return Resolution(kind=ErrorKind.SOURCE_UNAVAILABLE)

        records = [CustomerRecord.from_document(doc) for doc in docs]
        if len(records) > 1:
            logger.warning(
                f"User {user_id} is linked to {len(records)} customers: "
                f"{[r.customer_id for r in records]}"
            )
        if records:
            chosen = pick_first(records)
            others = [r for r in records if r.customer_id != chosen.customer_id]
            return Resolution(customer=chosen, matched_value=user_id, others=others)

        return await self._resolve_via_user_pointer(user_id)

    async def load_user(self, user_id: str) -> UserIdentity | None:
        """Load the user's own document.

        Raises:
            SourceUnavailableError: If the read fails.
        """
        doc = await self.store.get_async(Collection.USERS.value, user_id)
        return UserIdentity.from_document(doc) if doc else None

    async def _resolve_via_user_pointer(self, user_id: str) -> Resolution:
        """Follow ``users/{user_id}.linkedCustomerId`` to a customer."""
        try:
            user = await self.load_user(user_id)
            if not user or not user.linked_customer_id:
                return Resolution(kind=ErrorKind.NOT_FOUND)

            doc = await self.store.get_async(Collection.CUSTOMERS.value, user.linked_customer_id)
        except SourceUnavailableError as e:
            logger.error(f"Could not follow linkedCustomerId for user {user_id}: {e}")
            return Resolution(kind=ErrorKind.SOURCE_UNAVAILABLE)

        if doc is None:
            logger.warning(
                f"User {user_id} points at missing customer {user.linked_customer_id}"
            )
            return Resolution(kind=ErrorKind.NOT_FOUND)

        customer = CustomerRecord.from_document(doc)
        if customer.user_id and customer.user_id != user_id:
            logger.warning(
                f"User {user_id} points at customer {customer.customer_id} "
                f"which is linked to {customer.user_id}; ignoring pointer"
            )
            return Resolution(kind=ErrorKind.NOT_FOUND)

        return Resolution(customer=customer, matched_value=user_id, via_user_pointer=True)

    async def _query_phone_candidates(
        self, candidates: list[str]
    ) -> tuple[str, list[CustomerRecord]]:
        """Query each candidate phone in order until one matches."""
        for value in candidates:
            docs = await self.store.query_async(
                Collection.CUSTOMERS.value, [("phone", "==", value)]
            )
            if docs:
                return value, [CustomerRecord.from_document(doc) for doc in docs]
        return candidates[0], []
