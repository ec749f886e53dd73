"""Link state machine between user accounts and customer records.

A user account is linked to at most one customer record by writing the
user id onto that record's ``userId`` field. Links are established when the
user's phone matches a customer, and revisited when the phone changes:

    UNLINKED --phone match--> LINKED
    LINKED --phone changed--> RELINKING --no match--> DELINKED
                                        --other record--> LINKED (new target)
                                        --same record--> LINKED (no-op)

Writes are targeted field updates preceded by an existence check. Nothing
here raises to the caller: failures come back on ``LinkOutcome.error``.

Example:
    >>> manager = LinkStateManager(store)
    >>> outcome = await manager.resolve_and_link("uid-123", phone="+27 83 123 4567")
    >>> outcome.state
    <LinkState.LINKED: 'linked'>
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from loyaltylink.identity.phone import normalize_phone
from loyaltylink.identity.records import CustomerRecord
from loyaltylink.identity.resolver import IdentityResolver, Resolution
from loyaltylink.store.base import DocumentStore, FieldUpdate
from loyaltylink.store.config import Collection, LoyaltySettings
from loyaltylink.store.exceptions import (
    ErrorKind,
    LoyaltyLinkError,
    SourceUnavailableError,
    StaleReferenceError,
)

logger = logging.getLogger(__name__)


class LinkState(str, Enum):
    """Link states between a user account and customer records."""

    UNLINKED = "unlinked"
    LINKED = "linked"
    RELINKING = "relinking"
    DELINKED = "delinked"


@dataclass
class LinkOutcome:
    """Result of ``resolve_and_link``."""

    state: LinkState
    message: str
    user_id: str
    customer_id: str | None = None
    previous_customer_id: str | None = None
    error: ErrorKind | None = None
    writes: int = 0
    path: list[LinkState] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return True if any document was written."""
        return self.writes > 0

    @property
    def is_success(self) -> bool:
        """Return True if the transition completed without a failure."""
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "state": self.state.value,
            "message": self.message,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "previous_customer_id": self.previous_customer_id,
            "error": self.error.value if self.error else None,
            "writes": self.writes,
            "path": [state.value for state in self.path],
        }


class LinkStateManager:
    """Apply link, relink and de-link transitions for a user.

    Transitions for the same user id are serialized with a per-user
    ``asyncio.Lock`` unless ``settings.serialize_links`` is False, in which
    case concurrent phone changes are last-write-wins. A lock lives only
    while some call for that user holds or awaits it.

    Every transition also clears the user id from any extra customer records
    that still carry it, so at most one record stays linked to the user.
    """

    def __init__(
        self,
        store: DocumentStore,
        resolver: IdentityResolver | None = None,
        settings: LoyaltySettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.resolver = resolver or IdentityResolver(store)
        self.settings = settings or LoyaltySettings()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def resolve_and_link(
        self,
        user_id: str,
        phone: str | None = None,
        phone_changed: bool = False,
    ) -> LinkOutcome:
        """Resolve the user's customer record and apply any required transition.

        Args:
            user_id: Account id of the user.
            phone: Phone to match on. Read from the user document when omitted.
            phone_changed: True when called in response to a phone change.

        Returns:
            LinkOutcome with the resulting state and a status message.
        """
        if not isinstance(user_id, str) or not user_id.strip():
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message="A user id is required to link a customer profile",
                user_id=user_id or "",
                error=ErrorKind.INVALID_INPUT,
            )
        if phone is not None and phone.strip() and not normalize_phone(phone):
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message=f"'{phone}' is not a usable phone number",
                user_id=user_id,
                error=ErrorKind.INVALID_INPUT,
            )

        if not self.settings.serialize_links:
            return await self._transition(user_id, phone, phone_changed)

        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        async with lock:
            return await self._transition(user_id, phone, phone_changed)

    async def _transition(
        self, user_id: str, phone: str | None, phone_changed: bool
    ) -> LinkOutcome:
        current = await self.resolver.resolve_by_user_id(user_id)
        if current.unavailable:
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message="Could not check for an existing customer link",
                user_id=user_id,
                error=ErrorKind.SOURCE_UNAVAILABLE,
            )

        linked = current.customer
        if linked is None:
            return await self._link_new(user_id, phone)

        writes = 0
        if current.via_user_pointer and not linked.is_linked:
            # User document points at this record but the record lost its userId.
            logger.warning(
                f"Customer {linked.customer_id} is missing userId for {user_id}, restoring link"
            )
            try:
                await self._write_link(linked, user_id)
                writes += 1
            except LoyaltyLinkError as e:
                logger.error(f"Could not restore link for user {user_id}: {e}")

        if phone_changed:
            outcome = await self._relink(user_id, linked, current.others, phone)
            outcome.writes += writes
            return outcome

        writes += await self._clear_duplicates(user_id, current.others)
        logger.debug(f"User {user_id} already linked to customer {linked.customer_id}")
        return LinkOutcome(
            state=LinkState.LINKED,
            message=f"Already linked to customer profile {linked.customer_id}",
            user_id=user_id,
            customer_id=linked.customer_id,
            writes=writes,
            path=[LinkState.LINKED],
        )

    async def _link_new(self, user_id: str, phone: str | None) -> LinkOutcome:
        """UNLINKED: link to the customer matching the user's phone."""
        if not phone:
            phone = await self._phone_on_file(user_id)
        if not phone:
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message="No phone number on file to match a customer profile",
                user_id=user_id,
                path=[LinkState.UNLINKED],
            )

        match = await self.resolver.resolve_by_phone(phone)
        if match.kind in (ErrorKind.SOURCE_UNAVAILABLE, ErrorKind.INVALID_INPUT):
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message="Could not look up a customer profile for this phone number",
                user_id=user_id,
                error=match.kind,
                path=[LinkState.UNLINKED],
            )
        if not match.found:
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message="No customer profile matches this phone number",
                user_id=user_id,
                path=[LinkState.UNLINKED],
            )

        target = match.customer
        assert target is not None
        if target.user_id and target.user_id != user_id:
            logger.warning(
                f"Customer {target.customer_id} was linked to {target.user_id}, "
                f"relinking to {user_id}"
            )

        try:
            await self._write_link(target, user_id)
        except StaleReferenceError:
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message=f"Customer profile {target.customer_id} no longer exists",
                user_id=user_id,
                error=ErrorKind.STALE_REFERENCE,
                path=[LinkState.UNLINKED],
            )
        except SourceUnavailableError as e:
            logger.error(f"Failed to link user {user_id} to {target.customer_id}: {e}")
            return LinkOutcome(
                state=LinkState.UNLINKED,
                message="Could not save the customer link",
                user_id=user_id,
                error=ErrorKind.SOURCE_UNAVAILABLE,
                path=[LinkState.UNLINKED],
            )

        writes = 1 + await self._record_user_link(user_id, target.customer_id, phone)
        logger.info(f"Linked user {user_id} to customer {target.customer_id}")
        return LinkOutcome(
            state=LinkState.LINKED,
            message=f"Linked to customer profile {target.customer_id}",
            user_id=user_id,
            customer_id=target.customer_id,
            writes=writes,
            path=[LinkState.UNLINKED, LinkState.LINKED],
        )

    async def _relink(
        self,
        user_id: str,
        linked: CustomerRecord,
        others: list[CustomerRecord],
        phone: str | None,
    ) -> LinkOutcome:
        """LINKED + phone changed: re-resolve by the new phone."""
        path = [LinkState.LINKED, LinkState.RELINKING]
        if not phone:
            phone = await self._phone_on_file(user_id)

        match = await self.resolver.resolve_by_phone(phone) if phone else Resolution(
            kind=ErrorKind.NOT_FOUND
        )
        if match.unavailable:
            return LinkOutcome(
                state=LinkState.LINKED,
                message="Could not look up the new phone number; kept the existing link",
                user_id=user_id,
                customer_id=linked.customer_id,
                error=ErrorKind.SOURCE_UNAVAILABLE,
                path=[*path, LinkState.LINKED],
            )

        if not match.found:
            return await self._delink(user_id, linked, others, phone, path)

        target = match.customer
        assert target is not None
        if target.customer_id == linked.customer_id:
            writes = await self._clear_duplicates(user_id, others)
            if phone:
                writes += await self._save_changed_phone(user_id, linked.customer_id, phone)
            return LinkOutcome(
                state=LinkState.LINKED,
                message=f"New phone number still matches customer profile {linked.customer_id}",
                user_id=user_id,
                customer_id=linked.customer_id,
                writes=writes,
                path=[*path, LinkState.LINKED],
            )

        return await self._move_link(user_id, linked, others, target, phone, path)

    async def _delink(
        self,
        user_id: str,
        linked: CustomerRecord,
        others: list[CustomerRecord],
        phone: str | None,
        path: list[LinkState],
    ) -> LinkOutcome:
        """RELINKING with no match: clear every record linked to the user."""
        try:
            updates = await self._unlink_updates([linked, *others])
            if updates:
                await self.store.update_many_async(updates)
        except StaleReferenceError as e:
            logger.warning(f"Customer vanished during de-link of user {user_id}: {e}")
            updates = []
        except SourceUnavailableError as e:
            logger.error(f"Failed to de-link user {user_id} from {linked.customer_id}: {e}")
            return LinkOutcome(
                state=LinkState.LINKED,
                message="Could not remove the existing customer link",
                user_id=user_id,
                customer_id=linked.customer_id,
                error=ErrorKind.SOURCE_UNAVAILABLE,
                path=[*path, LinkState.LINKED],
            )

        # The new phone goes on file so a later call without a phone does not
        # match the old record again.
        writes = len(updates) + await self._record_user_link(user_id, None, phone)
        if not any(u.doc_id == linked.customer_id for u in updates):
            return LinkOutcome(
                state=LinkState.DELINKED,
                message=f"Customer profile {linked.customer_id} no longer exists",
                user_id=user_id,
                previous_customer_id=linked.customer_id,
                error=ErrorKind.STALE_REFERENCE,
                writes=writes,
                path=[*path, LinkState.DELINKED],
            )

        logger.info(f"De-linked user {user_id} from customer {linked.customer_id}")
        return LinkOutcome(
            state=LinkState.DELINKED,
            message="New phone number has no matching customer profile; link removed",
            user_id=user_id,
            previous_customer_id=linked.customer_id,
            writes=writes,
            path=[*path, LinkState.DELINKED],
        )

    async def _move_link(
        self,
        user_id: str,
        old: CustomerRecord,
        others: list[CustomerRecord],
        new: CustomerRecord,
        phone: str,
        path: list[LinkState],
    ) -> LinkOutcome:
        """RELINKING to a different record: clear old and set new in one batch."""
        try:
            if not await self.store.exists_async(Collection.CUSTOMERS.value, new.customer_id):
                raise StaleReferenceError(Collection.CUSTOMERS.value, new.customer_id)

            stale_links = [r for r in [old, *others] if r.customer_id != new.customer_id]
            updates = await self._unlink_updates(stale_links)
            updates.append(
                FieldUpdate(
                    Collection.CUSTOMERS.value,
                    new.customer_id,
                    self._link_fields(user_id),
                )
            )
            await self.store.update_many_async(updates)
        except StaleReferenceError:
            return LinkOutcome(
                state=LinkState.LINKED,
                message=(
                    f"Customer profile {new.customer_id} no longer exists; kept the existing link"
                ),
                user_id=user_id,
                customer_id=old.customer_id,
                error=ErrorKind.STALE_REFERENCE,
                path=[*path, LinkState.LINKED],
            )
        except SourceUnavailableError as e:
            logger.error(
                f"Failed to move link for user {user_id} "
                f"from {old.customer_id} to {new.customer_id}: {e}"
            )
            return LinkOutcome(
                state=LinkState.LINKED,
                message="Could not update the customer link; kept the existing link",
                user_id=user_id,
                customer_id=old.customer_id,
                error=ErrorKind.SOURCE_UNAVAILABLE,
                path=[*path, LinkState.LINKED],
            )

        writes = len(updates) + await self._record_user_link(user_id, new.customer_id, phone)
        logger.info(f"Moved link for user {user_id} from {old.customer_id} to {new.customer_id}")
        return LinkOutcome(
            state=LinkState.LINKED,
            message=f"Linked to customer profile {new.customer_id} for the new phone number",
            user_id=user_id,
            customer_id=new.customer_id,
            previous_customer_id=old.customer_id,
            writes=writes,
            path=[*path, LinkState.LINKED],
        )

    async def _clear_duplicates(self, user_id: str, others: list[CustomerRecord]) -> int:
        """Unlink extra records that carry the user id. Returns the number of writes."""
        if not others:
            return 0
        logger.warning(
            f"Clearing duplicate links for user {user_id}: {[r.customer_id for r in others]}"
        )
        try:
            updates = await self._unlink_updates(others)
            if updates:
                await self.store.update_many_async(updates)
        except LoyaltyLinkError as e:
            logger.error(f"Could not clear duplicate links for user {user_id}: {e}")
            return 0
        return len(updates)

    async def _unlink_updates(self, records: list[CustomerRecord]) -> list[FieldUpdate]:
        """Build unlink updates for the records that still exist.

        Raises:
            SourceUnavailableError: If an existence check fails.
        """
        collection = Collection.CUSTOMERS.value
        updates = []
        for record in records:
            if await self.store.exists_async(collection, record.customer_id):
                updates.append(FieldUpdate(collection, record.customer_id, self._unlink_fields()))
            else:
                logger.warning(f"Customer {record.customer_id} vanished before unlink")
        return updates

    async def _write_link(self, customer: CustomerRecord, user_id: str) -> None:
        await self._checked_update(customer.customer_id, self._link_fields(user_id))

    async def _checked_update(self, customer_id: str, fields: dict[str, Any]) -> None:
        """Update a customer only if it still exists.

        Raises:
            StaleReferenceError: If the record was deleted.
            SourceUnavailableError: If the read or write fails.
        """
        collection = Collection.CUSTOMERS.value
        if not await self.store.exists_async(collection, customer_id):
            raise StaleReferenceError(collection, customer_id)
        await self.store.update_async(collection, customer_id, fields)

    def _link_fields(self, user_id: str) -> dict[str, Any]:
        now = self._clock()
        return {"userId": user_id, "linkedAt": now, "updatedAt": now}

    def _unlink_fields(self) -> dict[str, Any]:
        return {"userId": None, "updatedAt": self._clock()}

    async def _record_user_link(
        self, user_id: str, customer_id: str | None, phone: str | None
    ) -> int:
        """Mirror the link on the user document. Returns the number of writes."""
        data: dict[str, Any] = {"linkedCustomerId": customer_id, "updatedAt": self._clock()}
        if phone:
            data["phone"] = normalize_phone(phone)
        try:
            await self.store.set_async(Collection.USERS.value, user_id, data, merge=True)
        except LoyaltyLinkError as e:
            logger.warning(f"Could not update user document for {user_id}: {e}")
            return 0
        return 1

    async def _save_changed_phone(self, user_id: str, customer_id: str, phone: str) -> int:
        """Store the phone on the user document if it differs from the one on file."""
        on_file = await self._phone_on_file(user_id)
        if on_file and normalize_phone(on_file) == normalize_phone(phone):
            return 0
        return await self._record_user_link(user_id, customer_id, phone)

    async def _phone_on_file(self, user_id: str) -> str | None:
        try:
            user = await self.resolver.load_user(user_id)
        except SourceUnavailableError as e:
            logger.warning(f"Could not read phone on file for user {user_id}: {e}")
            return None
        return user.phone if user else None
