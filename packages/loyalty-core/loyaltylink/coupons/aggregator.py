"""
CouponAggregator - collect a user's coupons from every entitlement source.

Four lookups run concurrently, each tolerant of its own failures:

1. Distributions by owner id
2. Customer coupons by owner id, under both ``customerId`` and ``userId``
3. Phone-keyed: every customer sharing the linked customer's phone, then
   (1) and (2) plus that customer's business offers for each of them
4. Business fallback: active offers of the businesses the linked customer
   belongs to or has visited, else public offers

Coupon ids are merged in that source order, deduplicated keeping the first
occurrence, then hydrated into ``CouponDefinition`` objects. Ids whose
definition no longer exists are dropped.

Example:
    aggregator = CouponAggregator(store)
    coupons = await aggregator.aggregate_coupons("uid-123")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any

from loyaltylink.coupons.normalizer import (
    BusinessOfferNormalizer,
    CustomerCouponNormalizer,
    DistributionNormalizer,
)
from loyaltylink.coupons.schema import CouponDefinition, Entitlement
from loyaltylink.identity.records import CustomerRecord
from loyaltylink.identity.resolver import IdentityResolver
from loyaltylink.store.base import DocumentStore
from loyaltylink.store.config import Collection, LoyaltySettings
from loyaltylink.store.exceptions import ErrorKind, SourceFailure, SourceUnavailableError

logger = logging.getLogger(__name__)

SOURCE_DISTRIBUTIONS = "distributions"
SOURCE_CUSTOMER_COUPONS = "customer_coupons"
SOURCE_PHONE = "phone"
SOURCE_BUSINESS = "business"
SOURCE_IDENTITY = "identity"
SOURCE_DEFINITIONS = "definitions"


@dataclass
class AggregationResult:
    """Outcome of a coupon aggregation."""

    coupon_ids: list[str] = field(default_factory=list)
    entitlements: list[Entitlement] = field(default_factory=list)
    coupons: list[CouponDefinition] = field(default_factory=list)
    stale_ids: list[str] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        """Return True if any source failed."""
        return bool(self.failures)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "coupon_ids": self.coupon_ids,
            "coupons": [coupon.to_dict() for coupon in self.coupons],
            "stale_ids": self.stale_ids,
            "failures": [failure.to_dict() for failure in self.failures],
        }


class _SourceRun:
    """Entitlements and absorbed failures collected by one source."""

    def __init__(self, source: str):
        self.source = source
        self.entitlements: list[Entitlement] = []
        self.failures: list[SourceFailure] = []

    def fail(self, error: Exception, owner_id: str | None = None) -> None:
        logger.warning(f"Coupon source '{self.source}' failed for owner {owner_id}: {error}")
        self.failures.append(SourceFailure.from_error(self.source, error, owner_id))


class CouponAggregator:
    """Fan out to every entitlement source and merge the results."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: IdentityResolver | None = None,
        settings: LoyaltySettings | None = None,
    ):
        self.store = store
        self.resolver = resolver or IdentityResolver(store)
        self.settings = settings or LoyaltySettings()
        self.distributions = DistributionNormalizer()
        self.customer_coupons = CustomerCouponNormalizer()
        self.business_offers = BusinessOfferNormalizer()

    async def aggregate_coupons(self, user_id: str) -> list[CouponDefinition]:
        """Return the hydrated, deduplicated coupons for a user.

        Never raises; an invalid user id yields an empty list.
        """
        result = await self.aggregate(user_id)
        return result.coupons

    async def aggregate(self, user_id: str) -> AggregationResult:
        """Resolve the user's identity set and aggregate with full diagnostics."""
        if not isinstance(user_id, str) or not user_id.strip():
            logger.warning("Invalid or empty user id provided to coupon aggregation")
            return AggregationResult(
                failures=[
                    SourceFailure(
                        source=SOURCE_IDENTITY,
                        kind=ErrorKind.INVALID_INPUT,
                        message="A user id is required",
                    )
                ]
            )

        identity_failures: list[SourceFailure] = []
        resolution = await self.resolver.resolve_by_user_id(user_id)
        if resolution.unavailable:
            # Continue with the user id alone.
            identity_failures.append(
                SourceFailure(
                    source=SOURCE_IDENTITY,
                    kind=ErrorKind.SOURCE_UNAVAILABLE,
                    message="Linked customer lookup failed",
                    owner_id=user_id,
                )
            )
        customer = resolution.customer

        owner_ids = [user_id]
        if customer and customer.customer_id != user_id:
            owner_ids.append(customer.customer_id)

        result = await self.collect_coupon_ids(owner_ids, customer=customer)
        result.failures[:0] = identity_failures
        await self._hydrate(result)

        logger.info(
            f"Aggregated {len(result.coupons)} coupons for user {user_id} "
            f"({len(result.stale_ids)} stale, {len(result.failures)} failures)"
        )
        return result

    async def collect_coupon_ids(
        self,
        owner_ids: list[str],
        customer: CustomerRecord | None = None,
    ) -> AggregationResult:
        """Run the four lookups concurrently and merge their coupon ids.

        Args:
            owner_ids: Ids to search, user id first then customer id.
            customer: Linked customer, used for the phone and business lookups.

        Returns:
            AggregationResult with deduplicated ids and any absorbed failures.
        """
        owner_ids = [owner_id for owner_id in owner_ids if owner_id]
        if not owner_ids:
            return AggregationResult()

        tasks: list[tuple[str, Awaitable[_SourceRun]]] = [
            (SOURCE_DISTRIBUTIONS, self._from_distributions(owner_ids)),
            (SOURCE_CUSTOMER_COUPONS, self._from_customer_coupons(owner_ids)),
            (SOURCE_PHONE, self._from_phone(customer.phone if customer else None)),
            (SOURCE_BUSINESS, self._from_business(customer)),
        ]
        outcomes = await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)

        result = AggregationResult()
        seen: set[str] = set()
        for (source, _), outcome in zip(tasks, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Coupon source '{source}' failed: {outcome}")
                result.failures.append(SourceFailure.from_error(source, outcome))
                continue

            result.failures.extend(outcome.failures)
            logger.debug(f"Coupon source '{source}' found {len(outcome.entitlements)} entitlements")
            for entitlement in outcome.entitlements:
                if entitlement.coupon_id in seen:
                    continue
                seen.add(entitlement.coupon_id)
                result.coupon_ids.append(entitlement.coupon_id)
                result.entitlements.append(entitlement)

        return result

    async def _from_distributions(self, owner_ids: list[str]) -> _SourceRun:
        run = _SourceRun(SOURCE_DISTRIBUTIONS)
        for owner_id in owner_ids:
            await self._collect_distributions(run, owner_id)
        return run

    async def _from_customer_coupons(self, owner_ids: list[str]) -> _SourceRun:
        run = _SourceRun(SOURCE_CUSTOMER_COUPONS)
        for owner_id in owner_ids:
            for owner_field in ("customerId", "userId"):
                try:
                    docs = await self.store.query_async(
                        Collection.CUSTOMER_COUPONS.value,
                        [(owner_field, "==", owner_id)],
                        order_by=("allocatedDate", "desc"),
                        limit=self.settings.page_size,
                    )
                except SourceUnavailableError as e:
                    run.fail(e, owner_id)
                    continue
                run.entitlements.extend(self.customer_coupons.normalize(docs, owner_id))
        return run

    async def _from_phone(self, phone: str | None) -> _SourceRun:
        run = _SourceRun(SOURCE_PHONE)
        if not phone:
            return run

        try:
            customers = await self.resolver.find_all_by_phone(phone)
        except SourceUnavailableError as e:
            run.fail(e)
            return run

        logger.debug(f"Found {len(customers)} customers sharing phone {phone}")
        for customer in customers:
            await self._collect_distributions(run, customer.customer_id)
            try:
                docs = await self.store.query_async(
                    Collection.CUSTOMER_COUPONS.value,
                    [("customerId", "==", customer.customer_id)],
                )
            except SourceUnavailableError as e:
                run.fail(e, customer.customer_id)
            else:
                run.entitlements.extend(
                    self.customer_coupons.normalize(docs, customer.customer_id)
                )
            if customer.business_id:
                await self._collect_business_offers(run, customer.business_id)
        return run

    async def _from_business(self, customer: CustomerRecord | None) -> _SourceRun:
        run = _SourceRun(SOURCE_BUSINESS)
        if customer:
            for business_id in customer.business_ids:
                await self._collect_business_offers(run, business_id)
        if run.entitlements:
            return run

        try:
            docs = await self.store.query_async(
                Collection.COUPONS.value,
                [("isPublic", "==", True), ("active", "==", True)],
                limit=self.settings.public_coupon_limit,
            )
        except SourceUnavailableError as e:
            run.fail(e)
            return run
        run.entitlements.extend(self.business_offers.normalize(docs))
        return run

    async def _collect_distributions(self, run: _SourceRun, owner_id: str) -> None:
        try:
            docs = await self.store.query_async(
                Collection.DISTRIBUTIONS.value, [("customerId", "==", owner_id)]
            )
        except SourceUnavailableError as e:
            run.fail(e, owner_id)
            return
        run.entitlements.extend(self.distributions.normalize(docs, owner_id))

    async def _collect_business_offers(self, run: _SourceRun, business_id: str) -> None:
        try:
            docs = await self.store.query_async(
                Collection.COUPONS.value,
                [("businessId", "==", business_id), ("active", "==", True)],
            )
        except SourceUnavailableError as e:
            run.fail(e, business_id)
            return
        run.entitlements.extend(self.business_offers.normalize(docs, business_id))

    async def _hydrate(self, result: AggregationResult) -> None:
        """Load each coupon definition, dropping ids that no longer exist."""
        if not result.coupon_ids:
            return

        docs = await asyncio.gather(
            *(
                self.store.get_async(Collection.COUPONS.value, coupon_id)
                for coupon_id in result.coupon_ids
            ),
            return_exceptions=True,
        )
        for coupon_id, doc in zip(result.coupon_ids, docs, strict=True):
            if isinstance(doc, BaseException):
                if not isinstance(doc, Exception):
                    raise doc
                logger.warning(f"Could not load coupon {coupon_id}: {doc}")
                result.failures.append(SourceFailure.from_error(SOURCE_DEFINITIONS, doc, coupon_id))
            elif doc is None:
                logger.debug(f"Dropping stale coupon reference {coupon_id}")
                result.stale_ids.append(coupon_id)
            else:
                result.coupons.append(CouponDefinition.from_document(doc))
