"""Reconciliation service.

Entry point for the surrounding application. Wires the resolver, link
manager, coupon aggregator and savings calculator around one document store
and exposes the three public operations, plus a combined ``reconcile`` that
links first and then aggregates coupons and savings concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loyaltylink.store.config import LoyaltySettings

if TYPE_CHECKING:
    from loyaltylink.coupons.aggregator import AggregationResult, CouponAggregator
    from loyaltylink.coupons.schema import CouponDefinition
    from loyaltylink.identity.linker import LinkOutcome, LinkStateManager
    from loyaltylink.identity.resolver import IdentityResolver
    from loyaltylink.savings.calculator import SavingsCalculator, SavingsStats
    from loyaltylink.store.base import DocumentStore


logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    """Link outcome, coupons and savings for one user."""

    user_id: str
    link: LinkOutcome
    coupons: AggregationResult
    savings: SavingsStats
    started_at: datetime | None = None
    completed_at: datetime | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        """Return duration of the reconciliation in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "user_id": self.user_id,
            "link": self.link.to_dict(),
            "coupons": self.coupons.to_dict(),
            "savings": self.savings.to_dict(),
            "warnings": self.warnings,
            "duration_seconds": self.duration_seconds,
        }


class ReconciliationService:
    """Resolve, link, and aggregate entitlements for users.

    Components are created lazily from the store and settings unless they
    are injected.

    Example:
        >>> service = ReconciliationService()
        >>> outcome = await service.resolve_and_link("uid-123", phone="+27 83 123 4567")
        >>> coupons = await service.aggregate_coupons("uid-123")
        >>> stats = await service.compute_savings_stats("uid-123")
    """

    def __init__(
        self,
        store: DocumentStore | None = None,
        settings: LoyaltySettings | None = None,
        resolver: IdentityResolver | None = None,
        linker: LinkStateManager | None = None,
        aggregator: CouponAggregator | None = None,
        calculator: SavingsCalculator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the service.

        Args:
            store: Document store. Defaults to Firestore configured from env.
            settings: Shared settings. Defaults to ``LoyaltySettings.from_env()``.
            resolver: Identity resolver.
            linker: Link state manager.
            aggregator: Coupon aggregator.
            calculator: Savings calculator.
            clock: Returns the current time; used for link timestamps and
                monthly windows.
        """
        self._store = store
        self._settings = settings
        self._resolver = resolver
        self._linker = linker
        self._aggregator = aggregator
        self._calculator = calculator
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def store(self) -> DocumentStore:
        """Lazy-initialize the document store."""
        if self._store is None:
            from loyaltylink.store.firestore import FirestoreDocumentStore

            self._store = FirestoreDocumentStore()
        return self._store

    @property
    def settings(self) -> LoyaltySettings:
        """Lazy-load settings from the environment."""
        if self._settings is None:
            self._settings = LoyaltySettings.from_env()
        return self._settings

    @property
    def resolver(self) -> IdentityResolver:
        """Lazy-initialize the identity resolver."""
        if self._resolver is None:
            from loyaltylink.identity.resolver import IdentityResolver

            self._resolver = IdentityResolver(self.store)
        return self._resolver

    @property
    def linker(self) -> LinkStateManager:
        """Lazy-initialize the link state manager."""
        if self._linker is None:
            from loyaltylink.identity.linker import LinkStateManager

            self._linker = LinkStateManager(
                self.store, self.resolver, self.settings, clock=self._clock
            )
        return self._linker

    @property
    def aggregator(self) -> CouponAggregator:
        """Lazy-initialize the coupon aggregator."""
        if self._aggregator is None:
            from loyaltylink.coupons.aggregator import CouponAggregator

            self._aggregator = CouponAggregator(self.store, self.resolver, self.settings)
        return self._aggregator

    @property
    def calculator(self) -> SavingsCalculator:
        """Lazy-initialize the savings calculator."""
        if self._calculator is None:
            from loyaltylink.savings.calculator import SavingsCalculator

            self._calculator = SavingsCalculator(
                self.store, self.resolver, self.settings, clock=self._clock
            )
        return self._calculator

    async def resolve_and_link(
        self,
        user_id: str,
        phone: str | None = None,
        phone_changed: bool = False,
    ) -> LinkOutcome:
        """Resolve the user's customer record and apply any link transition."""
        return await self.linker.resolve_and_link(user_id, phone=phone, phone_changed=phone_changed)

    async def aggregate_coupons(self, user_id: str) -> list[CouponDefinition]:
        """Return the user's deduplicated, hydrated coupons."""
        return await self.aggregator.aggregate_coupons(user_id)

    async def compute_savings_stats(self, user_id: str) -> SavingsStats:
        """Return total, monthly, streak and goal progress for the user."""
        return await self.calculator.compute_savings_stats(user_id)

    async def reconcile(
        self,
        user_id: str,
        phone: str | None = None,
        phone_changed: bool = False,
    ) -> ReconciliationReport:
        """Link the user, then aggregate coupons and savings concurrently.

        Args:
            user_id: Account id of the user.
            phone: Phone to match on, if known.
            phone_changed: True when reacting to a phone change.

        Returns:
            ReconciliationReport with the three results.
        """
        started_at = self._clock()
        logger.info(f"Reconciling user {user_id}")

        link = await self.resolve_and_link(user_id, phone=phone, phone_changed=phone_changed)
        coupons, savings = await asyncio.gather(
            self.aggregator.aggregate(user_id),
            self.calculator.compute_savings_stats(user_id),
        )

        warnings = []
        if link.error:
            warnings.append(f"link: {link.error.value}: {link.message}")
        warnings.extend(f"coupons: {f.source}: {f.kind.value}" for f in coupons.failures)
        warnings.extend(f"savings: {f.source}: {f.kind.value}" for f in savings.failures)

        report = ReconciliationReport(
            user_id=user_id,
            link=link,
            coupons=coupons,
            savings=savings,
            started_at=started_at,
            completed_at=self._clock(),
            warnings=warnings,
        )
        logger.info(
            f"Reconciled user {user_id}: link={link.state.value}, "
            f"coupons={len(coupons.coupons)}, warnings={len(warnings)}"
        )
        return report

    def close(self) -> None:
        """Close the underlying store if one was created."""
        if self._store is not None:
            self._store.close()
