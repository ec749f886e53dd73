"""
SavingsCalculator - total, monthly and streak metrics for a user.

Savings events are authoritative. Redemptions are only consulted when no
savings event exists for the same window, and their amounts are estimated
from the referenced coupon definition, so the two sources are never summed
together.

Owner ids are searched user id first. Every owner id is queried on the
``userId`` field; ids after the first are also queried on ``customerId``.
A failed owner query contributes nothing and is reported on
``SavingsStats.failures``.

Example:
    calculator = SavingsCalculator(store)
    stats = await calculator.compute_savings_stats("uid-123")
    print(stats.total_saved, stats.goal_progress)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loyaltylink.identity.resolver import IdentityResolver
from loyaltylink.savings.estimation import CouponValueEstimator
from loyaltylink.savings.streak import StreakResult, calculate_streaks, event_date
from loyaltylink.store.base import Document, DocumentStore, Filter
from loyaltylink.store.config import Collection, LoyaltySettings
from loyaltylink.store.exceptions import ErrorKind, SourceFailure

logger = logging.getLogger(__name__)


@dataclass
class SavingsStats:
    """Derived savings metrics for one user."""

    total_saved: float = 0.0
    monthly_saved: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    goal_progress: float = 0.0
    failures: list[SourceFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "total_saved": round(self.total_saved, 2),
            "monthly_saved": round(self.monthly_saved, 2),
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "goal_progress": round(self.goal_progress, 2),
            "failures": [failure.to_dict() for failure in self.failures],
        }


@dataclass
class _Records:
    """Documents read from one collection, deduplicated by id."""

    docs: list[Document] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)


def goal_progress(monthly_saved: float, monthly_goal: float | None = None) -> float:
    """Percent of the monthly goal reached, capped at 100."""
    goal = monthly_goal if monthly_goal and monthly_goal > 0 else 100.0
    return min(100.0, max(0.0, monthly_saved / goal * 100))


def start_of_month(moment: datetime) -> datetime:
    """First instant of the month containing ``moment``."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class SavingsCalculator:
    """Compute savings metrics from savings events or estimated redemptions."""

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

    async def compute_savings_stats(self, user_id: str) -> SavingsStats:
        """Compute every metric for a user.

        Never raises; an invalid user id yields zeroed stats.
        """
        owner_ids, failures = await self._owner_ids(user_id)
        if not owner_ids:
            return SavingsStats(failures=failures)

        now = self._clock()
        since = start_of_month(now)
        estimator = CouponValueEstimator(self.store, self.settings)
        (events, redemptions), (monthly_events, monthly_redemptions) = await asyncio.gather(
            self._load_window(owner_ids),
            self._load_window(owner_ids, since=since),
        )
        for records in (events, redemptions, monthly_events, monthly_redemptions):
            failures.extend(records.failures)

        total, monthly = await asyncio.gather(
            self._total(events, redemptions, estimator),
            self._total(monthly_events, monthly_redemptions, estimator),
        )
        streak = _streak(events, redemptions, now)

        stats = SavingsStats(
            total_saved=total,
            monthly_saved=monthly,
            current_streak=streak.current_streak,
            longest_streak=streak.longest_streak,
            goal_progress=goal_progress(monthly, self.settings.monthly_goal),
            failures=failures,
        )
        if failures:
            logger.warning(
                f"Savings stats for user {user_id} are partial: {len(failures)} failures"
            )
        logger.info(
            f"Savings for user {user_id}: total={stats.total_saved:.2f}, "
            f"monthly={stats.monthly_saved:.2f}, streak={stats.current_streak}"
        )
        return stats

    async def total_saved(self, user_id: str) -> float:
        """Sum of all savings for a user."""
        owner_ids, _ = await self._owner_ids(user_id)
        if not owner_ids:
            return 0.0
        events, redemptions = await self._load_window(owner_ids)
        return await self._total(
            events, redemptions, CouponValueEstimator(self.store, self.settings)
        )

    async def monthly_saved(self, user_id: str) -> float:
        """Sum of savings since the start of the current month."""
        owner_ids, _ = await self._owner_ids(user_id)
        if not owner_ids:
            return 0.0
        events, redemptions = await self._load_window(
            owner_ids, since=start_of_month(self._clock())
        )
        return await self._total(
            events, redemptions, CouponValueEstimator(self.store, self.settings)
        )

    async def savings_streak(self, user_id: str) -> StreakResult:
        """Current and longest streak of days with savings."""
        owner_ids, _ = await self._owner_ids(user_id)
        if not owner_ids:
            return StreakResult()
        events, redemptions = await self._load_window(owner_ids)
        return _streak(events, redemptions, self._clock())

    async def _owner_ids(self, user_id: str) -> tuple[list[str], list[SourceFailure]]:
        """User id first, then the linked customer id if one resolves."""
        if not isinstance(user_id, str) or not user_id.strip():
            logger.warning("Invalid user id provided to savings calculation")
            return [], [SourceFailure("identity", ErrorKind.INVALID_INPUT, "A user id is required")]

        resolution = await self.resolver.resolve_by_user_id(user_id)
        failures = []
        if resolution.unavailable:
            failures.append(
                SourceFailure(
                    "identity",
                    ErrorKind.SOURCE_UNAVAILABLE,
                    "Linked customer lookup failed",
                    owner_id=user_id,
                )
            )
        owner_ids = [user_id]
        if resolution.customer and resolution.customer.customer_id != user_id:
            owner_ids.append(resolution.customer.customer_id)
        return owner_ids, failures

    async def _load_window(
        self, owner_ids: list[str], since: datetime | None = None
    ) -> tuple[_Records, _Records]:
        """Load savings events, and redemptions only if there are no events."""
        events = await self._load(Collection.SAVINGS_EVENTS, owner_ids, since=since)
        if events.docs:
            return events, _Records()
        return events, await self._load(Collection.REDEMPTIONS, owner_ids, since=since)

    async def _total(
        self,
        events: _Records,
        redemptions: _Records,
        estimator: CouponValueEstimator,
    ) -> float:
        if events.docs:
            return _sum_amounts(events.docs)

        values = await asyncio.gather(
            *(
                estimator.estimate(doc.get("couponId"))
                for doc in redemptions.docs
                if doc.get("couponId")
            )
        )
        return float(sum(values))

    async def _load(
        self,
        collection: Collection,
        owner_ids: list[str],
        since: datetime | None = None,
    ) -> _Records:
        """Query a collection for every owner id concurrently."""
        queries: list[tuple[str, list[Filter]]] = []
        for index, owner_id in enumerate(owner_ids):
            owner_fields = ["userId"] if index == 0 else ["userId", "customerId"]
            for owner_field in owner_fields:
                filters: list[Filter] = [(owner_field, "==", owner_id)]
                if since is not None:
                    filters.append(("timestamp", ">=", since))
                queries.append((owner_id, filters))

        outcomes = await asyncio.gather(
            *(self.store.query_async(collection.value, filters) for _, filters in queries),
            return_exceptions=True,
        )

        records = _Records()
        seen: set[str] = set()
        for (owner_id, _), outcome in zip(queries, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Failed to read {collection.value} for owner {owner_id}: {outcome}")
                records.failures.append(
                    SourceFailure.from_error(collection.value, outcome, owner_id)
                )
                continue
            for doc in outcome:
                if doc.id not in seen:
                    seen.add(doc.id)
                    records.docs.append(doc)
        return records


def _sum_amounts(docs: list[Document]) -> float:
    total = 0.0
    for doc in docs:
        amount = doc.get("amount")
        if isinstance(amount, (int, float)) and not isinstance(amount, bool):
            total += amount
    return total


def _streak(events: _Records, redemptions: _Records, now: datetime) -> StreakResult:
    source = events.docs or redemptions.docs
    dates = [d for d in (event_date(doc.data) for doc in source) if d]
    return calculate_streaks(dates, now.date())
