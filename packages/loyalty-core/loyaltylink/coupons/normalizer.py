"""
Entitlement normalizers - transform stored records into ``Entitlement``.

Each normalizer handles one stored shape:
- DistributionNormalizer: ``couponDistributions`` records
- CustomerCouponNormalizer: ``customerCoupons`` records
- BusinessOfferNormalizer: active ``coupons`` returned by the business fallback
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from loyaltylink.coupons.schema import Entitlement, SourceKind
from loyaltylink.identity.records import coerce_datetime
from loyaltylink.store.base import Document

logger = logging.getLogger(__name__)


class EntitlementNormalizer(ABC):
    """Base class for entitlement normalizers."""

    source_kind: SourceKind

    def __init__(self, field_map: dict[str, str] | None = None):
        """
        Initialize normalizer.

        Args:
            field_map: Mapping of stored fields to Entitlement fields
        """
        self.field_map = field_map or self._default_field_map()

    @abstractmethod
    def _default_field_map(self) -> dict[str, str]:
        """Default field mappings for this shape."""

    def normalize(self, docs: list[Document], owner_id: str | None = None) -> list[Entitlement]:
        """
        Normalize stored records to Entitlement objects.

        Records without a coupon id are skipped.

        Args:
            docs: Documents read from the store
            owner_id: Owner id the documents were queried by

        Returns:
            List of normalized entitlements in input order
        """
        entitlements = []
        for doc in docs:
            mapped = self._map_fields(doc)
            coupon_id = self._coupon_id(doc, mapped)
            if not coupon_id:
                logger.debug(f"Skipping {self.source_kind.value} record {doc.id} without couponId")
                continue
            entitlements.append(
                Entitlement(
                    coupon_id=coupon_id,
                    source_kind=self.source_kind,
                    owner_id=mapped.get("owner_id") or owner_id,
                    record_id=doc.id,
                    allocated_at=coerce_datetime(mapped.get("allocated_at")),
                )
            )
        return entitlements

    def _map_fields(self, doc: Document) -> dict[str, Any]:
        # First mapped source field wins
        mapped: dict[str, Any] = {}
        for source_field, target_field in self.field_map.items():
            value = doc.data.get(source_field)
            if value not in (None, "") and target_field not in mapped:
                mapped[target_field] = value
        return mapped

    def _coupon_id(self, doc: Document, mapped: dict[str, Any]) -> str | None:
        coupon_id = mapped.get("coupon_id")
        return str(coupon_id) if coupon_id else None


class DistributionNormalizer(EntitlementNormalizer):
    """Normalize ``couponDistributions`` records (keyed by customerId)."""

    source_kind = SourceKind.DISTRIBUTION

    def _default_field_map(self) -> dict[str, str]:
        return {
            "couponId": "coupon_id",
            "coupon_id": "coupon_id",
            "customerId": "owner_id",
            "distributedAt": "allocated_at",
            "createdAt": "allocated_at",
        }


class CustomerCouponNormalizer(EntitlementNormalizer):
    """Normalize ``customerCoupons`` records (keyed by customerId or userId)."""

    source_kind = SourceKind.CUSTOMER_COUPON

    def _default_field_map(self) -> dict[str, str]:
        return {
            "couponId": "coupon_id",
            "coupon_id": "coupon_id",
            "customerId": "owner_id",
            "userId": "owner_id",
            "allocatedDate": "allocated_at",
            "createdAt": "allocated_at",
        }


class BusinessOfferNormalizer(EntitlementNormalizer):
    """Normalize active ``coupons`` documents; the document id is the coupon id."""

    source_kind = SourceKind.BUSINESS_OFFER

    def _default_field_map(self) -> dict[str, str]:
        return {
            "businessId": "owner_id",
            "createdAt": "allocated_at",
        }

    def _coupon_id(self, doc: Document, mapped: dict[str, Any]) -> str | None:
        return doc.id or None
