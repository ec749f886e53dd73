"""
LoyaltyLink Identity - link consumer accounts to business customer records.

Provides:
- Phone canonicalization for lookups against unnormalized legacy data
- Customer resolution by phone or by linked user id
- Link, relink and de-link transitions on phone changes

Usage:
    from loyaltylink.identity import IdentityResolver, LinkStateManager

    resolver = IdentityResolver(store)
    resolution = await resolver.resolve_by_phone("+27 83 123 4567")

    manager = LinkStateManager(store, resolver)
    outcome = await manager.resolve_and_link("uid-123", phone_changed=True)
"""

from loyaltylink.identity.linker import LinkOutcome, LinkState, LinkStateManager
from loyaltylink.identity.phone import lookup_candidates, normalize_phone, phones_equal
from loyaltylink.identity.records import CustomerRecord, UserIdentity, coerce_datetime
from loyaltylink.identity.resolver import IdentityResolver, Resolution, pick_first

__all__ = [
    # Phone
    "normalize_phone",
    "phones_equal",
    "lookup_candidates",
    # Records
    "CustomerRecord",
    "UserIdentity",
    "coerce_datetime",
    # Resolver
    "IdentityResolver",
    "Resolution",
    "pick_first",
    # Linker
    "LinkOutcome",
    "LinkState",
    "LinkStateManager",
]
