"""
LoyaltyLink MCP Server - Main entry point.

MCP server exposing customer reconciliation:
- Account-to-customer linking on phone changes
- Coupon aggregation across legacy entitlement schemas
- Savings totals, streaks and goal progress
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP
from pydantic import ValidationError

from loyaltylink.reconcile import ReconciliationService
from loyaltylink.store.config import LoyaltySettings

# Initialize server
mcp = FastMCP("LoyaltyLink Customer Reconciliation")

logger = logging.getLogger(__name__)

_service: ReconciliationService | None = None


def get_service() -> ReconciliationService:
    """Return the shared reconciliation service, creating it on first use.

    Raises:
        ValidationError: If the LOYALTYLINK_* settings in the environment are invalid.
    """
    global _service
    if _service is None:
        _service = ReconciliationService(settings=LoyaltySettings.from_env())
    return _service


def _configuration_error(e: ValidationError) -> dict:
    logger.error("Invalid LoyaltyLink configuration", extra={"errors": e.errors()})
    return {"success": False, "error": f"Invalid configuration: {e}"}


# =============================================================================
# Linking Tools
# =============================================================================


@mcp.tool()
async def resolve_and_link(
    user_id: str,
    phone: str | None = None,
    phone_changed: bool = False,
) -> dict:
    """
    Resolve a user's customer profile and apply any link transition.

    Links an unlinked user to the customer record matching their phone. When
    phone_changed is set, re-resolves by the new phone and relinks or
    de-links as needed. Repeated calls without a phone change write nothing.

    Args:
        user_id: Account id of the user
        phone: Phone to match on (read from the user profile when omitted)
        phone_changed: True when the user's phone number just changed

    Returns:
        Link state, status message, and the linked customer id
    """
    logger.info(
        "Resolving customer link",
        extra={"user_id": user_id, "phone_changed": phone_changed},
    )
    try:
        service = get_service()
    except ValidationError as e:
        return _configuration_error(e)

    outcome = await service.resolve_and_link(user_id, phone=phone, phone_changed=phone_changed)
    if outcome.error:
        logger.warning(
            "Link transition did not complete",
            extra={"user_id": user_id, "error": outcome.error.value},
        )
    return {"success": outcome.is_success, **outcome.to_dict()}


@mcp.tool()
def normalize_phone_number(phone: str) -> dict:
    """
    Normalize a phone number the way customer lookups do.

    Args:
        phone: Phone number in any formatting

    Returns:
        Normalized form and the values a lookup would query
    """
    from loyaltylink.identity import lookup_candidates, normalize_phone

    normalized = normalize_phone(phone)
    return {
        "phone": phone,
        "normalized": normalized,
        "valid": bool(normalized),
        "lookup_values": lookup_candidates(phone),
    }


# =============================================================================
# Coupon Tools
# =============================================================================


@mcp.tool()
async def aggregate_coupons(user_id: str) -> dict:
    """
    List every coupon available to a user.

    Searches distributions, customer coupons, phone-matched customer records,
    and the user's businesses (or public offers), deduplicated by coupon id.
    A failing source is reported but does not hide the others' coupons.

    Args:
        user_id: Account id of the user

    Returns:
        Coupons with display details, stale ids dropped, and source failures
    """
    logger.info("Aggregating coupons", extra={"user_id": user_id})
    try:
        service = get_service()
    except ValidationError as e:
        return _configuration_error(e)

    result = await service.aggregator.aggregate(user_id)
    return {"success": True, "count": len(result.coupons), **result.to_dict()}


# =============================================================================
# Savings Tools
# =============================================================================


@mcp.tool()
async def compute_savings_stats(user_id: str) -> dict:
    """
    Compute a user's savings metrics.

    Args:
        user_id: Account id of the user

    Returns:
        total_saved, monthly_saved, current_streak, longest_streak and
        goal_progress (percent of the monthly goal, capped at 100)
    """
    logger.info("Computing savings stats", extra={"user_id": user_id})
    try:
        service = get_service()
    except ValidationError as e:
        return _configuration_error(e)

    stats = await service.compute_savings_stats(user_id)
    return {"success": True, **stats.to_dict()}


@mcp.tool()
async def reconcile_user(
    user_id: str,
    phone: str | None = None,
    phone_changed: bool = False,
) -> dict:
    """
    Link a user, then aggregate their coupons and savings in one call.

    Args:
        user_id: Account id of the user
        phone: Phone to match on
        phone_changed: True when the user's phone number just changed

    Returns:
        Link outcome, coupons, savings and any warnings
    """
    logger.info(
        "Reconciling user",
        extra={"user_id": user_id, "phone_changed": phone_changed},
    )
    try:
        service = get_service()
    except ValidationError as e:
        return _configuration_error(e)

    report = await service.reconcile(user_id, phone=phone, phone_changed=phone_changed)
    return {"success": report.link.is_success, **report.to_dict()}


# =============================================================================
# Resources
# =============================================================================


@mcp.resource("savings://{user_id}")
async def get_savings_resource(user_id: str) -> str:
    """Get a user's savings summary as a resource."""
    try:
        service = get_service()
    except ValidationError as e:
        return _configuration_error(e)["error"]

    stats = await service.compute_savings_stats(user_id)
    return f"""User: {user_id}
Total saved: {stats.total_saved:.2f}
Saved this month: {stats.monthly_saved:.2f}
Current streak: {stats.current_streak} days
Longest streak: {stats.longest_streak} days
Monthly goal progress: {stats.goal_progress:.0f}%
"""


# =============================================================================
# Prompts
# =============================================================================


@mcp.prompt()
def investigate_missing_coupons(user_id: str) -> str:
    """Prompt for investigating why a user cannot see expected coupons."""
    return f"""Investigate why user "{user_id}" is missing coupons.

Steps:
1. Call resolve_and_link("{user_id}") and note the link state and customer id
2. Call aggregate_coupons("{user_id}") and review the failures and stale_ids
3. If the user is unlinked, check their phone with normalize_phone_number
4. Summarize which sources returned coupons and which failed
"""


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
