"""Tests for MCP server tools, resources, and prompts."""

from __future__ import annotations

import tomllib
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from loyaltylink.reconcile import ReconciliationService
from loyaltylink.store.config import LoyaltySettings


def _fn(name):
    """Return the plain function behind a decorated server attribute."""
    from loyaltylink_mcp import server

    obj = getattr(server, name)
    return getattr(obj, "fn", obj)


@pytest.fixture
def service(sample_store, settings, clock, monkeypatch):
    from loyaltylink_mcp import server

    reconciliation = ReconciliationService(store=sample_store, settings=settings, clock=clock)
    monkeypatch.setattr(server, "_service", reconciliation)
    return reconciliation


@pytest.fixture
def broken_env(monkeypatch):
    from loyaltylink_mcp import server

    monkeypatch.setattr(server, "_service", None)
    monkeypatch.setenv("LOYALTYLINK_MONTHLY_GOAL", "-1")


# =============================================================================
# Service Wiring Tests
# =============================================================================


def test_get_service_is_cached(monkeypatch):
    """Test get_service creates the service once."""
    from loyaltylink_mcp import server

    monkeypatch.setattr(server, "_service", None)
    monkeypatch.delenv("LOYALTYLINK_MONTHLY_GOAL", raising=False)

    first = server.get_service()

    assert server.get_service() is first
    assert isinstance(first.settings, LoyaltySettings)


def test_get_service_invalid_settings(broken_env):
    """Test invalid environment settings raise ValidationError."""
    from loyaltylink_mcp import server

    with pytest.raises(ValidationError):
        server.get_service()


# =============================================================================
# Linking Tool Tests
# =============================================================================


@pytest.mark.asyncio
async def test_resolve_and_link(service, sample_store):
    """Test linking an unlinked user by phone."""
    result = await _fn("resolve_and_link")(user_id="uid-new", phone="+27 83 333 4444")

    assert result["success"] is True
    assert result["state"] == "linked"
    assert result["customer_id"] == "cust-2"
    assert sample_store.data("customers", "cust-2")["userId"] == "uid-new"


@pytest.mark.asyncio
async def test_resolve_and_link_phone_change_delinks(service):
    """Test a phone change with no match removes the link."""
    result = await _fn("resolve_and_link")(user_id="uid-linked", phone="0000", phone_changed=True)

    assert result["state"] == "delinked"
    assert result["previous_customer_id"] == "cust-1"


@pytest.mark.asyncio
async def test_resolve_and_link_invalid_input(service):
    """Test an empty user id is reported, not raised."""
    result = await _fn("resolve_and_link")(user_id="")

    assert result["success"] is False
    assert result["error"] == "invalid_input"


@pytest.mark.asyncio
async def test_resolve_and_link_configuration_error(broken_env):
    """Test invalid configuration returns an error payload."""
    result = await _fn("resolve_and_link")(user_id="uid-new")

    assert result["success"] is False
    assert "Invalid configuration" in result["error"]


def test_normalize_phone_number():
    """Test phone normalization tool."""
    result = _fn("normalize_phone_number")(phone="+27 (83) 123-4567")

    assert result == {
        "phone": "+27 (83) 123-4567",
        "normalized": "27831234567",
        "valid": True,
        "lookup_values": ["27831234567", "+27 (83) 123-4567"],
    }


def test_normalize_phone_number_invalid():
    """Test a phone with no characters left is invalid."""
    result = _fn("normalize_phone_number")(phone=" - ")

    assert result["valid"] is False
    assert result["lookup_values"] == []


# =============================================================================
# Coupon Tool Tests
# =============================================================================


@pytest.mark.asyncio
async def test_aggregate_coupons(service):
    """Test coupon aggregation returns hydrated coupons."""
    result = await _fn("aggregate_coupons")(user_id="uid-linked")

    assert result["success"] is True
    assert result["count"] == 3
    assert [c["coupon_id"] for c in result["coupons"]] == ["coupon-a", "coupon-b", "coupon-c"]
    assert result["coupons"][0]["discount"] == "20%"
    assert result["failures"] == []


@pytest.mark.asyncio
async def test_aggregate_coupons_partial(service, sample_store):
    """Test a failing source is reported alongside the other coupons."""
    sample_store.fail_on("couponDistributions")

    result = await _fn("aggregate_coupons")(user_id="uid-linked")

    assert result["count"] == 3
    assert {f["source"] for f in result["failures"]} == {"distributions", "phone"}


@pytest.mark.asyncio
async def test_aggregate_coupons_configuration_error(broken_env):
    """Test invalid configuration returns an error payload."""
    result = await _fn("aggregate_coupons")(user_id="uid-linked")

    assert result["success"] is False


# =============================================================================
# Savings Tool Tests
# =============================================================================


@pytest.mark.asyncio
async def test_compute_savings_stats(service, sample_store):
    """Test savings stats from redemptions."""
    sample_store.add(
        "couponRedemptions", "r1", userId="uid-linked", couponId="coupon-a", date="2025-06-15"
    )

    result = await _fn("compute_savings_stats")(user_id="uid-linked")

    assert result["success"] is True
    assert result["total_saved"] == 20
    assert result["current_streak"] == 1
    assert result["failures"] == []


@pytest.mark.asyncio
async def test_reconcile_user(service):
    """Test the combined reconciliation tool."""
    result = await _fn("reconcile_user")(user_id="uid-new", phone="27833334444")

    assert result["success"] is True
    assert result["link"]["state"] == "linked"
    assert [c["coupon_id"] for c in result["coupons"]["coupons"]] == ["coupon-c"]
    assert result["savings"]["total_saved"] == 0


# =============================================================================
# Resource and Prompt Tests
# =============================================================================


@pytest.mark.asyncio
async def test_savings_resource(service, sample_store):
    """Test savings resource text."""
    sample_store.add("savingsEvents", "e1", userId="uid-new", amount=150, date="2025-06-14")

    text = await _fn("get_savings_resource")(user_id="uid-new")

    assert "User: uid-new" in text
    assert "Total saved: 150.00" in text
    assert "Current streak: 1 days" in text
    assert "Monthly goal progress:" in text


@pytest.mark.asyncio
async def test_savings_resource_configuration_error(broken_env):
    """Test invalid configuration is reported in the resource text."""
    text = await _fn("get_savings_resource")(user_id="uid-new")

    assert text.startswith("Invalid configuration")


def test_investigate_missing_coupons_prompt():
    """Test prompt mentions the tools to call."""
    text = _fn("investigate_missing_coupons")(user_id="uid-9")

    assert 'resolve_and_link("uid-9")' in text
    assert "aggregate_coupons" in text


@patch("loyaltylink_mcp.server.mcp")
def test_main_runs_server(mock_mcp):
    """Test main starts the MCP server."""
    from loyaltylink_mcp.server import main

    main()

    mock_mcp.run.assert_called_once_with()


def test_console_script_targets_main():
    """Test the loyaltylink-mcp script points at server.main."""
    import loyaltylink_mcp
    from loyaltylink_mcp import server

    pyproject = Path(__file__).resolve().parents[3] / "pyproject.toml"
    with pyproject.open("rb") as f:
        project = tomllib.load(f)["project"]

    assert project["scripts"]["loyaltylink-mcp"] == "loyaltylink_mcp.server:main"
    assert callable(server.main)
    assert loyaltylink_mcp.__version__ == project["version"]
