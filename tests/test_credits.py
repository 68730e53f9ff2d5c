"""Tests for credit estimation and the credit gate."""

from unittest.mock import AsyncMock

import pytest

from modelgate.billing.credits import CreditGate, estimate_cost, format_credits
from modelgate.core.errors import LedgerError
from modelgate.llm.registry import get_registry
from modelgate.storage.store import SQLiteStore


def _model(model_id: str):
    return get_registry().get_model(model_id)


def test_premium_rates_above_threshold():
    """Whole call uses premium rates once total tokens exceed 200k."""
    opus = _model("claude-opus-4-5-20251101")
    # 0.25 * 14500 + 0.125 * 54375 = 10421.875
    assert estimate_cost(opus, 250_000, 125_000, using_platform_key=False) == 10422


def test_base_rates_below_threshold():
    """Calls under the threshold use base rates."""
    opus = _model("claude-opus-4-5-20251101")
    # 0.125 * 7250 + 0.0625 * 36250 = 3171.875
    assert estimate_cost(opus, 125_000, 62_500, using_platform_key=False) == 3172


def test_threshold_is_exclusive():
    """Exactly 200k tokens is not long context."""
    opus = _model("claude-opus-4-5-20251101")
    assert estimate_cost(opus, 199_999, 1, using_platform_key=False) == 1451
    assert estimate_cost(opus, 199_999, 1, using_platform_key=False, long_context_threshold=100_000) == 2901


def test_no_premium_without_premium_pricing():
    """Models without premium rates keep base pricing for long calls."""
    mini = _model("gpt-4o-mini")
    # 0.25 * 150 + 0.125 * 600 = 112.5
    assert estimate_cost(mini, 250_000, 125_000, using_platform_key=False) == 113


def test_platform_markup():
    """Platform-key calls are multiplied by the markup."""
    mini = _model("gpt-4o-mini")
    # 1.35 credits raw
    assert estimate_cost(mini, 1000, 2000, using_platform_key=False) == 2
    assert estimate_cost(mini, 1000, 2000, using_platform_key=True) == 3
    assert estimate_cost(mini, 1000, 2000, using_platform_key=True, markup=3.0) == 5


def test_minimum_charge_is_one():
    """A non-zero cost never rounds down to zero."""
    assert estimate_cost(_model("gpt-4o-mini"), 10, 10, using_platform_key=True) == 1


def test_free_model_costs_nothing():
    """Zero-priced models are free."""
    assert estimate_cost(_model("gemini-2.0-flash"), 500_000, 500_000, using_platform_key=True) == 0


def test_format_credits():
    """Large amounts use 만 units."""
    assert format_credits(950) == "950"
    assert format_credits(25_000) == "2.5만"


@pytest.mark.asyncio
async def test_deduct_charges_platform_key_once(store: SQLiteStore):
    """The same reference is charged exactly once."""
    gate = CreditGate(store)
    first = await gate.deduct("u1", "gpt-4o-mini", 1000, 2000, True, reference="dlg-1")
    second = await gate.deduct("u1", "gpt-4o-mini", 1000, 2000, True, reference="dlg-1")

    assert first.cost == 3
    assert first.new_balance == 997
    assert second.new_balance == 997
    assert await store.usage_total("u1") == 3


@pytest.mark.asyncio
async def test_deduct_own_key_is_free(store: SQLiteStore):
    """Calls on the user's own key are never charged."""
    gate = CreditGate(store)
    deduction = await gate.deduct("u1", "gpt-4o", 50_000, 50_000, False, reference="dlg-2")
    assert deduction.cost == 0
    assert await gate.balance("u1") == 1000


@pytest.mark.asyncio
async def test_balance_never_negative(store: SQLiteStore):
    """Deduction clamps at zero."""
    await store.set_balance("u1", 2)
    gate = CreditGate(store)
    deduction = await gate.deduct("u1", "gpt-4o", 100_000, 100_000, True, reference="dlg-3")
    assert deduction.cost > 2
    assert deduction.new_balance == 0


@pytest.mark.asyncio
async def test_ledger_failure_degrades_to_estimate():
    """A failing ledger still returns the computed cost, flagged estimated."""
    ledger = AsyncMock()
    ledger.deduct.side_effect = LedgerError("ledger down")
    gate = CreditGate(ledger)

    deduction = await gate.deduct("u1", "gpt-4o-mini", 1000, 2000, True, reference="dlg-4")
    assert deduction.estimated
    assert deduction.cost == 3


@pytest.mark.asyncio
async def test_has_credits_false_when_ledger_down():
    """Unavailable ledger reads as no credits."""
    ledger = AsyncMock()
    ledger.get_account.side_effect = LedgerError("ledger down")
    assert not await CreditGate(ledger).has_credits("u1")


@pytest.mark.asyncio
async def test_check_affordability(store: SQLiteStore):
    """Affordability compares the estimate with the balance."""
    gate = CreditGate(store)
    assert (await gate.check_affordability("u1", "gpt-4o-mini")).allowed
    assert (await gate.check_affordability("u1", "gpt-4o", own_key=True)).estimated_cost == 0

    await store.set_balance("u1", 1)
    check = await gate.check_affordability("u1", "claude-opus-4-5-20251101", input_tokens=10_000)
    assert not check.allowed
    assert check.error


@pytest.mark.asyncio
async def test_unknown_model_pricing_raises(store: SQLiteStore):
    """Estimating an unknown model is a ledger error."""
    with pytest.raises(LedgerError):
        CreditGate(store).estimate("no-such-model", 10, 10, True)


@pytest.mark.asyncio
async def test_add_rejects_non_positive(store: SQLiteStore):
    """Top-ups must be positive."""
    gate = CreditGate(store)
    assert await gate.add("u1", 500) == 1500
    with pytest.raises(LedgerError):
        await gate.add("u1", 0)
