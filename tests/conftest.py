"""
conftest.py - Shared pytest fixtures for lendloop tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, WANT-funded)
- Markets (lending pool with a listed WANT reserve, rewards controller)
- Strategies (fresh, funded, leveraged) and a vault
- Comparison utilities
"""

import pytest
from decimal import Decimal
from typing import Tuple

from lendloop import Ledger, token, open_vault

from tests.strategy_setup import START, ROLES, build_markets, build_strategy


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def ledger_state_equals(ledger1: Ledger, ledger2: Ledger, tolerance: Decimal = None) -> bool:
    """Check if two ledgers have equivalent state (balances and unit states)."""
    if tolerance is None:
        tolerance = Decimal("1e-9")
    diff = compare_ledger_states(ledger1, ledger2, tolerance)
    return diff["equal"]


def compare_ledger_states(ledger1: Ledger, ledger2: Ledger, tolerance: Decimal = None) -> dict:
    """Compare two ledger states and return differences."""
    if tolerance is None:
        tolerance = Decimal("1e-9")
    balance_diffs = []
    state_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units.keys()) | set(ledger2.units.keys())

    for wallet in all_wallets:
        for unit in all_units:
            bal1 = ledger1.balances.get(wallet, {}).get(unit, Decimal("0"))
            bal2 = ledger2.balances.get(wallet, {}).get(unit, Decimal("0"))
            if abs(bal1 - bal2) > tolerance:
                balance_diffs.append({
                    "wallet": wallet,
                    "unit": unit,
                    "ledger1": bal1,
                    "ledger2": bal2,
                    "diff": bal1 - bal2
                })

    for unit_sym in all_units:
        if unit_sym in ledger1.units and unit_sym in ledger2.units:
            state1 = ledger1.get_unit_state(unit_sym)
            state2 = ledger2.get_unit_state(unit_sym)
            field_diffs = {
                key: {"ledger1": state1.get(key), "ledger2": state2.get(key)}
                for key in set(state1.keys()) | set(state2.keys())
                if state1.get(key) != state2.get(key)
            }
            if field_diffs:
                state_diffs.append({"unit": unit_sym, "diffs": field_diffs})
        else:
            state_diffs.append({"unit": unit_sym, "diffs": "registered in one ledger only"})

    return {
        "equal": len(balance_diffs) == 0 and len(state_diffs) == 0,
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
    }


def verify_conservation(ledger: Ledger, unit_symbol: str, expected_total: Decimal = None, tolerance: Decimal = None) -> Tuple[bool, Decimal]:
    """
    Verify conservation law for a unit.

    Returns:
        (is_conserved, actual_total)
    """
    if tolerance is None:
        tolerance = Decimal("1e-9")
    actual = ledger.total_supply(unit_symbol)
    if expected_total is not None:
        return abs(actual - expected_total) < tolerance, actual
    return True, actual


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", START, verbose=False, test_mode=True)


@pytest.fixture
def want_ledger():
    """Ledger with WANT and alice holding 10,000."""
    ledger = Ledger("test", START, verbose=False, test_mode=True)
    ledger.register_unit(token("WANT", "Wrapped Native"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.set_balance("alice", "WANT", Decimal("10000"))
    return ledger


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def markets():
    """(ledger, lending market, rewards market) with WANT listed at 75% / 80%."""
    ledger, market, rewards = build_markets()
    ledger.register_wallet("alice")
    ledger.set_balance("alice", "WANT", Decimal("10000"))
    market.approve("WANT", "alice")
    return ledger, market, rewards


# =============================================================================
# STRATEGY FIXTURES
# =============================================================================

@pytest.fixture
def setup():
    """Strategy at rate 70 / max 75 / depth 3 holding 1000 WANT, not yet leveraged."""
    return build_strategy(funded=Decimal("1000"))


@pytest.fixture
def leveraged(setup):
    """The funded strategy after deposit: 2190 supplied, 1533 borrowed, 343 reserves."""
    setup.strategy.deposit("anyone")
    return setup


@pytest.fixture
def vault_setup():
    """Unfunded strategy behind a vault; alice and bob hold 10,000 WANT each."""
    s = build_strategy()
    vault = open_vault(s.ledger, s.strategy)
    for user in ("alice", "bob"):
        s.ledger.register_wallet(user)
        s.ledger.set_balance(user, "WANT", Decimal("10000"))
    return s, vault


@pytest.fixture
def roles():
    return ROLES
