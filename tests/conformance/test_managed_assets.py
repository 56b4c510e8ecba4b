"""
Managed Assets Conformance Tests

INVARIANT: Moving want between the wallet and the market never changes what
the strategy manages.

    total_managed = held + supplied - borrowed

    deposit, deleverage, deleverage_once, rebalance ⟹ total_managed unchanged
    reserves ≤ held                                    (always)
    Σ_w balance(w, WANT)                               (constant)
    Σ_w balance(w, aWANT) = Σ_w balance(w, variableDebtWANT) = 0

Checked over random ladder parameters and funding amounts.
"""

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st
from decimal import Decimal

from tests.conftest import verify_conservation
from tests.strategy_setup import build_strategy


rates = st.integers(min_value=1, max_value=75).map(Decimal)
depths = st.integers(min_value=0, max_value=10)
amounts = st.decimals(
    min_value=Decimal("1"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

property_settings = settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])


def assert_invariants(s, funded, want_supply):
    strategy = s.strategy
    assert strategy.total_managed_assets() == funded
    assert Decimal("0") <= strategy.reserves <= strategy.idle_assets()
    assert verify_conservation(s.ledger, "WANT", want_supply, Decimal("0"))[0]
    check = s.ledger.verify_double_entry(
        {"aWANT": Decimal("0"), "variableDebtWANT": Decimal("0")}, tolerance=Decimal("0")
    )
    assert check["valid"], check["discrepancies"]


class TestManagedAssetsProperties:

    @given(rate=rates, depth=depths, funded=amounts)
    @property_settings
    def test_deposit_then_unwind(self, rate, depth, funded):
        s = build_strategy(borrow_rate=rate, borrow_depth=depth, funded=funded)
        want_supply = s.ledger.total_supply("WANT")

        s.strategy.deposit("anyone")
        assert_invariants(s, funded, want_supply)

        s.strategy.pause("owner")
        assert_invariants(s, funded, want_supply)
        assert s.strategy.idle_assets() == funded
        assert s.strategy.account_position().supplied == Decimal("0")

    @given(rate=rates, depth=depths, new_rate=rates, new_depth=depths, funded=amounts)
    @property_settings
    def test_rebalance(self, rate, depth, new_rate, new_depth, funded):
        s = build_strategy(borrow_rate=rate, borrow_depth=depth, funded=funded)
        want_supply = s.ledger.total_supply("WANT")
        s.strategy.deposit("anyone")

        s.strategy.rebalance("keeper", new_rate, new_depth)

        assert_invariants(s, funded, want_supply)
        assert s.strategy.state.borrow_rate == new_rate
        assert s.strategy.state.borrow_depth == new_depth

    @given(depth=st.integers(min_value=1, max_value=10), funded=amounts,
           override=st.integers(min_value=74, max_value=75).map(Decimal))
    @property_settings
    def test_deleverage_once(self, depth, funded, override):
        s = build_strategy(borrow_rate=Decimal("75"), borrow_depth=depth, funded=funded)
        want_supply = s.ledger.total_supply("WANT")
        s.strategy.deposit("anyone")

        s.strategy.deleverage_once("owner", override)

        assert_invariants(s, funded, want_supply)
        assert s.strategy.reserves == s.strategy.idle_assets()
        assert s.strategy.state.borrow_rate == Decimal("75")
