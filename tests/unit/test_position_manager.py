"""
test_position_manager.py - Unit tests for the supply/borrow ladder

Reference ladder: rate 70, depth 3, 1000 WANT, market ltv 75% / lt 80%

    supply 1000  borrow 700
    supply  700  borrow 490
    supply  490  borrow 343   -> reserves

    supplied 2190, borrowed 1533, held 343
"""

import pytest
from dataclasses import replace
from decimal import Decimal

from lendloop import (
    ConfigurationError, ZeroBorrowRateError, DeleverageStalled,
    calculate_next_rung, calculate_target_supply,
    load_strategy_state, save_strategy_state,
)

from tests.strategy_setup import build_strategy


class TestSizing:

    def test_next_rung(self):
        assert calculate_next_rung(Decimal("1000"), Decimal("70")) == Decimal("700")
        assert calculate_next_rung(Decimal("490"), Decimal("70")) == Decimal("343")

    def test_target_supply(self):
        assert calculate_target_supply(Decimal("1190"), Decimal("70")) == Decimal("1700")

    def test_target_supply_zero_rate(self):
        with pytest.raises(ZeroBorrowRateError):
            calculate_target_supply(Decimal("1"), Decimal("0"))


class TestLeverage:

    def test_reference_ladder(self, setup):
        setup.strategy.positions.leverage(Decimal("1000"))
        position = setup.strategy.account_position()
        assert position.supplied == Decimal("2190")
        assert position.borrowed == Decimal("1533")
        assert setup.strategy.idle_assets() == Decimal("343")
        assert setup.strategy.reserves == Decimal("343")
        assert setup.strategy.available_assets() == Decimal("0")
        assert setup.strategy.total_managed_assets() == Decimal("1000")

    def test_below_min_leverage_is_noop(self, setup):
        log_length = len(setup.ledger.transaction_log)
        setup.strategy.positions.leverage(Decimal("0.5"))
        assert setup.strategy.account_position().supplied == Decimal("0")
        assert len(setup.ledger.transaction_log) == log_length

    def test_depth_zero_keeps_everything_in_reserves(self):
        s = build_strategy(borrow_depth=0, funded=Decimal("1000"))
        s.strategy.positions.leverage(Decimal("1000"))
        assert s.strategy.account_position().supplied == Decimal("0")
        assert s.strategy.reserves == Decimal("1000")

    def test_zero_rate_supplies_once(self):
        s = build_strategy(borrow_rate=Decimal("0"), funded=Decimal("1000"))
        s.strategy.positions.leverage(Decimal("1000"))
        position = s.strategy.account_position()
        assert position.supplied == Decimal("1000")
        assert position.borrowed == Decimal("0")
        assert s.strategy.reserves == Decimal("0")

    def test_fractional_rate(self):
        s = build_strategy(borrow_rate=Decimal("33"), borrow_depth=2, funded=Decimal("1"))
        s.strategy.positions.leverage(Decimal("1"))
        position = s.strategy.account_position()
        assert position.supplied == Decimal("1.33")
        assert position.borrowed == Decimal("0.4389")


class TestDeleverage:

    def test_full_unwind(self, setup):
        setup.strategy.positions.leverage(Decimal("1000"))
        setup.strategy.positions.deleverage()
        position = setup.strategy.account_position()
        assert position.supplied == Decimal("0")
        assert position.borrowed == Decimal("0")
        assert setup.strategy.reserves == Decimal("0")
        assert setup.strategy.idle_assets() == Decimal("1000")

    def test_unwind_steps(self, setup):
        setup.strategy.positions.leverage(Decimal("1000"))
        setup.strategy.positions.deleverage()
        repays = [
            tx.moves[0].quantity for tx in setup.ledger.transaction_log
            if tx.origin.event_type == "REPAY"
        ]
        withdrawals = [
            tx.moves[1].quantity for tx in setup.ledger.transaction_log
            if tx.origin.event_type == "WITHDRAW"
        ]
        assert repays == [Decimal("343"), Decimal("490"), Decimal("700")]
        assert withdrawals == [Decimal("490"), Decimal("700"), Decimal("1000")]

    def test_empty_position_is_idempotent(self, setup):
        setup.strategy.positions.deleverage()
        setup.strategy.positions.deleverage()
        assert setup.strategy.idle_assets() == Decimal("1000")

    def test_zero_rate_with_debt(self, setup):
        setup.strategy.positions.leverage(Decimal("1000"))
        state = load_strategy_state(setup.ledger, "STRAT_WANT")
        save_strategy_state(setup.ledger, "STRAT_WANT", replace(state, borrow_rate=Decimal("0")), "TEST")
        with pytest.raises(ZeroBorrowRateError):
            setup.strategy.positions.deleverage()

    def test_stalled_unwind(self, setup):
        setup.strategy.positions.leverage(Decimal("1000"))
        setup.ledger.set_balance(setup.strategy.wallet, "WANT", Decimal("0"))
        with pytest.raises(DeleverageStalled, match="deleverage_once"):
            setup.strategy.positions.deleverage()


class TestDeleverageOnce:

    def test_single_round(self, setup):
        setup.strategy.positions.leverage(Decimal("1000"))
        setup.strategy.positions.deleverage_once(Decimal("70"))
        position = setup.strategy.account_position()
        assert position.borrowed == Decimal("1190")
        assert position.supplied == Decimal("1700")
        assert setup.strategy.idle_assets() == Decimal("490")
        assert setup.strategy.reserves == Decimal("490")
        assert setup.strategy.state.borrow_rate == Decimal("70")
        assert len(setup.strategy.events("STRAT_REBALANCE")) == 1

    def test_override_above_max(self, setup):
        with pytest.raises(ConfigurationError):
            setup.strategy.positions.deleverage_once(Decimal("76"))

    def test_zero_override(self, setup):
        with pytest.raises(ZeroBorrowRateError):
            setup.strategy.positions.deleverage_once(Decimal("0"))
