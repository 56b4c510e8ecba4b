"""
Action Atomicity Conformance Tests

INVARIANT: Every strategy and vault entry point is all-or-nothing.

    ∀ entry point E, ledger state L:
        E raises ⟹ state after == L   (balances, unit states, log)

A ladder that fails half way leaves no supplied collateral, no debt and no
partial strategy state behind. A rollback on a shared ledger never erases
what another strategy committed on it from another thread.
"""

import pytest
import threading
from dataclasses import replace
from decimal import Decimal

from lendloop import (
    LendingMarket, ExternalMarketFailure, ZeroBorrowRateError, StrategyStateError,
    StrategyConfig, save_strategy_state, open_vault, create_leveraged_strategy,
)

from tests.conftest import compare_ledger_states
from tests.strategy_setup import ROLES, build_strategy


class FlakyLendingMarket(LendingMarket):
    """Lending market whose Nth borrow fails."""

    fail_on_borrow = 3

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.borrows = 0

    def borrow(self, asset, amount, mode, account):
        self.borrows += 1
        if self.borrows == self.fail_on_borrow:
            raise ExternalMarketFailure(f"borrow #{self.borrows} refused")
        return super().borrow(asset, amount, mode, account)


class GatedLendingMarket(LendingMarket):
    """Lending market that parks the gated account's first borrow, then refuses it."""

    gated_account = None

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def borrow(self, asset, amount, mode, account):
        if account == self.gated_account:
            self.entered.set()
            self.release.wait(5)
            raise ExternalMarketFailure(f"borrow for {account} refused")
        return super().borrow(asset, amount, mode, account)


def assert_unchanged(ledger, snapshot):
    diff = compare_ledger_states(ledger, snapshot, tolerance=Decimal("0"))
    assert diff["equal"], diff
    assert len(ledger.transaction_log) == len(snapshot.transaction_log)


class TestLadderRollback:

    def test_first_borrow_over_ltv(self):
        """ltv 0.6 cannot carry a 70% first rung: the supply is undone too."""
        s = build_strategy(funded=Decimal("1000"), ltv=Decimal("0.6"))
        snapshot = s.ledger.clone()

        with pytest.raises(ExternalMarketFailure, match="ltv"):
            s.strategy.deposit("anyone")

        assert_unchanged(s.ledger, snapshot)
        assert s.strategy.account_position().supplied == Decimal("0")
        assert s.strategy.idle_assets() == Decimal("1000")

    def test_third_borrow_fails(self):
        s = build_strategy(funded=Decimal("1000"), market_cls=FlakyLendingMarket)
        snapshot = s.ledger.clone()

        with pytest.raises(ExternalMarketFailure, match="#3"):
            s.strategy.deposit("anyone")

        assert_unchanged(s.ledger, snapshot)
        assert s.strategy.reserves == Decimal("0")
        assert s.strategy.events("STRAT_DEPOSIT") == []

    def test_failed_releverage_undoes_withdrawal(self):
        s = build_strategy(funded=Decimal("1000"), market_cls=FlakyLendingMarket)
        s.market.fail_on_borrow = 4
        s.strategy.deposit("anyone")
        snapshot = s.ledger.clone()

        # withdraw unwinds, pays the vault, then fails re-leveraging
        with pytest.raises(ExternalMarketFailure):
            s.strategy.withdraw("vault", Decimal("100"), requester="alice")

        assert_unchanged(s.ledger, snapshot)
        assert s.ledger.get_balance("vault", "WANT") == Decimal("0")


class TestStateRollback:

    def test_zero_rate_panic_rolls_back(self, leveraged):
        state = leveraged.strategy.state
        save_strategy_state(
            leveraged.ledger, leveraged.strategy.symbol,
            replace(state, borrow_rate=Decimal("0")), "SET_LADDER_PARAMS",
        )
        snapshot = leveraged.ledger.clone()

        with pytest.raises(ZeroBorrowRateError):
            leveraged.strategy.panic("keeper")

        assert_unchanged(leveraged.ledger, snapshot)
        assert not leveraged.strategy.state.is_paused

    def test_rejected_rebalance_keeps_parameters(self, leveraged):
        snapshot = leveraged.ledger.clone()
        leveraged.market.set_frozen("WANT", True)

        with pytest.raises(ExternalMarketFailure, match="frozen"):
            leveraged.strategy.rebalance("owner", Decimal("50"), 2)

        leveraged.market.set_frozen("WANT", False)
        assert leveraged.strategy.state.borrow_rate == Decimal("70")
        assert leveraged.strategy.account_position().borrowed == Decimal("1533")
        assert leveraged.strategy.reserves == snapshot.get_unit_state("STRAT_WANT")["reserves"]


class TestVaultRollback:

    def test_deposit_into_paused_strategy(self):
        s = build_strategy()
        vault = open_vault(s.ledger, s.strategy)
        s.ledger.register_wallet("alice")
        s.ledger.set_balance("alice", "WANT", Decimal("500"))
        s.strategy.pause("owner")
        snapshot = s.ledger.clone()

        with pytest.raises(StrategyStateError):
            vault.deposit("alice", Decimal("500"))

        assert_unchanged(s.ledger, snapshot)
        assert vault.total_shares() == Decimal("0")


class TestSharedLedgerRollback:

    def test_rollback_keeps_other_strategy_work(self):
        s = build_strategy(funded=Decimal("1000"), market_cls=GatedLendingMarket)
        other = create_leveraged_strategy(
            s.ledger, "STRAT_B",
            StrategyConfig(want="WANT", borrow_rate=Decimal("70"), borrow_rate_max=Decimal("75"),
                           borrow_depth=3, min_leverage=Decimal("1")),
            ROLES, s.market, s.rewards,
        )
        s.ledger.set_balance(other.wallet, "WANT", Decimal("1000"))
        s.market.gated_account = s.strategy.wallet
        errors = []

        def deposit_first():
            try:
                s.strategy.deposit("anyone")
            except ExternalMarketFailure as e:
                errors.append(e)

        first = threading.Thread(target=deposit_first)
        second = threading.Thread(target=other.deposit, args=("anyone",))
        first.start()
        assert s.market.entered.wait(5)

        # the second deposit waits for the first action to finish
        second.start()
        second.join(0.2)
        assert second.is_alive()

        s.market.release.set()
        first.join(5)
        second.join(5)

        assert len(errors) == 1
        assert other.account_position().supplied == Decimal("2190")
        assert other.account_position().borrowed == Decimal("1533")
        assert s.strategy.account_position().supplied == Decimal("0")
        assert s.strategy.idle_assets() == Decimal("1000")
