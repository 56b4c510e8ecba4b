"""
position.py - PositionManager

Builds and unwinds the supply/borrow ladder against the lending market.

Leverage, for borrow_rate r (percent) and borrow_depth d:

    round 1: supply a,          borrow a·r/100
    round 2: supply a·r/100,    borrow a·(r/100)²
    ...
    round d: supply a·(r/100)^(d-1), borrow a·(r/100)^d   -> kept as reserves

Deleverage repays with whatever want is held, then withdraws collateral down
to borrowed·100/r, which keeps the position at the configured rate while it
shrinks. Once the held balance covers the debt, the rest is closed in one
repay-all / withdraw-all step.

Every step re-reads the market position; nothing is cached between calls.
"""

from __future__ import annotations
from decimal import Decimal

from ..core import (
    Exact, ALL, checked_sub,
    ConfigurationError, ZeroBorrowRateError, DeleverageStalled,
)
from ..ledger import Ledger
from ..markets.lending_market import LendingMarket, AccountPosition, INTEREST_RATE_MODE_VARIABLE
from .reserves import ReserveTracker
from .state import load_strategy_state, record_event


MAX_DELEVERAGE_ROUNDS = 64


def calculate_next_rung(amount: Decimal, borrow_rate: Decimal) -> Decimal:
    """Unrounded borrow for one rung: amount × rate / 100."""
    return amount * borrow_rate / Decimal("100")


def calculate_target_supply(borrowed: Decimal, borrow_rate: Decimal) -> Decimal:
    """
    Collateral that keeps `borrowed` at `borrow_rate` percent.

    Raises:
        ZeroBorrowRateError: if borrow_rate is 0
    """
    if borrow_rate == 0:
        raise ZeroBorrowRateError(
            f"cannot size collateral for debt {borrowed} at a zero borrow rate"
        )
    return borrowed * Decimal("100") / borrow_rate


class PositionManager:
    """
    Ladder operations for one strategy.

    Example:
        positions = PositionManager(ledger, "STRAT", market)
        positions.leverage(Decimal("1000"))
        positions.deleverage()
    """

    def __init__(self, ledger: Ledger, symbol: str, market: LendingMarket):
        self.ledger = ledger
        self.symbol = symbol
        self.market = market
        self.reserves = ReserveTracker(ledger, symbol)

    def position(self) -> AccountPosition:
        state = load_strategy_state(self.ledger, self.symbol)
        return self.market.get_account_position(state.want, state.wallet)

    def held(self) -> Decimal:
        return self.reserves.held()

    def leverage(self, amount: Decimal) -> None:
        """
        Supply `amount` and borrow back against it for borrow_depth rounds.

        The last borrow (or the whole amount when depth is 0) is added to the
        reserves buffer. Amounts below min_leverage are left idle.
        """
        state = load_strategy_state(self.ledger, self.symbol)
        if amount < state.min_leverage:
            return
        unit = self.ledger.get_unit(state.want)
        amount = unit.round(amount)

        for _ in range(state.borrow_depth):
            self.market.supply(state.want, Exact(amount), state.wallet)
            amount = unit.round(calculate_next_rung(amount, state.borrow_rate))
            if amount > 0:
                self.market.borrow(state.want, Exact(amount), INTEREST_RATE_MODE_VARIABLE, state.wallet)
            else:
                break

        self.reserves.add(amount)
        if self.ledger.verbose:
            position = self.position()
            print(f"[LEVERAGE] {self.symbol}: supplied={position.supplied} borrowed={position.borrowed} "
                  f"reserves={self.reserves.reserves}")

    def deleverage(self) -> None:
        """
        Unwind the whole ladder and reset reserves to 0.

        Raises:
            ZeroBorrowRateError: if debt remains and borrow_rate is 0
            DeleverageStalled: if the loop has not converged after
                MAX_DELEVERAGE_ROUNDS rounds
        """
        state = load_strategy_state(self.ledger, self.symbol)
        unit = self.ledger.get_unit(state.want)
        held = self.held()
        position = self.position()

        rounds = 0
        while held < position.borrowed:
            if rounds >= MAX_DELEVERAGE_ROUNDS:
                raise DeleverageStalled(
                    f"{self.symbol}: debt {position.borrowed} still above held {held} "
                    f"after {rounds} rounds; use deleverage_once"
                )
            rounds += 1
            self.market.repay(state.want, Exact(held), INTEREST_RATE_MODE_VARIABLE, state.wallet)
            position = self.position()
            target = unit.round(calculate_target_supply(position.borrowed, state.borrow_rate))
            excess = checked_sub(position.supplied, target, "deleverage withdrawal")
            self.market.withdraw(state.want, Exact(excess), state.wallet)
            held = self.held()
            position = self.position()

        if position.borrowed > 0:
            self.market.repay(state.want, ALL, INTEREST_RATE_MODE_VARIABLE, state.wallet)
        if position.supplied > 0:
            self.market.withdraw(state.want, ALL, state.wallet)
        self.reserves.reset()

        if self.ledger.verbose:
            print(f"[DELEVERAGE] {self.symbol}: closed in {rounds} rounds, held={self.held()}")

    def deleverage_once(self, override_rate: Decimal) -> None:
        """
        One manual unwind round sized with `override_rate`.

        Repays with all held want, withdraws collateral down to
        borrowed × 100 / override_rate and sets reserves to the resulting
        held balance. The stored borrow_rate is not changed.

        Raises:
            ConfigurationError: if override_rate exceeds borrow_rate_max
            ZeroBorrowRateError: if override_rate is 0
        """
        override_rate = Decimal(str(override_rate))
        state = load_strategy_state(self.ledger, self.symbol)
        if override_rate > state.borrow_rate_max:
            raise ConfigurationError(
                f"override rate {override_rate} above borrow_rate_max {state.borrow_rate_max}"
            )
        if override_rate <= 0:
            raise ZeroBorrowRateError(f"override rate must be positive, got {override_rate}")
        unit = self.ledger.get_unit(state.want)

        self.market.repay(state.want, Exact(self.held()), INTEREST_RATE_MODE_VARIABLE, state.wallet)
        position = self.position()
        target = unit.round(calculate_target_supply(position.borrowed, override_rate))
        excess = checked_sub(position.supplied, target, "deleverage_once withdrawal")
        self.market.withdraw(state.want, Exact(excess), state.wallet)

        self.reserves.set(self.held())
        record_event(self.ledger, self.symbol, "STRAT_REBALANCE")
        if self.ledger.verbose:
            position = self.position()
            print(f"[DELEVERAGE_ONCE] {self.symbol}: rate={override_rate} supplied={position.supplied} "
                  f"borrowed={position.borrowed}")
