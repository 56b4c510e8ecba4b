"""
lifecycle.py - LifecycleController

    ACTIVE --pause/panic--> PAUSED --unpause--> ACTIVE
    ACTIVE|PAUSED --retire--> RETIRED (terminal)

Pausing unwinds the ladder and revokes the market's approval to pull want,
so a paused strategy holds its whole balance idle.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal

from ..core import Move, StrategyError, StrategyStateError, TransactionOrigin, OriginType, ExecuteResult, build_transaction
from ..ledger import Ledger
from ..markets.lending_market import LendingMarket
from .access import StrategyRoles
from .position import PositionManager
from .state import STATUS_ACTIVE, STATUS_PAUSED, STATUS_RETIRED, load_strategy_state, save_strategy_state


class LifecycleController:

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        positions: PositionManager,
        market: LendingMarket,
        roles: StrategyRoles,
    ):
        self.ledger = ledger
        self.symbol = symbol
        self.positions = positions
        self.market = market
        self.roles = roles

    def pause(self) -> None:
        """Unwind, revoke approvals, mark PAUSED. No-op if already paused."""
        state = self._live_state()
        if state.is_paused:
            return
        self.positions.deleverage()
        self.market.revoke(state.want, state.wallet)
        state = load_strategy_state(self.ledger, self.symbol)
        save_strategy_state(self.ledger, self.symbol, replace(state, status=STATUS_PAUSED), "PAUSE")
        if self.ledger.verbose:
            print(f"[PAUSE] {self.symbol}: held={self.positions.held()}")

    def unpause(self) -> None:
        """
        Restore approvals, mark ACTIVE and leverage the available balance.

        Raises:
            StrategyStateError: if the strategy is not paused
        """
        state = self._live_state()
        if not state.is_paused:
            raise StrategyStateError(f"{self.symbol} is not paused")
        self.market.approve(state.want, state.wallet)
        save_strategy_state(self.ledger, self.symbol, replace(state, status=STATUS_ACTIVE), "UNPAUSE")
        self.positions.leverage(self.positions.reserves.available())
        if self.ledger.verbose:
            print(f"[UNPAUSE] {self.symbol}")

    def panic(self) -> None:
        """Emergency unwind and pause. Calling it again changes nothing."""
        state = self._live_state()
        if state.is_paused:
            return
        self.positions.deleverage()
        self.pause()
        state = load_strategy_state(self.ledger, self.symbol)
        save_strategy_state(self.ledger, self.symbol, state, "PANIC")
        if self.ledger.verbose:
            print(f"[PANIC] {self.symbol}: position closed")

    def retire(self) -> Decimal:
        """
        Unwind and hand the whole balance to the vault. Terminal.

        Returns:
            Quantity sent to the vault
        """
        state = self._live_state()
        self.positions.deleverage()
        held = self.positions.held()
        if held > 0:
            pending = build_transaction(
                self.ledger,
                [Move(held, state.want, state.wallet, self.roles.vault, "retire_strategy")],
                origin=TransactionOrigin(OriginType.STRATEGY, self.symbol, state.want, "RETIRE_TRANSFER"),
            )
            if self.ledger.execute(pending) == ExecuteResult.REJECTED:
                raise StrategyError(f"{self.symbol} retirement transfer rejected by ledger")
        self.market.revoke(state.want, state.wallet)
        state = load_strategy_state(self.ledger, self.symbol)
        save_strategy_state(
            self.ledger, self.symbol,
            replace(state, status=STATUS_RETIRED, reserves=Decimal("0")),
            "RETIRE",
        )
        if self.ledger.verbose:
            print(f"[RETIRE] {self.symbol}: sent {held} {state.want} to {self.roles.vault}")
        return held

    def _live_state(self):
        state = load_strategy_state(self.ledger, self.symbol)
        if state.is_retired:
            raise StrategyStateError(f"{self.symbol} is retired")
        return state
