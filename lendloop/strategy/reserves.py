"""
reserves.py - ReserveTracker

The reserves buffer is want the strategy holds but keeps out of circulation:
the last borrow of a ladder stays idle so that the next deleverage can start
repaying immediately. Withdrawals and re-leverage only use what lies above it.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal

from ..core import checked_sub
from ..ledger import Ledger
from .state import load_strategy_state, save_strategy_state


class ReserveTracker:
    """Reads and writes the reserves field of a strategy unit."""

    def __init__(self, ledger: Ledger, symbol: str):
        self.ledger = ledger
        self.symbol = symbol

    @property
    def reserves(self) -> Decimal:
        return load_strategy_state(self.ledger, self.symbol).reserves

    def held(self) -> Decimal:
        """Want balance of the strategy wallet."""
        state = load_strategy_state(self.ledger, self.symbol)
        return self.ledger.get_balance(state.wallet, state.want)

    def available(self) -> Decimal:
        """
        Held want above the reserves buffer.

        Raises:
            NegativeAmountError: if reserves exceed the held balance
        """
        state = load_strategy_state(self.ledger, self.symbol)
        held = self.ledger.get_balance(state.wallet, state.want)
        return checked_sub(held, state.reserves, "available want")

    def add(self, amount: Decimal) -> None:
        if amount == 0:
            return
        state = load_strategy_state(self.ledger, self.symbol)
        self._save(state, state.reserves + amount)

    def set(self, amount: Decimal) -> None:
        state = load_strategy_state(self.ledger, self.symbol)
        if state.reserves == amount:
            return
        self._save(state, amount)

    def reset(self) -> None:
        self.set(Decimal("0"))

    def _save(self, state, amount: Decimal) -> None:
        save_strategy_state(self.ledger, self.symbol, replace(state, reserves=amount), "RESERVES")
