"""
rebalance.py - RebalanceController

Changes the ladder parameters: unwind under the old ones, store the new
ones, rebuild with the whole held balance.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal

from ..core import ConfigurationError, StrategyStateError
from ..ledger import Ledger
from .position import PositionManager
from .state import MAX_BORROW_DEPTH, load_strategy_state, save_strategy_state, record_event


def validate_ladder_params(borrow_rate: Decimal, borrow_depth: int, borrow_rate_max: Decimal) -> None:
    """
    Raises:
        ConfigurationError: unless 0 <= rate <= rate_max and 0 <= depth <= MAX_BORROW_DEPTH
    """
    if borrow_rate < 0 or borrow_rate > borrow_rate_max:
        raise ConfigurationError(f"borrow rate {borrow_rate} outside [0, {borrow_rate_max}]")
    if borrow_depth < 0 or borrow_depth > MAX_BORROW_DEPTH:
        raise ConfigurationError(f"borrow depth {borrow_depth} outside [0, {MAX_BORROW_DEPTH}]")


class RebalanceController:

    def __init__(self, ledger: Ledger, symbol: str, positions: PositionManager):
        self.ledger = ledger
        self.symbol = symbol
        self.positions = positions

    def rebalance(self, new_rate: Decimal, new_depth: int) -> None:
        """
        Rebuild the ladder at `new_rate` percent and `new_depth` rounds.

        Raises:
            ConfigurationError: if the new parameters are out of bounds
            StrategyStateError: if the strategy is paused
        """
        new_rate = Decimal(str(new_rate))
        new_depth = int(new_depth)
        state = load_strategy_state(self.ledger, self.symbol)
        validate_ladder_params(new_rate, new_depth, state.borrow_rate_max)
        if state.is_paused:
            raise StrategyStateError(f"{self.symbol} is paused; unpause before rebalancing")

        self.positions.deleverage()

        state = load_strategy_state(self.ledger, self.symbol)
        save_strategy_state(
            self.ledger, self.symbol,
            replace(state, borrow_rate=new_rate, borrow_depth=new_depth),
            "SET_LADDER_PARAMS",
        )
        self.positions.leverage(self.positions.held())
        record_event(self.ledger, self.symbol, "STRAT_REBALANCE")

        if self.ledger.verbose:
            print(f"[REBALANCE] {self.symbol}: rate={new_rate} depth={new_depth}")
