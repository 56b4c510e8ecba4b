"""
harvest.py - HarvestEngine

Claims reward income on the collateral and debt positions, charges fees on
it and puts the rest back into the ladder. Rewards are paid in want, so the
harvest is measured as the change in the held want balance across the claim.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal

from ..core import ALL, StrategyStateError
from ..ledger import Ledger
from ..markets.rewards_market import RewardsMarket
from .fees import FeeDistributor
from .position import PositionManager
from .state import load_strategy_state, save_strategy_state


class HarvestEngine:

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        positions: PositionManager,
        rewards: RewardsMarket,
        fees: FeeDistributor,
    ):
        self.ledger = ledger
        self.symbol = symbol
        self.positions = positions
        self.rewards = rewards
        self.fees = fees

    def harvest(self, call_fee_recipient: str) -> Decimal:
        """
        Claim, charge fees, re-leverage.

        A harvest that finds nothing is a silent no-op.

        Returns:
            Quantity harvested (before fees)

        Raises:
            StrategyStateError: if the strategy is paused or retired
        """
        state = load_strategy_state(self.ledger, self.symbol)
        if state.is_paused or state.is_retired:
            raise StrategyStateError(f"{self.symbol} cannot harvest while {state.status}")

        before = self.positions.held()
        self.rewards.claim_rewards(
            [state.collateral_token, state.debt_token], ALL, state.wallet, state.wallet
        )
        harvested = self.positions.held() - before
        if harvested <= 0:
            return Decimal("0")

        charge = self.fees.charge_fees(harvested, call_fee_recipient)
        self.positions.leverage(self.positions.reserves.available())

        state = load_strategy_state(self.ledger, self.symbol)
        save_strategy_state(
            self.ledger, self.symbol,
            replace(state, last_harvest=self.ledger.current_time),
            "STRAT_HARVEST",
        )
        if self.ledger.verbose:
            print(f"[HARVEST] {self.symbol}: harvested={harvested} fees={charge.paid}")
        return harvested

    def rewards_available(self) -> Decimal:
        state = load_strategy_state(self.ledger, self.symbol)
        return self.rewards.pending_rewards([state.collateral_token, state.debt_token], state.wallet)

    def call_reward(self) -> Decimal:
        """Call fee a harvest would pay right now."""
        state = load_strategy_state(self.ledger, self.symbol)
        split = self.fees.split
        pending = self.rewards_available()
        unit = self.ledger.get_unit(state.want)
        fee_total = unit.round(pending * split.harvest_fee_numerator / split.harvest_fee_denominator)
        return unit.round(fee_total * split.call_fee / split.denominator)
