"""
rewards_market.py - Ledger-backed Incentives Controller

Emits reward income to holders of tracked position tokens (collateral
receipts and debt tokens), in the manner of Aave's incentives controller:

    pending(account, token) = accrued + balance × emission_per_second × elapsed

The lending market calls checkpoint() before every balance change of a
tracked token, so accrual always uses the balance that was actually held
over each interval. Claims are paid in the reward asset from a treasury
wallet; a treasury that cannot cover a claim makes the claim fail.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from ..core import (
    Move, Unit, UnitStateChange, TransactionOrigin, OriginType,
    ExecuteResult, ExternalMarketFailure, Exact, All, Amount,
    UNIT_TYPE_REWARDS_MARKET,
    build_transaction, stateful_unit,
)
from ..ledger import Ledger


def create_rewards_market_unit(
    symbol: str,
    name: str,
    reward_asset: str,
    treasury_wallet: str,
    emission_per_second: Decimal,
) -> Unit:
    """
    Create the state-carrying unit for an incentives controller.

    Args:
        symbol: Unit symbol (e.g. "INCENTIVES")
        name: Human-readable name
        reward_asset: Unit paid out on claim
        treasury_wallet: Wallet the rewards are paid from
        emission_per_second: Reward per unit of tracked balance per second
    """
    emission_per_second = Decimal(str(emission_per_second))
    if emission_per_second < 0:
        raise ValueError(f"emission_per_second must be >= 0, got {emission_per_second}")
    return stateful_unit(symbol, name, UNIT_TYPE_REWARDS_MARKET, {
        'reward_asset': reward_asset,
        'treasury_wallet': treasury_wallet,
        'emission_per_second': emission_per_second,
        'accrued': {},
        'checkpoints': {},
    })


def calculate_pending(
    accrued: Decimal,
    balance: Decimal,
    emission_per_second: Decimal,
    last_checkpoint: Optional[datetime],
    now: datetime,
) -> Decimal:
    """
    Rewards owed on one (account, token) pair.

    PURE FUNCTION. A pair with no checkpoint has accrued nothing beyond
    `accrued`.
    """
    if last_checkpoint is None or now <= last_checkpoint or balance <= 0:
        return accrued
    elapsed = Decimal(str((now - last_checkpoint).total_seconds()))
    return accrued + balance * emission_per_second * elapsed


class RewardsMarket:
    """
    Operations on an incentives controller registered in a ledger.

    Example:
        rewards = open_rewards_market(ledger, "INCENTIVES", "WANT", "incentives_treasury",
                                      emission_per_second=Decimal("0.000001"))
        market = open_lending_market(ledger, "AAVE", "aave_pool", incentives=rewards)
        ...
        claimed = rewards.claim_rewards(["aWANT", "variableDebtWANT"], ALL, "strategy", "strategy")
    """

    def __init__(self, ledger: Ledger, symbol: str):
        if ledger.get_unit(symbol).unit_type != UNIT_TYPE_REWARDS_MARKET:
            raise ValueError(f"{symbol} is not a rewards market unit")
        self.ledger = ledger
        self.symbol = symbol

    @property
    def reward_asset(self) -> str:
        return self.ledger.get_unit_state(self.symbol)['reward_asset']

    def set_emission(self, emission_per_second: Decimal) -> None:
        """
        Change the emission rate. Callers should checkpoint holders first if
        accrual up to now must use the old rate.
        """
        emission_per_second = Decimal(str(emission_per_second))
        if emission_per_second < 0:
            raise ValueError(f"emission_per_second must be >= 0, got {emission_per_second}")
        state = self.ledger.get_unit_state(self.symbol)
        self._commit([], "SET_EMISSION", state, {**state, 'emission_per_second': emission_per_second})

    def pending_rewards(self, assets: Iterable[str], account: str) -> Decimal:
        """Claimable rewards for `account` across `assets`, rounded to the reward unit."""
        state = self.ledger.get_unit_state(self.symbol)
        total = sum(
            (self._pending(state, account, asset) for asset in assets),
            Decimal("0"),
        )
        return self.ledger.get_unit(state['reward_asset']).round(total)

    def checkpoint(self, account: str, asset: str) -> None:
        """Fold accrual up to now into `accrued` for one (account, token) pair."""
        state = self.ledger.get_unit_state(self.symbol)
        new_state = self._checkpointed(state, account, [asset])
        self._commit([], "CHECKPOINT", state, new_state)

    def claim_rewards(
        self,
        assets: Iterable[str],
        amount: Amount,
        recipient: str,
        account: str,
    ) -> Decimal:
        """
        Pay `account`'s rewards on `assets` to `recipient`.

        ALL claims everything pending; Exact(n) claims at most n.

        Returns:
            Quantity paid (0 if nothing was pending)
        """
        assets = list(assets)
        state = self.ledger.get_unit_state(self.symbol)
        reward_unit = self.ledger.get_unit(state['reward_asset'])

        pending = self.pending_rewards(assets, account)
        if isinstance(amount, All):
            claim = pending
        elif isinstance(amount, Exact):
            claim = min(reward_unit.round(amount.quantity), pending)
        else:
            raise ExternalMarketFailure(f"claim needs Exact or ALL, got {amount!r}")
        if claim <= 0:
            return Decimal("0")

        treasury = state['treasury_wallet']
        if self.ledger.get_balance(treasury, state['reward_asset']) < claim:
            raise ExternalMarketFailure(
                f"{self.symbol} treasury cannot cover claim of {claim} {state['reward_asset']}"
            )

        new_state = self._checkpointed(state, account, assets)
        remaining = claim
        accrued = dict(new_state['accrued'].get(account, {}))
        for asset in assets:
            taken = min(accrued.get(asset, Decimal("0")), remaining)
            accrued[asset] = accrued.get(asset, Decimal("0")) - taken
            remaining -= taken
        new_state['accrued'] = {**new_state['accrued'], account: accrued}

        self._commit(
            [Move(claim, state['reward_asset'], treasury, recipient, "claim_rewards")],
            "CLAIM", state, new_state,
        )
        return claim

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _pending(self, state: Dict[str, Any], account: str, asset: str) -> Decimal:
        accrued = state['accrued'].get(account, {}).get(asset, Decimal("0"))
        last = state['checkpoints'].get(account, {}).get(asset)
        balance = self.ledger.get_balance(account, asset) if asset in self.ledger.units else Decimal("0")
        return calculate_pending(
            accrued, balance, state['emission_per_second'], last, self.ledger.current_time
        )

    def _checkpointed(self, state: Dict[str, Any], account: str, assets: Iterable[str]) -> Dict[str, Any]:
        now = self.ledger.current_time
        accrued = dict(state['accrued'].get(account, {}))
        checkpoints = dict(state['checkpoints'].get(account, {}))
        for asset in assets:
            accrued[asset] = self._pending(state, account, asset)
            checkpoints[asset] = now
        return {
            **state,
            'accrued': {**state['accrued'], account: accrued},
            'checkpoints': {**state['checkpoints'], account: checkpoints},
        }

    def _commit(self, moves, event_type: str, old_state: Dict[str, Any], new_state: Dict[str, Any]) -> None:
        pending = build_transaction(
            self.ledger, moves,
            [UnitStateChange(self.symbol, old_state, new_state)],
            origin=TransactionOrigin(OriginType.EXTERNAL, self.symbol, old_state['reward_asset'], event_type),
        )
        if self.ledger.execute(pending) == ExecuteResult.REJECTED:
            raise ExternalMarketFailure(f"{self.symbol} {event_type} rejected by ledger")


def open_rewards_market(
    ledger: Ledger,
    symbol: str,
    reward_asset: str,
    treasury_wallet: str,
    emission_per_second: Decimal = Decimal("0"),
    name: Optional[str] = None,
) -> RewardsMarket:
    """Register an incentives controller unit and its treasury wallet."""
    ledger.register_unit(create_rewards_market_unit(
        symbol, name or symbol, reward_asset, treasury_wallet, emission_per_second
    ))
    if not ledger.is_registered(treasury_wallet):
        ledger.register_wallet(treasury_wallet)
    return RewardsMarket(ledger, symbol)
