"""
fees.py - Harvest and withdrawal fees

Harvest fee:
    fee_total      = round_down(harvested × 45 / 1000)
    call_fee       = round_down(fee_total × 111 / 1000)
    protocol_fee   = round_down(fee_total × 777 / 1000)
    strategist_fee = round_down(fee_total × 112 / 1000)

compute_fee_payout builds the three shares as one pending transaction and
FeeDistributor executes it. Rounding dust and any share of the denominator
not assigned to a recipient stay with the strategy.

Withdrawal fee:
    fee = round_down(served × rate / 10000), rate ≤ cap (50)
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Tuple

from ..core import (
    LedgerView, Move, Unit, PendingTransaction, ConfigurationError, StrategyError,
    TransactionOrigin, OriginType,
    ExecuteResult, build_transaction, empty_pending_transaction,
)
from ..ledger import Ledger
from .access import StrategyRoles
from .state import load_strategy_state


@dataclass(frozen=True, slots=True)
class FeeSplit:
    """Harvest fee rate and how it is shared among the three recipients."""
    call_fee: Decimal = Decimal("111")
    protocol_fee: Decimal = Decimal("777")
    strategist_fee: Decimal = Decimal("112")
    denominator: Decimal = Decimal("1000")
    harvest_fee_numerator: Decimal = Decimal("45")
    harvest_fee_denominator: Decimal = Decimal("1000")

    def __post_init__(self):
        for name in ('call_fee', 'protocol_fee', 'strategist_fee', 'denominator',
                     'harvest_fee_numerator', 'harvest_fee_denominator'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
            if getattr(self, name) < 0:
                raise ConfigurationError(f"FeeSplit.{name} cannot be negative")
        if self.denominator == 0 or self.harvest_fee_denominator == 0:
            raise ConfigurationError("FeeSplit denominators must be positive")
        if self.call_fee + self.protocol_fee + self.strategist_fee > self.denominator:
            raise ConfigurationError(
                f"fee shares {self.call_fee}+{self.protocol_fee}+{self.strategist_fee} "
                f"exceed denominator {self.denominator}"
            )
        if self.harvest_fee_numerator > self.harvest_fee_denominator:
            raise ConfigurationError("harvest fee cannot exceed 100%")


@dataclass(frozen=True, slots=True)
class WithdrawalFeeConfig:
    rate: Decimal = Decimal("10")
    denominator: Decimal = Decimal("10000")
    cap: Decimal = Decimal("50")

    def __post_init__(self):
        for name in ('rate', 'denominator', 'cap'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.denominator <= 0:
            raise ConfigurationError("withdrawal fee denominator must be positive")
        if not (Decimal("0") <= self.rate <= self.cap):
            raise ConfigurationError(f"withdrawal fee {self.rate} outside [0, {self.cap}]")


@dataclass(frozen=True, slots=True)
class FeeCharge:
    """Result of one fee charge. retained = harvested - paid out."""
    fee_total: Decimal
    call_fee: Decimal
    protocol_fee: Decimal
    strategist_fee: Decimal
    retained: Decimal

    @property
    def paid(self) -> Decimal:
        return self.call_fee + self.protocol_fee + self.strategist_fee


def calculate_fee_charge(harvested: Decimal, split: FeeSplit, unit: Unit) -> FeeCharge:
    """
    Split a harvest into fees. PURE FUNCTION; `unit` only supplies rounding.

    Example:
        calculate_fee_charge(Decimal("1000"), FeeSplit(), want_unit)
        # fee_total=45, call_fee=4.995, protocol_fee=34.965, strategist_fee=5.04
    """
    fee_total = unit.round(harvested * split.harvest_fee_numerator / split.harvest_fee_denominator)
    call_fee = unit.round(fee_total * split.call_fee / split.denominator)
    protocol_fee = unit.round(fee_total * split.protocol_fee / split.denominator)
    strategist_fee = unit.round(fee_total * split.strategist_fee / split.denominator)
    return FeeCharge(
        fee_total=fee_total,
        call_fee=call_fee,
        protocol_fee=protocol_fee,
        strategist_fee=strategist_fee,
        retained=harvested - call_fee - protocol_fee - strategist_fee,
    )


def calculate_withdrawal_fee(served: Decimal, rate: Decimal, config: WithdrawalFeeConfig, unit: Unit) -> Decimal:
    return unit.round(served * min(rate, config.cap) / config.denominator)


def compute_fee_payout(
    view: LedgerView,
    symbol: str,
    roles: StrategyRoles,
    split: FeeSplit,
    harvested: Decimal,
    call_fee_recipient: str,
) -> Tuple[FeeCharge, PendingTransaction]:
    """
    Build the harvest fee payout for strategy `symbol`. Does not execute it.

    Zero shares and shares whose recipient is the strategy wallet itself are
    skipped. With nothing to pay the pending transaction is empty.

    Returns:
        (charge, pending) where pending moves the shares out of the wallet
    """
    state = load_strategy_state(view, symbol)
    charge = calculate_fee_charge(harvested, split, view.get_unit(state.want))

    moves: List[Move] = []
    for quantity, recipient, contract_id in (
        (charge.call_fee, call_fee_recipient, "harvest_call_fee"),
        (charge.protocol_fee, roles.protocol_fee_recipient, "harvest_protocol_fee"),
        (charge.strategist_fee, roles.strategist, "harvest_strategist_fee"),
    ):
        if quantity > 0 and recipient != state.wallet:
            moves.append(Move(quantity, state.want, state.wallet, recipient, contract_id))

    if not moves:
        return charge, empty_pending_transaction(view)
    return charge, build_transaction(
        view, moves,
        origin=TransactionOrigin(OriginType.STRATEGY, symbol, state.want, "CHARGE_FEES"),
    )


class FeeDistributor:

    def __init__(self, ledger: Ledger, symbol: str, roles: StrategyRoles, split: FeeSplit):
        self.ledger = ledger
        self.symbol = symbol
        self.roles = roles
        self.split = split

    def charge_fees(self, harvested: Decimal, call_fee_recipient: str) -> FeeCharge:
        """
        Pay the harvest fee shares out of the strategy wallet.

        Raises:
            StrategyError: if the ledger rejects the payout
        """
        charge, pending = compute_fee_payout(
            self.ledger, self.symbol, self.roles, self.split, harvested, call_fee_recipient
        )
        if self.ledger.execute(pending) == ExecuteResult.REJECTED:
            raise StrategyError(f"{self.symbol} fee payout rejected by ledger")

        if self.ledger.verbose:
            print(f"[FEES] {self.symbol}: total={charge.fee_total} call={charge.call_fee} "
                  f"protocol={charge.protocol_fee} strategist={charge.strategist_fee}")
        return charge
