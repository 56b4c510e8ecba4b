"""
state.py - Leveraged Strategy State

The strategy keeps all of its bookkeeping on one ledger unit, so a rollback of
the ledger rolls back the strategy too. This module follows the load / pure
function / write-back pattern:

1. FROZEN DATACLASS (explicit input):
   - StrategyState: immutable snapshot of the strategy unit's state

2. ADAPTER FUNCTIONS:
   - load_strategy_state(): the only reader of the raw state dict
   - to_state_dict(): inverse of load_strategy_state()
   - save_strategy_state(): the only writer; every save is a logged
     transaction whose origin carries the event type

Components never cache a StrategyState across market calls; they load it,
act, and save a new instance built with dataclasses.replace().
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..core import (
    LedgerView, Move, Unit, UnitStateChange, TransactionOrigin, OriginType,
    ExecuteResult, StrategyError,
    UNIT_TYPE_LEVERAGED_STRATEGY,
    build_transaction, stateful_unit,
)
from ..ledger import Ledger


MAX_BORROW_DEPTH = 10

STATUS_ACTIVE = "ACTIVE"
STATUS_PAUSED = "PAUSED"
STATUS_RETIRED = "RETIRED"

# Default withdrawal fee in basis points of WithdrawalFeeConfig.denominator.
DEFAULT_WITHDRAWAL_FEE = Decimal("10")


@dataclass(frozen=True, slots=True)
class StrategyState:
    """
    Immutable snapshot of a leveraged strategy.

    Attributes:
        want: Base asset the strategy manages
        wallet: Wallet that holds the strategy's balances and market position
        collateral_token / debt_token: The market's position units for want
        lending_market / rewards_market: Unit symbols of the external markets
        borrow_rate: Percent of each supplied amount borrowed back (0-100)
        borrow_rate_max: Ceiling for borrow_rate
        borrow_depth: Number of supply/borrow rounds (0-MAX_BORROW_DEPTH)
        min_leverage: Amounts below this are left idle
        reserves: Held want set aside for the next deleverage
        last_harvest: Time of the last harvest that found rewards
        status: STATUS_ACTIVE, STATUS_PAUSED or STATUS_RETIRED
        harvest_on_deposit: Harvest from the vault before each deposit
        withdrawal_fee: Current withdrawal fee numerator
    """
    want: str
    wallet: str
    collateral_token: str
    debt_token: str
    lending_market: str
    rewards_market: str
    borrow_rate: Decimal
    borrow_rate_max: Decimal
    borrow_depth: int
    min_leverage: Decimal
    reserves: Decimal = Decimal("0")
    last_harvest: Optional[datetime] = None
    status: str = STATUS_ACTIVE
    harvest_on_deposit: bool = False
    withdrawal_fee: Decimal = DEFAULT_WITHDRAWAL_FEE

    def __post_init__(self):
        for name in ('borrow_rate', 'borrow_rate_max', 'min_leverage', 'reserves', 'withdrawal_fee'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.status not in (STATUS_ACTIVE, STATUS_PAUSED, STATUS_RETIRED):
            raise ValueError(f"Unknown strategy status: {self.status}")

    @property
    def is_paused(self) -> bool:
        return self.status == STATUS_PAUSED

    @property
    def is_retired(self) -> bool:
        return self.status == STATUS_RETIRED


def create_strategy_unit(symbol: str, name: str, state: StrategyState) -> Unit:
    """Create the strategy unit carrying `state`."""
    return stateful_unit(symbol, name, UNIT_TYPE_LEVERAGED_STRATEGY, to_state_dict(state))


def load_strategy_state(view: LedgerView, symbol: str) -> StrategyState:
    """
    Load the strategy unit's state as a StrategyState.

    Example:
        state = load_strategy_state(ledger, "STRAT")
        if state.is_paused:
            ...
    """
    raw = view.get_unit_state(symbol)
    return StrategyState(
        want=raw['want'],
        wallet=raw['wallet'],
        collateral_token=raw['collateral_token'],
        debt_token=raw['debt_token'],
        lending_market=raw['lending_market'],
        rewards_market=raw['rewards_market'],
        borrow_rate=Decimal(str(raw['borrow_rate'])),
        borrow_rate_max=Decimal(str(raw['borrow_rate_max'])),
        borrow_depth=int(raw['borrow_depth']),
        min_leverage=Decimal(str(raw.get('min_leverage', 0))),
        reserves=Decimal(str(raw.get('reserves', 0))),
        last_harvest=raw.get('last_harvest'),
        status=raw.get('status', STATUS_ACTIVE),
        harvest_on_deposit=raw.get('harvest_on_deposit', False),
        withdrawal_fee=Decimal(str(raw.get('withdrawal_fee', DEFAULT_WITHDRAWAL_FEE))),
    )


def to_state_dict(state: StrategyState) -> Dict[str, Any]:
    """Inverse of load_strategy_state()."""
    return {
        'want': state.want,
        'wallet': state.wallet,
        'collateral_token': state.collateral_token,
        'debt_token': state.debt_token,
        'lending_market': state.lending_market,
        'rewards_market': state.rewards_market,
        'borrow_rate': state.borrow_rate,
        'borrow_rate_max': state.borrow_rate_max,
        'borrow_depth': state.borrow_depth,
        'min_leverage': state.min_leverage,
        'reserves': state.reserves,
        'last_harvest': state.last_harvest,
        'status': state.status,
        'harvest_on_deposit': state.harvest_on_deposit,
        'withdrawal_fee': state.withdrawal_fee,
    }


def save_strategy_state(
    ledger: Ledger,
    symbol: str,
    new_state: StrategyState,
    event_type: str,
    moves: Optional[List[Move]] = None,
) -> None:
    """
    Write `new_state` to the strategy unit as one logged transaction.

    The transaction always carries a state change, so it is logged even when
    the state is unchanged; that is how bare events are recorded. Optional
    `moves` are applied in the same transaction.

    Raises:
        StrategyError: if the ledger rejects the transaction
    """
    old_state = ledger.get_unit_state(symbol)
    pending = build_transaction(
        ledger,
        list(moves or []),
        [UnitStateChange(symbol, old_state, to_state_dict(new_state))],
        origin=TransactionOrigin(OriginType.STRATEGY, symbol, new_state.want, event_type),
    )
    if ledger.execute(pending) == ExecuteResult.REJECTED:
        raise StrategyError(f"{symbol} {event_type} rejected by ledger")


def record_event(ledger: Ledger, symbol: str, event_type: str) -> None:
    """Log an event against the strategy without changing its state."""
    save_strategy_state(ledger, symbol, load_strategy_state(ledger, symbol), event_type)
