"""
Core types and pure helpers for the lendloop ledger.

This module holds everything the rest of the package builds on:
1. Protocols: LedgerView for read-only access to balances and unit state
2. Immutable records: Move, PendingTransaction, Transaction, Unit, UnitStateChange
3. Exceptions: LedgerError and the strategy/market error family
4. Tagged amounts: Exact / All, used where a market accepts "everything"
5. Unit factories: token() for fungible ERC20-like assets

Nothing here mutates a ledger. Functions that need ledger data take a
LedgerView and return values or PendingTransactions.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, Union, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Ladder and fee arithmetic must be reproducible. The global context is set
# once at import; code that needs something else uses decimal.localcontext().
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for minting and burning receipt, debt and share units.
# Exempt from balance validation.
SYSTEM_WALLET = "system"

UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_COLLATERAL_RECEIPT = "COLLATERAL_RECEIPT"
UNIT_TYPE_DEBT_TOKEN = "DEBT_TOKEN"
UNIT_TYPE_VAULT_SHARE = "VAULT_SHARE"
UNIT_TYPE_LENDING_MARKET = "LENDING_MARKET"
UNIT_TYPE_REWARDS_MARKET = "REWARDS_MARKET"
UNIT_TYPE_LEVERAGED_STRATEGY = "LEVERAGED_STRATEGY"

# Quantities below this are dust.
QUANTITY_EPSILON = Decimal("1e-18")

# Default precision for token units (wei).
TOKEN_DECIMAL_PLACES = 18

# Token-like units truncate, the way integer wei arithmetic does.
DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
    UNIT_TYPE_COLLATERAL_RECEIPT: ROUND_DOWN,
    UNIT_TYPE_DEBT_TOKEN: ROUND_DOWN,
    UNIT_TYPE_VAULT_SHARE: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# wallet id -> quantity for one unit
Positions = Dict[str, Decimal]

# State attached to a unit (market, controller, strategy)
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Markets, fee calculations and strategy state loaders accept a LedgerView
    to declare that they only read. Ledger implements it; tests can pass a
    FakeView instead.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (0 if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's state dictionary."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of registered wallet ids."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of Ledger.execute().

    APPLIED: all moves and state changes were applied.
    REJECTED: validation failed; nothing was applied.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Where a transaction came from."""
    USER_ACTION = "user_action"
    CONTRACT = "contract"
    STRATEGY = "strategy"
    EXTERNAL = "external"
    SYSTEM = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised for operations on an unknown unit."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised for operations on an unknown wallet."""
    pass


class StrategyError(LedgerError):
    """Base exception for the leverage engine."""
    pass


class ConfigurationError(StrategyError):
    """Rate, depth or fee parameters outside their configured bounds."""
    pass


class ZeroBorrowRateError(ConfigurationError):
    """An unwind would divide by a zero borrow rate while debt is outstanding."""
    pass


class AuthorizationError(StrategyError):
    """A vault-only or manager-only entry point was called by someone else."""
    pass


class ExternalMarketFailure(StrategyError):
    """The lending or rewards market refused a call."""
    pass


class NegativeAmountError(StrategyError, ArithmeticError):
    """A checked subtraction would have produced a negative amount."""
    pass


class StrategyStateError(StrategyError):
    """The requested action is not allowed in the strategy's lifecycle state."""
    pass


class DeleverageStalled(StrategyError):
    """The automatic unwind hit its round limit with debt still outstanding."""
    pass


# ============================================================================
# TAGGED AMOUNTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Exact:
    """A specific quantity."""
    quantity: Decimal

    def __post_init__(self):
        if not isinstance(self.quantity, Decimal):
            object.__setattr__(self, 'quantity', Decimal(str(self.quantity)))
        if self.quantity.is_nan() or self.quantity.is_infinite():
            raise ValueError(f"Exact quantity must be finite, got {self.quantity}")
        if self.quantity < 0:
            raise NegativeAmountError(f"Exact quantity cannot be negative, got {self.quantity}")


@dataclass(frozen=True, slots=True)
class All:
    """Everything available: the whole debt, the whole supply, all rewards."""


ALL = All()

Amount = Union[Exact, All]


def checked_sub(a: Decimal, b: Decimal, what: str = "amount") -> Decimal:
    """
    Subtract b from a, refusing to go negative.

    Raises:
        NegativeAmountError: if b > a
    """
    if b > a:
        raise NegativeAmountError(f"{what}: {a} - {b} would be negative")
    return a - b


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Provenance of a transaction.

    Attributes:
        origin_type: Broad source category
        source_id: Which component built it (market symbol, strategy symbol, ...)
        unit_symbol: Asset the transaction concerns, if any
        event_type: What happened (e.g. "SUPPLY", "STRAT_HARVEST")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of one unit's state.

    The ledger checks old_state against the live state before applying
    new_state, so a change built from a stale read is rejected.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of one unit between two wallets.

    Attributes:
        quantity: Amount to transfer (finite, non-zero Decimal)
        unit_symbol: Unit being transferred (e.g. "WANT", "aWANT")
        source: Debited wallet
        dest: Credited wallet
        contract_id: What produced the move (e.g. "supply", "harvest_call_fee")
        metadata: Optional extra information
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Render a Decimal so that 1, 1.0 and 1.00 produce the same text."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """Order-independent text form of a value, for hashing."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        return f"[{','.join(_canonicalize(item) for item in value)}]"
    if isinstance(value, (set, frozenset)):
        return f"<{','.join(_canonicalize(item) for item in sorted(value, key=str))}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Content hash of a transaction's intent.

    Identical moves, state changes and origin give the same id. The id is an
    audit label; the ledger does not use it to drop repeated intents, since a
    second identical supply or repay is a real second action.
    """
    sorted_moves = sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    )

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for m in sorted_moves:
        content_parts.append(
            f"move:{_normalize_decimal(m.quantity)}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}"
        )

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    return hashlib.sha256("|".join(content_parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution: moves, state changes and who built it.

    Markets and strategy components build these with build_transaction() and
    hand them to Ledger.execute().
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id',
                _compute_intent_id(self.moves, self.state_changes, self.origin)
            )

    def is_empty(self) -> bool:
        """True if there is nothing to apply."""
        return not self.moves and not self.state_changes

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot leak into the transaction.

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "WANT", "strategy", "lending_pool", "supply"),
        ], origin=TransactionOrigin(OriginType.EXTERNAL, "POOL", "WANT", "SUPPLY"))
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """A PendingTransaction with nothing in it."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed transaction as recorded in the ledger's log.

    Attributes:
        moves, state_changes, origin, timestamp, intent_id: copied from the
            PendingTransaction
        exec_id: Unique execution id (ledger + sequence + time)
        ledger_name: Ledger that executed it
        execution_time: Ledger time at execution
        sequence_number: Monotonic position in the log
        contract_ids: Contract ids of all moves
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"├{bar}┤",
            f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│",
        ]
        for i, move in enumerate(self.moves):
            lines.append(f"│{pad(f'   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}')}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Dict -> sorted tuple of items, for storage on a frozen Unit."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Inverse of _freeze_state."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (asset or stateful instrument) in the ledger.

    Attributes:
        symbol: Short identifier ("WANT", "aWANT", "STRAT")
        name: Human-readable name
        unit_type: One of the UNIT_TYPE_* constants
        min_balance: Floor for every non-system wallet
        decimal_places: Rounding precision (None = no rounding)
        _frozen_state: Unit state as a sorted tuple of items
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """A fresh dict of the unit's state."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Quantize to this unit's precision (unchanged if decimal_places is None)."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimal_places: int = TOKEN_DECIMAL_PLACES) -> Unit:
    """
    Create a fungible token unit (the base asset / "want").

    Balances can never go negative: a transfer that would overdraw a wallet
    is rejected by the ledger.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
    )


def stateful_unit(symbol: str, name: str, unit_type: str, state: UnitState) -> Unit:
    """
    Create a unit that only carries state; no wallet ever holds it.

    Markets and strategies keep their mutable bookkeeping on one of these so
    that ledger snapshots cover it.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(state),
    )
