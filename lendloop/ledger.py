"""
ledger.py - Stateful Double-Entry Ledger

The Ledger is the serial environment the strategy runs on. Every token
balance, every market position and every piece of strategy state lives here,
and it is the only object that mutates them.

Key responsibilities:
    - Implements LedgerView for read-only callers
    - Executes transactions atomically (all moves and state changes, or none)
    - Groups several transactions into one all-or-nothing action (atomic())
    - Tracks logical time (advance_time)
    - Always validates and always logs
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from threading import RLock
from typing import Dict, Iterator, List, Set, Optional, Tuple, Any
import copy

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    _freeze_state,
)


class Ledger:
    """
    Double-entry ledger with validation, audit trail and action rollback.

    Thread Safety:
        execute() and atomic() hold one re-entrant lock per ledger, so every
        holder of the ledger (strategies, markets, vaults) is serialized on it.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(token("WANT", "Wrapped Native"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")

        tx = build_transaction(ledger, [
            Move(Decimal("100"), "WANT", "alice", "bob", "payment_001")
        ])
        result = ledger.execute(tx)
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time (default: 1970-01-01)
            verbose: Print transaction results (default: True)
            test_mode: Allow set_balance() (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        self._atomic_depth = 0
        self._lock = RLock()

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of a unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Deep copy of a unit's state; safe to mutate.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        state = self.units[unit_symbol].state
        return copy.deepcopy(state) if state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """All non-zero positions for a unit."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit across all wallets (system wallet included).

        Wallets are summed in sorted order so the result is deterministic.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-9")
    ) -> Dict[str, Any]:
        """
        Check that every unit's total supply matches what is expected.

        Without expected_supplies this just reports the current supplies.

        Returns:
            {'valid': bool, 'supplies': {unit: total}, 'discrepancies': [...]}
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                difference = abs(current_supply - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': difference,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': Decimal("0"),
                        'difference': abs(expected),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance directly. Test mode only.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Checks, in order: registration of every unit and wallet, timestamp,
        balance floors, and that every state change was built
        from the live state. Anything failing rejects the whole transaction.

        Returns:
            ExecuteResult.APPLIED or ExecuteResult.REJECTED
        """
        with self._lock:
            if pending.is_empty():
                return ExecuteResult.APPLIED

            valid, reason = self._validate_pending(pending)
            if not valid:
                if self.verbose:
                    print(f"✗ REJECTED: {reason}")
                return ExecuteResult.REJECTED

            sequence = self._next_sequence
            self._next_sequence += 1

            tx = Transaction(
                moves=pending.moves,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=self._generate_exec_id(sequence),
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
            )

            self._execute_moves(tx.moves)

            for sc in tx.state_changes:
                new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
                self.units[sc.unit] = replace(self.units[sc.unit], _frozen_state=_freeze_state(new_state))

            self.transaction_log.append(tx)

            if self.verbose:
                self._print_tx_result(tx, "APPLIED", "✓")
            return ExecuteResult.APPLIED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the transaction box with a result line in place of the footer."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction without touching any state.

        Returns:
            (True, "") if valid, otherwise (False, reason)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"


        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"unit not registered: {sc.unit}"
            if sc.old_state is not None:
                expected = sc.old_state if isinstance(sc.old_state, dict) else {}
                current = self.units[sc.unit].state
                for key in set(expected.keys()) | set(current.keys()):
                    if expected.get(key) != current.get(key):
                        return False, (
                            f"stale state for {sc.unit}.{key}: "
                            f"expected {expected.get(key)!r}, found {current.get(key)!r}"
                        )

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET mints and burns, so it has no limits
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)

            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"

        return True, ""

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> {wallet: qty} index in step with balances; drop dust."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply moves to balances with unit rounding and update the index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # MULTI-TRANSACTION ACTIONS
    # ========================================================================

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        Run a block of transactions as one all-or-nothing action.

        The ledger is cloned on entry. If the block raises, the clone is
        copied back into this instance (same object, so every holder of a
        reference sees the rollback) and the exception propagates. Nested
        blocks roll back only their own changes.

        The ledger's re-entrant lock is held for the whole block, so a
        rollback never discards work another thread committed meanwhile.

        Example:
            with ledger.atomic():
                market.supply("WANT", Exact(Decimal("1000")), "strategy")
                market.borrow("WANT", Exact(Decimal("700")), 2, "strategy")
        """
        with self._lock:
            snapshot = self.clone()
            self._atomic_depth += 1
            try:
                yield self
            except Exception:
                self._restore(snapshot)
                if self.verbose:
                    print(f"↺ ROLLED BACK to sequence {snapshot._next_sequence}")
                raise
            finally:
                self._atomic_depth -= 1

    @property
    def in_atomic_block(self) -> bool:
        """True while inside atomic()."""
        return self._atomic_depth > 0

    def _restore(self, snapshot: Ledger) -> None:
        """Overwrite this ledger's state with a snapshot taken by clone()."""
        self.units = snapshot.units
        self.registered_wallets = snapshot.registered_wallets
        self.transaction_log = snapshot.transaction_log
        self._next_sequence = snapshot._next_sequence
        self.balances = snapshot.balances
        self._positions_by_unit = snapshot._positions_by_unit
        self._current_time = snapshot._current_time

    def clone(self) -> Ledger:
        """
        Deep copy of this ledger.

        Units, balances, wallets, log and clock are independent of the
        original afterwards.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned._atomic_depth = 0
        cloned._lock = RLock()

        cloned.units = {}
        for symbol, unit in self.units.items():
            cloned.units[symbol] = replace(
                unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state))
            )

        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence

        cloned.balances = {}
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(lambda: Decimal("0"), bals)

        cloned._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in self._positions_by_unit.items():
            cloned._positions_by_unit[unit_symbol] = dict(positions)

        return cloned
