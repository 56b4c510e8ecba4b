"""
withdrawal.py - WithdrawalHandler

Serves vault withdrawals from available want, unwinding the ladder when the
available balance is short.
"""

from __future__ import annotations
from decimal import Decimal

from ..core import Move, StrategyError, TransactionOrigin, OriginType, ExecuteResult, build_transaction
from ..ledger import Ledger
from .access import StrategyRoles
from .fees import WithdrawalFeeConfig, calculate_withdrawal_fee
from .position import PositionManager
from .state import load_strategy_state


class WithdrawalHandler:

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        positions: PositionManager,
        roles: StrategyRoles,
        fee_config: WithdrawalFeeConfig,
    ):
        self.ledger = ledger
        self.symbol = symbol
        self.positions = positions
        self.roles = roles
        self.fee_config = fee_config

    def withdraw(self, amount: Decimal, requester: str) -> Decimal:
        """
        Send up to `amount` want to the vault.

        If the available balance (held minus reserves) is short, the ladder
        is fully unwound first. The served amount is min(available, amount);
        the withdrawal fee is kept by the strategy unless the requester is
        the owner or the strategy is paused. While active, what is left is
        re-leveraged.

        Returns:
            Net quantity sent to the vault
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"withdrawal amount must be positive, got {amount}")
        available = self.positions.reserves.available()
        if available < amount:
            self.positions.deleverage()
            available = self.positions.reserves.available()

        state = load_strategy_state(self.ledger, self.symbol)
        unit = self.ledger.get_unit(state.want)
        served = unit.round(min(available, amount))

        if requester == self.roles.owner or state.is_paused:
            fee = Decimal("0")
        else:
            fee = calculate_withdrawal_fee(served, state.withdrawal_fee, self.fee_config, unit)
        net = served - fee

        if net > 0:
            pending = build_transaction(
                self.ledger,
                [Move(net, state.want, state.wallet, self.roles.vault, "strategy_withdraw")],
                origin=TransactionOrigin(OriginType.STRATEGY, self.symbol, state.want, "WITHDRAW"),
            )
            if self.ledger.execute(pending) == ExecuteResult.REJECTED:
                raise StrategyError(f"{self.symbol} withdrawal of {net} rejected by ledger")

        if not state.is_paused:
            self.positions.leverage(self.positions.reserves.available())

        if self.ledger.verbose:
            print(f"[WITHDRAW] {self.symbol}: requested={amount} served={served} fee={fee}")
        return net
