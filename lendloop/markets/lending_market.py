"""
lending_market.py - Ledger-backed Lending Market

A pooled lending market in the style of Aave v2, simulated on the ledger:

    supply   : asset account -> market wallet, receipt token minted to account
    borrow   : asset market wallet -> account, debt token minted to account
    repay    : asset account -> market wallet, debt token burned
    withdraw : receipt token burned, asset market wallet -> account

Receipt ("a<ASSET>") and debt ("variableDebt<ASSET>") balances ARE the
account's position, so get_account_position() is always a fresh ledger read.
Market bookkeeping (listed reserves, approvals, freeze/pause flags) is kept on
the market's own unit, so Ledger.atomic() rolls it back with everything else.

Every refusal raises ExternalMarketFailure. The market quotes every reserve at
par in its own units; there is no price oracle and no interest accrual.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ..core import (
    Move, Unit, UnitStateChange, TransactionOrigin, OriginType,
    ExecuteResult, ExternalMarketFailure, Exact, All, Amount,
    SYSTEM_WALLET, TOKEN_DECIMAL_PLACES,
    UNIT_TYPE_LENDING_MARKET, UNIT_TYPE_COLLATERAL_RECEIPT, UNIT_TYPE_DEBT_TOKEN,
    build_transaction, stateful_unit,
)
from ..ledger import Ledger

if TYPE_CHECKING:
    from .rewards_market import RewardsMarket


INTEREST_RATE_MODE_STABLE = 1
INTEREST_RATE_MODE_VARIABLE = 2


@dataclass(frozen=True, slots=True)
class ReserveTokens:
    """Units that represent one listed asset's positions."""
    asset: str
    collateral_token: str
    debt_token: str


@dataclass(frozen=True, slots=True)
class AccountPosition:
    """Supplied and borrowed amounts of one asset for one account."""
    supplied: Decimal
    borrowed: Decimal

    @property
    def net(self) -> Decimal:
        return self.supplied - self.borrowed


@dataclass(frozen=True, slots=True)
class AccountRisk:
    """Aggregate risk metrics for one account across all reserves."""
    total_collateral: Decimal
    total_debt: Decimal
    available_borrows: Decimal
    ltv: Decimal
    liquidation_threshold: Decimal
    health_factor: Decimal


def create_lending_market_unit(symbol: str, name: str, market_wallet: str) -> Unit:
    """
    Create the state-carrying unit for a lending market.

    Args:
        symbol: Market unit symbol (e.g. "LENDING_POOL")
        name: Human-readable name
        market_wallet: Wallet that holds the pooled liquidity
    """
    if not market_wallet or not market_wallet.strip():
        raise ValueError("market_wallet cannot be empty")
    return stateful_unit(symbol, name, UNIT_TYPE_LENDING_MARKET, {
        'market_wallet': market_wallet,
        'reserves': {},
        'approvals': {},
        'paused': False,
    })


def calculate_account_risk(
    positions: Dict[str, AccountPosition],
    reserves: Dict[str, Dict[str, Any]],
) -> AccountRisk:
    """
    Aggregate risk from per-asset positions.

    Pure function: collateral and debt are summed at par, LTV and liquidation
    threshold are collateral-weighted averages.
    """
    total_collateral = Decimal("0")
    total_debt = Decimal("0")
    weighted_ltv = Decimal("0")
    weighted_threshold = Decimal("0")

    for asset, position in positions.items():
        params = reserves[asset]
        total_collateral += position.supplied
        total_debt += position.borrowed
        weighted_ltv += position.supplied * params['ltv']
        weighted_threshold += position.supplied * params['liquidation_threshold']

    if total_collateral > 0:
        ltv = weighted_ltv / total_collateral
        threshold = weighted_threshold / total_collateral
    else:
        ltv = Decimal("0")
        threshold = Decimal("0")

    available = weighted_ltv - total_debt
    if available < 0:
        available = Decimal("0")

    if total_debt > 0:
        health_factor = weighted_threshold / total_debt
    else:
        health_factor = Decimal("Infinity")

    return AccountRisk(
        total_collateral=total_collateral,
        total_debt=total_debt,
        available_borrows=available,
        ltv=ltv,
        liquidation_threshold=threshold,
        health_factor=health_factor,
    )


class LendingMarket:
    """
    Operations on a lending market registered in a ledger.

    The object holds no balances of its own; it reads and writes the ledger
    on every call.

    Example:
        market = open_lending_market(ledger, "LENDING_POOL", "lending_pool")
        market.list_reserve("WANT", ltv=Decimal("0.75"), liquidation_threshold=Decimal("0.80"))
        market.approve("WANT", "strategy")
        market.supply("WANT", Exact(Decimal("1000")), "strategy")
        market.borrow("WANT", Exact(Decimal("700")), INTEREST_RATE_MODE_VARIABLE, "strategy")
    """

    def __init__(self, ledger: Ledger, symbol: str, incentives: Optional['RewardsMarket'] = None):
        if ledger.get_unit(symbol).unit_type != UNIT_TYPE_LENDING_MARKET:
            raise ValueError(f"{symbol} is not a lending market unit")
        self.ledger = ledger
        self.symbol = symbol
        self.incentives = incentives

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def wallet(self) -> str:
        return self.ledger.get_unit_state(self.symbol)['market_wallet']

    def list_reserve(
        self,
        asset: str,
        ltv: Decimal,
        liquidation_threshold: Decimal,
    ) -> ReserveTokens:
        """
        List an asset: register its receipt and debt units and record limits.

        Raises:
            ValueError: on bad limits or a reserve that is already listed
        """
        ltv = Decimal(str(ltv))
        liquidation_threshold = Decimal(str(liquidation_threshold))
        if not (Decimal("0") <= ltv <= liquidation_threshold <= Decimal("1")):
            raise ValueError(
                f"need 0 <= ltv <= liquidation_threshold <= 1, got {ltv}, {liquidation_threshold}"
            )

        state = self.ledger.get_unit_state(self.symbol)
        if asset in state['reserves']:
            raise ValueError(f"Reserve {asset} already listed on {self.symbol}")

        decimals = self.ledger.get_unit(asset).decimal_places
        if decimals is None:
            decimals = TOKEN_DECIMAL_PLACES
        tokens = ReserveTokens(
            asset=asset,
            collateral_token=f"a{asset}",
            debt_token=f"variableDebt{asset}",
        )
        self.ledger.register_unit(Unit(
            symbol=tokens.collateral_token,
            name=f"{self.symbol} interest bearing {asset}",
            unit_type=UNIT_TYPE_COLLATERAL_RECEIPT,
            decimal_places=decimals,
        ))
        self.ledger.register_unit(Unit(
            symbol=tokens.debt_token,
            name=f"{self.symbol} variable debt {asset}",
            unit_type=UNIT_TYPE_DEBT_TOKEN,
            decimal_places=decimals,
        ))

        new_state = dict(state)
        new_state['reserves'] = {
            **state['reserves'],
            asset: {
                'collateral_token': tokens.collateral_token,
                'debt_token': tokens.debt_token,
                'ltv': ltv,
                'liquidation_threshold': liquidation_threshold,
                'frozen': False,
            },
        }
        self._commit([], "LIST_RESERVE", asset, state, new_state)
        return tokens

    def get_reserve_tokens(self, asset: str) -> ReserveTokens:
        """Receipt and debt unit symbols for a listed asset."""
        reserve = self._reserve(self.ledger.get_unit_state(self.symbol), asset)
        return ReserveTokens(asset, reserve['collateral_token'], reserve['debt_token'])

    def set_frozen(self, asset: str, frozen: bool) -> None:
        """Frozen reserves refuse supply and borrow; repay and withdraw still work."""
        state = self.ledger.get_unit_state(self.symbol)
        self._reserve(state, asset)
        new_state = dict(state)
        new_state['reserves'] = {**state['reserves'], asset: {**state['reserves'][asset], 'frozen': bool(frozen)}}
        self._commit([], "FREEZE" if frozen else "UNFREEZE", asset, state, new_state)

    def set_paused(self, paused: bool) -> None:
        """A paused market refuses every operation."""
        state = self.ledger.get_unit_state(self.symbol)
        self._commit([], "PAUSE" if paused else "UNPAUSE", None, state, {**state, 'paused': bool(paused)})

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def is_approved(self, asset: str, account: str) -> bool:
        approvals = self.ledger.get_unit_state(self.symbol)['approvals']
        return asset in approvals.get(account, [])

    def approve(self, asset: str, account: str) -> None:
        """Allow the market to pull `asset` from `account` (supply, repay)."""
        state = self.ledger.get_unit_state(self.symbol)
        self._reserve(state, asset)
        current = state['approvals'].get(account, [])
        if asset in current:
            return
        new_state = dict(state)
        new_state['approvals'] = {**state['approvals'], account: sorted(current + [asset])}
        self._commit([], "APPROVE", asset, state, new_state)

    def revoke(self, asset: str, account: str) -> None:
        """Withdraw a previous approval. No-op if there is none."""
        state = self.ledger.get_unit_state(self.symbol)
        current = state['approvals'].get(account, [])
        if asset not in current:
            return
        new_state = dict(state)
        new_state['approvals'] = {**state['approvals'], account: [a for a in current if a != asset]}
        self._commit([], "REVOKE", asset, state, new_state)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_account_position(self, asset: str, account: str) -> AccountPosition:
        """Fresh read of the account's supplied and borrowed amounts."""
        tokens = self.get_reserve_tokens(asset)
        return AccountPosition(
            supplied=self._balance(account, tokens.collateral_token),
            borrowed=self._balance(account, tokens.debt_token),
        )

    def get_account_risk(self, account: str) -> AccountRisk:
        """Aggregate collateral, debt and health factor across all reserves."""
        reserves = self.ledger.get_unit_state(self.symbol)['reserves']
        positions = {
            asset: self.get_account_position(asset, account)
            for asset in sorted(reserves)
        }
        return calculate_account_risk(positions, reserves)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def supply(self, asset: str, amount: Amount, account: str) -> Decimal:
        """
        Deposit `asset` from `account` as collateral.

        Returns:
            Quantity supplied
        """
        state, reserve = self._open_reserve(asset, for_new_exposure=True)
        qty = self._quantity(asset, amount, "supply")
        self._require_approval(state, asset, account)
        if qty <= 0:
            return Decimal("0")
        if self._balance(account, asset) < qty:
            raise ExternalMarketFailure(f"supply {qty} {asset}: {account} balance too low")

        self._checkpoint(account, reserve['collateral_token'])
        self._commit([
            Move(qty, asset, account, state['market_wallet'], "supply"),
            Move(qty, reserve['collateral_token'], SYSTEM_WALLET, account, "supply"),
        ], "SUPPLY", asset)
        return qty

    def borrow(self, asset: str, amount: Amount, mode: int, account: str) -> Decimal:
        """
        Borrow `asset` against the account's collateral.

        Only the variable rate mode is offered.

        Returns:
            Quantity borrowed
        """
        state, reserve = self._open_reserve(asset, for_new_exposure=True)
        if mode != INTEREST_RATE_MODE_VARIABLE:
            raise ExternalMarketFailure(f"interest rate mode {mode} not offered on {asset}")
        qty = self._quantity(asset, amount, "borrow")
        if qty <= 0:
            return Decimal("0")

        position = self.get_account_position(asset, account)
        limit = position.supplied * reserve['ltv']
        if position.borrowed + qty > limit:
            raise ExternalMarketFailure(
                f"borrow {qty} {asset}: debt {position.borrowed + qty} would exceed "
                f"ltv limit {limit}"
            )
        if self._balance(state['market_wallet'], asset) < qty:
            raise ExternalMarketFailure(f"borrow {qty} {asset}: insufficient market liquidity")

        self._checkpoint(account, reserve['debt_token'])
        self._commit([
            Move(qty, asset, state['market_wallet'], account, "borrow"),
            Move(qty, reserve['debt_token'], SYSTEM_WALLET, account, "borrow"),
        ], "BORROW", asset)
        return qty

    def repay(self, asset: str, amount: Amount, mode: int, account: str) -> Decimal:
        """
        Repay debt. Exact(n) repays min(n, debt); ALL repays the whole debt.

        Returns:
            Quantity repaid (0 when there is no debt)
        """
        state, reserve = self._open_reserve(asset, for_new_exposure=False)
        if mode != INTEREST_RATE_MODE_VARIABLE:
            raise ExternalMarketFailure(f"interest rate mode {mode} not offered on {asset}")
        self._require_approval(state, asset, account)

        debt = self._balance(account, reserve['debt_token'])
        if isinstance(amount, All):
            qty = debt
        else:
            qty = min(self._quantity(asset, amount, "repay"), debt)
        if qty <= 0:
            return Decimal("0")
        if self._balance(account, asset) < qty:
            raise ExternalMarketFailure(f"repay {qty} {asset}: {account} balance too low")

        self._checkpoint(account, reserve['debt_token'])
        self._commit([
            Move(qty, asset, account, state['market_wallet'], "repay"),
            Move(qty, reserve['debt_token'], account, SYSTEM_WALLET, "repay"),
        ], "REPAY", asset)
        return qty

    def withdraw(self, asset: str, amount: Amount, account: str) -> Decimal:
        """
        Withdraw collateral. ALL withdraws the whole supplied balance.

        The remaining collateral must still cover the debt at the reserve's
        liquidation threshold.

        Returns:
            Quantity withdrawn (0 when nothing is supplied)
        """
        state, reserve = self._open_reserve(asset, for_new_exposure=False)
        position = self.get_account_position(asset, account)

        if isinstance(amount, All):
            qty = position.supplied
        else:
            qty = self._quantity(asset, amount, "withdraw")
        if qty <= 0:
            return Decimal("0")
        if qty > position.supplied:
            raise ExternalMarketFailure(
                f"withdraw {qty} {asset}: only {position.supplied} supplied by {account}"
            )
        remaining = position.supplied - qty
        if position.borrowed > remaining * reserve['liquidation_threshold']:
            raise ExternalMarketFailure(
                f"withdraw {qty} {asset}: debt {position.borrowed} would exceed "
                f"liquidation threshold of remaining collateral {remaining}"
            )
        if self._balance(state['market_wallet'], asset) < qty:
            raise ExternalMarketFailure(f"withdraw {qty} {asset}: insufficient market liquidity")

        self._checkpoint(account, reserve['collateral_token'])
        self._commit([
            Move(qty, reserve['collateral_token'], account, SYSTEM_WALLET, "withdraw"),
            Move(qty, asset, state['market_wallet'], account, "withdraw"),
        ], "WITHDRAW", asset)
        return qty

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reserve(self, state: Dict[str, Any], asset: str) -> Dict[str, Any]:
        reserve = state['reserves'].get(asset)
        if reserve is None:
            raise ExternalMarketFailure(f"{asset} is not listed on {self.symbol}")
        return reserve

    def _open_reserve(self, asset: str, for_new_exposure: bool):
        state = self.ledger.get_unit_state(self.symbol)
        if state['paused']:
            raise ExternalMarketFailure(f"{self.symbol} is paused")
        reserve = self._reserve(state, asset)
        if for_new_exposure and reserve['frozen']:
            raise ExternalMarketFailure(f"{asset} reserve is frozen on {self.symbol}")
        return state, reserve

    def _require_approval(self, state: Dict[str, Any], asset: str, account: str) -> None:
        if asset not in state['approvals'].get(account, []):
            raise ExternalMarketFailure(f"{account} has not approved {self.symbol} for {asset}")

    def _quantity(self, asset: str, amount: Amount, action: str) -> Decimal:
        if not isinstance(amount, Exact):
            raise ExternalMarketFailure(f"{action} needs an exact amount, got {amount!r}")
        return self.ledger.get_unit(asset).round(amount.quantity)

    def _balance(self, wallet: str, unit_symbol: str) -> Decimal:
        return self.ledger.get_balance(wallet, unit_symbol)

    def _checkpoint(self, account: str, position_token: str) -> None:
        if self.incentives is not None:
            self.incentives.checkpoint(account, position_token)

    def _commit(
        self,
        moves: List[Move],
        event_type: str,
        asset: Optional[str],
        old_state: Optional[Dict[str, Any]] = None,
        new_state: Optional[Dict[str, Any]] = None,
    ) -> None:
        changes = []
        if new_state is not None:
            changes.append(UnitStateChange(self.symbol, old_state, new_state))
        pending = build_transaction(
            self.ledger, moves, changes,
            origin=TransactionOrigin(OriginType.EXTERNAL, self.symbol, asset, event_type),
        )
        if self.ledger.execute(pending) == ExecuteResult.REJECTED:
            raise ExternalMarketFailure(f"{self.symbol} {event_type} rejected by ledger")


def open_lending_market(
    ledger: Ledger,
    symbol: str,
    market_wallet: str,
    name: Optional[str] = None,
    incentives: Optional['RewardsMarket'] = None,
) -> LendingMarket:
    """Register a lending market unit and its wallet, and return the market."""
    ledger.register_unit(create_lending_market_unit(symbol, name or symbol, market_wallet))
    if not ledger.is_registered(market_wallet):
        ledger.register_wallet(market_wallet)
    return LendingMarket(ledger, symbol, incentives=incentives)
