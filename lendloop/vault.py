"""
vault.py - Share vault in front of a leveraged strategy

Users deposit want and receive shares ("moo<WANT>"); the vault forwards
want to its strategy and redeems shares pro rata to everything the vault
and strategy hold:

    balance()              = vault want + strategy.total_managed_assets()
    shares on deposit      = amount × total_shares / balance_before   (1:1 when empty)
    want on withdrawal     = balance() × shares / total_shares
    price_per_full_share() = balance() / total_shares                 (1 when empty)

A withdrawal the vault cannot cover from idle want is pulled from the
strategy; if the strategy returns less (withdrawal fee, reserves), the user
receives what actually arrived.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Optional

from .core import (
    Move, Unit, TransactionOrigin, OriginType, ExecuteResult,
    AuthorizationError, ConfigurationError, StrategyError,
    SYSTEM_WALLET, UNIT_TYPE_VAULT_SHARE,
    build_transaction,
)
from .ledger import Ledger
from .strategy.engine import LeveragedStrategy
from .utils import serialized


class Vault:
    """
    Example:
        vault = open_vault(ledger, strategy)
        shares = vault.deposit("alice", Decimal("1000"))
        received = vault.withdraw("alice", shares)
    """

    def __init__(self, ledger: Ledger, share_symbol: str, wallet: str, owner: str, strategy: LeveragedStrategy):
        if strategy.roles.vault != wallet:
            raise ConfigurationError(f"strategy {strategy.symbol} belongs to vault {strategy.roles.vault}, not {wallet}")
        self.ledger = ledger
        self.share_symbol = share_symbol
        self.wallet = wallet
        self.owner = owner
        self.strategy = strategy

    @property
    def want(self) -> str:
        return self.strategy.want

    def balance(self) -> Decimal:
        return self.available() + self.strategy.total_managed_assets()

    def available(self) -> Decimal:
        return self.ledger.get_balance(self.wallet, self.want)

    def total_shares(self) -> Decimal:
        return sum(
            (q for w, q in self.ledger.get_positions(self.share_symbol).items() if w != SYSTEM_WALLET),
            Decimal("0"),
        )

    def price_per_full_share(self) -> Decimal:
        supply = self.total_shares()
        if supply == 0:
            return Decimal("1")
        return self.balance() / supply

    def shares_of(self, user: str) -> Decimal:
        return self.ledger.get_balance(user, self.share_symbol)

    @serialized
    def deposit(self, user: str, amount: Decimal) -> Decimal:
        """
        Returns:
            Shares minted to `user`
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"deposit amount must be positive, got {amount}")
        self.strategy.before_deposit(self.wallet)

        pool = self.balance()
        supply = self.total_shares()
        if supply > 0 and pool == 0:
            raise StrategyError(f"no {self.want} backs the outstanding {supply} {self.share_symbol}")
        self._transfer(amount, self.want, user, self.wallet, "vault_deposit", "DEPOSIT")
        self.earn()
        added = self.balance() - pool

        share_unit = self.ledger.get_unit(self.share_symbol)
        shares = added if supply == 0 else share_unit.round(added * supply / pool)
        if shares > 0:
            self._transfer(shares, self.share_symbol, SYSTEM_WALLET, user, "vault_mint", "MINT")
        if self.ledger.verbose:
            print(f"[VAULT] {user} deposited {amount} {self.want} for {shares} {self.share_symbol}")
        return shares

    def deposit_all(self, user: str) -> Decimal:
        return self.deposit(user, self.ledger.get_balance(user, self.want))

    @serialized
    def earn(self) -> None:
        """Forward idle want to the strategy and let it deploy it."""
        idle = self.available()
        if idle > 0:
            self._transfer(idle, self.want, self.wallet, self.strategy.wallet, "vault_earn", "EARN")
        self.strategy.deposit(self.wallet)

    @serialized
    def withdraw(self, user: str, shares: Decimal) -> Decimal:
        """
        Burn `shares` and pay out their want.

        Returns:
            Want sent to `user`
        """
        shares = Decimal(str(shares))
        if shares <= 0:
            raise ValueError(f"shares must be positive, got {shares}")
        supply = self.total_shares()
        if shares > self.shares_of(user):
            raise StrategyError(f"{user} holds fewer than {shares} {self.share_symbol}")

        owed = self.ledger.get_unit(self.want).round(self.balance() * shares / supply)
        self._transfer(shares, self.share_symbol, user, SYSTEM_WALLET, "vault_burn", "BURN")

        idle = self.available()
        if idle < owed:
            shortfall = owed - idle
            self.strategy.withdraw(self.wallet, shortfall, requester=user)
            received = self.available() - idle
            if received < shortfall:
                owed = idle + received

        if owed > 0:
            self._transfer(owed, self.want, self.wallet, user, "vault_withdraw", "WITHDRAW")
        if self.ledger.verbose:
            print(f"[VAULT] {user} redeemed {shares} {self.share_symbol} for {owed} {self.want}")
        return owed

    def withdraw_all(self, user: str) -> Decimal:
        return self.withdraw(user, self.shares_of(user))

    @serialized
    def upgrade_strategy(self, caller: str, candidate: LeveragedStrategy) -> None:
        """
        Retire the current strategy (its funds come back to the vault),
        switch to `candidate` and deploy everything into it.
        """
        if caller != self.owner:
            raise AuthorizationError(f"upgrade_strategy: {caller} is not the vault owner")
        if candidate.roles.vault != self.wallet or candidate.want != self.want:
            raise ConfigurationError(f"{candidate.symbol} is not a {self.want} strategy for {self.wallet}")

        previous = self.strategy
        previous.retire(self.wallet)
        self.strategy = candidate
        try:
            self.earn()
        except Exception:
            self.strategy = previous
            raise
        if self.ledger.verbose:
            print(f"[VAULT] strategy upgraded {previous.symbol} -> {candidate.symbol}")

    def _transfer(self, quantity: Decimal, unit: str, source: str, dest: str, contract_id: str, event_type: str) -> None:
        pending = build_transaction(
            self.ledger,
            [Move(quantity, unit, source, dest, contract_id)],
            origin=TransactionOrigin(OriginType.USER_ACTION, self.share_symbol, unit, event_type),
        )
        if self.ledger.execute(pending) == ExecuteResult.REJECTED:
            raise StrategyError(f"{self.share_symbol} {event_type} of {quantity} {unit} rejected by ledger")


def create_share_unit(symbol: str, name: str, decimal_places: int) -> Unit:
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_VAULT_SHARE,
        min_balance=Decimal("0"),
        decimal_places=decimal_places,
    )


def open_vault(ledger: Ledger, strategy: LeveragedStrategy, owner: Optional[str] = None) -> Vault:
    """Register the moo<WANT> share unit and return a vault over `strategy`."""
    want_unit = ledger.get_unit(strategy.want)
    share_symbol = f"moo{strategy.want}"
    ledger.register_unit(create_share_unit(share_symbol, f"Moo {want_unit.name}", want_unit.decimal_places))
    if not ledger.is_registered(strategy.roles.vault):
        ledger.register_wallet(strategy.roles.vault)
    return Vault(ledger, share_symbol, strategy.roles.vault, owner or strategy.roles.owner, strategy)
