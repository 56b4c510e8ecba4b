"""
engine.py - LeveragedStrategy facade

Wires the components of one strategy together and exposes its entry points.
Every mutating entry point:

    1. takes the strategy lock
    2. opens ledger.atomic(), so a failure anywhere rolls the action back
    3. checks the caller's capability and the lifecycle state
    4. delegates to a component

Usage:
    market = open_lending_market(ledger, "AAVE", "aave_pool", incentives=rewards)
    market.list_reserve("WANT", ltv=Decimal("0.75"), liquidation_threshold=Decimal("0.80"))

    strategy = create_leveraged_strategy(
        ledger, "STRAT_WANT",
        StrategyConfig(want="WANT", borrow_rate=70, borrow_rate_max=75, borrow_depth=3, min_leverage=1),
        StrategyRoles(owner="owner", keeper="keeper", strategist="strategist",
                      vault="vault", protocol_fee_recipient="treasury"),
        market, rewards,
    )
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional

from ..core import (
    Transaction, ConfigurationError, StrategyStateError,
)
from ..ledger import Ledger
from ..markets.lending_market import LendingMarket, AccountPosition, AccountRisk
from ..markets.rewards_market import RewardsMarket
from ..utils import serialized
from .access import StrategyRoles, require_manager, require_vault
from .fees import FeeSplit, WithdrawalFeeConfig, FeeDistributor
from .harvest import HarvestEngine
from .lifecycle import LifecycleController
from .position import PositionManager
from .rebalance import RebalanceController, validate_ladder_params
from .withdrawal import WithdrawalHandler
from .state import (
    StrategyState, MAX_BORROW_DEPTH,
    create_strategy_unit, load_strategy_state, save_strategy_state, record_event,
)


@dataclass(frozen=True, slots=True)
class StrategyConfig:
    """Construction parameters of a strategy."""
    want: str
    borrow_rate: Decimal
    borrow_rate_max: Decimal
    borrow_depth: int
    min_leverage: Decimal
    harvest_on_deposit: bool = False

    def __post_init__(self):
        for name in ('borrow_rate', 'borrow_rate_max', 'min_leverage'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.borrow_rate_max < 0 or self.borrow_rate_max > 100:
            raise ConfigurationError(f"borrow_rate_max {self.borrow_rate_max} outside [0, 100]")
        if not isinstance(self.borrow_depth, int) or self.borrow_depth > MAX_BORROW_DEPTH:
            raise ConfigurationError(f"borrow_depth must be an int in [0, {MAX_BORROW_DEPTH}]")
        validate_ladder_params(self.borrow_rate, self.borrow_depth, self.borrow_rate_max)
        if self.min_leverage < 0:
            raise ConfigurationError(f"min_leverage cannot be negative, got {self.min_leverage}")


class LeveragedStrategy:
    """
    A leveraged lending-ladder strategy registered in a ledger.

    Thread Safety:
        Each entry point runs as one ledger.atomic() block, serialized on the
        ledger's lock together with every other holder of the same ledger.
    """

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        roles: StrategyRoles,
        market: LendingMarket,
        rewards: RewardsMarket,
        fee_split: Optional[FeeSplit] = None,
        withdrawal_fee: Optional[WithdrawalFeeConfig] = None,
    ):
        self.ledger = ledger
        self.symbol = symbol
        self.roles = roles
        self.market = market
        self.rewards = rewards
        self.fee_split = fee_split or FeeSplit()
        self.withdrawal_fee_config = withdrawal_fee or WithdrawalFeeConfig()

        self.positions = PositionManager(ledger, symbol, market)
        self.rebalancer = RebalanceController(ledger, symbol, self.positions)
        self.fees = FeeDistributor(ledger, symbol, roles, self.fee_split)
        self.harvester = HarvestEngine(ledger, symbol, self.positions, rewards, self.fees)
        self.withdrawals = WithdrawalHandler(ledger, symbol, self.positions, roles, self.withdrawal_fee_config)
        self.lifecycle = LifecycleController(ledger, symbol, self.positions, market, roles)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def state(self) -> StrategyState:
        return load_strategy_state(self.ledger, self.symbol)

    @property
    def wallet(self) -> str:
        return self.state.wallet

    @property
    def want(self) -> str:
        return self.state.want

    @property
    def reserves(self) -> Decimal:
        return self.state.reserves

    @property
    def status(self) -> str:
        return self.state.status

    def idle_assets(self) -> Decimal:
        return self.positions.held()

    def available_assets(self) -> Decimal:
        return self.positions.reserves.available()

    def position_assets(self) -> Decimal:
        """Supplied minus borrowed."""
        return self.positions.position().net

    def total_managed_assets(self) -> Decimal:
        """Idle want plus the net market position."""
        return self.idle_assets() + self.position_assets()

    def account_position(self) -> AccountPosition:
        return self.positions.position()

    def account_risk(self) -> AccountRisk:
        return self.market.get_account_risk(self.wallet)

    def rewards_available(self) -> Decimal:
        return self.harvester.rewards_available()

    def call_reward(self) -> Decimal:
        return self.harvester.call_reward()

    def events(self, event_type: Optional[str] = None) -> List[Transaction]:
        """Strategy transactions from the ledger log, optionally of one event type."""
        return [
            tx for tx in self.ledger.transaction_log
            if tx.origin.source_id == self.symbol
            and (event_type is None or tx.origin.event_type == event_type)
        ]

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    @serialized
    def deposit(self, caller: str) -> None:
        """Put the available balance to work. Anyone may call."""
        state = self._require_live()
        if state.is_paused:
            raise StrategyStateError(f"{self.symbol} is paused; deposits are closed")
        available = self.positions.reserves.available()
        if available > 0:
            self.positions.leverage(available)
        record_event(self.ledger, self.symbol, "STRAT_DEPOSIT")

    @serialized
    def before_deposit(self, caller: str) -> Decimal:
        """Harvest ahead of a vault deposit when harvest_on_deposit is set."""
        state = self._require_live()
        if not state.harvest_on_deposit:
            return Decimal("0")
        require_vault(self.roles, caller, "before_deposit")
        return self.harvester.harvest(caller)

    @serialized
    def withdraw(self, caller: str, amount: Decimal, requester: Optional[str] = None) -> Decimal:
        """
        Vault-only. `requester` is the account the vault acts for; the owner
        withdraws without fee.
        """
        require_vault(self.roles, caller, "withdraw")
        self._require_live()
        return self.withdrawals.withdraw(amount, requester or caller)

    @serialized
    def harvest(self, caller: str, call_fee_recipient: Optional[str] = None) -> Decimal:
        self._require_live()
        return self.harvester.harvest(call_fee_recipient or caller)

    @serialized
    def manager_harvest(self, caller: str) -> Decimal:
        require_manager(self.roles, caller, "manager_harvest")
        self._require_live()
        return self.harvester.harvest(caller)

    @serialized
    def rebalance(self, caller: str, new_rate: Decimal, new_depth: int) -> None:
        require_manager(self.roles, caller, "rebalance")
        self._require_live()
        self.rebalancer.rebalance(new_rate, new_depth)

    @serialized
    def deleverage_once(self, caller: str, override_rate: Decimal) -> None:
        require_manager(self.roles, caller, "deleverage_once")
        self._require_live()
        self.positions.deleverage_once(override_rate)

    @serialized
    def pause(self, caller: str) -> None:
        require_manager(self.roles, caller, "pause")
        self.lifecycle.pause()

    @serialized
    def unpause(self, caller: str) -> None:
        require_manager(self.roles, caller, "unpause")
        self.lifecycle.unpause()

    @serialized
    def panic(self, caller: str) -> None:
        require_manager(self.roles, caller, "panic")
        self.lifecycle.panic()

    @serialized
    def retire(self, caller: str) -> Decimal:
        require_vault(self.roles, caller, "retire")
        return self.lifecycle.retire()

    @serialized
    def set_harvest_on_deposit(self, caller: str, enabled: bool) -> None:
        """Enabling also drops the withdrawal fee to 0; disabling restores the default."""
        require_manager(self.roles, caller, "set_harvest_on_deposit")
        state = self._require_live()
        fee = Decimal("0") if enabled else self.withdrawal_fee_config.rate
        save_strategy_state(
            self.ledger, self.symbol,
            replace(state, harvest_on_deposit=bool(enabled), withdrawal_fee=fee),
            "SET_HARVEST_ON_DEPOSIT",
        )

    def _require_live(self) -> StrategyState:
        state = load_strategy_state(self.ledger, self.symbol)
        if state.is_retired:
            raise StrategyStateError(f"{self.symbol} is retired")
        return state


def create_leveraged_strategy(
    ledger: Ledger,
    symbol: str,
    config: StrategyConfig,
    roles: StrategyRoles,
    market: LendingMarket,
    rewards: RewardsMarket,
    wallet: Optional[str] = None,
    fee_split: Optional[FeeSplit] = None,
    withdrawal_fee: Optional[WithdrawalFeeConfig] = None,
    name: Optional[str] = None,
) -> LeveragedStrategy:
    """
    Register a strategy unit and wallet, approve the market, return the facade.

    The collateral and debt units are looked up from the market's listing of
    `config.want`. Wallets named in `roles` are registered if needed.
    """
    wallet = wallet or symbol.lower()
    tokens = market.get_reserve_tokens(config.want)
    withdrawal_fee = withdrawal_fee or WithdrawalFeeConfig()

    for account in (wallet, roles.owner, roles.keeper, roles.strategist,
                    roles.vault, roles.protocol_fee_recipient):
        if not ledger.is_registered(account):
            ledger.register_wallet(account)

    ledger.register_unit(create_strategy_unit(symbol, name or symbol, StrategyState(
        want=config.want,
        wallet=wallet,
        collateral_token=tokens.collateral_token,
        debt_token=tokens.debt_token,
        lending_market=market.symbol,
        rewards_market=rewards.symbol,
        borrow_rate=config.borrow_rate,
        borrow_rate_max=config.borrow_rate_max,
        borrow_depth=config.borrow_depth,
        min_leverage=config.min_leverage,
        harvest_on_deposit=config.harvest_on_deposit,
        withdrawal_fee=Decimal("0") if config.harvest_on_deposit else withdrawal_fee.rate,
    )))
    market.approve(config.want, wallet)

    return LeveragedStrategy(
        ledger, symbol, roles, market, rewards,
        fee_split=fee_split, withdrawal_fee=withdrawal_fee,
    )
