"""
strategy_setup.py - Builders shared by fixtures and property tests

Hypothesis cannot use function-scoped fixtures, so the setup lives in plain
functions that conftest.py and the property tests both call.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from lendloop import (
    Ledger, token,
    LendingMarket, RewardsMarket, open_lending_market, open_rewards_market,
    StrategyConfig, StrategyRoles, LeveragedStrategy, create_leveraged_strategy,
)


START = datetime(2025, 1, 1)
POOL_LIQUIDITY = Decimal("1000000")
TREASURY_FUNDS = Decimal("1000000")

ROLES = StrategyRoles(
    owner="owner",
    keeper="keeper",
    strategist="strategist",
    vault="vault",
    protocol_fee_recipient="treasury",
)


@dataclass
class StrategySetup:
    ledger: Ledger
    market: LendingMarket
    rewards: RewardsMarket
    strategy: LeveragedStrategy


def build_markets(
    ltv: Decimal = Decimal("0.75"),
    liquidation_threshold: Decimal = Decimal("0.80"),
    market_cls=LendingMarket,
):
    """Ledger with WANT, a funded rewards treasury and a funded lending pool."""
    ledger = Ledger("test", START, verbose=False, test_mode=True)
    ledger.register_unit(token("WANT", "Wrapped Native"))

    rewards = open_rewards_market(ledger, "INCENTIVES", "WANT", "incentives_treasury")
    ledger.set_balance("incentives_treasury", "WANT", TREASURY_FUNDS)

    market = open_lending_market(ledger, "AAVE", "aave_pool", incentives=rewards)
    if market_cls is not LendingMarket:
        market = market_cls(ledger, "AAVE", incentives=rewards)
    market.list_reserve("WANT", ltv=ltv, liquidation_threshold=liquidation_threshold)
    ledger.set_balance("aave_pool", "WANT", POOL_LIQUIDITY)
    return ledger, market, rewards


def build_strategy(
    borrow_rate: Decimal = Decimal("70"),
    borrow_rate_max: Decimal = Decimal("75"),
    borrow_depth: int = 3,
    min_leverage: Decimal = Decimal("1"),
    funded: Optional[Decimal] = None,
    ltv: Decimal = Decimal("0.75"),
    liquidation_threshold: Decimal = Decimal("0.80"),
    market_cls=LendingMarket,
) -> StrategySetup:
    """Strategy STRAT_WANT (wallet strat_want), optionally holding `funded` WANT."""
    ledger, market, rewards = build_markets(ltv, liquidation_threshold, market_cls)
    strategy = create_leveraged_strategy(
        ledger, "STRAT_WANT",
        StrategyConfig(
            want="WANT",
            borrow_rate=borrow_rate,
            borrow_rate_max=borrow_rate_max,
            borrow_depth=borrow_depth,
            min_leverage=min_leverage,
        ),
        ROLES, market, rewards,
    )
    if funded is not None:
        ledger.set_balance(strategy.wallet, "WANT", Decimal(funded))
    return StrategySetup(ledger, market, rewards, strategy)
