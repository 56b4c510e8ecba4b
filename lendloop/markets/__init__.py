"""
markets - External collaborators simulated on the ledger.

LendingMarket holds pooled liquidity and mints receipt and debt units;
RewardsMarket accrues and pays reward income on those units.
"""

from .lending_market import (
    LendingMarket,
    ReserveTokens,
    AccountPosition,
    AccountRisk,
    INTEREST_RATE_MODE_STABLE,
    INTEREST_RATE_MODE_VARIABLE,
    calculate_account_risk,
    create_lending_market_unit,
    open_lending_market,
)
from .rewards_market import (
    RewardsMarket,
    calculate_pending,
    create_rewards_market_unit,
    open_rewards_market,
)
