"""
lendloop - Leveraged lending-ladder strategy engine on a double-entry ledger

Usage:
    from lendloop import (
        Ledger, token, Exact, open_lending_market, open_rewards_market,
        StrategyConfig, StrategyRoles, create_leveraged_strategy, open_vault,
    )

    ledger = Ledger("main")
    ledger.register_unit(token("WANT", "Wrapped Native"))

    rewards = open_rewards_market(ledger, "INCENTIVES", "WANT", "incentives_treasury",
                                  emission_per_second=Decimal("0.000001"))
    market = open_lending_market(ledger, "AAVE", "aave_pool", incentives=rewards)
    market.list_reserve("WANT", ltv=Decimal("0.75"), liquidation_threshold=Decimal("0.80"))

    strategy = create_leveraged_strategy(
        ledger, "STRAT_WANT",
        StrategyConfig(want="WANT", borrow_rate=70, borrow_rate_max=75, borrow_depth=3, min_leverage=1),
        StrategyRoles(owner="owner", keeper="keeper", strategist="strategist",
                      vault="vault", protocol_fee_recipient="treasury"),
        market, rewards,
    )
    vault = open_vault(ledger, strategy)
    shares = vault.deposit("alice", Decimal("1000"))
"""

__version__ = "0.1.0"

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    Exact,
    All,
    ALL,
    Amount,
    checked_sub,
    token,
    stateful_unit,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_COLLATERAL_RECEIPT,
    UNIT_TYPE_DEBT_TOKEN,
    UNIT_TYPE_VAULT_SHARE,
    UNIT_TYPE_LENDING_MARKET,
    UNIT_TYPE_REWARDS_MARKET,
    UNIT_TYPE_LEVERAGED_STRATEGY,
)

# Exceptions
from .core import (
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    StrategyError,
    ConfigurationError,
    ZeroBorrowRateError,
    AuthorizationError,
    ExternalMarketFailure,
    NegativeAmountError,
    StrategyStateError,
    DeleverageStalled,
)

# Ledger
from .ledger import Ledger

# Markets
from .markets import (
    LendingMarket,
    ReserveTokens,
    AccountPosition,
    AccountRisk,
    INTEREST_RATE_MODE_STABLE,
    INTEREST_RATE_MODE_VARIABLE,
    calculate_account_risk,
    open_lending_market,
    RewardsMarket,
    calculate_pending,
    open_rewards_market,
)

# Strategy
from .strategy import (
    StrategyConfig,
    StrategyRoles,
    StrategyState,
    LeveragedStrategy,
    create_leveraged_strategy,
    load_strategy_state,
    to_state_dict,
    save_strategy_state,
    ReserveTracker,
    PositionManager,
    RebalanceController,
    HarvestEngine,
    WithdrawalHandler,
    LifecycleController,
    FeeDistributor,
    FeeSplit,
    FeeCharge,
    WithdrawalFeeConfig,
    calculate_fee_charge,
    compute_fee_payout,
    calculate_withdrawal_fee,
    calculate_next_rung,
    calculate_target_supply,
    MAX_BORROW_DEPTH,
    MAX_DELEVERAGE_ROUNDS,
    STATUS_ACTIVE,
    STATUS_PAUSED,
    STATUS_RETIRED,
)

# Vault
from .vault import Vault, open_vault
