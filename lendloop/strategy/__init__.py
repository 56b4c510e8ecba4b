"""
strategy - The leveraged lending-ladder engine.

Components (leaf first): ReserveTracker, PositionManager, RebalanceController,
FeeDistributor, HarvestEngine, WithdrawalHandler, LifecycleController, and
the LeveragedStrategy facade that serializes and rolls back their calls.
"""

from .access import StrategyRoles, require_manager, require_vault
from .state import (
    StrategyState,
    MAX_BORROW_DEPTH,
    STATUS_ACTIVE,
    STATUS_PAUSED,
    STATUS_RETIRED,
    create_strategy_unit,
    load_strategy_state,
    to_state_dict,
    save_strategy_state,
    record_event,
)
from .reserves import ReserveTracker
from .position import (
    PositionManager,
    MAX_DELEVERAGE_ROUNDS,
    calculate_next_rung,
    calculate_target_supply,
)
from .rebalance import RebalanceController, validate_ladder_params
from .fees import (
    FeeSplit,
    WithdrawalFeeConfig,
    FeeCharge,
    FeeDistributor,
    calculate_fee_charge,
    compute_fee_payout,
    calculate_withdrawal_fee,
)
from .harvest import HarvestEngine
from .withdrawal import WithdrawalHandler
from .lifecycle import LifecycleController
from .engine import StrategyConfig, LeveragedStrategy, create_leveraged_strategy
