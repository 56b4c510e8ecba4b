"""
test_fees.py - Unit tests for harvest fee split and withdrawal fee
"""

import pytest
from decimal import Decimal
from hypothesis import given, settings
from hypothesis import strategies as st

from lendloop import (
    FeeSplit, WithdrawalFeeConfig, ConfigurationError, StrategyRoles, token,
    calculate_fee_charge, calculate_withdrawal_fee, compute_fee_payout,
)

from tests.strategy_setup import ROLES


WANT = token("WANT", "Wrapped Native")
WHOLE = token("WHOLE", "Whole units", decimal_places=0)


class TestCalculateFeeCharge:

    def test_reference_split(self):
        charge = calculate_fee_charge(Decimal("1000"), FeeSplit(), WANT)
        assert charge.fee_total == Decimal("45")
        assert charge.call_fee == Decimal("4.995")
        assert charge.protocol_fee == Decimal("34.965")
        assert charge.strategist_fee == Decimal("5.04")
        assert charge.retained == Decimal("955")

    def test_rounding_dust_is_retained(self):
        charge = calculate_fee_charge(Decimal("1000"), FeeSplit(), WHOLE)
        assert charge.fee_total == Decimal("45")
        assert (charge.call_fee, charge.protocol_fee, charge.strategist_fee) == (4, 34, 5)
        assert charge.retained == Decimal("957")

    def test_unassigned_share_is_retained(self):
        split = FeeSplit(call_fee=100, protocol_fee=500, strategist_fee=100)
        charge = calculate_fee_charge(Decimal("1000"), split, WANT)
        assert charge.paid == Decimal("31.5")
        assert charge.retained == Decimal("968.5")

    @given(st.decimals(min_value=0, max_value=10**12, places=6, allow_nan=False, allow_infinity=False))
    @settings(max_examples=200)
    def test_paid_never_exceeds_fee_total(self, harvested):
        charge = calculate_fee_charge(harvested, FeeSplit(), WANT)
        assert charge.paid <= charge.fee_total
        assert charge.paid + charge.retained == harvested
        assert charge.retained >= 0


class TestComputeFeePayout:

    def test_builds_without_executing(self, setup):
        log_length = len(setup.ledger.transaction_log)
        charge, pending = compute_fee_payout(
            setup.ledger, "STRAT_WANT", ROLES, FeeSplit(), Decimal("1000"), "keeper"
        )
        assert charge.fee_total == Decimal("45")
        assert [(m.dest, m.quantity) for m in pending.moves] == [
            ("keeper", Decimal("4.995")),
            ("treasury", Decimal("34.965")),
            ("strategist", Decimal("5.04")),
        ]
        assert all(m.source == "strat_want" for m in pending.moves)
        assert pending.origin.event_type == "CHARGE_FEES"
        assert len(setup.ledger.transaction_log) == log_length
        assert setup.ledger.get_balance("keeper", "WANT") == Decimal("0")

    def test_skips_shares_paid_to_the_strategy_itself(self, setup):
        roles = StrategyRoles(
            owner="owner", keeper="keeper", strategist="strat_want",
            vault="vault", protocol_fee_recipient="treasury",
        )
        _, pending = compute_fee_payout(
            setup.ledger, "STRAT_WANT", roles, FeeSplit(), Decimal("1000"), "strat_want"
        )
        assert [m.dest for m in pending.moves] == ["treasury"]

    def test_nothing_to_pay_is_empty(self, setup):
        charge, pending = compute_fee_payout(
            setup.ledger, "STRAT_WANT", ROLES, FeeSplit(), Decimal("0"), "keeper"
        )
        assert charge.paid == Decimal("0")
        assert pending.is_empty()


class TestFeeSplitValidation:

    def test_shares_over_denominator(self):
        with pytest.raises(ConfigurationError, match="exceed"):
            FeeSplit(call_fee=500, protocol_fee=500, strategist_fee=1)

    def test_zero_denominator(self):
        with pytest.raises(ConfigurationError):
            FeeSplit(denominator=0)

    def test_withdrawal_fee_cap(self):
        with pytest.raises(ConfigurationError):
            WithdrawalFeeConfig(rate=51)


class TestWithdrawalFee:

    def test_ten_basis_points(self):
        fee = calculate_withdrawal_fee(Decimal("100"), Decimal("10"), WithdrawalFeeConfig(), WANT)
        assert fee == Decimal("0.1")

    def test_rate_clamped_to_cap(self):
        fee = calculate_withdrawal_fee(Decimal("10000"), Decimal("80"), WithdrawalFeeConfig(), WANT)
        assert fee == Decimal("50")

    def test_zero_rate(self):
        assert calculate_withdrawal_fee(Decimal("100"), Decimal("0"), WithdrawalFeeConfig(), WANT) == 0
