"""
test_withdrawal.py - Unit tests for vault withdrawals from the strategy
"""

import pytest
from decimal import Decimal

from lendloop import AuthorizationError


class TestWithdraw:

    def test_unwinds_when_available_is_short(self, leveraged):
        strategy = leveraged.strategy
        net = strategy.withdraw("vault", Decimal("100"), requester="alice")

        assert net == Decimal("99.9")
        assert leveraged.ledger.get_balance("vault", "WANT") == Decimal("99.9")
        # the rest, fee included, is put back to work
        assert strategy.total_managed_assets() == Decimal("900.1")
        position = strategy.account_position()
        assert position.supplied == Decimal("900.1") + Decimal("630.07") + Decimal("441.049")
        assert strategy.reserves == Decimal("308.7343")

    def test_owner_pays_no_fee(self, leveraged):
        net = leveraged.strategy.withdraw("vault", Decimal("100"), requester="owner")
        assert net == Decimal("100")

    def test_served_from_available_without_unwinding(self, setup):
        net = setup.strategy.withdraw("vault", Decimal("100"), requester="alice")
        assert net == Decimal("99.9")
        assert setup.strategy.total_managed_assets() == Decimal("900.1")
        assert setup.strategy.events("STRAT_DEPOSIT") == []

    def test_request_larger_than_holdings(self, leveraged):
        net = leveraged.strategy.withdraw("vault", Decimal("5000"), requester="owner")
        assert net == Decimal("1000")
        assert leveraged.strategy.total_managed_assets() == Decimal("0")

    def test_paused_no_fee_no_releverage(self, leveraged):
        leveraged.strategy.pause("owner")
        net = leveraged.strategy.withdraw("vault", Decimal("100"), requester="alice")
        assert net == Decimal("100")
        assert leveraged.strategy.account_position().supplied == Decimal("0")
        assert leveraged.strategy.idle_assets() == Decimal("900")

    def test_harvest_on_deposit_waives_fee(self, leveraged):
        leveraged.strategy.set_harvest_on_deposit("owner", True)
        assert leveraged.strategy.withdraw("vault", Decimal("100"), requester="alice") == Decimal("100")
        leveraged.strategy.set_harvest_on_deposit("owner", False)
        assert leveraged.strategy.withdraw("vault", Decimal("100"), requester="alice") == Decimal("99.9")

    def test_vault_only(self, leveraged):
        with pytest.raises(AuthorizationError):
            leveraged.strategy.withdraw("alice", Decimal("100"))

    def test_reserves_never_exceed_holdings(self, leveraged):
        leveraged.strategy.withdraw("vault", Decimal("100"), requester="alice")
        assert leveraged.strategy.reserves <= leveraged.strategy.idle_assets()

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amount(self, leveraged, amount):
        log_length = len(leveraged.ledger.transaction_log)
        with pytest.raises(ValueError, match="positive"):
            leveraged.strategy.withdraw("vault", amount, requester="alice")
        assert len(leveraged.ledger.transaction_log) == log_length
        assert leveraged.strategy.account_position().supplied == Decimal("2190")
