"""
Test suite for insurance quotes and purchases
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timedelta, timezone

from classroom_economy.storage import InMemoryStorage
from classroom_economy.audit import AuditTrail, AuditEventType
from classroom_economy.accounts import AccountManager
from classroom_economy.ledger import LedgerStore, TransactionType
from classroom_economy.salaries import InMemorySalaryProvider
from classroom_economy.insurance import InsuranceModule, InsuranceType, parse_insurance_types
from classroom_economy.errors import (
    EconomyValidationError,
    InsufficientFundsError,
    NoSalaryError,
)


class TestParseTypes:

    def test_deduplicates_in_order(self):
        assert parse_insurance_types(["cyber", "health", "cyber"]) == [InsuranceType.CYBER, InsuranceType.HEALTH]

    def test_rejects_unknown_and_empty(self):
        with pytest.raises(EconomyValidationError):
            parse_insurance_types(["pet"])
        with pytest.raises(EconomyValidationError):
            parse_insurance_types([])
        with pytest.raises(EconomyValidationError):
            parse_insurance_types("health")


class TestInsuranceModule:

    def setup_method(self):
        # 2025-03-05 10:00 local
        self.now = datetime(2025, 3, 5, 8, 0, tzinfo=timezone.utc)
        clock = lambda: self.now
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountManager(self.storage, self.audit, clock=clock)
        self.ledger = LedgerStore(self.storage, self.accounts, self.audit, clock=clock)
        self.salaries = InMemorySalaryProvider()
        self.insurance = InsuranceModule(
            self.storage, self.accounts, self.ledger, self.salaries, self.audit,
            rate_percent="5", clock=clock, backoff_base=0
        )
        self.account = self.accounts.open_account("alice", initial_balance="500")
        self.salaries.set_salary("alice", "1000")

    def balance(self) -> Decimal:
        return self.ledger.get_balance(self.account.id).amount

    def test_quote(self):
        quote = self.insurance.quote("alice")

        assert quote.salary == Decimal("1000")
        assert quote.per_type_per_week == Decimal("50.00")
        assert quote.types == ["health", "cyber", "property"]

    def test_purchase_two_types(self):
        policies = self.insurance.purchase("alice", ["health", "cyber"], 2)

        # 2 types x 1000 x 5% x 2 weeks
        assert self.balance() == Decimal("300.00")
        assert len(policies) == 2
        assert {p.insurance_type for p in policies} == {InsuranceType.HEALTH, InsuranceType.CYBER}
        assert all(p.total_cost.amount == Decimal("100.00") for p in policies)
        assert all(p.week_start_date == date(2025, 3, 5) for p in policies)
        assert policies[0].end_date == date(2025, 3, 19)
        assert policies[0].transaction_id == policies[1].transaction_id

        txn = self.ledger.get_transaction(policies[0].transaction_id)
        assert txn.transaction_type == TransactionType.INSURANCE_PREMIUM
        assert txn.amount.amount == Decimal("200.00")
        assert txn.description == "Insurance: Health (2 wk), Cyber (2 wk)"
        assert len(self.audit.get_events_by_type(AuditEventType.INSURANCE_PURCHASED)) == 1

    def test_no_salary(self):
        self.salaries.remove("alice")
        with pytest.raises(NoSalaryError):
            self.insurance.purchase("alice", ["health"], 1)

    def test_insufficient_funds_leaves_nothing_behind(self):
        with pytest.raises(InsufficientFundsError):
            self.insurance.purchase("alice", ["health", "cyber", "property"], 4)

        assert self.balance() == Decimal("500.00")
        assert self.insurance.list_policies("alice") == []

    def test_weeks_bounds(self):
        with pytest.raises(EconomyValidationError):
            self.insurance.purchase("alice", ["health"], 0)
        with pytest.raises(EconomyValidationError):
            self.insurance.purchase("alice", ["health"], 53)
        with pytest.raises(EconomyValidationError):
            self.insurance.purchase("alice", ["health"], "2")

    def test_coverage_expires(self):
        self.insurance.purchase("alice", ["property"], 1)

        assert self.insurance.has_active_coverage("alice", "property")
        assert not self.insurance.has_active_coverage("alice", "health")
        assert self.insurance.has_active_coverage("alice", "property", on=date(2025, 3, 11))
        assert not self.insurance.has_active_coverage("alice", "property", on=date(2025, 3, 12))

        self.now += timedelta(days=8)
        entries = self.insurance.list_policies("alice")
        assert len(entries) == 1
        assert entries[0]["active"] is False
