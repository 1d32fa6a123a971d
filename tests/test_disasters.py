"""
Test suite for disaster templates and triggering
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from classroom_economy.storage import InMemoryStorage
from classroom_economy.audit import AuditTrail, AuditEventType
from classroom_economy.accounts import AccountManager
from classroom_economy.ledger import LedgerStore, TransactionType
from classroom_economy.bank_settings import BankSettings
from classroom_economy.salaries import InMemorySalaryProvider
from classroom_economy.bulk import BulkOperationProcessor
from classroom_economy.disasters import DisasterManager, DisasterEffect
from classroom_economy.errors import EconomyValidationError, NotFoundError


class TestDisasters:

    def setup_method(self):
        self.build(floor_at_zero=True)

    def build(self, floor_at_zero):
        clock = lambda: datetime(2025, 3, 5, 9, 0, tzinfo=timezone.utc)
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountManager(self.storage, self.audit, clock=clock)
        self.ledger = LedgerStore(self.storage, self.accounts, self.audit, clock=clock)
        self.settings = BankSettings(self.storage, self.audit, clock=clock)
        self.salaries = InMemorySalaryProvider()
        self.bulk = BulkOperationProcessor(
            self.storage, self.accounts, self.ledger, self.settings, self.audit,
            salary_provider=self.salaries, clock=clock, backoff_base=0
        )
        self.disasters = DisasterManager(
            self.storage, self.accounts, self.bulk, self.audit,
            salary_provider=self.salaries, floor_at_zero=floor_at_zero,
            clock=clock, backoff_base=0
        )
        self.a = self.accounts.open_account("a", class_name="6A", initial_balance="100")
        self.b = self.accounts.open_account("b", class_name="6A", initial_balance="30")
        self.c = self.accounts.open_account("c", class_name="6B", initial_balance="200")

    def balance(self, account) -> Decimal:
        return self.ledger.get_balance(account.id).amount

    def test_create_and_list(self):
        flood = self.disasters.create_disaster("Flood", "balance_fixed", "-50", created_by="teacher")
        self.disasters.create_disaster("Windfall", DisasterEffect.BALANCE_PERCENTAGE, "10")
        self.disasters.toggle_disaster(flood.id)

        listed = self.disasters.list_disasters()
        assert [d.name for d in listed] == ["Windfall", "Flood"]
        assert listed[1].is_active is False
        assert listed[1].effect_value == Decimal("-50")
        assert listed[1].icon == "🌪️"

    def test_validation(self):
        with pytest.raises(EconomyValidationError):
            self.disasters.create_disaster("", "balance_fixed", "-5")
        with pytest.raises(EconomyValidationError):
            self.disasters.create_disaster("Meteor", "asteroid", "-5")
        with pytest.raises(EconomyValidationError):
            self.disasters.create_disaster("Meteor", "balance_fixed", "lots")
        with pytest.raises(EconomyValidationError):
            self.disasters.create_disaster("Meteor", "balance_fixed", "-5", affects_all_classes=False)

    def test_update_and_delete(self):
        flood = self.disasters.create_disaster("Flood", "balance_fixed", "-50")

        updated = self.disasters.update_disaster(flood.id, name="Big flood", effect_value="-75", description=None)
        assert updated.name == "Big flood"
        assert updated.effect_value == Decimal("-75")

        with pytest.raises(EconomyValidationError):
            self.disasters.update_disaster(flood.id, colour="blue")

        assert self.disasters.delete_disaster(flood.id) is True
        assert self.disasters.get_disaster(flood.id) is None
        with pytest.raises(NotFoundError):
            self.disasters.trigger_disaster(flood.id)

    def test_fixed_loss_clamped_at_zero(self):
        flood = self.disasters.create_disaster("Flood", "balance_fixed", "-50")

        event = self.disasters.trigger_disaster(flood.id, notes="Week 3", triggered_by="teacher")

        assert self.balance(self.a) == Decimal("50.00")
        assert self.balance(self.b) == Decimal("0.00")
        assert self.balance(self.c) == Decimal("150.00")
        assert event.affected_students == 3
        assert event.total_impact == Decimal("-130.00")
        assert event.target_class is None

        txn = self.ledger.get_transaction(event.transaction_ids[0])
        assert txn.transaction_type == TransactionType.DISASTER_ADJUSTMENT
        assert txn.metadata["disaster_id"] == flood.id

    def test_accounts_at_zero_are_not_affected(self):
        self.ledger.withdraw(self.b.id, "30", "Spent")
        flood = self.disasters.create_disaster("Flood", "balance_fixed", "-10")

        event = self.disasters.trigger_disaster(flood.id)
        assert event.affected_students == 2

    def test_overdraft_when_floor_disabled(self):
        self.build(floor_at_zero=False)
        flood = self.disasters.create_disaster("Flood", "balance_fixed", "-50")

        self.disasters.trigger_disaster(flood.id)
        assert self.balance(self.b) == Decimal("-20.00")

    def test_percentage_of_balance(self):
        windfall = self.disasters.create_disaster("Windfall", "balance_percentage", "12.5")

        event = self.disasters.trigger_disaster(windfall.id)

        assert self.balance(self.a) == Decimal("112.50")
        assert self.balance(self.b) == Decimal("33.75")
        assert event.total_impact == Decimal("41.25")

    def test_percentage_of_salary(self):
        self.salaries.set_salary("a", "1000")
        strike = self.disasters.create_disaster("Strike", "salary_percentage", "-10")

        event = self.disasters.trigger_disaster(strike.id)

        assert event.affected_students == 1
        assert self.balance(self.a) == Decimal("0.00")
        assert self.balance(self.b) == Decimal("30.00")

    def test_target_class_scoping(self):
        fire = self.disasters.create_disaster(
            "Fire", "balance_fixed", "-10", affects_all_classes=False, target_class="6B"
        )
        event = self.disasters.trigger_disaster(fire.id)
        assert event.affected_students == 1
        assert event.target_class == "6B"
        assert self.balance(self.c) == Decimal("190.00")

        # An explicit class at trigger time overrides the template
        event = self.disasters.trigger_disaster(fire.id, target_class="6A")
        assert event.affected_students == 2

    def test_all_class_template_ignores_trigger_class(self):
        flood = self.disasters.create_disaster("Flood", "balance_fixed", "-5")

        event = self.disasters.trigger_disaster(flood.id, target_class="6B")

        assert event.affected_students == 3
        assert event.target_class is None
        assert self.balance(self.c) == Decimal("195.00")

    def test_events_and_audit(self):
        flood = self.disasters.create_disaster("Flood", "balance_fixed", "-1")
        first = self.disasters.trigger_disaster(flood.id, notes="first")
        second = self.disasters.trigger_disaster(flood.id, notes="second")

        events = self.disasters.recent_events()
        assert [e.id for e in events] == [second.id, first.id]
        assert len(self.audit.get_events_by_type(AuditEventType.DISASTER_TRIGGERED)) == 2
        assert self.ledger.verify_conservation()["valid"]
