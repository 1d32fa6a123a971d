"""
Test suite for the loan engine

Tests amortization math, the loan lifecycle, and the idempotent monthly
repayment tick including skipped payments.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from classroom_economy.currency import Money, Currency
from classroom_economy.storage import InMemoryStorage
from classroom_economy.audit import AuditTrail, AuditEventType
from classroom_economy.accounts import AccountManager
from classroom_economy.ledger import LedgerStore, TransactionType
from classroom_economy.bank_settings import BankSettings
from classroom_economy.loans import (
    LoanEngine,
    LoanStatus,
    PaymentStatus,
    calculate_monthly_payment,
    default_monthly_rate,
    split_payment,
)
from classroom_economy.errors import (
    EconomyValidationError,
    InvalidStateTransitionError,
    NotFoundError,
)


def periods(start_year: int, start_month: int, count: int):
    year, month = start_year, start_month
    for _ in range(count):
        yield f"{year:04d}-{month:02d}"
        month += 1
        if month > 12:
            year, month = year + 1, 1


class TestLoanMath:

    def test_standard_payment(self):
        assert calculate_monthly_payment(Decimal("1000"), Decimal("0.01"), 12) == Decimal("88.85")

    def test_zero_interest_divides_evenly(self):
        assert calculate_monthly_payment(Decimal("1200"), Decimal("0"), 12) == Decimal("100.00")

    def test_invalid_term(self):
        with pytest.raises(EconomyValidationError):
            calculate_monthly_payment(Decimal("1000"), Decimal("0.01"), 0)

    def test_rate_tiers(self):
        assert default_monthly_rate(6) == Decimal("0.05") / 12
        assert default_monthly_rate(12) == Decimal("0.10") / 12
        assert default_monthly_rate(24) == Decimal("0.12") / 12
        assert default_monthly_rate(36) == Decimal("0.15") / 12

    def test_split_payment(self):
        amount, principal, interest = split_payment(Decimal("1000"), Decimal("0.01"), Decimal("88.85"), 12)
        assert interest == Decimal("10.00")
        assert principal == Decimal("78.85")
        assert amount == Decimal("88.85")

    def test_last_instalment_settles_remainder(self):
        amount, principal, interest = split_payment(Decimal("88.00"), Decimal("0.01"), Decimal("88.85"), 1)
        assert principal == Decimal("88.00")
        assert interest == Decimal("0.88")
        assert amount == Decimal("88.88")


class TestLoanEngine:

    def setup_method(self):
        self.now = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
        clock = lambda: self.now
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountManager(self.storage, self.audit, clock=clock)
        self.ledger = LedgerStore(self.storage, self.accounts, self.audit, clock=clock)
        self.settings = BankSettings(self.storage, self.audit, clock=clock)
        self.loans = LoanEngine(
            self.storage, self.accounts, self.ledger, self.settings, self.audit,
            clock=clock, backoff_base=0
        )
        self.account = self.accounts.open_account("alice", initial_balance="200")

    def balance(self) -> Decimal:
        return self.ledger.get_balance(self.account.id).amount

    def active_loan(self, principal="1000", term=12, rate="0.01"):
        loan = self.loans.apply_for_loan("alice", principal, term, interest_rate=rate)
        return self.loans.review_loan(loan.id, approved=True, reviewer_id="teacher")

    def test_amortization_schedule(self):
        schedule = self.loans.amortization_schedule("1000", "0.01", 12)

        assert len(schedule) == 12
        assert schedule[-1].remaining_balance == Decimal("0")
        assert sum(e.principal_amount for e in schedule) == Decimal("1000.00")
        assert all(e.payment_amount == Decimal("88.85") for e in schedule[:-1])

    def test_application_is_pending_without_balance_effect(self):
        loan = self.loans.apply_for_loan("alice", "500", 6, purpose="Bicycle")

        assert loan.status == LoanStatus.PENDING
        assert loan.interest_rate == default_monthly_rate(6)
        assert loan.outstanding_balance == loan.principal
        assert self.balance() == Decimal("200.00")
        assert self.loans.get_loan(loan.id).purpose == "Bicycle"

    def test_approval_disburses_and_activates(self):
        loan = self.active_loan()

        assert loan.status == LoanStatus.ACTIVE
        assert loan.monthly_payment == Money(Decimal("88.85"), Currency.ZAR)
        assert loan.payments_remaining == 12
        assert loan.reviewed_by == "teacher"
        assert self.balance() == Decimal("1200.00")

        txns = self.ledger.get_transactions(account_id=self.account.id,
                                            transaction_type=TransactionType.LOAN_DISBURSEMENT)
        assert len(txns) == 1
        assert txns[0].metadata["loan_id"] == loan.id

    def test_denial(self):
        loan = self.loans.apply_for_loan("alice", "500", 6)
        denied = self.loans.review_loan(loan.id, approved=False, reviewer_id="teacher")

        assert denied.status == LoanStatus.DENIED
        assert self.balance() == Decimal("200.00")
        assert len(self.audit.get_events_by_type(AuditEventType.LOAN_DENIED)) == 1

        # A denied loan no longer blocks a new application
        assert self.loans.apply_for_loan("alice", "100", 3).status == LoanStatus.PENDING

    def test_review_only_once(self):
        loan = self.active_loan()
        with pytest.raises(InvalidStateTransitionError):
            self.loans.review_loan(loan.id, approved=True)

    def test_one_open_loan_per_borrower(self):
        self.loans.apply_for_loan("alice", "500", 6)
        with pytest.raises(InvalidStateTransitionError):
            self.loans.apply_for_loan("alice", "100", 3)

    def test_bounds_from_settings(self):
        self.settings.set_setting("loan_max_amount", "300")

        with pytest.raises(EconomyValidationError):
            self.loans.apply_for_loan("alice", "301", 6)
        with pytest.raises(EconomyValidationError):
            self.loans.apply_for_loan("alice", "0", 6)
        with pytest.raises(EconomyValidationError):
            self.loans.apply_for_loan("alice", "100", 61)
        with pytest.raises(EconomyValidationError):
            self.loans.apply_for_loan("alice", "100.005", 6)
        with pytest.raises(EconomyValidationError):
            self.loans.apply_for_loan("alice", "100", 6, interest_rate="1.5")

    def test_unknown_borrower(self):
        with pytest.raises(NotFoundError):
            self.loans.apply_for_loan("nobody", "100", 6)

    def test_full_repayment(self):
        loan = self.active_loan()

        for period in periods(2025, 2, 12):
            payment = self.loans.post_payment(loan.id, period)
            assert payment.status == PaymentStatus.PAID

        loan = self.loans.get_loan(loan.id)
        payments = self.loans.get_payments(loan.id)

        assert loan.status == LoanStatus.PAID_OFF
        assert loan.outstanding_balance.is_zero()
        assert loan.paid_off_at is not None
        assert loan.total_paid.amount == sum(p.amount.amount for p in payments)
        assert sum(p.principal_amount.amount for p in payments) == Decimal("1000.00")
        assert loan.interest_paid.amount == loan.total_paid.amount - Decimal("1000.00")
        assert self.balance() == Decimal("1200.00") - loan.total_paid.amount
        assert len(self.audit.get_events_by_type(AuditEventType.LOAN_PAID_OFF)) == 1

        # Paid-off loans take no more payments
        assert self.loans.post_payment(loan.id, "2026-02") is None

    def test_payment_is_idempotent_per_period(self):
        loan = self.active_loan()

        first = self.loans.post_payment(loan.id, "2025-02")
        second = self.loans.post_payment(loan.id, "2025-02")

        assert first.id == second.id
        assert self.balance() == Decimal("1200.00") - Decimal("88.85")
        assert self.loans.get_loan(loan.id).payments_remaining == 11

    def test_default_period_is_current_month(self):
        loan = self.active_loan()
        payment = self.loans.post_payment(loan.id)
        assert payment.period == "2025-01"

    def test_bad_period_rejected(self):
        loan = self.active_loan()
        with pytest.raises(EconomyValidationError):
            self.loans.post_payment(loan.id, "2025-13")

    def test_skipped_payment_and_retry(self):
        loan = self.active_loan(principal="100", term=2, rate="0")
        self.ledger.withdraw(self.account.id, "300", "Spent it all")

        skipped = self.loans.post_payment(loan.id, "2025-02")
        assert skipped.status == PaymentStatus.SKIPPED
        assert skipped.transaction_id is None
        assert "Insufficient funds" in skipped.reason

        loan = self.loans.get_loan(loan.id)
        assert loan.skipped_payments == 1
        assert loan.last_skipped_period == "2025-02"
        assert loan.payments_remaining == 2
        assert loan.outstanding_balance.amount == Decimal("100.00")

        # Funds arrive; the next tick collects and the term runs one month longer
        self.ledger.deposit(self.account.id, "100", "Allowance")
        assert self.loans.post_payment(loan.id, "2025-03").status == PaymentStatus.PAID
        assert self.loans.post_payment(loan.id, "2025-04").status == PaymentStatus.PAID
        assert self.loans.get_loan(loan.id).status == LoanStatus.PAID_OFF

    def test_pending_loan_takes_no_payment(self):
        loan = self.loans.apply_for_loan("alice", "100", 3)
        with pytest.raises(InvalidStateTransitionError):
            self.loans.post_payment(loan.id, "2025-02")

    def test_payment_cycle(self):
        self.accounts.open_account("bob")
        loan = self.active_loan()
        bob_loan = self.loans.apply_for_loan("bob", "100", 1, interest_rate="0")
        self.loans.review_loan(bob_loan.id, approved=True)
        self.ledger.withdraw(self.accounts.get_account_by_owner("bob").id, "100", "Spent")

        summary = self.loans.run_payment_cycle("2025-02")
        assert summary["paid"] == 1
        assert summary["skipped"] == 1
        assert summary["paid_off"] == 0

        rerun = self.loans.run_payment_cycle("2025-02")
        assert rerun["paid"] == 1
        assert self.loans.get_loan(loan.id).payments_remaining == 11

    def test_list_loans(self):
        self.accounts.open_account("bob")
        self.active_loan()
        self.loans.apply_for_loan("bob", "100", 3)

        assert len(self.loans.list_loans()) == 2
        assert len(self.loans.list_loans(borrower_id="bob")) == 1
        assert len(self.loans.list_loans(status=LoanStatus.ACTIVE)) == 1

    def test_twelve_month_scenario(self):
        loan = self.active_loan(principal="1200", term=12, rate="0.01")
        assert loan.monthly_payment.amount == Decimal("106.62")

        outstanding = []
        for period in periods(2025, 2, 12):
            self.loans.post_payment(loan.id, period)
            outstanding.append(self.loans.get_loan(loan.id).outstanding_balance.amount)

        loan = self.loans.get_loan(loan.id)
        assert outstanding == sorted(outstanding, reverse=True)
        assert len(set(outstanding)) == 12
        assert loan.status == LoanStatus.PAID_OFF
        assert loan.outstanding_balance.amount == Decimal("0")
        assert loan.total_paid.amount == sum(p.amount.amount for p in self.loans.get_payments(loan.id))
        assert loan.total_paid.amount == pytest.approx(Decimal("1279.44"), abs=Decimal("0.10"))
