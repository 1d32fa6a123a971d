"""
Loan Engine Module

Loan lifecycle from application through payoff:

    pending -> approved -> active -> paid_off
    pending -> denied

Approval disburses the principal and activates the loan in one store
transaction. Repayments are driven by a monthly tick keyed by the calendar
period ("YYYY-MM"): each (loan, period) pair is charged at most once, so a
re-run after a crash never double-charges. A borrower who cannot cover the
instalment gets a skipped-payment record instead of an error; the next
period's tick tries again.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Any
from enum import Enum
import re
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager
from .ledger import LedgerStore, TransactionType
from .bank_settings import BankSettings
from .clock import Clock, utc_now, month_key
from .errors import (
    EconomyValidationError,
    InvalidStateTransitionError,
    NotFoundError,
)
from .retry import retry_on_conflict
from .logging_config import get_logger, log_action

CENT = Decimal("0.01")
PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Annual rate by maximum term in months; longer terms use the last rate
ANNUAL_RATE_TIERS: Tuple[Tuple[Optional[int], Decimal], ...] = (
    (6, Decimal("0.05")),
    (12, Decimal("0.10")),
    (24, Decimal("0.12")),
    (None, Decimal("0.15")),
)


class LoanStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    ACTIVE = "active"
    PAID_OFF = "paid_off"


OPEN_STATUSES = (LoanStatus.PENDING, LoanStatus.APPROVED, LoanStatus.ACTIVE)


class PaymentStatus(Enum):
    PAID = "paid"
    SKIPPED = "skipped"


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def default_monthly_rate(term_months: int) -> Decimal:
    """Monthly rate from the term tiers (annual rate / 12)"""
    for max_term, annual in ANNUAL_RATE_TIERS:
        if max_term is None or term_months <= max_term:
            return annual / 12
    raise AssertionError("unreachable")


def calculate_monthly_payment(principal: Decimal, monthly_rate: Decimal, term_months: int) -> Decimal:
    """
    Standard amortization payment P * r(1+r)^n / ((1+r)^n - 1), rounded to cents.
    Zero interest divides the principal evenly.
    """
    if term_months < 1:
        raise EconomyValidationError("Term must be at least one month")
    if monthly_rate == 0:
        return _cents(principal / term_months)
    factor = (1 + monthly_rate) ** term_months
    return _cents(principal * (monthly_rate * factor) / (factor - 1))


def split_payment(
    outstanding: Decimal,
    monthly_rate: Decimal,
    monthly_payment: Decimal,
    payments_remaining: int
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    (amount, principal, interest) for the next instalment.

    Interest accrues on the outstanding principal. The last scheduled
    instalment, or any instalment that would overshoot, settles the exact
    remaining principal plus interest.
    """
    interest = _cents(outstanding * monthly_rate)
    principal = monthly_payment - interest
    if payments_remaining <= 1 or principal >= outstanding:
        principal = outstanding
    return principal + interest, principal, interest


@dataclass
class AmortizationEntry:
    """Single entry in amortization schedule"""
    payment_number: int
    payment_amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    remaining_balance: Decimal


@dataclass
class Loan(StorageRecord):
    """Student loan with terms and repayment progress"""
    borrower_id: str
    account_id: str
    principal: Money
    interest_rate: Decimal              # Monthly rate
    term_months: int
    status: LoanStatus = LoanStatus.PENDING
    outstanding_balance: Money = None   # Remaining principal
    monthly_payment: Money = None
    total_paid: Money = None
    interest_paid: Money = None
    payments_remaining: int = 0
    purpose: Optional[str] = None
    approved_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    paid_off_at: Optional[datetime] = None
    skipped_payments: int = 0
    last_skipped_period: Optional[str] = None

    def __post_init__(self):
        zero = Money(Decimal("0"), self.principal.currency)
        if self.outstanding_balance is None:
            self.outstanding_balance = self.principal
        if self.monthly_payment is None:
            self.monthly_payment = zero
        if self.total_paid is None:
            self.total_paid = zero
        if self.interest_paid is None:
            self.interest_paid = zero

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


@dataclass
class LoanPayment(StorageRecord):
    """One period's repayment attempt: paid, or skipped for lack of funds"""
    loan_id: str
    period: str
    status: PaymentStatus
    amount: Money
    principal_amount: Money
    interest_amount: Money
    outstanding_after: Money
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


class LoanEngine:
    """
    Manages loan applications, review, disbursement and scheduled repayment
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        ledger: LedgerStore,
        bank_settings: BankSettings,
        audit_trail: AuditTrail,
        timezone: str = "Africa/Johannesburg",
        clock: Clock = utc_now,
        max_retries: int = 5,
        backoff_base: float = 0.05
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.ledger = ledger
        self.bank_settings = bank_settings
        self.audit_trail = audit_trail
        self.timezone = timezone
        self.clock = clock
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.loans_table = "loans"
        self.payments_table = "loan_payments"
        self.logger = get_logger("classroom_economy.loans")

    @property
    def currency(self) -> Currency:
        return self.account_manager.currency

    def _run(self, operation):
        return retry_on_conflict(self.storage, operation, self.max_retries, self.backoff_base)

    # ------------------------------------------------------------------
    # Application and review
    # ------------------------------------------------------------------

    def apply_for_loan(
        self,
        borrower_id: str,
        principal,
        term_months: int,
        interest_rate=None,
        purpose: Optional[str] = None
    ) -> Loan:
        """
        Create a pending loan. No balance effect until approval.

        Args:
            borrower_id: Owner of the borrowing account
            principal: Amount requested
            term_months: Number of monthly instalments
            interest_rate: Monthly rate; derived from the term tiers when omitted
            purpose: Optional free-text reason

        Raises:
            EconomyValidationError: Amount, term or rate out of bounds
            InvalidStateTransitionError: Borrower already has an open loan
        """
        try:
            amount = to_decimal(principal)
        except ValueError as e:
            raise EconomyValidationError(str(e))
        if isinstance(term_months, bool) or not isinstance(term_months, int):
            raise EconomyValidationError("term_months must be an integer")

        snapshot = self.bank_settings.snapshot()
        min_amount = snapshot.get_decimal("loan_min_amount", Decimal("1"))
        max_amount = snapshot.get_decimal("loan_max_amount", Decimal("10000"))
        max_term = snapshot.get_int("loan_max_term_months", 60)

        if amount < min_amount or amount > max_amount:
            raise EconomyValidationError(f"Loan amount must be between {min_amount} and {max_amount}")
        if _cents(amount) != amount:
            raise EconomyValidationError("Loan amount cannot have fractions of a cent")
        if term_months < 1 or term_months > max_term:
            raise EconomyValidationError(f"Term must be between 1 and {max_term} months")

        if interest_rate is None:
            rate = default_monthly_rate(term_months)
        else:
            try:
                rate = to_decimal(interest_rate)
            except ValueError as e:
                raise EconomyValidationError(str(e))
            if rate < 0 or rate >= 1:
                raise EconomyValidationError("Monthly interest rate must be in [0, 1)")

        account = self.account_manager.get_account_by_owner(borrower_id)
        if not account:
            raise NotFoundError(f"No account for user {borrower_id}")

        def _apply():
            with self.storage.atomic():
                for existing in self.list_loans(borrower_id=borrower_id):
                    if existing.is_open:
                        raise InvalidStateTransitionError(
                            f"Borrower already has a loan that is {existing.status.value}"
                        )

                now = self.clock()
                loan = Loan(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    borrower_id=borrower_id,
                    account_id=account.id,
                    principal=Money(amount, self.currency),
                    interest_rate=rate,
                    term_months=term_months,
                    purpose=purpose
                )
                self._save_loan(loan)
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_APPLIED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "principal": amount,
                        "term_months": term_months,
                        "interest_rate": rate
                    },
                    user_id=borrower_id
                )
                return loan

        loan = self._run(_apply)
        log_action(
            self.logger, "info", "Loan application received",
            user_id=borrower_id, action="apply_for_loan", resource=f"loan:{loan.id}",
            extra={"principal": str(amount), "term_months": term_months}
        )
        return loan

    def review_loan(self, loan_id: str, approved: bool, reviewer_id: Optional[str] = None) -> Loan:
        """
        Approve or deny a pending loan.

        Approval disburses the principal into the borrower's account and
        activates the loan in the same store transaction.

        Raises:
            InvalidStateTransitionError: Loan is not pending
        """
        def _review():
            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                if loan.status != LoanStatus.PENDING:
                    raise InvalidStateTransitionError(
                        f"Loan {loan_id} cannot be reviewed while {loan.status.value}"
                    )

                now = self.clock()
                loan.reviewed_by = reviewer_id
                loan.updated_at = now

                if not approved:
                    loan.status = LoanStatus.DENIED
                    self._save_loan(loan)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.LOAN_DENIED,
                        entity_type="loan",
                        entity_id=loan.id,
                        metadata={"borrower_id": loan.borrower_id},
                        user_id=reviewer_id
                    )
                    return loan

                loan.status = LoanStatus.APPROVED
                loan.approved_at = now
                loan.monthly_payment = Money(
                    calculate_monthly_payment(loan.principal.amount, loan.interest_rate, loan.term_months),
                    loan.principal.currency
                )

                txn = self.ledger.credit(
                    loan.account_id, loan.principal, TransactionType.LOAN_DISBURSEMENT,
                    f"Loan disbursement ({loan.term_months} months)",
                    performed_by=reviewer_id,
                    metadata={"loan_id": loan.id}
                )

                loan.status = LoanStatus.ACTIVE
                loan.outstanding_balance = loan.principal
                loan.payments_remaining = loan.term_months
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_APPROVED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "borrower_id": loan.borrower_id,
                        "principal": loan.principal.amount,
                        "monthly_payment": loan.monthly_payment.amount,
                        "transaction_id": txn.id
                    },
                    user_id=reviewer_id
                )
                return loan

        loan = self._run(_review)
        log_action(
            self.logger, "info", f"Loan {loan.status.value}",
            user_id=loan.borrower_id, action="review_loan", resource=f"loan:{loan.id}",
            extra={"reviewer_id": reviewer_id, "monthly_payment": str(loan.monthly_payment.amount)}
        )
        return loan

    # ------------------------------------------------------------------
    # Repayment
    # ------------------------------------------------------------------

    def current_period(self) -> str:
        return month_key(self.clock(), self.timezone)

    def post_payment(self, loan_id: str, period: Optional[str] = None) -> Optional[LoanPayment]:
        """
        Charge one monthly instalment for ``period`` (defaults to the current month).

        Idempotent per (loan, period): a second call for the same period
        returns the recorded payment or skip. A paid-off loan is a no-op
        and returns None.

        Raises:
            InvalidStateTransitionError: Loan was never activated
        """
        period = period or self.current_period()
        if not PERIOD_PATTERN.match(period):
            raise EconomyValidationError(f"Period must look like YYYY-MM, got {period!r}")

        payment = self._run(lambda: self._post_payment(loan_id, period))
        if payment is not None and payment.status == PaymentStatus.SKIPPED:
            log_action(
                self.logger, "warning", "Loan payment skipped",
                action="post_payment", resource=f"loan:{loan_id}",
                extra={"period": period, "amount_due": str(payment.amount.amount), "reason": payment.reason}
            )
        return payment

    def _post_payment(self, loan_id: str, period: str) -> Optional[LoanPayment]:
        with self.storage.atomic():
            loan = self._require_loan(loan_id)
            if loan.status == LoanStatus.PAID_OFF:
                return None
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidStateTransitionError(
                    f"Loan {loan_id} is {loan.status.value}; only active loans take payments"
                )

            payment_id = f"{loan.id}:{period}"
            existing = self.storage.load(self.payments_table, payment_id)
            if existing:
                return self._payment_from_dict(existing)

            currency = loan.principal.currency
            amount, principal_part, interest_part = split_payment(
                loan.outstanding_balance.amount, loan.interest_rate,
                loan.monthly_payment.amount, loan.payments_remaining
            )
            now = self.clock()
            balance = self.account_manager.require_account(loan.account_id).balance.amount

            if balance < amount:
                payment = LoanPayment(
                    id=payment_id,
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    period=period,
                    status=PaymentStatus.SKIPPED,
                    amount=Money(amount, currency),
                    principal_amount=Money(Decimal("0"), currency),
                    interest_amount=Money(Decimal("0"), currency),
                    outstanding_after=loan.outstanding_balance,
                    reason=f"Insufficient funds: balance {balance}, due {amount}"
                )
                self._save_payment(payment)
                loan.skipped_payments += 1
                loan.last_skipped_period = period
                loan.updated_at = now
                self._save_loan(loan)
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_PAYMENT_SKIPPED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"period": period, "amount_due": amount, "balance": balance}
                )
                return payment

            txn = self.ledger.debit(
                loan.account_id, amount, TransactionType.LOAN_PAYMENT,
                f"Loan repayment {period}",
                metadata={"loan_id": loan.id, "period": period}
            )

            loan.outstanding_balance = Money(loan.outstanding_balance.amount - principal_part, currency)
            loan.total_paid = loan.total_paid + Money(amount, currency)
            loan.interest_paid = loan.interest_paid + Money(interest_part, currency)
            loan.payments_remaining -= 1
            loan.updated_at = now
            if loan.outstanding_balance.is_zero():
                loan.status = LoanStatus.PAID_OFF
                loan.payments_remaining = 0
                loan.paid_off_at = now

            payment = LoanPayment(
                id=payment_id,
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                period=period,
                status=PaymentStatus.PAID,
                amount=Money(amount, currency),
                principal_amount=Money(principal_part, currency),
                interest_amount=Money(interest_part, currency),
                outstanding_after=loan.outstanding_balance,
                transaction_id=txn.id
            )
            self._save_payment(payment)
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_PAYMENT_MADE,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "period": period,
                    "amount": amount,
                    "principal": principal_part,
                    "interest": interest_part,
                    "outstanding_after": loan.outstanding_balance.amount,
                    "transaction_id": txn.id
                }
            )
            if loan.status == LoanStatus.PAID_OFF:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_PAID_OFF,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"total_paid": loan.total_paid.amount}
                )
            return payment

    def run_payment_cycle(self, period: Optional[str] = None) -> Dict[str, Any]:
        """
        Monthly tick: post the instalment for every active loan.

        Each loan is charged in its own store transaction, so one borrower's
        failure never blocks the others. Safe to re-run for the same period.
        """
        period = period or self.current_period()
        summary = {"period": period, "paid": 0, "skipped": 0, "paid_off": 0, "payments": []}

        for loan in self.list_loans(status=LoanStatus.ACTIVE):
            payment = self.post_payment(loan.id, period)
            if payment is None:
                continue
            if payment.status == PaymentStatus.PAID:
                summary["paid"] += 1
                refreshed = self.get_loan(loan.id)
                if refreshed and refreshed.status == LoanStatus.PAID_OFF:
                    summary["paid_off"] += 1
            else:
                summary["skipped"] += 1
            summary["payments"].append(payment)

        log_action(
            self.logger, "info", "Loan payment cycle completed",
            action="run_payment_cycle", resource=f"period:{period}",
            extra={k: v for k, v in summary.items() if k != "payments"}
        )
        return summary

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return self._loan_from_dict(data) if data else None

    def list_loans(self, borrower_id: Optional[str] = None, status: Optional[LoanStatus] = None) -> List[Loan]:
        filters = {}
        if borrower_id:
            filters["borrower_id"] = borrower_id
        if status:
            filters["status"] = status.value
        return [self._loan_from_dict(d) for d in self.storage.find(self.loans_table, filters)]

    def get_payments(self, loan_id: str) -> List[LoanPayment]:
        """Payment and skip records for a loan, oldest first"""
        payments = [self._payment_from_dict(d)
                    for d in self.storage.find(self.payments_table, {"loan_id": loan_id})]
        payments.sort(key=lambda p: p.period)
        return payments

    def amortization_schedule(self, principal, monthly_rate, term_months: int) -> List[AmortizationEntry]:
        """Preview of the instalments a loan with these terms would pay, absent skips"""
        outstanding = _cents(to_decimal(principal))
        rate = to_decimal(monthly_rate)
        payment = calculate_monthly_payment(outstanding, rate, term_months)

        schedule = []
        remaining = term_months
        number = 0
        while outstanding > 0 and remaining > 0:
            number += 1
            amount, principal_part, interest_part = split_payment(outstanding, rate, payment, remaining)
            outstanding -= principal_part
            remaining -= 1
            schedule.append(AmortizationEntry(
                payment_number=number,
                payment_amount=amount,
                principal_amount=principal_part,
                interest_amount=interest_part,
                remaining_balance=outstanding
            ))
        return schedule

    def _require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    def _save_payment(self, payment: LoanPayment) -> None:
        self.storage.save(self.payments_table, payment.id, self._payment_to_dict(payment))

    def _loan_to_dict(self, loan: Loan) -> Dict:
        """Convert Loan to dictionary for storage"""
        result = loan.to_dict()
        result['currency'] = loan.principal.currency.code
        result['status'] = loan.status.value
        result['interest_rate'] = str(loan.interest_rate)
        for name in ('principal', 'outstanding_balance', 'monthly_payment', 'total_paid', 'interest_paid'):
            result[name] = str(getattr(loan, name).amount)
        for name in ('approved_at', 'paid_off_at'):
            value = getattr(loan, name)
            result[name] = value.isoformat() if value else None
        return result

    def _loan_from_dict(self, data: Dict) -> Loan:
        """Convert dictionary to Loan"""
        currency = Currency[data['currency']]

        def money(name: str) -> Money:
            return Money(Decimal(data[name]), currency)

        def moment(name: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[name]) if data.get(name) else None

        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            account_id=data['account_id'],
            principal=money('principal'),
            interest_rate=Decimal(data['interest_rate']),
            term_months=data['term_months'],
            status=LoanStatus(data['status']),
            outstanding_balance=money('outstanding_balance'),
            monthly_payment=money('monthly_payment'),
            total_paid=money('total_paid'),
            interest_paid=money('interest_paid'),
            payments_remaining=data['payments_remaining'],
            purpose=data.get('purpose'),
            approved_at=moment('approved_at'),
            reviewed_by=data.get('reviewed_by'),
            paid_off_at=moment('paid_off_at'),
            skipped_payments=data.get('skipped_payments', 0),
            last_skipped_period=data.get('last_skipped_period')
        )

    def _payment_to_dict(self, payment: LoanPayment) -> Dict:
        result = payment.to_dict()
        result['currency'] = payment.amount.currency.code
        result['status'] = payment.status.value
        for name in ('amount', 'principal_amount', 'interest_amount', 'outstanding_after'):
            result[name] = str(getattr(payment, name).amount)
        return result

    def _payment_from_dict(self, data: Dict) -> LoanPayment:
        currency = Currency[data['currency']]
        return LoanPayment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            period=data['period'],
            status=PaymentStatus(data['status']),
            amount=Money(Decimal(data['amount']), currency),
            principal_amount=Money(Decimal(data['principal_amount']), currency),
            interest_amount=Money(Decimal(data['interest_amount']), currency),
            outstanding_after=Money(Decimal(data['outstanding_after']), currency),
            transaction_id=data.get('transaction_id'),
            reason=data.get('reason')
        )
