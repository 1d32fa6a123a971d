"""
Pydantic schemas for API requests, and response builders for engine records
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..ledger import Transaction
from ..loans import Loan, LoanPayment, AmortizationEntry
from ..bulk import BulkResult
from ..disasters import Disaster, DisasterEvent
from ..insurance import InsurancePolicy, InsuranceQuote
from ..salaries import SalaryAssignment


class OpenAccountRequest(BaseModel):
    owner_id: str
    class_name: Optional[str] = None
    initial_balance: str = "0"


class TransferRequest(BaseModel):
    to_account: str = Field(..., description="Recipient account id or account number")
    amount: str = Field(..., description="Decimal amount as string")
    description: str = "Transfer"


class AccountAmountRequest(BaseModel):
    account_id: str
    amount: str
    description: str


class BulkRequest(BaseModel):
    class_name: Optional[str] = Field(None, description="Class to target; every class when omitted")
    amount: str
    description: str


class SalaryRunRequest(BaseModel):
    class_name: Optional[str] = None
    period: Optional[str] = None


class SettingUpdateRequest(BaseModel):
    value: str


class SalaryAssignmentRequest(BaseModel):
    salary: Optional[str] = Field(None, description="Flat weekly salary")
    base_salary: Optional[str] = Field(None, description="Job base salary; the level and contract scale it")
    level: int = 1
    contractual: bool = False


class LoanApplicationRequest(BaseModel):
    amount: str
    term_months: int
    purpose: Optional[str] = None


class LoanReviewRequest(BaseModel):
    approved: bool


class LoanPeriodRequest(BaseModel):
    period: Optional[str] = Field(None, description="Calendar month as YYYY-MM; current month when omitted")


class StartSessionRequest(BaseModel):
    difficulty: Optional[str] = None


class GuessRequest(BaseModel):
    guess: str


class SettleRequest(BaseModel):
    answers: Optional[List[Any]] = None
    guesses: Optional[List[str]] = None


class InsurancePurchaseRequest(BaseModel):
    types: List[str]
    weeks: int


class CreateDisasterRequest(BaseModel):
    name: str
    effect_type: str
    effect_value: str
    affects_all_classes: bool = True
    target_class: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None


class UpdateDisasterRequest(BaseModel):
    name: Optional[str] = None
    effect_type: Optional[str] = None
    effect_value: Optional[str] = None
    affects_all_classes: Optional[bool] = None
    target_class: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None


class TriggerDisasterRequest(BaseModel):
    target_class: Optional[str] = None
    notes: Optional[str] = None


def account_response(account: Account) -> Dict[str, Any]:
    return {
        "account_id": account.id,
        "account_number": account.account_number,
        "owner_id": account.owner_id,
        "class_name": account.class_name,
        "balance": str(account.balance.amount),
        "currency": account.currency.code,
        "orphaned": account.orphaned
    }


def transaction_response(txn: Transaction) -> Dict[str, Any]:
    return {
        "transaction_id": txn.id,
        "reference": txn.reference,
        "transaction_type": txn.transaction_type.value,
        "from_account_id": txn.from_account_id,
        "to_account_id": txn.to_account_id,
        "amount": str(txn.amount.amount),
        "description": txn.description,
        "created_at": txn.created_at.isoformat()
    }


def loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "loan_id": loan.id,
        "borrower_id": loan.borrower_id,
        "account_id": loan.account_id,
        "principal": str(loan.principal.amount),
        "interest_rate": str(loan.interest_rate),
        "term_months": loan.term_months,
        "status": loan.status.value,
        "outstanding_balance": str(loan.outstanding_balance.amount),
        "monthly_payment": str(loan.monthly_payment.amount),
        "total_paid": str(loan.total_paid.amount),
        "payments_remaining": loan.payments_remaining,
        "skipped_payments": loan.skipped_payments,
        "purpose": loan.purpose,
        "created_at": loan.created_at.isoformat(),
        "approved_at": loan.approved_at.isoformat() if loan.approved_at else None
    }


def payment_response(payment: LoanPayment) -> Dict[str, Any]:
    return {
        "loan_id": payment.loan_id,
        "period": payment.period,
        "status": payment.status.value,
        "amount": str(payment.amount.amount),
        "principal": str(payment.principal_amount.amount),
        "interest": str(payment.interest_amount.amount),
        "outstanding_after": str(payment.outstanding_after.amount),
        "transaction_id": payment.transaction_id,
        "reason": payment.reason
    }


def schedule_response(entries: List[AmortizationEntry]) -> List[Dict[str, Any]]:
    return [
        {
            "payment_number": e.payment_number,
            "payment_amount": str(e.payment_amount),
            "principal_amount": str(e.principal_amount),
            "interest_amount": str(e.interest_amount),
            "remaining_balance": str(e.remaining_balance)
        }
        for e in entries
    ]


def bulk_response(result: BulkResult) -> Dict[str, Any]:
    return result.to_dict()


def disaster_response(disaster: Disaster) -> Dict[str, Any]:
    return {
        "disaster_id": disaster.id,
        "name": disaster.name,
        "description": disaster.description,
        "icon": disaster.icon,
        "effect_type": disaster.effect_type.value,
        "effect_value": str(disaster.effect_value),
        "affects_all_classes": disaster.affects_all_classes,
        "target_class": disaster.target_class,
        "is_active": disaster.is_active
    }


def disaster_event_response(event: DisasterEvent) -> Dict[str, Any]:
    return {
        "event_id": event.id,
        "disaster_id": event.disaster_id,
        "disaster_name": event.disaster_name,
        "affected_students": event.affected_students,
        "total_impact": str(event.total_impact),
        "target_class": event.target_class,
        "notes": event.notes,
        "triggered_by": event.triggered_by,
        "triggered_at": event.created_at.isoformat()
    }


def quote_response(quote: InsuranceQuote) -> Dict[str, Any]:
    return {
        "salary": str(quote.salary),
        "rate_percent": str(quote.rate_percent),
        "per_type_per_week": str(quote.per_type_per_week),
        "types": quote.types
    }


def policy_response(policy: InsurancePolicy, active: bool) -> Dict[str, Any]:
    return {
        "policy_id": policy.id,
        "insurance_type": policy.insurance_type.value,
        "weeks": policy.weeks,
        "total_cost": str(policy.total_cost.amount),
        "week_start_date": policy.week_start_date.isoformat(),
        "end_date": policy.end_date.isoformat(),
        "active": active
    }


def salary_response(assignment: SalaryAssignment) -> Dict[str, Any]:
    return {
        "owner_id": assignment.owner_id,
        "salary": str(assignment.salary),
        "base_salary": str(assignment.base_salary) if assignment.base_salary is not None else None,
        "level": assignment.level,
        "contractual": assignment.contractual,
        "updated_at": assignment.updated_at.isoformat()
    }
