"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from .dependencies import EconomySystem, Principal, get_economy_system, get_principal, require_teacher
from .errors import http_error
from .schemas import (
    LoanApplicationRequest,
    LoanPeriodRequest,
    LoanReviewRequest,
    loan_response,
    payment_response,
    schedule_response,
)
from ..errors import EconomyError
from ..loans import LoanStatus, default_monthly_rate


router = APIRouter()


def _visible_loan(system: EconomySystem, loan_id: str, principal: Principal):
    loan = system.loan_engine.get_loan(loan_id)
    if not loan or (not principal.is_teacher and loan.borrower_id != principal.user_id):
        raise HTTPException(status_code=404, detail="Loan not found")
    return loan


@router.post("", status_code=status.HTTP_201_CREATED)
def apply_for_loan(
    request: LoanApplicationRequest,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    """Apply for a loan; it stays pending until a teacher reviews it"""
    try:
        loan = system.loan_engine.apply_for_loan(
            principal.user_id, request.amount, request.term_months, purpose=request.purpose
        )
        return loan_response(loan)
    except EconomyError as e:
        raise http_error(e)


@router.get("")
def list_loans(
    status_filter: Optional[str] = Query(None, alias="status"),
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    """Teachers see every loan; students see their own"""
    try:
        loan_status = LoanStatus(status_filter) if status_filter else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown loan status: {status_filter}")
    borrower_id = None if principal.is_teacher else principal.user_id
    loans = system.loan_engine.list_loans(borrower_id=borrower_id, status=loan_status)
    return [loan_response(loan) for loan in loans]


@router.get("/schedule")
def preview_schedule(
    principal_amount: str,
    term_months: int,
    interest_rate: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    """Amortization preview for the given terms"""
    try:
        rate = interest_rate if interest_rate is not None else default_monthly_rate(term_months)
        entries = system.loan_engine.amortization_schedule(principal_amount, rate, term_months)
        return schedule_response(entries)
    except EconomyError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/payment-cycle")
def run_payment_cycle(
    request: LoanPeriodRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Post this period's instalment for every active loan"""
    try:
        summary = system.loan_engine.run_payment_cycle(request.period)
        summary["payments"] = [payment_response(p) for p in summary["payments"]]
        return summary
    except EconomyError as e:
        raise http_error(e)


@router.get("/{loan_id}")
def get_loan(
    loan_id: str,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    return loan_response(_visible_loan(system, loan_id, principal))


@router.post("/{loan_id}/review")
def review_loan(
    loan_id: str,
    request: LoanReviewRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Approve (and disburse) or deny a pending loan"""
    try:
        loan = system.loan_engine.review_loan(loan_id, request.approved, reviewer_id=principal.user_id)
        return loan_response(loan)
    except EconomyError as e:
        raise http_error(e)


@router.post("/{loan_id}/payments")
def post_payment(
    loan_id: str,
    request: LoanPeriodRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        payment = system.loan_engine.post_payment(loan_id, request.period)
    except EconomyError as e:
        raise http_error(e)
    if payment is None:
        return {"loan_id": loan_id, "status": "paid_off", "message": "Loan already paid off"}
    return payment_response(payment)


@router.get("/{loan_id}/payments")
def get_payments(
    loan_id: str,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    loan = _visible_loan(system, loan_id, principal)
    return [payment_response(p) for p in system.loan_engine.get_payments(loan.id)]
