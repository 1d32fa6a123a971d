"""
Insurance endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import EconomySystem, Principal, get_economy_system, require_student
from .errors import http_error
from .schemas import InsurancePurchaseRequest, policy_response, quote_response
from ..errors import EconomyError


router = APIRouter()


@router.get("/quote")
def get_quote(
    principal: Principal = Depends(require_student),
    system: EconomySystem = Depends(get_economy_system)
):
    """Cost per type per week at the caller's current salary"""
    return quote_response(system.insurance.quote(principal.user_id))


@router.get("/policies")
def my_policies(
    principal: Principal = Depends(require_student),
    system: EconomySystem = Depends(get_economy_system)
):
    entries = system.insurance.list_policies(principal.user_id)
    return [policy_response(e["policy"], e["active"]) for e in entries]


@router.post("/purchase", status_code=status.HTTP_201_CREATED)
def purchase(
    request: InsurancePurchaseRequest,
    principal: Principal = Depends(require_student),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        policies = system.insurance.purchase(principal.user_id, request.types, request.weeks)
    except EconomyError as e:
        raise http_error(e)
    charge = system.ledger.get_transaction(policies[0].transaction_id)
    return {
        "message": "Insurance purchased successfully",
        "types": [p.insurance_type.value for p in policies],
        "weeks": request.weeks,
        "total_cost": str(charge.amount.amount),
        "transaction_id": charge.id,
        "policies": [policy_response(p, True) for p in policies]
    }
