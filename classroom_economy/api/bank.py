"""
Bank endpoints: accounts, transfers, teacher adjustments, bulk runs, salaries and settings
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import EconomySystem, Principal, get_economy_system, get_principal, require_teacher
from .errors import http_error
from .schemas import (
    AccountAmountRequest,
    BulkRequest,
    OpenAccountRequest,
    SalaryAssignmentRequest,
    SalaryRunRequest,
    SettingUpdateRequest,
    TransferRequest,
    account_response,
    bulk_response,
    salary_response,
    transaction_response,
)
from ..bulk import BulkScope
from ..errors import EconomyError
from ..salaries import StoredSalaryProvider


router = APIRouter()


def _scope(class_name: Optional[str]) -> BulkScope:
    return BulkScope.for_class(class_name) if class_name else BulkScope.all_classes()


def _salary_table(system: EconomySystem) -> StoredSalaryProvider:
    provider = system.salary_provider
    if not isinstance(provider, StoredSalaryProvider):
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Salaries are managed outside this service"
        )
    return provider


@router.post("/accounts", status_code=status.HTTP_201_CREATED)
def open_account(
    request: OpenAccountRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Open the account for a newly provisioned student"""
    try:
        account = system.account_manager.open_account(
            owner_id=request.owner_id,
            class_name=request.class_name,
            initial_balance=request.initial_balance
        )
        return account_response(account)
    except EconomyError as e:
        raise http_error(e)


@router.get("/accounts")
def list_accounts(
    class_name: Optional[str] = None,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    accounts = system.account_manager.find_accounts(class_name=class_name)
    return [account_response(a) for a in accounts]


@router.get("/account")
def get_my_account(
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    """Caller's own account, with whether they may currently transact"""
    account = system.account_manager.get_account_by_owner(principal.user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    response = account_response(account)
    response["can_transact"] = system.ledger.can_transact(principal.user_id)
    return response


@router.post("/transfer")
def transfer(
    request: TransferRequest,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    """Transfer from the caller's account to another account"""
    try:
        txn = system.ledger.transfer_between_owners(
            principal.user_id, request.to_account, request.amount, request.description
        )
        return transaction_response(txn)
    except EconomyError as e:
        raise http_error(e)


@router.post("/deposit")
def deposit(
    request: AccountAmountRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        txn = system.ledger.deposit(
            request.account_id, request.amount, request.description, performed_by=principal.user_id
        )
        return transaction_response(txn)
    except EconomyError as e:
        raise http_error(e)


@router.post("/withdraw")
def withdraw(
    request: AccountAmountRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        txn = system.ledger.withdraw(
            request.account_id, request.amount, request.description, performed_by=principal.user_id
        )
        return transaction_response(txn)
    except EconomyError as e:
        raise http_error(e)


@router.get("/transactions")
def get_transactions(
    account_id: Optional[str] = None,
    limit: int = 50,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    """Transaction history, newest first. Students only see their own account."""
    if not principal.is_teacher:
        own = system.account_manager.get_account_by_owner(principal.user_id)
        if not own:
            raise HTTPException(status_code=404, detail="Account not found")
        if account_id and account_id != own.id:
            raise HTTPException(status_code=403, detail="Students can only view their own history")
        account_id = own.id
    transactions = system.ledger.get_transactions(account_id=account_id, limit=limit)
    return [transaction_response(t) for t in transactions]


@router.post("/bulk/pay")
def bulk_pay(
    request: BulkRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Pay every student in a class (or every class)"""
    try:
        result = system.bulk_processor.bulk_pay(
            _scope(request.class_name), request.amount, request.description,
            performed_by=principal.user_id
        )
        return bulk_response(result)
    except EconomyError as e:
        raise http_error(e)


@router.post("/bulk/remove")
def bulk_remove(
    request: BulkRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Remove an amount from every student in scope who can afford it"""
    try:
        result = system.bulk_processor.bulk_remove(
            _scope(request.class_name), request.amount, request.description,
            performed_by=principal.user_id
        )
        return bulk_response(result)
    except EconomyError as e:
        raise http_error(e)


@router.post("/salaries")
def pay_salaries(
    request: SalaryRunRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        result = system.bulk_processor.pay_salaries(
            _scope(request.class_name), request.period, performed_by=principal.user_id
        )
        return bulk_response(result)
    except EconomyError as e:
        raise http_error(e)


@router.get("/salaries/{owner_id}")
def get_salary(
    owner_id: str,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    """Current weekly salary; students may only read their own"""
    if not principal.is_teacher and owner_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Students can only view their own salary")
    assignment = _salary_table(system).get_assignment(owner_id)
    if not assignment:
        return {"owner_id": owner_id, "salary": "0", "base_salary": None, "level": None,
                "contractual": False, "updated_at": None}
    return salary_response(assignment)


@router.put("/salaries/{owner_id}")
def set_salary(
    owner_id: str,
    request: SalaryAssignmentRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Assign a job (base salary, level, contract) or a flat weekly salary"""
    if (request.salary is None) == (request.base_salary is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of salary or base_salary")
    provider = _salary_table(system)
    try:
        if request.base_salary is not None:
            assignment = provider.assign_job(
                owner_id, request.base_salary, request.level, request.contractual,
                updated_by=principal.user_id
            )
        else:
            assignment = provider.set_salary(owner_id, request.salary, updated_by=principal.user_id)
        return salary_response(assignment)
    except EconomyError as e:
        raise http_error(e)


@router.delete("/salaries/{owner_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_salary(
    owner_id: str,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Unassign the user's job"""
    if not _salary_table(system).remove(owner_id, updated_by=principal.user_id):
        raise HTTPException(status_code=404, detail=f"No salary assigned to {owner_id}")


@router.get("/settings")
def get_settings(
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    snapshot = system.bank_settings.snapshot()
    return {"version": snapshot.version, "settings": dict(snapshot.values)}


@router.get("/settings/{key}")
def get_setting(
    key: str,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    value = system.bank_settings.get_setting(key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"Setting {key} not found")
    return {"key": key, "value": value}


@router.put("/settings/{key}")
def set_setting(
    key: str,
    request: SettingUpdateRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        setting = system.bank_settings.set_setting(key, request.value, updated_by=principal.user_id)
        return {"key": setting.key, "value": setting.value, "version": setting.version}
    except EconomyError as e:
        raise http_error(e)


@router.get("/conservation")
def verify_conservation(
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Replay every account's history against its stored balance"""
    return system.ledger.verify_conservation()
