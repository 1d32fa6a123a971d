"""
Bulk Operation Processor

All-or-nothing mutations over a set of accounts. The scope is resolved
from data (a class name, every class, or an explicit account list) and
every matched account is adjusted inside one store transaction: either
each account gets its transaction and balance update, or none does.
"""

import hashlib
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Any

from .currency import Money, quantize, to_decimal
from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .accounts import Account, AccountManager
from .ledger import LedgerStore, TransactionType
from .bank_settings import BankSettings
from .salaries import SalaryProvider
from .clock import Clock, utc_now, to_local
from .errors import EconomyValidationError
from .retry import retry_on_conflict
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class BulkScope:
    """Which accounts a bulk operation touches"""
    class_name: Optional[str] = None
    account_ids: Optional[Tuple[str, ...]] = None

    @classmethod
    def for_class(cls, class_name: str) -> 'BulkScope':
        if not class_name:
            raise EconomyValidationError("Class name is required")
        return cls(class_name=class_name)

    @classmethod
    def all_classes(cls) -> 'BulkScope':
        return cls()

    @classmethod
    def for_accounts(cls, account_ids: Sequence[str]) -> 'BulkScope':
        return cls(account_ids=tuple(sorted(set(account_ids))))

    @property
    def key(self) -> str:
        """Stable identifier, used to make salary runs idempotent per scope"""
        if self.account_ids is not None:
            digest = hashlib.sha256(",".join(self.account_ids).encode("utf-8")).hexdigest()
            return f"accounts:{digest[:16]}"
        if self.class_name is not None:
            return f"class:{self.class_name}"
        return "all"

    def resolve(self, account_manager: AccountManager) -> List[Account]:
        """Matched accounts, orphaned ones excluded"""
        if self.account_ids is not None:
            accounts = [account_manager.get_account(account_id) for account_id in self.account_ids]
            return [a for a in accounts if a is not None and not a.orphaned]
        return account_manager.find_accounts(class_name=self.class_name)


@dataclass
class BulkResult:
    updated_count: int = 0
    total_amount: Decimal = Decimal("0")    # Signed sum of the applied deltas
    transaction_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated_count": self.updated_count,
            "total_amount": str(self.total_amount),
            "transaction_ids": list(self.transaction_ids)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BulkResult':
        return cls(
            updated_count=data["updated_count"],
            total_amount=Decimal(data["total_amount"]),
            transaction_ids=list(data.get("transaction_ids", []))
        )


class BulkOperationProcessor:
    """
    Applies class-wide payments, removals, salary runs and per-account
    adjustment sets atomically
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        ledger: LedgerStore,
        bank_settings: BankSettings,
        audit_trail: AuditTrail,
        salary_provider: Optional[SalaryProvider] = None,
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
        self.salary_provider = salary_provider
        self.timezone = timezone
        self.clock = clock
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.salary_runs_table = "salary_runs"
        self.logger = get_logger("classroom_economy.bulk")

    def _run(self, operation):
        return retry_on_conflict(self.storage, operation, self.max_retries, self.backoff_base)

    def bulk_adjust(
        self,
        scope: BulkScope,
        amount,
        transaction_type: TransactionType,
        description: str,
        performed_by: Optional[str] = None,
        allow_overdraft: bool = False
    ) -> BulkResult:
        """
        Apply the same signed amount to every account in scope.

        A positive amount credits, a negative amount debits. A scope that
        matches nothing is a successful no-op with ``updated_count == 0``.
        """
        try:
            value = to_decimal(amount)
        except ValueError as e:
            raise EconomyValidationError(str(e))
        if value == 0:
            raise EconomyValidationError("Adjustment amount cannot be zero")
        if quantize(value, self.ledger.currency) != value:
            raise EconomyValidationError(f"Amount {value} has more precision than {self.ledger.currency.code} allows")

        def _adjust():
            with self.storage.atomic():
                accounts = scope.resolve(self.account_manager)
                return self.apply_adjustments(
                    [(account, value) for account in accounts],
                    transaction_type, description,
                    performed_by=performed_by, allow_overdraft=allow_overdraft,
                    scope=scope
                )

        return self._finish(self._run(_adjust), "bulk_adjust", scope, performed_by)

    def bulk_pay(self, scope: BulkScope, amount, description: str, performed_by: Optional[str] = None) -> BulkResult:
        """Credit every account in scope"""
        value = self.ledger.money(amount)

        def _pay():
            with self.storage.atomic():
                accounts = scope.resolve(self.account_manager)
                return self.apply_adjustments(
                    [(account, value.amount) for account in accounts],
                    TransactionType.BULK_PAYMENT, description,
                    performed_by=performed_by, scope=scope
                )

        return self._finish(self._run(_pay), "bulk_pay", scope, performed_by)

    def bulk_remove(self, scope: BulkScope, amount, description: str, performed_by: Optional[str] = None) -> BulkResult:
        """Debit every account in scope whose balance covers the amount; the rest are left alone"""
        value = self.ledger.money(amount)

        def _remove():
            with self.storage.atomic():
                accounts = [a for a in scope.resolve(self.account_manager) if a.balance >= value]
                return self.apply_adjustments(
                    [(account, -value.amount) for account in accounts],
                    TransactionType.BULK_REMOVAL, description,
                    performed_by=performed_by, scope=scope
                )

        return self._finish(self._run(_remove), "bulk_remove", scope, performed_by)

    def pay_salaries(
        self,
        scope: BulkScope,
        period: Optional[str] = None,
        performed_by: Optional[str] = None
    ) -> BulkResult:
        """
        Pay every account in scope its weekly salary.

        The salary collaborator is authoritative; accounts whose owner has no
        salary there get ``basic_salary_amount`` from the settings snapshot.
        Re-running the same (scope, period) returns the first run's result
        without paying again.
        """
        period = period or self.current_period()
        run_id = f"{scope.key}:{period}"
        snapshot = self.bank_settings.snapshot()
        basic = snapshot.get_decimal("basic_salary_amount", Decimal("0"))

        def _pay_salaries():
            with self.storage.atomic():
                existing = self.storage.load(self.salary_runs_table, run_id)
                if existing:
                    return BulkResult.from_dict(existing["result"]), False

                adjustments = []
                for account in scope.resolve(self.account_manager):
                    salary = Decimal("0")
                    if self.salary_provider is not None:
                        salary = self.salary_provider.get_salary(account.owner_id)
                    if salary <= 0:
                        salary = basic
                    adjustments.append((account, salary))

                result = self.apply_adjustments(
                    adjustments, TransactionType.SALARY, f"Salary {period}",
                    performed_by=performed_by, scope=scope,
                    metadata={"period": period}
                )

                now = self.clock()
                self.storage.save(self.salary_runs_table, run_id, {
                    "id": run_id,
                    "created_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                    "scope": scope.key,
                    "period": period,
                    "settings_version": snapshot.version,
                    "result": result.to_dict()
                })
                self.audit_trail.log_event(
                    event_type=AuditEventType.SALARY_RUN_COMPLETED,
                    entity_type="salary_run",
                    entity_id=run_id,
                    metadata={
                        "period": period,
                        "updated_count": result.updated_count,
                        "total_amount": result.total_amount
                    },
                    user_id=performed_by
                )
                return result, True

        result, paid = self._run(_pay_salaries)
        if not paid:
            self.logger.info("Salary run %s already completed, nothing paid", run_id)
            return result
        return self._finish(result, "pay_salaries", scope, performed_by)

    def current_period(self) -> str:
        """ISO week of the local date, e.g. '2025-W09'"""
        year, week, _ = to_local(self.clock(), self.timezone).isocalendar()
        return f"{year:04d}-W{week:02d}"

    def apply_adjustments(
        self,
        adjustments: Sequence[Tuple[Account, Decimal]],
        transaction_type: TransactionType,
        description: str,
        performed_by: Optional[str] = None,
        allow_overdraft: bool = False,
        scope: Optional[BulkScope] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> BulkResult:
        """
        Post one signed delta per account inside a single store transaction.

        Zero deltas are skipped and not counted. Any failure rolls back every
        adjustment already posted in the batch.
        """
        result = BulkResult()
        with self.storage.atomic():
            for account, delta in adjustments:
                if delta == 0:
                    continue
                if delta > 0:
                    txn = self.ledger.credit(
                        account.id, Money(delta, account.currency), transaction_type, description,
                        performed_by=performed_by, metadata=metadata
                    )
                else:
                    txn = self.ledger.debit(
                        account.id, Money(-delta, account.currency), transaction_type, description,
                        allow_overdraft=allow_overdraft, performed_by=performed_by, metadata=metadata
                    )
                result.updated_count += 1
                result.total_amount += delta
                result.transaction_ids.append(txn.id)

            if result.updated_count:
                self.audit_trail.log_event(
                    event_type=AuditEventType.BULK_OPERATION_COMPLETED,
                    entity_type="bulk_operation",
                    entity_id=scope.key if scope else "adjustments",
                    metadata={
                        "transaction_type": transaction_type.value,
                        "updated_count": result.updated_count,
                        "total_amount": result.total_amount,
                        "description": description
                    },
                    user_id=performed_by
                )
        return result

    def _finish(self, result: BulkResult, action: str, scope: BulkScope, performed_by: Optional[str]) -> BulkResult:
        if result.updated_count == 0:
            self.logger.info("%s matched no accounts in scope %s", action, scope.key)
        else:
            log_action(
                self.logger, "info", "Bulk operation completed",
                user_id=performed_by, action=action, resource=f"scope:{scope.key}",
                extra={"updated_count": result.updated_count, "total_amount": str(result.total_amount)}
            )
        return result
