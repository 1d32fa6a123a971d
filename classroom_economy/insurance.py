"""
Insurance Module

Weekly coverage priced as a percentage of the buyer's current salary, per
insurance type per week. The premium is charged once at purchase; each
selected type gets its own policy sharing the same start date and length.
Whether a policy is active is derived from the date on every read.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, date, timedelta
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Any
from enum import Enum
import uuid

from .currency import Money, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager
from .ledger import LedgerStore, TransactionType
from .salaries import SalaryProvider
from .clock import Clock, utc_now, local_date
from .errors import EconomyValidationError, NoSalaryError, NotFoundError
from .retry import retry_on_conflict
from .logging_config import get_logger, log_action

MIN_WEEKS = 1
MAX_WEEKS = 52
CENT = Decimal("0.01")


class InsuranceType(Enum):
    HEALTH = "health"
    CYBER = "cyber"
    PROPERTY = "property"


@dataclass
class InsurancePolicy(StorageRecord):
    user_id: str
    insurance_type: InsuranceType
    weeks: int
    rate_percent: Decimal
    total_cost: Money
    week_start_date: date
    transaction_id: Optional[str] = None

    @property
    def end_date(self) -> date:
        """First day no longer covered"""
        return self.week_start_date + timedelta(days=self.weeks * 7)

    def is_active_on(self, day: date) -> bool:
        return self.week_start_date <= day < self.end_date


@dataclass
class InsuranceQuote:
    salary: Decimal
    rate_percent: Decimal
    per_type_per_week: Decimal
    types: List[str]


def parse_insurance_types(types: Iterable) -> List[InsuranceType]:
    """Validated, de-duplicated insurance types in the order given"""
    if isinstance(types, (str, bytes)) or types is None:
        raise EconomyValidationError("types must be a list")
    parsed = []
    for raw in types:
        try:
            insurance_type = raw if isinstance(raw, InsuranceType) else InsuranceType(raw)
        except ValueError:
            raise EconomyValidationError(f"Each type must be health, cyber, or property (got {raw!r})")
        if insurance_type not in parsed:
            parsed.append(insurance_type)
    if not parsed:
        raise EconomyValidationError("Select at least one insurance type")
    return parsed


class InsuranceModule:
    """Quotes and sells coverage; reads salaries from the salary collaborator"""

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        ledger: LedgerStore,
        salary_provider: SalaryProvider,
        audit_trail: AuditTrail,
        rate_percent=Decimal("5"),
        timezone: str = "Africa/Johannesburg",
        clock: Clock = utc_now,
        max_retries: int = 5,
        backoff_base: float = 0.05
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.ledger = ledger
        self.salary_provider = salary_provider
        self.audit_trail = audit_trail
        self.rate_percent = to_decimal(rate_percent)
        self.timezone = timezone
        self.clock = clock
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.policies_table = "insurance_policies"
        self.logger = get_logger("classroom_economy.insurance")

    def today(self) -> date:
        return local_date(self.clock(), self.timezone)

    def _weekly_rate(self, salary: Decimal) -> Decimal:
        return salary * self.rate_percent / 100

    def quote(self, user_id: str) -> InsuranceQuote:
        salary = self.salary_provider.get_salary(user_id)
        return InsuranceQuote(
            salary=salary,
            rate_percent=self.rate_percent,
            per_type_per_week=self._weekly_rate(salary).quantize(CENT, rounding=ROUND_HALF_UP),
            types=[t.value for t in InsuranceType]
        )

    def purchase(self, user_id: str, types: Iterable, weeks: int) -> List[InsurancePolicy]:
        """
        Buy coverage for one or more types.

        Total cost = number of types * salary * rate * weeks, charged once
        as an ``insurance_premium`` debit that may not overdraw.

        Raises:
            EconomyValidationError: No types, unknown type, or weeks outside 1..52
            NoSalaryError: The buyer has no salary to price against
            InsufficientFundsError: Balance does not cover the premium
        """
        selected = parse_insurance_types(types)
        if isinstance(weeks, bool) or not isinstance(weeks, int) or not MIN_WEEKS <= weeks <= MAX_WEEKS:
            raise EconomyValidationError(f"weeks must be between {MIN_WEEKS} and {MAX_WEEKS}")

        salary = self.salary_provider.get_salary(user_id)
        if salary <= 0:
            raise NoSalaryError(
                f"User {user_id} needs a job to buy insurance; "
                f"cost is {self.rate_percent}% of salary per type per week"
            )

        account = self.account_manager.get_account_by_owner(user_id)
        if not account:
            raise NotFoundError(f"No account for user {user_id}")

        weekly = self._weekly_rate(salary)
        per_policy = (weekly * weeks).quantize(CENT, rounding=ROUND_HALF_UP)
        total = (weekly * weeks * len(selected)).quantize(CENT, rounding=ROUND_HALF_UP)
        if total <= 0:
            raise EconomyValidationError("Invalid cost calculation")

        labels = ", ".join(f"{t.value.capitalize()} ({weeks} wk)" for t in selected)

        def _purchase():
            with self.storage.atomic():
                txn = self.ledger.debit(
                    account.id, total, TransactionType.INSURANCE_PREMIUM,
                    f"Insurance: {labels}",
                    performed_by=user_id,
                    metadata={"types": [t.value for t in selected], "weeks": weeks}
                )

                now = self.clock()
                start = local_date(now, self.timezone)
                policies = []
                for insurance_type in selected:
                    policy = InsurancePolicy(
                        id=str(uuid.uuid4()),
                        created_at=now,
                        updated_at=now,
                        user_id=user_id,
                        insurance_type=insurance_type,
                        weeks=weeks,
                        rate_percent=self.rate_percent,
                        total_cost=Money(per_policy, account.currency),
                        week_start_date=start,
                        transaction_id=txn.id
                    )
                    self.storage.save(self.policies_table, policy.id, self._policy_to_dict(policy))
                    policies.append(policy)

                self.audit_trail.log_event(
                    event_type=AuditEventType.INSURANCE_PURCHASED,
                    entity_type="account",
                    entity_id=account.id,
                    metadata={
                        "types": [t.value for t in selected],
                        "weeks": weeks,
                        "total_cost": total,
                        "transaction_id": txn.id
                    },
                    user_id=user_id
                )
                return policies

        policies = retry_on_conflict(self.storage, _purchase, self.max_retries, self.backoff_base)
        log_action(
            self.logger, "info", "Insurance purchased",
            user_id=user_id, action="purchase_insurance", resource=f"account:{account.id}",
            extra={"types": [t.value for t in selected], "weeks": weeks, "total_cost": str(total)}
        )
        return policies

    def list_policies(self, user_id: str, on: Optional[date] = None) -> List[Dict[str, Any]]:
        """Policies for a user, newest first, each with an ``active`` flag for the given day"""
        day = on or self.today()
        policies = [self._policy_from_dict(d) for d in self.storage.find(self.policies_table, {"user_id": user_id})]
        policies.sort(key=lambda p: p.created_at, reverse=True)
        return [{"policy": p, "active": p.is_active_on(day)} for p in policies]

    def has_active_coverage(self, user_id: str, insurance_type, on: Optional[date] = None) -> bool:
        wanted = parse_insurance_types([insurance_type])[0]
        return any(
            entry["active"] and entry["policy"].insurance_type == wanted
            for entry in self.list_policies(user_id, on)
        )

    def _policy_to_dict(self, policy: InsurancePolicy) -> Dict[str, Any]:
        result = policy.to_dict()
        result['insurance_type'] = policy.insurance_type.value
        result['total_cost'] = str(policy.total_cost.amount)
        result['currency'] = policy.total_cost.currency.code
        result['week_start_date'] = policy.week_start_date.isoformat()
        return result

    def _policy_from_dict(self, data: Dict[str, Any]) -> InsurancePolicy:
        currency = self.account_manager.currency
        return InsurancePolicy(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            insurance_type=InsuranceType(data['insurance_type']),
            weeks=data['weeks'],
            rate_percent=Decimal(data['rate_percent']),
            total_cost=Money(Decimal(data['total_cost']), currency),
            week_start_date=date.fromisoformat(data['week_start_date']),
            transaction_id=data.get('transaction_id')
        )
