"""
Salary collaborator.

Job assignment and progression live outside the engine; insurance pricing,
salary runs and salary-based disasters only need a user's current weekly
salary, which they read through SalaryProvider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
import threading
from typing import Dict, Optional

from .currency import to_decimal
from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .clock import Clock, utc_now
from .errors import EconomyValidationError
from .logging_config import get_logger, log_action

LEVEL_STEP = Decimal("0.7222")
CONTRACTUAL_MULTIPLIER = Decimal("1.5")
CENT = Decimal("0.01")


def compute_job_salary(base_salary, level: int = 1, contractual: bool = False) -> Decimal:
    """
    Weekly salary for a job at a given level.

    base * (1 + (level - 1) * 0.7222), times 1.5 for contractual jobs,
    rounded to cents.
    """
    if level < 1:
        raise ValueError("Job level starts at 1")
    salary = to_decimal(base_salary) * (1 + (level - 1) * LEVEL_STEP)
    if contractual:
        salary *= CONTRACTUAL_MULTIPLIER
    return salary.quantize(CENT, rounding=ROUND_HALF_UP)


class SalaryProvider(ABC):
    """Source of a user's authoritative current salary"""

    @abstractmethod
    def get_salary(self, owner_id: str) -> Decimal:
        """Current weekly salary; zero when the user has no job"""
        pass


class InMemorySalaryProvider(SalaryProvider):
    """Salary table held in memory, for tests and single-process deployments"""

    def __init__(self):
        self._salaries: Dict[str, Decimal] = {}
        self._lock = threading.Lock()

    def set_salary(self, owner_id: str, salary) -> None:
        value = to_decimal(salary)
        if value < 0:
            raise ValueError("Salary cannot be negative")
        with self._lock:
            self._salaries[owner_id] = value

    def assign_job(self, owner_id: str, base_salary, level: int = 1, contractual: bool = False) -> Decimal:
        salary = compute_job_salary(base_salary, level, contractual)
        self.set_salary(owner_id, salary)
        return salary

    def remove(self, owner_id: str) -> None:
        with self._lock:
            self._salaries.pop(owner_id, None)

    def get_salary(self, owner_id: str) -> Decimal:
        with self._lock:
            return self._salaries.get(owner_id, Decimal("0"))


@dataclass
class SalaryAssignment:
    owner_id: str
    salary: Decimal
    updated_at: datetime
    base_salary: Optional[Decimal] = None
    level: Optional[int] = None
    contractual: bool = False
    updated_by: Optional[str] = None


class StoredSalaryProvider(SalaryProvider):
    """
    Salary table kept in the shared storage backend.

    Every worker built over the same database sees the same salaries, and a
    salary change commits in the same store transaction as its audit event.
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, clock: Clock = utc_now):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock
        self.table_name = "salaries"
        self.logger = get_logger("classroom_economy.salaries")

    def set_salary(self, owner_id: str, salary, updated_by: Optional[str] = None) -> SalaryAssignment:
        """Set a flat weekly salary"""
        try:
            value = to_decimal(salary)
        except ValueError as e:
            raise EconomyValidationError(str(e))
        return self._store(SalaryAssignment(
            owner_id=owner_id,
            salary=value,
            updated_at=self.clock(),
            updated_by=updated_by
        ))

    def assign_job(
        self,
        owner_id: str,
        base_salary,
        level: int = 1,
        contractual: bool = False,
        updated_by: Optional[str] = None
    ) -> SalaryAssignment:
        """Derive the salary from a job's base salary, level and contract"""
        try:
            base = to_decimal(base_salary)
            salary = compute_job_salary(base, level, contractual)
        except ValueError as e:
            raise EconomyValidationError(str(e))
        return self._store(SalaryAssignment(
            owner_id=owner_id,
            salary=salary,
            updated_at=self.clock(),
            base_salary=base,
            level=level,
            contractual=contractual,
            updated_by=updated_by
        ))

    def remove(self, owner_id: str, updated_by: Optional[str] = None) -> bool:
        with self.storage.atomic():
            removed = self.storage.delete(self.table_name, owner_id)
            if removed:
                self.audit_trail.log_event(
                    event_type=AuditEventType.SALARY_UPDATED,
                    entity_type="salary",
                    entity_id=owner_id,
                    metadata={"salary": "0", "removed": True},
                    user_id=updated_by
                )
        return removed

    def get_assignment(self, owner_id: str) -> Optional[SalaryAssignment]:
        data = self.storage.load(self.table_name, owner_id)
        if not data:
            return None
        return self._assignment_from_dict(data)

    def get_salary(self, owner_id: str) -> Decimal:
        assignment = self.get_assignment(owner_id)
        return assignment.salary if assignment else Decimal("0")

    def _store(self, assignment: SalaryAssignment) -> SalaryAssignment:
        if not assignment.owner_id:
            raise EconomyValidationError("Salary needs an owner")
        if assignment.salary < 0:
            raise EconomyValidationError("Salary cannot be negative")
        if assignment.salary != assignment.salary.quantize(CENT, rounding=ROUND_HALF_UP):
            raise EconomyValidationError("Salary cannot have fractions of a cent")

        with self.storage.atomic():
            self.storage.save(self.table_name, assignment.owner_id, self._assignment_to_dict(assignment))
            self.audit_trail.log_event(
                event_type=AuditEventType.SALARY_UPDATED,
                entity_type="salary",
                entity_id=assignment.owner_id,
                metadata={
                    "salary": str(assignment.salary),
                    "level": assignment.level,
                    "contractual": assignment.contractual
                },
                user_id=assignment.updated_by
            )

        log_action(
            self.logger, "info", f"Salary for {assignment.owner_id} set to {assignment.salary}",
            user_id=assignment.updated_by, action="set_salary",
            resource=f"salary:{assignment.owner_id}",
            extra={"salary": str(assignment.salary), "level": assignment.level}
        )
        return assignment

    def _assignment_to_dict(self, assignment: SalaryAssignment) -> Dict:
        return {
            "owner_id": assignment.owner_id,
            "salary": str(assignment.salary),
            "updated_at": assignment.updated_at.isoformat(),
            "base_salary": str(assignment.base_salary) if assignment.base_salary is not None else None,
            "level": assignment.level,
            "contractual": assignment.contractual,
            "updated_by": assignment.updated_by
        }

    def _assignment_from_dict(self, data: Dict) -> SalaryAssignment:
        return SalaryAssignment(
            owner_id=data["owner_id"],
            salary=Decimal(data["salary"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            base_salary=Decimal(data["base_salary"]) if data.get("base_salary") is not None else None,
            level=data.get("level"),
            contractual=data.get("contractual", False),
            updated_by=data.get("updated_by")
        )
