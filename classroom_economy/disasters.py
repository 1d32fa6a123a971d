"""
Disasters

Teacher-defined economic events. A Disaster is a reusable template
(effect type, effect value, target scope); triggering one is a bulk
adjustment over the matched accounts followed by an immutable
DisasterEvent summarising how many students were hit and by how much.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .currency import to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager
from .ledger import TransactionType
from .bulk import BulkOperationProcessor, BulkScope
from .salaries import SalaryProvider
from .clock import Clock, utc_now
from .errors import EconomyValidationError, NotFoundError
from .retry import retry_on_conflict
from .logging_config import get_logger, log_action

PERCENT = Decimal("100")
CENT = Decimal("0.01")


class DisasterEffect(Enum):
    BALANCE_PERCENTAGE = "balance_percentage"   # value is a percent of the current balance
    BALANCE_FIXED = "balance_fixed"             # value is a fixed amount
    SALARY_PERCENTAGE = "salary_percentage"     # value is a percent of the weekly salary


@dataclass
class Disaster(StorageRecord):
    """Reusable disaster template"""
    name: str
    effect_type: DisasterEffect
    effect_value: Decimal       # Signed; negative values take money away
    affects_all_classes: bool = True
    target_class: Optional[str] = None
    description: Optional[str] = None
    icon: str = "🌪️"
    is_active: bool = True
    created_by: Optional[str] = None

    def scope(self, target_class: Optional[str] = None) -> BulkScope:
        """All-class templates ignore a trigger-time class; others take it over their own"""
        if self.affects_all_classes:
            return BulkScope.all_classes()
        class_name = target_class or self.target_class
        if not class_name:
            return BulkScope.all_classes()
        return BulkScope.for_class(class_name)


@dataclass
class DisasterEvent(StorageRecord):
    """Immutable record of one trigger"""
    disaster_id: str
    disaster_name: str
    affected_students: int
    total_impact: Decimal       # Signed sum of the applied deltas
    target_class: Optional[str] = None
    notes: Optional[str] = None
    triggered_by: Optional[str] = None
    transaction_ids: Optional[List[str]] = None


class DisasterManager:
    """Disaster template CRUD and triggering"""

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        bulk_processor: BulkOperationProcessor,
        audit_trail: AuditTrail,
        salary_provider: Optional[SalaryProvider] = None,
        floor_at_zero: bool = True,
        clock: Clock = utc_now,
        max_retries: int = 5,
        backoff_base: float = 0.05
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.bulk_processor = bulk_processor
        self.audit_trail = audit_trail
        self.salary_provider = salary_provider
        self.floor_at_zero = floor_at_zero
        self.clock = clock
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.disasters_table = "disasters"
        self.events_table = "disaster_events"
        self.logger = get_logger("classroom_economy.disasters")

    def create_disaster(
        self,
        name: str,
        effect_type,
        effect_value,
        affects_all_classes: bool = True,
        target_class: Optional[str] = None,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Disaster:
        if not name:
            raise EconomyValidationError("Disaster name is required")
        effect = self._parse_effect(effect_type)
        value = self._parse_value(effect_value)
        if not affects_all_classes and not target_class:
            raise EconomyValidationError("A class-scoped disaster needs a target class")

        now = self.clock()
        disaster = Disaster(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            effect_type=effect,
            effect_value=value,
            affects_all_classes=affects_all_classes,
            target_class=target_class,
            description=description,
            icon=icon or "🌪️",
            created_by=created_by
        )

        with self.storage.atomic():
            self._save_disaster(disaster)
            self.audit_trail.log_event(
                event_type=AuditEventType.DISASTER_CREATED,
                entity_type="disaster",
                entity_id=disaster.id,
                metadata={"name": name, "effect_type": effect.value, "effect_value": value},
                user_id=created_by
            )

        log_action(
            self.logger, "info", "Disaster created",
            user_id=created_by, action="create_disaster", resource=f"disaster:{disaster.id}"
        )
        return disaster

    def update_disaster(self, disaster_id: str, updated_by: Optional[str] = None, **changes) -> Disaster:
        """Update template fields; omitted fields keep their value"""
        allowed = {"name", "effect_type", "effect_value", "affects_all_classes",
                   "target_class", "description", "icon", "is_active"}
        unknown = set(changes) - allowed
        if unknown:
            raise EconomyValidationError(f"Unknown disaster fields: {', '.join(sorted(unknown))}")

        with self.storage.atomic():
            disaster = self.require_disaster(disaster_id)
            for key, value in changes.items():
                if value is None and key != "target_class":
                    continue
                if key == "effect_type":
                    value = self._parse_effect(value)
                elif key == "effect_value":
                    value = self._parse_value(value)
                setattr(disaster, key, value)
            if not disaster.affects_all_classes and not disaster.target_class:
                raise EconomyValidationError("A class-scoped disaster needs a target class")

            disaster.updated_at = self.clock()
            self._save_disaster(disaster)
            self.audit_trail.log_event(
                event_type=AuditEventType.DISASTER_UPDATED,
                entity_type="disaster",
                entity_id=disaster.id,
                metadata={"changes": sorted(changes)},
                user_id=updated_by
            )
        return disaster

    def toggle_disaster(self, disaster_id: str, updated_by: Optional[str] = None) -> Disaster:
        with self.storage.atomic():
            disaster = self.require_disaster(disaster_id)
            return self.update_disaster(disaster_id, updated_by=updated_by, is_active=not disaster.is_active)

    def delete_disaster(self, disaster_id: str, deleted_by: Optional[str] = None) -> bool:
        """Remove a template. Past events stay in the log."""
        with self.storage.atomic():
            self.require_disaster(disaster_id)
            self.storage.delete(self.disasters_table, disaster_id)
            self.audit_trail.log_event(
                event_type=AuditEventType.DISASTER_DELETED,
                entity_type="disaster",
                entity_id=disaster_id,
                metadata={},
                user_id=deleted_by
            )
        return True

    def get_disaster(self, disaster_id: str) -> Optional[Disaster]:
        data = self.storage.load(self.disasters_table, disaster_id)
        return self._disaster_from_dict(data) if data else None

    def require_disaster(self, disaster_id: str) -> Disaster:
        disaster = self.get_disaster(disaster_id)
        if not disaster:
            raise NotFoundError(f"Disaster {disaster_id} not found")
        return disaster

    def list_disasters(self) -> List[Disaster]:
        """Active templates first, newest first within each group"""
        disasters = [self._disaster_from_dict(d) for d in self.storage.load_all(self.disasters_table)]
        disasters.sort(key=lambda d: d.created_at, reverse=True)
        disasters.sort(key=lambda d: not d.is_active)
        return disasters

    def recent_events(self, limit: int = 20) -> List[DisasterEvent]:
        events = [self._event_from_dict(d) for d in self.storage.load_all(self.events_table)]
        events.reverse()
        return events[:limit]

    def trigger_disaster(
        self,
        disaster_id: str,
        notes: Optional[str] = None,
        target_class: Optional[str] = None,
        triggered_by: Optional[str] = None
    ) -> DisasterEvent:
        """
        Apply a disaster to every account in its scope and record the event.

        Per-account delta:
            balance_percentage: balance * value / 100
            balance_fixed:      value
            salary_percentage:  salary * value / 100

        With the zero floor on, a negative delta is clamped so no balance
        goes below zero. Accounts whose delta is zero are not affected.
        The adjustments and the event commit together or not at all.
        """
        def _trigger():
            with self.storage.atomic():
                disaster = self.require_disaster(disaster_id)
                scope = disaster.scope(target_class)

                adjustments = []
                for account in scope.resolve(self.account_manager):
                    delta = self._delta_for(disaster, account)
                    if delta < 0 and self.floor_at_zero:
                        delta = max(delta, -max(account.balance.amount, Decimal("0")))
                    adjustments.append((account, delta))

                result = self.bulk_processor.apply_adjustments(
                    adjustments, TransactionType.DISASTER_ADJUSTMENT,
                    f"Disaster: {disaster.name}",
                    performed_by=triggered_by,
                    allow_overdraft=not self.floor_at_zero,
                    scope=scope,
                    metadata={"disaster_id": disaster.id}
                )

                now = self.clock()
                event = DisasterEvent(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    disaster_id=disaster.id,
                    disaster_name=disaster.name,
                    affected_students=result.updated_count,
                    total_impact=result.total_amount,
                    target_class=scope.class_name,
                    notes=notes,
                    triggered_by=triggered_by,
                    transaction_ids=result.transaction_ids
                )
                self.storage.save(self.events_table, event.id, self._event_to_dict(event))
                self.audit_trail.log_event(
                    event_type=AuditEventType.DISASTER_TRIGGERED,
                    entity_type="disaster",
                    entity_id=disaster.id,
                    metadata={
                        "event_id": event.id,
                        "affected_students": event.affected_students,
                        "total_impact": event.total_impact,
                        "target_class": event.target_class
                    },
                    user_id=triggered_by
                )
                return event

        event = retry_on_conflict(self.storage, _trigger, self.max_retries, self.backoff_base)
        log_action(
            self.logger, "info", f"Disaster triggered: {event.disaster_name}",
            user_id=triggered_by, action="trigger_disaster", resource=f"disaster:{disaster_id}",
            extra={"affected_students": event.affected_students, "total_impact": str(event.total_impact)}
        )
        return event

    def _delta_for(self, disaster: Disaster, account) -> Decimal:
        if disaster.effect_type == DisasterEffect.BALANCE_PERCENTAGE:
            base = account.balance.amount
        elif disaster.effect_type == DisasterEffect.SALARY_PERCENTAGE:
            base = self.salary_provider.get_salary(account.owner_id) if self.salary_provider else Decimal("0")
        else:
            return disaster.effect_value.quantize(CENT, rounding=ROUND_HALF_UP)
        return (base * disaster.effect_value / PERCENT).quantize(CENT, rounding=ROUND_HALF_UP)

    @staticmethod
    def _parse_effect(effect_type) -> DisasterEffect:
        try:
            return DisasterEffect(effect_type.value if isinstance(effect_type, DisasterEffect) else effect_type)
        except ValueError:
            raise EconomyValidationError(f"Invalid effect_type: {effect_type}")

    @staticmethod
    def _parse_value(effect_value) -> Decimal:
        try:
            return to_decimal(effect_value)
        except ValueError as e:
            raise EconomyValidationError(str(e))

    def _save_disaster(self, disaster: Disaster) -> None:
        result = disaster.to_dict()
        result['effect_type'] = disaster.effect_type.value
        result['effect_value'] = str(disaster.effect_value)
        self.storage.save(self.disasters_table, disaster.id, result)

    def _disaster_from_dict(self, data: Dict[str, Any]) -> Disaster:
        return Disaster(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            effect_type=DisasterEffect(data['effect_type']),
            effect_value=Decimal(data['effect_value']),
            affects_all_classes=data['affects_all_classes'],
            target_class=data.get('target_class'),
            description=data.get('description'),
            icon=data.get('icon', "🌪️"),
            is_active=data.get('is_active', True),
            created_by=data.get('created_by')
        )

    def _event_to_dict(self, event: DisasterEvent) -> Dict[str, Any]:
        result = event.to_dict()
        result['total_impact'] = str(event.total_impact)
        return result

    def _event_from_dict(self, data: Dict[str, Any]) -> DisasterEvent:
        return DisasterEvent(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            disaster_id=data['disaster_id'],
            disaster_name=data['disaster_name'],
            affected_students=data['affected_students'],
            total_impact=Decimal(data['total_impact']),
            target_class=data.get('target_class'),
            notes=data.get('notes'),
            triggered_by=data.get('triggered_by'),
            transaction_ids=data.get('transaction_ids') or []
        )
