"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every balance mutation, settlement, loan transition and bulk run is logged
here, inside the same atomic block as the change it describes.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Account events
    ACCOUNT_OPENED = "account_opened"
    ACCOUNT_ORPHANED = "account_orphaned"

    # Ledger events
    TRANSACTION_POSTED = "transaction_posted"
    TRANSFER_COMPLETED = "transfer_completed"

    # Game events
    GAME_SESSION_STARTED = "game_session_started"
    GAME_SESSION_SETTLED = "game_session_settled"
    HIGH_SCORE_RECORDED = "high_score_recorded"

    # Loan events
    LOAN_APPLIED = "loan_applied"
    LOAN_APPROVED = "loan_approved"
    LOAN_DENIED = "loan_denied"
    LOAN_PAYMENT_MADE = "loan_payment_made"
    LOAN_PAYMENT_SKIPPED = "loan_payment_skipped"
    LOAN_PAID_OFF = "loan_paid_off"

    # Bulk events
    BULK_OPERATION_COMPLETED = "bulk_operation_completed"
    SALARY_RUN_COMPLETED = "salary_run_completed"

    # Disaster events
    DISASTER_CREATED = "disaster_created"
    DISASTER_UPDATED = "disaster_updated"
    DISASTER_DELETED = "disaster_deleted"
    DISASTER_TRIGGERED = "disaster_triggered"

    # Insurance events
    INSURANCE_PURCHASED = "insurance_purchased"

    # Salary events
    SALARY_UPDATED = "salary_updated"

    # Settings events
    SETTINGS_UPDATED = "settings_updated"


def _json_safe(value):
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int
    event_type: AuditEventType
    entity_type: str  # account, transaction, game_session, loan, disaster, ...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # Actor who initiated the action

    def __post_init__(self):
        self.metadata = _json_safe(self.metadata or {})

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection.

    The chain head (last hash and sequence number) lives in storage next to
    the events, so an event written inside a transaction that later rolls
    back takes its chain link with it.
    """

    HEAD_ID = "head"

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events", enabled: bool = True):
        self.storage = storage
        self.enabled = enabled
        self.table_name = table_name
        self.head_table = f"{table_name}_head"

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of the actor who initiated the action

        Returns:
            Created AuditEvent, or None when auditing is switched off
        """
        if not self.enabled:
            return None

        with self.storage.atomic():
            head = self.storage.load(self.head_table, self.HEAD_ID) or {"hash": "", "sequence": 0}
            now = datetime.now(timezone.utc)

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=head["sequence"] + 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head["hash"],
                current_hash="",  # Calculated below
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self.storage.save(self.head_table, self.HEAD_ID, {
                "hash": event.current_hash,
                "sequence": event.sequence
            })
            return event

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Get audit events for one entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = sorted((AuditEvent.from_dict(d) for d in events_data), key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]  # Most recent N events
        return events

    def get_events_by_type(self, event_type: AuditEventType, limit: Optional[int] = None) -> List[AuditEvent]:
        """Get audit events of one type, oldest first"""
        events_data = self.storage.find(self.table_name, {'event_type': event_type.value})
        events = sorted((AuditEvent.from_dict(d) for d in events_data), key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    def get_all_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(d) for d in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
