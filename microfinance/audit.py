"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every state change of clients, loans, payments and back-office records is
logged here.
"""

import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .storage import StorageInterface, StorageRecord, serialize_value
from .datastore import Tables, new_id, utcnow


class AuditEventType(Enum):
    """Types of audit events"""
    # Client events
    CLIENT_CREATED = "client_created"
    CLIENT_UPDATED = "client_updated"
    CLIENT_DELETED = "client_deleted"

    # Loan events
    LOAN_SUBMITTED = "loan_submitted"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_UPDATED = "loan_updated"
    LOAN_COMPLETED = "loan_completed"
    LOAN_DELETED = "loan_deleted"

    # Payment events
    PAYMENT_POSTED = "payment_posted"
    PAYMENT_ROLLED_BACK = "payment_rolled_back"

    # Back office events
    CASH_CLOSING_SUBMITTED = "cash_closing_submitted"
    CASH_CLOSING_REVIEWED = "cash_closing_reviewed"
    FINANCIAL_TRANSACTION_RECORDED = "financial_transaction_recorded"
    GOAL_SAVED = "goal_saved"
    GOAL_PROGRESS_UPDATED = "goal_progress_updated"

    # User events
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DEACTIVATED = "user_deactivated"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int             # Position in the chain
    event_type: AuditEventType
    entity_type: str          # client, loan, payment, ...
    entity_id: str
    previous_hash: str        # Hash of previous audit event for chaining
    current_hash: str         # SHA-256 hash of this event
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # Principal who initiated the action

    def __post_init__(self):
        self.metadata = serialize_value(self.metadata or {})

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

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = Tables.AUDIT):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def _chain_head(self) -> Optional[AuditEvent]:
        events = self._load_events()
        return events[-1] if events else None

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of the principal who initiated the action

        Returns:
            Created AuditEvent
        """
        with self._lock:
            head = self._chain_head()
            now = utcnow()
            event = AuditEvent(
                id=new_id(),
                created_at=now,
                updated_at=now,
                sequence=head.sequence + 1 if head else 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head.current_hash if head else "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All audit events for one entity, oldest first"""
        events = [
            AuditEvent.from_dict(data)
            for data in self.storage.find(self.table_name, {
                'entity_type': entity_type,
                'entity_id': entity_id
            })
        ]
        events.sort(key=lambda e: e.sequence)
        return events

    def get_events_by_type(self, event_type: AuditEventType,
                           start_time: Optional[datetime] = None,
                           end_time: Optional[datetime] = None) -> List[AuditEvent]:
        """Audit events of one type, optionally within a time range"""
        events = [e for e in self._load_events() if e.event_type == event_type]
        if start_time:
            events = [e for e in events if e.created_at >= start_time]
        if end_time:
            events = [e for e in events if e.created_at <= end_time]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors`` and
            ``chain_breaks``
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
