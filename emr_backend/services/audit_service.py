"""
Audit Service - In-memory trail of significant user actions
"""
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    VIEW_PATIENT = "view_patient"
    VIEW_PATIENT_CHART = "view_patient_chart"
    EDIT_NOTE = "edit_note"
    CREATE_NOTE = "create_note"
    SIGN_NOTE = "sign_note"
    VIEW_AI_ASSIST = "view_ai_assist"
    USE_DIAGNOSTIC_ASSIST = "use_diagnostic_assist"
    VIEW_DISCHARGE_READINESS = "view_discharge_readiness"
    APPROVE_DISCHARGE = "approve_discharge"
    SCHEDULE_APPOINTMENT = "schedule_appointment"
    EXPORT_DATA = "export_data"
    PRINT_DOCUMENT = "print_document"


AI_INTERACTION_ACTIONS = {
    'diagnostic': AuditAction.USE_DIAGNOSTIC_ASSIST,
    'discharge': AuditAction.VIEW_DISCHARGE_READINESS,
    'summary': AuditAction.VIEW_AI_ASSIST,
    'scribe': AuditAction.VIEW_AI_ASSIST,
}


@dataclass
class AuditEvent:
    id: str
    timestamp: datetime
    user_id: str
    user_name: str
    user_role: str
    action: AuditAction
    resource: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'userId': self.user_id,
            'userName': self.user_name,
            'userRole': self.user_role,
            'action': self.action.value,
            'resource': self.resource,
            'resourceId': self.resource_id,
            'details': self.details,
            'ipAddress': self.ip_address,
            'userAgent': self.user_agent,
        }


class AuditService:
    """
    Audit trail service

    Events are kept in process memory and echoed to the log; they do not
    survive a restart.
    """

    def __init__(self):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def log_event(self, user_id: str, user_name: str, user_role: str,
                  action: AuditAction, resource: str,
                  resource_id: str = None, details: Dict = None,
                  ip_address: str = None, user_agent: str = None) -> AuditEvent:
        """
        Record an audit event

        Args:
            user_id: User performing the action
            user_name: Display name of user
            user_role: Role at time of action
            action: What was done
            resource: Kind of thing acted on (patient, ai_interaction, ...)
            resource_id: Identifier of the thing acted on
            details: Additional context
            ip_address: Client address
            user_agent: Client user agent

        Returns:
            The stored AuditEvent
        """
        event = AuditEvent(
            id=f"audit-{uuid.uuid4().hex[:16]}",
            timestamp=datetime.now(timezone.utc),
            user_id=str(user_id),
            user_name=user_name,
            user_role=user_role,
            action=AuditAction(action),
            resource=resource,
            resource_id=resource_id,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent,
        )

        with self._lock:
            self._events.append(event)

        logger.info(f"[AUDIT] {json.dumps(event.to_dict(), default=str)}")
        return event

    def get_log(self, user_id: str = None, action: AuditAction = None,
                resource: str = None, start: datetime = None, end: datetime = None,
                limit: int = None) -> List[AuditEvent]:
        """Filtered events, newest first"""
        with self._lock:
            events = list(reversed(self._events))

        if user_id:
            events = [e for e in events if e.user_id == str(user_id)]
        if action:
            events = [e for e in events if e.action == AuditAction(action)]
        if resource:
            events = [e for e in events if e.resource == resource]
        if start:
            events = [e for e in events if e.timestamp >= _aware(start)]
        if end:
            events = [e for e in events if e.timestamp <= _aware(end)]

        events.sort(key=lambda e: e.timestamp, reverse=True)
        if limit:
            events = events[:limit]
        return events

    def log_ai_interaction(self, user_id: str, user_name: str, user_role: str,
                           interaction_type: str, patient_id: str = None,
                           encounter_id: str = None, input_summary: str = None,
                           output_summary: str = None) -> AuditEvent:
        return self.log_event(
            user_id=user_id,
            user_name=user_name,
            user_role=user_role,
            action=AI_INTERACTION_ACTIONS[interaction_type],
            resource='ai_interaction',
            resource_id=encounter_id or patient_id,
            details={
                'interactionType': interaction_type,
                'patientId': patient_id,
                'encounterId': encounter_id,
                'inputSummary': input_summary,
                'outputSummary': output_summary,
            },
        )

    def clear(self):
        with self._lock:
            self._events.clear()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


audit_service = AuditService()
