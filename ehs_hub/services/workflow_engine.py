"""
EHS Hub - Workflow State Engine

This module implements the state machine for corrective/preventive action
workflows. A workflow item is assigned to a responsible user, who reports it as
completed or blocked; a validator then approves it or returns it for rework.

The workflow engine is pure business logic with no direct HTTP or DB calls.
All state transitions are deterministic and can be covered by unit tests.

Lifecycle:
    pending --submit--> submitted_completed | submitted_blocked
    submitted_* --approve--> approved (terminal)
    submitted_* --return--> returned --submit--> submitted_* (resubmission)

Status values are stored as free strings. Anything outside the known set is
treated as unrecognized: it has no transitions, no actions and is displayed
as-is.
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Dict, List, Tuple, Any, Set
import logging

from dateutil import parser as date_parser

from .workflow_models import WorkflowRecord

logger = logging.getLogger(__name__)


# =============================================================================
# WORKFLOW STATUS & EVENTS
# =============================================================================

class WorkflowStatus(str, Enum):
    """Workflow status values."""
    # Owned by the responsible party
    PENDING = "pending"
    RETURNED = "returned"                          # Sent back by the validator, needs rework

    # Owned by the validator
    SUBMITTED_COMPLETED = "submitted_completed"
    SUBMITTED_BLOCKED = "submitted_blocked"        # Responsible could not complete, reported why

    # Closed
    APPROVED = "approved"


class WorkflowEvent(str, Enum):
    """Events that trigger workflow state transitions."""
    SUBMIT_COMPLETED = "submit_completed"
    SUBMIT_BLOCKED = "submit_blocked"
    APPROVE = "approve"
    RETURN = "return"


class ActorRole(str, Enum):
    """Who may fire an event."""
    RESPONSIBLE = "responsible"
    VALIDATOR = "validator"


class WorkflowAction(str, Enum):
    """Actions a viewer may take on a workflow item."""
    RESPOND = "respond"
    RESUBMIT = "resubmit"      # Relabeling of RESPOND on a returned item
    VALIDATE = "validate"


class StatusOwner(str, Enum):
    """Who currently has the ball."""
    RESPONSIBLE = "responsible"
    VALIDATOR = "validator"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class HistoryAction(str, Enum):
    """Actions recorded in the workflow history."""
    CREATED = "created"
    SUBMITTED_COMPLETED = "submitted_completed"
    SUBMITTED_BLOCKED = "submitted_blocked"
    APPROVED = "approved"
    RETURNED = "returned"
    RESUBMITTED = "resubmitted"


# =============================================================================
# WORKFLOW DEFINITION
# =============================================================================

# Format: {current_status: {event: next_status}}
WORKFLOW_TRANSITIONS: Dict[str, Dict[str, str]] = {
    WorkflowStatus.PENDING.value: {
        WorkflowEvent.SUBMIT_COMPLETED.value: WorkflowStatus.SUBMITTED_COMPLETED.value,
        WorkflowEvent.SUBMIT_BLOCKED.value: WorkflowStatus.SUBMITTED_BLOCKED.value,
    },
    WorkflowStatus.RETURNED.value: {
        WorkflowEvent.SUBMIT_COMPLETED.value: WorkflowStatus.SUBMITTED_COMPLETED.value,
        WorkflowEvent.SUBMIT_BLOCKED.value: WorkflowStatus.SUBMITTED_BLOCKED.value,
    },
    WorkflowStatus.SUBMITTED_COMPLETED.value: {
        WorkflowEvent.APPROVE.value: WorkflowStatus.APPROVED.value,
        WorkflowEvent.RETURN.value: WorkflowStatus.RETURNED.value,
    },
    WorkflowStatus.SUBMITTED_BLOCKED.value: {
        WorkflowEvent.APPROVE.value: WorkflowStatus.APPROVED.value,
        WorkflowEvent.RETURN.value: WorkflowStatus.RETURNED.value,
    },
    WorkflowStatus.APPROVED.value: {},
}

EVENT_ACTORS: Dict[str, ActorRole] = {
    WorkflowEvent.SUBMIT_COMPLETED.value: ActorRole.RESPONSIBLE,
    WorkflowEvent.SUBMIT_BLOCKED.value: ActorRole.RESPONSIBLE,
    WorkflowEvent.APPROVE.value: ActorRole.VALIDATOR,
    WorkflowEvent.RETURN.value: ActorRole.VALIDATOR,
}

RESPONDABLE_STATUSES = frozenset({
    WorkflowStatus.PENDING.value,
    WorkflowStatus.RETURNED.value,
})

VALIDATABLE_STATUSES = frozenset({
    WorkflowStatus.SUBMITTED_COMPLETED.value,
    WorkflowStatus.SUBMITTED_BLOCKED.value,
})

TERMINAL_STATUSES = frozenset({
    WorkflowStatus.APPROVED.value,
})

STATUS_OWNERS: Dict[str, StatusOwner] = {
    WorkflowStatus.PENDING.value: StatusOwner.RESPONSIBLE,
    WorkflowStatus.RETURNED.value: StatusOwner.RESPONSIBLE,
    WorkflowStatus.SUBMITTED_COMPLETED.value: StatusOwner.VALIDATOR,
    WorkflowStatus.SUBMITTED_BLOCKED.value: StatusOwner.VALIDATOR,
    WorkflowStatus.APPROVED.value: StatusOwner.CLOSED,
}


# =============================================================================
# WORKFLOW HISTORY ENTRY
# =============================================================================

class WorkflowHistoryEntry:
    """Represents a single entry in the workflow history."""

    def __init__(
        self,
        action: str,
        from_status: Optional[str],
        to_status: Optional[str],
        performed_by: str,
        notes: Optional[str] = None,
        photos: Optional[List[str]] = None,
        timestamp: Optional[str] = None
    ):
        self.timestamp = timestamp or datetime.now(timezone.utc).isoformat()
        self.action = action
        self.from_status = from_status
        self.to_status = to_status
        self.performed_by = performed_by
        self.notes = notes
        self.photos = list(photos or [])

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "performed_by": self.performed_by,
            "notes": self.notes,
            "photos": self.photos,
        }


# =============================================================================
# MAIN WORKFLOW ENGINE
# =============================================================================

def _value(item: Any) -> Any:
    return item.value if isinstance(item, Enum) else item


class WorkflowEngine:
    """
    Workflow state machine and permission gate.

    Every caller that needs to know what a user may do with a workflow item
    goes through `get_available_actions`.
    """

    @staticmethod
    def parse_status(status: Optional[str]) -> Optional[WorkflowStatus]:
        """Return the known status, or None for anything unrecognized."""
        try:
            return WorkflowStatus(_value(status))
        except ValueError:
            return None

    @staticmethod
    def is_recognized_status(status: Optional[str]) -> bool:
        return WorkflowEngine.parse_status(status) is not None

    @staticmethod
    def can_transition(
        current_status: Optional[str],
        event: str
    ) -> Tuple[bool, Optional[str], str]:
        """
        Check if a transition is valid.

        Returns:
            (can_transition, next_status, reason)
        """
        current_key = _value(current_status)
        event_key = _value(event)

        status_transitions = WORKFLOW_TRANSITIONS.get(current_key)

        if status_transitions is None:
            return (False, None, f"No transitions defined for status '{current_key}'")

        next_status = status_transitions.get(event_key)

        if next_status is None:
            valid_events = list(status_transitions.keys())
            return (False, None, f"Event '{event_key}' not valid for status '{current_key}'. Valid: {valid_events}")

        return (True, next_status, "Transition allowed")

    @staticmethod
    def get_actor_for_event(event: str) -> Optional[ActorRole]:
        """Get the role allowed to fire an event."""
        return EVENT_ACTORS.get(_value(event))

    @staticmethod
    def is_event_actor(record: WorkflowRecord, event: str, user_id: Optional[str]) -> bool:
        """
        Whether the user stands in the role that fires the event on this item.
        Status is not considered; pair with `can_transition`.
        """
        if not user_id:
            return False
        actor = WorkflowEngine.get_actor_for_event(event)
        if actor == ActorRole.RESPONSIBLE:
            return user_id == record.responsible_id
        if actor == ActorRole.VALIDATOR:
            return user_id != record.responsible_id
        return False

    @staticmethod
    def get_history_action(current_status: Optional[str], next_status: str) -> str:
        """History label for a transition. Submitting a returned item is a resubmission."""
        current_key = _value(current_status)
        next_key = _value(next_status)
        if current_key == WorkflowStatus.RETURNED.value and next_key in VALIDATABLE_STATUSES:
            return HistoryAction.RESUBMITTED.value
        return HistoryAction(next_key).value

    # -------------------------------------------------------------------------
    # Permission gate
    # -------------------------------------------------------------------------

    @staticmethod
    def can_respond(record: WorkflowRecord, viewer_id: Optional[str]) -> bool:
        """The responsible party may respond while the item is theirs."""
        return (
            record.status in RESPONDABLE_STATUSES
            and WorkflowEngine.is_event_actor(record, WorkflowEvent.SUBMIT_COMPLETED, viewer_id)
        )

    @staticmethod
    def can_validate(record: WorkflowRecord, viewer_id: Optional[str]) -> bool:
        """
        Anyone but the responsible party may validate a submitted item.
        Whether the viewer actually holds a validator role is decided server-side.
        """
        return (
            record.status in VALIDATABLE_STATUSES
            and WorkflowEngine.is_event_actor(record, WorkflowEvent.APPROVE, viewer_id)
        )

    @staticmethod
    def get_available_actions(
        record: WorkflowRecord,
        viewer_id: Optional[str]
    ) -> Set[WorkflowAction]:
        """Actions the viewer may take on the item right now."""
        actions: Set[WorkflowAction] = set()

        if WorkflowEngine.can_respond(record, viewer_id):
            actions.add(WorkflowAction.RESPOND)
            if record.status == WorkflowStatus.RETURNED.value:
                actions.add(WorkflowAction.RESUBMIT)
        elif WorkflowEngine.can_validate(record, viewer_id):
            actions.add(WorkflowAction.VALIDATE)

        return actions

    # -------------------------------------------------------------------------
    # Display helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def get_owner(status: Optional[str]) -> StatusOwner:
        return STATUS_OWNERS.get(_value(status), StatusOwner.UNKNOWN)

    @staticmethod
    def is_terminal(status: Optional[str]) -> bool:
        return _value(status) in TERMINAL_STATUSES

    @staticmethod
    def parse_deadline(deadline: Optional[str]) -> Optional[datetime]:
        """Parse a stored deadline. Naive values are taken as UTC."""
        if not deadline:
            return None
        try:
            parsed = date_parser.isoparse(deadline)
        except (ValueError, OverflowError):
            logger.debug("Unparseable deadline ignored: %s", deadline)
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def is_overdue(record: WorkflowRecord, now: Optional[datetime] = None) -> bool:
        """Deadline passed and not yet approved."""
        deadline = WorkflowEngine.parse_deadline(record.deadline)
        if deadline is None:
            return False
        now = now or datetime.now(timezone.utc)
        return deadline < now and record.status != WorkflowStatus.APPROVED.value

    @staticmethod
    def get_queue_for_status(status: Optional[str], overdue: bool = False) -> Optional[str]:
        """Map a workflow status to the queue it shows up in."""
        status_key = _value(status)
        if overdue and status_key == WorkflowStatus.PENDING.value:
            return "overdue"
        queue_mapping = {
            WorkflowStatus.PENDING.value: "awaiting_response",
            WorkflowStatus.RETURNED.value: "awaiting_response",
            WorkflowStatus.SUBMITTED_COMPLETED.value: "awaiting_validation",
            WorkflowStatus.SUBMITTED_BLOCKED.value: "awaiting_validation",
        }
        return queue_mapping.get(status_key)

    @staticmethod
    def get_status_display(
        record: WorkflowRecord,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Status summary for list and detail views.
        Unrecognized statuses pass through with their raw value.
        """
        overdue = WorkflowEngine.is_overdue(record, now)
        return {
            "status": record.status,
            "recognized": WorkflowEngine.is_recognized_status(record.status),
            "owner": WorkflowEngine.get_owner(record.status).value,
            "terminal": WorkflowEngine.is_terminal(record.status),
            "is_overdue": overdue,
            "queue": WorkflowEngine.get_queue_for_status(record.status, overdue),
        }

    @staticmethod
    def get_terminal_statuses() -> List[str]:
        return sorted(TERMINAL_STATUSES)
