"""
EHS Hub - Workflow Service

Operations on workflow items: the responsible party's response, the
validator's decision, creation, listing and evidence upload.

Every operation reads the current record, checks it against the workflow
engine, and issues exactly one store write. The caller only ever sees the
updated record after the store has confirmed the write; on any failure the
stored record is left as it was. Nothing is retried here.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Set

from .. import config
from .workflow_models import WorkflowRecord, WorkflowNature
from .workflow_engine import (
    WorkflowEngine, WorkflowStatus, WorkflowEvent, WorkflowAction,
    WorkflowHistoryEntry, HistoryAction,
)
from .stores.workflow_store import WorkflowStore, StoreWriteError
from .stores.evidence_store import (
    EvidenceStore, EvidenceStoreError, EvidenceFileRejected, validate_evidence_file
)

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class WorkflowError(Exception):
    """Base exception for workflow operations. All are recoverable by the user."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class WorkflowUnauthorizedError(WorkflowError):
    """Raised when the actor has no standing for the requested transition."""
    pass


class InvalidWorkflowStateError(WorkflowError):
    """Raised when the item's status does not admit the requested transition."""
    pass


class NotesRequiredError(WorkflowError):
    """Raised when mandatory notes are missing."""
    pass


class PersistenceFailureError(WorkflowError):
    """Raised when the underlying store rejects a write."""
    pass


class WorkflowNotFoundError(WorkflowError):
    """Raised when the workflow item does not exist."""
    pass


class EvidenceRejectedError(WorkflowError):
    """Raised when evidence photos fail the type, size or count limits."""
    pass


class ResponseOutcome(str, Enum):
    """What the responsible party reports."""
    COMPLETED = "completed"
    BLOCKED = "blocked"


OUTCOME_EVENTS = {
    ResponseOutcome.COMPLETED.value: WorkflowEvent.SUBMIT_COMPLETED,
    ResponseOutcome.BLOCKED.value: WorkflowEvent.SUBMIT_BLOCKED,
}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_blank(text: Optional[str]) -> bool:
    return not text or not text.strip()


# =============================================================================
# SERVICE
# =============================================================================

class WorkflowService:
    """Workflow operations over a record store and an evidence store."""

    def __init__(
        self,
        store: WorkflowStore,
        evidence_store: Optional[EvidenceStore] = None,
        max_evidence_photos: int = None,
        max_evidence_bytes: int = None
    ):
        self.store = store
        self.evidence_store = evidence_store
        self.max_evidence_photos = (
            max_evidence_photos if max_evidence_photos is not None else config.EVIDENCE_MAX_PHOTOS
        )
        self.max_evidence_bytes = (
            max_evidence_bytes if max_evidence_bytes is not None else config.EVIDENCE_MAX_BYTES
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord:
        record = await self.store.read_workflow(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found", {"workflow_id": workflow_id})
        return record

    async def list_workflows(
        self,
        viewer_id: Optional[str] = None,
        status: Optional[str] = None,
        mine_only: bool = False,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowRecord]:
        """List items, optionally only those the viewer is responsible for."""
        if mine_only and not viewer_id:
            return []
        return await self.store.list_workflows(
            status=status,
            responsible_id=viewer_id if mine_only else None,
            skip=skip,
            limit=limit,
        )

    async def get_history(self, workflow_id: str) -> Dict[str, Any]:
        """History entries in the order they were written, with the current status."""
        record = await self.get_workflow(workflow_id)
        return {
            "workflow_id": record.id,
            "current_status": record.status,
            "history": list(record.workflow_history),
        }

    def available_actions(self, record: WorkflowRecord, viewer_id: Optional[str]) -> Set[WorkflowAction]:
        return WorkflowEngine.get_available_actions(record, viewer_id)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def create_workflow(
        self,
        title: str,
        responsible_id: str,
        created_by: str,
        description: Optional[str] = None,
        deviation_id: Optional[str] = None,
        nature: Optional[str] = None,
        deadline: Optional[str] = None
    ) -> WorkflowRecord:
        """Open a new item in `pending`."""
        if _is_blank(title) or _is_blank(responsible_id):
            raise WorkflowError("Title and responsible are required")
        if nature is not None and nature not in WorkflowNature.ALL:
            raise WorkflowError(f"Unknown nature '{nature}'. Valid: {list(WorkflowNature.ALL)}")

        now = _utc_now()
        history_entry = WorkflowHistoryEntry(
            action=HistoryAction.CREATED.value,
            from_status=None,
            to_status=WorkflowStatus.PENDING.value,
            performed_by=created_by,
            notes=description,
            timestamp=now,
        )
        record = WorkflowRecord(
            id=str(uuid.uuid4()),
            title=title.strip(),
            responsible_id=responsible_id,
            status=WorkflowStatus.PENDING.value,
            description=description or None,
            deviation_id=deviation_id,
            nature=nature,
            deadline=deadline,
            created_at=now,
            updated_at=now,
            workflow_history=[history_entry.to_dict()],
        )

        try:
            await self.store.insert_workflow(record)
        except StoreWriteError as e:
            raise PersistenceFailureError(f"Could not create workflow: {e.message}", e.details)

        logger.info("Workflow created: id=%s, responsible=%s, by=%s", record.id, responsible_id, created_by)
        return record

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def submit_response(
        self,
        workflow_id: str,
        outcome: str,
        notes: Optional[str],
        evidence_photos: Optional[List[str]],
        acting_user_id: Optional[str]
    ) -> WorkflowRecord:
        """
        Report an item as completed or blocked (first submission or resubmission).

        Raises:
            WorkflowNotFoundError, WorkflowUnauthorizedError,
            InvalidWorkflowStateError, NotesRequiredError,
            EvidenceRejectedError, PersistenceFailureError
        """
        outcome_key = outcome.value if isinstance(outcome, ResponseOutcome) else outcome
        event = OUTCOME_EVENTS.get(outcome_key)
        if event is None:
            raise WorkflowError(f"Unknown outcome '{outcome}'. Valid: {list(OUTCOME_EVENTS)}")

        record = await self.get_workflow(workflow_id)

        if not WorkflowEngine.is_event_actor(record, event, acting_user_id):
            raise WorkflowUnauthorizedError(
                "Only the responsible user can respond to this workflow",
                {"workflow_id": workflow_id, "acting_user_id": acting_user_id}
            )

        can, next_status, reason = WorkflowEngine.can_transition(record.status, event)
        if not can:
            logger.warning(
                "Invalid workflow transition: id=%s, current=%s, event=%s, reason=%s",
                workflow_id, record.status, event.value, reason
            )
            raise InvalidWorkflowStateError(reason, {"workflow_id": workflow_id, "status": record.status})

        if event == WorkflowEvent.SUBMIT_BLOCKED and _is_blank(notes):
            raise NotesRequiredError("Notes are required when reporting a blocked action")

        photos = list(evidence_photos or [])
        if len(photos) > self.max_evidence_photos:
            raise EvidenceRejectedError(
                f"At most {self.max_evidence_photos} evidence photos are allowed",
                {"count": len(photos)}
            )

        now = _utc_now()
        patch = {
            "status": next_status,
            "completed_at": now,
            "response_notes": notes or None,
            "evidence_photos": photos,
            # A new decision cycle starts; last feedback stays visible
            "validated_at": None,
            "updated_at": now,
        }
        history_entry = WorkflowHistoryEntry(
            action=WorkflowEngine.get_history_action(record.status, next_status),
            from_status=record.status,
            to_status=next_status,
            performed_by=acting_user_id,
            notes=notes or None,
            photos=photos,
            timestamp=now,
        ).to_dict()

        return await self._commit(record, patch, history_entry, acting_user_id, event.value)

    async def submit_decision(
        self,
        workflow_id: str,
        approve: bool,
        notes: Optional[str],
        acting_user_id: Optional[str]
    ) -> WorkflowRecord:
        """
        Approve or return a submitted item.

        Raises:
            NotesRequiredError, WorkflowNotFoundError,
            InvalidWorkflowStateError, WorkflowUnauthorizedError,
            PersistenceFailureError
        """
        if not approve and _is_blank(notes):
            raise NotesRequiredError("Validator notes are required to return a workflow")

        record = await self.get_workflow(workflow_id)
        event = WorkflowEvent.APPROVE if approve else WorkflowEvent.RETURN

        can, next_status, reason = WorkflowEngine.can_transition(record.status, event)
        if not can:
            logger.warning(
                "Invalid workflow transition: id=%s, current=%s, event=%s, reason=%s",
                workflow_id, record.status, event.value, reason
            )
            raise InvalidWorkflowStateError(reason, {"workflow_id": workflow_id, "status": record.status})

        if not WorkflowEngine.is_event_actor(record, event, acting_user_id):
            raise WorkflowUnauthorizedError(
                "The responsible user cannot validate their own workflow",
                {"workflow_id": workflow_id, "acting_user_id": acting_user_id}
            )

        now = _utc_now()
        patch = {
            "status": next_status,
            "validated_at": now,
            "validator_id": acting_user_id,
            "validator_notes": notes or None,
            "updated_at": now,
        }
        history_entry = WorkflowHistoryEntry(
            action=WorkflowEngine.get_history_action(record.status, next_status),
            from_status=record.status,
            to_status=next_status,
            performed_by=acting_user_id,
            notes=notes or None,
            timestamp=now,
        ).to_dict()

        return await self._commit(record, patch, history_entry, acting_user_id, event.value)

    async def _commit(
        self,
        record: WorkflowRecord,
        patch: Dict[str, Any],
        history_entry: Dict[str, Any],
        actor: str,
        event: str
    ) -> WorkflowRecord:
        try:
            await self.store.write_workflow(record.id, patch, history_entry)
        except StoreWriteError as e:
            logger.error("Workflow write rejected: id=%s, event=%s, error=%s", record.id, event, e.message)
            raise PersistenceFailureError(e.message, e.details)

        logger.info(
            "Workflow transition: id=%s, %s -> %s (event=%s, actor=%s)",
            record.id, record.status, patch["status"], event, actor
        )
        return record.with_patch(patch, history_entry)

    # -------------------------------------------------------------------------
    # Evidence
    # -------------------------------------------------------------------------

    async def upload_evidence(
        self,
        workflow_id: str,
        acting_user_id: Optional[str],
        file_name: str,
        content_type: Optional[str],
        content: bytes
    ) -> str:
        """
        Store one evidence photo for an item the user is about to respond to.
        Returns the reference to pass along with `submit_response`.
        """
        if self.evidence_store is None:
            raise PersistenceFailureError("No evidence store configured")

        record = await self.get_workflow(workflow_id)

        if not WorkflowEngine.is_event_actor(record, WorkflowEvent.SUBMIT_COMPLETED, acting_user_id):
            raise WorkflowUnauthorizedError(
                "Only the responsible user can attach evidence",
                {"workflow_id": workflow_id, "acting_user_id": acting_user_id}
            )
        if not WorkflowEngine.can_respond(record, acting_user_id):
            raise InvalidWorkflowStateError(
                f"Cannot attach evidence to a workflow in status '{record.status}'",
                {"workflow_id": workflow_id, "status": record.status}
            )

        try:
            validate_evidence_file(file_name, content_type, len(content), self.max_evidence_bytes)
        except EvidenceFileRejected as e:
            raise EvidenceRejectedError(e.message, e.details)

        try:
            reference = await self.evidence_store.put_blob(acting_user_id, file_name, content, content_type)
        except EvidenceStoreError as e:
            raise PersistenceFailureError(e.message, e.details)

        logger.info("Evidence uploaded: workflow=%s, by=%s, ref=%s", workflow_id, acting_user_id, reference)
        return reference
