"""
EHS Hub - Workflow Stores

This module defines the abstraction for the durable workflow record store and
provides two implementations: an in-memory store for tests and development,
and a MongoDB store backed by motor.

A write is one atomic operation: the field patch and the matching history entry
land together or not at all. There is no versioning; concurrent writers are
resolved by the database (last write wins).
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from ..workflow_models import WorkflowRecord, PATCHABLE_FIELDS

logger = logging.getLogger(__name__)


class StoreWriteError(Exception):
    """Raised when the store rejects or fails a write."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def check_patch(patch: Dict[str, Any]) -> None:
    """Reject patches that touch fields a transition may not write."""
    illegal = sorted(set(patch) - PATCHABLE_FIELDS)
    if illegal:
        raise ValueError(f"Fields not writable by a transition: {illegal}")


class WorkflowStore(ABC):
    """
    Abstract base class for workflow record stores.
    """

    @abstractmethod
    async def read_workflow(self, workflow_id: str) -> Optional[WorkflowRecord]:
        """Return the record, or None if it does not exist."""
        pass

    @abstractmethod
    async def write_workflow(
        self,
        workflow_id: str,
        patch: Dict[str, Any],
        history_entry: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Apply a partial update and append a history entry in one operation.

        Raises:
            StoreWriteError: the write did not succeed; nothing was changed.
        """
        pass

    @abstractmethod
    async def insert_workflow(self, record: WorkflowRecord) -> None:
        """Store a new record."""
        pass

    @abstractmethod
    async def list_workflows(
        self,
        status: Optional[str] = None,
        responsible_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowRecord]:
        """List records, newest first."""
        pass


class InMemoryWorkflowStore(WorkflowStore):
    """
    In-memory workflow store for testing.

    Records can be added programmatically. `fail_writes` makes every write
    raise, to exercise persistence failures.
    """

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self.fail_writes: Optional[str] = None

    def add_workflow(self, record: WorkflowRecord) -> None:
        """Add a record to the store."""
        self._documents[record.id] = record.to_dict()

    def add_workflows(self, records: List[WorkflowRecord]) -> None:
        for record in records:
            self.add_workflow(record)

    async def read_workflow(self, workflow_id: str) -> Optional[WorkflowRecord]:
        doc = self._documents.get(workflow_id)
        if doc is None:
            return None
        return WorkflowRecord.from_dict(copy.deepcopy(doc))

    async def write_workflow(
        self,
        workflow_id: str,
        patch: Dict[str, Any],
        history_entry: Optional[Dict[str, Any]] = None
    ) -> None:
        check_patch(patch)
        if self.fail_writes:
            raise StoreWriteError(self.fail_writes)

        doc = self._documents.get(workflow_id)
        if doc is None:
            raise StoreWriteError(f"Workflow {workflow_id} not found")

        updated = copy.deepcopy(doc)
        updated.update(copy.deepcopy(patch))
        updated["updated_at"] = patch.get("updated_at") or datetime.now(timezone.utc).isoformat()
        if history_entry is not None:
            updated.setdefault("workflow_history", []).append(copy.deepcopy(history_entry))
        self._documents[workflow_id] = updated

    async def insert_workflow(self, record: WorkflowRecord) -> None:
        if self.fail_writes:
            raise StoreWriteError(self.fail_writes)
        if record.id in self._documents:
            raise StoreWriteError(f"Workflow {record.id} already exists")
        self.add_workflow(record)

    async def list_workflows(
        self,
        status: Optional[str] = None,
        responsible_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowRecord]:
        docs = list(self._documents.values())
        if status:
            docs = [d for d in docs if d.get("status") == status]
        if responsible_id:
            docs = [d for d in docs if d.get("responsible_id") == responsible_id]
        docs.sort(key=lambda d: d.get("created_at") or "", reverse=True)
        return [WorkflowRecord.from_dict(copy.deepcopy(d)) for d in docs[skip:skip + limit]]


class MongoWorkflowStore(WorkflowStore):
    """
    MongoDB workflow store.

    Records live in one collection keyed by the `id` field; the history is
    embedded in each record as `workflow_history`.
    """

    def __init__(self, db, collection_name: str = "workflows"):
        self.collection = db[collection_name]

    async def create_indexes(self) -> None:
        await self.collection.create_index("id", unique=True)
        await self.collection.create_index("status")
        await self.collection.create_index("responsible_id")
        await self.collection.create_index("deviation_id")
        await self.collection.create_index("created_at")

    async def read_workflow(self, workflow_id: str) -> Optional[WorkflowRecord]:
        doc = await self.collection.find_one({"id": workflow_id}, {"_id": 0})
        if not doc:
            return None
        return WorkflowRecord.from_dict(doc)

    async def write_workflow(
        self,
        workflow_id: str,
        patch: Dict[str, Any],
        history_entry: Optional[Dict[str, Any]] = None
    ) -> None:
        check_patch(patch)

        update = {
            "$set": {"updated_at": datetime.now(timezone.utc).isoformat(), **patch}
        }
        if history_entry is not None:
            update["$push"] = {"workflow_history": history_entry}

        try:
            result = await self.collection.update_one({"id": workflow_id}, update)
        except PyMongoError as e:
            logger.error("Workflow write failed: id=%s, error=%s", workflow_id, e)
            raise StoreWriteError(str(e), {"workflow_id": workflow_id})

        if result.matched_count == 0:
            raise StoreWriteError(f"Workflow {workflow_id} not found", {"workflow_id": workflow_id})

    async def insert_workflow(self, record: WorkflowRecord) -> None:
        try:
            await self.collection.insert_one(record.to_dict())
        except PyMongoError as e:
            logger.error("Workflow insert failed: id=%s, error=%s", record.id, e)
            raise StoreWriteError(str(e), {"workflow_id": record.id})

    async def list_workflows(
        self,
        status: Optional[str] = None,
        responsible_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[WorkflowRecord]:
        query = {}
        if status:
            query["status"] = status
        if responsible_id:
            query["responsible_id"] = responsible_id

        docs = await self.collection.find(
            query, {"_id": 0}
        ).sort("created_at", DESCENDING).skip(skip).limit(limit).to_list(limit)

        return [WorkflowRecord.from_dict(d) for d in docs]
