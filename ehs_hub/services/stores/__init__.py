"""
EHS Hub - Stores

Persistence collaborators of the workflow service.

Components:
- WorkflowStore: Abstract interface for the workflow record store
- InMemoryWorkflowStore / MongoWorkflowStore: Implementations
- EvidenceStore: Abstract interface for evidence photo blobs
- InMemoryEvidenceStore / GridFSEvidenceStore: Implementations
"""

from .workflow_store import (
    WorkflowStore, InMemoryWorkflowStore, MongoWorkflowStore, StoreWriteError
)
from .evidence_store import (
    EvidenceStore, InMemoryEvidenceStore, GridFSEvidenceStore,
    EvidenceStoreError, EvidenceFileRejected, validate_evidence_file
)

__all__ = [
    'WorkflowStore',
    'InMemoryWorkflowStore',
    'MongoWorkflowStore',
    'StoreWriteError',
    'EvidenceStore',
    'InMemoryEvidenceStore',
    'GridFSEvidenceStore',
    'EvidenceStoreError',
    'EvidenceFileRejected',
    'validate_evidence_file',
]
