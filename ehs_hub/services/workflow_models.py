"""
EHS Hub - Workflow Records

The stored shape of a workflow item (a corrective or preventive action raised
from a deviation). Records travel as plain documents between the stores and the
HTTP layer; this dataclass is the typed view the service works with.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Optional, Dict, Any, List


# Fields a transition may write. Anything else is set at creation or never.
PATCHABLE_FIELDS = frozenset({
    "status",
    "completed_at",
    "response_notes",
    "evidence_photos",
    "validated_at",
    "validator_id",
    "validator_notes",
    "updated_at",
})


class WorkflowNature:
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"

    ALL = (CORRECTIVE, PREVENTIVE)


@dataclass
class WorkflowRecord:
    """
    A single workflow item.

    `status` is kept as the raw stored string: the backing schema is not a
    closed enumeration, so unknown values must survive a read/write cycle.
    """
    id: str
    title: str
    responsible_id: str
    status: str = "pending"
    description: Optional[str] = None

    # Response (responsible party)
    response_notes: Optional[str] = None
    evidence_photos: List[str] = field(default_factory=list)
    completed_at: Optional[str] = None

    # Decision (validator)
    validator_id: Optional[str] = None
    validator_notes: Optional[str] = None
    validated_at: Optional[str] = None

    # Context
    deviation_id: Optional[str] = None
    nature: Optional[str] = None
    deadline: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    workflow_history: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a storable document."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                value = list(value)
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowRecord":
        """Build a record from a stored document, ignoring unknown keys (e.g. `_id`)."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if values.get("evidence_photos") is None:
            values["evidence_photos"] = []
        if values.get("workflow_history") is None:
            values["workflow_history"] = []
        return cls(**values)

    def with_patch(
        self,
        patch: Dict[str, Any],
        history_entry: Optional[Dict[str, Any]] = None
    ) -> "WorkflowRecord":
        """Return a copy with the patch applied. The original is left untouched."""
        history = list(self.workflow_history)
        if history_entry is not None:
            history.append(history_entry)
        return replace(self, **patch, workflow_history=history)
