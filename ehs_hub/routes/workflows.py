"""
EHS Hub - Workflows Router

Workflow listing, responses, validation decisions and evidence uploads.
"""

from fastapi import APIRouter, HTTPException, Query, Depends, UploadFile, File
from typing import Optional, List
from pydantic import BaseModel, Field
import logging

from ..services.identity import CurrentUser
from ..services.workflow_engine import WorkflowEngine
from ..services.workflow_models import WorkflowRecord
from ..services.workflow_service import (
    WorkflowService, ResponseOutcome,
    WorkflowError, WorkflowUnauthorizedError, InvalidWorkflowStateError,
    NotesRequiredError, PersistenceFailureError, WorkflowNotFoundError,
    EvidenceRejectedError,
)
from .auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])

# Workflow service - set by main app
workflow_service: Optional[WorkflowService] = None


def set_dependencies(service: WorkflowService):
    global workflow_service
    workflow_service = service


def _service() -> WorkflowService:
    if workflow_service is None:
        raise HTTPException(status_code=503, detail="Workflow service not initialized")
    return workflow_service


# ==================== MODELS ====================

class CreateWorkflowRequest(BaseModel):
    title: str
    responsible_id: str
    description: Optional[str] = None
    deviation_id: Optional[str] = None
    nature: Optional[str] = None
    deadline: Optional[str] = None


class RespondRequest(BaseModel):
    outcome: ResponseOutcome
    notes: Optional[str] = None
    evidence_photos: List[str] = Field(default_factory=list)


class ValidateRequest(BaseModel):
    approve: bool
    notes: Optional[str] = None


# ==================== HELPERS ====================

ERROR_STATUS_CODES = [
    (WorkflowNotFoundError, 404),
    (WorkflowUnauthorizedError, 403),
    (InvalidWorkflowStateError, 409),
    (NotesRequiredError, 400),
    (EvidenceRejectedError, 400),
    (PersistenceFailureError, 503),
]


def _raise_http(error: WorkflowError):
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            raise HTTPException(status_code=status_code, detail=error.message)
    raise HTTPException(status_code=400, detail=error.message)


def _serialize(record: WorkflowRecord, viewer_id: Optional[str], include_history: bool = False) -> dict:
    data = record.to_dict()
    if not include_history:
        data.pop("workflow_history", None)
    data["available_actions"] = sorted(a.value for a in WorkflowEngine.get_available_actions(record, viewer_id))
    data["status_display"] = WorkflowEngine.get_status_display(record)
    return data


# ==================== QUERY ENDPOINTS ====================

@router.get("")
async def list_workflows(
    status: Optional[str] = Query(None),
    mine: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user)
):
    """List workflows with the caller's available actions."""
    records = await _service().list_workflows(
        viewer_id=user.id, status=status, mine_only=mine, skip=skip, limit=limit
    )
    return {
        "workflows": [_serialize(r, user.id) for r in records],
        "count": len(records),
    }


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: str, user: CurrentUser = Depends(get_current_user)):
    """Get one workflow, including its history."""
    try:
        record = await _service().get_workflow(workflow_id)
    except WorkflowError as e:
        _raise_http(e)
    return _serialize(record, user.id, include_history=True)


@router.get("/{workflow_id}/history")
async def get_workflow_history(workflow_id: str, user: CurrentUser = Depends(get_current_user)):
    """Get workflow history for a workflow."""
    try:
        return await _service().get_history(workflow_id)
    except WorkflowError as e:
        _raise_http(e)


# ==================== WORKFLOW ACTIONS ====================

@router.post("", status_code=201)
async def create_workflow(request: CreateWorkflowRequest, user: CurrentUser = Depends(get_current_user)):
    """Open a new workflow in `pending`."""
    try:
        record = await _service().create_workflow(
            title=request.title,
            responsible_id=request.responsible_id,
            created_by=user.id,
            description=request.description,
            deviation_id=request.deviation_id,
            nature=request.nature,
            deadline=request.deadline,
        )
    except WorkflowError as e:
        _raise_http(e)
    return _serialize(record, user.id, include_history=True)


@router.post("/{workflow_id}/respond")
async def respond_to_workflow(
    workflow_id: str,
    request: RespondRequest,
    user: CurrentUser = Depends(get_current_user)
):
    """Report a workflow as completed or blocked (also used to resubmit)."""
    logger.info("Workflow response: id=%s, outcome=%s, by=%s", workflow_id, request.outcome.value, user.id)
    try:
        record = await _service().submit_response(
            workflow_id,
            outcome=request.outcome,
            notes=request.notes,
            evidence_photos=request.evidence_photos,
            acting_user_id=user.id,
        )
    except WorkflowError as e:
        _raise_http(e)
    return _serialize(record, user.id)


@router.post("/{workflow_id}/validate")
async def validate_workflow(
    workflow_id: str,
    request: ValidateRequest,
    user: CurrentUser = Depends(get_current_user)
):
    """Approve or return a submitted workflow."""
    logger.info("Workflow decision: id=%s, approve=%s, by=%s", workflow_id, request.approve, user.id)
    try:
        record = await _service().submit_decision(
            workflow_id,
            approve=request.approve,
            notes=request.notes,
            acting_user_id=user.id,
        )
    except WorkflowError as e:
        _raise_http(e)
    return _serialize(record, user.id)


@router.post("/{workflow_id}/evidence", status_code=201)
async def upload_evidence(
    workflow_id: str,
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user)
):
    """Upload one evidence photo; returns the reference to submit with the response."""
    service = _service()
    # Spooled uploads report their size; refuse oversize files before reading them
    if file.size is not None and file.size > service.max_evidence_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File too large: {file.filename} ({file.size} bytes, max {service.max_evidence_bytes})"
        )
    content = await file.read()
    try:
        reference = await service.upload_evidence(
            workflow_id,
            acting_user_id=user.id,
            file_name=file.filename or "upload",
            content_type=file.content_type,
            content=content,
        )
    except WorkflowError as e:
        _raise_http(e)
    return {"workflow_id": workflow_id, "reference": reference}
