from typing import Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from p2p_approvals.api.deps import get_current_employee, to_http_exception
from p2p_approvals.config import settings
from p2p_approvals.database import db
from p2p_approvals.exceptions import ApprovalError, TaskNotFound, TokenInvalid
from p2p_approvals.models.batch import unique_task_ids
from p2p_approvals.models.task import ApprovalAction, ApprovalMethod, ApprovalTask, TransactionType
from p2p_approvals.services.batch import batch_processor
from p2p_approvals.services.state_machine import TransitionResult, approval_engine
from p2p_approvals.services.tokens import token_service

router = APIRouter(prefix="/api/approvals", tags=["Approvals"])

ACTION_ROUTES = {
    "submit": ApprovalAction.SUBMIT,
    "approve": ApprovalAction.APPROVE,
    "reject": ApprovalAction.REJECT,
    "resubmit": ApprovalAction.RESUBMIT,
    "recall": ApprovalAction.RECALL,
    "recheck-matching": ApprovalAction.RECHECK_MATCHING,
    "approve-exception": ApprovalAction.APPROVE_EXCEPTION,
}

class OpenTaskRequest(BaseModel):
    transaction_type: TransactionType
    transaction_id: str
    approver: str
    subsidiary: Optional[str] = None

class ActionRequest(BaseModel):
    comment: Optional[str] = None

class BulkApprovalRequest(BaseModel):
    task_ids: List[str] = Field(..., min_length=1)
    governance_threshold: Optional[int] = Field(None, gt=0)

    @field_validator("task_ids")
    @classmethod
    def collapse_repeats(cls, v):
        return unique_task_ids(v)

class BulkApprovalResponse(BaseModel):
    job_id: str
    accepted: int

class TokenTaskView(BaseModel):
    task_id: str
    transaction_type: TransactionType
    transaction_id: str
    approver: str

@router.post("/tasks", response_model=ApprovalTask, status_code=201)
async def open_task(payload: OpenTaskRequest, current_employee: str = Depends(get_current_employee)):
    try:
        return await approval_engine.open_task(
            payload.transaction_type, payload.transaction_id, payload.approver, payload.subsidiary
        )
    except ApprovalError as e:
        raise to_http_exception(e)

@router.get("/tasks/{task_id}", response_model=ApprovalTask)
async def get_task(task_id: str, current_employee: str = Depends(get_current_employee)):
    try:
        task = await db.tasks.get(task_id)
    except ApprovalError as e:
        raise to_http_exception(e)
    if task is None:
        raise to_http_exception(TaskNotFound(task_id))
    # Never hand the bearer token back over the authenticated API
    return task.model_copy(update={"token": None})

@router.post("/tasks/{task_id}/{action}", response_model=TransitionResult)
async def act_on_task(
    task_id: str,
    action: str,
    payload: Optional[ActionRequest] = Body(None),
    current_employee: str = Depends(get_current_employee),
):
    approval_action = ACTION_ROUTES.get(action)
    if approval_action is None:
        raise HTTPException(status_code=404, detail=f"Unknown action {action}")
    try:
        result = await approval_engine.apply(
            task_id, approval_action, current_employee, comment=payload.comment if payload else None, method=ApprovalMethod.UI
        )
    except ApprovalError as e:
        raise to_http_exception(e)
    return result.model_copy(update={"token": None})

@router.get("/token/{token}", response_model=TokenTaskView)
async def read_token(token: str):
    """Landing data for an approval link."""
    validation = await token_service.validate(token)
    if not validation.valid:
        raise to_http_exception(TokenInvalid(validation.error))
    return TokenTaskView(
        task_id=validation.task_id,
        transaction_type=validation.transaction_type,
        transaction_id=validation.transaction_id,
        approver=validation.approver,
    )

@router.post("/token/{token}/{action}", response_model=TransitionResult)
async def act_with_token(
    token: str,
    action: str,
    request: Request,
    payload: Optional[ActionRequest] = Body(None),
):
    approval_action = ACTION_ROUTES.get(action)
    if approval_action not in (ApprovalAction.APPROVE, ApprovalAction.REJECT):
        raise HTTPException(status_code=404, detail=f"Unknown action {action}")

    validation = await token_service.validate(token)
    if not validation.valid:
        raise to_http_exception(TokenInvalid(validation.error))

    try:
        result = await approval_engine.apply(
            validation.task_id,
            approval_action,
            validation.approver,
            comment=payload.comment if payload else None,
            method=ApprovalMethod.EMAIL,
            ip_address=request.client.host if request.client else None,
        )
    except ApprovalError as e:
        raise to_http_exception(e)

    # Token is single use
    await token_service.invalidate(validation.task_id)
    return result.model_copy(update={"token": None})

@router.post("/bulk", response_model=BulkApprovalResponse, status_code=202)
async def bulk_approve(payload: BulkApprovalRequest, current_employee: str = Depends(get_current_employee)):
    limit = settings.BULK_APPROVAL_LIMIT
    if len(payload.task_ids) > limit:
        raise HTTPException(status_code=400, detail=f"At most {limit} tasks can be approved at once")
    try:
        job_id = batch_processor.start(
            payload.task_ids, current_employee, governance_threshold=payload.governance_threshold
        )
    except ApprovalError as e:
        raise to_http_exception(e)
    return BulkApprovalResponse(job_id=job_id, accepted=len(payload.task_ids))

@router.get("/history/{transaction_type}/{transaction_id}")
async def transaction_history(transaction_type: TransactionType, transaction_id: str,
                              current_employee: str = Depends(get_current_employee)) -> List[Dict]:
    try:
        entries = await db.history.for_transaction(transaction_type.value, transaction_id)
    except ApprovalError as e:
        raise to_http_exception(e)
    return [entry.model_dump(mode="json", exclude={"id"}) for entry in entries]
