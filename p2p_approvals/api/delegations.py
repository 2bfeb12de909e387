from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from p2p_approvals.api.deps import get_current_employee, to_http_exception
from p2p_approvals.exceptions import ApprovalError
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.models.task import TransactionType
from p2p_approvals.services.delegation import delegation_service

router = APIRouter(prefix="/api/delegations", tags=["Delegations"])

class DelegationRequest(BaseModel):
    delegate_id: str
    start_date: date
    end_date: date
    subsidiary_scope: Optional[str] = None
    transaction_type_scope: Optional[TransactionType] = None

@router.post("/", response_model=Delegation, status_code=201)
async def create_delegation(payload: DelegationRequest, current_employee: str = Depends(get_current_employee)):
    """The caller delegates their own approvals."""
    try:
        return await delegation_service.create(
            original_approver_id=current_employee,
            delegate_id=payload.delegate_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            subsidiary_scope=payload.subsidiary_scope,
            transaction_type_scope=payload.transaction_type_scope,
        )
    except ApprovalError as e:
        raise to_http_exception(e)

@router.get("/", response_model=List[Delegation])
async def list_delegations(as_delegate: bool = False, current_employee: str = Depends(get_current_employee)):
    try:
        return await delegation_service.list_for_employee(current_employee, as_delegate=as_delegate)
    except ApprovalError as e:
        raise to_http_exception(e)

@router.post("/{delegation_id}/deactivate")
async def deactivate_delegation(delegation_id: str, current_employee: str = Depends(get_current_employee)):
    try:
        owned = await delegation_service.list_for_employee(current_employee)
        if not any(d.id == delegation_id for d in owned):
            raise HTTPException(status_code=404, detail="Delegation not found")
        await delegation_service.deactivate(delegation_id)
    except ApprovalError as e:
        raise to_http_exception(e)
    return {"delegation_id": delegation_id, "active": False}
