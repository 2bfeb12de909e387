import logging
from fastapi import Header, HTTPException

from p2p_approvals.exceptions import (
    ApprovalError, IllegalTransition, InvalidDelegation, MissingComment,
    StoreError, TaskNotFound, TokenInvalid, UnauthorizedActor,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    IllegalTransition: 409,
    UnauthorizedActor: 403,
    MissingComment: 422,
    TokenInvalid: 404,
    TaskNotFound: 404,
    InvalidDelegation: 400,
    StoreError: 503,
}

async def get_current_employee(x_employee_id: str = Header(...)) -> str:
    """Employee id of the caller, set by the authenticating proxy."""
    if not x_employee_id.strip():
        raise HTTPException(status_code=401, detail="Missing employee identity")
    return x_employee_id.strip()

def to_http_exception(error: ApprovalError) -> HTTPException:
    status_code = STATUS_CODES.get(type(error), 400)
    if isinstance(error, UnauthorizedActor):
        detail = "You are not authorized to act on this approval task."
    elif isinstance(error, StoreError):
        logger.error(f"Store failure: {error.message}")
        detail = "The approval could not be saved. Please try again later."
    else:
        detail = error.message
    return HTTPException(status_code=status_code, detail={"code": error.code, "message": detail})
