"""
Keeps the system of record's native approval banner in step with the
engine's richer internal status.

The native field only knows Pending Approval / Approved / Rejected. Rejected
records must not show a pending banner and must not post, so the two fields
are always written together in one update.
"""
import logging
from datetime import datetime
from typing import Optional, Union

from p2p_approvals.exceptions import StoreError, TaskNotFound
from p2p_approvals.models.task import ApprovalStatus, NativeApprovalStatus, TaskUpdate

logger = logging.getLogger(__name__)

NATIVE_STATUS_MAP = {
    ApprovalStatus.APPROVED: NativeApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED: NativeApprovalStatus.REJECTED,
    ApprovalStatus.DRAFT: NativeApprovalStatus.PENDING_APPROVAL,
    ApprovalStatus.PENDING_SUBMISSION: NativeApprovalStatus.PENDING_APPROVAL,
    ApprovalStatus.PENDING_APPROVAL: NativeApprovalStatus.PENDING_APPROVAL,
    ApprovalStatus.ESCALATED: NativeApprovalStatus.PENDING_APPROVAL,
    ApprovalStatus.PENDING_EXCEPTION_REVIEW: NativeApprovalStatus.PENDING_APPROVAL,
    ApprovalStatus.RECALLED: NativeApprovalStatus.PENDING_APPROVAL,
}

def project_native_status(status: Union[ApprovalStatus, str, None]) -> Optional[NativeApprovalStatus]:
    """
    Map an internal status to the native 3-value status.
    Returns None for anything unrecognised, meaning "leave the native field alone".
    """
    if not status:
        return None
    try:
        status = ApprovalStatus(status)
    except ValueError:
        return None
    return NATIVE_STATUS_MAP.get(status)

def with_native_status(update: TaskUpdate) -> TaskUpdate:
    """Copy of ``update`` carrying the projected native status, if there is one."""
    native = project_native_status(update.status)
    if native is None:
        return update
    return update.model_copy(update={"native_status": native})

async def commit_status(tasks, task_id: str, update: TaskUpdate, now: Optional[datetime] = None,
                        expected_status: Optional[ApprovalStatus] = None) -> bool:
    """
    Write the internal status and its native projection in a single update.

    ``tasks`` is the task store. Returns False when ``expected_status`` no
    longer holds. Any failure is raised as one StoreError so a caller never
    sees a half-written pair.
    """
    update = with_native_status(update)
    try:
        return await tasks.write(task_id, update, now=now, expected_status=expected_status)
    except (StoreError, TaskNotFound):
        raise
    except Exception as e:
        logger.error(f"Status write failed for task {task_id}: {e}")
        raise StoreError(f"Failed to update approval status on task {task_id}") from e
