from datetime import datetime
from typing import Optional
from pydantic import ConfigDict, Field
from p2p_approvals.models.base import MongoModel
from p2p_approvals.models.task import ApprovalAction, ApprovalMethod, ApprovalStatus, TransactionType

class ApprovalHistoryEntry(MongoModel):
    """Immutable audit row for one approval action."""
    transaction_type: TransactionType
    transaction_id: str
    task_id: str
    action: ApprovalAction
    from_status: ApprovalStatus
    to_status: ApprovalStatus
    approver: str
    acting_approver: Optional[str] = None
    comment: Optional[str] = None
    method: ApprovalMethod = ApprovalMethod.UI
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "transaction_type": "PurchaseOrder",
                "transaction_id": "PO-1042",
                "task_id": "65f0c2...",
                "action": "approve",
                "from_status": "PendingApproval",
                "to_status": "Approved",
                "approver": "emp-17",
                "acting_approver": "emp-22",
                "method": "Email"
            }
        }
    )
