from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, model_validator
from p2p_approvals.models.base import MongoModel

class TransactionType(str, Enum):
    PURCHASE_ORDER = "PurchaseOrder"
    VENDOR_BILL = "VendorBill"

class ApprovalStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_SUBMISSION = "PendingSubmission"
    PENDING_APPROVAL = "PendingApproval"
    ESCALATED = "Escalated"
    PENDING_EXCEPTION_REVIEW = "PendingExceptionReview"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RECALLED = "Recalled"

class NativeApprovalStatus(str, Enum):
    """The system of record's own 3-value approval banner."""
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    REJECTED = "Rejected"

class ApprovalAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    RESUBMIT = "resubmit"
    RECALL = "recall"
    RECHECK_MATCHING = "recheckMatching"
    APPROVE_EXCEPTION = "approveException"
    ESCALATE = "escalate"

class ApprovalMethod(str, Enum):
    UI = "UI"
    EMAIL = "Email"
    BULK = "Bulk"
    API = "API"

class ApprovalTask(MongoModel):
    """
    One unit of approval work, tied 1:1 to a document awaiting approval.
    Records are kept for audit after they reach a terminal state.
    """
    transaction_type: TransactionType
    transaction_id: str
    subsidiary: Optional[str] = None

    status: ApprovalStatus = ApprovalStatus.DRAFT
    native_status: Optional[NativeApprovalStatus] = None

    approver: str = Field(..., description="Primary assignee")
    acting_approver: Optional[str] = Field(None, description="Resolved delegate, cached at submit")
    submitted_by: Optional[str] = None

    reminder_count: int = Field(0, ge=0)
    escalated: bool = False

    token: Optional[str] = None
    token_expiry: Optional[datetime] = None

    last_comment: Optional[str] = None
    rejection_comment: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_token_binding(self):
        if self.token and self.token_expiry is None:
            raise ValueError("token requires token_expiry")
        return self

    @property
    def effective_approver(self) -> str:
        return self.acting_approver or self.approver

class TaskUpdate(BaseModel):
    """
    Typed set of field changes for a single task write.

    Unset members are left alone. ``clear_token`` and ``clear_rejection_comment``
    write explicit nulls (the latter to ``last_comment`` too when no new comment
    is given), since ``None`` on a member means "not touched".
    """
    status: Optional[ApprovalStatus] = None
    native_status: Optional[NativeApprovalStatus] = None
    acting_approver: Optional[str] = None
    submitted_by: Optional[str] = None
    token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    last_comment: Optional[str] = None
    rejection_comment: Optional[str] = None
    completed_at: Optional[datetime] = None
    escalated: Optional[bool] = None

    clear_token: bool = False
    clear_rejection_comment: bool = False

    @model_validator(mode="after")
    def check_token_fields(self):
        if self.clear_token and (self.token or self.token_expiry):
            raise ValueError("cannot set and clear the token in one update")
        if bool(self.token) != bool(self.token_expiry):
            raise ValueError("token and token_expiry must be written together")
        return self

    def to_set_document(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Render the update as the body of a MongoDB ``$set``."""
        values = self.model_dump(
            exclude_none=True,
            exclude={"clear_token", "clear_rejection_comment"},
        )
        if self.clear_token:
            values["token"] = None
            values["token_expiry"] = None
        if self.clear_rejection_comment:
            # The whole rejection trail goes, unless a new comment replaces it
            values["rejection_comment"] = None
            values.setdefault("last_comment", None)
        values["updated_at"] = now or datetime.utcnow()
        return values
