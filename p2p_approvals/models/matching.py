from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import Field
from p2p_approvals.models.base import MongoModel

class ExceptionType(str, Enum):
    MISSING_PO = "MissingPO"
    VARIANCE_OVER_LIMIT = "VarianceOverLimit"
    MISSING_RECEIPT = "MissingReceipt"

class MatchingException(MongoModel):
    """A held matching exception on a vendor bill, maintained by the matching engine."""
    task_id: str
    exception_type: ExceptionType
    resolved: bool = False
    details: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
