from p2p_approvals.models.base import MongoModel
from p2p_approvals.models.task import (
    ApprovalTask, TaskUpdate, TransactionType, ApprovalStatus,
    NativeApprovalStatus, ApprovalAction, ApprovalMethod,
)
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.models.history import ApprovalHistoryEntry
from p2p_approvals.models.batch import BatchOutcome, BatchRunRequest, BatchRunResult
from p2p_approvals.models.matching import MatchingException, ExceptionType
