import logging
from typing import Protocol

from pydantic import BaseModel

from p2p_approvals.database import db as default_db

logger = logging.getLogger(__name__)

class MatchingEvaluation(BaseModel):
    resolved: bool
    reason: str = ""

class MatchingExceptionEvaluator(Protocol):
    async def evaluate_matching_exception(self, task_id: str) -> MatchingEvaluation:
        ...

class StoredMatchingEvaluator:
    """
    Reads the matching engine's verdict for a task from the matching_exceptions
    collection. A task with no recorded exception counts as resolved.
    """

    def __init__(self, database=None):
        self.db = database or default_db

    async def evaluate_matching_exception(self, task_id: str) -> MatchingEvaluation:
        exception = await self.db.matching.get_for_task(task_id)
        if exception is None:
            return MatchingEvaluation(resolved=True, reason="No matching exception on record")
        if exception.resolved:
            return MatchingEvaluation(resolved=True, reason=f"{exception.exception_type.value} cleared")
        logger.info(f"Matching exception {exception.exception_type.value} still held on task {task_id}")
        return MatchingEvaluation(resolved=False, reason=exception.details or exception.exception_type.value)
