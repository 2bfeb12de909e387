from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

class BatchOutcome(str, Enum):
    APPROVED = "approved"
    FAILED = "failed"
    SKIPPED = "skipped"

def unique_task_ids(task_ids: List[str]) -> List[str]:
    """First-seen order with repeats collapsed. Blank ids are rejected."""
    if any(not task_id or not task_id.strip() for task_id in task_ids):
        raise ValueError("task ids must not be blank")
    return list(dict.fromkeys(task_ids))

class BatchRunRequest(BaseModel):
    """One bounded pass of bulk approval. Not persisted."""
    task_ids: List[str]
    limit: int = Field(50, gt=0)
    governance_threshold: int = Field(200, gt=0)
    actor_id: str

    @field_validator("task_ids")
    @classmethod
    def collapse_repeats(cls, v):
        return unique_task_ids(v)

    def to_params(self) -> Dict:
        return self.model_dump()

class BatchRunResult(BaseModel):
    outcomes: Dict[str, BatchOutcome] = Field(default_factory=dict)
    rescheduled_job_id: Optional[str] = None
    reschedule_error: Optional[str] = None

    def _with(self, outcome: BatchOutcome) -> List[str]:
        return [task_id for task_id, value in self.outcomes.items() if value == outcome]

    @property
    def approved_ids(self) -> List[str]:
        return self._with(BatchOutcome.APPROVED)

    @property
    def failed_ids(self) -> List[str]:
        return self._with(BatchOutcome.FAILED)

    @property
    def skipped_ids(self) -> List[str]:
        return self._with(BatchOutcome.SKIPPED)
