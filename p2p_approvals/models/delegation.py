from datetime import date, datetime
from typing import Optional
from pydantic import Field, field_validator
from p2p_approvals.models.base import MongoModel
from p2p_approvals.models.task import TransactionType

class Delegation(MongoModel):
    """
    A time-bounded grant letting a delegate act for the original approver.
    The date range is inclusive at both ends. A null scope means "all".
    """
    original_approver_id: str
    delegate_id: str
    start_date: date
    end_date: date
    subsidiary_scope: Optional[str] = None
    transaction_type_scope: Optional[TransactionType] = None
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("end_date")
    @classmethod
    def validate_range(cls, v, info):
        if "start_date" in info.data and v < info.data["start_date"]:
            raise ValueError("end_date must be on or after start_date")
        return v

    def is_active_on(self, day: date) -> bool:
        return self.active and self.start_date <= day <= self.end_date

    def to_mongo(self, exclude_none: bool = False):
        data = super().to_mongo(exclude_none=exclude_none)
        # Mongo has no date type; store midnight datetimes so range queries work
        data["start_date"] = datetime.combine(self.start_date, datetime.min.time())
        data["end_date"] = datetime.combine(self.end_date, datetime.min.time())
        return data
