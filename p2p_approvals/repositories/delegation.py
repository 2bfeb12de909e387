from datetime import date, datetime
from typing import List
from pymongo.errors import PyMongoError
from p2p_approvals.exceptions import StoreError
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.repositories.base import BaseRepository

def _day(value: date) -> datetime:
    return datetime.combine(value, datetime.min.time())

class DelegationRepository(BaseRepository[Delegation]):

    async def list_active(self, approver_id: str, as_of: date) -> List[Delegation]:
        """Active delegations granted by an approver whose window contains as_of."""
        day = _day(as_of)
        return await self.list({
            "original_approver_id": approver_id,
            "active": True,
            "start_date": {"$lte": day},
            "end_date": {"$gte": day},
        })

    async def list_for_employee(self, employee_id: str, as_delegate: bool = False) -> List[Delegation]:
        field = "delegate_id" if as_delegate else "original_approver_id"
        return await self.list({field: employee_id}, limit=500, sort=[("start_date", -1)])

    async def set_active(self, delegation_id: str, active: bool) -> bool:
        return await self.set_fields(delegation_id, {"active": active})

    async def deactivate_ended_before(self, day: date) -> int:
        try:
            result = await self.collection.update_many(
                {"active": True, "end_date": {"$lt": _day(day)}},
                {"$set": {"active": False}},
            )
        except PyMongoError as e:
            raise StoreError("Failed to deactivate ended delegations") from e
        return result.modified_count
