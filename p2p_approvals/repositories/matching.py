from typing import Optional
from p2p_approvals.models.matching import MatchingException
from p2p_approvals.repositories.base import BaseRepository

class MatchingExceptionRepository(BaseRepository[MatchingException]):

    async def get_for_task(self, task_id: str) -> Optional[MatchingException]:
        return await self.find_one({"task_id": task_id})
