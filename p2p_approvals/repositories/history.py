from typing import List
from p2p_approvals.models.history import ApprovalHistoryEntry
from p2p_approvals.repositories.base import BaseRepository

class HistoryRepository(BaseRepository[ApprovalHistoryEntry]):

    async def log_entry(self, entry: ApprovalHistoryEntry) -> ApprovalHistoryEntry:
        """Append an entry to the approval trail."""
        return await self.create(entry)

    async def for_transaction(self, transaction_type: str, transaction_id: str) -> List[ApprovalHistoryEntry]:
        return await self.list(
            {"transaction_type": transaction_type, "transaction_id": transaction_id},
            limit=500,
            sort=[("timestamp", 1)],
        )
