from datetime import datetime, timedelta
from typing import List, Optional
from pymongo import ASCENDING
from pymongo.errors import PyMongoError
from p2p_approvals.exceptions import StoreError, TaskNotFound
from p2p_approvals.models.task import ApprovalTask, ApprovalStatus, TaskUpdate, TransactionType
from p2p_approvals.repositories.base import BaseRepository, to_object_id

class TaskRepository(BaseRepository[ApprovalTask]):

    async def find_by_token(self, token: str, now: Optional[datetime] = None) -> Optional[ApprovalTask]:
        """Task holding this token, still pending approval and not yet expired."""
        if not token:
            return None
        return await self.find_one({
            "token": token,
            "status": ApprovalStatus.PENDING_APPROVAL.value,
            "token_expiry": {"$gte": now or datetime.utcnow()},
        })

    async def find_live_for_transaction(self, transaction_type: TransactionType, transaction_id: str) -> Optional[ApprovalTask]:
        """The newest task for a document that has not been approved yet."""
        tasks = await self.list(
            {
                "transaction_type": transaction_type.value,
                "transaction_id": transaction_id,
                "status": {"$ne": ApprovalStatus.APPROVED.value},
            },
            limit=1,
            sort=[("created_at", -1)],
        )
        return tasks[0] if tasks else None

    async def write(self, task_id: str, update: TaskUpdate, now: Optional[datetime] = None,
                    expected_status: Optional[ApprovalStatus] = None) -> bool:
        """
        Persist a TaskUpdate as one atomic $set.

        With ``expected_status`` the write only applies while the task is still
        in that status; False means another writer moved it first.
        """
        oid = to_object_id(task_id)
        if oid is None:
            raise TaskNotFound(task_id)
        filter = {"_id": oid}
        if expected_status is not None:
            filter["status"] = expected_status.value
        try:
            result = await self.collection.update_one(filter, {"$set": update.to_set_document(now)})
            if result.matched_count:
                return True
            exists = await self.collection.count_documents({"_id": oid}, limit=1)
        except PyMongoError as e:
            raise StoreError(f"Failed to update approval task {task_id}") from e
        if not exists:
            raise TaskNotFound(task_id)
        return False

    async def list_pending(self, older_than_hours: int, reminder_count_lt: int,
                           now: Optional[datetime] = None, limit: int = 1000) -> List[ApprovalTask]:
        cutoff = (now or datetime.utcnow()) - timedelta(hours=older_than_hours)
        return await self.list(
            {
                "status": ApprovalStatus.PENDING_APPROVAL.value,
                "created_at": {"$lte": cutoff},
                "reminder_count": {"$lt": reminder_count_lt},
            },
            limit=limit,
            sort=[("created_at", ASCENDING)],
        )

    async def list_due_for_escalation(self, older_than_hours: int, now: Optional[datetime] = None,
                                      limit: int = 1000) -> List[ApprovalTask]:
        """Pending tasks past the escalation age that have never been escalated."""
        cutoff = (now or datetime.utcnow()) - timedelta(hours=older_than_hours)
        return await self.list(
            {
                "status": ApprovalStatus.PENDING_APPROVAL.value,
                "created_at": {"$lte": cutoff},
                "escalated": {"$ne": True},
            },
            limit=limit,
            sort=[("created_at", ASCENDING)],
        )

    async def increment_reminder_count(self, task_id: str) -> None:
        oid = to_object_id(task_id)
        if oid is None:
            raise TaskNotFound(task_id)
        try:
            result = await self.collection.update_one(
                {"_id": oid},
                {"$inc": {"reminder_count": 1}, "$set": {"updated_at": datetime.utcnow()}},
            )
        except PyMongoError as e:
            raise StoreError(f"Failed to bump reminder count on {task_id}") from e
        if result.matched_count == 0:
            raise TaskNotFound(task_id)

    async def list_expiring_tokens(self, before: datetime, limit: int = 1000) -> List[ApprovalTask]:
        return await self.list(
            {
                "status": ApprovalStatus.PENDING_APPROVAL.value,
                "token": {"$nin": [None, ""]},
                "token_expiry": {"$ne": None, "$lte": before},
            },
            limit=limit,
        )

    async def clear_expired_tokens(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        try:
            result = await self.collection.update_many(
                {"token": {"$nin": [None, ""]}, "token_expiry": {"$lt": now}},
                {"$set": {"token": None, "token_expiry": None, "updated_at": now}},
            )
        except PyMongoError as e:
            raise StoreError("Failed to clear expired tokens") from e
        return result.modified_count
