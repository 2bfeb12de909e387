import logging
from typing import List, Optional

from pydantic import BaseModel

from p2p_approvals.models.task import TransactionType

logger = logging.getLogger(__name__)

RECORD_TYPES = {
    TransactionType.PURCHASE_ORDER: "purchaseorder",
    TransactionType.VENDOR_BILL: "vendorbill",
}

class ReminderNotice(BaseModel):
    task_id: str
    approver_id: str
    record_type: str
    record_id: str
    reminder_number: int = 1
    action_url: Optional[str] = None

class EscalationNotice(BaseModel):
    task_id: str
    approver_id: str
    record_type: str
    record_id: str
    hours_waiting: int

class NotificationTool:
    def __init__(self, channels: List[str] = None):
        self.channels = channels or ["email"]

    async def send_reminder(self, notice: ReminderNotice) -> bool:
        """
        Best effort: delivery failures are logged and reported as False,
        never raised to the caller.
        """
        subject = f"Reminder #{notice.reminder_number}: {notice.record_type} {notice.record_id} awaits your approval"
        return await self._deliver(notice.task_id, notice.approver_id, subject, notice.action_url)

    async def send_escalation(self, notice: EscalationNotice) -> bool:
        subject = (
            f"Escalated: {notice.record_type} {notice.record_id} has waited "
            f"{notice.hours_waiting}h for your approval"
        )
        return await self._deliver(notice.task_id, notice.approver_id, subject, None)

    async def _deliver(self, task_id: str, user: str, subject: str, link: Optional[str]) -> bool:
        try:
            for channel in self.channels:
                if channel == "slack":
                    await self._send_slack(user, subject)
                elif channel == "email":
                    await self._send_email(user, subject, link)
            return True
        except Exception as e:
            logger.error(f"Notification for task {task_id} not delivered: {e}")
            return False

    async def _send_slack(self, user: str, message: str):
        # Delivery is handled by the messaging integration
        logger.info(f"[SLACK] To {user}: {message[:50]}...")

    async def _send_email(self, user: str, subject: str, link: Optional[str]):
        logger.info(f"[EMAIL] To {user} | Subject: {subject}")

notification_tool = NotificationTool()
