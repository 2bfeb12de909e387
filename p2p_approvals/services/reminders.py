import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pydantic import BaseModel

from p2p_approvals.config import settings
from p2p_approvals.database import db as default_db
from p2p_approvals.services.delegation import resolve_acting_approver
from p2p_approvals.services.tokens import ActionTokenService
from p2p_approvals.tools.notification_tool import RECORD_TYPES, NotificationTool, ReminderNotice, notification_tool

logger = logging.getLogger(__name__)

class ReminderRunSummary(BaseModel):
    reminders_sent: int = 0
    reminder_errors: int = 0
    tokens_refreshed: int = 0
    tokens_cleaned: int = 0

class ReminderService:
    """
    Periodic sweep over pending approvals: nudges approvers who have not
    acted, keeps action links alive, and clears expired tokens.
    """

    def __init__(self, database=None, tokens: Optional[ActionTokenService] = None,
                 notifier: Optional[NotificationTool] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = database or default_db
        self.tokens = tokens or ActionTokenService(self.db)
        self.notifier = notifier or notification_tool
        self.clock = clock or datetime.utcnow

    async def run(self, reminder_hours: Optional[List[int]] = None) -> ReminderRunSummary:
        summary = ReminderRunSummary()
        hours = reminder_hours if reminder_hours is not None else settings.REMINDER_HOURS

        # The n-th age threshold sends the n-th reminder
        for position, age in enumerate(hours, start=1):
            if not age:
                continue
            sent, errors = await self.send_reminders_for_age(age, position)
            summary.reminders_sent += sent
            summary.reminder_errors += errors

        summary.tokens_refreshed = await self.refresh_expiring_tokens()
        summary.tokens_cleaned = await self.tokens.cleanup_expired(now=self.clock())
        logger.info(f"Reminder run complete: {summary.model_dump()}")
        return summary

    async def send_reminders_for_age(self, age_hours: int, max_reminder_count: int):
        now = self.clock()
        tasks = await self.db.tasks.list_pending(age_hours, max_reminder_count, now=now)

        sent = errors = 0
        for task in tasks:
            try:
                delegations = await self.db.delegations.list_active(task.approver, now.date())
                acting = resolve_acting_approver(
                    task.approver, task.transaction_type, task.subsidiary, now.date(), delegations
                )
                link = f"{settings.APPROVAL_BASE_URL}/{task.token}" if task.token else None
                delivered = await self.notifier.send_reminder(ReminderNotice(
                    task_id=task.id,
                    approver_id=acting.effective_approver,
                    record_type=RECORD_TYPES.get(task.transaction_type, task.transaction_type.value),
                    record_id=task.transaction_id,
                    reminder_number=task.reminder_count + 1,
                    action_url=link,
                ))
                if not delivered:
                    errors += 1
                    continue
                await self.db.tasks.increment_reminder_count(task.id)
                sent += 1
            except Exception as e:
                errors += 1
                logger.error(f"Error sending reminder for task {task.id}: {e}")

        logger.info(f"Reminders for age {age_hours}h: {sent} sent, {errors} errors")
        return sent, errors

    async def refresh_expiring_tokens(self) -> int:
        now = self.clock()
        horizon = now + timedelta(hours=settings.TOKEN_REFRESH_WINDOW_HOURS)
        try:
            tasks = await self.db.tasks.list_expiring_tokens(horizon)
        except Exception as e:
            logger.error(f"Could not list expiring tokens: {e}")
            return 0

        refreshed = 0
        for task in tasks:
            if await self.tokens.refresh(task.id, now=now):
                refreshed += 1
        return refreshed

reminder_service = ReminderService()
