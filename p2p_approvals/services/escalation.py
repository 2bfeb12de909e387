"""
Scheduled sweep that escalates approvals left pending for too long.

A task is escalated once: the move to Escalated sets the ``escalated`` flag,
and a resubmitted task keeps it.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from p2p_approvals.config import settings
from p2p_approvals.database import db as default_db
from p2p_approvals.exceptions import ApprovalError
from p2p_approvals.models.task import ApprovalAction, ApprovalMethod, ApprovalTask
from p2p_approvals.services.state_machine import SYSTEM_ACTOR, ApprovalStateMachine, TransitionResult, approval_engine
from p2p_approvals.tools.notification_tool import RECORD_TYPES, EscalationNotice, NotificationTool, notification_tool

logger = logging.getLogger(__name__)

class EscalationRunSummary(BaseModel):
    escalated: int = 0
    errors: int = 0
    notifications_failed: int = 0

class EscalationService:
    def __init__(self, database=None, engine: Optional[ApprovalStateMachine] = None,
                 notifier: Optional[NotificationTool] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = database or default_db
        self.engine = engine or approval_engine
        self.notifier = notifier or notification_tool
        self.clock = clock or datetime.utcnow

    async def run(self, escalation_hours: Optional[int] = None) -> EscalationRunSummary:
        hours = escalation_hours or settings.ESCALATION_HOURS
        summary = EscalationRunSummary()
        tasks = await self.db.tasks.list_due_for_escalation(hours, now=self.clock())

        for task in tasks:
            try:
                result = await self.engine.apply(
                    task.id,
                    ApprovalAction.ESCALATE,
                    SYSTEM_ACTOR,
                    comment=f"Auto-escalated after {hours} hours",
                    method=ApprovalMethod.API,
                )
            except ApprovalError as e:
                # Usually acted on between the scan and the write
                summary.errors += 1
                logger.warning(f"Could not escalate task {task.id}: {e.message}")
                continue
            except Exception:
                summary.errors += 1
                logger.exception(f"Unexpected error escalating task {task.id}")
                continue

            summary.escalated += 1
            if not await self._notify(task, result, hours):
                summary.notifications_failed += 1

        logger.info(f"Escalation run complete: {summary.model_dump()}")
        return summary

    async def _notify(self, task: ApprovalTask, result: TransitionResult, hours: int) -> bool:
        delivered = True
        for recipient in result.notify:
            delivered = await self.notifier.send_escalation(EscalationNotice(
                task_id=task.id,
                approver_id=recipient,
                record_type=RECORD_TYPES.get(task.transaction_type, task.transaction_type.value),
                record_id=task.transaction_id,
                hours_waiting=hours,
            )) and delivered
        return delivered

escalation_service = EscalationService()
