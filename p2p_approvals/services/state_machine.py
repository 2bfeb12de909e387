"""
Approval state machine.

``TRANSITIONS`` is the authoritative table of which action may move a task
from which status. ``ApprovalStateMachine.apply`` validates an action against
it (source status, mandatory comment, actor), then commits the new status and
its native projection in one write. Nothing is written when validation fails.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from p2p_approvals.database import db as default_db
from p2p_approvals.exceptions import IllegalTransition, MissingComment, TaskNotFound, UnauthorizedActor
from p2p_approvals.models.history import ApprovalHistoryEntry
from p2p_approvals.models.task import (
    ApprovalAction, ApprovalMethod, ApprovalStatus, ApprovalTask, TaskUpdate, TransactionType,
)
from p2p_approvals.services.delegation import ActingApprover, resolve_acting_approver
from p2p_approvals.services.matching import MatchingExceptionEvaluator, StoredMatchingEvaluator
from p2p_approvals.services.status_projector import commit_status, project_native_status
from p2p_approvals.services.tokens import ActionTokenService

logger = logging.getLogger(__name__)

# Who may perform an action
ACTOR_APPROVER = "approver"
ACTOR_SUBMITTER = "submitter"
ACTOR_ANY = "any"
ACTOR_SYSTEM = "system"

# Actor id used by scheduled sweeps
SYSTEM_ACTOR = "system"

@dataclass(frozen=True)
class Transition:
    sources: FrozenSet[ApprovalStatus]
    target: ApprovalStatus
    comment_required: bool = False
    actor: str = ACTOR_ANY

TRANSITIONS = {
    ApprovalAction.SUBMIT: Transition(
        sources=frozenset({ApprovalStatus.DRAFT, ApprovalStatus.RECALLED}),
        target=ApprovalStatus.PENDING_APPROVAL,
    ),
    ApprovalAction.APPROVE: Transition(
        sources=frozenset({ApprovalStatus.PENDING_APPROVAL, ApprovalStatus.ESCALATED}),
        target=ApprovalStatus.APPROVED,
        actor=ACTOR_APPROVER,
    ),
    ApprovalAction.REJECT: Transition(
        sources=frozenset({ApprovalStatus.PENDING_APPROVAL, ApprovalStatus.ESCALATED}),
        target=ApprovalStatus.REJECTED,
        comment_required=True,
        actor=ACTOR_APPROVER,
    ),
    ApprovalAction.RESUBMIT: Transition(
        sources=frozenset({ApprovalStatus.REJECTED}),
        target=ApprovalStatus.PENDING_APPROVAL,
    ),
    ApprovalAction.RECALL: Transition(
        sources=frozenset({ApprovalStatus.PENDING_APPROVAL}),
        target=ApprovalStatus.RECALLED,
        actor=ACTOR_SUBMITTER,
    ),
    # Stays in PendingExceptionReview when the exception still holds
    ApprovalAction.RECHECK_MATCHING: Transition(
        sources=frozenset({ApprovalStatus.PENDING_EXCEPTION_REVIEW}),
        target=ApprovalStatus.APPROVED,
    ),
    ApprovalAction.APPROVE_EXCEPTION: Transition(
        sources=frozenset({ApprovalStatus.PENDING_EXCEPTION_REVIEW}),
        target=ApprovalStatus.APPROVED,
        comment_required=True,
        actor=ACTOR_APPROVER,
    ),
    # Raised by the escalation sweep only
    ApprovalAction.ESCALATE: Transition(
        sources=frozenset({ApprovalStatus.PENDING_APPROVAL}),
        target=ApprovalStatus.ESCALATED,
        actor=ACTOR_SYSTEM,
    ),
}

class TransitionResult(BaseModel):
    task_id: str
    action: ApprovalAction
    from_status: ApprovalStatus
    to_status: ApprovalStatus
    acting_approver: Optional[str] = None
    notify: List[str] = Field(default_factory=list)
    token: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status

def _is_blank(comment: Optional[str]) -> bool:
    return comment is None or not comment.strip()

def check_transition(action: ApprovalAction, status: ApprovalStatus, comment: Optional[str] = None) -> Transition:
    """Validate an action against the table without touching storage."""
    transition = TRANSITIONS.get(action)
    if transition is None or status not in transition.sources:
        raise IllegalTransition(ApprovalAction(action).value, ApprovalStatus(status).value)
    if transition.comment_required and _is_blank(comment):
        raise MissingComment(ApprovalAction(action).value)
    return transition

class ApprovalStateMachine:
    def __init__(self, database=None, tokens: Optional[ActionTokenService] = None,
                 matching: Optional[MatchingExceptionEvaluator] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = database or default_db
        self.tokens = tokens or ActionTokenService(self.db)
        self.matching = matching or StoredMatchingEvaluator(self.db)
        self.clock = clock or datetime.utcnow

    async def open_task(self, transaction_type: TransactionType, transaction_id: str, approver: str,
                        subsidiary: Optional[str] = None) -> ApprovalTask:
        """Create the Draft task for a document, or return its live task if it has one."""
        existing = await self.db.tasks.find_live_for_transaction(transaction_type, transaction_id)
        if existing is not None:
            logger.info(f"{transaction_type.value} {transaction_id} already has live task {existing.id}")
            return existing

        now = self.clock()
        task = ApprovalTask(
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            subsidiary=subsidiary,
            approver=approver,
            status=ApprovalStatus.DRAFT,
            native_status=project_native_status(ApprovalStatus.DRAFT),
            created_at=now,
            updated_at=now,
        )
        return await self.db.tasks.create(task)

    async def resolve_actor(self, task: ApprovalTask, today: date) -> ActingApprover:
        delegations = await self.db.delegations.list_active(task.approver, today)
        return resolve_acting_approver(task.approver, task.transaction_type, task.subsidiary, today, delegations)

    async def apply(self, task_id: str, action: ApprovalAction, actor_id: Optional[str],
                    comment: Optional[str] = None, method: ApprovalMethod = ApprovalMethod.UI,
                    ip_address: Optional[str] = None) -> TransitionResult:
        action = ApprovalAction(action)
        task = await self.db.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        from_status = task.status
        transition = check_transition(action, from_status, comment)

        now = self.clock()
        acting = await self.resolve_actor(task, now.date())
        self._authorize(task, transition, actor_id, acting)

        target = transition.target
        if action == ApprovalAction.RECHECK_MATCHING:
            evaluation = await self.matching.evaluate_matching_exception(task.id)
            if not evaluation.resolved:
                logger.info(f"Task {task.id} stays in exception review: {evaluation.reason}")
                result = TransitionResult(
                    task_id=task.id, action=action, from_status=from_status,
                    to_status=from_status, acting_approver=acting.effective_approver,
                )
                await self._log_history(task, result, actor_id, comment, method, ip_address, now)
                return result

        update = self._build_update(task, action, target, actor_id, comment, acting, now)
        applied = await commit_status(self.db.tasks, task.id, update, now=now, expected_status=from_status)
        if not applied:
            # Someone else moved the task between our read and write
            raise IllegalTransition(action.value, from_status.value)

        result = TransitionResult(
            task_id=task.id,
            action=action,
            from_status=from_status,
            to_status=target,
            acting_approver=acting.effective_approver,
            notify=self._recipients(task, target, acting, actor_id),
        )
        if target == ApprovalStatus.PENDING_APPROVAL:
            result.token = await self.tokens.refresh(task.id, now=now)

        await self._log_history(task, result, actor_id, comment, method, ip_address, now)
        logger.info(f"Task {task.id}: {action.value} {from_status.value} -> {target.value} by {actor_id}")
        return result

    def _authorize(self, task: ApprovalTask, transition: Transition, actor_id: Optional[str],
                   acting: ActingApprover) -> None:
        if transition.actor == ACTOR_APPROVER:
            if not actor_id or actor_id != acting.effective_approver:
                raise UnauthorizedActor(actor_id, task.id, expected=acting.effective_approver)
            # Segregation of duties: nobody approves a document they submitted
            if task.submitted_by and actor_id == task.submitted_by:
                logger.warning(f"Segregation of duties: {actor_id} submitted task {task.id}")
                raise UnauthorizedActor(actor_id, task.id, expected=acting.effective_approver)
        elif transition.actor == ACTOR_SUBMITTER:
            if not actor_id or actor_id != task.submitted_by:
                raise UnauthorizedActor(actor_id, task.id, expected=task.submitted_by)
        elif transition.actor == ACTOR_SYSTEM:
            if actor_id != SYSTEM_ACTOR:
                raise UnauthorizedActor(actor_id, task.id, expected=SYSTEM_ACTOR)

    def _build_update(self, task: ApprovalTask, action: ApprovalAction, target: ApprovalStatus,
                      actor_id: Optional[str], comment: Optional[str], acting: ActingApprover,
                      now: datetime) -> TaskUpdate:
        update = TaskUpdate(status=target, last_comment=None if _is_blank(comment) else comment.strip())

        # A token may only live on a task that is pending approval
        if target != ApprovalStatus.PENDING_APPROVAL:
            update.clear_token = True

        if action in (ApprovalAction.SUBMIT, ApprovalAction.RESUBMIT):
            update.acting_approver = acting.effective_approver
            update.submitted_by = actor_id or task.submitted_by
        if action == ApprovalAction.RESUBMIT:
            update.clear_rejection_comment = True
        if action == ApprovalAction.REJECT:
            update.rejection_comment = comment.strip()
        if action == ApprovalAction.ESCALATE:
            update.escalated = True
        if target in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
            update.completed_at = now
        return update

    def _recipients(self, task: ApprovalTask, target: ApprovalStatus, acting: ActingApprover,
                    actor_id: Optional[str]) -> List[str]:
        if target in (ApprovalStatus.PENDING_APPROVAL, ApprovalStatus.ESCALATED):
            return [acting.effective_approver]
        if target in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
            submitter = task.submitted_by
            return [submitter] if submitter and submitter != actor_id else []
        return []

    async def _log_history(self, task: ApprovalTask, result: TransitionResult, actor_id: Optional[str],
                           comment: Optional[str], method: ApprovalMethod, ip_address: Optional[str],
                           now: datetime) -> None:
        approver_action = TRANSITIONS[result.action].actor == ACTOR_APPROVER
        try:
            await self.db.history.log_entry(ApprovalHistoryEntry(
                transaction_type=task.transaction_type,
                transaction_id=task.transaction_id,
                task_id=task.id,
                action=result.action,
                from_status=result.from_status,
                to_status=result.to_status,
                approver=task.approver,
                acting_approver=actor_id if approver_action and actor_id != task.approver else None,
                comment=comment,
                method=method,
                ip_address=ip_address,
                timestamp=now,
            ))
        except Exception as e:
            logger.error(f"History write failed for task {task.id}: {e}")

approval_engine = ApprovalStateMachine()
