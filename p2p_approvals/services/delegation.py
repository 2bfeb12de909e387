import logging
from datetime import date
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel

from p2p_approvals.config import settings
from p2p_approvals.database import db as default_db
from p2p_approvals.exceptions import InvalidDelegation
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.models.task import TransactionType

logger = logging.getLogger(__name__)

class ActingApprover(BaseModel):
    effective_approver: str
    original_approver: str
    is_delegated: bool = False
    delegation_id: Optional[str] = None

def _specificity(delegation: Delegation, transaction_type, subsidiary):
    return (
        delegation.transaction_type_scope is not None and delegation.transaction_type_scope == transaction_type,
        delegation.subsidiary_scope is not None and delegation.subsidiary_scope == subsidiary,
        delegation.start_date,
    )

def _in_scope(delegation: Delegation, transaction_type, subsidiary) -> bool:
    if delegation.transaction_type_scope is not None and delegation.transaction_type_scope != transaction_type:
        return False
    if delegation.subsidiary_scope is not None and delegation.subsidiary_scope != subsidiary:
        return False
    return True

def resolve_acting_approver(
    approver_id: str,
    transaction_type: Optional[Union[TransactionType, str]],
    subsidiary: Optional[str],
    as_of: date,
    delegations: Iterable[Delegation],
) -> ActingApprover:
    """
    Work out who may act for ``approver_id`` on ``as_of``.

    Only delegations granted by the approver, active on that day and whose
    scopes are either empty or equal to the task's are considered. A
    transaction-type match beats an open type scope, then a subsidiary match
    beats an open subsidiary scope; the most recently started grant wins a tie.
    With no candidate the approver acts for themselves.
    """
    if transaction_type is not None:
        transaction_type = TransactionType(transaction_type)

    candidates = [
        d for d in delegations
        if d.original_approver_id == approver_id
        and d.is_active_on(as_of)
        and _in_scope(d, transaction_type, subsidiary)
    ]
    if not candidates:
        return ActingApprover(effective_approver=approver_id, original_approver=approver_id)

    best = max(candidates, key=lambda d: _specificity(d, transaction_type, subsidiary))
    return ActingApprover(
        effective_approver=best.delegate_id,
        original_approver=approver_id,
        is_delegated=True,
        delegation_id=best.id,
    )

class DelegationService:
    """Creates, lists and retires delegations and resolves acting approvers."""

    def __init__(self, database=None):
        self.db = database or default_db

    async def resolve(self, approver_id: str, transaction_type, subsidiary: Optional[str],
                      as_of: Optional[date] = None) -> ActingApprover:
        as_of = as_of or date.today()
        delegations = await self.db.delegations.list_active(approver_id, as_of)
        return resolve_acting_approver(approver_id, transaction_type, subsidiary, as_of, delegations)

    async def create(self, original_approver_id: str, delegate_id: str, start_date: date, end_date: date,
                     subsidiary_scope: Optional[str] = None,
                     transaction_type_scope: Optional[TransactionType] = None) -> Delegation:
        if not original_approver_id or not delegate_id or not start_date or not end_date:
            raise InvalidDelegation("Missing required delegation parameters")
        if original_approver_id == delegate_id:
            raise InvalidDelegation("An approver cannot delegate to themselves")
        if end_date < start_date:
            raise InvalidDelegation("End date must be on or after start date")

        max_days = settings.MAX_DELEGATION_DAYS
        if (end_date - start_date).days > max_days:
            raise InvalidDelegation(f"Delegation exceeds maximum allowed duration of {max_days} days")

        delegation = await self.db.delegations.create(Delegation(
            original_approver_id=original_approver_id,
            delegate_id=delegate_id,
            start_date=start_date,
            end_date=end_date,
            subsidiary_scope=subsidiary_scope,
            transaction_type_scope=transaction_type_scope,
        ))
        logger.info(
            f"Delegation {delegation.id} created: {original_approver_id} -> {delegate_id} "
            f"({start_date} to {end_date})"
        )
        return delegation

    async def deactivate(self, delegation_id: str) -> bool:
        found = await self.db.delegations.set_active(delegation_id, False)
        if found:
            logger.info(f"Delegation {delegation_id} deactivated")
        else:
            logger.warning(f"Delegation {delegation_id} not found for deactivation")
        return found

    async def list_for_employee(self, employee_id: str, as_delegate: bool = False) -> List[Delegation]:
        return await self.db.delegations.list_for_employee(employee_id, as_delegate=as_delegate)

    async def cleanup_expired(self, today: Optional[date] = None) -> int:
        """Clear the active flag on delegations whose end date has passed."""
        count = await self.db.delegations.deactivate_ended_before(today or date.today())
        if count:
            logger.info(f"Deactivated {count} expired delegations")
        return count

delegation_service = DelegationService()
