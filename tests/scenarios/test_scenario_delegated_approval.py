"""
Alice is away and has delegated UK purchase orders to Dan for the week. A PO
routed to Alice is submitted; Dan approves it from the emailed link.
"""
from datetime import timedelta

import pytest

from p2p_approvals.exceptions import UnauthorizedActor
from p2p_approvals.models.task import ApprovalAction, ApprovalMethod, ApprovalStatus, NativeApprovalStatus, TransactionType
from p2p_approvals.services.delegation import DelegationService


@pytest.mark.asyncio
async def test_delegate_approves_while_original_is_locked_out(engine, fake_db, token_service, today, now):
    delegations = DelegationService(database=fake_db)
    await delegations.create("alice", "dan", today - timedelta(days=1), today + timedelta(days=6),
                             transaction_type_scope=TransactionType.PURCHASE_ORDER,
                             subsidiary_scope="SUB-UK")

    task = await engine.open_task(TransactionType.PURCHASE_ORDER, "PO-5521", "alice", subsidiary="SUB-UK")
    submitted = await engine.apply(task.id, ApprovalAction.SUBMIT, "rita")

    assert submitted.notify == ["dan"]
    assert fake_db.tasks.tasks[task.id].acting_approver == "dan"

    link = await token_service.validate(submitted.token, now=now)
    assert link.valid is True
    assert link.approver == "dan"
    assert link.original_approver == "alice"

    with pytest.raises(UnauthorizedActor):
        await engine.apply(task.id, ApprovalAction.APPROVE, "alice")

    result = await engine.apply(task.id, ApprovalAction.APPROVE, "dan", method=ApprovalMethod.EMAIL)

    stored = fake_db.tasks.tasks[task.id]
    assert result.to_status == ApprovalStatus.APPROVED
    assert stored.native_status == NativeApprovalStatus.APPROVED
    assert result.notify == ["rita"]
    assert (await token_service.validate(submitted.token, now=now)).valid is False

    entry = fake_db.history.entries[-1]
    assert entry.approver == "alice"
    assert entry.acting_approver == "dan"


@pytest.mark.asyncio
async def test_vendor_bills_stay_with_original_approver(engine, fake_db, today):
    delegations = DelegationService(database=fake_db)
    await delegations.create("alice", "dan", today - timedelta(days=1), today + timedelta(days=6),
                             transaction_type_scope=TransactionType.PURCHASE_ORDER)

    task = await engine.open_task(TransactionType.VENDOR_BILL, "VB-330", "alice")
    await engine.apply(task.id, ApprovalAction.SUBMIT, "rita")

    with pytest.raises(UnauthorizedActor):
        await engine.apply(task.id, ApprovalAction.APPROVE, "dan")
    result = await engine.apply(task.id, ApprovalAction.APPROVE, "alice")
    assert result.to_status == ApprovalStatus.APPROVED


@pytest.mark.asyncio
async def test_other_subsidiaries_stay_with_original_approver(engine, fake_db, today):
    delegations = DelegationService(database=fake_db)
    await delegations.create("alice", "dan", today - timedelta(days=1), today + timedelta(days=6),
                             transaction_type_scope=TransactionType.PURCHASE_ORDER,
                             subsidiary_scope="SUB-UK")

    task = await engine.open_task(TransactionType.PURCHASE_ORDER, "PO-7710", "alice", subsidiary="SUB-DE")
    submitted = await engine.apply(task.id, ApprovalAction.SUBMIT, "rita")

    assert submitted.notify == ["alice"]
    with pytest.raises(UnauthorizedActor):
        await engine.apply(task.id, ApprovalAction.APPROVE, "dan")
    result = await engine.apply(task.id, ApprovalAction.APPROVE, "alice")
    assert result.to_status == ApprovalStatus.APPROVED
