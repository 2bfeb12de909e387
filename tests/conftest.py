import itertools
from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from p2p_approvals.exceptions import TaskNotFound
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.models.task import ApprovalStatus, ApprovalTask, TaskUpdate, TransactionType
from p2p_approvals.services.state_machine import ApprovalStateMachine
from p2p_approvals.services.tokens import ActionTokenService

NOW = datetime(2026, 3, 10, 9, 0, 0)
TODAY = NOW.date()

class FakeTaskRepository:
    """In-memory stand-in for TaskRepository with the same async surface."""

    def __init__(self):
        self.tasks = {}
        self.writes = []
        self._ids = itertools.count(1)

    def add(self, task: ApprovalTask) -> ApprovalTask:
        if task.id is None:
            task.id = f"task-{next(self._ids)}"
        self.tasks[task.id] = task
        return task

    async def create(self, task):
        return self.add(task)

    async def get(self, task_id):
        return self.tasks.get(task_id)

    async def write(self, task_id, update: TaskUpdate, now=None, expected_status=None):
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if expected_status is not None and task.status != expected_status:
            return False
        self.writes.append((task_id, update))
        self.tasks[task_id] = task.model_copy(update=update.to_set_document(now))
        return True

    async def find_by_token(self, token, now=None):
        now = now or datetime.utcnow()
        for task in self.tasks.values():
            if (task.token == token and task.status == ApprovalStatus.PENDING_APPROVAL
                    and task.token_expiry is not None and task.token_expiry >= now):
                return task
        return None

    async def find_live_for_transaction(self, transaction_type, transaction_id):
        live = [
            t for t in self.tasks.values()
            if t.transaction_type == transaction_type and t.transaction_id == transaction_id
            and t.status != ApprovalStatus.APPROVED
        ]
        return max(live, key=lambda t: t.created_at) if live else None

    async def list_pending(self, older_than_hours, reminder_count_lt, now=None, limit=1000):
        cutoff = (now or datetime.utcnow()) - timedelta(hours=older_than_hours)
        return [
            t for t in self.tasks.values()
            if t.status == ApprovalStatus.PENDING_APPROVAL and t.created_at <= cutoff
            and t.reminder_count < reminder_count_lt
        ][:limit]

    async def list_due_for_escalation(self, older_than_hours, now=None, limit=1000):
        cutoff = (now or datetime.utcnow()) - timedelta(hours=older_than_hours)
        return [
            t for t in self.tasks.values()
            if t.status == ApprovalStatus.PENDING_APPROVAL and t.created_at <= cutoff and not t.escalated
        ][:limit]

    async def increment_reminder_count(self, task_id):
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        self.tasks[task_id] = task.model_copy(update={"reminder_count": task.reminder_count + 1})

    async def list_expiring_tokens(self, before, limit=1000):
        return [
            t for t in self.tasks.values()
            if t.status == ApprovalStatus.PENDING_APPROVAL and t.token
            and t.token_expiry is not None and t.token_expiry <= before
        ]

    async def clear_expired_tokens(self, now=None):
        now = now or datetime.utcnow()
        cleared = 0
        for task_id, task in list(self.tasks.items()):
            if task.token and task.token_expiry is not None and task.token_expiry < now:
                self.tasks[task_id] = task.model_copy(update={"token": None, "token_expiry": None})
                cleared += 1
        return cleared

class FakeDelegationRepository:
    def __init__(self):
        self.delegations = {}
        self._ids = itertools.count(1)

    def add(self, delegation: Delegation) -> Delegation:
        if delegation.id is None:
            delegation.id = f"del-{next(self._ids)}"
        self.delegations[delegation.id] = delegation
        return delegation

    async def create(self, delegation):
        return self.add(delegation)

    async def list_active(self, approver_id, as_of):
        return [
            d for d in self.delegations.values()
            if d.original_approver_id == approver_id and d.is_active_on(as_of)
        ]

    async def list_for_employee(self, employee_id, as_delegate=False):
        field = "delegate_id" if as_delegate else "original_approver_id"
        return [d for d in self.delegations.values() if getattr(d, field) == employee_id]

    async def set_active(self, delegation_id, active):
        delegation = self.delegations.get(delegation_id)
        if delegation is None:
            return False
        delegation.active = active
        return True

    async def deactivate_ended_before(self, day):
        count = 0
        for delegation in self.delegations.values():
            if delegation.active and delegation.end_date < day:
                delegation.active = False
                count += 1
        return count

class FakeHistoryRepository:
    def __init__(self):
        self.entries = []

    async def log_entry(self, entry):
        self.entries.append(entry)
        return entry

    async def for_transaction(self, transaction_type, transaction_id):
        return [
            e for e in self.entries
            if e.transaction_type.value == transaction_type and e.transaction_id == transaction_id
        ]

class FakeMatchingRepository:
    def __init__(self):
        self.exceptions = {}

    async def get_for_task(self, task_id):
        return self.exceptions.get(task_id)

@pytest.fixture
def fake_db():
    return SimpleNamespace(
        tasks=FakeTaskRepository(),
        delegations=FakeDelegationRepository(),
        history=FakeHistoryRepository(),
        matching=FakeMatchingRepository(),
    )

@pytest.fixture
def engine(fake_db):
    return ApprovalStateMachine(database=fake_db, clock=lambda: NOW)

@pytest.fixture
def token_service(fake_db):
    return ActionTokenService(database=fake_db, expiry_hours=72)

@pytest.fixture
def make_task(fake_db):
    def _make(status=ApprovalStatus.PENDING_APPROVAL, approver="emp-approver",
              transaction_type=TransactionType.PURCHASE_ORDER, transaction_id="PO-1001",
              subsidiary="SUB-UK", submitted_by="emp-requestor", **extra):
        task = ApprovalTask(
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            subsidiary=subsidiary,
            status=status,
            approver=approver,
            submitted_by=submitted_by,
            created_at=extra.pop("created_at", NOW - timedelta(hours=1)),
            **extra,
        )
        return fake_db.tasks.add(task)
    return _make

@pytest.fixture
def make_delegation(fake_db):
    def _make(original="emp-approver", delegate="emp-delegate", start=None, end=None,
              subsidiary_scope=None, transaction_type_scope=None, active=True):
        delegation = Delegation(
            original_approver_id=original,
            delegate_id=delegate,
            start_date=start or TODAY - timedelta(days=2),
            end_date=end or TODAY + timedelta(days=5),
            subsidiary_scope=subsidiary_scope,
            transaction_type_scope=transaction_type_scope,
            active=active,
        )
        return fake_db.delegations.add(delegation)
    return _make

@pytest.fixture
def now():
    return NOW

@pytest.fixture
def today():
    return TODAY
