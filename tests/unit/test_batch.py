import asyncio
from unittest.mock import MagicMock

import pytest

from p2p_approvals.exceptions import SchedulingError
from p2p_approvals.models.batch import BatchOutcome, BatchRunRequest
from p2p_approvals.models.task import ApprovalStatus
from p2p_approvals.services.batch import GovernedBatchProcessor
from p2p_approvals.services.scheduler import BATCH_JOB, LocalJobScheduler, MeteredBudget

APPROVER = "emp-approver"


class ScriptedBudget:
    """Reports a fixed sequence of readings, one per sample."""

    def __init__(self, readings):
        self.readings = list(readings)
        self.samples = 0
        self.charged = 0

    def remaining_budget(self):
        value = self.readings[min(self.samples, len(self.readings) - 1)]
        self.samples += 1
        return value

    def charge(self, units):
        self.charged += units


class RecordingScheduler:
    def __init__(self):
        self.submitted = []

    def submit(self, task_type, params):
        self.submitted.append((task_type, params))
        return f"JOB-{len(self.submitted)}"


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def processor(engine, scheduler):
    return GovernedBatchProcessor(engine=engine, scheduler=scheduler, unit_cost=100)


def _pending(make_task, count):
    return [make_task(transaction_id=f"PO-{n}").id for n in range(count)]


@pytest.mark.asyncio
async def test_budget_exhaustion_skips_and_reschedules_remaining(processor, scheduler, make_task, fake_db):
    ids = _pending(make_task, 10)
    budget = ScriptedBudget([5000, 5000, 5000, 150])
    request = BatchRunRequest(task_ids=ids, limit=50, governance_threshold=200, actor_id=APPROVER)

    result = await processor.run(request, budget)

    assert result.approved_ids == ids[:3]
    assert result.skipped_ids == ids[3:]
    assert result.failed_ids == []
    assert budget.samples == 4

    assert len(scheduler.submitted) == 1
    task_type, params = scheduler.submitted[0]
    assert task_type == BATCH_JOB
    assert params["task_ids"] == ids[3:]
    assert params["limit"] == 50
    assert params["governance_threshold"] == 200
    assert params["actor_id"] == APPROVER
    assert result.rescheduled_job_id == "JOB-1"

    for task_id in ids[3:]:
        assert fake_db.tasks.tasks[task_id].status == ApprovalStatus.PENDING_APPROVAL


@pytest.mark.asyncio
async def test_skipped_is_sticky_even_if_budget_recovers(processor, make_task):
    ids = _pending(make_task, 4)
    budget = ScriptedBudget([5000, 10, 5000, 5000])

    result = await processor.run(BatchRunRequest(task_ids=ids, actor_id=APPROVER), budget)

    assert result.approved_ids == ids[:1]
    assert result.skipped_ids == ids[1:]
    assert budget.samples == 2


@pytest.mark.asyncio
async def test_no_reschedule_when_nothing_skipped(processor, scheduler, make_task):
    ids = _pending(make_task, 3)

    result = await processor.run(BatchRunRequest(task_ids=ids, actor_id=APPROVER), MeteredBudget(10000))

    assert result.approved_ids == ids
    assert scheduler.submitted == []
    assert result.rescheduled_job_id is None


@pytest.mark.asyncio
async def test_failures_do_not_stop_the_run(processor, make_task):
    good = make_task(transaction_id="PO-good").id
    approved_already = make_task(transaction_id="PO-done", status=ApprovalStatus.APPROVED).id
    foreign = make_task(transaction_id="PO-other", approver="emp-other").id

    result = await processor.run(
        BatchRunRequest(task_ids=[approved_already, "task-missing", foreign, good], actor_id=APPROVER),
        MeteredBudget(10000),
    )

    assert result.outcomes == {
        approved_already: BatchOutcome.FAILED,
        "task-missing": BatchOutcome.FAILED,
        foreign: BatchOutcome.FAILED,
        good: BatchOutcome.APPROVED,
    }


@pytest.mark.asyncio
async def test_unit_cost_is_charged_per_processed_unit(processor, make_task):
    ids = _pending(make_task, 3)
    budget = MeteredBudget(400)

    result = await processor.run(BatchRunRequest(task_ids=ids, actor_id=APPROVER), budget)

    # 400 -> 300 -> 200 -> 100: the third sample still clears the threshold
    assert result.approved_ids == ids
    assert budget.remaining_budget() == 100


@pytest.mark.asyncio
async def test_scheduling_failure_is_reported(engine, make_task):
    failing = MagicMock()
    failing.submit.side_effect = SchedulingError("queue is full")
    processor = GovernedBatchProcessor(engine=engine, scheduler=failing, unit_cost=100)
    ids = _pending(make_task, 2)

    result = await processor.run(BatchRunRequest(task_ids=ids, actor_id=APPROVER), MeteredBudget(0))

    assert result.skipped_ids == ids
    assert result.rescheduled_job_id is None
    assert result.reschedule_error == "queue is full"


@pytest.mark.asyncio
async def test_input_beyond_limit_is_truncated(processor, make_task):
    ids = _pending(make_task, 5)

    result = await processor.run(BatchRunRequest(task_ids=ids, limit=2, actor_id=APPROVER), MeteredBudget(10000))

    assert list(result.outcomes) == ids[:2]


def test_request_rejects_non_positive_limits():
    with pytest.raises(ValueError):
        BatchRunRequest(task_ids=[], limit=0, actor_id=APPROVER)
    with pytest.raises(ValueError):
        BatchRunRequest(task_ids=[], governance_threshold=0, actor_id=APPROVER)


def test_metered_budget():
    budget = MeteredBudget(250)
    budget.charge(100)
    assert budget.remaining_budget() == 150
    budget.charge(500)
    assert budget.remaining_budget() == 0
    with pytest.raises(ValueError):
        budget.charge(-1)
    with pytest.raises(ValueError):
        MeteredBudget(-5)


@pytest.mark.asyncio
async def test_local_scheduler_runs_registered_handler():
    seen = []

    async def handler(params):
        seen.append(params)

    scheduler = LocalJobScheduler()
    scheduler.register(BATCH_JOB, handler)
    job_id = scheduler.submit(BATCH_JOB, {"task_ids": ["a"]})

    assert job_id.startswith("JOB-")
    await asyncio.gather(*scheduler.jobs.values())
    await asyncio.sleep(0)
    assert seen == [{"task_ids": ["a"]}]
    assert scheduler.jobs == {}


@pytest.mark.asyncio
async def test_local_scheduler_unknown_job_type():
    with pytest.raises(SchedulingError):
        LocalJobScheduler().submit("Unknown", {})


def test_local_scheduler_needs_running_loop():
    scheduler = LocalJobScheduler()

    async def handler(params):
        return None

    scheduler.register(BATCH_JOB, handler)
    with pytest.raises(SchedulingError):
        scheduler.submit(BATCH_JOB, {})


@pytest.mark.asyncio
async def test_rescheduled_run_finishes_the_backlog(engine, make_task, fake_db):
    scheduler = LocalJobScheduler()
    processor = GovernedBatchProcessor(engine=engine, scheduler=scheduler, unit_cost=100)
    scheduler.register(BATCH_JOB, processor.run_job)
    ids = _pending(make_task, 4)

    first = await processor.run(BatchRunRequest(task_ids=ids, actor_id=APPROVER), MeteredBudget(300))
    assert first.approved_ids == ids[:2]

    await asyncio.gather(*scheduler.jobs.values())
    for task_id in ids:
        assert fake_db.tasks.tasks[task_id].status == ApprovalStatus.APPROVED


@pytest.mark.asyncio
async def test_repeated_ids_are_processed_once(processor, make_task, fake_db):
    first, second = _pending(make_task, 2)

    result = await processor.run(
        BatchRunRequest(task_ids=[first, second, first, first], actor_id=APPROVER), MeteredBudget(10000),
    )

    assert result.outcomes == {first: BatchOutcome.APPROVED, second: BatchOutcome.APPROVED}
    assert fake_db.tasks.tasks[first].status == ApprovalStatus.APPROVED


def test_repeats_collapse_before_the_limit_applies():
    request = BatchRunRequest(task_ids=["a", "a", "b", "a", "c"], limit=2, actor_id=APPROVER)
    assert request.task_ids == ["a", "b", "c"]


@pytest.mark.parametrize("blank", ["", "   "])
def test_blank_task_ids_are_rejected(blank):
    with pytest.raises(ValueError):
        BatchRunRequest(task_ids=["task-1", blank], actor_id=APPROVER)
