"""
Collaborators of the batch processor: the compute budget oracle and the
trigger that schedules a follow-up run.
"""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Protocol

from p2p_approvals.exceptions import SchedulingError

logger = logging.getLogger(__name__)

BATCH_JOB = "BatchJob"

class BudgetOracle(Protocol):
    def remaining_budget(self) -> int:
        ...

    def charge(self, units: int) -> None:
        """Bill one finished unit. Platforms that meter themselves ignore this."""
        ...

class MeteredBudget:
    """In-process budget: a fixed allowance that only ever goes down."""

    def __init__(self, allowance: int):
        if allowance < 0:
            raise ValueError("allowance must not be negative")
        self._remaining = allowance

    def remaining_budget(self) -> int:
        return self._remaining

    def charge(self, units: int) -> None:
        if units < 0:
            raise ValueError("cannot refund budget")
        self._remaining = max(0, self._remaining - units)

class JobScheduler(Protocol):
    def submit(self, task_type: str, params: Dict[str, Any]) -> str:
        ...

JobHandler = Callable[[Dict[str, Any]], Awaitable[Any]]

class LocalJobScheduler:
    """
    Runs submitted jobs as asyncio tasks on the current event loop. Each job
    starts a fresh execution window once the submitting run has returned.
    """

    def __init__(self):
        self._handlers: Dict[str, JobHandler] = {}
        self.jobs: Dict[str, asyncio.Task] = {}

    def register(self, task_type: str, handler: JobHandler):
        self._handlers[task_type] = handler

    def submit(self, task_type: str, params: Dict[str, Any]) -> str:
        handler = self._handlers.get(task_type)
        if handler is None:
            raise SchedulingError(f"No handler registered for {task_type}")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SchedulingError("No running event loop to schedule on") from e

        job_id = f"JOB-{uuid.uuid4().hex[:12]}"
        task = loop.create_task(handler(params), name=job_id)
        task.add_done_callback(lambda t, job_id=job_id: self._on_done(job_id, t))
        self.jobs[job_id] = task
        logger.info(f"Scheduled {task_type} job {job_id}")
        return job_id

    def _on_done(self, job_id: str, task: asyncio.Task):
        self.jobs.pop(job_id, None)
        if task.cancelled():
            logger.warning(f"Job {job_id} was cancelled")
        elif task.exception() is not None:
            logger.error(f"Job {job_id} failed: {task.exception()}")

job_scheduler = LocalJobScheduler()
