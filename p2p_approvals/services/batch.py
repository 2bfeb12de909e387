"""
Bulk approval under a hard per-run compute budget.

A pass approves tasks one at a time. Before each unit it samples the
remaining budget; once that drops below the governance threshold every
remaining unit is skipped rather than risking an abort mid-unit. Skipped ids
are handed to the scheduler as a new run with the same settings, so a large
backlog completes over several execution windows.
"""
import logging
from typing import Any, Dict, List, Optional

from p2p_approvals.config import settings
from p2p_approvals.exceptions import ApprovalError, SchedulingError
from p2p_approvals.models.batch import BatchOutcome, BatchRunRequest, BatchRunResult
from p2p_approvals.models.task import ApprovalAction, ApprovalMethod
from p2p_approvals.services.scheduler import BATCH_JOB, BudgetOracle, JobScheduler, MeteredBudget, job_scheduler
from p2p_approvals.services.state_machine import ApprovalStateMachine, approval_engine

logger = logging.getLogger(__name__)

class GovernedBatchProcessor:
    def __init__(self, engine: Optional[ApprovalStateMachine] = None,
                 scheduler: Optional[JobScheduler] = None,
                 unit_cost: Optional[int] = None):
        self.engine = engine or approval_engine
        self.scheduler = scheduler or job_scheduler
        self.unit_cost = settings.BATCH_UNIT_COST if unit_cost is None else unit_cost

    async def run(self, request: BatchRunRequest, budget: BudgetOracle) -> BatchRunResult:
        accepted = request.task_ids[:request.limit]
        if len(request.task_ids) > request.limit:
            logger.warning(
                f"Batch of {len(request.task_ids)} tasks truncated to limit {request.limit}"
            )

        result = BatchRunResult()
        exhausted = False
        for task_id in accepted:
            if not exhausted:
                remaining = budget.remaining_budget()
                if remaining < request.governance_threshold:
                    exhausted = True
                    logger.info(
                        f"Budget {remaining} below threshold {request.governance_threshold}; "
                        f"skipping from task {task_id}"
                    )
            if exhausted:
                result.outcomes[task_id] = BatchOutcome.SKIPPED
                continue

            result.outcomes[task_id] = await self._approve(task_id, request.actor_id)
            budget.charge(self.unit_cost)

        skipped = result.skipped_ids
        if skipped:
            self._reschedule(request, skipped, result)

        logger.info(
            f"Bulk approval pass complete: {len(result.approved_ids)} approved, "
            f"{len(result.failed_ids)} failed, {len(skipped)} skipped"
        )
        return result

    async def _approve(self, task_id: str, actor_id: str) -> BatchOutcome:
        try:
            await self.engine.apply(task_id, ApprovalAction.APPROVE, actor_id, method=ApprovalMethod.BULK)
            return BatchOutcome.APPROVED
        except ApprovalError as e:
            logger.warning(f"Bulk approve failed for task {task_id}: {e.message}")
        except Exception:
            logger.exception(f"Unexpected error approving task {task_id}")
        return BatchOutcome.FAILED

    def _reschedule(self, request: BatchRunRequest, skipped: List[str], result: BatchRunResult):
        follow_up = BatchRunRequest(
            task_ids=skipped,
            limit=request.limit,
            governance_threshold=request.governance_threshold,
            actor_id=request.actor_id,
        )
        try:
            result.rescheduled_job_id = self.scheduler.submit(BATCH_JOB, follow_up.to_params())
            logger.info(f"Rescheduled {len(skipped)} skipped tasks as job {result.rescheduled_job_id}")
        except SchedulingError as e:
            result.reschedule_error = e.message
            logger.error(f"Rescheduling {len(skipped)} skipped tasks failed: {e.message}")
        except Exception as e:
            result.reschedule_error = str(e)
            logger.error(f"Rescheduling {len(skipped)} skipped tasks failed: {e}")

    async def run_job(self, params: Dict[str, Any]) -> BatchRunResult:
        """Scheduler entry point: one fresh execution window per job."""
        request = BatchRunRequest(**params)
        return await self.run(request, MeteredBudget(settings.BATCH_RUN_BUDGET))

    def start(self, task_ids: List[str], actor_id: str, limit: Optional[int] = None,
              governance_threshold: Optional[int] = None) -> str:
        """Queue the first pass of a bulk approval and return its job id."""
        request = BatchRunRequest(
            task_ids=task_ids,
            limit=limit or settings.BULK_APPROVAL_LIMIT,
            governance_threshold=governance_threshold or settings.GOVERNANCE_THRESHOLD,
            actor_id=actor_id,
        )
        return self.scheduler.submit(BATCH_JOB, request.to_params())

batch_processor = GovernedBatchProcessor()
job_scheduler.register(BATCH_JOB, batch_processor.run_job)
