import argparse
import asyncio
import logging
from p2p_approvals.config import settings
from p2p_approvals.database import db
from p2p_approvals.models.batch import BatchRunRequest
from p2p_approvals.services.batch import batch_processor
from p2p_approvals.services.scheduler import MeteredBudget, job_scheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

async def run_bulk_approval(task_ids, actor_id, limit, threshold):
    db.connect()
    try:
        request = BatchRunRequest(task_ids=task_ids, limit=limit, governance_threshold=threshold, actor_id=actor_id)
        result = await batch_processor.run(request, MeteredBudget(settings.BATCH_RUN_BUDGET))
        logger.info(f"First pass: {len(result.approved_ids)} approved, {len(result.failed_ids)} failed")

        # Let rescheduled passes finish before the connection closes
        while job_scheduler.jobs:
            await asyncio.gather(*list(job_scheduler.jobs.values()), return_exceptions=True)
    finally:
        db.close()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Approve a backlog of approval tasks in governed passes")
    parser.add_argument("actor_id", help="Employee approving the tasks")
    parser.add_argument("task_ids", nargs="+")
    parser.add_argument("--limit", type=int, default=settings.BULK_APPROVAL_LIMIT)
    parser.add_argument("--threshold", type=int, default=settings.GOVERNANCE_THRESHOLD)
    args = parser.parse_args()
    asyncio.run(run_bulk_approval(args.task_ids, args.actor_id, args.limit, args.threshold))
