import asyncio
import logging
from p2p_approvals.database import db
from p2p_approvals.services.delegation import delegation_service
from p2p_approvals.services.escalation import escalation_service
from p2p_approvals.services.reminders import reminder_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

async def run_reminders():
    """
    Scheduled sweep over pending approvals. Run every few hours.
    """
    logger.info("Starting approval reminder job...")
    db.connect()
    try:
        escalations = await escalation_service.run()
        summary = await reminder_service.run()
        expired = await delegation_service.cleanup_expired()
        logger.info(
            f"Reminder job complete: {summary.model_dump()}, {escalations.escalated} escalated, "
            f"{expired} delegations expired"
        )
    finally:
        db.close()

if __name__ == "__main__":
    asyncio.run(run_reminders())
