import logging
from motor.motor_asyncio import AsyncIOMotorClient
from p2p_approvals.config import settings
from p2p_approvals.repositories.task import TaskRepository
from p2p_approvals.repositories.delegation import DelegationRepository
from p2p_approvals.repositories.history import HistoryRepository
from p2p_approvals.repositories.matching import MatchingExceptionRepository
from p2p_approvals.models.task import ApprovalTask
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.models.history import ApprovalHistoryEntry
from p2p_approvals.models.matching import MatchingException

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None

    # Repositories
    tasks: TaskRepository = None
    delegations: DelegationRepository = None
    history: HistoryRepository = None
    matching: MatchingExceptionRepository = None

    def connect(self):
        """Initialize database connection and repositories."""
        self.client = AsyncIOMotorClient(settings.MONGODB_URL)
        db = self.client[settings.DB_NAME]

        self.tasks = TaskRepository(db.approval_tasks, ApprovalTask)
        self.delegations = DelegationRepository(db.delegations, Delegation)
        self.history = HistoryRepository(db.approval_history, ApprovalHistoryEntry)
        self.matching = MatchingExceptionRepository(db.matching_exceptions, MatchingException)

        logger.info("Connected to MongoDB")

    def close(self):
        """Close database connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

db = Database()

async def get_db() -> Database:
    """Dependency for FastAPI."""
    return db
