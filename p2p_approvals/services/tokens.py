"""
Single-task bearer tokens for approving or rejecting from a notification link.

A token is only good while its task is Pending Approval and before its
expiry, so resolving a task by any other route makes old links useless
without a revocation sweep. Refresh and invalidate are best effort: failures
are logged and never raised.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel

from p2p_approvals.config import settings
from p2p_approvals.database import db as default_db
from p2p_approvals.models.task import ApprovalStatus, TaskUpdate, TransactionType
from p2p_approvals.services.delegation import resolve_acting_approver

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32

class TokenValidation(BaseModel):
    valid: bool
    task_id: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    transaction_id: Optional[str] = None
    approver: Optional[str] = None
    original_approver: Optional[str] = None
    error: Optional[str] = None

class TokenInfo(BaseModel):
    has_token: bool = False
    expiry: Optional[datetime] = None
    is_expired: bool = True
    is_valid: bool = False

class ActionTokenService:
    def __init__(self, database=None, expiry_hours: Optional[int] = None):
        self.db = database or default_db
        self.expiry_hours = expiry_hours or settings.TOKEN_EXPIRY_HOURS

    def generate(self) -> str:
        """64 hex characters from 32 random bytes. Uniqueness is by entropy only."""
        return secrets.token_hex(TOKEN_BYTES)

    async def validate(self, token: str, now: Optional[datetime] = None) -> TokenValidation:
        if not token or not token.strip():
            return TokenValidation(valid=False, error="Missing token")

        now = now or datetime.utcnow()
        try:
            task = await self.db.tasks.find_by_token(token, now=now)
            if task is None:
                return TokenValidation(valid=False, error="Token is invalid or expired")

            # The store filters already, but never trust a stale or partial match.
            if task.status != ApprovalStatus.PENDING_APPROVAL or task.token != token:
                return TokenValidation(valid=False, error="Token is invalid or expired")
            if task.token_expiry is None or task.token_expiry < now:
                return TokenValidation(valid=False, error="Token is invalid or expired")

            delegations = await self.db.delegations.list_active(task.approver, now.date())
            acting = resolve_acting_approver(
                task.approver, task.transaction_type, task.subsidiary, now.date(), delegations
            )
        except Exception as e:
            logger.error(f"validate token error: {e}")
            return TokenValidation(valid=False, error="Error validating token")

        return TokenValidation(
            valid=True,
            task_id=task.id,
            transaction_type=task.transaction_type,
            transaction_id=task.transaction_id,
            approver=acting.effective_approver,
            original_approver=task.approver,
        )

    async def refresh(self, task_id: str, now: Optional[datetime] = None) -> Optional[str]:
        """Issue a new token with a fresh expiry. Returns None on any failure."""
        try:
            if not task_id:
                raise ValueError("Missing task_id")
            token = self.generate()
            expiry = (now or datetime.utcnow()) + timedelta(hours=self.expiry_hours)
            applied = await self.db.tasks.write(
                task_id,
                TaskUpdate(token=token, token_expiry=expiry),
                now=now,
                expected_status=ApprovalStatus.PENDING_APPROVAL,
            )
            if not applied:
                logger.warning(f"Task {task_id} is not pending approval; no token issued")
                return None
            return token
        except Exception as e:
            logger.error(f"refresh token error for task {task_id}: {e}")
            return None

    async def invalidate(self, task_id: str) -> None:
        """Clear the token on a task. Idempotent and best effort."""
        if not task_id:
            return
        try:
            await self.db.tasks.write(task_id, TaskUpdate(clear_token=True))
        except Exception as e:
            logger.error(f"invalidate token error for task {task_id}: {e}")

    async def token_info(self, task_id: str, now: Optional[datetime] = None) -> TokenInfo:
        """Token metadata for a task. Never reveals the token itself."""
        try:
            task = await self.db.tasks.get(task_id)
        except Exception as e:
            logger.error(f"token info error for task {task_id}: {e}")
            return TokenInfo()
        if task is None:
            return TokenInfo()

        now = now or datetime.utcnow()
        has_token = bool(task.token)
        is_expired = task.token_expiry is None or task.token_expiry < now
        return TokenInfo(
            has_token=has_token,
            expiry=task.token_expiry,
            is_expired=is_expired,
            is_valid=has_token and not is_expired,
        )

    async def is_expiring_soon(self, task_id: str, within_hours: int = 1, now: Optional[datetime] = None) -> bool:
        info = await self.token_info(task_id, now=now)
        if info.expiry is None:
            return True
        return info.expiry < (now or datetime.utcnow()) + timedelta(hours=within_hours)

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        try:
            cleaned = await self.db.tasks.clear_expired_tokens(now=now)
        except Exception as e:
            logger.error(f"cleanup expired tokens error: {e}")
            return 0
        if cleaned:
            logger.info(f"Cleared {cleaned} expired tokens")
        return cleaned

token_service = ActionTokenService()
