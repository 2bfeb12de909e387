"""
Domain errors raised by the approval engine.

Validation errors (IllegalTransition, UnauthorizedActor, MissingComment) are
raised before any write. StoreError wraps persistence failures. Token refresh
and invalidation never raise; they log instead.
"""


class ApprovalError(Exception):
    """Base class for every error the engine raises on purpose."""

    code = "APPROVAL_ERROR"

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context
        super().__init__(message)


class IllegalTransition(ApprovalError):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, action: str, status: str):
        super().__init__(
            f"Cannot {action} a task in status {status}",
            action=action,
            status=status,
        )
        self.action = action
        self.status = status


class UnauthorizedActor(ApprovalError):
    code = "UNAUTHORIZED_ACTOR"

    def __init__(self, actor_id: str, task_id: str, expected: str = None):
        super().__init__(
            f"User {actor_id} is not authorized to act on task {task_id}",
            actor_id=actor_id,
            task_id=task_id,
        )
        self.actor_id = actor_id
        self.task_id = task_id
        self.expected = expected


class MissingComment(ApprovalError):
    code = "MISSING_COMMENT"

    def __init__(self, action: str):
        super().__init__(f"A comment is required to {action}", action=action)
        self.action = action


class TokenInvalid(ApprovalError):
    code = "TOKEN_INVALID"

    def __init__(self, reason: str = "Token is invalid or expired"):
        # reason is for logs only; callers show a generic message
        super().__init__("This approval link is invalid or has expired.")
        self.reason = reason


class TaskNotFound(ApprovalError):
    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        super().__init__(f"Approval task {task_id} not found", task_id=task_id)
        self.task_id = task_id


class InvalidDelegation(ApprovalError):
    code = "INVALID_DELEGATION"


class StoreError(ApprovalError):
    code = "STORE_ERROR"


class SchedulingError(ApprovalError):
    code = "SCHEDULING_ERROR"
