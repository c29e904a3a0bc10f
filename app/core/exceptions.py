"""
Domain errors raised by the queueing services.

Each error carries the HTTP status the API layer answers with, a stable
machine-readable ``code`` and a human message. Services never raise
``HTTPException`` directly; ``app.main`` translates these.
"""
from typing import Any, Dict, Optional
from uuid import UUID


class QueueDeskError(Exception):
    status_code: int = 400
    code: str = "queue_desk_error"
    message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "code": self.code, "message": self.message}


class QueueNotFoundError(QueueDeskError):
    status_code = 404
    code = "queue_not_found"

    def __init__(self, queue_id: UUID):
        self.queue_id = queue_id
        super().__init__(f"Queue {queue_id} not found")


class QueueInactiveError(QueueDeskError):
    status_code = 400
    code = "queue_inactive"

    def __init__(self, queue_id: UUID):
        self.queue_id = queue_id
        super().__init__("Queue is not accepting new tokens, please choose another queue")


class QueueFullError(QueueDeskError):
    status_code = 409
    code = "queue_full"

    def __init__(self, queue_id: UUID, max_capacity: int):
        self.queue_id = queue_id
        self.max_capacity = max_capacity
        super().__init__(f"Queue is at maximum capacity ({max_capacity}), please try again later")


class QueueNotEmptyError(QueueDeskError):
    status_code = 409
    code = "queue_not_empty"

    def __init__(self, queue_id: UUID, active_count: int):
        self.queue_id = queue_id
        self.active_count = active_count
        super().__init__(f"Cannot delete queue with {active_count} active token(s)")


class DuplicateActiveTokenError(QueueDeskError):
    status_code = 409
    code = "duplicate_active_token"

    def __init__(self, token_number: str, status: str):
        self.token_number = token_number
        self.status = status
        super().__init__(f"You already have an active token ({token_number}) in this queue")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["existing_token"] = {"token_number": self.token_number, "status": self.status}
        return data


class InvalidTransitionError(QueueDeskError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["from"] = self.from_status
        data["to"] = self.to_status
        return data


class TokenNotFoundError(QueueDeskError):
    status_code = 404
    code = "token_not_found"

    def __init__(self, token_id: UUID):
        self.token_id = token_id
        super().__init__(f"Token {token_id} not found")


class NoWaitingTokensError(QueueDeskError):
    status_code = 404
    code = "no_waiting_tokens"

    def __init__(self, queue_id: UUID):
        self.queue_id = queue_id
        super().__init__("No tokens waiting in queue")


class AllocationConflictError(QueueDeskError):
    status_code = 503
    code = "allocation_conflict"
    message = "Could not allocate a token number, please retry"


class SequenceExhaustedError(QueueDeskError):
    status_code = 503
    code = "sequence_exhausted"

    def __init__(self, prefix: str, day: str):
        self.prefix = prefix
        self.day = day
        super().__init__(f"No token numbers left for {prefix} on {day}, please try again tomorrow")


class PermissionDeniedError(QueueDeskError):
    status_code = 403
    code = "permission_denied"
    message = "Access denied"
