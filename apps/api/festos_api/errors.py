"""Error taxonomy shared by adapters, orchestrator and monitor."""

from typing import Any, Optional


class FestosError(Exception):
    """Base error for the storage orchestration layer."""


class ValidationError(FestosError):
    """Caller input is malformed. Never retried, never touches storage."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        return {"type": "validation_error", "message": self.message, "field": self.field}


class InvalidEventStateError(ValidationError):
    """Operation is not allowed for the event's current status."""

    def __init__(self, message: str, event_id: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message, field="status", value=status)
        self.event_id = event_id
        self.status = status


class EventNotFoundError(FestosError):
    """No relational row exists for the requested event."""

    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class StorageError(FestosError):
    """A provider call failed. Carries the provider and operation for retry decisions."""

    def __init__(
        self,
        message: str,
        provider: str,
        operation: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.operation = operation
        self.cause = cause

    def to_dict(self) -> dict:
        return {
            "type": "storage_error",
            "message": self.message,
            "provider": self.provider,
            "operation": self.operation,
        }

    def __str__(self) -> str:
        return f"[{self.provider}.{self.operation}] {self.message}"
