"""Custom exceptions and error codes."""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Standardized error codes for the API."""

    # Authentication errors (401)
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"

    # Not found errors (404)
    MESSAGE_NOT_FOUND = "MESSAGE_NOT_FOUND"
    NOTIFICATION_NOT_FOUND = "NOTIFICATION_NOT_FOUND"
    PREFERENCE_NOT_FOUND = "PREFERENCE_NOT_FOUND"

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Lifecycle conflicts (409)
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOTIFICATION_NOT_EDITABLE = "NOTIFICATION_NOT_EDITABLE"
    NOTIFICATION_NOT_DUE = "NOTIFICATION_NOT_DUE"
    RETRY_LIMIT_EXCEEDED = "RETRY_LIMIT_EXCEEDED"
    SIGNAL_CONFLICT = "SIGNAL_CONFLICT"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: int = 400,
        details: Any | None = None,
    ) -> None:
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(
        self,
        message: str = "Authentication required",
        error_code: ErrorCode = ErrorCode.UNAUTHORIZED,
    ) -> None:
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=401,
        )


class MessageNotFoundError(AppException):
    """Message not found."""

    def __init__(self, message_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.MESSAGE_NOT_FOUND,
            message=f"Message not found: {message_id}",
            status_code=404,
            details={"message_id": message_id},
        )


class NotificationNotFoundError(AppException):
    """Notification not found."""

    def __init__(self, notification_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.NOTIFICATION_NOT_FOUND,
            message=f"Notification not found: {notification_id}",
            status_code=404,
            details={"notification_id": notification_id},
        )


class PreferenceNotFoundError(AppException):
    """Channel preference not found."""

    def __init__(self, contact_id: str, channel: str) -> None:
        super().__init__(
            error_code=ErrorCode.PREFERENCE_NOT_FOUND,
            message=f"No {channel} preference stored for contact {contact_id}",
            status_code=404,
            details={"contact_id": contact_id, "channel": channel},
        )


class InvalidTransitionError(AppException):
    """Requested status change is not an edge of the lifecycle."""

    def __init__(self, kind: str, current: str, requested: str) -> None:
        super().__init__(
            error_code=ErrorCode.INVALID_TRANSITION,
            message=f"Cannot move {kind} from '{current}' to '{requested}'",
            status_code=409,
            details={"kind": kind, "current": current, "requested": requested},
        )


class NotificationNotEditableError(AppException):
    """Notification is past the editable states."""

    def __init__(self, notification_id: str, status: str) -> None:
        super().__init__(
            error_code=ErrorCode.NOTIFICATION_NOT_EDITABLE,
            message=f"Notification {notification_id} cannot be edited while '{status}'",
            status_code=409,
            details={"notification_id": notification_id, "status": status},
        )


class NotificationNotDueError(AppException):
    """Scheduled notification dispatched before its scheduled time."""

    def __init__(self, notification_id: str, scheduled_at: str) -> None:
        super().__init__(
            error_code=ErrorCode.NOTIFICATION_NOT_DUE,
            message=f"Notification {notification_id} is scheduled for {scheduled_at}",
            status_code=409,
            details={"notification_id": notification_id, "scheduled_at": scheduled_at},
        )


class RetryLimitExceededError(AppException):
    """Message has exhausted its retries."""

    def __init__(self, message_id: str, retry_count: int, max_retries: int) -> None:
        super().__init__(
            error_code=ErrorCode.RETRY_LIMIT_EXCEEDED,
            message=f"Message {message_id} reached the retry limit ({retry_count}/{max_retries})",
            status_code=409,
            details={
                "message_id": message_id,
                "retry_count": retry_count,
                "max_retries": max_retries,
            },
        )


class SignalConflictError(AppException):
    """Storage contention persisted across all optimistic attempts."""

    def __init__(self, stamp_id: str | None, attempts: int) -> None:
        super().__init__(
            error_code=ErrorCode.SIGNAL_CONFLICT,
            message=f"Could not record signal after {attempts} attempts",
            status_code=409,
            details={"stamp_id": stamp_id, "attempts": attempts},
        )
