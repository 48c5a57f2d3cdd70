from shift_reschedule.schemas import ErrorCode


class AppError(Exception):
    def __init__(
        self,
        error_code: ErrorCode,
        user_message: str,
        developer_message: str,
        status_code: int = 400,
    ) -> None:
        super().__init__(developer_message)
        self.error_code = error_code
        self.user_message = user_message
        self.developer_message = developer_message
        self.status_code = status_code


class _TypedError(AppError):
    default_code: ErrorCode = ErrorCode.validation_error
    default_status: int = 400

    def __init__(
        self,
        user_message: str,
        developer_message: str,
        error_code: ErrorCode | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            error_code or self.default_code,
            user_message,
            developer_message,
            status_code or self.default_status,
        )


class ValidationError(_TypedError):
    """Malformed or missing fields at creation; nothing was written."""

    default_code = ErrorCode.validation_error
    default_status = 422


class NotFound(_TypedError):
    default_code = ErrorCode.request_not_found
    default_status = 404


class InvalidTransition(_TypedError):
    """Action is not legal from the current state. Re-read and decide again."""

    default_code = ErrorCode.invalid_transition
    default_status = 409


class PermissionDenied(_TypedError):
    default_code = ErrorCode.permission_denied
    default_status = 403


class ScheduleConflict(_TypedError):
    default_code = ErrorCode.schedule_conflict
    default_status = 409


class ConcurrentModification(_TypedError):
    """Optimistic-lock failure: the status changed between read and commit."""

    default_code = ErrorCode.concurrent_modification
    default_status = 409


class ShiftReassignmentFailed(_TypedError):
    """Shift store could not apply an approval; the approval was rolled back."""

    default_code = ErrorCode.shift_reassignment_failed
    default_status = 502
