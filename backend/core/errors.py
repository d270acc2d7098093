"""Error taxonomy shared by the identity guard, lifecycle and conversation gate."""


class CoreError(Exception):
    """Base class for errors raised by the scheduling core."""

    status_code = 500
    code = 'internal_error'

    def __init__(self, detail: str, *, reason: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.reason = reason or self.code


class Unauthorized(CoreError):
    status_code = 401
    code = 'unauthorized'


class Forbidden(CoreError):
    status_code = 403
    code = 'forbidden'


class NotFound(CoreError):
    status_code = 404
    code = 'not_found'


class InvalidTransition(CoreError):
    status_code = 409
    code = 'invalid_transition'


class Conflict(CoreError):
    """The conditional write lost a race; re-read the current state and retry."""

    status_code = 409
    code = 'conflict'


class InvalidArgument(CoreError):
    status_code = 400
    code = 'invalid_argument'


class DeadlineExceeded(CoreError):
    """The caller's deadline elapsed; the outcome of the operation is unknown."""

    status_code = 504
    code = 'deadline_exceeded'


class NotificationDeliveryError(CoreError):
    """Every delivery attempt failed. Never rolls back the triggering transition."""

    code = 'notification_delivery_failed'

    def __init__(self, detail: str, *, last_error: Exception | None = None, recipients=None) -> None:
        super().__init__(detail)
        self.last_error = last_error
        self.recipients = list(recipients or [])
