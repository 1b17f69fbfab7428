"""Error taxonomy shared by the sync layer, the remote client and the handlers."""


class ExpenseCompassError(Exception):
    """Base error with the HTTP status it maps to."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(ExpenseCompassError):
    """No identity could be resolved for the calling user."""

    status_code = 401
    kind = "unauthenticated"


class ValidationError(ExpenseCompassError):
    """Missing or invalid required field."""

    status_code = 400
    kind = "validation"


class OwnershipError(ExpenseCompassError):
    """Attempt to mutate a record owned by another user."""

    status_code = 403
    kind = "forbidden"


class NotFound(ExpenseCompassError):
    """Record absent."""

    status_code = 404
    kind = "not_found"


class Conflict(ExpenseCompassError):
    """Record already exists."""

    status_code = 409
    kind = "conflict"


class RemoteUnavailable(ExpenseCompassError):
    """Network or backend failure while talking to the record store."""

    status_code = 503
    kind = "remote_unavailable"


STATUS_ERRORS: dict[int, type[ExpenseCompassError]] = {
    400: ValidationError,
    401: Unauthenticated,
    403: OwnershipError,
    404: NotFound,
    409: Conflict,
}


def error_for_status(status_code: int, message: str) -> ExpenseCompassError:
    """Map an HTTP error status back to the taxonomy.

    Unknown 4xx map to ValidationError; 5xx and anything else to RemoteUnavailable.
    """
    if status_code in STATUS_ERRORS:
        return STATUS_ERRORS[status_code](message)
    if 400 <= status_code < 500:
        return ValidationError(message)
    return RemoteUnavailable(message)
