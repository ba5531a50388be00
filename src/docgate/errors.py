"""docgate errors, surfaced to callers with a human-readable message."""


class DocGateError(Exception):
    """Base exception for docgate errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DocGateError):
    """Entity or token lookup miss (including token/email mismatch)."""
    status_code = 404


class BadRequestError(DocGateError):
    """Invalid state transition or invalid input value."""
    status_code = 400


class ConflictError(DocGateError):
    """Duplicate pending request or OTP attempt limit reached."""
    status_code = 409


class ForbiddenError(DocGateError):
    """Document no longer public, or download session inactive."""
    status_code = 403


ERRORS_BY_STATUS: dict[int, type[DocGateError]] = {
    cls.status_code: cls
    for cls in (NotFoundError, BadRequestError, ConflictError, ForbiddenError)
}


def error_for_status(status: int | None, message: str) -> DocGateError:
    """Rebuild the matching exception from a status code."""
    return ERRORS_BY_STATUS.get(status, DocGateError)(message)
