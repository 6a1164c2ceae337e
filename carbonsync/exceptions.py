"""Errors raised by the project lifecycle engine.

All of them are scoped to a single request and are never retried here.
The API maps them to HTTP responses through ``status_code``.
"""


class LifecycleError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LifecycleError):
    """Caller supplied invalid input, e.g. an empty rejection reason."""

    status_code = 400


class InvalidTransition(LifecycleError):
    """Transition attempted from a terminal state."""

    status_code = 409


class NotFound(LifecycleError):
    status_code = 404
