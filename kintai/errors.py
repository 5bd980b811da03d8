"""Error taxonomy shared by services and blueprints."""

from __future__ import annotations


class KintaiError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(KintaiError):
    status_code = 400


class InvalidTransition(ValidationError):
    """An attendance action is not legal from the record's current state."""

    def __init__(self, action: str, state: str, reason: str) -> None:
        super().__init__(reason)
        self.action = action
        self.state = state
        self.reason = reason


class ConflictError(KintaiError):
    status_code = 400


class ForbiddenError(KintaiError):
    status_code = 403


class NotFoundError(KintaiError):
    status_code = 404


class ExpiredError(KintaiError):
    status_code = 410
