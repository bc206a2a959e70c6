"""
Error Types - Exceptions raised by the task and user services
"""

from typing import Optional


class TaskAppError(Exception):
    """Base class for errors that are reported back to the API client."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'status': 'ERR', 'message': self.message}


class ValidationError(TaskAppError):
    """Input failed one of the validation rules."""

    status_code = 400

    def __init__(self, message: str, rule: Optional[str] = None):
        super().__init__(message)
        self.rule = rule

    def to_dict(self):
        payload = super().to_dict()
        if self.rule:
            payload['rule'] = self.rule
        return payload


class AuthenticationError(TaskAppError):
    status_code = 401


class NotFoundError(TaskAppError):
    status_code = 404


class ConflictError(TaskAppError):
    """Duplicate resource, e.g. a task name reused by the same user."""

    status_code = 409

    def __init__(self, message: str, rule: Optional[str] = None):
        super().__init__(message)
        self.rule = rule


class UpstreamError(TaskAppError):
    """A third-party service (AI model, mail server) failed."""

    status_code = 502


class InternalError(TaskAppError):
    """Data reached a component in a state the validators should have rejected."""

    status_code = 500
