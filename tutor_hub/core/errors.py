"""Domain errors raised by the service layer and mapped to HTTP statuses by the API."""

from __future__ import annotations


class TutorHubError(Exception):
    """Base class for expected, user-facing failures."""


class NotFoundError(TutorHubError):
    pass


class ValidationError(TutorHubError):
    pass


class InsufficientTokensError(ValidationError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient tokens. You need at least {required} tokens to send a "
            f"session request (you have {available})."
        )
        self.required = required
        self.available = available


class DuplicateRequestError(TutorHubError):
    pass


class InvalidStateError(TutorHubError):
    pass


class ConcurrentUpdateError(TutorHubError):
    """A compare-and-set write found the row already changed."""


class PermissionDeniedError(TutorHubError):
    pass


class AuthError(TutorHubError):
    pass


class WorkflowError(TutorHubError):
    """A multi-step workflow failed and its completed steps were compensated."""

    def __init__(self, step: str, cause: Exception) -> None:
        super().__init__(f"Step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause
