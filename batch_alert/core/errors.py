"""Error taxonomy shared by the service layer and the HTTP surface."""

from __future__ import annotations


class BatchAlertError(Exception):
    """Base class for errors raised by batch alert services."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BatchAlertError):
    """Input rejected before any store call was attempted."""


class AuthorizationError(BatchAlertError):
    """The acting profile lacks the capability required for a mutation."""


class StoreError(BatchAlertError):
    """A CRUD call against the relational store failed."""


class RecordNotFoundError(StoreError):
    """The addressed row does not exist."""


class ConflictError(StoreError):
    """The write would violate a uniqueness rule."""


class DeliveryError(BatchAlertError):
    """A webhook POST failed at the transport level after all attempts."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 1,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.status_code = status_code
