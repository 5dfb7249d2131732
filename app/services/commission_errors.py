"""Exceptions raised by the commission services."""


class CommissionValidationError(ValueError):
    """Rejected input. `reason` is a machine-readable code surfaced to API clients."""

    reason = "ValidationError"

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason


class InvalidScheduleInput(CommissionValidationError):
    reason = "InvalidScheduleInput"


class InsufficientAmountForDays(CommissionValidationError):
    reason = "InsufficientAmountForDays"


class CommissionNotFoundError(LookupError):
    pass


class CommissionStateError(Exception):
    """An admin asked for a transition the entry's current status does not allow."""
