"""Exceptions raised by the scheduling engine.

Slot conflicts are not errors; they are reported through result objects.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class InvalidRequestError(SchedulingError, ValueError):
    """The request is malformed, e.g. a zero or negative duration."""


class ProviderNotFoundError(SchedulingError):
    def __init__(self, provider_id: int) -> None:
        super().__init__(f"Provider {provider_id} not found.")
        self.provider_id = provider_id


class AppointmentNotFoundError(SchedulingError):
    def __init__(self, appointment_id: int) -> None:
        super().__init__(f"Appointment {appointment_id} not found.")
        self.appointment_id = appointment_id


class LockTimeoutError(SchedulingError):
    """The exclusive section could not be entered in time. Safe to retry."""

    def __init__(self, key: object, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout}s waiting for lock {key!r}.")
        self.key = key
        self.timeout = timeout


class StorageUnavailableError(SchedulingError):
    """The store failed mid-transaction; the transaction was rolled back."""
