from __future__ import annotations

from typing import Dict, Type


class ScheduleError(Exception):
    """Base class for failures surfaced to the user as a notification."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(ScheduleError, ValueError):
    status_code = 400


class NotAuthorized(ScheduleError):
    status_code = 403


class NotFound(ScheduleError, LookupError):
    status_code = 404


class StateConflict(ScheduleError):
    """The target is in a state that forbids the change (locked week, decided request...)."""

    status_code = 409


class TransportFailure(ScheduleError):
    status_code = 502


_BY_STATUS: Dict[int, Type[ScheduleError]] = {
    400: ValidationFailed,
    401: NotAuthorized,
    403: NotAuthorized,
    404: NotFound,
    409: StateConflict,
    422: ValidationFailed,
}


def error_for_status(status_code: int, message: str) -> ScheduleError:
    return _BY_STATUS.get(status_code, TransportFailure)(message)
