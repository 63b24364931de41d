"""Errors raised while configuring or importing a schedule source."""


class ScheduleImportError(Exception):
    """Base error carrying the message key shown to the operator."""

    message_key = 'schedule.import.error'

    def __init__(self, detail: str = ''):
        self.detail = detail
        super().__init__(detail or self.message_key)


class InvalidShiftTypeError(ScheduleImportError):
    """Configured shift type does not exist."""
    message_key = 'schedule.import.invalid-shift-type'


class ScheduleNotFoundError(ScheduleImportError):
    """No schedule source with the requested id."""
    message_key = 'schedule.not-found'


class ScheduleRequestError(ScheduleImportError):
    """Feed could not be fetched (connection failure or non-2xx status)."""
    message_key = 'schedule.import.request-error'


class ScheduleReadError(ScheduleImportError):
    """Feed body could not be understood as a schedule."""
    message_key = 'schedule.import.read-error'


class ImportInProgressError(ScheduleImportError):
    """Another commit or deletion currently holds the source lock."""
    message_key = 'schedule.import.in-progress'
