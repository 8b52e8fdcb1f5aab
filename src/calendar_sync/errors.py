from typing import Optional


class SyncError(Exception):
    """Base class for everything the sync layer raises on purpose."""


class ValidationError(SyncError):
    """A form field is missing or malformed."""


class InvalidIntentError(ValidationError):
    pass


class NotFoundError(SyncError):
    pass


class MappingNotFoundError(NotFoundError):
    pass


class ItemNotFoundError(NotFoundError):
    pass


class PlanNotFoundError(NotFoundError):
    pass


class NotConnectedError(SyncError):
    """No calendar account, or sync is disabled for it."""


class ConflictStateError(SyncError):
    """A resolution was requested for a mapping that is not in conflict."""


class EventConversionError(SyncError):
    pass


class CalendarApiError(SyncError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
