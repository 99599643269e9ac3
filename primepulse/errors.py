"""Exception hierarchy for the monitoring pipeline."""

from typing import Optional


class PrimePulseError(RuntimeError):
    """Base class for pipeline errors."""
    pass


class FetchError(PrimePulseError):
    """Raised when a single listing cannot be fetched."""

    def __init__(self, identifier: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{identifier}: {message}")
        self.identifier = identifier
        self.status_code = status_code


class ParseError(FetchError):
    """Raised when a fetched page does not contain a usable listing."""
    pass


class RemoteFetchError(PrimePulseError):
    """Raised when the remote scraping worker fails outright."""
    pass


class StoreError(PrimePulseError):
    """Raised when a store read or write fails."""
    pass


class CycleError(PrimePulseError):
    """Raised when a run cycle cannot proceed at all."""
    pass


class NotificationError(PrimePulseError):
    """Raised when the notification channel rejects a message."""
    pass
