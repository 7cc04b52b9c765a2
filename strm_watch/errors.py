from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .transfer import TransferOutcome


class StrmWatchError(Exception):
    """Base class for every error raised by strm_watch."""


class ConfigError(StrmWatchError):
    pass


class PathError(StrmWatchError):
    pass


class GuardFileError(StrmWatchError):
    pass


class SourceMissingError(StrmWatchError):
    pass


class WatcherError(StrmWatchError):
    pass


class PlaceholderError(StrmWatchError):
    pass


class TransferError(StrmWatchError):
    def __init__(self, message: str, outcome: Optional["TransferOutcome"] = None):
        super().__init__(message)
        self.outcome = outcome
